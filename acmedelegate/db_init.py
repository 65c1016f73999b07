from __future__ import annotations
import os

from flask import Flask
from sqlalchemy.engine import make_url

from acmedelegate.database import db

def init_db(app: Flask, *, drop_first: bool = False) -> None:
    """Create (and optionally drop) the certificate metadata tables.
    Ensures models are imported so metadata is populated; creates the parent
    directory of a file-backed SQLite database.
    """
    uri = app.config.get("SQLALCHEMY_DATABASE_URI")
    if not uri:
        raise RuntimeError(
            "SQLALCHEMY_DATABASE_URI is not set. Configure a database URI before initializing."
        )

    url = make_url(uri)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        os.makedirs(os.path.dirname(os.path.abspath(url.database)), exist_ok=True)

    with app.app_context():
        # Import models here to ensure they're registered with db.metadata
        # (avoids circular imports at module top-level).
        from . import models  # noqa: F401

        if drop_first:
            db.drop_all()
        db.create_all()
        app.logger.info("Initialized certificate metadata tables at %r", uri)
