import logging

import click
from flask import Flask, Response

from acmedelegate import settings
from acmedelegate.config import CONFIG_TEMPLATE, configure_logging
from acmedelegate.db_init import init_db
from acmedelegate.errors import ManagerError
from acmedelegate.reconcile import EXIT_FAILURE

LOG_LEVELS = ("debug", "info", "warning", "error")

logger = logging.getLogger(__name__)

def create_app(test_config=None):
    app = Flask(__name__, instance_relative_config=True)

    if test_config:
        app.config.update(test_config)
    else:
        app.config['SECRET_KEY'] = settings.FLASK_SECRET_KEY # pragma: no cover
        app.config['SQLALCHEMY_DATABASE_URI'] = settings.SQLALCHEMY_DATABASE_URI # pragma: no cover
        app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = settings.SQLALCHEMY_TRACK_MODIFICATIONS # pragma: no cover

    configure_logging()

    @app.route("/healthcheck")
    def healthcheck():
        return Response("<p>Hello World</p>"), 200

    from acmedelegate.database import db
    db.init_app(app)

    @app.cli.command("init-db")
    @click.option("--drop-first", is_flag=True, help="Drop all tables before creating them.")
    def init_db_command(drop_first: bool) -> None:
        """Initialize the database schema from the current models."""
        init_db(app, drop_first=drop_first)

    @app.cli.command("config-template")
    def config_template_command() -> None:
        """Print a commented .env template."""
        click.echo(CONFIG_TEMPLATE)

    @app.cli.command("manage")
    @click.option("--auto", is_flag=True, help="Unattended run over AUTO_CERTS; skips certificates not due for renewal.")
    @click.option("--quiet", is_flag=True, help="Only log warnings and errors; the summary is still printed.")
    @click.option("--log-level", type=click.Choice(LOG_LEVELS, case_sensitive=False), default=None,
                  help="Logging level for this run. Overrides --quiet.")
    @click.argument("cert_args", nargs=-1, metavar="[NAME@]DOMAIN[,DOMAIN...][/key_type=TYPE]...")
    @click.pass_context
    def manage_command(ctx, auto: bool, quiet: bool, log_level, cert_args) -> None:
        """Obtain or renew certificates validated through acme-dns.

        Exits 0 when every certificate is satisfied, 3 when CNAME records
        must be added (the records are printed) and 1 on any other failure.
        """
        if log_level:
            logging.getLogger().setLevel(log_level.upper())
        elif quiet:
            logging.getLogger().setLevel(logging.WARNING)
        if auto and cert_args:
            raise click.UsageError("--auto takes its certificates from AUTO_CERTS and accepts no requests")
        if not auto and not cert_args:
            raise click.UsageError("Pass at least one certificate request, or use --auto")

        init_db(app)
        try:
            result = orchestrator.run_batch(list(cert_args), auto_mode=auto)
        except ManagerError as e:
            logger.error(f"Certificate run aborted: {e}")
            click.echo(f"Error: {e}", err=True)
            ctx.exit(EXIT_FAILURE)

        report = result.report()
        if report:
            click.echo(report)
        click.echo(result.summary())
        ctx.exit(result.exit_code)

    from acmedelegate import orchestrator
    app.register_blueprint(orchestrator.bp)

    return app
