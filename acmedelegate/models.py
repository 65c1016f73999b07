from datetime import datetime

from acmedelegate.database import db


class Certificate(db.Model):
    __tablename__ = 'certificates'
    __table_args__ = (
        db.PrimaryKeyConstraint('id', name='certificates_pkey'),
        db.UniqueConstraint('name', name='certificates_name_key'),
        {'comment': 'Metadata written each time a certificate is issued or renewed.'}
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), unique=True, nullable=False)
    primary_domain = db.Column(db.String(253), nullable=False)
    # comma separated, in request order
    domains = db.Column(db.Text, nullable=False)
    key_type = db.Column(db.String(16), nullable=True)
    not_before = db.Column(db.DateTime(timezone=True), nullable=True)
    not_after = db.Column(db.DateTime(timezone=True), nullable=True)
    cert_path = db.Column(db.String(1024), nullable=False)
    key_path = db.Column(db.String(1024), nullable=False)
    issuer_path = db.Column(db.String(1024), nullable=True)
    created_at = db.Column(db.DateTime, nullable=True, default=datetime.utcnow)
    last_updated = db.Column(db.DateTime, nullable=True, default=datetime.utcnow)
    last_updated_by = db.Column(db.String(255), nullable=True)

    @property
    def domain_list(self):
        return [d for d in (self.domains or '').split(',') if d]
