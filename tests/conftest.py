from datetime import datetime, timedelta, timezone
import logging
import os

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
import pytest

os.environ["FLASK_ENV"] = "local"
os.environ['FLASK_SECRET_KEY'] = ''
os.environ['SQLALCHEMY_DATABASE_URI'] = 'sqlite://'

os.environ['ACME_EMAIL'] = 'admin@example.org'
os.environ['ACME_DIRECTORY_URL'] = 'https://acme.example.org/directory'
os.environ['ACME_DNS_SERVER_URL'] = 'https://acme-dns.example.org'
os.environ['DNS_PROPAGATION_MIN_SECONDS'] = '0'
os.environ['DNS_PROPAGATION_MAX_SECONDS'] = '0'
os.environ['AUTO_CERTS'] = ''

os.environ['ENABLE_SLACK_NOTIFICATIONS'] = 'false'
os.environ['SLACK_WEBHOOK_KEY'] = ''
os.environ['SLACK_WORKSPACE_ID'] = ''

from acmedelegate import create_app  # noqa: E402
from acmedelegate.database import db  # noqa: E402
from acmedelegate.models import Certificate  # noqa: E402
from acmedelegate.state import certificate_paths  # noqa: E402

SECRET_KEY = '1234567890'


@pytest.fixture
def app():
    test_app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SECRET_KEY': SECRET_KEY,
    })
    with test_app.app_context():
        db.create_all()
        yield test_app
        db.session.remove()
        db.drop_all()

@pytest.fixture(autouse=True)
def restore_root_log_level():
    root = logging.getLogger()
    level = root.level
    yield
    root.setLevel(level)

@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client

def make_certificate_pem(domains, days_valid=90, common_name=None):
    """Return `(cert_pem, key_pem)` for a self-signed certificate covering `domains`."""
    key = ec.generate_private_key(ec.SECP256R1())
    now = datetime.now(timezone.utc)
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name or domains[0])])
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=days_valid))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(d) for d in domains]), critical=False)
        .sign(key, hashes.SHA256())
    )
    cert_pem = cert.public_bytes(serialization.Encoding.PEM)
    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return cert_pem, key_pem

@pytest.fixture
def stored_certificate(app, tmp_path):
    """Factory writing certificate files under `tmp_path/certificates` and recording the metadata row."""
    certificates_dir = str(tmp_path / 'certificates')

    def _store(name, domains, days_valid=90, metadata_domains=None, primary_domain=None):
        os.makedirs(certificates_dir, exist_ok=True)
        cert_path, key_path, _ = certificate_paths(certificates_dir, name)
        cert_pem, key_pem = make_certificate_pem(domains, days_valid)
        with open(cert_path, 'wb') as f:
            f.write(cert_pem)
        with open(key_path, 'wb') as f:
            f.write(key_pem)
        listed = metadata_domains or domains
        db.session.add(Certificate(
            name=name,
            primary_domain=primary_domain or listed[0],
            domains=','.join(listed),
            key_type='ec256',
            cert_path=cert_path,
            key_path=key_path,
        ))
        db.session.commit()
        return cert_path, key_path

    _store.certificates_dir = certificates_dir
    return _store

@pytest.fixture
def certificate_pem():
    return make_certificate_pem
