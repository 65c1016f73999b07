# Reading and recording the state of previously issued certificates.

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
import os
from typing import Iterable, Optional, Tuple

from cryptography import x509 as cx509
from cryptography.x509.oid import NameOID
from OpenSSL import crypto

from acmedelegate.database import db
from acmedelegate.errors import CertificateNotFound, ConfigurationConflict, CorruptState
from acmedelegate.helpers import commit_with_retry
from acmedelegate.models import Certificate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CertificateRecord:
    """A stored certificate as seen through its metadata and its signed contents.

    `domains` comes from the certificate itself (SAN entries plus the common
    name), not from the metadata row.
    """

    name: str
    primary_domain: str
    domains: Tuple[str, ...]
    not_after: datetime
    not_before: Optional[datetime] = None
    key_type: Optional[str] = None
    cert_path: str = ''
    key_path: str = ''

    def expires_within(self, days, now=None):
        now = now or datetime.now(timezone.utc)
        return self.not_after - now <= timedelta(days=days)

    def compare_domains(self, requested: Iterable[str]):
        """Return `(missing, extra)`: requested domains the certificate lacks, and covered domains no longer requested."""
        requested = list(requested)
        missing = [d for d in requested if d not in self.domains]
        extra = [d for d in self.domains if d not in requested]
        return missing, extra


def certificate_paths(certificates_dir, name):
    """Return the `(cert, key, issuer)` file paths for a certificate name."""
    base = os.path.join(certificates_dir, name)
    return f"{base}.crt", f"{base}.key", f"{base}.issuer.crt"


class CertificateStateInspector:

    def __init__(self, certificates_dir):
        self.certificates_dir = certificates_dir

    def load(self, name):
        """Load the stored state of a certificate by name.

        Reads the metadata row, then independently parses the certificate and
        private key files so the returned domain list reflects what was
        actually signed.

        Args:
            name (str): Certificate name.

        Returns:
            CertificateRecord: The stored certificate state.

        Raises:
            CertificateNotFound: No certificate was ever recorded under `name`.
            CorruptState: Metadata exists but the key or certificate file is
                missing, empty or unparsable.
        """
        row = Certificate.query.filter_by(name=name).first()
        if row is None:
            raise CertificateNotFound(f"No certificate recorded under name {name!r}")

        default_cert, default_key, _ = certificate_paths(self.certificates_dir, name)
        cert_path = row.cert_path or default_cert
        key_path = row.key_path or default_key

        key_bytes = self._read(name, key_path, "private key")
        try:
            crypto.load_privatekey(crypto.FILETYPE_PEM, key_bytes)
        except crypto.Error as e:
            raise CorruptState(f"Private key {key_path} for certificate {name!r} cannot be parsed: {e}") from e

        cert_bytes = self._read(name, cert_path, "certificate")
        try:
            x509 = crypto.load_certificate(crypto.FILETYPE_PEM, cert_bytes)
        except crypto.Error as e:
            raise CorruptState(f"Certificate {cert_path} for {name!r} cannot be parsed: {e}") from e

        subjects = self._get_cert_subjects(x509)
        not_after = self._asn1_time(x509.get_notAfter())
        not_before = self._asn1_time(x509.get_notBefore())

        metadata_domains = row.domain_list
        if set(metadata_domains) != set(subjects):
            logger.warning(f"Metadata for {name} lists {metadata_domains} but the certificate covers {subjects}")

        return CertificateRecord(
            name=name,
            primary_domain=row.primary_domain,
            domains=tuple(subjects),
            not_after=not_after,
            not_before=not_before,
            key_type=row.key_type,
            cert_path=cert_path,
            key_path=key_path,
        )

    def _read(self, name, path, what):
        try:
            with open(path, 'rb') as f:
                data = f.read()
        except OSError as e:
            raise CorruptState(f"Cannot read {what} file {path} for certificate {name!r}: {e}") from e
        if not data.strip():
            raise CorruptState(f"The {what} file {path} for certificate {name!r} is empty")
        return data

    @staticmethod
    def _asn1_time(raw):
        if raw is None:
            return None
        return datetime.strptime(raw.decode('utf-8'), '%Y%m%d%H%M%S%z')

    def _get_cert_subjects(self, x509):
        """Retrieve subject names (SAN dNSName entries, then the CN) from a certificate.

        Args:
            x509 (OpenSSL.crypto.X509): Parsed certificate object to inspect.

        Returns:
            list[str]: Lower-cased names covered by the certificate, SAN order
                first, without duplicates.
        """
        cert = x509.to_cryptography()
        try:
            san = cert.extensions.get_extension_for_class(cx509.SubjectAlternativeName)
            names = san.value.get_values_for_type(cx509.DNSName)
        except cx509.ExtensionNotFound:
            logger.debug("No subjectAltName extension found.")
            names = []

        for attr in cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME):
            names.append(attr.value)

        subjects = []
        for n in names:
            n = n.lower()
            if n not in subjects:
                subjects.append(n)
        logger.debug(f"Subject list: {subjects}")
        return subjects


def save_certificate_record(name, domains, key_type, cert_path, key_path, issuer_path, not_before, not_after):
    """Insert or update the metadata row after a successful issuance.

    The primary domain of an existing row is never changed.

    Raises:
        ConfigurationConflict: The row exists with a different primary domain.
        sqlalchemy.exc.SQLAlchemyError: When the write keeps failing after retries.
    """
    def stage():
        row = Certificate.query.filter_by(name=name).first()
        if row is None:
            row = Certificate(name=name, primary_domain=domains[0])
            db.session.add(row)
        elif row.primary_domain != domains[0]:
            raise ConfigurationConflict(name, domains[0], row.primary_domain)

        row.domains = ','.join(domains)
        row.key_type = key_type
        row.cert_path = cert_path
        row.key_path = key_path
        row.issuer_path = issuer_path
        row.not_before = not_before
        row.not_after = not_after
        row.last_updated = datetime.utcnow()
        row.last_updated_by = 'acmedelegate'
        return row

    row = commit_with_retry(db.session, stage, f"certificate record {name}")
    logger.info(f"Certificate record for {name} updated ({', '.join(domains)}, expires {not_after})")
    return row
