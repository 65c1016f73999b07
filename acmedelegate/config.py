from dataclasses import dataclass
import logging
import os
import sys
from typing import Optional, Tuple

from acmedelegate import settings
from acmedelegate.dns.resolvers import parse_resolver_address
from acmedelegate.errors import ConfigurationError

LOG_FORMAT = settings.LOG_FORMAT

KEY_TYPES = ('rsa2048', 'rsa3072', 'rsa4096', 'ec256', 'ec384')
PLACEHOLDER_EMAIL = 'your-email@example.com'
ACCOUNTS_FILE_NAME = 'acme-dns-accounts.json'

def configure_logging(level=logging.INFO):
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )


@dataclass(frozen=True)
class ManagerConfig:
    """Read-only snapshot of the settings one certificate run depends on."""

    storage_path: str
    acme_email: str
    acme_directory_url: str
    acme_dns_url: str
    renewal_threshold_days: int = 30
    dns_resolver: Optional[str] = None
    dns_timeout: float = 15.0
    http_timeout: float = 30.0
    challenge_timeout: int = 600
    default_key_type: str = 'rsa4096'
    allow_from: Tuple[str, ...] = ()
    auto_certs: Tuple[str, ...] = ()
    propagation_wait: Tuple[float, float] = (20.0, 30.0)

    @classmethod
    def from_settings(cls):
        """Build a config from the environment-driven `settings` module."""
        return cls(
            storage_path=settings.CERT_STORAGE_PATH,
            acme_email=settings.ACME_EMAIL,
            acme_directory_url=settings.ACME_DIRECTORY_URL,
            acme_dns_url=settings.ACME_DNS_SERVER_URL,
            renewal_threshold_days=settings.RENEWAL_WINDOW_DAYS,
            dns_resolver=settings.DNS_RESOLVER or None,
            dns_timeout=settings.DNS_TIMEOUT,
            http_timeout=settings.HTTP_TIMEOUT,
            challenge_timeout=settings.CHALLENGE_TIMEOUT,
            default_key_type=settings.DEFAULT_KEY_TYPE,
            allow_from=tuple(settings.ACME_DNS_ALLOW_FROM),
            auto_certs=tuple(settings.AUTO_CERTS),
            propagation_wait=(settings.DNS_PROPAGATION_MIN_SECONDS, settings.DNS_PROPAGATION_MAX_SECONDS),
        )

    @property
    def accounts_file(self):
        return os.path.join(self.storage_path, ACCOUNTS_FILE_NAME)

    @property
    def certificates_dir(self):
        return os.path.join(self.storage_path, 'certificates')

    def validate(self):
        """Reject settings that would make every run fail.

        Raises:
            ConfigurationError: On a missing or placeholder email, a missing
                acme-dns URL, a non-positive renewal window, an unknown
                default key type or a malformed DNS_RESOLVER address.
        """
        if not self.acme_email:
            raise ConfigurationError("ACME_EMAIL is not set")
        if self.acme_email == PLACEHOLDER_EMAIL:
            raise ConfigurationError("ACME_EMAIL must not be the placeholder value")
        if not self.acme_dns_url:
            raise ConfigurationError("ACME_DNS_SERVER_URL is not set")
        if self.renewal_threshold_days <= 0:
            raise ConfigurationError(f"RENEWAL_WINDOW_DAYS must be positive, got {self.renewal_threshold_days}")
        if self.default_key_type not in KEY_TYPES:
            raise ConfigurationError(f"DEFAULT_KEY_TYPE must be one of {', '.join(KEY_TYPES)}")
        if self.dns_resolver:
            parse_resolver_address(self.dns_resolver)
        return self


CONFIG_TEMPLATE = f"""# Configuration for acmedelegate (copy to .env and edit)

# Email address for Let's Encrypt registration and notifications
ACME_EMAIL={PLACEHOLDER_EMAIL}

# ACME directory URL
# Production: https://acme-v02.api.letsencrypt.org/directory
# Staging:    https://acme-staging-v02.api.letsencrypt.org/directory
ACME_DIRECTORY_URL=https://acme-staging-v02.api.letsencrypt.org/directory

# Default key type: rsa2048, rsa3072, rsa4096, ec256, ec384
DEFAULT_KEY_TYPE=rsa4096

# URL of your acme-dns server
ACME_DNS_SERVER_URL=https://acme-dns.example.com
# Optional CIDR ranges allowed to update TXT records (comma separated)
ACME_DNS_ALLOW_FROM=

# DNS resolver for CNAME verification, e.g. 1.1.1.1 or 8.8.8.8:53 (system resolver if empty)
DNS_RESOLVER=
DNS_TIMEOUT=15

# Certificates, ACME account and {ACCOUNTS_FILE_NAME} live here
CERT_STORAGE_PATH=.lego

# Timeouts in seconds
CHALLENGE_TIMEOUT=600
HTTP_TIMEOUT=30

# Unattended runs ("manage --auto") renew certificates expiring within this many days
RENEWAL_WINDOW_DAYS=30
# Space separated requests: name@domain1,domain2/key_type=ec256
AUTO_CERTS="my-main-site@example.com,www.example.com another-service@service.example.com/key_type=ec384"
"""
