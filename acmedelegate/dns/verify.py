import logging

from acmedelegate.cert_requests import challenge_name
from acmedelegate.dns import ResolverBase
from acmedelegate.errors import RecordNotFound

logger = logging.getLogger(__name__)


class CnameVerifier:
    """Checks that `_acme-challenge.<base>` points at the expected acme-dns target."""

    def __init__(self, resolver: ResolverBase):
        self.resolver = resolver

    def verify(self, domain, expected_target):
        """Verify the challenge CNAME for a domain.

        Wildcard and apex forms of a domain resolve the same challenge name.
        Trailing root dots are ignored on both sides of the comparison.

        Args:
            domain (str): Domain being validated, possibly `*.`-prefixed.
            expected_target (str): The account's `fulldomain`.

        Returns:
            bool: `True` when the CNAME matches, `False` when it is missing or
                points elsewhere.

        Raises:
            DNSLookupFailure: On timeouts, server failures and other errors
                that do not prove the record is absent.
        """
        name = challenge_name(domain)
        expected = expected_target.rstrip('.')
        logger.info(f"Verifying CNAME record for {name} -> {expected} using {self.resolver.describe()}")

        try:
            found = self.resolver.resolve_cname(name)
        except RecordNotFound:
            logger.warning(f"CNAME record for {name} not found")
            return False

        found = found.rstrip('.')
        if found == expected:
            logger.info(f"CNAME record for {name} is valid")
            return True
        logger.warning(f"CNAME record for {name} is INVALID (expected: {expected}, found: {found})")
        return False
