# Exceptions raised by the certificate reconciliation workflow.


class ManagerError(Exception):
    """Base class for all acmedelegate failures."""
    pass


class InvalidArgument(ManagerError, ValueError):
    """A certificate request could not be parsed or validated."""
    pass


class ConfigurationError(ManagerError):
    """Application settings are missing or invalid."""
    pass


class ConfigurationConflict(ManagerError):
    """A request disagrees with the stored state of the same certificate name."""

    def __init__(self, name, requested_primary, stored_primary):
        self.name = name
        self.requested_primary = requested_primary
        self.stored_primary = stored_primary
        super().__init__(
            f"Certificate {name!r} was issued for primary domain {stored_primary!r} "
            f"but is now requested with {requested_primary!r}; use a new certificate name instead"
        )


class CertificateNotFound(ManagerError):
    """No certificate has been recorded under the given name yet."""
    pass


class CorruptState(ManagerError):
    """Certificate metadata exists but its key or certificate bytes are unusable."""
    pass


class RecordNotFound(ManagerError):
    """The queried DNS name has no record of the requested type."""
    pass


class DNSLookupFailure(ManagerError):
    """A DNS query failed for a reason other than the record being absent."""
    pass


class RegistrationFailure(ManagerError):
    """Creating an account with the delegated DNS service failed."""
    pass


class AccountStoreError(ManagerError):
    """The delegation account file could not be read or written."""
    pass


class IssuanceFailure(ManagerError):
    """The ACME order could not be completed."""
    pass
