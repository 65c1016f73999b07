from abc import ABC, abstractmethod


class ResolverBase(ABC):
    """
    Abstract base class for DNS resolver plugins.
    Implementations raise RecordNotFound when the name has no CNAME and
    DNSLookupFailure on any other resolution error.
    """

    @abstractmethod
    def resolve_cname(self, name: str) -> str:
        """Return the CNAME target of `name` without the trailing root dot."""
        pass

    @abstractmethod
    def describe(self) -> str:
        """Human-readable description of the resolver for logs."""
        pass
