from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class DelegationAccount:
    """Credentials for one subdomain on the acme-dns service.

    Field names follow the JSON returned by acme-dns `/register`, which is
    also the on-disk format of the account file.
    """

    username: str
    password: str
    fulldomain: str
    subdomain: str
    allowfrom: List[str] = field(default_factory=list)

    @classmethod
    def from_json(cls, data):
        return cls(
            username=data['username'],
            password=data['password'],
            fulldomain=data['fulldomain'],
            subdomain=data['subdomain'],
            allowfrom=list(data.get('allowfrom') or []),
        )

    def to_json(self):
        return asdict(self)


class AccountStoreBase(ABC):
    """Abstract base class for delegation account storage plugins.

    Implementations must be safe for concurrent readers and writers.
    """

    @abstractmethod
    def get(self, domain: str) -> Tuple[Optional[DelegationAccount], bool]:
        """Return `(account, found)` for a verification domain."""
        pass

    @abstractmethod
    def set(self, domain: str, account: DelegationAccount) -> None:
        """Store or replace the account for a verification domain in memory."""
        pass

    @abstractmethod
    def remove(self, domain: str) -> None:
        """Drop the account for a verification domain from memory, if present."""
        pass

    @abstractmethod
    def save_all(self) -> None:
        """Persist every account; raise AccountStoreError on failure."""
        pass

    @abstractmethod
    def load_all(self) -> None:
        """Replace in-memory accounts with the persisted ones; a missing backing store is empty."""
        pass
