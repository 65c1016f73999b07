import json
import logging
import os
import tempfile
import threading

from acmedelegate.accounts import AccountStoreBase, DelegationAccount
from acmedelegate.errors import AccountStoreError

logger = logging.getLogger(__name__)

DIR_PERMISSIONS = 0o750
FILE_PERMISSIONS = 0o600


class ReadWriteLock:
    """Many concurrent readers or one writer."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    def acquire_read(self):
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1

    def release_read(self):
        with self._cond:
            self._readers -= 1
            if not self._readers:
                self._cond.notify_all()

    def acquire_write(self):
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True

    def release_write(self):
        with self._cond:
            self._writer = False
            self._cond.notify_all()


class _Reading:
    def __init__(self, lock):
        self.lock = lock

    def __enter__(self):
        self.lock.acquire_read()

    def __exit__(self, *exc):
        self.lock.release_read()


class _Writing(_Reading):
    def __enter__(self):
        self.lock.acquire_write()

    def __exit__(self, *exc):
        self.lock.release_write()


class JSONAccountStore(AccountStoreBase):
    """Delegation accounts kept in one JSON file keyed by domain.

    The file layout matches lego's acme-dns provider storage so both tools can
    share it. Use `for_path` to get the process-wide instance for a file.
    """

    _instances = {}
    _instances_lock = threading.Lock()

    def __init__(self, file_path):
        self.file_path = file_path
        self._accounts = {}
        self._lock = ReadWriteLock()

    @classmethod
    def for_path(cls, file_path):
        """Return the single store for `file_path`, loading it on first use.

        Raises:
            AccountStoreError: If an existing file cannot be read or parsed.
        """
        key = os.path.abspath(file_path)
        with cls._instances_lock:
            store = cls._instances.get(key)
            if store is None:
                store = cls(key)
                store.load_all()
                cls._instances[key] = store
            return store

    def get(self, domain):
        with _Reading(self._lock):
            account = self._accounts.get(domain)
        return account, account is not None

    def set(self, domain, account):
        with _Writing(self._lock):
            self._accounts[domain] = account

    def remove(self, domain):
        with _Writing(self._lock):
            self._accounts.pop(domain, None)

    def load_all(self):
        """Load accounts from disk, replacing the in-memory map.

        A missing file leaves the store empty.

        Raises:
            AccountStoreError: If the file exists but is unreadable or malformed.
        """
        with _Writing(self._lock):
            try:
                with open(self.file_path, 'r', encoding='utf-8') as f:
                    raw = json.load(f)
            except FileNotFoundError:
                logger.info(f"No account file at {self.file_path}, starting empty")
                self._accounts = {}
                return
            except (OSError, ValueError) as e:
                raise AccountStoreError(f"Error reading account file {self.file_path}: {e}") from e

            try:
                self._accounts = {domain: DelegationAccount.from_json(data) for domain, data in raw.items()}
            except (AttributeError, KeyError, TypeError) as e:
                raise AccountStoreError(f"Malformed account file {self.file_path}: {e}") from e
            logger.info(f"Loaded {len(self._accounts)} acme-dns account(s) from {self.file_path}")

    def save_all(self):
        """Atomically rewrite the account file with every stored account.

        Raises:
            AccountStoreError: If the directory or file cannot be written.
        """
        with _Writing(self._lock):
            payload = {domain: account.to_json() for domain, account in sorted(self._accounts.items())}
            directory = os.path.dirname(self.file_path) or '.'
            tmp_path = None
            try:
                os.makedirs(directory, mode=DIR_PERMISSIONS, exist_ok=True)
                fd, tmp_path = tempfile.mkstemp(prefix='.acme-dns-accounts-', dir=directory)
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(payload, f, indent=2)
                    f.write('\n')
                os.chmod(tmp_path, FILE_PERMISSIONS)
                os.replace(tmp_path, self.file_path)
            except OSError as e:
                if tmp_path and os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise AccountStoreError(f"Error writing account file {self.file_path}: {e}") from e
        logger.info(f"Saved {len(payload)} acme-dns account(s) to {self.file_path}")
