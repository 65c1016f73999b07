# methods for calls to the acme-dns (delegated DNS-TXT) service

import logging

import requests

from acmedelegate.accounts import AccountStoreBase, DelegationAccount
from acmedelegate.cert_requests import WILDCARD_PREFIX, get_base_domain
from acmedelegate.errors import AccountStoreError, IssuanceFailure, RegistrationFailure

logger = logging.getLogger(__name__)

USER_AGENT = 'acmedelegate'


class AcmeDnsClient:

    def __init__(self, base_url, timeout=30, session=None):
        """Initialize the acme-dns API client.

        Args:
            base_url (str): Base URL of the acme-dns server, e.g.
                `https://acme-dns.example.com`.
            timeout (float): Per-request timeout in seconds.
            session (requests.Session | None): Optional session to reuse.
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    def register(self, allow_from=None):
        """Create a new acme-dns account.

        Posts to `/register`, optionally restricting updates to `allow_from`
        CIDR ranges. acme-dns answers 201 with the new credentials.

        Args:
            allow_from (list[str] | None): CIDR ranges allowed to update TXT.

        Returns:
            DelegationAccount: The registered account.

        Raises:
            RegistrationFailure: On transport errors, a non-201 status, or a
                response body that is not a complete account.
        """
        url = f"{self.base_url}/register"
        body = {'allowfrom': list(allow_from)} if allow_from else {}
        logger.info(f"Registering new acme-dns account at {url}")
        try:
            response = self.session.post(
                url,
                json=body,
                headers={'User-Agent': USER_AGENT},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise RegistrationFailure(f"Error sending registration request to {url}: {e}") from e

        if response.status_code != 201:
            raise RegistrationFailure(
                f"Failed to register at {url}: status {response.status_code}, body: {response.text}"
            )
        try:
            return DelegationAccount.from_json(response.json())
        except (ValueError, KeyError, TypeError) as e:
            raise RegistrationFailure(f"Error parsing registration response from {url}: {e}, body: {response.text}") from e

    def update_txt(self, account, value):
        """Publish a DNS-01 validation value on the account's subdomain.

        Raises:
            IssuanceFailure: When the update is rejected or cannot be sent.
        """
        url = f"{self.base_url}/update"
        headers = {
            'X-Api-User': account.username,
            'X-Api-Key': account.password,
            'User-Agent': USER_AGENT,
        }
        try:
            response = self.session.post(
                url,
                json={'subdomain': account.subdomain, 'txt': value},
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise IssuanceFailure(f"Error updating TXT record for {account.fulldomain}: {e}") from e
        if response.status_code != 200:
            raise IssuanceFailure(
                f"acme-dns rejected TXT update for {account.fulldomain}: status {response.status_code}, body: {response.text}"
            )
        logger.info(f"Updated TXT record on {account.fulldomain}")


class DelegationManager:
    """Maps verification domains to acme-dns accounts, registering new ones on demand."""

    def __init__(self, store: AccountStoreBase, client: AcmeDnsClient, allow_from=None):
        self.store = store
        self.client = client
        self.allow_from = list(allow_from or [])

    def find_account(self, domain):
        """Return the account for a domain, its base, or its wildcard form, or None."""
        base = get_base_domain(domain)
        for key in (domain, base, WILDCARD_PREFIX + base):
            account, found = self.store.get(key)
            if found:
                return account
        return None

    def ensure_account(self, domain):
        """Return the domain's account, registering one when none exists.

        A new account is stored under the domain, its base and its wildcard
        form, and the store is saved before the account is returned.

        Returns:
            tuple[DelegationAccount, bool]: The account and whether it was
                newly registered.

        Raises:
            RegistrationFailure: Registration failed or the account could
                not be persisted.
        """
        account = self.find_account(domain)
        if account is not None:
            return account, False

        logger.info(f"No acme-dns account found for {domain}, registering a new one")
        account = self.client.register(self.allow_from)

        base = get_base_domain(domain)
        keys = list(dict.fromkeys((domain, base, WILDCARD_PREFIX + base)))
        for key in keys:
            self.store.set(key, account)
        try:
            self.store.save_all()
        except AccountStoreError as e:
            for key in keys:
                self.store.remove(key)
            raise RegistrationFailure(f"Registered {domain} but could not save the account store: {e}") from e

        logger.info(f"Registered acme-dns account for {domain}: {account.fulldomain}")
        return account, True
