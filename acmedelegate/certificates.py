# methods for ACME (Let's Encrypt) orders validated through acme-dns

import datetime
import json
import logging
import os
from urllib.parse import urlparse

from acme import challenges, crypto_util
from acme import errors, messages
from acme.client import ClientNetwork, ClientV2
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
import josepy
from OpenSSL import crypto
from OpenSSL.SSL import FILETYPE_PEM

from acmedelegate.config import ManagerConfig
from acmedelegate.delegation import DelegationManager
from acmedelegate.errors import CorruptState, IssuanceFailure
from acmedelegate.helpers import jitter_sleep
from acmedelegate.state import CertificateRecord, certificate_paths, save_certificate_record

logger = logging.getLogger(__name__)

USER_AGENT = 'acmedelegate'
DIR_PERMISSIONS = 0o750
PRIVATE_KEY_PERMISSIONS = 0o600
CERTIFICATE_PERMISSIONS = 0o644
PEM_END_CERTIFICATE = b'-----END CERTIFICATE-----'

INIT = 'init'
RENEW = 'renew'


class CertificateManager:

    def __init__(self, config: ManagerConfig, delegation: DelegationManager):
        """Initialize the certificate manager.

        Args:
            config (ManagerConfig): Run configuration (ACME directory, email,
                storage path, timeouts, default key type).
            delegation (DelegationManager): Source of the acme-dns accounts
                used to publish DNS-01 validation values.

        Returns:
            None
        """
        self.directory_url = config.acme_directory_url
        self.email = config.acme_email
        self.storage_path = config.storage_path
        self.certificates_dir = config.certificates_dir
        self.default_key_type = config.default_key_type
        self.challenge_timeout = config.challenge_timeout
        self.http_timeout = config.http_timeout
        self.propagation_wait = config.propagation_wait
        self.delegation = delegation

    def obtain_or_renew(self, action, name, domains, key_type=None):
        """Issue a new certificate or renew an existing one.

        Orchestrates the full ACME flow: loads or registers the ACME account,
        builds a CSR (reusing the stored private key on renewal), opens an
        order, publishes each DNS-01 validation through acme-dns, finalizes the
        order and persists the resulting files and metadata.

        Args:
            action (str): `'init'` or `'renew'`.
            name (str): Certificate name used for files and metadata.
            domains (Sequence[str]): Domains to cover; the first is primary.
            key_type (str | None): Key type; falls back to the configured default.

        Returns:
            CertificateRecord: State of the freshly issued certificate.

        Raises:
            CorruptState: `renew` was requested but the stored key is unusable.
            IssuanceFailure: Any ACME, acme-dns or storage step failed.
        """
        if action not in (INIT, RENEW):
            raise IssuanceFailure(f"Unsupported action {action!r} for {name}")
        key_type = key_type or self.default_key_type
        logger.info(f"Requesting certificate {name} ({action}) for {', '.join(domains)} with key type {key_type}")

        pkey_pem = None
        if action == RENEW:
            pkey_pem = self._existing_key(name)
            stored_key_type = _key_type_of(pkey_pem, name)
            if stored_key_type != key_type:
                logger.warning(f"Renewing {name} with its stored {stored_key_type} key; "
                               f"requested key type {key_type} applies only to a new certificate")
            key_type = stored_key_type
        try:
            client_acme = self._acme_client()
            pkey_pem, csr_pem = self._new_csr(domains, key_type, pkey_pem)
            order_object = client_acme.new_order(csr_pem)
            dns_data = self._prepare_dns_challenges(client_acme, order_object)
            self._update_dns(dns_data)
            fullchain_pem = self._finalize_acme_order(client_acme, order_object, dns_data, name)
            return self._store_cert_materials(name, domains, key_type, pkey_pem, fullchain_pem)
        except IssuanceFailure:
            raise
        except Exception as e:
            logger.exception(f"Unexpected error requesting certificate {name}: {e}")
            raise IssuanceFailure(f"Unexpected error requesting certificate {name}: {e}") from e

    def _account_dir(self):
        host = urlparse(self.directory_url).netloc
        return os.path.join(self.storage_path, 'accounts', host, self.email)

    def _acme_client(self):
        """Build an ACME v2 client for the configured account.

        Loads (or creates) the account key, fetches the directory and either
        reuses the stored registration or registers with the terms of service
        agreed, storing the result for later runs.

        Returns:
            acme.client.ClientV2: Client bound to the registered account.
        """
        account_key = self._load_or_create_account_key()
        regr = self._load_registration()
        net = ClientNetwork(account_key, account=regr, user_agent=USER_AGENT, timeout=self.http_timeout)
        directory = messages.Directory.from_json(net.get(self.directory_url).json())
        client_acme = ClientV2(directory, net)

        if regr is None:
            logger.info("No existing ACME registration found. Registering...")
            new_reg = messages.NewRegistration.from_data(email=self.email, terms_of_service_agreed=True)
            try:
                regr = client_acme.new_account(new_reg)
            except errors.ConflictError as e:
                logger.info(f"ACME account key already registered at {e.location}")
                regr = messages.RegistrationResource(uri=e.location, body=messages.Registration())
                client_acme.net.account = regr
                regr = client_acme.query_registration(regr)
            self._save_registration(regr)
        else:
            logger.info("Using existing ACME registration.")
        return client_acme

    def _load_or_create_account_key(self):
        keys_dir = os.path.join(self._account_dir(), 'keys')
        key_path = os.path.join(keys_dir, f"{self.email}.key")
        if os.path.exists(key_path):
            logger.info(f"Loading existing ACME account key from {key_path}")
            with open(key_path, 'r', encoding='utf-8') as f:
                return josepy.JWKRSA.fields_from_json(json.load(f))

        logger.info("Generating new ACME account key")
        account_key = josepy.JWKRSA(key=rsa.generate_private_key(public_exponent=65537, key_size=2048))
        os.makedirs(keys_dir, mode=DIR_PERMISSIONS, exist_ok=True)
        _write_file(key_path, json.dumps(account_key.fields_to_partial_json()).encode('utf-8'), PRIVATE_KEY_PERMISSIONS)
        logger.info(f"Saved new ACME account key to {key_path}")
        return account_key

    def _load_registration(self):
        path = os.path.join(self._account_dir(), 'account.json')
        if not os.path.exists(path):
            return None
        logger.info(f"Loading existing ACME registration from {path}")
        with open(path, 'r', encoding='utf-8') as f:
            return messages.RegistrationResource.json_loads(f.read())

    def _save_registration(self, regr):
        path = os.path.join(self._account_dir(), 'account.json')
        os.makedirs(os.path.dirname(path), mode=DIR_PERMISSIONS, exist_ok=True)
        _write_file(path, regr.json_dumps_pretty().encode('utf-8'), PRIVATE_KEY_PERMISSIONS)
        logger.info(f"Saved ACME registration to {path}")

    def _existing_key(self, name):
        _, key_path, _ = certificate_paths(self.certificates_dir, name)
        try:
            with open(key_path, 'rb') as f:
                pkey_pem = f.read()
        except OSError as e:
            raise CorruptState(f"Cannot renew {name}: private key {key_path} is unreadable: {e}") from e
        if not pkey_pem.strip():
            raise CorruptState(f"Cannot renew {name}: private key {key_path} is empty")
        return pkey_pem

    def _new_csr(self, domains, key_type, pkey_pem=None):
        """Create a CSR for the domains, generating a key of `key_type` if none is given.

        Returns:
            tuple[bytes, bytes]: `(pkey_pem, csr_pem)`.
        """
        if pkey_pem is None:
            pkey_pem = _generate_private_key(key_type)
        csr_pem = crypto_util.make_csr(pkey_pem, list(domains))
        return pkey_pem, csr_pem

    def _prepare_dns_challenges(self, client_acme, order_object):
        """Collect the DNS-01 challenges of an order with their validation values.

        Returns:
            list[tuple]: `(domain, challenge_body, response, validation)` per
                authorization; wildcard authorizations carry the base domain.

        Raises:
            IssuanceFailure: The CA did not offer DNS-01 for an authorization.
        """
        logger.info("Requesting DNS challenges")
        dns_data = []
        for authz in order_object.authorizations:
            domain = authz.body.identifier.value
            challbs = [c for c in authz.body.challenges if isinstance(c.chall, challenges.DNS01)]
            if not challbs:
                raise IssuanceFailure(f"DNS-01 challenge was not offered by the CA for {domain}")
            response, validation = challbs[0].response_and_validation(client_acme.net.key)
            dns_data.append((domain, challbs[0], response, validation))
        return dns_data

    def _update_dns(self, dns_data):
        """Publish every validation value on the matching acme-dns subdomain and wait for propagation."""
        for domain, _, _, validation in dns_data:
            account = self.delegation.find_account(domain)
            if account is None:
                raise IssuanceFailure(f"No acme-dns account for {domain}")
            logger.info(f"Publishing DNS-01 validation for {domain} on {account.fulldomain}")
            self.delegation.client.update_txt(account, validation)
        if dns_data:
            jitter_sleep(*self.propagation_wait, reason="DNS propagation")

    def _finalize_acme_order(self, client_acme, order_object, dns_data, name):
        """Answer the prepared challenges and poll the order until it is finalized.

        Returns:
            bytes: The PEM full chain.

        Raises:
            IssuanceFailure: On validation errors or when `challenge_timeout`
                elapses.
        """
        try:
            for _, challb, response, _ in dns_data:
                logger.info(f"Answering challenge: {challb.chall.typ} for {challb.uri}")
                client_acme.answer_challenge(challb, response)
            deadline = datetime.datetime.now() + datetime.timedelta(seconds=self.challenge_timeout)
            logger.info("Attempting acme finalize order to validate auth")
            finalized_order = client_acme.poll_and_finalize(order_object, deadline)
        except errors.ValidationError as e:
            logger.exception(f"Validation error on {name}: {e.failed_authzrs}")
            raise IssuanceFailure(f"Error validating domains of {name}. See logs for details.") from e
        except errors.TimeoutError as e:
            raise IssuanceFailure(f"Timed out finalizing order for {name} after {self.challenge_timeout}s") from e
        logger.info("LE Auth valid")
        fullchain = finalized_order.fullchain_pem
        return fullchain.encode('utf-8') if isinstance(fullchain, str) else fullchain

    def _store_cert_materials(self, name, domains, key_type, pkey_pem, fullchain_pem):
        """Write certificate, key and issuer chain files and record the metadata row.

        Returns:
            CertificateRecord: The stored certificate.
        """
        cert_path, key_path, issuer_path = certificate_paths(self.certificates_dir, name)
        leaf_pem, issuer_pem = _split_fullchain(fullchain_pem)
        x509 = crypto.load_certificate(FILETYPE_PEM, leaf_pem)
        not_after = datetime.datetime.strptime(x509.get_notAfter().decode('utf-8'), '%Y%m%d%H%M%S%z')
        not_before = datetime.datetime.strptime(x509.get_notBefore().decode('utf-8'), '%Y%m%d%H%M%S%z')

        os.makedirs(self.certificates_dir, mode=DIR_PERMISSIONS, exist_ok=True)
        _write_file(key_path, pkey_pem, PRIVATE_KEY_PERMISSIONS)
        _write_file(cert_path, fullchain_pem, CERTIFICATE_PERMISSIONS)
        logger.info(f"Saved certificate to {cert_path} and private key to {key_path}")
        if issuer_pem:
            _write_file(issuer_path, issuer_pem, CERTIFICATE_PERMISSIONS)
        else:
            issuer_path = None

        save_certificate_record(name, list(domains), key_type, cert_path, key_path, issuer_path, not_before, not_after)
        return CertificateRecord(
            name=name,
            primary_domain=domains[0],
            domains=tuple(domains),
            not_after=not_after,
            not_before=not_before,
            key_type=key_type,
            cert_path=cert_path,
            key_path=key_path,
        )


def _generate_private_key(key_type):
    if key_type.startswith('rsa'):
        pkey = crypto.PKey()
        pkey.generate_key(crypto.TYPE_RSA, int(key_type[3:]))
        return crypto.dump_privatekey(FILETYPE_PEM, pkey)
    curve = {'ec256': ec.SECP256R1, 'ec384': ec.SECP384R1}.get(key_type)
    if curve is None:
        raise IssuanceFailure(f"Unsupported key type {key_type!r}")
    key = ec.generate_private_key(curve())
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )

def _key_type_of(pkey_pem, name):
    """Return the key type name (`rsa2048`, `ec256`, ...) of a PEM private key."""
    try:
        key = serialization.load_pem_private_key(pkey_pem, password=None)
    except (ValueError, TypeError) as e:
        raise CorruptState(f"Cannot renew {name}: stored private key is not a usable PEM key: {e}") from e
    if isinstance(key, rsa.RSAPrivateKey):
        return f"rsa{key.key_size}"
    if isinstance(key, ec.EllipticCurvePrivateKey):
        curve = {'secp256r1': 'ec256', 'secp384r1': 'ec384'}.get(key.curve.name)
        if curve:
            return curve
    raise CorruptState(f"Cannot renew {name}: unsupported stored key type {type(key).__name__}")

def _split_fullchain(fullchain_pem):
    """Split a PEM full chain into `(leaf, issuers)`."""
    end = fullchain_pem.find(PEM_END_CERTIFICATE)
    if end < 0:
        raise IssuanceFailure("Finalized order did not return a PEM certificate")
    end += len(PEM_END_CERTIFICATE)
    issuers = fullchain_pem[end:].strip()
    return fullchain_pem[:end] + b'\n', issuers + b'\n' if issuers else b''

def _write_file(path, data, mode):
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with os.fdopen(fd, 'wb') as f:
        f.write(data)
    os.chmod(path, mode)
