# Parsing of certificate request arguments: [name@]domain[,domain...][/key_type=TYPE]

from dataclasses import dataclass
import re
from typing import Iterable, List, Optional, Tuple

from acmedelegate.config import KEY_TYPES
from acmedelegate.errors import InvalidArgument

ACME_CHALLENGE_PREFIX = '_acme-challenge'
WILDCARD_PREFIX = '*.'

_LABEL_RE = re.compile(r'^[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?$')


@dataclass(frozen=True)
class CertRequest:
    name: str
    domains: Tuple[str, ...]
    key_type: Optional[str] = None

    @property
    def primary_domain(self):
        return self.domains[0]


def get_base_domain(domain):
    """Strip a leading `*.` label so wildcard and apex share one name."""
    if domain.startswith(WILDCARD_PREFIX):
        return domain[len(WILDCARD_PREFIX):]
    return domain

def is_wildcard(domain):
    return domain.startswith(WILDCARD_PREFIX)

def challenge_name(domain):
    """Return the `_acme-challenge.<base>` name that must CNAME to the delegated service."""
    return f"{ACME_CHALLENGE_PREFIX}.{get_base_domain(domain)}"

def is_valid_dns_name(domain):
    """Check a domain against RFC 1035 label rules.

    Labels hold letters, digits and hyphens, never start or end with a
    hyphen, and are at most 63 characters; the whole name is at most 253
    characters with at least two labels. A single leading `*.` wildcard label
    is allowed, no other wildcard is.
    """
    if not domain:
        return False
    if is_wildcard(domain):
        domain = get_base_domain(domain)
        if '*' in domain:
            return False
    if len(domain) > 253:
        return False
    labels = domain.split('.')
    if len(labels) < 2:
        return False
    return all(_LABEL_RE.match(label) for label in labels)

def parse_cert_arg(arg):
    """Parse one certificate request argument.

    Accepts `name@domain1,domain2/key_type=TYPE` or the shorthand
    `domain[/key_type=TYPE]`, where the domain doubles as the certificate
    name. Domains are lower-cased; empty list entries are ignored.

    Args:
        arg (str): The raw request string.

    Returns:
        CertRequest: The normalized request.

    Raises:
        InvalidArgument: On a `/` before the `@`, an empty name or domain
            list, a name containing a path separator, an invalid domain, or
            an unknown key type.
    """
    arg = arg.strip()
    at_index = arg.find('@')
    slash_index = arg.find('/')
    if slash_index >= 0 and 0 <= at_index and slash_index < at_index:
        raise InvalidArgument(f"Invalid request {arg!r}: unexpected '/' in certificate name part")

    domain_part, _, params = arg.partition('/')
    key_type = None
    for param in params.split('/') if params else []:
        key, _, value = param.partition('=')
        if key == 'key_type':
            if value not in KEY_TYPES:
                raise InvalidArgument(f"Invalid key_type {value!r} in {arg!r}: expected one of {', '.join(KEY_TYPES)}")
            key_type = value
        else:
            raise InvalidArgument(f"Unknown parameter {param!r} in {arg!r}")

    if '@' in domain_part:
        name, _, raw_domains = domain_part.partition('@')
        if not name or not raw_domains:
            raise InvalidArgument(f"Invalid request {arg!r}: expected 'cert-name@domain1,domain2,...'")
    else:
        name = raw_domains = domain_part

    if not name:
        raise InvalidArgument("Empty certificate request")
    if '\\' in name:
        raise InvalidArgument(f"Invalid certificate name {name!r}: must not contain '/' or '\\'")

    domains = []
    for d in raw_domains.split(','):
        d = d.strip().lower()
        if not d:
            continue
        if not is_valid_dns_name(d):
            raise InvalidArgument(f"Invalid domain name {d!r}: does not conform to DNS name standards")
        if d not in domains:
            domains.append(d)

    if not domains:
        raise InvalidArgument(f"No valid domains found in {arg!r}")

    return CertRequest(name=name, domains=tuple(domains), key_type=key_type)

def parse_cert_args(args: Iterable[str]) -> List[CertRequest]:
    """Parse a batch of request arguments, rejecting repeated certificate names."""
    requests = []
    seen = set()
    for arg in args:
        req = parse_cert_arg(arg)
        if req.name in seen:
            raise InvalidArgument(f"Duplicate certificate name specified: {req.name!r}")
        seen.add(req.name)
        requests.append(req)
    return requests
