import ipaddress
import logging
import socket

import dns.exception
import dns.resolver

from acmedelegate.dns import ResolverBase
from acmedelegate.errors import ConfigurationError, DNSLookupFailure, RecordNotFound

logger = logging.getLogger(__name__)

DEFAULT_DNS_PORT = 53


def parse_resolver_address(address):
    """Split `host[:port]` (IPv6 as `[addr]:port`) into `(host, port)`; port defaults to 53.

    Raises:
        ConfigurationError: On an empty host or a port that is not an
            integer between 1 and 65535.
    """
    address = address.strip()
    if address.startswith('['):
        host, _, rest = address[1:].partition(']')
        port = rest.lstrip(':')
    elif address.count(':') == 1:
        host, _, port = address.partition(':')
    else:
        host, port = address, ''
    if not host:
        raise ConfigurationError(f"DNS_RESOLVER {address!r} has no host")
    if not port:
        return host, DEFAULT_DNS_PORT
    try:
        port_number = int(port)
    except ValueError:
        raise ConfigurationError(f"DNS_RESOLVER {address!r} has a non-numeric port {port!r}") from None
    if not 0 < port_number < 65536:
        raise ConfigurationError(f"DNS_RESOLVER {address!r} port must be between 1 and 65535")
    return host, port_number


def resolve_nameserver_host(host, port=DEFAULT_DNS_PORT):
    """Return `host` as an IP address, looking it up when it is a hostname.

    Raises:
        ConfigurationError: When the hostname does not resolve.
    """
    try:
        ipaddress.ip_address(host)
        return host
    except ValueError:
        pass
    try:
        infos = socket.getaddrinfo(host, port, proto=socket.IPPROTO_UDP)
    except socket.gaierror as e:
        raise ConfigurationError(f"DNS_RESOLVER host {host!r} does not resolve: {e}") from e
    address = infos[0][4][0]
    logger.info(f"Resolved DNS_RESOLVER host {host} to {address}")
    return address


class DNSPythonResolver(ResolverBase):
    """CNAME lookups through dnspython, against the system or a configured nameserver."""

    def __init__(self, nameserver=None, port=DEFAULT_DNS_PORT, timeout=15.0):
        """Build the underlying dnspython resolver.

        Args:
            nameserver (str | None): IP address of the resolver to query. When
                `None`, the system configuration (`/etc/resolv.conf`) is used.
            port (int): Port of `nameserver`.
            timeout (float): Overall lifetime of one lookup in seconds.
        """
        self.nameserver = nameserver
        self.port = port
        if nameserver:
            self.resolver = dns.resolver.Resolver(configure=False)
            self.resolver.port = port
            self.resolver.nameservers = [nameserver]
        else:
            self.resolver = dns.resolver.Resolver()
        self.resolver.lifetime = timeout

    @classmethod
    def from_address(cls, address=None, timeout=15.0):
        """Create a resolver for an optional `host[:port]` override."""
        if not address:
            return cls(timeout=timeout)
        host, port = parse_resolver_address(address)
        return cls(nameserver=resolve_nameserver_host(host, port), port=port, timeout=timeout)

    def describe(self):
        if self.nameserver:
            return f"configured DNS server {self.nameserver}:{self.port}"
        return "system resolver"

    def resolve_cname(self, name):
        try:
            answer = self.resolver.resolve(name, 'CNAME')
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer) as e:
            raise RecordNotFound(f"No CNAME record for {name} ({self.describe()})") from e
        except dns.exception.Timeout as e:
            raise DNSLookupFailure(f"Timeout looking up CNAME for {name} via {self.describe()}") from e
        except dns.exception.DNSException as e:
            raise DNSLookupFailure(f"DNS lookup error for {name} via {self.describe()}: {e}") from e
        return answer[0].target.to_text().rstrip('.')
