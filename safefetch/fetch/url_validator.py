"""URL safety validation and normalization.

Rejects URLs that could make the engine reach internal infrastructure
(SSRF) and produces a canonical href so cache keys are stable across
equivalent spellings of the same URL.
"""

import ipaddress
import socket
from urllib.parse import urlsplit, urlunsplit

from safefetch.fetch.config import SecurityConfig
from safefetch.fetch.constants import ALLOWED_SCHEMES, DEFAULT_PORTS
from safefetch.fetch.errors import blocked_host, blocked_ip, invalid_url


IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


def parse_ip_literal(candidate: str) -> IPAddress | None:
    """Parse an IP literal, including legacy IPv4 spellings.

    Accepts standard IPv4/IPv6 text as well as the shorthand forms that
    resolvers treat as addresses (`127.1`, `0x7f000001`, `2130706433`).

    Args:
        candidate: Hostname without brackets.

    Returns:
        Parsed address, or None if the candidate is not an IP literal.
    """
    value = candidate.strip().lower()
    if not value:
        return None
    try:
        return ipaddress.ip_address(value)
    except ValueError:
        pass

    if not all(c in "0123456789abcdefx." for c in value):
        return None
    try:
        return ipaddress.IPv4Address(socket.inet_aton(value))
    except OSError:
        return None


# Prefixes whose low 32 bits carry an IPv4 address.
_NAT64_NETWORKS = (
    ipaddress.IPv6Network("64:ff9b::/96"),
    ipaddress.IPv6Network("::/96"),
)


def embedded_ipv4(address: ipaddress.IPv6Address) -> ipaddress.IPv4Address | None:
    """Extract the IPv4 address carried inside an IPv6 address.

    Handles NAT64 (`64:ff9b::/96`), IPv4-compatible (`::/96`), and 6to4
    (`2002::/16`) forms.

    Args:
        address: IPv6 address.

    Returns:
        The embedded IPv4 address, or None for other IPv6 addresses.
    """
    if address.sixtofour is not None:
        return address.sixtofour
    if any(address in network for network in _NAT64_NETWORKS):
        return ipaddress.IPv4Address(int(address) & 0xFFFFFFFF)
    return None


class UrlSafetyValidator:
    """Validates and normalizes caller-supplied URLs."""

    def __init__(self, security: SecurityConfig | None = None) -> None:
        """Initialize the validator.

        Args:
            security: SSRF policy. Defaults to SecurityConfig().
        """
        self._security = security or SecurityConfig()
        self._networks = [
            ipaddress.ip_network(network, strict=False)
            for network in self._security.blocked_ip_networks
        ]

    @property
    def security(self) -> SecurityConfig:
        """Get the security policy."""
        return self._security

    def is_blocked_ip(self, candidate: str | IPAddress) -> bool:
        """Check if an address falls inside a blocked network.

        IPv4-mapped IPv6 addresses are checked as their IPv4 form. IPv6
        addresses that embed an IPv4 address (NAT64, 6to4, IPv4-compatible)
        are blocked when either form is.

        Args:
            candidate: Address text or parsed address.

        Returns:
            True if the address must not be contacted.
        """
        if isinstance(candidate, str):
            address = parse_ip_literal(candidate.split("%", 1)[0])
            if address is None:
                return False
        else:
            address = candidate

        if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
            address = address.ipv4_mapped

        if self._in_blocked_network(address):
            return True

        if isinstance(address, ipaddress.IPv6Address):
            embedded = embedded_ipv4(address)
            if embedded is not None:
                return self._in_blocked_network(embedded)
        return False

    def _in_blocked_network(self, address: IPAddress) -> bool:
        return any(
            address.version == network.version and address in network
            for network in self._networks
        )

    def is_blocked_hostname(self, hostname: str) -> bool:
        """Check a hostname against the blocklist and internal suffixes."""
        if hostname in self._security.blocked_hosts:
            return True
        return any(
            hostname.endswith(suffix) for suffix in self._security.blocked_host_suffixes
        )

    def validate(self, raw: str) -> str:
        """Validate a URL and return its canonical form.

        Args:
            raw: Caller-supplied URL.

        Returns:
            Canonical href with lowercase scheme/host and default port removed.

        Raises:
            FetchError: INVALID_URL, BLOCKED_HOST, or BLOCKED_IP.
        """
        if not isinstance(raw, str) or not raw.strip():
            raise invalid_url("URL is required")

        trimmed = raw.strip()
        try:
            parts = urlsplit(trimmed)
            port = parts.port
        except ValueError as e:
            raise invalid_url(f"Invalid URL format: {e}") from e

        scheme = parts.scheme.lower()
        if not scheme or not parts.netloc:
            raise invalid_url("Invalid URL format: URL must be absolute")

        if scheme not in ALLOWED_SCHEMES:
            raise invalid_url(
                f"Invalid protocol: {scheme}:. Only http: and https: are allowed"
            )

        if parts.username is not None or parts.password is not None:
            raise invalid_url("URLs with embedded credentials are not allowed")

        max_length = self._security.max_url_length
        if len(trimmed) > max_length:
            raise invalid_url(f"URL exceeds maximum length of {max_length} characters")

        hostname = self._normalize_hostname(parts.hostname or "")

        if self.is_blocked_hostname(hostname):
            raise blocked_host(hostname)

        address = parse_ip_literal(hostname.split("%", 1)[0])
        if address is not None:
            if self.is_blocked_ip(address):
                raise blocked_ip(str(address))
            hostname = str(address)

        host = f"[{hostname}]" if ":" in hostname else hostname
        netloc = host if port in (None, DEFAULT_PORTS[scheme]) else f"{host}:{port}"
        path = parts.path or "/"
        return urlunsplit((scheme, netloc, path, parts.query, parts.fragment))

    def _normalize_hostname(self, hostname: str) -> str:
        hostname = hostname.lower().rstrip(".")
        if not hostname:
            raise invalid_url("URL must have a valid hostname")
        if any(c.isspace() for c in hostname):
            raise invalid_url("URL must have a valid hostname")
        if hostname.isascii():
            return hostname
        try:
            return hostname.encode("idna").decode("ascii")
        except UnicodeError as e:
            raise invalid_url(f"Invalid hostname: {hostname}") from e


def validate_url(url: str, security: SecurityConfig | None = None) -> str:
    """Validate and normalize a URL with the given (or default) policy.

    Args:
        url: URL to validate.
        security: Optional SSRF policy.

    Returns:
        Canonical URL.

    Raises:
        FetchError: INVALID_URL, BLOCKED_HOST, or BLOCKED_IP.
    """
    return UrlSafetyValidator(security).validate(url)
