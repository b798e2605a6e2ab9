"""Connection-time DNS checks.

Validation only sees the hostname; the address actually dialed is decided
later by DNS. DnsSafetyResolver re-checks every resolved address right
before connecting so a hostname that resolves to a private address at
connection time (DNS rebinding) is refused.
"""

import socket
from dataclasses import dataclass
from typing import Protocol

import structlog

from safefetch.fetch.errors import FetchError, FetchErrorKind, blocked_ip
from safefetch.fetch.url_validator import UrlSafetyValidator


logger = structlog.get_logger()

_FAMILIES = {socket.AF_INET: 4, socket.AF_INET6: 6}


@dataclass(frozen=True)
class ResolvedAddress:
    """A single DNS answer.

    Attributes:
        address: IP address text.
        family: 4 or 6 (anything else is rejected).
    """

    address: str
    family: int


class Resolver(Protocol):
    """Protocol for hostname resolution.

    Allows injecting fake resolvers to drive rebinding tests.
    """

    def resolve(self, hostname: str) -> list[ResolvedAddress]:
        """Resolve a hostname to candidate addresses.

        Args:
            hostname: Hostname or IP literal.

        Returns:
            Candidate addresses in preference order.

        Raises:
            OSError: If resolution fails.
        """
        ...


class SystemResolver:
    """Resolver backed by the operating system (getaddrinfo)."""

    def resolve(self, hostname: str) -> list[ResolvedAddress]:
        """Resolve a hostname with getaddrinfo, preserving order."""
        infos = socket.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
        seen: set[str] = set()
        results: list[ResolvedAddress] = []
        for family, _, _, _, sockaddr in infos:
            address = str(sockaddr[0])
            if address in seen:
                continue
            seen.add(address)
            results.append(ResolvedAddress(address, _FAMILIES.get(family, 0)))
        return results


class DnsSafetyResolver:
    """Resolves hostnames and fails closed on any unsafe answer."""

    def __init__(
        self,
        resolver: Resolver | None = None,
        validator: UrlSafetyValidator | None = None,
    ) -> None:
        """Initialize the DNS safety resolver.

        Args:
            resolver: Underlying resolver. Defaults to SystemResolver.
            validator: Validator providing the blocked IP ranges.
        """
        self._resolver = resolver or SystemResolver()
        self._validator = validator or UrlSafetyValidator()
        self._log = logger.bind(component="dns")

    def resolve_all(self, hostname: str) -> list[ResolvedAddress]:
        """Resolve a hostname and vet every candidate.

        Args:
            hostname: Hostname to resolve.

        Returns:
            All candidates in resolver order.

        Raises:
            FetchError: NETWORK_ERROR on lookup failure or empty answer,
                UNKNOWN on an unsupported address family, BLOCKED_IP if any
                candidate is in a blocked range.
        """
        try:
            addresses = list(self._resolver.resolve(hostname))
        except OSError as e:
            raise FetchError(
                FetchErrorKind.NETWORK_ERROR,
                f"DNS lookup failed for {hostname}: {e}",
                details={"hostname": hostname},
            ) from e

        if not addresses:
            raise FetchError(
                FetchErrorKind.NETWORK_ERROR,
                f"No DNS results returned for {hostname}",
                details={"hostname": hostname},
            )

        for candidate in addresses:
            if candidate.family not in (4, 6):
                raise FetchError(
                    FetchErrorKind.UNKNOWN,
                    f"Invalid address family returned for {hostname}",
                    details={"hostname": hostname, "family": candidate.family},
                )

        for candidate in addresses:
            if self._validator.is_blocked_ip(candidate.address):
                self._log.warning(
                    "dns_blocked",
                    hostname=hostname,
                    address=candidate.address,
                    candidates=len(addresses),
                )
                error = blocked_ip(candidate.address)
                error.details["hostname"] = hostname
                raise error

        return addresses

    def resolve(self, hostname: str) -> ResolvedAddress:
        """Resolve a hostname and return the first vetted candidate."""
        return self.resolve_all(hostname)[0]
