"""httpx transport that vets DNS answers at connection time."""

from collections.abc import Iterable

import httpcore
import httpx
import structlog

from safefetch.fetch.dns import DnsSafetyResolver


logger = structlog.get_logger()


class GuardedNetworkBackend(httpcore.NetworkBackend):
    """Network backend that only dials addresses vetted by DnsSafetyResolver.

    TLS is started by httpcore on the returned stream with the original
    hostname, so SNI and certificate verification are unaffected by dialing
    the resolved IP directly.
    """

    def __init__(
        self,
        dns_guard: DnsSafetyResolver,
        backend: httpcore.NetworkBackend | None = None,
    ) -> None:
        """Initialize the guarded backend.

        Args:
            dns_guard: Resolver that rejects unsafe answers.
            backend: Backend that performs the actual socket work.
        """
        self._dns_guard = dns_guard
        self._backend = backend or httpcore.SyncBackend()
        self._log = logger.bind(component="transport")

    def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: float | None = None,
        local_address: str | None = None,
        socket_options: Iterable[httpcore.SOCKET_OPTION] | None = None,
    ) -> httpcore.NetworkStream:
        """Resolve, vet, and connect to the first reachable address."""
        candidates = self._dns_guard.resolve_all(host.strip("[]"))
        options = list(socket_options) if socket_options is not None else None

        last_error: Exception = httpcore.ConnectError(
            f"No address could be connected for {host}"
        )
        for candidate in candidates:
            try:
                return self._backend.connect_tcp(
                    candidate.address,
                    port,
                    timeout=timeout,
                    local_address=local_address,
                    socket_options=options,
                )
            except (httpcore.ConnectError, httpcore.ConnectTimeout) as e:
                self._log.debug(
                    "connect_candidate_failed",
                    host=host,
                    address=candidate.address,
                    error=str(e),
                )
                last_error = e

        raise last_error

    def connect_unix_socket(
        self,
        path: str,
        timeout: float | None = None,
        socket_options: Iterable[httpcore.SOCKET_OPTION] | None = None,
    ) -> httpcore.NetworkStream:
        """Refuse Unix socket connections."""
        msg = f"Unix socket connections are not permitted: {path}"
        raise httpcore.ConnectError(msg)

    def sleep(self, seconds: float) -> None:
        """Delegate sleeping to the wrapped backend."""
        self._backend.sleep(seconds)


class SafeHTTPTransport(httpx.HTTPTransport):
    """HTTPTransport whose connection pool dials through GuardedNetworkBackend.

    httpx's own request/response mapping and exception translation are kept;
    only the pool is rebuilt with the guarded backend.
    """

    def __init__(
        self,
        dns_guard: DnsSafetyResolver,
        verify: bool = True,
        limits: httpx.Limits | None = None,
        backend: httpcore.NetworkBackend | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            dns_guard: Resolver that rejects unsafe answers.
            verify: Verify TLS certificates.
            limits: Connection pool limits.
            backend: Socket backend wrapped by the guard.
        """
        limits = limits or httpx.Limits(max_connections=100, max_keepalive_connections=20)
        super().__init__(verify=verify, limits=limits, trust_env=False)
        self._pool = httpcore.ConnectionPool(
            ssl_context=httpx.create_ssl_context(verify=verify, trust_env=False),
            max_connections=limits.max_connections,
            max_keepalive_connections=limits.max_keepalive_connections,
            keepalive_expiry=limits.keepalive_expiry,
            network_backend=GuardedNetworkBackend(dns_guard, backend),
        )
