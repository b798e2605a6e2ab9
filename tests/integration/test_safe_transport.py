"""Integration tests for the guarded transport against a local HTTP server."""

import socket
import threading
from collections.abc import Generator
from http.server import BaseHTTPRequestHandler, HTTPServer

import pytest

from safefetch.fetch.cancellation import CancellationToken
from safefetch.fetch.client import HttpFetcher
from safefetch.fetch.config import FetchConfig, SecurityConfig
from safefetch.fetch.dns import ResolvedAddress
from safefetch.fetch.errors import FetchError, FetchErrorKind
from safefetch.fetch.models import FetchRequest
from safefetch.fetch.pipeline import FetchPipeline
from safefetch.fetch.retry import RetryPolicy


pytestmark = pytest.mark.integration


# Loopback is allowed so the local server is reachable; 10.0.0.0/8 stands in
# for the private ranges.
LOOPBACK_ALLOWED = SecurityConfig(
    blocked_hosts=frozenset(),
    blocked_host_suffixes=(),
    blocked_ip_networks=("10.0.0.0/8",),
)


def get_server_url(server: HTTPServer, path: str = "/ok", host: str | None = None) -> str:
    """Get the URL for a test server.

    Args:
        server: The HTTP server instance.
        path: The URL path.
        host: Hostname to use instead of the bound address.

    Returns:
        Complete URL for the server.
    """
    address, port = server.server_address[0], server.server_address[1]
    if isinstance(address, bytes):
        address = address.decode("utf-8")
    return f"http://{host or address}:{port}{path}"


class LocalHandler(BaseHTTPRequestHandler):
    """HTTP handler with a few fixed routes."""

    failures_left: int = 0
    requests_seen: int = 0

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        """Suppress log messages during tests."""

    def do_GET(self) -> None:  # noqa: N802
        """Serve the route named by the path."""
        LocalHandler.requests_seen += 1

        if self.path == "/ok":
            self._send_body(200, b"local content")
        elif self.path == "/host":
            self._send_body(200, (self.headers.get("Host") or "").encode())
        elif self.path == "/big":
            # No Content-Length: the body is delimited by connection close.
            self.send_response(200)
            self.send_header("Content-Type", "text/plain")
            self.end_headers()
            self.wfile.write(b"x" * 3000)
        elif self.path == "/to-private":
            self.send_response(302)
            self.send_header("Location", "http://10.0.0.5/admin")
            self.end_headers()
        elif self.path == "/to-ok":
            self.send_response(301)
            self.send_header("Location", "/ok")
            self.end_headers()
        elif self.path == "/flaky":
            if LocalHandler.failures_left > 0:
                LocalHandler.failures_left -= 1
                self._send_body(503, b"Service Unavailable")
            else:
                self._send_body(200, b"recovered")
        else:
            self._send_body(404, b"not found")

    def _send_body(self, status: int, body: bytes) -> None:
        self.send_response(status)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)


class StaticResolver:
    """Resolver mapping fixed hostnames to fixed addresses."""

    def __init__(self, answers: dict[str, str]) -> None:
        self.answers = answers
        self.lookups: list[str] = []

    def resolve(self, hostname: str) -> list[ResolvedAddress]:
        self.lookups.append(hostname)
        if hostname not in self.answers:
            raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")
        return [ResolvedAddress(self.answers[hostname], 4)]


@pytest.fixture
def server() -> Generator[HTTPServer, None, None]:
    """Run a local HTTP server for the duration of a test."""
    LocalHandler.failures_left = 0
    LocalHandler.requests_seen = 0
    httpd = HTTPServer(("127.0.0.1", 0), LocalHandler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield httpd
    httpd.shutdown()
    httpd.server_close()
    thread.join(timeout=5)


def no_wait(seconds: float, cancel_token: CancellationToken | None) -> bool:
    """Retry waiter that returns immediately."""
    return False


class TestGuardedTransport:
    """Tests for real socket fetches through SafeHTTPTransport."""

    def test_default_policy_blocks_loopback(self, server: HTTPServer) -> None:
        """Test that the default policy never contacts loopback."""
        with FetchPipeline() as pipeline:
            with pytest.raises(FetchError) as exc_info:
                pipeline.execute_fetch(
                    FetchRequest(url=get_server_url(server)), lambda text, url: text
                )

        assert exc_info.value.kind == FetchErrorKind.BLOCKED_IP
        assert LocalHandler.requests_seen == 0

    def test_fetch_through_guarded_transport(self, server: HTTPServer) -> None:
        """Test a plain fetch when loopback is allowed."""
        config = FetchConfig(security=LOOPBACK_ALLOWED)

        with HttpFetcher(config) as fetcher:
            result = fetcher.fetch(get_server_url(server))

        assert result.status_code == 200
        assert result.text == "local content"

    def test_resolved_address_dialed_with_original_host(self, server: HTTPServer) -> None:
        """Test that the vetted IP is dialed while Host keeps the hostname."""
        config = FetchConfig(security=LOOPBACK_ALLOWED)
        resolver = StaticResolver({"app.test": "127.0.0.1"})

        with HttpFetcher(config, resolver=resolver) as fetcher:
            result = fetcher.fetch(get_server_url(server, "/host", host="app.test"))

        port = server.server_address[1]
        assert result.text == f"app.test:{port}"
        assert resolver.lookups == ["app.test"]

    def test_rebinding_to_private_address_blocked(self, server: HTTPServer) -> None:
        """Test that a hostname resolving into a blocked range is refused."""
        config = FetchConfig(security=LOOPBACK_ALLOWED)
        resolver = StaticResolver({"rebind.test": "10.0.0.5"})

        with HttpFetcher(config, resolver=resolver) as fetcher:
            with pytest.raises(FetchError) as exc_info:
                fetcher.fetch(get_server_url(server, host="rebind.test"))

        error = exc_info.value
        assert error.kind == FetchErrorKind.BLOCKED_IP
        assert error.details["hostname"] == "rebind.test"
        assert error.url is not None
        assert LocalHandler.requests_seen == 0

    def test_unresolvable_host(self, server: HTTPServer) -> None:
        """Test that a failed lookup is a network error."""
        config = FetchConfig(security=LOOPBACK_ALLOWED)

        with HttpFetcher(config, resolver=StaticResolver({})) as fetcher:
            with pytest.raises(FetchError) as exc_info:
                fetcher.fetch(get_server_url(server, host="nowhere.test"))

        assert exc_info.value.kind == FetchErrorKind.NETWORK_ERROR

    def test_redirect_into_private_range_blocked(self, server: HTTPServer) -> None:
        """Test that a redirect hop is re-validated."""
        config = FetchConfig(security=LOOPBACK_ALLOWED)

        with HttpFetcher(config) as fetcher:
            with pytest.raises(FetchError) as exc_info:
                fetcher.fetch(get_server_url(server, "/to-private"))

        assert exc_info.value.kind == FetchErrorKind.BLOCKED_IP
        assert LocalHandler.requests_seen == 1

    def test_redirect_followed(self, server: HTTPServer) -> None:
        """Test that a safe redirect is followed to the final URL."""
        config = FetchConfig(security=LOOPBACK_ALLOWED)

        with HttpFetcher(config) as fetcher:
            result = fetcher.fetch(get_server_url(server, "/to-ok"))

        assert result.text == "local content"
        assert result.url == get_server_url(server, "/ok")

    def test_close_delimited_body_over_limit(self, server: HTTPServer) -> None:
        """Test that a body without Content-Length is cut at the budget."""
        config = FetchConfig(
            security=LOOPBACK_ALLOWED,
            max_content_length=1000,
            chunk_size=512,
        )

        with HttpFetcher(config) as fetcher:
            with pytest.raises(FetchError) as exc_info:
                fetcher.fetch(get_server_url(server, "/big"))

        assert exc_info.value.kind == FetchErrorKind.SIZE_EXCEEDED


class TestPipelineOverSocket:
    """Tests for the full pipeline against the local server."""

    def test_retries_then_caches(self, server: HTTPServer) -> None:
        """Test that 503s are retried and the recovery is cached."""
        LocalHandler.failures_left = 2
        config = FetchConfig(security=LOOPBACK_ALLOWED)
        retry = RetryPolicy(config.retry, wait=no_wait)
        url = get_server_url(server, "/flaky")

        with FetchPipeline(config, retry_policy=retry) as pipeline:
            first = pipeline.execute_fetch(FetchRequest(url=url), lambda text, _: text)
            second = pipeline.execute_fetch(FetchRequest(url=url), lambda text, _: text)

        assert first.data == "recovered"
        assert first.from_cache is False
        assert second.from_cache is True
        assert LocalHandler.requests_seen == 3
