"""Main HTTP(S) server.

Routes:
- GET /healthz: 200 if the repo has catalogs/all, else 500
- GET, HEAD /repo/pkgs/*: 307 redirect to a signed CloudFront URL
- GET /repo/*: static files from the repo directory
"""

import logging
import signal
import ssl
import sys
import threading
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional
from urllib.parse import urlsplit

from munkisrv.config import Config
from munkisrv.errors import ConfigError, SignError
from munkisrv.keys import decode_private_key
from munkisrv.repo import MunkiRepo, REPO_PREFIX, handle_repo_request
from munkisrv.signing import PKGS_PREFIX, PackageRedirector, URLSigner
from munkisrv.tls import TLSContext, build_tls_context, validate_tls_config

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8080
DEFAULT_BIND = "0.0.0.0"
HEALTH_PATH = "/healthz"
SHUTDOWN_TIMEOUT = 10
SIGNING_KEY_LABEL = "URL signer private key"


@dataclass(frozen=True)
class MunkiApp:
    """Request-independent state shared by all handlers (read-only)."""

    repo: MunkiRepo
    redirector: PackageRedirector
    healthy: bool


class MunkiHTTPServer(ThreadingHTTPServer):
    """Threading HTTP server carrying the app state for its handlers.

    Tracks in-flight requests so shutdown can wait for them to finish.
    """

    daemon_threads = True

    def __init__(self, server_address, handler_class, app: MunkiApp):
        self.app = app
        self._active = 0
        self._idle = threading.Condition()
        super().__init__(server_address, handler_class)

    def process_request(self, request, client_address):
        with self._idle:
            self._active += 1
        try:
            super().process_request(request, client_address)
        except Exception:
            self._request_done()
            raise

    def process_request_thread(self, request, client_address):
        try:
            super().process_request_thread(request, client_address)
        finally:
            self._request_done()

    def _request_done(self):
        with self._idle:
            self._active -= 1
            self._idle.notify_all()

    @property
    def active_requests(self) -> int:
        with self._idle:
            return self._active

    def drain(self, timeout: float) -> bool:
        """Wait for in-flight requests to finish.

        Returns:
            True if none remain, False if the timeout expired first
        """
        with self._idle:
            return self._idle.wait_for(lambda: self._active == 0, timeout)

    def handle_error(self, request, client_address):
        """Log per-connection failures without a traceback for TLS errors."""
        exc = sys.exc_info()[1]
        if isinstance(exc, (ssl.SSLError, ConnectionError, TimeoutError)):
            logger.warning("%s - connection error: %s", client_address[0], exc)
            return
        logger.exception("Error handling request from %s", client_address[0])


class ServerHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the munki repo."""

    server_version = "munkisrv"
    timeout = 60

    def setup(self):
        super().setup()
        if isinstance(self.connection, ssl.SSLSocket):
            self.connection.do_handshake()

    def log_message(self, format: str, *args):
        """Override to use Python logging."""
        logger.info("%s - %s", self.address_string(), format % args)

    @property
    def app(self) -> MunkiApp:
        return self.server.app

    def send_text(self, status: int, text: str):
        """Send a plain text response (body omitted for HEAD)."""
        body = text.encode("utf-8")
        self.send_bytes(body, status, "text/plain; charset=utf-8")

    def send_bytes(self, content: bytes, status: int, content_type: str):
        """Send bytes response (body omitted for HEAD)."""
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(content)))
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(content)

    def send_redirect(self, location: str, status: int):
        self.send_response(status)
        self.send_header("Location", location)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def do_GET(self):
        self._route()

    def do_HEAD(self):
        self._route()

    def do_POST(self):
        self._route()

    def do_PUT(self):
        self._route()

    def do_DELETE(self):
        self._route()

    def do_PATCH(self):
        self._route()

    def _route(self):
        path = urlsplit(self.path).path
        method = self.command

        if path == HEALTH_PATH:
            allowed = ("GET",)
            handler = self._handle_healthz
        elif path.startswith(PKGS_PREFIX):
            allowed = ("GET", "HEAD")
            handler = self._handle_pkg
        elif path.startswith(REPO_PREFIX):
            allowed = ("GET",)
            handler = self._handle_repo
        else:
            self.send_text(404, "Page not found\n")
            return

        if method not in allowed:
            self.send_response(405)
            self.send_header("Allow", ", ".join(allowed))
            self.send_header("Content-Length", "0")
            self.end_headers()
            return
        handler(path)

    def _handle_healthz(self, path: str):
        if self.app.healthy:
            self.send_bytes(b"", 200, "text/plain; charset=utf-8")
        else:
            self.send_bytes(b"", 500, "text/plain; charset=utf-8")

    def _handle_pkg(self, path: str):
        try:
            location = self.app.redirector.location(path)
        except SignError as e:
            logger.error("Failed to sign %s: %s", path, e.message)
            if e.http_status == 400:
                self.send_text(400, "Invalid path\n")
            else:
                self.send_text(500, "Failed to sign url\n")
            return
        self.send_redirect(location, 307)

    def _handle_repo(self, path: str):
        response = handle_repo_request(path, self.app.repo)
        if response.location is not None:
            self.send_redirect(response.location, response.status)
            return
        self.send_bytes(response.body, response.status, response.content_type)


class Server:
    """Munki repo server with signed package redirects."""

    def __init__(
        self,
        repo: MunkiRepo,
        redirector: PackageRedirector,
        bind: str = DEFAULT_BIND,
        port: int = DEFAULT_PORT,
        tls_context: Optional[TLSContext] = None,
        shutdown_timeout: float = SHUTDOWN_TIMEOUT,
    ):
        """Initialize server.

        Args:
            repo: Repo to serve static files from
            redirector: Builds signed CDN URLs for package requests
            bind: Address to bind to
            port: Port to listen on (0 lets the OS pick)
            tls_context: Built TLS context, or None for plain HTTP
            shutdown_timeout: Seconds to wait for in-flight requests on shutdown
        """
        self.repo = repo
        self.redirector = redirector
        self.bind = bind
        self.port = port
        self.tls_context = tls_context
        self.shutdown_timeout = shutdown_timeout
        self.server: Optional[MunkiHTTPServer] = None
        self._serving = False

    @property
    def scheme(self) -> str:
        return "https" if self.tls_context else "http"

    def start(self):
        """Bind the listener and apply TLS.

        Raises:
            OSError: If the address cannot be bound
        """
        app = MunkiApp(
            repo=self.repo,
            redirector=self.redirector,
            healthy=self.repo.is_healthy(),
        )
        self.server = MunkiHTTPServer((self.bind, self.port), ServerHandler, app)
        if self.tls_context:
            self.server.socket = self.tls_context.wrap_socket(self.server.socket)

        self.port = self.server.server_address[1]
        logger.info("Server starting on %s://%s:%d", self.scheme, self.bind or DEFAULT_BIND, self.port)
        logger.info("Serving repo from %s", self.repo.root)
        logger.info("Redirecting packages to %s", self.redirector.base_url)

    def serve_forever(self):
        """Serve requests until shutdown."""
        if not self.server:
            raise RuntimeError("Server not started")

        server = self.server
        self._serving = True
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            logger.info("Shutdown requested")
        finally:
            self._serving = False
            self.shutdown()
        logger.info("Server shutdown complete")

    def shutdown(self):
        """Stop accepting, wait for in-flight requests, close the listener."""
        server, self.server = self.server, None
        if server is None:
            return
        logger.info("Shutting down server")
        if self._serving:
            server.shutdown()
        if not server.drain(self.shutdown_timeout):
            logger.warning(
                "Dropping %d in-flight request(s) after %ss",
                server.active_requests, self.shutdown_timeout,
            )
        server.server_close()

    def install_signal_handlers(self):
        """Shut down gracefully on SIGINT/SIGTERM (main thread only)."""

        def handle_signal(signum, frame):
            logger.info("Received %s", signal.Signals(signum).name)
            server = self.server
            if server is not None:
                # shutdown() blocks until serve_forever returns, so it cannot
                # run on the thread that is serving
                threading.Thread(target=server.shutdown, daemon=True).start()

        signal.signal(signal.SIGINT, handle_signal)
        signal.signal(signal.SIGTERM, handle_signal)


def create_server(config: Config) -> Server:
    """Assemble a server from configuration.

    Runs every fallible startup step: TLS pre-flight validation, signing
    key decode and TLS context build. Nothing is bound yet.

    Returns:
        Server instance (not yet started)

    Raises:
        MunkisrvError: On any configuration, key or TLS error
    """
    validate_tls_config(config.tls)

    cf = urlsplit(config.cloudfront.url)
    if not cf.scheme or not cf.netloc:
        raise ConfigError(f"cloudfront.url must be an absolute URL: {config.cloudfront.url!r}")
    if not config.cloudfront.key_id:
        raise ConfigError("cloudfront.key_id is required")

    key = decode_private_key(config.cloudfront.private_key, SIGNING_KEY_LABEL)
    signer = URLSigner(key_id=config.cloudfront.key_id, key=key)
    redirector = PackageRedirector(base_url=config.cloudfront.url, signer=signer)

    tls_context = build_tls_context(config.tls)

    bind, port = config.server.listen_address()
    return Server(
        repo=MunkiRepo(config.repo_path()),
        redirector=redirector,
        bind=bind,
        port=port,
        tls_context=tls_context,
    )
