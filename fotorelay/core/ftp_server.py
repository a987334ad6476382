"""
FTPServerAdapter - embedded pyftpdlib server for camera ingestion.

The server loop runs on a daemon thread. Authentication and STOR
notifications are routed through ``handle_login`` / ``handle_stor`` so the
decisions live in plain methods that can be exercised without a socket.
"""
import asyncio
import enum
import logging
import socket
import threading
from dataclasses import dataclass
from typing import Optional, Tuple

import psutil
from pyftpdlib.authorizers import AuthenticationFailed, DummyAuthorizer
from pyftpdlib.handlers import FTPHandler
from pyftpdlib.ioloop import IOLoop
from pyftpdlib.servers import FTPServer

from fotorelay.core.logging_config import audit_logger
from fotorelay.core.session_registry import SessionRegistry, normalize_username
from fotorelay.exceptions import AuthError, ServerStartError

logger = logging.getLogger(__name__)


class ServerState(str, enum.Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    LISTENING = "listening"


@dataclass
class FTPServerConfig:
    """FTP server configuration dataclass."""
    bind_address: str = "0.0.0.0"
    passive_ports: Tuple[int, int] = (8000, 9000)
    masquerade_address: Optional[str] = None
    permissions: str = "elradfmw"
    banner: str = "Welcome to FTP server"
    max_connections: int = 50
    max_connections_per_ip: int = 10
    idle_timeout: int = 300
    poll_interval: float = 0.1

    @classmethod
    def from_settings(cls, settings) -> "FTPServerConfig":
        return cls(
            bind_address=settings.FTP_BIND_ADDRESS,
            passive_ports=settings.passive_port_range,
            masquerade_address=settings.FTP_MASQUERADE_ADDRESS,
            permissions=settings.FTP_PERMISSIONS,
            banner=settings.FTP_BANNER,
            max_connections=settings.FTP_MAX_CONNECTIONS,
            max_connections_per_ip=settings.FTP_MAX_CONNECTIONS_PER_IP,
            idle_timeout=settings.FTP_IDLE_TIMEOUT_SECONDS,
            poll_interval=settings.FTP_POLL_INTERVAL_SECONDS
        )


@dataclass
class LoginResult:
    """Outcome of an FTP login attempt."""
    success: bool
    username: str
    root_directory: Optional[str] = None
    error: Optional[AuthError] = None


def detect_announce_address() -> str:
    """First non-loopback IPv4 address of this host, else ``localhost``."""
    try:
        interfaces = psutil.net_if_addrs()
    except (OSError, RuntimeError) as e:
        logger.warning(f"Could not enumerate network interfaces: {e}")
        return "localhost"

    for addrs in interfaces.values():
        for addr in addrs:
            if addr.family == socket.AF_INET and not addr.address.startswith("127."):
                return addr.address
    return "localhost"


class SessionAuthorizer(DummyAuthorizer):
    """
    Authorizer that defers credential checks to the adapter.

    On success the user is (re)registered with the session root as home
    directory, which pyftpdlib then enforces as the filesystem jail.
    """

    def __init__(self, adapter: "FTPServerAdapter", perm: str):
        super().__init__()
        self.adapter = adapter
        self.perm = perm

    def validate_authentication(self, username, password, handler):
        remote_ip = getattr(handler, "remote_ip", None)
        result = self.adapter.handle_login(username, password, remote_ip=remote_ip)
        if not result.success:
            raise AuthenticationFailed(result.error.message)

        if self.has_user(username):
            self.remove_user(username)
        self.add_user(username, "", result.root_directory, perm=self.perm)


class FTPServerAdapter:
    """
    Owns at most one pyftpdlib server.

    State machine: STOPPED -> STARTING -> LISTENING -> STOPPED. ``generation``
    increments on every start so async callers can check, after an await,
    that the running server is still the one they started.
    """

    def __init__(self, registry: SessionRegistry, config: Optional[FTPServerConfig] = None):
        self.registry = registry
        self.config = config or FTPServerConfig()
        self.state = ServerState.STOPPED
        self.generation = 0
        self.port: Optional[int] = None
        self.host: Optional[str] = None

        self._server: Optional[FTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

    @property
    def is_listening(self) -> bool:
        return self.state == ServerState.LISTENING

    def handle_login(self, username: str, password: str, remote_ip: Optional[str] = None) -> LoginResult:
        """Authenticate a login against the session registry."""
        normalized = normalize_username(username)
        session = self.registry.get(normalized)

        if session is None or not self.registry.test_credentials(normalized, password):
            audit_logger.log_authentication(normalized, success=False, remote_ip=remote_ip)
            return LoginResult(success=False, username=normalized, error=AuthError(normalized))

        audit_logger.log_authentication(normalized, success=True, remote_ip=remote_ip)
        return LoginResult(success=True, username=normalized, root_directory=session.root_directory)

    def handle_stor(self, username: str, path: str) -> None:
        """Acknowledge a completed STOR. Processing is driven by the watcher."""
        logger.info(f"File received over FTP: {path}", extra={
            'username': normalize_username(username or ""),
            'path': path
        })

    def handle_incomplete_stor(self, username: str, path: str) -> None:
        logger.warning(f"Incomplete FTP upload: {path}", extra={
            'username': normalize_username(username or ""),
            'path': path
        })

    def _build_handler(self) -> type:
        adapter = self
        config = self.config

        class IngestFTPHandler(FTPHandler):
            def on_file_received(self, file):
                adapter.handle_stor(self.username, file)

            def on_incomplete_file_received(self, file):
                adapter.handle_incomplete_stor(self.username, file)

        IngestFTPHandler.authorizer = SessionAuthorizer(adapter, config.permissions)
        first, last = config.passive_ports
        IngestFTPHandler.passive_ports = list(range(first, last + 1))
        IngestFTPHandler.banner = config.banner
        IngestFTPHandler.timeout = config.idle_timeout
        if config.masquerade_address:
            IngestFTPHandler.masquerade_address = config.masquerade_address
        return IngestFTPHandler

    def _create_server(self, port: int) -> FTPServer:
        server = FTPServer((self.config.bind_address, port), self._build_handler(), ioloop=IOLoop())
        server.max_cons = self.config.max_connections
        server.max_cons_per_ip = self.config.max_connections_per_ip
        return server

    def _serve(self, server: FTPServer, stop_event: threading.Event) -> None:
        try:
            while not stop_event.is_set():
                server.serve_forever(timeout=self.config.poll_interval, blocking=False, handle_exit=False)
        except Exception as e:
            logger.error(f"FTP server loop crashed: {e}", exc_info=True)
        finally:
            server.close_all()

    async def start(self, port: int) -> int:
        """
        Bind and start serving on ``port``.

        Returns:
            The generation number of the new server

        Raises:
            ServerStartError: If the port cannot be bound
        """
        if self.state != ServerState.STOPPED:
            await self.stop()

        self.state = ServerState.STARTING
        self.generation += 1
        generation = self.generation

        loop = asyncio.get_running_loop()
        try:
            server = await loop.run_in_executor(None, self._create_server, port)
        except OSError as e:
            self.state = ServerState.STOPPED
            logger.error(f"Failed to start FTP server on port {port}: {e}", extra={'port': port})
            raise ServerStartError(f"Failed to start FTP server on port {port}: {e}", {"port": port})

        stop_event = threading.Event()
        thread = threading.Thread(
            target=self._serve,
            args=(server, stop_event),
            name=f"ftp-server-{port}",
            daemon=True
        )
        self._server = server
        self._stop_event = stop_event
        self._thread = thread
        self.port = port
        self.host = detect_announce_address()
        thread.start()

        self.state = ServerState.LISTENING
        logger.info(f"FTP server listening on {self.config.bind_address}:{port}", extra={
            'port': port,
            'announce_host': self.host,
            'generation': generation
        })
        return generation

    async def stop(self) -> None:
        """Close every connection and release the port before returning."""
        thread = self._thread
        if self._stop_event is not None:
            self._stop_event.set()

        if thread is not None and thread.is_alive():
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, thread.join, 10)
            if thread.is_alive():
                logger.warning("FTP server thread did not exit in time")

        if self._server is not None:
            logger.info(f"FTP server on port {self.port} stopped", extra={'port': self.port})

        self._server = None
        self._thread = None
        self._stop_event = None
        self.port = None
        self.host = None
        self.state = ServerState.STOPPED
