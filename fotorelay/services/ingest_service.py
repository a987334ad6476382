"""
Ingest Service

Control flow for camera ingestion sessions: validate the request, pick a
port, start the FTP server, watch the session root and relay every new
image.

Server lifecycle transitions are serialized by one ``asyncio.Lock``.
"""
import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from fotorelay.core.credentials import DescriptorCache
from fotorelay.core.ftp_server import FTPServerAdapter, ServerState
from fotorelay.core.logging_config import audit_logger
from fotorelay.core.port_allocator import find_available_port_async
from fotorelay.core.session_registry import (
    ConnectionDescriptor,
    Session,
    SessionRegistry,
    normalize_username,
)
from fotorelay.core.watcher import DirectoryWatcher
from fotorelay.exceptions import (
    ApplicationError,
    DirectoryError,
    InputValidationError,
    ServerStartError,
)
from fotorelay.services.upload_relay import UploadRelay

logger = logging.getLogger(__name__)

WatcherFactory = Callable[[str, Callable[[str], Awaitable[None]]], DirectoryWatcher]
PortFinder = Callable[[int, int, str], Awaitable[int]]


class IngestService:
    """Owns the FTP server, the directory watcher and the session table."""

    def __init__(
        self,
        registry: SessionRegistry,
        adapter: FTPServerAdapter,
        relay: UploadRelay,
        descriptor_cache: Optional[DescriptorCache] = None,
        watcher_factory: Optional[WatcherFactory] = None,
        start_port: int = 2121,
        port_attempts: int = 10,
        bind_address: str = "0.0.0.0",
        find_port: PortFinder = find_available_port_async
    ):
        self.registry = registry
        self.adapter = adapter
        self.relay = relay
        self.descriptor_cache = descriptor_cache
        self.watcher_factory = watcher_factory or (lambda root, callback: DirectoryWatcher(root, callback))
        self.start_port = start_port
        self.port_attempts = port_attempts
        self.bind_address = bind_address
        self.find_port = find_port

        self.watcher: Optional[DirectoryWatcher] = None
        self.watched_username: Optional[str] = None
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self.adapter.is_listening

    async def start_session(
        self,
        username: str,
        directory: str,
        catalog_item_id: str,
        token: Optional[str] = None,
        label: Optional[str] = None
    ) -> ConnectionDescriptor:
        """
        Start (or reuse) an ingestion session.

        Args:
            username: FTP username; whitespace is stripped
            directory: Existing directory the camera writes into
            catalog_item_id: Album receiving the images
            token: Bearer token for catalog calls
            label: Album name

        Returns:
            ConnectionDescriptor for the camera

        Raises:
            InputValidationError: Missing fields
            DirectoryError: Directory missing or not a directory
            NoPortAvailable: No free port in the probed range
            ServerStartError: The FTP server could not start
        """
        missing = [
            name for name, value in (
                ("username", username),
                ("directory", directory),
                ("catalogItemId", catalog_item_id),
            )
            if not value or not str(value).strip()
        ]
        if missing:
            raise InputValidationError(f"Missing required fields: {', '.join(missing)}", missing)

        normalized = normalize_username(username)
        root = Path(directory).expanduser()
        if not root.exists():
            raise DirectoryError(directory)
        if not root.is_dir():
            raise DirectoryError(directory, "Selected path is not a directory")
        root_directory = str(root.resolve())

        async with self._lock:
            existing = self.registry.get(normalized)
            if (
                self.adapter.is_listening
                and existing is not None
                and existing.matches(root_directory, catalog_item_id, label)
            ):
                if token:
                    existing.token = token
                logger.info("FTP server already running with matching session", extra={
                    'username': normalized,
                    'port': self.adapter.port
                })
                return self._publish_descriptor(existing)

            await self._teardown()

            if not self.registry.initialized:
                self.registry.init()

            port = await self.find_port(self.start_port, self.port_attempts, self.bind_address)
            session = self.registry.put(Session(
                username=normalized,
                password=self.registry.password,
                root_directory=root_directory,
                catalog_item_id=catalog_item_id,
                catalog_item_label=label,
                token=token
            ))

            generation = await self.adapter.start(port)
            watcher = self.watcher_factory(root_directory, self._on_file_ready)
            try:
                await watcher.start()
            except OSError as e:
                logger.error(f"Could not watch {root_directory}, new files will not be relayed: {e}")
                watcher = None

            if self.adapter.generation != generation or not self.adapter.is_listening:
                if watcher is not None:
                    await watcher.stop()
                raise ServerStartError("FTP server was replaced while starting", {"port": port})

            self.watcher = watcher
            self.watched_username = normalized

            audit_logger.log_session_started(normalized, root_directory, catalog_item_id, port)
            return self._publish_descriptor(session)

    def _descriptor(self, session: Session) -> ConnectionDescriptor:
        return ConnectionDescriptor(
            host=self.adapter.host or "localhost",
            port=self.adapter.port,
            username=session.username,
            password=session.password
        )

    def _publish_descriptor(self, session: Session) -> ConnectionDescriptor:
        descriptor = self._descriptor(session)
        if self.descriptor_cache is not None:
            try:
                self.descriptor_cache.save(descriptor.to_dict())
            except OSError as e:
                logger.warning(f"Could not cache connection details: {e}")
        return descriptor

    async def _teardown(self) -> None:
        """Stop the watcher, then the server. The port is free on return."""
        watcher = self.watcher
        self.watcher = None
        self.watched_username = None
        if watcher is not None:
            try:
                await watcher.stop()
            except OSError as e:
                logger.error(f"Error stopping watcher: {e}")
        if self.adapter.state != ServerState.STOPPED:
            await self.adapter.stop()
            logger.info("Closed existing FTP server")

    async def _on_file_ready(self, path: str) -> None:
        """Watcher callback: dedupe, then relay one stable file."""
        if self.registry.is_processed(path):
            logger.debug(f"Skipping already processed file: {path}")
            return
        self.registry.mark_processed(path)

        session = self.registry.get(self.watched_username) if self.watched_username else None
        if session is None:
            logger.warning(f"No active session for new file {path}, ignoring")
            return

        try:
            await self.relay.relay_file(path, session)
        except ApplicationError as e:
            logger.error(f"Error processing file {path}: {e.message}", extra={'path': path})

    def status(self) -> dict:
        return {
            "is_running": self.is_running,
            "credentials": self.list_credentials()
        }

    def list_credentials(self) -> List[dict]:
        """Every session with its connection details."""
        credentials = []
        for session in self.registry.all():
            credentials.append({
                "username": session.username,
                "password": session.password,
                "directory": session.root_directory,
                "album_id": session.catalog_item_id,
                "album_name": session.catalog_item_label,
                "host": self.adapter.host if self.is_running else None,
                "port": self.adapter.port if self.is_running else None,
                "mode": "Passive"
            })
        return credentials

    def cached_descriptor(self) -> Optional[dict]:
        if self.descriptor_cache is None:
            return None
        return self.descriptor_cache.load()

    def test_credentials(self, username: str, password: str) -> bool:
        if not username or not password:
            raise InputValidationError("Username and password are required", ["username", "password"])
        return self.registry.test_credentials(username, password)

    def regenerate_password(self, username: str) -> Optional[ConnectionDescriptor]:
        """
        Issue a new shared password.

        Returns:
            The updated descriptor of ``username`` while its session is being
            served, otherwise None
        """
        if not username:
            raise InputValidationError("Username is required", ["username"])
        self.registry.regenerate_password(username)
        session = self.registry.get(username)
        if session is not None and self.is_running:
            return self._descriptor(session)
        return None

    async def close_server(self) -> None:
        """Stop serving and forget every session."""
        async with self._lock:
            await self._teardown()
            self.registry.clear_sessions()
        audit_logger.log_session_closed("close")

    async def reset_all(self) -> None:
        """Close everything and clear the processed-file set and cached descriptor."""
        async with self._lock:
            await self._teardown()
            self.registry.reset()
            if self.descriptor_cache is not None:
                self.descriptor_cache.clear()
        audit_logger.log_session_closed("reset")

    async def shutdown(self) -> None:
        async with self._lock:
            await self._teardown()
            self.registry.shutdown()
        audit_logger.log_session_closed("shutdown")
