"""
FastAPI dependency injection utilities.
Builds the service graph once per application and exposes it to routes.
"""
from dataclasses import dataclass
from typing import AsyncGenerator, Optional
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
import logging

from fotorelay.config import Settings
from fotorelay.core.catalog_client import CatalogAPIClient
from fotorelay.core.cloud_store import S3CloudStore, S3Config
from fotorelay.core.connectivity import ConnectivityProbe
from fotorelay.core.credentials import DescriptorCache, PasswordStore
from fotorelay.core.ftp_server import FTPServerAdapter, FTPServerConfig
from fotorelay.core.retry import RetryPolicy
from fotorelay.core.session_registry import SessionRegistry
from fotorelay.core.watcher import DirectoryWatcher
from fotorelay.database.session import build_engine, build_session_maker, init_db, close_db
from fotorelay.services.event_broadcaster import EventBroadcaster
from fotorelay.services.ingest_service import IngestService
from fotorelay.services.sync_queue import ConnectivityMonitor, OfflineSyncQueue
from fotorelay.services.upload_relay import UploadRelay

logger = logging.getLogger(__name__)

# Bearer token forwarded to the catalog API; never validated locally
security = HTTPBearer(auto_error=False)


@dataclass
class ServiceContainer:
    """Every long-lived service of one application instance."""
    settings: Settings
    engine: AsyncEngine
    session_maker: async_sessionmaker
    registry: SessionRegistry
    adapter: FTPServerAdapter
    broadcaster: EventBroadcaster
    cloud_store: S3CloudStore
    catalog_client: CatalogAPIClient
    probe: ConnectivityProbe
    relay: UploadRelay
    sync_queue: OfflineSyncQueue
    monitor: ConnectivityMonitor
    ingest: IngestService

    async def startup(self):
        await init_db(self.engine)
        self.registry.init()
        self.monitor.start()

    async def shutdown(self):
        await self.monitor.stop()
        await self.ingest.shutdown()
        self.catalog_client.close()
        self.cloud_store.close()
        await close_db(self.engine)


def build_container(settings: Settings) -> ServiceContainer:
    """Wire the services from settings."""
    engine = build_engine(settings.database_url, echo=settings.DATABASE_ECHO)
    session_maker = build_session_maker(engine)

    registry = SessionRegistry(
        PasswordStore(settings.password_file, settings.FTP_PASSWORD_LENGTH),
        DescriptorCache(settings.credentials_cache_file),
        processed_ttl=settings.PROCESSED_FILE_TTL_SECONDS
    )
    adapter = FTPServerAdapter(registry, FTPServerConfig.from_settings(settings))
    broadcaster = EventBroadcaster()

    s3_config = settings.get_s3_config()
    cloud_store = S3CloudStore(S3Config(
        bucket=s3_config["bucket"] or "",
        region=s3_config["region"],
        access_key=s3_config["access_key"],
        secret_key=s3_config["secret_key"],
        endpoint_url=s3_config["endpoint_url"],
        public_base_url=s3_config["public_base_url"],
        timeout=s3_config["timeout"]
    ))
    catalog_client = CatalogAPIClient(settings.CATALOG_API_URL, timeout=settings.HTTP_TIMEOUT_SECONDS)
    probe = ConnectivityProbe.from_url(settings.CATALOG_API_URL, timeout=settings.CONNECTIVITY_TIMEOUT_SECONDS)

    retry_policy = RetryPolicy.from_config(settings.get_retry_config())
    relay = UploadRelay(
        cloud_store,
        catalog_client,
        broadcaster,
        session_maker,
        retry_policy=retry_policy,
        cloud_folder=settings.CLOUD_FOLDER
    )

    sync_queue = OfflineSyncQueue(settings.sync_queue_file, catalog_client, probe, retry_policy=retry_policy)
    monitor = ConnectivityMonitor(sync_queue, probe, interval=settings.CONNECTIVITY_CHECK_INTERVAL_SECONDS)

    watcher_config = settings.get_watcher_config()

    def watcher_factory(root, callback):
        return DirectoryWatcher(root, callback, **watcher_config)

    ingest = IngestService(
        registry,
        adapter,
        relay,
        descriptor_cache=registry.descriptor_cache,
        watcher_factory=watcher_factory,
        start_port=settings.FTP_PORT,
        port_attempts=settings.FTP_PORT_ATTEMPTS,
        bind_address=settings.FTP_BIND_ADDRESS
    )

    return ServiceContainer(
        settings=settings,
        engine=engine,
        session_maker=session_maker,
        registry=registry,
        adapter=adapter,
        broadcaster=broadcaster,
        cloud_store=cloud_store,
        catalog_client=catalog_client,
        probe=probe,
        relay=relay,
        sync_queue=sync_queue,
        monitor=monitor,
        ingest=ingest
    )


# Service Dependencies
# --------------------

def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_ingest_service(container: ServiceContainer = Depends(get_container)) -> IngestService:
    return container.ingest


def get_upload_relay(container: ServiceContainer = Depends(get_container)) -> UploadRelay:
    return container.relay


def get_sync_queue(container: ServiceContainer = Depends(get_container)) -> OfflineSyncQueue:
    return container.sync_queue


# Database Dependencies
# ---------------------

async def get_db(container: ServiceContainer = Depends(get_container)) -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency to get database session.

    Yields:
        AsyncSession: Database session
    """
    async with container.session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


# Authentication Dependencies
# ---------------------------

async def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[str]:
    """Raw bearer token of the caller, if any."""
    if not credentials:
        return None
    return credentials.credentials
