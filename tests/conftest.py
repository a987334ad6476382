"""
Pytest configuration and shared fixtures.
"""
import asyncio
import io
import pytest
from pathlib import Path
from typing import List

from PIL import Image

from fotorelay.config import Settings
from fotorelay.database.session import build_engine, build_session_maker, init_db
from fotorelay.services.event_broadcaster import EventBroadcaster


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings isolated to a temporary data directory."""
    return Settings(
        APP_ENV="development",
        DATA_DIR=str(tmp_path / "data"),
        S3_BUCKET="test-bucket",
        AWS_ACCESS_KEY_ID="testing",
        AWS_SECRET_ACCESS_KEY="testing",
        CATALOG_API_URL="http://catalog.test",
        FTP_BIND_ADDRESS="127.0.0.1",
        FTP_PORT=23121,
        FTP_PORT_ATTEMPTS=50,
        FTP_PASV_RANGE="50000-50100",
        WATCHER_STABILITY_THRESHOLD_SECONDS=0.2,
        WATCHER_POLL_INTERVAL_SECONDS=0.05,
        WATCHER_DEBOUNCE_SECONDS=0.1,
        RETRY_BASE_DELAY_SECONDS=0.01,
        LOG_TO_FILE=False
    )


@pytest.fixture
async def session_maker(tmp_path):
    """Session maker over a fresh SQLite file."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield build_session_maker(engine)
    await engine.dispose()


@pytest.fixture
def jpeg_bytes() -> bytes:
    """A small but real JPEG image."""
    output = io.BytesIO()
    Image.new("RGB", (8, 8), color=(200, 30, 30)).save(output, format="JPEG")
    return output.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    output = io.BytesIO()
    Image.new("RGBA", (8, 8), color=(0, 0, 255, 128)).save(output, format="PNG")
    return output.getvalue()


@pytest.fixture
def broadcaster() -> EventBroadcaster:
    return EventBroadcaster()


@pytest.fixture
def drain():
    """Return every message currently waiting on a subscriber queue."""
    def _drain(queue: asyncio.Queue) -> List[dict]:
        messages = []
        while not queue.empty():
            messages.append(queue.get_nowait())
        return messages
    return _drain


@pytest.fixture
def ingest_dir(tmp_path) -> Path:
    directory = tmp_path / "camera"
    directory.mkdir()
    return directory


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
