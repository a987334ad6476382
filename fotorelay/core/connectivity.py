"""
Network reachability check for the catalog API.
"""
import asyncio
import logging
import socket
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


class ConnectivityProbe:
    """Opens a TCP connection to the catalog host. Never caches the answer."""

    def __init__(self, host: str, port: int, timeout: float = 3.0):
        self.host = host
        self.port = port
        self.timeout = timeout

    @classmethod
    def from_url(cls, url: str, timeout: float = 3.0) -> "ConnectivityProbe":
        parsed = urlparse(url)
        default_port = 443 if parsed.scheme == "https" else 80
        return cls(parsed.hostname or "localhost", parsed.port or default_port, timeout)

    def check(self) -> bool:
        try:
            with socket.create_connection((self.host, self.port), timeout=self.timeout):
                return True
        except OSError as e:
            logger.debug(f"{self.host}:{self.port} unreachable: {e}")
            return False

    async def is_online(self) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.check)

