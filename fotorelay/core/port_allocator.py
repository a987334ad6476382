"""
Sequential TCP port probing.
"""
import asyncio
import logging
import os
import socket

from fotorelay.exceptions import NoPortAvailable

logger = logging.getLogger(__name__)


def is_port_free(port: int, host: str = "0.0.0.0") -> bool:
    """Bind a throwaway listener on ``port`` and close it immediately."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    # Same option pyftpdlib sets on its listener, so TIME_WAIT leftovers of a
    # closed session do not count as busy
    if os.name == "posix":
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
        sock.listen(1)
        return True
    except OSError:
        return False
    finally:
        sock.close()


def find_available_port(start: int, attempts: int = 10, host: str = "0.0.0.0") -> int:
    """
    Find the first bindable port in ``start .. start + attempts - 1``.

    Args:
        start: First port to probe
        attempts: How many consecutive ports to try
        host: Interface to bind on

    Returns:
        A port that was free at probe time

    Raises:
        NoPortAvailable: If every probed port is in use
    """
    for offset in range(attempts):
        port = start + offset
        if port > 65535:
            break
        if is_port_free(port, host):
            logger.debug(f"Port {port} is available", extra={'port': port})
            return port
        logger.debug(f"Port {port} is in use", extra={'port': port})

    logger.error(
        f"No available ports found starting at {start}",
        extra={'start_port': start, 'attempts': attempts}
    )
    raise NoPortAvailable(start, attempts)


async def find_available_port_async(start: int, attempts: int = 10, host: str = "0.0.0.0") -> int:
    """Run :func:`find_available_port` on the loop's executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, find_available_port, start, attempts, host)
