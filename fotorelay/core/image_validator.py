"""
Image type detection by magic-number sniffing.

Only the first few bytes of a file are inspected; extensions are ignored so a
camera that writes ``.tmp`` names and renames later is handled the same way.
"""
import logging
from pathlib import Path
from typing import Optional, Tuple, Union

logger = logging.getLogger(__name__)

HEADER_SIZE = 8

# (family, hex prefix). Order matters: the first match wins.
# Canon CR2, Nikon NEF, Sony ARW and Adobe DNG are TIFF containers and are
# reported as "tiff".
SIGNATURES: Tuple[Tuple[str, str], ...] = (
    ("jpeg", "ffd8ff"),
    ("png", "89504e47"),
    ("gif", "47494638"),
    ("webp", "52494646"),
    ("tiff", "49492a00"),
    ("tiff", "4d4d002a"),
    ("bmp", "424d"),
    ("cr3", "66747970637278"),
    ("orf", "49495243"),
    ("orf", "49495352"),
    ("rw2", "49495500"),
    ("raf", "46554a4946494c4d"),
)


def sniff_header(header: bytes) -> Optional[str]:
    """Return the image family for a byte prefix, or None."""
    hex_header = header[:HEADER_SIZE].hex()
    for family, prefix in SIGNATURES:
        if hex_header.startswith(prefix):
            return family
    return None


def detect_format(path: Union[str, Path]) -> Optional[str]:
    """
    Detect the image family of a file on disk.

    Args:
        path: File to inspect

    Returns:
        Family name such as ``"jpeg"`` or ``"tiff"``, or None when the file
        is not a recognised image or cannot be read.
    """
    try:
        with open(path, "rb") as f:
            header = f.read(HEADER_SIZE)
    except OSError as e:
        logger.error(f"Error reading file header for {path}: {e}", extra={'path': str(path)})
        return None

    return sniff_header(header)


def is_image(path: Union[str, Path]) -> bool:
    """True when ``path`` starts with a known image signature. Never raises."""
    return detect_format(path) is not None
