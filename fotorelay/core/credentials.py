"""
FTP password generation and on-disk persistence.

The active password lives in a small JSON file so a restarted process keeps
handing the camera the same credentials. The last connection descriptor
shown to a client is cached next to it so a reloaded UI can reattach.
"""
import json
import logging
import os
import re
import secrets
import string
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

PASSWORD_ALPHABET = string.ascii_lowercase + string.digits


def generate_password(length: int = 5) -> str:
    """
    Draw a random lowercase alphanumeric password.

    The result always holds at least one letter and one digit.
    """
    if length < 2:
        raise ValueError("Password length must be at least 2")

    chars = [
        secrets.choice(string.ascii_lowercase),
        secrets.choice(string.digits),
    ]
    chars.extend(secrets.choice(PASSWORD_ALPHABET) for _ in range(length - 2))

    # Fisher-Yates with a CSPRNG
    for i in range(len(chars) - 1, 0, -1):
        j = secrets.randbelow(i + 1)
        chars[i], chars[j] = chars[j], chars[i]

    return "".join(chars)


def is_valid_password(value, length: int = 5) -> bool:
    """Check the stored password shape: exactly ``length`` of ``[a-z0-9]``."""
    return isinstance(value, str) and re.fullmatch(rf"[a-z0-9]{{{length}}}", value) is not None


def _write_json_atomic(path: Path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    os.replace(tmp_path, path)


class PasswordStore:
    """Loads, validates and persists the shared FTP password."""

    def __init__(self, path: Path, length: int = 5):
        self.path = Path(path)
        self.length = length

    def load(self) -> str:
        """
        Return the persisted password, generating and saving a new one when
        the file is missing, unreadable or holds a malformed value.
        """
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            password = data.get("password") if isinstance(data, dict) else None
            if is_valid_password(password, self.length):
                return password
            logger.warning(f"Stored FTP password in {self.path} is malformed, regenerating")
        except FileNotFoundError:
            logger.info(f"No stored FTP password at {self.path}, generating one")
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read stored FTP password from {self.path}: {e}")

        password = generate_password(self.length)
        self.save(password)
        return password

    def save(self, password: str) -> None:
        _write_json_atomic(self.path, {"password": password})
        logger.debug(f"FTP password persisted to {self.path}")


class DescriptorCache:
    """Client-side cache of the last connection descriptor handed out."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Optional[dict]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable credentials cache {self.path}: {e}")
            return None
        return data if isinstance(data, dict) else None

    def save(self, descriptor: dict) -> None:
        _write_json_atomic(self.path, descriptor)

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
