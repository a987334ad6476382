"""
In-memory registry of FTP ingestion sessions.

One session per normalized username. All sessions share the persisted
password held by the ``PasswordStore``.
"""
import hmac
import logging
import re
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional

from fotorelay.core.credentials import PasswordStore, DescriptorCache, generate_password
from fotorelay.core.expiring_cache import ExpiringSet
from fotorelay.core.logging_config import audit_logger

logger = logging.getLogger(__name__)


def normalize_username(username: str) -> str:
    """Strip every whitespace character ("cam user" -> "camuser")."""
    return re.sub(r"\s+", "", username or "")


@dataclass
class Session:
    """One user's ingestion target."""
    username: str
    password: str
    root_directory: str
    catalog_item_id: str
    catalog_item_label: Optional[str] = None
    token: Optional[str] = field(default=None, repr=False)

    def matches(self, root_directory: str, catalog_item_id: str, catalog_item_label: Optional[str]) -> bool:
        return (
            self.root_directory == root_directory
            and self.catalog_item_id == catalog_item_id
            and self.catalog_item_label == catalog_item_label
        )


@dataclass
class ConnectionDescriptor:
    """What a camera needs to connect."""
    host: str
    port: int
    username: str
    password: str
    mode: str = "Passive"

    def to_dict(self) -> dict:
        return asdict(self)


class SessionRegistry:
    """Owns sessions, the shared password and the processed-file set."""

    def __init__(
        self,
        password_store: PasswordStore,
        descriptor_cache: Optional[DescriptorCache] = None,
        processed_ttl: float = 10.0,
        processed_files: Optional[ExpiringSet] = None
    ):
        self.password_store = password_store
        self.descriptor_cache = descriptor_cache
        self.processed_ttl = processed_ttl
        self.processed_files = processed_files if processed_files is not None else ExpiringSet()
        self._sessions: Dict[str, Session] = {}
        self._password: Optional[str] = None

    @property
    def initialized(self) -> bool:
        return self._password is not None

    @property
    def password(self) -> str:
        if self._password is None:
            self.init()
        return self._password

    def init(self) -> None:
        """Load (or generate) the persisted password."""
        self._password = self.password_store.load()
        logger.info("Session registry initialized")

    def clear_sessions(self) -> int:
        count = len(self._sessions)
        self._sessions.clear()
        return count

    def reset(self) -> None:
        """Drop every session and forget processed files."""
        count = self.clear_sessions()
        self.processed_files.clear()
        logger.info(f"Session registry reset, {count} session(s) cleared")

    def shutdown(self) -> None:
        self.reset()
        self._password = None

    def get(self, username: str) -> Optional[Session]:
        return self._sessions.get(normalize_username(username))

    def put(self, session: Session) -> Session:
        session.username = normalize_username(session.username)
        self._sessions[session.username] = session
        return session

    def remove(self, username: str) -> Optional[Session]:
        return self._sessions.pop(normalize_username(username), None)

    def all(self) -> List[Session]:
        return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)

    def test_credentials(self, username: str, password: str) -> bool:
        """Check a username/password pair against the stored session."""
        session = self.get(username)
        expected = session.password if session else ""
        supplied = password or ""
        # Compare even when the user is unknown so both paths do the same work
        matched = hmac.compare_digest(expected.encode(), supplied.encode())
        return session is not None and matched

    def regenerate_password(self, username: str) -> str:
        """
        Replace the shared password, persist it and push it to every session
        and to the cached descriptor of ``username``.
        """
        new_password = generate_password(self.password_store.length)
        self.password_store.save(new_password)
        self._password = new_password

        for session in self._sessions.values():
            session.password = new_password

        normalized = normalize_username(username)
        if self.descriptor_cache is not None:
            cached = self.descriptor_cache.load()
            if cached and cached.get("username") == normalized:
                cached["password"] = new_password
                self.descriptor_cache.save(cached)

        audit_logger.log_password_regenerated(normalized)
        return new_password

    def mark_processed(self, path: str) -> None:
        self.processed_files.add(path, self.processed_ttl)

    def is_processed(self, path: str) -> bool:
        return self.processed_files.contains(path)
