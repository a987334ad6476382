"""
Logging setup for the relay: JSON records for files and production consoles,
a plain format for local development, and an audit channel for ingestion events.
"""
import logging
import logging.handlers
import sys
import json
import traceback
from pathlib import Path
from typing import Optional
from datetime import datetime, timezone

from fotorelay.config import Settings, settings as default_settings

# LogRecord attributes that are not caller-supplied extras
_RESERVED_RECORD_KEYS = frozenset({
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'exc_info', 'exc_text',
    'stack_info', 'taskName', 'message', 'asctime'
})

# Extras that must never reach a handler in clear text
_SECRET_KEYS = frozenset({'password', 'auth_token', 'token', 'authorization'})

REDACTED = '***'


class StructuredFormatter(logging.Formatter):
    """Render a record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
            'thread': record.threadName
        }

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            entry['exception'] = {
                'type': exc_type.__name__ if exc_type else None,
                'message': str(exc_value) if exc_value else None,
                'traceback': traceback.format_exception(*record.exc_info)
            }

        extras = {
            key: value for key, value in record.__dict__.items()
            if key not in _RESERVED_RECORD_KEYS
        }
        if extras:
            entry['extra'] = extras

        return json.dumps(entry, default=str)


class ContextFilter(logging.Filter):
    """Stamp shared fields (active port, session user) onto every record.

    Fields already present on the record win over the shared context.
    """

    def __init__(self):
        super().__init__()
        self.context = {}

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in self.context.items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True

    def set_context(self, **kwargs):
        self.context.update(kwargs)

    def clear_context(self):
        self.context.clear()


class SecretRedactingFilter(logging.Filter):
    """Mask FTP passwords and bearer tokens passed as record extras."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key in _SECRET_KEYS:
            if getattr(record, key, None):
                setattr(record, key, REDACTED)
        return True


class LoggingManager:
    """Owns the root logger configuration for the process."""

    # Libraries that are chatty at INFO
    THIRD_PARTY_LOGGERS = (
        'urllib3.connectionpool',
        'botocore',
        'boto3.resources',
        's3transfer',
        'pyftpdlib',
        'watchdog',
        'aiosqlite',
        'sqlalchemy.engine',
        'PIL'
    )

    def __init__(self, config: Optional[Settings] = None):
        self.settings = config or default_settings
        self.context_filter = ContextFilter()
        self.redacting_filter = SecretRedactingFilter()
        self.configured = False

    def configure_logging(self):
        """Install handlers on the root logger. Safe to call more than once."""
        if self.configured:
            return

        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, self.settings.LOG_LEVEL.upper()))
        root_logger.handlers.clear()

        if self.settings.LOG_TO_CONSOLE:
            root_logger.addHandler(self._console_handler())

        if self.settings.LOG_TO_FILE and self.settings.LOG_FILE_PATH:
            file_handler = self._file_handler()
            if file_handler is not None:
                root_logger.addHandler(file_handler)

        self._quiet_third_party_loggers()
        self.configured = True

        logging.getLogger(__name__).info("Logging configured", extra={
            'log_level': self.settings.LOG_LEVEL,
            'log_to_file': self.settings.LOG_TO_FILE,
            'log_file_path': self.settings.LOG_FILE_PATH
        })

    def _attach_filters(self, handler: logging.Handler) -> logging.Handler:
        handler.addFilter(self.redacting_filter)
        handler.addFilter(self.context_filter)
        return handler

    def _console_handler(self) -> logging.Handler:
        handler = logging.StreamHandler(sys.stdout)
        if self.settings.is_production:
            handler.setFormatter(StructuredFormatter())
        else:
            handler.setFormatter(logging.Formatter(
                fmt=self.settings.LOG_FORMAT,
                datefmt='%Y-%m-%d %H:%M:%S'
            ))
        return self._attach_filters(handler)

    def _file_handler(self) -> Optional[logging.Handler]:
        """Rotating JSON log file; None when the log directory is unusable."""
        log_file = Path(self.settings.LOG_FILE_PATH).expanduser()
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            handler = logging.handlers.RotatingFileHandler(
                filename=str(log_file),
                maxBytes=self.settings.LOG_MAX_BYTES,
                backupCount=self.settings.LOG_BACKUP_COUNT,
                encoding='utf-8'
            )
        except OSError as e:
            logging.getLogger(__name__).error(f"File logging disabled for {log_file}: {e}")
            return None

        handler.setFormatter(StructuredFormatter())
        return self._attach_filters(handler)

    def _quiet_third_party_loggers(self):
        level = logging.WARNING if self.settings.is_production else logging.INFO
        for logger_name in self.THIRD_PARTY_LOGGERS:
            logging.getLogger(logger_name).setLevel(level)
        # botocore logs credential lookups at INFO on every client
        logging.getLogger('botocore').setLevel(logging.WARNING)

    def set_context(self, **kwargs):
        self.context_filter.set_context(**kwargs)

    def clear_context(self):
        self.context_filter.clear_context()

    def get_logger(self, name: str) -> logging.Logger:
        if not self.configured:
            self.configure_logging()
        return logging.getLogger(name)


class AuditLogger:
    """
    Audit trail for ingestion: session lifecycle, FTP logins, credential
    resets and relay outcomes. Records go to the ``fotorelay.audit`` logger.
    """

    def __init__(self):
        self.logger = logging.getLogger('fotorelay.audit')

    def log_session_started(self, username: str, directory: str, catalog_item_id: str, port: int):
        self.logger.info("Ingestion session started", extra={
            'event_type': 'session_started',
            'username': username,
            'directory': directory,
            'catalog_item_id': catalog_item_id,
            'port': port
        })

    def log_session_closed(self, reason: str):
        self.logger.info("Ingestion session closed", extra={
            'event_type': 'session_closed',
            'reason': reason
        })

    def log_authentication(self, username: str, success: bool, remote_ip: Optional[str] = None):
        """Record an FTP login attempt. Only the username is kept."""
        outcome = "success" if success else "failure"
        self.logger.log(logging.INFO if success else logging.WARNING, f"FTP login {outcome}", extra={
            'event_type': f'authentication_{outcome}',
            'username': username,
            'remote_ip': remote_ip
        })

    def log_password_regenerated(self, username: str):
        self.logger.info("FTP password regenerated", extra={
            'event_type': 'password_regenerated',
            'username': username
        })

    def log_relay(self, filename: str, stage: str, success: bool,
                  catalog_item_id: Optional[str] = None, error: Optional[str] = None):
        """Record the outcome of one relay stage (validation, upload, register)."""
        self.logger.log(
            logging.INFO if success else logging.ERROR,
            f"Relay {stage} {'succeeded' if success else 'failed'}",
            extra={
                'event_type': 'relay',
                'stage': stage,
                'file_name': filename,
                'catalog_item_id': catalog_item_id,
                'success': success,
                'error': error
            }
        )


logging_manager = LoggingManager()
audit_logger = AuditLogger()


def configure_logging():
    logging_manager.configure_logging()
