"""
Runtime settings for the ingestion relay, read from the environment or .env.
"""
from pathlib import Path
from typing import List, Optional, Tuple
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    APP_NAME: str = "FotoRelay"
    APP_VERSION: str = "1.0.0"
    APP_ENV: str = Field(default="development", pattern="^(development|staging|production)$")
    DEBUG: bool = Field(default=False)
    LOG_LEVEL: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")

    # API
    API_V1_PREFIX: str = "/api/v1"
    API_HOST: str = "127.0.0.1"
    API_PORT: int = Field(default=8000, ge=1, le=65535)

    # Local state (password file, sync queue, cached descriptor, database)
    DATA_DIR: str = Field(default="~/.fotorelay", description="Directory holding local persisted state")
    PASSWORD_FILE_NAME: str = "ftpPassword.json"
    SYNC_QUEUE_FILE_NAME: str = "syncQueue.json"
    CREDENTIALS_CACHE_FILE_NAME: str = "ftpCredentials.json"
    DATABASE_URL: Optional[str] = Field(
        default=None,
        description="SQLAlchemy async URL; defaults to a SQLite file inside DATA_DIR"
    )
    DATABASE_ECHO: bool = False

    # CORS
    CORS_ORIGINS: List[str] = Field(
        default=["http://localhost", "http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins"
    )
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: List[str] = ["*"]
    CORS_ALLOW_HEADERS: List[str] = ["*"]

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS origins from comma-separated string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    # FTP Server
    FTP_PORT: int = Field(default=2121, ge=1, le=65535)
    FTP_PORT_ATTEMPTS: int = Field(default=10, ge=1, le=1000, description="Ports probed before giving up")
    FTP_BIND_ADDRESS: str = "0.0.0.0"
    FTP_PASV_RANGE: str = Field(default="8000-9000", pattern=r"^\d+-\d+$")
    FTP_MASQUERADE_ADDRESS: Optional[str] = Field(
        default=None,
        description="Address sent in PASV replies; when unset the server announces its local address. The descriptor host is autodetected separately"
    )
    FTP_PERMISSIONS: str = "elradfmw"
    FTP_BANNER: str = "Welcome to FTP server"
    FTP_PASSWORD_LENGTH: int = Field(default=5, ge=2, le=64)
    FTP_MAX_CONNECTIONS: int = Field(default=50, ge=1, le=1000)
    FTP_MAX_CONNECTIONS_PER_IP: int = Field(default=10, ge=1, le=1000)
    FTP_IDLE_TIMEOUT_SECONDS: int = Field(default=300, ge=10, le=3600)
    FTP_POLL_INTERVAL_SECONDS: float = Field(default=0.1, gt=0, le=5)

    # Filesystem Watcher
    WATCHER_STABILITY_THRESHOLD_SECONDS: float = Field(default=1.0, ge=0)
    WATCHER_POLL_INTERVAL_SECONDS: float = Field(default=0.1, gt=0)
    WATCHER_DEBOUNCE_SECONDS: float = Field(default=1.0, ge=0)
    WATCHER_DEBOUNCE_PER_PATH: bool = Field(
        default=False,
        description="Debounce per file path instead of one global debounce"
    )
    PROCESSED_FILE_TTL_SECONDS: float = Field(default=10.0, gt=0)

    # Catalog API
    CATALOG_API_URL: str = Field(
        default="http://localhost:4000",
        description="Base URL of the remote catalog API"
    )
    HTTP_TIMEOUT_SECONDS: int = Field(default=30, ge=1, le=300)

    # Cloud Object Store (S3 or S3-compatible)
    S3_BUCKET: Optional[str] = None
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    AWS_DEFAULT_REGION: str = "us-east-1"
    S3_ENDPOINT_URL: Optional[str] = None
    S3_PUBLIC_BASE_URL: Optional[str] = None
    S3_TIMEOUT_SECONDS: int = Field(default=60, ge=10, le=600)
    CLOUD_FOLDER: str = "albums"

    # Retry Settings
    MAX_RETRY_ATTEMPTS: int = Field(default=3, ge=1, le=10)
    RETRY_BASE_DELAY_SECONDS: float = Field(default=1.0, ge=0, le=60)
    RETRY_BACKOFF_MULTIPLIER: float = Field(default=2.0, ge=1, le=10)

    # Connectivity
    CONNECTIVITY_CHECK_INTERVAL_SECONDS: int = Field(default=15, ge=1, le=3600)
    CONNECTIVITY_TIMEOUT_SECONDS: float = Field(default=3.0, gt=0, le=60)

    # Logging
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    LOG_FILE_PATH: Optional[str] = None
    LOG_MAX_BYTES: int = Field(default=10 * 1024 * 1024, description="Max log file size in bytes (10MB)")
    LOG_BACKUP_COUNT: int = Field(default=5, ge=1, le=20)
    LOG_TO_CONSOLE: bool = True
    LOG_TO_FILE: bool = False

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.APP_ENV == "production"

    @property
    def data_path(self) -> Path:
        """Resolved local state directory."""
        return Path(self.DATA_DIR).expanduser()

    @property
    def password_file(self) -> Path:
        return self.data_path / self.PASSWORD_FILE_NAME

    @property
    def sync_queue_file(self) -> Path:
        return self.data_path / self.SYNC_QUEUE_FILE_NAME

    @property
    def credentials_cache_file(self) -> Path:
        return self.data_path / self.CREDENTIALS_CACHE_FILE_NAME

    @property
    def database_url(self) -> str:
        """Database URL, falling back to a SQLite file inside DATA_DIR."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"sqlite+aiosqlite:///{self.data_path / 'fotorelay.db'}"

    @property
    def passive_port_range(self) -> Tuple[int, int]:
        """Inclusive (first, last) passive port range."""
        start, end = self.FTP_PASV_RANGE.split("-")
        return int(start), int(end)

    def get_retry_config(self) -> dict:
        """Get retry policy configuration dictionary."""
        return {
            "max_attempts": self.MAX_RETRY_ATTEMPTS,
            "base_delay": self.RETRY_BASE_DELAY_SECONDS,
            "multiplier": self.RETRY_BACKOFF_MULTIPLIER
        }

    def get_s3_config(self) -> dict:
        """Get cloud object store configuration dictionary."""
        return {
            "bucket": self.S3_BUCKET,
            "region": self.AWS_DEFAULT_REGION,
            "access_key": self.AWS_ACCESS_KEY_ID,
            "secret_key": self.AWS_SECRET_ACCESS_KEY,
            "endpoint_url": self.S3_ENDPOINT_URL,
            "public_base_url": self.S3_PUBLIC_BASE_URL,
            "timeout": self.S3_TIMEOUT_SECONDS
        }

    def get_watcher_config(self) -> dict:
        """Get filesystem watcher configuration dictionary."""
        return {
            "stability_threshold": self.WATCHER_STABILITY_THRESHOLD_SECONDS,
            "poll_interval": self.WATCHER_POLL_INTERVAL_SECONDS,
            "debounce_seconds": self.WATCHER_DEBOUNCE_SECONDS,
            "debounce_per_path": self.WATCHER_DEBOUNCE_PER_PATH
        }

    def get_cors_config(self) -> dict:
        """Get CORS configuration dictionary."""
        return {
            "allow_origins": self.CORS_ORIGINS,
            "allow_credentials": self.CORS_ALLOW_CREDENTIALS,
            "allow_methods": self.CORS_ALLOW_METHODS,
            "allow_headers": self.CORS_ALLOW_HEADERS
        }

    def validate_required_settings(self) -> List[str]:
        """
        Validate that all required settings are properly configured.

        Returns:
            List of validation error messages
        """
        errors = []

        first, last = self.passive_port_range
        if first > last:
            errors.append("FTP_PASV_RANGE must be ascending (e.g. 8000-9000)")
        if last > 65535:
            errors.append("FTP_PASV_RANGE must stay within 1-65535")

        if not self.S3_BUCKET:
            errors.append("S3_BUCKET is required for cloud uploads")

        if not self.CATALOG_API_URL.startswith(("http://", "https://")):
            errors.append("CATALOG_API_URL must be an http(s) URL")

        # Production-specific validations
        if self.is_production:
            if self.DEBUG:
                errors.append("DEBUG should be False in production")

            if self.DATABASE_ECHO:
                errors.append("DATABASE_ECHO should be False in production")

        return errors


# Global settings instance
settings = Settings()
