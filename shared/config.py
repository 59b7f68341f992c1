"""
Runtime configuration for the hub.

Values come from environment variables (optionally loaded from a .env file)
and are exposed as a single HubConfig dataclass.
"""

import os
from dataclasses import dataclass, asdict, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from dotenv import load_dotenv

from shared.constants import (
    ACCESS_TOKEN_TTL,
    COOKIE_MAX_AGE,
    DEFAULT_DATA_DIR,
    DEFAULT_DATABASE_FILENAME,
    DEFAULT_NETWORK_TIMEOUT,
    DEFAULT_PORT,
    DEFAULT_STORAGE_DIRNAME,
    PASSWORD_RESET_TTL,
    REFRESH_THRESHOLD,
    REFRESH_TOKEN_TTL,
)
from shared.models import StorageProvider

ENV_PREFIX = "ZONAMIX_"


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(ENV_PREFIX + name, default)


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}")


def _env_list(name: str) -> Tuple[str, ...]:
    raw = _env(name) or ""
    return tuple(item.strip().lower() for item in raw.split(",") if item.strip())


def _env_bool(name: str, default: bool) -> bool:
    raw = _env(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class HubConfig:
    """
    Hub configuration.

    Attributes:
        data_dir: Root folder for the database and local storage
        database_path: SQLite database file
        storage_provider: Backend used for buckets (local or r2)
        storage_base_path: Root folder for the local provider
        bucket_prefix: Prefix prepended to every bucket name
        public_base_url: Base URL used to build public object URLs
        cookie_secure: Mark auth cookies as Secure (production only)
        download_allowed_hosts: Extra hosts the download proxy may fetch from
    """
    data_dir: str
    database_path: str
    storage_provider: StorageProvider = StorageProvider.LOCAL
    storage_base_path: Optional[str] = None
    bucket_prefix: str = ""
    r2_account_id: Optional[str] = None
    r2_access_key_id: Optional[str] = None
    r2_secret_access_key: Optional[str] = None
    public_base_url: str = f"http://localhost:{DEFAULT_PORT}"
    port: int = DEFAULT_PORT
    secret_key: str = "dev-secret-change-me"
    access_token_ttl: int = ACCESS_TOKEN_TTL
    refresh_token_ttl: int = REFRESH_TOKEN_TTL
    password_reset_ttl: int = PASSWORD_RESET_TTL
    cookie_max_age: int = COOKIE_MAX_AGE
    refresh_threshold: int = REFRESH_THRESHOLD
    cookie_secure: bool = False
    download_timeout: int = DEFAULT_NETWORK_TIMEOUT
    download_allowed_hosts: Tuple[str, ...] = ()
    debug: bool = False

    @classmethod
    def for_directory(cls, data_dir: str, **overrides: Any) -> "HubConfig":
        """Build a config rooted at data_dir with the default file layout."""
        root = Path(data_dir).expanduser()
        values: Dict[str, Any] = {
            "data_dir": str(root),
            "database_path": str(root / DEFAULT_DATABASE_FILENAME),
            "storage_base_path": str(root / DEFAULT_STORAGE_DIRNAME),
        }
        values.update(overrides)
        return cls(**values)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "HubConfig":
        """Load configuration from the environment (and .env if present)."""
        load_dotenv(env_file)

        data_dir = _env("DATA_DIR", DEFAULT_DATA_DIR)
        root = Path(data_dir).expanduser()
        port = _env_int("PORT", DEFAULT_PORT)

        return cls(
            data_dir=str(root),
            database_path=_env("DATABASE_PATH") or str(root / DEFAULT_DATABASE_FILENAME),
            storage_provider=StorageProvider(_env("STORAGE_PROVIDER", "local")),
            storage_base_path=_env("STORAGE_PATH") or str(root / DEFAULT_STORAGE_DIRNAME),
            bucket_prefix=_env("BUCKET_PREFIX", ""),
            r2_account_id=_env("R2_ACCOUNT_ID"),
            r2_access_key_id=_env("R2_ACCESS_KEY_ID"),
            r2_secret_access_key=_env("R2_SECRET_ACCESS_KEY"),
            public_base_url=(_env("PUBLIC_BASE_URL") or f"http://localhost:{port}").rstrip("/"),
            port=port,
            secret_key=_env("SECRET_KEY", "dev-secret-change-me"),
            access_token_ttl=_env_int("ACCESS_TOKEN_TTL", ACCESS_TOKEN_TTL),
            refresh_token_ttl=_env_int("REFRESH_TOKEN_TTL", REFRESH_TOKEN_TTL),
            password_reset_ttl=_env_int("PASSWORD_RESET_TTL", PASSWORD_RESET_TTL),
            cookie_max_age=_env_int("COOKIE_MAX_AGE", COOKIE_MAX_AGE),
            refresh_threshold=_env_int("REFRESH_THRESHOLD", REFRESH_THRESHOLD),
            cookie_secure=_env("ENV", "development") == "production",
            download_timeout=_env_int("DOWNLOAD_TIMEOUT", DEFAULT_NETWORK_TIMEOUT),
            download_allowed_hosts=_env_list("DOWNLOAD_ALLOWED_HOSTS"),
            debug=_env_bool("DEBUG", False),
        )

    def relocated(self, data_dir: str) -> "HubConfig":
        """Copy of this config with the database and local storage under data_dir."""
        root = Path(data_dir).expanduser()
        return replace(
            self,
            data_dir=str(root),
            database_path=str(root / DEFAULT_DATABASE_FILENAME),
            storage_base_path=str(root / DEFAULT_STORAGE_DIRNAME),
        )

    def storage_credentials(self) -> Dict[str, Optional[str]]:
        """Credentials dict understood by the configured storage provider."""
        if self.storage_provider == StorageProvider.LOCAL:
            return {"base_path": self.storage_base_path}
        return {
            "account_id": self.r2_account_id,
            "access_key_id": self.r2_access_key_id,
            "secret_access_key": self.r2_secret_access_key,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to a dictionary with secrets masked."""
        data = asdict(self)
        data["storage_provider"] = self.storage_provider.value
        for key in ("r2_access_key_id", "r2_secret_access_key", "secret_key"):
            if data.get(key):
                data[key] = "********"
        return data
