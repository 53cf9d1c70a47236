"""
Core configuration for the Clip Share backend.

Settings are read from the environment once at process start and frozen;
the app stores them on ``app.state.settings`` and passes them to the proxy,
the session stores and the playback synchronizer.
"""
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple
from urllib.parse import urlsplit

# Proxy configuration
PROXY_PATH = "/api/proxy"
PROXY_MAX_REDIRECTS = 5
PROXY_CHUNK_SIZE = 64 * 1024
DEFAULT_PROXY_TIMEOUT_SECONDS = 30.0

# Storage configuration
DEFAULT_STORAGE_API_URL = "https://blob.vercel-storage.com"
DEFAULT_STORAGE_LOCAL_DIR = "data/storage"
SESSION_KEY_PREFIX = "videos"
MIX_KEY_PREFIX = "mixes"

DEFAULT_APP_ORIGIN = "https://app.example"


def _env_flag(environ: Mapping[str, str], name: str, default: bool = False) -> bool:
    value = environ.get(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(environ: Mapping[str, str], name: str) -> Tuple[str, ...]:
    raw = environ.get(name, "")
    return tuple(entry.strip() for entry in raw.split(",") if entry.strip())


@dataclass(frozen=True)
class PlayerSettings:
    """Tunables for the playback synchronizer."""
    loop_epsilon: float = 0.05  # seconds before the end that count as "at the end"
    loop_rearm_threshold: float = 0.25
    drift_tolerance: float = 0.2
    autoplay_grace_seconds: float = 0.5
    poll_interval: float = 0.1
    visibility_threshold: float = 0.6
    proxy_path: str = PROXY_PATH
    app_origin: Optional[str] = None
    exempt_hosts: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Settings:
    environment: str = "development"
    app_origin: str = DEFAULT_APP_ORIGIN
    allowed_origins: Tuple[str, ...] = ("*",)
    proxy_allowed_hosts: Tuple[str, ...] = ()
    proxy_block_private_networks: bool = False
    proxy_buffer_responses: bool = False
    proxy_timeout_seconds: float = DEFAULT_PROXY_TIMEOUT_SECONDS
    storage_token: Optional[str] = None
    storage_api_url: str = DEFAULT_STORAGE_API_URL
    storage_public_base_url: Optional[str] = None
    storage_local_dir: str = DEFAULT_STORAGE_LOCAL_DIR
    log_level: str = "INFO"
    player: PlayerSettings = field(default_factory=PlayerSettings)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def proxy_cors_origin(self) -> str:
        """Origin the proxy advertises: the app origin in production, ``*`` otherwise."""
        return self.app_origin if self.is_production else "*"

    @property
    def uses_remote_storage(self) -> bool:
        return bool(self.storage_token and self.storage_public_base_url)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        environ = os.environ if environ is None else environ

        environment = (environ.get("APP_ENV") or environ.get("NODE_ENV") or "development").strip().lower()
        app_origin = environ.get("APP_ORIGIN") or DEFAULT_APP_ORIGIN
        allowed_origins = _env_list(environ, "ALLOWED_ORIGINS") or ("*",)
        public_base = (environ.get("STORAGE_PUBLIC_BASE_URL") or "").rstrip("/") or None

        # Media already served from the public storage host needs no proxying
        exempt_hosts = ()
        if public_base:
            storage_host = urlsplit(public_base).netloc.lower()
            if storage_host:
                exempt_hosts = (storage_host,)

        try:
            timeout = float(environ.get("PROXY_TIMEOUT_SECONDS", DEFAULT_PROXY_TIMEOUT_SECONDS))
        except ValueError:
            timeout = DEFAULT_PROXY_TIMEOUT_SECONDS

        return cls(
            environment=environment,
            app_origin=app_origin,
            allowed_origins=allowed_origins,
            proxy_allowed_hosts=_env_list(environ, "AUDIO_PROXY_ALLOWED_HOSTS"),
            proxy_block_private_networks=_env_flag(environ, "PROXY_BLOCK_PRIVATE_NETWORKS"),
            proxy_buffer_responses=_env_flag(environ, "PROXY_BUFFER_RESPONSES"),
            proxy_timeout_seconds=timeout,
            storage_token=environ.get("BLOB_READ_WRITE_TOKEN") or None,
            storage_api_url=(environ.get("STORAGE_API_URL") or DEFAULT_STORAGE_API_URL).rstrip("/"),
            storage_public_base_url=public_base,
            storage_local_dir=environ.get("STORAGE_LOCAL_DIR") or DEFAULT_STORAGE_LOCAL_DIR,
            log_level=(environ.get("LOG_LEVEL") or "INFO").upper(),
            player=PlayerSettings(
                app_origin=environ.get("PUBLIC_APP_URL") or None,
                exempt_hosts=exempt_hosts,
            ),
        )
