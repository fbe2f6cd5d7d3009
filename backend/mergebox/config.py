"""Server-level configuration from environment variables.

Everything Mergebox needs is read once at startup: the HTTP bind address,
how to reach qBittorrent, which ffmpeg to run and how aggressively to
remux. All fields have defaults; no .env file is required.
"""

from pathlib import Path
from urllib.parse import urlsplit, urlunsplit

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Server settings. Loaded from environment variables; optionally from .env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Server
    host: str = "127.0.0.1"
    port: int = 3000
    debug: bool = False

    # qBittorrent Web API
    qbit_host: str = "localhost"
    qbit_port: int = 8080
    qbit_user: str = ""
    qbit_password: str = ""
    qbit_timeout: float = 15.0

    # ffmpeg ("ffmpeg" = resolve from PATH)
    ffmpeg_path: str = "ffmpeg"

    # Default worker count for "remux all"
    remux_concurrency: int = 4

    # Seconds between background rescans of every category (0 disables)
    scan_interval: float = 0.0

    log_dir: Path = Path.home() / ".mergebox"

    @property
    def qbit_base_url(self) -> str:
        """Base URL of the qBittorrent Web UI, without a trailing slash."""
        host = self.qbit_host if self.qbit_host.startswith("http") else f"http://{self.qbit_host}"
        try:
            parts = urlsplit(host)
            netloc = parts.hostname or ""
            if self.qbit_port:
                netloc = f"{netloc}:{self.qbit_port}"
            return urlunsplit((parts.scheme, netloc, parts.path, "", "")).rstrip("/")
        except ValueError:
            return f"http://{self.qbit_host}:{self.qbit_port}"


settings = Settings()
