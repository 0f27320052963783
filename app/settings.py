"""
Configuration for the bridge.

- ScrobbleSettings: scrobble thresholds + which backends are switched on.
  Passed into the coordinator, never read from a global.
- BridgeConfig: process-level configuration via ENV VARS.
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field
from typing import Dict

DEFAULT_PERCENT_THRESHOLD = 0.5
DEFAULT_MIN_SECONDS = 240.0


@dataclass
class ScrobbleSettings:
    percent_threshold: float = DEFAULT_PERCENT_THRESHOLD
    min_seconds_threshold: float = DEFAULT_MIN_SECONDS
    enabled_backends: Dict[str, bool] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not 0 < self.percent_threshold <= 1:
            raise ValueError(f"percent_threshold must be in (0, 1], got {self.percent_threshold}")
        if self.min_seconds_threshold <= 0:
            raise ValueError(f"min_seconds_threshold must be > 0, got {self.min_seconds_threshold}")

    def is_backend_enabled(self, name: str) -> bool:
        return self.enabled_backends.get(name, False)

    def set_backend_enabled(self, name: str, enabled: bool) -> None:
        self.enabled_backends[name] = enabled

    @classmethod
    def from_env(cls) -> "ScrobbleSettings":
        names = os.getenv("SCROBBLE_BACKENDS", "Last.fm")
        return cls(
            percent_threshold=float(os.getenv("SCROBBLE_PERCENT_THRESHOLD", str(DEFAULT_PERCENT_THRESHOLD))),
            min_seconds_threshold=float(os.getenv("SCROBBLE_MIN_SECONDS", str(DEFAULT_MIN_SECONDS))),
            enabled_backends={n.strip(): True for n in names.split(",") if n.strip()},
        )


@dataclass
class PylastCredentials:
    api_key: str | None = None
    api_secret: str | None = None
    session_key: str | None = None
    username: str | None = None
    password_md5: str | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_secret)


@dataclass
class BridgeConfig:
    bluos_host: str = "127.0.0.1"
    bluos_port: int = 11000
    log_level: str = "INFO"
    data_dir: str = "/data"
    queue_path: str = "/data/scrobble_queue.json"
    lastfm: PylastCredentials = field(default_factory=PylastCredentials)
    librefm: PylastCredentials = field(default_factory=PylastCredentials)

    @classmethod
    def from_env(cls) -> "BridgeConfig":
        data_dir = os.getenv("SCROBBLE_DATA_DIR", "/data")
        # Libre.fm ignores API keys but pylast still wants something non-empty
        librefm_key = os.getenv("LIBREFM_API_KEY", "bluos-scrobbler")
        return cls(
            bluos_host=os.getenv("BLUOS_HOST", "127.0.0.1"),
            bluos_port=int(os.getenv("BLUOS_PORT", "11000")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            data_dir=data_dir,
            queue_path=os.getenv("SCROBBLE_CACHE_PATH", os.path.join(data_dir, "scrobble_queue.json")),
            lastfm=PylastCredentials(
                api_key=os.getenv("LASTFM_API_KEY"),
                api_secret=os.getenv("LASTFM_API_SECRET"),
                session_key=os.getenv("LASTFM_SESSION_KEY"),
                username=os.getenv("LASTFM_USERNAME"),
                password_md5=os.getenv("LASTFM_PASSWORD_MD5"),
            ),
            librefm=PylastCredentials(
                api_key=librefm_key,
                api_secret=os.getenv("LIBREFM_API_SECRET", librefm_key),
                session_key=os.getenv("LIBREFM_SESSION_KEY"),
                username=os.getenv("LIBREFM_USERNAME"),
                password_md5=os.getenv("LIBREFM_PASSWORD_MD5"),
            ),
        )
