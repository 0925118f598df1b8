import os
from dataclasses import dataclass

from dotenv import load_dotenv

LASTFM_API_BASE = "https://ws.audioscrobbler.com/2.0/"

UA = "LastfmExplorer/1.0 (+https://github.com/lastfm-explorer)"


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class Config:
    """Process settings, read once at startup and handed to the relay."""

    api_key: str = ""
    default_user: str = ""
    api_base: str = LASTFM_API_BASE
    host: str = "0.0.0.0"
    port: int = 3000
    timeout: int = 25
    app_user: str = ""
    app_pass: str = ""
    log_level: str = "INFO"
    user_agent: str = UA

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Config":
        if dotenv:
            load_dotenv()
        return cls(
            api_key=os.getenv("LASTFM_API_KEY", "").strip(),
            default_user=os.getenv("LASTFM_USERNAME", "").strip(),
            host=os.getenv("HOST", "0.0.0.0").strip() or "0.0.0.0",
            port=_int_env("PORT", 3000),
            timeout=_int_env("LASTFM_TIMEOUT", 25),
            app_user=os.getenv("APP_USER", ""),
            app_pass=os.getenv("APP_PASS", ""),
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        )

    @property
    def auth_enabled(self) -> bool:
        return bool(self.app_user or self.app_pass)


def obfuscate_key(key: str) -> str:
    """Show 8 'x' prefix then the last 8 chars, or full key if ≤ 8 chars."""
    if not key:
        return ""
    if len(key) <= 8:
        return key
    return "xxxxxxxx" + key[-8:]
