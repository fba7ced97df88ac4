from __future__ import annotations

from dataclasses import dataclass
import logging
import os

from dotenv import load_dotenv

ENV_PREFIX = "DCEXPORT_"

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off", "")


def _env(name: str, default: str = "") -> str:
    return (os.getenv(ENV_PREFIX + name) or default).strip()


def _parse_bool(v: str | None, default: bool = False) -> bool:
    s = (v or "").strip().lower()
    if not s:
        return default
    if s in _TRUE:
        return True
    if s in _FALSE:
        return False
    raise ValueError(f"invalid boolean: {v!r}")


def _parse_address(v: str) -> tuple[str, int]:
    """
    "host:port" -> (host, port). IPv6 hosts may be bracketed: "[::]:8080".
    """
    s = (v or "").strip()
    host, sep, port = s.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid metrics address: {v!r} (expected host:port)")
    host = host.strip("[]") or "0.0.0.0"
    port_num = int(port)
    if not 0 < port_num < 65536:
        raise ValueError(f"invalid metrics port: {port_num}")
    return host, port_num


def _parse_log_level(v: str) -> int:
    s = (v or "info").strip().upper()
    if s == "WARN":
        s = "WARNING"
    if s == "TRACE":
        s = "DEBUG"
    level = logging.getLevelName(s)
    if not isinstance(level, int):
        raise ValueError(f"invalid log level: {v!r}")
    return level


@dataclass(frozen=True)
class Settings:
    token: str

    # ---------------- Metrics HTTP ----------------
    metrics_host: str = "0.0.0.0"
    metrics_port: int = 8080
    # basic auth is enforced only when both are set
    metrics_username: str = ""
    metrics_password: str = ""
    metrics_prefix: str = "dcexport"

    # ---------------- Logging ----------------
    log_level: int = logging.INFO

    # ---------------- Sync rules ----------------
    count_bot_activity: bool = False            # count bot/system messages and reactions
    member_page_size: int = 1000                # member enumeration page (1..1000)

    @property
    def basic_auth_enabled(self) -> bool:
        return bool(self.metrics_username and self.metrics_password)


def load_settings() -> Settings:
    # .env for local runs; real env vars win
    load_dotenv(override=False)

    token = _env("DISCORD_TOKEN") or (os.getenv("DISCORD_TOKEN") or "").strip()
    if not token:
        raise RuntimeError(
            "Missing bot token.\n"
            "Set DCEXPORT_DISCORD_TOKEN=... (fallback supported: DISCORD_TOKEN)."
        )

    host, port = _parse_address(_env("METRICS_ADDRESS", "0.0.0.0:8080"))

    page_size_raw = _env("MEMBER_PAGE_SIZE", "1000")
    try:
        page_size = int(page_size_raw)
    except ValueError:
        raise ValueError(f"invalid member page size: {page_size_raw!r}") from None
    if not 1 <= page_size <= 1000:
        raise ValueError(f"member page size must be within 1..1000, got {page_size}")

    return Settings(
        token=token,
        metrics_host=host,
        metrics_port=port,
        metrics_username=_env("METRICS_USERNAME"),
        metrics_password=_env("METRICS_PASSWORD"),
        metrics_prefix=_env("METRICS_PREFIX", "dcexport"),
        log_level=_parse_log_level(_env("LOG", "info")),
        count_bot_activity=_parse_bool(_env("COUNT_BOT_ACTIVITY"), default=False),
        member_page_size=page_size,
    )
