"""Runtime settings read from the environment and an optional dotenv profile."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
from urllib.parse import quote_plus

from .errors import ConfigurationError
from .models import SUPPORTED_CURRENCIES


DEFAULT_DATABASE_URL = "sqlite:///portfolio.db"
DEFAULT_QUOTE_SOURCES: tuple[str, ...] = ("yahoo", "yahoo_page", "alphavantage", "fmp")
KNOWN_QUOTE_SOURCES = frozenset(DEFAULT_QUOTE_SOURCES)

LOGGER = logging.getLogger(__name__)


def _find_profile_file(name: str) -> Path | None:
    """Locate ``name`` as given, else in the working directory or above the package."""

    direct = Path(name)
    if direct.is_absolute():
        return direct if direct.is_file() else None

    package_dir = Path(__file__).resolve().parent
    candidates = [Path.cwd() / name]
    candidates.extend(parent / name for parent in package_dir.parents)
    for candidate in dict.fromkeys(path.resolve() for path in candidates):
        if candidate.is_file():
            return candidate
    return None


def _read_dotenv(path: Path) -> dict[str, str]:
    """Read ``KEY=value`` lines, skipping blanks, comments and malformed lines."""

    values: dict[str, str] = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line.startswith("export "):
            line = line[7:].lstrip()
        key, sep, raw = line.partition("=")
        if not sep or not key or key.startswith("#"):
            continue
        raw = raw.strip()
        if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in "\"'":
            raw = raw[1:-1]
        values[key.strip()] = raw
    return values


def _load_profile_env(env: Mapping[str, str]) -> dict[str, str]:
    """Values from ``PORTFOLIO_TRACKER_ENV_FILE`` or ``.env.<PORTFOLIO_TRACKER_ENV>``."""

    name = env.get("PORTFOLIO_TRACKER_ENV_FILE") or f".env.{env.get('PORTFOLIO_TRACKER_ENV', 'local')}"
    path = _find_profile_file(name)
    if path is None:
        return {}
    LOGGER.debug("Loading settings profile %s", path)
    return _read_dotenv(path)


def _build_database_url(env: Mapping[str, str]) -> str | None:
    """Construct a SQLAlchemy URL from discrete environment variables."""

    host = env.get("PORTFOLIO_TRACKER_DB_HOST")
    if not host:
        return None

    username = env.get("PORTFOLIO_TRACKER_DB_USERNAME")
    if not username:
        raise ConfigurationError(
            "PORTFOLIO_TRACKER_DB_USERNAME must be set when using discrete database settings"
        )

    if "PORTFOLIO_TRACKER_DB_PASSWORD" not in env:
        raise ConfigurationError(
            "PORTFOLIO_TRACKER_DB_PASSWORD must be set when using discrete database settings"
        )

    password = env.get("PORTFOLIO_TRACKER_DB_PASSWORD", "")
    port = env.get("PORTFOLIO_TRACKER_DB_PORT", "5432")
    database = env.get("PORTFOLIO_TRACKER_DB_NAME", "portfolio")
    driver = env.get("PORTFOLIO_TRACKER_DB_DRIVER", "postgresql+psycopg")

    auth = f"{quote_plus(username)}:{quote_plus(password)}"
    port_part = f":{port}" if port else ""
    return f"{driver}://{auth}@{host}{port_part}/{database}"


def _parse_sources(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return DEFAULT_QUOTE_SOURCES
    names = tuple(chunk.strip().lower() for chunk in raw.split(",") if chunk.strip())
    unknown = [name for name in names if name not in KNOWN_QUOTE_SOURCES]
    if unknown:
        raise ConfigurationError(f"Unknown quote source(s): {', '.join(unknown)}")
    if not names:
        raise ConfigurationError("PORTFOLIO_TRACKER_QUOTE_SOURCES must name at least one source")
    return names


def _parse_timeout(raw: str | None) -> float:
    if not raw:
        return 30.0
    try:
        timeout = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"PORTFOLIO_TRACKER_HTTP_TIMEOUT must be a number, got {raw!r}") from exc
    if timeout <= 0:
        raise ConfigurationError("PORTFOLIO_TRACKER_HTTP_TIMEOUT must be positive")
    return timeout


@dataclass(frozen=True)
class Settings:
    """Settings shared by the CLI and the web app."""

    database_url: str
    state_file: Optional[str] = None
    quote_sources: tuple[str, ...] = DEFAULT_QUOTE_SOURCES
    fmp_api_key: Optional[str] = None
    alpha_vantage_api_key: str = "demo"
    http_timeout: float = 30.0
    base_currency: str = "INR"

    @staticmethod
    def load(env: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from ``env`` (default ``os.environ``) layered over the profile file."""

        base_env = dict(os.environ if env is None else env)
        file_env = _load_profile_env(base_env)
        # Environment variables set in the shell take precedence over the file.
        merged_env = {**file_env, **base_env}

        database_url = merged_env.get("PORTFOLIO_TRACKER_DATABASE_URL")
        if not database_url:
            database_url = _build_database_url(merged_env) or DEFAULT_DATABASE_URL

        base_currency = merged_env.get("PORTFOLIO_TRACKER_BASE_CURRENCY", "INR").strip().upper()
        if base_currency not in SUPPORTED_CURRENCIES:
            raise ConfigurationError(
                f"PORTFOLIO_TRACKER_BASE_CURRENCY must be one of {', '.join(SUPPORTED_CURRENCIES)}"
            )

        return Settings(
            database_url=database_url,
            state_file=merged_env.get("PORTFOLIO_TRACKER_STATE_FILE") or None,
            quote_sources=_parse_sources(merged_env.get("PORTFOLIO_TRACKER_QUOTE_SOURCES")),
            fmp_api_key=merged_env.get("PORTFOLIO_TRACKER_FMP_API_KEY") or None,
            alpha_vantage_api_key=merged_env.get("PORTFOLIO_TRACKER_ALPHA_VANTAGE_API_KEY") or "demo",
            http_timeout=_parse_timeout(merged_env.get("PORTFOLIO_TRACKER_HTTP_TIMEOUT")),
            base_currency=base_currency,
        )


__all__ = ["Settings", "DEFAULT_DATABASE_URL", "DEFAULT_QUOTE_SOURCES"]
