"""Centralized configuration for the VetCare MCP server.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/vetcare-mcp/<VARIABLE_NAME>``.

Components never read the environment directly: every constructor takes
its settings as arguments and falls back to the constants defined here.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415 (lazy import to avoid boto3 dep in tests)

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/vetcare-mcp/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _get_secret(name: str, default: str = "") -> str:
    """Return a secret from env-var or SSM, or *default* when neither has it."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value

    return default


# ── Typed readers ────────────────────────────────────────────────────

def _env_number(name: str, default: float, cast: type = float):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return cast(default)
    try:
        return cast(raw)
    except ValueError as exc:
        raise OSError(
            f"Invalid configuration: {name}={raw!r} is not a valid {cast.__name__}."
        ) from exc


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# ── Upstream VetCare API ────────────────────────────────────────────
VETCARE_API_URL: str = os.getenv("VETCARE_API_URL", "https://vet.talkhub.me/api").rstrip("/")
VETCARE_API_TOKEN: str = _get_secret("VETCARE_API_TOKEN")

API_TIMEOUT_SECONDS: float = _env_number("API_TIMEOUT_SECONDS", 30.0)
RETRY_ATTEMPTS: int = _env_number("RETRY_ATTEMPTS", 3, int)
RETRY_DELAY_SECONDS: float = _env_number("RETRY_DELAY_SECONDS", 2.0)

# ── Cache TTL tiers (seconds) ───────────────────────────────────────
CACHE_TTL_SHORT: float = _env_number("CACHE_TTL_SHORT", 60)        # live scheduling data
CACHE_TTL_MEDIUM: float = _env_number("CACHE_TTL_MEDIUM", 300)     # clients, pets, products
CACHE_TTL_LONG: float = _env_number("CACHE_TTL_LONG", 900)         # catalogs, staff lists
CACHE_TTL_NEGATIVE: float = _env_number("CACHE_TTL_NEGATIVE", 30)  # known upstream failures
CACHE_CLEANUP_INTERVAL_SECONDS: float = _env_number("CACHE_CLEANUP_INTERVAL_SECONDS", 60)

# ── Rate limiting ───────────────────────────────────────────────────
RATE_LIMIT_WINDOW_SECONDS: float = _env_number("RATE_LIMIT_WINDOW_SECONDS", 60)
RATE_LIMIT_MAX_REQUESTS: int = _env_number("RATE_LIMIT_MAX_REQUESTS", 100, int)

# ── Feature toggles ─────────────────────────────────────────────────
CACHE_ENABLED: bool = _env_bool("CACHE_ENABLED", True)
NEGATIVE_CACHE_ENABLED: bool = _env_bool("NEGATIVE_CACHE_ENABLED", True)
RATE_LIMIT_ENABLED: bool = _env_bool("RATE_LIMIT_ENABLED", True)
METRICS_ENABLED: bool = _env_bool("METRICS_ENABLED", True)
CLOUDWATCH_ENABLED: bool = _env_bool("CLOUDWATCH_ENABLED", False)

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = _env_number("SERVER_PORT", 5150, int)
CORS_ORIGINS: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()


def enabled_features() -> list[str]:
    """Names of the feature toggles that are switched on."""
    toggles = {
        "cache": CACHE_ENABLED,
        "negative_cache": NEGATIVE_CACHE_ENABLED,
        "rate_limit": RATE_LIMIT_ENABLED,
        "metrics": METRICS_ENABLED,
        "cloudwatch": CLOUDWATCH_ENABLED,
    }
    return [name for name, on in toggles.items() if on]
