"""Centralized configuration for the Frontapp bridge.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/frontapp-bridge/<VARIABLE_NAME>``.
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
        import boto3  # noqa: PLC0415 (lazy import) to avoid boto3 dep in tests

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/frontapp-bridge/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _resolve_secret(name: str) -> str | None:
    """Return a secret from env-var or SSM, or ``None`` when unset."""
    # 1. Env var / .env (always checked first, allows local override)
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    # 2. SSM Parameter Store (only on AWS)
    if _ON_AWS:
        return _get_ssm_parameter(name)
    return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = _resolve_secret(name)
    if value:
        return value
    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store /frontapp-bridge/{name} (AWS)."
    )


def _float_env(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _int_env(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


# ── Frontapp API ────────────────────────────────────────────────────
FRONTAPP_API_TOKEN: str = _require_env("FRONTAPP_API_TOKEN")
FRONTAPP_BASE_URL: str = os.getenv("FRONTAPP_BASE_URL", "https://api2.frontapp.com")
REQUEST_TIMEOUT_SECONDS: float = _float_env("REQUEST_TIMEOUT_SECONDS", 30.0)

# ── Resilience tuning ───────────────────────────────────────────────
RETRY_MAX_RETRIES: int = _int_env("RETRY_MAX_RETRIES", 3)
RETRY_INITIAL_DELAY_SECONDS: float = _float_env("RETRY_INITIAL_DELAY_SECONDS", 1.0)
RETRY_MAX_DELAY_SECONDS: float = _float_env("RETRY_MAX_DELAY_SECONDS", 60.0)
CACHE_TTL_SECONDS: float = _float_env("CACHE_TTL_SECONDS", 60 * 60)

# ── Webhooks ────────────────────────────────────────────────────────
# Both are optional: without them webhook ingestion and subscription
# reconciliation are disabled, the agent tools keep working.
WEBHOOK_SECRET: str = _resolve_secret("WEBHOOK_SECRET") or ""
WEBHOOK_BASE_URL: str = os.getenv("WEBHOOK_BASE_URL", "").rstrip("/")
WEBHOOK_MAX_AGE_SECONDS: float = _float_env("WEBHOOK_MAX_AGE_SECONDS", 5 * 60)

# ── LLM ─────────────────────────────────────────────────────────────
# Only needed by the agent (chat endpoint / CLI chat).
ANTHROPIC_API_KEY: str | None = _resolve_secret("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-sonnet-4-5")

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = _int_env("SERVER_PORT", 8000)
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")


def webhooks_enabled() -> bool:
    """Webhook ingestion needs both a shared secret and a public base URL."""
    return bool(WEBHOOK_SECRET and WEBHOOK_BASE_URL)
