"""Centralized configuration for the Medicare Coverage Assistant.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/coverage-assistant/<VARIABLE_NAME>``.

Everything else is optional and falls back to the defaults below.  Delays
and TTLs are expressed in milliseconds in the environment (matching the
deployment manifests) and exposed here in seconds.
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
        resp = ssm.get_parameter(
            Name=f"/coverage-assistant/{name}", WithDecryption=True,
        )
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value

    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store "
        f"/coverage-assistant/{name} (AWS)."
    )


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid integer for %s=%r, using %d", name, raw, default)
        return default


def _env_positive_int(name: str, default: int) -> int:
    value = _env_int(name, default)
    if value < 1:
        logger.warning("%s must be at least 1, got %d; using %d", name, value, default)
        return default
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid number for %s=%r, using %s", name, raw, default)
        return default


def _parse_servers(raw: str) -> dict[str, str]:
    """Parse ``name=url,name=url`` into a dict, skipping malformed pairs."""
    servers: dict[str, str] = {}
    for pair in raw.split(","):
        name, sep, url = pair.strip().partition("=")
        if sep and name and url:
            servers[name.strip()] = url.strip()
    return servers


# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _require_env("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-20250514")
MAX_OUTPUT_TOKENS: int = _env_int("CLAUDE_MAX_TOKENS", 4096)
MAX_TOOL_ITERATIONS: int = _env_int("CLAUDE_MAX_TOOL_ITERATIONS", 5)
ITERATION_TIMEOUT_SECONDS: float = _env_float("CLAUDE_ITERATION_TIMEOUT", 60.0)

# Capability servers hosted by the model provider (resolved remotely,
# only reported back to us).  Format: "name=url,name=url".
REMOTE_CAPABILITY_SERVERS: dict[str, str] = _parse_servers(
    os.getenv("REMOTE_CAPABILITY_SERVERS", ""),
)

# ── Rate limits (requests/minute, burst) per dependency ─────────────
_RATE_LIMIT_DEFAULTS: dict[str, tuple[int, int]] = {
    "npi": (60, 10),
    "pubmed": (3, 3),
    "cms_mcp": (30, 5),
    "claude": (50, 10),
    "default": (30, 5),
}

RATE_LIMITS: dict[str, tuple[int, int]] = {
    dependency: (
        _env_positive_int(f"RATE_LIMIT_{dependency.upper()}_RPM", rpm),
        _env_positive_int(f"RATE_LIMIT_{dependency.upper()}_BURST", burst),
    )
    for dependency, (rpm, burst) in _RATE_LIMIT_DEFAULTS.items()
}

# ── Retry policy ────────────────────────────────────────────────────
RETRY_MAX_ATTEMPTS: int = _env_int("RETRY_MAX_ATTEMPTS", 3)
RETRY_INITIAL_DELAY_SECONDS: float = _env_int("RETRY_INITIAL_DELAY", 1000) / 1000
RETRY_MAX_DELAY_SECONDS: float = _env_int("RETRY_MAX_DELAY", 30000) / 1000
RETRY_BACKOFF_MULTIPLIER: float = _env_float("RETRY_BACKOFF_MULTIPLIER", 2.0)
RETRY_JITTER_FACTOR: float = _env_float("RETRY_JITTER_FACTOR", 0.2)

# ── Circuit breaker ─────────────────────────────────────────────────
CIRCUIT_FAILURE_THRESHOLD: int = _env_int("CIRCUIT_FAILURE_THRESHOLD", 5)
CIRCUIT_RESET_TIMEOUT_SECONDS: float = _env_int("CIRCUIT_RESET_TIMEOUT", 60000) / 1000
CIRCUIT_HALF_OPEN_REQUESTS: int = _env_int("CIRCUIT_HALF_OPEN_REQUESTS", 2)

# ── Cache ───────────────────────────────────────────────────────────
_HOUR_MS = 60 * 60 * 1000

CACHE_TTL_SECONDS: dict[str, float] = {
    "npi": _env_int("CACHE_TTL_NPI", 24 * _HOUR_MS) / 1000,
    "pubmed": _env_int("CACHE_TTL_PUBMED", 12 * _HOUR_MS) / 1000,
    "ncd": _env_int("CACHE_TTL_NCD", 6 * _HOUR_MS) / 1000,
    "lcd": _env_int("CACHE_TTL_LCD", 6 * _HOUR_MS) / 1000,
    "default": _env_int("CACHE_TTL_DEFAULT", _HOUR_MS) / 1000,
}
CACHE_MAX_ENTRIES: int = _env_int("CACHE_MAX_ENTRIES", 1000)

# ── Knowledge services ──────────────────────────────────────────────
NPI_REGISTRY_URL: str = "https://npiregistry.cms.hhs.gov/api/"
PUBMED_BASE_URL: str = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils"
NCBI_API_KEY: str | None = os.getenv("NCBI_API_KEY") or None
CMS_COVERAGE_URL: str = os.getenv(
    "CMS_COVERAGE_URL", "https://mcp.deepsense.ai/cms_coverage/mcp",
)
HTTP_TIMEOUT_SECONDS: float = _env_float("HTTP_TIMEOUT_SECONDS", 15.0)

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = _env_int("SERVER_PORT", 8000)
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
