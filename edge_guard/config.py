"""
Edge security configuration from environment variables.

All settings have sensible defaults for local development.
A .env file in the project root is loaded automatically (if present).
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file before reading any env vars
load_dotenv(Path(__file__).resolve().parent.parent / ".env")


def _csv(name: str, default: str = "") -> list[str]:
    """Split a comma-separated env var into a list of non-empty items."""
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


# ── Environment ───────────────────────────────────────────────────────────

ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "info")


def is_production() -> bool:
    return ENVIRONMENT == "production"


# ── Paths ─────────────────────────────────────────────────────────────────

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DATA_DIR = PROJECT_ROOT / "data"

# SQLite database file (backup codes)
DB_PATH: str = os.getenv("DB_PATH", str(DATA_DIR / "edge_guard.db"))

# ── Rate limiting ─────────────────────────────────────────────────────────
# Rate strings use the `limits` notation: "<amount>/<multiple> <granularity>".

RATE_LIMIT_API: str = os.getenv("RATE_LIMIT_API", "100/15 minutes")
RATE_LIMIT_AUTH: str = os.getenv("RATE_LIMIT_AUTH", "5/15 minutes")
RATE_LIMIT_CONTACT: str = os.getenv("RATE_LIMIT_CONTACT", "3/hour")
RATE_LIMIT_TELEMETRY: str = os.getenv("RATE_LIMIT_TELEMETRY", "1000/minute")

# Refund successful auth requests so only failures count toward the ceiling.
RATE_LIMIT_AUTH_SKIP_SUCCESSFUL: bool = _flag("RATE_LIMIT_AUTH_SKIP_SUCCESSFUL", "false")

# A counter is evicted once it has been stale for this many windows.
RATE_LIMIT_SWEEP_GRACE: float = float(os.getenv("RATE_LIMIT_SWEEP_GRACE", "2"))

# How often the background sweeper evicts stale state (seconds).
SWEEP_INTERVAL: float = float(os.getenv("SWEEP_INTERVAL", "300"))

# Honour X-Forwarded-For / X-Real-IP / X-Forwarded-Proto. Enable only behind a
# reverse proxy that overwrites them; clients can send these headers themselves.
TRUST_PROXY_HEADERS: bool = _flag("TRUST_PROXY_HEADERS", "false")

# Users that may bypass rate limiting once their session is two-factor verified.
ADMIN_USER_IDS: list[str] = _csv("ADMIN_USER_IDS")

# ── Two-factor ────────────────────────────────────────────────────────────

TWO_FACTOR_TOKEN_EXPIRY: float = float(os.getenv("TWO_FACTOR_TOKEN_EXPIRY", "300"))
TWO_FACTOR_MAX_ATTEMPTS: int = int(os.getenv("TWO_FACTOR_MAX_ATTEMPTS", "5"))
TWO_FACTOR_CHANNELS: list[str] = _csv("TWO_FACTOR_CHANNELS", "email,sms")
BACKUP_CODE_COUNT: int = int(os.getenv("BACKUP_CODE_COUNT", "10"))
SESSION_IDLE_TIMEOUT: float = float(os.getenv("SESSION_IDLE_TIMEOUT", "1800"))

# ── Headers / CORS ────────────────────────────────────────────────────────

CORS_ALLOWED_ORIGINS: list[str] = _csv(
    "CORS_ALLOWED_ORIGINS",
    "http://localhost:3000,http://127.0.0.1:3000",
)
CORS_MAX_AGE: int = int(os.getenv("CORS_MAX_AGE", "86400"))
CSP_EXTRA_SCRIPT_SRC: list[str] = _csv("CSP_EXTRA_SCRIPT_SRC")
CSP_EXTRA_STYLE_SRC: list[str] = _csv("CSP_EXTRA_STYLE_SRC")
CSP_REPORT_URI: str = os.getenv("CSP_REPORT_URI", "/api/security/csp-report")

# ── JWT ───────────────────────────────────────────────────────────────────

JWT_SECRET: str = os.getenv("JWT_SECRET", "dev-secret-change-me-in-production")
JWT_ALGORITHM: str = "HS256"
JWT_EXPIRY_HOURS: int = int(os.getenv("JWT_EXPIRY_HOURS", "12"))

# ── SMTP ──────────────────────────────────────────────────────────────────

SMTP_HOST: str = os.getenv("SMTP_HOST", "")
SMTP_PORT: int = int(os.getenv("SMTP_PORT", "587"))
SMTP_USERNAME: str = os.getenv("SMTP_USERNAME", "")
SMTP_PASSWORD: str = os.getenv("SMTP_PASSWORD", "")
SMTP_FROM_EMAIL: str = os.getenv("SMTP_FROM_EMAIL", "noreply@edgeguard.local")
SMTP_USE_TLS: bool = _flag("SMTP_USE_TLS", "true")

# Set to "false" to force console-only mode even when SMTP credentials are present.
_SMTP_ENABLED_OVERRIDE: str = os.getenv("SMTP_ENABLED", "auto")


def smtp_enabled() -> bool:
    """True when SMTP should actually send emails.

    Controlled by SMTP_ENABLED env var:
      • "auto" (default): send if credentials are configured
      • "true": always send (will fail if credentials are missing)
      • "false": never send, log to console instead
    """
    if _SMTP_ENABLED_OVERRIDE.lower() == "false":
        return False
    if _SMTP_ENABLED_OVERRIDE.lower() == "true":
        return True
    # "auto": send only when credentials are fully configured
    return bool(SMTP_HOST and SMTP_USERNAME and SMTP_PASSWORD)


# ── SMS gateway ───────────────────────────────────────────────────────────

SMS_GATEWAY_URL: str = os.getenv("SMS_GATEWAY_URL", "")
SMS_GATEWAY_TOKEN: str = os.getenv("SMS_GATEWAY_TOKEN", "")
SMS_TIMEOUT: float = float(os.getenv("SMS_TIMEOUT", "10"))
