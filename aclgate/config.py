"""
Configuration module for aclgate.

Centralizes all configuration with environment variable support
and validation.
"""

import os
from typing import List

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("ACLGATE_ENV", "dev")  # dev|stage|prod

# Token signing
JWT_SECRET = os.getenv("JWT_SECRET", "")
JWT_ALGORITHM = "HS256"
DEV_JWT_SECRET = "aclgate-dev-secret-change-me"

# Token lifetimes (seconds)
TEMP_TOKEN_TTL = int(os.getenv("TEMP_TOKEN_TTL", "300"))
ACCESS_TOKEN_TTL = int(os.getenv("ACCESS_TOKEN_TTL", "3600"))
REFRESH_TOKEN_TTL = int(os.getenv("REFRESH_TOKEN_TTL", str(7 * 24 * 3600)))

# Persistence
STORE_BACKEND = os.getenv("STORE_BACKEND", "sqlite")  # sqlite|memory
DB_PATH = os.getenv("DB_PATH", "data/aclgate.db")
KEEPALIVE_SECONDS = int(os.getenv("KEEPALIVE_SECONDS", "300"))

# ACL enforcement
NAMESPACE_ROOT = os.getenv("NAMESPACE_ROOT", "users")
ACL_CLAIM_REQUIRES_WRITE = os.getenv("ACL_CLAIM_REQUIRES_WRITE", "true").lower() in ("1", "true", "yes")
ACL_CHECK_DELETES = os.getenv("ACL_CHECK_DELETES", "false").lower() in ("1", "true", "yes")

# Notification side-channel
NOTIFICATION_SINK = os.getenv("NOTIFICATION_SINK", "log")  # log|pinning
PINNING_BASE_URL = os.getenv("PINNING_BASE_URL", "")
PINNING_API_KEY = os.getenv("PINNING_API_KEY", "")
PINNING_API_SECRET = os.getenv("PINNING_API_SECRET", "")
PINNING_JWT = os.getenv("PINNING_JWT", "")
PINNING_TIMEOUT = float(os.getenv("PINNING_TIMEOUT", "10"))
OUTBOX_POLL_SECONDS = float(os.getenv("OUTBOX_POLL_SECONDS", "5"))
OUTBOX_MAX_ATTEMPTS = int(os.getenv("OUTBOX_MAX_ATTEMPTS", "10"))

# HTTP
PORT = int(os.getenv("PORT", "3001"))
MAX_BODY_BYTES = int(os.getenv("MAX_BODY_BYTES", str(50 * 1024 * 1024)))
DEFAULT_CORS_ORIGINS = [
    "https://ui.fabstirplayer.com",
    "https://fabstirplayer.com",
    "http://localhost:3000",
    "http://localhost:5214",
]

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("LOG_JSON", "true").lower() in ("1", "true", "yes")


def cors_origins() -> List[str]:
    """Allowed CORS origins, from CORS_ORIGINS or the built-in list."""
    raw = os.getenv("CORS_ORIGINS", "")
    if not raw:
        return list(DEFAULT_CORS_ORIGINS)
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def jwt_secret() -> str:
    """
    Secret used to sign bearer tokens.

    Falls back to a fixed development secret outside production;
    validate_config() flags the missing secret in prod.
    """
    return JWT_SECRET or DEV_JWT_SECRET


# ============================================================
# Validation
# ============================================================

def validate_config() -> List[str]:
    """
    Validate the environment configuration.
    Returns a list of human-readable problems (empty when valid).
    """
    problems = []

    if is_production() and not JWT_SECRET:
        problems.append("JWT_SECRET must be set in production")

    if STORE_BACKEND not in ("sqlite", "memory"):
        problems.append(f"unknown STORE_BACKEND: {STORE_BACKEND}")

    if NOTIFICATION_SINK not in ("log", "pinning"):
        problems.append(f"unknown NOTIFICATION_SINK: {NOTIFICATION_SINK}")

    if NOTIFICATION_SINK == "pinning" and not PINNING_BASE_URL:
        problems.append("PINNING_BASE_URL is required for the pinning sink")

    if TEMP_TOKEN_TTL <= 0 or ACCESS_TOKEN_TTL <= 0 or REFRESH_TOKEN_TTL <= 0:
        problems.append("token lifetimes must be positive")

    return problems


# ============================================================
# Feature Flags
# ============================================================

def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"
