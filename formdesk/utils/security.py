"""
Security and Authentication Utilities
"""

import logging
import os
import re
import secrets
from datetime import timedelta
from typing import Optional, Union

from dotenv import load_dotenv
from passlib.hash import bcrypt

from formdesk.utils.exceptions import ConfigurationError, ValidationError

load_dotenv()
logger = logging.getLogger(__name__)

# Configuration
DEFAULT_JWT_SECRET = "default-secret-change-in-production"
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
DEFAULT_TOKEN_EXPIRY = "1h"

API_KEY_PREFIX = "ck_"
API_KEY_RANDOM_BYTES = 32
API_KEY_LOG_PREFIX_LENGTH = 8
API_KEY_HASH_ROUNDS = int(os.getenv("API_KEY_HASH_ROUNDS", "12"))

_DURATION_PATTERN = re.compile(r"^\s*(\d+)\s*([smhd])\s*$", re.IGNORECASE)
_DURATION_UNITS = {
    "s": "seconds",
    "m": "minutes",
    "h": "hours",
    "d": "days",
}


def is_production() -> bool:
    return os.getenv("APP_ENV", "development").strip().lower() == "production"


def resolve_jwt_secret(secret: Optional[str] = None) -> str:
    """
    Pick the token signing secret

    Explicit argument wins over JWT_SECRET. Falls back to the development
    default outside production only.

    Raises:
        ConfigurationError: If production would run on a missing or default secret
    """
    resolved = secret or os.getenv("JWT_SECRET")

    if not resolved or resolved == DEFAULT_JWT_SECRET:
        if is_production():
            raise ConfigurationError(
                "JWT_SECRET must be set to a non-default value when APP_ENV=production"
            )
        logger.warning(
            "JWT_SECRET not configured - using the insecure development default. "
            "Never run like this in production."
        )
        return DEFAULT_JWT_SECRET

    return resolved


def generate_api_key() -> str:
    """Generate a secure API key (prefix + 64 hex chars)"""
    return f"{API_KEY_PREFIX}{secrets.token_hex(API_KEY_RANDOM_BYTES)}"


def hash_api_key(api_key: str, rounds: Optional[int] = None) -> str:
    """Hash API key for storage (salted bcrypt)"""
    return bcrypt.using(rounds=rounds or API_KEY_HASH_ROUNDS).hash(api_key)


def verify_api_key(api_key: str, key_hash: str) -> bool:
    """Check a candidate key against a stored bcrypt hash"""
    try:
        return bcrypt.verify(api_key, key_hash)
    except (ValueError, TypeError):
        # Unparseable stored hash or non-string candidate
        return False


def safe_key_prefix(api_key: Optional[str]) -> str:
    """Truncated form of a candidate key that is safe to log"""
    if not api_key:
        return "<empty>"
    return api_key[:API_KEY_LOG_PREFIX_LENGTH] + "..."


def parse_duration(value: Union[str, int, timedelta]) -> timedelta:
    """
    Parse token lifetime to timedelta
    Accepts: seconds as int, timedelta, or strings like 45s, 30m, 1h, 7d
    """
    if isinstance(value, timedelta):
        duration = value
    elif isinstance(value, bool):
        raise ValidationError(f"Invalid expiry format: {value}")
    elif isinstance(value, int):
        duration = timedelta(seconds=value)
    elif isinstance(value, str):
        match = _DURATION_PATTERN.match(value)
        if not match:
            raise ValidationError(f"Invalid expiry format: {value}")
        amount, unit = match.groups()
        duration = timedelta(**{_DURATION_UNITS[unit.lower()]: int(amount)})
    else:
        raise ValidationError(f"Invalid expiry format: {value}")

    if duration <= timedelta(0):
        raise ValidationError("Token expiry must be positive")

    return duration
