"""
API Security Utilities
Handles admin API key validation and generation.
"""

import secrets
from typing import Iterable, Optional

import structlog

logger = structlog.get_logger(__name__)


def verify_api_key(key: Optional[str], valid_keys: Iterable[str]) -> bool:
    """
    Verify an API key using constant-time comparison.

    Uses secrets.compare_digest to prevent timing attacks.

    Args:
        key: The API key to verify
        valid_keys: Keys currently accepted

    Returns:
        True if the key is valid, False otherwise
    """
    if not key:
        return False

    valid_keys = [k for k in valid_keys if k]

    if not valid_keys:
        # No keys configured - deny all requests
        logger.error("api_key_validation_failed", reason="no_keys_configured")
        return False

    # Compare against every key so timing does not reveal which matched
    results = [secrets.compare_digest(key, valid) for valid in valid_keys]
    is_valid = any(results)

    if not is_valid:
        logger.warning(
            "api_key_validation_failed",
            key_prefix=key[:8] + "..." if len(key) > 8 else "***",
        )

    return is_valid


def generate_api_key(prefix: str = "relay") -> str:
    """
    Generate a secure random API key.

    Returns:
        A key in the format ``{prefix}_{random_token}``
    """
    token = secrets.token_urlsafe(32)
    return f"{prefix}_{token}"


def extract_api_key_from_headers(
    headers: dict,
    x_api_key_header: str = "x-api-key",
    auth_header: str = "authorization",
) -> Optional[str]:
    """
    Extract API key from request headers.

    Supports two formats:
    1. X-API-Key: <key>
    2. Authorization: Bearer <key>
    """
    normalized = {k.lower(): v for k, v in headers.items()}

    api_key = normalized.get(x_api_key_header)
    if api_key:
        return api_key

    auth_value = normalized.get(auth_header, "")
    if auth_value.startswith("Bearer "):
        return auth_value[7:].strip() or None

    return None
