"""
API Relay HTTP Layer
Admin and form endpoints plus admin authentication.
"""

from apirelay.api.security import extract_api_key_from_headers, generate_api_key, verify_api_key

__all__ = [
    "extract_api_key_from_headers",
    "generate_api_key",
    "verify_api_key",
]
