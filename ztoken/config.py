# ztoken/config.py
"""
Centralized configuration for ztoken.

All configurable values are read from environment variables with sensible defaults.
This allows different environments (dev, staging, production) to point at
different token-issuing authorities without code changes.

Usage:
    from ztoken.config import ZTS_URL, NTOKEN_EXPIRY_SECONDS

    client = ZTSClient(ZTS_URL, identity_provider)

Environment Variables:
    ZTOKEN_ZTS_URL: Base URL of the token-issuing authority (default: https://localhost:4443/zts/v1)
    ZTOKEN_NTOKEN_EXPIRY: Lifetime of signed principal tokens in seconds (default: 3600)
    ZTOKEN_HTTP_TIMEOUT: Timeout for authority requests in seconds (default: 10.0)
    ZTOKEN_REFRESH_RATIO: Fraction of a role token's lifetime below which it is refreshed (default: 0.2)
    ZTOKEN_ROLE_TOKEN_MIN_EXPIRY: Requested minimum role token lifetime in seconds (default: unset)
    ZTOKEN_ROLE_TOKEN_MAX_EXPIRY: Requested maximum role token lifetime in seconds (default: unset)
    ZTOKEN_SERVE_STALE: Serve a still-valid cached token when a refresh fails (default: true)
"""

import os
from typing import Final, Optional


def _optional_int(name: str) -> Optional[int]:
    value = os.getenv(name, "")
    return int(value) if value else None


# =============================================================================
# Protocol Constants
# =============================================================================

# Header carrying the signed principal token (ntoken) to the authority
PRINCIPAL_AUTH_HEADER: Final[str] = "Athenz-Principal-Auth"

# Header carrying the role token (ztoken) to providers
ROLE_AUTH_HEADER: Final[str] = "Athenz-Role-Auth"

PRINCIPAL_TOKEN_VERSION: Final[str] = "S1"
ROLE_TOKEN_VERSION: Final[str] = "Z1"

# Hard upper bound on principal token lifetime (7 days)
MAX_PRINCIPAL_TOKEN_LIFETIME: Final[int] = 7 * 24 * 3600

# =============================================================================
# Authority Configuration
# =============================================================================

ZTS_URL: Final[str] = os.getenv("ZTOKEN_ZTS_URL", "https://localhost:4443/zts/v1")

HTTP_TIMEOUT: Final[float] = float(os.getenv("ZTOKEN_HTTP_TIMEOUT", "10.0"))

# =============================================================================
# Token Lifetimes
# =============================================================================

NTOKEN_EXPIRY_SECONDS: Final[int] = int(os.getenv("ZTOKEN_NTOKEN_EXPIRY", "3600"))

# A cached principal token is re-signed once less than this share of its
# lifetime remains
NTOKEN_REFRESH_MARGIN: Final[float] = 0.1

ROLE_TOKEN_MIN_EXPIRY: Final[Optional[int]] = _optional_int("ZTOKEN_ROLE_TOKEN_MIN_EXPIRY")
ROLE_TOKEN_MAX_EXPIRY: Final[Optional[int]] = _optional_int("ZTOKEN_ROLE_TOKEN_MAX_EXPIRY")

# =============================================================================
# Cache Configuration
# =============================================================================

REFRESH_RATIO: Final[float] = float(os.getenv("ZTOKEN_REFRESH_RATIO", "0.2"))

SERVE_STALE: Final[bool] = os.getenv("ZTOKEN_SERVE_STALE", "true").lower() in ("1", "true", "yes")


# =============================================================================
# Helper Functions
# =============================================================================

def role_token_url(zts_url: str, provider_domain: str) -> str:
    """
    Build the role token endpoint for a provider domain.

    Args:
        zts_url: Base URL of the authority (e.g. "https://zts.example.com:4443/zts/v1")
        provider_domain: Domain that owns the requested role

    Returns:
        Full endpoint URL (e.g. "https://zts.example.com:4443/zts/v1/domain/sports/token")
    """
    return f"{zts_url.rstrip('/')}/domain/{provider_domain}/token"


# =============================================================================
# Configuration Summary (for debugging)
# =============================================================================

def print_config() -> None:
    """Print current configuration (useful for debugging)."""
    print("ztoken Configuration:")
    print(f"  ZTS_URL:               {ZTS_URL}")
    print(f"  HTTP_TIMEOUT:          {HTTP_TIMEOUT}")
    print(f"  NTOKEN_EXPIRY_SECONDS: {NTOKEN_EXPIRY_SECONDS}")
    print(f"  ROLE_TOKEN_MIN_EXPIRY: {ROLE_TOKEN_MIN_EXPIRY}")
    print(f"  ROLE_TOKEN_MAX_EXPIRY: {ROLE_TOKEN_MAX_EXPIRY}")
    print(f"  REFRESH_RATIO:         {REFRESH_RATIO}")
    print(f"  SERVE_STALE:           {SERVE_STALE}")


if __name__ == "__main__":
    print_config()
