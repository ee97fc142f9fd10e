"""
ztoken - Decentralized service-to-service authorization.

A service signs its own principal token, trades it at the token-issuing
authority for a short-lived role token scoped to one provider domain and
role, and presents that role token to the provider.
"""

__version__ = "1.0.0"

# Tokens
from .principal import PrincipalToken, ServiceIdentityProvider, sign_principal_token
from .role_token import RoleToken

# Exchange and caching
from .client import ZTSClient, AsyncZTSClient
from .cache import (
    CacheKey,
    CacheEntry,
    RefreshPolicy,
    RoleTokenCache,
    AsyncRoleTokenCache,
)
from .headers import bind, bind_principal
from .retry import call_with_retry, async_call_with_retry

# Keys and errors
from .keys import load_private_key, load_public_key
from .errors import (
    ZTokenError,
    KeyLoadError,
    SigningError,
    ExchangeError,
    ExchangeErrorKind,
    ValidationError,
)
from .config import PRINCIPAL_AUTH_HEADER, ROLE_AUTH_HEADER


# Test support (lazy import to avoid requiring fastapi)
def __getattr__(name):
    """Lazy loading of the mock authority."""
    if name == "MockAuthority":
        from .testing import MockAuthority

        return MockAuthority
    raise AttributeError(f"module 'ztoken' has no attribute '{name}'")


__all__ = [
    "__version__",
    # Tokens
    "PrincipalToken",
    "ServiceIdentityProvider",
    "sign_principal_token",
    "RoleToken",
    # Exchange and caching
    "ZTSClient",
    "AsyncZTSClient",
    "CacheKey",
    "CacheEntry",
    "RefreshPolicy",
    "RoleTokenCache",
    "AsyncRoleTokenCache",
    "bind",
    "bind_principal",
    "call_with_retry",
    "async_call_with_retry",
    # Keys
    "load_private_key",
    "load_public_key",
    # Errors
    "ZTokenError",
    "KeyLoadError",
    "SigningError",
    "ExchangeError",
    "ExchangeErrorKind",
    "ValidationError",
    # Header names
    "PRINCIPAL_AUTH_HEADER",
    "ROLE_AUTH_HEADER",
    # Test support (lazy loaded)
    "MockAuthority",
]
