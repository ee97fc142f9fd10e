"""Map tokens to the HTTP headers that carry them."""

from typing import Optional, Tuple

from ztoken.config import PRINCIPAL_AUTH_HEADER, ROLE_AUTH_HEADER
from ztoken.principal import PrincipalToken
from ztoken.role_token import RoleToken


def bind(role_token: Optional[RoleToken]) -> Tuple[str, str]:
    """
    Return the (header name, header value) pair for a provider request.

    The caller is expected to have checked the token with
    ``RoleToken.is_valid`` first.

    Raises:
        ValueError: If no token or an empty token is given.
    """
    if role_token is None or not role_token.token:
        raise ValueError("bind() requires a role token")
    return ROLE_AUTH_HEADER, role_token.token


def bind_principal(principal_token: Optional[PrincipalToken]) -> Tuple[str, str]:
    """Return the (header name, header value) pair for an authority request."""
    if principal_token is None or not principal_token.signature:
        raise ValueError("bind_principal() requires a signed principal token")
    return PRINCIPAL_AUTH_HEADER, principal_token.token
