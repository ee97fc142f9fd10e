"""
ztoken Exchange Client - Trade a principal token for a role token.

The calling service presents its signed principal token (ntoken) to the
token-issuing authority and asks for a role token (ztoken) for one
(provider domain, role). The authority checks the principal token on its
side; from here a rejected credential simply looks like a failed exchange.

Provides both a synchronous (ZTSClient) and an asynchronous (AsyncZTSClient)
client. Both own their HTTP client and release it on close / context exit.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional, Union

import httpx

from ztoken.cache import AsyncRoleTokenCache, CacheKey, RoleTokenCache
from ztoken.config import (
    HTTP_TIMEOUT,
    PRINCIPAL_AUTH_HEADER,
    ROLE_AUTH_HEADER,
    ROLE_TOKEN_MAX_EXPIRY,
    ROLE_TOKEN_MIN_EXPIRY,
    ZTS_URL,
    role_token_url,
)
from ztoken.crypto import PublicKey
from ztoken.errors import ExchangeError, ExchangeErrorKind, ValidationError
from ztoken.principal import PrincipalToken, ServiceIdentityProvider
from ztoken.role_token import RoleToken

logger = logging.getLogger(__name__)

PrincipalCredential = Union[PrincipalToken, str]


# =============================================================================
# Shared request/response handling
# =============================================================================


class _ZTSClientBase:
    """Request building and response parsing shared by both clients."""

    def __init__(
        self,
        zts_url: str,
        identity_provider: Optional[ServiceIdentityProvider],
        timeout: float,
        zts_public_key: Optional[PublicKey],
        min_expiry: Optional[int],
        max_expiry: Optional[int],
        clock: Callable[[], float],
    ):
        if not zts_url:
            raise ValueError("ZTS client requires 'zts_url'")
        self.zts_url = zts_url.rstrip("/")
        self.identity_provider = identity_provider
        self.timeout = timeout
        self.zts_public_key = zts_public_key
        self.min_expiry = min_expiry
        self.max_expiry = max_expiry
        self._clock = clock

    @staticmethod
    def get_header() -> str:
        """Header name providers expect the role token in."""
        return ROLE_AUTH_HEADER

    def _cache_key(self, provider_domain: str, provider_role: str) -> CacheKey:
        if self.identity_provider is None:
            raise ValueError("get_role_token() requires an identity provider")
        return CacheKey(
            domain=self.identity_provider.domain,
            service=self.identity_provider.service,
            provider_domain=provider_domain,
            role=provider_role,
        )

    def _build_request(
        self, principal_token: PrincipalCredential, provider_domain: str, provider_role: str
    ) -> Dict[str, Any]:
        if not provider_domain or not provider_role:
            raise ValueError("Role token request requires 'provider_domain' and 'provider_role'")

        params: Dict[str, Any] = {"role": provider_role}
        if self.min_expiry is not None:
            params["minExpiryTime"] = self.min_expiry
        if self.max_expiry is not None:
            params["maxExpiryTime"] = self.max_expiry

        return {
            "url": role_token_url(self.zts_url, provider_domain),
            "params": params,
            "headers": {PRINCIPAL_AUTH_HEADER: str(principal_token)},
            "timeout": self.timeout,
        }

    def _handle_response(
        self, response: httpx.Response, provider_domain: str, provider_role: str
    ) -> RoleToken:
        """Turn the authority's response into a validated RoleToken."""
        status = response.status_code

        if status == 403:
            logger.warning(f"Authority denied role '{provider_role}' in domain '{provider_domain}'")
            raise ExchangeError(
                ExchangeErrorKind.FORBIDDEN,
                f"Access to role '{provider_role}' in domain '{provider_domain}' denied",
                status_code=status,
            )

        if status != 200:
            raise ExchangeError(
                ExchangeErrorKind.UNAVAILABLE,
                f"Role token request failed: {_error_detail(response)}",
                status_code=status,
            )

        try:
            data = response.json()
            token_string = data["token"]
            if not isinstance(token_string, str) or not token_string:
                raise TypeError("token is not a string")
        except (ValueError, KeyError, TypeError) as e:
            raise ExchangeError(
                ExchangeErrorKind.UNAVAILABLE,
                f"Malformed role token response: {e}",
                status_code=status,
            )

        try:
            role_token = RoleToken.parse(token_string)
            self._validate(role_token, provider_domain, provider_role)
        except ValidationError as e:
            logger.warning(
                f"Rejected role token for '{provider_role}' in '{provider_domain}': {e} "
                f"(check clock skew and authority version)"
            )
            raise

        logger.info(
            f"Received role token for {role_token.principal} -> "
            f"{provider_domain}:{','.join(role_token.roles)} (expires {role_token.expiry_time})"
        )
        return role_token

    def _validate(self, role_token: RoleToken, provider_domain: str, provider_role: str) -> None:
        now = self._clock()
        if role_token.is_expired(now):
            raise ValidationError(
                f"Role token already expired (expiry {role_token.expiry_time}, now {int(now)})"
            )
        if role_token.domain != provider_domain:
            raise ValidationError(
                f"Role token issued for domain '{role_token.domain}', expected '{provider_domain}'"
            )
        if not role_token.has_role(provider_role):
            raise ValidationError(f"Role token does not grant role '{provider_role}'")
        if self.zts_public_key is not None and not role_token.verify(self.zts_public_key):
            raise ValidationError("Role token signature does not verify with the authority key")


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
        detail = data.get("message") or data.get("detail")
        if detail:
            return str(detail)
    except Exception:
        pass
    return response.text or f"HTTP {response.status_code}"


# =============================================================================
# Synchronous Client
# =============================================================================


class ZTSClient(_ZTSClientBase):
    """
    Synchronous client for the token-issuing authority.

    Example:
        ```python
        identity = ServiceIdentityProvider("media", "storage", private_key, key_id="v0")

        with ZTSClient("https://zts.example.com:4443/zts/v1", identity) as zts:
            role_token = zts.get_role_token("sports", "readers")
            header, value = bind(role_token)
        ```
    """

    def __init__(
        self,
        zts_url: str = ZTS_URL,
        identity_provider: Optional[ServiceIdentityProvider] = None,
        cache: Optional[RoleTokenCache] = None,
        http_client: Optional[httpx.Client] = None,
        timeout: float = HTTP_TIMEOUT,
        zts_public_key: Optional[PublicKey] = None,
        min_expiry: Optional[int] = ROLE_TOKEN_MIN_EXPIRY,
        max_expiry: Optional[int] = ROLE_TOKEN_MAX_EXPIRY,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the client.

        Args:
            zts_url: Base URL of the authority.
            identity_provider: Supplies principal tokens for get_role_token().
            cache: Role token cache (a private one is created if omitted).
            http_client: HTTP client to use; it is not closed by this client.
            timeout: Request timeout in seconds.
            zts_public_key: Authority key; when set, received tokens are
                            signature-checked locally.
            min_expiry: Requested minimum role token lifetime in seconds.
            max_expiry: Requested maximum role token lifetime in seconds.
            clock: Time source, in unix seconds.
        """
        super().__init__(
            zts_url, identity_provider, timeout, zts_public_key, min_expiry, max_expiry, clock
        )
        self.cache = cache if cache is not None else RoleTokenCache(clock=clock)
        self._owns_http_client = http_client is None
        self._http = http_client if http_client is not None else httpx.Client(timeout=timeout)

    def fetch_role_token(
        self,
        principal_token: PrincipalCredential,
        provider_domain: str,
        provider_role: str,
    ) -> RoleToken:
        """
        Exchange a principal token for a role token.

        Does not touch the cache and does not retry.

        Raises:
            ExchangeError: FORBIDDEN when the authority denied the role,
                           UNAVAILABLE for any other failure.
            ValidationError: If the returned token is expired or wrongly bound.
        """
        request = self._build_request(principal_token, provider_domain, provider_role)
        logger.debug(f"Requesting role token: GET {request['url']} role={provider_role}")

        try:
            response = self._http.get(**request)
        except httpx.TransportError as e:
            raise ExchangeError(
                ExchangeErrorKind.UNAVAILABLE, f"Unable to reach authority: {e}"
            ) from e

        return self._handle_response(response, provider_domain, provider_role)

    def get_role_token(
        self, provider_domain: str, provider_role: str, timeout: Optional[float] = None
    ) -> RoleToken:
        """
        Return a role token for (provider_domain, provider_role), using the cache.

        Raises:
            SigningError: If the principal token cannot be signed.
            ExchangeError, ValidationError: As fetch_role_token().
        """
        key = self._cache_key(provider_domain, provider_role)
        identity = self.identity_provider
        return self.cache.get_or_fetch(
            key,
            lambda: self.fetch_role_token(identity.get_identity(), provider_domain, provider_role),
            timeout=timeout,
        )

    def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._owns_http_client:
            self._http.close()

    def __enter__(self) -> "ZTSClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


# =============================================================================
# Asynchronous Client
# =============================================================================


class AsyncZTSClient(_ZTSClientBase):
    """
    Asynchronous client for the token-issuing authority.

    Example:
        ```python
        async with AsyncZTSClient(zts_url, identity) as zts:
            role_token = await zts.get_role_token("sports", "readers")
        ```
    """

    def __init__(
        self,
        zts_url: str = ZTS_URL,
        identity_provider: Optional[ServiceIdentityProvider] = None,
        cache: Optional[AsyncRoleTokenCache] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = HTTP_TIMEOUT,
        zts_public_key: Optional[PublicKey] = None,
        min_expiry: Optional[int] = ROLE_TOKEN_MIN_EXPIRY,
        max_expiry: Optional[int] = ROLE_TOKEN_MAX_EXPIRY,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(
            zts_url, identity_provider, timeout, zts_public_key, min_expiry, max_expiry, clock
        )
        self.cache = cache if cache is not None else AsyncRoleTokenCache(clock=clock)
        self._owns_http_client = http_client is None
        self._http = (
            http_client if http_client is not None else httpx.AsyncClient(timeout=timeout)
        )

    async def fetch_role_token(
        self,
        principal_token: PrincipalCredential,
        provider_domain: str,
        provider_role: str,
    ) -> RoleToken:
        """
        Exchange a principal token for a role token.

        Raises:
            ExchangeError: FORBIDDEN when the authority denied the role,
                           UNAVAILABLE for any other failure.
            ValidationError: If the returned token is expired or wrongly bound.
        """
        request = self._build_request(principal_token, provider_domain, provider_role)
        logger.debug(f"Requesting role token: GET {request['url']} role={provider_role}")

        try:
            response = await self._http.get(**request)
        except httpx.TransportError as e:
            raise ExchangeError(
                ExchangeErrorKind.UNAVAILABLE, f"Unable to reach authority: {e}"
            ) from e

        return self._handle_response(response, provider_domain, provider_role)

    async def get_role_token(
        self, provider_domain: str, provider_role: str, timeout: Optional[float] = None
    ) -> RoleToken:
        """Return a role token for (provider_domain, provider_role), using the cache."""
        key = self._cache_key(provider_domain, provider_role)
        identity = self.identity_provider
        return await self.cache.get_or_fetch(
            key,
            lambda: self.fetch_role_token(identity.get_identity(), provider_domain, provider_role),
            timeout=timeout,
        )

    async def aclose(self) -> None:
        """Close the HTTP client and release resources."""
        if self._owns_http_client:
            await self._http.aclose()

    async def __aenter__(self) -> "AsyncZTSClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
