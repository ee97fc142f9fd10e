"""
ztoken Mock Authority - An in-process token-issuing authority for tests.

Serves the role token endpoint the exchange clients talk to:

    GET /zts/v1/domain/{domain}/token?role=<role>   (principal token in Athenz-Principal-Auth)

Principal tokens are checked the way a real authority does (format, expiry,
registered key id, signature) and role tokens are issued for explicitly
granted (provider domain, role, principal) triples. This is a test double,
not an authority: grants live in memory and nothing is persisted.

Usage:
    authority = MockAuthority()
    authority.register_service("media", "storage", "v0", public_key)
    authority.grant("sports", "readers", "media.storage")

    with TestClient(authority.app) as http:
        zts = ZTSClient("http://testserver/zts/v1", identity, http_client=http)
"""

import logging
import threading
import time
from typing import Callable, Dict, Optional, Set, Tuple

from cryptography.hazmat.primitives.asymmetric import ec
from fastapi import FastAPI, Header, HTTPException, Query
from pydantic import BaseModel

from ztoken.config import PRINCIPAL_AUTH_HEADER
from ztoken.crypto import PrivateKey, PublicKey
from ztoken.errors import ValidationError
from ztoken.principal import PrincipalToken
from ztoken.role_token import RoleToken

logger = logging.getLogger(__name__)

API_PREFIX = "/zts/v1"
DEFAULT_ROLE_TOKEN_LIFETIME = 3600


class RoleTokenResponse(BaseModel):
    """Response body of the role token endpoint."""

    token: str
    expiryTime: int


class MockAuthority:
    """
    In-memory token-issuing authority.

    Attributes:
        app: The FastAPI application to mount or wrap in a TestClient.
        requests: Number of role token requests received.
    """

    def __init__(
        self,
        private_key: Optional[PrivateKey] = None,
        key_id: str = "0",
        token_lifetime: int = DEFAULT_ROLE_TOKEN_LIFETIME,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the authority.

        Args:
            private_key: Key role tokens are signed with (a P-256 key is
                         generated when omitted).
            key_id: Identifier of the signing key, embedded in role tokens.
            token_lifetime: Default role token lifetime in seconds.
            clock: Time source, in unix seconds.
        """
        self._private_key = private_key or ec.generate_private_key(ec.SECP256R1())
        self.key_id = key_id
        self.token_lifetime = token_lifetime
        self._clock = clock
        self._service_keys: Dict[Tuple[str, str, str], PublicKey] = {}
        self._grants: Dict[Tuple[str, str], Set[str]] = {}
        self._outage_status: Optional[int] = None
        self._lock = threading.Lock()
        self.requests = 0
        self.app = self._build_app()

    @property
    def public_key(self) -> PublicKey:
        """Public key providers use to check issued role tokens."""
        return self._private_key.public_key()

    def register_service(self, domain: str, service: str, key_id: str, public_key: PublicKey) -> None:
        """Register a service public key under (domain, service, key id)."""
        self._service_keys[(domain, service, key_id)] = public_key

    def grant(self, provider_domain: str, role: str, principal: str) -> None:
        """Allow principal (e.g. 'media.storage') to obtain role in provider_domain."""
        self._grants.setdefault((provider_domain, role), set()).add(principal)

    def revoke(self, provider_domain: str, role: str, principal: str) -> None:
        self._grants.get((provider_domain, role), set()).discard(principal)

    def set_outage(self, status: Optional[int] = 503) -> None:
        """Answer every request with status until cleared with set_outage(None)."""
        self._outage_status = status

    def issue(
        self,
        ntoken: Optional[str],
        domain: str,
        role: str,
        min_expiry: Optional[int] = None,
        max_expiry: Optional[int] = None,
    ) -> RoleToken:
        """
        Check a principal token and issue a role token.

        Raises:
            HTTPException: 401 for a missing, malformed, expired or badly
                           signed principal token, 403 when the role is not
                           granted to the principal.
        """
        with self._lock:
            self.requests += 1

        if self._outage_status is not None:
            raise HTTPException(status_code=self._outage_status, detail="Authority unavailable")

        if not ntoken:
            raise HTTPException(status_code=401, detail="Missing principal token")

        try:
            principal = PrincipalToken.parse(ntoken)
        except ValidationError as e:
            raise HTTPException(status_code=401, detail=str(e))

        now = self._clock()
        if principal.is_expired(now):
            logger.info(f"Rejected expired principal token for {principal.principal_name}")
            raise HTTPException(status_code=401, detail="Principal token expired")

        public_key = self._service_keys.get((principal.domain, principal.name, principal.key_id))
        if public_key is None:
            raise HTTPException(
                status_code=401,
                detail=f"Unknown key id {principal.key_id} for {principal.principal_name}",
            )

        if not principal.verify(public_key):
            raise HTTPException(status_code=401, detail="Principal token signature invalid")

        if principal.principal_name not in self._grants.get((domain, role), set()):
            logger.info(f"Denied {principal.principal_name} role {role} in {domain}")
            raise HTTPException(
                status_code=403,
                detail=f"{principal.principal_name} is not a member of {domain}:role.{role}",
            )

        lifetime = self.token_lifetime
        if max_expiry is not None and 0 < max_expiry < lifetime:
            lifetime = max_expiry
        if min_expiry is not None and min_expiry > lifetime:
            lifetime = min_expiry

        return RoleToken.sign(
            domain=domain,
            roles=[role],
            principal=principal.principal_name,
            private_key=self._private_key,
            key_id=self.key_id,
            now=now,
            lifetime=lifetime,
        )

    def _build_app(self) -> FastAPI:
        app = FastAPI(title="ztoken mock authority")

        @app.get(f"{API_PREFIX}/domain/{{domain}}/token", response_model=RoleTokenResponse)
        def get_role_token(
            domain: str,
            role: str = Query(...),
            min_expiry_time: Optional[int] = Query(None, alias="minExpiryTime"),
            max_expiry_time: Optional[int] = Query(None, alias="maxExpiryTime"),
            ntoken: Optional[str] = Header(None, alias=PRINCIPAL_AUTH_HEADER),
        ) -> RoleTokenResponse:
            role_token = self.issue(ntoken, domain, role, min_expiry_time, max_expiry_time)
            return RoleTokenResponse(token=role_token.token, expiryTime=role_token.expiry_time)

        return app
