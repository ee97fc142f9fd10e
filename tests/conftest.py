"""
Shared pytest fixtures for ztoken tests.
"""

from typing import Optional

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from fastapi import Header, HTTPException
from fastapi.responses import PlainTextResponse
from fastapi.testclient import TestClient

from ztoken import RoleToken, ServiceIdentityProvider, ZTSClient
from ztoken.config import ROLE_AUTH_HEADER
from ztoken.errors import ValidationError
from ztoken.testing import MockAuthority

NOW = 1_700_000_000
ZTS_URL = "http://testserver/zts/v1"
PROVIDER_BODY = "sports scores\nlions 3 - tigers 1\n"


class FakeClock:
    """Controllable time source."""

    def __init__(self, now: float = NOW):
        self.now = float(now)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(scope="session")
def rsa_key() -> rsa.RSAPrivateKey:
    """RSA key for the calling service."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def ec_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def ed25519_key() -> Ed25519PrivateKey:
    return Ed25519PrivateKey.generate()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def private_key_file(tmp_path, rsa_key):
    """The service's RSA key written as an unencrypted PKCS#8 PEM file."""
    path = tmp_path / "media.storage.key.pem"
    path.write_bytes(
        rsa_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    return path


def add_provider_routes(authority: MockAuthority, clock=None) -> None:
    """Mount a provider ('sports') on the authority app that checks role tokens."""

    @authority.app.get("/sports/scores", response_class=PlainTextResponse)
    def scores(token: Optional[str] = Header(None, alias=ROLE_AUTH_HEADER)):
        if not token:
            raise HTTPException(status_code=401, detail="Missing role token")
        try:
            role_token = RoleToken.parse(token)
        except ValidationError:
            raise HTTPException(status_code=401, detail="Malformed role token")
        now = clock() if clock else None
        if not role_token.is_valid(now=now, public_key=authority.public_key):
            raise HTTPException(status_code=403, detail="Invalid role token")
        if role_token.domain != "sports" or not role_token.has_role("readers"):
            raise HTTPException(status_code=403, detail="Not a reader")
        return PROVIDER_BODY

    @authority.app.get("/sports/admin")
    def admin(token: Optional[str] = Header(None, alias=ROLE_AUTH_HEADER)):
        raise HTTPException(status_code=403, detail="Admins only")

    @authority.app.get("/sports/broken")
    def broken(token: Optional[str] = Header(None, alias=ROLE_AUTH_HEADER)):
        raise HTTPException(status_code=500, detail="Provider failure")


@pytest.fixture
def authority(rsa_key, clock) -> MockAuthority:
    """Authority on the fake clock that knows media.storage and grants sports:readers."""
    mock = MockAuthority(clock=clock)
    mock.register_service("media", "storage", "v0", rsa_key.public_key())
    mock.grant("sports", "readers", "media.storage")
    add_provider_routes(mock, clock)
    return mock


@pytest.fixture
def identity(rsa_key, clock) -> ServiceIdentityProvider:
    return ServiceIdentityProvider("media", "storage", rsa_key, key_id="v0", clock=clock)


@pytest.fixture
def http(authority):
    """HTTP client routed to the authority (and provider) app."""
    with TestClient(authority.app) as client:
        yield client


@pytest.fixture
def zts_client(http, identity, clock, authority):
    """Sync exchange client talking to the mock authority."""
    with ZTSClient(
        ZTS_URL, identity, http_client=http, zts_public_key=authority.public_key, clock=clock
    ) as client:
        yield client
