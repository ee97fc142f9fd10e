"""
ztoken Principal Signer - Self-signed service identity tokens (ntokens).

A service proves who it is to the token-issuing authority by signing a
compact principal token with its own private key. The authority holds the
matching public key, registered under (domain, service, key id), and checks
the signature before issuing any role token.

Token format:
    v=S1;d=<domain>;n=<service>;[h=<host>;][i=<ip>;]k=<keyId>;a=<salt>;t=<issued>;e=<expires>;s=<signature>
"""

import logging
import re
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional

from ztoken import wire
from ztoken.config import (
    MAX_PRINCIPAL_TOKEN_LIFETIME,
    NTOKEN_EXPIRY_SECONDS,
    NTOKEN_REFRESH_MARGIN,
    PRINCIPAL_TOKEN_VERSION,
)
from ztoken.crypto import PrivateKey, PublicKey, generate_salt, sign_data, verify_data
from ztoken.errors import SigningError, ValidationError

logger = logging.getLogger(__name__)

DOMAIN_PATTERN = re.compile(r"^[a-z0-9_][a-z0-9_\-.]*$")
SERVICE_PATTERN = re.compile(r"^[a-z0-9_][a-z0-9_\-]*$")


@dataclass(frozen=True)
class PrincipalToken:
    """
    A signed principal token (ntoken).

    Attributes:
        domain: Domain the service belongs to.
        name: Service name.
        key_id: Identifier of the registered public key.
        timestamp: Issue time (unix seconds).
        expiry_time: Expiry time (unix seconds).
        salt: Random per-token value.
        signature: YBase64 signature over the unsigned token ("" when unsigned).
        hostname: Optional host the service runs on.
        ip: Optional address of the service.
    """

    domain: str
    name: str
    key_id: str
    timestamp: int
    expiry_time: int
    salt: str
    signature: str = ""
    hostname: Optional[str] = None
    ip: Optional[str] = None
    version: str = PRINCIPAL_TOKEN_VERSION

    @property
    def principal_name(self) -> str:
        """Full principal name, e.g. 'media.storage'."""
        return f"{self.domain}.{self.name}"

    @property
    def unsigned_token(self) -> str:
        return wire.join_fields(
            [
                ("v", self.version),
                ("d", self.domain),
                ("n", self.name),
                ("h", self.hostname),
                ("i", self.ip),
                ("k", self.key_id),
                ("a", self.salt),
                ("t", self.timestamp),
                ("e", self.expiry_time),
            ]
        )

    @property
    def token(self) -> str:
        """The wire form, including the signature."""
        if not self.signature:
            return self.unsigned_token
        return f"{self.unsigned_token}{wire.SIGNATURE_FIELD}{self.signature}"

    def __str__(self) -> str:
        return self.token

    def is_expired(self, now: Optional[float] = None) -> bool:
        """True once now has reached the expiry time."""
        now = time.time() if now is None else now
        return now >= self.expiry_time

    def remaining_lifetime(self, now: Optional[float] = None) -> float:
        now = time.time() if now is None else now
        return self.expiry_time - now

    def verify(self, public_key: PublicKey) -> bool:
        """Check the signature against the service's registered public key."""
        if not self.signature:
            return False
        return verify_data(public_key, self.unsigned_token.encode("utf-8"), self.signature)

    @classmethod
    def parse(cls, token: str) -> "PrincipalToken":
        """
        Parse the wire form of a principal token.

        Raises:
            ValidationError: If the token is malformed.
        """
        try:
            fields = wire.split_fields(token)
            version = wire.require(fields, "v")
            if version != PRINCIPAL_TOKEN_VERSION:
                raise ValueError(f"Unsupported principal token version: {version}")
            parsed = cls(
                domain=wire.require(fields, "d"),
                name=wire.require(fields, "n"),
                key_id=wire.require(fields, "k"),
                timestamp=wire.require_int(fields, "t"),
                expiry_time=wire.require_int(fields, "e"),
                salt=fields.get("a", ""),
                signature=fields.get("s", ""),
                hostname=fields.get("h"),
                ip=fields.get("i"),
                version=version,
            )
        except ValueError as e:
            raise ValidationError(f"Invalid principal token: {e}")

        # The signature must cover exactly what we would re-serialize
        if parsed.unsigned_token != wire.unsigned_part(token):
            raise ValidationError("Invalid principal token: non-canonical field order")
        return parsed


def sign_principal_token(
    domain: str,
    service: str,
    key_id: str,
    private_key: PrivateKey,
    now: Optional[float] = None,
    lifetime: int = NTOKEN_EXPIRY_SECONDS,
    hostname: Optional[str] = None,
    ip: Optional[str] = None,
) -> PrincipalToken:
    """
    Build and sign a principal token for (domain, service).

    Args:
        domain: Domain of the calling service.
        service: Name of the calling service.
        key_id: Identifier the public key is registered under.
        private_key: Private key matching the registered public key.
        now: Issue time (defaults to the current time).
        lifetime: Seconds until the token expires.
        hostname: Optional host name to embed.
        ip: Optional address to embed.

    Returns:
        The signed PrincipalToken; its expiry is exactly now + lifetime.

    Raises:
        SigningError: If the inputs are invalid or signing fails.
    """
    if not domain or not DOMAIN_PATTERN.match(domain):
        raise SigningError(f"Invalid domain name: {domain!r}")
    if not service or not SERVICE_PATTERN.match(service):
        raise SigningError(f"Invalid service name: {service!r}")
    if not key_id or ";" in key_id or "=" in key_id:
        raise SigningError(f"Invalid key id: {key_id!r}")
    if lifetime <= 0 or lifetime > MAX_PRINCIPAL_TOKEN_LIFETIME:
        raise SigningError(
            f"Token lifetime must be between 1 and {MAX_PRINCIPAL_TOKEN_LIFETIME} seconds"
        )

    issued = int(time.time() if now is None else now)
    unsigned = PrincipalToken(
        domain=domain,
        name=service,
        key_id=key_id,
        timestamp=issued,
        expiry_time=issued + lifetime,
        salt=generate_salt(),
        hostname=hostname,
        ip=ip,
    )

    try:
        signature = sign_data(private_key, unsigned.unsigned_token.encode("utf-8"))
    except Exception as e:
        raise SigningError(f"Unable to sign principal token for {domain}.{service}: {e}") from e

    logger.debug(f"Signed principal token for {domain}.{service} (key {key_id}, exp {issued + lifetime})")
    return replace(unsigned, signature=signature)


class ServiceIdentityProvider:
    """
    Supplies principal tokens for one service identity.

    A signed token is reused until less than ``NTOKEN_REFRESH_MARGIN`` of its
    lifetime remains, then a fresh one is signed.

    Example:
        >>> key = load_private_key("/var/lib/sia/keys/media.storage.key.pem")
        >>> identity = ServiceIdentityProvider("media", "storage", key, key_id="v0")
        >>> ntoken = identity.get_identity()
    """

    def __init__(
        self,
        domain: str,
        service: str,
        private_key: PrivateKey,
        key_id: str,
        lifetime: int = NTOKEN_EXPIRY_SECONDS,
        hostname: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the identity provider.

        Raises:
            ValueError: If domain, service or key_id is missing.
        """
        if not domain or not service:
            raise ValueError("ServiceIdentityProvider requires 'domain' and 'service'")
        if not key_id:
            raise ValueError("ServiceIdentityProvider requires 'key_id'")

        self.domain = domain
        self.service = service
        self.key_id = key_id
        self.lifetime = lifetime
        self.hostname = hostname
        self._private_key = private_key
        self._clock = clock
        self._lock = threading.Lock()
        self._current: Optional[PrincipalToken] = None

    def get_identity(self) -> PrincipalToken:
        """
        Return a valid principal token, signing a new one when needed.

        Raises:
            SigningError: If signing fails.
        """
        with self._lock:
            now = self._clock()
            current = self._current
            if current is not None and current.remaining_lifetime(now) > self.lifetime * NTOKEN_REFRESH_MARGIN:
                return current

            self._current = sign_principal_token(
                self.domain,
                self.service,
                self.key_id,
                self._private_key,
                now=now,
                lifetime=self.lifetime,
                hostname=self.hostname,
            )
            return self._current

    def get_ntoken(self) -> str:
        """Wire form of the current principal token."""
        return self.get_identity().token
