"""
ztoken Role Token - Authority-issued, time-bounded role grants (ztokens).

A role token states that a principal may act in the given roles of one
provider domain until its expiry time. It is signed by the token-issuing
authority; providers check that signature, callers mostly care about the
expiry to decide when to fetch a new one.

Token format:
    v=Z1;d=<provider>;r=<role1,role2>;p=<principal>;[h=<host>;][i=<ip>;]a=<salt>;t=<issued>;e=<expires>;k=<keyId>;s=<signature>
"""

import time
from dataclasses import dataclass, field, replace
from typing import Optional, Sequence, Tuple

from ztoken import wire
from ztoken.config import ROLE_TOKEN_VERSION
from ztoken.crypto import PrivateKey, PublicKey, generate_salt, sign_data, verify_data
from ztoken.errors import SigningError, ValidationError


@dataclass(frozen=True)
class RoleToken:
    """
    A role token as issued by the authority.

    Attributes:
        domain: Provider domain the roles belong to.
        roles: Roles granted (at least one).
        principal: Principal the token was issued to, e.g. 'media.storage'.
        timestamp: Issue time (unix seconds).
        expiry_time: Expiry time (unix seconds).
        key_id: Identifier of the authority key that signed the token.
        salt: Random per-token value.
        signature: YBase64 signature over the unsigned token.
        hostname: Optional host of the principal.
        ip: Optional address of the principal.
    """

    domain: str
    roles: Tuple[str, ...]
    principal: str
    timestamp: int
    expiry_time: int
    key_id: str = "0"
    salt: str = ""
    signature: str = ""
    hostname: Optional[str] = None
    ip: Optional[str] = None
    version: str = ROLE_TOKEN_VERSION
    raw: Optional[str] = field(default=None, compare=False, repr=False)

    @property
    def unsigned_token(self) -> str:
        return wire.join_fields(
            [
                ("v", self.version),
                ("d", self.domain),
                ("r", ",".join(self.roles)),
                ("p", self.principal),
                ("h", self.hostname),
                ("i", self.ip),
                ("a", self.salt),
                ("t", self.timestamp),
                ("e", self.expiry_time),
                ("k", self.key_id),
            ]
        )

    @property
    def token(self) -> str:
        """The token string to present to providers, exactly as received."""
        if self.raw:
            return self.raw
        if not self.signature:
            return self.unsigned_token
        return f"{self.unsigned_token}{wire.SIGNATURE_FIELD}{self.signature}"

    def __str__(self) -> str:
        return self.token

    @property
    def lifetime(self) -> int:
        """Total validity period in seconds."""
        return self.expiry_time - self.timestamp

    def remaining_lifetime(self, now: Optional[float] = None) -> float:
        """Seconds left before expiry (negative once expired)."""
        now = time.time() if now is None else now
        return self.expiry_time - now

    def is_expired(self, now: Optional[float] = None) -> bool:
        return self.remaining_lifetime(now) <= 0

    def verify(self, public_key: PublicKey) -> bool:
        """Check the authority signature."""
        if not self.signature:
            return False
        return verify_data(public_key, wire.unsigned_part(self.token).encode("utf-8"), self.signature)

    def is_valid(self, now: Optional[float] = None, public_key: Optional[PublicKey] = None) -> bool:
        """
        Decide whether the token can still be used.

        Without a public key this is the expiry check alone and relies on the
        exchange channel having authenticated the authority.
        """
        if self.is_expired(now):
            return False
        if public_key is not None:
            return self.verify(public_key)
        return True

    def has_role(self, role: str) -> bool:
        return role in self.roles

    @classmethod
    def parse(cls, token: str) -> "RoleToken":
        """
        Parse a role token string.

        Raises:
            ValidationError: If the token is malformed.
        """
        try:
            fields = wire.split_fields(token)
            version = wire.require(fields, "v")
            if version != ROLE_TOKEN_VERSION:
                raise ValueError(f"Unsupported role token version: {version}")
            roles = tuple(role for role in wire.require(fields, "r").split(",") if role)
            if not roles:
                raise ValueError("Role token carries no roles")
            parsed = cls(
                domain=wire.require(fields, "d"),
                roles=roles,
                principal=wire.require(fields, "p"),
                timestamp=wire.require_int(fields, "t"),
                expiry_time=wire.require_int(fields, "e"),
                key_id=fields.get("k", "0"),
                salt=fields.get("a", ""),
                signature=fields.get("s", ""),
                hostname=fields.get("h"),
                ip=fields.get("i"),
                version=version,
                raw=token,
            )
        except ValueError as e:
            raise ValidationError(f"Invalid role token: {e}")

        if parsed.expiry_time <= parsed.timestamp:
            raise ValidationError(
                f"Invalid role token: expiry {parsed.expiry_time} not after issue time {parsed.timestamp}"
            )
        return parsed

    @classmethod
    def sign(
        cls,
        domain: str,
        roles: Sequence[str],
        principal: str,
        private_key: PrivateKey,
        key_id: str = "0",
        now: Optional[float] = None,
        lifetime: int = 3600,
        hostname: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> "RoleToken":
        """
        Issue a signed role token (authority side).

        Raises:
            SigningError: If the inputs are invalid or signing fails.
        """
        if not domain or not principal:
            raise SigningError("Role token requires 'domain' and 'principal'")
        if not roles or any(not role or "," in role or ";" in role for role in roles):
            raise SigningError(f"Invalid role list: {roles!r}")
        if lifetime <= 0:
            raise SigningError("Role token lifetime must be positive")

        issued = int(time.time() if now is None else now)
        unsigned = cls(
            domain=domain,
            roles=tuple(roles),
            principal=principal,
            timestamp=issued,
            expiry_time=issued + lifetime,
            key_id=key_id,
            salt=generate_salt(),
            hostname=hostname,
            ip=ip,
        )

        try:
            signature = sign_data(private_key, unsigned.unsigned_token.encode("utf-8"))
        except Exception as e:
            raise SigningError(f"Unable to sign role token for {principal}: {e}") from e

        return replace(unsigned, signature=signature)
