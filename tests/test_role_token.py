"""
Unit tests for role tokens.
"""

import pytest

from ztoken import RoleToken
from ztoken.errors import SigningError, ValidationError

from .conftest import NOW


@pytest.fixture
def role_token(ec_key) -> RoleToken:
    return RoleToken.sign("sports", ["readers"], "media.storage", ec_key, key_id="zts.0", now=NOW, lifetime=3600)


class TestRoleTokenSign:
    """Tests for RoleToken.sign() and parse()."""

    def test_fields(self, role_token):
        assert role_token.domain == "sports"
        assert role_token.roles == ("readers",)
        assert role_token.principal == "media.storage"
        assert role_token.timestamp == NOW
        assert role_token.expiry_time == NOW + 3600
        assert role_token.lifetime == 3600

    def test_wire_format(self, role_token):
        wire = role_token.token
        assert wire.startswith("v=Z1;d=sports;r=readers;p=media.storage;a=")
        assert f";t={NOW};e={NOW + 3600};k=zts.0;s=" in wire

    def test_parse_preserves_fields_and_raw(self, role_token):
        parsed = RoleToken.parse(role_token.token)
        assert parsed == role_token
        assert parsed.raw == role_token.token
        assert parsed.token == role_token.token

    def test_multiple_roles(self, ec_key):
        token = RoleToken.sign("sports", ["readers", "writers"], "media.storage", ec_key, now=NOW)
        parsed = RoleToken.parse(token.token)
        assert parsed.roles == ("readers", "writers")
        assert parsed.has_role("writers")
        assert not parsed.has_role("admin")

    @pytest.mark.parametrize("roles", [[], [""], ["read,ers"]])
    def test_invalid_roles(self, ec_key, roles):
        with pytest.raises(SigningError):
            RoleToken.sign("sports", roles, "media.storage", ec_key, now=NOW)

    def test_missing_principal(self, ec_key):
        with pytest.raises(SigningError):
            RoleToken.sign("sports", ["readers"], "", ec_key, now=NOW)


class TestRoleTokenValidity:
    """Expiry and signature checks."""

    def test_remaining_lifetime(self, role_token):
        assert role_token.remaining_lifetime(NOW + 600) == 3000
        assert role_token.remaining_lifetime(NOW + 4000) == -400

    def test_valid_before_expiry(self, role_token):
        assert role_token.is_valid(now=NOW + 3599)

    def test_invalid_at_expiry(self, role_token):
        assert not role_token.is_valid(now=NOW + 3600)
        assert role_token.is_expired(NOW + 3600)

    def test_signature(self, role_token, ec_key):
        parsed = RoleToken.parse(role_token.token)
        assert parsed.verify(ec_key.public_key())
        assert parsed.is_valid(now=NOW, public_key=ec_key.public_key())

    def test_wrong_authority_key(self, role_token, rsa_key):
        parsed = RoleToken.parse(role_token.token)
        assert not parsed.verify(rsa_key.public_key())
        assert not parsed.is_valid(now=NOW, public_key=rsa_key.public_key())

    def test_tampered_roles(self, role_token, ec_key):
        forged = RoleToken.parse(role_token.token.replace("r=readers", "r=admin"))
        assert not forged.verify(ec_key.public_key())

    def test_unsigned_token_does_not_verify(self, ec_key):
        token = RoleToken("sports", ("readers",), "media.storage", NOW, NOW + 60)
        assert not token.verify(ec_key.public_key())


class TestRoleTokenParse:
    """Malformed role tokens raise ValidationError."""

    @pytest.mark.parametrize(
        "token",
        [
            "",
            "v=Z1;d=sports",
            "v=S1;d=sports;r=readers;p=media.storage;a=00;t=1;e=2;k=0;s=abc",
            "v=Z1;d=sports;r=;p=media.storage;a=00;t=1;e=2;k=0;s=abc",
            "v=Z1;d=sports;r=readers;p=media.storage;a=00;t=1;e=never;k=0;s=abc",
        ],
    )
    def test_malformed(self, token):
        with pytest.raises(ValidationError):
            RoleToken.parse(token)

    def test_expiry_not_after_issue(self):
        with pytest.raises(ValidationError, match="not after issue time"):
            RoleToken.parse("v=Z1;d=sports;r=readers;p=media.storage;a=00;t=10;e=10;k=0;s=abc")
