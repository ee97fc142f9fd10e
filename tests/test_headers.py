"""
Unit tests for header binding.
"""

import pytest

from ztoken import PrincipalToken, RoleToken, bind, bind_principal, sign_principal_token
from ztoken.config import PRINCIPAL_AUTH_HEADER, ROLE_AUTH_HEADER

from .conftest import NOW


class TestBind:

    def test_role_token_header(self, ec_key):
        token = RoleToken.sign("sports", ["readers"], "media.storage", ec_key, now=NOW)
        assert bind(token) == (ROLE_AUTH_HEADER, token.token)
        assert ROLE_AUTH_HEADER == "Athenz-Role-Auth"

    def test_parsed_token_sent_as_received(self, ec_key):
        received = RoleToken.sign("sports", ["readers"], "media.storage", ec_key, now=NOW).token
        assert bind(RoleToken.parse(received))[1] == received

    def test_none_rejected(self):
        with pytest.raises(ValueError):
            bind(None)


class TestBindPrincipal:

    def test_principal_header(self, rsa_key):
        token = sign_principal_token("media", "storage", "v0", rsa_key, now=NOW)
        assert bind_principal(token) == (PRINCIPAL_AUTH_HEADER, token.token)
        assert PRINCIPAL_AUTH_HEADER == "Athenz-Principal-Auth"

    def test_unsigned_rejected(self):
        unsigned = PrincipalToken("media", "storage", "v0", NOW, NOW + 60, salt="00")
        with pytest.raises(ValueError, match="signed"):
            bind_principal(unsigned)
