"""
End-to-end flow: sign a principal token, exchange it, call the provider.
"""

import pytest

from ztoken import ExchangeError, RoleToken, bind
from ztoken.config import ROLE_AUTH_HEADER

from .conftest import NOW, PROVIDER_BODY


class TestAuthorizedRequest:
    """media.storage reads sports scores through the readers role."""

    def test_provider_accepts_role_token(self, zts_client, http, clock, authority):
        role_token = zts_client.get_role_token("sports", "readers")
        assert role_token.is_valid(now=clock(), public_key=authority.public_key)
        assert role_token.expiry_time == NOW + 3600

        header, value = bind(role_token)
        assert header == ROLE_AUTH_HEADER

        response = http.get("/sports/scores", headers={header: value})
        assert response.status_code == 200
        assert response.text == PROVIDER_BODY

    def test_provider_rejects_missing_token(self, http):
        assert http.get("/sports/scores").status_code == 401

    def test_provider_rejects_foreign_signature(self, http, ec_key):
        forged = RoleToken.sign("sports", ["readers"], "media.storage", ec_key, now=NOW)
        response = http.get("/sports/scores", headers={ROLE_AUTH_HEADER: forged.token})
        assert response.status_code == 403

    def test_cached_token_reused_across_requests(self, zts_client, http, authority):
        for _ in range(3):
            header, value = bind(zts_client.get_role_token("sports", "readers"))
            assert http.get("/sports/scores", headers={header: value}).status_code == 200
        assert authority.requests == 1


class TestDeniedRequest:
    """Without a grant no token is issued and nothing is cached."""

    def test_denied_role_not_cached(self, zts_client, authority):
        authority.revoke("sports", "readers", "media.storage")

        for attempt in range(1, 3):
            with pytest.raises(ExchangeError) as exc_info:
                zts_client.get_role_token("sports", "readers")
            assert exc_info.value.forbidden
            assert len(zts_client.cache) == 0
            assert authority.requests == attempt

    def test_revocation_evicts_cached_grant(self, zts_client, authority, clock):
        zts_client.get_role_token("sports", "readers")
        authority.revoke("sports", "readers", "media.storage")
        clock.advance(3000)

        with pytest.raises(ExchangeError):
            zts_client.get_role_token("sports", "readers")
        assert len(zts_client.cache) == 0

    def test_outage_served_from_cache(self, zts_client, authority, clock):
        cached = zts_client.get_role_token("sports", "readers")
        authority.set_outage(503)
        clock.advance(3000)

        assert zts_client.get_role_token("sports", "readers") is cached
