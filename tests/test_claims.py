import pytest

from orders_gateway.auth.claims import Claims
from orders_gateway.errors import MalformedToken


class TestClaims:
    def test_full_payload(self):
        claims = Claims.from_payload(
            {
                "sub": "auth0|alice",
                "scope": "openid create:orders read:orders",
                "email_verified": True,
                "gty": "client-credentials",
                "email": "alice@example.com",
            }
        )
        assert claims.subject == "auth0|alice"
        assert claims.scopes == {"openid", "create:orders", "read:orders"}
        assert claims.email_verified is True
        assert claims.is_machine
        assert claims.email == "alice@example.com"

    def test_optional_claims_absent(self):
        claims = Claims.from_payload({"sub": "auth0|alice"})
        assert claims.scope == ""
        assert claims.scopes == frozenset()
        assert claims.email_verified is None
        assert claims.grant_type is None
        assert not claims.is_machine
        assert claims.email is None

    @pytest.mark.parametrize("value", ["true", 1, None, "yes"])
    def test_non_boolean_email_verified_counts_as_absent(self, value):
        assert Claims.from_payload({"sub": "s", "email_verified": value}).email_verified is None

    def test_false_is_kept(self):
        assert Claims.from_payload({"sub": "s", "email_verified": False}).email_verified is False

    @pytest.mark.parametrize("payload", [{}, {"sub": ""}, {"sub": 42}])
    def test_subject_required(self, payload):
        with pytest.raises(MalformedToken):
            Claims.from_payload(payload)
