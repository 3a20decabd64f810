"""Tests for identity resolution from bearer tokens and client addresses."""

from datetime import datetime, timedelta, timezone

import jwt

from paywall.identity import Anonymous, Authenticated, IdentityResolver, bearer_token, client_ip

SECRET = "test-jwt-secret"


def _token(claims, secret=SECRET):
    return jwt.encode(claims, secret, algorithm="HS256")


class TestClientIp:
    def test_first_forwarded_hop_wins(self):
        headers = {"x-forwarded-for": "203.0.113.7, 10.0.0.1, 10.0.0.2"}
        assert client_ip(headers, "10.0.0.9") == "203.0.113.7"

    def test_falls_back_to_peer_address(self):
        assert client_ip({}, "198.51.100.4") == "198.51.100.4"

    def test_blank_forwarded_header_ignored(self):
        assert client_ip({"x-forwarded-for": " , 10.0.0.1"}, "198.51.100.4") == "198.51.100.4"

    def test_unknown_when_nothing_available(self):
        assert client_ip({}, None) == "unknown"


class TestBearerToken:
    def test_extracts_token(self):
        assert bearer_token("Bearer abc.def.ghi") == "abc.def.ghi"

    def test_rejects_other_schemes(self):
        assert bearer_token("Basic dXNlcjpwYXNz") is None
        assert bearer_token(None) is None
        assert bearer_token("Bearer   ") is None


class TestIdentityResolver:
    def test_valid_token_is_authenticated(self):
        resolver = IdentityResolver(SECRET)
        identity = resolver.resolve(f"Bearer {_token({'id': 'user-42'})}", "203.0.113.7")

        assert identity == Authenticated(user_id="user-42")
        assert identity.key == "user:user-42"

    def test_sub_claim_used_when_id_missing(self):
        resolver = IdentityResolver(SECRET)
        identity = resolver.resolve(f"Bearer {_token({'sub': 'user-7'})}", "203.0.113.7")
        assert identity == Authenticated(user_id="user-7")

    def test_missing_token_is_anonymous(self):
        identity = IdentityResolver(SECRET).resolve(None, "203.0.113.7")

        assert identity == Anonymous(ip_address="203.0.113.7")
        assert identity.key == "ip:203.0.113.7"

    def test_wrong_signature_is_anonymous(self):
        token = _token({"id": "user-42"}, secret="someone-else")
        identity = IdentityResolver(SECRET).resolve(f"Bearer {token}", "203.0.113.7")
        assert isinstance(identity, Anonymous)

    def test_expired_token_is_anonymous(self):
        expired = datetime.now(timezone.utc) - timedelta(minutes=5)
        token = _token({"id": "user-42", "exp": expired})
        identity = IdentityResolver(SECRET).resolve(f"Bearer {token}", "203.0.113.7")
        assert isinstance(identity, Anonymous)

    def test_malformed_token_is_anonymous(self):
        identity = IdentityResolver(SECRET).resolve("Bearer not-a-jwt", "203.0.113.7")
        assert isinstance(identity, Anonymous)

    def test_no_secret_means_everyone_is_anonymous(self):
        identity = IdentityResolver(None).resolve(f"Bearer {_token({'id': 'user-42'})}", "203.0.113.7")
        assert isinstance(identity, Anonymous)

    def test_unknown_user_is_anonymous(self):
        resolver = IdentityResolver(SECRET, user_exists=lambda user_id: user_id == "user-1")

        assert resolver.resolve(f"Bearer {_token({'id': 'user-1'})}", "1.2.3.4") == Authenticated("user-1")
        assert resolver.resolve(f"Bearer {_token({'id': 'ghost'})}", "1.2.3.4") == Anonymous("1.2.3.4")

    def test_resolve_request_reads_headers(self):
        resolver = IdentityResolver(SECRET)
        headers = {
            "authorization": f"Bearer {_token({'id': 'user-42'})}",
            "x-forwarded-for": "203.0.113.7",
        }
        assert resolver.resolve_request(headers, "10.0.0.1") == Authenticated("user-42")
        assert resolver.resolve_request({"x-forwarded-for": "203.0.113.7"}, "10.0.0.1") == Anonymous("203.0.113.7")

    def test_same_person_gets_distinct_keys_before_and_after_login(self):
        resolver = IdentityResolver(SECRET)
        before = resolver.resolve(None, "203.0.113.7")
        after = resolver.resolve(f"Bearer {_token({'id': 'user-42'})}", "203.0.113.7")
        assert before.key != after.key
