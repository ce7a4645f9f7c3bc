"""Tests for session token issue and verification."""

import pytest

from sriox.auth import SessionAuthenticator
from sriox.errors import Unauthenticated


@pytest.fixture
def authenticator():
    return SessionAuthenticator("test-secret", lifetime=3600)


class TestSessionTokens:
    """Tests for SessionAuthenticator."""

    def test_issue_and_verify(self, authenticator):
        token = authenticator.issue("alice", now=1000)
        assert token.startswith("alice:4600:")
        assert authenticator.verify(token, now=2000) == "alice"

    def test_expired_token(self, authenticator):
        token = authenticator.issue("alice", now=1000)
        assert authenticator.verify(token, now=5000) is None

    def test_tampered_owner(self, authenticator):
        _, expires, signature = authenticator.issue("alice", now=1000).split(":")
        assert authenticator.verify(f"mallory:{expires}:{signature}", now=2000) is None

    def test_tampered_expiry(self, authenticator):
        owner, _, signature = authenticator.issue("alice", now=1000).split(":")
        assert authenticator.verify(f"{owner}:999999:{signature}", now=2000) is None

    def test_other_secret_rejected(self, authenticator):
        token = SessionAuthenticator("other-secret", 3600).issue("alice", now=1000)
        assert authenticator.verify(token, now=2000) is None

    @pytest.mark.parametrize("token", ["", "garbage", "a:b:c", "a:1:2:3"])
    def test_malformed_tokens(self, authenticator, token):
        assert authenticator.verify(token) is None

    def test_no_secret_rejects_everything(self):
        unconfigured = SessionAuthenticator("", 3600)
        token = SessionAuthenticator("x", 3600).issue("alice")
        assert unconfigured.is_configured() is False
        assert unconfigured.verify(token) is None
        with pytest.raises(ValueError):
            unconfigured.issue("alice")

    def test_owner_with_colon_rejected(self, authenticator):
        with pytest.raises(ValueError):
            authenticator.issue("a:b")


class TestAuthenticate:
    """Tests for Authorization header handling."""

    def test_bearer_header(self, authenticator):
        token = authenticator.issue("alice")
        assert authenticator.authenticate(f"Bearer {token}") == "alice"

    def test_raw_token(self, authenticator):
        assert authenticator.authenticate(authenticator.issue("alice")) == "alice"

    def test_missing_header(self, authenticator):
        with pytest.raises(Unauthenticated, match="Authentication required"):
            authenticator.authenticate(None)

    def test_invalid_token(self, authenticator):
        with pytest.raises(Unauthenticated, match="Invalid or expired"):
            authenticator.authenticate("Bearer alice:1:deadbeef")
