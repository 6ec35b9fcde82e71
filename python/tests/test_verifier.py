"""Unit tests for token verifiers.

Tests the JwksVerifier (with a mocked JWKS client) and the shared
decode_claims validation used by the test verifier.
"""

import time
from contextlib import contextmanager
from unittest.mock import MagicMock, patch
from uuid import uuid4

import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.exceptions import PyJWKClientError

from querygenie.auth.verifier import JwksVerifier
from querygenie.errors import ApiError, ApiErrorCode
from tests.helpers import mint_test_token, mint_token_with_bad_signature
from tests.support.test_verifier import MockJwtVerifier

ISSUER = "https://auth.querygenie.test"
AUDIENCE = "querygenie"


def _new_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@contextmanager
def _jwks_returning(verifier, side_effect):
    """Patch the verifier's JWKS client; side_effect feeds get_signing_key_from_jwt."""
    with patch.object(verifier, "_get_jwks_client") as mock_client:
        mock_jwk_client = MagicMock()
        mock_jwk_client.get_signing_key_from_jwt.side_effect = side_effect
        mock_client.return_value = mock_jwk_client
        yield mock_jwk_client


def _signing_key(public_key):
    key = MagicMock()
    key.key = public_key
    return key


class TestJwksVerifier:
    """Unit tests for JwksVerifier. The JWKS endpoint is never contacted."""

    @pytest.fixture(scope="class")
    def private_key(self):
        return _new_private_key()

    @pytest.fixture
    def verifier(self):
        return JwksVerifier(
            jwks_url=f"{ISSUER}/.well-known/jwks.json",
            issuer=f"{ISSUER}/",
            audiences=[AUDIENCE, "querygenie-web"],
            cache_ttl=3600,
        )

    def mint_token(self, private_key, sub: str, **overrides) -> str:
        now = int(time.time())
        payload = {
            "sub": sub,
            "iss": ISSUER,
            "aud": AUDIENCE,
            "iat": now,
            "exp": now + 3600,
            **overrides,
        }
        private_bytes = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        return jwt.encode(payload, private_bytes, algorithm="RS256", headers={"kid": "k1"})

    def _verify(self, verifier, private_key, token):
        with _jwks_returning(verifier, lambda _: _signing_key(private_key.public_key())):
            return verifier.verify(token)

    def _rejects(self, verifier, private_key, token) -> ApiError:
        with pytest.raises(ApiError) as exc_info:
            self._verify(verifier, private_key, token)
        assert exc_info.value.code == ApiErrorCode.E_UNAUTHENTICATED
        return exc_info.value

    def test_valid_token(self, verifier, private_key):
        user_id = str(uuid4())
        claims = self._verify(
            verifier, private_key, self.mint_token(private_key, user_id, email="a@b.io")
        )

        assert claims["sub"] == user_id
        assert claims["email"] == "a@b.io"

    def test_issuer_trailing_slash_normalized(self, verifier):
        assert verifier.issuer == ISSUER

    def test_second_audience_accepted(self, verifier, private_key):
        token = self.mint_token(private_key, str(uuid4()), aud="querygenie-web")
        assert self._verify(verifier, private_key, token)["aud"] == "querygenie-web"

    def test_invalid_signature(self, verifier, private_key):
        token = self.mint_token(_new_private_key(), str(uuid4()))

        error = self._rejects(verifier, private_key, token)
        assert "signature" in error.message.lower()

    def test_expired_token(self, verifier, private_key):
        token = self.mint_token(private_key, str(uuid4()), exp=int(time.time()) - 120)

        error = self._rejects(verifier, private_key, token)
        assert "expired" in error.message.lower()

    def test_wrong_issuer(self, verifier, private_key):
        token = self.mint_token(private_key, str(uuid4()), iss="https://evil.example.com")

        error = self._rejects(verifier, private_key, token)
        assert "issuer" in error.message.lower()

    def test_wrong_audience(self, verifier, private_key):
        token = self.mint_token(private_key, str(uuid4()), aud="other-service")

        error = self._rejects(verifier, private_key, token)
        assert "audience" in error.message.lower()

    def test_missing_audience(self, verifier, private_key):
        now = int(time.time())
        payload = {"sub": str(uuid4()), "iss": ISSUER, "iat": now, "exp": now + 3600}
        private_bytes = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        token = jwt.encode(payload, private_bytes, algorithm="RS256")

        self._rejects(verifier, private_key, token)

    def test_invalid_sub_format(self, verifier, private_key):
        token = self.mint_token(private_key, "not-a-uuid")

        error = self._rejects(verifier, private_key, token)
        assert "sub" in error.message

    def test_clock_skew_accepted(self, verifier, private_key):
        """Expired 30s ago is inside the 60s allowance."""
        user_id = str(uuid4())
        token = self.mint_token(private_key, user_id, exp=int(time.time()) - 30)

        assert self._verify(verifier, private_key, token)["sub"] == user_id

    def test_clock_skew_exceeded(self, verifier, private_key):
        token = self.mint_token(private_key, str(uuid4()), exp=int(time.time()) - 90)

        self._rejects(verifier, private_key, token)

    def test_kid_miss_triggers_refresh(self, verifier, private_key):
        user_id = str(uuid4())
        token = self.mint_token(private_key, user_id)
        responses = [
            PyJWKClientError("Unable to find a signing key that matches: 'k1'"),
            _signing_key(private_key.public_key()),
        ]

        with _jwks_returning(verifier, responses) as client:
            claims = verifier.verify(token)

        assert claims["sub"] == user_id
        assert client.get_signing_key_from_jwt.call_count == 2

    def test_kid_not_found_after_refresh(self, verifier, private_key):
        token = self.mint_token(private_key, str(uuid4()))

        with _jwks_returning(verifier, PyJWKClientError("Unable to find a signing key")):
            with pytest.raises(ApiError) as exc_info:
                verifier.verify(token)

        assert exc_info.value.code == ApiErrorCode.E_UNAUTHENTICATED
        assert "signing key" in exc_info.value.message.lower()

    @pytest.mark.parametrize("message", ["Network error", "Invalid JWKS response"])
    def test_jwks_unavailable(self, verifier, message):
        with _jwks_returning(verifier, PyJWKClientError(message)):
            with pytest.raises(ApiError) as exc_info:
                verifier.verify("some.fake.token")

        assert exc_info.value.code == ApiErrorCode.E_AUTH_UNAVAILABLE
        assert exc_info.value.status_code == 503


class TestMockJwtVerifier:
    """The test verifier shares decode_claims with production."""

    def test_valid_token(self):
        user_id = str(uuid4())
        assert MockJwtVerifier().verify(mint_test_token(user_id))["sub"] == user_id

    @pytest.mark.parametrize(
        "token_factory",
        [
            lambda uid: mint_test_token(uid, expires_in=-3600),
            lambda uid: mint_token_with_bad_signature(uid),
            lambda uid: mint_test_token(uid, issuer="wrong-issuer"),
            lambda uid: mint_test_token(uid, audience="wrong-audience"),
            lambda uid: mint_test_token("not-a-uuid"),
            lambda uid: "not.a.jwt",
        ],
        ids=["expired", "bad-signature", "wrong-issuer", "wrong-audience", "bad-sub", "garbage"],
    )
    def test_rejected_tokens(self, token_factory):
        with pytest.raises(ApiError) as exc_info:
            MockJwtVerifier().verify(token_factory(str(uuid4())))

        assert exc_info.value.code == ApiErrorCode.E_UNAUTHENTICATED
