"""Unit tests for JWT token generation and validation

Tests cover:
- Token creation with the sub claim
- Token decoding and validation
- Token expiration handling
- Invalid token handling
- Environment configuration
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import jwt
import pytest

from ledgerflow.auth.jwt import create_access_token, decode_token, user_id_from_token
from ledgerflow.config import get_settings


@pytest.fixture
def jwt_env(monkeypatch):
    """Fresh settings with a known secret; cache restored afterwards."""
    monkeypatch.setenv('JWT_SECRET', 'test-secret-key-256-bits-minimum-length-required-for-security')
    monkeypatch.setenv('JWT_EXPIRY_MINUTES', '60')
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


class TestCreateAccessToken:
    """Test JWT token creation"""

    def test_token_contains_sub_and_timestamps(self, jwt_env):
        """Test token payload carries the user id"""
        user_id = uuid4()

        token = create_access_token(user_id)

        payload = jwt.decode(token, options={"verify_signature": False})
        assert payload['sub'] == str(user_id)
        assert payload['exp'] - payload['iat'] == 60 * 60

    def test_custom_expiry(self, jwt_env):
        """Test expires_minutes overrides the configured expiry"""
        token = create_access_token(uuid4(), expires_minutes=5)

        payload = jwt.decode(token, options={"verify_signature": False})
        assert payload['exp'] - payload['iat'] == 5 * 60


class TestDecodeToken:
    """Test JWT token validation"""

    def test_round_trip(self, jwt_env):
        user_id = uuid4()
        assert decode_token(create_access_token(user_id))['sub'] == str(user_id)

    def test_expired_token_rejected(self, jwt_env):
        """Test expired tokens raise ExpiredSignatureError"""
        past = datetime.now(timezone.utc) - timedelta(hours=2)
        token = jwt.encode(
            {'sub': str(uuid4()), 'iat': int(past.timestamp()), 'exp': int((past + timedelta(minutes=5)).timestamp())},
            jwt_env.JWT_SECRET,
            algorithm='HS256',
        )

        with pytest.raises(jwt.ExpiredSignatureError):
            decode_token(token)

    def test_wrong_secret_rejected(self, jwt_env):
        """Test tokens signed with another key are rejected"""
        token = jwt.encode({'sub': str(uuid4())}, 'another-secret-key-with-enough-length-for-hs256', algorithm='HS256')

        with pytest.raises(jwt.InvalidTokenError):
            decode_token(token)

    def test_malformed_token_rejected(self, jwt_env):
        with pytest.raises(jwt.InvalidTokenError):
            decode_token("not.a.token")

    def test_empty_secret_refused(self, monkeypatch):
        """Test a blank JWT_SECRET is a configuration error"""
        monkeypatch.setenv('JWT_SECRET', '')
        get_settings.cache_clear()
        try:
            with pytest.raises(ValueError):
                create_access_token(uuid4())
        finally:
            get_settings.cache_clear()


class TestUserIdFromToken:
    """Test reading the owning user from a token"""

    def test_returns_uuid(self, jwt_env):
        user_id = uuid4()
        assert user_id_from_token(create_access_token(user_id)) == user_id

    def test_non_uuid_subject_rejected(self, jwt_env):
        token = create_access_token("service-account")

        with pytest.raises(jwt.InvalidTokenError):
            user_id_from_token(token)

    def test_missing_expiry_rejected(self, jwt_env):
        """Test tokens without exp are refused"""
        token = jwt.encode({'sub': str(uuid4())}, jwt_env.JWT_SECRET, algorithm='HS256')

        with pytest.raises(jwt.MissingRequiredClaimError):
            user_id_from_token(token)
