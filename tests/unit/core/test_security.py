#!/usr/bin/env python3
"""
Unit Tests for Security Utilities
Tests for permsearch/core/security.py
"""

from datetime import timedelta

import pytest
from jose import jwt

from permsearch.core.config import settings
from permsearch.core.exceptions import AuthenticationException
from permsearch.core.security import (
    TokenPrincipal,
    create_access_token,
    decode_token,
    verify_access_token,
)


class TestAccessTokens:
    """Test JWT access tokens"""

    def test_round_trip(self):
        """Test a created token names its user, tenant and roles"""
        token = create_access_token("u1", "t1", roles=["sync-service"])

        principal = verify_access_token(token)

        assert principal.user_id == "u1"
        assert principal.tenant_id == "t1"
        assert principal.has_role("sync-service")
        assert not principal.has_role("admin")

    def test_claims(self):
        """Test encoded claims"""
        payload = decode_token(create_access_token("u1", "t1"))
        assert payload["sub"] == "u1"
        assert payload["tenant_id"] == "t1"
        assert payload["type"] == "access"
        assert payload["roles"] == []
        assert "exp" in payload

    def test_expired_token_rejected(self):
        """Test expired tokens raise AuthenticationException"""
        token = create_access_token("u1", "t1", expires_delta=timedelta(seconds=-1))
        with pytest.raises(AuthenticationException):
            verify_access_token(token)

    def test_invalid_signature_rejected(self):
        """Test a token signed with another key is rejected"""
        token = jwt.encode(
            {"sub": "u1", "tenant_id": "t1", "type": "access"},
            "another-secret-key-that-is-long-enough",
            algorithm=settings.JWT_ALGORITHM,
        )
        with pytest.raises(AuthenticationException) as exc_info:
            verify_access_token(token)
        assert exc_info.value.message == "Invalid token"

    def test_garbage_rejected(self):
        """Test a malformed token is rejected"""
        with pytest.raises(AuthenticationException):
            decode_token("not-a-jwt")

    def test_wrong_type_rejected(self):
        """Test a non-access token is rejected"""
        token = jwt.encode(
            {"sub": "u1", "tenant_id": "t1", "type": "refresh"},
            settings.SECRET_KEY,
            algorithm=settings.JWT_ALGORITHM,
        )
        with pytest.raises(AuthenticationException) as exc_info:
            verify_access_token(token)
        assert exc_info.value.message == "Invalid token type"

    def test_missing_tenant_rejected(self):
        """Test a token without a tenant is rejected"""
        token = jwt.encode(
            {"sub": "u1", "type": "access"},
            settings.SECRET_KEY,
            algorithm=settings.JWT_ALGORITHM,
        )
        with pytest.raises(AuthenticationException):
            verify_access_token(token)


class TestTokenPrincipal:
    def test_roles_default_empty(self):
        assert TokenPrincipal(user_id="u1", tenant_id="t1").roles == []
