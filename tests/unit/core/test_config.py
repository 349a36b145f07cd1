#!/usr/bin/env python3
"""
Unit Tests for Configuration Management
Tests for permsearch/core/config.py
"""

import pytest
from pydantic import ValidationError

from permsearch.core.config import Settings, settings

SECRET = "x" * 32


class TestSettingsDefaults:
    """Test default settings values"""

    def test_app_version_default(self):
        """Test default APP_VERSION"""
        assert settings.APP_VERSION == "1.0.0"

    def test_environment_from_env(self):
        """Test ENVIRONMENT is read from the environment"""
        assert settings.ENVIRONMENT == "test"

    def test_retrieval_defaults(self):
        """Test RRF and search defaults"""
        assert settings.RRF_K == 60
        assert settings.SEARCH_TOP_K == 10
        assert settings.ACL_FILTER_STRATEGY == "post"
        assert settings.VECTOR_BACKEND == "database"
        assert settings.ACL_OVERFETCH_FACTOR == 3

    def test_acl_cache_defaults(self):
        """Test ACL cache defaults"""
        assert settings.ACL_CACHE_TTL_SECONDS == 300
        assert settings.ACL_CACHE_FENCE_TTL_SECONDS == 30

    def test_context_defaults(self):
        """Test context budget and citation defaults"""
        assert settings.CONTEXT_MAX_TOKENS == 3000
        assert settings.TOKEN_ESTIMATOR == "heuristic"
        assert settings.CITATION_SUPPORT_THRESHOLD == 0.3

    def test_redis_url_without_password(self):
        """Test REDIS_URL is assembled from parts"""
        s = Settings(SECRET_KEY=SECRET, REDIS_HOST="cache", REDIS_PORT=6380, REDIS_DB=3)
        assert s.REDIS_URL == "redis://cache:6380/3"

    def test_redis_url_with_password(self):
        """Test REDIS_URL embeds the password"""
        s = Settings(SECRET_KEY=SECRET, REDIS_PASSWORD="pw")
        assert s.REDIS_URL.startswith("redis://:pw@")


class TestSettingsValidation:
    """Test settings validators"""

    def test_secret_key_min_length(self):
        """Test a short SECRET_KEY is rejected"""
        with pytest.raises(ValidationError):
            Settings(SECRET_KEY="short")

    def test_invalid_environment(self):
        """Test ENVIRONMENT must be a known value"""
        with pytest.raises(ValidationError):
            Settings(SECRET_KEY=SECRET, ENVIRONMENT="qa")

    def test_log_level_normalized(self):
        """Test LOG_LEVEL is upper-cased"""
        assert Settings(SECRET_KEY=SECRET, LOG_LEVEL="debug").LOG_LEVEL == "DEBUG"

    def test_invalid_log_level(self):
        """Test LOG_LEVEL must be a known level"""
        with pytest.raises(ValidationError):
            Settings(SECRET_KEY=SECRET, LOG_LEVEL="VERBOSE")

    @pytest.mark.parametrize(
        "field,value",
        [
            ("ACL_CACHE_BACKEND", "memcached"),
            ("ACL_FILTER_STRATEGY", "both"),
            ("VECTOR_BACKEND", "faiss"),
            ("EMBEDDING_PROVIDER", "cohere"),
            ("LLM_PROVIDER", "anthropic"),
            ("TOKEN_ESTIMATOR", "words"),
            ("ACL_OVERFETCH_FACTOR", 0),
        ],
    )
    def test_invalid_choices(self, field, value):
        """Test enumerated options reject unknown values"""
        with pytest.raises(ValidationError):
            Settings(SECRET_KEY=SECRET, **{field: value})

    def test_valid_choices(self):
        """Test documented alternatives are accepted"""
        s = Settings(
            SECRET_KEY=SECRET,
            ACL_CACHE_BACKEND="redis",
            ACL_FILTER_STRATEGY="pre",
            VECTOR_BACKEND="milvus",
            LLM_PROVIDER="openai",
            TOKEN_ESTIMATOR="tiktoken",
        )
        assert s.ACL_CACHE_BACKEND == "redis"
        assert s.ACL_FILTER_STRATEGY == "pre"
