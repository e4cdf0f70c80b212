"""Tests for centralized configuration."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError as PydanticValidationError


class TestRedisSettings:
    def test_redis_default_values(self):
        from scheduling.config import RedisSettings

        with patch.dict(os.environ, {}, clear=True):
            settings = RedisSettings()
            assert settings.host == "redis"
            assert settings.port == 6379
            assert settings.max_connections == 50
            assert settings.events_channel == "scheduling:events"

    def test_redis_from_environment(self):
        from scheduling.config import RedisSettings

        env = {"REDIS_HOST": "cache", "REDIS_PORT": "6380", "REDIS_EVENTS_CHANNEL": "tenant-a:events"}
        with patch.dict(os.environ, env, clear=True):
            settings = RedisSettings()
            assert settings.host == "cache"
            assert settings.port == 6380
            assert settings.events_channel == "tenant-a:events"


class TestPostgresSettings:
    def test_postgres_default_values(self):
        from scheduling.config import PostgresSettings

        with patch.dict(os.environ, {}, clear=True):
            settings = PostgresSettings()
            assert settings.user == "scheduler"
            assert settings.database == "scheduling"
            assert settings.pool_min_size == 2

    def test_postgres_dsn_generation(self):
        from scheduling.config import PostgresSettings

        env = {
            "POSTGRES_HOST": "dbhost",
            "POSTGRES_PORT": "5433",
            "POSTGRES_USER": "myuser",
            "POSTGRES_PASSWORD": "mypass",
            "POSTGRES_DB": "mydb",
        }
        with patch.dict(os.environ, env, clear=True):
            dsn = PostgresSettings().get_dsn()
            assert "host=dbhost" in dsn
            assert "port=5433" in dsn
            assert "user=myuser" in dsn
            assert "dbname=mydb" in dsn


class TestWorkflowSettings:
    def test_defaults(self):
        from scheduling.config import WorkflowSettings

        with patch.dict(os.environ, {}, clear=True):
            settings = WorkflowSettings()
            assert settings.confirmation_ttl_minutes == 30
            assert settings.host_approval_ttl_minutes == 2880
            assert settings.token_bytes == 32
            assert settings.expiry_sweep_interval_seconds == 60

    def test_from_environment(self):
        from scheduling.config import WorkflowSettings

        env = {"WORKFLOW_CONFIRMATION_TTL_MINUTES": "5", "WORKFLOW_EXPIRY_SWEEP_INTERVAL_SECONDS": "0"}
        with patch.dict(os.environ, env, clear=True):
            settings = WorkflowSettings()
            assert settings.confirmation_ttl_minutes == 5
            assert settings.expiry_sweep_interval_seconds == 0

    def test_ttl_must_be_positive(self):
        from scheduling.config import WorkflowSettings

        with patch.dict(os.environ, {"WORKFLOW_CONFIRMATION_TTL_MINUTES": "0"}, clear=True):
            with pytest.raises(PydanticValidationError):
                WorkflowSettings()


class TestPollSettings:
    def test_defaults(self):
        from scheduling.config import PollSettings

        with patch.dict(os.environ, {}, clear=True):
            settings = PollSettings()
            assert settings.max_time_slots == 20
            assert (settings.min_votes_per_participant, settings.max_votes_per_participant) == (1, 10)
            assert (settings.min_duration_minutes, settings.max_duration_minutes) == (15, 1440)


class TestStorageSettings:
    def test_default_backend(self):
        from scheduling.config import StorageSettings

        with patch.dict(os.environ, {}, clear=True):
            assert StorageSettings().backend == "memory"

    def test_postgres_backend(self):
        from scheduling.config import StorageSettings

        with patch.dict(os.environ, {"STORAGE_BACKEND": "postgres"}, clear=True):
            assert StorageSettings().backend == "postgres"

    def test_unknown_backend_rejected(self):
        from scheduling.config import StorageSettings

        with patch.dict(os.environ, {"STORAGE_BACKEND": "sqlite"}, clear=True):
            with pytest.raises(PydanticValidationError):
                StorageSettings()


class TestCorsSettings:
    def test_cors_default_values(self):
        from scheduling.config import CorsSettings

        with patch.dict(os.environ, {}, clear=True):
            settings = CorsSettings()
            assert "http://localhost:5173" in settings.origins
            assert settings.allow_credentials is True

    def test_cors_wildcard_disables_credentials(self):
        from scheduling.config import CorsSettings

        with patch.dict(os.environ, {"CORS_ORIGINS": "*"}, clear=True):
            settings = CorsSettings()
            assert settings.origins == ["*"]
            assert settings.allow_credentials is False


class TestSettings:
    def test_settings_singleton_pattern(self):
        from scheduling.config import clear_settings_cache, get_settings

        clear_settings_cache()
        assert get_settings() is get_settings()
        clear_settings_cache()

    def test_settings_has_all_subsections(self):
        from scheduling.config import Settings

        with patch.dict(os.environ, {}, clear=True):
            settings = Settings()
            for name in ("redis", "postgres", "workflow", "polls", "storage", "cors", "debug", "features"):
                assert hasattr(settings, name)

    def test_debug_and_feature_flags(self):
        from scheduling.config import Settings

        env = {"REQUEST_DEBUG": "1", "REDIS_DEBUG": "true", "ENABLE_EVENT_BUS": "0", "RUN_MIGRATIONS": "no"}
        with patch.dict(os.environ, env, clear=True):
            settings = Settings()
            assert settings.debug.request is True
            assert settings.debug.redis is True
            assert settings.features.event_bus is False
            assert settings.features.migrations is False
