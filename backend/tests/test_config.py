"""
EdgeGuard — Configuration Tests
================================
"""

import pytest
from pydantic import ValidationError

from edgeguard.config import Settings


def _settings(**values) -> Settings:
    return Settings(_env_file=None, **values)


class TestDefaults:
    def test_pipeline_defaults(self, monkeypatch):
        for name in ("REDIS_URL", "LOG_LEVEL", "APP_ENV", "AUTH_TRANSPORT"):
            monkeypatch.delenv(name, raising=False)
        settings = _settings()
        assert settings.app_env == "development"
        assert settings.protected_prefixes_list == ["/api/v1"]
        assert settings.auth_transport == "cookie"
        assert settings.auth_cookie_name == "jwt_token"
        assert settings.token_algorithms_list == ["HS256"]
        assert settings.rate_limit_requests == 100
        assert settings.rate_limit_window_seconds == 60
        assert settings.rate_limit_window_grace_seconds == 120
        assert settings.local_burst_size == 200
        assert settings.visitor_idle_seconds == 900
        assert settings.rate_limit_exempt_paths_list == ["/health"]
        assert settings.request_timeout_seconds == 30.0
        assert settings.redis_url == "redis://localhost:6379/0"

    def test_explicit_burst(self):
        assert _settings(local_rate_per_second=5, local_burst=10).local_burst_size == 10

    def test_comma_lists(self):
        settings = _settings(
            cors_origins="https://a.example, https://b.example,",
            protected_prefixes="/api/v1,/admin",
        )
        assert settings.cors_origins_list == ["https://a.example", "https://b.example"]
        assert settings.protected_prefixes_list == ["/api/v1", "/admin"]

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("RATE_LIMIT_REQUESTS", "5")
        monkeypatch.setenv("AUTH_TRANSPORT", "Bearer")
        monkeypatch.setenv("ROUTE_TIMEOUTS", '{"/reports": 120}')
        settings = _settings()
        assert settings.rate_limit_requests == 5
        assert settings.auth_transport == "bearer"
        assert settings.route_timeouts == {"/reports": 120.0}


class TestValidation:
    @pytest.mark.parametrize("algorithms", ["RS256", "HS256,ES256", "none", ""])
    def test_only_mac_algorithms(self, algorithms):
        with pytest.raises(ValidationError):
            _settings(token_algorithms=algorithms)

    def test_unknown_transport(self):
        with pytest.raises(ValidationError):
            _settings(auth_transport="query")

    def test_unknown_environment(self):
        with pytest.raises(ValidationError):
            _settings(app_env="qa")

    def test_route_timeout_prefix_must_be_absolute(self):
        with pytest.raises(ValidationError):
            _settings(route_timeouts={"reports": 5})

    def test_route_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            _settings(route_timeouts={"/reports": 0})


class TestProductionValidation:
    def test_missing_secret(self):
        with pytest.raises(ValueError, match="APP_SECRET is required"):
            _settings(app_secret="").validate_required_for_production()

    def test_short_secret(self):
        with pytest.raises(ValueError, match="at least 32 characters"):
            _settings(app_secret="too-short").validate_required_for_production()

    def test_valid_secret(self):
        _settings(app_secret="x" * 32).validate_required_for_production()

    def test_secret_not_in_repr(self):
        assert "super-secret-value" not in repr(_settings(app_secret="super-secret-value" * 2))
