"""
EdgeGuard — Application Configuration
======================================

What:  Centralized configuration management using Pydantic Settings.
Why:   Twelve-factor style: the same image runs in every environment, only
       the variables change.
How:   Pydantic Settings reads from environment variables (or .env file),
       validates types/ranges, and provides a default `settings` object.
Who:   Passed to the Pipeline and every middleware at app construction.
When:  Loaded once at import time; validated again during app startup.

Design Decision:
    The module-level `settings` instance is only a default. create_app()
    accepts an explicit Settings so tests and embedded deployments can build
    isolated pipelines without touching the environment.

List-valued settings (origins, prefixes, algorithms, paths) are stored as
comma-separated strings and exposed through `*_list` properties, so they can
be set from plain environment variables.
"""

from typing import Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

# HMAC family only. Asymmetric and "none" algorithms are never accepted.
MAC_ALGORITHMS = {"HS256", "HS384", "HS512"}

MIN_SECRET_LENGTH = 32


def _split(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """
    Pipeline settings loaded from environment variables.

    All settings have development defaults. Production deployments MUST set
    APP_SECRET (at least 32 characters) and should set REDIS_URL and
    CORS_ORIGINS explicitly.

    Attributes are grouped by pipeline stage.
    """

    # ── Application ───────────────────────────────────────────────────────
    app_env: str = Field(default="development")

    # Shared HMAC secret used to verify signed tokens. Issued elsewhere.
    app_secret: str = Field(default="", repr=False)

    log_level: str = Field(default="INFO")

    @field_validator("app_env")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        """Restricts APP_ENV to the known deployment environments."""
        valid_envs = {"development", "staging", "production"}
        lower = v.lower()
        if lower not in valid_envs:
            raise ValueError(f"Invalid app_env '{v}'. Must be one of: {valid_envs}")
        return lower

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    # ── Server ────────────────────────────────────────────────────────────
    backend_host: str = Field(default="0.0.0.0")
    backend_port: int = Field(default=8080, ge=1, le=65535)

    # ── CORS ──────────────────────────────────────────────────────────────
    cors_origins: str = Field(default="http://localhost:3000")

    @property
    def cors_origins_list(self) -> List[str]:
        return _split(self.cors_origins)

    # ── Authentication ────────────────────────────────────────────────────
    # Path prefixes whose subtree requires a verified token.
    protected_prefixes: str = Field(default="/api/v1")

    # Where the token is read from: "cookie", "bearer" or "both".
    # With "both", an Authorization header wins over the cookie.
    auth_transport: str = Field(default="cookie")
    auth_cookie_name: str = Field(default="jwt_token", min_length=1)

    token_algorithms: str = Field(default="HS256")
    token_issuer: Optional[str] = Field(default=None)
    token_leeway_seconds: int = Field(default=0, ge=0, le=300)

    @field_validator("auth_transport")
    @classmethod
    def validate_auth_transport(cls, v: str) -> str:
        valid = {"cookie", "bearer", "both"}
        lower = v.lower()
        if lower not in valid:
            raise ValueError(f"Invalid auth_transport '{v}'. Must be one of: {valid}")
        return lower

    @field_validator("token_algorithms")
    @classmethod
    def validate_token_algorithms(cls, v: str) -> str:
        """Only MAC algorithms may be configured for token verification."""
        algorithms = [a.upper() for a in _split(v)]
        if not algorithms:
            raise ValueError("token_algorithms must name at least one algorithm")
        outside = [a for a in algorithms if a not in MAC_ALGORITHMS]
        if outside:
            raise ValueError(
                f"Unsupported token algorithm(s) {outside}. Allowed: {sorted(MAC_ALGORITHMS)}"
            )
        return ",".join(algorithms)

    @property
    def protected_prefixes_list(self) -> List[str]:
        return _split(self.protected_prefixes)

    @property
    def token_algorithms_list(self) -> List[str]:
        return _split(self.token_algorithms)

    # ── Rate Limiting ─────────────────────────────────────────────────────
    # Distributed sliding window: at most N requests per window per client.
    rate_limit_requests: int = Field(default=100, ge=1, le=100_000)
    rate_limit_window_seconds: int = Field(default=60, ge=1, le=86_400)
    # Idle expiry of a client's window collection in the shared store.
    rate_limit_window_grace_seconds: int = Field(default=120, ge=1, le=86_400)

    # Local token bucket fallback: refill rate R/sec and burst B (default 2R).
    local_rate_per_second: float = Field(default=100.0, gt=0, le=100_000)
    local_burst: Optional[int] = Field(default=None, ge=1)

    visitor_idle_seconds: int = Field(default=900, ge=1)
    visitor_sweep_interval_seconds: int = Field(default=60, ge=1)
    visitor_max_entries: int = Field(default=100_000, ge=1)

    rate_limit_exempt_paths: str = Field(default="/health")

    @property
    def local_burst_size(self) -> int:
        if self.local_burst is not None:
            return self.local_burst
        return max(1, int(self.local_rate_per_second * 2))

    @property
    def rate_limit_exempt_paths_list(self) -> List[str]:
        return _split(self.rate_limit_exempt_paths)

    # ── Redis (shared store for distributed limiting) ─────────────────────
    # Empty string disables the distributed limiter entirely.
    redis_url: str = Field(default="redis://localhost:6379/0", repr=False)
    redis_connect_attempts: int = Field(default=3, ge=1, le=10)
    redis_socket_timeout: float = Field(default=2.0, gt=0, le=30)

    # ── Request Timeout ───────────────────────────────────────────────────
    request_timeout_seconds: float = Field(default=30.0, gt=0, le=300)
    # Path prefix → seconds. Longest matching prefix wins.
    route_timeouts: Dict[str, float] = Field(default_factory=dict)
    # Opt-in: cancel handler work that overruns its deadline.
    cancel_on_timeout: bool = Field(default=False)
    max_orphaned_requests: int = Field(default=100, ge=0)

    @field_validator("route_timeouts")
    @classmethod
    def validate_route_timeouts(cls, v: Dict[str, float]) -> Dict[str, float]:
        for prefix, seconds in v.items():
            if not prefix.startswith("/"):
                raise ValueError(f"Route timeout prefix '{prefix}' must start with '/'")
            if seconds <= 0:
                raise ValueError(f"Route timeout for '{prefix}' must be positive")
        return v

    # ── Access Logging ────────────────────────────────────────────────────
    access_log_skip_paths: str = Field(default="")
    # Honour X-Forwarded-For / X-Real-IP. Disable when not behind a proxy.
    trust_proxy_headers: bool = Field(default=True)

    @property
    def access_log_skip_paths_list(self) -> List[str]:
        return _split(self.access_log_skip_paths)

    # ── Metrics ───────────────────────────────────────────────────────────
    # Prometheus exposition on GET <metrics_path>. Disabled: no route, no series.
    metrics_enabled: bool = Field(default=True)
    metrics_path: str = Field(default="/metrics")

    @field_validator("metrics_path")
    @classmethod
    def validate_metrics_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"metrics_path '{v}' must start with '/'")
        return v.rstrip("/") or v

    # ── Pydantic Settings Config ──────────────────────────────────────────
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }

    def validate_required_for_production(self) -> None:
        """
        What:  Validates that security-critical settings are configured.
        When:  Called during app startup (lifespan).
        How:   Collects every problem and raises a single ValueError.
        """
        errors = []
        if not self.app_secret:
            errors.append("APP_SECRET is required")
        elif len(self.app_secret) < MIN_SECRET_LENGTH:
            errors.append(f"APP_SECRET must be at least {MIN_SECRET_LENGTH} characters long")
        if errors:
            raise ValueError(
                "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )


# Default instance; create_app() uses it when no Settings is passed.
settings = Settings()
