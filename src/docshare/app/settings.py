"""docshare configuration settings.

DocShareSettings is the single configuration object accepted by create_app().
It is a plain frozen dataclass so tests can inject config without touching
os.environ; ``from_env`` is the production entry point.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from .sharing.passwords import (
    DEFAULT_MEMORY_COST,
    DEFAULT_PARALLELISM,
    DEFAULT_TIME_COST,
)
from .sharing.sessions import DEFAULT_SESSION_TTL_SECONDS

MIN_SESSION_SECRET_LENGTH = 32
DEFAULT_FRONTEND_URL = "http://localhost:5173"
DEFAULT_CORS_ORIGINS = (
    "http://localhost:5173",
    "http://localhost:3000",
)


@dataclass(frozen=True, slots=True)
class DocShareSettings:
    """Configuration for the docshare FastAPI application.

    All fields have defaults for local development. Non-local environments
    must supply supabase_url, supabase_service_role_key and session_secret.
    """

    # ── Environment ────────────────────────────────────────────────
    environment: str = "local"
    """One of: local, dev, staging, production."""

    # ── Supabase ───────────────────────────────────────────────────
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    """Service-role key for PostgREST calls. Never log this."""

    supabase_jwt_secret: str = ""
    """HS256 secret for access tokens when JWKS is not used (local dev)."""

    supabase_audience: str = "authenticated"

    # ── Share links ────────────────────────────────────────────────
    session_secret: str = ""
    """Signs share-session tokens. Must be >= 32 chars in non-local."""

    frontend_url: str = DEFAULT_FRONTEND_URL
    """Base URL that share links point at."""

    share_session_ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS

    # ── Password hashing (argon2id) ────────────────────────────────
    argon2_time_cost: int = DEFAULT_TIME_COST
    argon2_memory_cost: int = DEFAULT_MEMORY_COST
    argon2_parallelism: int = DEFAULT_PARALLELISM

    # ── CORS ───────────────────────────────────────────────────────
    cors_origins: tuple[str, ...] = DEFAULT_CORS_ORIGINS

    @property
    def is_local(self) -> bool:
        return self.environment == "local"

    def validate(self) -> list[str]:
        """Return a list of configuration errors. Empty means valid."""
        errors: list[str] = []
        if self.share_session_ttl_seconds <= 0:
            errors.append("share_session_ttl_seconds must be positive")
        if self.argon2_time_cost < 1 or self.argon2_parallelism < 1:
            errors.append("argon2 time_cost and parallelism must be >= 1")
        if self.argon2_memory_cost < 8 * self.argon2_parallelism:
            errors.append("argon2_memory_cost must be >= 8 * argon2_parallelism")
        if not self.is_local:
            if not self.supabase_url:
                errors.append(f"{self.environment}: supabase_url is required")
            if not self.supabase_service_role_key:
                errors.append(
                    f"{self.environment}: supabase_service_role_key is required"
                )
            if len(self.session_secret) < MIN_SESSION_SECRET_LENGTH:
                errors.append(
                    f"{self.environment}: session_secret must be >= "
                    f"{MIN_SESSION_SECRET_LENGTH} characters"
                )
        return errors

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> DocShareSettings:
        """Build settings from environment variables."""
        if env is None:
            env = dict(os.environ)

        cors_raw = env.get("CORS_ORIGINS", "")
        cors = (
            tuple(o.strip() for o in cors_raw.split(",") if o.strip())
            if cors_raw
            else DEFAULT_CORS_ORIGINS
        )

        return cls(
            environment=env.get("ENVIRONMENT", "local"),
            supabase_url=env.get("SUPABASE_URL", ""),
            supabase_service_role_key=env.get("SUPABASE_SERVICE_ROLE_KEY", ""),
            supabase_jwt_secret=env.get("SUPABASE_JWT_SECRET", ""),
            supabase_audience=env.get("SUPABASE_AUDIENCE", "authenticated"),
            session_secret=env.get("SESSION_SECRET", ""),
            frontend_url=env.get("FRONTEND_URL", DEFAULT_FRONTEND_URL),
            share_session_ttl_seconds=int(
                env.get("SHARE_SESSION_TTL_SECONDS", DEFAULT_SESSION_TTL_SECONDS)
            ),
            argon2_time_cost=int(env.get("ARGON2_TIME_COST", DEFAULT_TIME_COST)),
            argon2_memory_cost=int(env.get("ARGON2_MEMORY_COST", DEFAULT_MEMORY_COST)),
            argon2_parallelism=int(env.get("ARGON2_PARALLELISM", DEFAULT_PARALLELISM)),
            cors_origins=cors,
        )
