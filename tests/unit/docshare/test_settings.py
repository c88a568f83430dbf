"""DocShareSettings: defaults, validation, environment loading."""

from __future__ import annotations

from docshare.app.settings import DEFAULT_CORS_ORIGINS, DocShareSettings


def test_local_defaults_are_valid():
    settings = DocShareSettings()
    assert settings.is_local
    assert settings.validate() == []


def test_non_local_requires_supabase_and_secret():
    errors = DocShareSettings(environment="production").validate()
    assert any("supabase_url" in e for e in errors)
    assert any("supabase_service_role_key" in e for e in errors)
    assert any("session_secret" in e for e in errors)


def test_short_session_secret_rejected():
    settings = DocShareSettings(
        environment="staging",
        supabase_url="https://x.supabase.co",
        supabase_service_role_key="srk",
        session_secret="too-short",
    )
    assert len(settings.validate()) == 1


def test_invalid_argon2_parameters():
    errors = DocShareSettings(argon2_memory_cost=4).validate()
    assert any("argon2_memory_cost" in e for e in errors)


def test_from_env():
    settings = DocShareSettings.from_env(
        {
            "ENVIRONMENT": "dev",
            "SUPABASE_URL": "https://x.supabase.co",
            "SUPABASE_SERVICE_ROLE_KEY": "srk",
            "SESSION_SECRET": "s" * 32,
            "FRONTEND_URL": "https://docs.example.com",
            "SHARE_SESSION_TTL_SECONDS": "120",
            "CORS_ORIGINS": "https://a.example.com, https://b.example.com",
        }
    )
    assert settings.environment == "dev"
    assert settings.share_session_ttl_seconds == 120
    assert settings.cors_origins == ("https://a.example.com", "https://b.example.com")
    assert settings.validate() == []


def test_from_env_defaults():
    settings = DocShareSettings.from_env({})
    assert settings.environment == "local"
    assert settings.cors_origins == DEFAULT_CORS_ORIGINS
