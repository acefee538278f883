from __future__ import annotations

import pytest

from notesync_backend.config import Settings


def test_settings_development_allows_defaults():
    s = Settings.model_validate({"environment": "development"})
    assert s.sync_default_conflict_strategy == "create_conflict_copy"
    assert s.sync_require_device is True
    assert s.cors_origins_list() == ["*"]
    assert s.security_warnings() == ["CORS_ALLOW_ORIGINS='*' is permissive"]


def test_settings_production_rejects_unsafe_defaults():
    with pytest.raises(Exception) as excinfo:
        Settings.model_validate({"environment": "production", "sync_require_device": False})

    msg = str(excinfo.value)
    assert "CORS_ALLOW_ORIGINS" in msg
    assert "DATABASE_URL" in msg
    assert "SYNC_REQUIRE_DEVICE" in msg


def test_settings_production_accepts_explicit_config():
    s = Settings.model_validate(
        {
            "environment": "production",
            "database_url": "postgresql+psycopg://u:p@localhost:5432/notesync",
            "cors_allow_origins": "https://a.example.com, https://b.example.com",
        }
    )
    assert s.cors_origins_list() == ["https://a.example.com", "https://b.example.com"]
    assert s.security_warnings() == []


def test_settings_cors_origins_alias():
    s = Settings.model_validate({"CORS_ORIGINS": "https://x.example.com"})
    assert s.cors_origins_list() == ["https://x.example.com"]


@pytest.mark.parametrize("strategy", ["server_wins", "client_wins", "manual_merge"])
def test_settings_accepts_known_conflict_strategies(strategy: str):
    s = Settings.model_validate({"sync_default_conflict_strategy": strategy})
    assert s.sync_default_conflict_strategy == strategy


def test_settings_rejects_unknown_conflict_strategy():
    with pytest.raises(Exception) as excinfo:
        Settings.model_validate({"sync_default_conflict_strategy": "newest_wins"})
    assert "SYNC_DEFAULT_CONFLICT_STRATEGY" in str(excinfo.value)
