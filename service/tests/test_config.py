"""Tests for Settings parsing and validation."""

import os

import pytest
from linguaroute.core.config import Settings, get_settings, reset_settings
from pydantic import ValidationError


@pytest.mark.unit
def test_comma_separated_defaults_become_lists():
    settings = Settings()

    assert settings.REQUIRED_REGION_TAGS == ["eu"]
    assert settings.ALLOWED_REGION_FALLBACKS == ["global"]
    assert settings.REQUIRED_CERTIFICATIONS == ["SOC2"]
    assert settings.GLOSSARY_HIERARCHY == ["user", "channel", "tenant"]
    assert "Internal Use Only" in settings.BANNED_PHRASES


@pytest.mark.unit
def test_csv_values_from_environment(monkeypatch):
    monkeypatch.setenv("REQUIRED_REGION_TAGS", "eu, jp ,")
    monkeypatch.setenv("BANNED_PHRASES", "Confidential,Do Not Translate")

    settings = Settings()

    assert settings.REQUIRED_REGION_TAGS == ["eu", "jp"]
    assert settings.BANNED_PHRASES == ["Confidential", "Do Not Translate"]


@pytest.mark.unit
def test_glossary_hierarchy_must_name_every_scope():
    assert Settings(GLOSSARY_HIERARCHY="Tenant,User,Channel").GLOSSARY_HIERARCHY == [
        "tenant",
        "user",
        "channel",
    ]
    with pytest.raises(ValidationError):
        Settings(GLOSSARY_HIERARCHY="user,tenant")


@pytest.mark.unit
@pytest.mark.parametrize(
    "field,value",
    [
        ("DAILY_BUDGET_USD", -1),
        ("ROUTER_RETRY_COUNT", -1),
        ("MAX_CHARACTERS_PER_REQUEST", 0),
        ("DETECTION_MIN_CONFIDENCE", 1.5),
        ("DRAFT_STORE_BACKEND", "redis"),
    ],
)
def test_invalid_values_are_rejected(field, value):
    with pytest.raises(ValidationError):
        Settings(**{field: value})


@pytest.mark.unit
def test_data_paths_are_absolute(tmp_path):
    settings = Settings(DATA_DIR=str(tmp_path / "data"))

    assert os.path.isabs(settings.DATA_DIR)
    assert settings.DRAFT_DB_PATH.endswith("offline_drafts.db")
    assert settings.TRANSLATION_CACHE_DB_PATH.startswith(settings.DATA_DIR)

    settings.ensure_data_dirs()
    assert (tmp_path / "data").is_dir()


@pytest.mark.unit
def test_get_settings_is_cached_until_reset(monkeypatch):
    first = get_settings()
    assert get_settings() is first

    monkeypatch.setenv("DAILY_BUDGET_USD", "2.5")
    reset_settings()

    assert get_settings() is not first
    assert get_settings().DAILY_BUDGET_USD == 2.5
