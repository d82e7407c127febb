import logging

import pytest
from pydantic import ValidationError

from companion_thoughts.config import CompanionSettings, LiveSettings


def test_defaults():
    settings = CompanionSettings(_env_file=None)

    assert settings.ai_enabled is True
    assert settings.ai_frequency_minutes == 3.0
    assert settings.city == "Quy Nhon"
    assert settings.entity_ids == ["default"]
    assert settings.history_size == 20
    assert settings.similarity_threshold == 0.3
    assert settings.weather_cache_ttl_minutes == 30.0


def test_parse_csv_lists_from_settings_init():
    settings = CompanionSettings(_env_file=None, entity_ids="cat, dog", gemini_api_keys="k1,k2,,k3")

    assert settings.entity_ids == ["cat", "dog"]
    assert settings.gemini_api_keys == ["k1", "k2", "k3"]


def test_parse_json_lists_from_settings_init():
    settings = CompanionSettings(_env_file=None, gemini_api_keys='["k1", "k2"]')
    assert settings.gemini_api_keys == ["k1", "k2"]


def test_reads_prefixed_environment(monkeypatch):
    monkeypatch.setenv("companion_thoughts_city", "Hue")
    monkeypatch.setenv("companion_thoughts_gemini_api_keys", "a,b,c")
    monkeypatch.setenv("companion_thoughts_ai_frequency_minutes", "5")

    settings = CompanionSettings(_env_file=None)

    assert settings.city == "Hue"
    assert settings.gemini_api_keys == ["a", "b", "c"]
    assert settings.ai_frequency_minutes == 5.0


def test_frequency_below_one_minute_is_rejected():
    with pytest.raises(ValidationError):
        CompanionSettings(_env_file=None, ai_frequency_minutes=0.5)


def test_blank_city_is_rejected():
    with pytest.raises(ValidationError):
        CompanionSettings(_env_file=None, city="   ")


def test_log_level_is_normalized():
    assert CompanionSettings(_env_file=None, log_level="debug").log_level == "DEBUG"
    with pytest.raises(ValidationError):
        CompanionSettings(_env_file=None, log_level="chatty")


def test_gemini_endpoint():
    settings = CompanionSettings(_env_file=None, gemini_base_url="https://example.test/models/", gemini_model="m-1")
    assert settings.gemini_endpoint() == "https://example.test/models/m-1:generateContent"


# ---------------------------------------------------------------------------
# LiveSettings
# ---------------------------------------------------------------------------


class TestLiveSettings:
    def test_from_settings(self):
        live = LiveSettings.from_settings(
            CompanionSettings(_env_file=None, ai_enabled=False, ai_frequency_minutes=7, city="Da Lat")
        )
        assert live.snapshot() == {"enabled": False, "frequency_minutes": 7.0, "city": "Da Lat"}

    def test_update_notifies_changed_fields_only(self):
        live = LiveSettings()
        events: list[str] = []
        live.subscribe(events.append)

        changed = live.update(enabled=True, frequency_minutes=5, city="Hue")

        assert changed == ["frequency", "city"]
        assert events == ["frequency", "city"]
        assert live.frequency_minutes == 5.0

    def test_unsubscribe(self):
        live = LiveSettings()
        events: list[str] = []
        unsubscribe = live.subscribe(events.append)

        unsubscribe()
        unsubscribe()
        live.update(enabled=False)

        assert events == []
        assert live.enabled is False

    def test_invalid_values_are_rejected(self):
        live = LiveSettings()
        with pytest.raises(ValueError):
            live.update(frequency_minutes=0)
        with pytest.raises(ValueError):
            live.update(city=" ")
        with pytest.raises(ValueError):
            LiveSettings(frequency_minutes=-1)

    def test_failing_listener_does_not_block_others(self, caplog):
        live = LiveSettings()
        events: list[str] = []

        def broken(field_name: str) -> None:
            raise RuntimeError("listener exploded")

        live.subscribe(broken)
        live.subscribe(events.append)
        caplog.set_level(logging.ERROR)

        live.update(city="Nha Trang")

        assert events == ["city"]
        assert "Settings listener failed for city" in caplog.text
