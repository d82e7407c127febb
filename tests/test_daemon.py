from __future__ import annotations

import asyncio
import logging

import pytest
from conftest import FakeClock, FakeGenerator, FakeWeatherLookup, make_weather, settle

from companion_thoughts.config import CompanionSettings
from companion_thoughts.daemon import CompanionDaemon
from companion_thoughts.generation import GeminiClient
from companion_thoughts.weather import OpenWeatherClient


def _settings(**overrides) -> CompanionSettings:
    values = {"entity_ids": ["cat", "dog"], "gemini_api_keys": [], "weather_api_key": ""}
    values.update(overrides)
    return CompanionSettings(_env_file=None, **values)


def test_default_wiring_uses_http_clients(caplog):
    caplog.set_level(logging.WARNING)
    daemon = CompanionDaemon(_settings(gemini_api_keys=["k1", "k2"], weather_api_key="owm"))

    assert isinstance(daemon.generator, GeminiClient)
    assert isinstance(daemon.weather_lookup, OpenWeatherClient)
    assert daemon.weather_cache is not None
    assert len(daemon.credentials) == 2
    assert daemon.orchestrator.max_attempts == 3
    assert daemon.history.capacity == 20
    assert "No Gemini API keys" not in caplog.text


def test_missing_keys_disable_weather_and_warn(caplog):
    caplog.set_level(logging.WARNING)
    daemon = CompanionDaemon(_settings())

    assert daemon.weather_cache is None
    assert len(daemon.credentials) == 0
    assert "No Gemini API keys configured" in caplog.text


@pytest.mark.asyncio
async def test_run_forever_schedules_entities_until_shutdown():
    clock = FakeClock()
    lookup = FakeWeatherLookup(make_weather("nắng nhẹ"))
    daemon = CompanionDaemon(
        _settings(),
        clock=clock,
        weather_lookup=lookup,
        generator=FakeGenerator("Nắng nhẹ vẽ vệt vàng trên sàn gỗ", "Chú mèo ngáp dài bên khung cửa"),
    )

    task = asyncio.create_task(daemon.run_forever())
    await settle()
    assert daemon.scheduler.is_scheduled("cat")
    assert daemon.scheduler.is_scheduled("dog")

    await clock.advance(30)
    messages = daemon.egress.recent()
    assert {m.entity_id for m in messages} == {"cat", "dog"}
    assert lookup.calls == ["Quy Nhon"]

    daemon.request_shutdown()
    await asyncio.wait_for(task, timeout=1.0)
    await daemon.shutdown()

    assert daemon.scheduler.active_schedules() == []
    assert clock.pending_sleepers == 0


@pytest.mark.asyncio
async def test_seeded_daemons_make_the_same_choices():
    async def first_message(seed: int) -> str:
        clock = FakeClock()
        daemon = CompanionDaemon(
            _settings(entity_ids=["cat"], random_seed=seed),
            clock=clock,
            generator=FakeGenerator(),
        )
        daemon.start_schedules()
        await clock.advance(30)
        await daemon.shutdown()
        return daemon.egress.recent()[0].text

    assert await first_message(42) == await first_message(42)
