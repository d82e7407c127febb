"""Shared test fixtures for companion thoughts tests."""

from __future__ import annotations

import asyncio
import heapq
import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from companion_thoughts.models import (  # noqa: E402
    CompanionMessage,
    GenerationResult,
    WeatherData,
    WeatherError,
)

START = datetime(2026, 3, 10, 9, 0, 0)


async def settle(rounds: int = 50) -> None:
    """Let every ready task run until the loop goes quiet."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeClock:
    """Virtual time. ``sleep`` parks the caller until ``advance`` reaches its deadline."""

    def __init__(self, start: datetime = START) -> None:
        self._elapsed = 0.0
        self._start = start
        self._sleepers: list[tuple[float, int, asyncio.Future[None]]] = []
        self._seq = 0

    def monotonic(self) -> float:
        return self._elapsed

    def now(self) -> datetime:
        return self._start + timedelta(seconds=self._elapsed)

    async def sleep(self, seconds: float) -> None:
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self._elapsed + max(0.0, seconds), self._seq, future))
        self._seq += 1
        await future

    def tick(self, seconds: float) -> None:
        """Move time forward without waking any sleeper."""
        self._elapsed += seconds

    async def advance(self, seconds: float) -> None:
        """Move time forward, waking sleepers in deadline order."""
        target = self._elapsed + seconds
        await settle()
        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, future = heapq.heappop(self._sleepers)
            self._elapsed = max(self._elapsed, deadline)
            if not future.done():
                future.set_result(None)
            await settle()
        self._elapsed = target
        await settle()

    @property
    def pending_sleepers(self) -> int:
        return sum(1 for _, _, future in self._sleepers if not future.done())


class InstantClock(FakeClock):
    """Sleeps return immediately but are recorded."""

    def __init__(self) -> None:
        super().__init__()
        self.sleeps: list[float] = []

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self._elapsed += seconds


class FakeWeatherLookup:
    """Scripted weather lookup. The last scripted result repeats."""

    def __init__(self, *results: WeatherData | WeatherError | Exception, gate: asyncio.Event | None = None):
        self.results = list(results) or [make_weather()]
        self.gate = gate
        self.calls: list[str] = []

    async def fetch(self, city: str) -> WeatherData | WeatherError:
        self.calls.append(city)
        if self.gate is not None:
            await self.gate.wait()
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


class FakeGenerator:
    """Scripted text generator. Once the script runs out every call fails."""

    def __init__(self, *responses: str | GenerationResult, gate: asyncio.Event | None = None):
        self.responses = list(responses)
        self.gate = gate
        self.calls: list[tuple[str, str]] = []

    async def generate(self, system_instruction: str, user_query: str) -> GenerationResult:
        self.calls.append((system_instruction, user_query))
        if self.gate is not None:
            await self.gate.wait()
        if not self.responses:
            return GenerationResult(success=False, error="HTTP 503: Service Unavailable", attempts=1)
        response = self.responses.pop(0)
        if isinstance(response, GenerationResult):
            return response
        return GenerationResult(success=True, text=response, attempts=1, credential_index=0)


class FakeEgress:
    """Records delivered messages."""

    def __init__(self) -> None:
        self.messages: list[CompanionMessage] = []

    def deliver(self, message: CompanionMessage) -> None:
        self.messages.append(message)

    def for_entity(self, entity_id: str) -> list[CompanionMessage]:
        return [m for m in self.messages if m.entity_id == entity_id]


def make_weather(description: str = "mây rải rác", city: str = "Quy Nhon") -> WeatherData:
    return WeatherData(
        description=description,
        temperature=29,
        city=city,
        country="VN",
        humidity=74,
        wind_speed=3.6,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def egress() -> FakeEgress:
    return FakeEgress()
