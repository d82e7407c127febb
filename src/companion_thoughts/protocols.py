"""Protocol interfaces for the companion engine's collaborators.

These protocols define what the weather lookup, text generator, message
egress and clock must implement, so the scheduler and orchestrator can be
wired with real HTTP clients in the daemon and with fakes in tests.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from .models import CompanionMessage, GenerationResult, WeatherData, WeatherError


@runtime_checkable
class ClockProtocol(Protocol):
    """Source of monotonic time, wall-clock time and sleeping."""

    def monotonic(self) -> float:
        """Seconds from an arbitrary, never-decreasing origin."""
        ...

    def now(self) -> datetime:
        """Current local wall-clock time."""
        ...

    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task for ``seconds``."""
        ...


@runtime_checkable
class WeatherLookupProtocol(Protocol):
    """External current-weather lookup."""

    async def fetch(self, city: str) -> WeatherData | WeatherError:
        """Return current weather for ``city`` or a typed error."""
        ...


@runtime_checkable
class TextGeneratorProtocol(Protocol):
    """External text-generation dependency."""

    async def generate(self, system_instruction: str, user_query: str) -> GenerationResult:
        """Return generated text or a failed result carrying the last error."""
        ...


@runtime_checkable
class EgressProtocol(Protocol):
    """Consumer of emitted companion messages (the rendering layer)."""

    def deliver(self, message: CompanionMessage) -> None:
        """Hand a message over. No acknowledgement is expected."""
        ...
