"""Per-entity thought scheduler with a long-session interrupt.

Each entity (pet) owns at most one pending emission. After a short initial
delay the first thought goes out; every later cycle arms two timers, the main
interval timer and a periodic long-session check. Whichever fires first
cancels the other. A long-session emission is marked as such and resets the
session tracker.

Stopping a schedule cancels whatever is still waiting. An emission that is
already generating is allowed to finish, but its result is dropped unless the
entry is still the live schedule for that entity.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from .clock import ConditionTimer, Timer
from .context import build_creative_context
from .models import CompanionMessage, ScheduleState, WeatherData

if TYPE_CHECKING:
    from .config import LiveSettings
    from .creative import CreativeOrchestrator
    from .protocols import ClockProtocol, EgressProtocol
    from .session import SessionTracker
    from .weather import WeatherCache

logger = logging.getLogger("companion_thoughts.scheduler")

INITIAL_DELAY_CAP_SECONDS = 30.0
SESSION_CHECK_INTERVAL_SECONDS = 30.0


@dataclass(eq=False)
class ScheduleEntry:
    entity_id: str
    interval_minutes: float | None = None
    timer: Timer | None = None
    session_check: ConditionTimer | None = None
    state: ScheduleState = ScheduleState.IDLE
    last_message_at: datetime | None = None
    messages_sent: int = 0
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True
        if self.timer is not None:
            self.timer.cancel()
        if self.session_check is not None:
            self.session_check.cancel()
        self.state = ScheduleState.IDLE

    def force_cancel(self) -> None:
        self.cancel()
        for timer in (self.timer, self.session_check):
            if timer is not None:
                timer.force_cancel()

    @property
    def pending_timers(self) -> int:
        return 1 if self.timer is not None and self.timer.active else 0


class ThoughtScheduler:
    """Owns one schedule per entity and drives the creative orchestrator."""

    def __init__(
        self,
        settings: LiveSettings,
        session: SessionTracker,
        weather: WeatherCache | None,
        orchestrator: CreativeOrchestrator,
        egress: EgressProtocol,
        clock: ClockProtocol,
        initial_delay_cap_seconds: float = INITIAL_DELAY_CAP_SECONDS,
        session_check_interval_seconds: float = SESSION_CHECK_INTERVAL_SECONDS,
    ):
        self.settings = settings
        self.session = session
        self.weather = weather
        self.orchestrator = orchestrator
        self.egress = egress
        self.clock = clock
        self.initial_delay_cap_seconds = initial_delay_cap_seconds
        self.session_check_interval_seconds = session_check_interval_seconds
        self._entries: dict[str, ScheduleEntry] = {}
        # Ids the user asked for, kept across disable/enable so they can be restored.
        self._requested: dict[str, float | None] = {}
        self._unsubscribe = settings.subscribe(self._on_settings_changed)

    # ------------------------------------------------------------------
    # Public control
    # ------------------------------------------------------------------

    def start_schedule(self, entity_id: str, interval_minutes: float | None = None) -> ScheduleEntry | None:
        """Arm the first emission for ``entity_id``, replacing any existing schedule."""
        if interval_minutes is not None and interval_minutes <= 0:
            raise ValueError("interval_minutes must be positive")
        self._requested[entity_id] = interval_minutes
        if not self.settings.enabled:
            logger.info("Companion disabled, not scheduling %s", entity_id)
            return None

        replaced = self._drop_entry(entity_id)
        entry = ScheduleEntry(entity_id=entity_id, interval_minutes=interval_minutes)
        self._entries[entity_id] = entry

        interval_seconds = self._interval_seconds(entry)
        initial_delay = min(interval_seconds, self.initial_delay_cap_seconds)
        entry.timer = Timer(
            self.clock,
            initial_delay,
            lambda: self._on_main_timer(entry),
            name=f"thought:{entity_id}",
        )
        entry.state = ScheduleState.SCHEDULED
        logger.info(
            "%s schedule for %s (every %.1f min, first in %.0fs, active=%d)",
            "Replaced" if replaced else "Started",
            entity_id, interval_seconds / 60, initial_delay, len(self._entries),
        )
        return entry

    def stop_schedule(self, entity_id: str) -> bool:
        """Cancel the schedule for ``entity_id``. Safe to call repeatedly."""
        self._requested.pop(entity_id, None)
        stopped = self._drop_entry(entity_id)
        if stopped:
            logger.info("Stopped schedule for %s (active=%d)", entity_id, len(self._entries))
        return stopped

    def stop_all(self) -> int:
        """Cancel every schedule. Returns how many were active."""
        self._requested.clear()
        return self._cancel_all_entries()

    def restart_all(self) -> list[str]:
        """Stop and restart every requested schedule with the current settings."""
        requested = dict(self._requested)
        self._cancel_all_entries()
        logger.info(
            "Restarting %d schedule(s) at %.1f min frequency",
            len(requested), self.settings.frequency_minutes,
        )
        for entity_id, interval in requested.items():
            self.start_schedule(entity_id, interval)
        return list(requested)

    async def aclose(self) -> None:
        """Force-cancel everything, including emissions in progress."""
        self._unsubscribe()
        entries = list(self._entries.values())
        self._entries.clear()
        for entry in entries:
            entry.force_cancel()
        for entry in entries:
            for timer in (entry.timer, entry.session_check):
                if timer is not None:
                    await timer.wait()

    def is_scheduled(self, entity_id: str) -> bool:
        return entity_id in self._entries

    def active_timer_count(self, entity_id: str | None = None) -> int:
        """Number of pending main timers, overall or for one entity."""
        entries = [self._entries[entity_id]] if entity_id in self._entries else []
        if entity_id is None:
            entries = list(self._entries.values())
        return sum(entry.pending_timers for entry in entries)

    def active_schedules(self) -> list[dict[str, Any]]:
        return [
            {
                "entity_id": entry.entity_id,
                "state": entry.state.value,
                "interval_minutes": self._interval_seconds(entry) / 60,
                "last_message_at": entry.last_message_at.isoformat() if entry.last_message_at else None,
                "messages_sent": entry.messages_sent,
            }
            for entry in self._entries.values()
        ]

    # ------------------------------------------------------------------
    # Emission cycle
    # ------------------------------------------------------------------

    async def emit_and_reschedule(
        self, entity_id: str, long_session_interrupt: bool = False
    ) -> CompanionMessage | None:
        """Produce and dispatch one thought for ``entity_id``, then arm the next cycle."""
        entry = self._entries.get(entity_id)
        if entry is None or entry.cancelled:
            return None
        if not self.settings.enabled:
            logger.info("Companion disabled, dropping schedule for %s", entity_id)
            self._drop_entry(entity_id)
            entry.state = ScheduleState.DISABLED
            return None

        entry.state = ScheduleState.GENERATING
        message = await self.compose(entity_id, long_session_interrupt)

        if self._entries.get(entity_id) is not entry or entry.cancelled:
            logger.info("Schedule for %s was cancelled during generation; result dropped", entity_id)
            return None
        if not self.settings.enabled:
            logger.info("Companion disabled during generation; dropping result for %s", entity_id)
            self._drop_entry(entity_id)
            entry.state = ScheduleState.DISABLED
            return None

        if message is not None:
            self._dispatch(entry, message)
        self._arm_next(entry)
        return message

    async def _on_main_timer(self, entry: ScheduleEntry) -> None:
        if entry.session_check is not None:
            entry.session_check.cancel()
        entry.state = ScheduleState.TRIGGERED
        await self.emit_and_reschedule(entry.entity_id)

    async def _on_long_session(self, entry: ScheduleEntry) -> None:
        if entry.timer is not None:
            entry.timer.cancel()
        entry.state = ScheduleState.TRIGGERED
        logger.info(
            "Long session (%d min) for %s, sending rest message early",
            self.session.elapsed_minutes(), entry.entity_id,
        )
        await self.emit_and_reschedule(entry.entity_id, long_session_interrupt=True)

    async def compose(self, entity_id: str, long_session_interrupt: bool = False) -> CompanionMessage | None:
        """Build the current context and produce one message without dispatching it."""
        try:
            is_long_session = long_session_interrupt or self.session.is_long_session()
            city = self.settings.city
            weather = await self._weather_description(city)
            context = build_creative_context(self.clock.now(), city, weather, is_long_session)
            logger.info(
                "Generating %s message for %s at %s",
                "rest" if is_long_session else "casual", entity_id, context.time_of_day.value,
            )
            produced = await self.orchestrator.produce_message(context)
            if produced.is_fallback:
                logger.info("Fallback message for %s: %s", entity_id, "; ".join(produced.errors[-1:]))
            return CompanionMessage(
                text=produced.text,
                timestamp=self.clock.now(),
                entity_id=entity_id,
                is_long_session_message=is_long_session,
                method=produced.method,
                is_fallback=produced.is_fallback,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Failed to generate message for %s: %s", entity_id, exc)
            return None

    async def _weather_description(self, city: str) -> str | None:
        if self.weather is None:
            return None
        try:
            result = await self.weather.get(city)
        except Exception as exc:
            logger.debug("Weather unavailable for %s: %s", city, exc)
            return None
        if isinstance(result, WeatherData):
            return result.description
        logger.debug("Weather unavailable for %s: %s", city, result.error)
        return None

    def _dispatch(self, entry: ScheduleEntry, message: CompanionMessage) -> None:
        if message.is_long_session_message:
            self.session.reset_timer()
        try:
            self.egress.deliver(message)
        except Exception as exc:
            logger.exception("Egress failed for %s: %s", entry.entity_id, exc)
        entry.last_message_at = message.timestamp
        entry.messages_sent += 1

    def _arm_next(self, entry: ScheduleEntry) -> None:
        interval_seconds = self._interval_seconds(entry)
        entry.timer = Timer(
            self.clock,
            interval_seconds,
            lambda: self._on_main_timer(entry),
            name=f"thought:{entry.entity_id}",
        )
        entry.session_check = ConditionTimer(
            self.clock,
            self.session_check_interval_seconds,
            self.session.is_long_session,
            lambda: self._on_long_session(entry),
            name=f"session-check:{entry.entity_id}",
        )
        entry.state = ScheduleState.SCHEDULED
        logger.info("Next message for %s in %.1f min", entry.entity_id, interval_seconds / 60)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _interval_seconds(self, entry: ScheduleEntry) -> float:
        minutes = entry.interval_minutes if entry.interval_minutes is not None else self.settings.frequency_minutes
        return minutes * 60.0

    def _drop_entry(self, entity_id: str) -> bool:
        entry = self._entries.pop(entity_id, None)
        if entry is None:
            return False
        entry.cancel()
        return True

    def _cancel_all_entries(self) -> int:
        count = len(self._entries)
        for entity_id in list(self._entries):
            self._drop_entry(entity_id)
        if count:
            logger.info("Stopped %d schedule(s)", count)
        return count

    def _on_settings_changed(self, field_name: str) -> None:
        if field_name == "frequency":
            self.restart_all()
        elif field_name == "enabled":
            if self.settings.enabled:
                self.restart_all()
            else:
                stopped = self._cancel_all_entries()
                logger.info("Companion disabled, paused %d schedule(s)", stopped)
