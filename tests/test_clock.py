from __future__ import annotations

import logging

import pytest
from conftest import FakeClock, settle

from companion_thoughts.clock import ConditionTimer, SystemClock, Timer
from companion_thoughts.protocols import ClockProtocol


def test_system_clock_satisfies_protocol():
    assert isinstance(SystemClock(), ClockProtocol)
    assert isinstance(FakeClock(), ClockProtocol)


# ---------------------------------------------------------------------------
# Timer
# ---------------------------------------------------------------------------


class TestTimer:
    @pytest.mark.asyncio
    async def test_fires_once_after_delay(self):
        clock = FakeClock()
        fired: list[float] = []

        async def callback():
            fired.append(clock.monotonic())

        timer = Timer(clock, 10, callback)
        await clock.advance(9)
        assert fired == []
        assert timer.active

        await clock.advance(1)
        assert fired == [10.0]
        assert timer.fired
        assert not timer.active

    @pytest.mark.asyncio
    async def test_cancel_before_firing(self):
        clock = FakeClock()
        fired: list[bool] = []

        async def callback():
            fired.append(True)

        timer = Timer(clock, 10, callback)
        await settle()
        assert timer.cancel() is True
        assert timer.cancel() is False

        await clock.advance(60)
        assert fired == []

    @pytest.mark.asyncio
    async def test_cancel_after_firing_is_a_no_op(self):
        clock = FakeClock()

        async def callback():
            return None

        timer = Timer(clock, 1, callback)
        await clock.advance(1)
        assert timer.cancel() is False
        assert timer.cancelled is False

    @pytest.mark.asyncio
    async def test_callback_error_is_logged(self, caplog):
        clock = FakeClock()

        async def callback():
            raise RuntimeError("boom")

        caplog.set_level(logging.ERROR)
        timer = Timer(clock, 1, callback, name="exploding")
        await clock.advance(1)
        await timer.wait()

        assert "Timer exploding callback failed" in caplog.text


# ---------------------------------------------------------------------------
# ConditionTimer
# ---------------------------------------------------------------------------


class TestConditionTimer:
    @pytest.mark.asyncio
    async def test_polls_until_condition_holds(self):
        clock = FakeClock()
        checks: list[float] = []
        fired: list[float] = []

        def condition():
            checks.append(clock.monotonic())
            return clock.monotonic() >= 90

        async def callback():
            fired.append(clock.monotonic())

        ConditionTimer(clock, 30, condition, callback)
        await clock.advance(200)

        assert checks == [30.0, 60.0, 90.0]
        assert fired == [90.0]

    @pytest.mark.asyncio
    async def test_cancel_stops_polling(self):
        clock = FakeClock()
        checks: list[float] = []

        async def callback():
            return None

        timer = ConditionTimer(clock, 30, lambda: checks.append(1) or False, callback)
        await clock.advance(60)
        timer.cancel()
        await clock.advance(120)

        assert len(checks) == 2

    def test_rejects_non_positive_interval(self):
        async def callback():
            return None

        with pytest.raises(ValueError):
            ConditionTimer(FakeClock(), 0, lambda: True, callback)
