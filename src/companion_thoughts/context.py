from __future__ import annotations

from datetime import datetime

from .models import CreativeContext, Mood, Season, TimeOfDay

RAIN_MARKERS = ("mưa", "rain", "drizzle", "shower", "storm", "dông", "giông")
CLEAR_MARKERS = ("nắng", "clear", "sunny", "quang")
CLOUD_MARKERS = ("mây", "cloud", "overcast")


def time_of_day_for(hour: int) -> TimeOfDay:
    if 6 <= hour <= 10:
        return TimeOfDay.MORNING
    if 11 <= hour <= 14:
        return TimeOfDay.MIDDAY
    if 15 <= hour <= 18:
        return TimeOfDay.AFTERNOON
    if 19 <= hour <= 21:
        return TimeOfDay.EVENING
    return TimeOfDay.NIGHT


def season_for(month: int) -> Season:
    if 3 <= month <= 5:
        return Season.SPRING
    if 6 <= month <= 8:
        return Season.SUMMER
    if 9 <= month <= 11:
        return Season.AUTUMN
    return Season.WINTER


def _mentions(weather: str | None, markers: tuple[str, ...]) -> bool:
    if not weather:
        return False
    lowered = weather.lower()
    return any(marker in lowered for marker in markers)


def is_rainy(weather: str | None) -> bool:
    return _mentions(weather, RAIN_MARKERS)


def is_clear(weather: str | None) -> bool:
    return _mentions(weather, CLEAR_MARKERS)


def is_cloudy(weather: str | None) -> bool:
    return _mentions(weather, CLOUD_MARKERS)


def mood_for(time_of_day: TimeOfDay, weather: str | None, is_long_session: bool) -> Mood:
    if is_long_session:
        return Mood.RESTFUL
    if time_of_day is TimeOfDay.MORNING:
        return Mood.ENERGETIC
    if time_of_day is TimeOfDay.EVENING:
        return Mood.CONTEMPLATIVE
    if is_rainy(weather):
        return Mood.CONTEMPLATIVE
    return Mood.GENTLE


def build_creative_context(
    now: datetime,
    city: str,
    weather: str | None,
    is_long_session: bool,
) -> CreativeContext:
    """Snapshot everything a single generation attempt needs to know."""
    time_of_day = time_of_day_for(now.hour)
    return CreativeContext(
        hour=now.hour,
        time_of_day=time_of_day,
        day_of_week=now.strftime("%A"),
        season=season_for(now.month),
        city=city,
        weather=weather or None,
        is_long_session=is_long_session,
        mood=mood_for(time_of_day, weather, is_long_session),
    )
