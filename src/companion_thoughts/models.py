from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class CreativeMethod(str, Enum):
    """Rhetorical strategies used to phrase a companion thought."""

    METAPHOR = "metaphor"
    SENSORY = "sensory"
    RHETORICAL = "rhetorical"
    MICROSTORY = "microstory"


class TimeOfDay(str, Enum):
    MORNING = "morning"
    MIDDAY = "midday"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"


class Season(str, Enum):
    SPRING = "spring"
    SUMMER = "summer"
    AUTUMN = "autumn"
    WINTER = "winter"


class Mood(str, Enum):
    GENTLE = "gentle"
    ENERGETIC = "energetic"
    CONTEMPLATIVE = "contemplative"
    RESTFUL = "restful"


class ScheduleState(str, Enum):
    """Lifecycle states for a per-entity schedule."""

    DISABLED = "disabled"
    IDLE = "idle"
    SCHEDULED = "scheduled"
    TRIGGERED = "triggered"
    GENERATING = "generating"


@dataclass(frozen=True, slots=True)
class CreativeContext:
    hour: int
    time_of_day: TimeOfDay
    day_of_week: str
    season: Season
    city: str
    weather: str | None
    is_long_session: bool
    mood: Mood


@dataclass(frozen=True, slots=True)
class MessageRecord:
    content: str
    method: CreativeMethod
    timestamp: float
    keywords: frozenset[str]
    structure: str


@dataclass(slots=True)
class CompanionMessage:
    """Event handed to the rendering layer."""

    text: str
    timestamp: datetime
    entity_id: str
    is_long_session_message: bool
    method: CreativeMethod | None = None
    is_fallback: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
            "entity_id": self.entity_id,
            "is_long_session_message": self.is_long_session_message,
            "method": self.method.value if self.method else None,
            "is_fallback": self.is_fallback,
        }


@dataclass(frozen=True, slots=True)
class WeatherData:
    description: str
    temperature: int
    city: str
    country: str
    humidity: int
    wind_speed: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class WeatherError:
    error: str
    code: int | None = None


@dataclass(slots=True)
class GenerationResult:
    success: bool
    text: str = ""
    error: str = ""
    attempts: int = 0
    credential_index: int | None = None


@dataclass(slots=True)
class ProducedMessage:
    text: str
    method: CreativeMethod
    is_fallback: bool = False
    attempts: int = 0
    errors: list[str] = field(default_factory=list)
