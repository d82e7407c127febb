from __future__ import annotations

import json
import logging
from typing import Any, Callable

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("companion_thoughts.config")


class CompanionSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="companion_thoughts_",
        extra="ignore",
        env_file=".env",
        enable_decoding=False,
    )

    # Runtime switches (mirrored into LiveSettings at startup)
    ai_enabled: bool = True
    ai_frequency_minutes: float = Field(default=3.0, ge=1.0)
    city: str = "Quy Nhon"

    # Entities (pets) that get a schedule when the daemon starts
    entity_ids: list[str] = Field(default_factory=lambda: ["default"])

    # Text generation (Gemini generateContent)
    gemini_api_keys: list[str] = Field(default_factory=list)
    gemini_model: str = "gemini-1.5-flash-latest"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta/models"
    gemini_timeout_seconds: float = 20.0
    generation_retry_delay_seconds: float = 0.2

    # Weather lookup (OpenWeatherMap current weather)
    weather_api_key: str = ""
    weather_base_url: str = "https://api.openweathermap.org/data/2.5"
    weather_lang: str = "vi"
    weather_timeout_seconds: float = 10.0
    weather_cache_ttl_minutes: float = 30.0

    # Session tracking and scheduling
    long_session_minutes: float = 20.0
    session_check_interval_seconds: float = 30.0
    initial_delay_cap_seconds: float = 30.0

    # Anti-repetition
    history_size: int = Field(default=20, ge=1)
    similarity_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    max_generation_attempts: int = Field(default=3, ge=1)

    # Message voice
    reply_language: str = "Vietnamese"
    user_name: str = "Quin"
    random_seed: int | None = None

    # Admin API
    enable_admin_api: bool = False
    admin_host: str = "127.0.0.1"
    admin_port: int = 8797
    admin_api_token: str = ""

    log_level: str = "INFO"

    @field_validator("entity_ids", "gemini_api_keys", mode="before")
    @classmethod
    def _parse_csv_or_json_list(cls, value: Any) -> Any:
        if isinstance(value, list):
            return value
        if value is None:
            return []
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                return []
            if stripped.startswith("["):
                return json.loads(stripped)
            return [part.strip() for part in stripped.split(",") if part.strip()]
        return value

    @field_validator("city", mode="after")
    @classmethod
    def _strip_city(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("city must not be empty")
        return stripped

    @field_validator("log_level", mode="after")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"unknown log level: {value!r}")
        return level

    def gemini_endpoint(self) -> str:
        """Return the generateContent URL for the configured model."""
        return f"{self.gemini_base_url.rstrip('/')}/{self.gemini_model}:generateContent"


SettingsListener = Callable[[str], None]


class LiveSettings:
    """Runtime view of the user-facing switches, with change notification.

    The scheduler reads ``enabled`` and ``frequency_minutes`` synchronously at
    every decision point and subscribes to changes so an interval change can
    trigger a full reschedule. Listeners receive the name of the changed field:
    ``"enabled"``, ``"frequency"`` or ``"city"``.
    """

    def __init__(self, enabled: bool = True, frequency_minutes: float = 3.0, city: str = "Quy Nhon"):
        if frequency_minutes <= 0:
            raise ValueError("frequency_minutes must be positive")
        self._enabled = enabled
        self._frequency_minutes = float(frequency_minutes)
        self._city = city
        self._listeners: list[SettingsListener] = []

    @classmethod
    def from_settings(cls, settings: CompanionSettings) -> LiveSettings:
        return cls(
            enabled=settings.ai_enabled,
            frequency_minutes=settings.ai_frequency_minutes,
            city=settings.city,
        )

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def frequency_minutes(self) -> float:
        return self._frequency_minutes

    @property
    def city(self) -> str:
        return self._city

    def subscribe(self, listener: SettingsListener) -> Callable[[], None]:
        """Register a change listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def update(
        self,
        *,
        enabled: bool | None = None,
        frequency_minutes: float | None = None,
        city: str | None = None,
    ) -> list[str]:
        """Apply changes and notify listeners. Returns the names of changed fields."""
        changed: list[str] = []
        if enabled is not None and enabled != self._enabled:
            self._enabled = enabled
            changed.append("enabled")
        if frequency_minutes is not None:
            if frequency_minutes <= 0:
                raise ValueError("frequency_minutes must be positive")
            if float(frequency_minutes) != self._frequency_minutes:
                self._frequency_minutes = float(frequency_minutes)
                changed.append("frequency")
        if city is not None:
            stripped = city.strip()
            if not stripped:
                raise ValueError("city must not be empty")
            if stripped != self._city:
                self._city = stripped
                changed.append("city")

        for field_name in changed:
            logger.info("Setting changed: %s", field_name)
            for listener in list(self._listeners):
                try:
                    listener(field_name)
                except Exception as exc:
                    logger.exception("Settings listener failed for %s: %s", field_name, exc)
        return changed

    def snapshot(self) -> dict[str, Any]:
        return {
            "enabled": self._enabled,
            "frequency_minutes": self._frequency_minutes,
            "city": self._city,
        }
