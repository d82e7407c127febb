"""Weather lookup and a time-boxed, single-flight cache in front of it.

The cache only calls the external lookup when an entry is missing or older
than the TTL (30 minutes by default). Concurrent readers of the same city
share one in-flight fetch. If a refresh fails, the last good payload is served
however stale it is; only when nothing was ever cached does the caller see a
``WeatherError``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

import httpx

from .models import WeatherData, WeatherError

if TYPE_CHECKING:
    from .protocols import ClockProtocol, WeatherLookupProtocol

logger = logging.getLogger("companion_thoughts.weather")

DEFAULT_TTL_SECONDS = 30 * 60
SWEEP_INTERVAL_SECONDS = 60 * 60


class OpenWeatherClient:
    """Current-weather lookup against the OpenWeatherMap REST API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openweathermap.org/data/2.5",
        lang: str = "vi",
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.lang = lang
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    async def fetch(self, city: str) -> WeatherData | WeatherError:
        params = {"q": city, "appid": self.api_key, "units": "metric", "lang": self.lang}
        try:
            response = await self._client.get(f"{self.base_url}/weather", params=params)
        except httpx.HTTPError as exc:
            logger.warning("Weather request for %s failed: %s", city, exc)
            return WeatherError(error=f"could not reach weather service: {exc}")

        if response.status_code == 404:
            return WeatherError(error=f"no weather found for {city!r}", code=404)
        if response.status_code == 401:
            return WeatherError(error="invalid weather API key", code=401)
        if response.is_error:
            return WeatherError(error=f"weather API error: {response.status_code}", code=response.status_code)

        try:
            data = response.json()
            return WeatherData(
                description=data["weather"][0]["description"],
                temperature=round(data["main"]["temp"]),
                city=data.get("name", city),
                country=data.get("sys", {}).get("country", ""),
                humidity=int(data["main"]["humidity"]),
                wind_speed=float(data.get("wind", {}).get("speed", 0.0)),
            )
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            logger.warning("Malformed weather payload for %s: %s", city, exc)
            return WeatherError(error="malformed weather response", code=response.status_code)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


@dataclass(slots=True)
class WeatherCacheEntry:
    payload: WeatherData
    fetched_at: float
    city: str


def normalize_city(city: str) -> str:
    return city.strip().lower()


class WeatherCache:
    """TTL cache with per-key single-flight fetches and stale fallback."""

    def __init__(
        self,
        lookup: WeatherLookupProtocol,
        clock: ClockProtocol,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
    ):
        self.lookup = lookup
        self.clock = clock
        self.ttl_seconds = ttl_seconds
        self._entries: dict[str, WeatherCacheEntry] = {}
        self._inflight: dict[str, asyncio.Task[WeatherData | WeatherError]] = {}
        self.fetch_count = 0

    async def get(self, city: str) -> WeatherData | WeatherError:
        """Return weather for ``city``, fetching only when the entry is stale."""
        key = normalize_city(city)
        entry = self._entries.get(key)
        if entry is not None and self._is_fresh(entry):
            logger.debug("Weather cache hit for %s (%d min old)", city, self._age_minutes(entry))
            return entry.payload

        pending = self._inflight.get(key)
        if pending is not None:
            logger.debug("Joining in-flight weather fetch for %s", city)
            return await asyncio.shield(pending)

        return await asyncio.shield(self._start_fetch(key, city))

    async def force_refresh(self, city: str) -> WeatherData | WeatherError:
        """Fetch ``city`` from the lookup regardless of the cached entry's age."""
        key = normalize_city(city)
        return await asyncio.shield(self._start_fetch(key, city))

    def _start_fetch(self, key: str, city: str) -> asyncio.Task[WeatherData | WeatherError]:
        task = asyncio.create_task(self._fetch_and_store(key, city), name=f"weather:{key}")
        self._inflight[key] = task
        task.add_done_callback(self._make_inflight_cleanup(key, task))
        return task

    def _make_inflight_cleanup(
        self, key: str, task: asyncio.Task[WeatherData | WeatherError]
    ) -> Callable[[asyncio.Task[Any]], None]:
        def _cleanup(_done: asyncio.Task[Any]) -> None:
            if self._inflight.get(key) is task:
                del self._inflight[key]

        return _cleanup

    async def _fetch_and_store(self, key: str, city: str) -> WeatherData | WeatherError:
        self.fetch_count += 1
        logger.info("Fetching fresh weather for %s", city)
        try:
            result = await self.lookup.fetch(city)
        except Exception as exc:
            logger.warning("Weather lookup for %s raised: %s", city, exc)
            result = WeatherError(error=f"weather lookup failed: {exc}", code=500)

        if isinstance(result, WeatherData):
            self._entries[key] = WeatherCacheEntry(payload=result, fetched_at=self.clock.monotonic(), city=city)
            return result

        stale = self._entries.get(key)
        if stale is not None:
            logger.info(
                "Weather refresh for %s failed (%s); serving cache from %d min ago",
                city, result.error, self._age_minutes(stale),
            )
            return stale.payload
        return result

    def _is_fresh(self, entry: WeatherCacheEntry) -> bool:
        return self.clock.monotonic() - entry.fetched_at < self.ttl_seconds

    def _age_minutes(self, entry: WeatherCacheEntry) -> int:
        return int((self.clock.monotonic() - entry.fetched_at) // 60)

    def sweep(self) -> int:
        """Evict entries older than twice the TTL. Returns how many were removed."""
        now = self.clock.monotonic()
        expired = [key for key, entry in self._entries.items() if now - entry.fetched_at > self.ttl_seconds * 2]
        for key in expired:
            logger.info("Evicting expired weather for %s", self._entries[key].city)
            del self._entries[key]
        return len(expired)

    async def run_sweeper(
        self,
        is_shutdown: Callable[[], bool],
        interval_seconds: float = SWEEP_INTERVAL_SECONDS,
    ) -> None:
        """Background eviction loop."""
        logger.info("Weather cache sweeper started (interval=%.0fs)", interval_seconds)
        while not is_shutdown():
            await self.clock.sleep(interval_seconds)
            try:
                self.sweep()
            except Exception as exc:
                logger.exception("Weather cache sweep error: %s", exc)

    def stats(self) -> dict[str, Any]:
        return {
            "total_cities": len(self._entries),
            "fetches": self.fetch_count,
            "in_flight": sorted(self._inflight),
            "entries": [
                {"city": entry.city, "age_minutes": self._age_minutes(entry)}
                for entry in self._entries.values()
            ],
        }
