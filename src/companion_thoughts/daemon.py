from __future__ import annotations

import asyncio
import logging
import random
import signal
from typing import TYPE_CHECKING

import uvicorn

from .clock import SystemClock
from .config import CompanionSettings, LiveSettings
from .creative import CreativeOrchestrator, MethodSelector
from .egress import BufferedEgress
from .generation import CredentialPool, GeminiClient
from .history import MessageHistory, UniquenessValidator
from .scheduler import ThoughtScheduler
from .session import SessionTracker
from .weather import OpenWeatherClient, WeatherCache

if TYPE_CHECKING:
    from .protocols import ClockProtocol, TextGeneratorProtocol, WeatherLookupProtocol

logger = logging.getLogger("companion_thoughts.daemon")


class CompanionDaemon:
    def __init__(
        self,
        settings: CompanionSettings,
        clock: ClockProtocol | None = None,
        weather_lookup: WeatherLookupProtocol | None = None,
        generator: TextGeneratorProtocol | None = None,
        egress: BufferedEgress | None = None,
    ):
        self.settings = settings
        self.clock = clock or SystemClock()
        self.live = LiveSettings.from_settings(settings)
        self.session = SessionTracker(self.clock, threshold_minutes=settings.long_session_minutes)

        # Weather is optional: without an API key messages are written without it
        if weather_lookup is None and settings.weather_api_key:
            weather_lookup = OpenWeatherClient(
                api_key=settings.weather_api_key,
                base_url=settings.weather_base_url,
                lang=settings.weather_lang,
                timeout=settings.weather_timeout_seconds,
            )
        self.weather_lookup = weather_lookup
        self.weather_cache: WeatherCache | None = None
        if weather_lookup is not None:
            self.weather_cache = WeatherCache(
                weather_lookup,
                self.clock,
                ttl_seconds=settings.weather_cache_ttl_minutes * 60,
            )

        self.credentials = CredentialPool(settings.gemini_api_keys)
        if generator is None:
            if not len(self.credentials):
                logger.warning("No Gemini API keys configured; only fallback messages will be sent")
            generator = GeminiClient(
                self.credentials,
                endpoint=settings.gemini_endpoint(),
                timeout=settings.gemini_timeout_seconds,
                retry_delay_seconds=settings.generation_retry_delay_seconds,
                clock=self.clock,
            )
        self.generator = generator

        self.rng = random.Random(settings.random_seed)
        self.history = MessageHistory(capacity=settings.history_size)
        self.validator = UniquenessValidator(self.history, threshold=settings.similarity_threshold)
        self.orchestrator = CreativeOrchestrator(
            self.generator,
            self.validator,
            selector=MethodSelector(self.rng),
            rng=self.rng,
            max_attempts=settings.max_generation_attempts,
            user_name=settings.user_name,
            reply_language=settings.reply_language,
        )
        self.egress = egress or BufferedEgress()
        self.scheduler = ThoughtScheduler(
            self.live,
            self.session,
            self.weather_cache,
            self.orchestrator,
            self.egress,
            self.clock,
            initial_delay_cap_seconds=settings.initial_delay_cap_seconds,
            session_check_interval_seconds=settings.session_check_interval_seconds,
        )

        self._shutdown_requested = False
        self._shutdown_event = asyncio.Event()
        self._admin_server: uvicorn.Server | None = None

    def request_shutdown(self) -> None:
        """Request graceful shutdown of the daemon."""
        logger.info("Shutdown requested")
        self._shutdown_requested = True
        self._shutdown_event.set()
        if self._admin_server is not None:
            self._admin_server.should_exit = True

    def start_schedules(self) -> list[str]:
        started = []
        for entity_id in self.settings.entity_ids:
            self.scheduler.start_schedule(entity_id)
            started.append(entity_id)
        return started

    async def shutdown(self) -> None:
        """Perform cleanup on shutdown."""
        logger.info("Shutting down...")
        try:
            await self.scheduler.aclose()
        except Exception as exc:
            logger.warning("Error stopping schedules: %s", exc)
        for name, client in (("generator", self.generator), ("weather client", self.weather_lookup)):
            aclose = getattr(client, "aclose", None)
            if aclose is None:
                continue
            try:
                await aclose()
            except Exception as exc:
                logger.warning("Error closing %s: %s", name, exc)
        logger.info("Shutdown complete")

    async def run_forever(self) -> None:
        self.start_schedules()
        tasks = []
        if self.weather_cache is not None:
            tasks.append(asyncio.create_task(self._weather_sweeper_loop(), name="weather-sweeper"))
        if self.settings.enable_admin_api:
            tasks.append(asyncio.create_task(self._admin_api_loop(), name="admin-api"))
        try:
            await self._shutdown_event.wait()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _weather_sweeper_loop(self) -> None:
        """Evicts long-expired weather entries."""
        assert self.weather_cache is not None
        try:
            await self.weather_cache.run_sweeper(lambda: self._shutdown_requested)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Weather sweeper error: %s", exc)

    async def _admin_api_loop(self) -> None:
        """Serves the admin API inside the daemon's event loop."""
        from .main import build_app

        config = uvicorn.Config(
            build_app(self),
            host=self.settings.admin_host,
            port=self.settings.admin_port,
            log_level=self.settings.log_level.lower(),
        )
        self._admin_server = uvicorn.Server(config)
        logger.info("Admin API listening on http://%s:%d", self.settings.admin_host, self.settings.admin_port)
        try:
            await self._admin_server.serve()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Admin API error: %s", exc)


async def run() -> None:
    settings = CompanionSettings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(message)s")
    daemon = CompanionDaemon(settings)

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def handle_signal(sig: signal.Signals) -> None:
        logger.info("Received signal %s", sig.name)
        daemon.request_shutdown()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal, sig)

    logger.info(
        "Companion thoughts running (foreground). entities=%s, every %.1f min, city=%s, enabled=%s, keys=%d, weather=%s",
        ",".join(settings.entity_ids),
        settings.ai_frequency_minutes,
        settings.city,
        settings.ai_enabled,
        len(daemon.credentials),
        "on" if daemon.weather_cache is not None else "off",
    )
    logger.info("Ready. Press Ctrl+C to stop.")

    try:
        await daemon.run_forever()
    finally:
        await daemon.shutdown()


if __name__ == "__main__":  # pragma: no cover
    asyncio.run(run())
