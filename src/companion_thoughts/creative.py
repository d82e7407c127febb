"""Creative method selection and the produce-one-unique-message loop."""

from __future__ import annotations

import logging
import random
from typing import TYPE_CHECKING

from .context import is_clear, is_rainy
from .models import CreativeContext, CreativeMethod, ProducedMessage, TimeOfDay
from .prompts import build_instruction, fallback_bank

if TYPE_CHECKING:
    from .history import UniquenessValidator
    from .protocols import TextGeneratorProtocol

logger = logging.getLogger("companion_thoughts.creative")

ALL_METHODS: tuple[CreativeMethod, ...] = tuple(CreativeMethod)
RECENT_METHOD_WINDOW = 5

TIME_PREFERENCES: dict[TimeOfDay, tuple[CreativeMethod, ...]] = {
    TimeOfDay.MORNING: (CreativeMethod.SENSORY, CreativeMethod.MICROSTORY),
    TimeOfDay.MIDDAY: (CreativeMethod.RHETORICAL, CreativeMethod.METAPHOR),
    TimeOfDay.AFTERNOON: (CreativeMethod.MICROSTORY, CreativeMethod.SENSORY),
    TimeOfDay.EVENING: (CreativeMethod.METAPHOR, CreativeMethod.RHETORICAL),
    TimeOfDay.NIGHT: (CreativeMethod.METAPHOR, CreativeMethod.RHETORICAL),
}
RAIN_PREFERENCES = (CreativeMethod.METAPHOR, CreativeMethod.SENSORY)
CLEAR_PREFERENCES = (CreativeMethod.MICROSTORY, CreativeMethod.RHETORICAL)
REST_PREFERENCES = (CreativeMethod.SENSORY, CreativeMethod.METAPHOR)


class MethodSelector:
    """Picks a creative method from context and recent history."""

    def __init__(self, rng: random.Random | None = None):
        self.rng = rng or random.Random()

    def candidates(
        self, context: CreativeContext, recent_methods: list[CreativeMethod]
    ) -> list[CreativeMethod]:
        """Weighted candidate list; a method listed twice is twice as likely."""
        if context.is_long_session:
            pool = list(REST_PREFERENCES)
        else:
            pool = list(TIME_PREFERENCES[context.time_of_day])
            if is_rainy(context.weather):
                pool.extend(RAIN_PREFERENCES)
            if is_clear(context.weather):
                pool.extend(CLEAR_PREFERENCES)

        fresh = [method for method in pool if method not in recent_methods]
        if fresh:
            pool = fresh
        return pool or list(ALL_METHODS)

    def select(self, context: CreativeContext, recent_methods: list[CreativeMethod]) -> CreativeMethod:
        return self.rng.choice(self.candidates(context, recent_methods))


class CreativeOrchestrator:
    """Select, generate, validate; fall back to the curated bank when that fails."""

    def __init__(
        self,
        generator: TextGeneratorProtocol,
        validator: UniquenessValidator,
        selector: MethodSelector | None = None,
        rng: random.Random | None = None,
        max_attempts: int = 3,
        user_name: str = "Quin",
        reply_language: str = "Vietnamese",
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.generator = generator
        self.validator = validator
        self.rng = rng or random.Random()
        self.selector = selector or MethodSelector(self.rng)
        self.max_attempts = max_attempts
        self.user_name = user_name
        self.reply_language = reply_language

    async def produce_message(self, context: CreativeContext) -> ProducedMessage:
        """Return a validated novel message, or a fallback. Never returns empty text."""
        errors: list[str] = []
        method = ALL_METHODS[0]

        for attempt in range(1, self.max_attempts + 1):
            method = self.selector.select(context, self.validator.recent_methods(RECENT_METHOD_WINDOW))
            bundle = build_instruction(
                context,
                method,
                self.validator.history.recent(RECENT_METHOD_WINDOW),
                user_name=self.user_name,
                reply_language=self.reply_language,
            )

            result = await self.generator.generate(bundle.system_instruction, bundle.user_query)
            if not result.success or not result.text.strip():
                errors.append(result.error or "empty generation result")
                logger.warning("Generation attempt %d/%d failed: %s", attempt, self.max_attempts, errors[-1])
                continue

            text = result.text.strip()
            if self.validator.accept(text, method):
                logger.info("Produced unique %s message (attempt %d)", method.value, attempt)
                return ProducedMessage(text=text, method=method, attempts=attempt, errors=errors)

            errors.append("too similar to recent messages")
            logger.info("Attempt %d/%d too similar to history, retrying", attempt, self.max_attempts)

        return self._fallback(method, context, errors)

    def _fallback(self, method: CreativeMethod, context: CreativeContext, errors: list[str]) -> ProducedMessage:
        text = self.rng.choice(fallback_bank(method, context.is_long_session))
        self.validator.record(text, method)
        logger.warning(
            "Using %s fallback message (%s) after %d attempts",
            "rest" if context.is_long_session else "normal", method.value, self.max_attempts,
        )
        return ProducedMessage(
            text=text,
            method=method,
            is_fallback=True,
            attempts=self.max_attempts,
            errors=errors,
        )
