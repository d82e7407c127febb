"""Outbound sinks for emitted companion messages."""

from __future__ import annotations

import logging
from collections import deque
from typing import Callable

from .models import CompanionMessage

logger = logging.getLogger("companion_thoughts.egress")


class LogEgress:
    """Writes each message to the log."""

    def deliver(self, message: CompanionMessage) -> None:
        logger.info(
            "[%s] %s%s: %s",
            message.entity_id,
            "rest " if message.is_long_session_message else "",
            "fallback" if message.is_fallback else (message.method.value if message.method else "message"),
            message.text,
        )


class BufferedEgress(LogEgress):
    """Logs messages, keeps the most recent ones and forwards to subscribers."""

    def __init__(self, max_messages: int = 50):
        self._recent: deque[CompanionMessage] = deque(maxlen=max_messages)
        self._subscribers: list[Callable[[CompanionMessage], None]] = []

    def subscribe(self, callback: Callable[[CompanionMessage], None]) -> None:
        self._subscribers.append(callback)

    def deliver(self, message: CompanionMessage) -> None:
        super().deliver(message)
        self._recent.append(message)
        for callback in list(self._subscribers):
            try:
                callback(message)
            except Exception as exc:
                logger.warning("Message subscriber failed: %s", exc)

    def recent(self, limit: int = 20, entity_id: str | None = None) -> list[CompanionMessage]:
        messages = [m for m in self._recent if entity_id is None or m.entity_id == entity_id]
        return messages[-limit:] if limit > 0 else []
