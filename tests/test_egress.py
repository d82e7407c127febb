from __future__ import annotations

import logging
from datetime import datetime

from companion_thoughts.egress import BufferedEgress, LogEgress
from companion_thoughts.models import CompanionMessage, CreativeMethod
from companion_thoughts.protocols import EgressProtocol


def _message(text: str, entity_id: str = "cat", long_session: bool = False, fallback: bool = False):
    return CompanionMessage(
        text=text,
        timestamp=datetime(2026, 3, 10, 9, 30),
        entity_id=entity_id,
        is_long_session_message=long_session,
        method=CreativeMethod.SENSORY,
        is_fallback=fallback,
    )


def test_egress_classes_satisfy_protocol():
    assert isinstance(LogEgress(), EgressProtocol)
    assert isinstance(BufferedEgress(), EgressProtocol)


def test_log_egress_writes_message(caplog):
    caplog.set_level(logging.INFO)
    LogEgress().deliver(_message("Ánh đèn bàn ấm như tách trà", long_session=True))

    assert "[cat] rest sensory: Ánh đèn bàn ấm như tách trà" in caplog.text


def test_buffered_egress_keeps_recent_messages():
    egress = BufferedEgress(max_messages=3)
    for i in range(5):
        egress.deliver(_message(f"m{i}", entity_id="cat" if i % 2 == 0 else "dog"))

    assert [m.text for m in egress.recent()] == ["m2", "m3", "m4"]
    assert [m.text for m in egress.recent(limit=1)] == ["m4"]
    assert [m.text for m in egress.recent(entity_id="dog")] == ["m3"]
    assert egress.recent(limit=0) == []


def test_subscribers_receive_messages_even_if_one_fails(caplog):
    egress = BufferedEgress()
    received: list[str] = []

    def broken(message: CompanionMessage) -> None:
        raise RuntimeError("renderer gone")

    egress.subscribe(broken)
    egress.subscribe(lambda message: received.append(message.text))
    caplog.set_level(logging.WARNING)

    egress.deliver(_message("Một ngụm nước mát"))

    assert received == ["Một ngụm nước mát"]
    assert "Message subscriber failed: renderer gone" in caplog.text


def test_message_to_dict():
    payload = _message("Lá khẽ rung", fallback=True).to_dict()
    assert payload == {
        "text": "Lá khẽ rung",
        "timestamp": "2026-03-10T09:30:00",
        "entity_id": "cat",
        "is_long_session_message": False,
        "method": "sensory",
        "is_fallback": True,
    }
