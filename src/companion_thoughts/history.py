"""Message history and the anti-repetition validator.

A candidate is rejected when, against any remembered message, it:

- shares too many keywords (Jaccard similarity above the threshold),
- has nearly the same sentence shape as a message produced with the same
  creative method (normalized Levenshtein similarity of structural
  signatures above the threshold), or
- repeats any run of three consecutive words verbatim.

History is one fixed-capacity ring buffer shared by every scheduled entity,
so uniqueness is enforced engine-wide.
"""

from __future__ import annotations

import logging
import re
import time
import unicodedata
from dataclasses import dataclass
from itertools import combinations
from typing import Any, Callable, Iterator

from .models import CreativeMethod, MessageRecord

logger = logging.getLogger("companion_thoughts.history")

DEFAULT_CAPACITY = 20
SIMILARITY_THRESHOLD = 0.3
NGRAM_SIZE = 3

STOP_WORDS = frozenset(
    {
        # Vietnamese
        "và", "của", "là", "có", "một", "các", "với", "để", "không", "thì",
        "đã", "sẽ", "bị", "được", "những", "này", "cho", "như", "trong", "đang",
        "lại", "còn", "nhưng", "khi", "thật", "rất", "mình", "bạn",
        # English
        "the", "and", "for", "with", "you", "your", "that", "this", "are", "was",
        "from", "have", "has", "but", "not", "its", "into", "just", "like",
    }
)

_LETTER_RUN = re.compile(r"[^\W\d_]+")
_DIGIT_RUN = re.compile(r"\d+")
_PUNCTUATION = re.compile(r"[^\w\s]")


def _normalize(text: str) -> str:
    return unicodedata.normalize("NFC", text).lower()


def extract_keywords(text: str) -> frozenset[str]:
    """Lowercase alphabetic tokens longer than two characters, minus stop words."""
    return frozenset(
        token for token in _LETTER_RUN.findall(_normalize(text))
        if len(token) > 2 and token not in STOP_WORDS
    )


def structural_signature(text: str) -> str:
    """Replace letter runs with ``W``, digit runs with ``N`` and punctuation with ``P``."""
    signature = _LETTER_RUN.sub("W", unicodedata.normalize("NFC", text))
    signature = _DIGIT_RUN.sub("N", signature)
    return _PUNCTUATION.sub("P", signature)


def keyword_similarity(first: frozenset[str], second: frozenset[str]) -> float:
    union = first | second
    if not union:
        return 0.0
    return len(first & second) / len(union)


def levenshtein(first: str, second: str) -> int:
    if len(first) < len(second):
        first, second = second, first
    previous = list(range(len(second) + 1))
    for i, ch1 in enumerate(first, start=1):
        current = [i]
        for j, ch2 in enumerate(second, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ch1 != ch2),
            ))
        previous = current
    return previous[-1]


def string_similarity(first: str, second: str) -> float:
    longest = max(len(first), len(second))
    if longest == 0:
        return 1.0
    return (longest - levenshtein(first, second)) / longest


def shares_ngram(candidate: str, existing: str, size: int = NGRAM_SIZE) -> bool:
    """True if any ``size``-word window of ``candidate`` occurs verbatim in ``existing``."""
    words = _normalize(candidate).split()
    haystack = " ".join(_normalize(existing).split())
    for start in range(len(words) - size + 1):
        if " ".join(words[start:start + size]) in haystack:
            return True
    return False


def make_record(content: str, method: CreativeMethod, timestamp: float | None = None) -> MessageRecord:
    return MessageRecord(
        content=content,
        method=method,
        timestamp=time.time() if timestamp is None else timestamp,
        keywords=extract_keywords(content),
        structure=structural_signature(content),
    )


class MessageHistory:
    """Fixed-capacity ring buffer of accepted messages, oldest evicted first."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._slots: list[MessageRecord | None] = [None] * capacity
        self._next = 0
        self._size = 0

    def __len__(self) -> int:
        return self._size

    def __iter__(self) -> Iterator[MessageRecord]:
        """Iterate oldest to newest."""
        start = (self._next - self._size) % self.capacity
        for offset in range(self._size):
            record = self._slots[(start + offset) % self.capacity]
            if record is not None:
                yield record

    def append(self, record: MessageRecord) -> None:
        self._slots[self._next] = record
        self._next = (self._next + 1) % self.capacity
        self._size = min(self._size + 1, self.capacity)

    def recent(self, count: int) -> list[MessageRecord]:
        records = list(self)
        return records[-count:] if count > 0 else []

    def clear(self) -> None:
        self._slots = [None] * self.capacity
        self._next = 0
        self._size = 0
        logger.info("Message history cleared")


@dataclass(frozen=True, slots=True)
class UniquenessVerdict:
    unique: bool
    rule: str | None = None
    score: float = 0.0
    conflicting: str | None = None


class UniquenessValidator:
    """Checks candidates against the shared history and records accepted ones."""

    def __init__(
        self,
        history: MessageHistory,
        threshold: float = SIMILARITY_THRESHOLD,
        time_source: Callable[[], float] = time.time,
    ):
        self.history = history
        self.threshold = threshold
        self._time_source = time_source

    def check(self, text: str, method: CreativeMethod) -> UniquenessVerdict:
        keywords = extract_keywords(text)
        structure = structural_signature(text)

        for record in self.history:
            score = keyword_similarity(keywords, record.keywords)
            if score > self.threshold:
                return UniquenessVerdict(False, "keywords", score, record.content)

            if record.method == method:
                score = string_similarity(structure, record.structure)
                if score > self.threshold:
                    return UniquenessVerdict(False, "structure", score, record.content)

            if shares_ngram(text, record.content):
                return UniquenessVerdict(False, "ngram", 1.0, record.content)

        return UniquenessVerdict(True)

    def is_unique(self, text: str, method: CreativeMethod) -> bool:
        return self.check(text, method).unique

    def accept(self, text: str, method: CreativeMethod) -> bool:
        """Record ``text`` if it passes every check. Returns whether it was accepted."""
        verdict = self.check(text, method)
        if not verdict.unique:
            logger.info(
                "Rejected candidate (%s similarity %.2f with %r)",
                verdict.rule, verdict.score, (verdict.conflicting or "")[:60],
            )
            return False
        self.record(text, method)
        return True

    def record(self, text: str, method: CreativeMethod) -> MessageRecord:
        """Store ``text`` without checking it."""
        record = make_record(text, method, self._time_source())
        self.history.append(record)
        return record

    def clear(self) -> None:
        self.history.clear()

    def recent_methods(self, count: int = 5) -> list[CreativeMethod]:
        return [record.method for record in self.history.recent(count)]

    def stats(self) -> dict[str, Any]:
        records = list(self.history)
        distribution = {method.value: 0 for method in CreativeMethod}
        for record in records:
            distribution[record.method.value] += 1

        if len(records) < 2:
            average_uniqueness = 1.0
        else:
            scores = [1 - string_similarity(a.content, b.content) for a, b in combinations(records, 2)]
            average_uniqueness = sum(scores) / len(scores)

        return {
            "total_messages": len(records),
            "capacity": self.history.capacity,
            "method_distribution": distribution,
            "average_uniqueness": round(average_uniqueness, 3),
        }
