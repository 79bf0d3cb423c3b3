"""Passive-reply sequence numbers per inbound message id."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

DEFAULT_TTL_SECONDS = 5 * 60
DEFAULT_MAX_SEQUENCE = 5


@dataclass(slots=True)
class ReplySequenceEntry:
    current_seq: int
    expires_at: float


class ReplySequencer:
    """Hands out ``msg_seq`` values for replies to the same inbound message.

    The platform drops replies that reuse a sequence number and rejects more
    than a few replies per message or replies after the passive window. The
    first reply gets 1; each later reply within ``ttl`` gets the next number
    until ``max_sequence``, after which ``None`` means "do not send".
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL_SECONDS,
        max_sequence: int = DEFAULT_MAX_SEQUENCE,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.max_sequence = max_sequence
        self._clock = clock
        self._entries: dict[str, ReplySequenceEntry] = {}
        self._lock = threading.Lock()

    def next_sequence(
        self,
        message_id: str,
        ttl: Optional[float] = None,
        max_sequence: Optional[int] = None,
    ) -> Optional[int]:
        ttl = self.ttl if ttl is None else ttl
        max_sequence = self.max_sequence if max_sequence is None else max_sequence

        with self._lock:
            now = self._clock()
            entry = self._entries.get(message_id)

            if entry is None or entry.expires_at <= now:
                self._purge_expired(now)
                self._entries[message_id] = ReplySequenceEntry(current_seq=1, expires_at=now + ttl)
                return 1

            next_seq = entry.current_seq + 1
            if next_seq > max_sequence:
                return None

            entry.current_seq = next_seq
            entry.expires_at = now + ttl
            return next_seq

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)
