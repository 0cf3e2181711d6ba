import itertools
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from call_backend import config

logger = logging.getLogger(__name__)


@dataclass
class _Slot:
    lock: threading.Lock = field(default_factory=threading.Lock)
    token: int = 0
    acquired_at: float = 0.0


class CallDebouncer:
    """At most one call in flight per key.

    ``try_acquire`` is a non-blocking test-and-set on a real lock and hands
    back a token; ``release`` only frees the slot for the token that holds it,
    so a holder that was force-reset cannot release its successor.
    """

    def __init__(
        self,
        reset_after_sec: float = config.DEBOUNCE_RESET_SEC,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.reset_after_sec = float(reset_after_sec)
        self.clock = clock
        self._slots: Dict[str, _Slot] = {}
        self._guard = threading.Lock()
        self._tokens = itertools.count(1)

    def try_acquire(self, key: str) -> Optional[int]:
        with self._guard:
            slot = self._slots.setdefault(key, _Slot())
            if not slot.lock.acquire(blocking=False):
                held_for = self.clock() - slot.acquired_at
                if held_for < self.reset_after_sec:
                    return None
                logger.warning("DEBOUNCE_FORCE_RESET key=%s held_sec=%.1f", key, held_for)
                slot.token = 0
                slot.lock.release()
                if not slot.lock.acquire(blocking=False):
                    return None

            slot.token = next(self._tokens)
            slot.acquired_at = self.clock()
            return slot.token

    def release(self, key: str, token: int) -> bool:
        with self._guard:
            slot = self._slots.get(key)
            if slot is None or slot.token != token or not slot.lock.locked():
                return False
            slot.token = 0
            slot.lock.release()
            return True

    def is_busy(self, key: str) -> bool:
        slot = self._slots.get(key)
        return bool(slot and slot.lock.locked())


def debounce_key(scope: str, user_id: int) -> str:
    if scope == "user":
        return f"user:{user_id}"
    return "global"
