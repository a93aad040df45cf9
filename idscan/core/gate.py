import logging
import time
from typing import Callable

from idscan.config import SCAN_COOLDOWN_SECONDS

logger = logging.getLogger(__name__)


class ScanDeduplicationGate:
    """
    Suppresses repeated decodes of the same code from consecutive frames.

    accept() marks the gate busy; it stays busy until release() is called or
    the cool-down elapses, whichever comes first.
    """

    def __init__(
        self,
        cooldown_seconds: float = SCAN_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self.last_code: str | None = None
        self.busy = False
        self.accepted_at: float | None = None

    def accept(self, code: str) -> bool:
        if self.cooldown_elapsed():
            self.release()

        if self.busy or code == self.last_code:
            logger.debug("Gate rejected code %r (busy=%s)", code, self.busy)
            return False

        self.busy = True
        self.last_code = code
        self.accepted_at = self._clock()
        return True

    def release(self) -> None:
        self.last_code = None
        self.busy = False
        self.accepted_at = None

    def cooldown_elapsed(self) -> bool:
        if self.accepted_at is None:
            return False
        return self._clock() - self.accepted_at >= self.cooldown_seconds

    def retry_after_seconds(self) -> float | None:
        if self.accepted_at is None:
            return None
        remaining = self.cooldown_seconds - (self._clock() - self.accepted_at)
        return max(0.0, remaining)
