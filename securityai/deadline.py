from __future__ import annotations

import threading
import time
from typing import Optional

from securityai.errors import OperationCancelled


class Deadline:
    """
    Cancellation context handed to every pipeline and collaborator operation.

      d = Deadline(timeout=2.0)
      d.check()          # raises OperationCancelled once expired or cancelled
      d.remaining()      # seconds left (None = unbounded)
    """

    def __init__(self, timeout: Optional[float] = None):
        self._expires_at = time.monotonic() + timeout if timeout is not None else None
        self._cancelled = threading.Event()

    @classmethod
    def none(cls) -> "Deadline":
        return cls(timeout=None)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    def remaining(self, cap: Optional[float] = None) -> Optional[float]:
        if self._expires_at is None:
            return cap
        left = max(0.0, self._expires_at - time.monotonic())
        return left if cap is None else min(left, cap)

    def check(self, step: str = "") -> None:
        if self._cancelled.is_set():
            raise OperationCancelled(f"cancelled before {step or 'next step'}")
        if self._expires_at is not None and time.monotonic() >= self._expires_at:
            raise OperationCancelled(f"deadline exceeded before {step or 'next step'}")
