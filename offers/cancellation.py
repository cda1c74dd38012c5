# offers/cancellation.py
from typing import Optional


class CancellationToken:
    """Cooperative abort flag; the cycle polls it between steps, never mid-request."""

    def __init__(self) -> None:
        self._cancelled = False
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "stopped") -> None:
        if not self._cancelled:
            self._cancelled = True
            self.reason = reason

    @property
    def cancelled(self) -> bool:
        return self._cancelled
