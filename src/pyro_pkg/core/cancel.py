"""Cooperative cancellation shared by fetch and hash workers."""
import threading

from pyro_pkg.core.errors import OperationCancelledError


class CancelToken:
    """Thread-safe flag checked at safe points between units of work."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, what: str = "operation") -> None:
        if self._event.is_set():
            raise OperationCancelledError(f"{what} cancelled")
