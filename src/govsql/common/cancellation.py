from __future__ import annotations

import threading


class CancellationToken:
    """Per-request cancellation flag shared between the caller and the engine."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()
