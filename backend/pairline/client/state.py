"""
Connection states and the observer primitive shared by the participant core.

Listeners are registered with subscribe(), which hands back the function that
unregisters them.  A listener that raises is logged and skipped; the others
still receive the value.
"""

import contextlib
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]


class ConnectionState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class Observable:
    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._muted = False

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, value: Any) -> None:
        if self._muted:
            return
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                logger.exception("Listener %r raised", listener)

    def mute(self) -> None:
        """Stop delivering.  Used once the owner is disposed."""
        self._muted = True

    @property
    def listener_count(self) -> int:
        return len(self._listeners)


class StateObservable(Observable):
    """Holds a current value; set() notifies only on an actual change."""

    def __init__(self, initial: Any) -> None:
        super().__init__()
        self._value = initial

    @property
    def value(self) -> Any:
        return self._value

    def set(self, value: Any) -> bool:
        if value == self._value:
            return False
        self._value = value
        self.emit(value)
        return True
