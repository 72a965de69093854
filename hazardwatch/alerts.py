from __future__ import annotations

import enum
import logging
from typing import Callable

from hazardwatch.protocol import AlertEvent


class AlertState(str, enum.Enum):
    IDLE = "idle"
    ALERTING = "alerting"


AlertObserver = Callable[[AlertEvent | None, AlertEvent | None], None]


class ActiveAlert:
    """Single-slot, last-write-wins alert state owned by one client session.

    Mutated only from the event loop thread, so it carries no lock. Remote and
    local alerts both enter through `apply`.
    """

    def __init__(self) -> None:
        self._current: AlertEvent | None = None
        self._observers: list[AlertObserver] = []
        self._logger = logging.getLogger("hazardwatch.alerts")

    @property
    def current(self) -> AlertEvent | None:
        return self._current

    @property
    def state(self) -> AlertState:
        return AlertState.IDLE if self._current is None else AlertState.ALERTING

    def observe(self, observer: AlertObserver) -> Callable[[], None]:
        self._observers.append(observer)

        def remove() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return remove

    def apply(self, event: AlertEvent) -> None:
        previous = self._current
        self._current = event
        if previous is None:
            self._logger.info("Alert raised kind=%s magnitude=%s", event.kind, event.magnitude)
        else:
            self._logger.info("Alert replaced %s -> %s", previous.kind, event.kind)
        self._notify(previous, event)

    def dismiss(self) -> bool:
        """Clear the slot locally. Returns False when there was nothing to dismiss."""
        previous = self._current
        if previous is None:
            return False
        self._current = None
        self._logger.info("Alert dismissed kind=%s", previous.kind)
        self._notify(previous, None)
        return True

    def _notify(self, previous: AlertEvent | None, current: AlertEvent | None) -> None:
        for observer in list(self._observers):
            try:
                observer(previous, current)
            except Exception:
                self._logger.exception("Alert observer failed")
