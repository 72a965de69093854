from __future__ import annotations

import logging
from typing import Awaitable, Callable

from hazardwatch.errors import ChannelUnavailable
from hazardwatch.fire import FireDetection
from hazardwatch.protocol import AlertEvent
from hazardwatch.seismic import SeismicDetection

Detection = SeismicDetection | FireDetection


def detection_to_event(detection: Detection) -> AlertEvent:
    if isinstance(detection, SeismicDetection):
        return AlertEvent(kind="seismic", magnitude=detection.magnitude_text)
    if isinstance(detection, FireDetection):
        return AlertEvent(kind="fire")
    raise TypeError(f"unsupported detection {type(detection).__name__}")


class AlertPublisher:
    """Turns local detections into alert events.

    The event is delivered locally through the same callback remote events use,
    then sent on the topic. A send failure leaves the local alert in place and
    is not retried.
    """

    def __init__(
        self,
        deliver: Callable[[AlertEvent], None],
        send: Callable[[AlertEvent], Awaitable[None]] | None = None,
        on_send_error: Callable[[ChannelUnavailable], None] | None = None,
    ) -> None:
        self._deliver = deliver
        self._send = send
        self._on_send_error = on_send_error
        self._logger = logging.getLogger("hazardwatch.publisher")

    async def publish(self, detection: Detection) -> AlertEvent:
        event = detection_to_event(detection)
        self._deliver(event)
        if self._send is None:
            return event
        try:
            await self._send(event)
        except ChannelUnavailable as e:
            self._logger.warning("Alert kind=%s stayed local; broadcast failed: %s", event.kind, e)
            if self._on_send_error is not None:
                self._on_send_error(e)
        else:
            self._logger.info("Broadcast alert kind=%s magnitude=%s", event.kind, event.magnitude)
        return event
