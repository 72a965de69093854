from __future__ import annotations

import asyncio
import logging
import os
import random
import ssl
import time
from typing import Any, Callable
from urllib.parse import quote

import certifi
import websockets
from websockets.asyncio.client import ClientConnection

from hazardwatch.config import ChannelConfig
from hazardwatch.errors import ChannelUnavailable
from hazardwatch.protocol import AlertEvent, ProtocolError, decode_alert, encode_alert


def topic_url(hub_url: str, topic: str) -> str:
    return f"{hub_url.rstrip('/')}/realtime/{quote(topic, safe='')}"


class AlertChannel:
    """Subscription to one broadcast topic on the alert hub.

    Every decoded event goes to `on_event`. Delivery is at-most-once: events
    published while this client is disconnected are never replayed.
    """

    def __init__(self, cfg: ChannelConfig, on_event: Callable[[AlertEvent], None]) -> None:
        self._cfg = cfg
        self._on_event = on_event
        self._url = topic_url(cfg.hub_url, cfg.topic)
        self._ws: ClientConnection | None = None
        self._task: asyncio.Task[None] | None = None
        self._closed = False
        self._last_err_log_s: float = 0.0
        self._logger = logging.getLogger("hazardwatch.channel")

    @property
    def url(self) -> str:
        return self._url

    @property
    def connected(self) -> bool:
        return self._ws is not None

    def _ssl_context(self) -> ssl.SSLContext | None:
        if not self._url.startswith("wss://"):
            return None
        if self._cfg.insecure_ssl:
            self._logger.warning("HUB_INSECURE_SSL=1; TLS verification disabled (unsafe)")
            return ssl._create_unverified_context()
        cafile = (os.environ.get("SSL_CERT_FILE") or "").strip() or certifi.where()
        return ssl.create_default_context(cafile=cafile)

    async def _connect(self) -> ClientConnection:
        kwargs: dict[str, Any] = {
            "open_timeout": self._cfg.open_timeout_s,
            "ping_interval": 20,
            "ping_timeout": 20,
            "max_size": 64 * 1024,
        }
        ssl_ctx = self._ssl_context()
        if ssl_ctx is not None:
            kwargs["ssl"] = ssl_ctx
        try:
            return await websockets.connect(self._url, **kwargs)
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
            raise ChannelUnavailable(f"{self._url}: {type(e).__name__}: {e}") from e

    async def subscribe(self) -> None:
        """Connect once; raises ChannelUnavailable if the hub can't be reached."""
        if self._closed:
            raise ChannelUnavailable("channel closed")
        if self._task is not None and not self._task.done():
            return
        ws = await self._connect()
        self._ws = ws
        self._logger.info("Subscribed to %s", self._url)
        self._task = asyncio.create_task(self._run(ws), name="alert_channel")

    async def _run(self, ws: ClientConnection | None) -> None:
        backoff_s = 0.5
        while not self._closed:
            if ws is None:
                try:
                    ws = await self._connect()
                except ChannelUnavailable as e:
                    self._log_rate_limited("Alert hub unreachable (%s); retrying", e)
                    await asyncio.sleep(backoff_s + random.random() * 0.2)
                    backoff_s = min(backoff_s * 1.7, 5.0)
                    continue
                self._ws = ws
                backoff_s = 0.5
                self._logger.info("Resubscribed to %s", self._url)

            try:
                async for msg in ws:
                    self._handle(msg)
            except websockets.ConnectionClosed:
                pass
            finally:
                self._ws = None
            ws = None
            if self._closed:
                break
            self._logger.warning("Alert hub connection lost; alerts sent meanwhile will be missed")
            await asyncio.sleep(backoff_s + random.random() * 0.2)

    def _handle(self, msg: str | bytes) -> None:
        try:
            event = decode_alert(msg)
        except ProtocolError as e:
            self._logger.warning("Dropping malformed alert message: %s", e)
            return
        try:
            self._on_event(event)
        except Exception:
            self._logger.exception("Alert handler failed")

    async def send(self, event: AlertEvent) -> None:
        ws = self._ws
        if ws is None:
            raise ChannelUnavailable("not connected to the alert hub")
        try:
            await ws.send(encode_alert(event))
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise ChannelUnavailable(f"send failed: {type(e).__name__}: {e}") from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        ws = self._ws
        self._ws = None
        task = self._task
        self._task = None
        if ws is not None:
            await ws.close()
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._logger.info("Unsubscribed from %s", self._url)

    def _log_rate_limited(self, msg: str, *args: Any) -> None:
        now_s = time.monotonic()
        if (now_s - self._last_err_log_s) > 3.0:
            self._last_err_log_s = now_s
            self._logger.info(msg, *args)
