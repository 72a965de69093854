from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Any
from urllib.parse import unquote, urlparse

import websockets
from websockets.asyncio.server import Server, ServerConnection
from websockets.http11 import Request, Response

from hazardwatch.config import HubConfig
from hazardwatch.logging_utils import setup_logging
from hazardwatch.protocol import (
    DEFAULT_TOPIC,
    AlertEvent,
    ProtocolError,
    decode_alert,
    dumps,
    encode_alert,
    loads,
    parse_alert_payload,
)

REALTIME_PREFIX = "/realtime/"


class AlertHub:
    """Broadcast hub: every alert from one subscriber is fanned out to the rest of its topic.

    Nothing is stored; a client that is not connected when an alert goes out
    never sees it.
    """

    def __init__(self, cfg: HubConfig | None = None, log_level: str | None = None) -> None:
        if log_level is not None:
            setup_logging(log_level)
        self._cfg = cfg or HubConfig()
        self._logger = logging.getLogger("hazardwatch.hub")
        self._topics: dict[str, set[ServerConnection]] = {}
        self._server: Server | None = None
        self._status_task: asyncio.Task[None] | None = None
        self._stop = asyncio.Event()

        self.alerts_relayed: int = 0
        self.iot_alerts: int = 0

    @property
    def port(self) -> int:
        if self._server is None:
            raise RuntimeError("hub not started")
        return int(self._server.sockets[0].getsockname()[1])

    def subscribers(self, topic: str = DEFAULT_TOPIC) -> int:
        return len(self._topics.get(topic, ()))

    async def start(self) -> None:
        if self._server is not None:
            return
        self._server = await websockets.serve(
            self._route,
            self._cfg.host,
            self._cfg.port,
            process_request=self._process_request,
            max_size=64 * 1024,
        )
        self._status_task = asyncio.create_task(self._status_loop(), name="hub_status")
        self._logger.info("Alert hub listening on %s:%s", self._cfg.host, self.port)

    async def stop(self) -> None:
        self._stop.set()
        task = self._status_task
        self._status_task = None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        server = self._server
        self._server = None
        if server is not None:
            server.close()
            await server.wait_closed()
            self._logger.info("Alert hub stopped")

    async def run(self) -> None:
        await self.start()
        try:
            await self._stop.wait()
        finally:
            await self.stop()

    def _process_request(self, conn: ServerConnection, request: Request) -> Response | None:
        if urlparse(request.path).path == "/healthz":
            return conn.respond(HTTPStatus.OK, "ok\n")
        return None

    async def _route(self, conn: ServerConnection) -> None:
        raw_path = conn.request.path
        path = urlparse(raw_path).path

        if path.startswith(REALTIME_PREFIX) and len(path) > len(REALTIME_PREFIX):
            await self._handle_subscriber(conn, unquote(path[len(REALTIME_PREFIX) :]))
            return
        if path == "/iot":
            await self._handle_iot(conn)
            return

        self._logger.warning("Unknown websocket path %s from %s", raw_path, conn.remote_address)
        await conn.close(code=1008, reason="Unknown path")

    async def _handle_subscriber(self, conn: ServerConnection, topic: str) -> None:
        subs = self._topics.setdefault(topic, set())
        subs.add(conn)
        self._logger.info("Subscriber joined topic=%s from %s (%d total)", topic, conn.remote_address, len(subs))
        try:
            async for msg in conn:
                try:
                    event = decode_alert(msg)
                except ProtocolError as e:
                    self._logger.warning("Dropping invalid alert from %s: %s", conn.remote_address, e)
                    continue
                await self.publish(topic, event, exclude=conn)
        except websockets.ConnectionClosed:
            pass
        finally:
            subs.discard(conn)
            if not subs:
                self._topics.pop(topic, None)
            self._logger.info("Subscriber left topic=%s from %s", topic, conn.remote_address)

    async def _handle_iot(self, conn: ServerConnection) -> None:
        self._logger.info("IoT device connected from %s", conn.remote_address)
        try:
            async for msg in conn:
                await conn.send(dumps(await self._ingest_iot(msg)))
        except websockets.ConnectionClosed:
            pass
        finally:
            self._logger.info("IoT device disconnected from %s", conn.remote_address)

    async def _ingest_iot(self, msg: str | bytes) -> dict[str, Any]:
        try:
            received = loads(msg)
        except ValueError:
            return {"error": "Invalid JSON body"}
        try:
            event = parse_alert_payload(received)
        except ProtocolError as e:
            return {"error": str(e)}

        stamped = AlertEvent(
            kind=event.kind,
            magnitude=event.magnitude,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        self.iot_alerts += 1
        await self.publish(DEFAULT_TOPIC, stamped)
        self._logger.info("Broadcasted IoT '%s' alert", stamped.kind)
        return {"message": "Alert broadcasted successfully", "received": received}

    async def publish(self, topic: str, event: AlertEvent, exclude: ServerConnection | None = None) -> int:
        conns = self._topics.get(topic)
        if not conns:
            return 0
        payload = encode_alert(event)
        targets = [c for c in conns if c is not exclude]
        dead: list[ServerConnection] = []
        sent = 0
        for c in targets:
            try:
                await c.send(payload)
                sent += 1
            except Exception:
                dead.append(c)
        for c in dead:
            conns.discard(c)
        self.alerts_relayed += 1
        self._logger.info("Relayed %s alert on topic=%s to %d subscriber(s)", event.kind, topic, sent)
        return sent

    async def _status_loop(self) -> None:
        while True:
            await asyncio.sleep(max(1.0, self._cfg.status_interval_s))
            counts = {t: len(c) for t, c in self._topics.items()}
            self._logger.info(
                "Hub status topics=%s relayed=%d iot=%d",
                counts,
                self.alerts_relayed,
                self.iot_alerts,
            )
