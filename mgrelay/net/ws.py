"""WebSocket handlers: event consumers (/ws) and the console link (/console)."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable

from aiohttp import WSMsgType, web

from mgrelay.game import protocol
from mgrelay.game.events import Consumer, EventKind

logger = logging.getLogger(__name__)

OUTBOX_LIMIT = 1000


@dataclass
class Connection:
    conn_id: str
    ws: web.WebSocketResponse
    created_at: float

    name: str | None = None
    outbox: asyncio.Queue = field(default_factory=lambda: asyncio.Queue(maxsize=OUTBOX_LIMIT))
    sender: asyncio.Task | None = None
    closed: bool = False

    @property
    def loaded(self) -> bool:
        return self.name is not None and not self.closed and not self.ws.closed

    def emit(self, kind: EventKind, payload: Any) -> None:
        if not self.loaded:
            raise ConnectionResetError(f"{self.name} is not connected")
        # Raises QueueFull for a consumer that stopped reading.
        self.outbox.put_nowait(protocol.dumps("event", {"kind": kind.value, "payload": protocol.encode(payload)}))


class ConsumerHub:
    def __init__(self, svc):
        self.svc = svc
        self._conns: dict[str, Connection] = {}
        self._local: dict[str, Consumer] = {}

    def register_local(self, consumer: Consumer) -> None:
        self._local[consumer.name] = consumer

    def lookup(self, name: str) -> Consumer | None:
        if name in self._local:
            return self._local[name]
        # Newest connection under that name wins.
        found = None
        for c in self._conns.values():
            if c.name == name and c.loaded:
                if found is None or c.created_at >= found.created_at:
                    found = c
        return found

    def connections(self) -> Iterable[Connection]:
        return list(self._conns.values())

    async def handle(self, request: web.Request) -> web.StreamResponse:
        ws = web.WebSocketResponse(heartbeat=10.0, max_msg_size=1_000_000)
        await ws.prepare(request)

        conn = Connection(conn_id=uuid.uuid4().hex, ws=ws, created_at=time.time())
        conn.sender = asyncio.create_task(self._drain(conn))
        self._conns[conn.conn_id] = conn

        await ws.send_str(protocol.dumps("info", {"server": self.svc.version_payload()}))

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    await self._on_text(conn, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    break
        finally:
            await self._disconnect(conn)
        return ws

    async def _drain(self, conn: Connection) -> None:
        while True:
            text = await conn.outbox.get()
            try:
                await conn.ws.send_str(text)
            except ConnectionResetError:
                logger.debug("consumer %s went away mid-send", conn.name)
                return

    async def _on_text(self, conn: Connection, text: str) -> None:
        try:
            msg_type, data = protocol.loads(text)
        except protocol.ProtocolError as e:
            await conn.ws.send_str(protocol.dumps("error", {"message": str(e)}))
            return

        if msg_type not in protocol.VALID_C2S:
            await conn.ws.send_str(protocol.dumps("error", {"message": "invalid type"}))
            return

        if msg_type == "hello":
            try:
                h = protocol.Hello.parse(data)
            except protocol.ProtocolError as e:
                await conn.ws.send_str(protocol.dumps("error", {"message": str(e)}))
                return
            conn.name = h.name
            logger.info("consumer %s connected", h.name)
            await conn.ws.send_str(protocol.dumps("welcome", {"name": h.name, **self.svc.version_payload()}))
            return

        if msg_type == "ping":
            p = protocol.Ping.parse(data)
            await conn.ws.send_str(protocol.dumps("pong", {"t": p.t, "serverTime": time.time()}))
            return

        # Must have said hello to (un)subscribe.
        if not conn.name:
            await conn.ws.send_str(protocol.dumps("error", {"message": "hello first"}))
            return

        if msg_type == "subscribe":
            ok = self.svc.registry.subscribe(conn.name)
            await conn.ws.send_str(protocol.dumps("subscribed", {"ok": ok, "name": conn.name}))
            return

        if msg_type == "unsubscribe":
            self.svc.registry.unsubscribe(conn.name)
            await conn.ws.send_str(protocol.dumps("unsubscribed", {"name": conn.name}))
            return

    async def _disconnect(self, conn: Connection) -> None:
        # Idempotent.
        if conn.conn_id not in self._conns:
            return
        self._conns.pop(conn.conn_id, None)
        conn.closed = True
        if conn.sender:
            conn.sender.cancel()
            try:
                await conn.sender
            except asyncio.CancelledError:
                pass
        if conn.name:
            logger.info("consumer %s disconnected", conn.name)
        await conn.ws.close()

    async def close_all(self) -> None:
        for c in list(self._conns.values()):
            await self._disconnect(c)


class ConsoleLink:
    """The game server side: log lines in, console commands out.

    Only one link is live; a new connection replaces the previous one.
    """

    def __init__(self, console):
        self.console = console
        self._ws: web.WebSocketResponse | None = None

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def handle(self, request: web.Request) -> web.StreamResponse:
        ws = web.WebSocketResponse(heartbeat=10.0, max_msg_size=4_000_000)
        await ws.prepare(request)

        prev = self._ws
        self._ws = ws

        async def send(command: str) -> None:
            await ws.send_str(command)

        self.console.attach(send)
        if prev is not None and not prev.closed:
            logger.info("console link replaced")
            await prev.close()
        else:
            logger.info("console link attached")

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    for line in msg.data.splitlines():
                        self.console.feed(line)
                elif msg.type == WSMsgType.ERROR:
                    break
        finally:
            if self._ws is ws:
                self._ws = None
                self.console.attach(None)
                logger.info("console link detached")
        return ws

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
