"""Console line fan-in + bulk query watchers.

The game server console is a plain text stream. Commands are written out
through whatever link is attached (see `net/ws.py`), and their tabular
output comes back interleaved with ordinary log lines, so every query is a
watcher that picks its own rows out of the stream:

  [2024.05.01-18.22.03:117][ 88]LogBrickadia: Ruleset GLOBAL no saved ...
  0) BP_Ruleset_C /Game/Maps/Plate.Plate:PersistentLevel.BP_Ruleset_C_2147482545.RulesetName = GLOBAL
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

ENVELOPE_RE = re.compile(
    r"^(?:\[(?P<date>\d{4}\.\d\d\.\d\d-\d\d\.\d\d\.\d\d:\d{3})\]\[\s*(?P<counter>\d+)\])?"
    r"(?P<generator>\w+): (?P<data>.*)$"
)


@dataclass(frozen=True)
class LogEnvelope:
    subsystem_tag: str
    payload_text: str
    # Epoch milliseconds, None when the line carries no date prefix.
    embedded_timestamp: int | None
    counter: int | None = None


def parse_timestamp(date: str) -> int:
    """`2024.05.01-18.22.03:117` (UTC) -> epoch ms."""
    dt = datetime.strptime(date, "%Y.%m.%d-%H.%M.%S:%f").replace(tzinfo=timezone.utc)
    return int(round(dt.timestamp() * 1000))


def parse_envelope(line: str) -> LogEnvelope | None:
    m = ENVELOPE_RE.match(line)
    if not m:
        return None
    date = m.group("date")
    counter = m.group("counter")
    try:
        ts = parse_timestamp(date) if date else None
    except ValueError:
        ts = None
    return LogEnvelope(
        subsystem_tag=m.group("generator"),
        payload_text=m.group("data"),
        embedded_timestamp=ts,
        counter=int(counter) if counter else None,
    )


class _Watcher:
    def __init__(self, after_match_delay: float):
        self.after_match_delay = after_match_delay
        self.done: asyncio.Future = asyncio.get_running_loop().create_future()
        self._settle: asyncio.TimerHandle | None = None

    def _match(self, pattern: re.Pattern, line: str, env: LogEnvelope | None) -> re.Match | None:
        m = pattern.match(line)
        if m is None and env is not None:
            m = pattern.match(env.payload_text)
        return m

    def _bump(self) -> None:
        if self._settle:
            self._settle.cancel()
        loop = asyncio.get_running_loop()
        self._settle = loop.call_later(self.after_match_delay, self._finish)

    def _finish(self) -> None:
        if not self.done.done():
            self.done.set_result(self.result())

    def close(self) -> None:
        if self._settle:
            self._settle.cancel()
            self._settle = None

    def offer(self, line: str, env: LogEnvelope | None) -> None:
        raise NotImplementedError

    def result(self) -> list[Any]:
        raise NotImplementedError


class _ChunkWatcher(_Watcher):
    def __init__(self, pattern: re.Pattern, first: str | None, after_match_delay: float):
        super().__init__(after_match_delay)
        self.pattern = pattern
        self.first = first
        self.matches: list[re.Match] = []

    def offer(self, line: str, env: LogEnvelope | None) -> None:
        if self.done.done():
            return
        m = self._match(self.pattern, line, env)
        if m is None:
            return
        # Rows printed before our command's output (index != 0) belong to someone else.
        if self.first and not self.matches and m.group(self.first) != "0":
            return
        self.matches.append(m)
        self._bump()

    def result(self) -> list[re.Match]:
        return list(self.matches)


class _ArrayWatcher(_Watcher):
    def __init__(self, header: re.Pattern, member: re.Pattern, after_match_delay: float):
        super().__init__(after_match_delay)
        self.header = header
        self.member = member
        self.rows: list[dict[str, Any]] = []

    def offer(self, line: str, env: LogEnvelope | None) -> None:
        if self.done.done():
            return
        m = self._match(self.header, line, env)
        if m is not None:
            self.rows.append({"item": m, "members": []})
            self._bump()
            return
        if not self.rows:
            return
        m = self._match(self.member, line, env)
        if m is not None:
            self.rows[-1]["members"].append(m)
            self._bump()

    def result(self) -> list[dict[str, Any]]:
        return [{"item": r["item"], "members": list(r["members"])} for r in self.rows]


LineListener = Callable[[str, "LogEnvelope | None"], None]
CommandLink = Callable[[str], Awaitable[None]]


class Console:
    def __init__(self):
        self._watchers: set[_Watcher] = set()
        self._listeners: list[LineListener] = []
        self._link: CommandLink | None = None

    @property
    def attached(self) -> bool:
        return self._link is not None

    def attach(self, link: CommandLink | None) -> None:
        self._link = link

    def add_listener(self, fn: LineListener) -> None:
        self._listeners.append(fn)

    def feed(self, line: str) -> None:
        line = line.rstrip("\r\n")
        if not line:
            return
        env = parse_envelope(line)
        for w in list(self._watchers):
            w.offer(line, env)
        for fn in list(self._listeners):
            try:
                fn(line, env)
            except Exception:
                logger.exception("line listener failed on %r", line)

    async def send(self, command: str) -> None:
        if self._link is None:
            logger.debug("no console link attached, dropping %r", command)
            return
        await self._link(command)

    async def _collect(self, watcher: _Watcher, command: str, timeout: float) -> list[Any]:
        self._watchers.add(watcher)
        try:
            await self.send(command)
            done, _ = await asyncio.wait({watcher.done}, timeout=timeout)
            if not done:
                logger.debug("%r timed out after %.1fs with partial output", command, timeout)
                return watcher.result()
            return watcher.done.result()
        finally:
            self._watchers.discard(watcher)
            watcher.close()
            if not watcher.done.done():
                watcher.done.cancel()

    async def run_bulk_query(
        self,
        command: str,
        pattern: re.Pattern,
        *,
        first: str | None = None,
        timeout: float = 5.0,
        after_match_delay: float = 0.1,
    ) -> list[re.Match]:
        return await self._collect(_ChunkWatcher(pattern, first, after_match_delay), command, timeout)

    async def watch_array(
        self,
        command: str,
        header: re.Pattern,
        member: re.Pattern,
        *,
        timeout: float = 5.0,
        after_match_delay: float = 0.1,
    ) -> list[dict[str, Any]]:
        return await self._collect(_ArrayWatcher(header, member, after_match_delay), command, timeout)
