"""Checkpoint line shapes -> JoinAttempt, with duplicate suppression."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Callable

from mgrelay.game.models import JoinAttempt
from mgrelay.net.console import LogEnvelope

logger = logging.getLogger(__name__)

_UUID = r"\w{8}-\w{4}-\w{4}-\w{4}-\w{12}"


@dataclass(frozen=True)
class LineShape:
    name: str
    pattern: re.Pattern

    def match(self, payload: str, observed_at: float) -> JoinAttempt | None:
        m = self.pattern.match(payload)
        if not m:
            return None
        return JoinAttempt(
            player_name=m.group("player"),
            player_id=m.group("id"),
            ruleset_display_name=m.group("ruleset"),
            observed_at=observed_at,
        )


LINE_SHAPES: tuple[LineShape, ...] = (
    LineShape(
        "checkpoint",
        re.compile(
            r"^Ruleset (?P<ruleset>.+) (?:no saved checkpoint for player|loading saved checkpoint for player) "
            rf"(?P<player>.+) \((?P<id>{_UUID})\)!*$"
        ),
    ),
    LineShape(
        "joining",
        re.compile(rf"^(?P<player>.+) \((?P<id>{_UUID})\) joining Ruleset (?P<ruleset>.+?)!*$"),
    ),
)


def match_shape(payload: str, observed_at: float) -> JoinAttempt | None:
    for shape in LINE_SHAPES:
        attempt = shape.match(payload, observed_at)
        if attempt is not None:
            return attempt
    return None


class JoinLineMatcher:
    """Turns engine log lines into join attempts.

    The server prints the checkpoint line twice for a single join, so lines
    with identical text whose embedded timestamps are within `window_ms`
    of the last accepted copy are dropped.
    """

    def __init__(
        self,
        channel: str = "LogBrickadia",
        *,
        window_ms: int = 100,
        max_entries: int = 2000,
        max_age: float = 60 * 60.0,
        clock: Callable[[], float] = time.time,
    ):
        self.channel = channel
        self.window_ms = int(window_ms)
        self.max_entries = int(max_entries)
        self.max_age = float(max_age)
        self.clock = clock
        # payload text -> epoch ms of the last accepted copy
        self.seen: dict[str, int] = {}

    def reset(self) -> None:
        self.seen.clear()

    def match(self, env: LogEnvelope | None) -> JoinAttempt | None:
        if env is None or env.subsystem_tag != self.channel:
            return None

        text = env.payload_text
        ts = env.embedded_timestamp
        if ts is None:
            ts = int(self.clock() * 1000)

        attempt = match_shape(text, ts / 1000.0)
        if attempt is None:
            return None

        last = self.seen.get(text)
        if last is not None and last + self.window_ms >= ts:
            logger.debug("duplicate checkpoint line dropped: %s", text)
            return None
        self.seen[text] = ts

        if len(self.seen) > self.max_entries:
            self._sweep()

        return attempt

    def _sweep(self) -> None:
        cutoff = (self.clock() - self.max_age) * 1000
        stale = [k for k, v in self.seen.items() if v < cutoff]
        for k in stale:
            del self.seen[k]
        logger.debug("dedup sweep removed %d of %d entries", len(stale), len(stale) + len(self.seen))
