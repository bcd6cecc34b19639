"""Bulk console queries -> typed rows (rulesets, round state, leaderboards)."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass

from mgrelay.game.models import Leaderboard, RulesetSnapshot, as_leaderboard
from mgrelay.net.console import Console

logger = logging.getLogger(__name__)

RULESET_NAME_CMD = "GetAll BP_Ruleset_C RulesetName"
RULESET_SESSION_CMD = "GetAll BP_Ruleset_C bInSession"
LEADERBOARD_CMD = "GetAll BP_PlayerState_C LeaderboardData"

RULESET_NAME_RE = re.compile(
    r"^(?P<index>\d+)\) BP_Ruleset_C (.+):PersistentLevel\.(?P<ruleset>BP_Ruleset_C_\d+)\.RulesetName = (?P<name>.*)$"
)
RULESET_SESSION_RE = re.compile(
    r"^(?P<index>\d+)\) BP_Ruleset_C (.+):PersistentLevel\.(?P<ruleset>BP_Ruleset_C_\d+)\.bInSession = (?P<inSession>True|False)$"
)
PLAYER_STATE_RE = re.compile(
    r"^(?P<index>\d+)\) BP_PlayerState_C (.+):PersistentLevel\.(?P<state>BP_PlayerState_C_\d+)\.LeaderboardData =$"
)
LEADERBOARD_COLUMN_RE = re.compile(r"^\t(?P<index>\d+): (?P<column>-?\d+)$")


@dataclass(frozen=True)
class RulesetRow:
    index: int
    ruleset: str
    name: str


@dataclass(frozen=True)
class SessionRow:
    ruleset: str
    in_session: bool


@dataclass(frozen=True)
class LeaderboardRow:
    state: str
    leaderboard: Leaderboard


def ordinal_indices(rows: list[RulesetRow], global_name: str = "GLOBAL") -> list[tuple[RulesetRow, int]]:
    """Sort by ruleset id (descending) and number the minigames.

    GLOBAL gets -1 and everything after it moves up one slot, so the
    visible minigames are numbered from 0 without a gap.
    """
    ordered = sorted(rows, key=lambda r: r.ruleset, reverse=True)
    global_idx = next((i for i, r in enumerate(ordered) if r.name == global_name), -1)

    out = []
    for i, row in enumerate(ordered):
        index = i
        if global_idx >= 0:
            if i > global_idx:
                index -= 1
            elif i == global_idx:
                index = -1
        out.append((row, index))
    return out


def build_snapshots(
    rulesets: list[RulesetRow],
    sessions: list[SessionRow],
    now: float,
    global_name: str = "GLOBAL",
) -> list[RulesetSnapshot]:
    in_session = {s.ruleset: s.in_session for s in sessions}
    out = []
    for row, index in ordinal_indices(rulesets, global_name):
        # Round state unknown this cycle; skip it so the cache keeps the last one.
        if row.ruleset not in in_session:
            logger.debug("no bInSession row for %s (%s) this cycle", row.name, row.ruleset)
            continue
        out.append(
            RulesetSnapshot(
                ruleset_id=row.ruleset,
                display_name=row.name,
                ordinal_index=index,
                round_ended=not in_session[row.ruleset],
                last_seen=now,
            )
        )
    return out


class SnapshotReader:
    def __init__(self, console: Console, *, timeout: float = 5.0, after_match_delay: float = 0.1):
        self.console = console
        self.timeout = float(timeout)
        self.after_match_delay = float(after_match_delay)

    async def _chunk(self, command: str, pattern: re.Pattern) -> list[re.Match]:
        return await self.console.run_bulk_query(
            command,
            pattern,
            first="index",
            timeout=self.timeout,
            after_match_delay=self.after_match_delay,
        )

    async def read_rulesets(self) -> tuple[list[RulesetRow], list[SessionRow]]:
        names, sessions = await asyncio.gather(
            self._chunk(RULESET_NAME_CMD, RULESET_NAME_RE),
            self._chunk(RULESET_SESSION_CMD, RULESET_SESSION_RE),
        )
        return (
            [RulesetRow(index=int(m.group("index")), ruleset=m.group("ruleset"), name=m.group("name")) for m in names],
            [SessionRow(ruleset=m.group("ruleset"), in_session=m.group("inSession") == "True") for m in sessions],
        )

    async def read_minigames(self, now: float, global_name: str = "GLOBAL") -> list[RulesetSnapshot]:
        rulesets, sessions = await self.read_rulesets()
        return build_snapshots(rulesets, sessions, now, global_name)

    async def read_leaderboards(self) -> list[LeaderboardRow]:
        rows = await self.console.watch_array(
            LEADERBOARD_CMD,
            PLAYER_STATE_RE,
            LEADERBOARD_COLUMN_RE,
            timeout=self.timeout,
            after_match_delay=self.after_match_delay,
        )
        return [
            LeaderboardRow(
                state=row["item"].group("state"),
                leaderboard=as_leaderboard(int(m.group("column")) for m in row["members"]),
            )
            for row in rows
        ]
