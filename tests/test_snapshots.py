"""Tests for the bulk query watchers and the rows parsed from them."""

import asyncio

import pytest

from mgrelay.net.console import Console
from mgrelay.net.snapshots import (
    LEADERBOARD_CMD,
    RULESET_NAME_CMD,
    RULESET_NAME_RE,
    RULESET_SESSION_CMD,
    RulesetRow,
    SessionRow,
    SnapshotReader,
    build_snapshots,
    ordinal_indices,
)

PREFIX = "/Game/Maps/Plate/Plate.Plate"


def name_line(i: int, rid: int, name: str) -> str:
    return f"{i}) BP_Ruleset_C {PREFIX}:PersistentLevel.BP_Ruleset_C_{rid}.RulesetName = {name}"


def session_line(i: int, rid: int, in_session: bool) -> str:
    return f"{i}) BP_Ruleset_C {PREFIX}:PersistentLevel.BP_Ruleset_C_{rid}.bInSession = {in_session}"


def scripted_console(responses: dict[str, list[str]]) -> tuple[Console, list[str]]:
    """Console whose link answers each command with canned output lines."""
    console = Console()
    sent: list[str] = []

    async def link(command: str) -> None:
        sent.append(command)
        loop = asyncio.get_running_loop()
        for text in responses.get(command, []):
            loop.call_soon(console.feed, text)

    console.attach(link)
    return console, sent


# ------------------------------------------------------------------
# Ordinal indexing
# ------------------------------------------------------------------

def test_global_takes_minus_one_and_later_entries_shift():
    rows = [
        RulesetRow(index=0, ruleset="BP_Ruleset_C_1", name="B"),
        RulesetRow(index=1, ruleset="BP_Ruleset_C_5", name="A"),
        RulesetRow(index=2, ruleset="BP_Ruleset_C_3", name="GLOBAL"),
    ]
    out = {row.name: idx for row, idx in ordinal_indices(rows)}
    assert out == {"A": 0, "GLOBAL": -1, "B": 1}
    assert [row.name for row, _ in ordinal_indices(rows)] == ["A", "GLOBAL", "B"]


def test_without_global_indices_are_sort_positions():
    rows = [
        RulesetRow(index=0, ruleset="BP_Ruleset_C_1", name="B"),
        RulesetRow(index=1, ruleset="BP_Ruleset_C_2", name="A"),
    ]
    assert [(r.name, i) for r, i in ordinal_indices(rows)] == [("A", 0), ("B", 1)]


def test_round_ended_comes_from_session_rows():
    rows = [
        RulesetRow(index=0, ruleset="BP_Ruleset_C_3", name="GLOBAL"),
        RulesetRow(index=1, ruleset="BP_Ruleset_C_5", name="A"),
        RulesetRow(index=2, ruleset="BP_Ruleset_C_4", name="B"),
    ]
    sessions = [
        SessionRow(ruleset="BP_Ruleset_C_5", in_session=False),
        SessionRow(ruleset="BP_Ruleset_C_3", in_session=True),
    ]
    snaps = {s.display_name: s for s in build_snapshots(rows, sessions, now=42.0)}
    assert snaps["A"].round_ended is True
    assert snaps["GLOBAL"].round_ended is False
    assert all(s.last_seen == 42.0 for s in snaps.values())


def test_ruleset_without_session_row_is_left_out():
    rows = [
        RulesetRow(index=0, ruleset="BP_Ruleset_C_3", name="GLOBAL"),
        RulesetRow(index=1, ruleset="BP_Ruleset_C_5", name="A"),
        RulesetRow(index=2, ruleset="BP_Ruleset_C_4", name="B"),
    ]
    sessions = [SessionRow(ruleset="BP_Ruleset_C_5", in_session=True)]
    snaps = build_snapshots(rows, sessions, now=42.0)
    # A keeps the index it has in the full listing.
    assert [(s.display_name, s.ordinal_index) for s in snaps] == [("A", 0)]


# ------------------------------------------------------------------
# Console-backed reads
# ------------------------------------------------------------------

@pytest.mark.asyncio
async def test_read_minigames_from_console_output():
    console, sent = scripted_console(
        {
            RULESET_NAME_CMD: [
                name_line(0, 5, "Arena"),
                name_line(1, 3, "GLOBAL"),
                "[2024.05.01-18.22.03:117][ 88]LogBrickadia: unrelated chatter",
                name_line(2, 1, "Parkour"),
            ],
            RULESET_SESSION_CMD: [
                session_line(0, 5, False),
                session_line(1, 3, True),
                session_line(2, 1, True),
            ],
        }
    )
    reader = SnapshotReader(console, timeout=1.0, after_match_delay=0.01)

    snaps = await reader.read_minigames(now=10.0)

    assert sorted(sent) == sorted([RULESET_NAME_CMD, RULESET_SESSION_CMD])
    assert [(s.display_name, s.ordinal_index, s.round_ended) for s in snaps] == [
        ("Arena", 0, True),
        ("GLOBAL", -1, False),
        ("Parkour", 1, False),
    ]


@pytest.mark.asyncio
async def test_rows_before_index_zero_are_skipped():
    console, _ = scripted_console(
        {
            RULESET_NAME_CMD: [
                name_line(3, 9, "Leftover"),
                name_line(0, 5, "Arena"),
            ],
        }
    )
    reader = SnapshotReader(console, timeout=0.2, after_match_delay=0.01)
    rulesets, sessions = await reader.read_rulesets()
    assert [r.name for r in rulesets] == ["Arena"]
    assert sessions == []


@pytest.mark.asyncio
async def test_read_leaderboards_groups_member_rows():
    console, _ = scripted_console(
        {
            LEADERBOARD_CMD: [
                f"0) BP_PlayerState_C {PREFIX}:PersistentLevel.BP_PlayerState_C_11.LeaderboardData =",
                "\t0: 10",
                "\t1: 3",
                "\t2: -1",
                f"1) BP_PlayerState_C {PREFIX}:PersistentLevel.BP_PlayerState_C_12.LeaderboardData =",
                "\t0: 4",
            ],
        }
    )
    reader = SnapshotReader(console, timeout=1.0, after_match_delay=0.01)
    rows = await reader.read_leaderboards()
    assert [(r.state, r.leaderboard) for r in rows] == [
        ("BP_PlayerState_C_11", (10, 3, -1)),
        ("BP_PlayerState_C_12", (4, 0, 0)),
    ]


@pytest.mark.asyncio
async def test_query_without_link_times_out_empty():
    reader = SnapshotReader(Console(), timeout=0.05, after_match_delay=0.01)
    assert await reader.read_leaderboards() == []
    assert await reader.read_minigames(now=1.0) == []


@pytest.mark.asyncio
async def test_timeout_returns_partial_rows():
    console = Console()

    async def link(command: str) -> None:
        # Header arrives, then the server goes quiet for longer than the timeout.
        asyncio.get_running_loop().call_soon(
            console.feed, f"0) BP_Ruleset_C {PREFIX}:PersistentLevel.BP_Ruleset_C_7.RulesetName = Solo"
        )

    console.attach(link)
    matches = await console.run_bulk_query(
        RULESET_NAME_CMD,
        RULESET_NAME_RE,
        first="index",
        timeout=0.05,
        after_match_delay=1.0,
    )
    assert [m.group("name") for m in matches] == ["Solo"]
