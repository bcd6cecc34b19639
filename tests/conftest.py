"""
Shared fixtures for the relay tests.

Everything runs against an in-memory store, a hand-driven clock and
prune chance 0, so nothing is evicted unless a test asks for it.
"""

from __future__ import annotations

from typing import Any

import pytest

from mgrelay.game.events import CallbackConsumer, EventKind, SubscriberRegistry
from mgrelay.game.minigames import MinigameCache
from mgrelay.game.models import Player, RulesetSnapshot
from mgrelay.game.players import PlayerRoster, PlayerStateCache
from mgrelay.game.resolver import JoinResolver
from mgrelay.storage.memory import MemoryStore

T0 = 1_700_000_000.0


class FakeClock:
    def __init__(self, t: float = T0):
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += dt


class Recorder:
    """Collects (kind, payload) pairs in delivery order."""

    def __init__(self):
        self.events: list[tuple[EventKind, Any]] = []

    def __call__(self, kind: EventKind, payload: Any) -> None:
        self.events.append((kind, payload))

    @property
    def kinds(self) -> list[str]:
        return [k.value for k, _ in self.events]

    def of(self, kind: EventKind) -> list[Any]:
        return [p for k, p in self.events if k == kind]


def snap(ruleset_id: str, name: str, index: int = 0, ended: bool = False, seen: float = T0) -> RulesetSnapshot:
    return RulesetSnapshot(
        ruleset_id=ruleset_id,
        display_name=name,
        ordinal_index=index,
        round_ended=ended,
        last_seen=seen,
    )


def make_player(name: str = "Alice", n: int = 1) -> Player:
    return Player(
        name=name,
        id=f"0000000{n}-aaaa-bbbb-cccc-dddddddddddd",
        state=f"BP_PlayerState_C_21474830{n:02d}",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def consumers(recorder: Recorder) -> dict[str, CallbackConsumer]:
    return {"scoreboard": CallbackConsumer("scoreboard", recorder)}


@pytest.fixture
def registry(consumers, store) -> SubscriberRegistry:
    reg = SubscriberRegistry(consumers.get, store)
    reg.subscribe("scoreboard")
    return reg


@pytest.fixture
def minigames(clock) -> MinigameCache:
    return MinigameCache(clock=clock, prune_chance=0.0)


@pytest.fixture
def players(clock) -> PlayerStateCache:
    return PlayerStateCache(clock=clock, prune_chance=0.0)


@pytest.fixture
def roster() -> PlayerRoster:
    return PlayerRoster()


@pytest.fixture
def resolver(roster, minigames, players, registry) -> JoinResolver:
    return JoinResolver(roster, minigames, players, registry, retry_limit=5, retry_delay=0.01)
