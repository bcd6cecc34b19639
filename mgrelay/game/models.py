"""Minigame, player and event records."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

Leaderboard = tuple[int, int, int]

# Column order of a leaderboard tuple, also the increment event names.
LEADERBOARD_COLUMNS = ("score", "kill", "death")


def as_leaderboard(values) -> Leaderboard:
    cols = [int(v) for v in list(values)[:3]]
    while len(cols) < 3:
        cols.append(0)
    return (cols[0], cols[1], cols[2])


@dataclass
class RulesetSnapshot:
    ruleset_id: str
    display_name: str
    ordinal_index: int
    round_ended: bool
    last_seen: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RulesetSnapshot":
        return cls(
            ruleset_id=str(data["ruleset_id"]),
            display_name=str(data.get("display_name", "")),
            ordinal_index=int(data.get("ordinal_index", 0)),
            round_ended=bool(data.get("round_ended", False)),
            last_seen=float(data.get("last_seen") or 0.0),
        )


@dataclass
class PlayerStateEntry:
    player_handle: str
    current_ruleset: str | None
    last_leaderboard: Leaderboard | None = None
    last_seen: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "player_handle": self.player_handle,
            "current_ruleset": self.current_ruleset,
            "last_leaderboard": list(self.last_leaderboard) if self.last_leaderboard is not None else None,
            "last_seen": self.last_seen,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlayerStateEntry":
        lb = data.get("last_leaderboard")
        return cls(
            player_handle=str(data["player_handle"]),
            current_ruleset=data.get("current_ruleset"),
            last_leaderboard=as_leaderboard(lb) if lb is not None else None,
            last_seen=float(data.get("last_seen") or 0.0),
        )


@dataclass(frozen=True)
class JoinAttempt:
    player_name: str
    player_id: str
    ruleset_display_name: str
    observed_at: float


@dataclass(frozen=True)
class Player:
    name: str
    id: str
    state: str


@dataclass(frozen=True)
class MinigameRef:
    name: str
    ruleset: str
    index: int


@dataclass
class JoinEvent:
    player: Player
    minigame: MinigameRef


@dataclass
class LeaveEvent:
    player: Player
    minigame: RulesetSnapshot
    new_minigame: MinigameRef | None = None


@dataclass
class LeaderboardEvent:
    player: Player | None
    leaderboard: Leaderboard
    old_leaderboard: Leaderboard
    minigame: RulesetSnapshot


@dataclass
class LeaderboardChange:
    event: LeaderboardEvent
    # Named increment kinds ("score", "kill", "death") that went up.
    increments: list[str] = field(default_factory=list)
