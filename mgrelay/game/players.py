"""Connected players + per-player minigame/leaderboard state."""

from __future__ import annotations

import logging
import random
import time
from typing import Callable

from mgrelay.game.minigames import MinigameCache
from mgrelay.game.models import (
    LEADERBOARD_COLUMNS,
    Leaderboard,
    LeaderboardChange,
    LeaderboardEvent,
    Player,
    PlayerStateEntry,
    as_leaderboard,
)

logger = logging.getLogger(__name__)


class PlayerRoster:
    """Live players by name, id or state handle."""

    def __init__(self):
        self._by_name: dict[str, Player] = {}

    def __len__(self) -> int:
        return len(self._by_name)

    def values(self) -> list[Player]:
        return list(self._by_name.values())

    def add(self, player: Player) -> None:
        self._by_name[player.name] = player

    def remove(self, name: str) -> Player | None:
        return self._by_name.pop(name, None)

    def clear(self) -> None:
        self._by_name.clear()

    def get(self, key: str) -> Player | None:
        p = self._by_name.get(key)
        if p:
            return p
        for p in self._by_name.values():
            if key in (p.state, p.id) or p.name.lower() == key.lower():
                return p
        return None


class PlayerStateCache:
    def __init__(
        self,
        *,
        max_age: float = 5 * 60.0,
        prune_chance: float = 0.02,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ):
        self.max_age = float(max_age)
        self.prune_chance = float(prune_chance)
        self.clock = clock
        self.rng = rng or random.Random()
        self._entries: dict[str, PlayerStateEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, handle: str) -> PlayerStateEntry | None:
        return self._entries.get(handle)

    def values(self) -> list[PlayerStateEntry]:
        return list(self._entries.values())

    def clear(self) -> None:
        self._entries.clear()

    def enter(self, handle: str, ruleset_id: str, *, keep_leaderboard: bool = False) -> PlayerStateEntry:
        prev = self._entries.get(handle)
        lb = prev.last_leaderboard if (prev and keep_leaderboard) else None
        entry = PlayerStateEntry(
            player_handle=handle,
            current_ruleset=ruleset_id,
            last_leaderboard=lb,
            last_seen=self.clock(),
        )
        self._entries[handle] = entry
        return entry

    def drop(self, handle: str) -> PlayerStateEntry | None:
        return self._entries.pop(handle, None)

    def apply_leaderboard(
        self,
        handle: str,
        leaderboard,
        minigames: MinigameCache,
        player: Player | None = None,
    ) -> LeaderboardChange | None:
        entry = self._entries.get(handle)
        if entry is None:
            return None
        # Rows we can't place in a minigame are not reported.
        mg = minigames.get(entry.current_ruleset)
        if mg is None:
            return None

        new: Leaderboard = as_leaderboard(leaderboard)
        old: Leaderboard = entry.last_leaderboard or (0, 0, 0)
        if new == old:
            return None

        entry.last_leaderboard = new
        entry.last_seen = self.clock()

        increments = [name for name, o, n in zip(LEADERBOARD_COLUMNS, old, new) if n > o]
        event = LeaderboardEvent(player=player, leaderboard=new, old_leaderboard=old, minigame=mg)
        return LeaderboardChange(event=event, increments=increments)

    def prune(self, now: float | None = None) -> int:
        now = self.clock() if now is None else now
        cutoff = now - self.max_age
        stale = [k for k, e in self._entries.items() if e.last_seen < cutoff]
        for k in stale:
            del self._entries[k]
        if stale:
            logger.debug("pruned %d stale player states", len(stale))
        return len(stale)

    def maybe_prune(self) -> int:
        if self.rng.random() < self.prune_chance:
            return self.prune()
        return 0

    def dump(self) -> dict[str, dict]:
        return {k: e.to_dict() for k, e in self._entries.items()}

    def load(self, data: dict[str, dict] | None) -> None:
        self._entries = {}
        for k, raw in (data or {}).items():
            try:
                self._entries[k] = PlayerStateEntry.from_dict({"player_handle": k, **raw})
            except (KeyError, TypeError, ValueError):
                logger.warning("skipping unreadable player state entry %r", k)
