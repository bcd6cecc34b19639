"""Ruleset snapshot cache + round transition edges."""

from __future__ import annotations

import logging
import random
import time
from typing import Callable, Iterable

from mgrelay.game.models import RulesetSnapshot

logger = logging.getLogger(__name__)


class MinigameCache:
    def __init__(
        self,
        *,
        global_name: str = "GLOBAL",
        max_age: float = 60 * 60.0,
        prune_chance: float = 0.02,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ):
        self.global_name = global_name
        self.max_age = float(max_age)
        self.prune_chance = float(prune_chance)
        self.clock = clock
        self.rng = rng or random.Random()
        self._entries: dict[str, RulesetSnapshot] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, ruleset_id: str) -> bool:
        return ruleset_id in self._entries

    def get(self, ruleset_id: str | None) -> RulesetSnapshot | None:
        if ruleset_id is None:
            return None
        return self._entries.get(ruleset_id)

    def values(self) -> list[RulesetSnapshot]:
        return list(self._entries.values())

    def find_by_name(self, display_name: str) -> RulesetSnapshot | None:
        # Names can repeat across rulesets; the first one seen wins.
        for mg in self._entries.values():
            if mg.display_name == display_name:
                return mg
        return None

    def clear(self) -> None:
        self._entries.clear()

    def reconcile(self, latest: Iterable[RulesetSnapshot]) -> tuple[list[RulesetSnapshot], list[RulesetSnapshot]]:
        """Fold one poll into the cache.

        Returns `(round_started, round_ended)`. A ruleset seen for the first
        time is only recorded; it has no previous state to transition from.
        """
        started: list[RulesetSnapshot] = []
        ended: list[RulesetSnapshot] = []

        for mg in latest:
            cached = self._entries.get(mg.ruleset_id)
            if cached is not None:
                if cached.round_ended and not mg.round_ended:
                    started.append(mg)
                elif not cached.round_ended and mg.round_ended:
                    ended.append(mg)
            self._entries[mg.ruleset_id] = mg

        return started, ended

    def prune(self, now: float | None = None) -> int:
        now = self.clock() if now is None else now
        cutoff = now - self.max_age
        stale = [
            k
            for k, mg in self._entries.items()
            if mg.display_name != self.global_name and mg.last_seen < cutoff
        ]
        for k in stale:
            del self._entries[k]
        if stale:
            logger.debug("pruned %d stale minigames", len(stale))
        return len(stale)

    def maybe_prune(self) -> int:
        if self.rng.random() < self.prune_chance:
            return self.prune()
        return 0

    def dump(self) -> dict[str, dict]:
        return {k: mg.to_dict() for k, mg in self._entries.items()}

    def load(self, data: dict[str, dict] | None) -> None:
        self._entries = {}
        for k, raw in (data or {}).items():
            try:
                self._entries[k] = RulesetSnapshot.from_dict({"ruleset_id": k, **raw})
            except (KeyError, TypeError, ValueError):
                logger.warning("skipping unreadable minigame cache entry %r", k)
