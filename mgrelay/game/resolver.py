"""Join attempts -> join/leave events.

A checkpoint line usually shows up before the roster knows the player or
before the minigame poll has seen the ruleset, so attempts are retried a
bounded number of times and then dropped quietly.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from mgrelay.game.events import EventKind, SubscriberRegistry
from mgrelay.game.minigames import MinigameCache
from mgrelay.game.models import JoinAttempt, JoinEvent, LeaveEvent, MinigameRef, Player
from mgrelay.game.players import PlayerRoster, PlayerStateCache

logger = logging.getLogger(__name__)


@dataclass
class PendingJoin:
    attempt: JoinAttempt
    tries: int = 0


class JoinResolver:
    def __init__(
        self,
        roster: PlayerRoster,
        minigames: MinigameCache,
        players: PlayerStateCache,
        registry: SubscriberRegistry,
        *,
        retry_limit: int = 20,
        retry_delay: float = 0.1,
        keep_leaderboard_on_join: bool = False,
    ):
        self.roster = roster
        self.minigames = minigames
        self.players = players
        self.registry = registry
        self.retry_limit = int(retry_limit)
        self.retry_delay = float(retry_delay)
        self.keep_leaderboard_on_join = keep_leaderboard_on_join
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, attempt: JoinAttempt) -> asyncio.Task | None:
        """Resolve now if possible, otherwise keep retrying in the background."""
        if self.try_resolve(attempt):
            return None
        if self.retry_limit <= 0:
            logger.debug("join of %s into %r abandoned", attempt.player_name, attempt.ruleset_display_name)
            return None
        task = asyncio.create_task(self._retry(PendingJoin(attempt, tries=1)))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _retry(self, pending: PendingJoin) -> bool:
        a = pending.attempt
        while pending.tries <= self.retry_limit:
            await asyncio.sleep(self.retry_delay)
            if self.try_resolve(a):
                return True
            pending.tries += 1
        logger.debug(
            "join of %s into %r abandoned after %d retries", a.player_name, a.ruleset_display_name, self.retry_limit
        )
        return False

    def try_resolve(self, attempt: JoinAttempt) -> bool:
        player = self.roster.get(attempt.player_name)
        mg = self.minigames.find_by_name(attempt.ruleset_display_name)
        if player is None or mg is None:
            return False

        event = JoinEvent(
            player=player,
            minigame=MinigameRef(name=attempt.ruleset_display_name, ruleset=mg.ruleset_id, index=mg.ordinal_index),
        )
        # Leave the previous minigame first; it also records the new one.
        self.leave(player, event)
        self.registry.dispatch(EventKind.JOIN_MINIGAME, event)
        logger.debug("%s joined %s (%s)", player.name, mg.display_name, mg.ruleset_id)
        return True

    def leave(self, player: Player, join_context: JoinEvent | None) -> None:
        entry = self.players.get(player.state)
        mg = self.minigames.get(entry.current_ruleset) if entry else None

        if join_context is not None:
            self.players.enter(
                player.state,
                join_context.minigame.ruleset,
                keep_leaderboard=self.keep_leaderboard_on_join,
            )
        else:
            self.players.drop(player.state)

        if entry is not None and mg is not None:
            self.registry.dispatch(
                EventKind.LEAVE_MINIGAME,
                LeaveEvent(
                    player=player,
                    minigame=mg,
                    new_minigame=join_context.minigame if join_context else None,
                ),
            )

    def disconnect(self, name: str) -> Player | None:
        player = self.roster.get(name)
        if player is not None:
            self.leave(player, None)
        return player

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
