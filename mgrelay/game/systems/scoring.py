"""Leaderboard poll: score/kill/death deltas per tracked player."""

from __future__ import annotations

from mgrelay.game.events import EventKind


async def poll_leaderboards(svc) -> None:
    rows = await svc.reader.read_leaderboards()

    for row in rows:
        change = svc.players.apply_leaderboard(
            row.state,
            row.leaderboard,
            svc.minigames,
            player=svc.roster.get(row.state),
        )
        if change is None:
            continue

        svc.registry.dispatch(EventKind.LEADERBOARD_CHANGE, change.event)
        for name in change.increments:
            svc.registry.dispatch(EventKind(name), change.event)

    svc.players.maybe_prune()
