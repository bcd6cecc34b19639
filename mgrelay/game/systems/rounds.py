"""Minigame poll: round start/end edges."""

from __future__ import annotations

import logging

from mgrelay.game.events import EventKind

logger = logging.getLogger(__name__)


async def poll_rounds(svc) -> None:
    latest = await svc.reader.read_minigames(svc.now(), svc.config.global_minigame_name)
    started, ended = svc.minigames.reconcile(latest)

    for mg in started:
        logger.info("round started in %s (%s)", mg.display_name, mg.ruleset_id)
        svc.registry.dispatch(EventKind.ROUND_CHANGE, mg)
    for mg in ended:
        logger.info("round ended in %s (%s)", mg.display_name, mg.ruleset_id)
        svc.registry.dispatch(EventKind.ROUND_END, mg)

    svc.minigames.maybe_prune()
