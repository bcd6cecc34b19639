"""HTTP + WebSocket entrypoint.

The relay watches the game server console (attached over /console),
tracks minigames and who is in them, and pushes events to consumers
(/ws or in-process).
"""

from __future__ import annotations

import logging
import random
import time
import uuid
from typing import Any, Callable

from aiohttp import web

from mgrelay.game import protocol
from mgrelay.game.config import RelayConfig
from mgrelay.game.events import Consumer, SubscriberRegistry
from mgrelay.game.matcher import JoinLineMatcher
from mgrelay.game.minigames import MinigameCache
from mgrelay.game.players import PlayerRoster, PlayerStateCache
from mgrelay.game.poller import Poller
from mgrelay.game.resolver import JoinResolver
from mgrelay.game.systems.rounds import poll_rounds
from mgrelay.game.systems.scoring import poll_leaderboards
from mgrelay.net.console import Console, LogEnvelope
from mgrelay.net.snapshots import SnapshotReader
from mgrelay.net.ws import ConsoleLink, ConsumerHub
from mgrelay.storage.memory import MemoryStore
from mgrelay.storage.sqlite import SqliteStore

logger = logging.getLogger(__name__)

MINIGAME_CACHE_KEY = "minigameCache"
PLAYER_STATE_CACHE_KEY = "playerStateCache"


class RelayService:
    def __init__(
        self,
        config: RelayConfig,
        *,
        store=None,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ):
        self.config = config
        self.server_id = str(uuid.uuid4())
        self.start_time = clock()
        self.clock = clock
        rng = rng or random.Random()

        if store is not None:
            self.store = store
        elif config.sqlite_enabled:
            self.store = SqliteStore(config.sqlite_path)
        else:
            self.store = MemoryStore()

        self.console = Console()
        self.reader = SnapshotReader(
            self.console, timeout=config.query_timeout, after_match_delay=config.after_match_delay
        )
        self.matcher = JoinLineMatcher(
            config.engine_channel,
            window_ms=config.dedup_window_ms,
            max_entries=config.dedup_max_entries,
            max_age=config.dedup_max_age,
            clock=clock,
        )
        self.minigames = MinigameCache(
            global_name=config.global_minigame_name,
            max_age=config.minigame_max_age,
            prune_chance=config.prune_chance,
            clock=clock,
            rng=rng,
        )
        self.players = PlayerStateCache(
            max_age=config.player_max_age, prune_chance=config.prune_chance, clock=clock, rng=rng
        )
        self.roster = PlayerRoster()

        self.hub = ConsumerHub(self)
        self.console_link = ConsoleLink(self.console)
        self.registry = SubscriberRegistry(self.hub.lookup, self.store)
        self.resolver = JoinResolver(
            self.roster,
            self.minigames,
            self.players,
            self.registry,
            retry_limit=config.join_retry_limit,
            retry_delay=config.join_retry_delay,
            keep_leaderboard_on_join=config.keep_leaderboard_on_join,
        )

        self.minigame_poller = Poller(
            "minigame check", config.minigame_check_interval, self.minigame_check, enabled=self.has_subscribers
        )
        self.leaderboard_poller = Poller(
            "leaderboard check",
            config.leaderboard_check_interval,
            self.leaderboard_check,
            enabled=self.has_subscribers,
        )

        self.console.add_listener(self.on_line)

    def now(self) -> float:
        return self.clock()

    def has_subscribers(self) -> bool:
        # Nobody listening, nothing worth querying the console for.
        return len(self.registry) > 0

    def add_consumer(self, consumer: Consumer) -> None:
        self.hub.register_local(consumer)

    async def start(self) -> None:
        if isinstance(self.store, SqliteStore):
            self.store.init()
        self.restore()
        self.registry.restore()
        self.minigame_poller.start()
        self.leaderboard_poller.start()
        logger.info(
            "relay started (%d minigames, %d player states, %d subscribers restored)",
            len(self.minigames),
            len(self.players),
            len(self.registry),
        )

    async def stop(self) -> None:
        await self.minigame_poller.stop()
        await self.leaderboard_poller.stop()
        await self.resolver.cancel_all()
        self.persist()

        await self.hub.close_all()
        await self.console_link.close()
        if isinstance(self.store, SqliteStore):
            self.store.close()
        logger.info("relay stopped")

    def persist(self) -> None:
        self.store.set(MINIGAME_CACHE_KEY, self.minigames.dump())
        self.store.set(PLAYER_STATE_CACHE_KEY, self.players.dump())

    def restore(self) -> None:
        raw_mg = self.store.get(MINIGAME_CACHE_KEY)
        if raw_mg:
            self.minigames.load(raw_mg)
        raw_ps = self.store.get(PLAYER_STATE_CACHE_KEY)
        if raw_ps:
            self.players.load(raw_ps)

    async def minigame_check(self) -> None:
        await poll_rounds(self)

    async def leaderboard_check(self) -> None:
        await poll_leaderboards(self)

    # Lifecycle signals.

    def on_line(self, line: str, env: LogEnvelope | None) -> None:
        attempt = self.matcher.match(env)
        if attempt is not None:
            logger.debug("join attempt: %s -> %r", attempt.player_name, attempt.ruleset_display_name)
            self.resolver.submit(attempt)

    async def on_server_start(self) -> None:
        # Attempts logged before the restart refer to minigames that are gone.
        await self.resolver.cancel_all()
        self.minigames.clear()
        self.players.clear()
        self.matcher.reset()
        logger.info("server (re)started, caches cleared")

    def on_player_join(self, player) -> None:
        self.roster.add(player)

    def on_player_leave(self, name: str) -> bool:
        player = self.resolver.disconnect(name)
        if player is None:
            return False
        self.roster.remove(player.name)
        return True

    def version_payload(self) -> dict[str, Any]:
        return {
            "serverId": self.server_id,
            "serverVersion": self.config.server_version,
            "protocolVersion": self.config.protocol_version,
        }


async def _read_json(request: web.Request) -> Any:
    if not request.can_read_body:
        raise web.HTTPBadRequest(text="json body required")
    try:
        return await request.json()
    except ValueError:
        raise web.HTTPBadRequest(text="invalid json")


def create_app(config: RelayConfig, svc: RelayService | None = None) -> web.Application:
    app = web.Application()
    svc = svc or RelayService(config)

    app["config"] = config
    app["svc"] = svc

    async def on_startup(_: web.Application):
        await svc.start()

    async def on_cleanup(_: web.Application):
        await svc.stop()

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)

    async def root(_: web.Request):
        return web.json_response(
            {
                "ok": True,
                "service": "mgrelay",
                **svc.version_payload(),
                "endpoints": {
                    "health": "/health",
                    "minigames": "/minigames",
                    "players": "/players",
                    "subscribers": "/subscribers",
                    "lines": "/lines",
                    "serverStart": "/server/start",
                    "ws": "/ws",
                    "console": "/console",
                },
            }
        )

    async def health(_: web.Request):
        return web.json_response(
            {
                "ok": True,
                "uptimeSec": svc.now() - svc.start_time,
                "consoleAttached": svc.console.attached,
                "minigames": len(svc.minigames),
                "playerStates": len(svc.players),
                "players": len(svc.roster),
                "subscribers": len(svc.registry),
                "pendingJoins": svc.resolver.pending,
                **svc.version_payload(),
            }
        )

    async def minigames(_: web.Request):
        return web.json_response({"minigames": [protocol.encode(mg) for mg in svc.minigames.values()]})

    async def players(_: web.Request):
        states = []
        for e in svc.players.values():
            states.append(
                {
                    "state": e.player_handle,
                    "ruleset": e.current_ruleset,
                    "leaderboard": list(e.last_leaderboard) if e.last_leaderboard is not None else None,
                    "lastSeen": e.last_seen,
                }
            )
        return web.json_response(
            {
                "players": [protocol.encode(p) for p in svc.roster.values()],
                "states": states,
            }
        )

    async def subscribers(_: web.Request):
        return web.json_response({"subscribers": svc.registry.names})

    async def lines(request: web.Request):
        text = await request.text()
        count = 0
        for line in text.splitlines():
            svc.console.feed(line)
            count += 1
        return web.json_response({"accepted": count})

    async def player_join(request: web.Request):
        body = await _read_json(request)
        try:
            p = protocol.PlayerJoin.parse(body).to_player()
        except protocol.ProtocolError as e:
            raise web.HTTPBadRequest(text=str(e))
        svc.on_player_join(p)
        return web.json_response({"ok": True, "player": protocol.encode(p)})

    async def player_leave(request: web.Request):
        known = svc.on_player_leave(request.match_info["name"])
        if not known:
            raise web.HTTPNotFound(text="unknown player")
        return web.json_response({"ok": True})

    async def server_start(_: web.Request):
        await svc.on_server_start()
        return web.json_response({"ok": True})

    app.router.add_get("/", root)
    app.router.add_get("/health", health)
    app.router.add_get("/minigames", minigames)
    app.router.add_get("/players", players)
    app.router.add_post("/players", player_join)
    app.router.add_delete("/players/{name}", player_leave)
    app.router.add_get("/subscribers", subscribers)
    app.router.add_post("/lines", lines)
    app.router.add_post("/server/start", server_start)
    app.router.add_get("/ws", svc.hub.handle)
    app.router.add_get("/console", svc.console_link.handle)

    return app


def main() -> None:
    config = RelayConfig.from_env()
    logging.basicConfig(level=getattr(logging, config.log_level, logging.INFO), format=config.log_format)
    app = create_app(config)
    web.run_app(app, host=config.host, port=config.port)


if __name__ == "__main__":
    main()
