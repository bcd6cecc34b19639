"""Poll intervals, retry bounds, pruning ages, transport settings."""

from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass
class RelayConfig:
    # Versions
    server_version: str = "0.1.0"
    protocol_version: int = 1

    # Network
    host: str = "0.0.0.0"
    port: int = 8766

    # Polling (seconds)
    minigame_check_interval: float = 1.0
    leaderboard_check_interval: float = 1.0
    query_timeout: float = 5.0
    after_match_delay: float = 0.1

    # Join resolution
    join_retry_limit: int = 20
    join_retry_delay: float = 0.1
    # False clears the tracked leaderboard when a player enters a new minigame.
    keep_leaderboard_on_join: bool = False

    # Log matching
    engine_channel: str = "LogBrickadia"
    dedup_window_ms: int = 100
    dedup_max_entries: int = 2000
    dedup_max_age: float = 60 * 60.0

    # Cache pruning
    global_minigame_name: str = "GLOBAL"
    minigame_max_age: float = 60 * 60.0
    player_max_age: float = 5 * 60.0
    prune_chance: float = 0.02

    # Persistence
    sqlite_enabled: bool = False
    sqlite_path: str = "mgrelay_state.sqlite3"

    # Logging
    log_level: str = "INFO"
    log_format: str = "%(asctime)s %(levelname)s %(name)s %(message)s"

    @staticmethod
    def _parse_bool(v: str | None, default: bool) -> bool:
        if v is None:
            return default
        return v.strip().lower() in ("1", "true", "yes", "on")

    @staticmethod
    def _parse_num(v: str | None, default, cast=float):
        if v is None or not v.strip():
            return default
        try:
            return cast(v)
        except ValueError:
            return default

    @classmethod
    def from_env(cls) -> "RelayConfig":
        cfg = cls()
        env = os.environ
        cfg.host = env.get("MGR_HOST", cfg.host)
        cfg.port = cls._parse_num(env.get("MGR_PORT"), cfg.port, int)

        # Intervals are given in milliseconds, like the console options they mirror.
        for attr, key in (
            ("minigame_check_interval", "MGR_MINIGAME_CHECK_INTERVAL_MS"),
            ("leaderboard_check_interval", "MGR_LEADERBOARD_CHECK_INTERVAL_MS"),
            ("query_timeout", "MGR_QUERY_TIMEOUT_MS"),
            ("join_retry_delay", "MGR_JOIN_RETRY_DELAY_MS"),
        ):
            ms = cls._parse_num(env.get(key), None)
            if ms is not None and ms > 0:
                setattr(cfg, attr, ms / 1000.0)

        cfg.join_retry_limit = max(0, cls._parse_num(env.get("MGR_JOIN_RETRY_LIMIT"), cfg.join_retry_limit, int))
        cfg.keep_leaderboard_on_join = cls._parse_bool(
            env.get("MGR_KEEP_LEADERBOARD_ON_JOIN"), cfg.keep_leaderboard_on_join
        )
        cfg.engine_channel = env.get("MGR_ENGINE_CHANNEL", cfg.engine_channel)
        cfg.dedup_window_ms = cls._parse_num(env.get("MGR_DEDUP_WINDOW_MS"), cfg.dedup_window_ms, int)

        chance = cls._parse_num(env.get("MGR_PRUNE_CHANCE"), cfg.prune_chance)
        cfg.prune_chance = min(1.0, max(0.0, chance))

        cfg.sqlite_enabled = cls._parse_bool(env.get("MGR_SQLITE"), cfg.sqlite_enabled)
        cfg.sqlite_path = env.get("MGR_SQLITE_PATH", cfg.sqlite_path)
        cfg.log_level = env.get("MGR_LOG_LEVEL", cfg.log_level).upper()
        return cfg
