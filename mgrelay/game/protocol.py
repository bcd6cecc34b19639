"""Consumer message schemas + event payload encoding.

Wire format:
  {"type": "subscribe", "data": {...}}
  {"type": "event", "data": {"kind": "joinminigame", "payload": {...}}}
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from mgrelay.game.models import (
    JoinEvent,
    LeaderboardEvent,
    LeaveEvent,
    MinigameRef,
    Player,
    RulesetSnapshot,
)


class ProtocolError(Exception):
    pass


def dumps(msg_type: str, data: dict[str, Any]) -> str:
    return json.dumps({"type": msg_type, "data": data}, separators=(",", ":"))


def loads(text: str) -> tuple[str, dict[str, Any]]:
    try:
        obj = json.loads(text)
    except ValueError as e:
        raise ProtocolError(f"invalid json: {e}")

    if not isinstance(obj, dict):
        raise ProtocolError("message must be object")
    t = obj.get("type")
    if not isinstance(t, str):
        raise ProtocolError("missing type")
    data = obj.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ProtocolError("data must be object")
    return t, data


def _num(v: Any, *, default: float = 0.0) -> float:
    try:
        return float(v)
    except (TypeError, ValueError):
        return default


@dataclass
class Hello:
    name: str

    @classmethod
    def parse(cls, data: dict[str, Any]) -> "Hello":
        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ProtocolError("hello.name required")
        return cls(name=name.strip()[:64])


@dataclass
class Ping:
    t: float

    @classmethod
    def parse(cls, data: dict[str, Any]) -> "Ping":
        return cls(t=_num(data.get("t"), default=0.0))


@dataclass
class PlayerJoin:
    name: str
    id: str
    state: str

    @classmethod
    def parse(cls, data: Any) -> "PlayerJoin":
        if not isinstance(data, dict):
            raise ProtocolError("player must be object")
        fields = {}
        for k in ("name", "id", "state"):
            v = data.get(k)
            if not isinstance(v, str) or not v:
                raise ProtocolError(f"player.{k} required")
            fields[k] = v
        return cls(**fields)

    def to_player(self) -> Player:
        return Player(name=self.name, id=self.id, state=self.state)


VALID_C2S = {"hello", "subscribe", "unsubscribe", "ping"}


def encode(obj: Any) -> Any:
    """Event payloads -> JSON-ready dicts, keyed the way consumers expect."""
    if obj is None:
        return None
    if isinstance(obj, Player):
        return {"name": obj.name, "id": obj.id, "state": obj.state}
    if isinstance(obj, RulesetSnapshot):
        return {
            "ruleset": obj.ruleset_id,
            "name": obj.display_name,
            "index": obj.ordinal_index,
            "roundEnded": obj.round_ended,
            "lastSeen": obj.last_seen,
        }
    if isinstance(obj, MinigameRef):
        return {"name": obj.name, "ruleset": obj.ruleset, "index": obj.index}
    if isinstance(obj, JoinEvent):
        return {"player": encode(obj.player), "minigame": encode(obj.minigame)}
    if isinstance(obj, LeaveEvent):
        out = {"player": encode(obj.player), "minigame": encode(obj.minigame)}
        if obj.new_minigame is not None:
            out["newMinigame"] = encode(obj.new_minigame)
        return out
    if isinstance(obj, LeaderboardEvent):
        return {
            "player": encode(obj.player),
            "leaderboard": list(obj.leaderboard),
            "oldLeaderboard": list(obj.old_leaderboard),
            "minigame": encode(obj.minigame),
        }
    if isinstance(obj, dict):
        return {k: encode(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [encode(v) for v in obj]
    return obj
