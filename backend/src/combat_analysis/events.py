from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from combat_analysis.errors import MalformedEventError


class EventType(str, Enum):
    DAMAGE = "damage"
    HEAL = "heal"
    ABSORBED = "absorbed"
    CAST = "cast"
    BEGIN_CAST = "begincast"
    APPLY_BUFF = "applybuff"
    APPLY_BUFF_STACK = "applybuffstack"
    REMOVE_BUFF = "removebuff"
    REMOVE_BUFF_STACK = "removebuffstack"
    REFRESH_BUFF = "refreshbuff"
    APPLY_DEBUFF = "applydebuff"
    APPLY_DEBUFF_STACK = "applydebuffstack"
    REMOVE_DEBUFF = "removedebuff"
    REMOVE_DEBUFF_STACK = "removedebuffstack"
    REFRESH_DEBUFF = "refreshdebuff"
    ENERGIZE = "energize"
    DEATH = "death"
    RESURRECT = "resurrect"
    SUMMON = "summon"
    INTERRUPT = "interrupt"
    COMBATANT_INFO = "combatantinfo"

    # Produced by analysis modules, never present in a raw log
    GLOBAL_COOLDOWN = "globalcooldown"
    BEGIN_CHANNEL = "beginchannel"
    END_CHANNEL = "endchannel"
    FIGHT_END = "fightend"

    @property
    def is_synthetic(self):
        return self in SYNTHETIC_TYPES


SYNTHETIC_TYPES = frozenset(
    {
        EventType.GLOBAL_COOLDOWN,
        EventType.BEGIN_CHANNEL,
        EventType.END_CHANNEL,
        EventType.FIGHT_END,
    }
)


class Ability(BaseModel):
    model_config = ConfigDict(frozen=True)

    guid: int
    name: Optional[str] = None
    # damage / heal school bitmask, 1 is physical
    type: int = 0


class Event(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: int
    type: EventType
    source_id: int
    target_id: Optional[int] = None
    ability: Optional[Ability] = None
    amount: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)
    index: Optional[int] = None

    @classmethod
    def fabricate(cls, event_type, origin, timestamp=None, **metadata):
        """Build a synthetic event for the actors and ability of ``origin``.

        ``origin`` is also recorded as the trigger unless one is given.
        """
        metadata.setdefault("trigger", origin)
        return cls(
            timestamp=origin.timestamp if timestamp is None else timestamp,
            type=event_type,
            source_id=origin.source_id,
            target_id=origin.target_id,
            ability=origin.ability,
            metadata=metadata,
            index=origin.index,
        )

    def get(self, key, default=None):
        return self.metadata.get(key, default)

    @property
    def ability_id(self):
        return self.ability.guid if self.ability else None

    @property
    def prepull(self):
        return bool(self.metadata.get("prepull", False))

    @property
    def duration(self):
        return self.metadata.get("duration", 0)

    @property
    def trigger(self) -> Optional["Event"]:
        return self.metadata.get("trigger")

    @property
    def absorbed(self):
        return self.metadata.get("absorbed", 0) or 0


RAW_FIELDS = {
    "timestamp",
    "type",
    "sourceID",
    "targetID",
    "ability",
    "abilityGameID",
    "ability_type",
    "amount",
}


def _normalize_ability(raw, index):
    ability = raw.get("ability")
    if isinstance(ability, dict):
        return ability

    if "abilityGameID" in raw:
        # flattened form, ability holds the name
        return {
            "guid": raw["abilityGameID"],
            "name": ability if isinstance(ability, str) else None,
            "type": raw.get("ability_type", 0),
        }

    if ability is not None and not isinstance(ability, str):
        raise MalformedEventError(
            "Unrecognised ability reference",
            index=index,
            timestamp=raw.get("timestamp"),
            field="ability",
        )
    return None


def normalize(raw, index=None) -> Event:
    """Turn one Warcraft Logs event record into an ``Event``.

    ``timestamp``, ``type`` and ``sourceID`` are required. Every key that
    isn't part of the canonical event is kept in ``metadata``.
    """
    if not isinstance(raw, dict):
        raise MalformedEventError("Event record is not a mapping", index=index)

    for field in ("timestamp", "type", "sourceID"):
        if raw.get(field) is None:
            raise MalformedEventError(
                "Missing required field",
                index=index,
                timestamp=raw.get("timestamp"),
                field=field,
            )

    try:
        event_type = EventType(raw["type"])
    except ValueError:
        raise MalformedEventError(
            f"Unknown event type {raw['type']!r}",
            index=index,
            timestamp=raw["timestamp"],
            field="type",
        ) from None

    if event_type.is_synthetic:
        raise MalformedEventError(
            f"Raw log records can't carry synthetic event type {event_type.value!r}",
            index=index,
            timestamp=raw["timestamp"],
            field="type",
        )

    metadata = {key: value for key, value in raw.items() if key not in RAW_FIELDS}

    try:
        return Event(
            timestamp=raw["timestamp"],
            type=event_type,
            source_id=raw["sourceID"],
            target_id=raw.get("targetID"),
            ability=_normalize_ability(raw, index),
            amount=raw.get("amount") or 0,
            metadata=metadata,
            index=index,
        )
    except ValidationError as e:
        error = e.errors()[0]
        raise MalformedEventError(
            error["msg"],
            index=index,
            timestamp=raw.get("timestamp"),
            field=".".join(str(loc) for loc in error["loc"]),
        ) from e
