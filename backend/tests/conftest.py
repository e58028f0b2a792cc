# backend/tests/conftest.py
import pytest

from combat_analysis.base import BaseAnalyzer
from combat_analysis.events import Event, EventType
from encounter import Combatant, EncounterContext

PLAYER = 1
BOSS = 100


def raw_event(timestamp, type, source=PLAYER, target=BOSS, ability=None, school=0, **extra):
    event = {
        "timestamp": timestamp,
        "type": type,
        "sourceID": source,
        "targetID": target,
    }
    if ability is not None:
        event["ability"] = {"guid": ability, "name": f"Spell {ability}", "type": school}
    event.update(extra)
    return event


class Recorder(BaseAnalyzer):
    """Logs every event it sees as (key, type, timestamp)"""

    def __init__(self, context, log, event_types=(EventType.CAST,), active=True, **dependencies):
        self._active = active
        self.log = log
        self.dependencies = dependencies
        super().__init__(context)
        for event_type in event_types:
            self.add_event_listener(event_type, self.on_event)

    def is_active(self, context):
        return self._active

    def on_event(self, event):
        self.log.append((self.key, event.type, event.timestamp))


class CooldownSynthesizer(Recorder):
    """Emits a global cooldown for every cast, ``offset`` ms after it"""

    def __init__(self, context, log, offset=0, lookahead=0, **kwargs):
        self.offset = offset
        self.lookahead = lookahead
        super().__init__(context, log, **kwargs)

    def on_event(self, event):
        super().on_event(event)
        self.emit(
            Event.fabricate(
                EventType.GLOBAL_COOLDOWN,
                event,
                timestamp=event.timestamp + self.offset,
                duration=1000,
            )
        )


@pytest.fixture
def make_context():
    def _make(start_time=0, end_time=10000, **combatant):
        combatant.setdefault("name", "Tester")
        return EncounterContext(
            selected_id=PLAYER,
            start_time=start_time,
            end_time=end_time,
            encounter="Training Dummy",
            combatants=(Combatant(id=PLAYER, **combatant),),
        )

    return _make


@pytest.fixture
def context(make_context):
    return make_context()


@pytest.fixture
def log():
    return []
