from typing import List

from combat_analysis.events import Event, EventType


class Window:
    def __init__(self, start, end=None):
        self.start = start
        self.end = end

    def contains(self, timestamp):
        if self.end is None:
            return self.start <= timestamp
        return self.start <= timestamp <= self.end

    @property
    def duration(self):
        if self.end is None:
            return 0
        return self.end - self.start

    def __repr__(self):
        return f"Window({self.start}, {self.end})"


def range_overlap(a, b):
    """Length of the overlap between two (start, end) ranges"""
    return max(0, min(a[1], b[1]) - max(a[0], b[0]))


def combine_windows(windows):
    """Merge overlapping windows, the result is sorted by start"""
    combined = []
    for window in sorted(windows, key=lambda w: (w.start, w.end)):
        if combined and window.start <= combined[-1].end:
            combined[-1].end = max(combined[-1].end, window.end)
        else:
            combined.append(Window(window.start, window.end))
    return combined


def calculate_uptime(windows, start, end, ignore_windows=()):
    """Fraction of [start, end] covered by ``windows``.

    Time inside ``ignore_windows`` counts neither as uptime nor towards the
    total. Open windows run until ``end``.
    """
    closed = [
        Window(window.start, end if window.end is None else window.end)
        for window in windows
    ]
    ignored = combine_windows(
        Window(window.start, end if window.end is None else window.end)
        for window in ignore_windows
    )

    total = (end - start) - sum(
        range_overlap((window.start, window.end), (start, end)) for window in ignored
    )
    if total <= 0:
        return 0

    uptime = 0
    for window in combine_windows(closed):
        uptime += range_overlap((window.start, window.end), (start, end))
        for ignore in ignored:
            uptime -= range_overlap(
                (max(window.start, start), min(window.end, end)),
                (ignore.start, ignore.end),
            )
    return min(1, uptime / total)


class _SelectedPlayer:
    def __repr__(self):
        return "SELECTED_PLAYER"


# Listener filter matching whoever the run is analyzing
SELECTED_PLAYER = _SelectedPlayer()


class EventListener:
    def __init__(self, event_type, handler, source=None, target=None, ability=None):
        self.event_type = EventType(event_type)
        self.handler = handler
        self.source = source
        self.target = target
        if isinstance(ability, int):
            ability = frozenset((ability,))
        elif ability is not None:
            ability = frozenset(ability)
        self.ability = ability

    @staticmethod
    def _match_actor(actor_filter, actor_id, selected_id):
        if actor_filter is None:
            return True
        if actor_filter is SELECTED_PLAYER:
            return actor_id == selected_id
        return actor_id == actor_filter

    def matches(self, event: Event, selected_id):
        if not self._match_actor(self.source, event.source_id, selected_id):
            return False
        if not self._match_actor(self.target, event.target_id, selected_id):
            return False
        if self.ability is not None and event.ability_id not in self.ability:
            return False
        return True


class BaseAnalyzer:
    """A single analysis module.

    Modules are built once per run by the resolver, which hands the
    constructor the encounter context, the instances of every declared
    dependency and the module's configuration as keyword arguments.
    Subscriptions are explicit: register them in ``__init__`` with
    ``add_event_listener``.

    After the event stream ends ``suggestions``, ``statistic`` and ``tab``
    are each called once, and only when the module is active.
    """

    # how far ahead of the triggering event (ms) emitted events may be stamped
    lookahead = 0

    def __init__(self, context):
        self.key = None
        self.context = context
        self.active = bool(self.is_active(context))
        self.degraded = False
        self.error = None
        self._listeners = {}
        self._emitted = []

    def is_active(self, context):
        return True

    @property
    def selected_combatant(self):
        return self.context.selected_combatant

    @property
    def fight_duration(self):
        return self.context.duration

    def add_event_listener(
        self, event_type, handler, source=None, target=None, ability=None
    ):
        listener = EventListener(event_type, handler, source, target, ability)
        self._listeners.setdefault(listener.event_type, []).append(listener)
        return listener

    def listeners_for(self, event: Event) -> List[EventListener]:
        return [
            listener
            for listener in self._listeners.get(event.type, ())
            if listener.matches(event, self.context.selected_id)
        ]

    @property
    def subscriptions(self):
        return set(self._listeners)

    def emit(self, event: Event):
        self._emitted.append(event)

    def drain_emitted(self):
        emitted, self._emitted = self._emitted, []
        return emitted

    def degrade(self, error):
        self.degraded = True
        self.error = error
        self._emitted = []

    def suggestions(self):
        return []

    def statistic(self):
        return None

    def tab(self):
        return None

    def produces(self, name) -> bool:
        """Whether this module overrides the named output producer"""
        return getattr(type(self), name) is not getattr(BaseAnalyzer, name)

    def __repr__(self):
        return f"<{type(self).__name__} key={self.key!r} active={self.active}>"

