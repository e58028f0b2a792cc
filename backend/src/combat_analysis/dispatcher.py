import heapq
import itertools
import logging
from collections import deque

from combat_analysis.errors import MalformedEventError, ModuleHandlerError
from combat_analysis.events import Event, EventType

logger = logging.getLogger(__name__)


class EventDispatcher:
    """Replays one encounter's events through a module graph.

    A single chronological pass over the real events merged with whatever
    synthetic events the modules emit. Every event reaches the active
    modules in construction order, so a synthesizer always handles an event
    before the modules depending on it. Synthetic events stamped at or
    before the cursor are delivered right after the event being dispatched
    has reached every module; later ones wait until the stream reaches
    their timestamp.
    """

    def __init__(self, graph, context):
        self._graph = graph
        self._context = context
        self._pending = deque()
        self._future = []
        self._sequence = itertools.count()
        self._cursor = None
        self._dispatched = False
        self.num_events = 0
        self.num_synthetic = 0

    def _degrade(self, module, error):
        logger.warning("Degraded module %s: %s", module.key, error, exc_info=error.cause)
        module.degrade(error)

    @staticmethod
    def _invalid_emission(module, emitted, trigger: Event):
        if not isinstance(emitted, Event) or not emitted.type.is_synthetic:
            return ValueError(f"Modules may only emit synthetic events, got {emitted!r}")
        if emitted.timestamp > trigger.timestamp + module.lookahead:
            return ValueError(
                f"{emitted.type.value} at {emitted.timestamp} is past the "
                f"{module.lookahead}ms lookahead of its trigger"
            )
        return None

    def _accept_emitted(self, module, trigger: Event):
        emitted_events = module.drain_emitted()
        # one bad event drops everything the module emitted for this trigger
        for emitted in emitted_events:
            cause = self._invalid_emission(module, emitted, trigger)
            if cause is not None:
                self._degrade(module, ModuleHandlerError(module.key, cause, trigger))
                return

        for emitted in emitted_events:
            if emitted.timestamp <= self._cursor:
                self._pending.append(emitted)
            else:
                heapq.heappush(
                    self._future, (emitted.timestamp, next(self._sequence), emitted)
                )

    def _deliver(self, event: Event):
        for module in self._graph:
            if not module.active or module.degraded:
                continue

            for listener in module.listeners_for(event):
                try:
                    listener.handler(event)
                except Exception as e:
                    self._degrade(module, ModuleHandlerError(module.key, e, event))
                    break

            if not module.degraded:
                self._accept_emitted(module, event)

    def _process(self, event: Event):
        self._cursor = max(self._cursor, event.timestamp)
        self._deliver(event)

        while self._pending:
            synthetic = self._pending.popleft()
            self.num_synthetic += 1
            self._deliver(synthetic)

    def _flush_future(self, before=None):
        """Deliver queued synthetic events stamped before ``before``"""
        while self._future and (before is None or self._future[0][0] < before):
            _, _, synthetic = heapq.heappop(self._future)
            if synthetic.timestamp > self._context.end_time:
                continue
            self.num_synthetic += 1
            self._process(synthetic)

    def dispatch(self, events):
        if self._dispatched:
            raise RuntimeError("An event dispatcher can only replay one stream")
        self._dispatched = True
        self._cursor = self._context.start_time

        last_timestamp = None
        for event in events:
            if last_timestamp is not None and event.timestamp < last_timestamp:
                raise MalformedEventError(
                    f"Event is out of order, previous event was at {last_timestamp}",
                    index=event.index,
                    timestamp=event.timestamp,
                    field="timestamp",
                )
            last_timestamp = event.timestamp

            if not self._context.contains(event.timestamp):
                continue

            self._flush_future(before=event.timestamp)
            self.num_events += 1
            self._process(event)

        self._flush_future()

        self._cursor = max(self._cursor, self._context.end_time)
        fight_end = Event(
            timestamp=self._context.end_time,
            type=EventType.FIGHT_END,
            source_id=self._context.selected_id,
        )
        self.num_synthetic += 1
        self._process(fight_end)

        logger.debug(
            "Dispatched %d events and %d synthetic events",
            self.num_events,
            self.num_synthetic,
        )
