import pytest

from combat_analysis.base import SELECTED_PLAYER, BaseAnalyzer
from combat_analysis.dispatcher import EventDispatcher
from combat_analysis.errors import MalformedEventError
from combat_analysis.events import Event, EventType, normalize
from combat_analysis.registry import ModuleSpec, build_modules
from combat_analysis.results import ResultsAggregator, StatisticOutput
from conftest import PLAYER, CooldownSynthesizer, Recorder, raw_event


def run(registry, context, records):
    graph = build_modules(registry, context)
    dispatcher = EventDispatcher(graph, context)
    dispatcher.dispatch(normalize(record, index=i) for i, record in enumerate(records))
    return graph, dispatcher


def casts(*timestamps):
    return [raw_event(timestamp, "cast", ability=686) for timestamp in timestamps]


def test_same_timestamp_follows_declaration_order(context):
    def once():
        log = []
        registry = {
            "second": ModuleSpec(Recorder, {"log": log}),
            "first": ModuleSpec(Recorder, {"log": log}),
        }
        run(registry, context, casts(1000, 1000))
        return log

    expected = [
        ("second", EventType.CAST, 1000),
        ("first", EventType.CAST, 1000),
        ("second", EventType.CAST, 1000),
        ("first", EventType.CAST, 1000),
    ]
    for _ in range(3):
        assert once() == expected


def test_synthetic_event_follows_producer(context, log):
    # the consumer is declared first but depends on the producer
    registry = {
        "consumer": ModuleSpec(
            Recorder,
            {"log": log, "event_types": (EventType.CAST, EventType.GLOBAL_COOLDOWN)},
            {"producer": "producer"},
        ),
        "producer": ModuleSpec(CooldownSynthesizer, {"log": log}),
    }

    graph, dispatcher = run(registry, context, casts(1000, 2000))

    assert graph.order == ["producer", "consumer"]
    assert log == [
        ("producer", EventType.CAST, 1000),
        ("consumer", EventType.CAST, 1000),
        ("consumer", EventType.GLOBAL_COOLDOWN, 1000),
        ("producer", EventType.CAST, 2000),
        ("consumer", EventType.CAST, 2000),
        ("consumer", EventType.GLOBAL_COOLDOWN, 2000),
    ]
    assert dispatcher.num_events == 2
    # two cooldowns plus the fight end
    assert dispatcher.num_synthetic == 3


def test_future_synthetic_waits_for_earlier_real_events(context, log):
    registry = {
        "producer": ModuleSpec(
            CooldownSynthesizer,
            {"log": log, "offset": 300, "lookahead": 500},
        ),
        "consumer": ModuleSpec(
            Recorder,
            {
                "log": log,
                "event_types": (EventType.DAMAGE, EventType.GLOBAL_COOLDOWN),
            },
        ),
    }
    records = [
        raw_event(1000, "cast", ability=686),
        raw_event(1200, "damage", ability=686),
        raw_event(1300, "damage", ability=686),
        raw_event(1400, "damage", ability=686),
    ]
    run(registry, context, records)

    consumer_log = [entry for entry in log if entry[0] == "consumer"]
    assert consumer_log == [
        ("consumer", EventType.DAMAGE, 1200),
        ("consumer", EventType.DAMAGE, 1300),
        ("consumer", EventType.GLOBAL_COOLDOWN, 1300),
        ("consumer", EventType.DAMAGE, 1400),
    ]


def test_synthetic_past_lookahead_degrades_producer(context, log):
    registry = {
        "producer": ModuleSpec(CooldownSynthesizer, {"log": log, "offset": 50}),
        "consumer": ModuleSpec(
            Recorder,
            {"log": log, "event_types": (EventType.CAST, EventType.GLOBAL_COOLDOWN)},
        ),
    }

    graph, _ = run(registry, context, casts(1000, 2000))

    assert graph["producer"].degraded
    assert not graph["consumer"].degraded
    assert log == [
        ("producer", EventType.CAST, 1000),
        ("consumer", EventType.CAST, 1000),
        ("consumer", EventType.CAST, 2000),
    ]


def test_inactive_module_is_never_invoked(context, log):
    registry = {
        "inactive": ModuleSpec(Recorder, {"log": log, "active": False}),
        "active": ModuleSpec(Recorder, {"log": log}),
    }

    graph, _ = run(registry, context, casts(1000))

    assert "inactive" in graph
    assert log == [("active", EventType.CAST, 1000)]


def test_inactive_producer_means_no_synthetic_events(context, log):
    registry = {
        "producer": ModuleSpec(CooldownSynthesizer, {"log": log, "active": False}),
        "consumer": ModuleSpec(
            Recorder,
            {"log": log, "event_types": (EventType.GLOBAL_COOLDOWN,)},
            {"producer": "producer"},
        ),
    }

    graph, _ = run(registry, context, casts(1000, 2000))

    assert log == []
    assert not graph["consumer"].degraded
    assert graph["consumer"].dependencies["producer"] is graph["producer"]


class Exploding(BaseAnalyzer):
    def __init__(self, context):
        super().__init__(context)
        self.seen = 0
        self.add_event_listener(EventType.CAST, self.on_cast)

    def on_cast(self, event):
        self.seen += 1
        if event.timestamp >= 2000:
            raise ZeroDivisionError("boom")

    def statistic(self):
        return StatisticOutput(module=self.key, label="Seen", value=self.seen)


def test_handler_error_only_degrades_that_module(context, log):
    registry = {
        "exploding": ModuleSpec(Exploding),
        "recorder": ModuleSpec(Recorder, {"log": log}),
    }

    graph, _ = run(registry, context, casts(1000, 2000, 3000))

    exploding = graph["exploding"]
    assert exploding.degraded
    assert exploding.seen == 2
    assert exploding.error.index == 1
    assert exploding.error.timestamp == 2000
    assert isinstance(exploding.error.cause, ZeroDivisionError)
    assert [timestamp for _, _, timestamp in log] == [1000, 2000, 3000]

    result = ResultsAggregator(graph).seal()
    statistic = result.statistic("exploding")
    assert statistic.available is False
    assert "boom" in statistic.error
    assert result.degraded[0].module == "exploding"
    assert result.degraded[0].timestamp == 2000


def test_out_of_order_event_is_fatal(context, log):
    registry = {"recorder": ModuleSpec(Recorder, {"log": log})}

    with pytest.raises(MalformedEventError) as e:
        run(registry, context, casts(2000, 1000))

    assert e.value.index == 1
    assert e.value.timestamp == 1000


def test_fight_boundaries_are_inclusive(make_context, log):
    context = make_context(start_time=1000, end_time=2000)
    registry = {"recorder": ModuleSpec(Recorder, {"log": log})}

    run(registry, context, casts(999, 1000, 1500, 2000, 2001))

    assert [timestamp for _, _, timestamp in log] == [1000, 1500, 2000]


def test_fight_end_is_dispatched_last(make_context, log):
    context = make_context(start_time=0, end_time=5000)
    registry = {
        "recorder": ModuleSpec(
            Recorder, {"log": log, "event_types": (EventType.CAST, EventType.FIGHT_END)}
        )
    }

    run(registry, context, casts(100))

    assert log[-1] == ("recorder", EventType.FIGHT_END, 5000)


class SelectedOnly(BaseAnalyzer):
    def __init__(self, context):
        super().__init__(context)
        self.sources = []
        self.add_event_listener(EventType.CAST, self.on_cast, source=SELECTED_PLAYER)

    def on_cast(self, event):
        self.sources.append(event.source_id)


def test_listener_filters_on_selected_player(context):
    graph, _ = run(
        {"selected": ModuleSpec(SelectedOnly)},
        context,
        [
            raw_event(100, "cast", source=PLAYER, ability=686),
            raw_event(200, "cast", source=55, ability=686),
        ],
    )
    assert graph["selected"].sources == [PLAYER]


def test_dispatcher_replays_once(context, log):
    graph = build_modules({"recorder": ModuleSpec(Recorder, {"log": log})}, context)
    dispatcher = EventDispatcher(graph, context)
    dispatcher.dispatch([])

    with pytest.raises(RuntimeError):
        dispatcher.dispatch([])


class AbilityFilter(BaseAnalyzer):
    def __init__(self, context, abilities):
        super().__init__(context)
        self.seen = []
        self.add_event_listener(EventType.CAST, self.on_cast, ability=abilities)

    def on_cast(self, event):
        self.seen.append(event.ability_id)


@pytest.mark.parametrize("abilities", [[686, 172], (686, 172), {686, 172}])
def test_listener_accepts_any_collection_of_abilities(context, abilities):
    graph, _ = run(
        {"filter": ModuleSpec(AbilityFilter, {"abilities": abilities})},
        context,
        [
            raw_event(100, "cast", ability=686),
            raw_event(200, "cast", ability=980),
            raw_event(300, "cast", ability=172),
        ],
    )
    assert graph["filter"].seen == [686, 172]


class HalfValid(Recorder):
    """Emits a valid cooldown followed by a raw event in the same handler"""

    def on_event(self, event):
        super().on_event(event)
        self.emit(Event.fabricate(EventType.GLOBAL_COOLDOWN, event, duration=1000))
        self.emit(event)


def test_one_bad_emission_drops_the_whole_batch(context, log):
    registry = {
        "producer": ModuleSpec(HalfValid, {"log": log}),
        "consumer": ModuleSpec(
            Recorder,
            {"log": log, "event_types": (EventType.CAST, EventType.GLOBAL_COOLDOWN)},
        ),
    }

    graph, dispatcher = run(registry, context, casts(1000))

    assert graph["producer"].degraded
    assert log == [
        ("producer", EventType.CAST, 1000),
        ("consumer", EventType.CAST, 1000),
    ]
    # only the fight end
    assert dispatcher.num_synthetic == 1
