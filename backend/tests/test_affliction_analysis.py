import pytest

from combat_analysis.affliction_analysis import (
    AGONY,
    CORRUPTION,
    SHADOW_BOLT,
    SIPHON_LIFE,
    SUDDEN_ONSET,
    UNSTABLE_AFFLICTION,
    AfflictionAnalysisConfig,
)
from combat_analysis.analyze import Analyzer
from combat_analysis.results import Importance
from conftest import BOSS, raw_event

ADD = 101


@pytest.fixture
def affliction_context(make_context):
    def _make(**combatant):
        return make_context(spec="Affliction", **combatant)

    return _make


def debuff(timestamp, type, ability, target=BOSS):
    return raw_event(timestamp, type, target=target, ability=ability)


def run(context, records):
    analyzer = Analyzer(context)
    result = analyzer.analyze(records)
    return analyzer.modules, result


def test_affliction_profile_is_selected(affliction_context, context):
    graph, result = run(affliction_context(), [])
    assert "agony_uptime" in graph
    assert result.metadata["spec"] == "Affliction"

    graph, _ = run(context, [])
    assert "agony_uptime" not in graph


def test_low_uptime_is_a_major_suggestion(affliction_context):
    records = [
        debuff(0, "applydebuff", AGONY),
        debuff(5000, "removedebuff", AGONY),
    ]

    graph, result = run(affliction_context(), records)

    assert graph["agony_uptime"].uptime() == pytest.approx(0.5)
    (suggestion,) = result.suggestions_for("agony_uptime")
    assert suggestion.importance == Importance.MAJOR
    assert suggestion.actual == "50.00%"


def test_refresh_without_apply_covers_the_pull(affliction_context):
    records = [debuff(3000, "refreshdebuff", CORRUPTION)]

    graph, result = run(affliction_context(), records)

    assert graph["corruption_uptime"].uptime() == 1
    assert result.suggestions_for("corruption_uptime") == []


def test_reapplied_after_falling_off(affliction_context):
    records = [
        debuff(0, "applydebuff", CORRUPTION),
        debuff(2000, "removedebuff", CORRUPTION),
        debuff(4000, "refreshdebuff", CORRUPTION),
    ]

    graph, _ = run(affliction_context(), records)

    windows = graph["corruption_uptime"].windows
    assert [(w.start, w.end) for w in windows] == [(0, 2000), (4000, 10000)]
    assert graph["corruption_uptime"].uptime() == pytest.approx(0.8)


def test_uptime_merges_targets(affliction_context):
    records = [
        debuff(0, "applydebuff", AGONY),
        debuff(4000, "applydebuff", AGONY, target=ADD),
        debuff(5000, "removedebuff", AGONY),
        debuff(7000, "removedebuff", AGONY, target=ADD),
    ]

    graph, _ = run(affliction_context(), records)

    assert graph["agony_uptime"].uptime() == pytest.approx(0.7)


def test_other_players_debuffs_are_ignored(affliction_context):
    records = [raw_event(0, "applydebuff", source=55, target=BOSS, ability=AGONY)]

    graph, _ = run(affliction_context(), records)

    assert graph["agony_uptime"].uptime() == 0


def test_siphon_life_needs_the_talent(affliction_context):
    graph, result = run(affliction_context(), [])
    assert not graph["siphon_life_uptime"].active
    assert result.suggestions_for("siphon_life_uptime") == []
    labels = [dot["label"] for dot in result.statistic("dot_uptimes").value]
    assert labels == ["Agony", "Corruption", "Unstable Affliction"]

    graph, result = run(affliction_context(talents=(SIPHON_LIFE,)), [])
    assert graph["siphon_life_uptime"].active
    assert len(result.statistic("dot_uptimes").value) == 4
    assert len(result.suggestions_for("siphon_life_uptime")) == 1


def test_dot_timeline_tab(affliction_context):
    records = [
        debuff(1000, "applydebuff", UNSTABLE_AFFLICTION),
        debuff(3000, "removedebuff", UNSTABLE_AFFLICTION),
    ]

    _, result = run(affliction_context(), records)

    assert [tab.key for tab in result.tabs] == ["dot_uptimes", "overview"]
    timeline = result.tabs[0]
    assert timeline.title == "DoT timeline"
    assert timeline.data["start_time"] == 0
    assert timeline.data["end_time"] == 10000
    dots = {dot["label"]: dot["windows"] for dot in timeline.data["dots"]}
    assert dots["Unstable Affliction"] == ((1000, 3000),)
    assert dots["Agony"] == ()


def test_dot_statistic_is_a_core_statistic(affliction_context):
    records = [debuff(0, "applydebuff", AGONY)]

    _, result = run(affliction_context(), records)

    statistic = result.statistic("dot_uptimes")
    assert statistic.position == 3
    agony = statistic.value[0]
    assert agony["module"] == "agony_uptime"
    assert agony["uptime"] == 1


def test_removed_without_apply_was_up_from_the_pull(affliction_context):
    records = [
        debuff(3000, "removedebuff", AGONY),
        debuff(3500, "removedebuff", AGONY),
    ]

    graph, _ = run(affliction_context(), records)

    windows = graph["agony_uptime"].windows
    assert [(w.start, w.end) for w in windows] == [(0, 3000)]
    assert graph["agony_uptime"].uptime() == pytest.approx(0.3)


def test_sudden_onset_needs_the_trait(affliction_context):
    records = [raw_event(1000, "damage", ability=AGONY, amount=1000)]

    graph, result = run(affliction_context(), records)

    assert not graph["sudden_onset"].active
    assert result.statistic("sudden_onset") is None


def test_sudden_onset_bonus_is_capped_by_each_tick(affliction_context):
    context = affliction_context(traits={SUDDEN_ONSET: (385, 400)})
    config = AfflictionAnalysisConfig(sudden_onset_rank_bonus={385: 100, 400: 120})
    records = [
        raw_event(1000, "damage", ability=AGONY, amount=1000),
        raw_event(2000, "damage", ability=AGONY, amount=100, absorbed=50),
        raw_event(3000, "damage", ability=SHADOW_BOLT, amount=2000),
        raw_event(4000, "damage", source=55, ability=AGONY, amount=1000),
    ]

    analyzer = Analyzer(context, config)
    result = analyzer.analyze(records)

    sudden_onset = analyzer.modules["sudden_onset"]
    assert sudden_onset.trait_bonus == 220
    assert sudden_onset.damage == 370
    statistic = result.statistic("sudden_onset")
    assert statistic.value == 370
    assert statistic.details["dps"] == pytest.approx(37)
    assert statistic.details["percentage_of_total"] == pytest.approx(370 / 3150)


def test_sudden_onset_ranks_without_a_known_bonus_add_nothing(affliction_context):
    context = affliction_context(traits={SUDDEN_ONSET: (340,)})
    records = [raw_event(1000, "damage", ability=AGONY, amount=1000)]

    _, result = run(context, records)

    assert result.statistic("sudden_onset").value == 0
