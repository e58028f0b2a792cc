from collections import OrderedDict, defaultdict

from combat_analysis.base import (
    SELECTED_PLAYER,
    BaseAnalyzer,
    Window,
    calculate_uptime,
    combine_windows,
)
from combat_analysis.core_analysis import CoreAnalysisConfig
from combat_analysis.events import EventType
from combat_analysis.registry import ModuleSpec
from combat_analysis.results import (
    STATISTIC_ORDER,
    StatisticOutput,
    TabOutput,
    Thresholds,
)

AGONY = 980
CORRUPTION = 146739
UNSTABLE_AFFLICTION = 316099
SIPHON_LIFE = 63106
SHADOW_BOLT = 686
MALEFIC_RAPTURE = 324536
DRAIN_SOUL = 198590
DRAIN_LIFE = 234153
SUDDEN_ONSET = 278721


class DebuffUptime(BaseAnalyzer):
    """Uptime of one of the selected player's debuffs across all targets"""

    class WindowManager:
        def __init__(self):
            self._windows_by_target = defaultdict(list)
            self._window_by_target = {}

        def add_window(self, target, start, end=None):
            window = Window(start, end)
            self._window_by_target[target] = window
            self._windows_by_target[target].append(window)

        def end_window(self, target, end):
            window = self._window_by_target.get(target)
            if window:
                window.end = end

        def has_window(self, target):
            return target in self._window_by_target

        def has_active_window(self, target):
            window = self._window_by_target.get(target)
            return bool(window) and window.end is None

        def coalesce(self, end_time):
            windows = [
                Window(window.start, end_time if window.end is None else window.end)
                for windows in self._windows_by_target.values()
                for window in windows
            ]
            return combine_windows(windows)

    def __init__(
        self,
        context,
        debuff_id,
        label,
        icon=None,
        talent=None,
        uptime_thresholds=None,
    ):
        self.debuff_id = debuff_id
        self.label = label
        self.icon = icon
        # set before is_active runs in BaseAnalyzer.__init__
        self.talent = talent
        super().__init__(context)
        self.uptime_thresholds = uptime_thresholds
        self._wm = self.WindowManager()

        for event_type in (
            EventType.APPLY_DEBUFF,
            EventType.REFRESH_DEBUFF,
            EventType.REMOVE_DEBUFF,
        ):
            self.add_event_listener(
                event_type, self.on_debuff, source=SELECTED_PLAYER, ability=debuff_id
            )

    def is_active(self, context):
        if self.talent is None:
            return True
        return context.selected_combatant.has_talent(self.talent)

    def on_debuff(self, event):
        if event.type in (EventType.APPLY_DEBUFF, EventType.REFRESH_DEBUFF):
            if not self._wm.has_active_window(event.target_id):
                # a refresh without an apply means it was up before the pull
                start = event.timestamp
                if event.type == EventType.REFRESH_DEBUFF and not self._wm.has_window(
                    event.target_id
                ):
                    start = self.context.start_time
                self._wm.add_window(event.target_id, start)
        elif self._wm.has_active_window(event.target_id):
            self._wm.end_window(event.target_id, event.timestamp)
        elif not self._wm.has_window(event.target_id):
            # applied before the pull and never refreshed
            self._wm.add_window(event.target_id, self.context.start_time, event.timestamp)

    @property
    def windows(self):
        return self._wm.coalesce(self.context.end_time)

    def uptime(self):
        return calculate_uptime(
            self.windows, self.context.start_time, self.context.end_time
        )

    def suggestions(self):
        if not self.uptime_thresholds:
            return []

        thresholds = Thresholds(self.uptime(), is_less_than=self.uptime_thresholds)
        return thresholds.suggest(
            self.key,
            f"Your {self.label} uptime can be improved. Try to pay more attention "
            f"to it, refresh it before it drops and keep it up on every target.",
            icon=self.icon,
        )

    def sub_statistic(self):
        return {
            "module": self.key,
            "label": self.label,
            "icon": self.icon,
            "uptime": self.uptime(),
        }


class DotUptimeStatisticBox(BaseAnalyzer):
    def __init__(
        self,
        context,
        agony_uptime,
        corruption_uptime,
        unstable_affliction_uptime,
        siphon_life_uptime,
    ):
        super().__init__(context)
        self.uptimes = [
            agony_uptime,
            corruption_uptime,
            unstable_affliction_uptime,
            siphon_life_uptime,
        ]

    @property
    def active_uptimes(self):
        return [uptime for uptime in self.uptimes if uptime.active]

    def statistic(self):
        return StatisticOutput(
            module=self.key,
            label="DoT uptimes",
            value=[uptime.sub_statistic() for uptime in self.active_uptimes],
            position=STATISTIC_ORDER.CORE(3),
        )

    def tab(self):
        return TabOutput(
            key=self.key,
            title="DoT timeline",
            url="dot-timeline",
            data={
                "start_time": self.context.start_time,
                "end_time": self.context.end_time,
                "dots": [
                    {
                        "label": uptime.label,
                        "icon": uptime.icon,
                        "windows": [
                            [window.start, window.end] for window in uptime.windows
                        ],
                    }
                    for uptime in self.active_uptimes
                ],
            },
        )


class SuddenOnset(BaseAnalyzer):
    """Sudden Onset: Agony deals up to an additional X damage per tick.

    ``rank_bonus`` maps the item level of an equipped rank to its bonus
    damage per tick. Each tick is credited at most its own damage.
    """

    def __init__(self, context, damage_done, rank_bonus=None):
        super().__init__(context)
        self.damage_done = damage_done
        rank_bonus = rank_bonus or {}
        self.trait_bonus = sum(
            rank_bonus.get(item_level, 0)
            for item_level in self.selected_combatant.trait_ranks(SUDDEN_ONSET)
        )
        self.damage = 0

        self.add_event_listener(
            EventType.DAMAGE, self.on_agony_damage, source=SELECTED_PLAYER, ability=AGONY
        )

    def is_active(self, context):
        return context.selected_combatant.has_trait(SUDDEN_ONSET)

    def on_agony_damage(self, event):
        self.damage += min(self.trait_bonus, event.amount + event.absorbed)

    @property
    def dps(self):
        if not self.fight_duration:
            return 0
        return self.damage / self.fight_duration * 1000

    def statistic(self):
        total = self.damage_done.total
        return StatisticOutput(
            module=self.key,
            label="Sudden Onset",
            value=self.damage,
            position=STATISTIC_ORDER.OPTIONAL(),
            icon="spell_shadow_curseofsargeras",
            tooltip=f"Estimated bonus Agony damage: {self.damage:,}",
            details={
                "dps": self.dps,
                "percentage_of_total": self.damage / total if total else 0,
            },
        )


class AfflictionAnalysisConfig(CoreAnalysisConfig):
    ABILITIES = {
        AGONY: {"name": "Agony", "gcd": 1500},
        CORRUPTION: {"name": "Corruption", "gcd": 1500},
        UNSTABLE_AFFLICTION: {"name": "Unstable Affliction", "gcd": 1500},
        SIPHON_LIFE: {"name": "Siphon Life", "gcd": 1500},
        SHADOW_BOLT: {"name": "Shadow Bolt", "gcd": 1500},
        MALEFIC_RAPTURE: {"name": "Malefic Rapture", "gcd": 1500},
        DRAIN_SOUL: {"name": "Drain Soul", "gcd": 1500, "channeled": True},
        DRAIN_LIFE: {"name": "Drain Life", "gcd": 1500, "channeled": True},
    }

    DOT_UPTIME_THRESHOLDS = {
        "minor": 0.95,
        "average": 0.9,
        "major": 0.8,
    }

    # item level -> bonus damage per Agony tick, empty unless supplied
    SUDDEN_ONSET_RANK_BONUS = {}

    def __init__(self, sudden_onset_rank_bonus=None):
        if sudden_onset_rank_bonus is not None:
            self.SUDDEN_ONSET_RANK_BONUS = sudden_onset_rank_bonus

    def _dot_uptime(self, debuff_id, label, icon, talent=None):
        return ModuleSpec(
            DebuffUptime,
            {
                "debuff_id": debuff_id,
                "label": label,
                "icon": icon,
                "talent": talent,
                "uptime_thresholds": self.DOT_UPTIME_THRESHOLDS,
            },
        )

    def get_modules(self):
        modules = super().get_modules()
        modules.update(
            OrderedDict(
                [
                    (
                        "agony_uptime",
                        self._dot_uptime(AGONY, "Agony", "spell_shadow_curseofsargeras"),
                    ),
                    (
                        "corruption_uptime",
                        self._dot_uptime(
                            CORRUPTION, "Corruption", "spell_shadow_abominationexplosion"
                        ),
                    ),
                    (
                        "unstable_affliction_uptime",
                        self._dot_uptime(
                            UNSTABLE_AFFLICTION,
                            "Unstable Affliction",
                            "spell_shadow_unstableaffliction_3",
                        ),
                    ),
                    (
                        "siphon_life_uptime",
                        self._dot_uptime(
                            SIPHON_LIFE,
                            "Siphon Life",
                            "spell_shadow_requiem",
                            talent=SIPHON_LIFE,
                        ),
                    ),
                    (
                        "dot_uptimes",
                        ModuleSpec(
                            DotUptimeStatisticBox,
                            dependencies=[
                                "agony_uptime",
                                "corruption_uptime",
                                "unstable_affliction_uptime",
                                "siphon_life_uptime",
                            ],
                        ),
                    ),
                    (
                        "sudden_onset",
                        ModuleSpec(
                            SuddenOnset,
                            {"rank_bonus": self.SUDDEN_ONSET_RANK_BONUS},
                            ["damage_done"],
                        ),
                    ),
                ]
            )
        )
        return modules
