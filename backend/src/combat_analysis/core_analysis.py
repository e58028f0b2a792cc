from collections import OrderedDict, defaultdict

from combat_analysis.base import (
    SELECTED_PLAYER,
    BaseAnalyzer,
    Window,
    calculate_uptime,
)
from combat_analysis.events import Event, EventType
from combat_analysis.registry import ModuleSpec
from combat_analysis.results import (
    STATISTIC_ORDER,
    Importance,
    StatisticOutput,
    Suggestion,
    Thresholds,
)


class Abilities(BaseAnalyzer):
    """Ability metadata for the profile being analyzed.

    ``abilities`` maps a spell id to ``{"name", "gcd", "channeled", "hasted"}``.
    ``gcd`` is the unhasted global cooldown in ms, ``None`` or 0 when the
    ability is off the GCD. Unknown abilities never trigger the GCD.
    """

    DEFAULT_GCD = 1500

    def __init__(self, context, abilities=None):
        super().__init__(context)
        self._abilities = {
            int(spell_id): dict(info) for spell_id, info in (abilities or {}).items()
        }

    def get(self, spell_id):
        return self._abilities.get(spell_id)

    def base_gcd(self, spell_id):
        info = self.get(spell_id)
        if info is None:
            return None
        return info.get("gcd", self.DEFAULT_GCD)

    def triggers_gcd(self, spell_id):
        return bool(self.base_gcd(spell_id))

    def is_channeled(self, spell_id):
        info = self.get(spell_id)
        return bool(info and info.get("channeled"))

    def is_hasted(self, spell_id):
        info = self.get(spell_id)
        return bool(info and info.get("hasted", True))


class Haste(BaseAnalyzer):
    HASTE_BUFFS = {
        # Bloodlust
        2825: 1.3,
        # Heroism
        32182: 1.3,
        # Time Warp
        80353: 1.3,
        # Primal Rage
        264667: 1.3,
    }

    def __init__(self, context, haste_buffs=None):
        super().__init__(context)
        self._haste_buffs = self.HASTE_BUFFS if haste_buffs is None else haste_buffs
        self._rating_haste = self.selected_combatant.haste
        self._active_buffs = {
            aura.ability
            for aura in self.selected_combatant.auras
            if aura.ability in self._haste_buffs
        }

        buffs = frozenset(self._haste_buffs)
        self.add_event_listener(
            EventType.APPLY_BUFF, self._on_apply, target=SELECTED_PLAYER, ability=buffs
        )
        self.add_event_listener(
            EventType.REMOVE_BUFF, self._on_remove, target=SELECTED_PLAYER, ability=buffs
        )

    def _on_apply(self, event):
        self._active_buffs.add(event.ability_id)

    def _on_remove(self, event):
        # removing a buff that was never seen applied leaves haste alone
        self._active_buffs.discard(event.ability_id)

    @property
    def multiplier(self):
        multiplier = 1.0
        for buff_id in self._active_buffs:
            multiplier *= self._haste_buffs[buff_id]
        return multiplier

    @property
    def current(self):
        return (1 + self._rating_haste) * self.multiplier - 1


class BuffWindows:
    def __init__(self, buff_id, name=None, icon=None):
        self.buff_id = buff_id
        self.name = name
        self.icon = icon
        self._windows = []

    @property
    def has_window(self):
        return len(self._windows) > 0

    @property
    def has_active_window(self):
        return self.has_window and self._windows[-1].end is None

    @property
    def active_window(self):
        if not self.has_window:
            return None
        return self._windows[-1]

    @property
    def windows(self):
        return self._windows

    def add_window(self, start, end=None):
        self._windows.append(Window(start, end))

    def contains(self, timestamp):
        return any(window.contains(timestamp) for window in self._windows)


class BuffTracker(BaseAnalyzer):
    """Buff windows on the selected player, keyed by buff id"""

    def __init__(self, context):
        super().__init__(context)
        self._buff_windows = {}
        self._add_starting_auras(self.selected_combatant.auras)

        for event_type in (
            EventType.APPLY_BUFF,
            EventType.REMOVE_BUFF,
            EventType.REMOVE_BUFF_STACK,
            EventType.REFRESH_BUFF,
        ):
            self.add_event_listener(event_type, self._on_buff, target=SELECTED_PLAYER)

    def _get_buff_windows(self, buff_id, name=None, icon=None):
        return self._buff_windows.setdefault(buff_id, BuffWindows(buff_id, name, icon))

    def _add_starting_auras(self, starting_auras):
        for aura in starting_auras:
            windows = self._get_buff_windows(aura.ability, aura.name, aura.ability_icon)
            if not windows.has_window:
                windows.add_window(self.context.start_time)

    def _on_buff(self, event):
        if event.ability is None:
            return

        windows = self._get_buff_windows(
            event.ability_id, event.ability.name, event.get("ability_icon")
        )

        if event.type in (EventType.REMOVE_BUFF_STACK, EventType.REFRESH_BUFF):
            # If we don't have a window, assume it was a starting aura
            if not windows.has_window:
                windows.add_window(self.context.start_time)
        elif event.type == EventType.APPLY_BUFF:
            if not windows.has_active_window:
                windows.add_window(event.timestamp)
        elif event.type == EventType.REMOVE_BUFF:
            if windows.has_active_window:
                windows.active_window.end = event.timestamp
            elif not windows.has_window:
                windows.add_window(self.context.start_time, event.timestamp)

    def get_windows(self, buff_id):
        if buff_id not in self._buff_windows:
            return []
        return [
            Window(window.start, self.context.end_time if window.end is None else window.end)
            for window in self._buff_windows[buff_id].windows
        ]

    def has_buff(self, buff_id, timestamp=None):
        if buff_id not in self._buff_windows:
            return False
        windows = self._buff_windows[buff_id]
        if timestamp is None:
            return windows.has_active_window
        return windows.contains(timestamp)

    def uptime(self, buff_id):
        return calculate_uptime(
            self.get_windows(buff_id), self.context.start_time, self.context.end_time
        )


class Channeling(BaseAnalyzer):
    """Turns begincast / cast pairs of channeled spells into channel events.

    The latest begin-channel of each source is kept until the matching cast
    completes it or another cast interrupts it; either way an end-channel
    carrying the channel duration follows.
    """

    def __init__(self, context, abilities):
        super().__init__(context)
        self.abilities = abilities
        self._channels = {}
        self.last_completed_cast = None

        self.add_event_listener(EventType.BEGIN_CAST, self.on_begin_cast)
        self.add_event_listener(EventType.CAST, self.on_cast)
        self.add_event_listener(EventType.FIGHT_END, self.on_fight_end)

    def is_channeling(self, source_id):
        return source_id in self._channels

    def current_channel(self, source_id):
        return self._channels.get(source_id)

    def _end_channel(self, source_id, trigger, cancelled=False):
        begin = self._channels.pop(source_id)
        self.emit(
            Event.fabricate(
                EventType.END_CHANNEL,
                begin,
                timestamp=trigger.timestamp,
                trigger=trigger,
                duration=trigger.timestamp - begin.timestamp,
                start=begin.timestamp,
                begin_channel=begin,
                cancelled=cancelled,
            )
        )

    def on_begin_cast(self, event):
        if self.is_channeling(event.source_id):
            self._end_channel(event.source_id, event, cancelled=True)

        if not self.abilities.is_channeled(event.ability_id):
            return

        begin = Event.fabricate(EventType.BEGIN_CHANNEL, event)
        self._channels[event.source_id] = begin
        self.emit(begin)

    def on_cast(self, event):
        channel = self.current_channel(event.source_id)
        if channel is None:
            return

        if event.ability_id == channel.ability_id:
            self.last_completed_cast = event
            self._end_channel(event.source_id, event)
        elif self.abilities.triggers_gcd(event.ability_id):
            self._end_channel(event.source_id, event, cancelled=True)

    def on_fight_end(self, event):
        for source_id in list(self._channels):
            self._end_channel(source_id, event)


class GlobalCooldown(BaseAnalyzer):
    MINIMUM_GCD = 750

    def __init__(self, context, abilities, haste, channeling):
        super().__init__(context)
        self.abilities = abilities
        self.haste = haste
        self.channeling = channeling
        self.history = []

        self.add_event_listener(EventType.CAST, self.on_cast, source=SELECTED_PLAYER)
        self.add_event_listener(
            EventType.BEGIN_CHANNEL, self.on_begin_channel, source=SELECTED_PLAYER
        )

    def get_duration(self, spell_id):
        duration = self.abilities.base_gcd(spell_id)
        if self.abilities.is_hasted(spell_id):
            duration = duration / (1 + self.haste.current)
        return max(self.MINIMUM_GCD, round(duration))

    def is_on_global_cooldown(self, spell_id):
        return self.abilities.triggers_gcd(spell_id)

    def _trigger(self, event):
        gcd = Event.fabricate(
            EventType.GLOBAL_COOLDOWN,
            event,
            duration=self.get_duration(event.ability_id),
        )
        self.history.append(gcd)
        self.emit(gcd)

    def on_cast(self, event):
        # the GCD of a channel already started with the channel
        if event is self.channeling.last_completed_cast:
            return
        if not self.abilities.triggers_gcd(event.ability_id):
            return
        self._trigger(event)

    def on_begin_channel(self, event):
        if self.abilities.triggers_gcd(event.ability_id):
            self._trigger(event)


class AlwaysBeCasting(BaseAnalyzer):
    DOWNTIME_THRESHOLDS = {
        "minor": 0.02,
        "average": 0.04,
        "major": 0.06,
    }

    def __init__(
        self,
        context,
        global_cooldown,
        channeling,
        show_statistic=True,
        position=STATISTIC_ORDER.CORE(10),
    ):
        super().__init__(context)
        self.global_cooldown = global_cooldown
        self.channeling = channeling
        self.show_statistic = show_statistic
        self.position = position
        self.active_time = 0
        self._last_global_cooldown_duration = 0

        self.add_event_listener(
            EventType.GLOBAL_COOLDOWN, self.on_global_cooldown, source=SELECTED_PLAYER
        )
        self.add_event_listener(
            EventType.END_CHANNEL, self.on_end_channel, source=SELECTED_PLAYER
        )

    def on_global_cooldown(self, event):
        self._last_global_cooldown_duration = event.duration
        trigger = event.trigger
        if trigger is not None and trigger.prepull:
            # active time only covers the fight itself
            return
        if trigger is not None and trigger.type == EventType.BEGIN_CHANNEL:
            # counted once the channel ends, as the longer of GCD and channel
            return
        self.active_time += event.duration

    def on_end_channel(self, event):
        amount = event.duration
        if self.global_cooldown.is_on_global_cooldown(event.ability_id):
            amount = max(amount, self._last_global_cooldown_duration)
        self.active_time += amount

    @property
    def total_time_wasted(self):
        return self.fight_duration - self.active_time

    @property
    def active_time_percentage(self):
        if not self.fight_duration:
            return 0
        return self.active_time / self.fight_duration

    @property
    def downtime_percentage(self):
        return 1 - self.active_time_percentage

    @property
    def downtime_thresholds(self):
        return Thresholds(
            self.downtime_percentage, is_greater_than=self.DOWNTIME_THRESHOLDS
        )

    def suggestions(self):
        return self.downtime_thresholds.suggest(
            self.key,
            "Your downtime can be improved. Try to Always Be Casting (ABC), avoid "
            "delays between casting spells and cast instant spells when you have "
            "to move.",
            icon="spell_mage_altertime",
        )

    def statistic(self):
        if not self.show_statistic:
            return None

        return StatisticOutput(
            module=self.key,
            label="Downtime",
            value=self.downtime_percentage,
            position=self.position,
            icon="spell_mage_altertime",
            tooltip=(
                "Downtime is available time not used to cast anything (including "
                "not having your GCD rolling)."
            ),
            details={
                "active_time": self.active_time,
                "active_time_percentage": self.active_time_percentage,
                "time_wasted": self.total_time_wasted,
            },
        )


class DamageDone(BaseAnalyzer):
    def __init__(self, context, show_statistic=False):
        super().__init__(context)
        self.show_statistic = show_statistic
        self.total = 0
        self._by_ability = defaultdict(int)

        self.add_event_listener(EventType.DAMAGE, self.on_damage, source=SELECTED_PLAYER)

    def on_damage(self, event):
        amount = event.amount + event.absorbed
        self.total += amount
        self._by_ability[event.ability_id] += amount

    @property
    def dps(self):
        if not self.fight_duration:
            return 0
        return self.total / self.fight_duration * 1000

    def by_ability(self, spell_id):
        return self._by_ability.get(spell_id, 0)

    def statistic(self):
        if not self.show_statistic:
            return None

        return StatisticOutput(
            module=self.key,
            label="Damage done",
            value=self.total,
            position=STATISTIC_ORDER.CORE(1),
            details={
                "dps": self.dps,
                "by_ability": {
                    str(spell_id): amount
                    for spell_id, amount in self._by_ability.items()
                },
            },
        )


class Stoneform(BaseAnalyzer):
    STONEFORM_BUFF_ID = 65116
    DAMAGE_REDUCTION = 0.1
    FALLING_DAMAGE_ABILITY_ID = 3
    PHYSICAL_SCHOOL = 1

    def __init__(self, context, buff_tracker):
        super().__init__(context)
        self.buff_tracker = buff_tracker
        self.damage_reduced = 0
        self.physical_damage_taken = 0

        self.add_event_listener(
            EventType.DAMAGE, self.on_damage_taken, target=SELECTED_PLAYER
        )

    def is_active(self, context):
        return context.selected_combatant.race == "Dwarf"

    def on_damage_taken(self, event):
        if event.ability is None or event.ability_id == self.FALLING_DAMAGE_ABILITY_ID:
            return
        if event.ability.type != self.PHYSICAL_SCHOOL:
            return
        if not self.buff_tracker.has_buff(self.STONEFORM_BUFF_ID, event.timestamp):
            return

        damage_taken = event.amount + event.absorbed
        self.physical_damage_taken += damage_taken
        self.damage_reduced += (
            damage_taken / (1 - self.DAMAGE_REDUCTION) * self.DAMAGE_REDUCTION
        )

    def statistic(self):
        return StatisticOutput(
            module=self.key,
            label="Stoneform damage reduced",
            value=round(self.damage_reduced),
            position=STATISTIC_ORDER.OPTIONAL(),
            icon="spell_shadow_unholystrength",
            tooltip=(
                f"Over the course of the encounter you took "
                f"{self.physical_damage_taken:,} physical damage while Stoneform "
                f"was active"
            ),
            details={"physical_damage_taken": self.physical_damage_taken},
        )


class DeathTracker(BaseAnalyzer):
    def __init__(self, context):
        super().__init__(context)
        self.deaths = []
        self.add_event_listener(EventType.DEATH, self.on_death, target=SELECTED_PLAYER)

    def on_death(self, event):
        self.deaths.append(event.timestamp - self.context.start_time)

    def suggestions(self):
        if not self.deaths:
            return []

        times = ", ".join(f"{death / 1000:.1f}s" for death in self.deaths)
        return [
            Suggestion(
                module=self.key,
                text=(
                    f"You died {len(self.deaths)} time(s) during the encounter "
                    f"(at {times}). Dying costs all the output you could have "
                    f"done for the rest of the fight."
                ),
                importance=Importance.MAJOR,
                icon="ability_creature_cursed_02",
                actual=f"{len(self.deaths)} death(s)",
                recommended="0 is recommended",
            )
        ]


class CoreAnalysisConfig:
    ABILITIES = {}

    def get_abilities(self):
        return self.ABILITIES

    def get_modules(self):
        return OrderedDict(
            [
                ("abilities", ModuleSpec(Abilities, {"abilities": self.get_abilities()})),
                ("haste", ModuleSpec(Haste)),
                ("buff_tracker", ModuleSpec(BuffTracker)),
                ("channeling", ModuleSpec(Channeling, dependencies=["abilities"])),
                (
                    "global_cooldown",
                    ModuleSpec(
                        GlobalCooldown,
                        dependencies=["abilities", "haste", "channeling"],
                    ),
                ),
                (
                    "always_be_casting",
                    ModuleSpec(
                        AlwaysBeCasting,
                        dependencies=["global_cooldown", "channeling"],
                    ),
                ),
                ("damage_done", ModuleSpec(DamageDone, {"show_statistic": True})),
                ("stoneform", ModuleSpec(Stoneform, dependencies=["buff_tracker"])),
                ("death_tracker", ModuleSpec(DeathTracker)),
            ]
        )
