from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class Aura(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    ability: int
    name: Optional[str] = None
    ability_icon: Optional[str] = None


class Combatant(BaseModel):
    """Snapshot of a combatant taken from the log's combatant info"""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int
    name: str = ""
    race: Optional[str] = None
    class_name: Optional[str] = Field(default=None, alias="class")
    spec: Optional[str] = None
    talents: Tuple[int, ...] = ()
    # trait spell id -> item level of every equipped rank
    traits: Dict[int, Tuple[int, ...]] = Field(default_factory=dict)
    auras: Tuple[Aura, ...] = ()
    # haste as a fraction, 0.2 means 20 %
    haste: float = 0.0

    def has_talent(self, spell_id):
        return spell_id in self.talents

    def has_trait(self, spell_id):
        return bool(self.traits.get(spell_id))

    def trait_ranks(self, spell_id):
        return self.traits.get(spell_id, ())


class EncounterContext(BaseModel):
    """Read-only state shared by every module of a single analysis run"""

    model_config = ConfigDict(frozen=True)

    selected_id: int
    start_time: int
    end_time: int
    encounter: str = ""
    report_code: Optional[str] = None
    combatants: Tuple[Combatant, ...] = ()

    @property
    def duration(self):
        return self.end_time - self.start_time

    def get_combatant(self, combatant_id) -> Optional[Combatant]:
        for combatant in self.combatants:
            if combatant.id == combatant_id:
                return combatant
        return None

    @property
    def selected_combatant(self) -> Combatant:
        # A run always has someone to analyze, fall back to an empty snapshot
        return self.get_combatant(self.selected_id) or Combatant(id=self.selected_id)

    def contains(self, timestamp):
        return self.start_time <= timestamp <= self.end_time
