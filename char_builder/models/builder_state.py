"""
Builder State Models
====================
The single aggregate for one in-progress character, plus the small records
it is made of. Field names double as the dot-paths accepted by
``StateManager.update_state`` (e.g. ``assigned_stats.might``).
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from char_builder.models.vocabulary import STAT_KEYS, StepId


def empty_stats() -> Dict[str, Optional[int]]:
    return {key: None for key in STAT_KEYS}


class SelectedValue(BaseModel):
    """A value picked from the unassigned pool, waiting for a stat slot."""

    value: int
    pool_index: int


class SkillChoice(BaseModel):
    pool: List[str] = Field(
        default_factory=list, description="Skills this group may draw from. Empty means any skill."
    )
    count: int = 0


class SkillGrant(BaseModel):
    """Snapshot of the selected class's skill grant."""

    guaranteed: List[str] = Field(default_factory=list)
    choices: List[SkillChoice] = Field(default_factory=list)


class Grant(BaseModel):
    """One discrete unit of perk-granting capacity."""

    id: str
    source: str = Field(..., description="'ancestry' or 'class'")
    source_name: str = ""
    feature_name: str = ""
    allowed_perks: List[str] = Field(
        default_factory=list, description="Perk refs this grant accepts. Empty means unrestricted."
    )
    fulfilled: Optional[str] = None

    @property
    def is_restricted(self) -> bool:
        return len(self.allowed_perks) > 0

    def accepts(self, perk_ref: str) -> bool:
        return not self.allowed_perks or perk_ref in self.allowed_perks


class AppliedBonus(BaseModel):
    target: str
    amount: int = 1


class StatBonus(BaseModel):
    """A +N stat bonus slot offered by an ancestry trait, class feature or perk."""

    bonus_id: str
    source_ref: Optional[str] = None
    source_name: str = ""
    source_type: str = ""
    amount: int = 1
    condition: str = "value <= 6"
    max_value: int = 7
    reason: str = ""


class PerkStatSource(BaseModel):
    stat: str
    amount: int


class BuilderState(BaseModel):
    # --- NAVIGATION ---
    current_step: StepId = StepId.ANCESTRY
    completed_steps: List[StepId] = Field(default_factory=list)
    preview_uuid: Optional[str] = None

    # --- ORIGIN ---
    selected_ancestry: Optional[str] = None
    selected_class: Optional[str] = None
    selected_starting_pack: Optional[str] = None

    # --- STATS ---
    selected_array_id: Optional[str] = None
    assigned_stats: Dict[str, Optional[int]] = Field(default_factory=empty_stats)
    unassigned_values: List[int] = Field(default_factory=list)
    selected_value: Optional[SelectedValue] = None
    available_bonuses: List[StatBonus] = Field(default_factory=list)
    applied_bonuses: Dict[str, AppliedBonus] = Field(default_factory=dict)

    # --- SKILLS ---
    skills: List[str] = Field(default_factory=list)
    skill_selections: Dict[str, List[str]] = Field(
        default_factory=dict, description="Choice group index -> skills picked for that group"
    )
    skill_grant: Optional[SkillGrant] = None
    skill_choices_needed: int = 0

    # --- SPELLS ---
    spells: List[str] = Field(default_factory=list)
    spell_limit: int = 0

    # --- PERKS ---
    perks: List[str] = Field(default_factory=list)
    class_perks: List[str] = Field(default_factory=list)
    perk_grants: List[Grant] = Field(default_factory=list)
    perk_choices: Dict[str, str] = Field(default_factory=dict)
    perk_skills: Dict[str, str] = Field(default_factory=dict)
    perk_stat_bonuses: Dict[str, int] = Field(default_factory=dict)
    perk_stat_sources: Dict[str, List[PerkStatSource]] = Field(default_factory=dict)
    show_all_perks: bool = False
    last_class_for_perks: Optional[str] = None

    # --- GEAR ---
    gear: List[str] = Field(default_factory=list)
    gear_cost_spent: float = 0
    gear_budget: float = 300

    # --- BOOKKEEPING ---
    timestamp: float = 0
    version: int = 0

    def final_stats(self) -> Dict[str, int]:
        """Base values plus applied builder bonuses and perk stat bonuses."""
        totals = {}
        for key in STAT_KEYS:
            total = self.assigned_stats.get(key) or 0
            for application in self.applied_bonuses.values():
                if application.target == key:
                    total += application.amount
            total += self.perk_stat_bonuses.get(key, 0)
            totals[key] = total
        return totals

    def fulfilled_perks(self) -> List[str]:
        return [g.fulfilled for g in self.perk_grants if g.fulfilled]

    def active_grant(self) -> Optional[Grant]:
        return next((g for g in self.perk_grants if not g.fulfilled), None)

    def perk_reset_updates(self) -> Dict[str, Any]:
        """Updates dropping every perk selection together with what its choices added."""
        chosen = set(self.perk_choices.values())
        return {
            "perks": [],
            "perk_grants": [],
            "perk_choices": {},
            "perk_skills": {},
            "perk_stat_bonuses": {},
            "perk_stat_sources": {},
            "last_class_for_perks": None,
            "skills": [s for s in self.skills if s not in self.perk_skills],
            "spells": [s for s in self.spells if s not in chosen],
        }
