from char_builder.models.builder_state import (
    AppliedBonus,
    BuilderState,
    Grant,
    PerkStatSource,
    SelectedValue,
    SkillChoice,
    SkillGrant,
    StatBonus,
    empty_stats,
)
from char_builder.models.items import CharacterAssignments, DerivedFields, Item, ItemSummary
from char_builder.models.results import (
    ActionResult,
    BudgetStatus,
    Budgets,
    ErrorKind,
    PrerequisiteCheck,
    ValidationResult,
)
from char_builder.models.vocabulary import (
    ItemCategory,
    ItemType,
    STAT_KEYS,
    STEP_ORDER,
    StepId,
)

__all__ = [
    "AppliedBonus",
    "BuilderState",
    "Grant",
    "PerkStatSource",
    "SelectedValue",
    "SkillChoice",
    "SkillGrant",
    "StatBonus",
    "empty_stats",
    "CharacterAssignments",
    "DerivedFields",
    "Item",
    "ItemSummary",
    "ActionResult",
    "BudgetStatus",
    "Budgets",
    "ErrorKind",
    "PrerequisiteCheck",
    "ValidationResult",
    "ItemCategory",
    "ItemType",
    "STAT_KEYS",
    "STEP_ORDER",
    "StepId",
]
