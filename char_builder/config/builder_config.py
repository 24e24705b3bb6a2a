"""
Builder Configuration System
============================
Keeps the builder's tunable data (step metadata, stat arrays, validation
rules, prerequisites, randomization and UI behavior) outside the code.

Each section is a pydantic model. ``load()`` reads ``<section>.json`` from the
configured directory when it exists and falls back to the built-in defaults
for any section that is missing or does not validate.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from char_builder.models.vocabulary import STAT_ARRAY_LENGTH, STAT_KEYS, ItemCategory, StepId

logger = logging.getLogger(__name__)

SectionT = TypeVar("SectionT", bound=BaseModel)


# =============================================================================
# SECTION MODELS
# =============================================================================


class RuleSpec(BaseModel):
    """A rule, completion criterion or prerequisite, resolved through the rule registry."""

    model_config = ConfigDict(extra="allow")

    type: str
    message: Optional[str] = None
    severity: Optional[str] = None
    path: Optional[str] = None
    step: Optional[StepId] = None
    perk_limit: Optional[int] = None


class StepConfig(BaseModel):
    display_name: str
    order: int
    required_data: List[ItemCategory] = Field(default_factory=list)
    actions: List[str] = Field(default_factory=list)
    completion_criteria: List[RuleSpec] = Field(default_factory=list)


class StepsConfig(BaseModel):
    order: List[StepId]
    steps: Dict[StepId, StepConfig]


class StatsConfig(BaseModel):
    arrays: Dict[str, List[int]]
    stat_names: List[str] = Field(default_factory=lambda: list(STAT_KEYS))
    default_budget: int = Field(27, ge=0)

    @field_validator("arrays")
    @classmethod
    def _check_arrays(cls, arrays: Dict[str, List[int]]) -> Dict[str, List[int]]:
        for array_id, values in arrays.items():
            if not array_id.isdigit():
                raise ValueError(f"Stat array id '{array_id}' must be numeric")
            if len(values) != STAT_ARRAY_LENGTH:
                raise ValueError(f"Stat array {array_id} must hold {STAT_ARRAY_LENGTH} values")
            if any(v < 1 or v > 8 for v in values):
                raise ValueError(f"Stat array {array_id} values must lie in 1..8")
        return arrays


class ValidationConfig(BaseModel):
    rules: Dict[str, List[RuleSpec]] = Field(default_factory=dict)
    prerequisites: Dict[StepId, List[RuleSpec]] = Field(default_factory=dict)


class StepRandomization(BaseModel):
    model_config = ConfigDict(extra="allow")

    enabled: bool = True
    method: str = "equal"
    weights: Union[str, Dict[str, float]] = "equal"
    class_weights: Dict[str, Dict[str, float]] = Field(default_factory=dict)
    auto_assign: bool = False


class FullCharacterRandomization(BaseModel):
    enabled: bool = True
    steps: List[StepId] = Field(default_factory=list)
    auto_assign_stats: bool = True


class RandomizationConfig(BaseModel):
    steps: Dict[StepId, StepRandomization] = Field(default_factory=dict)
    full_character: FullCharacterRandomization = Field(default_factory=FullCharacterRandomization)


class UIBehavior(BaseModel):
    auto_preview: bool = True
    confirm_clear_tray: bool = True
    show_prerequisite_warnings: bool = True
    allow_over_budget: bool = True
    search_enabled: bool = True


class UIConfig(BaseModel):
    layout: Dict[str, Any] = Field(default_factory=dict)
    behavior: UIBehavior = Field(default_factory=UIBehavior)


# =============================================================================
# BUILT-IN DEFAULTS
# =============================================================================


DEFAULT_STEPS: Dict[str, Any] = {
    "order": ["ancestry", "class", "stats", "spells", "perks", "starting-packs", "gear"],
    "steps": {
        "ancestry": {
            "display_name": "Choose Ancestry",
            "order": 1,
            "required_data": ["ancestries"],
            "actions": ["select", "randomize"],
            "completion_criteria": [{"type": "has_selection", "path": "selected_ancestry"}],
        },
        "class": {
            "display_name": "Choose Class",
            "order": 2,
            "required_data": ["classes", "perks"],
            "actions": ["select", "toggle_skill", "randomize"],
            "completion_criteria": [
                {"type": "has_selection", "path": "selected_class"},
                {"type": "skills_assigned"},
            ],
        },
        "stats": {
            "display_name": "Assign Stats",
            "order": 3,
            "required_data": [],
            "actions": ["select_array", "pick_value", "assign_stat", "reset_stats", "randomize"],
            "completion_criteria": [
                {"type": "has_selection", "path": "selected_array_id"},
                {"type": "all_stats_assigned"},
                {"type": "bonuses_applied"},
            ],
        },
        "spells": {
            "display_name": "Choose Spells",
            "order": 4,
            "required_data": ["spells"],
            "actions": ["add", "remove", "clear", "randomize"],
            "completion_criteria": [{"type": "spell_limit_met"}],
        },
        "perks": {
            "display_name": "Choose Perks",
            "order": 5,
            "required_data": ["perks", "spells"],
            "actions": ["add", "remove", "clear", "toggle_show_all"],
            "completion_criteria": [{"type": "optional"}],
        },
        "starting-packs": {
            "display_name": "Choose Starting Pack",
            "order": 6,
            "required_data": ["startingPacks"],
            "actions": ["select", "remove", "randomize"],
            "completion_criteria": [{"type": "optional"}],
        },
        "gear": {
            "display_name": "Choose Gear",
            "order": 7,
            "required_data": ["gear"],
            "actions": ["add", "remove", "clear", "randomize"],
            "completion_criteria": [{"type": "optional"}],
        },
    },
}

DEFAULT_STATS: Dict[str, Any] = {
    "arrays": {
        "1": [5, 5, 5, 4, 4, 3],
        "2": [5, 5, 5, 5, 3, 2],
        "3": [6, 5, 4, 4, 4, 3],
        "4": [6, 5, 5, 4, 3, 2],
        "5": [6, 6, 4, 3, 3, 3],
        "6": [6, 6, 4, 4, 3, 2],
        "7": [6, 6, 5, 3, 2, 2],
        "8": [7, 4, 4, 4, 4, 2],
        "9": [7, 4, 4, 4, 3, 3],
        "10": [7, 5, 4, 3, 3, 2],
        "11": [7, 5, 5, 2, 2, 2],
        "12": [7, 6, 4, 2, 2, 2],
    },
    "stat_names": list(STAT_KEYS),
    "default_budget": 27,
}

DEFAULT_VALIDATION: Dict[str, Any] = {
    "rules": {
        "ancestry_selection": [
            {"type": "required", "message": "Ancestry selection is required"},
            {"type": "valid_uuid", "message": "Ancestry reference must be a non-empty string"},
        ],
        "class_selection": [
            {"type": "required", "message": "Class selection is required"},
            {"type": "skills_assigned", "message": "All class skill choices must be made"},
        ],
        "stat_assignment": [
            {"type": "all_assigned", "message": "All stats must be assigned"},
            {"type": "valid_values", "message": "Stat values must be from selected array"},
            {
                "type": "no_duplicates_unless_allowed",
                "severity": "warning",
                "message": "Duplicate stat values assigned",
            },
        ],
        "spell_selection": [
            {"type": "within_limit", "message": "Cannot exceed spell limit for class level"},
            {"type": "valid_spells", "message": "Selected spells must be valid"},
            {"type": "spellcaster_only", "severity": "warning", "message": "Only spellcasters learn spells"},
        ],
        "perk_selection": [
            {"type": "prerequisites_met", "severity": "warning", "message": "Perk prerequisites must be met"},
            {"type": "valid_perks", "message": "Selected perks must be valid"},
            {"type": "no_duplicates", "message": "Duplicate selections detected"},
        ],
        "pack_selection": [
            {"type": "valid_pack", "message": "Starting pack reference must be valid"},
            {"type": "single_selection", "message": "Only one starting pack may be selected"},
        ],
        "gear_selection": [
            {"type": "valid_equipment", "message": "Selected gear must be valid"},
            {"type": "within_budget", "severity": "warning", "message": "Gear selection is over budget"},
        ],
    },
    "prerequisites": {
        "ancestry": [],
        "class": [{"type": "step_complete", "step": "ancestry"}],
        "stats": [
            {"type": "step_complete", "step": "ancestry"},
            {"type": "step_complete", "step": "class"},
        ],
        "spells": [{"type": "step_complete", "step": "stats"}],
        "perks": [{"type": "step_complete", "step": "stats"}],
        "starting-packs": [{"type": "step_complete", "step": "stats"}],
        "gear": [{"type": "step_complete", "step": "stats"}],
    },
}

DEFAULT_RANDOMIZATION: Dict[str, Any] = {
    "steps": {
        "ancestry": {"enabled": True, "method": "equal"},
        "class": {"enabled": True, "method": "equal"},
        "stats": {"enabled": True, "method": "equal", "auto_assign": False},
        "spells": {"enabled": True, "method": "fill_to_limit"},
        "starting-packs": {"enabled": True, "method": "class_appropriate", "class_weights": {}},
        "gear": {"enabled": True, "method": "cheapest_first"},
    },
    "full_character": {
        "enabled": True,
        "steps": ["ancestry", "class", "stats", "spells", "starting-packs"],
        "auto_assign_stats": True,
    },
}

DEFAULT_UI: Dict[str, Any] = {
    "layout": {"tray_steps": ["perks", "spells", "gear"], "max_tray_items": 8},
    "behavior": {
        "auto_preview": True,
        "confirm_clear_tray": True,
        "show_prerequisite_warnings": True,
        "allow_over_budget": True,
        "search_enabled": True,
    },
}


# =============================================================================
# CONFIGURATION SYSTEM
# =============================================================================


class ConfigurationSystem:
    """Loads and serves the builder configuration sections."""

    SECTIONS: Dict[str, Any] = {
        "steps": (StepsConfig, DEFAULT_STEPS),
        "stats": (StatsConfig, DEFAULT_STATS),
        "validation": (ValidationConfig, DEFAULT_VALIDATION),
        "randomization": (RandomizationConfig, DEFAULT_RANDOMIZATION),
        "ui": (UIConfig, DEFAULT_UI),
    }

    def __init__(self, config_dir: Optional[Union[str, Path]] = None):
        self.config_dir = Path(config_dir) if config_dir else None
        self._sections: Dict[str, BaseModel] = {}
        self.loaded = False

    @classmethod
    def with_defaults(cls) -> "ConfigurationSystem":
        system = cls()
        system.load()
        return system

    def load(self) -> None:
        if self.loaded:
            return
        for name, (model, fallback) in self.SECTIONS.items():
            self._sections[name] = self._load_section(name, model, fallback)
        self.loaded = True
        logger.info(f"Builder configuration loaded ({'defaults' if not self.config_dir else self.config_dir})")

    def reload(self) -> None:
        self._sections.clear()
        self.loaded = False
        self.load()

    def _load_section(self, name: str, model: Type[SectionT], fallback: Dict[str, Any]) -> SectionT:
        if self.config_dir:
            path = self.config_dir / f"{name}.json"
            if path.exists():
                try:
                    with open(path, "r", encoding="utf-8") as f:
                        return model.model_validate(json.load(f))
                except (OSError, json.JSONDecodeError, ValidationError) as e:
                    logger.error(f"Invalid {name} configuration in {path}, using defaults: {e}")
            else:
                logger.debug(f"No {path}, using default {name} configuration")
        return model.model_validate(fallback)

    def _ensure_loaded(self) -> None:
        if not self.loaded:
            raise RuntimeError("Configurations not loaded. Call load() first.")

    def _section(self, name: str) -> Any:
        self._ensure_loaded()
        return self._sections[name]

    # -------------------------------------------------------------------------
    # Getters
    # -------------------------------------------------------------------------

    def step_order(self) -> List[StepId]:
        return list(self._section("steps").order)

    def step_config(self, step: Union[StepId, str]) -> Optional[StepConfig]:
        return self._section("steps").steps.get(StepId(step))

    def all_step_configs(self) -> Dict[StepId, StepConfig]:
        return dict(self._section("steps").steps)

    def stats_config(self) -> StatsConfig:
        return self._section("stats")

    def stat_arrays(self) -> Dict[str, List[int]]:
        return dict(self._section("stats").arrays)

    def validation_rules(self, category: Optional[str] = None) -> Any:
        rules = self._section("validation").rules
        if category is None:
            return dict(rules)
        return list(rules.get(category, []))

    def step_prerequisites(self, step: Union[StepId, str]) -> List[RuleSpec]:
        return list(self._section("validation").prerequisites.get(StepId(step), []))

    def randomization_config(self, step: Union[StepId, str]) -> StepRandomization:
        return self._section("randomization").steps.get(StepId(step)) or StepRandomization()

    def full_character_randomization(self) -> FullCharacterRandomization:
        return self._section("randomization").full_character

    def ui_config(self) -> UIConfig:
        return self._section("ui")
