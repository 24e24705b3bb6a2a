"""
Rule Registry
=============
Maps rule-type names to their predicates. Validation rules, step completion
criteria and step prerequisites in the configuration all name entries here.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Literal

from char_builder.config.builder_config import RuleSpec
from char_builder.models.builder_state import BuilderState
from char_builder.models.results import ValidationResult
from char_builder.rules.validators import (
    RuleContext,
    validate_all_assigned,
    validate_bonuses_applied,
    validate_has_selection,
    validate_no_duplicates,
    validate_no_duplicates_unless_allowed,
    validate_optional,
    validate_perks_selected,
    validate_prerequisites_met,
    validate_required,
    validate_single_selection,
    validate_skills_assigned,
    validate_spell_limit_met,
    validate_spellcaster_only,
    validate_step_complete,
    validate_uuid,
    validate_valid_equipment,
    validate_valid_pack,
    validate_valid_perks,
    validate_valid_spells,
    validate_valid_values,
    validate_within_budget,
    validate_within_limit,
)

Predicate = Callable[[RuleSpec, BuilderState, RuleContext], ValidationResult]


@dataclass
class Rule:
    """
    A registered rule type.

    Attributes:
        type: Name used in configuration (e.g. "skills_assigned")
        check: Predicate (rule, state, context) -> ValidationResult
        severity: Default severity when the configured rule names none
    """
    type: str
    check: Predicate
    severity: Literal["error", "warning"] = "error"


RULES: Dict[str, Rule] = {
    rule.type: rule
    for rule in (
        Rule("required", validate_required),
        Rule("valid_uuid", validate_uuid),
        Rule("all_assigned", validate_all_assigned),
        Rule("all_stats_assigned", validate_all_assigned),
        Rule("valid_values", validate_valid_values),
        Rule("within_limit", validate_within_limit),
        Rule("within_spell_limit", validate_within_limit),
        Rule("spell_limit_met", validate_spell_limit_met),
        Rule("within_budget", validate_within_budget),
        Rule("prerequisites_met", validate_prerequisites_met, "warning"),
        Rule("step_complete", validate_step_complete),
        Rule("has_selection", validate_has_selection),
        Rule("no_duplicates", validate_no_duplicates),
        Rule("optional", validate_optional),
        Rule("valid_spells", validate_valid_spells),
        Rule("spellcaster_only", validate_spellcaster_only, "warning"),
        Rule("valid_perks", validate_valid_perks),
        Rule("valid_pack", validate_valid_pack),
        Rule("single_selection", validate_single_selection),
        Rule("valid_equipment", validate_valid_equipment),
        Rule("no_duplicates_unless_allowed", validate_no_duplicates_unless_allowed, "warning"),
        Rule("skills_assigned", validate_skills_assigned),
        Rule("perks_selected", validate_perks_selected),
        Rule("bonuses_applied", validate_bonuses_applied),
    )
}


def get_rule(rule_type: str) -> Rule:
    """
    Get a rule by type name.

    Raises:
        KeyError: If rule_type is not registered
    """
    if rule_type not in RULES:
        raise KeyError(f"Unknown rule type: {rule_type}")
    return RULES[rule_type]


def has_rule(rule_type: str) -> bool:
    return rule_type in RULES


def list_rules(severity: str = None) -> List[str]:
    if severity is None:
        return list(RULES.keys())
    return [r.type for r in RULES.values() if r.severity == severity]
