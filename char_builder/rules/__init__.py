"""
Rules Package
=============
Pure building blocks for builder validation: the rule registry and its
predicates, budget and currency arithmetic, bonus conditions and dot-path
helpers. Nothing here mutates state or performs lookups.
"""

from char_builder.rules.budget import (
    calculate_budgets,
    gear_budget,
    pack_budget,
    reconcile_gear_spent,
    spells_budget,
    stats_budget,
)
from char_builder.rules.conditions import condition_met, condition_text
from char_builder.rules.currency import currency_to_units, format_cost, item_cost
from char_builder.rules.paths import get_path, path_root, set_path
from char_builder.rules.registry import RULES, Rule, get_rule, has_rule, list_rules
from char_builder.rules.validators import (
    RuleContext,
    selected_from_pool,
    state_value,
    step_complete_fallback,
    unsatisfied_skill_groups,
)

__all__ = [
    "calculate_budgets",
    "gear_budget",
    "pack_budget",
    "reconcile_gear_spent",
    "spells_budget",
    "stats_budget",
    "condition_met",
    "condition_text",
    "currency_to_units",
    "format_cost",
    "item_cost",
    "get_path",
    "path_root",
    "set_path",
    "RULES",
    "Rule",
    "get_rule",
    "has_rule",
    "list_rules",
    "RuleContext",
    "selected_from_pool",
    "state_value",
    "step_complete_fallback",
    "unsatisfied_skill_groups",
]
