"""
Budget Calculator
=================
Pure derivations of the stats, spells and gear budgets from a state snapshot.

Gear spending is tracked incrementally on the state (``gear_cost_spent``);
``reconcile_gear_spent`` recomputes the same figure from scratch.
"""

from typing import Iterable, Optional

from char_builder.models.builder_state import BuilderState
from char_builder.models.items import Item
from char_builder.models.results import Budgets, BudgetStatus
from char_builder.rules.currency import currency_to_units, item_cost, round_units

DEFAULT_STATS_BUDGET = 27
DEFAULT_GEAR_BUDGET = 300


def stats_budget(state: BuilderState, total: int = DEFAULT_STATS_BUDGET) -> BudgetStatus:
    # Array assignment spends nothing; the budget only matters for point-buy variants
    return BudgetStatus.of(total, 0)


def spells_budget(state: BuilderState) -> BudgetStatus:
    return BudgetStatus.of(state.spell_limit, len(state.spells))


def gear_budget(state: BuilderState) -> BudgetStatus:
    return BudgetStatus.of(state.gear_budget, state.gear_cost_spent)


def calculate_budgets(state: BuilderState, stats_total: int = DEFAULT_STATS_BUDGET) -> Budgets:
    return Budgets(
        stats=stats_budget(state, stats_total),
        spells=spells_budget(state),
        gear=gear_budget(state),
    )


def pack_budget(pack: Optional[Item], default: float = DEFAULT_GEAR_BUDGET) -> float:
    """Gear budget granted by a starting pack's currency, or the default."""
    if pack is None or not pack.system.get("currency"):
        return default
    return currency_to_units(pack.system["currency"])


def add_cost(spent: float, cost: float) -> float:
    return round_units(spent + cost)


def remove_cost(spent: float, cost: float) -> float:
    return max(0, round_units(spent - cost))


def reconcile_gear_spent(items: Iterable[Optional[Item]]) -> float:
    """From-scratch gear total. Unresolved items count as zero."""
    total = 0.0
    for item in items:
        total += item_cost(item)
    return round_units(total)
