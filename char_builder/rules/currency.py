"""
Currency arithmetic.

All amounts are expressed in silver, the smallest unit the gear budget
tracks: 1 gold = 100 silver, 1 copper = 0.1 silver.
"""

from typing import Any, Dict, Optional

from char_builder.models.items import Item

GOLD_IN_SILVER = 100
COPPER_IN_SILVER = 0.1
COPPER_PER_SILVER = 10


def round_units(amount: float) -> float:
    # Copper fractions accumulate float noise over long add/remove sequences
    return round(amount, 2)


def currency_to_units(currency: Optional[Dict[str, Any]]) -> float:
    if not currency:
        return 0
    gold = currency.get("gold") or 0
    silver = currency.get("silver") or 0
    copper = currency.get("copper") or 0
    return round_units(gold * GOLD_IN_SILVER + silver + copper * COPPER_IN_SILVER)


def item_cost(item: Optional[Item]) -> float:
    """
    Cost of an item in silver.

    Reads ``system.cost``, then ``system.baseCost``, then ``system.currency``.
    A currency object is converted; a bare number is a copper amount.
    """
    if item is None or not item.system:
        return 0

    cost = item.system.get("cost") or item.system.get("baseCost") or item.system.get("currency")
    if not cost:
        return 0
    if isinstance(cost, dict):
        return currency_to_units(cost)
    if isinstance(cost, (int, float)) and not isinstance(cost, bool):
        return round_units(cost * COPPER_IN_SILVER)
    return 0


def format_cost(currency: Optional[Dict[str, Any]]) -> str:
    """Render a currency object as e.g. '2g 5s'."""
    if not currency:
        return "0s"
    parts = []
    for key, suffix in (("gold", "g"), ("silver", "s"), ("copper", "c")):
        amount = currency.get(key) or 0
        if amount:
            parts.append(f"{amount}{suffix}")
    return " ".join(parts) or "0s"


def units_to_currency(units: float) -> Dict[str, int]:
    """Split a silver amount back into gold, silver and copper."""
    per_silver = COPPER_PER_SILVER
    per_gold = GOLD_IN_SILVER * per_silver
    copper_total = int(round(units * per_silver))
    return {
        "gold": copper_total // per_gold,
        "silver": (copper_total % per_gold) // per_silver,
        "copper": copper_total % per_silver,
    }


def cost_display(item: Optional[Item]) -> str:
    return format_cost(units_to_currency(item_cost(item)))
