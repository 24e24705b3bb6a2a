"""
Stat bonus conditions.

A condition is a small expression over ``value`` (the stat's base value),
e.g. ``value <= 6``. ``always`` is accepted as a literal.
"""

import logging

from simpleeval import simple_eval

logger = logging.getLogger(__name__)

CONDITION_TEXT = {
    "always": "No restrictions",
    "value <= 6": "Can only apply to stats 6 or lower",
    "value < 7": "Can only apply to stats below 7",
    "value >= 5": "Can only apply to stats 5 or higher",
}


def condition_met(condition: str, value: int) -> bool:
    """Evaluate a bonus condition. Unknown or malformed conditions are not met."""
    if not condition:
        return False
    expr = condition.strip()
    if expr == "always":
        return True

    try:
        result = simple_eval(expr, names={"value": value})
    except Exception as e:
        logger.debug(f"Bonus condition '{condition}' could not be evaluated: {e}")
        return False
    return result is True


def condition_text(condition: str) -> str:
    return CONDITION_TEXT.get((condition or "").strip(), "")
