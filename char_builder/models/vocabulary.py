"""
Builder Vocabulary
==================
The closed set of names the character builder works with.

Steps, stat keys, skill keys and the item categories the compendium serves
are fixed by the game system, so they live here as enums and constants
rather than in configuration.
"""

from enum import Enum
from typing import Dict, Tuple


# =============================================================================
# STEPS
# =============================================================================

class StepId(str, Enum):
    """One page of the builder wizard."""
    ANCESTRY = "ancestry"
    CLASS = "class"
    STATS = "stats"
    SPELLS = "spells"
    PERKS = "perks"
    STARTING_PACKS = "starting-packs"
    GEAR = "gear"


STEP_ORDER: Tuple[StepId, ...] = (
    StepId.ANCESTRY,
    StepId.CLASS,
    StepId.STATS,
    StepId.SPELLS,
    StepId.PERKS,
    StepId.STARTING_PACKS,
    StepId.GEAR,
)

# Steps that must be complete before a character can be finished
REQUIRED_STEPS: Tuple[StepId, ...] = (StepId.ANCESTRY, StepId.CLASS, StepId.STATS)


# =============================================================================
# STATS & SKILLS
# =============================================================================

STAT_KEYS: Tuple[str, ...] = (
    "might",
    "dexterity",
    "awareness",
    "reason",
    "presence",
    "luck",
)

STAT_ARRAY_LENGTH = len(STAT_KEYS)

# Bounds accepted for a single assigned (base) stat value
STAT_MIN = 2
STAT_MAX = 8

# No stat may exceed this after builder bonuses are applied
BONUS_CEILING = 7

SKILL_STATS: Dict[str, str] = {
    "arcana": "reason",
    "craft": "reason",
    "medicine": "reason",
    "brawl": "might",
    "finesse": "dexterity",
    "sneak": "dexterity",
    "detect": "awareness",
    "mysticism": "awareness",
    "survival": "awareness",
    "influence": "presence",
    "leadership": "presence",
    "performance": "presence",
}

SKILL_KEYS: Tuple[str, ...] = tuple(SKILL_STATS)

WEAPON_SKILL_STATS: Dict[str, str] = {
    "melee": "might",
    "brawl": "might",
    "finesse": "dexterity",
    "ranged": "awareness",
}

WEAPON_SKILL_KEYS: Tuple[str, ...] = tuple(WEAPON_SKILL_STATS)


# =============================================================================
# ITEMS
# =============================================================================

class ItemType(str, Enum):
    """Item document types the builder distinguishes."""
    ANCESTRY = "ancestry"
    CLASS = "class"
    SPELL = "spell"
    PERK = "perk"
    STARTER_PACK = "starterPack"
    EQUIPMENT = "equipment"


class ItemCategory(str, Enum):
    """Compendium categories a step can ask to be loaded or listed."""
    ANCESTRIES = "ancestries"
    CLASSES = "classes"
    SPELLS = "spells"
    PERKS = "perks"
    STARTING_PACKS = "startingPacks"
    GEAR = "gear"


CATEGORY_ITEM_TYPES: Dict[ItemCategory, Tuple[str, ...]] = {
    ItemCategory.ANCESTRIES: (ItemType.ANCESTRY.value,),
    ItemCategory.CLASSES: (ItemType.CLASS.value,),
    ItemCategory.SPELLS: (ItemType.SPELL.value,),
    ItemCategory.PERKS: (ItemType.PERK.value,),
    ItemCategory.STARTING_PACKS: (ItemType.STARTER_PACK.value,),
    ItemCategory.GEAR: (ItemType.EQUIPMENT.value, "weapon", "armor", "gear"),
}
