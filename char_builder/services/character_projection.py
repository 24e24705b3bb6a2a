"""
Level-one character projection.

A small stand-in for the host's character rules engine: derives the preview
numbers the stats and perks steps display from stats, trained skills and the
selected class.
"""

import logging
import math
from typing import Dict, List, Optional

from char_builder.models.items import DerivedFields, Item
from char_builder.models.vocabulary import SKILL_STATS, WEAPON_SKILL_STATS, ItemType
from char_builder.services.collaborators import ItemResolver

logger = logging.getLogger(__name__)

# Dexterity threshold -> base speed
SPEED_TABLE = {0: 25, 2: 25, 4: 30, 6: 35}

BASE_INVENTORY_SLOTS = 8
LEVEL = 1


def skill_difficulty(stat_total: int, trained: bool) -> int:
    return 20 - (stat_total * 2 if trained else stat_total)


def speed_for(dexterity: int) -> int:
    speed = SPEED_TABLE[0]
    for threshold in sorted(SPEED_TABLE):
        if dexterity >= threshold:
            speed = SPEED_TABLE[threshold]
    return speed


class LevelOneProjector:
    def __init__(self, resolver: ItemResolver):
        self.resolver = resolver

    async def project_character(
        self, stats: Dict[str, int], trained_skills: List[str], item_refs: List[str]
    ) -> DerivedFields:
        class_item = await self._find_class(item_refs)
        might = stats.get("might", 0)
        dexterity = stats.get("dexterity", 0)

        derived = DerivedFields(
            hp=might * LEVEL,
            speed=speed_for(dexterity),
            inventory_capacity=BASE_INVENTORY_SLOTS + might,
        )

        if class_item and class_item.system.get("isSpellcaster"):
            casting_stat = class_item.system.get("castingStat") or "reason"
            derived.mana = (class_item.system.get("manaMultiplier") or 0) * LEVEL
            derived.casting_max = stats.get(casting_stat, 0) + math.ceil(LEVEL / 2)

        for skill, stat in {**SKILL_STATS, **WEAPON_SKILL_STATS}.items():
            derived.skill_difficulties[skill] = skill_difficulty(stats.get(stat, 0), skill in trained_skills)

        derived.save_difficulties = {
            "reflex": 20 - (dexterity + stats.get("awareness", 0)),
            "endure": 20 - (might + might),
            "will": 20 - (stats.get("reason", 0) + stats.get("presence", 0)),
        }
        return derived

    async def _find_class(self, item_refs: List[str]) -> Optional[Item]:
        for ref in item_refs:
            item = await self.resolver.resolve_item_ref(ref)
            if item is None:
                logger.warning(f"Projection skipped unresolved item {ref}")
                continue
            if item.type == ItemType.CLASS:
                return item
        return None
