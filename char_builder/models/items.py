from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class Item(BaseModel):
    """An item document as resolved by the host's compendium."""

    uuid: str = Field(..., description="Opaque reference, e.g. 'Compendium.vagabond.perks.Item.abc'.")
    name: str
    type: str
    img: Optional[str] = None
    system: Dict[str, Any] = Field(
        default_factory=dict,
        description="Type-specific data: traits, levelFeatures, skillGrant, cost, currency, ...",
    )

    def summary(self) -> "ItemSummary":
        return ItemSummary(uuid=self.uuid, name=self.name, type=self.type, img=self.img)


class ItemSummary(BaseModel):
    uuid: str
    name: str
    type: str
    img: Optional[str] = None


class DerivedFields(BaseModel):
    """Numbers the character rules engine derives from stats, skills and items."""

    hp: int = 0
    mana: int = 0
    casting_max: int = 0
    speed: int = 0
    inventory_capacity: int = 0
    skill_difficulties: Dict[str, int] = Field(default_factory=dict)
    save_difficulties: Dict[str, int] = Field(default_factory=dict)


class CharacterAssignments(BaseModel):
    """The builder's output: everything that survives past the session."""

    stats: Dict[str, int]
    trained_skills: List[str] = Field(default_factory=list)
    item_refs: List[str] = Field(default_factory=list)
    perk_choices: Dict[str, str] = Field(default_factory=dict)
    constructed: bool = True
