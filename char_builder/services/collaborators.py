"""
External collaborators the builder core calls but does not own.

The host application supplies implementations; ``InMemoryCompendium`` and
``LevelOneProjector`` are the reference ones used by ``main.py`` and tests.
"""

from typing import Any, Dict, Iterable, List, Optional, Protocol, runtime_checkable

from char_builder.models.items import CharacterAssignments, DerivedFields, Item, ItemSummary


@runtime_checkable
class ItemResolver(Protocol):
    async def resolve_item_ref(self, ref: str) -> Optional[Item]:
        """Resolve an item reference. None when the item cannot be found."""
        ...


@runtime_checkable
class ItemCatalog(Protocol):
    async def ensure_data_loaded(self, categories: Iterable[str]) -> None:
        ...

    def list_items_of_category(
        self, category: str, filters: Optional[Dict[str, Any]] = None
    ) -> List[ItemSummary]:
        ...


class Compendium(ItemResolver, ItemCatalog, Protocol):
    """Resolver and catalog in one, as a host compendium usually is."""


@runtime_checkable
class CharacterProjector(Protocol):
    async def project_character(
        self, stats: Dict[str, int], trained_skills: List[str], item_refs: List[str]
    ) -> DerivedFields:
        ...


@runtime_checkable
class CharacterCommitter(Protocol):
    async def commit_character(self, assignments: CharacterAssignments) -> None:
        ...
