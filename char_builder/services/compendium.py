"""
In-memory compendium.

Serves item documents from a JSON file (a list of items, or ``{"items": [...]}``)
through the resolver and catalog interfaces the steps depend on.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from pydantic import ValidationError

from char_builder.models.items import Item, ItemSummary
from char_builder.models.vocabulary import CATEGORY_ITEM_TYPES, ItemCategory

logger = logging.getLogger(__name__)


class InMemoryCompendium:
    def __init__(self, items: Optional[Iterable[Union[Item, Dict[str, Any]]]] = None):
        self._items: Dict[str, Item] = {}
        self._loaded: Set[ItemCategory] = set()
        for item in items or []:
            self.add_item(item)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "InMemoryCompendium":
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        raw_items = data.get("items", []) if isinstance(data, dict) else data

        compendium = cls()
        for raw in raw_items:
            try:
                compendium.add_item(raw)
            except ValidationError as e:
                logger.warning(f"Skipping malformed compendium entry {raw.get('uuid', '?')}: {e}")
        logger.info(f"Loaded {len(compendium)} items from {path}")
        return compendium

    def __len__(self) -> int:
        return len(self._items)

    def add_item(self, item: Union[Item, Dict[str, Any]]) -> Item:
        if not isinstance(item, Item):
            item = Item.model_validate(item)
        self._items[item.uuid] = item
        return item

    async def resolve_item_ref(self, ref: str) -> Optional[Item]:
        # Yield once so callers see the same suspension points a remote store gives them
        await asyncio.sleep(0)
        item = self._items.get(ref)
        return item.model_copy(deep=True) if item else None

    async def ensure_data_loaded(self, categories: Iterable[str]) -> None:
        for category in categories:
            try:
                self._loaded.add(ItemCategory(category))
            except ValueError:
                logger.warning(f"Unknown compendium category requested: {category}")
        await asyncio.sleep(0)

    def is_loaded(self, category: str) -> bool:
        return ItemCategory(category) in self._loaded

    def list_items_of_category(
        self, category: str, filters: Optional[Dict[str, Any]] = None
    ) -> List[ItemSummary]:
        types = CATEGORY_ITEM_TYPES[ItemCategory(category)]
        matches = [
            item for item in self._items.values()
            if item.type in types and self._matches(item, filters or {})
        ]
        matches.sort(key=lambda i: i.name.lower())
        return [item.summary() for item in matches]

    @staticmethod
    def _matches(item: Item, filters: Dict[str, Any]) -> bool:
        for key, expected in filters.items():
            actual = getattr(item, key, None) if key in Item.model_fields else item.system.get(key)
            if actual != expected:
                return False
        return True
