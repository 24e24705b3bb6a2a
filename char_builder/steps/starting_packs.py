import logging
import re
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from char_builder.models.items import Item, ItemSummary
from char_builder.models.results import ActionResult, ErrorKind
from char_builder.models.vocabulary import ItemCategory, ItemType, StepId
from char_builder.rules.budget import pack_budget
from char_builder.rules.currency import cost_display, format_cost
from char_builder.steps.base import StepCore, StepRuntime

logger = logging.getLogger(__name__)

# Weight given to packs a class's weight table does not list
DEFAULT_PACK_WEIGHT = 0.1


class StartingPackAction(str, Enum):
    SELECT = "select"
    REMOVE = "remove"
    RANDOMIZE = "randomize"


def pack_slug(name: str) -> str:
    return re.sub(r"\s+", "-", name.strip().lower())


class StartingPacksStep:
    step_id = StepId.STARTING_PACKS

    def __init__(self, runtime: StepRuntime):
        self.runtime = runtime
        self.core = StepCore(
            self.step_id,
            runtime,
            StartingPackAction,
            {
                StartingPackAction.SELECT: self.select,
                StartingPackAction.REMOVE: self.remove,
                StartingPackAction.RANDOMIZE: self.randomize,
            },
        )

    async def activate(self) -> bool:
        return await self.core.activate()

    async def handle_action(self, action: Union[StartingPackAction, str], **payload: Any) -> ActionResult:
        return await self.core.dispatch(action, payload)

    def is_complete(self) -> bool:
        return self.core.is_complete()

    def reset(self) -> bool:
        return self.core.reset()

    async def select(self, ref: Optional[str] = None) -> ActionResult:
        if not ref:
            return ActionResult.fail(ErrorKind.NO_SELECTION, "No starting pack given")

        token = self.runtime.token.value
        item = await self.runtime.resolve(ref)
        stale = self.core.stale(token)
        if stale:
            return stale
        if item is None:
            return ActionResult.fail(ErrorKind.NOT_FOUND, f"Starting pack not found: {ref}")
        if item.type != ItemType.STARTER_PACK:
            return ActionResult.fail(ErrorKind.WRONG_TYPE, f"{item.name} is not a starting pack")

        budget = pack_budget(item, self.runtime.default_gear_budget)
        return self.core.commit(
            {"selected_starting_pack": ref, "preview_uuid": ref, "gear_budget": budget},
            f"Selected {item.name}",
            pack=ref,
            gear_budget=budget,
        )

    async def remove(self) -> ActionResult:
        state = self.runtime.snapshot()
        if not state.selected_starting_pack:
            return ActionResult.fail(ErrorKind.NO_SELECTION, "No starting pack selected")
        updates: Dict[str, Any] = {
            "selected_starting_pack": None,
            "gear_budget": self.runtime.default_gear_budget,
        }
        if state.preview_uuid == state.selected_starting_pack:
            updates["preview_uuid"] = None
        return self.core.commit(updates, "Removed starting pack")

    async def randomize(self, **_: Any) -> ActionResult:
        settings = self.runtime.config.randomization_config(self.step_id)
        if not settings.enabled:
            return ActionResult.fail(ErrorKind.NOT_ALLOWED, "Starting pack randomization is disabled")

        options = self.runtime.compendium.list_items_of_category(ItemCategory.STARTING_PACKS.value)
        if not options:
            return ActionResult.fail(ErrorKind.NOT_FOUND, "No starting packs available")

        choice = None
        if settings.method == "class_appropriate":
            choice = await self._class_appropriate(options, settings.class_weights)
        if choice is None:
            choice = self.runtime.rng.choice(options)
        return await self.select(choice.uuid)

    async def _class_appropriate(
        self, options: List[ItemSummary], class_weights: Dict[str, Dict[str, float]]
    ) -> Optional[ItemSummary]:
        """Weighted pick using the selected class's pack weights; None falls back to uniform."""
        class_item = await self.runtime.resolve(self.runtime.snapshot().selected_class)
        if class_item is None:
            return None
        weights = class_weights.get(class_item.name.lower())
        if not weights:
            return None

        counts = [round(weights.get(pack_slug(o.name), DEFAULT_PACK_WEIGHT) * 100) for o in options]
        if sum(counts) <= 0:
            return None
        return self.runtime.rng.choices(options, weights=counts, k=1)[0]

    async def pack_contents(self, pack: Item) -> List[Dict[str, Any]]:
        """The pack's items with quantity, slots and cost. Unresolved entries are skipped."""
        contents = []
        for entry in pack.system.get("items", []):
            item = await self.runtime.resolve(entry.get("uuid"))
            if item is None:
                continue
            contents.append({
                "uuid": item.uuid,
                "name": item.name,
                "img": item.img,
                "type": item.type,
                "qty": entry.get("quantity") or 1,
                "slots": item.system.get("baseSlots") or 0,
                "cost_display": cost_display(item),
                "description": item.system.get("description", ""),
            })
        return contents

    async def prepare_context(self) -> Dict[str, Any]:
        state = self.runtime.snapshot()
        context = self.core.base_context()
        context["options"] = [
            o.model_dump() for o in self.runtime.compendium.list_items_of_category(ItemCategory.STARTING_PACKS.value)
        ]
        context["selected"] = state.selected_starting_pack

        shown = await self.runtime.resolve(state.preview_uuid or state.selected_starting_pack, ItemType.STARTER_PACK.value)
        if shown:
            context["pack"] = {
                "uuid": shown.uuid,
                "name": shown.name,
                "items": await self.pack_contents(shown),
                "currency": format_cost(shown.system.get("currency")),
                "starting_budget": pack_budget(shown, self.runtime.default_gear_budget),
            }
        else:
            context["pack"] = None
        return context
