import logging
from enum import Enum
from typing import Any, Dict, Optional, Union

from char_builder.models.results import ActionResult, ErrorKind
from char_builder.models.vocabulary import ItemCategory, ItemType, StepId
from char_builder.steps.base import StepCore, StepRuntime, pick_random_option

logger = logging.getLogger(__name__)


class AncestryAction(str, Enum):
    SELECT = "select"
    RANDOMIZE = "randomize"


class AncestryStep:
    step_id = StepId.ANCESTRY

    def __init__(self, runtime: StepRuntime):
        self.runtime = runtime
        self.core = StepCore(
            self.step_id,
            runtime,
            AncestryAction,
            {
                AncestryAction.SELECT: self.select,
                AncestryAction.RANDOMIZE: self.randomize,
            },
        )

    async def activate(self) -> bool:
        return await self.core.activate()

    async def handle_action(self, action: Union[AncestryAction, str], **payload: Any) -> ActionResult:
        return await self.core.dispatch(action, payload)

    def is_complete(self) -> bool:
        return self.core.is_complete()

    def reset(self) -> bool:
        return self.core.reset()

    async def select(self, ref: Optional[str] = None) -> ActionResult:
        if not ref:
            return ActionResult.fail(ErrorKind.NO_SELECTION, "No ancestry given")

        token = self.runtime.token.value
        item = await self.runtime.resolve(ref)
        stale = self.core.stale(token)
        if stale:
            return stale
        if item is None:
            return ActionResult.fail(ErrorKind.NOT_FOUND, f"Ancestry not found: {ref}")
        if item.type != ItemType.ANCESTRY:
            return ActionResult.fail(ErrorKind.WRONG_TYPE, f"{item.name} is not an ancestry")

        # Perk grants are re-derived and merged when the perks step next opens
        updates: Dict[str, Any] = {"selected_ancestry": ref, "preview_uuid": ref}
        return self.core.commit(updates, f"Selected ancestry {item.name}", ancestry=ref)

    async def randomize(self, **_: Any) -> ActionResult:
        settings = self.runtime.config.randomization_config(self.step_id)
        if not settings.enabled:
            return ActionResult.fail(ErrorKind.NOT_ALLOWED, "Ancestry randomization is disabled")
        ref = pick_random_option(self.runtime, ItemCategory.ANCESTRIES.value)
        if ref is None:
            return ActionResult.fail(ErrorKind.NOT_FOUND, "No ancestries available")
        return await self.select(ref)

    async def prepare_context(self) -> Dict[str, Any]:
        state = self.runtime.snapshot()
        context = self.core.base_context()
        context["options"] = [
            o.model_dump() for o in self.runtime.compendium.list_items_of_category(ItemCategory.ANCESTRIES.value)
        ]
        context["selected"] = state.selected_ancestry

        item = await self.runtime.resolve(state.preview_uuid or state.selected_ancestry, ItemType.ANCESTRY.value)
        context["traits"] = [
            {
                "name": t.get("name", ""),
                "description": t.get("description", ""),
                "stat_bonus_points": t.get("statBonusPoints", 0),
                "perk_amount": t.get("perkAmount", 0),
            }
            for t in (item.system.get("traits", []) if item else [])
        ]
        context["size"] = item.system.get("size") if item else None
        return context
