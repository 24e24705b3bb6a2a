"""
Gear step.

Spending is tracked incrementally in ``gear_cost_spent``; ``reconcile`` sums
the gear list from scratch. The budget is a soft cap: going over is reported
as a warning and ``is_over`` rather than refused, unless the UI configuration
disallows it.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from char_builder.models.items import Item
from char_builder.models.results import ActionResult, ErrorKind
from char_builder.models.vocabulary import CATEGORY_ITEM_TYPES, ItemCategory, ItemType, StepId
from char_builder.rules.budget import add_cost, gear_budget, reconcile_gear_spent, remove_cost
from char_builder.rules.currency import cost_display, item_cost
from char_builder.steps.base import StepCore, StepRuntime

logger = logging.getLogger(__name__)

GEAR_TYPES = CATEGORY_ITEM_TYPES[ItemCategory.GEAR]


class GearAction(str, Enum):
    SELECT = "select"
    ADD = "add"
    REMOVE = "remove"
    CLEAR = "clear"
    RANDOMIZE = "randomize"


class GearStep:
    step_id = StepId.GEAR

    def __init__(self, runtime: StepRuntime):
        self.runtime = runtime
        self.core = StepCore(
            self.step_id,
            runtime,
            GearAction,
            {
                GearAction.SELECT: self.select,
                GearAction.ADD: self.add,
                GearAction.REMOVE: self.remove,
                GearAction.CLEAR: self.clear,
                GearAction.RANDOMIZE: self.randomize,
            },
        )

    async def activate(self) -> bool:
        return await self.core.activate()

    async def handle_action(self, action: Union[GearAction, str], **payload: Any) -> ActionResult:
        return await self.core.dispatch(action, payload)

    def is_complete(self) -> bool:
        return self.core.is_complete()

    def reset(self) -> bool:
        return self.core.reset()

    async def _gear_item(self, ref: Optional[str]) -> Union[Item, ActionResult]:
        item = await self.runtime.resolve(ref)
        if item is None:
            return ActionResult.fail(ErrorKind.NOT_FOUND, f"Item not found: {ref}")
        if item.type not in GEAR_TYPES:
            return ActionResult.fail(ErrorKind.WRONG_TYPE, f"{item.name} is not equipment")
        return item

    async def select(self, ref: Optional[str] = None) -> ActionResult:
        """Preview an item without adding it."""
        if not ref:
            return ActionResult.fail(ErrorKind.NO_SELECTION, "No item given")
        item = await self._gear_item(ref)
        if isinstance(item, ActionResult):
            return item
        return self.core.commit({"preview_uuid": ref}, f"Previewing {item.name}", cost=item_cost(item))

    async def add(self, ref: Optional[str] = None) -> ActionResult:
        if not ref:
            return ActionResult.fail(ErrorKind.NO_SELECTION, "No item given")
        if ref in self.runtime.snapshot().gear:
            return ActionResult.fail(ErrorKind.DUPLICATE, "Item already in gear")

        token = self.runtime.token.value
        item = await self._gear_item(ref)
        stale = self.core.stale(token)
        if stale:
            return stale
        if isinstance(item, ActionResult):
            return item

        cost = item_cost(item)
        state = self.runtime.snapshot()
        check = self.runtime.validator.validate_selection(ItemType.EQUIPMENT.value, ref, state, {"cost": cost})
        if not check.can_select:
            kind = ErrorKind.DUPLICATE if ref in state.gear else ErrorKind.LIMIT_REACHED
            return ActionResult.fail(kind, check.errors[0] if check.errors else "Item cannot be added")

        return self.core.commit(
            {
                "gear": state.gear + [ref],
                "gear_cost_spent": add_cost(state.gear_cost_spent, cost),
                "preview_uuid": ref,
            },
            f"Added {item.name}",
            check.warnings,
            cost=cost,
        )

    async def remove(self, ref: Optional[str] = None) -> ActionResult:
        if ref not in self.runtime.snapshot().gear:
            return ActionResult.fail(ErrorKind.NOT_FOUND, "Item not in gear")

        token = self.runtime.token.value
        item = await self.runtime.resolve(ref)
        kept = [g for g in self.runtime.snapshot().gear if g != ref]
        # Cost unknown; recount what stays
        recounted = reconcile_gear_spent(await self.runtime.resolve_many(kept)) if item is None else None
        stale = self.core.stale(token)
        if stale:
            return stale

        state = self.runtime.snapshot()
        if ref not in state.gear:
            return ActionResult.fail(ErrorKind.NOT_FOUND, "Item not in gear")
        cost = item_cost(item)
        if recounted is None:
            spent = remove_cost(state.gear_cost_spent, cost)
        else:
            logger.warning(f"Could not price {ref}; recounted gear spending")
            spent = recounted
        updates: Dict[str, Any] = {
            "gear": [g for g in state.gear if g != ref],
            "gear_cost_spent": spent,
        }
        if state.preview_uuid == ref:
            updates["preview_uuid"] = None
        return self.core.commit(updates, "Removed item", cost=cost)

    async def clear(self) -> ActionResult:
        return self.core.commit({"gear": [], "gear_cost_spent": 0, "preview_uuid": None}, "Cleared gear")

    async def randomize(self, **_: Any) -> ActionResult:
        """Fill the remaining budget cheapest-first with items not already owned."""
        settings = self.runtime.config.randomization_config(self.step_id)
        if not settings.enabled:
            return ActionResult.fail(ErrorKind.NOT_ALLOWED, "Gear randomization is disabled")

        token = self.runtime.token.value
        owned = set(self.runtime.snapshot().gear)
        candidates = [o.uuid for o in self.runtime.compendium.list_items_of_category(ItemCategory.GEAR.value)
                      if o.uuid not in owned]
        self.runtime.rng.shuffle(candidates)
        priced = [(item_cost(item), item.uuid) for item in await self.runtime.resolve_many(candidates)]
        stale = self.core.stale(token)
        if stale:
            return stale

        state = self.runtime.snapshot()
        spent = state.gear_cost_spent
        picks: List[str] = []
        # Stable sort keeps the shuffle order among equal prices
        for cost, ref in sorted(priced, key=lambda p: p[0]):
            if ref in state.gear or spent + cost > state.gear_budget:
                continue
            picks.append(ref)
            spent = add_cost(spent, cost)

        if not picks:
            return ActionResult.ok("Nothing affordable to add", picked=[])
        return self.core.commit(
            {"gear": state.gear + picks, "gear_cost_spent": spent},
            f"Added {len(picks)} item(s)",
            picked=picks,
        )

    async def reconcile(self) -> float:
        """Gear spending recomputed from the current gear list."""
        return reconcile_gear_spent(
            [await self.runtime.resolve(ref) for ref in self.runtime.snapshot().gear]
        )

    async def prepare_context(self) -> Dict[str, Any]:
        state = self.runtime.snapshot()
        context = self.core.base_context()
        context["options"] = [
            o.model_dump() for o in self.runtime.compendium.list_items_of_category(ItemCategory.GEAR.value)
        ]
        owned = await self.runtime.resolve_many(state.gear)
        context["gear"] = [
            {**item.summary().model_dump(), "cost": item_cost(item), "cost_display": cost_display(item)}
            for item in owned
        ]
        context["budget"] = gear_budget(state).model_dump()
        context["allow_over_budget"] = self.runtime.config.ui_config().behavior.allow_over_budget
        return context
