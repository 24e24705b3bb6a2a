import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from char_builder.models.builder_state import BuilderState
from char_builder.models.results import ActionResult, ErrorKind
from char_builder.models.vocabulary import ItemCategory, ItemType, StepId
from char_builder.steps.base import StepCore, StepRuntime

logger = logging.getLogger(__name__)


class SpellsAction(str, Enum):
    ADD = "add"
    REMOVE = "remove"
    CLEAR = "clear"
    RANDOMIZE = "randomize"


def perk_spells(state: BuilderState) -> List[str]:
    """Spells that entered the list through a perk choice."""
    return [s for s in state.perk_choices.values() if s in state.spells]


class SpellsStep:
    """
    Spell selection up to the class's level-1 limit.

    Required spells (from ancestry traits, class features and held perks) are
    injected on activation and cannot be removed; clearing or randomizing only
    touches the free picks.
    """

    step_id = StepId.SPELLS

    def __init__(self, runtime: StepRuntime):
        self.runtime = runtime
        self.core = StepCore(
            self.step_id,
            runtime,
            SpellsAction,
            {
                SpellsAction.ADD: self.add,
                SpellsAction.REMOVE: self.remove,
                SpellsAction.CLEAR: self.clear,
                SpellsAction.RANDOMIZE: self.randomize,
            },
        )

    async def activate(self) -> bool:
        if not await self.core.activate():
            return False
        return await self.inject_required()

    async def handle_action(self, action: Union[SpellsAction, str], **payload: Any) -> ActionResult:
        return await self.core.dispatch(action, payload)

    def is_complete(self) -> bool:
        return self.core.is_complete()

    def reset(self) -> bool:
        return self.core.reset()

    async def inject_required(self) -> bool:
        token = self.runtime.token.value
        required = await self.runtime.collect_required_spells(self.runtime.snapshot())
        if self.runtime.is_stale(token):
            return False

        state = self.runtime.snapshot()
        spells = list(dict.fromkeys(state.spells + required))
        if spells == state.spells:
            return True
        logger.info(f"Added {len(spells) - len(state.spells)} required spell(s)")
        return self.runtime.state.update_state("spells", spells, skip_history=True)

    async def add(self, ref: Optional[str] = None) -> ActionResult:
        if not ref:
            return ActionResult.fail(ErrorKind.NO_SELECTION, "No spell given")

        check = self.runtime.validator.validate_selection(ItemType.SPELL.value, ref, self.runtime.snapshot())
        if not check.can_select:
            return self._rejected(check.errors)

        token = self.runtime.token.value
        item = await self.runtime.resolve(ref)
        stale = self.core.stale(token)
        if stale:
            return stale
        if item is None:
            return ActionResult.fail(ErrorKind.NOT_FOUND, f"Spell not found: {ref}")
        if item.type != ItemType.SPELL:
            return ActionResult.fail(ErrorKind.WRONG_TYPE, f"{item.name} is not a spell")

        # A second add may have landed while the lookup was in flight
        state = self.runtime.snapshot()
        check = self.runtime.validator.validate_selection(ItemType.SPELL.value, ref, state)
        if not check.can_select:
            return self._rejected(check.errors)

        return self.core.commit(
            {"spells": state.spells + [ref], "preview_uuid": ref}, f"Added {item.name}", check.warnings
        )

    def _rejected(self, errors: List[str]) -> ActionResult:
        message = errors[0] if errors else "Spell cannot be selected"
        kind = ErrorKind.DUPLICATE if "already" in message else ErrorKind.LIMIT_REACHED
        return ActionResult.fail(kind, message)

    async def remove(self, ref: Optional[str] = None) -> ActionResult:
        state = self.runtime.snapshot()
        if ref not in state.spells:
            return ActionResult.fail(ErrorKind.NOT_FOUND, "Spell not in selection")

        token = self.runtime.token.value
        required = await self.runtime.collect_required_spells(state)
        stale = self.core.stale(token)
        if stale:
            return stale
        if ref in required:
            return ActionResult.fail(ErrorKind.PROTECTED, "Cannot remove required spell")
        if ref in perk_spells(state):
            return ActionResult.fail(ErrorKind.PROTECTED, "This spell comes from a perk; remove the perk instead")

        state = self.runtime.snapshot()
        updates: Dict[str, Any] = {"spells": [s for s in state.spells if s != ref]}
        if state.preview_uuid == ref:
            updates["preview_uuid"] = None
        return self.core.commit(updates, "Removed spell")

    async def clear(self) -> ActionResult:
        token = self.runtime.token.value
        kept = await self._kept_spells()
        stale = self.core.stale(token)
        if stale:
            return stale
        return self.core.commit({"spells": kept, "preview_uuid": None}, "Cleared spell selection", kept=kept)

    async def _kept_spells(self) -> List[str]:
        state = self.runtime.snapshot()
        required = await self.runtime.collect_required_spells(state)
        state = self.runtime.snapshot()
        return list(dict.fromkeys(required + perk_spells(state)))

    async def randomize(self, **_: Any) -> ActionResult:
        settings = self.runtime.config.randomization_config(self.step_id)
        if not settings.enabled:
            return ActionResult.fail(ErrorKind.NOT_ALLOWED, "Spell randomization is disabled")

        token = self.runtime.token.value
        kept = await self._kept_spells()
        stale = self.core.stale(token)
        if stale:
            return stale

        state = self.runtime.snapshot()
        free_slots = max(0, state.spell_limit - len(kept))
        options = [
            o.uuid for o in self.runtime.compendium.list_items_of_category(ItemCategory.SPELLS.value)
            if o.uuid not in kept
        ]
        self.runtime.rng.shuffle(options)
        picks = options[:free_slots]
        return self.core.commit({"spells": kept + picks}, f"Randomized {len(picks)} spell(s)", picked=picks)

    async def prepare_context(self) -> Dict[str, Any]:
        state = self.runtime.snapshot()
        context = self.core.base_context()
        required = await self.runtime.collect_required_spells(state)
        selected = set(state.spells)

        context["options"] = [
            {**o.model_dump(), "selected": o.uuid in selected, "required": o.uuid in required}
            for o in self.runtime.compendium.list_items_of_category(ItemCategory.SPELLS.value)
        ]
        context["selected_spells"] = list(state.spells)
        context["required_spells"] = required
        context["spell_limit"] = state.spell_limit
        context["current_count"] = len(state.spells)
        context["tray"] = [
            {**item.summary().model_dump(), "required": item.uuid in required}
            for item in await self.runtime.resolve_many(state.spells)
        ]
        return context
