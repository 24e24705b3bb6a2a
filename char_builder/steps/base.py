"""
Step Framework
==============
What every builder step shares.

A step is a plain class that satisfies ``StepManager`` and composes a
``StepCore``: the core owns the step's closed action table, dispatch,
activation (data loading + prerequisite gate) and completion checks. The
``StepRuntime`` carries the session's collaborators and the lookups more
than one step needs.
"""

import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol, Type, Union

from char_builder.config.builder_config import ConfigurationSystem
from char_builder.models.builder_state import BuilderState
from char_builder.models.items import DerivedFields, Item
from char_builder.models.results import ActionResult, ErrorKind
from char_builder.models.vocabulary import StepId
from char_builder.services.collaborators import CharacterProjector, Compendium
from char_builder.services.state_manager import StateManager
from char_builder.services.validation_engine import ValidationEngine

logger = logging.getLogger(__name__)

Handler = Callable[..., Awaitable[ActionResult]]


class StepManager(Protocol):
    step_id: StepId

    async def activate(self) -> bool:
        ...

    async def handle_action(self, action: Union[Enum, str], **payload: Any) -> ActionResult:
        ...

    def is_complete(self) -> bool:
        ...

    def reset(self) -> bool:
        ...

    async def randomize(self, **options: Any) -> ActionResult:
        ...

    async def prepare_context(self) -> Dict[str, Any]:
        ...


class SessionToken:
    """Changes whenever the session moves on; async work compares it before writing."""

    def __init__(self):
        self.value = 0

    def advance(self) -> int:
        self.value += 1
        return self.value


# =============================================================================
# RUNTIME
# =============================================================================


@dataclass
class StepRuntime:
    state: StateManager
    validator: ValidationEngine
    config: ConfigurationSystem
    compendium: Compendium
    projector: CharacterProjector
    rng: random.Random = field(default_factory=random.Random)
    token: SessionToken = field(default_factory=SessionToken)
    default_gear_budget: float = 300

    def snapshot(self) -> BuilderState:
        return self.state.get_current_state()

    def is_stale(self, token: int) -> bool:
        return token != self.token.value

    async def resolve(self, ref: Optional[str], expected_type: Optional[str] = None) -> Optional[Item]:
        """Look up an item; unresolved or mistyped items are logged and treated as absent."""
        if not ref:
            return None
        try:
            item = await self.compendium.resolve_item_ref(ref)
        except Exception as e:
            logger.warning(f"Lookup of {ref} failed: {e}")
            return None
        if item is None:
            logger.warning(f"Item not found: {ref}")
            return None
        if expected_type and item.type != expected_type:
            logger.warning(f"Item {ref} is a {item.type}, expected {expected_type}")
            return None
        return item

    async def resolve_many(self, refs: Iterable[str]) -> List[Item]:
        items = []
        for ref in refs:
            item = await self.resolve(ref)
            if item is not None:
                items.append(item)
        return items

    async def collect_required_spells(self, state: BuilderState) -> List[str]:
        """Spells mandated by ancestry traits, level-1 class features and held perks."""
        required: List[str] = []

        def add(refs):
            for ref in refs or []:
                if ref and ref not in required:
                    required.append(ref)

        ancestry = await self.resolve(state.selected_ancestry)
        if ancestry:
            for trait in ancestry.system.get("traits", []):
                add(trait.get("requiredSpells"))

        class_item = await self.resolve(state.selected_class)
        if class_item:
            for feature in level_features(class_item):
                add(feature.get("requiredSpells"))

        for perk in await self.resolve_many(_unique(state.perks + state.class_perks)):
            add(perk.system.get("requiredSpells"))

        return required

    async def derived_preview(self, state: BuilderState) -> Optional[DerivedFields]:
        refs = [r for r in (state.selected_ancestry, state.selected_class) if r]
        try:
            return await self.projector.project_character(state.final_stats(), list(state.skills), refs)
        except Exception as e:
            logger.warning(f"Character projection failed: {e}")
            return None


def level_features(item: Item, level: int = 1) -> List[Dict[str, Any]]:
    return [f for f in item.system.get("levelFeatures", []) if f.get("level") == level]


def _unique(refs: Iterable[str]) -> List[str]:
    seen = []
    for ref in refs:
        if ref not in seen:
            seen.append(ref)
    return seen


# =============================================================================
# STEP CORE
# =============================================================================


def action_table(actions: Type[Enum], handlers: Dict[Enum, Handler]) -> Dict[Enum, Handler]:
    """
    Check that `handlers` covers every member of `actions`.

    Raises:
        TypeError: If any action has no handler, or a handler is keyed by a foreign action
    """
    missing = [a.value for a in actions if a not in handlers]
    foreign = [k for k in handlers if not isinstance(k, actions)]
    if missing or foreign:
        raise TypeError(f"{actions.__name__} table mismatch: missing={missing} foreign={foreign}")
    return dict(handlers)


class StepCore:
    def __init__(self, step_id: StepId, runtime: StepRuntime, actions: Type[Enum], handlers: Dict[Enum, Handler]):
        self.step_id = step_id
        self.runtime = runtime
        self.actions = actions
        self.handlers = action_table(actions, handlers)

    def parse_action(self, action: Union[Enum, str]) -> Enum:
        if isinstance(action, self.actions):
            return action
        try:
            return self.actions(action)
        except ValueError:
            raise ValueError(f"Unknown action for {self.step_id.value} step: {action}") from None

    async def dispatch(self, action: Union[Enum, str], payload: Dict[str, Any]) -> ActionResult:
        parsed = self.parse_action(action)
        result = await self.handlers[parsed](**payload)
        if not result.success:
            logger.warning(f"[{self.step_id.value}] {parsed.value} rejected: {result.message}")
        elif result.warnings:
            logger.info(f"[{self.step_id.value}] {parsed.value}: {'; '.join(result.warnings)}")
        return result

    async def activate(self) -> bool:
        """Load required data and check prerequisites. False when the step cannot open."""
        step_config = self.runtime.config.step_config(self.step_id)
        if step_config and step_config.required_data:
            try:
                await self.runtime.compendium.ensure_data_loaded([c.value for c in step_config.required_data])
            except Exception as e:
                logger.error(f"Failed to load data for {self.step_id.value}: {e}")
                return False

        access = self.runtime.validator.validate_step_prerequisites(self.step_id, self.runtime.snapshot())
        if not access.can_access:
            logger.warning(f"Cannot open {self.step_id.value}: {'; '.join(access.errors)}")
            return False
        return True

    def is_complete(self) -> bool:
        return self.runtime.validator.validate_step_completion(self.step_id, self.runtime.snapshot()).can_proceed

    def reset(self) -> bool:
        return self.runtime.state.reset_step(self.step_id)

    def base_context(self) -> Dict[str, Any]:
        state = self.runtime.snapshot()
        step_config = self.runtime.config.step_config(self.step_id)
        completion = self.runtime.validator.validate_step_completion(self.step_id, state)
        return {
            "step": self.step_id.value,
            "display_name": step_config.display_name if step_config else self.step_id.value,
            "order": step_config.order if step_config else 0,
            "is_complete": completion.can_proceed,
            "errors": completion.errors,
            "budgets": self.runtime.state.calculate_budgets().model_dump(),
            "preview_uuid": state.preview_uuid,
        }

    def commit(self, updates: Dict[str, Any], message: str = "", warnings: Optional[List[str]] = None, **data: Any) -> ActionResult:
        """Write through the state manager and report the outcome."""
        if not self.runtime.state.update_multiple(updates):
            return ActionResult.fail(ErrorKind.VALIDATION_FAILED, f"State rejected update: {message or list(updates)}")
        return ActionResult.ok(message, warnings, **data)

    def stale(self, token: int) -> Optional[ActionResult]:
        if self.runtime.is_stale(token):
            logger.debug(f"[{self.step_id.value}] dropped a late result")
            return ActionResult.fail(ErrorKind.STALE, "Session moved on before the lookup finished")
        return None


def pick_random_option(runtime: StepRuntime, category: str, exclude: Iterable[str] = ()) -> Optional[str]:
    excluded = set(exclude)
    options = [o.uuid for o in runtime.compendium.list_items_of_category(category) if o.uuid not in excluded]
    if not options:
        return None
    return runtime.rng.choice(options)
