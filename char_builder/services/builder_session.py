"""
Builder Session
===============
One wizard run: owns the state manager, the validation engine and the seven
steps, moves between steps and hands the finished character to the host.

Nothing here is global; a host creates one session per character and drops
it when the wizard closes.
"""

import logging
import random
from typing import Any, Dict, List, Optional, Union

from char_builder.config.builder_config import ConfigurationSystem
from char_builder.models.builder_state import BuilderState
from char_builder.models.items import CharacterAssignments
from char_builder.models.results import ActionResult, ErrorKind
from char_builder.models.vocabulary import REQUIRED_STEPS, StepId
from char_builder.rules.budget import DEFAULT_GEAR_BUDGET
from char_builder.services.collaborators import CharacterCommitter, CharacterProjector, Compendium
from char_builder.services.state_manager import StateManager
from char_builder.services.validation_engine import ValidationEngine
from char_builder.steps import StepManager, StepRuntime, build_steps
from char_builder.steps.base import SessionToken

logger = logging.getLogger(__name__)


class BuilderSession:
    def __init__(
        self,
        config: ConfigurationSystem,
        compendium: Compendium,
        projector: CharacterProjector,
        committer: CharacterCommitter,
        history_limit: int = 50,
        default_gear_budget: float = DEFAULT_GEAR_BUDGET,
        seed: Optional[int] = None,
    ):
        config.load()
        self.config = config
        self.committer = committer
        self.state = StateManager(config, history_limit=history_limit, default_gear_budget=default_gear_budget)
        self.validator = ValidationEngine(config)
        self.token = SessionToken()
        self.runtime = StepRuntime(
            state=self.state,
            validator=self.validator,
            config=config,
            compendium=compendium,
            projector=projector,
            rng=random.Random(seed),
            token=self.token,
            default_gear_budget=default_gear_budget,
        )
        self.steps: Dict[StepId, StepManager] = build_steps(self.runtime)
        self.finished = False
        self.dismissed = False

    @classmethod
    def from_settings(cls, settings, config: ConfigurationSystem, compendium: Compendium,
                      projector: CharacterProjector, committer: CharacterCommitter) -> "BuilderSession":
        return cls(
            config,
            compendium,
            projector,
            committer,
            history_limit=settings.history_limit,
            default_gear_budget=settings.default_gear_budget,
            seed=settings.seed,
        )

    # =========================================================================
    # NAVIGATION
    # =========================================================================

    @property
    def current_step(self) -> StepId:
        return self.state.get_current_state().current_step

    def get_step(self, step: Union[StepId, str]) -> StepManager:
        """
        Raises:
            KeyError: If the step id is unknown
        """
        try:
            return self.steps[StepId(step)]
        except ValueError:
            raise KeyError(f"Unknown step: {step}") from None

    async def start(self) -> bool:
        return await self.get_step(self.current_step).activate()

    async def go_to_step(self, step: Union[StepId, str]) -> ActionResult:
        manager = self.get_step(step)
        target = manager.step_id

        access = self.validator.validate_step_prerequisites(target, self.state.get_current_state())
        if not access.can_access:
            return ActionResult.fail(
                ErrorKind.PREREQUISITES_UNMET,
                f"Cannot open {target.value}: {'; '.join(access.errors)}",
            )

        self.token.advance()
        if not self.state.update_state("current_step", target.value, skip_history=True):
            return ActionResult.fail(ErrorKind.VALIDATION_FAILED, f"Step {target.value} is not configured")
        if not await manager.activate():
            return ActionResult.fail(ErrorKind.PREREQUISITES_UNMET, f"Step {target.value} could not be activated")
        logger.debug(f"Moved to step {target.value}")
        return ActionResult.ok(f"Now at {target.value}", step=target.value)

    async def next_step(self) -> ActionResult:
        order = self.config.step_order()
        current = self.current_step
        if not self.get_step(current).is_complete():
            return ActionResult.fail(ErrorKind.INCOMPLETE, f"Finish {current.value} first")
        index = order.index(current)
        if index + 1 >= len(order):
            return ActionResult.fail(ErrorKind.NOT_ALLOWED, "Already at the last step")
        return await self.go_to_step(order[index + 1])

    async def previous_step(self) -> ActionResult:
        order = self.config.step_order()
        index = order.index(self.current_step)
        if index == 0:
            return ActionResult.fail(ErrorKind.NOT_ALLOWED, "Already at the first step")
        return await self.go_to_step(order[index - 1])

    async def dispatch(self, action: str, **payload: Any) -> ActionResult:
        """Send an action to the current step."""
        if self.finished or self.dismissed:
            return ActionResult.fail(ErrorKind.STALE, "Session is closed")
        return await self.get_step(self.current_step).handle_action(action, **payload)

    def step_progress(self) -> Dict[str, Dict[str, bool]]:
        return self.state.get_step_progress()

    # =========================================================================
    # RANDOMIZE
    # =========================================================================

    async def randomize_full_character(self) -> ActionResult:
        full = self.config.full_character_randomization()
        if not full.enabled:
            return ActionResult.fail(ErrorKind.NOT_ALLOWED, "Full character randomization is disabled")

        warnings: List[str] = []
        for step_id in full.steps:
            moved = await self.go_to_step(step_id)
            if not moved:
                warnings.append(moved.message)
                logger.warning(f"Randomize skipped {step_id.value}: {moved.message}")
                continue

            options = {"auto_assign": full.auto_assign_stats} if step_id == StepId.STATS else {}
            result = await self.get_step(step_id).randomize(**options)
            if not result:
                warnings.append(f"{step_id.value}: {result.message}")
                logger.warning(f"Randomize failed for {step_id.value}: {result.message}")

        return ActionResult.ok("Randomized character", warnings, progress=self.step_progress())

    # =========================================================================
    # FINISH
    # =========================================================================

    def build_assignments(self, state: BuilderState) -> CharacterAssignments:
        guaranteed = state.skill_grant.guaranteed if state.skill_grant else []
        skills = list(dict.fromkeys(state.skills + guaranteed))

        refs = [r for r in (state.selected_ancestry, state.selected_class, state.selected_starting_pack) if r]
        refs += list(dict.fromkeys(state.class_perks + state.perks))
        refs += state.spells + state.gear

        return CharacterAssignments(
            stats=state.final_stats(),
            trained_skills=skills,
            item_refs=list(dict.fromkeys(refs)),
            perk_choices=dict(state.perk_choices),
        )

    async def refresh_derived(self) -> None:
        """Re-derive perk grants and stat bonus slots from the current ancestry and class."""
        # Perks can grant bonuses, so grants go first
        if not await self.steps[StepId.PERKS].sync_grants():
            logger.warning("Perk grants could not be refreshed")
        if not await self.steps[StepId.STATS].refresh_bonuses():
            logger.warning("Stat bonuses could not be refreshed")

    async def finish(self) -> ActionResult:
        if self.finished or self.dismissed:
            return ActionResult.fail(ErrorKind.STALE, "Session is closed")

        await self.refresh_derived()
        state = self.state.get_current_state()
        incomplete = [
            step.value for step in REQUIRED_STEPS
            if not self.validator.validate_step_completion(step, state).can_proceed
        ]
        if incomplete:
            return ActionResult.fail(ErrorKind.INCOMPLETE, f"Complete these steps first: {', '.join(incomplete)}")

        assignments = self.build_assignments(state)
        token = self.token.value
        try:
            await self.committer.commit_character(assignments)
        except Exception as e:
            logger.error(f"Character commit failed: {e}", exc_info=True)
            return ActionResult.fail(ErrorKind.VALIDATION_FAILED, f"Could not save character: {e}")

        if self.token.value != token:
            logger.warning("Session changed while the character was being saved")
        self.finished = True
        self.token.advance()
        logger.info(f"Character finished with {len(assignments.item_refs)} item(s)")
        return ActionResult.ok("Character created", assignments=assignments.model_dump())

    def dismiss(self) -> None:
        self.dismissed = True
        self.token.advance()
        logger.debug("Builder session dismissed")
