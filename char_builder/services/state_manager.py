"""
State Manager
=============
Sole owner of one session's ``BuilderState``.

Every write goes through ``update_state`` / ``update_multiple``: the change is
applied to a dumped copy, checked by the path rules, re-validated by pydantic
and only then committed. A rejected write leaves the state untouched and is
reported as ``False``. Each commit bumps the state version, which the
validation engine uses to invalidate its cache.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from char_builder.config.builder_config import ConfigurationSystem
from char_builder.models.builder_state import BuilderState, empty_stats
from char_builder.models.results import Budgets
from char_builder.models.vocabulary import REQUIRED_STEPS, STAT_KEYS, STAT_MAX, STAT_MIN, StepId
from char_builder.rules.budget import DEFAULT_GEAR_BUDGET, calculate_budgets
from char_builder.rules.paths import get_path, path_root, set_path
from char_builder.rules.validators import state_value, step_complete_fallback

logger = logging.getLogger(__name__)

# (new_value, old_value, path, info)
ChangeListener = Callable[[Any, Any, str, Dict[str, Any]], None]

WILDCARD = "*"

SELECTION_PATHS = ("selected_ancestry", "selected_class", "selected_starting_pack")
LIST_PATHS = ("skills", "spells", "perks", "gear", "class_perks", "unassigned_values", "completed_steps")

# Bookkeeping fields only the manager writes
MANAGED_PATHS = ("version", "timestamp")


# =============================================================================
# PATH RULES
# =============================================================================


def _is_stat_value(value: Any) -> bool:
    return value is None or (
        isinstance(value, int) and not isinstance(value, bool) and STAT_MIN <= value <= STAT_MAX
    )


class StateManager:
    def __init__(
        self,
        config: ConfigurationSystem,
        history_limit: int = 50,
        default_gear_budget: float = DEFAULT_GEAR_BUDGET,
    ):
        self.config = config
        self.history_limit = history_limit
        self.default_gear_budget = default_gear_budget

        self._version = 0
        self._history: List[BuilderState] = []
        self._listeners: Dict[str, Dict[int, ChangeListener]] = {}
        self._next_listener_id = 1
        self._state = self._fresh_state()

    def _fresh_state(self) -> BuilderState:
        state = BuilderState(gear_budget=self.default_gear_budget, version=self._version, timestamp=time.time())
        state.completed_steps = self._completed_steps(state)
        return state

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    @property
    def version(self) -> int:
        return self._version

    def get_current_state(self) -> BuilderState:
        """Deep copy of the current state. Mutating it never reaches the manager."""
        return self._state.model_copy(deep=True)

    def get_value(self, path: str) -> Any:
        return _copy(state_value(self._state, path))

    def calculate_budgets(self) -> Budgets:
        return calculate_budgets(self._state, self.config.stats_config().default_budget)

    def get_step_progress(self) -> Dict[str, Dict[str, bool]]:
        return {
            step.value: {
                "complete": step in self._state.completed_steps,
                "required": step in REQUIRED_STEPS,
            }
            for step in self.config.step_order()
        }

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def update_state(
        self, path: str, value: Any, skip_validation: bool = False, skip_history: bool = False
    ) -> bool:
        """
        Write one dot-path.

        Returns:
            True when committed; False (state unchanged) when the path is unknown,
            the path rules reject the value, or the resulting state does not validate
        """
        if not self._writable(path):
            return False

        previous = self._state
        data = previous.model_dump()
        old_value = _copy(get_path(data, path))
        if not set_path(data, path, value):
            logger.warning(f"Cannot write {path}: path runs through a non-mapping value")
            return False

        if not skip_validation:
            errors = self._check_path(path, value)
            if errors:
                logger.warning(f"Rolled back update of {path}: {'; '.join(errors)}")
                return False

        try:
            candidate = BuilderState.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Rolled back update of {path}: {e.error_count()} validation error(s)")
            return False

        self._commit(candidate, previous, skip_history, recompute=path_root(path) != "completed_steps")
        self._notify(path, value, old_value)
        return True

    def update_multiple(
        self, updates: Dict[str, Any], skip_validation: bool = False, skip_history: bool = False
    ) -> bool:
        """Write several paths atomically. The whole resulting state is checked."""
        if not updates:
            return True
        if not all(self._writable(path) for path in updates):
            return False

        previous = self._state
        data = previous.model_dump()
        old_values = {}
        for path, value in updates.items():
            old_values[path] = _copy(get_path(data, path))
            if not set_path(data, path, value):
                logger.warning(f"Cannot write {path}: path runs through a non-mapping value")
                return False

        if not skip_validation:
            errors = []
            for path, value in updates.items():
                errors.extend(self._check_path(path, value))
            if errors:
                logger.warning(f"Rolled back batch update of {list(updates)}: {'; '.join(errors)}")
                return False

        try:
            candidate = BuilderState.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Rolled back batch update of {list(updates)}: {e.error_count()} validation error(s)")
            return False

        if not skip_validation:
            errors = self.check_state(candidate)
            if errors:
                logger.warning(f"Rolled back batch update of {list(updates)}: {'; '.join(errors)}")
                return False

        recompute = not any(path_root(p) == "completed_steps" for p in updates)
        self._commit(candidate, previous, skip_history, recompute=recompute)
        for path, value in updates.items():
            self._notify(path, value, old_values[path])
        return True

    def reset_step(self, step: Union[StepId, str]) -> bool:
        try:
            step = StepId(step)
        except ValueError:
            logger.warning(f"Unknown step for reset: {step}")
            return False

        updates = self._step_defaults(step)
        updates["completed_steps"] = [s for s in self._state.completed_steps if s != step]
        committed = self.update_multiple(updates, skip_validation=True)
        if committed:
            logger.debug(f"Reset step {step.value}")
        return committed

    def reset(self) -> None:
        """Restore the default state and forget history."""
        old = self._state
        self._version += 1
        self._history.clear()
        self._state = self._fresh_state()
        self._notify(WILDCARD, self.get_current_state(), old, {"is_reset": True})
        logger.debug("Builder state reset")

    def undo(self) -> bool:
        if not self._history:
            return False
        old = self._state
        restored = self._history.pop()
        self._version += 1
        restored.version = self._version
        restored.timestamp = time.time()
        self._state = restored
        self._notify(WILDCARD, self.get_current_state(), old, {"is_undo": True})
        logger.debug(f"Undo restored version {self._version}")
        return True

    @property
    def can_undo(self) -> bool:
        return len(self._history) > 0

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def add_change_listener(self, path: str, callback: ChangeListener) -> int:
        listener_id = self._next_listener_id
        self._next_listener_id += 1
        self._listeners.setdefault(path, {})[listener_id] = callback
        return listener_id

    def remove_change_listener(self, listener_id: int) -> bool:
        for listeners in self._listeners.values():
            if listener_id in listeners:
                del listeners[listener_id]
                return True
        return False

    def _notify(self, path: str, new_value: Any, old_value: Any, info: Optional[Dict[str, Any]] = None) -> None:
        info = {"is_undo": False, **(info or {})}
        targets = []
        if path != WILDCARD:
            targets.extend(self._listeners.get(path, {}).values())
        targets.extend(self._listeners.get(WILDCARD, {}).values())

        for callback in targets:
            try:
                callback(new_value, old_value, path, info)
            except Exception as e:
                logger.error(f"State listener for {path} failed: {e}", exc_info=True)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _writable(self, path: str) -> bool:
        root = path_root(path or "")
        if root not in BuilderState.model_fields:
            logger.warning(f"Rejected update of unknown state path: {path}")
            return False
        if root in MANAGED_PATHS:
            logger.warning(f"Rejected update of managed path: {path}")
            return False
        return True

    def _check_path(self, path: str, value: Any) -> List[str]:
        """Rules for a single written value, before the model sees it."""
        root = path_root(path)

        if root in SELECTION_PATHS and path == root:
            if value is not None and not (isinstance(value, str) and value):
                return [f"{path} must be empty or a non-empty reference"]

        elif path == "selected_array_id":
            if value is not None and value not in self.config.stat_arrays():
                return [f"Unknown stat array: {value}"]

        elif root == "assigned_stats":
            if path == root:
                if not isinstance(value, dict):
                    return ["assigned_stats must be a mapping"]
                return [e for k, v in value.items() for e in self._check_path(f"assigned_stats.{k}", v)]
            stat = path.split(".", 1)[1]
            if stat not in STAT_KEYS:
                return [f"Unknown stat: {stat}"]
            if not _is_stat_value(value):
                return [f"{stat} must be empty or an integer in {STAT_MIN}..{STAT_MAX}"]

        elif root in LIST_PATHS and path == root:
            if not isinstance(value, list):
                return [f"{path} must be a list"]

        elif path == "current_step":
            if value not in [s.value for s in self.config.step_order()]:
                return [f"Unknown step: {value}"]

        return []

    def check_state(self, state: BuilderState) -> List[str]:
        """The path rules applied to a whole state."""
        errors = []
        for path in SELECTION_PATHS + ("selected_array_id", "assigned_stats", "current_step"):
            value = state_value(state, path)
            if path == "current_step" and value is not None:
                value = StepId(value).value
            errors.extend(self._check_path(path, value))
        return errors

    def _commit(self, candidate: BuilderState, previous: BuilderState, skip_history: bool, recompute: bool) -> None:
        if recompute:
            candidate.completed_steps = self._completed_steps(candidate)

        self._version += 1
        candidate.version = self._version
        candidate.timestamp = time.time()

        if not skip_history:
            self._history.append(previous)
            if len(self._history) > self.history_limit:
                self._history = self._history[-self.history_limit:]

        self._state = candidate
        logger.debug(f"Committed state version {self._version}")

    def _completed_steps(self, state: BuilderState) -> List[StepId]:
        return [step for step in self.config.step_order() if step_complete_fallback(step, state)]

    def _step_defaults(self, step: StepId) -> Dict[str, Any]:
        state = self._state
        if step == StepId.ANCESTRY:
            return {"selected_ancestry": None}
        if step == StepId.CLASS:
            return {
                "selected_class": None,
                "skills": [],
                "skill_selections": {},
                "skill_grant": None,
                "skill_choices_needed": 0,
                "class_perks": [],
                "last_class_for_perks": None,
            }
        if step == StepId.STATS:
            return {
                "selected_array_id": None,
                "assigned_stats": empty_stats(),
                "unassigned_values": [],
                "selected_value": None,
                "applied_bonuses": {},
            }
        if step == StepId.SPELLS:
            return {"spells": []}
        if step == StepId.PERKS:
            return state.perk_reset_updates()
        if step == StepId.STARTING_PACKS:
            return {"selected_starting_pack": None, "gear_budget": self.default_gear_budget}
        return {"gear": [], "gear_cost_spent": 0}


def _copy(value: Any) -> Any:
    if hasattr(value, "model_copy"):
        return value.model_copy(deep=True)
    if isinstance(value, dict):
        return {k: _copy(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_copy(v) for v in value]
    return value
