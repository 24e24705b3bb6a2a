"""
Validation Engine
=================
Runs the configured rule categories, step completion criteria and step
prerequisites against state snapshots, and answers per-item "can this be
selected" questions for the steps.

Results are memoized per (method, arguments) together with the version of
the state they were computed from; a result is reused only while the state
version is unchanged. Hand-built states (version 0) are never cached.
"""

import logging
from typing import Any, Callable, Dict, Optional, Tuple, Union

from char_builder.config.builder_config import ConfigurationSystem, RuleSpec
from char_builder.models.builder_state import BuilderState
from char_builder.models.results import BudgetStatus, ValidationResult
from char_builder.models.vocabulary import ItemType, StepId
from char_builder.rules.budget import gear_budget, spells_budget, stats_budget
from char_builder.rules.registry import get_rule, has_rule
from char_builder.rules.validators import RuleContext, step_complete_fallback, unsatisfied_skill_groups

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, Tuple[Any, ...]]

GEAR_TYPES = (ItemType.EQUIPMENT.value, "gear", "weapon", "armor")


class ValidationEngine:
    def __init__(self, config: ConfigurationSystem):
        self.config = config
        self._cache: Dict[CacheKey, Tuple[Tuple[int, float], Any]] = {}
        self._hits = 0
        self._misses = 0

    # =========================================================================
    # CACHE
    # =========================================================================

    def _cached(self, method: str, args: Tuple[Any, ...], state: BuilderState, compute: Callable[[], Any]) -> Any:
        if state.version == 0:
            return compute()

        key = (method, args)
        stamp = (state.version, state.timestamp)
        entry = self._cache.get(key)
        if entry is not None and entry[0] == stamp:
            self._hits += 1
            logger.debug(f"Validation cache hit: {method}{args}")
            return entry[1].model_copy(deep=True)

        self._misses += 1
        result = compute()
        self._cache[key] = (stamp, result.model_copy(deep=True))
        return result

    def clear_cache(self, pattern: Optional[str] = None) -> int:
        """Drop cached results whose method or arguments mention `pattern` (all when None)."""
        if pattern is None:
            removed = len(self._cache)
            self._cache.clear()
        else:
            stale = [key for key in self._cache if pattern in key[0] or pattern in repr(key[1])]
            for key in stale:
                del self._cache[key]
            removed = len(stale)
        logger.debug(f"Cleared {removed} validation cache entr{'y' if removed == 1 else 'ies'}")
        return removed

    def get_cache_stats(self) -> Dict[str, Any]:
        lookups = self._hits + self._misses
        return {
            "entries": len(self._cache),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / lookups if lookups else 0.0,
        }

    # =========================================================================
    # RULE EVALUATION
    # =========================================================================

    def _context(self, category: Optional[str] = None) -> RuleContext:
        return RuleContext(category=category, stat_arrays=self.config.stat_arrays())

    def _apply_rules(self, rules, state: BuilderState, category: Optional[str], strict: bool) -> ValidationResult:
        """
        Evaluate a list of rule specs.

        An unregistered rule type is a warning in a category (strict=False)
        and an error for completion criteria and prerequisites (strict=True).
        """
        result = ValidationResult()
        ctx = self._context(category)

        for spec in rules:
            if not has_rule(spec.type):
                message = f"Unknown rule type: {spec.type}"
                if strict:
                    result.is_valid = False
                    result.errors.append(message)
                else:
                    result.warnings.append(message)
                continue

            rule = get_rule(spec.type)
            outcome = rule.check(spec, state, ctx)
            result.warnings.extend(outcome.warnings)
            if outcome.is_valid:
                continue

            message = spec.message or (outcome.errors[0] if outcome.errors else f"{spec.type} check failed")
            if (spec.severity or rule.severity) == "warning":
                result.warnings.append(message)
            else:
                result.is_valid = False
                result.errors.append(message)
        return result

    # =========================================================================
    # PUBLIC CHECKS
    # =========================================================================

    def validate_state(self, state: BuilderState) -> ValidationResult:
        return self._cached("validate_state", (), state, lambda: self._validate_state(state))

    def _validate_state(self, state: BuilderState) -> ValidationResult:
        overall = ValidationResult()
        for category, rules in self.config.validation_rules().items():
            category_result = self._apply_rules(rules, state, category, strict=False)
            overall.details[category] = category_result.model_dump()
            overall.absorb(category_result)
        return overall

    def validate_step_completion(self, step: Union[StepId, str], state: BuilderState) -> ValidationResult:
        return self._cached(
            "validate_step_completion", (str(getattr(step, "value", step)),), state,
            lambda: self._validate_step_completion(step, state),
        )

    def _validate_step_completion(self, step: Union[StepId, str], state: BuilderState) -> ValidationResult:
        try:
            step_id = StepId(step)
        except ValueError:
            return ValidationResult.failed(f"Unknown step: {step}")

        step_config = self.config.step_config(step_id)
        criteria = step_config.completion_criteria if step_config else []

        if criteria:
            result = self._apply_rules(criteria, state, None, strict=True)
        elif step_complete_fallback(step_id, state):
            result = ValidationResult.passed()
        else:
            missing = unsatisfied_skill_groups(state) if step_id == StepId.CLASS and state.selected_class else []
            result = ValidationResult.failed(*(missing or [f"Step {step_id.value} is not complete"]))

        if step_id == StepId.GEAR and result.is_valid and state.gear:
            if gear_budget(state).is_over and not self.config.ui_config().behavior.allow_over_budget:
                result = ValidationResult.failed("Gear selection is over budget")

        result.details["step"] = step_id.value
        return result

    def validate_step_prerequisites(self, step: Union[StepId, str], state: BuilderState) -> ValidationResult:
        if not self.config.loaded:
            return ValidationResult.passed()
        return self._cached(
            "validate_step_prerequisites", (str(getattr(step, "value", step)),), state,
            lambda: self._validate_step_prerequisites(step, state),
        )

    def _validate_step_prerequisites(self, step: Union[StepId, str], state: BuilderState) -> ValidationResult:
        try:
            step_id = StepId(step)
        except ValueError:
            return ValidationResult.failed(f"Unknown step: {step}")

        prerequisites = self.config.step_prerequisites(step_id)
        result = self._apply_rules(prerequisites, state, None, strict=True)
        result.details["missing"] = [
            spec.step.value for spec in prerequisites
            if spec.type == "step_complete" and spec.step and not self._step_satisfied(spec, state)
        ]
        return result

    def _step_satisfied(self, spec: RuleSpec, state: BuilderState) -> bool:
        return get_rule("step_complete").check(spec, state, self._context()).is_valid

    def validate_selection(
        self,
        item_type: str,
        ref: Optional[str],
        state: BuilderState,
        context: Optional[Dict[str, Any]] = None,
    ) -> ValidationResult:
        """
        Can `ref` be added to the state as an item of `item_type`?

        Context keys: ``cost`` (gear, in silver), ``prerequisites_met`` and
        ``missing_prerequisites`` (perks, from the perks step's own check).
        """
        context = context or {}
        context_key = tuple(sorted((k, repr(v)) for k, v in context.items()))
        return self._cached(
            "validate_selection", (item_type, ref, context_key), state,
            lambda: self._validate_selection(item_type, ref, state, context),
        )

    def _validate_selection(
        self, item_type: str, ref: Optional[str], state: BuilderState, context: Dict[str, Any]
    ) -> ValidationResult:
        if not ref:
            return ValidationResult.failed("No item reference given")

        if item_type == ItemType.PERK:
            if ref in state.fulfilled_perks() or ref in state.class_perks:
                return ValidationResult.failed("Perk already selected")
            grant = state.active_grant()
            if grant is None:
                return ValidationResult.failed("No perk grants available")
            if not grant.accepts(ref):
                return ValidationResult.failed(f"Perk is not allowed for {grant.feature_name or grant.source_name}")
            if context.get("prerequisites_met") is False:
                missing = ", ".join(context.get("missing_prerequisites", []))
                return ValidationResult.passed(warnings=[f"Prerequisites not met: {missing}" if missing else "Prerequisites not met"])
            return ValidationResult.passed()

        if item_type == ItemType.SPELL:
            if ref in state.spells:
                return ValidationResult.failed("Spell already selected")
            if len(state.spells) >= state.spell_limit:
                return ValidationResult.failed(f"Spell limit reached ({state.spell_limit})")
            return ValidationResult.passed()

        if item_type in GEAR_TYPES:
            if ref in state.gear:
                return ValidationResult.failed("Item already in gear")
            cost = context.get("cost", 0) or 0
            after = BudgetStatus.of(state.gear_budget, state.gear_cost_spent + cost)
            if after.is_over:
                if not self.config.ui_config().behavior.allow_over_budget:
                    return ValidationResult.failed("Not enough budget for this item")
                return ValidationResult.passed(warnings=[f"Over budget by {-after.remaining:g}"])
            return ValidationResult.passed()

        # Single-selection item types: nothing beyond a usable reference
        return ValidationResult.passed()

    def get_budget_status(self, kind: str, state: BuilderState) -> BudgetStatus:
        if kind == "stats":
            return stats_budget(state, self.config.stats_config().default_budget)
        if kind == "spells":
            return spells_budget(state)
        if kind == "gear":
            return gear_budget(state)
        raise KeyError(f"Unknown budget kind: {kind}")
