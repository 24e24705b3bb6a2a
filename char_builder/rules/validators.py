"""
Rule Validators
===============
Pure predicates behind the rule registry.
Each validator takes (rule, state, context) and returns a ValidationResult.
No exceptions for bad data: a missing or malformed value is simply invalid.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from char_builder.config.builder_config import RuleSpec
from char_builder.models.builder_state import BuilderState, SkillGrant
from char_builder.models.results import ValidationResult
from char_builder.models.vocabulary import SKILL_KEYS, STAT_KEYS, StepId
from char_builder.rules.budget import gear_budget
from char_builder.rules.paths import get_path

# Selection path checked by `required` / `valid_uuid` when a rule names no path
CATEGORY_PATHS = {
    "ancestry_selection": "selected_ancestry",
    "class_selection": "selected_class",
    "pack_selection": "selected_starting_pack",
}


@dataclass
class RuleContext:
    category: Optional[str] = None
    stat_arrays: Dict[str, List[int]] = field(default_factory=dict)


def state_value(state: BuilderState, path: str) -> Any:
    """Read a dot-path (e.g. 'assigned_stats.might') from a state snapshot."""
    root, _, rest = path.partition(".")
    value = getattr(state, root, None)
    if not rest:
        return value
    if hasattr(value, "model_dump"):
        value = value.model_dump()
    if not isinstance(value, dict):
        return None
    return get_path(value, rest)


def _is_ref(value: Any) -> bool:
    return isinstance(value, str) and len(value) > 0


# =============================================================================
# SHARED COMPUTATIONS
# =============================================================================


def selected_from_pool(skills: List[str], pool: List[str], guaranteed: List[str]) -> int:
    """Skills counted against one choice group. Guaranteed skills never count."""
    effective_pool = pool or list(SKILL_KEYS)
    return len([s for s in skills if s in effective_pool and s not in guaranteed])


def unsatisfied_skill_groups(state: BuilderState) -> List[str]:
    """Messages for every choice group that still needs skills."""
    grant: Optional[SkillGrant] = state.skill_grant
    if grant is None or not grant.choices:
        if len(state.skills) < state.skill_choices_needed:
            return ["Not enough skills selected"]
        return []

    missing = []
    for i, choice in enumerate(grant.choices):
        have = selected_from_pool(state.skills, choice.pool, grant.guaranteed)
        if have < choice.count:
            missing.append(f"Need {choice.count} skills from pool {i + 1}, only have {have}")
    return missing


def all_stats_assigned(state: BuilderState) -> bool:
    return all(state.assigned_stats.get(key) is not None for key in STAT_KEYS)


def unapplied_bonus_ids(state: BuilderState) -> List[str]:
    return [b.bonus_id for b in state.available_bonuses if b.bonus_id not in state.applied_bonuses]


def step_complete_fallback(step: str, state: BuilderState) -> bool:
    """Built-in completion logic used when configuration supplies no criteria."""
    if step == StepId.ANCESTRY:
        return bool(state.selected_ancestry)
    if step == StepId.CLASS:
        return bool(state.selected_class) and not unsatisfied_skill_groups(state)
    if step == StepId.STATS:
        return (
            bool(state.selected_array_id)
            and all_stats_assigned(state)
            and not unapplied_bonus_ids(state)
        )
    if step == StepId.SPELLS:
        return state.spell_limit == 0 or len(state.spells) == state.spell_limit
    if step in (StepId.PERKS, StepId.STARTING_PACKS, StepId.GEAR):
        return True
    return False


# =============================================================================
# SELECTION VALIDATORS
# =============================================================================


def validate_required(rule: RuleSpec, state: BuilderState, ctx: RuleContext) -> ValidationResult:
    path = rule.path or CATEGORY_PATHS.get(ctx.category or "")
    value = state_value(state, path) if path else None
    return ValidationResult(is_valid=value is not None and value != "")


def validate_uuid(rule: RuleSpec, state: BuilderState, ctx: RuleContext) -> ValidationResult:
    path = rule.path or CATEGORY_PATHS.get(ctx.category or "")
    value = state_value(state, path) if path else None
    if value is None:
        return ValidationResult.passed()
    return ValidationResult(is_valid=_is_ref(value))


def validate_has_selection(rule: RuleSpec, state: BuilderState, ctx: RuleContext) -> ValidationResult:
    if not rule.path:
        return ValidationResult.failed("has_selection needs a path")
    return ValidationResult(is_valid=state_value(state, rule.path) is not None)


def validate_optional(rule: RuleSpec, state: BuilderState, ctx: RuleContext) -> ValidationResult:
    return ValidationResult.passed()


def validate_valid_pack(rule: RuleSpec, state: BuilderState, ctx: RuleContext) -> ValidationResult:
    pack = state.selected_starting_pack
    return ValidationResult(is_valid=pack is None or _is_ref(pack))


def validate_single_selection(rule: RuleSpec, state: BuilderState, ctx: RuleContext) -> ValidationResult:
    pack = state.selected_starting_pack
    return ValidationResult(is_valid=not pack or isinstance(pack, str))


def validate_no_duplicates(rule: RuleSpec, state: BuilderState, ctx: RuleContext) -> ValidationResult:
    for collection in (state.perks, state.spells, state.gear):
        if len(collection) != len(set(collection)):
            return ValidationResult.failed("Duplicate selections detected")
    return ValidationResult.passed()


def validate_step_complete(rule: RuleSpec, state: BuilderState, ctx: RuleContext) -> ValidationResult:
    if rule.step is None:
        return ValidationResult.failed("step_complete needs a step")
    if rule.step in state.completed_steps:
        return ValidationResult.passed()
    return ValidationResult(is_valid=step_complete_fallback(rule.step, state))


# =============================================================================
# STAT VALIDATORS
# =============================================================================


def validate_all_assigned(rule: RuleSpec, state: BuilderState, ctx: RuleContext) -> ValidationResult:
    return ValidationResult(is_valid=all_stats_assigned(state))


def validate_valid_values(rule: RuleSpec, state: BuilderState, ctx: RuleContext) -> ValidationResult:
    """Assigned values must be drawable from the selected array."""
    if not state.selected_array_id:
        return ValidationResult.passed()
    array = ctx.stat_arrays.get(state.selected_array_id)
    if not array:
        return ValidationResult.passed()

    assigned = Counter(v for v in state.assigned_stats.values() if v is not None)
    available = Counter(array)
    return ValidationResult(is_valid=all(available[v] >= n for v, n in assigned.items()))


def validate_no_duplicates_unless_allowed(
    rule: RuleSpec, state: BuilderState, ctx: RuleContext
) -> ValidationResult:
    values = [v for v in state.assigned_stats.values() if v is not None]
    if len(values) == len(set(values)):
        return ValidationResult.passed()

    array = ctx.stat_arrays.get(state.selected_array_id or "", [])
    allowed = Counter(array)
    if all(allowed[v] >= n for v, n in Counter(values).items()):
        return ValidationResult.passed()
    return ValidationResult.passed(
        warnings=["Duplicate stat values assigned - ensure this is allowed by your selected array"]
    )


def validate_bonuses_applied(rule: RuleSpec, state: BuilderState, ctx: RuleContext) -> ValidationResult:
    pending = unapplied_bonus_ids(state)
    if pending:
        return ValidationResult.failed(f"{len(pending)} stat bonus(es) still to apply")
    return ValidationResult.passed()


# =============================================================================
# SKILL, SPELL & PERK VALIDATORS
# =============================================================================


def validate_skills_assigned(rule: RuleSpec, state: BuilderState, ctx: RuleContext) -> ValidationResult:
    if not state.selected_class:
        return ValidationResult.failed("No class selected")
    missing = unsatisfied_skill_groups(state)
    if missing:
        return ValidationResult(is_valid=False, errors=missing[:1])
    return ValidationResult.passed()


def validate_within_limit(rule: RuleSpec, state: BuilderState, ctx: RuleContext) -> ValidationResult:
    return ValidationResult(is_valid=len(state.spells) <= state.spell_limit)


def validate_spell_limit_met(rule: RuleSpec, state: BuilderState, ctx: RuleContext) -> ValidationResult:
    return ValidationResult(is_valid=step_complete_fallback(StepId.SPELLS, state))


def validate_valid_spells(rule: RuleSpec, state: BuilderState, ctx: RuleContext) -> ValidationResult:
    return ValidationResult(is_valid=all(_is_ref(s) for s in state.spells))


def validate_spellcaster_only(rule: RuleSpec, state: BuilderState, ctx: RuleContext) -> ValidationResult:
    if state.selected_class and state.spells and state.spell_limit == 0:
        return ValidationResult.passed(warnings=["Spells selected for a class that does not cast spells"])
    return ValidationResult.passed()


def validate_valid_perks(rule: RuleSpec, state: BuilderState, ctx: RuleContext) -> ValidationResult:
    return ValidationResult(is_valid=all(_is_ref(p) for p in state.perks + state.class_perks))


def validate_prerequisites_met(rule: RuleSpec, state: BuilderState, ctx: RuleContext) -> ValidationResult:
    # Per-perk checks need item lookups and run in the perks step; this only flags
    if state.perks or state.class_perks:
        return ValidationResult.passed(warnings=["Ensure all perk prerequisites are met"])
    return ValidationResult.passed()


def validate_perks_selected(rule: RuleSpec, state: BuilderState, ctx: RuleContext) -> ValidationResult:
    limit = rule.perk_limit if rule.perk_limit is not None else 1
    have = len(state.perks)
    if have >= limit:
        return ValidationResult.passed()
    return ValidationResult.failed(f"Need at least {limit} perk(s), only have {have}")


# =============================================================================
# GEAR VALIDATORS
# =============================================================================


def validate_within_budget(rule: RuleSpec, state: BuilderState, ctx: RuleContext) -> ValidationResult:
    return ValidationResult(is_valid=not gear_budget(state).is_over)


def validate_valid_equipment(rule: RuleSpec, state: BuilderState, ctx: RuleContext) -> ValidationResult:
    return ValidationResult(is_valid=all(_is_ref(g) for g in state.gear))
