import pytest

from char_builder.config.builder_config import ConfigurationSystem
from char_builder.models.builder_state import BuilderState, Grant
from char_builder.services.validation_engine import ValidationEngine
from conftest import write_config


def test_default_state_fails_required_categories(engine):
    result = engine.validate_state(BuilderState())

    assert result.is_valid is False
    assert "Ancestry selection is required" in result.errors
    assert "Class selection is required" in result.errors
    assert set(result.details) >= {"ancestry_selection", "stat_assignment", "gear_selection"}


def test_unknown_rule_type_in_category_is_a_warning(tmp_path):
    write_config(tmp_path, "validation", {"rules": {"custom": [{"type": "mystery"}]}})
    config = ConfigurationSystem(tmp_path)
    config.load()
    engine = ValidationEngine(config)

    result = engine.validate_state(BuilderState())

    assert result.is_valid is True
    assert "Unknown rule type: mystery" in result.warnings


def test_unknown_completion_criterion_fails_the_step(tmp_path):
    write_config(tmp_path, "steps", {
        "order": ["ancestry"],
        "steps": {"ancestry": {"display_name": "Ancestry", "order": 1, "completion_criteria": [{"type": "mystery"}]}},
    })
    config = ConfigurationSystem(tmp_path)
    config.load()

    result = ValidationEngine(config).validate_step_completion("ancestry", BuilderState(selected_ancestry="a"))

    assert result.can_proceed is False
    assert result.errors == ["Unknown rule type: mystery"]


def test_step_completion_reports_unsatisfied_skill_groups(engine):
    state = BuilderState.model_validate({
        "selected_class": "class-1",
        "skill_grant": {"guaranteed": ["brawl"], "choices": [{"pool": ["detect", "sneak"], "count": 2}]},
        "skills": ["brawl", "detect"],
    })

    result = engine.validate_step_completion("class", state)

    assert result.can_proceed is False
    assert result.errors == ["Need 2 skills from pool 1, only have 1"]
    assert result.details["step"] == "class"


def test_unknown_step_fails_completion(engine):
    assert engine.validate_step_completion("epilogue", BuilderState()).can_proceed is False


def test_prerequisites_name_missing_steps(engine):
    result = engine.validate_step_prerequisites("stats", BuilderState(selected_ancestry="a"))

    assert result.can_access is False
    assert result.details["missing"] == ["class"]


def test_prerequisites_pass_before_config_is_loaded():
    engine = ValidationEngine(ConfigurationSystem())
    assert engine.validate_step_prerequisites("gear", BuilderState()).can_access is True


def test_spell_selection_limits(engine):
    state = BuilderState(spells=["spell-1"], spell_limit=2)

    assert engine.validate_selection("spell", "spell-1", state).errors == ["Spell already selected"]
    assert engine.validate_selection("spell", "spell-2", state).can_select is True
    full = BuilderState(spells=["spell-1", "spell-2"], spell_limit=2)
    assert engine.validate_selection("spell", "spell-3", full).errors == ["Spell limit reached (2)"]


def test_perk_selection_follows_active_grant(engine):
    state = BuilderState(perk_grants=[
        Grant(id="g1", source="ancestry", feature_name="Stout", allowed_perks=["perk-a", "perk-b"]),
    ])

    assert engine.validate_selection("perk", "perk-a", state).can_select is True
    assert engine.validate_selection("perk", "perk-c", state).errors == ["Perk is not allowed for Stout"]

    warned = engine.validate_selection(
        "perk", "perk-b", state, {"prerequisites_met": False, "missing_prerequisites": ["reason 4+"]}
    )
    assert warned.can_select is True
    assert warned.warnings == ["Prerequisites not met: reason 4+"]


def test_gear_over_budget_is_a_warning_by_default(engine):
    state = BuilderState(gear_budget=300, gear_cost_spent=0)

    result = engine.validate_selection("equipment", "gear-1", state, {"cost": 350})

    assert result.can_select is True
    assert result.warnings == ["Over budget by 50"]


def test_gear_over_budget_can_be_refused(tmp_path):
    write_config(tmp_path, "ui", {"behavior": {"allow_over_budget": False}})
    config = ConfigurationSystem(tmp_path)
    config.load()
    engine = ValidationEngine(config)

    state = BuilderState(gear_budget=300, gear_cost_spent=0)
    assert engine.validate_selection("equipment", "gear-1", state, {"cost": 350}).can_select is False

    over = BuilderState(gear=["gear-1"], gear_budget=300, gear_cost_spent=350)
    assert engine.validate_step_completion("gear", over).errors == ["Gear selection is over budget"]


def test_budget_status_kinds(engine):
    state = BuilderState(spells=["s"], spell_limit=3)

    assert engine.get_budget_status("spells", state).remaining == 2
    with pytest.raises(KeyError, match="Unknown budget kind"):
        engine.get_budget_status("mana", state)


# =============================================================================
# CACHE
# =============================================================================


def test_cache_is_keyed_by_state_version(engine, state_manager):
    state_manager.update_state("selected_ancestry", "ancestry-1")
    snapshot = state_manager.get_current_state()

    first = engine.validate_step_completion("ancestry", snapshot)
    second = engine.validate_step_completion("ancestry", snapshot)
    assert first == second
    assert engine.get_cache_stats()["hits"] == 1

    state_manager.update_state("selected_ancestry", None)
    after = engine.validate_step_completion("ancestry", state_manager.get_current_state())

    assert after.can_proceed is False
    stats = engine.get_cache_stats()
    assert stats["misses"] == 2
    assert stats["entries"] == 1


def test_cached_results_are_copies(engine, state_manager):
    state_manager.update_state("selected_class", "class-1")
    snapshot = state_manager.get_current_state()

    engine.validate_state(snapshot).errors.append("tampered")

    assert "tampered" not in engine.validate_state(snapshot).errors


def test_unversioned_states_are_not_cached(engine):
    engine.validate_state(BuilderState())
    assert engine.get_cache_stats()["entries"] == 0


def test_clear_cache_by_pattern(engine, state_manager):
    state_manager.update_state("selected_ancestry", "ancestry-1")
    snapshot = state_manager.get_current_state()
    engine.validate_step_completion("ancestry", snapshot)
    engine.validate_state(snapshot)

    assert engine.clear_cache("validate_step_completion") == 1
    assert engine.get_cache_stats()["entries"] == 1
    assert engine.clear_cache() == 1
