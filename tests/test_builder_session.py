import asyncio

import pytest

from builder_data import (
    DWARF,
    FIGHTER,
    HUMAN,
    LONGSWORD,
    TOUGH,
    build_through_stats,
    choose_origin,
)
from char_builder.config.settings import Settings
from char_builder.models.results import ErrorKind
from char_builder.models.vocabulary import STAT_KEYS, StepId
from char_builder.services.builder_session import BuilderSession
from conftest import MockCommitter


def test_session_starts_at_ancestry(session):
    assert asyncio.run(session.start())
    assert session.current_step == StepId.ANCESTRY
    assert session.step_progress()["ancestry"] == {"complete": False, "required": True}


def test_unknown_step_raises(session):
    with pytest.raises(KeyError, match="Unknown step"):
        session.get_step("nope")


def test_step_navigation(session):
    async def scenario():
        await choose_origin(session)
        back = await session.previous_step()
        at_first = await session.previous_step()
        forward = await session.next_step()
        return back, at_first, forward

    back, at_first, forward = asyncio.run(scenario())

    assert back.success and back.data["step"] == "ancestry"
    assert at_first.error == ErrorKind.NOT_ALLOWED
    assert forward.success
    assert session.current_step == StepId.CLASS


def test_next_step_stops_at_the_last_step(session):
    async def scenario():
        await build_through_stats(session)
        await session.go_to_step("gear")
        return await session.next_step()

    result = asyncio.run(scenario())

    assert result.error == ErrorKind.NOT_ALLOWED
    assert session.current_step == StepId.GEAR


def test_locked_step_cannot_be_opened(session):
    asyncio.run(session.start())

    result = asyncio.run(session.go_to_step("spells"))

    assert result.error == ErrorKind.PREREQUISITES_UNMET
    assert result.message.startswith("Cannot open spells")
    assert session.current_step == StepId.ANCESTRY


# =============================================================================
# FINISH
# =============================================================================


def test_finish_commits_assignments(session, committer):
    async def scenario():
        await build_through_stats(session)
        await session.go_to_step("gear")
        await session.dispatch("add", ref=LONGSWORD)
        return await session.finish()

    result = asyncio.run(scenario())

    assert result.success
    assert session.finished
    assert len(committer.committed) == 1
    assignments = committer.committed[0]
    assert assignments.stats == dict(zip(STAT_KEYS, [6, 5, 4, 4, 4, 3]))
    assert assignments.trained_skills == ["brawl", "detect", "survival"]
    assert assignments.item_refs == [DWARF, FIGHTER, TOUGH, LONGSWORD]
    assert result.data["assignments"]["constructed"] is True


def test_finish_twice_is_stale(session, committer):
    asyncio.run(build_through_stats(session))
    asyncio.run(session.finish())

    again = asyncio.run(session.finish())

    assert again.error == ErrorKind.STALE
    assert len(committer.committed) == 1


def test_finish_requires_core_steps(session, committer):
    asyncio.run(choose_origin(session))

    result = asyncio.run(session.finish())

    assert result.error == ErrorKind.INCOMPLETE
    assert result.message == "Complete these steps first: stats"
    assert committer.committed == []


def test_finish_picks_up_bonuses_from_a_late_ancestry_change(session, committer):
    async def scenario():
        await build_through_stats(session)
        await session.go_to_step("ancestry")
        await session.dispatch("select", ref=HUMAN)
        blocked = await session.finish()
        await session.go_to_step("stats")
        applied = await session.dispatch("apply_stat_bonus", stat="luck")
        return blocked, applied, await session.finish()

    blocked, applied, finished = asyncio.run(scenario())

    assert blocked.error == ErrorKind.INCOMPLETE
    assert blocked.message == "Complete these steps first: stats"
    assert applied.success
    assert finished.success
    assert len(committer.committed) == 1
    assert committer.committed[0].stats["luck"] == 4


def test_failed_commit_keeps_session_open(make_session):
    session = make_session(committer_override=MockCommitter(fail=True))
    asyncio.run(build_through_stats(session))

    result = asyncio.run(session.finish())

    assert result.error == ErrorKind.VALIDATION_FAILED
    assert "character store offline" in result.message
    assert not session.finished
    assert asyncio.run(session.dispatch("reset_stats")).success


def test_dismissed_session_ignores_actions(session):
    asyncio.run(session.start())
    session.dismiss()

    result = asyncio.run(session.dispatch("select", ref=HUMAN))

    assert result.error == ErrorKind.STALE
    assert session.state.get_value("selected_ancestry") is None


# =============================================================================
# RANDOMIZE
# =============================================================================


def test_randomize_full_character(session):
    asyncio.run(session.start())

    result = asyncio.run(session.randomize_full_character())

    state = session.state.get_current_state()
    assert result.success
    assert state.selected_ancestry is not None
    assert state.selected_class is not None
    assert all(state.assigned_stats[key] is not None for key in STAT_KEYS)
    assert result.data["progress"]["class"]["complete"]


def test_same_seed_builds_same_character(make_session):
    def build(seed):
        session = make_session(seed=seed)
        asyncio.run(session.start())
        asyncio.run(session.randomize_full_character())
        return session.build_assignments(session.state.get_current_state())

    assert build(11) == build(11)


def test_from_settings(config, compendium, projector, committer):
    settings = Settings(history_limit=5, default_gear_budget=120, seed=3)

    session = BuilderSession.from_settings(settings, config, compendium, projector, committer)

    assert session.state.get_value("gear_budget") == 120
    assert session.runtime.default_gear_budget == 120
