import asyncio

from builder_data import (
    DWARF,
    ELF,
    FIGHTER,
    FLEET,
    FROST,
    GIFTED,
    KEEN_EYE,
    MAGIC_ADEPT,
    SCHOLAR,
    STRONG_WILL,
    TOUGH,
    WIZARD,
    build_through_stats,
)
from char_builder.models.builder_state import BuilderState, Grant
from char_builder.models.results import ErrorKind
from char_builder.steps.perks import grants_from_source, guaranteed_perks, merge_grants, refill_grants, sort_grants


def open_perks(session, ancestry=DWARF, klass=FIGHTER):
    async def scenario():
        await build_through_stats(session, ancestry=ancestry, klass=klass)
        return await session.go_to_step("perks")

    result = asyncio.run(scenario())
    assert result.success
    return session.get_step("perks")


def run_actions(step, actions):
    async def scenario():
        return [await step.handle_action(name, **payload) for name, payload in actions]

    return asyncio.run(scenario())


def assert_single_active_grant(state: BuilderState):
    active = state.active_grant()
    open_grants = [g for g in state.perk_grants if not g.fulfilled]
    if active is None:
        assert open_grants == []
        return
    index = state.perk_grants.index(active)
    assert all(g.fulfilled for g in state.perk_grants[:index])
    assert active == open_grants[0]


# =============================================================================
# GRANT HELPERS
# =============================================================================


def test_all_mandatory_options_are_fulfilled_up_front():
    grants = grants_from_source("ancestry", "Elf", {"name": "Keen Senses", "perkAmount": 2, "allowedPerks": ["A", "B"]})

    assert [g.fulfilled for g in grants] == ["A", "B"]
    assert BuilderState(perk_grants=grants).active_grant() is None
    assert guaranteed_perks(grants) == ["A", "B"]


def test_choice_grant_starts_open_and_active():
    grants = grants_from_source("ancestry", "Dwarf", {"name": "Stout", "perkAmount": 1, "allowedPerks": ["A", "B", "C"]})

    assert len(grants) == 1
    assert grants[0].fulfilled is None
    assert BuilderState(perk_grants=grants).active_grant() == grants[0]
    assert guaranteed_perks(grants) == []


def test_grants_sort_most_restrictive_first():
    wide = Grant(id="wide", source="class", allowed_perks=["A", "B", "C"])
    free_1 = Grant(id="free-1", source="class")
    narrow = Grant(id="narrow", source="ancestry", allowed_perks=["A"])
    free_2 = Grant(id="free-2", source="ancestry")

    ordered = sort_grants([wide, free_1, narrow, free_2])

    assert [g.id for g in ordered] == ["narrow", "wide", "free-1", "free-2"]


def test_merge_keeps_picks_the_new_grant_still_accepts():
    old = [Grant(id="g", source="class", allowed_perks=["A", "B"], fulfilled="A")]

    kept = merge_grants(old, [Grant(id="g", source="class", allowed_perks=["A", "C"])])
    dropped = merge_grants(old, [Grant(id="g", source="class", allowed_perks=["C"])])
    replaced = merge_grants(old, [Grant(id="x", source="class"), Grant(id="y", source="class")])

    assert kept[0].fulfilled == "A"
    assert dropped[0].fulfilled is None
    assert [g.fulfilled for g in replaced] == [None, None]


def test_refill_seats_earlier_picks_in_open_grants():
    grants = [
        Grant(id="a", source="ancestry", allowed_perks=["A", "B"]),
        Grant(id="b", source="class", fulfilled="C"),
        Grant(id="c", source="class"),
    ]

    refilled = refill_grants(grants, ["C", "LINKED", "A", "D"], skip=["LINKED"])

    assert [g.fulfilled for g in refilled] == ["A", "C", "D"]
    assert grants[0].fulfilled is None


# =============================================================================
# STEP
# =============================================================================


def test_activation_builds_grants_and_class_perks(session):
    perks = open_perks(session)

    state = session.state.get_current_state()
    assert len(state.perk_grants) == 1
    assert state.perk_grants[0].allowed_perks == [KEEN_EYE, FLEET, SCHOLAR]
    assert state.active_grant() is not None
    assert state.class_perks == [TOUGH]
    assert perks.is_complete()


def test_guaranteed_ancestry_perks_become_class_perks(session):
    perks = open_perks(session, ancestry=ELF)

    state = session.state.get_current_state()
    assert state.active_grant() is None
    assert state.class_perks == [TOUGH, KEEN_EYE, FLEET]
    assert state.perks == []
    removed = asyncio.run(perks.handle_action("remove", ref=KEEN_EYE))
    assert removed.error == ErrorKind.PROTECTED


def test_add_and_remove_against_active_grant(session):
    perks = open_perks(session)

    not_allowed, class_perk, added, full, protected, removed = run_actions(perks, [
        ("add", {"ref": MAGIC_ADEPT}),
        ("add", {"ref": TOUGH}),
        ("add", {"ref": KEEN_EYE}),
        ("add", {"ref": FLEET}),
        ("remove", {"ref": TOUGH}),
        ("remove", {"ref": KEEN_EYE}),
    ])

    assert not_allowed.error == ErrorKind.NOT_ALLOWED
    assert class_perk.error == ErrorKind.DUPLICATE
    assert added.success
    assert full.error == ErrorKind.LIMIT_REACHED
    assert protected.error == ErrorKind.PROTECTED
    assert removed.success
    state = session.state.get_current_state()
    assert state.perks == []
    assert state.active_grant() is not None


def test_single_active_grant_through_add_remove(session):
    perks = open_perks(session, klass=WIZARD)
    sequence = [
        ("add", {"ref": KEEN_EYE}),
        ("add", {"ref": STRONG_WILL}),
        ("remove", {"ref": KEEN_EYE}),
        ("add", {"ref": FLEET}),
        ("remove", {"ref": STRONG_WILL}),
        ("clear", {}),
    ]

    assert_single_active_grant(session.state.get_current_state())
    for name, payload in sequence:
        asyncio.run(perks.handle_action(name, **payload))
        assert_single_active_grant(session.state.get_current_state())

    # The restricted ancestry grant sorts ahead of the wizard's open grant
    assert session.state.get_current_state().perk_grants[0].source == "ancestry"


def test_skill_choice_perk_trains_and_untrains(session):
    perks = open_perks(session)

    no_choice, known, unknown, added = run_actions(perks, [
        ("add", {"ref": SCHOLAR}),
        ("add", {"ref": SCHOLAR, "choice": "detect"}),
        ("add", {"ref": SCHOLAR, "choice": "juggling"}),
        ("add", {"ref": SCHOLAR, "choice": "medicine"}),
    ])

    assert no_choice.error == ErrorKind.NO_SELECTION
    assert known.error == ErrorKind.DUPLICATE
    assert unknown.error == ErrorKind.VALIDATION_FAILED
    assert added.success
    state = session.state.get_current_state()
    assert "medicine" in state.skills
    assert state.perk_skills == {"medicine": SCHOLAR}

    toggled = asyncio.run(session.get_step("class").handle_action("toggle_skill", skill="medicine"))
    assert toggled.error == ErrorKind.PROTECTED

    asyncio.run(perks.handle_action("remove", ref=SCHOLAR))
    state = session.state.get_current_state()
    assert "medicine" not in state.skills
    assert state.perk_skills == {}
    assert state.perk_choices == {}


def test_spell_choice_perk_adds_protected_spell(session):
    perks = open_perks(session, klass=WIZARD)
    _, added = run_actions(perks, [
        ("add", {"ref": KEEN_EYE}),
        ("add", {"ref": MAGIC_ADEPT, "choice": FROST}),
    ])
    assert added.success and added.warnings == []
    assert FROST in session.state.get_value("spells")

    async def remove_from_spells():
        await session.go_to_step("spells")
        return await session.dispatch("remove", ref=FROST)

    assert asyncio.run(remove_from_spells()).error == ErrorKind.PROTECTED

    async def remove_perk():
        await session.go_to_step("perks")
        return await session.dispatch("remove", ref=MAGIC_ADEPT)

    assert asyncio.run(remove_perk()).success
    assert FROST not in session.state.get_value("spells")


def test_stat_choice_perk_adds_to_final_stats(session):
    perks = open_perks(session, klass=WIZARD)
    run_actions(perks, [("add", {"ref": KEEN_EYE}), ("add", {"ref": GIFTED, "choice": "luck"})])

    state = session.state.get_current_state()
    assert state.perk_stat_bonuses == {"luck": 1}
    assert state.final_stats()["luck"] == 4

    asyncio.run(perks.handle_action("remove", ref=GIFTED))
    state = session.state.get_current_state()
    assert state.perk_stat_bonuses == {}
    assert state.perk_stat_sources == {}
    assert state.final_stats()["luck"] == 3


def test_unmet_prerequisites_warn_but_allow(session):
    perks = open_perks(session, klass=WIZARD)

    _, result = run_actions(perks, [("add", {"ref": KEEN_EYE}), ("add", {"ref": STRONG_WILL})])

    assert result.success
    assert result.warnings == ["Prerequisites not met - Skill: leadership"]


def test_clear_keeps_class_perks(session):
    perks = open_perks(session)
    run_actions(perks, [("add", {"ref": KEEN_EYE})])

    result = asyncio.run(perks.handle_action("clear"))

    state = session.state.get_current_state()
    assert result.success
    assert state.perks == []
    assert state.class_perks == [TOUGH]


def test_show_all_reveals_ghosted_options(session):
    perks = open_perks(session)

    filtered = asyncio.run(perks.prepare_context())
    asyncio.run(perks.handle_action("toggle_show_all"))
    everything = asyncio.run(perks.prepare_context())

    assert {o["uuid"] for o in filtered["options"]} == {KEEN_EYE, FLEET, SCHOLAR}
    assert not any(o["ghosted"] for o in filtered["options"])
    assert len(everything["options"]) == 9
    ghosted = {o["uuid"] for o in everything["options"] if o["ghosted"]}
    assert KEEN_EYE not in ghosted and TOUGH in ghosted


def test_randomize_fills_open_grants(session):
    perks = open_perks(session, klass=WIZARD)

    result = asyncio.run(perks.randomize())

    state = session.state.get_current_state()
    assert result.success
    assert result.data["filled"] == 2
    assert state.active_grant() is None
    # Choice perks need an explicit choice and are never picked at random
    assert state.perk_grants[0].fulfilled in (KEEN_EYE, FLEET)
