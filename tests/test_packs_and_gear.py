import asyncio

from builder_data import (
    ADVENTURER_PACK,
    CHAIN_MAIL,
    FIREBALL,
    LANTERN,
    LONGSWORD,
    ROPE,
    SCHOLAR_KIT,
    TORCH,
    build_through_stats,
)
from char_builder.models.results import ErrorKind
from conftest import write_config


def open_step(session, step_id):
    async def scenario():
        await build_through_stats(session)
        return await session.go_to_step(step_id)

    result = asyncio.run(scenario())
    assert result.success, result.message
    return session.get_step(step_id)


def run_actions(step, actions):
    async def scenario():
        return [await step.handle_action(name, **payload) for name, payload in actions]

    return asyncio.run(scenario())


# =============================================================================
# STARTING PACKS
# =============================================================================


def test_pack_sets_gear_budget(session):
    packs = open_step(session, "starting-packs")

    result = asyncio.run(packs.handle_action("select", ref=ADVENTURER_PACK))

    assert result.success
    assert result.data["gear_budget"] == 250
    assert session.state.get_value("selected_starting_pack") == ADVENTURER_PACK
    assert session.state.calculate_budgets().gear.total == 250


def test_removing_pack_restores_default_budget(session):
    packs = open_step(session, "starting-packs")

    _, removed, again = run_actions(packs, [
        ("select", {"ref": SCHOLAR_KIT}),
        ("remove", {}),
        ("remove", {}),
    ])

    assert removed.success
    assert again.error == ErrorKind.NO_SELECTION
    assert session.state.get_value("gear_budget") == 300
    assert session.state.get_value("selected_starting_pack") is None


def test_pack_rejections(session):
    packs = open_step(session, "starting-packs")

    none, missing, wrong = run_actions(packs, [
        ("select", {}),
        ("select", {"ref": "Compendium.vagabond.starting-packs.Item.nothing"}),
        ("select", {"ref": ROPE}),
    ])

    assert none.error == ErrorKind.NO_SELECTION
    assert missing.error == ErrorKind.NOT_FOUND
    assert wrong.error == ErrorKind.WRONG_TYPE


def test_pack_contents_skip_unknown_items(session):
    packs = open_step(session, "starting-packs")
    asyncio.run(packs.handle_action("select", ref=ADVENTURER_PACK))

    context = asyncio.run(packs.prepare_context())

    pack = context["pack"]
    assert pack["starting_budget"] == 250
    assert pack["currency"] == "2g 50s"
    assert [(i["uuid"], i["qty"]) for i in pack["items"]] == [(ROPE, 1), (TORCH, 3)]


def test_pack_randomize_picks_a_pack(session):
    packs = open_step(session, "starting-packs")

    result = asyncio.run(packs.randomize())

    assert result.success
    assert session.state.get_value("selected_starting_pack") in (ADVENTURER_PACK, SCHOLAR_KIT)
    assert session.state.get_value("gear_budget") in (250, 300)


# =============================================================================
# GEAR
# =============================================================================


def test_gear_requires_stats(session):
    asyncio.run(session.start())

    result = asyncio.run(session.go_to_step("gear"))

    assert result.error == ErrorKind.PREREQUISITES_UNMET


def test_spending_is_reconciled_with_gear_list(session):
    gear = open_step(session, "gear")

    results = run_actions(gear, [
        ("add", {"ref": ROPE}),
        ("add", {"ref": TORCH}),
        ("add", {"ref": LONGSWORD}),
        ("remove", {"ref": TORCH}),
        ("add", {"ref": LANTERN}),
        ("remove", {"ref": ROPE}),
    ])

    assert all(r.success for r in results)
    state = session.state.get_current_state()
    assert state.gear == [LONGSWORD, LANTERN]
    assert state.gear_cost_spent == 170
    assert asyncio.run(gear.reconcile()) == state.gear_cost_spent


def test_going_over_budget_warns(session):
    gear = open_step(session, "gear")

    result = asyncio.run(gear.handle_action("add", ref=CHAIN_MAIL))

    status = session.state.calculate_budgets().gear
    assert result.success
    assert result.warnings == ["Over budget by 50"]
    assert status.spent == 350
    assert status.remaining == -50
    assert status.is_over
    assert gear.is_complete()


def test_over_budget_refused_when_disallowed(tmp_path, make_session):
    write_config(tmp_path, "ui", {"behavior": {"allow_over_budget": False}})
    session = make_session(config_dir=tmp_path)
    gear = open_step(session, "gear")

    result = asyncio.run(gear.handle_action("add", ref=CHAIN_MAIL))

    assert result.error == ErrorKind.LIMIT_REACHED
    assert result.message == "Not enough budget for this item"
    assert session.state.get_value("gear") == []


def test_concurrent_duplicate_add(session):
    gear = open_step(session, "gear")

    async def scenario():
        return await asyncio.gather(
            gear.handle_action("add", ref=LONGSWORD),
            gear.handle_action("add", ref=LONGSWORD),
        )

    results = asyncio.run(scenario())

    assert sorted(r.success for r in results) == [False, True]
    assert [r.error for r in results if not r.success] == [ErrorKind.DUPLICATE]
    assert session.state.get_value("gear") == [LONGSWORD]
    assert session.state.get_value("gear_cost_spent") == 150


def test_removing_unpriceable_item_recounts_spending(make_session, hooked_compendium):
    session = make_session(compendium_override=hooked_compendium)
    gear = open_step(session, "gear")
    run_actions(gear, [("add", {"ref": ROPE}), ("add", {"ref": LONGSWORD})])
    assert session.state.get_value("gear_cost_spent") == 155
    hooked_compendium.hidden.add(ROPE)

    result = asyncio.run(gear.handle_action("remove", ref=ROPE))

    state = session.state.get_current_state()
    assert result.success
    assert state.gear == [LONGSWORD]
    assert state.gear_cost_spent == 150
    assert asyncio.run(gear.reconcile()) == state.gear_cost_spent


def test_gear_rejections(session):
    gear = open_step(session, "gear")

    missing, wrong, not_owned = run_actions(gear, [
        ("add", {"ref": "Compendium.vagabond.gear.Item.anvil"}),
        ("add", {"ref": FIREBALL}),
        ("remove", {"ref": ROPE}),
    ])

    assert missing.error == ErrorKind.NOT_FOUND
    assert wrong.error == ErrorKind.WRONG_TYPE
    assert not_owned.error == ErrorKind.NOT_FOUND


def test_randomize_buys_cheapest_first_within_budget(session):
    gear = open_step(session, "gear")

    result = asyncio.run(gear.randomize())

    state = session.state.get_current_state()
    assert result.success
    assert state.gear == [TORCH, ROPE, LANTERN, LONGSWORD]
    assert state.gear_cost_spent == 175.5
    assert not session.state.calculate_budgets().gear.is_over


def test_clear_and_preview(session):
    gear = open_step(session, "gear")
    run_actions(gear, [("add", {"ref": ROPE}), ("add", {"ref": LANTERN})])

    preview, cleared = run_actions(gear, [("select", {"ref": LONGSWORD}), ("clear", {})])

    state = session.state.get_current_state()
    assert preview.data["cost"] == 150
    assert cleared.success
    assert state.gear == []
    assert state.gear_cost_spent == 0
    assert state.preview_uuid is None


def test_gear_context(session):
    gear = open_step(session, "gear")
    asyncio.run(gear.handle_action("add", ref=TORCH))

    context = asyncio.run(gear.prepare_context())

    assert context["gear"][0]["cost_display"] == "5c"
    assert context["budget"]["remaining"] == 299.5
    assert context["allow_over_budget"] is True
    assert len(context["options"]) == 5
