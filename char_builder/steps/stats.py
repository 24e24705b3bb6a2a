"""
Stats Step
==========
Array-based stat assignment plus the stat bonus slots ancestry traits,
class features and perks grant.

Assignment flow: select an array (fills the pool), pick a pool value, assign
it to a stat. Reassigning a stat returns its old value to the pool, so the
pool and the assigned values always add up to the selected array.

Bonuses are +N slots with a condition on the stat's base value and a ceiling
on its final value. When every slot is in use, applying to another stat moves
the last applied bonus there.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from char_builder.models.builder_state import AppliedBonus, BuilderState, SelectedValue, StatBonus, empty_stats
from char_builder.models.results import ActionResult, ErrorKind
from char_builder.models.vocabulary import BONUS_CEILING, STAT_KEYS, StepId
from char_builder.rules.conditions import condition_met, condition_text
from char_builder.steps.base import StepCore, StepRuntime, level_features

logger = logging.getLogger(__name__)

D12 = 12


class StatsAction(str, Enum):
    SELECT_ARRAY = "select_array"
    PICK_VALUE = "pick_value"
    ASSIGN_STAT = "assign_stat"
    UNASSIGN_STAT = "unassign_stat"
    RESET_STATS = "reset_stats"
    APPLY_STAT_BONUS = "apply_stat_bonus"
    REMOVE_STAT_BONUS = "remove_stat_bonus"
    APPLY_BONUS = "apply_bonus"
    REMOVE_BONUS = "remove_bonus"
    RANDOMIZE = "randomize"


def bonus_total(applied: Dict[str, AppliedBonus], stat: str, skip: Optional[str] = None) -> int:
    return sum(a.amount for bonus_id, a in applied.items() if a.target == stat and bonus_id != skip)


class StatsStep:
    step_id = StepId.STATS

    def __init__(self, runtime: StepRuntime):
        self.runtime = runtime
        self.core = StepCore(
            self.step_id,
            runtime,
            StatsAction,
            {
                StatsAction.SELECT_ARRAY: self.select_array,
                StatsAction.PICK_VALUE: self.pick_value,
                StatsAction.ASSIGN_STAT: self.assign_stat,
                StatsAction.UNASSIGN_STAT: self.unassign_stat,
                StatsAction.RESET_STATS: self.reset_stats,
                StatsAction.APPLY_STAT_BONUS: self.apply_stat_bonus,
                StatsAction.REMOVE_STAT_BONUS: self.remove_stat_bonus,
                StatsAction.APPLY_BONUS: self.apply_bonus,
                StatsAction.REMOVE_BONUS: self.remove_bonus,
                StatsAction.RANDOMIZE: self.randomize,
            },
        )

    async def activate(self) -> bool:
        if not await self.core.activate():
            return False
        return await self.refresh_bonuses()

    async def handle_action(self, action: Union[StatsAction, str], **payload: Any) -> ActionResult:
        return await self.core.dispatch(action, payload)

    def is_complete(self) -> bool:
        return self.core.is_complete()

    def reset(self) -> bool:
        return self.core.reset()

    # =========================================================================
    # BONUS SOURCES
    # =========================================================================

    async def collect_bonuses(self, state: BuilderState) -> List[StatBonus]:
        """Bonus slots in source order: ancestry traits, class level-1 features, perks."""
        bonuses: List[StatBonus] = []

        ancestry = await self.runtime.resolve(state.selected_ancestry)
        if ancestry:
            for trait in ancestry.system.get("traits", []):
                name = trait.get("name", "")
                for i in range(int(trait.get("statBonusPoints") or 0)):
                    bonuses.append(StatBonus(
                        bonus_id=f"{ancestry.uuid}-{name}-{i}",
                        source_ref=ancestry.uuid,
                        source_name=f"{ancestry.name} - {name}",
                        source_type="ancestry",
                        reason=name,
                    ))

        class_item = await self.runtime.resolve(state.selected_class)
        if class_item:
            for feature in level_features(class_item):
                name = feature.get("name", "")
                for i in range(int(feature.get("statBonusPoints") or 0)):
                    bonuses.append(StatBonus(
                        bonus_id=f"{class_item.uuid}-{name}-{i}",
                        source_ref=class_item.uuid,
                        source_name=f"{class_item.name} - {name}",
                        source_type="class",
                        reason=name,
                    ))

        for perk in await self.runtime.resolve_many(dict.fromkeys(state.perks + state.class_perks)):
            for granted in perk.system.get("grantedBonuses", []):
                if granted.get("type") != "stat" or not granted.get("id"):
                    continue
                bonuses.append(StatBonus(
                    bonus_id=granted["id"],
                    source_ref=perk.uuid,
                    source_name=perk.name,
                    source_type="perk",
                    amount=int(granted.get("amount") or 1),
                    condition=granted.get("condition") or "always",
                    max_value=int(granted.get("maxValue") or BONUS_CEILING),
                    reason=granted.get("reason") or perk.name,
                ))
        return bonuses

    async def refresh_bonuses(self) -> bool:
        """Store the current bonus slots and drop applications whose slot disappeared."""
        state = self.runtime.snapshot()
        token = self.runtime.token.value
        bonuses = await self.collect_bonuses(state)
        if self.runtime.is_stale(token):
            return False

        state = self.runtime.snapshot()
        ids = {b.bonus_id for b in bonuses}
        applied = {k: v for k, v in state.applied_bonuses.items() if k in ids}
        if bonuses == state.available_bonuses and applied == state.applied_bonuses:
            return True
        if len(applied) != len(state.applied_bonuses):
            logger.info(f"Dropped {len(state.applied_bonuses) - len(applied)} bonus(es) whose source is gone")
        return self.runtime.state.update_multiple(
            {"available_bonuses": bonuses, "applied_bonuses": applied}, skip_history=True
        )

    # =========================================================================
    # ARRAY ASSIGNMENT
    # =========================================================================

    async def select_array(self, array_id: Union[str, int, None] = None) -> ActionResult:
        arrays = self.runtime.config.stat_arrays()
        key = str(array_id) if array_id is not None else None
        if key not in arrays:
            return ActionResult.fail(ErrorKind.NOT_FOUND, f"Unknown stat array: {array_id}")

        return self.core.commit(
            {
                "selected_array_id": key,
                "assigned_stats": empty_stats(),
                "unassigned_values": list(arrays[key]),
                "selected_value": None,
                "applied_bonuses": {},
            },
            f"Selected array {key}",
            array=arrays[key],
        )

    async def pick_value(self, index: Union[int, str, None] = None) -> ActionResult:
        state = self.runtime.snapshot()
        if not state.selected_array_id:
            return ActionResult.fail(ErrorKind.NO_SELECTION, "Select a stat array first")
        try:
            index = int(index)
        except (TypeError, ValueError):
            return ActionResult.fail(ErrorKind.NOT_FOUND, f"No pool value at index {index}")
        if not 0 <= index < len(state.unassigned_values):
            return ActionResult.fail(ErrorKind.NOT_FOUND, f"No pool value at index {index}")

        picked = SelectedValue(value=state.unassigned_values[index], pool_index=index)
        return self.core.commit({"selected_value": picked}, f"Picked {picked.value}", value=picked.value)

    async def assign_stat(self, stat: Optional[str] = None) -> ActionResult:
        state = self.runtime.snapshot()
        if stat not in STAT_KEYS:
            return ActionResult.fail(ErrorKind.NOT_FOUND, f"Unknown stat: {stat}")
        picked = state.selected_value
        if picked is None:
            return ActionResult.fail(ErrorKind.NO_SELECTION, "Pick a value first")

        pool = list(state.unassigned_values)
        if 0 <= picked.pool_index < len(pool) and pool[picked.pool_index] == picked.value:
            del pool[picked.pool_index]
        elif picked.value in pool:
            pool.remove(picked.value)
        else:
            return ActionResult.fail(ErrorKind.VALIDATION_FAILED, f"{picked.value} is no longer in the pool")

        previous = state.assigned_stats.get(stat)
        if previous is not None:
            pool.append(previous)

        assigned = dict(state.assigned_stats)
        assigned[stat] = picked.value
        updates: Dict[str, Any] = {
            "assigned_stats": assigned,
            "unassigned_values": pool,
            "selected_value": None,
        }
        kept = self._bonuses_still_valid(state, stat, picked.value)
        if kept is not None:
            updates["applied_bonuses"] = kept
        return self.core.commit(updates, f"Assigned {picked.value} to {stat}", stat=stat, value=picked.value)

    def _bonuses_still_valid(self, state: BuilderState, stat: str, base: int) -> Optional[Dict[str, AppliedBonus]]:
        """Applied bonuses with those the new base value no longer admits removed; None when unchanged."""
        slots = {b.bonus_id: b for b in state.available_bonuses}
        kept = {}
        for bonus_id, application in state.applied_bonuses.items():
            slot = slots.get(bonus_id)
            if application.target == stat and slot is not None:
                if not condition_met(slot.condition, base) or base + bonus_total(state.applied_bonuses, stat) > min(slot.max_value, BONUS_CEILING):
                    continue
            kept[bonus_id] = application
        return kept if len(kept) != len(state.applied_bonuses) else None

    async def unassign_stat(self, stat: Optional[str] = None) -> ActionResult:
        state = self.runtime.snapshot()
        if stat not in STAT_KEYS:
            return ActionResult.fail(ErrorKind.NOT_FOUND, f"Unknown stat: {stat}")
        value = state.assigned_stats.get(stat)
        if value is None:
            return ActionResult.fail(ErrorKind.NO_SELECTION, f"{stat} has no value")

        assigned = dict(state.assigned_stats)
        assigned[stat] = None
        applied = {k: v for k, v in state.applied_bonuses.items() if v.target != stat}
        return self.core.commit(
            {
                "assigned_stats": assigned,
                "unassigned_values": state.unassigned_values + [value],
                "applied_bonuses": applied,
            },
            f"Unassigned {stat}",
        )

    async def reset_stats(self) -> ActionResult:
        state = self.runtime.snapshot()
        arrays = self.runtime.config.stat_arrays()
        if not state.selected_array_id or state.selected_array_id not in arrays:
            return ActionResult.fail(ErrorKind.NO_SELECTION, "Select a stat array first")
        return self.core.commit(
            {
                "assigned_stats": empty_stats(),
                "unassigned_values": list(arrays[state.selected_array_id]),
                "selected_value": None,
                "applied_bonuses": {},
            },
            "Stats reset",
        )

    # =========================================================================
    # BONUSES
    # =========================================================================

    async def apply_stat_bonus(self, stat: Optional[str] = None) -> ActionResult:
        """Apply the next free bonus to `stat`, or move the last applied one there."""
        if stat not in STAT_KEYS:
            return ActionResult.fail(ErrorKind.NO_SELECTION, "No stat selected for bonus application")

        token = self.runtime.token.value
        bonuses = await self.collect_bonuses(self.runtime.snapshot())
        stale = self.core.stale(token)
        if stale:
            return stale

        state = self.runtime.snapshot()
        applied = dict(state.applied_bonuses)
        if any(a.target == stat for a in applied.values()):
            return ActionResult.ok(f"{stat} already has a bonus", reassigned=False)

        bonus = next((b for b in bonuses if b.bonus_id not in applied), None)
        moving = None
        if bonus is None and applied:
            in_use = [b for b in bonuses if b.bonus_id in applied]
            if in_use:
                bonus = in_use[-1]
                moving = bonus.bonus_id
        if bonus is None:
            return ActionResult.fail(ErrorKind.LIMIT_REACHED, "No bonus points available")

        base = state.assigned_stats.get(stat)
        if base is None:
            return ActionResult.fail(ErrorKind.NO_SELECTION, "Please assign a value to this stat first")

        final = base + bonus_total(applied, stat, skip=moving) + bonus.amount
        if final > BONUS_CEILING:
            return ActionResult.fail(ErrorKind.LIMIT_REACHED, f"{stat} would exceed maximum ({BONUS_CEILING})")
        if not condition_met(bonus.condition, base):
            return ActionResult.fail(ErrorKind.NOT_ALLOWED, f"{stat} does not meet the condition: {condition_text(bonus.condition) or bonus.condition}")

        applied[bonus.bonus_id] = AppliedBonus(target=stat, amount=bonus.amount)
        message = f"Moved {bonus.reason} to {stat}" if moving else f"Applied {bonus.reason} to {stat}"
        return self.core.commit(
            {"applied_bonuses": applied, "available_bonuses": bonuses},
            message,
            bonus_id=bonus.bonus_id,
            reassigned=moving is not None,
        )

    async def remove_stat_bonus(self, stat: Optional[str] = None) -> ActionResult:
        state = self.runtime.snapshot()
        target = next((k for k, a in state.applied_bonuses.items() if a.target == stat), None)
        if target is None:
            return ActionResult.fail(ErrorKind.NOT_FOUND, f"No bonus applied to {stat}")
        return await self.remove_bonus(target)

    async def apply_bonus(self, bonus_id: Optional[str] = None, stat: Optional[str] = None) -> ActionResult:
        """Apply one specific bonus slot to `stat`."""
        state = self.runtime.snapshot()
        bonus = next((b for b in state.available_bonuses if b.bonus_id == bonus_id), None)
        if bonus is None:
            return ActionResult.fail(ErrorKind.NOT_FOUND, f"Bonus not found: {bonus_id}")
        if stat not in STAT_KEYS:
            return ActionResult.fail(ErrorKind.NOT_FOUND, f"Unknown stat: {stat}")

        base = state.assigned_stats.get(stat)
        if base is None:
            return ActionResult.fail(ErrorKind.NO_SELECTION, "Please assign a value to this stat first")
        others = {k: a for k, a in state.applied_bonuses.items() if a.target == stat and k != bonus_id}
        if others:
            return ActionResult.fail(ErrorKind.DUPLICATE, f"{stat} already has a bonus")
        if not condition_met(bonus.condition, base):
            return ActionResult.fail(ErrorKind.NOT_ALLOWED, f"Cannot apply {bonus.reason} to {stat}: condition not met")
        if base + bonus.amount > min(bonus.max_value, BONUS_CEILING):
            return ActionResult.fail(ErrorKind.LIMIT_REACHED, f"Cannot apply {bonus.reason}: would exceed maximum of {bonus.max_value}")

        applied = dict(state.applied_bonuses)
        applied[bonus_id] = AppliedBonus(target=stat, amount=bonus.amount)
        return self.core.commit({"applied_bonuses": applied}, f"Applied {bonus.reason} to {stat}")

    async def remove_bonus(self, bonus_id: Optional[str] = None) -> ActionResult:
        state = self.runtime.snapshot()
        if bonus_id not in state.applied_bonuses:
            return ActionResult.fail(ErrorKind.NOT_FOUND, f"Bonus not applied: {bonus_id}")
        applied = {k: v for k, v in state.applied_bonuses.items() if k != bonus_id}
        return self.core.commit({"applied_bonuses": applied}, f"Removed bonus {bonus_id}")

    # =========================================================================
    # RANDOMIZE
    # =========================================================================

    async def randomize(self, auto_assign: Optional[bool] = None, **_: Any) -> ActionResult:
        settings = self.runtime.config.randomization_config(self.step_id)
        if not settings.enabled:
            return ActionResult.fail(ErrorKind.NOT_ALLOWED, "Stat randomization is disabled")
        if auto_assign is None:
            auto_assign = settings.auto_assign

        arrays = self.runtime.config.stat_arrays()
        if not arrays:
            return ActionResult.fail(ErrorKind.NOT_FOUND, "No stat arrays configured")
        if len(arrays) == D12 and all(str(n) in arrays for n in range(1, D12 + 1)):
            array_id = str(self.runtime.rng.randint(1, D12))
        else:
            array_id = self.runtime.rng.choice(sorted(arrays, key=int))

        selected = await self.select_array(array_id)
        if not selected or not auto_assign:
            return selected

        values = list(arrays[array_id])
        self.runtime.rng.shuffle(values)
        return self.core.commit(
            {
                "assigned_stats": dict(zip(STAT_KEYS, values)),
                "unassigned_values": [],
                "selected_value": None,
            },
            f"Rolled array {array_id} and assigned stats",
            array_id=array_id,
        )

    # =========================================================================
    # CONTEXT
    # =========================================================================

    async def prepare_context(self) -> Dict[str, Any]:
        state = self.runtime.snapshot()
        context = self.core.base_context()
        arrays = self.runtime.config.stat_arrays()
        final = state.final_stats()

        context["arrays"] = [{"id": k, "values": v} for k, v in sorted(arrays.items(), key=lambda kv: int(kv[0]))]
        context["selected_array_id"] = state.selected_array_id
        context["pool"] = list(state.unassigned_values)
        context["selected_value"] = state.selected_value.model_dump() if state.selected_value else None

        free = [b for b in state.available_bonuses if b.bonus_id not in state.applied_bonuses]
        context["stats"] = []
        for key in STAT_KEYS:
            base = state.assigned_stats.get(key)
            context["stats"].append({
                "key": key,
                "base": base,
                "bonus": bonus_total(state.applied_bonuses, key) + state.perk_stat_bonuses.get(key, 0),
                "final": final[key] if base is not None else None,
                "can_take_bonus": base is not None and any(condition_met(b.condition, base) for b in free),
            })

        context["bonuses"] = [
            {
                **b.model_dump(),
                "applied_to": state.applied_bonuses[b.bonus_id].target if b.bonus_id in state.applied_bonuses else None,
                "condition_text": condition_text(b.condition),
            }
            for b in state.available_bonuses
        ]
        derived = await self.runtime.derived_preview(state)
        context["derived"] = derived.model_dump() if derived else None
        return context
