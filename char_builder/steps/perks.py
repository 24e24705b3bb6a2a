"""
Perks Step
==========
Perk selection driven by grants.

Every unit of perk capacity from an ancestry trait or a level-1 class feature
is a ``Grant``. Grants are sorted most-restrictive-first and the first
unfulfilled one is the *active* grant: perks are always chosen against it.
A grant whose options are all mandatory (amount >= options) is fulfilled at
creation and its perks are treated like class perks.

Perks with a choice configuration (a skill, weapon skill, stat or spell)
materialize that choice into the state when added; the effect is recorded so
removing the perk reverses exactly what was added.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from char_builder.models.builder_state import BuilderState, Grant, PerkStatSource
from char_builder.models.items import Item
from char_builder.models.results import ActionResult, ErrorKind, PrerequisiteCheck
from char_builder.models.vocabulary import SKILL_KEYS, STAT_KEYS, WEAPON_SKILL_KEYS, ItemCategory, ItemType, StepId
from char_builder.steps.base import StepCore, StepRuntime, level_features
from char_builder.steps.class_step import class_granted_perks

logger = logging.getLogger(__name__)

CHOICE_TYPES = ("spell", "skill", "weaponSkill", "stat")


class PerksAction(str, Enum):
    ADD = "add"
    REMOVE = "remove"
    CLEAR = "clear"
    TOGGLE_SHOW_ALL = "toggle_show_all"


# =============================================================================
# GRANTS
# =============================================================================


def grants_from_source(source: str, source_name: str, feature: Dict[str, Any]) -> List[Grant]:
    amount = int(feature.get("perkAmount") or 0)
    allowed = [p for p in feature.get("allowedPerks") or [] if p]
    name = feature.get("name", "")
    guaranteed = amount > 0 and len(allowed) > 0 and amount >= len(allowed)

    return [
        Grant(
            id=f"{source}-{name}-{i}",
            source=source,
            source_name=source_name,
            feature_name=name,
            allowed_perks=allowed,
            fulfilled=(allowed[i] if i < len(allowed) else allowed[0]) if guaranteed else None,
        )
        for i in range(amount)
    ]


def sort_grants(grants: List[Grant]) -> List[Grant]:
    """Restricted grants first, fewest options first; unrestricted keep insertion order."""
    return sorted(grants, key=lambda g: (0, len(g.allowed_perks)) if g.is_restricted else (1, 0))


def merge_grants(current: List[Grant], collected: List[Grant]) -> List[Grant]:
    """
    Carry fulfillment over to freshly collected grants.

    Same count: positional merge, keeping a previous pick only where the new
    grant still accepts it. Different count: the collected set replaces the old.
    """
    if not current or len(current) != len(collected):
        return collected

    merged = []
    for old, new in zip(current, collected):
        keep = old.fulfilled if old.fulfilled and new.accepts(old.fulfilled) else None
        merged.append(new.model_copy(update={"fulfilled": keep or new.fulfilled}))
    return merged


def refill_grants(grants: List[Grant], picks: List[str], skip: List[str]) -> List[Grant]:
    """Seat earlier picks the merge did not keep into the first open grant, when it accepts them."""
    refilled = [g.model_copy() for g in grants]
    for ref in picks:
        if ref in skip or any(g.fulfilled == ref for g in refilled):
            continue
        open_grant = next((g for g in refilled if not g.fulfilled), None)
        if open_grant is not None and open_grant.accepts(ref):
            open_grant.fulfilled = ref
    return refilled


def guaranteed_perks(grants: List[Grant]) -> List[str]:
    return [
        g.fulfilled for g in grants
        if g.fulfilled and g.is_restricted and _grant_is_guaranteed(g, grants)
    ]


def _grant_is_guaranteed(grant: Grant, grants: List[Grant]) -> bool:
    siblings = [g for g in grants if g.source == grant.source and g.feature_name == grant.feature_name]
    return len(siblings) >= len(grant.allowed_perks)


# =============================================================================
# PREREQUISITES
# =============================================================================


async def check_prerequisites(
    runtime: StepRuntime, perk: Item, state: BuilderState, known_spells: List[str]
) -> PrerequisiteCheck:
    """Soft check: base stat minimums, trained skills, any spell, specific spells."""
    prereqs = perk.system.get("prerequisites") or {}
    missing: List[str] = []

    for requirement in prereqs.get("stats") or []:
        stat = requirement.get("stat")
        needed = requirement.get("value") or 0
        if (state.assigned_stats.get(stat) or 0) < needed:
            missing.append(f"{stat} {needed}+")

    for skill in prereqs.get("trainedSkills") or []:
        if skill not in state.skills:
            missing.append(f"Skill: {skill}")

    if prereqs.get("hasAnySpell") and not known_spells:
        missing.append("Any spell")

    for spell_ref in prereqs.get("spells") or []:
        if spell_ref not in known_spells:
            spell = await runtime.resolve(spell_ref)
            missing.append(f"Spell: {spell.name if spell else 'Unknown'}")

    return PrerequisiteCheck(met=not missing, missing=missing)


class PerksStep:
    step_id = StepId.PERKS

    def __init__(self, runtime: StepRuntime):
        self.runtime = runtime
        self.core = StepCore(
            self.step_id,
            runtime,
            PerksAction,
            {
                PerksAction.ADD: self.add,
                PerksAction.REMOVE: self.remove,
                PerksAction.CLEAR: self.clear,
                PerksAction.TOGGLE_SHOW_ALL: self.toggle_show_all,
            },
        )

    async def activate(self) -> bool:
        if not await self.core.activate():
            return False
        return await self.sync_grants()

    async def handle_action(self, action: Union[PerksAction, str], **payload: Any) -> ActionResult:
        return await self.core.dispatch(action, payload)

    def is_complete(self) -> bool:
        return self.core.is_complete()

    def reset(self) -> bool:
        return self.core.reset()

    # =========================================================================
    # GRANT SYNC
    # =========================================================================

    async def collect_grants(self, state: BuilderState) -> List[Grant]:
        grants: List[Grant] = []

        ancestry = await self.runtime.resolve(state.selected_ancestry)
        if ancestry:
            for trait in ancestry.system.get("traits", []):
                grants.extend(grants_from_source("ancestry", ancestry.name, trait))

        class_item = await self.runtime.resolve(state.selected_class)
        if class_item:
            for feature in level_features(class_item):
                grants.extend(grants_from_source("class", class_item.name, feature))

        return sort_grants(grants)

    async def sync_grants(self) -> bool:
        """Re-derive grants from the current ancestry and class, keeping what still fits."""
        token = self.runtime.token.value
        state = self.runtime.snapshot()
        collected = await self.collect_grants(state)
        class_item = await self.runtime.resolve(state.selected_class)
        if self.runtime.is_stale(token):
            return False

        state = self.runtime.snapshot()
        linked = class_granted_perks(class_item) if class_item else []
        grants = refill_grants(merge_grants(state.perk_grants, collected), state.perks, linked)
        class_perks = list(dict.fromkeys(linked + guaranteed_perks(grants)))
        perks = [p for p in (g.fulfilled for g in grants) if p and p not in class_perks]

        if (
            grants == state.perk_grants
            and class_perks == state.class_perks
            and perks == state.perks
            and state.last_class_for_perks == state.selected_class
        ):
            return True

        updates: Dict[str, Any] = {
            "perk_grants": grants,
            "class_perks": class_perks,
            "perks": perks,
            "last_class_for_perks": state.selected_class,
        }
        # Effects of picks that did not survive the merge are reversed with them
        dropped = [p for p in state.perks if p not in perks]
        for ref in dropped:
            updates.update(self._reverse_effects(state, ref, updates))
        logger.debug(f"Synced {len(grants)} perk grant(s), dropped {len(dropped)} pick(s)")
        return self.runtime.state.update_multiple(updates, skip_history=True)

    # =========================================================================
    # ACTIONS
    # =========================================================================

    async def add(self, ref: Optional[str] = None, choice: Optional[str] = None) -> ActionResult:
        if not ref:
            return ActionResult.fail(ErrorKind.NO_SELECTION, "No perk given")

        rejected = self._check_grant(self.runtime.snapshot(), ref)
        if rejected:
            return rejected

        token = self.runtime.token.value
        item = await self.runtime.resolve(ref)
        if item is None:
            return self.core.stale(token) or ActionResult.fail(ErrorKind.NOT_FOUND, f"Perk not found: {ref}")
        if item.type != ItemType.PERK:
            return ActionResult.fail(ErrorKind.WRONG_TYPE, f"{item.name} is not a perk")

        state = self.runtime.snapshot()
        known = list(dict.fromkeys(state.spells + await self.runtime.collect_required_spells(state)))
        prereq = await check_prerequisites(self.runtime, item, state, known)
        warnings = []
        if not prereq.met and self.runtime.config.ui_config().behavior.show_prerequisite_warnings:
            warnings.append(f"Prerequisites not met - {', '.join(prereq.missing)}")

        choice_config = item.system.get("choiceConfig") or {}
        choice_type = choice_config.get("type")
        needs_choice = choice_type in CHOICE_TYPES and not choice_config.get("selected")
        if needs_choice:
            invalid = await self._check_choice(choice_type, choice)
            if invalid:
                return self.core.stale(token) or invalid

        stale = self.core.stale(token)
        if stale:
            return stale

        # Re-check against the state as it is now; another add may have won the race
        state = self.runtime.snapshot()
        rejected = self._check_grant(state, ref)
        if rejected:
            return rejected
        check = self.runtime.validator.validate_selection(
            ItemType.PERK.value, ref, state,
            {"prerequisites_met": prereq.met, "missing_prerequisites": prereq.missing},
        )
        if not check.can_select:
            return ActionResult.fail(ErrorKind.NOT_ALLOWED, check.errors[0] if check.errors else "Perk cannot be selected")

        grants = [g.model_copy() for g in state.perk_grants]
        active = next(g for g in grants if not g.fulfilled)
        active.fulfilled = ref

        updates: Dict[str, Any] = {
            "perk_grants": grants,
            "perks": state.perks + [ref],
            "preview_uuid": ref,
        }
        if needs_choice:
            effect, rejected = self._apply_choice(state, ref, choice_type, choice, choice_config)
            if rejected:
                return rejected
            updates.update(effect)

        return self.core.commit(updates, f"Added {item.name}", warnings, grant_id=active.id, choice=choice)

    def _check_grant(self, state: BuilderState, ref: str) -> Optional[ActionResult]:
        active = state.active_grant()
        if active is None:
            return ActionResult.fail(ErrorKind.LIMIT_REACHED, "All perk grants have been fulfilled")
        if ref in state.fulfilled_perks() or ref in state.class_perks:
            return ActionResult.fail(ErrorKind.DUPLICATE, "Perk already selected")
        if not active.accepts(ref):
            return ActionResult.fail(ErrorKind.NOT_ALLOWED, "This perk is not allowed for the current grant")
        return None

    async def _check_choice(self, choice_type: str, choice: Optional[str]) -> Optional[ActionResult]:
        if not choice:
            return ActionResult.fail(ErrorKind.NO_SELECTION, f"This perk needs a {choice_type} choice")
        if choice_type == "skill" and choice not in SKILL_KEYS:
            return ActionResult.fail(ErrorKind.VALIDATION_FAILED, f"Unknown skill: {choice}")
        if choice_type == "weaponSkill" and choice not in WEAPON_SKILL_KEYS:
            return ActionResult.fail(ErrorKind.VALIDATION_FAILED, f"Unknown weapon skill: {choice}")
        if choice_type == "stat" and choice not in STAT_KEYS:
            return ActionResult.fail(ErrorKind.VALIDATION_FAILED, f"Unknown stat: {choice}")
        if choice_type == "spell":
            spell = await self.runtime.resolve(choice, ItemType.SPELL.value)
            if spell is None:
                return ActionResult.fail(ErrorKind.VALIDATION_FAILED, f"Not a spell: {choice}")
        return None

    def _apply_choice(
        self, state: BuilderState, ref: str, choice_type: str, choice: str, choice_config: Dict[str, Any]
    ) -> Tuple[Dict[str, Any], Optional[ActionResult]]:
        updates: Dict[str, Any] = {"perk_choices": {**state.perk_choices, ref: choice}}

        if choice_type == "spell":
            if choice in state.spells:
                return {}, ActionResult.fail(ErrorKind.DUPLICATE, "That spell is already known")
            updates["spells"] = state.spells + [choice]

        elif choice_type in ("skill", "weaponSkill"):
            if choice in state.skills:
                return {}, ActionResult.fail(ErrorKind.DUPLICATE, f"Already trained in {choice}")
            updates["skills"] = state.skills + [choice]
            updates["perk_skills"] = {**state.perk_skills, choice: ref}

        else:
            amount = int(choice_config.get("effectValue") or 1)
            bonuses = dict(state.perk_stat_bonuses)
            bonuses[choice] = bonuses.get(choice, 0) + amount
            sources = {k: list(v) for k, v in state.perk_stat_sources.items()}
            sources.setdefault(ref, []).append(PerkStatSource(stat=choice, amount=amount))
            updates["perk_stat_bonuses"] = bonuses
            updates["perk_stat_sources"] = sources

        return updates, None

    def _reverse_effects(self, state: BuilderState, ref: str, pending: Dict[str, Any]) -> Dict[str, Any]:
        """Updates undoing the recorded choice effect of `ref`, layered over `pending`."""
        choices = dict(pending.get("perk_choices", state.perk_choices))
        choice = choices.pop(ref, None)
        if choice is None:
            return {}

        updates: Dict[str, Any] = {"perk_choices": choices}
        sources = {k: list(v) for k, v in pending.get("perk_stat_sources", state.perk_stat_sources).items()}
        perk_skills = dict(pending.get("perk_skills", state.perk_skills))

        if ref in sources:
            bonuses = dict(pending.get("perk_stat_bonuses", state.perk_stat_bonuses))
            for source in sources.pop(ref):
                bonuses[source.stat] = bonuses.get(source.stat, 0) - source.amount
                if bonuses[source.stat] <= 0:
                    del bonuses[source.stat]
            updates["perk_stat_bonuses"] = bonuses
            updates["perk_stat_sources"] = sources
        elif perk_skills.get(choice) == ref:
            del perk_skills[choice]
            updates["perk_skills"] = perk_skills
            updates["skills"] = [s for s in pending.get("skills", state.skills) if s != choice]
        else:
            updates["spells"] = [s for s in pending.get("spells", state.spells) if s != choice]
        return updates

    async def remove(self, ref: Optional[str] = None) -> ActionResult:
        state = self.runtime.snapshot()
        if ref in state.class_perks:
            return ActionResult.fail(ErrorKind.PROTECTED, "Cannot remove class perks")
        grant = next((g for g in state.perk_grants if g.fulfilled == ref), None)
        if grant is None:
            return ActionResult.fail(ErrorKind.NOT_FOUND, "Perk not in selection")

        grants = [g.model_copy(update={"fulfilled": None}) if g.id == grant.id else g for g in state.perk_grants]
        updates: Dict[str, Any] = {
            "perk_grants": grants,
            "perks": [p for p in state.perks if p != ref],
        }
        updates.update(self._reverse_effects(state, ref, updates))
        if state.preview_uuid == ref:
            updates["preview_uuid"] = None
        return self.core.commit(updates, "Removed perk", grant_id=grant.id)

    async def clear(self) -> ActionResult:
        state = self.runtime.snapshot()
        removable = [g.fulfilled for g in state.perk_grants if g.fulfilled and g.fulfilled not in state.class_perks]
        if not removable:
            return ActionResult.ok("Nothing to clear")

        updates: Dict[str, Any] = {
            "perk_grants": [
                g.model_copy(update={"fulfilled": None}) if g.fulfilled in removable else g
                for g in state.perk_grants
            ],
            "perks": [p for p in state.perks if p not in removable],
            "preview_uuid": None,
        }
        for ref in removable:
            updates.update(self._reverse_effects(state, ref, updates))
        return self.core.commit(updates, f"Cleared {len(removable)} perk(s)")

    async def toggle_show_all(self) -> ActionResult:
        state = self.runtime.snapshot()
        return self.core.commit({"show_all_perks": not state.show_all_perks}, "Toggled perk filter",
                                show_all=not state.show_all_perks)

    async def randomize(self, **_: Any) -> ActionResult:
        """Fill every open grant with a random allowed perk; choice perks are skipped."""
        filled = 0
        for _attempt in range(len(self.runtime.snapshot().perk_grants)):
            state = self.runtime.snapshot()
            active = state.active_grant()
            if active is None:
                break
            taken = set(state.fulfilled_perks()) | set(state.class_perks)
            pool = active.allowed_perks or [
                o.uuid for o in self.runtime.compendium.list_items_of_category(ItemCategory.PERKS.value)
            ]
            candidates = [p for p in pool if p not in taken]
            self.runtime.rng.shuffle(candidates)
            for ref in candidates:
                if (await self.add(ref)).success:
                    filled += 1
                    break
            else:
                break
        return ActionResult.ok(f"Randomized {filled} perk(s)", filled=filled)

    # =========================================================================
    # CONTEXT
    # =========================================================================

    async def prepare_context(self) -> Dict[str, Any]:
        state = self.runtime.snapshot()
        context = self.core.base_context()
        active = state.active_grant()
        known = list(dict.fromkeys(state.spells + await self.runtime.collect_required_spells(state)))

        context["grants"] = [
            {**g.model_dump(), "is_active": active is not None and g.id == active.id, "is_restricted": g.is_restricted}
            for g in state.perk_grants
        ]
        context["active_grant"] = active.model_dump() if active else None
        context["show_all"] = state.show_all_perks
        context["class_perks"] = list(state.class_perks)
        context["perks"] = list(state.perks)

        taken = set(state.fulfilled_perks()) | set(state.class_perks)
        options = []
        for summary in self.runtime.compendium.list_items_of_category(ItemCategory.PERKS.value):
            allowed = active is None or active.accepts(summary.uuid)
            if not allowed and not state.show_all_perks:
                continue
            item = await self.runtime.resolve(summary.uuid)
            prereq = await check_prerequisites(self.runtime, item, state, known) if item else PrerequisiteCheck()
            options.append({
                **summary.model_dump(),
                "selected": summary.uuid in taken,
                "ghosted": not allowed,
                "prerequisites_met": prereq.met,
                "missing_prerequisites": prereq.missing,
                "choice_type": (item.system.get("choiceConfig") or {}).get("type") if item else None,
            })
        context["options"] = options
        return context
