"""
Class step: class selection and the class's skill choices.
"""

import logging
import re
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from char_builder.models.builder_state import BuilderState, SkillGrant
from char_builder.models.items import Item
from char_builder.models.results import ActionResult, ErrorKind
from char_builder.models.vocabulary import SKILL_KEYS, WEAPON_SKILL_KEYS, ItemCategory, ItemType, StepId
from char_builder.rules.validators import selected_from_pool
from char_builder.steps.base import StepCore, StepRuntime, level_features, pick_random_option

logger = logging.getLogger(__name__)

PERK_LINK = re.compile(r"@UUID\[Compendium\.vagabond\.perks\.Item\.([^\]]+)\]")
PERK_REF_PREFIX = "Compendium.vagabond.perks.Item."


class ClassAction(str, Enum):
    SELECT = "select"
    TOGGLE_SKILL = "toggle_skill"
    RANDOMIZE = "randomize"


def skill_grant_of(item: Item) -> SkillGrant:
    try:
        return SkillGrant.model_validate(item.system.get("skillGrant") or {})
    except ValidationError as e:
        logger.warning(f"Ignoring malformed skill grant on {item.name}: {e}")
        return SkillGrant()


def class_granted_perks(item: Item) -> List[str]:
    """Perk references linked from level-1 feature descriptions, in order, without repeats."""
    refs: List[str] = []
    for feature in level_features(item):
        for match in PERK_LINK.finditer(feature.get("description") or ""):
            ref = f"{PERK_REF_PREFIX}{match.group(1)}"
            if ref not in refs:
                refs.append(ref)
    return refs


def level_one_spell_limit(item: Item) -> int:
    if not item.system.get("isSpellcaster"):
        return 0
    for entry in item.system.get("levelSpells", []):
        if entry.get("level") == 1:
            return int(entry.get("spells") or 0)
    return 0


class ClassStep:
    step_id = StepId.CLASS

    def __init__(self, runtime: StepRuntime):
        self.runtime = runtime
        self.core = StepCore(
            self.step_id,
            runtime,
            ClassAction,
            {
                ClassAction.SELECT: self.select,
                ClassAction.TOGGLE_SKILL: self.toggle_skill,
                ClassAction.RANDOMIZE: self.randomize,
            },
        )

    async def activate(self) -> bool:
        return await self.core.activate()

    async def handle_action(self, action: Union[ClassAction, str], **payload: Any) -> ActionResult:
        return await self.core.dispatch(action, payload)

    def is_complete(self) -> bool:
        return self.core.is_complete()

    def reset(self) -> bool:
        return self.core.reset()

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    async def select(self, ref: Optional[str] = None) -> ActionResult:
        if not ref:
            return ActionResult.fail(ErrorKind.NO_SELECTION, "No class given")

        token = self.runtime.token.value
        item = await self.runtime.resolve(ref)
        stale = self.core.stale(token)
        if stale:
            return stale
        if item is None:
            return ActionResult.fail(ErrorKind.NOT_FOUND, f"Class not found: {ref}")
        if item.type != ItemType.CLASS:
            return ActionResult.fail(ErrorKind.WRONG_TYPE, f"{item.name} is not a class")

        state = self.runtime.snapshot()
        if state.selected_class == ref:
            return ActionResult.ok(f"{item.name} already selected", klass=ref)

        grant = skill_grant_of(item)
        # Perk picks stay; the perks step merges them into the new class's grants
        perk_spells = set(state.perk_choices.values())
        updates: Dict[str, Any] = {
            "selected_class": ref,
            "preview_uuid": ref,
            "skills": list(dict.fromkeys(grant.guaranteed + list(state.perk_skills))),
            "skill_selections": {},
            "skill_grant": grant,
            "skill_choices_needed": sum(c.count for c in grant.choices),
            "class_perks": class_granted_perks(item),
            "spells": [s for s in state.spells if s in perk_spells],
            "spell_limit": level_one_spell_limit(item),
        }
        return self.core.commit(updates, f"Selected class {item.name}", klass=ref)

    async def toggle_skill(self, skill: Optional[str] = None) -> ActionResult:
        state = self.runtime.snapshot()
        if not state.selected_class or state.skill_grant is None:
            return ActionResult.fail(ErrorKind.NO_SELECTION, "Select a class first")
        if not skill:
            return ActionResult.fail(ErrorKind.NO_SELECTION, "No skill given")

        grant = state.skill_grant
        if skill in grant.guaranteed:
            return ActionResult.fail(ErrorKind.PROTECTED, "This skill is guaranteed by your class and cannot be removed")
        if skill in state.perk_skills:
            return ActionResult.fail(ErrorKind.PROTECTED, "This skill is granted by a perk; remove the perk instead")

        if skill in state.skills:
            return self._untrain(state, skill)
        return self._train(state, skill)

    def _untrain(self, state: BuilderState, skill: str) -> ActionResult:
        selections = {k: [s for s in v if s != skill] for k, v in state.skill_selections.items()}
        return self.core.commit(
            {"skills": [s for s in state.skills if s != skill], "skill_selections": selections},
            f"Removed {skill}",
        )

    def _train(self, state: BuilderState, skill: str) -> ActionResult:
        grant = state.skill_grant
        known = set(SKILL_KEYS) | set(WEAPON_SKILL_KEYS) | {s for c in grant.choices for s in c.pool}
        if skill not in known:
            return ActionResult.fail(ErrorKind.NOT_FOUND, f"Unknown skill: {skill}")

        matching = [i for i, c in enumerate(grant.choices) if not c.pool or skill in c.pool]
        if not matching:
            return ActionResult.fail(ErrorKind.NOT_ALLOWED, f"{skill} is not in any of your class's skill choices")

        group = next(
            (i for i in matching
             if selected_from_pool(state.skills, grant.choices[i].pool, grant.guaranteed) < grant.choices[i].count),
            None,
        )
        if group is None:
            count = grant.choices[matching[0]].count
            return ActionResult.fail(ErrorKind.LIMIT_REACHED, f"You can only choose {count} skill(s) from this group")

        selections = {k: list(v) for k, v in state.skill_selections.items()}
        selections.setdefault(str(group), []).append(skill)
        return self.core.commit(
            {"skills": state.skills + [skill], "skill_selections": selections},
            f"Trained {skill}",
            group=group,
        )

    async def randomize(self, **_: Any) -> ActionResult:
        settings = self.runtime.config.randomization_config(self.step_id)
        if not settings.enabled:
            return ActionResult.fail(ErrorKind.NOT_ALLOWED, "Class randomization is disabled")

        state = self.runtime.snapshot()
        ref = pick_random_option(self.runtime, ItemCategory.CLASSES.value, exclude=[state.selected_class or ""])
        ref = ref or state.selected_class
        if ref is None:
            return ActionResult.fail(ErrorKind.NOT_FOUND, "No classes available")

        selected = await self.select(ref)
        if not selected:
            return selected
        return self._randomize_skills()

    def _randomize_skills(self) -> ActionResult:
        state = self.runtime.snapshot()
        grant = state.skill_grant or SkillGrant()
        skills = list(dict.fromkeys(grant.guaranteed)) + [s for s in state.skills if s in state.perk_skills]
        selections: Dict[str, List[str]] = {}

        for i, choice in enumerate(grant.choices):
            pool = [s for s in (choice.pool or SKILL_KEYS) if s not in skills]
            picks = self.runtime.rng.sample(pool, min(choice.count, len(pool)))
            skills.extend(picks)
            selections[str(i)] = picks

        return self.core.commit(
            {"skills": skills, "skill_selections": selections},
            "Randomized class and skills",
            klass=state.selected_class,
        )

    # -------------------------------------------------------------------------
    # Context
    # -------------------------------------------------------------------------

    async def prepare_context(self) -> Dict[str, Any]:
        state = self.runtime.snapshot()
        context = self.core.base_context()
        context["options"] = [
            o.model_dump() for o in self.runtime.compendium.list_items_of_category(ItemCategory.CLASSES.value)
        ]
        context["selected"] = state.selected_class

        grant = state.skill_grant or SkillGrant()
        context["skills"] = {
            "guaranteed": grant.guaranteed,
            "trained": state.skills,
            "choices": [
                {
                    "pool": c.pool or list(SKILL_KEYS),
                    "count": c.count,
                    "selected": selected_from_pool(state.skills, c.pool, grant.guaranteed),
                }
                for c in grant.choices
            ],
            "needed": state.skill_choices_needed,
        }
        context["spell_limit"] = state.spell_limit
        context["class_perks"] = state.class_perks

        item = await self.runtime.resolve(state.selected_class, ItemType.CLASS.value)
        context["is_spellcaster"] = bool(item and item.system.get("isSpellcaster"))
        context["features"] = [
            {"name": f.get("name", ""), "description": f.get("description", "")}
            for f in (level_features(item) if item else [])
        ]
        return context
