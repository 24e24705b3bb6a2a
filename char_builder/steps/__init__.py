"""
Steps Package
=============
The seven builder steps. Each is an independent class with a closed action
enum; ``build_steps`` wires them to one session's runtime.
"""

from typing import Dict, Type

from char_builder.models.vocabulary import StepId
from char_builder.steps.ancestry import AncestryAction, AncestryStep
from char_builder.steps.base import SessionToken, StepCore, StepManager, StepRuntime, action_table
from char_builder.steps.class_step import ClassAction, ClassStep
from char_builder.steps.gear import GearAction, GearStep
from char_builder.steps.perks import PerksAction, PerksStep
from char_builder.steps.spells import SpellsAction, SpellsStep
from char_builder.steps.starting_packs import StartingPackAction, StartingPacksStep
from char_builder.steps.stats import StatsAction, StatsStep

STEP_TYPES: Dict[StepId, Type] = {
    StepId.ANCESTRY: AncestryStep,
    StepId.CLASS: ClassStep,
    StepId.STATS: StatsStep,
    StepId.SPELLS: SpellsStep,
    StepId.PERKS: PerksStep,
    StepId.STARTING_PACKS: StartingPacksStep,
    StepId.GEAR: GearStep,
}


def build_steps(runtime: StepRuntime) -> Dict[StepId, StepManager]:
    return {step_id: step_type(runtime) for step_id, step_type in STEP_TYPES.items()}


__all__ = [
    "STEP_TYPES",
    "build_steps",
    "SessionToken",
    "StepCore",
    "StepManager",
    "StepRuntime",
    "action_table",
    "AncestryAction",
    "AncestryStep",
    "ClassAction",
    "ClassStep",
    "GearAction",
    "GearStep",
    "PerksAction",
    "PerksStep",
    "SpellsAction",
    "SpellsStep",
    "StartingPackAction",
    "StartingPacksStep",
    "StatsAction",
    "StatsStep",
]
