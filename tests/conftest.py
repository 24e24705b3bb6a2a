import json

import pytest

from builder_data import SAMPLE_COMPENDIUM
from char_builder.config.builder_config import ConfigurationSystem
from char_builder.models.items import DerivedFields
from char_builder.services.builder_session import BuilderSession
from char_builder.services.compendium import InMemoryCompendium
from char_builder.services.state_manager import StateManager
from char_builder.services.validation_engine import ValidationEngine


class MockProjector:
    def __init__(self):
        self.calls = []

    async def project_character(self, stats, trained_skills, item_refs):
        self.calls.append((dict(stats), list(trained_skills), list(item_refs)))
        return DerivedFields(hp=stats.get("might", 0))


class MockCommitter:
    def __init__(self, fail=False):
        self.fail = fail
        self.committed = []

    async def commit_character(self, assignments):
        if self.fail:
            raise RuntimeError("character store offline")
        self.committed.append(assignments)


class HookedCompendium(InMemoryCompendium):
    """
    Runs `on_resolve` inside every lookup, to simulate the session moving on mid-await.

    Refs in `hidden` resolve to nothing, as if the item left the compendium.
    """

    def __init__(self, items=None):
        super().__init__(items)
        self.on_resolve = None
        self.hidden = set()

    async def resolve_item_ref(self, ref):
        if self.on_resolve:
            self.on_resolve()
        if ref in self.hidden:
            return None
        return await super().resolve_item_ref(ref)


def write_config(directory, section, data):
    with open(directory / f"{section}.json", "w", encoding="utf-8") as f:
        json.dump(data, f)


@pytest.fixture
def config():
    return ConfigurationSystem.with_defaults()


@pytest.fixture
def state_manager(config):
    return StateManager(config)


@pytest.fixture
def engine(config):
    return ValidationEngine(config)


@pytest.fixture
def compendium():
    return InMemoryCompendium.from_file(SAMPLE_COMPENDIUM)


@pytest.fixture
def hooked_compendium():
    return HookedCompendium.from_file(SAMPLE_COMPENDIUM)


@pytest.fixture
def projector():
    return MockProjector()


@pytest.fixture
def committer():
    return MockCommitter()


@pytest.fixture
def session(config, compendium, projector, committer):
    return BuilderSession(config, compendium, projector, committer, seed=7)


@pytest.fixture
def make_session(compendium, projector, committer):
    """Build a session over a config directory, a compendium or a committer of the test's choosing."""

    def _make(config_dir=None, compendium_override=None, committer_override=None, seed=7):
        return BuilderSession(
            ConfigurationSystem(config_dir),
            compendium_override or compendium,
            projector,
            committer_override or committer,
            seed=seed,
        )

    return _make
