from char_builder.services.character_projection import LevelOneProjector
from char_builder.services.collaborators import (
    CharacterCommitter,
    CharacterProjector,
    Compendium,
    ItemCatalog,
    ItemResolver,
)
from char_builder.services.compendium import InMemoryCompendium
from char_builder.services.state_manager import StateManager
from char_builder.services.validation_engine import ValidationEngine

# BuilderSession lives in char_builder.services.builder_session; it imports the
# steps package, which itself depends on the modules above.

__all__ = [
    "LevelOneProjector",
    "CharacterCommitter",
    "CharacterProjector",
    "Compendium",
    "ItemCatalog",
    "ItemResolver",
    "InMemoryCompendium",
    "StateManager",
    "ValidationEngine",
]
