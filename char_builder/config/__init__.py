from char_builder.config.builder_config import (
    ConfigurationSystem,
    FullCharacterRandomization,
    RandomizationConfig,
    RuleSpec,
    StatsConfig,
    StepConfig,
    StepRandomization,
    StepsConfig,
    UIConfig,
    ValidationConfig,
)
from char_builder.config.settings import Settings

__all__ = [
    "ConfigurationSystem",
    "FullCharacterRandomization",
    "RandomizationConfig",
    "RuleSpec",
    "StatsConfig",
    "StepConfig",
    "StepRandomization",
    "StepsConfig",
    "UIConfig",
    "ValidationConfig",
    "Settings",
]
