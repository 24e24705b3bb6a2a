"""
Runtime settings read from the environment.
Call ``load_dotenv()`` at the entry point before ``Settings.from_env()``.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}, using {default}")
        return default


@dataclass
class Settings:
    config_dir: Optional[str] = None
    compendium_path: Optional[str] = None
    log_level: str = "INFO"
    history_limit: int = 50
    default_gear_budget: int = 300
    seed: Optional[int] = None

    @classmethod
    def from_env(cls) -> "Settings":
        seed_raw = os.environ.get("CHAR_BUILDER_SEED")
        return cls(
            config_dir=os.environ.get("CHAR_BUILDER_CONFIG_DIR") or None,
            compendium_path=os.environ.get("CHAR_BUILDER_COMPENDIUM") or None,
            log_level=os.environ.get("CHAR_BUILDER_LOG_LEVEL", "INFO").upper(),
            history_limit=_int_env("CHAR_BUILDER_HISTORY_LIMIT", 50),
            default_gear_budget=_int_env("CHAR_BUILDER_DEFAULT_GEAR_BUDGET", 300),
            seed=_int_env("CHAR_BUILDER_SEED", 0) if seed_raw else None,
        )
