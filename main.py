import asyncio
import json
import logging

from dotenv import load_dotenv

from char_builder.config import ConfigurationSystem, Settings
from char_builder.models import CharacterAssignments, StepId
from char_builder.services import InMemoryCompendium, LevelOneProjector
from char_builder.services.builder_session import BuilderSession
from char_builder.utils.logger_config import setup_logging

SAMPLE_COMPENDIUM = "data/sample_compendium.json"

logger = logging.getLogger(__name__)


class LoggingCommitter:
    """Stands in for the host's character store: logs the finished character."""

    async def commit_character(self, assignments: CharacterAssignments) -> None:
        logger.info(f"Committed character:\n{json.dumps(assignments.model_dump(), indent=2)}")


async def build_random_character(session: BuilderSession) -> None:
    await session.start()
    result = await session.randomize_full_character()
    for warning in result.warnings:
        logger.warning(warning)

    for step in (StepId.PERKS, StepId.GEAR):
        moved = await session.go_to_step(step)
        if moved:
            await session.get_step(step).randomize()

    finished = await session.finish()
    if not finished:
        logger.error(f"Character not finished: {finished.message}")


if __name__ == "__main__":
    load_dotenv()
    settings = Settings.from_env()
    setup_logging(settings.log_level)

    config = ConfigurationSystem(settings.config_dir)
    compendium = InMemoryCompendium.from_file(settings.compendium_path or SAMPLE_COMPENDIUM)
    session = BuilderSession.from_settings(
        settings, config, compendium, LevelOneProjector(compendium), LoggingCommitter()
    )
    asyncio.run(build_random_character(session))
