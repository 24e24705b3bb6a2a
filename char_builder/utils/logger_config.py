import logging
from typing import Optional, Union

from char_builder.config.settings import Settings


class EmojiFormatter(logging.Formatter):
    """
    Log formatter that prefixes each line with an emoji for its level.
    """

    LEVEL_EMOJIS = {
        logging.DEBUG: "🐛",
        logging.INFO: "✅",
        logging.WARNING: "⚠️",
        logging.ERROR: "❌",
        logging.CRITICAL: "🔥",
    }

    def format(self, record):
        s = super().format(record)
        emoji = self.LEVEL_EMOJIS.get(record.levelno, "")
        return f"{emoji} {s}"


def setup_logging(level: Optional[Union[str, int]] = None):
    """
    Configures the root logger with the EmojiFormatter.
    Call once at the entry point. `level` defaults to CHAR_BUILDER_LOG_LEVEL.
    """
    if level is None:
        level = Settings.from_env().log_level

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(EmojiFormatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))

    # Avoid duplicate lines when called twice
    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    root_logger.addHandler(console_handler)
