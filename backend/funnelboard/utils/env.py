"""Environment helpers for entrypoints that run outside FastAPI."""

import logging

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def load_env_file() -> None:
    """Load environment variables from a local .env file if present.

    WHAT:
        Loads variables from .env into os.environ without overwriting
        anything already exported.

    WHY:
        The API reads .env through pydantic-settings, but the database module
        and the standalone workers read os.environ directly.
    """
    loaded = load_dotenv(override=False)

    if loaded:
        logger.info("Loaded local .env file (existing variables were NOT overwritten)")
    else:
        logger.debug("No local .env file found or loaded")
