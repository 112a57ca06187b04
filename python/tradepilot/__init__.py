"""TradePilot - automated decision-and-execution loop for perpetual futures."""

__version__ = "0.1.0"
__author__ = "TradePilot Team"
__description__ = "Automated LLM-assisted trading loop for leveraged derivatives"

__all__ = [
    "__version__",
    "__author__",
    "__description__",
]

import os
import shutil
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger

from tradepilot.utils.env import (
    debug_mode_enabled,
    ensure_system_env_dir,
    get_system_env_path,
)


def load_env_file_early() -> None:
    """Load environment variables before any config object is built.

    Behavior:
    - Loads the system `.env` (e.g. ~/.config/tradepilot/.env on Linux),
      seeding it from the project `.env.example` when it does not exist yet
    - Loads a `.env` in the current working directory on top, so a checkout
      can override the system file
    """
    project_root = Path(__file__).resolve().parent.parent.parent
    sys_env = get_system_env_path()
    example_file = project_root / ".env.example"

    try:
        if not sys_env.exists() and example_file.exists():
            ensure_system_env_dir()
            shutil.copy(example_file, sys_env)
            if debug_mode_enabled():
                logger.info("Created system .env from example: {}", sys_env)
    except OSError as exc:
        if debug_mode_enabled():
            logger.info("Failed to prepare system .env: {}", exc)

    if sys_env.exists():
        load_dotenv(sys_env, override=False)
        if debug_mode_enabled():
            logger.info("Environment variables loaded from {}", sys_env)

    local_env = Path(os.getcwd()) / ".env"
    if local_env.exists():
        load_dotenv(local_env, override=True)


# Load environment variables immediately when package is imported
load_env_file_early()
