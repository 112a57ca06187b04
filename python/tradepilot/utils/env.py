"""Helpers for resolving the system-level .env location and env flags.

Centralizes the per-OS configuration directory so the package bootstrap and
any tooling that writes environment variables agree on the same path.
"""

import os
import sys
from pathlib import Path
from typing import Optional


def get_system_env_dir() -> Path:
    """Return the OS user configuration directory for TradePilot.

    - macOS: ~/Library/Application Support/TradePilot
    - Linux: ~/.config/tradepilot
    - Windows: %APPDATA%\\TradePilot
    """
    home = Path.home()
    if os.name == "nt":
        appdata = os.getenv("APPDATA")
        base = Path(appdata) if appdata else (home / "AppData" / "Roaming")
        return base / "TradePilot"
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / "TradePilot"
    return home / ".config" / "tradepilot"


def get_system_env_path() -> Path:
    """Return the full path to the system `.env` file."""
    return get_system_env_dir() / ".env"


def ensure_system_env_dir() -> Path:
    """Ensure the system config directory exists and return it."""
    d = get_system_env_dir()
    d.mkdir(parents=True, exist_ok=True)
    return d


def debug_mode_enabled() -> bool:
    """Return whether debug mode is enabled via `TRADEPILOT_DEBUG`."""
    flag = os.getenv("TRADEPILOT_DEBUG", "false")
    return str(flag).lower() == "true"


def env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    """Read a string variable, treating blank values as unset."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def env_float(name: str, default: float) -> float:
    value = env_str(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc


def env_int(name: str, default: int) -> int:
    value = env_str(name)
    if value is None:
        return default
    try:
        return int(float(value))
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}") from exc


def env_bool(name: str, default: bool = False) -> bool:
    value = env_str(name)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")
