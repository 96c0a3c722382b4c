"""Centralised helpers for managing PsA Logbook application directories."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)

_APP_ENV_VARS: Iterable[str] = ("LOCALAPPDATA", "APPDATA")
APP_NAME = "PsALogbook"


def _detect_base_directory() -> Path:
    override = os.environ.get("PSALOG_HOME")
    if override:
        return Path(override).expanduser().resolve()
    for env_var in _APP_ENV_VARS:
        value = os.environ.get(env_var)
        if value:
            return Path(value).expanduser().resolve() / APP_NAME
    return Path.home().resolve() / ".psalogbook"


APP_DIR: Path = _detect_base_directory()
CONFIG_DIR: Path = APP_DIR / "config"
CREDENTIALS_DIR: Path = APP_DIR / "credentials"
LOG_DIR: Path = APP_DIR / "logs"


def ensure_directory(path: Path) -> Path:
    """Ensure that ``path`` exists, returning the :class:`~pathlib.Path`."""

    path.mkdir(parents=True, exist_ok=True)
    return path


def ensure_app_structure() -> None:
    """Create the base directories required for application data."""

    for directory in (APP_DIR, CONFIG_DIR, CREDENTIALS_DIR, LOG_DIR):
        ensure_directory(directory)


def _rooted(base: Path, parts: tuple[str, ...]) -> Path:
    ensure_app_structure()
    target = base.joinpath(*parts)
    if target.parent and not target.parent.exists():
        target.parent.mkdir(parents=True, exist_ok=True)
    return target


def data_path(*parts: str) -> Path:
    """Return a path rooted inside :data:`APP_DIR`, creating parent directories."""

    return _rooted(APP_DIR, parts)


def config_path(*parts: str) -> Path:
    return _rooted(CONFIG_DIR, parts)


def credentials_path(*parts: str) -> Path:
    return _rooted(CREDENTIALS_DIR, parts)


def logs_path(*parts: str) -> Path:
    return _rooted(LOG_DIR, parts)


__all__ = [
    "APP_DIR",
    "APP_NAME",
    "CONFIG_DIR",
    "CREDENTIALS_DIR",
    "LOG_DIR",
    "config_path",
    "credentials_path",
    "data_path",
    "ensure_app_structure",
    "ensure_directory",
    "logs_path",
]
