"""Application configuration helpers for PsA Logbook."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from core import app_paths


logger = logging.getLogger(__name__)


DRIVE_SETTINGS_FILENAME = "drive_settings.json"
DEFAULT_CLIENT_SECRETS_PATH = str(app_paths.credentials_path("client_secret.json"))
DEFAULT_FOLDER_NAME = "PsA Logbook"
DEFAULT_FILE_NAME = "psa-logbook-backup.json"
DRIVE_FILE_SCOPE = "https://www.googleapis.com/auth/drive.file"
DEFAULT_CONNECTIVITY_HOST = "www.googleapis.com"
DEFAULT_CONNECTIVITY_TIMEOUT = 3.0

# Environment variables take precedence over the JSON file.
ENV_OVERRIDES: Mapping[str, str] = {
    "client_secrets_path": "PSALOG_CLIENT_SECRETS",
    "folder_name": "PSALOG_DRIVE_FOLDER",
    "file_name": "PSALOG_DRIVE_FILE",
}


def drive_settings_path() -> Path:
    return app_paths.config_path(DRIVE_SETTINGS_FILENAME)


@dataclass
class DriveSettings:
    """Identity and naming configuration for the Google Drive backup."""

    client_secrets_path: str = DEFAULT_CLIENT_SECRETS_PATH
    folder_name: str = DEFAULT_FOLDER_NAME
    file_name: str = DEFAULT_FILE_NAME
    scopes: List[str] = field(default_factory=lambda: [DRIVE_FILE_SCOPE])
    connectivity_host: str = DEFAULT_CONNECTIVITY_HOST
    connectivity_timeout: float = DEFAULT_CONNECTIVITY_TIMEOUT

    def is_configured(self) -> bool:
        """Return ``True`` when an OAuth client secrets file is available."""

        path = (self.client_secrets_path or "").strip()
        return bool(path) and os.path.isfile(os.path.expanduser(path))

    def to_json(self) -> Dict[str, object]:
        return {
            "client_secrets_path": self.client_secrets_path,
            "folder_name": self.folder_name,
            "file_name": self.file_name,
            "scopes": list(self.scopes),
            "connectivity_host": self.connectivity_host,
            "connectivity_timeout": self.connectivity_timeout,
        }


def _load_json_mapping(path: Path) -> Dict[str, object]:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Settings file %s could not be read: %s", path, exc)
        return {}
    if isinstance(payload, Mapping):
        return dict(payload)
    return {}


def _coerce_text(value: object, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _coerce_timeout(value: object) -> float:
    try:
        timeout = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return DEFAULT_CONNECTIVITY_TIMEOUT
    return max(0.5, min(30.0, timeout))


def load_drive_settings(path: Optional[Path] = None) -> DriveSettings:
    data = _load_json_mapping(Path(path) if path else drive_settings_path())
    for key, env_var in ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value:
            data[key] = value

    scopes = data.get("scopes")
    if not isinstance(scopes, list) or not all(isinstance(scope, str) for scope in scopes) or not scopes:
        scopes = [DRIVE_FILE_SCOPE]

    return DriveSettings(
        client_secrets_path=_coerce_text(data.get("client_secrets_path"), DEFAULT_CLIENT_SECRETS_PATH),
        folder_name=_coerce_text(data.get("folder_name"), DEFAULT_FOLDER_NAME),
        file_name=_coerce_text(data.get("file_name"), DEFAULT_FILE_NAME),
        scopes=list(scopes),
        connectivity_host=_coerce_text(data.get("connectivity_host"), DEFAULT_CONNECTIVITY_HOST),
        connectivity_timeout=_coerce_timeout(data.get("connectivity_timeout", DEFAULT_CONNECTIVITY_TIMEOUT)),
    )


def save_drive_settings(settings: DriveSettings, path: Optional[Path] = None) -> None:
    target = Path(path) if path else drive_settings_path()
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("w", encoding="utf-8") as handle:
        json.dump(settings.to_json(), handle, indent=2, ensure_ascii=False)


__all__ = [
    "DEFAULT_CLIENT_SECRETS_PATH",
    "DEFAULT_FILE_NAME",
    "DEFAULT_FOLDER_NAME",
    "DRIVE_FILE_SCOPE",
    "DriveSettings",
    "drive_settings_path",
    "load_drive_settings",
    "save_drive_settings",
]
