"""Locate or create the Drive folder and backup file used by PsA Logbook."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

import db
from core import drive_api
from core.drive_session import DriveSession

logger = logging.getLogger(__name__)

ContentProvider = Callable[[], Mapping[str, Any]]


@dataclass(frozen=True)
class DriveLocation:
    folder_id: str
    file_id: str


class RemoteProvisioner:
    """Idempotently ensure the backup folder and file exist.

    Each step checks the identifier cached in the metadata table, then searches
    Drive by name, and only creates the resource when nothing matches. When
    several resources share the name the first result is used.
    """

    def __init__(
        self,
        session: DriveSession,
        initial_content: ContentProvider,
        *,
        folder_name: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> None:
        self.session = session
        self._initial_content = initial_content
        self.folder_name = folder_name or session.settings.folder_name
        self.file_name = file_name or session.settings.file_name

    def ensure_container(self) -> str:
        cached = db.get_meta(db.MetaKey.DRIVE_FOLDER_ID)
        if cached:
            return cached
        matches = drive_api.find_files(
            self.session, self.folder_name, drive_api.ROOT_PARENT, drive_api.FOLDER_MIME_TYPE
        )
        if matches:
            folder_id = matches[0]["id"]
            logger.info("[Drive] Using existing folder '%s' (%s)", self.folder_name, folder_id)
        else:
            folder_id = drive_api.create_folder(self.session, self.folder_name)
            logger.info("[Drive] Created folder '%s' (%s)", self.folder_name, folder_id)
        db.set_meta(db.MetaKey.DRIVE_FOLDER_ID, folder_id)
        return folder_id

    def ensure_document(self, folder_id: str) -> str:
        cached = db.get_meta(db.MetaKey.DRIVE_FILE_ID)
        if cached:
            return cached
        matches = drive_api.find_files(self.session, self.file_name, folder_id)
        if matches:
            file_id = matches[0]["id"]
            logger.info("[Drive] Using existing backup file '%s' (%s)", self.file_name, file_id)
        else:
            file_id = drive_api.create_json_file(
                self.session, folder_id, self.file_name, self._initial_content()
            )
            logger.info("[Drive] Created backup file '%s' (%s)", self.file_name, file_id)
        db.set_meta(db.MetaKey.DRIVE_FILE_ID, file_id)
        return file_id

    def ensure_document_location(self, file_id: str, folder_id: str) -> None:
        parents = drive_api.get_parents(self.session, file_id)
        if folder_id in parents:
            return
        logger.warning(
            "[Drive] Backup file %s was moved out of folder %s; moving it back", file_id, folder_id
        )
        drive_api.update_parents(self.session, file_id, folder_id, parents)

    def provision(self) -> DriveLocation:
        """Run container, document and location checks in order."""

        folder_id = self.ensure_container()
        file_id = self.ensure_document(folder_id)
        self.ensure_document_location(file_id, folder_id)
        return DriveLocation(folder_id=folder_id, file_id=file_id)


__all__ = ["DriveLocation", "RemoteProvisioner"]
