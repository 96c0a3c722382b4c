"""Google Drive backup and restore for the PsA Logbook event store."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import db
from core import drive_api
from core.drive_session import DriveSession
from core.envelope import ExportOptions, build_envelope, serialise_envelope
from core.errors import InvalidFormatError
from core.events import now_ms
from core.merge import import_envelope
from core.provisioning import DriveLocation, RemoteProvisioner

logger = logging.getLogger(__name__)

STATUS_CONNECTED = "connected"
STATUS_OFFLINE = "offline"
STATUS_REAUTHORISE = "reauthorize"
STATUS_ERROR = "error"
STATUS_BUSY = "busy"


@dataclass
class SyncResult:
    """Summary of a backup or restore pass."""

    action: str
    message: str
    imported: int = 0
    status: str = STATUS_CONNECTED
    folder_id: Optional[str] = None
    file_id: Optional[str] = None
    timestamp: Optional[int] = None


@dataclass
class DriveStatus:
    configured: bool
    connected: bool
    folder_id: Optional[str] = None
    file_id: Optional[str] = None
    last_backup_at: Optional[int] = None
    last_restore_at: Optional[int] = None


def export_all() -> Dict[str, Any]:
    """Return the envelope of the entire, unfiltered local collection."""

    return build_envelope(db.fetch_all_events(), ExportOptions())


def export_filtered_json(options: ExportOptions) -> str:
    return serialise_envelope(build_envelope(db.list_events_for_export(options), options), indent=2)


def export_json_file(path: Path) -> int:
    """Write the full export to ``path`` and return the number of events."""

    envelope = export_all()
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(serialise_envelope(envelope, indent=2), encoding="utf-8")
    logger.info("Exported %s event(s) to %s", len(envelope["events"]), target)
    return len(envelope["events"])


def import_json_file(path: Path) -> int:
    """Merge the export stored at ``path`` into the store."""

    try:
        contents = Path(path).read_bytes()
    except OSError as exc:
        raise InvalidFormatError(f"Import file could not be read: {exc}") from exc
    result = import_envelope(contents)
    logger.info("Imported %s event(s) from %s", result.imported, path)
    return result.imported


class DriveBackup:
    """Push the whole store to one Drive document, or merge it back."""

    def __init__(
        self,
        session: Optional[DriveSession] = None,
        provisioner: Optional[RemoteProvisioner] = None,
    ) -> None:
        self.session = session or DriveSession()
        self.provisioner = provisioner or RemoteProvisioner(self.session, export_all)

    def status(self) -> DriveStatus:
        return DriveStatus(
            configured=self.session.is_configured(),
            connected=self.session.connected,
            folder_id=db.get_meta(db.MetaKey.DRIVE_FOLDER_ID),
            file_id=db.get_meta(db.MetaKey.DRIVE_FILE_ID),
            last_backup_at=db.get_meta_number(db.MetaKey.LAST_BACKUP_AT),
            last_restore_at=db.get_meta_number(db.MetaKey.LAST_RESTORE_AT),
        )

    def connect(self) -> DriveStatus:
        self.session.require_configured()
        self.session.require_online()
        self.session.reauthorize()
        return self.status()

    def _provision(self) -> DriveLocation:
        self.session.require_configured()
        return self.provisioner.provision()

    def backup(self) -> SyncResult:
        location = self._provision()
        envelope = export_all()
        drive_api.overwrite_json(self.session, location.file_id, envelope)
        stamp = now_ms()
        db.set_meta_number(db.MetaKey.LAST_BACKUP_AT, stamp)
        count = len(envelope["events"])
        logger.info("[Drive] Backup complete: %s event(s) uploaded to %s", count, location.file_id)
        return SyncResult(
            action="backup",
            message="Backup complete",
            folder_id=location.folder_id,
            file_id=location.file_id,
            timestamp=stamp,
        )

    def restore(self) -> SyncResult:
        location = self._provision()
        content = drive_api.download_file(self.session, location.file_id)
        result = import_envelope(content)
        stamp = now_ms()
        db.set_meta_number(db.MetaKey.LAST_RESTORE_AT, stamp)
        logger.info("[Drive] Restore complete: %s event(s) imported", result.imported)
        return SyncResult(
            action="restore",
            message=f"Restore complete: {result.imported} event(s) imported",
            imported=result.imported,
            folder_id=location.folder_id,
            file_id=location.file_id,
            timestamp=stamp,
        )

    def reset(self) -> None:
        """Forget the token and the cached Drive identifiers."""

        self.session.invalidate()
        db.clear_meta(db.MetaKey.DRIVE_FOLDER_ID, db.MetaKey.DRIVE_FILE_ID)
        logger.info("[Drive] Connection reset")


__all__ = [
    "DriveBackup",
    "DriveStatus",
    "STATUS_BUSY",
    "STATUS_CONNECTED",
    "STATUS_ERROR",
    "STATUS_OFFLINE",
    "STATUS_REAUTHORISE",
    "SyncResult",
    "export_all",
    "export_filtered_json",
    "export_json_file",
    "import_json_file",
]
