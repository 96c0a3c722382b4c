"""Google Drive API helpers for PsA Logbook backups."""
from __future__ import annotations

import io
import json
from typing import Any, Dict, List, Mapping, Optional, Sequence

from googleapiclient.http import MediaIoBaseUpload

from core.drive_session import DriveSession

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
JSON_MIME_TYPE = "application/json"
ROOT_PARENT = "root"


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def build_query(name: str, parent_id: str, mime_type: Optional[str] = None) -> str:
    parts = [f"name = '{_escape(name)}'"]
    if mime_type:
        parts.append(f"mimeType = '{mime_type}'")
    parts.append("trashed = false")
    parts.append(f"'{_escape(parent_id)}' in parents")
    return " and ".join(parts)


def _json_media(data: Mapping[str, Any]) -> MediaIoBaseUpload:
    return MediaIoBaseUpload(
        io.BytesIO(json.dumps(data, ensure_ascii=False).encode("utf-8")),
        mimetype=JSON_MIME_TYPE,
        resumable=False,
    )


def find_files(
    session: DriveSession,
    name: str,
    parent_id: str,
    mime_type: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Return non-trashed files called ``name`` inside ``parent_id``."""

    query = build_query(name, parent_id, mime_type)
    response = session.execute(
        lambda service: service.files().list(q=query, spaces="drive", fields="files(id, name)")
    )
    return list((response or {}).get("files", []))


def create_folder(session: DriveSession, name: str, parent_id: str = ROOT_PARENT) -> str:
    metadata = {"name": name, "mimeType": FOLDER_MIME_TYPE, "parents": [parent_id]}
    created = session.execute(lambda service: service.files().create(body=metadata, fields="id"))
    return created["id"]


def create_json_file(
    session: DriveSession, parent_id: str, filename: str, data: Mapping[str, Any]
) -> str:
    """Create a JSON document in ``parent_id`` with ``data`` as its content."""

    metadata = {"name": filename, "parents": [parent_id], "mimeType": JSON_MIME_TYPE}
    created = session.execute(
        lambda service: service.files().create(
            body=metadata, media_body=_json_media(data), fields="id"
        )
    )
    return created["id"]


def get_parents(session: DriveSession, file_id: str) -> List[str]:
    metadata = session.execute(
        lambda service: service.files().get(fileId=file_id, fields="parents")
    )
    return list((metadata or {}).get("parents") or [])


def update_parents(
    session: DriveSession,
    file_id: str,
    add_parent: str,
    remove_parents: Sequence[str] = (),
) -> None:
    options: Dict[str, str] = {"addParents": add_parent}
    if remove_parents:
        options["removeParents"] = ",".join(remove_parents)
    session.execute(
        lambda service: service.files().update(fileId=file_id, body={}, fields="id, parents", **options)
    )


def download_file(session: DriveSession, file_id: str) -> bytes:
    """Download a file's content as bytes."""

    content = session.execute(lambda service: service.files().get_media(fileId=file_id))
    if isinstance(content, str):
        return content.encode("utf-8")
    return bytes(content or b"")


def overwrite_json(session: DriveSession, file_id: str, data: Mapping[str, Any]) -> None:
    """Replace the content of ``file_id`` with ``data``."""

    session.execute(
        lambda service: service.files().update(
            fileId=file_id, media_body=_json_media(data), fields="id"
        )
    )


__all__ = [
    "FOLDER_MIME_TYPE",
    "JSON_MIME_TYPE",
    "ROOT_PARENT",
    "build_query",
    "create_folder",
    "create_json_file",
    "download_file",
    "find_files",
    "get_parents",
    "overwrite_json",
    "update_parents",
]
