from __future__ import annotations

import json
import os
import re
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Keep application directories out of the real home before anything imports them.
os.environ.setdefault("PSALOG_HOME", tempfile.mkdtemp(prefix="psalogbook-tests-"))

import db  # noqa: E402
from core.drive_session import DriveSession  # noqa: E402
from settings import DriveSettings  # noqa: E402


@pytest.fixture
def store(tmp_path: Path) -> Path:
    db_path = tmp_path / "logbook.db"
    db.set_database_path(db_path)
    db.initialize_database()
    return db_path


@pytest.fixture
def drive_settings(tmp_path: Path) -> DriveSettings:
    secrets = tmp_path / "client_secret.json"
    secrets.write_text(json.dumps({"installed": {"client_id": "test"}}), encoding="utf-8")
    return DriveSettings(client_secrets_path=str(secrets))


class FakeCredentials:
    def __init__(self, token: str = "test-token") -> None:
        self.token = token


class _FakeRequest:
    def __init__(self, callback):
        self._callback = callback

    def execute(self):
        return self._callback()


class _FakeFiles:
    def __init__(self, service: "FakeDriveService") -> None:
        self._service = service

    def list(self, q: str, spaces: str = "drive", fields: str = ""):
        return _FakeRequest(lambda: self._service._handle_list(q))

    def create(self, body, media_body=None, fields: str = ""):
        return _FakeRequest(lambda: self._service._handle_create(body, media_body))

    def get(self, fileId: str, fields: str = ""):  # noqa: N803 - API compatibility
        return _FakeRequest(lambda: self._service._handle_get(fileId))

    def get_media(self, fileId: str):  # noqa: N803 - API compatibility
        return _FakeRequest(lambda: self._service.files_by_id[fileId]["content"])

    def update(self, fileId: str, body=None, media_body=None, fields: str = "", **options):  # noqa: N803
        return _FakeRequest(lambda: self._service._handle_update(fileId, media_body, options))


class FakeDriveService:
    """In-memory stand-in for the Drive v3 ``files`` collection."""

    def __init__(self) -> None:
        self.files_by_id: Dict[str, Dict[str, Any]] = {}
        self.calls: List[str] = []
        self._counter = 0

    def files(self) -> _FakeFiles:
        return _FakeFiles(self)

    def add_file(self, name: str, parents: List[str], *, mime_type: str = "application/json", content: bytes = b"") -> str:
        self._counter += 1
        file_id = f"file-{self._counter}"
        self.files_by_id[file_id] = {
            "id": file_id,
            "name": name,
            "mimeType": mime_type,
            "parents": list(parents),
            "content": content,
            "trashed": False,
        }
        return file_id

    def creations(self, mime_type: Optional[str] = None) -> int:
        prefix = f"create:{mime_type}" if mime_type else "create:"
        return sum(1 for call in self.calls if call.startswith(prefix))

    def _handle_list(self, query: str) -> Dict[str, Any]:
        self.calls.append("list")
        name = re.search(r"name = '((?:[^'\\]|\\.)*)'", query).group(1).replace("\\'", "'")
        parent = re.search(r"'([^']*)' in parents", query).group(1)
        mime = re.search(r"mimeType = '([^']*)'", query)
        matches = [
            {"id": item["id"], "name": item["name"]}
            for item in self.files_by_id.values()
            if item["name"] == name
            and parent in item["parents"]
            and not item["trashed"]
            and (mime is None or item["mimeType"] == mime.group(1))
        ]
        return {"files": matches}

    def _handle_create(self, body: Dict[str, Any], media_body) -> Dict[str, Any]:
        mime_type = body.get("mimeType", "application/octet-stream")
        self.calls.append(f"create:{mime_type}")
        content = media_body.getbytes(0, media_body.size()) if media_body is not None else b""
        file_id = self.add_file(body["name"], body.get("parents", []), mime_type=mime_type, content=content)
        return {"id": file_id}

    def _handle_get(self, file_id: str) -> Dict[str, Any]:
        self.calls.append("get")
        return {"parents": list(self.files_by_id[file_id]["parents"])}

    def _handle_update(self, file_id: str, media_body, options: Dict[str, str]) -> Dict[str, Any]:
        self.calls.append("update")
        item = self.files_by_id[file_id]
        if media_body is not None:
            item["content"] = media_body.getbytes(0, media_body.size())
        removed = [value for value in options.get("removeParents", "").split(",") if value]
        parents = [parent for parent in item["parents"] if parent not in removed]
        if options.get("addParents"):
            parents.append(options["addParents"])
        item["parents"] = parents
        return {"id": file_id, "parents": parents}


@pytest.fixture
def fake_drive() -> FakeDriveService:
    return FakeDriveService()


@pytest.fixture
def drive_session(drive_settings: DriveSettings, fake_drive: FakeDriveService) -> DriveSession:
    return DriveSession(
        drive_settings,
        authorizer=lambda settings: FakeCredentials(),
        service_factory=lambda credentials: fake_drive,
        connectivity_check=lambda settings: True,
    )
