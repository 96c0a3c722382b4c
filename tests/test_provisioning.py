from __future__ import annotations

import json

import db
from core import drive_api
from core.provisioning import DriveLocation, RemoteProvisioner


def _provisioner(session, content=None) -> RemoteProvisioner:
    return RemoteProvisioner(session, lambda: content or {"schemaVersion": 1, "events": []})


def test_build_query_escapes_quotes():
    query = drive_api.build_query("Ann's logbook", "root", drive_api.FOLDER_MIME_TYPE)

    assert query == (
        "name = 'Ann\\'s logbook' and mimeType = 'application/vnd.google-apps.folder' "
        "and trashed = false and 'root' in parents"
    )


def test_ensure_container_twice_creates_one_folder(store, drive_session, fake_drive):
    provisioner = _provisioner(drive_session)

    first = provisioner.ensure_container()
    second = provisioner.ensure_container()

    assert first == second
    assert fake_drive.creations(drive_api.FOLDER_MIME_TYPE) == 1
    assert fake_drive.calls.count("list") == 1
    assert db.get_meta(db.MetaKey.DRIVE_FOLDER_ID) == first


def test_ensure_container_reuses_existing_folder(store, drive_session, fake_drive):
    existing = fake_drive.add_file("PsA Logbook", ["root"], mime_type=drive_api.FOLDER_MIME_TYPE)
    fake_drive.add_file("PsA Logbook", ["root"], mime_type=drive_api.FOLDER_MIME_TYPE)

    folder_id = _provisioner(drive_session).ensure_container()

    assert folder_id == existing
    assert fake_drive.creations() == 0


def test_ensure_document_uploads_initial_content(store, drive_session, fake_drive):
    content = {"schemaVersion": 1, "exportedAt": 1, "options": {"timeframe": "all"}, "events": []}
    provisioner = _provisioner(drive_session, content)
    folder_id = provisioner.ensure_container()

    file_id = provisioner.ensure_document(folder_id)

    stored = fake_drive.files_by_id[file_id]
    assert stored["parents"] == [folder_id]
    assert stored["name"] == "psa-logbook-backup.json"
    assert json.loads(stored["content"].decode("utf-8")) == content
    assert db.get_meta(db.MetaKey.DRIVE_FILE_ID) == file_id


def test_moved_document_is_reparented(store, drive_session, fake_drive):
    folder_id = fake_drive.add_file("PsA Logbook", ["root"], mime_type=drive_api.FOLDER_MIME_TYPE)
    file_id = fake_drive.add_file("psa-logbook-backup.json", ["elsewhere"])
    db.set_meta(db.MetaKey.DRIVE_FOLDER_ID, folder_id)
    db.set_meta(db.MetaKey.DRIVE_FILE_ID, file_id)

    location = _provisioner(drive_session).provision()

    assert location == DriveLocation(folder_id=folder_id, file_id=file_id)
    assert fake_drive.files_by_id[file_id]["parents"] == [folder_id]
    assert fake_drive.creations() == 0


def test_provision_leaves_document_in_place(store, drive_session, fake_drive):
    provisioner = _provisioner(drive_session)
    location = provisioner.provision()
    calls_before = list(fake_drive.calls)

    assert provisioner.provision() == location
    assert fake_drive.calls[len(calls_before):] == ["get"]
