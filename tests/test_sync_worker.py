from __future__ import annotations

import threading

from core import drive_sync
from core.drive_sync import SyncResult
from core.errors import ApiDisabledError, NotConfiguredError, OfflineError
from ui.sync_worker import SyncWorker, result_for_error


class _StubBackup:
    def __init__(self, outcome=None) -> None:
        self.outcome = outcome
        self.reset_calls = 0

    def backup(self) -> SyncResult:
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return SyncResult(action="backup", message="Backup complete")

    def restore(self) -> SyncResult:
        return SyncResult(action="restore", message="Restore complete", imported=3)

    def connect(self):
        return None

    def reset(self) -> None:
        self.reset_calls += 1


class _FakeRoot:
    def __init__(self) -> None:
        self.scheduled = []

    def after(self, delay, callback) -> None:
        self.scheduled.append(delay)
        callback()


def test_result_for_error_maps_statuses():
    assert result_for_error(OfflineError("down")).status == drive_sync.STATUS_OFFLINE
    assert result_for_error(NotConfiguredError("setup")).status == drive_sync.STATUS_REAUTHORISE
    result = result_for_error(ApiDisabledError("enable it"))
    assert result.status == drive_sync.STATUS_ERROR
    assert result.action == "error"
    assert result.message == "enable it"


def test_run_reports_result_through_root_after():
    root = _FakeRoot()
    received = []
    worker = SyncWorker(root, lambda message, result: received.append((message, result)), _StubBackup())

    result = worker.run("restore")

    assert result.imported == 3
    assert root.scheduled == [0]
    assert received == [("Restore complete", result)]


def test_run_recovers_logbook_errors():
    worker = SyncWorker(backup=_StubBackup(OfflineError("Offline.")))

    result = worker.run("backup")

    assert result.action == "error"
    assert result.status == drive_sync.STATUS_OFFLINE
    assert not worker.busy


def test_reset_requests_reauthorisation():
    backup = _StubBackup()
    worker = SyncWorker(backup=backup)

    result = worker.run("reset")

    assert backup.reset_calls == 1
    assert result.status == drive_sync.STATUS_REAUTHORISE


def test_concurrent_request_is_rejected_as_busy():
    started = threading.Event()
    release = threading.Event()

    class _SlowBackup(_StubBackup):
        def backup(self) -> SyncResult:
            started.set()
            release.wait(timeout=5)
            return SyncResult(action="backup", message="Backup complete")

    received = []
    worker = SyncWorker(
        status_callback=lambda message, result: received.append(result.action),
        backup=_SlowBackup(),
    )
    worker.backup_now()
    assert started.wait(timeout=5)

    busy = worker.run("restore")
    release.set()
    worker.join(timeout=5)

    assert busy.status == drive_sync.STATUS_BUSY
    assert received == ["busy", "backup"]


def test_join_waits_for_running_operation_not_rejected_request():
    started = threading.Event()
    release = threading.Event()
    rejected = threading.Event()

    class _SlowBackup(_StubBackup):
        def backup(self) -> SyncResult:
            started.set()
            release.wait(timeout=5)
            return SyncResult(action="backup", message="Backup complete")

    received = []

    def on_status(message, result):
        received.append(result.action)
        if result.action == "busy":
            rejected.set()

    worker = SyncWorker(status_callback=on_status, backup=_SlowBackup())
    worker.backup_now()
    assert started.wait(timeout=5)
    worker.restore_now()
    assert rejected.wait(timeout=5)

    release.set()
    worker.join(timeout=5)

    assert received == ["busy", "backup"]
