"""Background Drive backup worker for PsA Logbook."""
from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Optional

from core import drive_sync
from core.drive_sync import DriveBackup, SyncResult
from core.errors import (
    AccessDeniedError,
    AuthFailedError,
    LogbookError,
    NotConfiguredError,
    OfflineError,
)

StatusCallback = Callable[[str, Optional[SyncResult]], None]
Operation = Callable[[], SyncResult]


def result_for_error(exc: LogbookError) -> SyncResult:
    """Translate a recoverable failure into an error result for the UI."""

    if isinstance(exc, OfflineError):
        status = drive_sync.STATUS_OFFLINE
    elif isinstance(exc, (NotConfiguredError, AccessDeniedError, AuthFailedError)):
        status = drive_sync.STATUS_REAUTHORISE
    else:
        status = drive_sync.STATUS_ERROR
    return SyncResult(action="error", message=str(exc), status=status)


class SyncWorker:
    """Run one Drive operation at a time off the calling thread.

    ``root`` is anything with a Tk-style ``after(delay, callback)``; without it
    the status callback runs on the worker thread.
    """

    def __init__(
        self,
        root=None,
        status_callback: Optional[StatusCallback] = None,
        backup: Optional[DriveBackup] = None,
    ) -> None:
        self.root = root
        self.status_callback = status_callback
        self._lock = threading.Lock()
        self._backup = backup or DriveBackup()
        self._thread: Optional[threading.Thread] = None
        self._logger = logging.getLogger(__name__)

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def _operations(self) -> Dict[str, Operation]:
        return {
            "backup": self._backup.backup,
            "restore": self._backup.restore,
            "connect": self._connect,
            "reset": self._reset,
        }

    def backup_now(self) -> None:
        self._start("backup")

    def restore_now(self) -> None:
        self._start("restore")

    def connect_now(self) -> None:
        self._start("connect")

    def reset_connection(self) -> None:
        self._start("reset")

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for the operation currently holding the worker."""

        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _start(self, action: str) -> None:
        thread = threading.Thread(target=self.run, args=(action,), daemon=True)
        if not self.busy:
            self._thread = thread
        thread.start()

    def _connect(self) -> SyncResult:
        self._backup.connect()
        return SyncResult(action="connect", message="Connected to Google Drive")

    def _reset(self) -> SyncResult:
        self._backup.reset()
        return SyncResult(
            action="reset",
            message="Connection reset. Please re-authorise.",
            status=drive_sync.STATUS_REAUTHORISE,
        )

    def run(self, action: str) -> SyncResult:
        """Execute ``action`` on the current thread and report its result."""

        operation = self._operations()[action]
        if not self._lock.acquire(blocking=False):
            result = SyncResult(
                action="busy",
                message="Another Drive operation is already running.",
                status=drive_sync.STATUS_BUSY,
            )
            self._dispatch_status(result.message, result)
            return result
        self._thread = threading.current_thread()
        try:
            try:
                result = operation()
            except LogbookError as exc:
                result = result_for_error(exc)
                self._logger.warning("Drive %s failed: %s", action, exc)
            except Exception as exc:
                result = SyncResult(
                    action="error",
                    message=f"{action.capitalize()} failed: {exc}",
                    status=drive_sync.STATUS_ERROR,
                )
                self._logger.exception("Unexpected error during %s", action)
        finally:
            self._lock.release()
        self._dispatch_status(result.message, result)
        return result

    def _dispatch_status(self, message: str, result: Optional[SyncResult]) -> None:
        if not self.status_callback:
            return

        def callback() -> None:
            self.status_callback(message, result)

        if self.root is None:
            callback()
        else:
            self.root.after(0, callback)
