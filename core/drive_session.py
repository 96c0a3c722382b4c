"""OAuth session handling for the Google Drive backup.

The session owns the only bearer token of the process. It is acquired through
the installed-app OAuth flow on first use, kept in memory only and dropped on
:meth:`DriveSession.invalidate` or when Drive answers ``401``. Every Drive call
goes through :meth:`DriveSession.execute`, which checks reachability first and
translates transport and HTTP failures into the :mod:`core.errors` taxonomy.
"""
from __future__ import annotations

import json
import logging
import socket
import threading
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

import httplib2
from google.auth.exceptions import GoogleAuthError, TransportError
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from oauthlib.oauth2.rfc6749.errors import OAuth2Error

from core.errors import (
    AccessDeniedError,
    ApiDisabledError,
    AuthFailedError,
    DriveSyncError,
    NotConfiguredError,
    OfflineError,
    RemoteRequestFailedError,
)
from settings import DriveSettings, load_drive_settings

logger = logging.getLogger(__name__)

OFFLINE_MESSAGE = "Offline. Check your network before using Google Drive."
NOT_CONFIGURED_MESSAGE = (
    "Google OAuth client is not configured. Save the client secret JSON and set its path "
    "in drive_settings.json or PSALOG_CLIENT_SECRETS."
)
ACCESS_DENIED_MESSAGE = "Access denied. Please allow PsA Logbook to use Google Drive."
API_DISABLED_MESSAGE = "Google Drive API is not enabled. Enable it in the Cloud Console."

_API_DISABLED_SIGNATURES: Tuple[str, ...] = ("Access Not Configured", "Disabled")
_API_DISABLED_REASONS = {"accessNotConfigured", "SERVICE_DISABLED"}

Authorizer = Callable[[DriveSettings], Any]
ServiceFactory = Callable[[Any], Any]
ConnectivityCheck = Callable[[DriveSettings], bool]
RequestBuilder = Callable[[Any], Any]


class SessionState(Enum):
    NO_TOKEN = "no_token"
    ACQUIRING = "acquiring"
    HELD = "held"


def run_installed_app_flow(settings: DriveSettings):
    """Run the interactive browser consent flow and return the credentials."""

    flow = InstalledAppFlow.from_client_secrets_file(settings.client_secrets_path, settings.scopes)
    return flow.run_local_server(
        port=0,
        authorization_prompt_message="Authorise PsA Logbook in your browser: {url}",
        success_message="PsA Logbook is authorised. You may close this window.",
    )


def build_drive_service(credentials):
    return build("drive", "v3", credentials=credentials, cache_discovery=False)


def check_connectivity(settings: DriveSettings) -> bool:
    try:
        with socket.create_connection(
            (settings.connectivity_host, 443), timeout=settings.connectivity_timeout
        ):
            return True
    except OSError:
        return False


def _error_details(exc: HttpError) -> Tuple[str, List[str]]:
    content = getattr(exc, "content", b"") or b""
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    message = ""
    reasons: List[str] = []
    try:
        body = json.loads(content) if content else {}
    except ValueError:
        body = {}
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            message = str(error.get("message") or "")
            if error.get("status"):
                reasons.append(str(error["status"]))
            for item in error.get("errors") or []:
                if isinstance(item, dict):
                    if item.get("reason"):
                        reasons.append(str(item["reason"]))
                    if not message and item.get("message"):
                        message = str(item["message"])
            for item in error.get("details") or []:
                if isinstance(item, dict) and item.get("reason"):
                    reasons.append(str(item["reason"]))
        if not message and body.get("error_description"):
            message = str(body["error_description"])
    if not message:
        message = str(getattr(getattr(exc, "resp", None), "reason", "") or "")
    return message, reasons


def classify_http_error(exc: HttpError) -> DriveSyncError:
    """Map a Drive ``HttpError`` onto the error taxonomy."""

    status = getattr(getattr(exc, "resp", None), "status", None)
    message, reasons = _error_details(exc)
    if _API_DISABLED_REASONS.intersection(reasons) or any(
        signature in message for signature in _API_DISABLED_SIGNATURES
    ):
        return ApiDisabledError(API_DISABLED_MESSAGE)
    status_code = int(status) if status is not None else None
    return RemoteRequestFailedError(
        message or f"Google Drive request failed ({status_code}).", status=status_code
    )


class DriveSession:
    """Acquire, cache and invalidate the Drive bearer token."""

    def __init__(
        self,
        settings: Optional[DriveSettings] = None,
        *,
        authorizer: Optional[Authorizer] = None,
        service_factory: Optional[ServiceFactory] = None,
        connectivity_check: Optional[ConnectivityCheck] = None,
    ) -> None:
        self.settings = settings or load_drive_settings()
        self._authorizer = authorizer or run_installed_app_flow
        self._service_factory = service_factory or build_drive_service
        self._connectivity_check = connectivity_check or check_connectivity
        self._lock = threading.Lock()
        self._credentials = None
        self._service = None
        self._state = SessionState.NO_TOKEN

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is SessionState.HELD

    def is_configured(self) -> bool:
        return self.settings.is_configured()

    def require_configured(self) -> None:
        if not self.is_configured():
            raise NotConfiguredError(NOT_CONFIGURED_MESSAGE)

    def ensure_token(self) -> str:
        self.require_configured()
        with self._lock:
            if self._credentials is not None and self._state is SessionState.HELD:
                return self._credentials.token
            self._state = SessionState.ACQUIRING

        try:
            credentials = self._acquire()
        except DriveSyncError:
            self.invalidate()
            raise
        return self._hold(credentials)

    def reauthorize(self) -> str:
        """Run a fresh handshake and swap in its token.

        A held token stays in place when the new handshake fails.
        """

        self.require_configured()
        return self._hold(self._acquire())

    def _acquire(self):
        logger.info("[Drive] Requesting Google authorisation")
        try:
            credentials = self._authorizer(self.settings)
        except OAuth2Error as exc:
            if exc.error == "access_denied":
                logger.warning("[Drive] Authorisation denied by user")
                raise AccessDeniedError(ACCESS_DENIED_MESSAGE) from exc
            logger.warning("[Drive] Authorisation failed: %s", exc)
            raise AuthFailedError(exc.description or str(exc) or "Google authorization failed.") from exc
        except (GoogleAuthError, ValueError, OSError) as exc:
            logger.warning("[Drive] Authorisation failed: %s", exc)
            raise AuthFailedError(str(exc) or "Google authorization failed.") from exc

        if not getattr(credentials, "token", None):
            raise AuthFailedError("Google did not return an access token.")
        return credentials

    def _hold(self, credentials) -> str:
        with self._lock:
            self._credentials = credentials
            self._service = None
            self._state = SessionState.HELD
        logger.info("[Drive] Authorisation granted")
        return credentials.token

    def invalidate(self) -> None:
        with self._lock:
            self._credentials = None
            self._service = None
            self._state = SessionState.NO_TOKEN

    def _get_service(self):
        with self._lock:
            if self._service is None:
                self._service = self._service_factory(self._credentials)
            return self._service

    def require_online(self) -> None:
        if not self._connectivity_check(self.settings):
            raise OfflineError(OFFLINE_MESSAGE)

    def execute(self, build_request: RequestBuilder) -> Any:
        """Run one authenticated Drive request and return its response."""

        self.require_configured()
        self.require_online()
        self.ensure_token()
        service = self._get_service()
        try:
            return build_request(service).execute()
        except HttpError as exc:
            error = classify_http_error(exc)
            if isinstance(error, RemoteRequestFailedError) and error.status == 401:
                logger.info("[Drive] Access token rejected; authorisation will be requested again")
                self.invalidate()
            logger.warning("[Drive] Request failed: %s", error)
            raise error from exc
        except (httplib2.HttpLib2Error, TransportError, OSError) as exc:
            logger.warning("[Drive] Transport failure: %s", exc)
            raise OfflineError(OFFLINE_MESSAGE) from exc


__all__ = [
    "DriveSession",
    "SessionState",
    "build_drive_service",
    "check_connectivity",
    "classify_http_error",
    "run_installed_app_flow",
]
