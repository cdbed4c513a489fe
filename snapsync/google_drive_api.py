import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import requests

from snapsync.auth import AuthContext
from snapsync.config import HTTP_TIMEOUT
from snapsync.errors import AuthError, NetworkError, RemoteError, RemoteNotFound

logger = logging.getLogger(__name__)

DRIVE_API = "https://www.googleapis.com/drive/v3/"
DRIVE_UPLOAD_API = "https://www.googleapis.com/upload/drive/v3/"
COMMON_FILE_FIELDS = "kind,id,name,mimeType,appProperties,trashed,version,size,parents"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
GOOGLE_APPS_MIME_PREFIX = "application/vnd.google-apps."

# 403 reasons that mean the token or its scopes are not good enough
AUTH_REASONS = {"authError", "insufficientPermissions", "accessNotConfigured"}
# 403 reasons that clear up by themselves
RATE_LIMIT_REASONS = {"rateLimitExceeded", "userRateLimitExceeded", "dailyLimitExceeded",
                      "sharingRateLimitExceeded"}


@dataclass
class RemoteFile:
    """A file (or folder) in Drive, as far as sync cares."""
    id: str = ""
    name: str = ""
    mime_type: str = ""
    version: int = 0
    trashed: bool = False
    app_properties: Dict[str, str] = field(default_factory=dict)
    parents: List[str] = field(default_factory=list)
    size: Optional[int] = None

    @classmethod
    def from_json(cls, data: dict) -> "RemoteFile":
        size = data.get("size")
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            mime_type=data.get("mimeType", ""),
            version=int(data.get("version", 0) or 0),
            trashed=bool(data.get("trashed", False)),
            app_properties=dict(data.get("appProperties") or {}),
            parents=list(data.get("parents") or []),
            size=int(size) if size is not None else None,
        )

    @property
    def is_google_apps(self) -> bool:
        """Docs, Sheets, folders and the like: no binary content to download."""
        return self.mime_type.startswith(GOOGLE_APPS_MIME_PREFIX)


def error_reasons(resp: requests.Response) -> set:
    """The `error.errors[].reason` values of a Drive error response."""
    try:
        data = resp.json()
    except ValueError:
        return set()
    error = data.get("error") if isinstance(data, dict) else None
    if not isinstance(error, dict):
        return set()
    return {e.get("reason") for e in error.get("errors") or [] if isinstance(e, dict)}


class DriveClient:
    """
    Thin wrapper around the Drive v3 files API.

    Every call sends the bearer token from the AuthContext it was built with.
    Failures are mapped onto snapsync.errors: 401 and auth-related 403s ->
    AuthError; transport problems, 429, 5xx and rate-limit 403s ->
    NetworkError; 404 -> RemoteNotFound; anything else (including per-file
    403s like fileNotDownloadable) -> RemoteError.
    """

    def __init__(self, auth: AuthContext, session: requests.Session = None):
        self.auth = auth
        self.session = session or requests.Session()

    def get_headers(self, content_type: str = "application/json") -> dict:
        if not self.auth or not self.auth.valid:
            raise AuthError("Not logged in")
        return {
            "Authorization": f"Bearer {self.auth.token}",
            "Content-Type": content_type,
        }

    def _request(self, method: str, url: str, content_type: str = "application/json",
                 **kwargs) -> requests.Response:
        headers = self.get_headers(content_type)
        try:
            resp = self.session.request(method, url, headers=headers,
                                        timeout=HTTP_TIMEOUT, **kwargs)
        except requests.RequestException as e:
            raise NetworkError(f"{method} {url} failed: {e}") from e

        if resp.status_code == 401:
            raise AuthError(f"{method} {url} rejected: {resp.status_code} {resp.text}")
        if resp.status_code == 403:
            # Drive uses 403 for file-level refusals too (fileNotDownloadable etc.)
            reasons = error_reasons(resp)
            if reasons & AUTH_REASONS:
                raise AuthError(f"{method} {url} rejected: {resp.status_code} {resp.text}")
            if reasons & RATE_LIMIT_REASONS:
                raise NetworkError(f"{method} {url}: rate limited {resp.text}")
            raise RemoteError(f"{method} {url}: {resp.status_code} {resp.text}", resp.status_code)
        if resp.status_code == 404:
            raise RemoteNotFound(f"{method} {url}: not found", resp.status_code)
        if resp.status_code == 429 or resp.status_code >= 500:
            raise NetworkError(f"{method} {url}: {resp.status_code} {resp.text}")
        if not 200 <= resp.status_code < 300:
            raise RemoteError(f"{method} {url}: {resp.status_code} {resp.text}", resp.status_code)
        return resp

    def _json(self, method: str, endpoint: str, params: dict = None, body: dict = None) -> dict:
        resp = self._request(method, DRIVE_API + endpoint, params=params, json=body)
        return resp.json()

    # -----------------------------
    # FILES
    # -----------------------------

    def list_folder(self, folder_id: str) -> List[RemoteFile]:
        """
        List all files directly inside folder_id (paginated), trashed ones
        included so the caller can see remote deletions.
        """
        params = {
            "corpus": "user",
            "spaces": "drive",
            "q": f"'{folder_id}' in parents",
            "fields": f"nextPageToken,files({COMMON_FILE_FIELDS})",
            "pageSize": 100,
        }
        files = []
        page_token = None

        while True:
            if page_token:
                params["pageToken"] = page_token

            data = self._json("GET", "files", params=params)
            files.extend(RemoteFile.from_json(f) for f in data.get("files", []))

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        logger.debug("Listed %d remote files in %s", len(files), folder_id)
        return files

    def get_file(self, file_id: str) -> RemoteFile:
        data = self._json("GET", f"files/{file_id}", params={"fields": COMMON_FILE_FIELDS})
        return RemoteFile.from_json(data)

    def get_content(self, file_id: str) -> bytes:
        resp = self._request("GET", f"{DRIVE_API}files/{file_id}", params={"alt": "media"})
        return resp.content

    def create_file(self, metadata: dict) -> RemoteFile:
        data = self._json("POST", "files", params={"fields": COMMON_FILE_FIELDS}, body=metadata)
        return RemoteFile.from_json(data)

    def update_metadata(self, file_id: str, metadata: dict) -> RemoteFile:
        # Only name, mimeType and appProperties are writable this way
        body = {k: v for k, v in metadata.items() if k in ("name", "mimeType", "appProperties")}
        data = self._json("PATCH", f"files/{file_id}", params={"fields": COMMON_FILE_FIELDS}, body=body)
        return RemoteFile.from_json(data)

    def update_content(self, file_id: str, data: bytes,
                       mime_type: str = "application/octet-stream") -> RemoteFile:
        resp = self._request(
            "PATCH",
            f"{DRIVE_UPLOAD_API}files/{file_id}",
            content_type=mime_type,
            params={"uploadType": "media", "fields": COMMON_FILE_FIELDS},
            data=data,
        )
        return RemoteFile.from_json(resp.json())

    def find_or_create_folder(self, name: str) -> RemoteFile:
        """
        Return the folder called `name` at the top of My Drive, creating it
        if there isn't one.
        """
        escaped = name.replace("\\", "\\\\").replace("'", "\\'")
        params = {
            "corpus": "user",
            "spaces": "drive",
            "q": (f"name = '{escaped}' and 'root' in parents and "
                  f"mimeType = '{FOLDER_MIME_TYPE}' and trashed = false"),
            "fields": f"files({COMMON_FILE_FIELDS})",
        }
        data = self._json("GET", "files", params=params)
        folders = data.get("files", [])
        if folders:
            if len(folders) > 1:
                logger.warning("Found %d folders named '%s', using the first.", len(folders), name)
            return RemoteFile.from_json(folders[0])

        logger.info("Creating remote folder '%s'", name)
        return self.create_file({
            "name": name,
            "mimeType": FOLDER_MIME_TYPE,
            "parents": ["root"],
        })
