import calendar
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from snapsync.config import DATA_DIR, SCOPES
from snapsync.errors import AuthError, NetworkError

logger = logging.getLogger(__name__)

TOKEN_KEY = "token"
EXPIRY_KEY = "tokenExpiry"


@dataclass(frozen=True)
class AuthContext:
    """
    The access token the Drive client sends, and when it expires
    (epoch seconds, 0 if unknown).
    """
    token: str = ""
    expiry: float = 0

    @property
    def valid(self) -> bool:
        if not self.token:
            return False
        return not self.expiry or self.expiry > time.time()

    @classmethod
    def from_store(cls, store) -> "AuthContext":
        return cls(
            token=store.get_meta(TOKEN_KEY, "") or "",
            expiry=float(store.get_meta(EXPIRY_KEY, 0) or 0),
        )

    def save(self, store):
        store.set_meta(TOKEN_KEY, self.token)
        store.set_meta(EXPIRY_KEY, self.expiry)

    @staticmethod
    def clear(store):
        store.set_meta(TOKEN_KEY, None)
        store.set_meta(EXPIRY_KEY, None)


class AuthManager:
    """
    Manages Google Drive authentication: the authorized-user token file,
    refreshing creds, and the copy of the access token kept in the metadata
    table for other processes.
    """

    def __init__(self, store, data_dir: Path = DATA_DIR):
        self.store = store
        self.credentials_json = Path(data_dir) / "credentials.json"
        self.token_file = Path(data_dir) / "token.json"
        self.creds: Optional[Credentials] = None

    def authenticate(self, interactive: bool = True) -> AuthContext:
        """
        Loads credentials from the token file, refreshing if expired;
        otherwise performs the browser OAuth flow (when interactive).
        """
        self.creds = self._load_token_file()

        if not self.creds or not self.creds.valid:
            if self.creds and self.creds.expired and self.creds.refresh_token:
                self._refresh()
            elif interactive:
                if not self.credentials_json.exists():
                    raise AuthError(f"{self.credentials_json} not found")
                flow = InstalledAppFlow.from_client_secrets_file(
                    str(self.credentials_json),
                    SCOPES
                )
                self.creds = flow.run_local_server(port=0)
            else:
                raise AuthError("Not logged in")
            self.token_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.token_file, "w") as token:
                token.write(self.creds.to_json())

        context = self._context_from_creds()
        context.save(self.store)
        return context

    def resume(self) -> Optional[AuthContext]:
        """
        The stored access token if it is still valid, else a silently
        refreshed one, else None.
        """
        stored = AuthContext.from_store(self.store)
        if stored.valid:
            return stored
        try:
            return self.authenticate(interactive=False)
        except (AuthError, NetworkError) as e:
            logger.info("No usable token: %s", e)
            return None

    def logout(self):
        AuthContext.clear(self.store)
        self.creds = None
        if self.token_file.exists():
            self.token_file.unlink()

    def _load_token_file(self) -> Optional[Credentials]:
        if not self.token_file.exists():
            return None
        try:
            return Credentials.from_authorized_user_file(str(self.token_file), SCOPES)
        except ValueError:
            logger.warning("Token file corrupt. Re-authenticating.")
            self.token_file.unlink()
            return None

    def _refresh(self):
        try:
            self.creds.refresh(Request())
        except RefreshError as e:
            raise AuthError(f"Token refresh rejected: {e}") from e
        except TransportError as e:
            raise NetworkError(f"Token refresh failed: {e}") from e

    def _context_from_creds(self) -> AuthContext:
        expiry = 0
        if self.creds.expiry is not None:
            # google-auth keeps expiry as a naive UTC datetime
            expiry = float(calendar.timegm(self.creds.expiry.utctimetuple()))
        return AuthContext(token=self.creds.token, expiry=expiry)
