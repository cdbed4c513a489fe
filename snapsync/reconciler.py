"""
Periodic diff of local records against the remote folder.

A pass never moves data itself (except deleting records whose remote file
was trashed); it only upserts SyncIntents for the executor. Re-running a
pass before the queue drains rewrites the same intents, it never adds
duplicates.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from snapsync.auth import AuthContext
from snapsync.config import DRIVE_FOLDER, SYNC_FREQUENCY
from snapsync.errors import AuthError, NetworkError, RemoteError, RemoteNotFound
from snapsync.google_drive_api import DriveClient, RemoteFile
from snapsync.local_store import Record, RecordStore, SyncIntent
from snapsync.pubsub import ChangeType, Notifier, pubsub

logger = logging.getLogger(__name__)

LAST_SYNC_KEY = "lastSyncTime"
FOLDER_KEY = "folderId"

RemoteFactory = Callable[[AuthContext], DriveClient]


def get_sync_folder(store: RecordStore, remote: DriveClient, name: str = DRIVE_FOLDER,
                    refresh: bool = False) -> str:
    """Id of the remote sync folder, cached in the metadata table."""
    folder_id = None if refresh else store.get_meta(FOLDER_KEY)
    if not folder_id:
        folder_id = remote.find_or_create_folder(name).id
        store.set_meta(FOLDER_KEY, folder_id)
    return folder_id


@dataclass
class ReconcileResult:
    skipped: bool = False
    intents: List[SyncIntent] = field(default_factory=list)
    removed: List[int] = field(default_factory=list)

    @property
    def uploads(self) -> List[SyncIntent]:
        return [i for i in self.intents if i.upload]

    @property
    def downloads(self) -> List[SyncIntent]:
        return [i for i in self.intents if not i.upload]


class Reconciler:

    def __init__(self, store: RecordStore, remote_factory: RemoteFactory = DriveClient,
                 notifier: Notifier = None, interval: float = SYNC_FREQUENCY,
                 folder_name: str = DRIVE_FOLDER):
        self.store = store
        self.remote_factory = remote_factory
        self.notifier = notifier or Notifier(bus=pubsub)
        self.interval = interval
        self.folder_name = folder_name

    def due(self, now: float = None) -> bool:
        now = time.time() if now is None else now
        last = float(self.store.get_meta(LAST_SYNC_KEY, 0) or 0)
        return now - last >= self.interval

    def run_pass(self, auth: Optional[AuthContext], now: float = None,
                 force: bool = False) -> ReconcileResult:
        """
        One reconciliation pass. Skipped without a valid token or when the
        previous pass was less than `interval` seconds ago (unless force).
        Auth and network failures abort the pass; the next one retries.
        """
        now = time.time() if now is None else now
        if auth is None or not auth.valid:
            logger.debug("Not logged in, skipping sync pass")
            return ReconcileResult(skipped=True)
        if not force and not self.due(now):
            logger.debug("Last sync pass too recent, skipping")
            return ReconcileResult(skipped=True)

        remote = self.remote_factory(auth)
        try:
            files = self._list_remote(remote)
        except (AuthError, NetworkError, RemoteError) as e:
            logger.info("Sync pass aborted: %s", e)
            return ReconcileResult(skipped=True)

        result = self.reconcile(files, self.store.list_records())
        self.store.set_meta(LAST_SYNC_KEY, now)
        logger.info("Sync pass: %d uploads, %d downloads, %d removed",
                    len(result.uploads), len(result.downloads), len(result.removed))
        return result

    def _list_remote(self, remote: DriveClient) -> List[RemoteFile]:
        folder_id = get_sync_folder(self.store, remote, self.folder_name)
        try:
            return remote.list_folder(folder_id)
        except RemoteNotFound:
            logger.info("Cached sync folder %s is gone, looking it up again", folder_id)
            folder_id = get_sync_folder(self.store, remote, self.folder_name, refresh=True)
            return remote.list_folder(folder_id)

    def reconcile(self, files: List[RemoteFile], records: List[Record]) -> ReconcileResult:
        """Diff and decide. Writes intents and deletes trashed records."""
        result = ReconcileResult()

        remote_only: Dict[str, RemoteFile] = {f.id: f for f in files if f.id}
        local_only: List[Record] = []
        linked: List[tuple] = []
        for record in records:
            if record.guid and record.guid in remote_only:
                linked.append((remote_only.pop(record.guid), record))
            elif not record.guid:
                local_only.append(record)
            else:
                # Uploaded once, but the remote file is gone for good (not just
                # trashed). Upload it again as a new file.
                logger.info("Record %s: remote file %s no longer exists", record.id, record.guid)
                local_only.append(record)

        for remote in remote_only.values():
            if remote.trashed or remote.is_google_apps:
                continue
            self._queue(result, SyncIntent(record_id=None, guid=remote.id,
                                           upload=False, include_media=True))

        for local in local_only:
            self._queue(result, SyncIntent(record_id=local.id, guid="",
                                           upload=True, include_media=True))

        for remote, local in linked:
            if remote.trashed:
                self._delete_local(local)
                result.removed.append(local.id)
            elif local.local_image_changes or local.local_filter_changes:
                self._queue(result, SyncIntent(record_id=local.id, guid=remote.id, upload=True,
                                               include_media=local.local_image_changes))
            elif local.last_sync_version < remote.version:
                self._queue(result, SyncIntent(record_id=local.id, guid=remote.id,
                                               upload=False, include_media=True))

        return result

    def _queue(self, result: ReconcileResult, intent: SyncIntent):
        self.store.put_intent(intent)
        result.intents.append(intent)

    def _delete_local(self, local: Record):
        # The remote copy wins, even over unsynced local edits.
        if local.dirty:
            logger.warning("Record %s was trashed remotely; discarding its unsynced local changes",
                           local.id)
        else:
            logger.info("Record %s was trashed remotely; deleting it", local.id)
        self.store.delete_record(local.id, local.content_refs)
        self.notifier.changed(ChangeType.REMOVE, local.id)
