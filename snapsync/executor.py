"""
Drains the durable SyncIntent queue.

The executor keeps no state of its own: everything it needs is in the
RecordStore, so any process can call drain() and continue where a killed
one stopped.

Intents are removed only after their step succeeded (at-least-once). A
network or remote failure leaves the intent queued with its attempt count
bumped; an auth failure stops the whole drain. Both steps are safe to
repeat: uploads look the record's guid up fresh and downloads reuse any
record already linked to the remote file.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

from snapsync.auth import AuthContext
from snapsync.config import DRIVE_FOLDER
from snapsync.errors import AuthError, NetworkError, RecordNotFound, RemoteError, RemoteNotFound
from snapsync.google_drive_api import DriveClient, RemoteFile
from snapsync.local_store import Record, RecordStore, SyncIntent
from snapsync.pubsub import ChangeType, Notifier, pubsub
from snapsync.reconciler import RemoteFactory, get_sync_folder
from snapsync.renderer import guess_mime_type
from snapsync.transform import FilterTransform

logger = logging.getLogger(__name__)


@dataclass
class DrainResult:
    done: List[SyncIntent] = field(default_factory=list)
    dropped: List[SyncIntent] = field(default_factory=list)
    failed: List[SyncIntent] = field(default_factory=list)
    aborted: bool = False


class SyncExecutor:

    def __init__(self, store: RecordStore, remote_factory: RemoteFactory = DriveClient,
                 notifier: Notifier = None, folder_name: str = DRIVE_FOLDER):
        self.store = store
        self.remote_factory = remote_factory
        self.notifier = notifier or Notifier(bus=pubsub)
        self.folder_name = folder_name

    def drain(self, auth: Optional[AuthContext]) -> DrainResult:
        """Work through every queued intent once."""
        result = DrainResult()
        if auth is None or not auth.valid:
            logger.debug("Not logged in, leaving %d intents queued", len(self.store.list_intents()))
            result.aborted = True
            return result

        remote = self.remote_factory(auth)
        for queued in self.store.list_intents():
            # Another drainer may have finished or replaced it since the listing.
            intent = self.store.get_intent(queued.key)
            if intent is None:
                continue
            try:
                finished = self.execute(intent, remote)
            except AuthError as e:
                logger.info("Drain stopped, not authorized: %s", e)
                result.aborted = True
                break
            except (NetworkError, RemoteError) as e:
                logger.warning("%s %s failed, will retry: %s", intent.direction, intent.key, e)
                self.store.record_intent_failure(intent.key, str(e))
                result.failed.append(intent)
                continue

            self.store.remove_intent(intent.key)
            (result.done if finished else result.dropped).append(intent)

        if result.done or result.failed:
            logger.info("Drain: %d done, %d dropped, %d failed",
                        len(result.done), len(result.dropped), len(result.failed))
        return result

    def execute(self, intent: SyncIntent, remote: DriveClient) -> bool:
        """
        Perform one intent. Returns False when there turned out to be nothing
        to do (record or remote file gone); the intent can be dropped either way.
        """
        if intent.upload:
            return self.upload(intent, remote)
        return self.download(intent, remote)

    # -----------------------------
    # UPLOAD
    # -----------------------------

    def upload(self, intent: SyncIntent, remote: DriveClient) -> bool:
        try:
            record = self.store.get_record(intent.record_id)
        except RecordNotFound:
            logger.info("Record %s no longer exists, nothing to upload", intent.record_id)
            return False

        original = self.store.content.get(record.original_ref) if record.original_ref else None
        if original is None:
            logger.warning("Record %s has no original image, nothing to upload", record.id)
            return False

        include_media = intent.include_media
        mime_type = guess_mime_type(original)
        metadata = {
            "mimeType": mime_type,
            "appProperties": record.transform.to_attributes(),
        }

        updated = None
        if record.guid:
            try:
                updated = remote.update_metadata(record.guid, metadata)
            except RemoteNotFound:
                logger.info("Remote file %s for record %s is gone, uploading as new",
                            record.guid, record.id)

        if updated is None:
            metadata["name"] = f"{record.id}_{int(time.time() * 1000)}"
            metadata["parents"] = [get_sync_folder(self.store, remote, self.folder_name)]
            updated = remote.create_file(metadata)
            record.guid = updated.id
            include_media = True
            # Persist the link now so a retry updates this file instead of
            # creating another one.
            self.store.put_record(record)

        record.last_sync_version = updated.version
        if include_media:
            updated = remote.update_content(record.guid, original, mime_type)
            record.last_sync_version = updated.version

        self._save_synced(record, original if include_media else None)
        logger.info("Uploaded record %s -> %s (media=%s)", record.id, record.guid, include_media)
        return True

    def _save_synced(self, record: Record, sent_original: Optional[bytes]):
        """
        Store the post-sync state on a fresh copy of the record, so a
        transform or original changed while the network calls were in flight
        stays dirty.
        """
        try:
            current = self.store.get_record(record.id)
        except RecordNotFound:
            return
        current.guid = record.guid
        current.last_sync_version = record.last_sync_version
        if current.transform == record.transform:
            current.local_filter_changes = False
        if sent_original is not None and current.original_ref \
                and self.store.content.get(current.original_ref) == sent_original:
            current.local_image_changes = False
        self.store.put_record(current)

    # -----------------------------
    # DOWNLOAD
    # -----------------------------

    def download(self, intent: SyncIntent, remote: DriveClient) -> bool:
        try:
            remote_file = remote.get_file(intent.guid)
            if remote_file.is_google_apps:
                logger.info("Remote file %s is a %s, not an image; skipping",
                            intent.guid, remote_file.mime_type)
                return False
            content = remote.get_content(intent.guid)
        except RemoteNotFound:
            logger.info("Remote file %s no longer exists, nothing to download", intent.guid)
            return False

        record = self._linked_record(intent)
        is_new = record is None
        if is_new:
            record = Record()

        self._apply_remote(record, remote_file, content)
        change = ChangeType.ADD if is_new else ChangeType.UPDATE
        self.notifier.changed(change, record.id)
        logger.info("Downloaded %s -> record %s (%s)", remote_file.id, record.id, change.value)
        return True

    def _linked_record(self, intent: SyncIntent) -> Optional[Record]:
        if intent.record_id:
            try:
                return self.store.get_record(intent.record_id)
            except RecordNotFound:
                pass
        return self.store.find_by_guid(intent.guid)

    def _apply_remote(self, record: Record, remote_file: RemoteFile, content: bytes):
        # Derived media was rendered from the old original; drop it so it is
        # re-rendered from the new one.
        stale = [record.edited_ref, record.thumbnail_ref]
        record.edited_ref = None
        record.thumbnail_ref = None

        record.guid = remote_file.id
        record.original_ref = self.store.content.put(content, record.original_ref)
        record.transform = FilterTransform.from_attributes(remote_file.app_properties,
                                                           record.transform)
        record.local_image_changes = False
        record.local_filter_changes = False
        record.last_sync_version = remote_file.version
        self.store.put_record(record, release=stale)
