import logging
import random
import threading
from pathlib import Path
from typing import List, Optional

from snapsync.auth import AuthContext, AuthManager
from snapsync.config import DATA_DIR, DB_FILE, load_user_config
from snapsync.executor import DrainResult, SyncExecutor
from snapsync.google_drive_api import DriveClient
from snapsync.image_record import ImageRecord
from snapsync.local_store import RecordStore
from snapsync.pubsub import LOGIN, LOGOUT, MessageBridge, Notifier, PubSub, pubsub
from snapsync.reconciler import Reconciler, ReconcileResult, RemoteFactory
from snapsync.renderer import FilterRenderer, PillowRenderer

logger = logging.getLogger(__name__)


class SnapSync:
    """
    Main class wiring the sync engine together:
     - local record/content store
     - auth
     - periodic reconciliation pass
     - intent draining, inline or on a background worker
     - import / edit / delete helpers for the UI side
    """

    def __init__(self, data_dir: Path = DATA_DIR, config: dict = None,
                 remote_factory: RemoteFactory = DriveClient,
                 renderer: FilterRenderer = None, bus: PubSub = None):
        self.data_dir = Path(data_dir)
        self.config = config or load_user_config()

        self.store = RecordStore(self.data_dir / DB_FILE)
        self.renderer = renderer or PillowRenderer()
        self.auth_manager = AuthManager(self.store, self.data_dir)
        self.bus = bus or pubsub

        # Changes made by the background worker reach the bus through the
        # bridge, on whichever thread calls deliver_changes().
        self.bridge = MessageBridge()

        interval = self.config["interval"]
        folder = self.config["folder"]
        self.reconciler = Reconciler(self.store, remote_factory, Notifier(bus=self.bus),
                                     interval=interval, folder_name=folder)
        self.executor = SyncExecutor(self.store, remote_factory, Notifier(bus=self.bus),
                                     folder_name=folder)
        self.background_executor = SyncExecutor(self.store, remote_factory,
                                                Notifier(bridge=self.bridge), folder_name=folder)

        self._stop = threading.Event()
        self._wake = threading.Event()
        self._timer_thread: Optional[threading.Thread] = None
        self._worker_thread: Optional[threading.Thread] = None

    # -----------------------------
    # 1) AUTH
    # -----------------------------

    def authenticate(self) -> AuthContext:
        auth = self.auth_manager.authenticate()
        self.bus.publish(LOGIN)
        return auth

    def logout(self):
        self.auth_manager.logout()
        self.bus.publish(LOGOUT)

    def current_auth(self) -> Optional[AuthContext]:
        """The token other contexts stored, refreshed through the token file if stale."""
        auth = AuthContext.from_store(self.store)
        if auth.valid:
            return auth
        return self.auth_manager.resume()

    # -----------------------------
    # 2) SYNC
    # -----------------------------

    def sync_once(self, force: bool = False) -> ReconcileResult:
        """
        One reconciliation pass, then drain the queue: inline, or by waking
        the background worker when one is running.
        """
        auth = self.current_auth()
        result = self.reconciler.run_pass(auth, force=force)
        if result.skipped:
            return result

        if self.background_running:
            self.wake()
        else:
            self.executor.drain(auth)
        return result

    def drain(self) -> DrainResult:
        """Drain the intent queue now, in this thread."""
        return self.executor.drain(self.current_auth())

    def wake(self):
        self._wake.set()

    def deliver_changes(self) -> int:
        """Publish changes reported by the background worker on the local bus."""
        return self.bridge.deliver(self.bus)

    @property
    def background_running(self) -> bool:
        return self._worker_thread is not None and self._worker_thread.is_alive()

    def start(self, background: bool = None):
        """
        Start the periodic reconciliation timer and, if background is set
        (default from config), a worker that drains intents when woken.
        """
        if background is None:
            background = self.config.get("background", False)
        self._stop.clear()

        if background and not self.background_running:
            self._worker_thread = threading.Thread(
                target=self._worker_loop, name="snapsync-drain", daemon=True)
            self._worker_thread.start()

        if self._timer_thread is None or not self._timer_thread.is_alive():
            self._timer_thread = threading.Thread(
                target=self._timer_loop, name="snapsync-timer", daemon=True)
            self._timer_thread.start()

    def stop(self, timeout: float = 10):
        self._stop.set()
        self._wake.set()
        for thread in (self._timer_thread, self._worker_thread):
            if thread is not None:
                thread.join(timeout)
        self._timer_thread = None
        self._worker_thread = None

    def _timer_loop(self):
        # One second past the interval so the minimum-spacing guard has passed.
        period = self.reconciler.interval + 1
        while not self._stop.is_set():
            try:
                self.sync_once()
            except Exception:
                logger.exception("Sync pass failed")
            self._stop.wait(period)

    def _worker_loop(self):
        while not self._stop.is_set():
            self._wake.wait()
            self._wake.clear()
            if self._stop.is_set():
                break
            try:
                self.background_executor.drain(self.current_auth())
            except Exception:
                logger.exception("Background drain failed")

    # -----------------------------
    # 3) LOCAL LIBRARY
    # -----------------------------

    def _image_record(self, record_id: int = None) -> ImageRecord:
        height = self.config["thumbnail_height"]
        if record_id is None:
            return ImageRecord(self.store, self.renderer, thumbnail_height=height)
        return ImageRecord.from_database(self.store, self.renderer, record_id,
                                         thumbnail_height=height)

    def records(self) -> List[ImageRecord]:
        return ImageRecord.get_all(self.store, self.renderer,
                                   thumbnail_height=self.config["thumbnail_height"])

    def import_file(self, path: Path) -> int:
        """Add an image file to the library. Returns the new record id."""
        with open(path, "rb") as f:
            data = f.read()
        record = self._image_record()
        record.set_original(data)
        record_id = record.save()
        logger.info("Imported %s as record %s", path, record_id)
        return record_id

    def edit(self, record_id: int, **params: float) -> ImageRecord:
        """Change filter parameters on a record and save it."""
        record = self._image_record(record_id)
        transform = record.transform
        for name, value in params.items():
            transform[name] = value
        record.transform = transform
        record.save()
        return record

    def randomize(self, record_id: int, rng: random.Random = None) -> ImageRecord:
        """Give a record a random look within the editor's ranges."""
        record = self._image_record(record_id)
        transform = record.transform
        transform.randomize(rng)
        record.transform = transform
        record.save()
        return record

    def export(self, record_id: int, path: Path, variant: str = "edited") -> Path:
        """Write the original, edited or thumbnail image of a record to path."""
        record = self._image_record(record_id)
        getters = {
            "original": record.get_original,
            "edited": record.get_edited_or_original,
            "thumbnail": record.get_thumbnail_or_original,
        }
        data = getters[variant]()
        if data is None:
            raise ValueError(f"Record {record_id} has no image")
        with open(path, "wb") as f:
            f.write(data)
        return Path(path)

    def delete(self, record_id: int):
        self._image_record(record_id).delete()

    def close(self):
        self.stop()
        self.store.close()
