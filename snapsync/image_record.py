"""
In-memory view of one Record with lazily loaded, lazily rendered media.

Each media slot (original, edited, thumbnail) tracks whether its cached
bytes match the store. Edited and thumbnail are derived from the original
and the transform: any change to either marks them OUT_OF_DATE, and they are
re-rendered the next time someone asks for them or saves, never served from
an older cache.
"""

import enum
import logging
from typing import List, Optional

from snapsync.config import THUMBNAIL_HEIGHT
from snapsync.errors import RenderError
from snapsync.local_store import Record, RecordStore
from snapsync.renderer import FilterRenderer
from snapsync.transform import FilterTransform

logger = logging.getLogger(__name__)


class ImageState(enum.Enum):
    NOT_LOADED = "not_loaded"    # not fetched this session
    LOADED = "loaded"            # matches the store
    CHANGED = "changed"          # modified in memory, not yet persisted
    OUT_OF_DATE = "out_of_date"  # must be re-rendered before use


class ImageRecord:

    def __init__(self, store: RecordStore, renderer: FilterRenderer,
                 record: Record = None, thumbnail_height: int = THUMBNAIL_HEIGHT):
        self.store = store
        self.renderer = renderer
        self.thumbnail_height = thumbnail_height

        if record is None:
            self._record = Record()
            initial = ImageState.CHANGED
        else:
            self._record = record
            initial = ImageState.NOT_LOADED

        self.original_state = initial
        self.edited_state = initial
        self.thumbnail_state = initial

        self._original: Optional[bytes] = None
        self._edited: Optional[bytes] = None
        self._thumbnail: Optional[bytes] = None

    @classmethod
    def from_database(cls, store: RecordStore, renderer: FilterRenderer, record_id: int,
                      **kwargs) -> "ImageRecord":
        return cls(store, renderer, store.get_record(record_id), **kwargs)

    @classmethod
    def get_all(cls, store: RecordStore, renderer: FilterRenderer, **kwargs) -> List["ImageRecord"]:
        return [cls(store, renderer, record, **kwargs) for record in store.list_records()]

    # -----------------------------
    # RECORD FIELDS
    # -----------------------------

    @property
    def id(self) -> Optional[int]:
        return self._record.id

    @property
    def guid(self) -> str:
        return self._record.guid

    @property
    def record(self) -> Record:
        return self._record

    @property
    def transform(self) -> FilterTransform:
        # A copy, so in-place edits can't bypass the staleness tracking.
        return self._record.transform.copy()

    @transform.setter
    def transform(self, value: FilterTransform):
        self._record.transform = value.copy()
        self._record.local_filter_changes = True
        self.edited_state = ImageState.OUT_OF_DATE
        self.thumbnail_state = ImageState.OUT_OF_DATE

    # -----------------------------
    # MEDIA
    # -----------------------------

    def get_original(self) -> Optional[bytes]:
        if self.original_state == ImageState.NOT_LOADED:
            if self._record.original_ref:
                self._original = self.store.content.get(self._record.original_ref)
            self.original_state = ImageState.LOADED
        return self._original

    def set_original(self, data: bytes):
        self._original = data
        self.original_state = ImageState.CHANGED
        self.edited_state = ImageState.OUT_OF_DATE
        self.thumbnail_state = ImageState.OUT_OF_DATE
        self._record.local_image_changes = True

    def get_edited(self) -> Optional[bytes]:
        """Edited image, loading or re-rendering it as needed. Raises RenderError."""
        if self.edited_state == ImageState.NOT_LOADED:
            if self._record.edited_ref:
                self._edited = self.store.content.get(self._record.edited_ref)
            self.edited_state = ImageState.LOADED if self._edited is not None else ImageState.OUT_OF_DATE

        if self.edited_state == ImageState.OUT_OF_DATE:
            self._edited = self._render(None)
            self.edited_state = ImageState.CHANGED
        return self._edited

    def get_thumbnail(self) -> Optional[bytes]:
        """Thumbnail-height rendering, loading or re-rendering it as needed. Raises RenderError."""
        if self.thumbnail_state == ImageState.NOT_LOADED:
            if self._record.thumbnail_ref:
                self._thumbnail = self.store.content.get(self._record.thumbnail_ref)
            self.thumbnail_state = ImageState.LOADED if self._thumbnail is not None else ImageState.OUT_OF_DATE

        if self.thumbnail_state == ImageState.OUT_OF_DATE:
            self._thumbnail = self._render(self.thumbnail_height)
            self.thumbnail_state = ImageState.CHANGED
        return self._thumbnail

    def get_edited_or_original(self) -> Optional[bytes]:
        try:
            return self.get_edited()
        except RenderError as e:
            logger.warning("Rendering record %s failed, showing original: %s", self.id, e)
            return self.get_original()

    def get_thumbnail_or_original(self) -> Optional[bytes]:
        try:
            return self.get_thumbnail()
        except RenderError as e:
            logger.warning("Thumbnail for record %s failed, showing original: %s", self.id, e)
            return self.get_original()

    def _render(self, target_height: Optional[int]) -> Optional[bytes]:
        original = self.get_original()
        if original is None:
            return None
        return self.renderer.render(original, self._record.transform, target_height)

    # -----------------------------
    # PERSISTENCE
    # -----------------------------

    def save(self) -> int:
        """
        Re-render anything out of date, write changed media and persist the
        record. Returns the record id.
        """
        if self.edited_state == ImageState.OUT_OF_DATE:
            self.get_edited()
        if self.thumbnail_state == ImageState.OUT_OF_DATE:
            self.get_thumbnail()

        rec = self._record
        content = self.store.content
        if self.original_state == ImageState.CHANGED and self._original is not None:
            rec.original_ref = content.put(self._original, rec.original_ref)
            self.original_state = ImageState.LOADED
        if self.edited_state == ImageState.CHANGED and self._edited is not None:
            rec.edited_ref = content.put(self._edited, rec.edited_ref)
            self.edited_state = ImageState.LOADED
        if self.thumbnail_state == ImageState.CHANGED and self._thumbnail is not None:
            rec.thumbnail_ref = content.put(self._thumbnail, rec.thumbnail_ref)
            self.thumbnail_state = ImageState.LOADED

        self.store.put_record(rec)
        logger.debug("Saved record %s", rec.id)
        return rec.id

    def delete(self):
        if self.id is not None:
            self.store.delete_record(self.id, self._record.content_refs)
