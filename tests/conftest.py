"""
Shared pytest fixtures for snapsync tests.

Provides an in-memory Drive and a deterministic renderer so tests never
touch the network or decode real images.
"""

import io
import time
from typing import Dict, List, Tuple

import pytest

from snapsync.auth import AuthContext
from snapsync.errors import RemoteNotFound, RenderError
from snapsync.google_drive_api import FOLDER_MIME_TYPE, RemoteFile
from snapsync.local_store import Record, RecordStore
from snapsync.pubsub import SYNC, PubSub
from snapsync.renderer import FilterRenderer


class FakeDrive:
    """
    In-memory stand-in for DriveClient.

    Files get a fresh version number on every metadata or content change,
    like Drive does. `calls` records (method, file_id) for every request;
    `failures` maps a method name to an exception raised on its next call.
    """

    def __init__(self):
        self.files: Dict[str, RemoteFile] = {}
        self.contents: Dict[str, bytes] = {}
        self.calls: List[Tuple[str, str]] = []
        self.failures: Dict[str, Exception] = {}
        self._next_id = 1

    def _call(self, method: str, file_id: str = ""):
        self.calls.append((method, file_id))
        if method in self.failures:
            raise self.failures.pop(method)

    def calls_to(self, *methods) -> List[Tuple[str, str]]:
        return [c for c in self.calls if c[0] in methods]

    def _new_id(self, prefix="file") -> str:
        file_id = f"{prefix}{self._next_id}"
        self._next_id += 1
        return file_id

    def _get(self, file_id) -> RemoteFile:
        if file_id not in self.files:
            raise RemoteNotFound(f"{file_id}: not found", 404)
        return self.files[file_id]

    def add_file(self, content: bytes = b"remote-bytes", version: int = 1, trashed: bool = False,
                 app_properties: dict = None, parent: str = "folder0", file_id: str = None) -> RemoteFile:
        """Put a file straight into the fake, as if another device uploaded it."""
        file_id = file_id or self._new_id()
        remote = RemoteFile(id=file_id, name=file_id, mime_type="image/jpeg", version=version,
                            trashed=trashed, app_properties=dict(app_properties or {}),
                            parents=[parent])
        self.files[file_id] = remote
        self.contents[file_id] = content
        return remote

    # DriveClient interface

    def find_or_create_folder(self, name):
        self._call("find_or_create_folder")
        for f in self.files.values():
            if f.mime_type == FOLDER_MIME_TYPE and f.name == name and not f.trashed:
                return f
        folder = RemoteFile(id="folder0", name=name, mime_type=FOLDER_MIME_TYPE,
                            version=1, parents=["root"])
        self.files[folder.id] = folder
        return folder

    def list_folder(self, folder_id):
        self._call("list_folder", folder_id)
        self._get(folder_id)
        return [RemoteFile(**vars(f)) for f in self.files.values()
                if folder_id in f.parents]

    def get_file(self, file_id):
        self._call("get_file", file_id)
        return RemoteFile(**vars(self._get(file_id)))

    def get_content(self, file_id):
        self._call("get_content", file_id)
        self._get(file_id)
        return self.contents[file_id]

    def create_file(self, metadata):
        self._call("create_file")
        remote = RemoteFile(
            id=self._new_id(),
            name=metadata.get("name", ""),
            mime_type=metadata.get("mimeType", ""),
            version=1,
            app_properties=dict(metadata.get("appProperties") or {}),
            parents=list(metadata.get("parents") or []),
        )
        self.files[remote.id] = remote
        self.contents[remote.id] = b""
        return RemoteFile(**vars(remote))

    def update_metadata(self, file_id, metadata):
        self._call("update_metadata", file_id)
        remote = self._get(file_id)
        if "appProperties" in metadata:
            remote.app_properties = dict(metadata["appProperties"])
        remote.version += 1
        return RemoteFile(**vars(remote))

    def update_content(self, file_id, data, mime_type="application/octet-stream"):
        self._call("update_content", file_id)
        remote = self._get(file_id)
        self.contents[file_id] = data
        remote.version += 1
        return RemoteFile(**vars(remote))


class FakeRenderer(FilterRenderer):
    """Deterministic renderer: output spells out what it was rendered from."""

    def __init__(self):
        self.calls = 0
        self.fail = False

    def render(self, source, transform, target_height=None):
        self.calls += 1
        if self.fail:
            raise RenderError("renderer broke")
        params = ",".join(f"{name}={value:g}" for name, value in transform)
        return b"|".join([b"rendered", source, params.encode(), str(target_height).encode()])


@pytest.fixture
def store(tmp_path):
    s = RecordStore(tmp_path / "snapsync.db")
    yield s
    s.close()


@pytest.fixture
def drive():
    return FakeDrive()


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def auth():
    return AuthContext(token="test-token", expiry=time.time() + 3600)


@pytest.fixture
def bus():
    return PubSub()


@pytest.fixture
def sync_events(bus):
    """List that collects every payload published on the sync channel."""
    events = []
    bus.subscribe(SYNC, events.append)
    return events


@pytest.fixture
def make_record(store):
    """Store a record with an original image and return it."""
    def _make(original=b"original-bytes", **fields):
        record = Record(**fields)
        record.original_ref = store.content.put(original)
        store.put_record(record)
        return record
    return _make


def jpeg_bytes(size=(64, 48), color=(200, 120, 40)) -> bytes:
    from PIL import Image
    out = io.BytesIO()
    Image.new("RGB", size, color).save(out, format="JPEG")
    return out.getvalue()


@pytest.fixture
def jpeg():
    return jpeg_bytes()
