"""End-to-end tests of the SnapSync orchestrator against the in-memory Drive."""

import random
import time

import pytest

from snapsync.auth import AuthContext
from snapsync.config import DB_FILE, DEFAULT_CONFIG
from snapsync.pubsub import LOGOUT, SYNC, PubSub
from snapsync.syncer import SnapSync


def make_device(tmp_path, name, drive, renderer, **config):
    bus = PubSub()
    syncer = SnapSync(
        data_dir=tmp_path / name,
        config=dict(DEFAULT_CONFIG, **config),
        remote_factory=lambda auth: drive,
        renderer=renderer,
        bus=bus,
    )
    AuthContext("token", time.time() + 3600).save(syncer.store)
    return syncer


@pytest.fixture
def devices(tmp_path, drive, renderer):
    laptop = make_device(tmp_path, "laptop", drive, renderer)
    phone = make_device(tmp_path, "phone", drive, renderer)
    yield laptop, phone
    laptop.close()
    phone.close()


def write_image(tmp_path, data=b"holiday-photo"):
    path = tmp_path / "photo.jpg"
    path.write_bytes(data)
    return path


def test_import_then_sync_uploads(devices, drive, tmp_path):
    laptop, _ = devices
    record_id = laptop.import_file(write_image(tmp_path))

    result = laptop.sync_once()

    assert len(result.uploads) == 1
    record = laptop.store.get_record(record_id)
    assert record.guid in drive.files
    assert drive.contents[record.guid] == b"holiday-photo"
    assert not record.dirty
    assert laptop.store.list_intents() == []


def test_changes_flow_between_devices(devices, drive, tmp_path):
    laptop, phone = devices
    phone_events = []
    phone.bus.subscribe(SYNC, phone_events.append)

    laptop_id = laptop.import_file(write_image(tmp_path))
    laptop.sync_once()

    phone.sync_once()
    [phone_record] = phone.store.list_records()
    assert phone_events == [{"channel": "sync", "type": "ADD", "id": phone_record.id}]
    assert phone.store.content.get(phone_record.original_ref) == b"holiday-photo"

    phone.edit(phone_record.id, contrast=1.6)
    phone.sync_once(force=True)
    assert drive.files[phone_record.guid].app_properties["contrast"] == "1.6"

    laptop.sync_once(force=True)
    laptop_record = laptop.store.get_record(laptop_id)
    assert laptop_record.transform.contrast == 1.6
    assert laptop_record.last_sync_version == drive.files[laptop_record.guid].version

    # the laptop's derived media is re-rendered from the new transform
    [image] = laptop.records()
    assert b"contrast=1.6" in image.get_edited()


def test_remote_trash_removes_everywhere(devices, drive, tmp_path):
    laptop, phone = devices
    laptop.import_file(write_image(tmp_path))
    laptop.sync_once()
    phone.sync_once()

    [remote] = [f for f in drive.files.values() if f.id != "folder0"]
    remote.trashed = True
    removed = []
    phone.bus.subscribe(SYNC, removed.append)

    phone.sync_once(force=True)

    assert phone.store.list_records() == []
    assert removed[0]["type"] == "REMOVE"


def test_debounced_sync_does_nothing(devices, drive, tmp_path):
    laptop, _ = devices
    laptop.sync_once()
    drive.calls.clear()
    laptop.import_file(write_image(tmp_path))

    result = laptop.sync_once()

    assert result.skipped
    assert drive.calls == []


def test_background_worker_reports_through_bridge(tmp_path, drive, renderer):
    device = make_device(tmp_path, "tablet", drive, renderer, interval=3600)
    drive.find_or_create_folder("Snapshot")
    drive.add_file(content=b"shared", version=1)
    events = []
    device.bus.subscribe(SYNC, events.append)

    device.start(background=True)
    try:
        deadline = time.time() + 5
        while not device.bridge.pending() and time.time() < deadline:
            time.sleep(0.02)
        assert events == []
        device.deliver_changes()
    finally:
        device.close()

    assert [e["type"] for e in events] == ["ADD"]


def test_logout_publishes_and_stops_sync(devices, drive, tmp_path):
    laptop, _ = devices
    seen = []
    laptop.bus.subscribe(LOGOUT, seen.append)

    laptop.logout()

    assert seen == [None]
    assert laptop.sync_once(force=True).skipped


def test_export_and_delete(devices, tmp_path):
    laptop, _ = devices
    record_id = laptop.import_file(write_image(tmp_path))

    out = laptop.export(record_id, tmp_path / "thumb.bin", variant="thumbnail")
    assert out.read_bytes().startswith(b"rendered|holiday-photo|")

    laptop.delete(record_id)
    assert laptop.store.list_records() == []
    assert laptop.store.content.count() == 0


def test_randomize_marks_filter_changes(devices, tmp_path):
    laptop, _ = devices
    record_id = laptop.import_file(write_image(tmp_path))
    laptop.sync_once()
    assert not laptop.store.get_record(record_id).dirty

    image = laptop.randomize(record_id, random.Random(7))

    stored = laptop.store.get_record(record_id)
    assert not stored.transform.is_default
    assert stored.transform == image.transform
    assert stored.local_filter_changes is True
    assert f"grey={stored.transform.grey:g}".encode() in laptop.store.content.get(stored.edited_ref)


def test_database_lives_in_data_dir(devices, tmp_path):
    laptop, _ = devices
    assert (tmp_path / "laptop" / DB_FILE).is_file()
