"""Tests for containers.storage — the cloud JSON blob, filesystem and
cloud search backends, plus backend selection.

Cloudinary is replaced by the FakeCloud fixture from conftest.
"""

import json
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from containers import cloudinary_service
from containers.cloudinary_service import CloudinaryError
from containers.storage import (
    CloudJsonContainerStore,
    CloudSearchContainerStore,
    ContainerError,
    ContainerExists,
    ContainerNotFound,
    ContainerRecord,
    FilesystemContainerStore,
    MemoryContainerStore,
    get_store,
)


# ── Backend selection ────────────────────────────────────────────────

@pytest.mark.parametrize(
    "backend, expected",
    [
        ("memory", MemoryContainerStore),
        ("cloud_json", CloudJsonContainerStore),
        ("filesystem", FilesystemContainerStore),
        ("cloud_search", CloudSearchContainerStore),
    ],
)
def test_get_store(settings, backend, expected):
    settings.CONTAINERS_STORAGE = backend
    assert isinstance(get_store(), expected)


def test_get_store_unknown(settings):
    settings.CONTAINERS_STORAGE = "tape"
    with pytest.raises(ContainerError, match="Unknown CONTAINERS_STORAGE 'tape'"):
        get_store()


def test_find_prefers_id_over_name():
    first = ContainerRecord(id="b", name="a")
    second = ContainerRecord(id="a", name="other")
    assert MemoryContainerStore.find([first, second], "a") is second
    assert MemoryContainerStore.find([first, second], "A") is first
    with pytest.raises(ContainerNotFound):
        MemoryContainerStore.find([first, second], "zzz")


# ── Cloud JSON blob ──────────────────────────────────────────────────

@pytest.fixture
def json_store(fake_cloud):
    return CloudJsonContainerStore(poll_attempts=3, poll_delay=0.5)


def test_download_missing_blob_is_empty(json_store):
    assert json_store.download() == {}


def test_download_invalid_json_is_empty(json_store, fake_cloud):
    fake_cloud.raw["containers_data.json"] = "{not json"
    assert json_store.download() == {}


def test_download_accepts_legacy_list(json_store, fake_cloud):
    fake_cloud.raw["containers_data.json"] = json.dumps([
        {"id": "1", "name": "Box", "description": "d", "image_url": "u", "image_public_id": "p"},
    ])
    records = json_store.download()
    assert list(records) == ["1"]
    assert records["1"].name == "Box"


def test_create_uploads_image_and_blob(json_store, fake_cloud, make_image):
    records = json_store.create("Box", "wooden", make_image(content=b"png"))

    assert [r.name for r in records] == ["Box"]
    record = records[0]
    assert record.image_public_id == "img1"
    assert record.image_url.endswith("/img1.png")
    blob = json.loads(fake_cloud.raw["containers_data.json"])
    assert blob[record.id]["name"] == "Box"
    assert json_store.read_image(record) == b"png"


def test_create_rejects_duplicate_before_uploading(json_store, fake_cloud, make_image):
    json_store.create("Box", "", make_image())
    with pytest.raises(ContainerExists):
        json_store.create("BOX", "", make_image())
    assert len(fake_cloud.images) == 1


def test_delete_destroys_image_and_rewrites_blob(json_store, fake_cloud, make_image):
    json_store.create("Box", "", make_image())
    json_store.create("Crate", "", make_image())

    records = json_store.delete("box")

    assert [r.name for r in records] == ["Crate"]
    assert fake_cloud.destroyed == ["img1"]
    blob = json.loads(fake_cloud.raw["containers_data.json"])
    assert [v["name"] for v in blob.values()] == ["Crate"]


def test_delete_keeps_record_when_destroy_fails(json_store, fake_cloud, make_image):
    json_store.create("Box", "", make_image())
    fake_cloud.destroy_result = "not found"

    with pytest.raises(CloudinaryError, match="not found"):
        json_store.delete("Box")
    assert [r.name for r in json_store.all()] == ["Box"]


def test_wait_for_update_polls_until_match(json_store):
    expected = {"1": ContainerRecord(id="1", name="Box", created_at="2024-01-01T00:00:00Z")}
    stale = json.dumps({})
    fresh = json.dumps({"1": expected["1"].to_dict()})

    with patch.object(cloudinary_service, "fetch_text", side_effect=[stale, fresh]) as fetch, patch(
        "containers.storage.time.sleep"
    ) as sleep:
        confirmed = json_store.wait_for_update(expected)

    assert confirmed == expected
    assert fetch.call_count == 2
    sleep.assert_called_once_with(0.5)


def test_wait_for_update_gives_up_and_returns_expected(json_store):
    expected = {"1": ContainerRecord(id="1", name="Box")}
    side_effect = ["{}", CloudinaryError("Download failed: 404"), "{}"]

    with patch.object(cloudinary_service, "fetch_text", side_effect=side_effect) as fetch, patch(
        "containers.storage.time.sleep"
    ) as sleep:
        confirmed = json_store.wait_for_update(expected)

    assert confirmed is expected
    assert fetch.call_count == 3
    assert sleep.call_count == 2


def test_upload_failure_propagates(json_store):
    with patch.object(cloudinary_service, "upload", side_effect=CloudinaryError("Upload failed: 500 - oops")):
        with pytest.raises(CloudinaryError):
            json_store.upload({})


# ── Filesystem ───────────────────────────────────────────────────────

def test_filesystem_create_writes_folder(tmp_path, make_image):
    store = FilesystemContainerStore(tmp_path)
    [record] = store.create("Box", "wooden", make_image("Box.PNG", b"png"))

    folder = tmp_path / record.id
    assert (folder / "image.png").read_bytes() == b"png"
    metadata = json.loads((folder / "metadata.json").read_text(encoding="utf-8"))
    assert metadata["name"] == "Box"
    assert metadata["description"] == "wooden"
    assert store.read_image(record) == b"png"


def test_filesystem_missing_root_is_empty(tmp_path):
    assert FilesystemContainerStore(tmp_path / "nope").all() == []


def test_filesystem_skips_broken_folders(tmp_path, make_image):
    store = FilesystemContainerStore(tmp_path)
    store.create("Box", "", make_image())
    (tmp_path / "broken").mkdir()
    (tmp_path / "broken" / "metadata.json").write_text("{oops", encoding="utf-8")
    (tmp_path / "stray.txt").write_text("ignored", encoding="utf-8")

    assert [r.name for r in store.all()] == ["Box"]


def test_filesystem_delete_removes_folder(tmp_path, make_image):
    store = FilesystemContainerStore(tmp_path)
    [record] = store.create("Box", "", make_image())
    assert store.delete(record.id) == []
    assert not (tmp_path / record.id).exists()


def test_filesystem_duplicate(tmp_path, make_image):
    store = FilesystemContainerStore(tmp_path)
    store.create("Box", "", make_image())
    with pytest.raises(ContainerExists):
        store.create("box", "", make_image())


# ── Cloud search ─────────────────────────────────────────────────────

def test_cloud_search_create_stores_context(fake_cloud, make_image):
    store = CloudSearchContainerStore()
    [record] = store.create("Box|1", "a=b", make_image(content=b"png"))

    assert record.image_public_id == f"containers/{record.id}"
    stored = fake_cloud.images[record.image_public_id]
    assert stored["context"]["name"] == "Box|1"
    assert stored["context"]["description"] == "a=b"
    assert store.read_image(record) == b"png"


def test_cloud_search_lists_by_prefix_and_skips_foreign(fake_cloud, make_image):
    store = CloudSearchContainerStore()
    store.create("Box", "", make_image())
    fake_cloud.upload(b"x", public_id="containers/orphan")
    fake_cloud.upload(b"x", public_id="avatars/1", context="name=Someone")

    assert [r.name for r in store.all()] == ["Box"]


def test_cloud_search_corrects_lagging_index(fake_cloud, make_image, monkeypatch):
    store = CloudSearchContainerStore()
    monkeypatch.setattr(cloudinary_service, "iter_resources_by_prefix", lambda prefix, page_size=100: iter([]))

    records = store.create("Box", "", make_image())
    assert [r.name for r in records] == ["Box"]


def test_cloud_search_delete(fake_cloud, make_image):
    store = CloudSearchContainerStore()
    [record] = store.create("Box", "", make_image())

    assert store.delete("BOX") == []
    assert fake_cloud.destroyed == [record.image_public_id]


def test_cloud_search_delete_failure(fake_cloud, make_image):
    store = CloudSearchContainerStore()
    store.create("Box", "", make_image())
    fake_cloud.destroy_result = "error"

    with pytest.raises(CloudinaryError):
        store.delete("Box")


def test_filesystem_failed_write_leaves_no_folder(tmp_path, make_image):
    store = FilesystemContainerStore(tmp_path)
    with patch.object(Path, "write_text", side_effect=OSError("disk full")):
        with pytest.raises(OSError):
            store.create("Box", "", make_image())
    assert list(tmp_path.iterdir()) == []
    assert store.all() == []


# ── Memory ───────────────────────────────────────────────────────────

def test_memory_concurrent_creates_keep_names_unique(make_image):
    store = MemoryContainerStore()
    barrier = threading.Barrier(8)
    outcomes = []

    def _create():
        barrier.wait()
        try:
            store.create("Box", "", make_image())
            outcomes.append("created")
        except ContainerExists:
            outcomes.append("exists")

    threads = [threading.Thread(target=_create) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("created") == 1
    assert [r.name for r in store.all()] == ["Box"]
