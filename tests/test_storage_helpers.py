import asyncio
import datetime
import os
from io import BytesIO

import pytest
from PIL import Image

from starkeeper import storage_helpers
from starkeeper.errors import BadRequest, NotFound, StorageError
from starkeeper.models import Audio, DeathCertificate, Photo
from starkeeper.storage_helpers import (
    build_blob_key,
    build_user_blob_key,
    compress_image,
    fetch_blob,
    release_blob_if_unreferenced,
    sign_url,
    staged_upload,
    store_blob,
)

from _helpers import FakeBlobStore, png_bytes

NOW = datetime.datetime(2024, 1, 2, 3, 4, 5, tzinfo=datetime.timezone.utc)
NOW_MS = int(NOW.timestamp() * 1000)


class AsyncStore:
    def __init__(self, data):
        self._data = data

    async def async_get(self, key):
        return self._data


class FakeUpload:
    def __init__(self, filename, data):
        self.filename = filename
        self.file = BytesIO(data)


def test_call_storage_prefers_async():
    res = asyncio.run(storage_helpers.call_storage(AsyncStore(b'X'), 'get', 'k'))
    assert res == b'X'


def test_call_storage_executes_sync_in_executor():
    store = FakeBlobStore()
    store.blobs['k'] = (b'Y', 'text/plain')
    assert asyncio.run(storage_helpers.call_storage(store, 'get', 'k')) == b'Y'


def test_call_storage_missing_method_raises():
    class Empty: ...

    with pytest.raises(AttributeError):
        asyncio.run(storage_helpers.call_storage(Empty(), 'get', 'k'))


def test_build_blob_key_layout():
    assert build_blob_key("s1", "audios", "song.mp3", now=NOW) == f"stars/s1/audios/{NOW_MS}-song.mp3"
    assert build_blob_key("s1", "photos", "a.jpg", collection_id="al1", now=NOW) == \
        f"stars/s1/photos/al1/{NOW_MS}-a.jpg"


def test_build_blob_key_sanitizes_filename():
    key = build_blob_key("s1", "documents", "../../etc/pa<ss>wd", now=NOW)
    assert key == f"stars/s1/documents/{NOW_MS}-passwd"


def test_build_blob_key_rejects_empty_name():
    with pytest.raises(BadRequest):
        build_blob_key("s1", "documents", "../", now=NOW)


def test_build_user_blob_key():
    assert build_user_blob_key("u1", "death-certificates", "c.pdf", now=NOW) == \
        f"users/u1/death-certificates/{NOW_MS}-c.pdf"


def test_compress_image_caps_width_and_outputs_jpeg():
    data = png_bytes(size=(3200, 100))
    out = compress_image(data, max_width=1600, quality=80)
    img = Image.open(BytesIO(out))
    assert img.format == "JPEG"
    assert img.size == (1600, 50)


def test_compress_image_keeps_small_images_and_flattens_alpha():
    data = png_bytes(size=(20, 10), mode="RGBA", color=(0, 0, 0, 0))
    img = Image.open(BytesIO(compress_image(data)))
    assert img.size == (20, 10)
    assert img.mode == "RGB"
    # Transparent pixels land on white.
    assert img.getpixel((5, 5))[0] > 240


def test_compress_image_rejects_garbage():
    with pytest.raises(BadRequest):
        compress_image(b"definitely not an image")


def test_staged_upload_writes_and_removes_file(tmp_path):
    upload = FakeUpload("a.txt", b"payload")
    with staged_upload(upload, str(tmp_path)) as path:
        assert os.path.dirname(path) == str(tmp_path)
        with open(path, "rb") as f:
            assert f.read() == b"payload"
    assert not os.path.exists(path)


def test_staged_upload_removes_file_on_error(tmp_path):
    upload = FakeUpload("a.txt", b"payload")
    with pytest.raises(RuntimeError):
        with staged_upload(upload, str(tmp_path)) as path:
            raise RuntimeError("handler failed")
    assert not os.path.exists(path)
    assert os.listdir(tmp_path) == []


def test_staged_upload_requires_filename():
    with pytest.raises(BadRequest):
        with staged_upload(FakeUpload("", b"x")):
            pass
    with pytest.raises(BadRequest):
        with staged_upload(None):
            pass


def test_store_blob_maps_failures_to_storage_error():
    store = FakeBlobStore(fail_on=['put'])
    with pytest.raises(StorageError):
        asyncio.run(store_blob(store, 'k', b'x'))
    with pytest.raises(StorageError):
        asyncio.run(store_blob(None, 'k', b'x'))


def test_fetch_blob_missing_is_not_found():
    with pytest.raises(NotFound):
        asyncio.run(fetch_blob(FakeBlobStore(), 'missing'))
    with pytest.raises(StorageError):
        asyncio.run(fetch_blob(FakeBlobStore(fail_on=['get']), 'k'))


def test_sign_url():
    store = FakeBlobStore()
    assert asyncio.run(sign_url(store, None, 60)) is None
    assert asyncio.run(sign_url(store, 'k', 60)) == "https://blobs.test/k?ttl=60"
    with pytest.raises(StorageError):
        asyncio.run(sign_url(FakeBlobStore(fail_on=['sign']), 'k', 60))


def test_release_keeps_blob_while_referenced(session):
    session.add(Photo(photo_album_id="a1", key="shared"))
    session.commit()
    store = FakeBlobStore()

    assert asyncio.run(release_blob_if_unreferenced(session, store, "shared")) is False
    assert store.deleted == []


def test_release_counts_references_across_tables(session):
    session.add(Audio(star_id="s", key="k-audio"))
    session.add(DeathCertificate(user_id="u", file_key="k-cert"))
    session.commit()
    store = FakeBlobStore()

    assert asyncio.run(release_blob_if_unreferenced(session, store, "k-audio")) is False
    assert asyncio.run(release_blob_if_unreferenced(session, store, "k-cert")) is False
    assert asyncio.run(release_blob_if_unreferenced(session, store, "k-free")) is True
    assert store.deleted == ["k-free"]


def test_release_swallows_delete_failures(session, caplog):
    caplog.set_level("WARNING")
    store = FakeBlobStore(fail_on=['delete'])
    assert asyncio.run(release_blob_if_unreferenced(session, store, "k")) is False
    assert any("Failed to delete blob k" in r.getMessage() for r in caplog.records)


def test_release_without_key_or_storage(session):
    assert asyncio.run(release_blob_if_unreferenced(session, FakeBlobStore(), None)) is False
    assert asyncio.run(release_blob_if_unreferenced(session, None, "k")) is False
