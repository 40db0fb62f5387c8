import asyncio
import datetime
import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from io import BytesIO
from typing import Any, Iterator, Optional

from PIL import Image, ImageOps, UnidentifiedImageError
from sqlmodel import Session

from .constants import DEFAULT_CONTENT_TYPE, PHOTO_JPEG_QUALITY, PHOTO_MAX_WIDTH, sanitize_filename
from .db import count_key_references
from .errors import BadRequest, NotFound, StorageError

logger = logging.getLogger(__name__)


async def call_storage(storage: Any, method_name: str, *args, **kwargs) -> Any:
    """Call storage method in an async-friendly way.

    If the storage object exposes an `async_<method_name>` coroutine, it is awaited.
    Otherwise the sync method is executed in the event loop's default executor.
    """
    async_name = f"async_{method_name}"
    if hasattr(storage, async_name):
        method = getattr(storage, async_name)
        return await method(*args, **kwargs)

    if hasattr(storage, method_name):
        loop = asyncio.get_running_loop()
        func = lambda: getattr(storage, method_name)(*args, **kwargs)
        return await loop.run_in_executor(None, func)

    raise AttributeError(f"Storage has no method '{method_name}' or '{async_name}'")


def _timestamp_ms(now: Optional[datetime.datetime] = None) -> int:
    now = now or datetime.datetime.now(datetime.timezone.utc)
    return int(now.timestamp() * 1000)


def build_blob_key(star_id: str, kind: str, filename: str, collection_id: Optional[str] = None,
                   now: Optional[datetime.datetime] = None) -> str:
    """Key of the form ``stars/{star}/{kind}/[{collection}/]{ms}-{name}``."""
    try:
        name = sanitize_filename(filename or "")
    except ValueError as exc:
        raise BadRequest(str(exc)) from exc
    parts = ["stars", str(star_id), kind]
    if collection_id:
        parts.append(str(collection_id))
    parts.append(f"{_timestamp_ms(now)}-{name}")
    return "/".join(parts)


def build_user_blob_key(user_id: str, kind: str, filename: str, now: Optional[datetime.datetime] = None) -> str:
    try:
        name = sanitize_filename(filename or "")
    except ValueError as exc:
        raise BadRequest(str(exc)) from exc
    return f"users/{user_id}/{kind}/{_timestamp_ms(now)}-{name}"


def compress_image(data: bytes, max_width: int = PHOTO_MAX_WIDTH, quality: int = PHOTO_JPEG_QUALITY) -> bytes:
    """Re-encode an uploaded photo as JPEG, applying EXIF rotation and capping the width.

    Raises `BadRequest` if the bytes are not a readable image.
    """
    try:
        img = Image.open(BytesIO(data))
        img = ImageOps.exif_transpose(img)
    except (UnidentifiedImageError, OSError) as exc:
        raise BadRequest("Uploaded file is not a valid image") from exc

    if img.width > max_width:
        height = max(1, round(img.height * max_width / img.width))
        img = img.resize((max_width, height), Image.Resampling.LANCZOS)

    if img.mode in ('RGBA', 'LA', 'P'):
        img = img.convert('RGBA')
        background = Image.new('RGB', img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[-1])
        img = background
    elif img.mode != 'RGB':
        img = img.convert('RGB')

    with BytesIO() as bio:
        img.save(bio, format='JPEG', quality=quality)
        return bio.getvalue()


@contextmanager
def staged_upload(upload: Any, tmp_dir: Optional[str] = None) -> Iterator[str]:
    """Spool a multipart upload to a temporary file and yield its path.

    The file is removed when the block exits, whether or not it raised.
    """
    if upload is None or not getattr(upload, "filename", None):
        raise BadRequest("A file is required")
    if tmp_dir:
        os.makedirs(tmp_dir, exist_ok=True)
    fd, path = tempfile.mkstemp(prefix="upload-", dir=tmp_dir)
    try:
        with os.fdopen(fd, "wb") as out:
            upload.file.seek(0)
            shutil.copyfileobj(upload.file, out)
        yield path
    finally:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Failed to remove temporary upload %s: %s", path, exc)


def read_staged(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def _require_storage(storage: Any) -> Any:
    if storage is None:
        raise StorageError("Storage is not configured")
    return storage


async def store_blob(storage: Any, key: str, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> str:
    """Upload `data` under `key`. Failures are fatal to the caller as `StorageError`."""
    storage = _require_storage(storage)
    try:
        await call_storage(storage, 'put', key, data, content_type)
    except Exception as exc:
        logger.exception("Failed to upload blob %s: %s", key, exc)
        raise StorageError("Failed to upload file") from exc
    logger.debug("Stored blob %s (%d bytes)", key, len(data))
    return key


async def fetch_blob(storage: Any, key: str) -> bytes:
    storage = _require_storage(storage)
    try:
        return await call_storage(storage, 'get', key)
    except FileNotFoundError as exc:
        raise NotFound("File not found") from exc
    except Exception as exc:
        logger.exception("Failed to download blob %s: %s", key, exc)
        raise StorageError("Failed to download file") from exc


async def sign_url(storage: Any, key: Optional[str], ttl_seconds: int) -> Optional[str]:
    """Time-limited retrieval URL for `key`; `None` when there is no key."""
    if not key:
        return None
    storage = _require_storage(storage)
    try:
        return await call_storage(storage, 'sign', key, int(ttl_seconds))
    except Exception as exc:
        logger.exception("Failed to sign blob %s: %s", key, exc)
        raise StorageError("Failed to sign file URL") from exc


async def release_blob_if_unreferenced(session: Session, storage: Any, key: Optional[str]) -> bool:
    """Delete the blob at `key` once no database row points at it.

    Must run after the referencing row's delete (or key swap) is committed.
    Never raises: a failed delete only leaves an orphaned blob behind.
    Returns True when a delete was attempted and succeeded.
    """
    if not key:
        return False
    try:
        remaining = count_key_references(session, key)
    except Exception as exc:
        logger.warning("Could not count references to blob %s; keeping it: %s", key, exc)
        return False
    if remaining:
        logger.debug("Blob %s still referenced by %d record(s); keeping it", key, remaining)
        return False
    if storage is None:
        logger.warning("Storage is not configured; blob %s left in place", key)
        return False
    try:
        await call_storage(storage, 'delete', key)
    except Exception as exc:
        logger.warning("Failed to delete blob %s: %s", key, exc)
        return False
    logger.info("Deleted unreferenced blob %s", key)
    return True
