"""Blob store adapters.

Both adapters expose the same blocking interface, keyed by a hierarchical
string path::

    put(key, data, content_type)   -> None
    get(key)                       -> bytes
    delete(key)                    -> None
    sign(key, ttl_seconds)         -> str (time-limited retrieval URL)

Failures surface as `FileNotFoundError` for missing objects and `IOError`
for everything else; `storage_helpers` maps them onto the error taxonomy.
"""
import io
import logging
import time
from typing import Callable, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from webdav4.client import Client

from .constants import DEFAULT_CONTENT_TYPE, INITIAL_WEBDAV_BACKOFF, MAX_WEBDAV_RETRY_ATTEMPTS

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}


class S3BlobStore:
    """S3-compatible object store (AWS, Wasabi, MinIO) through boto3."""

    def __init__(self, bucket: str, endpoint_url: Optional[str] = None, region: Optional[str] = None,
                 access_key: Optional[str] = None, secret_key: Optional[str] = None, client=None):
        self.bucket = bucket
        if client is not None:
            self.client = client
        else:
            self.client = boto3.client(
                "s3",
                endpoint_url=endpoint_url,
                region_name=region,
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
            )

    def put(self, key: str, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> None:
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except (BotoCoreError, ClientError) as exc:
            raise IOError(f"Failed to upload {key}: {exc}") from exc

    def get(self, key: str) -> bytes:
        try:
            resp = self.client.get_object(Bucket=self.bucket, Key=key)
            return resp["Body"].read()
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND_CODES:
                raise FileNotFoundError(f"File not found: {key}") from exc
            raise IOError(f"Failed to download {key}: {exc}") from exc
        except BotoCoreError as exc:
            raise IOError(f"Failed to download {key}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise IOError(f"Failed to delete {key}: {exc}") from exc

    def sign(self, key: str, ttl_seconds: int) -> str:
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=int(ttl_seconds),
            )
        except (BotoCoreError, ClientError) as exc:
            raise IOError(f"Failed to sign {key}: {exc}") from exc


class WebDavBlobStore:
    """WebDAV-backed store.

    WebDAV has no native presigning, so `sign` delegates to `url_signer`,
    which produces a tokenized URL served by the application's own download
    proxy.
    """

    def __init__(self, base_url: str, auth: Optional[tuple] = None,
                 url_signer: Optional[Callable[[str, int], str]] = None):
        self.client = Client(base_url, auth=auth)
        self.url_signer = url_signer

    @staticmethod
    def _remote(key: str) -> str:
        return key if str(key).startswith('/') else '/' + str(key).lstrip('/')

    def _ensure_parents(self, remote: str) -> None:
        parts = remote.strip('/').split('/')[:-1]
        path = ''
        for part in parts:
            path += '/' + part
            try:
                if not self.client.exists(path):
                    self.client.mkdir(path)
            except Exception as exc:
                # A concurrent upload may have created it; the upload itself will tell.
                logger.debug("mkdir %s failed: %s", path, exc)

    def put(self, key: str, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> None:
        remote = self._remote(key)
        self._ensure_parents(remote)

        max_retries = MAX_WEBDAV_RETRY_ATTEMPTS
        initial_backoff = INITIAL_WEBDAV_BACKOFF
        last_exc = None

        for attempt in range(max_retries):
            try:
                self.client.upload_fileobj(io.BytesIO(data), remote, overwrite=True)
                return
            except Exception as exc:
                last_exc = exc
                exc_str = str(exc).lower()
                if ('423' in str(exc) or 'locked' in exc_str) and attempt < max_retries - 1:
                    backoff = initial_backoff * (2 ** attempt)
                    logger.debug(
                        "WebDAV locked on attempt %d; retrying after %.2fs", attempt + 1, backoff
                    )
                    time.sleep(backoff)
                    continue
                raise IOError(f"Failed to upload {remote}: {exc}") from exc

        raise IOError(f"Failed to upload {remote} after {max_retries} attempts: {last_exc}") from last_exc

    def get(self, key: str) -> bytes:
        remote = self._remote(key)
        try:
            with self.client.open(remote, mode='rb') as f:
                data = f.read()
        except FileNotFoundError:
            raise
        except Exception as exc:
            if _looks_missing(exc):
                raise FileNotFoundError(f"File not found: {remote}") from exc
            raise IOError(f"Failed to download {remote}: {exc}") from exc
        if isinstance(data, str):
            return data.encode('utf-8')
        return data

    def delete(self, key: str) -> None:
        remote = self._remote(key)
        try:
            self.client.remove(remote)
        except FileNotFoundError:
            raise
        except Exception as exc:
            if _looks_missing(exc):
                raise FileNotFoundError(f"File not found: {remote}") from exc
            raise IOError(f"Failed to delete {remote}: {exc}") from exc

    def sign(self, key: str, ttl_seconds: int) -> str:
        if self.url_signer is None:
            raise IOError("WebDAV store has no URL signer configured")
        return self.url_signer(key, int(ttl_seconds))


def _looks_missing(exc: Exception) -> bool:
    error_str = str(exc).lower()
    if any(x in error_str for x in ['404', 'not found', 'does not exist', 'resource not found']):
        return True
    return 'notfound' in exc.__class__.__name__.lower()
