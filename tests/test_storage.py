import time

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from starkeeper.constants import INITIAL_WEBDAV_BACKOFF, MAX_WEBDAV_RETRY_ATTEMPTS
from starkeeper.storage import S3BlobStore, WebDavBlobStore

from _helpers import FakeS3Client, FakeWebDavClient


def _client_error(code, op="GetObject"):
    return ClientError({"Error": {"Code": code, "Message": code}}, op)


def _webdav(client, url_signer=None):
    store = WebDavBlobStore('http://dav.example/root', auth=('u', 'p'), url_signer=url_signer)
    store.client = client
    return store


def test_s3_put_get_delete():
    client = FakeS3Client()
    store = S3BlobStore('bucket', client=client)

    store.put('stars/s/photos/1-a.jpg', b'img', 'image/jpeg')
    assert client.calls[0] == ('put_object', 'bucket', 'stars/s/photos/1-a.jpg', 'image/jpeg')
    assert store.get('stars/s/photos/1-a.jpg') == b'img'

    store.delete('stars/s/photos/1-a.jpg')
    assert 'stars/s/photos/1-a.jpg' not in client.objects


def test_s3_sign_uses_presigned_get_object():
    client = FakeS3Client()
    store = S3BlobStore('bucket', client=client)

    url = store.sign('k/a.pdf', 3600)
    assert url == "https://s3.test/bucket/k/a.pdf?X-Amz-Expires=3600"
    assert client.calls[-1] == ('generate_presigned_url', 'get_object', {'Bucket': 'bucket', 'Key': 'k/a.pdf'}, 3600)


@pytest.mark.parametrize("code", ["NoSuchKey", "404", "NotFound"])
def test_s3_get_missing_is_filenotfound(code):
    store = S3BlobStore('bucket', client=FakeS3Client(errors={'get_object': _client_error(code)}))
    with pytest.raises(FileNotFoundError):
        store.get('missing')


def test_s3_get_other_client_error_is_ioerror():
    store = S3BlobStore('bucket', client=FakeS3Client(errors={'get_object': _client_error("AccessDenied")}))
    with pytest.raises(IOError) as exc_info:
        store.get('k')
    assert not isinstance(exc_info.value, FileNotFoundError)


def test_s3_put_connection_failure_is_ioerror():
    err = EndpointConnectionError(endpoint_url="https://s3.invalid")
    store = S3BlobStore('bucket', client=FakeS3Client(errors={'put_object': err}))
    with pytest.raises(IOError):
        store.put('k', b'x', 'text/plain')


def test_s3_sign_failure_is_ioerror():
    store = S3BlobStore('bucket', client=FakeS3Client(errors={'generate_presigned_url': _client_error("Boom")}))
    with pytest.raises(IOError):
        store.sign('k', 10)


def test_webdav_put_creates_parent_directories():
    client = FakeWebDavClient()
    store = _webdav(client)

    store.put('stars/s1/photos/a1/1-a.jpg', b'data', 'image/jpeg')
    assert client.files['/stars/s1/photos/a1/1-a.jpg'] == b'data'
    assert {'/stars', '/stars/s1', '/stars/s1/photos', '/stars/s1/photos/a1'} <= client.dirs


def test_webdav_put_retries_on_locked_and_succeeds(monkeypatch):
    client = FakeWebDavClient(upload_fail_times=MAX_WEBDAV_RETRY_ATTEMPTS - 1)
    store = _webdav(client)
    sleeps = []
    monkeypatch.setattr(time, 'sleep', lambda x: sleeps.append(x))

    store.put('k/a.txt', b'x')
    assert client.upload_calls == MAX_WEBDAV_RETRY_ATTEMPTS
    assert sleeps == [INITIAL_WEBDAV_BACKOFF * (2 ** i) for i in range(MAX_WEBDAV_RETRY_ATTEMPTS - 1)]


def test_webdav_put_raises_after_max_retries(monkeypatch):
    client = FakeWebDavClient(upload_fail_times=MAX_WEBDAV_RETRY_ATTEMPTS)
    store = _webdav(client)
    monkeypatch.setattr(time, 'sleep', lambda x: None)

    with pytest.raises(IOError):
        store.put('k/a.txt', b'x')
    assert client.upload_calls == MAX_WEBDAV_RETRY_ATTEMPTS


def test_webdav_put_raises_immediately_on_other_errors(monkeypatch):
    client = FakeWebDavClient(upload_fail_times=1, upload_exc=RuntimeError("500 internal"))
    store = _webdav(client)
    monkeypatch.setattr(time, 'sleep', lambda x: pytest.fail("should not sleep"))

    with pytest.raises(IOError):
        store.put('k/a.txt', b'x')
    assert client.upload_calls == 1


def test_webdav_get_uses_leading_slash():
    store = _webdav(FakeWebDavClient(files={'/k/a.txt': b'hello'}))
    assert store.get('k/a.txt') == b'hello'
    assert store.get('/k/a.txt') == b'hello'


def test_webdav_get_missing_is_filenotfound():
    store = _webdav(FakeWebDavClient())
    with pytest.raises(FileNotFoundError):
        store.get('k/missing.txt')


def test_webdav_get_404_message_is_filenotfound():
    store = _webdav(FakeWebDavClient(open_exc=RuntimeError("HTTP 404 Not Found")))
    with pytest.raises(FileNotFoundError):
        store.get('k/a.txt')


def test_webdav_get_other_failure_is_ioerror():
    store = _webdav(FakeWebDavClient(open_exc=RuntimeError("connection reset")))
    with pytest.raises(IOError) as exc_info:
        store.get('k/a.txt')
    assert not isinstance(exc_info.value, FileNotFoundError)


def test_webdav_delete():
    client = FakeWebDavClient(files={'/k/a.txt': b'x'})
    store = _webdav(client)
    store.delete('k/a.txt')
    assert client.removed == ['/k/a.txt']


def test_webdav_delete_failure_is_ioerror():
    store = _webdav(FakeWebDavClient(remove_exc=RuntimeError("423 locked")))
    with pytest.raises(IOError):
        store.delete('k/a.txt')


def test_webdav_sign_delegates_to_signer():
    calls = []

    def signer(key, ttl):
        calls.append((key, ttl))
        return f"http://app/api/blobs/download?token={key}"

    store = _webdav(FakeWebDavClient(), url_signer=signer)
    assert store.sign('k/a.txt', '60') == "http://app/api/blobs/download?token=k/a.txt"
    assert calls == [('k/a.txt', 60)]


def test_webdav_sign_without_signer_is_ioerror():
    store = _webdav(FakeWebDavClient())
    with pytest.raises(IOError):
        store.sign('k', 60)
