import hashlib
import io
import itertools
from collections import Counter

import pytest
from zope.interface import implementer

from annex_s3remote.interfaces import IAnnexHost
from annex_s3remote.interfaces import IObjectStoreClient
from annex_s3remote.s3client import FATAL
from annex_s3remote.s3client import HIDE
from annex_s3remote.s3client import ObjectEntry
from annex_s3remote.s3client import ObjectInfo
from annex_s3remote.s3client import ObjectListing
from annex_s3remote.s3client import ObjectStoreError
from annex_s3remote.s3client import ObjectVersion
from annex_s3remote.s3client import UPLOAD


@implementer(IObjectStoreClient)
class FakeObjectStore:
    """In-memory versioned store that counts calls and can inject failures."""

    def __init__(self, bucket_name="test-bucket", **client_kwargs):
        self.bucket_name = bucket_name
        self.client_kwargs = client_kwargs
        self.versions = {}  # {name: [(identity, action, data, sha1)]}, newest last
        self.calls = Counter()
        self.upload_errors = []
        self.hide_error = None
        self.uploaded = []
        self.version_markers = []
        self._ids = itertools.count(1)

    def put(self, name, data, sha1=None):
        identity = f"v{next(self._ids)}"
        if sha1 is None:
            sha1 = hashlib.sha1(data).hexdigest()
        self.versions.setdefault(name, []).append((identity, UPLOAD, data, sha1))
        return identity

    def hide(self, name):
        identity = f"v{next(self._ids)}"
        self.versions.setdefault(name, []).append((identity, HIDE, None, None))

    def latest(self, name):
        versions = self.versions.get(name)
        return versions[-1] if versions else None

    def list_objects(
        self, start_after="", max_count=1000, prefix="", start_version=""
    ):
        self.calls["list_objects"] += 1
        self.version_markers.append(start_version)
        names = sorted(
            n for n in self.versions if n > start_after and n.startswith(prefix)
        )
        page = names[:max_count]
        entries = []
        for name in page:
            identity, action, _data, _sha1 = self.versions[name][-1]
            entries.append(ObjectEntry(name, identity, action))
        if len(names) <= max_count:
            return ObjectListing(entries)
        return ObjectListing(entries, entries[-1].name, entries[-1].identity)

    def get_object_info(self, name, identity):
        self.calls["get_object_info"] += 1
        for version_id, action, data, sha1 in self.versions.get(name, []):
            if version_id == identity and action == UPLOAD:
                return ObjectInfo(name, identity, sha1, len(data))
        return None

    def upload_object(self, name, stream, sha1_hex, length):
        self.calls["upload_object"] += 1
        if self.upload_errors:
            raise self.upload_errors.pop(0)
        data = stream.read()
        assert len(data) == length
        assert hashlib.sha1(data).hexdigest() == sha1_hex
        identity = self.put(name, data, sha1_hex)
        self.uploaded.append((name, data))
        return ObjectVersion(name, identity)

    def download_object(self, name):
        self.calls["download_object"] += 1
        latest = self.latest(name)
        if latest is None or latest[1] != UPLOAD:
            raise ObjectStoreError(FATAL, f"no such object {name}", "download", name)
        return io.BytesIO(latest[2])

    def hide_object(self, name):
        self.calls["hide_object"] += 1
        if self.hide_error is not None:
            raise self.hide_error
        self.hide(name)

    def bucket_exists(self):
        self.calls["bucket_exists"] += 1
        return True

    def create_bucket(self):
        self.calls["create_bucket"] += 1

    def object_url(self, name, base_url=None):
        return f"{base_url or 'https://s3.example.com/' + self.bucket_name}/{name}"


@implementer(IAnnexHost)
class FakeHost:
    """Stand-in for the protocol side: dict-backed config and creds."""

    def __init__(self, config=None, creds=None):
        self.config = dict(config or {})
        self.creds = dict(creds or {})
        self.debug_messages = []
        self.progress_reports = []

    def get_config(self, name):
        return self.config.get(name, "")

    def get_creds(self, setting):
        return self.creds.get(setting, ("", ""))

    def set_creds(self, setting, user, password):
        self.creds[setting] = (user, password)

    def debug(self, message):
        self.debug_messages.append(message)

    def progress(self, byte_count):
        self.progress_reports.append(byte_count)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class RecordingSleep:
    def __init__(self):
        self.waits = []

    def __call__(self, seconds):
        self.waits.append(seconds)


@pytest.fixture
def store():
    return FakeObjectStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def host():
    return FakeHost(
        config={"bucket": "test-bucket", "prefix": "raw", "region": "us-east-1"},
        creds={"appkey": ("testing-key-id", "testing-secret")},
    )
