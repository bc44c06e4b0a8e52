from annex_s3remote.cache import PresenceCache
from annex_s3remote.config import open_client
from annex_s3remote.config import RemoteSettings
from annex_s3remote.errors import LocalIOError
from annex_s3remote.errors import NotReadyError
from annex_s3remote.errors import RemoteOperationError
from annex_s3remote.errors import UnsupportedRequest
from annex_s3remote.host import copy_stream
from annex_s3remote.host import debug_handler
from annex_s3remote.interfaces import IAnnexRemote
from annex_s3remote.s3client import ObjectStoreError
from annex_s3remote.s3client import S3Client
from annex_s3remote.store import StorePipeline
from zope.interface import implementer

import contextlib
import functools
import logging
import os
import tempfile
import time


logger = logging.getLogger(__name__)

AVAILABILITY_GLOBAL = "GLOBAL"


def _serving_host(method):
    """Route log records emitted during ``method`` to the remote's host."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with debug_handler().serving(self.host):
            return method(self, *args, **kwargs)

    return wrapper


@implementer(IAnnexRemote)
class S3Remote:
    """Special remote storing annexed keys in an S3-compatible bucket.

    The remote starts uninitialized; ``init_remote()`` or ``prepare()``
    resolves settings and opens the bucket once. Every other request
    requires that to have happened.
    """

    def __init__(self, host, environ=None, client_factory=S3Client, sleep=time.sleep):
        self.host = host
        self._environ = os.environ if environ is None else environ
        self._client_factory = client_factory
        self._sleep = sleep
        self.settings = None
        self.client = None
        self.presence = None
        self.pipeline = None

    def __repr__(self):
        state = "ready" if self.ready else "uninitialized"
        bucket = self.settings.bucket if self.settings else None
        return f"<S3Remote bucket={bucket!r} {state}>"

    @property
    def ready(self):
        return self.client is not None

    # -- Setup --

    @_serving_host
    def init_remote(self):
        self._setup(create_bucket=True)

    @_serving_host
    def prepare(self):
        self._setup(create_bucket=False)

    def _setup(self, create_bucket):
        if self.ready:
            return
        settings = RemoteSettings.resolve(self.host, self._environ)
        client = open_client(
            settings, create_bucket=create_bucket, client_factory=self._client_factory
        )
        presence = PresenceCache(
            client,
            snapshot_enabled=settings.cache_enabled,
            snapshot_ttl=settings.cache_duration,
        )
        settings.store_credentials(self.host)

        self.settings = settings
        self.presence = presence
        self.pipeline = StorePipeline(
            client, presence, retries=settings.retries, sleep=self._sleep
        )
        self.client = client

    def _require_ready(self):
        if not self.ready:
            raise NotReadyError("remote is not prepared")

    def _name(self, key):
        return self.settings.prefix + key

    # -- Requests --

    @_serving_host
    def store(self, key, path):
        self._require_ready()
        self.pipeline.store(self._name(key), path, progress=self.host.progress)

    @_serving_host
    def retrieve(self, key, path):
        self._require_ready()
        name = self._name(key)
        target_dir = os.path.dirname(path) or "."
        try:
            fd, tmp_path = tempfile.mkstemp(dir=target_dir, suffix=".part")
        except OSError as e:
            raise LocalIOError(
                "retrieve", key, f"couldn't open {path} for writing: {e}"
            ) from e
        try:
            with os.fdopen(fd, "wb") as fh:
                try:
                    body = self.client.download_object(name)
                except ObjectStoreError as e:
                    raise RemoteOperationError("retrieve", key, str(e)) from e
                with contextlib.closing(body):
                    try:
                        copy_stream(body, fh, callback=self.host.progress)
                    except ObjectStoreError as e:
                        raise RemoteOperationError("retrieve", key, str(e)) from e
                    except OSError as e:
                        raise LocalIOError(
                            "retrieve", key, f"couldn't write {path}: {e}"
                        ) from e
            try:
                os.replace(tmp_path, path)
            except OSError as e:
                raise LocalIOError(
                    "retrieve", key, f"couldn't move download into {path}: {e}"
                ) from e
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(tmp_path)
            raise

    @_serving_host
    def check_present(self, key):
        self._require_ready()
        try:
            found, _identity = self.presence.lookup(self._name(key))
        except ObjectStoreError as e:
            raise RemoteOperationError(
                "checkpresent", key, f"couldn't list filenames: {e}"
            ) from e
        return found

    @_serving_host
    def remove(self, key):
        self._require_ready()
        name = self._name(key)
        try:
            found, _identity = self.presence.lookup(name)
        except ObjectStoreError as e:
            raise RemoteOperationError(
                "remove", key, f"couldn't list filenames: {e}"
            ) from e
        if not found:
            logger.debug("%s is already absent", name)
            return

        try:
            self.client.hide_object(name)
        except ObjectStoreError as e:
            raise RemoteOperationError(
                "remove", key, f"couldn't delete file version: {e}"
            ) from e
        finally:
            self.presence.clear_last_lookup()
        self.presence.record_hide(name)

    def get_cost(self):
        raise UnsupportedRequest("getcost")

    def get_availability(self):
        return AVAILABILITY_GLOBAL

    @_serving_host
    def where_is(self, key):
        self._require_ready()
        if not self.settings.public:
            raise UnsupportedRequest("whereis")
        return self.client.object_url(self._name(key), base_url=self.settings.public_url)
