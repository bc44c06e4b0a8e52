from annex_s3remote.errors import LocalIOError
from annex_s3remote.errors import RemoteOperationError
from annex_s3remote.errors import RetriesExhausted
from annex_s3remote.host import ProgressReader
from annex_s3remote.s3client import is_retryable
from annex_s3remote.s3client import ObjectStoreError

import hashlib
import logging
import threading
import time


logger = logging.getLogger(__name__)

HASH_CHUNK_SIZE = 1024 * 1024


class HashTask:
    """Hash an open file in a background thread.

    The thread reads the whole file, records its SHA-1 and length, and
    rewinds it. ``result()`` blocks until that is done; the file handle
    must not be touched by anyone else in the meantime.
    """

    def __init__(self, fh):
        self._fh = fh
        self.sha1 = None
        self.length = None
        self.error = None
        self._thread = threading.Thread(target=self._run, daemon=True)

    def start(self):
        self._thread.start()
        return self

    def _run(self):
        try:
            digest = hashlib.sha1()
            length = 0
            while True:
                chunk = self._fh.read(HASH_CHUNK_SIZE)
                if not chunk:
                    break
                digest.update(chunk)
                length += len(chunk)
            self._fh.seek(0)
        except Exception as e:
            self.error = e
        else:
            self.sha1 = digest.hexdigest()
            self.length = length

    def wait(self):
        self._thread.join()

    def result(self):
        """Wait for the hash and return ``(sha1_hex, length)``."""
        self.wait()
        if self.error is not None:
            raise self.error
        return self.sha1, self.length


class StorePipeline:
    """Hash, verify, upload with retry, then update the presence cache."""

    def __init__(self, client, presence, retries=1, sleep=time.sleep):
        self._client = client
        self._presence = presence
        self.retries = retries
        self._sleep = sleep

    def store(self, name, path, progress=None):
        """Make ``name`` hold the content of ``path``.

        Returns the uploaded ObjectVersion, or None when an identical
        object was already stored.
        """
        try:
            fh = open(path, "rb")
        except OSError as e:
            raise LocalIOError("store", name, f"couldn't open {path}: {e}") from e

        with fh:
            hasher = HashTask(fh).start()
            try:
                if self._already_stored(name, hasher):
                    logger.debug("%s already stored with identical content", name)
                    return None

                try:
                    sha1, length = hasher.result()
                except Exception as e:
                    raise LocalIOError(
                        "store", name, f"couldn't hash local file {path}: {e}"
                    ) from e

                stream = fh if progress is None else ProgressReader(fh, progress)
                version = self._upload(name, stream, sha1, length)
            finally:
                hasher.wait()

        self._presence.record_upload(version.name, version.identity)
        return version

    def _already_stored(self, name, hasher):
        try:
            found, identity = self._presence.lookup(name)
        except ObjectStoreError as e:
            raise RemoteOperationError(
                "store", name, f"couldn't list filenames: {e}"
            ) from e
        if not found:
            return False

        try:
            info = self._client.get_object_info(name, identity)
        except ObjectStoreError as e:
            raise RemoteOperationError(
                "store", name, f"couldn't get file info for {identity}: {e}"
            ) from e
        if info is None or info.sha1 is None:
            return False

        hasher.wait()
        return hasher.error is None and info.sha1.lower() == hasher.sha1

    def _upload(self, name, stream, sha1, length):
        attempts = self.retries + 1
        for attempt in range(attempts):
            if attempt:
                try:
                    stream.seek(0)
                except OSError as e:
                    raise LocalIOError(
                        "store", name, f"couldn't retry upload: {e}"
                    ) from e
            try:
                return self._client.upload_object(name, stream, sha1, length)
            except ObjectStoreError as e:
                if not is_retryable(e):
                    raise RemoteOperationError(
                        "store", name, f"couldn't upload file: {e}"
                    ) from e
                if attempt + 1 == attempts:
                    raise RetriesExhausted(
                        "store",
                        name,
                        f"couldn't upload file after {attempts} attempts: {e}",
                        attempts,
                    ) from e
                wait = 2**attempt
                logger.warning(
                    "upload of %s failed, retrying in %ds, error: %s", name, wait, e
                )
                self._sleep(wait)
