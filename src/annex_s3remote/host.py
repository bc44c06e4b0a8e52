"""Helpers for talking back to the tracker that drives the remote."""

import contextlib
import io
import logging


COPY_CHUNK_SIZE = 1024 * 1024

PACKAGE_LOGGER = "annex_s3remote"

_debug_handler = None


class ProgressReader(io.RawIOBase):
    """Readable, seekable wrapper that reports the stream position.

    ``callback`` receives the total number of bytes read so far. Seeking
    resets the count to the new position, so a retried upload starts
    reporting from zero again.
    """

    def __init__(self, stream, callback):
        self._stream = stream
        self._callback = callback

    def readable(self):
        return True

    def seekable(self):
        return True

    def read(self, size=-1):
        data = self._stream.read(size)
        if data:
            self._callback(self._stream.tell())
        return data

    def readinto(self, buffer):
        data = self.read(len(buffer))
        buffer[: len(data)] = data
        return len(data)

    def seek(self, offset, whence=io.SEEK_SET):
        return self._stream.seek(offset, whence)

    def tell(self):
        return self._stream.tell()


def copy_stream(source, target, callback=None, chunk_size=COPY_CHUNK_SIZE):
    """Copy ``source`` into ``target`` and return the number of bytes copied."""
    copied = 0
    while True:
        chunk = source.read(chunk_size)
        if not chunk:
            break
        target.write(chunk)
        copied += len(chunk)
        if callback is not None:
            callback(copied)
    return copied


class AnnexDebugHandler(logging.Handler):
    """Forward log records to the debug channel of the host being served.

    Records go to the host of the innermost ``serving()`` block and are
    dropped outside of one, so remotes sharing a process never see each
    other's diagnostics.
    """

    def __init__(self, level=logging.DEBUG):
        super().__init__(level)
        self._hosts = []
        self.setFormatter(logging.Formatter("%(name)s: %(message)s"))

    @contextlib.contextmanager
    def serving(self, host):
        with self.lock:
            self._hosts.append(host)
        try:
            yield host
        finally:
            with self.lock:
                self._hosts.pop()

    def emit(self, record):
        host = self._hosts[-1] if self._hosts else None
        if host is None:
            return
        try:
            message = self.format(record)
            # The protocol is line oriented.
            host.debug(message.replace("\n", " "))
        except Exception:
            self.handleError(record)


def debug_handler():
    """Return the process-wide AnnexDebugHandler.

    It is added to the package logger the first time. The logger level is
    left to the application; records below it never reach the handler.
    """
    global _debug_handler
    if _debug_handler is None:
        _debug_handler = AnnexDebugHandler()
        logging.getLogger(PACKAGE_LOGGER).addHandler(_debug_handler)
    return _debug_handler
