from zope.interface import Attribute
from zope.interface import Interface


class IObjectStoreClient(Interface):
    """Abstraction over a versioned S3-compatible object store."""

    bucket_name = Attribute("Name of the bucket all operations act on")

    def list_objects(start_after="", max_count=1000, prefix="", start_version=""):
        """Return an ObjectListing with the latest version of each name.

        Names sort after ``start_after`` and start with ``prefix``. To
        continue a listing pass both ``next_start`` and ``next_version``
        of the previous page back as ``start_after`` and ``start_version``.
        """

    def get_object_info(name, identity):
        """Return ObjectInfo for one object version, or None if it is gone."""

    def upload_object(name, stream, sha1_hex, length):
        """Upload ``length`` bytes from ``stream`` and return an ObjectVersion."""

    def download_object(name):
        """Return a readable stream with the latest content of ``name``.

        Reading from it raises ObjectStoreError when the transfer fails.
        """

    def hide_object(name):
        """Hide ``name`` so it no longer shows up as present."""

    def bucket_exists():
        """Return True if the bucket exists and is reachable."""

    def create_bucket():
        """Create a private, versioned bucket."""

    def object_url(name, base_url=None):
        """Return the direct URL of ``name``."""


class IPresenceCache(Interface):
    """Answers whether a remote object name is present, and with which id."""

    def lookup(name):
        """Return a ``(found, identity)`` tuple."""

    def record_upload(name, identity):
        """Update the cached view after ``name`` was uploaded."""

    def record_hide(name):
        """Update the cached view after ``name`` was hidden."""

    def clear_last_lookup():
        """Forget the single-entry lookup record."""


class IAnnexHost(Interface):
    """The protocol side that dispatches requests to a remote."""

    def get_config(name):
        """Return the configured value of ``name``, or an empty string."""

    def get_creds(setting):
        """Return a ``(user, password)`` tuple, empty strings if unset."""

    def set_creds(setting, user, password):
        """Persist credentials."""

    def debug(message):
        """Send a debug message to the tracker."""

    def progress(byte_count):
        """Report the number of bytes transferred so far."""


class IAnnexRemote(Interface):
    """Request handlers of a special remote."""

    def init_remote():
        """Set up the remote for the first time, creating the bucket."""

    def prepare():
        """Set up the remote for use; the bucket must already exist."""

    def store(key, path):
        """Store the content of ``path`` under ``key``."""

    def retrieve(key, path):
        """Write the content stored under ``key`` to ``path``."""

    def check_present(key):
        """Return True if ``key`` is stored."""

    def remove(key):
        """Remove ``key``; succeeds if it is already absent."""

    def get_cost():
        """Return the transfer cost or raise UnsupportedRequest."""

    def get_availability():
        """Return ``GLOBAL`` or ``LOCAL``."""

    def where_is(key):
        """Return a location hint for ``key`` or raise UnsupportedRequest."""
