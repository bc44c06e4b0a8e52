from annex_s3remote.interfaces import IPresenceCache
from annex_s3remote.s3client import UPLOAD
from zope.interface import implementer

import logging
import time


logger = logging.getLogger(__name__)

# Enumeration stops after this many pages even if the store keeps
# returning continuation markers.
MAX_SNAPSHOT_PAGES = 100
SNAPSHOT_PAGE_SIZE = 1000

LAST_LOOKUP_FRESHNESS = 15


class SnapshotCache:
    """Name to identity map of every live object in the bucket.

    The snapshot is built lazily and replaced as a whole on rebuild.
    Local uploads and hides patch single entries. When enumeration hits
    ``max_pages`` the snapshot is marked incomplete and its negatives
    cannot be trusted.
    """

    def __init__(
        self,
        client,
        ttl=0,
        max_pages=MAX_SNAPSHOT_PAGES,
        page_size=SNAPSHOT_PAGE_SIZE,
        clock=time.monotonic,
    ):
        self._client = client
        self.ttl = ttl
        self.max_pages = max_pages
        self.page_size = page_size
        self._clock = clock
        self._names = None
        self.built_at = None
        self.complete = False

    @property
    def built(self):
        return self._names is not None

    def needs_rebuild(self):
        if self._names is None:
            return True
        return bool(self.ttl) and self._clock() - self.built_at > self.ttl

    def rebuild(self):
        names = {}
        start_after = start_version = ""
        complete = False
        self._names = None
        for _page in range(self.max_pages):
            listing = self._client.list_objects(
                start_after=start_after,
                max_count=self.page_size,
                start_version=start_version,
            )
            for entry in listing.entries:
                if entry.action == UPLOAD:
                    names[entry.name] = entry.identity
            if listing.next_start is None:
                complete = True
                break
            start_after = listing.next_start
            start_version = listing.next_version or ""
        if not complete:
            logger.debug(
                "Snapshot enumeration stopped after %d pages; marking incomplete",
                self.max_pages,
            )
        self._names = names
        self.built_at = self._clock()
        self.complete = complete
        logger.debug("Snapshot rebuilt with %d names", len(names))

    def get(self, name):
        if self._names is None:
            return None
        return self._names.get(name)

    def add(self, name, identity):
        if self._names is not None:
            self._names[name] = identity

    def discard(self, name):
        if self._names is not None:
            self._names.pop(name, None)

    def __contains__(self, name):
        return self._names is not None and name in self._names

    def __len__(self):
        return len(self._names) if self._names is not None else 0


class LastLookupCache:
    """Remembers the answer of the most recent single-name lookup."""

    def __init__(self, client, freshness=LAST_LOOKUP_FRESHNESS, clock=time.monotonic):
        self._client = client
        self.freshness = freshness
        self._clock = clock
        self.clear()

    def clear(self):
        self.name = None
        self.found = False
        self.identity = None
        self.observed_at = None

    def is_fresh(self, name):
        return (
            self.name == name
            and self.observed_at is not None
            and self._clock() - self.observed_at <= self.freshness
        )

    def lookup(self, name):
        if self.is_fresh(name):
            return self.found, self.identity

        listing = self._client.list_objects(prefix=name, max_count=1)
        entry = listing.entries[0] if listing.entries else None

        self.observed_at = self._clock()
        self.name = name
        if entry is None or entry.name != name or entry.action != UPLOAD:
            self.found = False
            self.identity = None
        else:
            self.found = True
            self.identity = entry.identity
        return self.found, self.identity


@implementer(IPresenceCache)
class PresenceCache:
    """Two-tier presence lookup.

    A complete snapshot answers both positives and negatives. An
    incomplete snapshot only answers positives; misses fall through to a
    live single-name lookup, which is itself cached for a few seconds.
    """

    def __init__(
        self,
        client,
        snapshot_enabled=False,
        snapshot_ttl=0,
        max_pages=MAX_SNAPSHOT_PAGES,
        page_size=SNAPSHOT_PAGE_SIZE,
        freshness=LAST_LOOKUP_FRESHNESS,
        clock=time.monotonic,
    ):
        self.snapshot_enabled = snapshot_enabled
        self.snapshot = SnapshotCache(
            client,
            ttl=snapshot_ttl,
            max_pages=max_pages,
            page_size=page_size,
            clock=clock,
        )
        self.last_lookup = LastLookupCache(client, freshness=freshness, clock=clock)

    def lookup(self, name):
        if self.snapshot_enabled:
            if self.snapshot.needs_rebuild():
                self.snapshot.rebuild()
            identity = self.snapshot.get(name)
            if identity is not None:
                return True, identity
            if self.snapshot.complete:
                return False, None
            logger.debug("%s not in incomplete snapshot, checking remote", name)
        return self.last_lookup.lookup(name)

    def record_upload(self, name, identity):
        self.last_lookup.clear()
        if self.snapshot_enabled:
            self.snapshot.add(name, identity)

    def record_hide(self, name):
        self.last_lookup.clear()
        if self.snapshot_enabled:
            self.snapshot.discard(name)

    def clear_last_lookup(self):
        self.last_lookup.clear()
