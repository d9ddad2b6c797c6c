"""In-memory bounded cache of relevant posts."""

from collections import OrderedDict

from .models import CacheEntry, PostRef, has_newer_metadata


class BoundedPostCache:
    """Insertion-ordered post cache with a fixed capacity.

    The oldest inserted uri is evicted first. Reads and overwrites do not
    refresh an entry's position, so this is not an LRU.
    """

    def __init__(self, capacity: int = 1000):
        """Initialize the cache.

        Args:
            capacity: Maximum number of entries, fixed for the cache lifetime
        """
        if capacity < 1:
            raise ValueError("Cache capacity must be at least 1")
        self._capacity = capacity
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()

    @property
    def capacity(self) -> int:
        return self._capacity

    def put(self, post: PostRef) -> None:
        """Insert the entry for post.uri, evicting if full.

        An existing entry is only overwritten when post carries newer
        metadata, so a stale copy from another source never replaces it.
        """
        entry = CacheEntry(uri=post.uri, indexed_at=post.indexed_at, text=post.text)

        current = self._entries.get(post.uri)
        if current is not None:
            if has_newer_metadata(entry, current):
                self._entries[post.uri] = entry
            return

        if len(self._entries) >= self._capacity:
            self._entries.popitem(last=False)

        self._entries[post.uri] = entry

    def values(self) -> list[CacheEntry]:
        """All entries, oldest insertion first."""
        return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, uri: object) -> bool:
        return uri in self._entries
