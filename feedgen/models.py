"""Data models for the health feed generator."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

SOURCE_TIMELINE = "timeline"
SOURCE_AUTHOR = "author"
SOURCE_SEARCH = "search"


@dataclass(frozen=True)
class PostRef:
    """A post fetched from the upstream network."""

    uri: str
    text: str
    indexed_at: datetime | None = None
    source: str = ""


@dataclass(frozen=True)
class CacheEntry:
    """Minimal record kept in the bounded post cache."""

    uri: str
    indexed_at: datetime | None = None
    text: str = ""


def has_newer_metadata(candidate: Any, current: Any) -> bool:
    """Whether candidate's indexed_at should replace current's.

    A timestamp beats no timestamp; between two timestamps the later wins.
    """
    if candidate.indexed_at is None:
        return False
    if current.indexed_at is None:
        return True
    return candidate.indexed_at > current.indexed_at


@dataclass(frozen=True)
class FeedEntry:
    """A single item of a feed skeleton."""

    post: str

    def to_dict(self) -> dict[str, str]:
        return {"post": self.post}


@dataclass
class FeedPage:
    """A feed skeleton page returned to the requesting client."""

    feed: list[FeedEntry] = field(default_factory=list)
    cursor: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the getFeedSkeleton response shape."""
        body: dict[str, Any] = {"feed": [entry.to_dict() for entry in self.feed]}
        if self.cursor is not None:
            body["cursor"] = self.cursor
        return body


@dataclass(frozen=True)
class SourceQuery:
    """One upstream query issued while assembling a feed."""

    kind: str  # timeline, author or search
    value: str = ""

    @property
    def label(self) -> str:
        return f"{self.kind}:{self.value}" if self.value else self.kind


@dataclass
class UpstreamPage:
    """A page of posts returned by the upstream client."""

    posts: list[PostRef]
    cursor: str | None = None


@dataclass
class SourceResult:
    """Outcome of a single source query."""

    query: SourceQuery
    posts: list[PostRef] = field(default_factory=list)
    cursor: str | None = None
    error: str | None = None
    rate_limited: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None
