"""Feed assembly: fan out over upstream sources, filter, dedupe, order, cap."""

from datetime import UTC, datetime
from typing import Any, Iterable, Protocol

from .cache import BoundedPostCache
from .config import FeedConfig
from .errors import AuthenticationError, RateLimitedError, SourceQueryError
from .logging_config import create_execution_logger
from .models import (
    SOURCE_AUTHOR,
    SOURCE_SEARCH,
    SOURCE_TIMELINE,
    FeedEntry,
    FeedPage,
    SourceQuery,
    SourceResult,
    UpstreamPage,
    has_newer_metadata,
)
from .relevance import RelevanceFilter
from .throttle import RequestGate


class UpstreamClient(Protocol):
    def ensure_session(self) -> None: ...

    def get_timeline(self, cursor: str | None = None) -> UpstreamPage: ...

    def get_author_feed(self, actor: str) -> UpstreamPage: ...

    def search_posts(self, term: str) -> UpstreamPage: ...


def dedupe_posts(posts: Iterable[Any]) -> list[Any]:
    """Keep one post per uri.

    The kept instance is the one with the most recent indexed_at; a
    timestamped instance beats one without, and on a tie the first seen
    wins. The result keeps the position of each uri's first appearance.
    """
    kept: dict[str, Any] = {}
    for post in posts:
        current = kept.get(post.uri)
        if current is None or has_newer_metadata(post, current):
            kept[post.uri] = post
    return list(kept.values())


def order_posts(posts: list[Any]) -> list[Any]:
    """Sort newest first; posts without a timestamp follow in arrival order."""
    timed = [p for p in posts if p.indexed_at is not None]
    untimed = [p for p in posts if p.indexed_at is None]
    timed.sort(key=lambda p: p.indexed_at, reverse=True)
    return timed + untimed


class FeedAggregator:
    """Builds feed skeleton pages from the upstream network."""

    def __init__(
        self,
        client: UpstreamClient,
        relevance_filter: RelevanceFilter,
        config: FeedConfig,
        gate: RequestGate | None = None,
        cache: BoundedPostCache | None = None,
        execution_id: str | None = None,
    ):
        """Initialize the aggregator.

        Args:
            client: Upstream client; its session is shared across requests
            relevance_filter: Keyword filter applied to every fetched post
            config: Sources, limits and failure policy
            gate: Request gate consulted before each outbound call
            cache: Optional cache accumulating relevant posts across requests
            execution_id: Execution ID for logging context
        """
        self.client = client
        self.relevance_filter = relevance_filter
        self.config = config
        self.gate = gate or RequestGate(
            min_interval=config.min_request_interval,
            rate_limit_delay=config.rate_limit_delay,
        )
        self.cache = cache
        self.logger = create_execution_logger("aggregator", execution_id)
        self.last_results: list[SourceResult] = []

        self.logger.info(
            "FeedAggregator initialized",
            sources=[q.label for q in self.source_queries()],
            max_items=config.max_items,
            cache_capacity=cache.capacity if cache else None,
            degrade_on_failure=config.degrade_on_failure,
        )

    def source_queries(self) -> list[SourceQuery]:
        """The upstream queries issued for every feed request, in order."""
        queries = []
        if self.config.include_timeline:
            queries.append(SourceQuery(SOURCE_TIMELINE))
        queries.extend(SourceQuery(SOURCE_AUTHOR, h) for h in self.config.author_handles)
        queries.extend(SourceQuery(SOURCE_SEARCH, t) for t in self.config.search_terms)
        return queries

    def assemble_feed(
        self,
        cursor: str | None = None,
        limit: int | None = None,
        execution_id: str | None = None,
    ) -> FeedPage:
        """Assemble one feed skeleton page.

        Args:
            cursor: Opaque cursor from the requesting client
            limit: Optional per-request cap, never above the configured maximum
            execution_id: Execution ID for logging context

        Returns:
            FeedPage with deduplicated, newest-first entries

        Raises:
            AuthenticationError: If login fails and degrade_on_failure is off
        """
        logger = self.logger.with_execution(execution_id) if execution_id else self.logger
        logger.log_execution_start(cursor=cursor)

        metrics: dict[str, Any] = {
            "sources_queried": 0,
            "sources_failed": 0,
            "posts_found": 0,
            "posts_relevant": 0,
            "posts_returned": 0,
            "errors": [],
        }

        try:
            if not getattr(self.client, "authenticated", False):
                self.gate.wait()
            self.client.ensure_session()

            results = self._run_queries(cursor, logger)
            self.last_results = results

            posts = [post for result in results if result.ok for post in result.posts]
            metrics["sources_queried"] = len(results)
            metrics["sources_failed"] = sum(1 for r in results if not r.ok)
            metrics["errors"] = [r.error for r in results if not r.ok]
            metrics["posts_found"] = len(posts)

            pinned_uri = self.config.pinned_post_uri
            relevant = [
                p
                for p in posts
                if p.uri != pinned_uri and self.relevance_filter.is_relevant(p.text)
            ]
            metrics["posts_relevant"] = len(relevant)

            candidates: list[Any] = relevant
            if self.cache is not None:
                for post in dedupe_posts(relevant):
                    self.cache.put(post)
                candidates = self.cache.values()
                metrics["cache_size"] = len(self.cache)

            page = FeedPage(
                feed=self._build_entries(candidates, limit),
                cursor=self._next_cursor(results, cursor),
            )
        except Exception as e:
            error_msg = f"Failed to assemble feed: {e}"
            logger.error(error_msg, error=str(e), error_type=type(e).__name__)
            metrics["errors"].append(error_msg)

            if not self.config.degrade_on_failure:
                logger.log_execution_end(success=False, metrics=metrics)
                raise

            page = FeedPage(feed=self._pinned_entries(), cursor=cursor)
            metrics["posts_returned"] = len(page.feed)
            logger.log_metrics(metrics)
            logger.log_execution_end(success=False, degraded=True, metrics=metrics)
            return page

        metrics["posts_returned"] = len(page.feed)
        logger.log_metrics(metrics)
        logger.log_execution_end(success=True, metrics=metrics)
        return page

    def _run_queries(self, cursor: str | None, logger) -> list[SourceResult]:
        """Run every source query one after another, tolerating failures."""
        queries = self.source_queries()
        results = []

        for index, query in enumerate(queries):
            self.gate.wait()
            result = self._run_query(query, cursor, logger)
            results.append(result)

            if result.rate_limited and index < len(queries) - 1:
                waited = self.gate.backoff()
                logger.warning(
                    f"Rate limited, waited {waited} seconds before next query",
                    source=query.label,
                )

        return results

    def _run_query(self, query: SourceQuery, cursor: str | None, logger) -> SourceResult:
        try:
            # An earlier source may have dropped an expired session
            if not getattr(self.client, "authenticated", True):
                self.client.ensure_session()

            if query.kind == SOURCE_TIMELINE:
                upstream = self.client.get_timeline(cursor=cursor)
            elif query.kind == SOURCE_AUTHOR:
                upstream = self.client.get_author_feed(query.value)
            elif query.kind == SOURCE_SEARCH:
                upstream = self.client.search_posts(query.value)
            else:
                raise ValueError(f"Unknown source kind: {query.kind}")
        except RateLimitedError as e:
            logger.warning(f"Source query rate limited: {e}", source=query.label)
            return SourceResult(query=query, error=str(e), rate_limited=True)
        except (SourceQueryError, AuthenticationError) as e:
            logger.error(f"Source query failed: {e}", source=query.label, error=str(e))
            return SourceResult(query=query, error=str(e))

        logger.log_source_query(query.label, len(upstream.posts))
        return SourceResult(query=query, posts=upstream.posts, cursor=upstream.cursor)

    def _pinned_entries(self) -> list[FeedEntry]:
        if self.config.pinned_post_uri:
            return [FeedEntry(post=self.config.pinned_post_uri)]
        return []

    def _build_entries(self, candidates: list[Any], limit: int | None) -> list[FeedEntry]:
        """Dedupe, order, cap and prepend the pinned entry."""
        max_items = self.config.max_items
        if limit is not None:
            max_items = max(1, min(max_items, limit))

        pinned = self._pinned_entries()
        ordered = order_posts(dedupe_posts(candidates))

        room = max(max_items - len(pinned), 0)
        return pinned + [FeedEntry(post=p.uri) for p in ordered[:room]]

    @staticmethod
    def _next_cursor(results: list[SourceResult], cursor: str | None) -> str:
        for result in results:
            if result.query.kind == SOURCE_TIMELINE and result.ok and result.cursor:
                return result.cursor
        if cursor:
            return cursor
        return datetime.now(UTC).isoformat()

