"""Upstream Bluesky XRPC client."""

from datetime import UTC
from typing import Any

import requests
from dateutil import parser as date_parser

from .config import BlueskyConfig
from .errors import (
    AuthenticationError,
    MalformedResponseError,
    RateLimitedError,
    SourceQueryError,
)
from .logging_config import create_execution_logger
from .models import (
    SOURCE_AUTHOR,
    SOURCE_SEARCH,
    SOURCE_TIMELINE,
    PostRef,
    UpstreamPage,
)

SESSION_ERRORS = {"ExpiredToken", "InvalidToken", "AuthenticationRequired"}


class BlueskyClient:
    """Authenticated client for the timeline, author feed and search endpoints."""

    def __init__(self, config: BlueskyConfig, execution_id: str | None = None):
        """Initialize the client.

        Args:
            config: Upstream credentials and limits
            execution_id: Execution ID for logging context
        """
        self.config = config
        self.logger = create_execution_logger("bluesky_client", execution_id)
        self.session = requests.Session()
        self.session.headers.update(
            {"User-Agent": "GMH-Feed-Generator/1.0 (Bluesky feed generator)"}
        )
        self.access_jwt: str | None = None
        self.did: str | None = None

        self.logger.info(
            "BlueskyClient initialized",
            service_url=config.service_url,
            timeout=config.timeout,
        )

    @property
    def authenticated(self) -> bool:
        return self.access_jwt is not None

    def _xrpc_url(self, method: str) -> str:
        return f"{self.config.service_url}/xrpc/{method}"

    def login(self) -> None:
        """Create a session with the configured credentials.

        Raises:
            AuthenticationError: If the credentials are rejected or the call fails
        """
        self.logger.info(
            "Logging in to Bluesky", identifier=self.config.identifier
        )
        try:
            response = self.session.post(
                self._xrpc_url("com.atproto.server.createSession"),
                json={
                    "identifier": self.config.identifier,
                    "password": self.config.password,
                },
                timeout=self.config.timeout,
            )
        except requests.RequestException as e:
            self.logger.error(f"Session request failed: {e}", error=str(e))
            raise AuthenticationError(f"Session request failed: {e}") from e

        if response.status_code != 200:
            error_name, message = self._error_details(response)
            self.logger.error(
                "Bluesky rejected the session request",
                status_code=response.status_code,
                error=error_name,
            )
            raise AuthenticationError(
                f"Login failed with status {response.status_code}: {message}"
            )

        try:
            data = response.json()
            self.access_jwt = data["accessJwt"]
            self.did = data.get("did")
        except (ValueError, KeyError, TypeError) as e:
            raise AuthenticationError("Session response missing accessJwt") from e

        self.logger.info("Successfully logged in to Bluesky", did=self.did)

    def ensure_session(self) -> None:
        """Log in unless a session is already held."""
        if not self.authenticated:
            self.login()

    def reset_session(self) -> None:
        self.access_jwt = None
        self.did = None

    def get_timeline(
        self, cursor: str | None = None, limit: int | None = None
    ) -> UpstreamPage:
        """Fetch a page of the authenticated account's home timeline."""
        params: dict[str, Any] = {"limit": limit or self.config.page_limit}
        if cursor:
            params["cursor"] = cursor
        data = self._get("app.bsky.feed.getTimeline", params, SOURCE_TIMELINE)
        return self._parse_feed_items(data, SOURCE_TIMELINE)

    def get_author_feed(self, actor: str, limit: int | None = None) -> UpstreamPage:
        """Fetch recent posts of one account."""
        source = f"{SOURCE_AUTHOR}:{actor}"
        data = self._get(
            "app.bsky.feed.getAuthorFeed",
            {"actor": actor, "limit": limit or self.config.page_limit},
            source,
        )
        return self._parse_feed_items(data, source)

    def search_posts(self, term: str, limit: int | None = None) -> UpstreamPage:
        """Search posts containing term."""
        source = f"{SOURCE_SEARCH}:{term}"
        data = self._get(
            "app.bsky.feed.searchPosts",
            {"q": term, "limit": limit or self.config.page_limit},
            source,
        )
        posts = data.get("posts")
        if not isinstance(posts, list):
            raise MalformedResponseError(source, "response has no 'posts' list")

        return UpstreamPage(
            posts=self._normalize_posts(posts, source), cursor=data.get("cursor")
        )

    def _get(self, method: str, params: dict[str, Any], source: str) -> dict:
        """Issue an authenticated GET and return the decoded body.

        Raises:
            RateLimitedError: On HTTP 429
            SourceQueryError: On network errors and other non-200 answers
            MalformedResponseError: If the body is not a JSON object
        """
        if not self.authenticated:
            raise SourceQueryError(source, "no active session")

        try:
            response = self.session.get(
                self._xrpc_url(method),
                params=params,
                headers={"Authorization": f"Bearer {self.access_jwt}"},
                timeout=self.config.timeout,
            )
        except requests.RequestException as e:
            self.logger.error(
                f"Request to {method} failed: {e}", source=source, error=str(e)
            )
            raise SourceQueryError(source, str(e)) from e

        if response.status_code == 429:
            self.logger.warning("Rate limited by Bluesky", source=source)
            raise RateLimitedError(source)

        if response.status_code != 200:
            error_name, message = self._error_details(response)
            if response.status_code == 401 or error_name in SESSION_ERRORS:
                # Next assembly logs in again
                self.reset_session()
            self.logger.error(
                f"{method} returned status {response.status_code}",
                source=source,
                status_code=response.status_code,
                error=error_name,
            )
            raise SourceQueryError(
                source, message, status_code=response.status_code
            )

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponseError(source, "response is not JSON") from e

        if not isinstance(data, dict):
            raise MalformedResponseError(source, "response is not a JSON object")
        return data

    def _parse_feed_items(self, data: dict, source: str) -> UpstreamPage:
        items = data.get("feed")
        if not isinstance(items, list):
            raise MalformedResponseError(source, "response has no 'feed' list")

        posts = [item.get("post") for item in items if isinstance(item, dict)]
        return UpstreamPage(
            posts=self._normalize_posts(posts, source), cursor=data.get("cursor")
        )

    def _normalize_posts(self, raw_posts: list, source: str) -> list[PostRef]:
        posts = []
        for raw in raw_posts:
            post = self.normalize_post(raw, source)
            if post is None:
                self.logger.warning("Skipping malformed post", source=source)
                continue
            posts.append(post)
        return posts

    def normalize_post(self, raw: Any, source: str = "") -> PostRef | None:
        """Normalize a post view into a PostRef.

        Args:
            raw: Post view from the upstream response
            source: Label of the query the post came from

        Returns:
            PostRef, or None when the post has no uri
        """
        if not isinstance(raw, dict):
            return None

        uri = raw.get("uri")
        if not isinstance(uri, str) or not uri:
            return None

        record = raw.get("record") or {}
        text = record.get("text", "") if isinstance(record, dict) else ""
        if not isinstance(text, str):
            text = ""

        indexed_at = None
        indexed_raw = raw.get("indexedAt")
        if isinstance(indexed_raw, str) and indexed_raw:
            try:
                indexed_at = date_parser.isoparse(indexed_raw)
                if indexed_at.tzinfo is None:
                    indexed_at = indexed_at.replace(tzinfo=UTC)
            except (ValueError, OverflowError):
                self.logger.debug(
                    "Unparseable indexedAt", post_uri=uri, indexed_at=indexed_raw
                )

        return PostRef(uri=uri, text=text, indexed_at=indexed_at, source=source)

    @staticmethod
    def _error_details(response: requests.Response) -> tuple[str, str]:
        """Extract the XRPC error name and message from a failed response."""
        try:
            body = response.json()
        except ValueError:
            return "Unknown", response.reason or f"HTTP {response.status_code}"
        if not isinstance(body, dict):
            return "Unknown", f"HTTP {response.status_code}"
        return (
            str(body.get("error", "Unknown")),
            str(body.get("message") or body.get("error") or response.status_code),
        )
