"""Unit tests for the upstream Bluesky client."""

from datetime import UTC, datetime
from unittest.mock import Mock

import pytest
import requests

from feedgen.bluesky import BlueskyClient
from feedgen.config import BlueskyConfig
from feedgen.errors import (
    AuthenticationError,
    MalformedResponseError,
    RateLimitedError,
    SourceQueryError,
)


def make_response(status_code=200, body=None, reason="OK"):
    response = Mock()
    response.status_code = status_code
    response.reason = reason
    if isinstance(body, Exception):
        response.json.side_effect = body
    else:
        response.json.return_value = body
    return response


def post_view(uri, text="", indexed_at="2024-03-01T12:00:00.000Z"):
    view = {"uri": uri, "record": {"text": text}}
    if indexed_at is not None:
        view["indexedAt"] = indexed_at
    return view


class TestBlueskyClientUnit:
    """Unit tests for BlueskyClient."""

    def setup_method(self):
        self.config = BlueskyConfig(identifier="feed.example.com", password="app-pass")
        self.client = BlueskyClient(self.config)
        self.client.session = Mock()

    def login(self):
        self.client.session.post.return_value = make_response(
            body={"accessJwt": "jwt-token", "did": "did:plc:abc"}
        )
        self.client.login()

    def test_login_stores_session(self):
        self.login()

        assert self.client.authenticated is True
        assert self.client.did == "did:plc:abc"
        args, kwargs = self.client.session.post.call_args
        assert args[0] == "https://bsky.social/xrpc/com.atproto.server.createSession"
        assert kwargs["json"] == {
            "identifier": "feed.example.com",
            "password": "app-pass",
        }

    def test_login_rejected(self):
        self.client.session.post.return_value = make_response(
            status_code=401,
            body={"error": "AuthenticationRequired", "message": "Invalid identifier or password"},
        )

        with pytest.raises(AuthenticationError, match="Invalid identifier or password"):
            self.client.login()
        assert self.client.authenticated is False

    def test_login_network_error(self):
        self.client.session.post.side_effect = requests.ConnectionError("down")

        with pytest.raises(AuthenticationError):
            self.client.login()

    def test_ensure_session_logs_in_once(self):
        self.client.session.post.return_value = make_response(
            body={"accessJwt": "jwt-token", "did": "did:plc:abc"}
        )

        self.client.ensure_session()
        self.client.ensure_session()

        assert self.client.session.post.call_count == 1

    def test_get_timeline(self):
        """Timeline items are normalized and the cursor passed through."""
        self.login()
        self.client.session.get.return_value = make_response(
            body={
                "cursor": "next-page",
                "feed": [
                    {"post": post_view("at://a/app.bsky.feed.post/1", "Gay health news")},
                    {"post": post_view("at://a/app.bsky.feed.post/2", "", indexed_at=None)},
                ],
            }
        )

        page = self.client.get_timeline(cursor="abc")

        assert page.cursor == "next-page"
        assert [p.uri for p in page.posts] == [
            "at://a/app.bsky.feed.post/1",
            "at://a/app.bsky.feed.post/2",
        ]
        assert page.posts[0].text == "Gay health news"
        assert page.posts[0].indexed_at == datetime(2024, 3, 1, 12, 0, tzinfo=UTC)
        assert page.posts[0].source == "timeline"
        assert page.posts[1].indexed_at is None

        args, kwargs = self.client.session.get.call_args
        assert args[0] == "https://bsky.social/xrpc/app.bsky.feed.getTimeline"
        assert kwargs["params"] == {"limit": 30, "cursor": "abc"}
        assert kwargs["headers"] == {"Authorization": "Bearer jwt-token"}

    def test_search_posts(self):
        self.login()
        self.client.session.get.return_value = make_response(
            body={"posts": [post_view("at://b/app.bsky.feed.post/9", "PrEP clinic")]}
        )

        page = self.client.search_posts("prep clinic")

        assert page.cursor is None
        assert page.posts[0].source == "search:prep clinic"
        _, kwargs = self.client.session.get.call_args
        assert kwargs["params"] == {"q": "prep clinic", "limit": 30}

    def test_get_author_feed(self):
        self.login()
        self.client.session.get.return_value = make_response(
            body={"feed": [{"post": post_view("at://c/app.bsky.feed.post/3")}]}
        )

        page = self.client.get_author_feed("clinic.example.com")

        assert page.posts[0].source == "author:clinic.example.com"
        _, kwargs = self.client.session.get.call_args
        assert kwargs["params"]["actor"] == "clinic.example.com"

    def test_rate_limited(self):
        self.login()
        self.client.session.get.return_value = make_response(status_code=429)

        with pytest.raises(RateLimitedError) as excinfo:
            self.client.search_posts("gay health")
        assert excinfo.value.status_code == 429
        assert excinfo.value.source == "search:gay health"

    def test_expired_token_resets_session(self):
        self.login()
        self.client.session.get.return_value = make_response(
            status_code=400, body={"error": "ExpiredToken", "message": "Token has expired"}
        )

        with pytest.raises(SourceQueryError, match="Token has expired"):
            self.client.get_timeline()
        assert self.client.authenticated is False

    def test_server_error(self):
        self.login()
        self.client.session.get.return_value = make_response(
            status_code=502, body=ValueError("no json"), reason="Bad Gateway"
        )

        with pytest.raises(SourceQueryError) as excinfo:
            self.client.get_timeline()
        assert not isinstance(excinfo.value, RateLimitedError)
        assert self.client.authenticated is True

    def test_network_error(self):
        self.login()
        self.client.session.get.side_effect = requests.Timeout("timed out")

        with pytest.raises(SourceQueryError):
            self.client.get_timeline()

    def test_missing_feed_list(self):
        self.login()
        self.client.session.get.return_value = make_response(body={"unexpected": True})

        with pytest.raises(MalformedResponseError):
            self.client.get_timeline()

    def test_query_without_session(self):
        with pytest.raises(SourceQueryError, match="no active session"):
            self.client.get_timeline()

    def test_malformed_items_skipped(self):
        """Items without a uri are dropped, the rest of the page survives."""
        self.login()
        self.client.session.get.return_value = make_response(
            body={
                "feed": [
                    {"post": {"record": {"text": "no uri"}}},
                    "not-a-dict",
                    {"post": post_view("at://d/app.bsky.feed.post/4", "ok")},
                ]
            }
        )

        page = self.client.get_timeline()

        assert [p.uri for p in page.posts] == ["at://d/app.bsky.feed.post/4"]

    def test_normalize_post_defaults(self):
        post = self.client.normalize_post(
            {"uri": "at://e/app.bsky.feed.post/5", "record": None, "indexedAt": "garbage"}
        )

        assert post.text == ""
        assert post.indexed_at is None

    def test_normalize_naive_timestamp_is_utc(self):
        post = self.client.normalize_post(
            {"uri": "at://e/app.bsky.feed.post/6", "indexedAt": "2024-05-01T08:30:00"}
        )

        assert post.indexed_at == datetime(2024, 5, 1, 8, 30, tzinfo=UTC)
