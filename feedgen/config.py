"""Configuration management for the health feed generator."""

import os
from dataclasses import dataclass, field

# The upstream service is fixed; only credentials come from the environment
BLUESKY_SERVICE_URL = "https://bsky.social"

DEFAULT_SERVICE_HOSTNAME = "gay-mens-health-feed-bsky-818b50b09c03.herokuapp.com"
DEFAULT_FEED_RKEY = "gay-mens-health"

DEFAULT_SEARCH_TERMS = [
    "gay health",
    "gay men's health",
    "prep hiv",
    "doxypep",
    "lgbtq health",
    "queer health",
]

TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class BlueskyConfig:
    """Configuration for the upstream Bluesky client."""

    identifier: str
    password: str
    service_url: str = BLUESKY_SERVICE_URL
    timeout: int = 30
    page_limit: int = 30


@dataclass
class FeedConfig:
    """Configuration for feed assembly."""

    author_handles: list[str] = field(default_factory=list)
    search_terms: list[str] = field(default_factory=lambda: list(DEFAULT_SEARCH_TERMS))
    include_timeline: bool = True
    max_items: int = 50
    pinned_post_uri: str | None = None
    cache_capacity: int = 1000
    degrade_on_failure: bool = True
    min_request_interval: float = 0.5
    rate_limit_delay: float = 2.0


@dataclass
class ServiceConfig:
    """Identity and metadata published by the feed generator."""

    hostname: str = DEFAULT_SERVICE_HOSTNAME
    feed_rkey: str = DEFAULT_FEED_RKEY
    display_name: str = "Gay Men's Health"
    description: str = (
        "A feed focused on gay men's health topics, including physical health, "
        "mental wellness, sexual health, and preventive care."
    )

    @property
    def did(self) -> str:
        return f"did:web:{self.hostname}"

    @property
    def feed_uri(self) -> str:
        return f"at://{self.did}/app.bsky.feed.generator/{self.feed_rkey}"


@dataclass
class ServerConfig:
    """Configuration for the HTTP listener."""

    host: str = "0.0.0.0"
    port: int = 3000


def _split_list(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def _parse_int(name: str, raw: str | None, default: int) -> int:
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


class Config:
    """Main configuration manager."""

    REQUIRED_VARIABLES = ("BLUESKY_USERNAME", "BLUESKY_PASSWORD")

    def __init__(self):
        """Initialize configuration from environment variables."""
        self.username = os.getenv("BLUESKY_USERNAME", "")
        self.password = os.getenv("BLUESKY_PASSWORD", "")
        self.host = os.getenv("HOST", "0.0.0.0")
        self.port = _parse_int("PORT", os.getenv("PORT"), 3000)
        self.log_level = os.getenv("LOG_LEVEL", "INFO")
        self.service_hostname = os.getenv("SERVICE_HOSTNAME", DEFAULT_SERVICE_HOSTNAME)
        self.feed_rkey = os.getenv("FEED_RKEY", DEFAULT_FEED_RKEY)
        self.pinned_post_uri = os.getenv("PINNED_POST_URI") or None
        self.author_handles = _split_list(os.getenv("FEED_AUTHORS"))

        search_terms = os.getenv("FEED_SEARCH_TERMS")
        self.search_terms = (
            _split_list(search_terms)
            if search_terms is not None
            else list(DEFAULT_SEARCH_TERMS)
        )

        self.max_items = _parse_int("FEED_MAX_ITEMS", os.getenv("FEED_MAX_ITEMS"), 50)
        self.cache_capacity = _parse_int(
            "CACHE_CAPACITY", os.getenv("CACHE_CAPACITY"), 1000
        )
        self.degrade_on_failure = (
            os.getenv("DEGRADE_ON_FAILURE", "true").strip().lower() in TRUE_VALUES
        )

    def missing_credentials(self) -> list[str]:
        """Names of required environment variables that are not set."""
        values = {
            "BLUESKY_USERNAME": self.username,
            "BLUESKY_PASSWORD": self.password,
        }
        return [name for name in self.REQUIRED_VARIABLES if not values[name]]

    def environment_status(self) -> dict[str, str]:
        """Presence of the credentials, safe to log or expose."""
        return {
            "BLUESKY_USERNAME": "(set)" if self.username else "(not set)",
            "BLUESKY_PASSWORD": "(set)" if self.password else "(not set)",
        }

    def get_bluesky_config(self) -> BlueskyConfig:
        """Get upstream client configuration."""
        return BlueskyConfig(identifier=self.username, password=self.password)

    def get_feed_config(self) -> FeedConfig:
        """Get feed assembly configuration."""
        if self.max_items < 1:
            raise ValueError("FEED_MAX_ITEMS must be at least 1")
        if self.cache_capacity < 1:
            raise ValueError("CACHE_CAPACITY must be at least 1")

        return FeedConfig(
            author_handles=self.author_handles,
            search_terms=self.search_terms,
            max_items=self.max_items,
            pinned_post_uri=self.pinned_post_uri,
            cache_capacity=self.cache_capacity,
            degrade_on_failure=self.degrade_on_failure,
        )

    def get_service_config(self) -> ServiceConfig:
        """Get published service identity."""
        return ServiceConfig(hostname=self.service_hostname, feed_rkey=self.feed_rkey)

    def get_server_config(self) -> ServerConfig:
        """Get HTTP listener configuration."""
        return ServerConfig(host=self.host, port=self.port)
