"""Exceptions raised while assembling a feed."""


class FeedGeneratorError(Exception):
    """Base class for feed generator errors."""


class AuthenticationError(FeedGeneratorError):
    """The upstream network rejected our credentials or the session call failed."""


class SourceQueryError(FeedGeneratorError):
    """A single timeline, author feed or search query failed."""

    def __init__(self, source: str, message: str, status_code: int | None = None):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.status_code = status_code


class RateLimitedError(SourceQueryError):
    """The upstream network answered with HTTP 429."""

    def __init__(self, source: str, message: str = "rate limited"):
        super().__init__(source, message, status_code=429)


class MalformedResponseError(SourceQueryError):
    """The upstream response did not have the expected shape."""
