"""HTTP surface of the feed generator."""

import sys
from datetime import UTC, datetime

from flask import Flask, jsonify, request
from flask_cors import CORS

from .aggregator import FeedAggregator
from .bluesky import BlueskyClient
from .cache import BoundedPostCache
from .config import Config
from .logging_config import create_execution_logger, setup_structured_logging
from .relevance import RelevanceFilter
from .throttle import RequestGate

CORS_HEADERS = ["Origin", "X-Requested-With", "Content-Type", "Accept"]
MAX_REQUEST_LIMIT = 100


def _request_execution_id() -> str:
    return f"req_{datetime.now(UTC).strftime('%Y%m%d_%H%M%S_%f')}"


def _parse_limit(raw: str | None) -> int | None:
    """Parse the optional limit query parameter, clamped to 1..100."""
    if raw is None or raw == "":
        return None
    limit = int(raw)
    return max(1, min(limit, MAX_REQUEST_LIMIT))


def create_app(config: Config, aggregator: FeedAggregator) -> Flask:
    """Build the Flask application serving the feed generator endpoints.

    Args:
        config: Loaded configuration
        aggregator: Aggregator shared by every request

    Returns:
        Configured Flask application
    """
    app = Flask(__name__)
    CORS(app, origins="*", allow_headers=CORS_HEADERS)

    service = config.get_service_config()
    logger = create_execution_logger("server")

    @app.before_request
    def log_request():
        logger.info(
            f"{request.method} {request.full_path.rstrip('?')}",
            http_method=request.method,
            http_path=request.path,
        )

    @app.get("/")
    def status():
        return jsonify(
            {
                "status": "ok",
                "message": "Gay Men's Health Feed Generator is running",
                "environmentStatus": config.environment_status(),
            }
        )

    @app.get("/.well-known/did.json")
    def did_document():
        return jsonify(
            {
                "@context": ["https://www.w3.org/ns/did/v1"],
                "id": service.did,
                "service": [
                    {
                        "id": "#bsky_fg",
                        "type": "BskyFeedGenerator",
                        "serviceEndpoint": f"https://{service.hostname}",
                    }
                ],
            }
        )

    @app.get("/xrpc/app.bsky.feed.getFeedSkeleton")
    def get_feed_skeleton():
        feed = request.args.get("feed")
        cursor = request.args.get("cursor") or None
        execution_id = _request_execution_id()

        if feed and feed != service.feed_uri:
            logger.warning("Unsupported feed requested", feed=feed)
            return (
                jsonify(
                    {
                        "error": "UnsupportedAlgorithm",
                        "message": f"Unsupported feed: {feed}",
                    }
                ),
                400,
            )

        try:
            limit = _parse_limit(request.args.get("limit"))
        except ValueError:
            return (
                jsonify({"error": "InvalidRequest", "message": "limit must be an integer"}),
                400,
            )

        try:
            page = aggregator.assemble_feed(
                cursor=cursor, limit=limit, execution_id=execution_id
            )
        except Exception as e:
            logger.error(f"Error in feed endpoint: {e}", error=str(e))
            return jsonify({"error": "Failed to fetch feed", "details": str(e)}), 500

        logger.with_execution(execution_id).info(
            "Successfully generated feed response",
            feed_size=len(page.feed),
        )
        return jsonify(page.to_dict())

    @app.get("/xrpc/app.bsky.feed.describeFeedGenerator")
    def describe_feed_generator():
        return jsonify(
            {
                "did": service.did,
                "feeds": [
                    {
                        "uri": service.feed_uri,
                        "displayName": service.display_name,
                        "description": service.description,
                    }
                ],
            }
        )

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        # HTTP errors such as 404 keep their status code
        status_code = getattr(e, "code", None)
        if isinstance(status_code, int) and 400 <= status_code < 500:
            return jsonify({"error": getattr(e, "name", "Error"), "details": str(e)}), status_code

        logger.error(f"Unhandled error: {e}", error=str(e))
        return jsonify({"error": "Internal server error", "details": str(e)}), 500

    return app


def build_aggregator(config: Config) -> FeedAggregator:
    """Wire the upstream client, filter, gate and cache into an aggregator."""
    feed_config = config.get_feed_config()
    client = BlueskyClient(config.get_bluesky_config())
    gate = RequestGate(
        min_interval=feed_config.min_request_interval,
        rate_limit_delay=feed_config.rate_limit_delay,
    )
    cache = BoundedPostCache(capacity=feed_config.cache_capacity)
    return FeedAggregator(
        client=client,
        relevance_filter=RelevanceFilter(),
        config=feed_config,
        gate=gate,
        cache=cache,
    )


def main() -> None:
    """Process entry point: validate configuration and serve."""
    config = Config()
    setup_structured_logging(config.log_level)
    logger = create_execution_logger("main")

    server_config = config.get_server_config()
    logger.info(
        "Starting server with configuration",
        host=server_config.host,
        port=server_config.port,
        environment=config.environment_status(),
    )

    missing = config.missing_credentials()
    if missing:
        logger.error(
            f"Missing required environment variables: {', '.join(missing)}",
            missing=missing,
        )
        sys.exit(1)

    app = create_app(config, build_aggregator(config))
    logger.info(
        f"Gay men's health feed server running at http://{server_config.host}:{server_config.port}"
    )
    app.run(host=server_config.host, port=server_config.port)


if __name__ == "__main__":
    main()
