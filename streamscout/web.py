"""
Flask application
-----------------
- GET /scrape?url=  find manifest URLs on a page and pick the best one
- GET /proxy?src=   relay an upstream resource with range support
- OPTIONS *         CORS preflight, answered with a bare 200

Every response carries permissive CORS headers.
"""

import logging

import requests
from flask import Flask, Response, jsonify, request, stream_with_context

from .config import Settings
from .discovery import discover
from .errors import ScoutError, UpstreamFetchError
from .fetchers import build_fetcher
from .relay import open_relay

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Utility: Build CORS headers
# ---------------------------------------------------------------------------
def cors_headers(extra=None):
    """
    Return a dictionary of CORS headers, optionally merged with extra headers.
    """
    headers = {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Headers": "Origin, X-Requested-With, Content-Type, Accept, Range",
        "Access-Control-Allow-Methods": "GET, OPTIONS",
    }
    if extra:
        headers.update(extra)
    return headers


def create_app(settings=None, fetcher=None, session_factory=requests.Session):
    """
    Build the WSGI app. ``settings`` defaults to the environment; ``fetcher``
    defaults to the strategy named by ``settings.fetch_mode``.
    """
    settings = settings or Settings.from_env()
    fetcher = fetcher or build_fetcher(settings)

    app = Flask(__name__)
    app.config["SETTINGS"] = settings
    app.config["FETCHER"] = fetcher
    app.config["SESSION_FACTORY"] = session_factory

    @app.before_request
    def preflight():
        if request.method == "OPTIONS":
            return Response(status=200)
        return None

    @app.after_request
    def add_cors(response):
        for name, value in cors_headers().items():
            response.headers.setdefault(name, value)
        return response

    # -----------------------------------------------------------------------
    # Discovery endpoint
    # -----------------------------------------------------------------------
    @app.route("/scrape", methods=["GET", "OPTIONS"])
    def scrape():
        target = request.args.get("url")
        try:
            result = discover(target, settings, fetcher)
        except ScoutError as e:
            if e.status_code >= 500:
                logger.exception("Scrape error for %s", target)
            return jsonify({"ok": False, "error": e.message}), e.status_code
        except Exception as e:
            logger.exception("Scrape error for %s", target)
            return jsonify({"ok": False, "error": str(e) or "Scrape failed"}), 500
        return jsonify(result.to_dict())

    # -----------------------------------------------------------------------
    # Relay endpoint
    # -----------------------------------------------------------------------
    @app.route("/proxy", methods=["GET", "OPTIONS"])
    def proxy():
        src = request.args.get("src")
        try:
            relay = open_relay(
                src,
                request.headers.get("Range"),
                settings,
                session_factory=app.config["SESSION_FACTORY"],
            )
        except UpstreamFetchError as e:
            logger.exception("Proxy error for %s", src)
            return Response(f"Upstream error: {e.message}", status=502, mimetype="text/plain")
        except ScoutError as e:
            return Response(e.message, status=e.status_code, mimetype="text/plain")

        headers = relay.headers
        response = Response(
            stream_with_context(relay.iter_chunks()),
            status=relay.status_code,
            headers=headers,
            mimetype=None if "Content-Type" in headers else "application/octet-stream",
            direct_passthrough=True,
        )
        # Runs when the WSGI server closes the response, including client disconnects.
        response.call_on_close(relay.close)
        return response

    return app
