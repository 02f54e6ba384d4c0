"""
Flask REST surface over a HistogramService.

Endpoints:
    GET /api/summary
    GET /api/streams
    GET /api/histogram?stream=&start=&end=&downsample=avg|peak
    GET /api/distribution?start=&end=
    GET /api/health

Time parameters are Unix seconds (fractions allowed).
"""

import threading
import webbrowser
from datetime import datetime, timedelta
from typing import Optional

from flask import Flask, jsonify, request

from .exceptions import ConfigurationError, StreamNotFoundError
from .logging_config import get_logger
from .models import EPOCH
from .service import HistogramService

logger = get_logger(__name__)

BROWSER_DELAY_SECONDS = 0.5


def _time_arg(name: str) -> Optional[datetime]:
    raw = request.args.get(name, "").strip()
    if not raw:
        return None
    try:
        return EPOCH + timedelta(seconds=float(raw))
    except (ValueError, OverflowError) as e:
        raise ConfigurationError(
            f"invalid {name} time {raw!r}: expected unix seconds", option=name
        ) from e


def create_app(service: HistogramService) -> Flask:
    """Build the Flask app bound to one service."""
    app = Flask(__name__)
    app.json.sort_keys = False

    @app.errorhandler(ConfigurationError)
    def handle_bad_request(e):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(StreamNotFoundError)
    def handle_not_found(e):
        return jsonify({"error": str(e)}), 404

    @app.route("/")
    def index():
        """List the API endpoints."""
        return jsonify(
            {
                "endpoints": [
                    "/api/summary",
                    "/api/streams",
                    "/api/histogram",
                    "/api/distribution",
                    "/api/health",
                ]
            }
        )

    @app.route("/api/summary")
    def api_summary():
        """Run summary with per-stream totals."""
        return jsonify(service.summary().to_dict())

    @app.route("/api/streams")
    def api_streams():
        """Sorted stream names."""
        return jsonify(service.stream_names())

    @app.route("/api/histogram")
    def api_histogram():
        """Combined or per-stream histogram for a window, downsampled for display."""
        stream = request.args.get("stream", "").strip() or None
        policy = request.args.get("downsample", "peak")
        hist = service.histogram(stream, _time_arg("start"), _time_arg("end"), policy)
        return jsonify(hist.to_dict())

    @app.route("/api/distribution")
    def api_distribution():
        """Per-stream totals over a window."""
        streams = service.distribution(_time_arg("start"), _time_arg("end"))
        return jsonify([s.to_dict() for s in streams])

    @app.route("/api/health")
    def api_health():
        return jsonify({"status": "ok", "streams": len(service.stream_names())})

    return app


def run_server(
    service: HistogramService,
    host: str = "127.0.0.1",
    port: int = 8080,
    open_browser: bool = True,
) -> None:
    """Serve the API until interrupted."""
    app = create_app(service)
    url = f"http://{'localhost' if host in ('0.0.0.0', '127.0.0.1') else host}:{port}"

    logger.info("")
    logger.info("==> Server ready at %s", url)
    logger.info("==> Press Ctrl+C to stop")
    logger.info("")

    if open_browser:

        def _open():
            if not webbrowser.open(f"{url}/api/summary"):
                logger.info("Could not open browser automatically. Please open %s manually.", url)

        threading.Timer(BROWSER_DELAY_SECONDS, _open).start()

    app.run(host=host, port=port, debug=False, use_reloader=False, threaded=True)
