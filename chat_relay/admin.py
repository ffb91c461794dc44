import logging
import threading

from flask import Flask, jsonify, request
from werkzeug.serving import make_server

from chat_relay.registry import Registry
from chat_relay.stats import RelayStats

logger = logging.getLogger(__name__)


def create_admin_app(registry: Registry, stats: RelayStats | None = None) -> Flask:
    """Read-only status endpoints for a running relay"""
    stats = stats or registry.stats
    app = Flask(__name__)
    app.json.ensure_ascii = False

    @app.route('/health', methods=['GET'])
    def health():
        return jsonify({"status": "OK", "sessions": len(registry)})

    @app.route('/sessions', methods=['GET'])
    def sessions():
        return jsonify({"sessions": registry.names()})

    @app.route('/stats', methods=['GET'])
    def get_stats():
        return jsonify(stats.snapshot())

    @app.errorhandler(404)
    def not_found(error):
        logger.warning(f"Request to unknown route: {request.path}")
        return jsonify({"error": "Route not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        logger.warning(f"Unsupported method {request.method} for route {request.path}")
        return jsonify({"error": "Method not allowed"}), 405

    return app


class AdminServer:
    """Serves the admin app from a background thread"""

    def __init__(self, app: Flask, host: str, port: int) -> None:
        self.app = app
        self.host = host
        self.port = port
        self._server = None
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._server is not None:
            return
        self._server = make_server(self.host, self.port, self.app, threaded=True)
        self.port = self._server.server_port
        self._thread = threading.Thread(target=self._server.serve_forever, name="AdminHTTP", daemon=True)
        self._thread.start()
        logger.info(f"Admin HTTP server on http://{self.host}:{self.port}")

    def stop(self) -> None:
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        self._thread.join(timeout=5)
        self._server = None
        self._thread = None
        logger.info("Admin HTTP server stopped")
