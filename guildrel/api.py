"""
Flask API for GuildREL
JSON endpoints over the affinity service
"""

import logging

from flask import Flask, jsonify, request

from . import config
from .affinity import AffinityService
from .exceptions import ConfigError, StorageUnavailableError
from .report_generator import build_top_report
from .store import SQLiteStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

MAX_TOP_LIMIT = 100


def create_app(service: AffinityService = None) -> Flask:
    """
    Build the Flask app.

    Args:
        service: Affinity service to serve (default: SQLite store at config.DB_PATH)
    """
    app = Flask(__name__)
    app.json.sort_keys = False
    _service = {"instance": service}

    def get_service() -> AffinityService:
        """Lazy-load the service so a missing DB only fails the request that needs it."""
        if _service["instance"] is None:
            _service["instance"] = AffinityService(SQLiteStore(config.DB_PATH))
        return _service["instance"]

    @app.errorhandler(StorageUnavailableError)
    def storage_unavailable(e):
        logger.error(f"Storage unavailable: {e}")
        return jsonify({"error": "storage_unavailable", "message": str(e)}), 503

    @app.errorhandler(ConfigError)
    def bad_config(e):
        logger.error(f"Configuration error: {e}")
        return jsonify({"error": "config_error", "message": str(e)}), 500

    @app.route('/api/health')
    def health():
        valid, msg = config.validate_config()
        return jsonify({"status": "ok" if valid else "misconfigured", "message": msg})

    @app.route('/api/affinity/<guild>/<from_user>/<to_user>')
    def affinity(guild, from_user, to_user):
        score = get_service().calculate_affinity(from_user, to_user, guild)
        payload = score.to_dict()
        payload["found"] = score.total_score > 0
        return jsonify(payload)

    @app.route('/api/relationship/<guild>/<user1>/<user2>')
    def relationship(guild, user1, user2):
        analysis = get_service().analyze_relationship(user1, user2, guild)
        payload = analysis.to_dict()
        payload["found"] = analysis.mutual_score > 0
        return jsonify(payload)

    @app.route('/api/top/<guild>/<user>')
    def top(guild, user):
        try:
            limit = int(request.args.get('limit', 10))
        except ValueError:
            return jsonify({"error": "bad_request", "message": "limit must be an integer"}), 400
        if not 1 <= limit <= MAX_TOP_LIMIT:
            return jsonify({"error": "bad_request", "message": f"limit must be 1-{MAX_TOP_LIMIT}"}), 400

        service = get_service()
        scores = service.get_top_relationships(user, guild, limit)
        profile = service.store.fetch_user(user, guild)
        report = build_top_report(user, profile, scores, service.scoring.classifier_thresholds)
        report["found"] = bool(scores)
        return jsonify(report)

    return app


if __name__ == '__main__':
    create_app().run(debug=False, port=5000)
