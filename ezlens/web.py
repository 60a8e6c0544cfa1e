"""Flask JSON API over the query catalog."""

import logging

from flask import Flask, jsonify, request

from ezlens.queries import QUERY_NAMES, QueryEngine, QueryFault

logger = logging.getLogger(__name__)

# Top-level JSON key per query, as consumed by the dashboard.
PAYLOAD_KEYS = {
    "requests_over_time": "series",
    "bandwidth_over_time": "series",
    "top_hosts": "hosts",
    "status_codes": "status",
    "top_countries": "countries",
    "hourly_heatmap": "data",
    "error_analysis": "hosts",
    "user_agents": "browsers",
    "top_paths": "paths",
}


def create_app(engine: QueryEngine) -> Flask:
    """Flask application factory."""
    app = Flask(__name__)

    @app.route("/health")
    def health():
        return jsonify(status="ok", rows=engine.store.row_count())

    @app.route("/api/queries")
    def list_queries():
        return jsonify(queries=list(QUERY_NAMES))

    @app.route("/api/<name>")
    def run_query(name):
        if name not in PAYLOAD_KEYS:
            return jsonify(error=f"unknown query {name!r}"), 404

        try:
            rows = engine.run(
                name,
                start=request.args.get("start"),
                end=request.args.get("end"),
            )
        except QueryFault as fault:
            logger.warning("Query %s failed: %s", name, fault)
            status = 400 if fault.client_error else 500
            return jsonify(error=str(fault)), status

        return jsonify({PAYLOAD_KEYS[name]: rows})

    return app
