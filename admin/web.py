# mtls_broker/admin/web.py
from flask import Flask, jsonify

from broker.errors import NotBoundError


def create_app(broker) -> Flask:
    """
    Plain-HTTP status app for a ConnectionBroker. Read-only: it only
    looks at address(), count() and snapshot().
    """
    app = Flask(__name__)

    @app.route("/health")
    def health():
        try:
            address = broker.address()
        except NotBoundError:
            return jsonify(status="unbound", clients=broker.count()), 503
        return jsonify(status="ok", address=address, clients=broker.count())

    @app.route("/clients")
    def clients():
        rows = [
            {
                "id":        ch.id,
                "client_id": ch.client_id,
                "peer":      list(ch.peername) if ch.peername else None,
            }
            for ch in broker.snapshot()
        ]
        return jsonify(clients=rows)

    # ─── Everything else is a 404 ─────────────────────────────────
    @app.errorhandler(404)
    def not_found(_err):
        return jsonify(error="not found"), 404

    return app
