"""Flask application factory."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from flask import Flask, jsonify, request
from flask_cors import CORS

from api.routes import api_bp
from config import settings
from services.config_validator import SkuConfiguration, validate_config


def create_app(sku_config: Mapping[str, Any] | SkuConfiguration | None = None) -> Flask:
    """Create and configure the Flask application.

    The SKU configuration is validated here so a broken bundle stops the app
    at startup instead of on the first request.
    """
    app = Flask(__name__)
    app.config["SECRET_KEY"] = settings.flask_secret_key
    app.config["SKU_CONFIG"] = validate_config(
        sku_config if sku_config is not None else settings.sku_bundle()
    )

    CORS(app, origins=settings.cors_origins)

    # Register API blueprint
    app.register_blueprint(api_bp)

    # Health check
    @app.route("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    # --- Error handlers ---

    @app.errorhandler(404)
    def not_found(e):
        if request.path.startswith("/api/"):
            return jsonify({"error": "Not found"}), 404
        return jsonify({"error": "Not found", "details": "Only /api routes are served"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    return app
