# backend/canopy/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def _allow_configured_origins(app: Flask) -> None:
    allowed = set(app.config.get("CORS_ALLOWED_ORIGINS") or ())

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in allowed:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
            response.headers["Vary"] = "Origin"
        return response


def create_app(config_overrides: dict | None = None) -> Flask:
    """
    Application factory. config_overrides is applied after Config, which is
    how the test suite swaps in an in-memory database and a fake registry
    client factory.
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    app.config.update(config_overrides or {})

    db.init_app(app)
    migrate.init_app(app, db)

    # Model metadata must be loaded before Alembic autogenerate runs
    from . import models  # noqa: F401

    from .routes.auth import auth_bp
    from .routes.compliance import compliance_bp
    from .routes.system import system_bp

    for blueprint in (system_bp, auth_bp, compliance_bp):
        app.register_blueprint(blueprint)

    _allow_configured_origins(app)

    from .cli import register_commands
    register_commands(app)

    return app
