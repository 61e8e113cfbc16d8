# backend/trashdrop/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db


def create_app(test_config=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    # Initialize extensions
    db.init_app(app)

    # Import models so both metadata binds are populated before create_all
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.batches import batches_bp
    from .routes.users import users_bp
    from .routes.bags import bags_bp
    from .routes.sync import sync_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(batches_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(bags_bp)
    app.register_blueprint(sync_bp)

    # Offline queue reconciler
    from .services.sync_service import BatchSyncService
    sync = BatchSyncService(app)
    sync.attach()
    if app.config.get("SYNC_AUTOSTART"):
        sync.start()

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:4173",
            "http://127.0.0.1:4173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
