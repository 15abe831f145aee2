# backend/catering/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(config_class=Config) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Workflow collaborators (tests may replace these on app.extensions)
    from .services.notification_service import DatabaseNotificationEmitter, EMITTER_EXTENSION_KEY
    from .services.storage_service import LocalFileStorage, STORAGE_EXTENSION_KEY

    app.extensions[EMITTER_EXTENSION_KEY] = DatabaseNotificationEmitter()
    app.extensions[STORAGE_EXTENSION_KEY] = LocalFileStorage(
        app.config["UPLOAD_DIR"],
        app.config["UPLOAD_URL_PREFIX"],
    )

    # Register blueprints
    from .routes.system import system_bp
    from .routes.requests import requests_bp, approvals_bp
    from .routes.invoices import invoices_bp
    from .routes.payments import payments_bp
    from .routes.attachments import attachments_bp, uploads_bp
    from .routes.notifications import notifications_bp
    from .routes.users import users_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(requests_bp)
    app.register_blueprint(approvals_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(attachments_bp)
    app.register_blueprint(uploads_bp, url_prefix=app.config["UPLOAD_URL_PREFIX"].rstrip("/"))
    app.register_blueprint(notifications_bp)
    app.register_blueprint(users_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in app.config["CORS_ALLOWED_ORIGINS"]:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
