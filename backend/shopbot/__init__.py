# backend/shopbot/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate, socketio



def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    socketio.init_app(app, cors_allowed_origins=app.config["FRONTEND_ORIGIN"])

    # Outbound WhatsApp client; tests swap app.extensions["whatsapp"] for a fake
    from .services.whatsapp_service import WhatsAppClient
    app.extensions["whatsapp"] = WhatsAppClient.from_config(app.config)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.webhook import webhook_bp
    from .routes.auth import auth_bp
    from .routes.conversations import conversations_bp
    from .routes.orders import orders_bp
    from .routes.payments import payments_bp
    from .routes.products import products_bp
    from .routes.expenses import expenses_bp
    from .routes.incomes import incomes_bp
    from .routes.stats import stats_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(webhook_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(conversations_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(expenses_bp)
    app.register_blueprint(incomes_bp)
    app.register_blueprint(stats_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            app.config["FRONTEND_ORIGIN"],
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type, X-Inbox-Key"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
