"""
Music download proxy application.
Resolves playlist and song links, looks up playable audio URLs from
third-party providers and relays the audio with a proper download filename.
"""

import os
import sys
import logging
from logging.handlers import RotatingFileHandler

from flask import Flask, jsonify
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.exceptions import HTTPException

from config import config, get_config
from errors import MusicProxyError
from logic import init_resolver
from models.ModelConfig import ConfigStore
from routes import register_routes

# Handlers installed on the root logger by setup_logging()
_log_handlers = []


def create_app(config_name=None, overrides=None):
    """
    Factory function to create the Flask application.

    Args:
        config_name: Configuration to use ('development', 'production', 'testing');
            defaults to the one selected by FLASK_ENV
        overrides: Optional mapping applied on top of the configuration class

    Returns:
        Flask: Configured application instance
    """
    app = Flask(__name__)

    app.config.from_object(config[config_name] if config_name in config else get_config())
    if overrides:
        app.config.update(overrides)

    setup_logging(app)

    CORS(app, resources={r"/api/*": {"origins": app.config["CORS_ORIGINS"]}})

    # Rate limiting to prevent abuse of the upstream providers
    limiter = Limiter(
        key_func=get_remote_address,
        app=app,
        default_limits=[
            f"{app.config['RATE_LIMIT_PER_DAY']} per day",
            f"{app.config['RATE_LIMIT_PER_HOUR']} per hour",
        ],
        storage_uri=app.config["RATELIMIT_STORAGE_URI"],
    )

    init_resolver(app.config)

    config_store = ConfigStore(app.config["CONFIG_FILE"])
    config_store.load()
    app.extensions["config_store"] = config_store

    # Route decorators only hold a weak proxy to the limiter
    app.extensions["rate_limiter"] = limiter

    register_routes(app, limiter, config_store)
    register_error_handlers(app)

    return app


def setup_logging(app):
    # Configures the application logging system.

    # Flask's default handler would duplicate every record
    if app.logger.hasHandlers():
        app.logger.handlers.clear()

    root = logging.getLogger()
    for handler in _log_handlers:
        root.removeHandler(handler)
        handler.close()
    _log_handlers.clear()

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    log_dir = app.config.get("LOG_DIR")
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

        # UTF-8 so song titles in any script are logged verbatim
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, "app.log"),
            maxBytes=10240000,  # 10MB
            backupCount=10,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(logging.INFO)
        _log_handlers.append(file_handler)

    if app.debug:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        console_handler.setLevel(logging.DEBUG)
        if hasattr(console_handler.stream, "reconfigure"):
            console_handler.stream.reconfigure(encoding="utf-8", errors="replace")
        _log_handlers.append(console_handler)

    for handler in _log_handlers:
        root.addHandler(handler)
    root.setLevel(logging.INFO)
    app.logger.setLevel(logging.INFO)
    app.logger.info("Music download proxy started")


def register_error_handlers(app):
    """Registers JSON error handlers."""

    @app.errorhandler(MusicProxyError)
    def handle_proxy_error(error):
        """Handles resolution and proxy errors raised by the routes."""
        if error.status_code >= 500:
            app.logger.error(f"{type(error).__name__}: {error.message}")
        else:
            app.logger.warning(f"{type(error).__name__}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found(error):
        """Handles unknown resources."""
        return jsonify({"status": "error", "message": "Resource not found"}), 404

    @app.errorhandler(429)
    def ratelimit_handler(error):
        """Handles rate limit exceeded."""
        return (
            jsonify(
                {
                    "status": "error",
                    "message": "Too many requests. Please wait a moment before trying again.",
                }
            ),
            429,
        )

    @app.errorhandler(HTTPException)
    def handle_http_exception(error):
        """Handles the remaining HTTP errors (405, 400, ...)."""
        return (
            jsonify({"status": "error", "message": error.description}),
            error.code,
        )

    @app.errorhandler(Exception)
    def handle_exception(e):
        """Handles unhandled exceptions."""
        if isinstance(e, HTTPException):
            return handle_http_exception(e)
        app.logger.exception(f"Unhandled exception: {e}")
        return (
            jsonify({"status": "error", "message": "Internal server error"}),
            500,
        )


# Create application instance
app = create_app()

if __name__ == "__main__":
    port = app.config["PORT"]
    app.logger.info("========================================")
    app.logger.info(f"Server running at: http://localhost:{port}")
    app.logger.info(f"Current config: {app.extensions['config_store'].get()}")
    app.logger.info("For study and research only, please respect copyright")
    app.logger.info("========================================")
    app.run(host="0.0.0.0", port=port)
