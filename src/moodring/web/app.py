"""Flask app factory — serves the state records as JSON."""

from __future__ import annotations

from flask import Flask

from moodring.config import MoodringConfig


def create_app(config: MoodringConfig) -> Flask:
    """Create the Flask app with config values and registered routes.

    Args:
        config: MoodringConfig with db_path and the registry timings.

    Returns:
        Configured Flask application.
    """
    app = Flask(__name__)

    app.config["MOODRING"] = config
    app.config["DB_PATH"] = config.db_path

    from moodring.web.routes import bp

    app.register_blueprint(bp)

    return app
