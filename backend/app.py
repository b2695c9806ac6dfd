import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from flask import Flask
from flask_cors import CORS

# Load .env from project root (parent directory)
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

logger = logging.getLogger(__name__)

# Get frontend URL from environment, default to localhost:5173
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")


def create_app(config: dict = None) -> Flask:
    """Build the review API application."""
    app = Flask(__name__)
    app.config["SECRET_KEY"] = os.getenv("FLASK_SECRET_KEY", os.urandom(32).hex())
    app.config["JSON_SORT_KEYS"] = False
    if config:
        app.config.update(config)

    CORS(
        app,
        origins=[FRONTEND_URL, "http://127.0.0.1:5173"],
        supports_credentials=True,
    )

    # ========================================================================
    # REGISTER BLUEPRINTS
    # ========================================================================

    from routes.email import email_bp
    from routes.review import review_bp

    app.register_blueprint(review_bp)
    app.register_blueprint(email_bp)

    @app.route("/api/health", methods=["GET"])
    def health_check():
        return {"status": "ok"}, 200

    return app


# ============================================================================
# APPLICATION STARTUP
# ============================================================================

if __name__ == "__main__":
    from database.base import create_db_engine, init_db

    init_db(create_db_engine())

    app = create_app()
    logger.info("Review API available at: http://localhost:5000")
    app.run(debug=False, use_reloader=False, host="0.0.0.0", port=5000)
