"""Initialize the Flask app and its extensions."""

import os

import firebase_admin
from firebase_admin import credentials
from flask import Flask, g, session

from .extensions import sessions


def _init_firebase(app):
    """Initialize the Firebase Admin SDK from env, a credentials file or ADC."""
    cred = None
    project_id = None

    # First, try to load from environment variable (for production)
    cred_json = os.environ.get("FIREBASE_CREDENTIALS_JSON")
    if cred_json:
        import json

        try:
            cred_info = json.loads(cred_json)
            project_id = cred_info.get("project_id")
            cred = credentials.Certificate(cred_info)
        except (json.JSONDecodeError, ValueError) as e:
            app.logger.error(f"Error parsing FIREBASE_CREDENTIALS_JSON: {e}")

    # If env var fails or is not present, try loading from file (for local dev)
    if not cred:
        cred_path = os.path.join(
            os.path.dirname(os.path.dirname(__file__)), "firebase_credentials.json"
        )
        if os.path.exists(cred_path):
            import json

            try:
                with open(cred_path, "r") as f:
                    project_id = json.load(f).get("project_id")
                cred = credentials.Certificate(cred_path)
            except (json.JSONDecodeError, ValueError) as e:
                app.logger.error(f"Error loading credentials from file: {e}")

    # Fall back to application default credentials
    if not cred:
        try:
            cred = credentials.ApplicationDefault()
            project_id = os.environ.get("FIREBASE_PROJECT_ID")
        except Exception as e:
            app.logger.error(
                f"Could not find any valid credentials (env, file, or default): {e}"
            )

    if cred and not firebase_admin._apps:
        try:
            options = {"projectId": project_id} if project_id else None
            firebase_admin.initialize_app(cred, options)
        except ValueError:
            app.logger.info("Firebase app already initialized.")


def create_app(test_config=None):
    """Create and configure an instance of the Flask application."""
    app = Flask(__name__, instance_relative_config=True)

    # Load configuration
    app.config.from_mapping(
        SECRET_KEY=os.environ.get("SECRET_KEY") or "dev",
        BASKET_DATA_DIR=os.environ.get("BASKET_DATA_DIR")
        or os.path.join(app.instance_path, "device"),
        BASKET_USER_ID=os.environ.get("BASKET_USER_ID"),
        BACKUP_MIN_INTERVAL=float(os.environ.get("BASKET_BACKUP_MIN_INTERVAL") or 10),
        BACKUP_DEBOUNCE=float(os.environ.get("BASKET_BACKUP_DEBOUNCE") or 10),
        OPTIMISTIC_MATCH_WINDOW=int(os.environ.get("BASKET_MATCH_WINDOW_MS") or 5000),
        AUTH_TIMEOUT=float(os.environ.get("BASKET_AUTH_TIMEOUT") or 10),
        TENTATIVE_POLICY=os.environ.get("BASKET_TENTATIVE_POLICY") or "larger",
    )

    if test_config:
        app.config.update(test_config)

    # Initialize Firebase Admin SDK only if not in testing mode
    if not app.config.get("TESTING"):
        _init_firebase(app)

    # Ensure the device folder exists
    os.makedirs(app.config["BASKET_DATA_DIR"], exist_ok=True)

    # Initialize extensions
    sessions.init_app(app)

    # Register blueprints
    from . import api as api_bp

    app.register_blueprint(api_bp.bp)

    from . import error_handlers

    app.register_blueprint(error_handlers.error_handlers_bp)

    @app.before_request
    def load_device_user():
        """Resolve which user this device is syncing for and store it in g."""
        g.user_id = session.get("user_id") or app.config.get("BASKET_USER_ID")

    return app
