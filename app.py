# ============================================================================
# IMPORTS
# ============================================================================

# Standard Library
import os

# Third-Party: Flask & Extensions
from flask import Flask, jsonify
from flask_cors import CORS

# Third-Party: Environment & Configuration
from dotenv import load_dotenv

# Third-Party: Firebase
import firebase_admin
from firebase_admin import auth as firebase_auth, credentials, firestore

# Local
from api_common import TokenAuthority
from api_assistant import assistant_bp
from api_auth import auth_bp
from api_community import community_bp
from api_learning import learning_bp
from api_quiz import quiz_bp
from api_tracking import tracking_bp
from api_user import user_bp
from gemini import GeminiTextService
from store import DocumentStore


# ============================================================================
# CONFIGURATION
# ============================================================================

def load_config() -> dict:
    """Read settings from the environment (.env included)."""
    load_dotenv()
    return {
        "SECRET_KEY": os.getenv("FLASK_SECRET_KEY", "dev-secret-change-me"),
        "GOOGLE_API_KEY": os.getenv("GOOGLE_API_KEY"),
        "GEMINI_MODEL": os.getenv("GEMINI_MODEL", "gemini-2.5-flash-lite"),
        "FIREBASE_CREDENTIALS": os.getenv("FIREBASE_CREDENTIALS", "firebase-service-account.json"),
        "TOKEN_MAX_AGE": int(os.getenv("TOKEN_MAX_AGE", 7 * 24 * 3600)),
        "DEFAULT_PASSING_SCORE": 70,
        "MATCH_CANDIDATE_LIMIT": 10,
        "MATCH_SCORED_LIMIT": 5,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": False,
    }


# ============================================================================
# FIREBASE ADMIN SETUP
# ============================================================================

def init_firebase(credentials_path: str):
    """Initialize the default Firebase Admin app once and return it."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass
    try:
        cred = credentials.Certificate(credentials_path)
        fb_app = firebase_admin.initialize_app(cred)
        print("Firebase Admin connected", flush=True)
        return fb_app
    except Exception as e:
        print(f"Firebase Admin connection failed: {e}", flush=True)
        raise


def build_store(config: dict):
    fb_app = init_firebase(config["FIREBASE_CREDENTIALS"])
    return DocumentStore(firestore.client(fb_app))


def build_text_service(config: dict):
    if not config.get("GOOGLE_API_KEY"):
        print("GOOGLE_API_KEY not set; AI features will fail until it is configured", flush=True)
    return GeminiTextService.from_api_key(config.get("GOOGLE_API_KEY"), model=config["GEMINI_MODEL"])


def firebase_id_token_verifier(token: str) -> dict:
    return firebase_auth.verify_id_token(token)


# ============================================================================
# APP FACTORY
# ============================================================================

def create_app(config: dict | None = None, store=None, text_service=None, id_token_verifier=None) -> Flask:
    """Build the API.

    Collaborators left as None are built for production: Firestore and
    Firebase Auth through firebase_admin, Gemini through google-genai.
    """
    app = Flask(__name__)
    app.config.update(load_config())
    if config:
        app.config.update(config)
    app.secret_key = app.config["SECRET_KEY"]
    CORS(app, supports_credentials=True)

    if store is None:
        store = build_store(app.config)
        if id_token_verifier is None:
            id_token_verifier = firebase_id_token_verifier
    if text_service is None:
        text_service = build_text_service(app.config)

    app.extensions["learnmate"] = {
        "store": store,
        "text_service": text_service,
        "tokens": TokenAuthority(app.config["SECRET_KEY"], app.config["TOKEN_MAX_AGE"], id_token_verifier),
    }

    for bp in (auth_bp, user_bp, learning_bp, quiz_bp, tracking_bp, community_bp, assistant_bp):
        app.register_blueprint(bp, url_prefix="/api")

    # ========================================================================
    # ROUTES - UTILITY
    # ========================================================================

    @app.route("/api/ping")
    def ping():
        """Simple health route."""
        return jsonify({"success": True, "message": "LearnMate backend is running"})

    # ========================================================================
    # ERROR HANDLERS
    # ========================================================================

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"success": False, "error": f"Not Found - {e}"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"success": False, "error": "Method not allowed"}), 405

    @app.errorhandler(500)
    def internal_error(e):
        print("[unhandled]", e, flush=True)
        return jsonify({"success": False, "error": "Internal server error"}), 500

    return app


# ============================================================================
# RUN SERVER
# ============================================================================

if __name__ == "__main__":
    port = int(os.getenv("PORT", 5000))
    create_app().run(host="0.0.0.0", port=port, debug=os.getenv("FLASK_DEBUG") == "1")
