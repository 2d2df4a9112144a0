# ============================================================================
# IMPORTS
# ============================================================================

# Third-Party: Flask & Extensions
from flask import Blueprint, session
from werkzeug.security import check_password_hash, generate_password_hash

# Local
from api_common import body_json, current_uid, fail, get_store, get_tokens, ok, public_user
from store import SERVER_TIMESTAMP


auth_bp = Blueprint("auth", __name__)


def default_preferences() -> dict:
    return {
        "timezone": "UTC",
        "dailyGoalMinutes": 60,
        "reminderEnabled": True,
        "learningStyle": "visual",
        "notificationSettings": {
            "email": True,
            "push": False,
            "dailySummary": True,
            "weeklyReport": True,
            "streakReminders": True,
        },
    }


def default_stats() -> dict:
    return {
        "totalPoints": 0,
        "currentStreak": 0,
        "longestStreak": 0,
        "totalMinutesLearned": 0,
        "completedConcepts": 0,
        "level": 1,
    }


def new_user_doc(email: str, display_name: str, photo_url: str | None = None) -> dict:
    return {
        "email": email,
        "displayName": display_name,
        "photoURL": photo_url,
        "role": "student",
        "preferences": default_preferences(),
        "stats": default_stats(),
        "createdAt": SERVER_TIMESTAMP,
        "updatedAt": SERVER_TIMESTAMP,
        "lastLoginAt": SERVER_TIMESTAMP,
    }


def _start_session(user: dict):
    session["user_id"] = user["id"]
    session["username"] = user.get("displayName")
    return {"user": public_user(user), "token": get_tokens().issue(user["id"])}


# ============================================================================
# ROUTES - AUTHENTICATION
# ============================================================================

@auth_bp.post("/auth/register")
def register():
    """Create an account and return a bearer token."""
    data = body_json()
    email = str(data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    display_name = str(data.get("displayName") or "").strip()

    if not email or not password or not display_name:
        return fail("Email, password, and display name are required", 400)
    if len(password) < 6:
        return fail("Password must be at least 6 characters", 400)

    store = get_store()
    try:
        if store.query("users", [("email", "==", email)], limit=1):
            return fail("Email already registered", 409)
        doc = new_user_doc(email, display_name)
        doc["password_hash"] = generate_password_hash(password)
        uid = store.add("users", doc)
        user = store.get("users", uid)
        return ok(_start_session(user), message="Registration successful", status=201)
    except Exception as e:
        print("[auth/register] error:", e, flush=True)
        return fail("Registration failed", 500)


@auth_bp.post("/auth/login")
def login():
    """Email + password login."""
    data = body_json()
    email = str(data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    if not email or not password:
        return fail("Email and password are required", 400)

    store = get_store()
    try:
        found = store.query("users", [("email", "==", email)], limit=1)
        user = found[0] if found else None
        if not user or not user.get("password_hash") or not check_password_hash(user["password_hash"], password):
            return fail("Invalid email or password", 401)
        store.update("users", user["id"], {"lastLoginAt": SERVER_TIMESTAMP})
        return ok(_start_session(user), message="Login successful")
    except Exception as e:
        print("[auth/login] error:", e, flush=True)
        return fail("Login failed", 500)


@auth_bp.post("/auth/firebase-login")
def firebase_login():
    """Exchange a Firebase ID token (e.g. Google sign-in) for our token."""
    data = body_json()
    id_token = data.get("idToken")
    if not id_token:
        return fail("idToken is required", 400)

    verifier = get_tokens().id_token_verifier
    if verifier is None:
        return fail("Firebase sign-in is not configured", 501)
    try:
        decoded = verifier(id_token)
    except Exception as e:
        print("[auth/firebase-login] token rejected:", e, flush=True)
        return fail("Invalid ID token", 401)

    uid = decoded.get("uid")
    email = (decoded.get("email") or "").lower()
    if not uid or not email:
        return fail("email missing from firebase token", 400)

    store = get_store()
    try:
        user = store.get("users", uid)
        if user is None:
            name = decoded.get("name") or email.split("@")[0]
            store.set("users", uid, new_user_doc(email, name, decoded.get("picture")))
        else:
            store.update("users", uid, {"lastLoginAt": SERVER_TIMESTAMP})
        user = store.get("users", uid)
        return ok(_start_session(user), message="Firebase login verified")
    except Exception as e:
        print("[auth/firebase-login] error:", e, flush=True)
        return fail("Login failed", 500)


@auth_bp.get("/auth/session")
def get_session_user():
    """Return the signed-in user's profile, stats and preferences."""
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    try:
        user = get_store().get("users", uid)
        if not user:
            return fail("User profile not found", 404)
        data = public_user(user)
        data["stats"] = user.get("stats")
        data["preferences"] = user.get("preferences")
        return ok({"user": data})
    except Exception as e:
        print("[auth/session] error:", e, flush=True)
        return fail("Failed to get session", 500)


@auth_bp.post("/auth/logout")
def logout():
    """Clear the cookie session; bearer tokens simply expire."""
    session.clear()
    return ok(message="Logged out successfully")
