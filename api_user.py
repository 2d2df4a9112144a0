# ============================================================================
# IMPORTS
# ============================================================================

# Standard Library
from datetime import datetime, timedelta, timezone

# Third-Party: Flask & Extensions
from flask import Blueprint, request

# Local
from api_auth import default_stats
from api_common import (
    arg_int,
    award_points,
    body_json,
    current_uid,
    fail,
    get_store,
    ok,
    public_user,
    replay_pending_stats,
)
from scoring import percentage, screen_time_breakdown, summary_insights
from store import SERVER_TIMESTAMP


user_bp = Blueprint("user", __name__)


# ============================================================================
# ROUTES - PROFILE & PREFERENCES
# ============================================================================

@user_bp.get("/user/profile")
def get_profile():
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    try:
        user = get_store().get("users", uid)
        if not user:
            return fail("User profile not found", 404)
        return ok(user)
    except Exception as e:
        print("[user/profile] error:", e, flush=True)
        return fail("Failed to get profile", 500)


@user_bp.put("/user/profile")
def update_profile():
    """Partial profile update: displayName, photoURL, preferences."""
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    data = body_json()
    updates = {"updatedAt": SERVER_TIMESTAMP}
    if "displayName" in data:
        name = str(data.get("displayName") or "").strip()
        if not name:
            return fail("displayName cannot be empty", 400)
        updates["displayName"] = name
    if "photoURL" in data:
        updates["photoURL"] = data.get("photoURL")
    if "preferences" in data:
        if not isinstance(data["preferences"], dict):
            return fail("preferences must be an object", 400)
        updates["preferences"] = data["preferences"]

    store = get_store()
    try:
        if not store.get("users", uid):
            return fail("User profile not found", 404)
        store.update("users", uid, updates)
        return ok(store.get("users", uid), message="Profile updated")
    except Exception as e:
        print("[user/profile] update error:", e, flush=True)
        return fail("Failed to update profile", 500)


@user_bp.get("/user/preferences")
def get_preferences():
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    try:
        user = get_store().get("users", uid)
        if not user:
            return fail("User not found", 404)
        return ok(user.get("preferences") or {})
    except Exception as e:
        print("[user/preferences] error:", e, flush=True)
        return fail("Failed to get preferences", 500)


@user_bp.put("/user/preferences")
def replace_preferences():
    """Overwrite preferences wholesale (last write wins)."""
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    preferences = body_json()
    if not preferences:
        return fail("Preferences object is required", 400)
    store = get_store()
    try:
        if not store.get("users", uid):
            return fail("User not found", 404)
        store.update("users", uid, {"preferences": preferences, "updatedAt": SERVER_TIMESTAMP})
        return ok(preferences, message="Preferences updated")
    except Exception as e:
        print("[user/preferences] update error:", e, flush=True)
        return fail("Failed to update preferences", 500)


# ============================================================================
# ROUTES - STATS
# ============================================================================

@user_bp.get("/user/stats")
def get_stats():
    """Return stats after applying any awards that were deferred earlier."""
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    store = get_store()
    try:
        user = store.get("users", uid)
        if not user:
            return fail("User not found", 404)
        applied = replay_pending_stats(store, uid)
        if applied:
            user = store.get("users", uid)
        return ok(user.get("stats") or default_stats(), meta={"replayedUpdates": applied})
    except Exception as e:
        print("[user/stats] error:", e, flush=True)
        return fail("Failed to get stats", 500)


@user_bp.patch("/user/stats")
def patch_stats():
    """Atomic increments for counters, plain overwrite for streaks."""
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    data = body_json()

    numbers = {}
    for key in ("pointsToAdd", "minutesToAdd", "conceptsToAdd", "currentStreak", "longestStreak"):
        value = data.get(key)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, int):
            return fail(f"{key} must be an integer", 400)
        numbers[key] = value
    if not numbers:
        return fail("No stat changes supplied", 400)

    increments = {
        "totalMinutesLearned": numbers.get("minutesToAdd", 0),
        "completedConcepts": numbers.get("conceptsToAdd", 0),
    }
    extra = {}
    if "currentStreak" in numbers:
        extra["stats.currentStreak"] = numbers["currentStreak"]
    if "longestStreak" in numbers:
        extra["stats.longestStreak"] = numbers["longestStreak"]

    store = get_store()
    try:
        if not store.get("users", uid):
            return fail("User not found", 404)
        award_points(store, uid, numbers.get("pointsToAdd", 0), increments, extra)
        return ok(store.get("users", uid).get("stats"))
    except Exception as e:
        print("[user/stats] update error:", e, flush=True)
        return fail("Failed to update stats", 500)


# ============================================================================
# ROUTES - LEADERBOARD
# ============================================================================

def leaderboard_entry(user: dict, rank: int) -> dict:
    stats = user.get("stats") or {}
    return {
        "userId": user["id"],
        "displayName": user.get("displayName") or "Anonymous",
        "photoURL": user.get("photoURL"),
        "points": stats.get("totalPoints") or 0,
        "streak": stats.get("currentStreak") or 0,
        "level": stats.get("level") or 1,
        "badge": user.get("badge"),
        "rank": rank,
    }


def rank_of(store, uid: str) -> tuple[int, int]:
    """(1-based rank, total users) by total points; rank 0 when absent."""
    users = store.query("users", order_by="stats.totalPoints", descending=True)
    for idx, u in enumerate(users):
        if u["id"] == uid:
            return idx + 1, len(users)
    return 0, len(users)


@user_bp.get("/leaderboard")
def leaderboard():
    timeframe = request.args.get("timeframe") or "all-time"
    limit = arg_int("limit", 10, hi=100)
    filters = []
    if timeframe == "weekly":
        filters.append(("updatedAt", ">=", datetime.now(timezone.utc) - timedelta(days=7)))
    elif timeframe == "monthly":
        filters.append(("updatedAt", ">=", datetime.now(timezone.utc) - timedelta(days=30)))
    elif timeframe != "all-time":
        return fail("timeframe must be all-time, weekly or monthly", 400)
    try:
        store = get_store()
        if filters:
            # Range filter and ordering are on different fields; sort here.
            users = store.query("users", filters)
            users.sort(key=lambda u: (u.get("stats") or {}).get("totalPoints") or 0, reverse=True)
            users = users[:limit]
        else:
            users = store.query("users", order_by="stats.totalPoints", descending=True, limit=limit)
        board = [leaderboard_entry(u, i + 1) for i, u in enumerate(users)]
        return ok(board, meta={"timeframe": timeframe, "total": len(board)})
    except Exception as e:
        print("[leaderboard] error:", e, flush=True)
        return fail("Failed to get leaderboard", 500)


@user_bp.get("/leaderboard/rank/<user_id>")
def user_rank(user_id: str):
    store = get_store()
    try:
        user = store.get("users", user_id)
        if not user:
            return fail("User not found", 404)
        rank, total = rank_of(store, user_id)
        entry = leaderboard_entry(user, rank)
        entry["totalUsers"] = total
        entry["percentile"] = percentage(total - rank, total)
        return ok(entry)
    except Exception as e:
        print("[leaderboard/rank] error:", e, flush=True)
        return fail("Failed to get user rank", 500)


# ============================================================================
# ROUTES - DASHBOARD
# ============================================================================

@user_bp.get("/dashboard/overview")
def dashboard_overview():
    """Stats, recent progress, active paths and today's screen time in one call."""
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    store = get_store()
    try:
        user = store.get("users", uid)
        if not user:
            return fail("User not found", 404)

        recent = store.query(
            "progress", [("userId", "==", uid)], order_by="lastAccessedAt", descending=True, limit=5
        )
        active_paths = store.query("learningPaths", [("userId", "==", uid), ("status", "==", "active")])

        today = datetime.now(timezone.utc).date().isoformat()
        logs = store.query("screenTimeLogs", [("userId", "==", uid), ("date", "==", today)])
        today_minutes = sum(log.get("durationMinutes") or 0 for log in logs)
        goal = (user.get("preferences") or {}).get("dailyGoalMinutes") or 60

        rank, _ = rank_of(store, uid)
        return ok({
            "user": public_user(user),
            "stats": user.get("stats") or default_stats(),
            "recentProgress": recent,
            "activePaths": active_paths,
            "todayActivity": {
                "screenTimeMinutes": today_minutes,
                "dailyGoalMinutes": goal,
                "dailyGoalProgress": min(100, percentage(today_minutes, goal)),
            },
            "leaderboardRank": rank,
        })
    except Exception as e:
        print("[dashboard/overview] error:", e, flush=True)
        return fail("Failed to get dashboard overview", 500)


SUMMARY_PERIODS = {"day": 1, "week": 7}


@user_bp.get("/dashboard/summary")
def dashboard_summary():
    """Day or week recap: concepts finished, minutes learned and how focused screen time was."""
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    period = request.args.get("period") or "day"
    if period not in SUMMARY_PERIODS:
        return fail("period must be day or week", 400)
    since = datetime.now(timezone.utc) - timedelta(days=SUMMARY_PERIODS[period])

    store = get_store()
    try:
        progress = store.query("progress", [("userId", "==", uid), ("lastAccessedAt", ">=", since)])
        logs = store.query("screenTimeLogs", [("userId", "==", uid), ("date", ">=", since.date().isoformat())])
    except Exception as e:
        print("[dashboard/summary] error:", e, flush=True)
        return fail("Failed to get dashboard summary", 500)

    completed = sum(1 for p in progress if p.get("status") == "completed")
    minutes = sum(p.get("timeSpentMinutes") or 0 for p in progress)
    screen = screen_time_breakdown(logs)
    return ok({
        "period": period,
        "completedConcepts": completed,
        "totalMinutesLearned": minutes,
        "totalHoursLearned": round(minutes / 60, 1),
        "productiveMinutes": screen["productiveMinutes"],
        "distractionMinutes": screen["distractionMinutes"],
        "focusScore": screen["focusScore"],
        "insights": summary_insights(period, completed, screen["focusScore"], screen["totalMinutes"], minutes),
    })
