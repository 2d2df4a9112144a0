# ============================================================================
# IMPORTS
# ============================================================================

# Standard Library
import re
from datetime import date, datetime, timedelta, timezone

# Third-Party: Flask & Extensions
from flask import Blueprint, request

# Local
from api_common import arg_int, body_json, current_uid, fail, get_ai, get_store, ok
from gemini import motivation_prompt
from scoring import SCREEN_TIME_CATEGORIES, habit_streaks, screen_time_breakdown, upsert_habit_entry
from store import SERVER_TIMESTAMP


tracking_bp = Blueprint("tracking", __name__)

PERIOD_DAYS = {"day": 1, "week": 7, "month": 30}
HABIT_TYPES = ("daily_learning", "concept_completion", "streak_maintenance", "focus_time")
HABIT_REWARDS = {
    "milestone5": "First Steps Badge",
    "milestone10": "100 bonus points",
    "milestone30": "Habit Champion Badge",
}
ISO_DATE = re.compile(r"\d{4}-\d{2}-\d{2}")


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _valid_date(value) -> bool:
    """Only the extended YYYY-MM-DD form; stored dates compare as strings."""
    if not isinstance(value, str) or not ISO_DATE.fullmatch(value):
        return False
    try:
        date.fromisoformat(value)
        return True
    except ValueError:
        return False


# ============================================================================
# ROUTES - SCREEN TIME
# ============================================================================

@tracking_bp.get("/screen-time/logs")
def get_screen_time_logs():
    """Logs for one date (?date=) or a range (?startDate=&endDate=), newest first."""
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    filters = [("userId", "==", uid)]
    day = request.args.get("date")
    start = request.args.get("startDate")
    end = request.args.get("endDate")
    for value in (day, start, end):
        if value and not _valid_date(value):
            return fail("Dates must use YYYY-MM-DD", 400)
    if day:
        filters.append(("date", "==", day))
    else:
        if start:
            filters.append(("date", ">=", start))
        if end:
            filters.append(("date", "<=", end))
    try:
        logs = get_store().query("screenTimeLogs", filters)
        logs.sort(key=lambda log: (str(log.get("date") or ""), str(log.get("startTime") or "")), reverse=True)
        return ok(logs, meta={"total": len(logs)})
    except Exception as e:
        print("[screen-time/logs] error:", e, flush=True)
        return fail("Failed to get screen time logs", 500)


@tracking_bp.post("/screen-time/logs")
def create_screen_time_log():
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    data = body_json()
    app_name = str(data.get("appName") or "").strip()
    category = data.get("appCategory")
    minutes = data.get("durationMinutes")
    if not app_name or not category or not minutes:
        return fail("appName, appCategory, and durationMinutes are required", 400)
    if category not in SCREEN_TIME_CATEGORIES:
        return fail("Invalid appCategory", 400)
    if isinstance(minutes, bool) or not isinstance(minutes, (int, float)) or minutes < 0:
        return fail("durationMinutes must be a positive number", 400)
    log_date = data.get("date") or _today().isoformat()
    if not _valid_date(log_date):
        return fail("date must use YYYY-MM-DD", 400)

    log = {
        "userId": uid,
        "appName": app_name,
        "appCategory": category,
        "durationMinutes": minutes,
        "date": log_date,
        "startTime": SERVER_TIMESTAMP,
        "createdAt": SERVER_TIMESTAMP,
    }
    try:
        log["id"] = get_store().add("screenTimeLogs", log)
        return ok(log, message="Screen time logged", status=201)
    except Exception as e:
        print("[screen-time/logs] create error:", e, flush=True)
        return fail("Failed to create screen time log", 500)


@tracking_bp.get("/screen-time/analytics")
def screen_time_analytics():
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    period = request.args.get("period") or "week"
    if period not in PERIOD_DAYS:
        return fail("period must be day, week or month", 400)
    days = PERIOD_DAYS[period]
    since = (_today() - timedelta(days=days - 1)).isoformat()
    try:
        logs = get_store().query("screenTimeLogs", [("userId", "==", uid), ("date", ">=", since)])
    except Exception as e:
        print("[screen-time/analytics] error:", e, flush=True)
        return fail("Failed to get screen time analytics", 500)

    analytics = screen_time_breakdown(logs)
    analytics["period"] = period
    analytics["startDate"] = since
    analytics["dailyAverageMinutes"] = round(analytics["totalMinutes"] / days, 1)
    insights = []
    if analytics["totalMinutes"] and analytics["focusScore"] >= 70:
        insights.append("Most of your screen time went to learning and productive work. Keep it up!")
    elif analytics["totalMinutes"]:
        insights.append("Try shifting some entertainment or social time toward learning.")
    analytics["insights"] = insights
    return ok(analytics)


# ============================================================================
# ROUTES - MOTIVATION
# ============================================================================

@tracking_bp.post("/motivation/boost")
def motivation_boost():
    """Personalized encouragement from Gemini, built from the caller's real stats."""
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    context = body_json().get("context") or {}
    if not isinstance(context, dict):
        return fail("context must be an object", 400)

    store = get_store()
    try:
        user = store.get("users", uid)
        if not user:
            return fail("User not found", 404)
        stats = user.get("stats") or {}
        message = get_ai().generate(
            motivation_prompt(stats, context.get("recentActivity"), context.get("strugglingWith")),
            temperature=0.9,
        )
        if not message:
            return fail("Failed to send motivation boost", 500)
        boost = {
            "userId": uid,
            "message": message,
            "type": "motivation",
            "context": {
                "streak": stats.get("currentStreak") or 0,
                "points": stats.get("totalPoints") or 0,
                "level": stats.get("level") or 1,
            },
            "read": False,
            "createdAt": SERVER_TIMESTAMP,
        }
        boost["id"] = store.add("motivationBoosts", boost)
        return ok(boost, status=201)
    except Exception as e:
        print("[motivation/boost] error:", e, flush=True)
        return fail("Failed to send motivation boost", 500)


@tracking_bp.get("/motivation/boost")
def list_motivation_boosts():
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    try:
        boosts = get_store().query(
            "motivationBoosts", [("userId", "==", uid)],
            order_by="createdAt", descending=True, limit=arg_int("limit", 10, hi=50),
        )
        return ok(boosts)
    except Exception as e:
        print("[motivation/boost] list error:", e, flush=True)
        return fail("Failed to fetch motivation boosts", 500)


# ============================================================================
# ROUTES - HABIT CHALLENGES
# ============================================================================

@tracking_bp.get("/habits/challenge")
def list_habits():
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    status = request.args.get("status") or "active"
    try:
        habits = get_store().query("habitChallenges", [("userId", "==", uid), ("status", "==", status)])
        return ok(habits, meta={"total": len(habits), "status": status})
    except Exception as e:
        print("[habits/challenge] list error:", e, flush=True)
        return fail("Failed to fetch habit challenges", 500)


@tracking_bp.post("/habits/challenge")
def create_habit():
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    data = body_json()
    name = str(data.get("name") or "").strip()
    habit_type = data.get("type")
    target = data.get("targetValue")
    if not name or not habit_type or not target:
        return fail("Missing required fields", 400)
    if habit_type not in HABIT_TYPES:
        return fail("Invalid habit type", 400)
    if isinstance(target, bool) or not isinstance(target, (int, float)) or target <= 0:
        return fail("targetValue must be a positive number", 400)

    habit = {
        "userId": uid,
        "name": name,
        "description": data.get("description") or "",
        "type": habit_type,
        "targetValue": target,
        "duration": data.get("duration"),
        "currentStreak": 0,
        "longestStreak": 0,
        "status": "active",
        "startDate": _today().isoformat(),
        "progress": [],
        "rewards": dict(HABIT_REWARDS),
        "createdAt": SERVER_TIMESTAMP,
    }
    try:
        habit["id"] = get_store().add("habitChallenges", habit)
        return ok(habit, message="Habit challenge created successfully", status=201)
    except Exception as e:
        print("[habits/challenge] create error:", e, flush=True)
        return fail("Failed to create habit challenge", 500)


@tracking_bp.patch("/habits/challenge")
def update_habit_progress():
    """Record a day's value. Re-sending the same date replaces that day's entry."""
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    data = body_json()
    habit_id = data.get("habitId")
    day = data.get("date")
    if not habit_id or not day:
        return fail("Missing required fields", 400)
    if not _valid_date(day):
        return fail("date must use YYYY-MM-DD", 400)
    value = data.get("value") or 0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fail("value must be a number", 400)
    completed = data.get("completed")
    if completed is None:
        completed = value > 0
    elif not isinstance(completed, bool):
        return fail("completed must be true or false", 400)
    entry = {"date": day, "value": value, "completed": completed}

    store = get_store()
    owner_error = []

    def apply(habit):
        if habit is None or habit.get("userId") != uid:
            owner_error.append(404 if habit is None else 403)
            return None
        progress = upsert_habit_entry(habit.get("progress") or [], entry)
        current, longest = habit_streaks(progress, _today())
        return {
            "progress": progress,
            "currentStreak": current,
            "longestStreak": max(longest, habit.get("longestStreak") or 0),
            "updatedAt": SERVER_TIMESTAMP,
        }

    try:
        updates = store.transact("habitChallenges", habit_id, apply)
    except Exception as e:
        print("[habits/challenge] update error:", e, flush=True)
        return fail("Failed to update progress", 500)
    if owner_error:
        if owner_error[0] == 404:
            return fail("Habit challenge not found", 404)
        return fail("You do not have access to this habit", 403)

    return ok(
        {
            "habitId": habit_id,
            **entry,
            "currentStreak": updates["currentStreak"],
            "longestStreak": updates["longestStreak"],
        },
        message="Progress updated successfully",
    )
