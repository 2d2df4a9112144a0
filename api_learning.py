# ============================================================================
# IMPORTS
# ============================================================================

# Standard Library
from datetime import datetime, timedelta, timezone

# Third-Party: Flask & Extensions
from flask import Blueprint, request

# Local
from api_common import arg_int, award_points_or_defer, body_json, current_uid, fail, get_ai, get_store, ok
from gemini import (
    BRANCH_TYPES,
    AIResponseError,
    branch_prompt,
    fallback_branches,
    learning_path_prompt,
    normalize_branches,
    normalize_learning_path,
)
from scoring import (
    complete_step,
    daily_breakdown,
    engagement_score,
    learning_streaks,
    path_progress,
    percentage,
    round_half_up,
    session_points,
)
from store import SERVER_TIMESTAMP, Increment


learning_bp = Blueprint("learning", __name__)

PATH_STATUSES = ("active", "paused", "completed", "archived")
PROGRESS_STATUSES = ("not-started", "in-progress", "completed")


def _owned(store, collection: str, doc_id: str, uid: str):
    """Load a document the caller must own. Returns (doc, error_response)."""
    doc = store.get(collection, doc_id)
    if not doc:
        return None, fail("Not found", 404)
    if doc.get("userId") != uid:
        return None, fail("You do not have access to this resource", 403)
    return doc, None


# ============================================================================
# ROUTES - LEARNING PATHS
# ============================================================================

@learning_bp.post("/learning/generate")
def generate_path():
    """Generate a learning path with Gemini and save it for the caller."""
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    data = body_json()
    domain = str(data.get("domain") or "").strip()
    subdomain = str(data.get("subdomain") or "").strip()
    topic = str(data.get("topic") or "").strip()
    if not domain or not subdomain or not topic:
        return fail("domain, subdomain, and topic are required", 400)

    try:
        raw = get_ai().generate(learning_path_prompt(domain, subdomain, topic), json_output=True)
        generated = normalize_learning_path(raw, topic)
    except AIResponseError as e:
        print("[learning/generate] unusable AI response:", e, flush=True)
        return fail("Failed to generate learning path", 500)
    except Exception as e:
        print("[learning/generate] AI error:", e, flush=True)
        return fail("Failed to generate learning path", 500)

    path = {
        "userId": uid,
        "domain": domain,
        "subdomain": subdomain,
        "topic": topic,
        **generated,
        "status": "active",
        "progress": 0,
        "createdAt": SERVER_TIMESTAMP,
        "updatedAt": SERVER_TIMESTAMP,
    }
    try:
        path["id"] = get_store().add("learningPaths", path)
    except Exception as e:
        print("[learning/generate] save error:", e, flush=True)
        return fail("Failed to save learning path", 500)
    return ok(path, message="Learning path generated", status=201)


@learning_bp.get("/learning/paths")
def list_paths():
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    filters = [("userId", "==", uid)]
    status = request.args.get("status")
    if status:
        filters.append(("status", "==", status))
    try:
        paths = get_store().query("learningPaths", filters, order_by="createdAt", descending=True)
        return ok(paths, meta={"total": len(paths)})
    except Exception as e:
        print("[learning/paths] list error:", e, flush=True)
        return fail("Failed to get learning paths", 500)


@learning_bp.post("/learning/paths")
def create_path():
    """Save a hand-built (or client-edited) path."""
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    data = body_json()
    name = str(data.get("name") or "").strip()
    steps = data.get("steps")
    if not name or not isinstance(steps, list):
        return fail("name and steps are required", 400)

    path = {
        "userId": uid,
        "name": name,
        "description": data.get("description") or "",
        "domain": data.get("domain"),
        "subdomain": data.get("subdomain"),
        "topic": data.get("topic"),
        "steps": steps,
        "status": "active",
        "progress": path_progress(steps),
        "createdAt": SERVER_TIMESTAMP,
        "updatedAt": SERVER_TIMESTAMP,
    }
    try:
        path["id"] = get_store().add("learningPaths", path)
        return ok(path, message="Learning path created", status=201)
    except Exception as e:
        print("[learning/paths] create error:", e, flush=True)
        return fail("Failed to create learning path", 500)


@learning_bp.get("/learning/paths/<path_id>")
def get_path(path_id: str):
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    try:
        path, err = _owned(get_store(), "learningPaths", path_id, uid)
        if err:
            return err
        return ok(path)
    except Exception as e:
        print("[learning/paths] get error:", e, flush=True)
        return fail("Failed to get learning path", 500)


@learning_bp.put("/learning/paths/<path_id>")
def update_path(path_id: str):
    """Update progress, status or steps. New steps recompute progress."""
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    data = body_json()
    if not any(k in data for k in ("progress", "status", "steps")):
        return fail("Nothing to update", 400)
    if "status" in data and data["status"] not in PATH_STATUSES:
        return fail(f"status must be one of {', '.join(PATH_STATUSES)}", 400)
    if "steps" in data and not isinstance(data["steps"], list):
        return fail("steps must be a list", 400)

    store = get_store()
    try:
        path, err = _owned(store, "learningPaths", path_id, uid)
        if err:
            return err
        updates = {"updatedAt": SERVER_TIMESTAMP}
        if "progress" in data:
            updates["progress"] = max(0, min(100, int(data["progress"] or 0)))
        if "steps" in data:
            updates["steps"] = data["steps"]
            updates["progress"] = path_progress(data["steps"])
        if "status" in data:
            updates["status"] = data["status"]
            if data["status"] == "completed" and not path.get("completedAt"):
                updates["completedAt"] = SERVER_TIMESTAMP
        store.update("learningPaths", path_id, updates)
        return ok(store.get("learningPaths", path_id), message="Learning path updated")
    except (TypeError, ValueError):
        return fail("progress must be a number", 400)
    except Exception as e:
        print("[learning/paths] update error:", e, flush=True)
        return fail("Failed to update learning path", 500)


@learning_bp.delete("/learning/paths/<path_id>")
def delete_path(path_id: str):
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    store = get_store()
    try:
        _, err = _owned(store, "learningPaths", path_id, uid)
        if err:
            return err
        store.delete("learningPaths", path_id)
        return ok(message="Learning path deleted")
    except Exception as e:
        print("[learning/paths] delete error:", e, flush=True)
        return fail("Failed to delete learning path", 500)


@learning_bp.post("/learning/paths/<path_id>/steps/<step_id>/complete")
def complete_path_step(path_id: str, step_id: str):
    """Mark a step done, unlock the next one and close the path when all are done.

    Completing a step that is already completed changes nothing and awards nothing.
    """
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    store = get_store()
    outcome = {}

    def apply(path):
        if path is None:
            outcome["error"] = fail("Not found", 404)
            return None
        if path.get("userId") != uid:
            outcome["error"] = fail("You do not have access to this resource", 403)
            return None
        result = complete_step(path.get("steps") or [], step_id)
        if result is None:
            outcome["error"] = fail("Step not found", 404)
            return None
        steps, changed = result
        outcome["path"] = path
        outcome["changed"] = changed
        if not changed:
            return None
        progress = path_progress(steps)
        updates = {"steps": steps, "progress": progress, "updatedAt": SERVER_TIMESTAMP}
        if progress == 100 and path.get("status") != "completed":
            updates["status"] = "completed"
            if not path.get("completedAt"):
                updates["completedAt"] = SERVER_TIMESTAMP
        path.update(updates)
        return updates

    try:
        store.transact("learningPaths", path_id, apply)
    except Exception as e:
        print("[learning/paths] step complete error:", e, flush=True)
        return fail("Failed to complete step", 500)
    if "error" in outcome:
        return outcome["error"]
    if not outcome["changed"]:
        return ok(outcome["path"], message="Step already completed", statsUpdated=False)

    stats_updated = award_points_or_defer(store, uid, "learning/step", 0, {"completedConcepts": 1})
    return ok(outcome["path"], message="Step completed", statsUpdated=stats_updated)


# ============================================================================
# ROUTES - LEARNING BRANCHES
# ============================================================================

@learning_bp.post("/learning/branch")
def generate_branches():
    """Alternate routes from the caller's current step; a fixed pair stands in when Gemini fails."""
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    data = body_json()
    path_id = data.get("pathId")
    current_step = data.get("currentStep")
    if not path_id or not current_step:
        return fail("Path ID and current step are required", 400)
    branch_option = data.get("branchOption")
    if branch_option and branch_option not in BRANCH_TYPES:
        return fail(f"branchOption must be one of {', '.join(BRANCH_TYPES)}", 400)

    store = get_store()
    try:
        path, err = _owned(store, "learningPaths", path_id, uid)
        if err:
            return err
    except Exception as e:
        print("[learning/branch] load error:", e, flush=True)
        return fail("Failed to generate learning branches", 500)

    ai_generated = True
    try:
        raw = get_ai().generate(
            branch_prompt(path, str(current_step), branch_option, data.get("userPreference")), json_output=True,
        )
        generated = normalize_branches(raw)
    except Exception as e:
        print("[learning/branch] AI branches unavailable, using fallback:", e, flush=True)
        generated = fallback_branches(path)
        ai_generated = False

    try:
        store.update("learningPaths", path_id, {
            "branches": generated["branches"],
            "branchRecommendation": generated["recommendation"],
            "updatedAt": SERVER_TIMESTAMP,
        })
    except Exception as e:
        print("[learning/branch] save error:", e, flush=True)
        return fail("Failed to generate learning branches", 500)
    return ok(
        {"pathId": path_id, **generated, "status": "available", "createdAt": SERVER_TIMESTAMP},
        message="Learning branches generated successfully",
        meta={"aiGenerated": ai_generated},
    )


@learning_bp.put("/learning/branch")
def activate_branch():
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    data = body_json()
    path_id = data.get("pathId")
    branch_id = data.get("branchId")
    if not path_id or not branch_id:
        return fail("Path ID and branch ID are required", 400)

    store = get_store()
    try:
        path, err = _owned(store, "learningPaths", path_id, uid)
        if err:
            return err
        if branch_id not in {b.get("id") for b in path.get("branches") or []}:
            return fail("Branch not found", 404)
        updates = {
            "activeBranch": branch_id,
            "previousBranch": path.get("activeBranch"),
            "branchStartedAt": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
        }
        store.update("learningPaths", path_id, updates)
    except Exception as e:
        print("[learning/branch] activate error:", e, flush=True)
        return fail("Failed to activate branch", 500)
    return ok({"pathId": path_id, **updates}, message="Learning branch activated successfully")


@learning_bp.get("/learning/branch")
def list_branches():
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    path_id = request.args.get("pathId")
    if not path_id:
        return fail("Path ID is required", 400)
    try:
        path, err = _owned(get_store(), "learningPaths", path_id, uid)
        if err:
            return err
    except Exception as e:
        print("[learning/branch] list error:", e, flush=True)
        return fail("Failed to fetch branches", 500)
    active = path.get("activeBranch")
    branches = [{**b, "pathId": path_id, "isActive": b.get("id") == active} for b in path.get("branches") or []]
    return ok(branches, meta={"pathId": path_id, "total": len(branches)})


# ============================================================================
# ROUTES - PROGRESS
# ============================================================================

@learning_bp.get("/learning/progress")
def get_progress():
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    filters = [("userId", "==", uid)]
    for key in ("conceptId", "resourceId"):
        if request.args.get(key):
            filters.append((key, "==", request.args[key]))
    try:
        return ok(get_store().query("progress", filters))
    except Exception as e:
        print("[learning/progress] error:", e, flush=True)
        return fail("Failed to get progress", 500)


@learning_bp.post("/learning/progress")
def record_progress():
    """Upsert one (concept, resource) progress entry; time spent accumulates."""
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    data = body_json()
    concept_id = data.get("conceptId")
    if not concept_id:
        return fail("conceptId is required", 400)
    resource_id = data.get("resourceId") or None
    status = data.get("status")
    if status is not None and status not in PROGRESS_STATUSES:
        return fail(f"status must be one of {', '.join(PROGRESS_STATUSES)}", 400)
    minutes = data.get("timeSpentMinutes")
    if minutes is not None and (isinstance(minutes, bool) or not isinstance(minutes, (int, float)) or minutes < 0):
        return fail("timeSpentMinutes must be a non-negative number", 400)

    store = get_store()
    try:
        existing = store.query(
            "progress",
            [("userId", "==", uid), ("conceptId", "==", concept_id), ("resourceId", "==", resource_id)],
            limit=1,
        )
        if existing:
            entry = existing[0]
            updates = {"lastAccessedAt": SERVER_TIMESTAMP, "updatedAt": SERVER_TIMESTAMP}
            if status is not None:
                updates["status"] = status
                if status == "completed" and not entry.get("completedAt"):
                    updates["completedAt"] = SERVER_TIMESTAMP
            if minutes:
                updates["timeSpentMinutes"] = Increment(minutes)
            if "notes" in data:
                updates["notes"] = data["notes"]
            store.update("progress", entry["id"], updates)
            return ok(store.get("progress", entry["id"]))

        entry = {
            "userId": uid,
            "conceptId": concept_id,
            "resourceId": resource_id,
            "status": status or "not-started",
            "timeSpentMinutes": minutes or 0,
            "notes": data.get("notes") or "",
            "startedAt": SERVER_TIMESTAMP,
            "lastAccessedAt": SERVER_TIMESTAMP,
            "createdAt": SERVER_TIMESTAMP,
        }
        if status == "completed":
            entry["completedAt"] = SERVER_TIMESTAMP
        entry["id"] = store.add("progress", entry)
        return ok(entry, status=201)
    except Exception as e:
        print("[learning/progress] update error:", e, flush=True)
        return fail("Failed to update progress", 500)


# ============================================================================
# ROUTES - LEARNING SESSIONS
# ============================================================================

SESSION_FIELDS = {
    "progress": "progress",
    "watchTime": "totalDuration",
    "focusTime": "focusTime",
    "playbackSpeed": "playbackSpeed",
    "notes": "notes",
    "pauseCount": "pauseCount",
    "distractions": "distractions",
}
NUMERIC_SESSION_FIELDS = ("progress", "watchTime", "focusTime", "playbackSpeed", "pauseCount", "distractions")


@learning_bp.post("/learning/session")
def start_session():
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    data = body_json()
    resource_id = data.get("resourceId")
    if not resource_id:
        return fail("Resource ID is required", 400)
    try:
        session_id = get_store().add("learningSessions", {
            "userId": uid,
            "resourceId": resource_id,
            "conceptId": data.get("conceptId"),
            "pathId": data.get("pathId"),
            "resourceType": data.get("resourceType") or "unknown",
            "startTime": SERVER_TIMESTAMP,
            "totalDuration": 0,
            "focusTime": 0,
            "pauseCount": 0,
            "playbackSpeed": 1,
            "progress": 0,
            "completed": False,
            "notes": [],
            "engagementScore": 0,
            "distractions": 0,
            "status": "active",
            "createdAt": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
        })
        return ok({"sessionId": session_id}, message="Session started successfully", status=201)
    except Exception as e:
        print("[learning/session] start error:", e, flush=True)
        return fail("Failed to start session", 500)


@learning_bp.put("/learning/session")
def update_session():
    """Periodic heartbeat: watch/focus times in seconds plus player state."""
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    data = body_json()
    session_id = data.get("sessionId")
    if not session_id:
        return fail("Session ID is required", 400)
    for key in NUMERIC_SESSION_FIELDS:
        value = data.get(key)
        if key in data and (isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0):
            return fail(f"{key} must be a non-negative number", 400)

    store = get_store()
    try:
        _, err = _owned(store, "learningSessions", session_id, uid)
        if err:
            return err
        updates = {"updatedAt": SERVER_TIMESTAMP}
        for key, field in SESSION_FIELDS.items():
            if key in data:
                updates[field] = data[key]
        if "watchTime" in data and "focusTime" in data:
            updates["engagementScore"] = engagement_score(data["watchTime"], data["focusTime"])
        store.update("learningSessions", session_id, updates)
        return ok({"engagementScore": updates.get("engagementScore")}, message="Session updated successfully")
    except Exception as e:
        print("[learning/session] update error:", e, flush=True)
        return fail("Failed to update session", 500)


def _seconds(value) -> int | float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        return 0
    return value


@learning_bp.delete("/learning/session")
def end_session():
    """Close a session once; a completed session earns points and feeds user stats."""
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    session_id = request.args.get("sessionId")
    if not session_id:
        return fail("Session ID is required", 400)
    completed = request.args.get("completed") == "true"
    try:
        final_progress = int(request.args.get("progress") or 0)
    except ValueError:
        return fail("progress must be a number", 400)

    store = get_store()
    outcome = {}

    def apply(sess):
        if sess is None:
            outcome["error"] = fail("Not found", 404)
            return None
        if sess.get("userId") != uid:
            outcome["error"] = fail("You do not have access to this resource", 403)
            return None
        if sess.get("status") == "completed":
            outcome["error"] = fail("Session already ended", 409)
            return None
        watch = _seconds(sess.get("totalDuration"))
        focus = _seconds(sess.get("focusTime"))
        score = engagement_score(watch, focus)
        outcome.update(watch=watch, focus=focus, score=score)
        return {
            "endTime": SERVER_TIMESTAMP,
            "progress": final_progress,
            "completed": completed,
            "engagementScore": score,
            "status": "completed",
            "updatedAt": SERVER_TIMESTAMP,
        }

    try:
        store.transact("learningSessions", session_id, apply)
    except Exception as e:
        print("[learning/session] end error:", e, flush=True)
        return fail("Failed to end session", 500)
    if "error" in outcome:
        return outcome["error"]

    watch = outcome["watch"]
    points = session_points(watch) if completed else 0
    stats_updated = True
    if completed:
        stats_updated = award_points_or_defer(
            store, uid, "learning/session", points,
            increments={"totalMinutesLearned": int(watch // 60), "completedResources": 1},
            extra={"stats.lastActive": SERVER_TIMESTAMP},
        )
    return ok(
        message="Session ended successfully",
        stats={"watchTime": watch, "focusTime": outcome["focus"], "engagementScore": outcome["score"],
               "pointsEarned": points},
        statsUpdated=stats_updated,
    )


@learning_bp.get("/learning/session/summary")
def session_summary():
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    days = arg_int("days", 7, hi=365)
    now = datetime.now(timezone.utc)
    try:
        sessions = get_store().query(
            "learningSessions",
            [("userId", "==", uid), ("startTime", ">=", now - timedelta(days=days))],
            order_by="startTime",
            descending=True,
        )
    except Exception as e:
        print("[learning/session/summary] error:", e, flush=True)
        return fail("Failed to get session summary", 500)

    total = len(sessions)
    completed = sum(1 for s in sessions if s.get("completed") is True)
    learning_time = sum(s.get("totalDuration") or 0 for s in sessions)
    focus_time = sum(s.get("focusTime") or 0 for s in sessions)
    engagement = sum(s.get("engagementScore") or 0 for s in sessions)
    summary = {
        "totalSessions": total,
        "completedSessions": completed,
        "totalLearningTime": learning_time,
        "totalFocusTime": focus_time,
        "averageFocusTime": round_half_up(focus_time / total) if total else 0,
        "averageEngagement": round_half_up(engagement / total) if total else 0,
        "completionRate": percentage(completed, total),
        **learning_streaks(sessions, now.date()),
    }
    recent = [
        {
            "id": s["id"],
            "resourceId": s.get("resourceId"),
            "resourceType": s.get("resourceType"),
            "duration": s.get("totalDuration"),
            "completed": s.get("completed"),
            "engagementScore": s.get("engagementScore"),
            "startTime": s.get("startTime"),
        }
        for s in sessions[:10]
    ]
    return ok(summary=summary, dailyStats=daily_breakdown(sessions, days, now.date()), recentSessions=recent)
