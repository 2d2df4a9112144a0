# ============================================================================
# IMPORTS
# ============================================================================

# Standard Library
import math
from datetime import date, datetime, timedelta


# ============================================================================
# SHARED ARITHMETIC
# ============================================================================

def round_half_up(x: float) -> int:
    """Round .5 away from zero for non-negative values (Python's round() is banker's)."""
    return int(math.floor(x + 0.5))


def percentage(part: float, whole: float) -> int:
    """Whole-number percentage of part/whole; 0 when whole is 0."""
    if not whole:
        return 0
    return round_half_up(part / whole * 100)


def level_for_points(points: int) -> int:
    return int(points or 0) // 100 + 1


# ============================================================================
# QUIZ GRADING
# ============================================================================

def strict_equals(a, b) -> bool:
    """Type-sensitive equality: True never equals "true", and True never equals 1."""
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return a == b
    return type(a) is type(b) and a == b


def grade_quiz(questions: list[dict], answers: dict, passing_score: int | None = None) -> dict:
    """Grade submitted answers against the stored questions.

    Returns the per-question results plus score, totalPoints,
    scorePercentage, correctCount, totalQuestions, passingScore and passed.
    """
    if passing_score is None:
        passing_score = 70
    results = []
    earned = 0
    total = 0
    correct_count = 0
    for idx, q in enumerate(questions or []):
        qid = q.get("id") or f"q{idx + 1}"
        points = q.get("points")
        try:
            points = int(points) if points is not None else 10
        except (TypeError, ValueError):
            points = 0
        total += points
        user_answer = answers.get(qid)
        is_correct = qid in answers and strict_equals(user_answer, q.get("correctAnswer"))
        if is_correct:
            earned += points
            correct_count += 1
        results.append({
            "questionId": qid,
            "isCorrect": is_correct,
            "userAnswer": user_answer,
            "correctAnswer": q.get("correctAnswer"),
            "pointsEarned": points if is_correct else 0,
        })
    score_pct = percentage(earned, total)
    return {
        "results": results,
        "score": earned,
        "totalPoints": total,
        "scorePercentage": score_pct,
        "correctCount": correct_count,
        "totalQuestions": len(results),
        "passingScore": passing_score,
        "passed": score_pct >= passing_score,
    }


# ============================================================================
# LEARNING SESSIONS
# ============================================================================

def engagement_score(watch_time, focus_time) -> int:
    """Focused share of watch time as a capped percentage."""
    try:
        watch = float(watch_time or 0)
        focus = float(focus_time or 0)
    except (TypeError, ValueError):
        return 0
    if watch <= 0:
        return 0
    return min(100, round_half_up(focus / watch * 100))


def session_points(watch_seconds) -> int:
    # 5 points per full minute watched
    try:
        return int(math.floor(float(watch_seconds or 0) / 60)) * 5
    except (TypeError, ValueError):
        return 0


def _as_date(value) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def _longest_run(days: list[date]) -> int:
    best = 0
    run = 0
    prev = None
    for d in sorted(set(days)):
        if prev is not None and d - prev == timedelta(days=1):
            run += 1
        else:
            run = 1
        best = max(best, run)
        prev = d
    return best


def _current_run(days: list[date], today: date) -> int:
    have = set(days)
    streak = 0
    cursor = today
    while cursor in have:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def learning_streaks(sessions: list[dict], today: date) -> dict:
    """Current and best streaks of days with at least one completed session."""
    days = []
    for s in sessions:
        if s.get("completed") is True:
            d = _as_date(s.get("startTime"))
            if d:
                days.append(d)
    return {"currentStreak": _current_run(days, today), "bestStreak": _longest_run(days)}


def daily_breakdown(sessions: list[dict], days: int, today: date) -> list[dict]:
    """Per-day session totals for the last `days` days, oldest first."""
    buckets = {}
    for i in range(days):
        d = today - timedelta(days=i)
        buckets[d] = {"sessions": 0, "learningTime": 0, "focusTime": 0, "completed": 0}
    for s in sessions:
        d = _as_date(s.get("startTime"))
        stats = buckets.get(d)
        if stats is None:
            continue
        stats["sessions"] += 1
        stats["learningTime"] += s.get("totalDuration") or 0
        stats["focusTime"] += s.get("focusTime") or 0
        if s.get("completed"):
            stats["completed"] += 1
    return [{"date": d.isoformat(), **stats} for d, stats in sorted(buckets.items())]


# ============================================================================
# LEARNING PATHS
# ============================================================================

def path_progress(steps: list[dict]) -> int:
    if not steps:
        return 0
    done = sum(1 for s in steps if isinstance(s, dict) and s.get("status") == "completed")
    return percentage(done, len(steps))


def complete_step(steps: list[dict], step_id: str) -> tuple[list[dict], bool] | None:
    """Mark one step completed and unlock the step after it.

    Returns (new step list, whether the step was newly completed), or None
    when step_id is not in the path.
    """
    out = [dict(s) for s in steps or []]
    for i, step in enumerate(out):
        if step.get("id") != step_id:
            continue
        if step.get("status") == "completed":
            return out, False
        step["status"] = "completed"
        if i + 1 < len(out) and out[i + 1].get("status") == "locked":
            out[i + 1]["status"] = "available"
        return out, True
    return None


# ============================================================================
# HABITS
# ============================================================================

def upsert_habit_entry(progress: list[dict], entry: dict) -> list[dict]:
    """Replace the entry for entry["date"] or append it; one entry per date."""
    out = [p for p in progress or [] if p.get("date") != entry.get("date")]
    out.append(entry)
    out.sort(key=lambda p: str(p.get("date")))
    return out


def habit_streaks(progress: list[dict], today: date) -> tuple[int, int]:
    """(current, longest) streaks over distinct completed dates.

    The current streak may end yesterday so a habit is not broken before
    today's entry is recorded.
    """
    days = [d for d in (_as_date(p.get("date")) for p in progress or [] if p.get("completed")) if d]
    current = _current_run(days, today)
    if current == 0:
        current = _current_run(days, today - timedelta(days=1))
    return current, _longest_run(days)


# ============================================================================
# SCREEN TIME
# ============================================================================

SCREEN_TIME_CATEGORIES = ("productive", "social", "entertainment", "educational", "other")


def screen_time_breakdown(logs: list[dict]) -> dict:
    categories = {c: 0 for c in SCREEN_TIME_CATEGORIES}
    apps: dict[str, float] = {}
    total = 0
    for log in logs:
        minutes = log.get("durationMinutes") or 0
        category = log.get("appCategory") or "other"
        total += minutes
        categories[category] = categories.get(category, 0) + minutes
        app_name = log.get("appName") or "unknown"
        apps[app_name] = apps.get(app_name, 0) + minutes
    top_apps = sorted(
        ({"appName": k, "minutes": v} for k, v in apps.items()),
        key=lambda a: a["minutes"],
        reverse=True,
    )[:5]
    productive = categories.get("educational", 0) + categories.get("productive", 0)
    return {
        "totalMinutes": total,
        "totalHours": round(total / 60, 1),
        "categoryBreakdown": categories,
        "topApps": top_apps,
        "focusScore": percentage(productive, total),
        "productiveMinutes": productive,
        "distractionMinutes": total - productive,
    }


def summary_insights(period: str, completed_concepts: int, focus_score: int, screen_minutes, learned_minutes) -> list[str]:
    insights = []
    if completed_concepts > 0:
        plural = "s" if completed_concepts > 1 else ""
        insights.append(f"🎯 Great job! You completed {completed_concepts} concept{plural} this {period}.")
    if focus_score >= 70:
        insights.append(f"🔥 Excellent focus! Your productivity score is {focus_score}%.")
    elif focus_score >= 50:
        insights.append(f"💪 Good focus score of {focus_score}%. Keep it up!")
    elif screen_minutes > 0:
        insights.append(f"⚠️ Your focus score is {focus_score}%. Try reducing distractions.")
    if learned_minutes >= 60:
        hours = round_half_up(learned_minutes / 60)
        plural = "s" if learned_minutes >= 120 else ""
        insights.append(f"⏰ You've invested {hours} hour{plural} in learning!")
    return insights


# ============================================================================
# STUDY-BUDDY FALLBACK SCORER
# ============================================================================

def preference_overlap(requester: dict, candidate: dict) -> float:
    """Share (0..1) of the requester's stated preferences the candidate shares."""
    wanted = {k: v for k, v in (requester or {}).items() if v not in (None, "", [], {})}
    if not wanted:
        return 1.0 if not candidate else 0.0
    shared = sum(1 for k, v in wanted.items() if (candidate or {}).get(k) == v)
    return shared / len(wanted)


def fallback_match(requester_prefs: dict, candidate: dict, topic: str, skill_level: str) -> dict:
    """Deterministic score when the text service gives nothing usable: 70 + 10..20."""
    overlap = preference_overlap(requester_prefs, candidate.get("studyPreferences") or {})
    return {
        "matchScore": 70 + 10 + round_half_up(10 * overlap),
        "matchReason": f"Shares interest in {topic} at {skill_level} level",
    }
