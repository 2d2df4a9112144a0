# ============================================================================
# IMPORTS
# ============================================================================

# Third-Party: Flask & Extensions
from flask import Blueprint, current_app, request

# Local
from api_common import arg_int, award_points_or_defer, body_json, current_uid, fail, get_ai, get_store, ok
from gemini import QUESTION_TYPES, AIResponseError, normalize_quiz_questions, quiz_prompt
from scoring import grade_quiz
from store import SERVER_TIMESTAMP, Increment


quiz_bp = Blueprint("quiz", __name__)

DIFFICULTIES = ("beginner", "intermediate", "advanced")


# ============================================================================
# ROUTES - QUIZ GENERATION
# ============================================================================

@quiz_bp.post("/quiz/generate")
def generate_quiz():
    """Ask Gemini for a quiz on a topic and save it for the caller.

    There is no fallback: an AI failure or unusable answer is a 500.
    """
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)

    data = body_json()
    topic = str(data.get("topic") or "").strip()
    if not topic:
        return fail("Topic is required", 400)
    difficulty = str(data.get("difficulty") or "intermediate").strip().lower()
    if difficulty not in DIFFICULTIES:
        return fail("difficulty must be beginner, intermediate or advanced", 400)
    try:
        count = int(data.get("questionCount") or 5)
    except (TypeError, ValueError):
        return fail("questionCount must be a number", 400)
    count = max(1, min(20, count))
    types = [t for t in (data.get("questionTypes") or QUESTION_TYPES) if t in QUESTION_TYPES] or list(QUESTION_TYPES)

    try:
        raw = get_ai().generate(quiz_prompt(topic, difficulty, count, types), json_output=True)
        questions, minutes = normalize_quiz_questions(raw, count)
    except AIResponseError as e:
        print("[quiz/generate] unusable AI response:", e, flush=True)
        return fail("Failed to generate quiz", 500)
    except Exception as e:
        print("[quiz/generate] AI error:", e, flush=True)
        return fail("Failed to generate quiz", 500)

    quiz = {
        "userId": uid,
        "topic": topic,
        "conceptId": data.get("conceptId"),
        "difficulty": difficulty,
        "questions": questions,
        "totalPoints": sum(q["points"] for q in questions),
        "passingScore": current_app.config.get("DEFAULT_PASSING_SCORE", 70),
        "estimatedMinutes": minutes or len(questions) * 2,
        "status": "active",
        "attempts": 0,
        "bestScore": None,
        "createdAt": SERVER_TIMESTAMP,
        "updatedAt": SERVER_TIMESTAMP,
    }
    try:
        quiz_id = get_store().add("quizzes", quiz)
    except Exception as e:
        print("[quiz/generate] save error:", e, flush=True)
        return fail("Failed to save quiz", 500)
    quiz["id"] = quiz_id
    return ok(quiz, message="Quiz generated successfully", status=201)


@quiz_bp.get("/quiz")
def list_quizzes():
    """The caller's quizzes, newest first, optionally for one topic."""
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    filters = [("userId", "==", uid)]
    topic = request.args.get("topic")
    if topic:
        filters.append(("topic", "==", topic))
    try:
        quizzes = get_store().query(
            "quizzes", filters, order_by="createdAt", descending=True, limit=arg_int("limit", 20, hi=100)
        )
        return ok(quizzes, meta={"total": len(quizzes)})
    except Exception as e:
        print("[quiz] list error:", e, flush=True)
        return fail("Failed to get quizzes", 500)


# ============================================================================
# ROUTES - QUIZ SUBMISSION
# ============================================================================

def _quiz_bookkeeping(score_pct: int, passed: bool):
    """Transaction body: count the attempt, keep the best score, close on pass."""
    def apply(quiz):
        if quiz is None:
            raise LookupError("quiz disappeared during submission")
        updates = {"attempts": Increment(1), "lastAttemptAt": SERVER_TIMESTAMP, "updatedAt": SERVER_TIMESTAMP}
        best = quiz.get("bestScore")
        if best is None or score_pct > best:
            updates["bestScore"] = score_pct
        if passed and quiz.get("status") == "active":
            updates["status"] = "completed"
        return updates
    return apply


@quiz_bp.post("/quiz/submit")
def submit_quiz():
    """Grade answers, record the submission and award points."""
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)

    data = body_json()
    quiz_id = data.get("quizId")
    answers = data.get("answers")
    if not quiz_id or not answers:
        return fail("Quiz ID and answers are required", 400)
    if not isinstance(answers, dict):
        return fail("answers must map question ids to answers", 400)

    store = get_store()
    try:
        quiz = store.get("quizzes", quiz_id)
    except Exception as e:
        print("[quiz/submit] lookup error:", e, flush=True)
        return fail("Failed to submit quiz", 500)
    if not quiz:
        return fail("Quiz not found", 404)
    if quiz.get("userId") != uid:
        return fail("You do not have access to this quiz", 403)

    graded = grade_quiz(quiz.get("questions") or [], answers, quiz.get("passingScore"))
    submission = {
        "quizId": quiz_id,
        "userId": uid,
        "topic": quiz.get("topic"),
        **graded,
        "submittedAt": SERVER_TIMESTAMP,
    }
    try:
        submission["id"] = store.add("quizSubmissions", submission)
        store.transact("quizzes", quiz_id, _quiz_bookkeeping(graded["scorePercentage"], graded["passed"]))
    except Exception as e:
        print("[quiz/submit] save error:", e, flush=True)
        return fail("Failed to submit quiz", 500)

    stats_updated = True
    if graded["score"]:
        stats_updated = award_points_or_defer(store, uid, "quiz/submit", graded["score"])

    return ok(
        submission,
        message="Congratulations! You passed!" if graded["passed"] else "Keep practicing!",
        statsUpdated=stats_updated,
    )
