# ============================================================================
# IMPORTS
# ============================================================================

# Third-Party: Flask & Extensions
from flask import Blueprint, request

# Local
from api_common import arg_int, body_json, current_uid, fail, get_ai, get_store, ok
from gemini import (
    AIResponseError,
    chat_prompt,
    normalize_recommendations,
    normalize_roadmap,
    resources_prompt,
    roadmap_prompt,
)
from store import SERVER_TIMESTAMP


assistant_bp = Blueprint("assistant", __name__)

FEEDBACK_ACTIONS = ("liked", "completed", "saved", "dismissed")
EXPERIENCE_LEVELS = ("beginner", "intermediate", "advanced")


# ============================================================================
# ROUTES - CHAT ASSISTANT
# ============================================================================

@assistant_bp.post("/chat/message")
def chat_message():
    """Answer a student question and keep the exchange in chat history."""
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    data = body_json()
    message = str(data.get("message") or "").strip()
    if not message:
        return fail("Message is required", 400)
    history = data.get("conversationHistory")
    history = history if isinstance(history, list) else []
    context = data.get("learningContext")

    try:
        reply = get_ai().generate(chat_prompt(message, history, context), temperature=0.7)
    except Exception as e:
        print("[chat/message] AI error:", e, flush=True)
        return fail("Failed to get AI response", 500)
    if not reply:
        return fail("Failed to get AI response", 500)

    try:
        get_store().add("chatConversations", {
            "userId": uid,
            "userMessage": message,
            "aiResponse": reply,
            "learningContext": context or None,
            "timestamp": SERVER_TIMESTAMP,
        })
    except Exception as e:
        print("[chat/message] save error:", e, flush=True)
        return fail("Failed to save conversation", 500)
    return ok({"response": reply})


@assistant_bp.get("/chat/history")
def chat_history():
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    try:
        found = get_store().query(
            "chatConversations", [("userId", "==", uid)],
            order_by="timestamp", descending=True, limit=arg_int("limit", 50, hi=200),
        )
        return ok(found)
    except Exception as e:
        print("[chat/history] error:", e, flush=True)
        return fail("Failed to get chat history", 500)


# ============================================================================
# ROUTES - CAREER ROADMAPS
# ============================================================================

@assistant_bp.post("/roadmap/generate")
def generate_roadmap():
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    data = body_json()
    career_goal = str(data.get("careerGoal") or "").strip()
    if not career_goal:
        return fail("Career goal is required", 400)
    skills = [str(s) for s in data.get("currentSkills") or [] if str(s).strip()]
    level = data.get("experienceLevel") or "beginner"
    if level not in EXPERIENCE_LEVELS:
        return fail("experienceLevel must be beginner, intermediate or advanced", 400)
    timeframe = data.get("timeframe") or "6-12 months"

    try:
        raw = get_ai().generate(roadmap_prompt(career_goal, skills, level, timeframe), json_output=True)
        roadmap = normalize_roadmap(raw)
    except AIResponseError as e:
        print("[roadmap/generate] unusable AI response:", e, flush=True)
        return fail("Failed to generate career roadmap", 500)
    except Exception as e:
        print("[roadmap/generate] AI error:", e, flush=True)
        return fail("Failed to generate career roadmap", 500)

    doc = {
        "userId": uid,
        "careerGoal": career_goal,
        "currentSkills": skills,
        "experienceLevel": level,
        "timeframe": timeframe,
        **roadmap,
        "status": "active",
        "progress": 0,
        "createdAt": SERVER_TIMESTAMP,
        "updatedAt": SERVER_TIMESTAMP,
    }
    try:
        doc["id"] = get_store().add("roadmaps", doc)
    except Exception as e:
        print("[roadmap/generate] save error:", e, flush=True)
        return fail("Failed to save career roadmap", 500)
    return ok(doc, message="Career roadmap generated", status=201)


@assistant_bp.get("/roadmap")
def list_roadmaps():
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    filters = [("userId", "==", uid)]
    if request.args.get("status"):
        filters.append(("status", "==", request.args["status"]))
    try:
        found = get_store().query("roadmaps", filters, order_by="createdAt", descending=True)
        return ok(found, meta={"total": len(found)})
    except Exception as e:
        print("[roadmap] list error:", e, flush=True)
        return fail("Failed to fetch roadmaps", 500)


# ============================================================================
# ROUTES - RESOURCE RECOMMENDATIONS
# ============================================================================

@assistant_bp.get("/resources/recommend")
def recommend_resources():
    """Gemini-curated resources; learning style defaults to the caller's preference."""
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    topic = (request.args.get("topic") or "").strip()
    if not topic:
        return fail("Topic is required", 400)
    difficulty = request.args.get("difficulty") or "beginner"
    style = request.args.get("learningStyle")
    try:
        if not style:
            user = get_store().get("users", uid) or {}
            style = (user.get("preferences") or {}).get("learningStyle") or "visual"
        raw = get_ai().generate(resources_prompt(topic, difficulty, style), json_output=True)
        recs = normalize_recommendations(raw)
    except AIResponseError as e:
        print("[resources/recommend] unusable AI response:", e, flush=True)
        return fail("Failed to generate recommendations", 500)
    except Exception as e:
        print("[resources/recommend] error:", e, flush=True)
        return fail("Failed to generate recommendations", 500)
    return ok(recs, meta={"topic": topic, "difficulty": difficulty, "learningStyle": style})


@assistant_bp.post("/resources/feedback")
def resource_feedback():
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    data = body_json()
    url = data.get("resourceUrl")
    action = data.get("action")
    if not url or not action:
        return fail("Resource URL and action are required", 400)
    if action not in FEEDBACK_ACTIONS:
        return fail("Invalid action", 400)
    rating = data.get("rating")
    if rating is not None and (isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5):
        return fail("rating must be an integer from 1 to 5", 400)
    try:
        feedback = {
            "userId": uid,
            "resourceUrl": url,
            "resourceTitle": data.get("resourceTitle"),
            "action": action,
            "rating": rating,
            "createdAt": SERVER_TIMESTAMP,
        }
        feedback["id"] = get_store().add("resourceFeedback", feedback)
        return ok(feedback, message="Feedback saved", status=201)
    except Exception as e:
        print("[resources/feedback] error:", e, flush=True)
        return fail("Failed to save feedback", 500)
