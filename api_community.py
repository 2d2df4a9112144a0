# ============================================================================
# IMPORTS
# ============================================================================

# Standard Library
from datetime import date, timedelta

# Third-Party: Flask & Extensions
from flask import Blueprint, current_app, request

# Local
from api_common import arg_int, body_json, current_uid, fail, get_ai, get_store, ok
from gemini import score_candidates
from store import SERVER_TIMESTAMP, Increment


community_bp = Blueprint("community", __name__)

CONNECTION_ACTIONS = {"accept": "accepted", "reject": "rejected"}


def _author(store, uid: str) -> dict:
    user = store.get("users", uid) or {}
    return {
        "userId": uid,
        "displayName": user.get("displayName") or "Anonymous User",
        "photoURL": user.get("photoURL"),
    }


# ============================================================================
# ROUTES - STUDY BUDDY MATCHING
# ============================================================================

@community_bp.post("/community/study-buddy/match")
def match_study_buddies():
    """Save the caller's preferences and rank peers on the same topic and level.

    Scoring goes through Gemini; when that fails the deterministic scorer
    takes over, so this route never fails because of the text service.
    """
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    data = body_json()
    topic = str(data.get("topic") or "").strip()
    skill_level = str(data.get("skillLevel") or "").strip()
    if not topic or not skill_level:
        return fail("Missing required fields: topic, skillLevel", 400)

    preferences = dict(data.get("studyPreferences") or {})
    for key in ("timezone", "pace"):
        if data.get(key):
            preferences[key] = data[key]

    store = get_store()
    try:
        store.set("studyBuddyPreferences", uid, {
            "userId": uid,
            "topic": topic,
            "skillLevel": skill_level,
            "studyPreferences": preferences,
            "updatedAt": SERVER_TIMESTAMP,
        }, merge=True)
        me = store.get("users", uid) or {}

        records = store.query(
            "studyBuddyPreferences", [("topic", "==", topic), ("skillLevel", "==", skill_level)]
        )
        pool = [r for r in records if r["id"] != uid][: current_app.config.get("MATCH_CANDIDATE_LIMIT", 10)]
        candidates = []
        for r in pool:
            peer = store.get("users", r["id"]) or {}
            candidates.append({
                "id": r["id"],
                "displayName": peer.get("displayName") or "Anonymous User",
                "photoURL": peer.get("photoURL"),
                "topic": r.get("topic"),
                "skillLevel": r.get("skillLevel"),
                "studyPreferences": r.get("studyPreferences") or {},
            })
    except Exception as e:
        print("[study-buddy/match] error:", e, flush=True)
        return fail("Failed to find study buddies", 500)

    if not candidates:
        return ok(
            {"matches": [], "totalMatches": 0},
            message="No matching study buddies found at this time. "
                    "Try adjusting your preferences or checking back later.",
        )

    top = candidates[: current_app.config.get("MATCH_SCORED_LIMIT", 5)]
    matches, used_ai = score_candidates(
        get_ai(), me.get("displayName"), topic, skill_level, preferences, top
    )
    return ok(
        {"matches": matches, "totalMatches": len(candidates)},
        message=f"Found {len(candidates)} potential study buddies",
        meta={"aiScored": used_ai},
    )


# ============================================================================
# ROUTES - STUDY BUDDY REQUESTS
# ============================================================================

@community_bp.post("/community/study-buddy/requests")
def create_buddy_request():
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    data = body_json()
    required = ("topic", "timezone", "pace", "skillLevel")
    if any(not data.get(k) for k in required):
        return fail("Topic, timezone, pace, and skill level are required", 400)

    store = get_store()
    try:
        active = store.query("studyBuddyRequests", [("userId", "==", uid), ("status", "==", "active")], limit=1)
        if active:
            return fail("You already have an active study buddy request. Please cancel it first.", 409)
        author = _author(store, uid)
        req = {
            "userId": uid,
            "displayName": author["displayName"],
            "photoURL": author["photoURL"],
            **{k: data[k] for k in required},
            "description": data.get("description") or "",
            "availability": data.get("availability") or [],
            "status": "active",
            "createdAt": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
        }
        req["id"] = store.add("studyBuddyRequests", req)
        return ok(req, message="Study buddy request created", status=201)
    except Exception as e:
        print("[study-buddy/requests] create error:", e, flush=True)
        return fail("Failed to create study buddy request", 500)


@community_bp.get("/community/study-buddy/requests")
def list_buddy_requests():
    """Active requests from other users, filtered by topic, pace and skill level."""
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    filters = [("status", "==", "active")]
    for key in ("topic", "pace", "skillLevel"):
        if request.args.get(key):
            filters.append((key, "==", request.args[key]))
    try:
        found = get_store().query("studyBuddyRequests", filters)
        found = [r for r in found if r.get("userId") != uid][: arg_int("limit", 20, hi=100)]
        return ok(found, meta={"total": len(found)})
    except Exception as e:
        print("[study-buddy/requests] list error:", e, flush=True)
        return fail("Failed to fetch study buddy requests", 500)


@community_bp.delete("/community/study-buddy/requests")
def cancel_buddy_request():
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    request_id = request.args.get("requestId")
    if not request_id:
        return fail("Request ID is required", 400)
    store = get_store()
    try:
        req = store.get("studyBuddyRequests", request_id)
        if not req:
            return fail("Request not found", 404)
        if req.get("userId") != uid:
            return fail("Unauthorized", 403)
        store.delete("studyBuddyRequests", request_id)
        return ok(message="Study buddy request cancelled")
    except Exception as e:
        print("[study-buddy/requests] delete error:", e, flush=True)
        return fail("Failed to cancel study buddy request", 500)


# ============================================================================
# ROUTES - CONNECTIONS
# ============================================================================

def _connection_between(store, sender: str, recipient: str):
    found = store.query(
        "studyBuddyConnections", [("senderId", "==", sender), ("recipientId", "==", recipient)], limit=1
    )
    return found[0] if found else None


@community_bp.post("/community/study-buddy/connections")
def send_connection_request():
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    data = body_json()
    recipient_id = data.get("recipientId")
    if not recipient_id:
        return fail("Recipient ID is required", 400)
    if recipient_id == uid:
        return fail("You cannot send a connection request to yourself", 400)

    store = get_store()
    try:
        existing = _connection_between(store, uid, recipient_id)
        if existing and existing.get("status") == "pending":
            return fail("Connection request already sent", 409)
        reverse = _connection_between(store, recipient_id, uid)
        if reverse and reverse.get("status") == "pending":
            return fail("This user has already sent you a connection request. Please check your inbox.", 409)
        if any(c and c.get("status") == "accepted" for c in (existing, reverse)):
            return fail("You are already connected with this user", 409)
        recipient = store.get("users", recipient_id)
        if not recipient:
            return fail("Recipient user not found", 404)

        sender = _author(store, uid)
        conn = {
            "senderId": uid,
            "senderName": sender["displayName"],
            "senderPhoto": sender["photoURL"],
            "recipientId": recipient_id,
            "recipientName": recipient.get("displayName") or "Anonymous User",
            "recipientPhoto": recipient.get("photoURL"),
            "message": data.get("message") or "",
            "status": "pending",
            "createdAt": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
        }
        conn["id"] = store.add("studyBuddyConnections", conn)
        return ok(conn, message="Connection request sent", status=201)
    except Exception as e:
        print("[study-buddy/connections] create error:", e, flush=True)
        return fail("Failed to send connection request", 500)


@community_bp.get("/community/study-buddy/connections")
def list_connections():
    """?type=incoming|outgoing|all and ?status=pending|accepted|rejected|all."""
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    kind = request.args.get("type") or "all"
    status = request.args.get("status") or "all"
    if kind not in ("incoming", "outgoing", "all"):
        return fail("type must be incoming, outgoing or all", 400)
    store = get_store()
    try:
        conns = []
        if kind in ("incoming", "all"):
            for c in store.query("studyBuddyConnections", [("recipientId", "==", uid)]):
                conns.append({**c, "direction": "incoming"})
        if kind in ("outgoing", "all"):
            for c in store.query("studyBuddyConnections", [("senderId", "==", uid)]):
                conns.append({**c, "direction": "outgoing"})
        if status != "all":
            conns = [c for c in conns if c.get("status") == status]
        return ok(conns, meta={"total": len(conns), "filters": {"type": kind, "status": status}})
    except Exception as e:
        print("[study-buddy/connections] list error:", e, flush=True)
        return fail("Failed to fetch connections", 500)


@community_bp.patch("/community/study-buddy/connections")
def respond_to_connection():
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    data = body_json()
    connection_id = data.get("connectionId")
    action = data.get("action")
    if not connection_id or not action:
        return fail("Connection ID and action are required", 400)
    if action not in CONNECTION_ACTIONS:
        return fail('Action must be "accept" or "reject"', 400)

    store = get_store()
    try:
        conn = store.get("studyBuddyConnections", connection_id)
        if not conn:
            return fail("Connection request not found", 404)
        if conn.get("recipientId") != uid:
            return fail("You can only accept/reject requests sent to you", 403)
        if conn.get("status") != "pending":
            return fail("This connection request has already been processed", 409)
        new_status = CONNECTION_ACTIONS[action]
        store.update("studyBuddyConnections", connection_id, {
            "status": new_status,
            "respondedAt": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
        })
        return ok({"connectionId": connection_id, "status": new_status}, message=f"Connection request {new_status}")
    except Exception as e:
        print("[study-buddy/connections] respond error:", e, flush=True)
        return fail("Failed to update connection", 500)


@community_bp.get("/community/study-buddy/my-buddies")
def my_buddies():
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    store = get_store()
    try:
        buddies = []
        for c in store.query("studyBuddyConnections", [("senderId", "==", uid), ("status", "==", "accepted")]):
            buddies.append({
                "connectionId": c["id"],
                "userId": c.get("recipientId"),
                "displayName": c.get("recipientName"),
                "photoURL": c.get("recipientPhoto"),
                "connectedAt": c.get("respondedAt") or c.get("updatedAt"),
            })
        for c in store.query("studyBuddyConnections", [("recipientId", "==", uid), ("status", "==", "accepted")]):
            buddies.append({
                "connectionId": c["id"],
                "userId": c.get("senderId"),
                "displayName": c.get("senderName"),
                "photoURL": c.get("senderPhoto"),
                "connectedAt": c.get("respondedAt") or c.get("updatedAt"),
            })
        return ok(buddies, meta={"total": len(buddies)})
    except Exception as e:
        print("[study-buddy/my-buddies] error:", e, flush=True)
        return fail("Failed to fetch study buddies", 500)


# ============================================================================
# ROUTES - DISCUSSIONS
# ============================================================================

@community_bp.get("/community/discussions")
def list_discussions():
    filters = []
    if request.args.get("topic"):
        filters.append(("topic", "==", request.args["topic"]))
    try:
        found = get_store().query(
            "discussions", filters, order_by="createdAt", descending=True, limit=arg_int("limit", 20, hi=100)
        )
        return ok(found, meta={"total": len(found)})
    except Exception as e:
        print("[discussions] list error:", e, flush=True)
        return fail("Failed to fetch discussions", 500)


@community_bp.post("/community/discussions")
def create_discussion():
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    data = body_json()
    title = str(data.get("title") or "").strip()
    content = str(data.get("content") or "").strip()
    topic = str(data.get("topic") or "").strip()
    if not title or not content or not topic:
        return fail("Missing required fields", 400)
    store = get_store()
    try:
        discussion = {
            "title": title,
            "content": content,
            "topic": topic,
            "tags": [str(t) for t in data.get("tags") or []],
            "author": _author(store, uid),
            "replies": 0,
            "likes": 0,
            "createdAt": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
        }
        discussion["id"] = store.add("discussions", discussion)
        return ok(discussion, message="Discussion created", status=201)
    except Exception as e:
        print("[discussions] create error:", e, flush=True)
        return fail("Failed to create discussion", 500)


@community_bp.post("/community/discussions/like")
def toggle_discussion_like():
    """Like, or unlike when the caller already liked it."""
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    discussion_id = body_json().get("discussionId")
    if not discussion_id:
        return fail("Discussion ID is required", 400)
    store = get_store()
    try:
        if not store.get("discussions", discussion_id):
            return fail("Discussion not found", 404)
        existing = store.query(
            "discussionLikes", [("discussionId", "==", discussion_id), ("userId", "==", uid)], limit=1
        )
        if existing:
            store.delete("discussionLikes", existing[0]["id"])
            store.update("discussions", discussion_id, {"likes": Increment(-1)})
            liked = False
        else:
            store.add("discussionLikes", {"discussionId": discussion_id, "userId": uid, "createdAt": SERVER_TIMESTAMP})
            store.update("discussions", discussion_id, {"likes": Increment(1)})
            liked = True
        likes = (store.get("discussions", discussion_id) or {}).get("likes") or 0
        return ok({"liked": liked, "likes": likes}, message="Discussion liked" if liked else "Discussion unliked")
    except Exception as e:
        print("[discussions/like] error:", e, flush=True)
        return fail("Failed to like/unlike discussion", 500)


@community_bp.get("/community/discussions/replies")
def list_replies():
    discussion_id = request.args.get("discussionId")
    if not discussion_id:
        return fail("Discussion ID is required", 400)
    try:
        replies = get_store().query(
            "discussionReplies", [("discussionId", "==", discussion_id)], order_by="createdAt"
        )
        return ok(replies, meta={"total": len(replies)})
    except Exception as e:
        print("[discussions/replies] list error:", e, flush=True)
        return fail("Failed to fetch replies", 500)


@community_bp.post("/community/discussions/replies")
def create_reply():
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    data = body_json()
    discussion_id = data.get("discussionId")
    content = str(data.get("content") or "").strip()
    if not discussion_id or not content:
        return fail("Discussion ID and content are required", 400)
    store = get_store()
    try:
        if not store.get("discussions", discussion_id):
            return fail("Discussion not found", 404)
        reply = {
            "discussionId": discussion_id,
            "content": content,
            "author": _author(store, uid),
            "likes": 0,
            "createdAt": SERVER_TIMESTAMP,
        }
        reply["id"] = store.add("discussionReplies", reply)
        store.update("discussions", discussion_id, {"replies": Increment(1), "updatedAt": SERVER_TIMESTAMP})
        return ok(reply, message="Reply posted", status=201)
    except Exception as e:
        print("[discussions/replies] create error:", e, flush=True)
        return fail("Failed to post reply", 500)


# ============================================================================
# ROUTES - GROUP CHALLENGES
# ============================================================================

@community_bp.get("/community/challenges")
def list_challenges():
    status = request.args.get("status") or "active"
    filters = [("status", "==", status)]
    if request.args.get("topic"):
        filters.append(("topic", "==", request.args["topic"]))
    try:
        found = get_store().query("challenges", filters)
        return ok(found, meta={"total": len(found), "status": status})
    except Exception as e:
        print("[challenges] list error:", e, flush=True)
        return fail("Failed to fetch challenges", 500)


@community_bp.post("/community/challenges")
def create_challenge():
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    data = body_json()
    name = str(data.get("name") or "").strip()
    topic = str(data.get("topic") or "").strip()
    duration = data.get("durationDays")
    if not name or not topic or not duration:
        return fail("Missing required fields", 400)
    if isinstance(duration, bool) or not isinstance(duration, int) or duration <= 0:
        return fail("durationDays must be a positive integer", 400)
    try:
        start = date.fromisoformat(data["startDate"]) if data.get("startDate") else date.today()
    except (TypeError, ValueError):
        return fail("startDate must use YYYY-MM-DD", 400)
    max_participants = data.get("maxParticipants") or 10
    if isinstance(max_participants, bool) or not isinstance(max_participants, int) or max_participants <= 0:
        return fail("maxParticipants must be a positive integer", 400)

    challenge = {
        "name": name,
        "description": data.get("description") or "",
        "topic": topic,
        "durationDays": duration,
        "startDate": start.isoformat(),
        "endDate": (start + timedelta(days=duration)).isoformat(),
        "maxParticipants": max_participants,
        "currentParticipants": 0,
        "difficulty": data.get("difficulty") or "beginner",
        "status": "active",
        "rewards": {"points": duration * 100, "badge": f"{name} Champion"},
        "createdBy": uid,
        "createdAt": SERVER_TIMESTAMP,
    }
    try:
        challenge["id"] = get_store().add("challenges", challenge)
        return ok(challenge, message="Challenge created successfully", status=201)
    except Exception as e:
        print("[challenges] create error:", e, flush=True)
        return fail("Failed to create challenge", 500)


@community_bp.post("/community/challenges/join")
def join_challenge():
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    challenge_id = body_json().get("challengeId")
    if not challenge_id:
        return fail("Challenge ID is required", 400)

    store = get_store()
    try:
        if store.query("challengeParticipants", [("challengeId", "==", challenge_id), ("userId", "==", uid)], limit=1):
            return fail("You have already joined this challenge", 409)

        refusal = []

        def take_seat(challenge):
            if challenge is None:
                refusal.append(("Challenge not found", 404))
                return None
            if challenge.get("status") != "active":
                refusal.append(("Challenge is not active", 400))
                return None
            if (challenge.get("currentParticipants") or 0) >= (challenge.get("maxParticipants") or 0):
                refusal.append(("Challenge is full", 409))
                return None
            return {"currentParticipants": Increment(1)}

        store.transact("challenges", challenge_id, take_seat)
        if refusal:
            return fail(*refusal[0])

        participation = {
            "challengeId": challenge_id,
            "userId": uid,
            "status": "active",
            "progress": 0,
            "joinedAt": SERVER_TIMESTAMP,
        }
        participation["id"] = store.add("challengeParticipants", participation)
        return ok(participation, message="Successfully joined challenge")
    except Exception as e:
        print("[challenges/join] error:", e, flush=True)
        return fail("Failed to join challenge", 500)


@community_bp.get("/community/challenges/my-challenges")
def my_challenges():
    uid = current_uid()
    if not uid:
        return fail("Not authenticated", 401)
    store = get_store()
    try:
        joined = []
        for p in store.query("challengeParticipants", [("userId", "==", uid)]):
            challenge = store.get("challenges", p.get("challengeId"))
            if not challenge:
                continue
            joined.append({
                "participationId": p["id"],
                "joinedAt": p.get("joinedAt"),
                "progress": p.get("progress") or 0,
                "participationStatus": p.get("status") or "active",
                "challenge": challenge,
            })
        return ok(joined, meta={"total": len(joined)})
    except Exception as e:
        print("[challenges/my-challenges] error:", e, flush=True)
        return fail("Failed to fetch your challenges", 500)
