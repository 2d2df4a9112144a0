# ============================================================================
# IMPORTS
# ============================================================================

# Third-Party: Flask & Extensions
from flask import current_app, jsonify, request, session
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

# Local
from scoring import level_for_points
from store import SERVER_TIMESTAMP, Increment, serialize_doc


# ============================================================================
# RESPONSE ENVELOPE
# ============================================================================

def ok(data=None, message: str | None = None, status: int = 200, meta: dict | None = None, **extra):
    body = {"success": True}
    if data is not None:
        body["data"] = serialize_doc(data)
    if message:
        body["message"] = message
    if meta is not None:
        body["meta"] = serialize_doc(meta)
    body.update(serialize_doc(extra))
    return jsonify(body), status


def fail(error: str, status: int = 500):
    return jsonify({"success": False, "error": error}), status


def body_json() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def arg_int(name: str, default: int, lo: int = 1, hi: int = 500) -> int:
    try:
        value = int(request.args.get(name, default))
    except (TypeError, ValueError):
        value = default
    return max(lo, min(hi, value))


# ============================================================================
# COLLABORATORS
# ============================================================================

def get_store():
    return current_app.extensions["learnmate"]["store"]


def get_ai():
    return current_app.extensions["learnmate"]["text_service"]


def get_tokens():
    return current_app.extensions["learnmate"]["tokens"]


# ============================================================================
# AUTH
# ============================================================================

class TokenAuthority:
    """Issues our own bearer tokens and falls back to Firebase ID tokens."""

    salt = "learnmate-auth"

    def __init__(self, secret_key: str, max_age: int, id_token_verifier=None):
        self.serializer = URLSafeTimedSerializer(secret_key, salt=self.salt)
        self.max_age = max_age
        self.id_token_verifier = id_token_verifier

    def issue(self, uid: str) -> str:
        return self.serializer.dumps({"uid": uid})

    def verify(self, token: str) -> str | None:
        if not token:
            return None
        try:
            payload = self.serializer.loads(token, max_age=self.max_age)
            return payload.get("uid") if isinstance(payload, dict) else None
        except SignatureExpired:
            return None
        except BadSignature:
            pass
        if self.id_token_verifier is None:
            return None
        try:
            decoded = self.id_token_verifier(token)
            return decoded.get("uid")
        except Exception as e:
            print("[auth] ID token verification failed:", e, flush=True)
            return None


def bearer_token() -> str | None:
    header = request.headers.get("Authorization") or ""
    if not header.startswith("Bearer "):
        return None
    return header[len("Bearer "):].strip() or None


def current_uid() -> str | None:
    token = bearer_token()
    if token:
        return get_tokens().verify(token)
    return session.get("user_id")


# ============================================================================
# USER STAT AWARDS
# ============================================================================

def _stat_updates(user, uid: str, points: int = 0, increments: dict | None = None, extra: dict | None = None) -> dict:
    if user is None:
        raise LookupError(f"user {uid} not found")
    stats = user.get("stats") or {}
    updates = {"updatedAt": SERVER_TIMESTAMP}
    if points:
        total = int(stats.get("totalPoints") or 0) + int(points)
        updates["stats.totalPoints"] = total
        updates["stats.level"] = level_for_points(total)
    for field, delta in (increments or {}).items():
        if delta:
            updates[f"stats.{field}"] = Increment(delta)
    updates.update(extra or {})
    return updates


def award_points(store, uid: str, points: int = 0, increments: dict | None = None, extra: dict | None = None) -> dict:
    """Add points (keeping stats.level in step) plus other stat changes in one transaction.

    increments maps stats sub-fields to deltas; extra holds plain overwrites.
    Returns the updates written.
    """
    return store.transact("users", uid, lambda user: _stat_updates(user, uid, points, increments, extra))


def _pack_extra(extra: dict | None) -> tuple[list[dict], list[str]]:
    """Outbox form of extra: dotted keys become values, server timestamps become field names."""
    values, timestamps = [], []
    for field, value in (extra or {}).items():
        if value is SERVER_TIMESTAMP:
            timestamps.append(field)
        else:
            values.append({"field": field, "value": value})
    return values, timestamps


def _unpack_extra(entry: dict) -> dict:
    extra = {item["field"]: item.get("value") for item in entry.get("extra") or [] if item.get("field")}
    for field in entry.get("timestampFields") or []:
        extra[field] = SERVER_TIMESTAMP
    return extra


def award_points_or_defer(store, uid: str, source: str, points: int = 0, increments: dict | None = None, extra: dict | None = None) -> bool:
    """Best-effort award. A failure is queued in the outbox instead of failing the caller."""
    try:
        award_points(store, uid, points, increments, extra)
        return True
    except Exception as err:
        print(f"[{source}] stats update deferred:", err, flush=True)
        reason = str(err)[:200]
    values, timestamps = _pack_extra(extra)
    try:
        store.add("pendingStatUpdates", {
            "userId": uid,
            "source": source,
            "points": int(points or 0),
            "increments": increments or {},
            "extra": values,
            "timestampFields": timestamps,
            "error": reason,
            "createdAt": SERVER_TIMESTAMP,
        })
    except Exception as outbox_error:
        print(f"[{source}] could not queue deferred stats:", outbox_error, flush=True)
    return False


def _replay_one(store, uid: str, entry_id: str) -> bool:
    """Apply one queued award and delete it in the same commit.

    Returns False when another request already claimed the entry.
    """
    def apply(txn):
        entry = txn.get("pendingStatUpdates", entry_id)
        if entry is None or entry.get("userId") != uid:
            return False
        user = txn.get("users", uid)
        updates = _stat_updates(
            user, uid, entry.get("points") or 0, entry.get("increments") or {}, _unpack_extra(entry),
        )
        txn.update("users", uid, updates)
        txn.delete("pendingStatUpdates", entry_id)
        return True

    return store.run_transaction(apply)


def replay_pending_stats(store, uid: str) -> int:
    """Apply queued awards for a user; returns how many were applied."""
    applied = 0
    for entry in store.query("pendingStatUpdates", [("userId", "==", uid)]):
        try:
            if _replay_one(store, uid, entry["id"]):
                applied += 1
        except Exception as e:
            print("[user/stats] replay failed, will retry later:", e, flush=True)
            break
    return applied


def public_user(user: dict) -> dict:
    return {
        "id": user.get("id"),
        "email": user.get("email"),
        "displayName": user.get("displayName"),
        "photoURL": user.get("photoURL"),
        "role": user.get("role") or "student",
    }
