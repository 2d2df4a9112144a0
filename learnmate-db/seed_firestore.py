"""
Seeds the LearnMate Firestore project with sample data.

Run from the repository root:  python learnmate-db/seed_firestore.py
"""

import os
import sys

from werkzeug.security import generate_password_hash

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), ".."))

from api_auth import new_user_doc  # noqa: E402
from scoring import level_for_points  # noqa: E402
from store import SERVER_TIMESTAMP  # noqa: E402


# --- USERS ---
USERS = [
    ("seed-luna", "luna@learnmate.dev", "Luna", 420, 6),
    ("seed-orion", "orion@learnmate.dev", "Orion", 310, 3),
    ("seed-nova", "nova@learnmate.dev", "Nova", 95, 1),
]

# --- STUDY BUDDY PREFERENCES ---
BUDDY_PREFERENCES = [
    ("seed-luna", "Calculus", "intermediate", {"timezone": "UTC", "pace": "steady"}),
    ("seed-orion", "Calculus", "intermediate", {"timezone": "UTC+1", "pace": "fast"}),
    ("seed-nova", "Astronomy", "beginner", {"timezone": "UTC", "pace": "relaxed"}),
]

# --- DISCUSSIONS ---
DISCUSSIONS = [
    ("seed-luna", "Calculus", "Intuition for derivatives?", "How do you picture the derivative of x^2?"),
    ("seed-nova", "Astronomy", "Why is Mars red?", "Is it really just iron oxide?"),
]

# --- CHALLENGES ---
CHALLENGES = [
    ("7 Days of Calculus", "Calculus", 7, 10),
    ("Astronomy Sprint", "Astronomy", 14, 5),
]


def seed(store, password: str = "learnmate123") -> dict:
    """Write the sample documents through a DocumentStore; returns counts per collection."""
    counts = {}

    for uid, email, name, points, streak in USERS:
        doc = new_user_doc(email, name)
        doc["password_hash"] = generate_password_hash(password)
        doc["stats"].update({
            "totalPoints": points,
            "level": level_for_points(points),
            "currentStreak": streak,
            "longestStreak": streak,
        })
        store.set("users", uid, doc)
    counts["users"] = len(USERS)

    for uid, topic, level, prefs in BUDDY_PREFERENCES:
        store.set("studyBuddyPreferences", uid, {
            "userId": uid,
            "topic": topic,
            "skillLevel": level,
            "studyPreferences": prefs,
            "updatedAt": SERVER_TIMESTAMP,
        })
    counts["studyBuddyPreferences"] = len(BUDDY_PREFERENCES)

    names = {uid: name for uid, _, name, _, _ in USERS}
    for uid, topic, title, content in DISCUSSIONS:
        store.add("discussions", {
            "title": title,
            "content": content,
            "topic": topic,
            "tags": [topic.lower()],
            "author": {"userId": uid, "displayName": names[uid], "photoURL": None},
            "replies": 0,
            "likes": 0,
            "createdAt": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
        })
    counts["discussions"] = len(DISCUSSIONS)

    for name, topic, days, seats in CHALLENGES:
        store.add("challenges", {
            "name": name,
            "description": f"Study {topic} every day for {days} days",
            "topic": topic,
            "durationDays": days,
            "maxParticipants": seats,
            "currentParticipants": 0,
            "difficulty": "beginner",
            "status": "active",
            "rewards": {"points": days * 100, "badge": f"{name} Champion"},
            "createdBy": "seed-luna",
            "createdAt": SERVER_TIMESTAMP,
        })
    counts["challenges"] = len(CHALLENGES)

    return counts


if __name__ == "__main__":
    from app import build_store, load_config

    counts = seed(build_store(load_config()))
    print("🌙 Sample data inserted successfully!", counts, flush=True)
