import json

import pytest


PATH_JSON = json.dumps({
    "name": "Calculus Basics",
    "description": "From limits to integrals",
    "steps": [
        {"conceptId": "limits", "title": "Limits", "resources": [{"title": "Limits 101", "type": "video"}]},
        {"conceptId": "derivatives", "title": "Derivatives"},
    ],
})


@pytest.fixture
def path_id(client, ai, auth):
    _, headers = auth
    ai.queue(PATH_JSON)
    resp = client.post("/api/learning/generate",
                       json={"domain": "Math", "subdomain": "Calculus", "topic": "Derivatives"},
                       headers=headers)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()["data"]["id"]


# ============================================================================
# PATHS
# ============================================================================

def test_generate_path(client, store, path_id):
    path = store.get("learningPaths", path_id)
    assert path["status"] == "active"
    assert path["progress"] == 0
    assert [s["status"] for s in path["steps"]] == ["available", "locked"]


def test_generate_requires_fields_and_fails_on_ai_error(client, ai, auth):
    _, headers = auth
    resp = client.post("/api/learning/generate", json={"domain": "Math"}, headers=headers)
    assert resp.status_code == 400
    ai.queue(RuntimeError("down"))
    resp = client.post("/api/learning/generate",
                       json={"domain": "Math", "subdomain": "Calculus", "topic": "Limits"}, headers=headers)
    assert resp.status_code == 500


def test_complete_steps_finishes_path(client, store, auth, path_id):
    uid, headers = auth
    resp = client.post(f"/api/learning/paths/{path_id}/steps/step-1/complete", headers=headers)
    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["progress"] == 50
    assert [s["status"] for s in data["steps"]] == ["completed", "available"]

    resp = client.post(f"/api/learning/paths/{path_id}/steps/step-2/complete", headers=headers)
    data = resp.get_json()["data"]
    assert data["progress"] == 100
    assert data["status"] == "completed"
    assert data["completedAt"]
    assert store.get("users", uid)["stats"]["completedConcepts"] == 2

    resp = client.post(f"/api/learning/paths/{path_id}/steps/step-9/complete", headers=headers)
    assert resp.status_code == 404


def test_completing_a_step_twice_counts_once(client, store, auth, path_id):
    uid, headers = auth
    for _ in range(3):
        resp = client.post(f"/api/learning/paths/{path_id}/steps/step-1/complete", headers=headers)
        assert resp.status_code == 200
    body = resp.get_json()
    assert body["message"] == "Step already completed"
    assert body["data"]["progress"] == 50
    assert store.get("users", uid)["stats"]["completedConcepts"] == 1


def test_path_owner_checks(client, register, auth, path_id):
    _, headers = auth
    _, other = register(email="other@example.com", name="Other")
    assert client.get(f"/api/learning/paths/{path_id}", headers=other).status_code == 403
    assert client.delete(f"/api/learning/paths/{path_id}", headers=other).status_code == 403
    assert client.get("/api/learning/paths/nope", headers=headers).status_code == 404
    assert client.get(f"/api/learning/paths/{path_id}", headers=headers).status_code == 200


def test_update_path_recomputes_progress_and_sets_completed_once(client, store, auth, path_id):
    _, headers = auth
    steps = [{"id": "a", "status": "completed"}, {"id": "b", "status": "completed"},
             {"id": "c", "status": "locked"}, {"id": "d", "status": "locked"}]
    resp = client.put(f"/api/learning/paths/{path_id}", json={"steps": steps}, headers=headers)
    assert resp.get_json()["data"]["progress"] == 50

    client.put(f"/api/learning/paths/{path_id}", json={"status": "completed"}, headers=headers)
    first = store.get("learningPaths", path_id)["completedAt"]
    client.put(f"/api/learning/paths/{path_id}", json={"status": "completed"}, headers=headers)
    assert store.get("learningPaths", path_id)["completedAt"] == first

    resp = client.put(f"/api/learning/paths/{path_id}", json={"status": "bogus"}, headers=headers)
    assert resp.status_code == 400


def test_create_list_delete_paths(client, auth, path_id):
    _, headers = auth
    resp = client.post("/api/learning/paths", json={"name": "Mine", "steps": []}, headers=headers)
    assert resp.status_code == 201
    listed = client.get("/api/learning/paths", headers=headers).get_json()
    assert listed["meta"]["total"] == 2
    assert client.delete(f"/api/learning/paths/{path_id}", headers=headers).status_code == 200
    assert client.get("/api/learning/paths", headers=headers).get_json()["meta"]["total"] == 1


# ============================================================================
# PROGRESS
# ============================================================================

def test_progress_upsert_accumulates_time(client, store, auth):
    _, headers = auth
    first = client.post("/api/learning/progress",
                        json={"conceptId": "limits", "resourceId": "r1", "status": "in-progress",
                              "timeSpentMinutes": 10},
                        headers=headers)
    assert first.status_code == 201
    client.post("/api/learning/progress",
                json={"conceptId": "limits", "resourceId": "r1", "status": "completed", "timeSpentMinutes": 5},
                headers=headers)
    [entry] = store.all("progress")
    assert entry["timeSpentMinutes"] == 15
    assert entry["status"] == "completed"
    completed_at = entry["completedAt"]

    client.post("/api/learning/progress",
                json={"conceptId": "limits", "resourceId": "r1", "status": "completed"}, headers=headers)
    assert store.all("progress")[0]["completedAt"] == completed_at

    resp = client.get("/api/learning/progress?conceptId=limits", headers=headers)
    assert len(resp.get_json()["data"]) == 1
    assert client.post("/api/learning/progress", json={}, headers=headers).status_code == 400


# ============================================================================
# SESSIONS
# ============================================================================

def _start(client, headers):
    resp = client.post("/api/learning/session", json={"resourceId": "video-1"}, headers=headers)
    assert resp.status_code == 201
    return resp.get_json()["data"]["sessionId"]


def test_session_engagement(client, store, auth):
    _, headers = auth
    sid = _start(client, headers)
    resp = client.put("/api/learning/session", json={"sessionId": sid, "watchTime": 1800, "focusTime": 1500},
                      headers=headers)
    assert resp.get_json()["data"]["engagementScore"] == 83

    client.put("/api/learning/session", json={"sessionId": sid, "watchTime": 0, "focusTime": 0},
               headers=headers)
    assert store.get("learningSessions", sid)["engagementScore"] == 0


def test_end_completed_session_awards_points(client, store, auth):
    uid, headers = auth
    sid = _start(client, headers)
    client.put("/api/learning/session", json={"sessionId": sid, "watchTime": 125, "focusTime": 100},
               headers=headers)
    resp = client.delete(f"/api/learning/session?sessionId={sid}&completed=true&progress=100", headers=headers)
    body = resp.get_json()
    assert body["stats"]["pointsEarned"] == 10
    assert body["statsUpdated"] is True
    session = store.get("learningSessions", sid)
    assert session["completed"] is True
    assert session["status"] == "completed"
    stats = store.get("users", uid)["stats"]
    assert stats["totalPoints"] == 10
    assert stats["completedResources"] == 1


def test_end_incomplete_session_awards_nothing(client, store, auth):
    uid, headers = auth
    sid = _start(client, headers)
    client.put("/api/learning/session", json={"sessionId": sid, "watchTime": 600, "focusTime": 600},
               headers=headers)
    resp = client.delete(f"/api/learning/session?sessionId={sid}", headers=headers)
    assert resp.get_json()["stats"]["pointsEarned"] == 0
    assert store.get("users", uid)["stats"]["totalPoints"] == 0


def test_session_ends_only_once(client, store, auth):
    uid, headers = auth
    sid = _start(client, headers)
    client.put("/api/learning/session", json={"sessionId": sid, "watchTime": 600, "focusTime": 600},
               headers=headers)
    first = client.delete(f"/api/learning/session?sessionId={sid}&completed=true", headers=headers)
    assert first.status_code == 200
    second = client.delete(f"/api/learning/session?sessionId={sid}&completed=true", headers=headers)
    assert second.status_code == 409
    stats = store.get("users", uid)["stats"]
    assert stats["totalPoints"] == 50
    assert stats["completedResources"] == 1
    assert stats["totalMinutesLearned"] == 10


def test_session_times_must_be_numbers(client, store, auth):
    uid, headers = auth
    sid = _start(client, headers)
    for bad in ({"watchTime": "600", "focusTime": "600"}, {"focusTime": -5}, {"pauseCount": True}):
        resp = client.put("/api/learning/session", json={"sessionId": sid, **bad}, headers=headers)
        assert resp.status_code == 400, bad
    assert store.get("learningSessions", sid)["totalDuration"] == 0

    resp = client.delete(f"/api/learning/session?sessionId={sid}&completed=true", headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()["stats"]["pointsEarned"] == 0


def test_deferred_session_award_keeps_last_active(client, store, auth):
    uid, headers = auth
    sid = _start(client, headers)
    client.put("/api/learning/session", json={"sessionId": sid, "watchTime": 120, "focusTime": 120},
               headers=headers)
    store.broken.add("users")
    resp = client.delete(f"/api/learning/session?sessionId={sid}&completed=true", headers=headers)
    assert resp.get_json()["statsUpdated"] is False
    store.broken.discard("users")

    client.get("/api/user/stats", headers=headers)
    stats = store.get("users", uid)["stats"]
    assert stats["totalPoints"] == 10
    assert stats["lastActive"]


def test_session_ownership(client, register, auth):
    _, headers = auth
    sid = _start(client, headers)
    _, other = register(email="other@example.com", name="Other")
    resp = client.put("/api/learning/session", json={"sessionId": sid, "progress": 10}, headers=other)
    assert resp.status_code == 403
    assert client.delete("/api/learning/session?sessionId=missing", headers=headers).status_code == 404
    assert client.post("/api/learning/session", json={}, headers=headers).status_code == 400


def test_session_summary(client, auth):
    _, headers = auth
    sid = _start(client, headers)
    client.put("/api/learning/session", json={"sessionId": sid, "watchTime": 120, "focusTime": 60},
               headers=headers)
    client.delete(f"/api/learning/session?sessionId={sid}&completed=true", headers=headers)
    _start(client, headers)

    body = client.get("/api/learning/session/summary?days=7", headers=headers).get_json()
    summary = body["summary"]
    assert summary["totalSessions"] == 2
    assert summary["completedSessions"] == 1
    assert summary["completionRate"] == 50
    assert summary["totalLearningTime"] == 120
    assert summary["currentStreak"] == 1
    assert len(body["dailyStats"]) == 7
    assert body["dailyStats"][-1]["sessions"] == 2
    assert len(body["recentSessions"]) == 2


# ============================================================================
# BRANCHES
# ============================================================================

BRANCHES_JSON = json.dumps({
    "branches": [
        {"name": "Build It", "type": "project-based", "description": "Projects first", "estimatedHours": 12,
         "steps": [{"title": "Tangent line plotter", "type": "project", "estimatedMinutes": 90,
                    "resources": ["Notebook"]}],
         "projects": ["Plotter"], "outcomes": ["Intuition"]},
        {"name": "Proofs", "type": "theory-heavy",
         "steps": [{"title": "Epsilon-delta", "type": "reading"}]},
    ],
    "recommendation": "Build It suits you",
})


def test_branches_generated_for_owned_path(client, ai, store, auth, path_id):
    _, headers = auth
    ai.queue(BRANCHES_JSON)
    resp = client.post("/api/learning/branch",
                       json={"pathId": path_id, "currentStep": "step-1", "branchOption": "project-based"},
                       headers=headers)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["meta"]["aiGenerated"] is True
    assert [b["id"] for b in body["data"]["branches"]] == ["branch_1", "branch_2"]
    assert body["data"]["recommendation"] == "Build It suits you"
    assert "Calculus Basics" in ai.prompts[-1]
    assert len(store.get("learningPaths", path_id)["branches"]) == 2


def test_branches_fall_back_when_ai_fails(client, ai, auth, path_id):
    _, headers = auth
    ai.queue(RuntimeError("down"))
    body = client.post("/api/learning/branch", json={"pathId": path_id, "currentStep": "step-1"},
                       headers=headers).get_json()
    assert body["meta"]["aiGenerated"] is False
    assert [b["type"] for b in body["data"]["branches"]] == ["project-based", "theory-heavy"]


def test_branch_validation_and_ownership(client, register, auth, path_id):
    _, headers = auth
    _, other = register(email="other@example.com", name="Other")
    assert client.post("/api/learning/branch", json={"pathId": path_id}, headers=headers).status_code == 400
    resp = client.post("/api/learning/branch",
                       json={"pathId": path_id, "currentStep": "step-1", "branchOption": "scenic"}, headers=headers)
    assert resp.status_code == 400
    resp = client.post("/api/learning/branch", json={"pathId": path_id, "currentStep": "step-1"}, headers=other)
    assert resp.status_code == 403
    resp = client.post("/api/learning/branch", json={"pathId": "nope", "currentStep": "step-1"}, headers=headers)
    assert resp.status_code == 404


def test_activate_and_list_branches(client, ai, store, auth, path_id):
    _, headers = auth
    ai.queue(BRANCHES_JSON)
    client.post("/api/learning/branch", json={"pathId": path_id, "currentStep": "step-1"}, headers=headers)

    resp = client.put("/api/learning/branch", json={"pathId": path_id, "branchId": "branch_9"}, headers=headers)
    assert resp.status_code == 404
    client.put("/api/learning/branch", json={"pathId": path_id, "branchId": "branch_1"}, headers=headers)
    data = client.put("/api/learning/branch", json={"pathId": path_id, "branchId": "branch_2"},
                      headers=headers).get_json()["data"]
    assert data["activeBranch"] == "branch_2"
    assert data["previousBranch"] == "branch_1"

    body = client.get(f"/api/learning/branch?pathId={path_id}", headers=headers).get_json()
    assert body["meta"]["total"] == 2
    assert [b["isActive"] for b in body["data"]] == [False, True]
    assert client.get("/api/learning/branch", headers=headers).status_code == 400
