from datetime import datetime, timedelta, timezone


def _today():
    return datetime.now(timezone.utc).date()


# ============================================================================
# SCREEN TIME
# ============================================================================

def test_screen_time_log_validation(client, auth):
    _, headers = auth
    resp = client.post("/api/screen-time/logs", json={"appName": "X", "appCategory": "gaming",
                                                      "durationMinutes": 5}, headers=headers)
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Invalid appCategory"
    resp = client.post("/api/screen-time/logs", json={"appName": "X"}, headers=headers)
    assert resp.status_code == 400


def test_screen_time_logs_filter_by_date_and_range(client, auth):
    _, headers = auth
    for day, mins in (("2025-10-01", 30), ("2025-10-02", 45), ("2025-10-05", 10)):
        resp = client.post("/api/screen-time/logs", json={
            "appName": "Anki", "appCategory": "educational", "durationMinutes": mins, "date": day,
        }, headers=headers)
        assert resp.status_code == 201

    one = client.get("/api/screen-time/logs?date=2025-10-02", headers=headers).get_json()
    assert [log["durationMinutes"] for log in one["data"]] == [45]

    ranged = client.get("/api/screen-time/logs?startDate=2025-10-01&endDate=2025-10-02", headers=headers)
    assert [log["date"] for log in ranged.get_json()["data"]] == ["2025-10-02", "2025-10-01"]

    assert client.get("/api/screen-time/logs?date=yesterday", headers=headers).status_code == 400


def test_screen_time_analytics(client, auth):
    _, headers = auth
    today = _today().isoformat()
    old = (_today() - timedelta(days=40)).isoformat()
    for app_name, category, mins, day in (
        ("VS Code", "productive", 90, today),
        ("Netflix", "entertainment", 30, today),
        ("Netflix", "entertainment", 500, old),
    ):
        client.post("/api/screen-time/logs", json={
            "appName": app_name, "appCategory": category, "durationMinutes": mins, "date": day,
        }, headers=headers)

    data = client.get("/api/screen-time/analytics?period=week", headers=headers).get_json()["data"]
    assert data["totalMinutes"] == 120
    assert data["focusScore"] == 75
    assert data["topApps"][0]["appName"] == "VS Code"
    assert data["insights"]

    assert client.get("/api/screen-time/analytics?period=year", headers=headers).status_code == 400


# ============================================================================
# MOTIVATION
# ============================================================================

def test_motivation_boost_uses_real_stats(client, ai, store, auth):
    uid, headers = auth
    store.update("users", uid, {"stats.currentStreak": 4, "stats.totalPoints": 250})
    ai.queue("Four days strong! Keep going.")
    resp = client.post("/api/motivation/boost", json={"context": {"strugglingWith": "integrals"}},
                       headers=headers)
    assert resp.status_code == 201
    assert resp.get_json()["data"]["message"] == "Four days strong! Keep going."
    assert "Current streak: 4 days" in ai.prompts[-1]
    assert "integrals" in ai.prompts[-1]

    listed = client.get("/api/motivation/boost", headers=headers).get_json()["data"]
    assert len(listed) == 1


def test_motivation_boost_ai_failure(client, ai, auth):
    _, headers = auth
    ai.queue(RuntimeError("down"))
    assert client.post("/api/motivation/boost", json={}, headers=headers).status_code == 500


# ============================================================================
# HABITS
# ============================================================================

def _create_habit(client, headers):
    resp = client.post("/api/habits/challenge", json={
        "name": "Learn 30 minutes daily", "type": "daily_learning", "targetValue": 30,
    }, headers=headers)
    assert resp.status_code == 201
    return resp.get_json()["data"]["id"]


def test_habit_create_validation(client, auth):
    _, headers = auth
    resp = client.post("/api/habits/challenge", json={"name": "x", "type": "nap", "targetValue": 1},
                       headers=headers)
    assert resp.status_code == 400
    assert client.post("/api/habits/challenge", json={"name": "x"}, headers=headers).status_code == 400


def test_habit_progress_is_idempotent_per_date(client, store, auth):
    _, headers = auth
    habit_id = _create_habit(client, headers)
    yesterday = (_today() - timedelta(days=1)).isoformat()
    today = _today().isoformat()

    client.patch("/api/habits/challenge", json={"habitId": habit_id, "date": yesterday, "value": 35},
                 headers=headers)
    first = client.patch("/api/habits/challenge", json={"habitId": habit_id, "date": today, "value": 40},
                         headers=headers).get_json()["data"]
    again = client.patch("/api/habits/challenge", json={"habitId": habit_id, "date": today, "value": 40},
                         headers=headers).get_json()["data"]
    assert first["currentStreak"] == again["currentStreak"] == 2

    habit = store.get("habitChallenges", habit_id)
    assert len(habit["progress"]) == 2
    assert habit["longestStreak"] == 2


def test_habit_zero_value_is_not_completed(client, store, auth):
    _, headers = auth
    habit_id = _create_habit(client, headers)
    data = client.patch("/api/habits/challenge", json={"habitId": habit_id, "date": _today().isoformat(),
                                                       "value": 0}, headers=headers).get_json()["data"]
    assert data["completed"] is False
    assert data["currentStreak"] == 0


def test_habit_patch_errors(client, register, auth):
    _, headers = auth
    habit_id = _create_habit(client, headers)
    _, other = register(email="other@example.com", name="Other")
    today = _today().isoformat()
    assert client.patch("/api/habits/challenge", json={"habitId": habit_id}, headers=headers).status_code == 400
    assert client.patch("/api/habits/challenge", json={"habitId": "nope", "date": today, "value": 1},
                        headers=headers).status_code == 404
    assert client.patch("/api/habits/challenge", json={"habitId": habit_id, "date": today, "value": 1},
                        headers=other).status_code == 403


def test_habit_dates_must_use_extended_form(client, store, auth):
    _, headers = auth
    habit_id = _create_habit(client, headers)
    resp = client.patch("/api/habits/challenge", json={"habitId": habit_id, "date": "2026-10-18", "value": 30},
                        headers=headers)
    assert resp.status_code == 200
    for day in ("20261018", "2026-10-18T00:00", "2026-02-30"):
        resp = client.patch("/api/habits/challenge", json={"habitId": habit_id, "date": day, "value": 30},
                            headers=headers)
        assert resp.status_code == 400, day
    assert [p["date"] for p in store.get("habitChallenges", habit_id)["progress"]] == ["2026-10-18"]

    resp = client.post("/api/screen-time/logs", json={"appName": "Docs", "appCategory": "productive",
                                                      "durationMinutes": 10, "date": "20261018"},
                       headers=headers)
    assert resp.status_code == 400
    assert client.get("/api/screen-time/logs?startDate=20261001", headers=headers).status_code == 400


def test_habit_completed_must_be_boolean(client, store, auth):
    _, headers = auth
    habit_id = _create_habit(client, headers)
    today = _today().isoformat()
    resp = client.patch("/api/habits/challenge",
                        json={"habitId": habit_id, "date": today, "value": 30, "completed": "false"},
                        headers=headers)
    assert resp.status_code == 400
    assert store.get("habitChallenges", habit_id)["progress"] == []

    data = client.patch("/api/habits/challenge",
                        json={"habitId": habit_id, "date": today, "value": 30, "completed": False},
                        headers=headers).get_json()["data"]
    assert data["completed"] is False
    assert data["currentStreak"] == 0


def test_habit_list_by_status(client, auth):
    _, headers = auth
    _create_habit(client, headers)
    body = client.get("/api/habits/challenge", headers=headers).get_json()
    assert body["meta"] == {"total": 1, "status": "active"}
    assert client.get("/api/habits/challenge?status=archived", headers=headers).get_json()["data"] == []
