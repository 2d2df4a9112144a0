def test_ping(client):
    resp = client.get("/api/ping")
    assert resp.status_code == 200
    assert resp.get_json()["success"] is True


def test_register_creates_user_with_defaults(client, store):
    resp = client.post("/api/auth/register", json={
        "email": "  Luna@Example.com ", "password": "secret123", "displayName": "Luna",
    })
    assert resp.status_code == 201
    body = resp.get_json()
    assert body["success"] is True
    assert body["data"]["token"]
    assert "password_hash" not in body["data"]["user"]

    [user] = store.all("users")
    assert user["email"] == "luna@example.com"
    assert user["stats"]["level"] == 1
    assert user["stats"]["totalPoints"] == 0
    assert user["preferences"]["dailyGoalMinutes"] == 60
    assert user["password_hash"] != "secret123"


def test_register_validation(client, register):
    resp = client.post("/api/auth/register", json={"email": "a@b.c", "password": "secret123"})
    assert resp.status_code == 400
    resp = client.post("/api/auth/register", json={"email": "a@b.c", "password": "123", "displayName": "A"})
    assert resp.status_code == 400
    assert "6 characters" in resp.get_json()["error"]

    register(email="dup@example.com")
    resp = client.post("/api/auth/register", json={
        "email": "DUP@example.com", "password": "secret123", "displayName": "Again",
    })
    assert resp.status_code == 409


def test_login_and_session(client, register):
    register(email="orion@example.com", name="Orion", password="hunter22")

    bad = client.post("/api/auth/login", json={"email": "orion@example.com", "password": "nope!!"})
    assert bad.status_code == 401
    assert bad.get_json() == {"success": False, "error": "Invalid email or password"}

    resp = client.post("/api/auth/login", json={"email": "orion@example.com", "password": "hunter22"})
    assert resp.status_code == 200
    token = resp.get_json()["data"]["token"]

    me = client.get("/api/auth/session", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    user = me.get_json()["data"]["user"]
    assert user["displayName"] == "Orion"
    assert user["stats"]["level"] == 1


def test_session_requires_auth(client):
    assert client.get("/api/auth/session").status_code == 401
    resp = client.get("/api/auth/session", headers={"Authorization": "Bearer forged"})
    assert resp.status_code == 401


def test_cookie_session_works_until_logout(client, register):
    register()
    assert client.get("/api/auth/session").status_code == 200
    assert client.post("/api/auth/logout").status_code == 200
    assert client.get("/api/auth/session").status_code == 401


def test_firebase_login_creates_and_reuses_user(client, store):
    resp = client.post("/api/auth/firebase-login", json={"idToken": "google-token-ada"})
    assert resp.status_code == 200
    assert resp.get_json()["data"]["user"]["id"] == "google-ada"
    assert store.get("users", "google-ada")["email"] == "ada@example.com"

    again = client.post("/api/auth/firebase-login", json={"idToken": "google-token-ada"})
    assert again.status_code == 200
    assert len(store.all("users")) == 1

    assert client.post("/api/auth/firebase-login", json={"idToken": "bogus"}).status_code == 401
    assert client.post("/api/auth/firebase-login", json={}).status_code == 400


def test_firebase_id_token_accepted_as_bearer(client):
    client.post("/api/auth/firebase-login", json={"idToken": "google-token-ada"})
    client.post("/api/auth/logout")
    resp = client.get("/api/auth/session", headers={"Authorization": "Bearer google-token-ada"})
    assert resp.status_code == 200
    assert resp.get_json()["data"]["user"]["id"] == "google-ada"


def test_unknown_route_uses_envelope(client):
    resp = client.get("/api/nope")
    assert resp.status_code == 404
    assert resp.get_json()["success"] is False
