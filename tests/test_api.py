from conftest import PASSWORD


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert "timestamp" in body


def test_register_login_me_flow(client):
    r = client.post("/api/auth/register", json={"email": "NewUser@Example.com", "password": PASSWORD, "name": "New User"})
    assert r.status_code == 201
    body = r.json()
    assert body["token"]
    assert body["user"]["email"] == "newuser@example.com"
    assert body["user"]["name"] == "New User"
    assert body["user"]["role"] == "user"
    assert "password" not in body["user"] and "passwordHash" not in body["user"]

    r = client.post("/api/auth/login", json={"email": "newuser@example.com", "password": PASSWORD})
    assert r.status_code == 200
    token = r.json()["token"]

    r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200
    assert r.json()["email"] == "newuser@example.com"
    assert "passwordHash" not in r.json()


def test_register_duplicate_email_is_case_insensitive(client):
    r = client.post("/api/auth/register", json={"email": "Test@x.com", "password": PASSWORD, "name": "First"})
    assert r.status_code == 201

    for email in ("Test@x.com", "test@x.com", "TEST@X.COM"):
        r = client.post("/api/auth/register", json={"email": email, "password": PASSWORD, "name": "Second"})
        assert r.status_code == 400
        assert r.json()["error"] == "User already exists"


def test_register_rejects_weak_password(client):
    r = client.post("/api/auth/register", json={"email": "weak@example.com", "password": "weak", "name": "Weak User"})
    assert r.status_code == 400
    body = r.json()
    assert body["error"] == "Validation failed"
    assert isinstance(body["details"], list)
    assert any(d["field"] == "password" for d in body["details"])


def test_register_rejects_password_without_special_char(client):
    r = client.post("/api/auth/register", json={"email": "weak@example.com", "password": "NoSpecial123", "name": "Weak User"})
    assert r.status_code == 400
    assert "special character" in r.json()["details"][0]["message"]


def test_register_rejects_invalid_email_and_name(client):
    r = client.post("/api/auth/register", json={"email": "invalid-email", "password": PASSWORD, "name": "Invalid User"})
    assert r.status_code == 400
    assert r.json()["error"] == "Validation failed"

    r = client.post("/api/auth/register", json={"email": "ok@example.com", "password": PASSWORD, "name": "R2D2"})
    assert r.status_code == 400
    assert r.json()["details"][0]["message"] == "Name can only contain letters and spaces"


def test_register_missing_fields(client):
    r = client.post("/api/auth/register", json={})
    assert r.status_code == 400
    body = r.json()
    assert body["error"] == "Validation failed"
    fields = {d["field"] for d in body["details"]}
    assert {"email", "password", "name"} <= fields


def test_login_does_not_reveal_which_part_was_wrong(client, make_user):
    make_user(email="known@example.com")

    r = client.post("/api/auth/login", json={"email": "unknown@example.com", "password": PASSWORD})
    assert r.status_code == 401
    assert r.json()["error"] == "Invalid credentials"

    r = client.post("/api/auth/login", json={"email": "known@example.com", "password": "WrongPassword123!"})
    assert r.status_code == 401
    assert r.json()["error"] == "Invalid credentials"


def test_login_missing_credentials(client):
    r = client.post("/api/auth/login", json={})
    assert r.status_code == 400
    assert r.json()["error"] == "Validation failed"


def test_error_bodies_never_use_detail_key(client):
    r = client.get("/api/does-not-exist")
    assert r.status_code == 404
    assert "error" in r.json()
    assert "detail" not in r.json()
