import json

import pytest
from fastapi.testclient import TestClient

from conftest import face
from votex.main import create_app, status_for
from votex.errors import AlreadyVoted, CaptureUnavailable, DuplicateBiometric, MalformedDocument, NotAdmin, WeakPassword
from votex.security import create_access_token


@pytest.fixture
def client(ledger):
    return TestClient(create_app(ledger))


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


def admin(client):
    r = client.post("/admin/login", json={"username": "admin", "password": "admin123"})
    assert r.status_code == 200
    assert r.json()["token_type"] == "bearer"
    return bearer(r.json()["access_token"])


def login(client, username, password="secret1"):
    r = client.post("/auth/login", json={"username": username, "password": password})
    assert r.status_code == 200
    return bearer(r.json()["access_token"])


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"


def test_register_login_vote_flow(client, ledger):
    boss = admin(client)
    r = client.patch("/admin/policy", json={"requireFaceCheck": False}, headers=boss)
    assert r.json()["requireFaceCheck"] is False

    r = client.post("/auth/register", json={"username": "alice", "password": "secret1"})
    assert r.status_code == 200
    assert r.json()["message"] == "Welcome to VoteX, alice!"
    alice = bearer(r.json()["access_token"])

    r = client.post("/vote/cast", json={"option": "Option B"}, headers=alice)
    assert r.status_code == 200

    r = client.post("/vote/cast", json={"option": "Option B"}, headers=alice)
    assert r.status_code == 409
    assert r.json() == {"detail": "You have already voted!", "error": "AlreadyVoted"}

    status = client.get("/vote/status", headers=alice).json()
    assert status["voted"] is True and status["choice"] == "Option B" and status["can_vote"] is False

    results = client.get("/vote/results", headers=alice).json()
    assert results["total"] == 1
    assert {"option": "Option B", "count": 1, "percent": 100} in results["results"]


def test_vote_requires_login(client):
    r = client.post("/vote/cast", json={"option": "Option A"})
    assert r.status_code == 401
    assert r.json()["error"] == "Unauthenticated"


def test_logged_in_session_needs_the_voters_token(client, ledger):
    ledger.registry.register("alice", "secret1")
    ledger.registry.register("bob", "secret1")
    bob = login(client, "bob")
    login(client, "alice")

    # alice holds the session; neither no token nor bob's token acts for her
    assert client.post("/vote/cast", json={"option": "Option A"}).status_code == 401
    assert client.post("/vote/cast", json={"option": "Option A"}, headers=bob).status_code == 401
    assert client.get("/vote/status", headers=bearer("not-a-token")).status_code == 401
    assert ledger.engine.total_votes() == 0


def test_register_validation_errors(client):
    r = client.post("/auth/register", json={"username": "ab", "password": "secret1"})
    assert r.status_code == 400
    assert r.json()["error"] == "InvalidUsername"

    r = client.post("/auth/register", json={"username": "abc", "password": "12345"})
    assert r.status_code == 400
    assert r.json()["error"] == "WeakPassword"


def test_register_with_face_rejects_duplicate_person(client, ledger, camera):
    ledger.registry.register("alice", "secret1", embedding=face(1.0))
    camera.feed(face(1.0, 0.1))

    r = client.post("/auth/register", json={"username": "mallory", "password": "secret1", "enroll_face": True})
    assert r.status_code == 409
    assert r.json()["error"] == "DuplicateBiometric"
    assert "mallory" not in ledger.state.users


def test_face_vote_when_verification_required(client, ledger, camera):
    ledger.registry.register("alice", "secret1", embedding=face(1.0))
    alice = login(client, "alice")

    r = client.post("/vote/cast", json={"option": "Option A"}, headers=alice)
    assert r.status_code == 408
    assert ledger.engine.total_votes() == 0

    camera.feed(face(1.0, 0.02))
    r = client.post("/vote/cast", json={"option": "Option A"}, headers=alice)
    assert r.status_code == 200
    assert r.json()["verified_by"] == "biometric"


def test_login_errors_are_uniform(client, ledger):
    ledger.registry.register("alice", "secret1")
    unknown = client.post("/auth/login", json={"username": "nobody", "password": "secret1"})
    wrong = client.post("/auth/login", json={"username": "alice", "password": "nope"})
    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json() == wrong.json()


def test_admin_endpoints_require_admin(client):
    assert client.get("/admin/results").status_code == 403
    assert client.post("/admin/options", json={"name": "X"}).status_code == 403
    r = client.post("/admin/login", json={"username": "admin", "password": "wrong"})
    assert r.status_code == 401


def test_admin_session_is_not_shared_with_callers_without_the_token(client, ledger):
    boss = admin(client)
    assert ledger.session.is_admin

    assert client.get("/admin/export").status_code == 403
    assert client.get("/admin/export", headers=bearer("forged")).status_code == 403
    voter = bearer(create_access_token("admin", "user"))
    assert client.get("/admin/export", headers=voter).status_code == 403
    expired = bearer(create_access_token("admin", "admin", expires_minutes=-1))
    assert client.get("/admin/export", headers=expired).status_code == 403

    assert client.get("/admin/export", headers=boss).status_code == 200
    assert client.post("/admin/logout", headers=boss).status_code == 200
    assert client.get("/admin/export", headers=boss).status_code == 403


def test_admin_option_management(client, ledger):
    boss = admin(client)
    assert client.post("/admin/options", json={"name": "Option D"}, headers=boss).status_code == 201
    assert client.post("/admin/options", json={"name": "Option D"}, headers=boss).status_code == 400
    assert client.delete("/admin/options/Option A", headers=boss).status_code == 200
    assert client.delete("/admin/options/Option A", headers=boss).status_code == 400

    assert client.get("/admin/options", headers=boss).json()["options"] == ["Option B", "Option C", "Option D"]
    results = client.get("/admin/results", headers=boss).json()
    assert results["total"] == 0
    assert [row["option"] for row in results["results"]] == ["Option B", "Option C", "Option D"]


def test_results_hidden_from_voters(client, ledger):
    boss = admin(client)
    client.patch("/admin/policy", json={"showResultsToUsers": False}, headers=boss)
    ledger.registry.register("alice", "secret1")
    alice = login(client, "alice")

    body = client.get("/vote/results", headers=alice).json()
    assert body == {"hidden": True, "note": "Hidden by admin", "results": []}


def test_export_and_import(client, ledger):
    boss = admin(client)
    ledger.registry.register("alice", "secret1")
    r = client.get("/admin/export", headers=boss)
    assert r.status_code == 200
    assert "votex-data.json" in r.headers["content-disposition"]
    doc = r.json()
    assert set(doc) == {"users", "votes", "options", "userVotes", "settings"}

    doc["options"] = ["Yes", "No"]
    doc["votes"] = {"Yes": 2, "No": 1}
    r = client.post("/admin/import", content=json.dumps(doc), headers=boss)
    assert r.status_code == 200
    assert ledger.state.options == ["Yes", "No"]

    r = client.post("/admin/import", content="{oops", headers=boss)
    assert r.status_code == 422
    assert r.json()["error"] == "MalformedDocument"
    assert ledger.state.options == ["Yes", "No"]


def test_admin_reset(client, ledger):
    boss = admin(client)
    client.patch("/admin/policy", json={"requireFaceCheck": False, "allowMultipleVotes": True}, headers=boss)
    ledger.registry.register("alice", "secret1")
    alice = login(client, "alice")
    client.post("/vote/cast", json={"option": "Option A"}, headers=alice)
    client.post("/vote/cast", json={"option": "Option A"}, headers=alice)
    assert ledger.engine.total_votes() == 2

    assert client.post("/admin/reset", headers=boss).status_code == 200
    assert ledger.engine.total_votes() == 0


def test_enroll_platform_and_login(client, ledger):
    ledger.registry.register("dave", "secret1")
    dave = login(client, "dave")
    assert client.post("/auth/enroll/platform", headers=dave).status_code == 200
    assert client.post("/auth/enroll/retina", headers=dave).status_code == 404
    client.post("/auth/logout", headers=dave)
    assert client.get("/auth/me", headers=dave).json()["username"] is None

    r = client.post("/auth/login/platform", json={"username": "dave"})
    assert r.status_code == 200
    dave = bearer(r.json()["access_token"])
    assert client.get("/auth/me", headers=dave).json()["username"] == "dave"
    assert client.get("/auth/me").json()["username"] is None


def test_password_strength(client):
    assert client.post("/auth/password-strength", json={"password": "Abcdef1!"}).json() == {"score": 87}


@pytest.mark.parametrize("exc,status", [
    (WeakPassword(), 400),
    (AlreadyVoted(), 409),
    (NotAdmin(), 403),
    (DuplicateBiometric(), 409),
    (CaptureUnavailable(), 503),
    (MalformedDocument(), 422),
])
def test_status_mapping(exc, status):
    assert status_for(exc) == status
