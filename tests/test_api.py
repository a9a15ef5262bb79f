"""
End-to-end tests of the HTTP API.

These cover:
- Signup and login ceremonies with the session cookie
- Passkey, session, organization and token management
- Capture and task routes, including error rendering
"""

import httpx

from yoink import globals
from yoink.config import AUTH_COOKIE_NAME
from yoink.memberships import SignupResult
from tests.conftest import auth_headers, bearer


def session_from(resp: httpx.Response) -> str:
    """The session id set by a login response."""
    for header in resp.headers.get_list("set-cookie"):
        name, _, rest = header.partition("=")
        if name == AUTH_COOKIE_NAME:
            return rest.split(";", 1)[0]
    raise AssertionError("No session cookie set")


async def signup(client: httpx.AsyncClient, email: str) -> httpx.Response:
    resp = await client.post("/api/auth/signup/options", json={"email": email})
    assert resp.status_code == 200
    data = resp.json()
    assert data["options"]["user"]["name"] == email
    resp = await client.post(
        "/api/auth/signup/verify",
        json={
            "email": email,
            "user_id": data["user_id"],
            "challenge": data["challenge"],
            "response": {"id": f"{email}-key", "challenge": data["challenge"]},
        },
    )
    client.cookies.clear()
    return resp


async def test_health(client: httpx.AsyncClient):
    resp = await client.get("/api/health")
    assert resp.json() == {"status": "ok"}


# -------------------- Signup and login --------------------


async def test_signup_logs_in(client: httpx.AsyncClient):
    resp = await signup(client, "carol@example.com")
    assert resp.status_code == 201
    cookie = resp.headers["set-cookie"]
    assert "HttpOnly" in cookie
    assert "Secure" in cookie
    assert "samesite=lax" in cookie.lower()

    me = await client.get("/api/auth/me", headers=auth_headers(session_from(resp)))
    assert me.json()["email"] == "carol@example.com"
    memberships = await client.get(
        "/api/auth/memberships", headers=auth_headers(session_from(resp))
    )
    (personal,) = memberships.json()
    assert personal["is_personal_org"] is True
    assert personal["role"] == "owner"
    passkeys = await client.get(
        "/api/auth/passkeys", headers=auth_headers(session_from(resp))
    )
    (credential,) = passkeys.json()
    assert credential["id"] == "carol@example.com-key"
    assert "public_key" not in credential


async def test_signup_duplicate_email(client: httpx.AsyncClient, alice: SignupResult):
    resp = await signup(client, "alice@example.com")
    assert resp.status_code == 409
    assert resp.json()["code"] == "EMAIL_ALREADY_REGISTERED"


async def test_signup_with_swapped_user_id(client: httpx.AsyncClient, services):
    opts = (
        await client.post("/api/auth/signup/options", json={"email": "e@example.com"})
    ).json()
    resp = await client.post(
        "/api/auth/signup/verify",
        json={
            "email": "e@example.com",
            "user_id": "chosen-by-attacker",
            "challenge": opts["challenge"],
            "response": {"id": "k", "challenge": opts["challenge"]},
        },
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "VERIFICATION_FAILED"
    assert await globals.db.instance.get_user_by_email("e@example.com") is None


async def test_signup_tampered_challenge(client: httpx.AsyncClient, services):
    opts = (
        await client.post("/api/auth/signup/options", json={"email": "f@example.com"})
    ).json()
    payload, sig = opts["challenge"].split(".")
    forged = f"{payload}.{sig[::-1]}"
    resp = await client.post(
        "/api/auth/signup/verify",
        json={
            "email": "f@example.com",
            "user_id": opts["user_id"],
            "challenge": forged,
            "response": {"id": "k", "challenge": forged},
        },
    )
    assert resp.status_code == 400
    assert resp.json()["code"] in ("CHALLENGE_TAMPERED", "CHALLENGE_INVALID")


async def test_signup_invalid_body(client: httpx.AsyncClient, services):
    resp = await client.post("/api/auth/signup/options", json={"mail": "x"})
    assert resp.status_code == 422


async def test_login(client: httpx.AsyncClient, alice: SignupResult):
    opts = (await client.post("/api/auth/login/options", json={})).json()
    resp = await client.post(
        "/api/auth/login/verify",
        json={
            "challenge": opts["challenge"],
            "response": {"id": "alice-key", "challenge": opts["challenge"]},
        },
    )
    client.cookies.clear()
    assert resp.status_code == 200
    assert resp.json()["user_id"] == alice.user.id
    assert resp.json()["organization_id"] == alice.organization.id
    session_id = session_from(resp)
    assert (await globals.sessions.instance.resolve(session_id)).user_id == alice.user.id


async def test_login_unknown_credential(client: httpx.AsyncClient, alice: SignupResult):
    opts = (await client.post("/api/auth/login/options")).json()
    resp = await client.post(
        "/api/auth/login/verify",
        json={
            "challenge": opts["challenge"],
            "response": {"id": "stolen-key", "challenge": opts["challenge"]},
        },
    )
    assert resp.status_code == 404
    assert resp.json()["code"] == "CREDENTIAL_NOT_FOUND"


async def test_logout(client: httpx.AsyncClient, alice_session: str):
    resp = await client.post("/api/auth/logout", headers=auth_headers(alice_session))
    assert resp.status_code == 200
    assert "Max-Age=0" in resp.headers["set-cookie"]
    resp = await client.get("/api/auth/me", headers=auth_headers(alice_session))
    assert resp.status_code == 401


# -------------------- Account management --------------------


async def test_add_and_delete_passkey(
    client: httpx.AsyncClient, alice: SignupResult, alice_session: str
):
    headers = auth_headers(alice_session)
    resp = await client.delete("/api/auth/passkeys/alice-key", headers=headers)
    assert resp.status_code == 409
    assert resp.json()["code"] == "CANNOT_DELETE_LAST_PASSKEY"

    opts = (await client.post("/api/auth/passkeys/options", headers=headers)).json()
    assert opts["options"]["excludeCredentials"] == [{"id": "alice-key"}]
    resp = await client.post(
        "/api/auth/passkeys",
        headers=headers,
        json={
            "challenge": opts["challenge"],
            "response": {"id": "laptop", "challenge": opts["challenge"]},
            "credential_name": "Laptop",
        },
    )
    assert resp.status_code == 201
    assert resp.json()["name"] == "Laptop"

    resp = await client.delete("/api/auth/passkeys/alice-key", headers=headers)
    assert resp.status_code == 200
    ids = [c["id"] for c in (await client.get("/api/auth/passkeys", headers=headers)).json()]
    assert ids == ["laptop"]


async def test_sessions(
    client: httpx.AsyncClient,
    alice: SignupResult,
    alice_session: str,
    bob: SignupResult,
):
    other = await globals.sessions.instance.create_session(alice.user.id)
    bobs = await globals.sessions.instance.create_session(bob.user.id)
    headers = auth_headers(alice_session)

    listed = (await client.get("/api/auth/sessions", headers=headers)).json()
    assert sorted(s["current"] for s in listed) == [False, True]
    listed_ids = {s["id"] for s in listed}
    assert not listed_ids & {alice_session, other.id}
    for public in listed_ids:
        resp = await client.get("/api/auth/me", headers=auth_headers(public))
        assert resp.status_code == 401
    current = next(s["id"] for s in listed if s["current"])
    other_public = next(s["id"] for s in listed if not s["current"])

    # Neither raw cookie values nor other users' sessions can be revoked
    for target in (other.id, bobs.id):
        resp = await client.delete(f"/api/auth/sessions/{target}", headers=headers)
        assert resp.status_code == 404
    resp = await client.delete(f"/api/auth/sessions/{other_public}", headers=headers)
    assert resp.status_code == 200
    listed = (await client.get("/api/auth/sessions", headers=headers)).json()
    assert [s["id"] for s in listed] == [current]
    resp = await client.get("/api/auth/me", headers=auth_headers(other.id))
    assert resp.status_code == 401


async def test_switch_and_leave_organization(
    client: httpx.AsyncClient,
    alice: SignupResult,
    alice_session: str,
    bob: SignupResult,
):
    headers = auth_headers(alice_session)
    resp = await client.post(
        "/api/auth/organization",
        headers=headers,
        json={"organization_id": bob.organization.id},
    )
    assert resp.status_code == 403
    assert resp.json()["code"] == "NOT_A_MEMBER"

    await globals.memberships.instance.add_member(alice.user.id, bob.organization.id)
    resp = await client.post(
        "/api/auth/organization",
        headers=headers,
        json={"organization_id": bob.organization.id},
    )
    assert resp.json()["organization_id"] == bob.organization.id

    resp = await client.delete(
        f"/api/auth/memberships/{alice.organization.id}", headers=headers
    )
    assert resp.status_code == 409
    assert resp.json()["code"] == "CANNOT_LEAVE_PERSONAL_ORG"

    resp = await client.delete(
        f"/api/auth/memberships/{bob.organization.id}", headers=headers
    )
    assert resp.status_code == 200
    me = (await client.get("/api/auth/me", headers=headers)).json()
    assert me["organization_id"] == alice.organization.id


async def test_tokens(
    client: httpx.AsyncClient, alice: SignupResult, alice_session: str
):
    headers = auth_headers(alice_session)
    resp = await client.post("/api/auth/tokens", headers=headers, json={"name": "CLI"})
    assert resp.status_code == 201
    created = resp.json()
    assert created["token"]["name"] == "CLI"
    assert created["raw_token"].startswith(created["token"]["id"] + ":")
    assert "token_hash" not in created["token"]

    listed = (await client.get("/api/auth/tokens", headers=headers)).json()
    assert [t["id"] for t in listed] == [created["token"]["id"]]

    resp = await client.get("/api/auth/me", headers=bearer(created["raw_token"]))
    assert resp.json()["user_id"] == alice.user.id

    resp = await client.delete(
        f"/api/auth/tokens/{created['token']['id']}", headers=headers
    )
    assert resp.status_code == 200
    resp = await client.delete(
        f"/api/auth/tokens/{created['token']['id']}", headers=headers
    )
    assert resp.status_code == 404
    resp = await client.get("/api/auth/me", headers=bearer(created["raw_token"]))
    assert resp.status_code == 401


# -------------------- Captures and tasks --------------------


async def test_capture_to_task_flow(
    client: httpx.AsyncClient, alice: SignupResult, alice_session: str
):
    headers = auth_headers(alice_session)
    resp = await client.post(
        "/api/captures/",
        headers=headers,
        json={"content": "Renew passport", "source_app": "share-sheet"},
    )
    assert resp.status_code == 201
    capture = resp.json()
    assert capture["status"] == "inbox"
    assert capture["organization_id"] == alice.organization.id

    inbox = (await client.get("/api/captures/?status=inbox", headers=headers)).json()
    assert [c["id"] for c in inbox["captures"]] == [capture["id"]]

    resp = await client.post(
        f"/api/captures/{capture['id']}/process",
        headers=headers,
        json={"due_date": "2024-01-01"},
    )
    assert resp.status_code == 201
    result = resp.json()
    assert result["task"]["title"] == "Renew passport"
    assert result["task"]["due_date"] == "2024-01-01"
    assert result["capture"]["status"] == "processed"

    resp = await client.post(f"/api/captures/{capture['id']}/process", headers=headers)
    assert resp.status_code == 409
    assert resp.json()["code"] == "CAPTURE_NOT_IN_INBOX"

    today = (await client.get("/api/tasks/?filter=today", headers=headers)).json()
    assert [t["id"] for t in today["tasks"]] == [result["task"]["id"]]

    resp = await client.post(
        f"/api/tasks/{result['task']['id']}/complete", headers=headers
    )
    assert resp.json()["completed_at"] == "2024-01-01T00:00:00Z"

    resp = await client.delete(f"/api/tasks/{result['task']['id']}", headers=headers)
    assert resp.status_code == 200
    resp = await client.get(f"/api/captures/{capture['id']}", headers=headers)
    assert resp.status_code == 404
    assert resp.json()["code"] == "CAPTURE_NOT_FOUND"


async def test_capture_trash_routes(
    client: httpx.AsyncClient, alice: SignupResult, alice_session: str
):
    headers = auth_headers(alice_session)
    capture = (
        await client.post("/api/captures/", headers=headers, json={"content": "junk"})
    ).json()
    cid = capture["id"]

    resp = await client.delete(f"/api/captures/{cid}", headers=headers)
    assert resp.status_code == 409
    assert resp.json()["code"] == "CAPTURE_NOT_IN_TRASH"

    await client.post(f"/api/captures/{cid}/pin", headers=headers)
    trashed = (await client.post(f"/api/captures/{cid}/trash", headers=headers)).json()
    assert trashed["status"] == "trashed"
    assert trashed["pinned_at"] is None

    resp = await client.post(f"/api/captures/{cid}/pin", headers=headers)
    assert resp.status_code == 409
    assert resp.json()["code"] == "CAPTURE_ALREADY_TRASHED"

    resp = await client.delete("/api/captures/trash", headers=headers)
    assert resp.json() == {"deleted": 1}


async def test_capture_update_and_snooze(
    client: httpx.AsyncClient, alice: SignupResult, alice_session: str
):
    headers = auth_headers(alice_session)
    capture = (
        await client.post(
            "/api/captures/", headers=headers, json={"content": "x", "title": "T"}
        )
    ).json()
    cid = capture["id"]

    resp = await client.patch(
        f"/api/captures/{cid}", headers=headers, json={"title": None}
    )
    assert resp.json()["title"] is None
    assert resp.json()["content"] == "x"

    resp = await client.post(
        f"/api/captures/{cid}/snooze",
        headers=headers,
        json={"until": "2023-12-31T00:00:00Z"},
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_SNOOZE_TIME"

    resp = await client.post(
        f"/api/captures/{cid}/snooze",
        headers=headers,
        json={"until": "2024-01-02T09:00:00Z"},
    )
    assert resp.status_code == 200
    assert resp.json()["snoozed_until"] == "2024-01-02T09:00:00Z"

    snoozed = (await client.get("/api/captures/?snoozed=true", headers=headers)).json()
    assert [c["id"] for c in snoozed["captures"]] == [cid]
    inbox = (await client.get("/api/captures/?snoozed=false", headers=headers)).json()
    assert inbox["captures"] == []


async def test_captures_isolated_between_orgs(
    client: httpx.AsyncClient,
    alice: SignupResult,
    alice_session: str,
    bob: SignupResult,
):
    theirs = await globals.captures.instance.create(
        bob.organization.id, bob.user.id, "bob's secret"
    )
    headers = auth_headers(alice_session)
    resp = await client.get(f"/api/captures/{theirs.id}", headers=headers)
    assert resp.status_code == 404
    resp = await client.post(f"/api/captures/{theirs.id}/trash", headers=headers)
    assert resp.status_code == 404
    listed = (await client.get("/api/captures/", headers=headers)).json()
    assert listed["captures"] == []


async def test_task_routes(
    client: httpx.AsyncClient, alice: SignupResult, alice_session: str
):
    headers = auth_headers(alice_session)
    resp = await client.post(
        "/api/tasks/", headers=headers, json={"title": "Plan trip", "due_date": "2024-01-10"}
    )
    assert resp.status_code == 201
    tid = resp.json()["id"]

    upcoming = (await client.get("/api/tasks/?filter=upcoming", headers=headers)).json()
    assert [t["id"] for t in upcoming["tasks"]] == [tid]

    resp = await client.patch(
        f"/api/tasks/{tid}", headers=headers, json={"due_date": None, "title": "Trip"}
    )
    assert resp.json()["due_date"] is None
    assert resp.json()["title"] == "Trip"

    resp = await client.post(f"/api/tasks/{tid}/pin", headers=headers)
    assert resp.json()["pinned_at"] is not None

    resp = await client.get("/api/tasks/?filter=bogus", headers=headers)
    assert resp.status_code == 422

    resp = await client.get("/api/tasks/missing", headers=headers)
    assert resp.status_code == 404
    assert resp.json()["code"] == "TASK_NOT_FOUND"


async def test_input_limits(
    client: httpx.AsyncClient, alice: SignupResult, alice_session: str
):
    headers = auth_headers(alice_session)
    for body in (
        {"content": ""},
        {"content": "x" * 10001},
        {"content": "ok", "title": "t" * 201},
        {"content": "ok", "source_app": "a" * 101},
    ):
        resp = await client.post("/api/captures/", headers=headers, json=body)
        assert resp.status_code == 422, body
    resp = await client.post(
        "/api/captures/",
        headers=headers,
        json={"content": "x" * 10000, "title": "t" * 200, "source_app": "a" * 100},
    )
    assert resp.status_code == 201
    capture = resp.json()

    for body in ({"content": ""}, {"title": "t" * 201}):
        resp = await client.patch(
            f"/api/captures/{capture['id']}", headers=headers, json=body
        )
        assert resp.status_code == 422, body

    for title in ("", "t" * 501):
        resp = await client.post("/api/tasks/", headers=headers, json={"title": title})
        assert resp.status_code == 422
        resp = await client.post(
            f"/api/captures/{capture['id']}/process",
            headers=headers,
            json={"title": title},
        )
        assert resp.status_code == 422
    resp = await client.post("/api/tasks/", headers=headers, json={"title": "t" * 500})
    assert resp.status_code == 201
    resp = await client.patch(
        f"/api/tasks/{resp.json()['id']}", headers=headers, json={"title": ""}
    )
    assert resp.status_code == 422

    for name in ("", "n" * 101):
        resp = await client.post("/api/auth/tokens", headers=headers, json={"name": name})
        assert resp.status_code == 422
    assert (await client.get("/api/auth/tokens", headers=headers)).json() == []
