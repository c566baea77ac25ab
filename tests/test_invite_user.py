import httpx
import pytest

from proxy_functions.config import settings

URL = f"{settings.api_prefix}/invite-user"
INVITE = "/auth/v1/invite"


def profile_lookup(role="admin", status="active"):
    return httpx.Response(200, json={"role": role, "status": status})


@pytest.fixture()
def invite_ok(fake_http):
    fake_http.add("POST", INVITE, httpx.Response(200, json={"id": "invitee-1", "email": "new@example.com"}))
    fake_http.add("POST", "/rest/v1/profiles", httpx.Response(201))
    fake_http.add("POST", "/rest/v1/project_members", httpx.Response(201))
    return fake_http


def test_email_is_required(client, fake_http, auth_headers):
    resp = client.post(URL, headers=auth_headers, json={"fullName": "Nobody"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "email is required"}
    assert fake_http.calls == []


def test_non_admin_without_project_is_forbidden(client, fake_http, auth_headers):
    fake_http.add("GET", "/rest/v1/profiles", profile_lookup(role="viewer"))

    resp = client.post(URL, headers=auth_headers, json={"email": "new@example.com"})

    assert resp.status_code == 403
    assert resp.json() == {"error": "Not authorized to invite users"}
    assert fake_http.calls_to(INVITE) == []


def test_inactive_admin_is_forbidden(client, fake_http, auth_headers):
    fake_http.add("GET", "/rest/v1/profiles", profile_lookup(status="suspended"))

    resp = client.post(URL, headers=auth_headers, json={"email": "new@example.com"})

    assert resp.status_code == 403


def test_admin_invites_and_records_profile(client, invite_ok, auth_headers):
    invite_ok.add("GET", "/rest/v1/profiles", profile_lookup())

    resp = client.post(URL, headers=auth_headers, json={"email": "new@example.com", "role": "editor"})

    assert resp.status_code == 200
    assert resp.json() == {"invited": True, "userId": "invitee-1", "projectId": None}
    (invite,) = invite_ok.calls_to(INVITE)
    assert invite.json == {"email": "new@example.com", "data": {"role": "editor"}}
    assert invite.headers["apikey"] == "service-key"
    (upsert,) = [c for c in invite_ok.calls_to("/rest/v1/profiles") if c.method == "POST"]
    assert upsert.params == {"on_conflict": "id"}
    assert upsert.json == {
        "id": "invitee-1",
        "email": "new@example.com",
        "full_name": "new@example.com",
        "role": "editor",
        "status": "invited",
    }
    assert invite_ok.calls_to("/rest/v1/project_members") == []


def test_project_owner_invites_member(client, invite_ok, auth_headers):
    invite_ok.add("GET", "/rest/v1/profiles", profile_lookup(role="viewer"))
    invite_ok.add("GET", "/rest/v1/project_members", httpx.Response(200, json={"role": "owner"}))

    resp = client.post(
        URL,
        headers=auth_headers,
        json={"email": "pat@example.com", "projectId": "proj-1", "projectRole": "annotator"},
    )

    assert resp.status_code == 200
    assert resp.json()["projectId"] == "proj-1"
    (lookup,) = [c for c in invite_ok.calls_to("/rest/v1/project_members") if c.method == "GET"]
    assert lookup.params == {"select": "role", "project_id": "eq.proj-1", "user_id": "eq.user-1"}
    (member,) = [c for c in invite_ok.calls_to("/rest/v1/project_members") if c.method == "POST"]
    assert member.params == {"on_conflict": "project_id,user_email"}
    assert member.json["user_name"] == "pat"
    assert member.json["role"] == "annotator"
    assert member.json["status"] == "pending"
    assert member.json["invited_by"] == "user-1"


def test_null_roles_fall_back_to_viewer(client, invite_ok, auth_headers):
    invite_ok.add("GET", "/rest/v1/profiles", profile_lookup(role="viewer"))
    invite_ok.add("GET", "/rest/v1/project_members", httpx.Response(200, json={"role": "admin"}))

    resp = client.post(
        URL,
        headers=auth_headers,
        json={"email": "sam@example.com", "projectId": "proj-1", "role": None, "projectRole": None},
    )

    assert resp.status_code == 200
    (invite,) = invite_ok.calls_to(INVITE)
    assert invite.json["data"] == {"role": "viewer"}
    (member,) = [c for c in invite_ok.calls_to("/rest/v1/project_members") if c.method == "POST"]
    assert member.json["role"] == "viewer"


def test_bookkeeping_failure_does_not_undo_the_invite(client, invite_ok, auth_headers):
    invite_ok.add("GET", "/rest/v1/profiles", profile_lookup())
    invite_ok.add("POST", "/rest/v1/profiles", httpx.Response(409, json={"message": "conflict"}))

    resp = client.post(URL, headers=auth_headers, json={"email": "new@example.com"})

    assert resp.status_code == 200
    assert resp.json()["userId"] == "invitee-1"


def test_invite_failure(client, fake_http, auth_headers):
    fake_http.add("GET", "/rest/v1/profiles", profile_lookup())
    fake_http.add("POST", INVITE, httpx.Response(422, json={"msg": "User already registered"}))

    resp = client.post(URL, headers=auth_headers, json={"email": "new@example.com"})

    assert resp.status_code == 502
    assert resp.json() == {"error": "User already registered"}
