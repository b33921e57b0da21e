import httpx
import pytest

from careerhub.app.api.realtime import handle_event
from careerhub.app.errors import ValidationError
from careerhub.app.main import create_app
from careerhub.app.services.cache import Cache, MemoryCache

from conftest import fake_socket, sent_events


@pytest.fixture
def app(engine, settings):
    return create_app(settings, Cache(MemoryCache()))


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def as_user(user_id):
    return {"X-User-Id": str(user_id)}


async def _user(client, name, role):
    resp = await client.post("/users", json={"full_name": name, "email": f"{name}@example.com", "role": role})
    assert resp.status_code == 201, resp.text
    return resp.json()["id"]


@pytest.fixture
async def marketplace(client):
    """An employer with one active job and two students."""
    boss = await _user(client, "boss", "employer")
    employer = (await client.post("/employers", json={"user_id": boss, "name": "Acme"})).json()
    job = await client.post("/jobs", headers=as_user(boss), json={
        "title": "Backend Developer",
        "skills_required": [{"name": "Python"}, {"name": "SQL"}, {"name": "Docker"}, {"name": "AWS"}],
    })
    assert job.status_code == 201, job.text

    students = {}
    for name, skills in (("ada", ["python", "sql", "docker", "aws"]), ("bob", ["python", "sql"])):
        uid = await _user(client, name, "student")
        resp = await client.post("/students", json={
            "user_id": uid, "first_name": name.title(), "last_name": "Doe",
            "skills": [{"name": s} for s in skills],
        })
        assert resp.status_code == 201, resp.text
        students[name] = resp.json()
    admin = await _user(client, "root", "admin")
    return {"boss": boss, "employer": employer, "job": job.json(), "students": students, "admin": admin}


async def test_root(client):
    resp = await client.get("/")
    assert resp.status_code == 200


async def test_matched_and_potential_candidates(client, marketplace):
    boss = marketplace["boss"]
    matched = await client.get("/employers/me/matched-candidates", headers=as_user(boss))
    assert matched.status_code == 200
    assert [c["student"]["first_name"] for c in matched.json()["candidates"]] == ["Ada"]

    potential = await client.get("/employers/me/potential-candidates", headers=as_user(boss))
    body = potential.json()
    assert [c["match_percentage"] for c in body["candidates"]] == [50]
    assert body["summary"]["matched_count"] == 1


async def test_inverted_range_is_a_bad_request(client, marketplace):
    resp = await client.get("/employers/me/potential-candidates?min_match=50&max_match=30",
                            headers=as_user(marketplace["boss"]))
    assert resp.status_code == 400
    assert "min_match" in resp.json()["detail"]


async def test_fuzzy_scoring_flag(client, marketplace):
    boss = marketplace["boss"]
    bob = marketplace["students"]["bob"]["id"]
    await client.post(f"/students/{bob}/skills", json={"name": "AWS S3"})

    exact = (await client.get("/employers/me/potential-candidates", headers=as_user(boss))).json()
    fuzzy = (await client.get("/employers/me/potential-candidates?fuzzy=true", headers=as_user(boss))).json()
    assert [c["match_percentage"] for c in exact["candidates"]] == [50]
    assert [c["match_percentage"] for c in fuzzy["candidates"]] == [74]

    both = await client.get("/employers/me/potential-candidates?fuzzy=true&weighted=true", headers=as_user(boss))
    assert both.status_code == 400


async def test_identity_and_roles(client, marketplace):
    assert (await client.get("/employers/me/matched-candidates")).status_code == 401
    assert (await client.get("/employers/me/matched-candidates", headers=as_user(9999))).status_code == 401
    ada_user = marketplace["students"]["ada"]["user_id"]
    assert (await client.get("/employers/me/matched-candidates", headers=as_user(ada_user))).status_code == 403

    employer_id = marketplace["employer"]["id"]
    as_admin = await client.get(f"/employers/{employer_id}/matched-candidates", headers=as_user(marketplace["admin"]))
    assert as_admin.status_code == 200
    assert as_admin.json()["employer"]["id"] == employer_id


async def test_school_job_matching(client, marketplace):
    school = await _user(client, "campus", "school")
    resp = await client.get(f"/schools/match-students?job_id={marketplace['job']['id']}", headers=as_user(school))
    assert resp.status_code == 200
    assert [s["match_percentage"] for s in resp.json()["matched_students"]] == [100]


async def test_closing_a_job_refreshes_candidates(client, marketplace):
    boss = marketplace["boss"]
    await client.get("/employers/me/matched-candidates", headers=as_user(boss))
    resp = await client.patch(f"/jobs/{marketplace['job']['id']}/status", headers=as_user(boss),
                              json={"status": "closed"})
    assert resp.status_code == 200
    body = (await client.get("/employers/me/matched-candidates", headers=as_user(boss))).json()
    assert body["candidates"] == []
    assert body["no_active_jobs"] is True


async def test_job_listing_and_detail(client, marketplace):
    listing = (await client.get("/jobs")).json()
    assert listing["pagination"]["total"] == 1
    detail = await client.get(f"/jobs/{marketplace['job']['id']}")
    assert [s["name"] for s in detail.json()["skills_required"]] == ["aws", "docker", "python", "sql"]
    assert (await client.get("/jobs/999")).status_code == 404


async def test_apply_and_enroll(client, marketplace):
    boss, ada = marketplace["boss"], marketplace["students"]["ada"]["user_id"]
    job_id = marketplace["job"]["id"]

    applied = await client.post(f"/jobs/{job_id}/apply", headers=as_user(ada))
    assert applied.status_code == 201
    assert (await client.post(f"/jobs/{job_id}/apply", headers=as_user(ada))).status_code == 409
    assert (await client.post(f"/jobs/{job_id}/apply", headers=as_user(boss))).status_code == 403

    inbox = (await client.get("/notifications?type=job_application", headers=as_user(boss))).json()
    assert [n["entity_id"] for n in inbox["notifications"]] == [applied.json()["id"]]

    school = await _user(client, "academy", "school")
    course = (await client.post("/courses", headers=as_user(school), json={"title": "Docker basics"})).json()
    enrolled = await client.post(f"/courses/{course['id']}/enroll", headers=as_user(ada))
    assert enrolled.status_code == 201
    count = (await client.get("/notifications/count", headers=as_user(ada))).json()
    assert count["by_type"] == {"course_enrollment": 1}


async def test_duplicate_email_conflicts(client):
    await _user(client, "dup", "student")
    resp = await client.post("/users", json={"full_name": "dup", "email": "DUP@example.com", "role": "student"})
    assert resp.status_code == 409


async def test_student_skill_set_semantics(client, marketplace):
    sid = marketplace["students"]["bob"]["id"]
    resp = await client.post(f"/students/{sid}/skills", json={"name": " Python ", "proficiency": "Advanced"})
    skills = resp.json()["skills"]
    assert [s["name"] for s in skills] == ["python", "sql"]
    assert skills[0]["proficiency"] == "Advanced"
    assert (await client.delete(f"/students/{sid}/skills/cobol")).status_code == 404


async def test_notification_lifecycle(client, marketplace):
    admin, ada = marketplace["admin"], marketplace["students"]["ada"]["user_id"]
    created = await client.post("/notifications", headers=as_user(admin), json={
        "recipient_id": ada, "title": "Welcome", "message": "Your profile is now visible", "type": "profile_verified",
    })
    assert created.status_code == 201
    nid = created.json()["id"]

    count = (await client.get("/notifications/count", headers=as_user(ada))).json()
    assert count["unread"] == 1

    read = await client.patch(f"/notifications/{nid}/read", headers=as_user(ada))
    assert read.json()["status"] == "read"
    assert (await client.get("/notifications/count", headers=as_user(ada))).json()["unread"] == 0

    assert (await client.delete(f"/notifications/{nid}", headers=as_user(ada))).json() == {"deleted_count": 1}
    assert (await client.delete(f"/notifications/{nid}", headers=as_user(ada))).status_code == 404


async def test_notification_validation(client, marketplace):
    admin, ada = marketplace["admin"], marketplace["students"]["ada"]["user_id"]
    short = await client.post("/notifications", headers=as_user(admin), json={
        "recipient_id": ada, "title": "Hi", "message": "too short?", "type": "system_update",
    })
    assert short.status_code == 422
    not_admin = await client.post("/notifications", headers=as_user(ada), json={
        "recipient_id": ada, "title": "Welcome", "message": "Your profile is now visible", "type": "system_update",
    })
    assert not_admin.status_code == 403


async def test_bulk_endpoints(client, marketplace):
    admin, ada = marketplace["admin"], marketplace["students"]["ada"]["user_id"]
    resp = await client.post("/notifications/bulk", headers=as_user(admin), json={"notifications": [
        {"recipient_id": ada, "title": "One", "message": "First of two messages", "type": "system_update"},
        {"recipient_id": ada, "title": "Two", "message": "Second of two messages", "type": "system_update"},
        {"recipient_id": ada, "title": "Bad", "message": "Unknown type here", "type": "telegram"},
    ]})
    report = resp.json()
    assert (report["succeeded"], report["failed"]) == (2, 1)

    listing = (await client.get("/notifications?type=system_update", headers=as_user(ada))).json()
    ids = [n["id"] for n in listing["notifications"]]
    assert len(ids) == 2

    marked = await client.patch("/notifications/read-all", headers=as_user(ada))
    assert marked.json() == {"modified_count": 2}

    deleted = (await client.post("/notifications/bulk-delete", headers=as_user(ada),
                                 json={"ids": ids + [12345]})).json()
    assert (deleted["deleted_count"], deleted["requested"], deleted["failed"]) == (2, 3, 1)
    assert deleted["results"][-1]["reason"] == "not found or not owned"


async def test_bulk_delete_tolerates_malformed_ids(client, marketplace):
    admin, ada = marketplace["admin"], marketplace["students"]["ada"]["user_id"]
    created = await client.post("/notifications", headers=as_user(admin), json={
        "recipient_id": ada, "title": "Welcome", "message": "Your profile is now visible", "type": "system_update",
    })
    nid = created.json()["id"]

    resp = await client.post("/notifications/bulk-delete", headers=as_user(ada), json={"ids": [nid, "not-an-id"]})
    assert resp.status_code == 200
    body = resp.json()
    assert (body["deleted_count"], body["succeeded"], body["failed"]) == (1, 1, 1)
    assert body["results"][1] == {"index": 1, "id": "not-an-id", "success": False, "reason": "invalid id"}

    not_a_list = await client.post("/notifications/bulk-delete", headers=as_user(ada), json={"ids": 5})
    assert not_a_list.status_code == 422


async def test_chat_flow(client, marketplace):
    admin, ada = marketplace["admin"], marketplace["students"]["ada"]["user_id"]
    bob = marketplace["students"]["bob"]["user_id"]

    assert (await client.post("/chat/conversations", headers=as_user(ada), json={"user_id": bob})).status_code == 403

    conversation = (await client.post("/chat/conversations", headers=as_user(ada), json={"user_id": admin})).json()
    cid = conversation["id"]
    sent = await client.post(f"/chat/conversations/{cid}/messages", headers=as_user(ada), json={"text": "hello"})
    assert sent.status_code == 201

    inbox = (await client.get("/chat/conversations", headers=as_user(admin))).json()["conversations"]
    assert inbox[0]["unread_count"] == 1

    messages = (await client.get(f"/chat/conversations/{cid}/messages", headers=as_user(admin))).json()
    assert [m["text"] for m in messages["messages"]] == ["hello"]

    first = (await client.post(f"/chat/conversations/{cid}/read", headers=as_user(admin))).json()
    second = (await client.post(f"/chat/conversations/{cid}/read", headers=as_user(admin))).json()
    assert (first["changed"], second["changed"]) == (True, False)

    count = (await client.get("/notifications/count", headers=as_user(admin))).json()
    assert count["by_type"] == {"message_received": 1}

    outsider = await client.get(f"/chat/conversations/{cid}/messages", headers=as_user(bob))
    assert outsider.status_code == 403


async def test_socket_events(app, marketplace):
    ws = fake_socket()
    ws.app = app
    ada = marketplace["students"]["ada"]["user_id"]

    await handle_event(ws, ada, "notification:get-count", {})
    assert sent_events(ws) == ["notification:count-update"]

    with pytest.raises(ValidationError):
        await handle_event(ws, ada, "conversation:join", {})
    with pytest.raises(ValidationError):
        await handle_event(ws, ada, "dance", {})


async def test_socket_join_and_send(app, client, marketplace):
    admin, ada = marketplace["admin"], marketplace["students"]["ada"]["user_id"]
    cid = (await client.post("/chat/conversations", headers=as_user(ada), json={"user_id": admin})).json()["id"]

    gateway = app.state.gateway
    admin_ws = fake_socket()
    admin_ws.app = app
    gateway.connect(admin, admin_ws)
    await handle_event(admin_ws, admin, "conversation:join", {"conversation_id": cid})
    joined = admin_ws.send_json.call_args_list[-1].args[0]
    assert joined == {"event": "conversation:joined", "data": {"conversation_id": cid, "online_users": [admin]}}

    ada_ws = fake_socket()
    ada_ws.app = app
    gateway.connect(ada, ada_ws)
    await handle_event(ada_ws, ada, "message:send", {"conversation_id": cid, "text": "over the socket"})

    assert "message:new" in sent_events(admin_ws)
    assert sent_events(ada_ws) == ["message:sent"]
    # admin is viewing the conversation, so no stored notification
    count = (await client.get("/notifications/count", headers=as_user(admin))).json()
    assert count["total"] == 0
