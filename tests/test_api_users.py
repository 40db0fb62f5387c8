import datetime

from starkeeper.models import DeathCertificate, User

from _helpers import add_user, auth_headers, load_record


def test_me_hides_activation_code(client, engine):
    uid = add_user(engine, "alice", activation_code="abc1234")
    resp = client.get("/api/users/me", headers=auth_headers(uid))
    assert resp.status_code == 200
    assert resp.json()["username"] == "alice"
    assert "activation_code" not in resp.json()


def test_me_for_unknown_principal_is_not_found(client):
    assert client.get("/api/users/me", headers=auth_headers("ghost")).status_code == 404


def test_search_is_case_insensitive_prefix(client, engine):
    uid = add_user(engine, "alice")
    add_user(engine, "alina")
    add_user(engine, "bob")
    add_user(engine, "al_x")

    resp = client.get("/api/users/search", params={"username": "ALI"}, headers=auth_headers(uid))
    assert resp.status_code == 200
    assert [u["username"] for u in resp.json()["users"]] == ["alice", "alina"]

    # "_" is matched literally, not as a wildcard.
    resp = client.get("/api/users/search", params={"username": "al_"}, headers=auth_headers(uid))
    assert [u["username"] for u in resp.json()["users"]] == ["al_x"]


def test_search_is_limited_to_ten(client, engine):
    uid = add_user(engine, "me")
    for i in range(12):
        add_user(engine, f"user{i:02d}")
    resp = client.get("/api/users/search", params={"username": "user"}, headers=auth_headers(uid))
    assert len(resp.json()["users"]) == 10


def test_search_requires_query(client, engine):
    uid = add_user(engine, "alice")
    assert client.get("/api/users/search", headers=auth_headers(uid)).status_code == 400


def test_contacts_add_list_remove(client, engine):
    me = add_user(engine, "alice")
    friend = add_user(engine, "bob", first_name="Bob")
    h = auth_headers(me)

    resp = client.post(f"/api/users/{friend}/contacts", headers=h)
    assert resp.status_code == 201
    assert resp.json()["contact"]["first_name"] == "Bob"

    assert client.post(f"/api/users/{friend}/contacts", headers=h).status_code == 409
    assert client.post(f"/api/users/{me}/contacts", headers=h).status_code == 400
    assert client.post("/api/users/nobody/contacts", headers=h).status_code == 404

    listed = client.get("/api/users/me/contacts", headers=h).json()["contacts"]
    assert [c["id"] for c in listed] == [friend]

    assert client.delete(f"/api/users/{friend}/contacts", headers=h).status_code == 200
    assert client.delete(f"/api/users/{friend}/contacts", headers=h).status_code == 404
    assert load_record(engine, User, me).contacts == []


def test_activate_marks_user_deceased(client, engine):
    uid = add_user(engine, "alice", activation_code="code123")
    resp = client.post("/api/users/activate", json={"activationCode": "code123", "dod": "2024-03-01T10:00:00Z"})
    assert resp.status_code == 200
    assert resp.json()["user_id"] == uid

    user = load_record(engine, User, uid)
    assert user.is_alive is False
    assert user.dod == datetime.date(2024, 3, 1)

    resp = client.post("/api/users/activate", json={"activationCode": "code123"})
    assert resp.status_code == 400


def test_activate_errors(client, engine):
    add_user(engine, "alice", activation_code="code123")
    assert client.post("/api/users/activate", json={}).status_code == 400
    assert client.post("/api/users/activate", json={"activationCode": "nope"}).status_code == 404
    resp = client.post("/api/users/activate", json={"activationCode": "code123", "dod": "yesterday"})
    assert resp.status_code == 400


def test_death_certificate_upload(client, engine, blob_store):
    uid = add_user(engine, "alice")
    resp = client.post("/api/users/me/death-certificates",
                       files={"file": ("cert.pdf", b"%PDF", "application/pdf")}, headers=auth_headers(uid))
    assert resp.status_code == 201
    body = resp.json()
    assert body["verified"] is False
    assert body["file_key"].startswith(f"users/{uid}/death-certificates/")
    assert body["file_key"] in blob_store.blobs

    stored = load_record(engine, DeathCertificate, body["id"])
    assert stored.user_id == uid

    # The owner may sign their own certificate; others may not.
    resp = client.get("/api/blobs/sign", params={"key": body["file_key"]}, headers=auth_headers(uid))
    assert resp.status_code == 200
    resp = client.get("/api/blobs/sign", params={"key": body["file_key"]}, headers=auth_headers("other"))
    assert resp.status_code == 403
