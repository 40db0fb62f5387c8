from fastapi.testclient import TestClient

from starkeeper.models import RoomDocument, RoomMessage, RoomPhoto, ThreeDRoom, VRRoom

from _helpers import add_record, add_star, auth_headers, load_record, png_bytes


def _room(engine, star_id, **fields):
    return add_record(engine, ThreeDRoom(star_id=star_id, **fields))


def test_create_room_requires_star_edit(client, engine):
    star_id = add_star(engine, "u1", can_view=["viewer"], can_edit=["editor"])
    url = f"/api/stars/{star_id}/three-d-rooms"

    assert client.post(url, json={"name": "Hall", "roomType": "garden"}, headers=auth_headers("viewer")).status_code == 403
    resp = client.post(url, json={"name": "Hall", "roomType": "garden"}, headers=auth_headers("editor"))
    assert resp.status_code == 201
    assert resp.json()["room_type"] == "garden"
    assert resp.json()["star_id"] == star_id


def test_room_listing_requires_star_view(client, engine):
    star_id = add_star(engine, "u1", can_view=["viewer"])
    _room(engine, star_id, can_view=["guest"])
    url = f"/api/stars/{star_id}/three-d-rooms"

    assert len(client.get(url, headers=auth_headers("viewer")).json()) == 1
    # Rooms list under the parent policy: a grant on one room does not open the listing.
    assert client.get(url, headers=auth_headers("guest")).status_code == 403


def test_room_photo_upload_records_room_and_star(client, engine, blob_store):
    star_id = add_star(engine, "u1")
    room_id = _room(engine, star_id)
    resp = client.post(f"/api/stars/{star_id}/three-d-rooms/{room_id}/photos/upload",
                       files={"file": ("wall.png", png_bytes(), "image/png")}, headers=auth_headers("u1"))
    assert resp.status_code == 201
    body = resp.json()
    assert body["room_id"] == room_id
    assert body["star_id"] == star_id
    assert body["key"].startswith(f"stars/{star_id}/room-photos/{room_id}/")
    assert body["key"].endswith("-wall.jpg")


def test_room_item_in_other_room_is_not_found(client, engine):
    star_id = add_star(engine, "u1")
    r1 = _room(engine, star_id)
    r2 = _room(engine, star_id)
    photo = add_record(engine, RoomPhoto(room_id=r1, star_id=star_id, key="k/p.jpg"))

    resp = client.get(f"/api/stars/{star_id}/three-d-rooms/{r2}/photos/{photo}", headers=auth_headers("u1"))
    assert resp.status_code == 404
    resp = client.get(f"/api/stars/{star_id}/three-d-rooms/{r1}/photos/{photo}", headers=auth_headers("u1"))
    assert resp.status_code == 200


def test_room_from_other_star_is_not_found(client, engine):
    s1 = add_star(engine, "u1")
    s2 = add_star(engine, "u1")
    room = _room(engine, s2)
    resp = client.get(f"/api/stars/{s1}/three-d-rooms/{room}/photos", headers=auth_headers("u1"))
    assert resp.status_code == 404


def test_room_grant_covers_room_media(client, engine):
    star_id = add_star(engine, "u1")
    room_id = _room(engine, star_id, can_view=["guest"])
    add_record(engine, RoomPhoto(room_id=room_id, star_id=star_id, key="k/p.jpg"))

    resp = client.get(f"/api/stars/{star_id}/three-d-rooms/{room_id}/photos", headers=auth_headers("guest"))
    assert resp.status_code == 200
    assert len(resp.json()) == 1
    assert resp.json()[0]["url"] == "https://blobs.test/k/p.jpg?ttl=3600"


def test_anonymous_room_listing_rejected_by_default(client, engine):
    star_id = add_star(engine, "u1")
    room_id = _room(engine, star_id)
    resp = client.get(f"/api/stars/{star_id}/three-d-rooms/{room_id}/photos")
    assert resp.status_code == 401


def test_public_star_listing_serves_rooms_of_public_stars(app_factory, engine):
    client = TestClient(app_factory(public_star_listing=True))
    public_star = add_star(engine, "u1", is_private=False)
    private_star = add_star(engine, "u1", is_private=True)
    public_room = _room(engine, public_star, name="Hall")
    _room(engine, private_star)
    add_record(engine, RoomPhoto(room_id=public_room, star_id=public_star, key="k/p.jpg"))
    add_record(engine, RoomMessage(room_id=public_room, star_id=public_star, message="secret", sender="u1"))

    resp = client.get(f"/api/stars/{public_star}/three-d-rooms")
    assert resp.status_code == 200
    assert [r["name"] for r in resp.json()] == ["Hall"]
    assert client.get(f"/api/stars/{private_star}/three-d-rooms").status_code == 401

    resp = client.get(f"/api/stars/{public_star}/three-d-rooms/{public_room}/photos")
    assert resp.status_code == 200
    assert len(resp.json()) == 1

    # Room messages and every write stay behind a token.
    assert client.get(f"/api/stars/{public_star}/three-d-rooms/{public_room}/messages").status_code == 401
    resp = client.post(f"/api/stars/{public_star}/three-d-rooms/{public_room}/messages", json={"message": "x"})
    assert resp.status_code == 401


def test_room_document_listing_is_owner_only(client, engine):
    star_id = add_star(engine, "u1", can_view=["viewer"])
    room_id = _room(engine, star_id, can_view=["guest"])
    add_record(engine, RoomDocument(room_id=room_id, star_id=star_id, key="k/d.pdf", original_name="d.pdf"))
    url = f"/api/stars/{star_id}/three-d-rooms/{room_id}/documents"

    assert len(client.get(url, headers=auth_headers("u1")).json()) == 1
    assert client.get(url, headers=auth_headers("viewer")).status_code == 403
    assert client.get(url, headers=auth_headers("guest")).status_code == 403


def test_vr_rooms_are_owner_only(client, engine):
    star_id = add_star(engine, "u1", can_view=["viewer"], can_edit=["editor"])
    url = f"/api/stars/{star_id}/vr-rooms"

    assert client.post(url, json={"name": "Lobby"}, headers=auth_headers("editor")).status_code == 403
    resp = client.post(url, json={"name": "Lobby", "roomType": "space"}, headers=auth_headers("u1"))
    assert resp.status_code == 201
    room_id = resp.json()["id"]
    assert resp.json()["room_type"] == "space"

    assert client.get(url, headers=auth_headers("viewer")).status_code == 403
    assert client.get(f"{url}/{room_id}", headers=auth_headers("viewer")).status_code == 403
    assert client.put(f"{url}/{room_id}", json={"name": "x"}, headers=auth_headers("editor")).status_code == 403
    assert client.delete(f"{url}/{room_id}", headers=auth_headers("editor")).status_code == 403

    assert [r["name"] for r in client.get(url, headers=auth_headers("u1")).json()] == ["Lobby"]
    assert client.delete(f"{url}/{room_id}", headers=auth_headers("u1")).status_code == 200
    assert load_record(engine, VRRoom, room_id) is None


def test_room_message_created_with_sender(client, engine):
    star_id = add_star(engine, "u1", can_edit=["u2"])
    room_id = _room(engine, star_id)
    resp = client.post(f"/api/stars/{star_id}/three-d-rooms/{room_id}/messages", json={"message": "hello"},
                       headers=auth_headers("u2"))
    assert resp.status_code == 201
    msg = load_record(engine, RoomMessage, resp.json()["id"])
    assert msg.sender == "u2"
    assert msg.room_id == room_id
    assert msg.star_id == star_id


def test_room_document_delete_is_owner_only(client, engine):
    star_id = add_star(engine, "u1")
    room_id = _room(engine, star_id, can_edit=["u2"])
    doc = add_record(engine, RoomDocument(room_id=room_id, star_id=star_id, key="k/d.pdf", original_name="d.pdf"))
    url = f"/api/stars/{star_id}/three-d-rooms/{room_id}/documents/{doc}"

    assert client.delete(url, headers=auth_headers("u2")).status_code == 403
    assert client.delete(url, headers=auth_headers("u1")).status_code == 200


def test_deleting_room_cascades_to_media(client, engine, blob_store):
    star_id = add_star(engine, "u1")
    room_id = _room(engine, star_id)
    photo = add_record(engine, RoomPhoto(room_id=room_id, star_id=star_id, key="k/room.jpg"))
    msg = add_record(engine, RoomMessage(room_id=room_id, star_id=star_id, message="m", sender="u1"))

    resp = client.delete(f"/api/stars/{star_id}/three-d-rooms/{room_id}", headers=auth_headers("u1"))
    assert resp.status_code == 200
    assert load_record(engine, ThreeDRoom, room_id) is None
    assert load_record(engine, RoomPhoto, photo) is None
    assert load_record(engine, RoomMessage, msg) is None
    assert blob_store.deleted == ["k/room.jpg"]
