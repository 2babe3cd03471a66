from sqlalchemy import select

from clouddrive import config
from clouddrive.models import Folder

MIB = config.MIB
PDF = b"%PDF-1.4\n" + b"0" * (MIB - 9)


def _upload(client, headers, name="report.pdf", data=PDF, content_type="application/pdf", folder_id=None):
    form = {"folderId": str(folder_id)} if folder_id is not None else {}
    return client.post("/files", headers=headers, files={"file": (name, data, content_type)}, data=form)


def _used_storage(client, headers):
    response = client.get("/users/storage", headers=headers)
    assert response.status_code == 200
    return response.json()["usedStorage"]


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_requests_without_a_token_are_rejected(client):
    response = client.get("/files")
    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_garbage_token_is_rejected(client):
    response = client.get("/folders", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.json()["error"] == "Could not validate credentials"


def test_register_login_and_me(client):
    payload = {"name": "Dana", "email": "Dana@Example.com", "password": "Secret1!"}
    created = client.post("/auth/register", json=payload)
    assert created.status_code == 201
    assert created.json()["email"] == "dana@example.com"
    assert created.json()["usedStorage"] == 0

    assert client.post("/auth/register", json=payload).status_code == 409

    login = client.post("/auth/login", data={"username": "dana@example.com", "password": "Secret1!"})
    assert login.status_code == 200
    token = login.json()["access_token"]

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["name"] == "Dana"

    wrong = client.post("/auth/login", data={"username": "dana@example.com", "password": "Wrong1!"})
    assert wrong.status_code == 401
    assert wrong.json() == {"error": "Incorrect email or password"}


def test_weak_password_fails_validation(client):
    response = client.post("/auth/register", json={"name": "Eve", "email": "eve@example.com", "password": "weak"})
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Validation failed"
    assert "password" in body["details"]


def test_upload_trash_and_purge_round_trip(client, alice, headers_for):
    headers = headers_for(alice)

    uploaded = _upload(client, headers)
    assert uploaded.status_code == 201
    file = uploaded.json()
    assert file["name"] == "report.pdf"
    assert file["size"] == MIB
    assert file["isTrash"] is False
    assert file["thumbnailUrl"] is not None
    assert _used_storage(client, headers) == MIB

    listed = client.get("/files", headers=headers).json()
    assert [f["id"] for f in listed] == [file["id"]]

    trashed = client.delete(f"/files/{file['id']}", headers=headers)
    assert trashed.status_code == 200
    assert trashed.json()["permanent"] is False

    in_trash = client.get("/files", headers=headers, params={"isTrash": "true"}).json()
    assert [f["id"] for f in in_trash] == [file["id"]]
    assert client.get("/files", headers=headers, params={"isTrash": "false"}).json() == []
    assert _used_storage(client, headers) == MIB

    purged = client.delete(f"/files/{file['id']}", headers=headers, params={"permanent": "true"})
    assert purged.status_code == 200
    assert purged.json()["freedStorage"] == MIB
    assert _used_storage(client, headers) == 0
    assert client.get(f"/files/{file['id']}", headers=headers).status_code == 404


def test_oversized_upload_is_413(client, alice, headers_for, monkeypatch):
    monkeypatch.setattr(config, "MAX_FILE_SIZE", 16)
    headers = headers_for(alice)

    response = _upload(client, headers, name="big.bin", data=b"x" * 17, content_type="application/octet-stream")
    assert response.status_code == 413
    assert "error" in response.json()
    assert _used_storage(client, headers) == 0


def test_quota_exceeded_is_507(client, alice, headers_for, monkeypatch):
    monkeypatch.setattr(config, "STORAGE_LIMIT", 10)
    headers = headers_for(alice)

    response = _upload(client, headers, name="big.bin", data=b"x" * 11, content_type="application/octet-stream")
    assert response.status_code == 507
    assert response.json() == {"error": "Storage limit exceeded"}


def test_upload_into_folder_with_multipart_folder_id(client, alice, headers_for):
    headers = headers_for(alice)
    folder = client.post("/folders", headers=headers, json={"name": "Docs"}).json()

    uploaded = _upload(client, headers, name="notes.txt", data=b"hello", content_type="text/plain", folder_id=folder["id"])
    assert uploaded.status_code == 201
    assert uploaded.json()["folderId"] == folder["id"]

    detail = client.get(f"/folders/{folder['id']}", headers=headers).json()
    assert [f["name"] for f in detail["files"]] == ["notes.txt"]
    assert client.get("/files", headers=headers).json() == []


def test_folder_tree_over_http(client, alice, headers_for):
    headers = headers_for(alice)
    top = client.post("/folders", headers=headers, json={"name": "Top"})
    assert top.status_code == 201
    top_id = top.json()["id"]
    child_id = client.post("/folders", headers=headers, json={"name": "Child", "parentId": top_id}).json()["id"]

    duplicate = client.post("/folders", headers=headers, json={"name": "Child", "parentId": top_id})
    assert duplicate.status_code == 409
    assert duplicate.json() == {"error": "A folder with this name already exists"}

    crumbs = client.get(f"/folders/{child_id}/breadcrumbs", headers=headers).json()
    assert [c["name"] for c in crumbs] == ["Top", "Child"]

    cycle = client.put(f"/folders/{top_id}", headers=headers, json={"parentId": child_id})
    assert cycle.status_code == 409

    renamed = client.put(f"/folders/{child_id}", headers=headers, json={"name": "Renamed", "parentId": None})
    assert renamed.status_code == 200
    assert renamed.json()["parentId"] is None
    assert renamed.json()["name"] == "Renamed"

    names = [f["name"] for f in client.get("/folders", headers=headers).json()]
    assert names == ["Renamed", "Top"]

    starred = client.patch(f"/folders/{top_id}", headers=headers, json={"operation": "star"})
    assert starred.json()["isStarred"] is True
    assert [f["id"] for f in client.get("/starred", headers=headers).json()["folders"]] == [top_id]


def test_delete_folder_then_empty_trash(client, alice, headers_for):
    headers = headers_for(alice)
    folder_id = client.post("/folders", headers=headers, json={"name": "Old"}).json()["id"]
    _upload(client, headers, name="old.txt", data=b"x" * 100, content_type="text/plain", folder_id=folder_id)
    assert _used_storage(client, headers) == 100

    assert client.delete(f"/folders/{folder_id}", headers=headers).json()["permanent"] is False
    trash = client.get("/trash", headers=headers).json()
    assert [f["id"] for f in trash["folders"]] == [folder_id]

    emptied = client.delete("/trash/empty", headers=headers)
    assert emptied.status_code == 200
    body = emptied.json()
    assert (body["deletedFiles"], body["deletedFolders"], body["freedStorage"]) == (1, 1, 100)
    assert _used_storage(client, headers) == 0
    assert client.get("/trash", headers=headers).json() == {"folders": [], "files": []}


def test_root_folder_cannot_be_deleted_over_http(client, alice, headers_for, db):
    root_id = db.scalar(select(Folder.id).where(Folder.user_id == alice.id, Folder.is_root.is_(True)))
    response = client.delete(f"/folders/{root_id}", headers=headers_for(alice), params={"permanent": "true"})
    assert response.status_code == 403
    assert response.json() == {"error": "Cannot delete root folder"}


def test_folder_share_and_accept(client, alice, bob, carol, headers_for):
    alice_h, bob_h, carol_h = headers_for(alice), headers_for(bob), headers_for(carol)
    folder_id = client.post("/folders", headers=alice_h, json={"name": "Trip"}).json()["id"]

    created = client.post(
        "/share",
        headers=alice_h,
        json={"folderId": folder_id, "sharedWithEmail": "bob@example.com", "permission": "view"},
    )
    assert created.status_code == 201
    token = created.json()["token"]
    share_id = created.json()["shareId"]

    assert client.get(f"/folders/{folder_id}", headers=bob_h).status_code == 403
    assert client.get("/share/user", headers=bob_h).json() == []

    invitation = client.get(f"/share/invitation/{token}", headers=bob_h).json()
    assert invitation["itemType"] == "folder"
    assert invitation["itemName"] == "Trip"
    assert invitation["sharedBy"] == "Alice"

    assert client.post(f"/share/invitation/{token}", headers=carol_h).status_code == 403
    accepted = client.post(f"/share/invitation/{token}", headers=bob_h)
    assert accepted.status_code == 200
    assert accepted.json()["id"] == share_id

    shared = client.get("/share/user", headers=bob_h).json()
    assert len(shared) == 1
    assert shared[0]["itemName"] == "Trip"
    assert shared[0]["itemType"] == "folder"
    assert shared[0]["sharedBy"]["name"] == "Alice"

    assert client.get(f"/folders/{folder_id}", headers=bob_h).status_code == 200
    assert client.get(f"/folders/{folder_id}", headers=carol_h).status_code == 403

    listed = client.get("/share", headers=alice_h, params={"folderId": folder_id}).json()
    assert [s["sharedWithEmail"] for s in listed] == ["bob@example.com"]
    assert listed[0]["created"] is True

    updated = client.put(f"/share/{share_id}", headers=alice_h, json={"permission": "edit"})
    assert updated.json()["permission"] == "edit"
    assert client.put(f"/share/{share_id}", headers=bob_h, json={"permission": "admin"}).status_code == 403

    assert client.delete(f"/share/{share_id}", headers=bob_h).status_code == 200
    assert client.get(f"/folders/{folder_id}", headers=bob_h).status_code == 403


def test_shared_folder_lists_only_what_the_recipient_can_open(client, alice, bob, headers_for):
    alice_h, bob_h = headers_for(alice), headers_for(bob)
    folder_id = client.post("/folders", headers=alice_h, json={"name": "Trip"}).json()["id"]
    client.post("/folders", headers=alice_h, json={"name": "Day 1", "parentId": folder_id})
    photo = _upload(client, alice_h, name="beach.jpg", data=b"jpg", content_type="image/jpeg", folder_id=folder_id).json()

    token = client.post(
        "/share",
        headers=alice_h,
        json={"folderId": folder_id, "sharedWithEmail": "bob@example.com", "permission": "view"},
    ).json()["token"]
    client.post(f"/share/invitation/{token}", headers=bob_h)

    seen = client.get(f"/folders/{folder_id}", headers=bob_h)
    assert seen.status_code == 200
    assert seen.json()["files"] == []
    assert seen.json()["children"] == []
    assert photo["url"] not in seen.text
    assert client.get(f"/files/{photo['id']}", headers=bob_h).status_code == 403

    owned = client.get(f"/folders/{folder_id}", headers=alice_h).json()
    assert [f["id"] for f in owned["files"]] == [photo["id"]]


def test_share_request_needs_exactly_one_target(client, alice, headers_for):
    response = client.post(
        "/share",
        headers=headers_for(alice),
        json={"sharedWithEmail": "bob@example.com", "permission": "view"},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Validation failed"


def test_search_and_recent(client, alice, bob, headers_for):
    alice_h = headers_for(alice)
    client.post("/folders", headers=alice_h, json={"name": "Reports 2024"})
    _upload(client, alice_h, name="report.pdf", data=b"%PDF", content_type="application/pdf")
    _upload(client, headers_for(bob), name="bob-report.pdf", data=b"%PDF", content_type="application/pdf")

    results = client.get("/search", headers=alice_h, params={"q": "REPORT"}).json()
    assert {(r["type"], r["name"]) for r in results} == {("folder", "Reports 2024"), ("file", "report.pdf")}
    file_hit = next(r for r in results if r["type"] == "file")
    assert file_hit["fileType"] == "application/pdf"
    assert file_hit["path"] == "/dashboard"

    missing = client.get("/search", headers=alice_h)
    assert missing.status_code == 400
    assert missing.json() == {"error": "Query parameter 'q' is required"}

    recent = client.get("/recent", headers=alice_h).json()
    assert [f["name"] for f in recent] == ["report.pdf"]


def test_missing_file_uses_error_envelope(client, alice, headers_for):
    response = client.get("/files/9999", headers=headers_for(alice))
    assert response.status_code == 404
    assert response.json() == {"error": "File not found"}


def test_profile_update(client, carol, headers_for):
    headers = headers_for(carol)
    response = client.patch("/users/profile", headers=headers, json={"name": "Carol"})
    assert response.status_code == 200
    assert response.json()["name"] == "Carol"
    assert client.get("/auth/me", headers=headers).json()["name"] == "Carol"

    assert client.patch("/users/profile", headers=headers, json={"name": ""}).status_code == 400
