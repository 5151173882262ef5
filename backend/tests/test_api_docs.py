from backoffice.db.models.client_document import ClientDocument

from conftest import auth_header, error_of, success_data


def _upload(api, user, subfolder, name="escrito.pdf", body=b"%PDF-1.4 test"):
    return api.post(
        "/api/docs/upload",
        headers=auth_header(user),
        data={"subfolder": subfolder},
        files={"file": (name, body, "application/pdf")},
    )


def test_personal_upload_lands_under_user_prefix(api, make_user, object_store):
    user = make_user("plain@test.local")
    response = _upload(api, user, "documentos_iniciales/Poderes", name="Poder Final.pdf")
    assert response.status_code == 201
    data = success_data(response)
    assert data["key"].startswith(f"koop/{user.id}/documentos_iniciales/Poderes/")
    assert data["key"].endswith("_Poder-Final.pdf")
    assert data["document_id"] is None
    assert data["key"] in object_store.objects


def test_traversal_is_rejected_before_touching_storage(api, make_user, object_store):
    user = make_user("plain@test.local")
    response = _upload(api, user, "documentos_iniciales/../../otro")
    assert response.status_code == 400
    assert error_of(response)["code"] == "invalid_input"
    assert object_store.calls == []


def test_unknown_subfolder_is_rejected(api, make_user, object_store):
    user = make_user("plain@test.local")
    assert _upload(api, user, "privado").status_code == 400
    assert object_store.calls == []


def test_non_admin_without_client_cannot_use_client_space(api, make_user, object_store):
    user = make_user("plain@test.local")
    response = _upload(api, user, "clientes/12345678")
    assert response.status_code == 404
    assert object_store.calls == []


def test_client_upload_is_rewritten_to_own_number_and_recorded(api, make_user, make_client, db_session):
    owner = make_user("owner@test.local")
    make_client(owner, "12345678")
    response = _upload(api, owner, "clientes/99999999/Pruebas")
    data = success_data(response)
    assert data["key"].startswith("koop/clientes/12345678/Pruebas/")
    record = db_session.query(ClientDocument).filter_by(storage_key=data["key"]).one()
    assert record.document_number == "12345678"
    assert record.uploaded_by_id == owner.id


def test_admin_upload_to_unknown_client_is_not_found(api, make_user, object_store):
    admin = make_user("admin@test.local", role="admin")
    response = _upload(api, admin, "clientes/404")
    assert response.status_code == 404
    assert object_store.calls == []


def test_oversized_upload_is_rejected(api, make_user, object_store):
    user = make_user("plain@test.local")
    response = _upload(api, user, "documentos_iniciales", body=b"x" * (25 * 1024 * 1024 + 1))
    assert response.status_code == 400
    assert object_store.calls == []


def test_foreign_client_key_is_forbidden(api, make_user, make_client, object_store):
    owner = make_user("owner@test.local")
    make_client(owner, "111")
    object_store.objects["koop/clientes/222/x.pdf"] = {"body": b"x", "last_modified": None}
    response = api.get("/api/docs/download-url", params={"key": "koop/clientes/222/x.pdf"}, headers=auth_header(owner))
    assert response.status_code == 403
    assert ("presign", "koop/clientes/222/x.pdf") not in object_store.calls


def test_client_key_without_own_client_is_not_found(api, make_user):
    user = make_user("plain@test.local")
    response = api.get("/api/docs/download-url", params={"key": "koop/clientes/222/x.pdf"}, headers=auth_header(user))
    assert response.status_code == 404


def test_other_users_personal_key_is_forbidden(api, make_user, object_store):
    user = make_user("plain@test.local")
    other = make_user("other@test.local")
    key = f"koop/{other.id}/documentos_iniciales/1_a.pdf"
    response = api.delete("/api/docs/object", params={"key": key}, headers=auth_header(user))
    assert response.status_code == 403
    assert object_store.calls == []


def test_download_counts_access(api, make_user, make_client, db_session):
    owner = make_user("owner@test.local")
    make_client(owner, "111")
    key = success_data(_upload(api, owner, "clientes"))["key"]

    response = api.get("/api/docs/download-url", params={"key": key}, headers=auth_header(owner))
    assert success_data(response)["url"].startswith("https://storage.test/")
    record = db_session.query(ClientDocument).filter_by(storage_key=key).one()
    assert record.download_count == 1
    assert record.last_accessed is not None


def test_delete_removes_object_and_record(api, make_user, make_client, db_session, object_store):
    owner = make_user("owner@test.local")
    make_client(owner, "111")
    key = success_data(_upload(api, owner, "clientes"))["key"]

    response = api.delete("/api/docs/object", params={"key": key}, headers=auth_header(owner))
    assert success_data(response)["deleted"] is True
    assert key not in object_store.objects
    assert db_session.query(ClientDocument).count() == 0


def test_recent_lists_only_own_space(api, make_user, object_store):
    user = make_user("plain@test.local")
    other = make_user("other@test.local")
    _upload(api, user, "documentos_iniciales", name="mine.pdf")
    _upload(api, other, "documentos_iniciales", name="theirs.pdf")
    object_store.put(f"koop/{user.id}/documentos_iniciales/Carpeta/", b"")

    response = api.get("/api/docs/recent", headers=auth_header(user))
    data = success_data(response)
    assert data["prefix"] == f"koop/{user.id}/"
    assert [item["name"].split("_", 1)[1] for item in data["items"]] == ["mine.pdf"]


def test_create_folder(api, make_user, object_store):
    user = make_user("plain@test.local")
    response = api.post("/api/docs/folder", json={"subfolder": "documentos_iniciales/Nueva"}, headers=auth_header(user))
    data = success_data(response)
    assert data["key"] == f"koop/{user.id}/documentos_iniciales/Nueva/"
    assert object_store.objects[data["key"]]["content_type"] == "application/x-directory"


def test_client_documents_listing_is_owner_or_admin(api, make_user, make_client):
    owner = make_user("owner@test.local")
    other = make_user("other@test.local")
    admin = make_user("admin@test.local", role="admin")
    make_client(owner, "111")
    make_client(other, "222")
    _upload(api, owner, "clientes")

    own = api.get("/api/docs/clients/111/documents", headers=auth_header(owner))
    assert len(success_data(own)["items"]) == 1
    assert api.get("/api/docs/clients/222/documents", headers=auth_header(owner)).status_code == 404
    assert api.get("/api/docs/clients/111/documents", headers=auth_header(admin)).status_code == 200


def test_purge_client_documents_is_admin_only(api, make_user, make_client, object_store, db_session):
    owner = make_user("owner@test.local")
    admin = make_user("admin@test.local", role="admin")
    make_client(owner, "111")
    _upload(api, owner, "clientes", name="a.pdf")
    _upload(api, owner, "clientes/111/Sub", name="b.pdf")
    object_store.put("koop/clientes/1110/keep.pdf", b"x")

    assert api.delete("/api/docs/clients/111", headers=auth_header(owner)).status_code == 403

    response = api.delete("/api/docs/clients/111", headers=auth_header(admin))
    data = success_data(response)
    assert data["objects_deleted"] == 2
    assert data["records_deleted"] == 2
    assert "koop/clientes/1110/keep.pdf" in object_store.objects
    assert db_session.query(ClientDocument).count() == 0


def test_storage_failure_is_reported_generically(api, make_user, object_store):
    user = make_user("plain@test.local")
    object_store.fail = True
    response = _upload(api, user, "documentos_iniciales")
    assert response.status_code == 500
    assert error_of(response) == {
        "code": "upstream_failure",
        "message": "Storage operation failed",
        "details": None,
    }


def test_client_prefix_listing_without_client_is_not_found(api, make_user, object_store):
    user = make_user("plain@test.local")
    response = api.get("/api/docs/recent", params={"subfolder": "clientes/123"}, headers=auth_header(user))
    assert response.status_code == 404
    assert error_of(response)["code"] == "not_found"
    assert object_store.calls == []


def test_health_requires_authentication(api, make_user):
    assert api.get("/api/docs/health").status_code == 401
    user = make_user("plain@test.local")
    assert success_data(api.get("/api/docs/health", headers=auth_header(user)))["storage_configured"] is True


def test_numbers_that_share_a_key_segment_cannot_coexist(api, make_user, make_client, object_store):
    admin = make_user("admin@test.local", role="admin")
    first = make_user("first@test.local")
    second = make_user("second@test.local")
    make_client(first, "12-345")
    key = success_data(_upload(api, first, "clientes", name="secret.pdf"))["key"]
    assert key.startswith("koop/clientes/12-345/")

    response = api.post(
        "/api/clients",
        json={"user_id": second.id, "document_number": "12 345"},
        headers=auth_header(admin),
    )
    assert response.status_code == 409
    denied = api.get("/api/docs/download-url", params={"key": key}, headers=auth_header(second))
    assert denied.status_code == 404


def test_owner_with_spaced_number_reaches_own_space(api, make_user, object_store):
    admin = make_user("admin@test.local", role="admin")
    owner = make_user("owner@test.local")
    created = api.post(
        "/api/clients",
        json={"user_id": owner.id, "document_number": "CC 123"},
        headers=auth_header(admin),
    )
    assert created.status_code == 201

    data = success_data(_upload(api, owner, "clientes"))
    assert data["key"].startswith("koop/clientes/CC-123/")
    listing = api.get("/api/docs/clients/CC 123/documents", headers=auth_header(owner))
    assert [item["key"] for item in success_data(listing)["items"]] == [data["key"]]
