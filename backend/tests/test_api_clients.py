from conftest import auth_header, error_of, success_data


def test_admin_creates_client_from_user_defaults(api, make_user):
    admin = make_user("admin@test.local", role="admin")
    owner = make_user("owner@test.local", name="Owner Name", document_number="30111222")
    response = api.post(
        "/api/clients",
        json={"user_id": owner.id, "address": "Calle 1", "assigned_admin_id": admin.id},
        headers=auth_header(admin),
    )
    assert response.status_code == 201
    data = success_data(response)
    assert data["full_name"] == "Owner Name"
    assert data["document_number"] == "30111222"
    assert data["email"] == "owner@test.local"
    assert data["assigned_admin"]["id"] == admin.id


def test_one_client_per_user_and_unique_document_number(api, make_user, make_client):
    admin = make_user("admin@test.local", role="admin")
    owner = make_user("owner@test.local")
    other = make_user("other@test.local")
    make_client(owner, "111")
    headers = auth_header(admin)

    again = api.post("/api/clients", json={"user_id": owner.id}, headers=headers)
    assert again.status_code == 409
    clash = api.post("/api/clients", json={"user_id": other.id, "document_number": "111"}, headers=headers)
    assert clash.status_code == 409


def test_non_admin_cannot_create_or_list(api, make_user):
    user = make_user("plain@test.local")
    assert api.post("/api/clients", json={"user_id": user.id}, headers=auth_header(user)).status_code == 403
    assert api.get("/api/clients", headers=auth_header(user)).status_code == 403


def test_owner_reads_own_client_and_not_others(api, make_user, make_client):
    owner = make_user("owner@test.local")
    other = make_user("other@test.local")
    mine = make_client(owner, "111")
    theirs = make_client(other, "222")

    assert success_data(api.get(f"/api/clients/{mine.id}", headers=auth_header(owner)))["id"] == mine.id
    foreign = api.get(f"/api/clients/{theirs.id}", headers=auth_header(owner))
    missing = api.get("/api/clients/9999", headers=auth_header(owner))
    assert foreign.status_code == missing.status_code == 404
    assert error_of(foreign) == error_of(missing)


def test_user_without_client_gets_not_found(api, make_user, make_client):
    owner = make_user("owner@test.local")
    loner = make_user("loner@test.local")
    client = make_client(owner, "111")
    assert api.get("/api/clients/me", headers=auth_header(loner)).status_code == 404
    assert api.get(f"/api/clients/{client.id}", headers=auth_header(loner)).status_code == 404


def test_owner_can_only_edit_contact_fields(api, make_user, make_client):
    owner = make_user("owner@test.local")
    client = make_client(owner, "111", full_name="Original")
    response = api.patch(
        f"/api/clients/{client.id}",
        json={"phone": "555-0101", "full_name": "Hijacked", "document_number": "999"},
        headers=auth_header(owner),
    )
    data = success_data(response)
    assert data["phone"] == "555-0101"
    assert data["full_name"] == "Original"
    assert data["document_number"] == "111"


def test_admin_edits_and_assigns(api, make_user, make_client):
    admin = make_user("admin@test.local", role="admin")
    plain = make_user("plain@test.local")
    owner = make_user("owner@test.local")
    client = make_client(owner, "111")
    headers = auth_header(admin)

    edited = api.patch(f"/api/clients/{client.id}", json={"full_name": "Nuevo Nombre"}, headers=headers)
    assert success_data(edited)["full_name"] == "Nuevo Nombre"

    assigned = api.post(f"/api/clients/{client.id}/assign-admin", json={"admin_id": admin.id}, headers=headers)
    assert success_data(assigned)["changed"] is True
    bad = api.post(f"/api/clients/{client.id}/assign-admin", json={"admin_id": plain.id}, headers=headers)
    assert bad.status_code == 400


def test_admin_list_search(api, make_user, make_client):
    admin = make_user("admin@test.local", role="admin")
    make_client(make_user("a@test.local"), "111", full_name="Alicia Paz")
    make_client(make_user("b@test.local"), "222", full_name="Bruno Diaz")
    response = api.get("/api/clients", params={"q": "bruno"}, headers=auth_header(admin))
    assert [c["full_name"] for c in success_data(response)["items"]] == ["Bruno Diaz"]
    assert response.json()["meta"]["total"] == 1


def test_document_number_is_stored_in_key_form(api, make_user):
    admin = make_user("admin@test.local", role="admin")
    owner = make_user("owner@test.local")
    other = make_user("other@test.local")
    headers = auth_header(admin)

    created = api.post("/api/clients", json={"user_id": owner.id, "document_number": " CC 123 "}, headers=headers)
    assert success_data(created)["document_number"] == "CC-123"
    clash = api.post("/api/clients", json={"user_id": other.id, "document_number": "CC-123"}, headers=headers)
    assert clash.status_code == 409
    assert error_of(clash)["code"] == "conflict"


def test_document_number_cannot_change_while_documents_are_stored(api, make_user, make_client):
    admin = make_user("admin@test.local", role="admin")
    owner = make_user("owner@test.local")
    client = make_client(owner, "111")
    upload = api.post(
        "/api/docs/upload",
        headers=auth_header(owner),
        data={"subfolder": "clientes"},
        files={"file": ("escrito.pdf", b"%PDF-1.4 test", "application/pdf")},
    )
    assert upload.status_code == 201

    response = api.patch(f"/api/clients/{client.id}", json={"document_number": "222"}, headers=auth_header(admin))
    assert response.status_code == 409
    same = api.patch(f"/api/clients/{client.id}", json={"document_number": "111"}, headers=auth_header(admin))
    assert same.status_code == 200
