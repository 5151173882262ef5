from backoffice.db.models.admin_audit_log import AdminAuditLog
from backoffice.db.models.user import User

from conftest import PASSWORD, auth_header, error_of, success_data


def test_non_admin_is_forbidden(api, make_user):
    user = make_user("plain@test.local")
    response = api.get("/api/admin/users", headers=auth_header(user))
    assert response.status_code == 403
    assert error_of(response)["code"] == "forbidden"


def test_missing_token_is_unauthenticated(api):
    response = api.get("/api/admin/users")
    assert response.status_code == 401
    assert error_of(response)["code"] == "unauthenticated"


def test_admin_cannot_act_on_self(api, make_user):
    admin = make_user("admin@test.local", role="admin")
    headers = auth_header(admin)
    for method, path in (
        ("post", f"/api/admin/users/{admin.id}/revoke-admin"),
        ("post", f"/api/admin/users/{admin.id}/grant-admin"),
        ("post", f"/api/admin/users/{admin.id}/deactivate"),
        ("delete", f"/api/admin/users/{admin.id}"),
    ):
        response = getattr(api, method)(path, headers=headers)
        assert response.status_code == 403, path
        assert error_of(response)["code"] == "forbidden"


def test_self_protection_is_checked_before_target_lookup(api, make_user, db_session):
    admin = make_user("admin@test.local", role="admin")
    response = api.delete(f"/api/admin/users/{admin.id}", headers=auth_header(admin))
    assert response.status_code == 403
    db_session.expire_all()
    assert db_session.get(User, admin.id) is not None


def test_grant_and_revoke_admin_are_audited(api, make_user, db_session):
    admin = make_user("admin@test.local", role="admin")
    target = make_user("target@test.local")
    headers = auth_header(admin)

    granted = api.post(f"/api/admin/users/{target.id}/grant-admin", headers=headers)
    assert success_data(granted)["changed"] is True
    assert success_data(granted)["user"]["roles"] == ["admin"]
    again = api.post(f"/api/admin/users/{target.id}/grant-admin", headers=headers)
    assert success_data(again)["changed"] is False

    revoked = api.post(f"/api/admin/users/{target.id}/revoke-admin", headers=headers)
    assert success_data(revoked)["user"]["roles"] == ["user"]

    actions = [row.action for row in db_session.query(AdminAuditLog).order_by(AdminAuditLog.id)]
    assert actions == ["grant_admin", "revoke_admin"]


def test_activation_lets_user_sign_in(api, make_user):
    admin = make_user("admin@test.local", role="admin")
    pending = make_user("pending@test.local", active=False)

    response = api.post(f"/api/admin/users/{pending.id}/activate", headers=auth_header(admin))
    assert success_data(response)["user"]["active"] is True

    login = api.post("/api/auth/login", json={"email": "pending@test.local", "password": PASSWORD})
    assert login.status_code == 200


def test_revoked_admin_token_stops_working_for_admin_actions(api, make_user, db_session):
    admin = make_user("admin@test.local", role="admin")
    headers = auth_header(admin)
    db_session.query(User).filter(User.id == admin.id).update({"role": "user"})
    db_session.commit()
    assert api.get("/api/admin/users", headers=headers).status_code == 403


def test_list_users_filters_and_pages(api, make_user):
    admin = make_user("admin@test.local", role="admin")
    make_user("pending@test.local", active=False)
    make_user("gone@test.local", active=False, activated=True)
    headers = auth_header(admin)

    pending = api.get("/api/admin/users?status=pending", headers=headers)
    assert [u["email"] for u in success_data(pending)["items"]] == ["pending@test.local"]

    deactivated = api.get("/api/admin/users?status=deactivated", headers=headers)
    assert [u["email"] for u in success_data(deactivated)["items"]] == ["gone@test.local"]

    paged = api.get("/api/admin/users?page=1&page_size=2", headers=headers)
    assert paged.json()["meta"] == {"total": 3, "page": 1, "page_size": 2, "pages": 2}


def test_update_user_fields(api, make_user):
    admin = make_user("admin@test.local", role="admin")
    target = make_user("target@test.local")
    response = api.patch(
        f"/api/admin/users/{target.id}",
        json={"name": "Renamed", "phone": "555-0100"},
        headers=auth_header(admin),
    )
    data = success_data(response)
    assert data["name"] == "Renamed"
    assert data["phone"] == "555-0100"


def test_delete_missing_user_is_not_found(api, make_user):
    admin = make_user("admin@test.local", role="admin")
    response = api.delete("/api/admin/users/9999", headers=auth_header(admin))
    assert response.status_code == 404


def test_delete_client_owner_is_conflict(api, make_user, make_client):
    admin = make_user("admin@test.local", role="admin")
    owner = make_user("owner@test.local")
    make_client(owner, "111")
    response = api.delete(f"/api/admin/users/{owner.id}", headers=auth_header(admin))
    assert response.status_code == 409


def test_preapproval_lifecycle(api, make_user):
    admin = make_user("admin@test.local", role="admin")
    headers = auth_header(admin)

    created = api.post(
        "/api/admin/preapprovals",
        json={"email": "Invitee@Test.Local", "roles": ["admin", "user"], "days_valid": 7},
        headers=headers,
    )
    assert created.status_code == 201
    assert success_data(created)["roles"] == ["admin"]

    listed = api.get("/api/admin/preapprovals", headers=headers)
    assert [p["email"] for p in success_data(listed)["items"]] == ["invitee@test.local"]

    registered = api.post(
        "/api/auth/register",
        json={"name": "Invitee", "email": "invitee@test.local", "password": PASSWORD},
    )
    assert success_data(registered)["user"]["roles"] == ["admin"]
    assert success_data(registered)["user"]["active"] is False

    removed = api.delete("/api/admin/preapprovals/invitee@test.local", headers=headers)
    assert removed.status_code == 200
    assert api.delete("/api/admin/preapprovals/invitee@test.local", headers=headers).status_code == 404


def test_metrics_and_audit_are_admin_only(api, make_user):
    admin = make_user("admin@test.local", role="admin")
    user = make_user("plain@test.local")
    assert api.get("/api/metrics", headers=auth_header(user)).status_code == 403
    metrics = api.get("/api/metrics", headers=auth_header(admin))
    assert "counters" in success_data(metrics)
    assert api.get("/api/admin/audit", headers=auth_header(admin)).status_code == 200


def test_revoking_admin_releases_assigned_clients(api, make_user, make_client, db_session):
    admin = make_user("admin@test.local", role="admin")
    helper = make_user("helper@test.local", role="admin")
    owner = make_user("owner@test.local")
    client = make_client(owner, "111")
    headers = auth_header(admin)
    assigned = api.post(f"/api/clients/{client.id}/assign-admin", json={"admin_id": helper.id}, headers=headers)
    assert success_data(assigned)["changed"] is True

    revoked = api.post(f"/api/admin/users/{helper.id}/revoke-admin", headers=headers)
    assert success_data(revoked)["user"]["roles"] == ["user"]

    detail = success_data(api.get(f"/api/clients/{client.id}", headers=headers))
    assert detail["assigned_admin_id"] is None
    entry = db_session.query(AdminAuditLog).filter_by(action="revoke_admin").one()
    assert entry.meta_json["released_client_ids"] == [client.id]
