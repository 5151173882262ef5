from backoffice.core.roles import Role, has_admin_role, normalize_roles, primary_role, role_names


def test_normalize_roles_defaults_to_user():
    assert normalize_roles(None) == [Role.USER]
    assert normalize_roles("") == [Role.USER]
    assert normalize_roles([]) == [Role.USER]
    assert normalize_roles("superuser") == [Role.USER]


def test_normalize_roles_accepts_mixed_case_and_whitespace():
    assert normalize_roles(" ADMIN ") == [Role.ADMIN]
    assert normalize_roles("User") == [Role.USER]
    assert normalize_roles(Role.ADMIN) == [Role.ADMIN]


def test_admin_wins_over_user():
    assert normalize_roles(["user", "admin"]) == [Role.ADMIN]
    assert normalize_roles(("admin", "user", "bogus")) == [Role.ADMIN]


def test_unknown_values_fall_back_to_default_role():
    assert normalize_roles(["root", 42], default_role="admin") == [Role.ADMIN]
    assert normalize_roles("bogus", default_role="nonsense") == [Role.USER]


def test_result_is_always_a_single_allowed_role():
    for value in (None, "admin", ["user"], ["x", "y"], {"admin", "user"}, 7):
        roles = normalize_roles(value)
        assert len(roles) == 1
        assert roles[0] in (Role.ADMIN, Role.USER)


def test_helpers():
    assert primary_role("admin") is Role.ADMIN
    assert has_admin_role(["user", "ADMIN"]) is True
    assert has_admin_role("user") is False
    assert role_names(None) == ["user"]


def test_normalization_is_idempotent():
    for value in (None, "ADMIN", ["USER", "Admin"], ["junk"], "user"):
        once = normalize_roles(value)
        assert normalize_roles(once) == once
    assert normalize_roles(["USER", "Admin"]) == [Role.ADMIN]
