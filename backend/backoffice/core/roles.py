from collections.abc import Iterable
from enum import Enum


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"


ALLOWED_ROLES: tuple[str, ...] = tuple(role.value for role in Role)


def _coerce_role(value) -> str:
    if value is None:
        return ""
    if isinstance(value, Role):
        return value.value
    return str(value).strip().lower()


def _safe_default(default_role) -> Role:
    value = _coerce_role(default_role) or Role.USER.value
    if value in ALLOWED_ROLES:
        return Role(value)
    return Role.USER


def normalize_roles(value=None, *, default_role: str | Role = Role.USER) -> list[Role]:
    """Collapse arbitrary role input into the canonical single-role list.

    Accepts a single value, any iterable of values, ``None`` or garbage.
    ``admin`` wins over ``user``; anything else falls back to
    ``default_role`` (itself validated, ``user`` when invalid).
    """
    if isinstance(value, (str, Role)) or value is None:
        raw: Iterable = [value]
    elif isinstance(value, Iterable):
        raw = value
    else:
        raw = [value]

    found = {_coerce_role(item) for item in raw} & set(ALLOWED_ROLES)
    if Role.ADMIN.value in found:
        return [Role.ADMIN]
    if Role.USER.value in found:
        return [Role.USER]
    return [_safe_default(default_role)]


def primary_role(value=None, *, default_role: str | Role = Role.USER) -> Role:
    return normalize_roles(value, default_role=default_role)[0]


def has_admin_role(value) -> bool:
    return Role.ADMIN in normalize_roles(value)


def role_names(value) -> list[str]:
    return [role.value for role in normalize_roles(value)]
