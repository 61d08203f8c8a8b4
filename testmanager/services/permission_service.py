"""
Permission Service — DB-driven RBAC with cache.

Codenames follow "<resource>.<action>". Evaluation is deny-by-default:
a user holds a permission when at least one of their roles grants it,
or when one of their roles is a superuser role.

Resources that live inside a project (testCase, fixture, testResult)
inherit the project grant: a user without "fixture.update" may still
update a fixture if they hold "project.update" and the fixture exists.
Steps resolve to the project of their test case or fixture.
"""

import logging
import threading
import time
from typing import Optional

from testmanager.models import db
from testmanager.models.auth import Permission, Role, RolePermission, UserRole

logger = logging.getLogger(__name__)

CACHE_TTL = 300  # 5 minutes

_permission_cache: dict[int, tuple[float, set[str]]] = {}
_cache_lock = threading.Lock()

SUPERUSER_ROLES = {"Administrator"}

PROJECT_CHILD_RESOURCES = ("testCase", "fixture", "testResult", "step")

# codename -> description
PERMISSIONS = {
    "project.view": "View projects, test cases, fixtures and results",
    "project.update": "Create and edit test cases, fixtures and steps",
    "project.run": "Run Playwright tests",
    "project.delete": "Delete projects and their content",
    "user.manage": "Manage users",
    "system.settings": "Manage system and AI settings",
    "role.manage": "Manage roles and their permissions",
}

# role -> (description, codenames)
DEFAULT_ROLES = {
    "Administrator": ("Full access to everything", sorted(PERMISSIONS)),
    "Project Manager": (
        "Manages projects and their test assets",
        ["project.view", "project.update", "project.run", "project.delete"],
    ),
    "Test Engineer": (
        "Writes and runs tests",
        ["project.view", "project.update", "project.run"],
    ),
    "Viewer": ("Read-only access to projects", ["project.view"]),
    "System Administrator": (
        "Manages users, roles and settings",
        ["user.manage", "system.settings", "role.manage"],
    ),
}


def _get_cached(user_id: int) -> Optional[set[str]]:
    with _cache_lock:
        entry = _permission_cache.get(user_id)
        if entry is None:
            return None
        cached_at, perms = entry
        if time.time() - cached_at > CACHE_TTL:
            del _permission_cache[user_id]
            return None
        return perms


def _set_cached(user_id: int, perms: set[str]) -> None:
    with _cache_lock:
        _permission_cache[user_id] = (time.time(), perms)


def invalidate_cache(user_id: int) -> None:
    with _cache_lock:
        _permission_cache.pop(user_id, None)


def invalidate_all_cache() -> None:
    with _cache_lock:
        _permission_cache.clear()


def get_user_role_names(user_id: int) -> list[str]:
    rows = (
        db.session.query(Role.name)
        .join(UserRole, UserRole.role_id == Role.id)
        .filter(UserRole.user_id == user_id)
        .all()
    )
    return sorted({r[0] for r in rows})


def get_user_permissions(user_id: int) -> set[str]:
    cached = _get_cached(user_id)
    if cached is not None:
        return cached

    rows = (
        db.session.query(Permission.codename)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .join(UserRole, UserRole.role_id == RolePermission.role_id)
        .filter(UserRole.user_id == user_id)
        .distinct()
        .all()
    )
    perms = {r[0] for r in rows}
    _set_cached(user_id, perms)
    return perms


def has_permission(user_id: int, codename: str) -> bool:
    if any(r in SUPERUSER_ROLES for r in get_user_role_names(user_id)):
        return True
    return codename in get_user_permissions(user_id)


def _project_id_of(resource: str, resource_id) -> int | None:
    from testmanager.models.run import TestResultHistory
    from testmanager.models.testing import Fixture, Step, TestCase

    if resource_id is None:
        return None
    if resource == "step":
        step = db.session.get(Step, resource_id)
        if step is None:
            return None
        if step.test_case_id is not None:
            resource, resource_id = "testCase", step.test_case_id
        else:
            resource, resource_id = "fixture", step.fixture_id

    model = {
        "testCase": TestCase,
        "fixture": Fixture,
        "testResult": TestResultHistory,
    }.get(resource)
    if model is None:
        return None
    obj = db.session.get(model, resource_id)
    return obj.project_id if obj is not None else None


def has_resource_permission(user_id: int, resource: str, action: str, resource_id=None) -> bool:
    """
    Check "<resource>.<action>", falling back to "project.<action>" for
    resources owned by a project. A missing resource is a denial, never
    a not-found, so callers learn nothing about what exists.
    """
    if has_permission(user_id, f"{resource}.{action}"):
        return True
    if resource not in PROJECT_CHILD_RESOURCES:
        return False
    if _project_id_of(resource, resource_id) is None:
        return False
    return has_permission(user_id, f"project.{action}")


def evaluate_permission(user_id: int, codename: str) -> dict:
    role_names = get_user_role_names(user_id)
    if any(r in SUPERUSER_ROLES for r in role_names):
        return {"allowed": True, "decision": "allow_superuser", "roles": role_names, "permission": codename}
    allowed = codename in get_user_permissions(user_id)
    return {
        "allowed": allowed,
        "decision": "allow_role_grant" if allowed else "deny_by_default",
        "roles": role_names,
        "permission": codename,
    }


# ═══════════════════════════════════════════════════════════════
# Seeding
# ═══════════════════════════════════════════════════════════════
def seed_default_roles() -> dict:
    """Create missing permissions and roles and (re)grant the default sets.

    Idempotent; existing grants are kept. Flushes only.
    """
    created = {"permissions": 0, "roles": 0, "grants": 0}

    by_codename = {p.codename: p for p in Permission.query.all()}
    for codename, description in PERMISSIONS.items():
        if codename not in by_codename:
            perm = Permission(codename=codename, category=codename.split(".")[0], description=description)
            db.session.add(perm)
            by_codename[codename] = perm
            created["permissions"] += 1
    db.session.flush()

    for name, (description, codenames) in DEFAULT_ROLES.items():
        role = Role.query.filter_by(name=name).first()
        if role is None:
            role = Role(name=name, description=description, is_system=True)
            db.session.add(role)
            db.session.flush()
            created["roles"] += 1
        granted = {rp.permission_id for rp in role.role_permissions.all()}
        for codename in codenames:
            perm = by_codename[codename]
            if perm.id not in granted:
                db.session.add(RolePermission(role_id=role.id, permission_id=perm.id))
                created["grants"] += 1
    db.session.flush()
    invalidate_all_cache()
    logger.info("Seeded roles: %s", created)
    return created
