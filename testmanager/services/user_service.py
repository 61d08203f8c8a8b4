"""
User Service — login, user CRUD, role assignment and tag seeding.

All writes flush only; the calling route or CLI command commits.
"""

import logging
from datetime import datetime, timezone

from email_validator import EmailNotValidError, validate_email

from testmanager.core.exceptions import ConflictError, NotFoundError, ValidationError
from testmanager.models import db
from testmanager.models.auth import USER_STATUSES, Permission, Role, RolePermission, Session, User, UserRole
from testmanager.models.testing import Tag
from testmanager.services import permission_service
from testmanager.utils.crypto import hash_password, verify_password

logger = logging.getLogger(__name__)

DEFAULT_TAGS = [
    ("high", "High Priority"),
    ("medium", "Medium Priority"),
    ("low", "Low Priority"),
    ("smoke", "Smoke"),
    ("regression", "Regression"),
    ("api", "API"),
    ("ui", "UI"),
    ("performance", "Performance"),
    ("security", "Security"),
    ("accessibility", "Accessibility"),
]


def _normalize_email(email: str) -> str:
    try:
        return validate_email(email or "", check_deliverability=False).normalized.lower()
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}", details={"email": "invalid"})


# ═══════════════════════════════════════════════════════════════
# Authentication
# ═══════════════════════════════════════════════════════════════
def authenticate(email: str, password: str) -> User | None:
    """Return the active user matching the credentials, else None."""
    if not email or not password:
        return None
    user = User.query.filter(db.func.lower(User.email) == email.strip().lower()).first()
    if user is None or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None
    user.last_login_at = datetime.now(timezone.utc)
    return user


# ═══════════════════════════════════════════════════════════════
# User CRUD
# ═══════════════════════════════════════════════════════════════
def list_users(status: str | None = None):
    q = User.query
    if status:
        q = q.filter_by(status=status)
    return q.order_by(User.created_at.desc(), User.id.desc())


def create_user(email, password, *, full_name=None, username=None, role_names=None) -> User:
    email = _normalize_email(email)
    if not password or len(password) < 8:
        raise ValidationError("password must be at least 8 characters", details={"password": "too short"})
    if User.query.filter(db.func.lower(User.email) == email).first():
        raise ConflictError("User", "email", email)
    if username and User.query.filter_by(username=username).first():
        raise ConflictError("User", "username", username)

    user = User(
        email=email,
        username=username or None,
        password_hash=hash_password(password),
        full_name=full_name,
        status="active",
    )
    db.session.add(user)
    db.session.flush()
    if role_names:
        assign_roles(user, role_names)
    logger.info("User created: %s", email)
    return user


def set_status(user: User, status: str) -> User:
    if status not in USER_STATUSES:
        raise ValidationError(
            f"status must be one of {sorted(USER_STATUSES)}", details={"status": status},
        )
    user.status = status
    if status != "active":
        Session.query.filter_by(user_id=user.id, is_active=True).update({"is_active": False})
    db.session.flush()
    return user


def assign_roles(user: User, role_names: list[str]) -> list[str]:
    """Replace the user's roles with role_names; unknown names are rejected."""
    roles = Role.query.filter(Role.name.in_(role_names)).all() if role_names else []
    missing = sorted(set(role_names or []) - {r.name for r in roles})
    if missing:
        raise ValidationError(f"Unknown roles: {', '.join(missing)}", details={"roles": missing})

    UserRole.query.filter_by(user_id=user.id).delete()
    for role in roles:
        db.session.add(UserRole(user_id=user.id, role_id=role.id))
    db.session.flush()
    permission_service.invalidate_cache(user.id)
    return sorted(r.name for r in roles)


# ═══════════════════════════════════════════════════════════════
# Role Management
# ═══════════════════════════════════════════════════════════════
def list_roles():
    return Role.query.order_by(Role.name).all()


def get_role(role_id: int) -> Role:
    role = db.session.get(Role, role_id)
    if role is None:
        raise NotFoundError(resource="Role", resource_id=role_id)
    return role


def set_role_permissions(role: Role, codenames: list[str]) -> list[str]:
    """Replace the permission set granted by role."""
    perms = Permission.query.filter(Permission.codename.in_(codenames)).all() if codenames else []
    missing = sorted(set(codenames or []) - {p.codename for p in perms})
    if missing:
        raise ValidationError(f"Unknown permissions: {', '.join(missing)}", details={"permissions": missing})

    RolePermission.query.filter_by(role_id=role.id).delete()
    for perm in perms:
        db.session.add(RolePermission(role_id=role.id, permission_id=perm.id))
    db.session.flush()
    permission_service.invalidate_all_cache()
    return sorted(p.codename for p in perms)


# ═══════════════════════════════════════════════════════════════
# Seeding
# ═══════════════════════════════════════════════════════════════
def seed_tags() -> int:
    """Create the default global tags that do not exist yet."""
    existing = {t.value for t in Tag.query.filter(Tag.project_id.is_(None)).all()}
    created = 0
    for value, label in DEFAULT_TAGS:
        if value not in existing:
            db.session.add(Tag(project_id=None, value=value, label=label))
            created += 1
    db.session.flush()
    return created
