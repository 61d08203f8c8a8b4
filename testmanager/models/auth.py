"""
Auth models: users, roles, permissions and refresh-token sessions.

Permission codenames follow "<resource>.<action>" (e.g. "project.update").
Resources below a project (testCase, fixture, testResult, step) normally
carry no codenames of their own and inherit the project grant; see
testmanager.services.permission_service.has_resource_permission.
"""

import uuid

from testmanager.models import db
from testmanager.models.base import utcnow

USER_STATUSES = ("active", "inactive", "suspended")


def _iso(value):
    return value.isoformat() if value else None


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), unique=True, nullable=False)
    username = db.Column(db.String(100), unique=True)
    password_hash = db.Column(db.String(256))
    full_name = db.Column(db.String(200))
    status = db.Column(db.String(20), nullable=False, default="active")
    last_login_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow)

    user_roles = db.relationship("UserRole", back_populates="user", lazy="dynamic", cascade="all, delete-orphan")
    sessions = db.relationship("Session", back_populates="user", lazy="dynamic", cascade="all, delete-orphan")

    @property
    def is_active(self):
        return self.status == "active"

    @property
    def role_names(self):
        return sorted(ur.role.name for ur in self.user_roles)

    def to_dict(self, include_roles=False):
        d = {
            "id": self.id,
            "email": self.email,
            "username": self.username,
            "full_name": self.full_name,
            "status": self.status,
            "last_login_at": _iso(self.last_login_at),
            "created_at": _iso(self.created_at),
        }
        if include_roles:
            d["roles"] = self.role_names
        return d

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"


class Role(db.Model):
    """Named bundle of permissions. System roles are seeded by `flask seed-roles`."""
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.Text)
    is_system = db.Column(db.Boolean, default=False)

    role_permissions = db.relationship(
        "RolePermission", back_populates="role", lazy="dynamic", cascade="all, delete-orphan",
    )
    user_roles = db.relationship("UserRole", back_populates="role", lazy="dynamic", cascade="all, delete-orphan")

    @property
    def codenames(self):
        return sorted(rp.permission.codename for rp in self.role_permissions)

    def to_dict(self, include_permissions=False):
        d = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_system": self.is_system,
        }
        if include_permissions:
            d["permissions"] = self.codenames
        return d


class Permission(db.Model):
    __tablename__ = "permissions"

    id = db.Column(db.Integer, primary_key=True)
    codename = db.Column(db.String(100), unique=True, nullable=False)
    category = db.Column(db.String(50), nullable=False)  # resource part of the codename
    description = db.Column(db.Text)

    role_permissions = db.relationship(
        "RolePermission", back_populates="permission", lazy="dynamic", cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "codename": self.codename,
            "category": self.category,
            "description": self.description,
        }


class RolePermission(db.Model):
    __tablename__ = "role_permissions"
    __table_args__ = (db.UniqueConstraint("role_id", "permission_id", name="uq_role_permission"),)

    id = db.Column(db.Integer, primary_key=True)
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)
    permission_id = db.Column(db.Integer, db.ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False)

    role = db.relationship("Role", back_populates="role_permissions")
    permission = db.relationship("Permission", back_populates="role_permissions")


class UserRole(db.Model):
    __tablename__ = "user_roles"
    __table_args__ = (db.UniqueConstraint("user_id", "role_id", name="uq_user_role"),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)
    assigned_at = db.Column(db.DateTime, default=utcnow)

    user = db.relationship("User", back_populates="user_roles")
    role = db.relationship("Role", back_populates="user_roles")


class Session(db.Model):
    """One login; token_hash is the SHA-256 of the current refresh token."""
    __tablename__ = "sessions"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash = db.Column(db.String(64), nullable=False, index=True)
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(500))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    expires_at = db.Column(db.DateTime, nullable=False)
    last_used_at = db.Column(db.DateTime)

    user = db.relationship("User", back_populates="sessions")

    @property
    def is_expired(self):
        now = utcnow()
        expires = self.expires_at
        if expires.tzinfo is None:
            now = now.replace(tzinfo=None)
        return now > expires
