"""
Administrator Models — administrators, scope assignments, hierarchy edges.

The ``parent_admin_id`` pointer on Administrator is the single source of
truth for the reporting hierarchy. HierarchyEdge is an append-only record of
every parent assignment, kept for audit and recovery only.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum

from orgadmin.models import db
from orgadmin.models.active_flag import ActiveFlagMixin
from orgadmin.models.base import CompanyModel


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


class AdminLevel(str, Enum):
    """Administrator tiers, highest authority first."""
    ENTITY_ADMIN = "entity_admin"
    SUB_ENTITY_ADMIN = "sub_entity_admin"
    SCHOOL_ADMIN = "school_admin"
    BRANCH_ADMIN = "branch_admin"

    @property
    def rank(self) -> int:
        return LEVEL_RANK[self]

    @classmethod
    def parse(cls, value) -> "AdminLevel":
        """Coerce a string (or AdminLevel) into an AdminLevel; ValueError otherwise."""
        if isinstance(value, cls):
            return value
        return cls(str(value))


LEVEL_RANK = {
    AdminLevel.ENTITY_ADMIN: 4,
    AdminLevel.SUB_ENTITY_ADMIN: 3,
    AdminLevel.SCHOOL_ADMIN: 2,
    AdminLevel.BRANCH_ADMIN: 1,
}

SCOPE_TYPES = ("school", "branch")

SCOPE_CAPABILITY_FLAGS = (
    "can_create_users",
    "can_modify_users",
    "can_delete_users",
    "can_view_all",
    "can_export_data",
    "can_manage_settings",
)


# ═══════════════════════════════════════════════════════════════
# 1. ADMINISTRATORS
# ═══════════════════════════════════════════════════════════════
class Administrator(ActiveFlagMixin, CompanyModel):
    __tablename__ = "administrators"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    auth_user_id = db.Column(db.String(64), index=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200), nullable=False)
    admin_level = db.Column(db.String(30), nullable=False, index=True)
    parent_admin_id = db.Column(
        db.String(36),
        db.ForeignKey("administrators.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    permissions = db.Column(db.JSON, nullable=True)  # override fragment only
    meta = db.Column("metadata", db.JSON, default=dict)
    created_by = db.Column(db.String(36))
    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("company_id", "email", name="uq_administrators_company_email"),
    )

    scopes = db.relationship(
        "ScopeAssignment", back_populates="administrator", lazy="dynamic",
        foreign_keys="ScopeAssignment.admin_id",
    )

    @property
    def level(self) -> AdminLevel:
        return AdminLevel.parse(self.admin_level)

    @property
    def rank(self) -> int:
        return self.level.rank

    def to_dict(self, include_scopes=False):
        d = {
            "id": self.id,
            "auth_user_id": self.auth_user_id,
            "company_id": self.company_id,
            "name": self.name,
            "email": self.email,
            "admin_level": self.admin_level,
            "is_active": self.is_active,
            "parent_admin_id": self.parent_admin_id,
            "permissions": self.permissions or {},
            "metadata": self.meta or {},
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_scopes:
            active = self.scopes.filter_by(is_active=True).all()
            d["assigned_schools"] = [s.scope_id for s in active if s.scope_type == "school"]
            d["assigned_branches"] = [s.scope_id for s in active if s.scope_type == "branch"]
        return d

    def __repr__(self):
        return f"<Administrator {self.id}: {self.email} ({self.admin_level})>"


# ═══════════════════════════════════════════════════════════════
# 2. SCOPE ASSIGNMENTS (administrator → school / branch)
# ═══════════════════════════════════════════════════════════════
class ScopeAssignment(ActiveFlagMixin, CompanyModel):
    __tablename__ = "admin_scope_assignments"

    id = db.Column(db.Integer, primary_key=True)
    admin_id = db.Column(
        db.String(36), db.ForeignKey("administrators.id", ondelete="CASCADE"), nullable=False
    )
    scope_type = db.Column(db.String(20), nullable=False)  # "school" or "branch"
    scope_id = db.Column(db.Integer, nullable=False)

    can_create_users = db.Column(db.Boolean, default=False, nullable=False)
    can_modify_users = db.Column(db.Boolean, default=False, nullable=False)
    can_delete_users = db.Column(db.Boolean, default=False, nullable=False)
    can_view_all = db.Column(db.Boolean, default=True, nullable=False)
    can_export_data = db.Column(db.Boolean, default=False, nullable=False)
    can_manage_settings = db.Column(db.Boolean, default=False, nullable=False)

    permissions = db.Column(db.JSON, nullable=True)  # override fragment only
    assigned_by = db.Column(db.String(36))
    assigned_at = db.Column(db.DateTime, default=_utcnow)
    expires_at = db.Column(db.DateTime, nullable=True)
    notes = db.Column(db.Text)

    __table_args__ = (
        db.Index("ix_admin_scope_assignments_admin_id", "admin_id"),
        db.Index("ix_admin_scope_assignments_scope", "scope_type", "scope_id"),
        # One active assignment per admin + scope entity, enforced by the store
        db.Index(
            "uq_admin_scope_assignments_active",
            "admin_id", "scope_type", "scope_id",
            unique=True,
            sqlite_where=db.text("is_active = 1"),
            postgresql_where=db.text("is_active"),
        ),
    )

    administrator = db.relationship(
        "Administrator", back_populates="scopes", foreign_keys=[admin_id]
    )

    def is_expired(self, now=None) -> bool:
        if self.expires_at is None:
            return False
        now = now or _utcnow()
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= now

    def is_effective(self, now=None) -> bool:
        """Active and not past its expiry."""
        return bool(self.is_active) and not self.is_expired(now)

    def to_dict(self):
        d = {
            "id": self.id,
            "admin_id": self.admin_id,
            "company_id": self.company_id,
            "scope_type": self.scope_type,
            "scope_id": self.scope_id,
            "permissions": self.permissions or {},
            "assigned_by": self.assigned_by,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "is_active": self.is_active,
            "notes": self.notes,
        }
        for flag in SCOPE_CAPABILITY_FLAGS:
            d[flag] = bool(getattr(self, flag))
        return d


# ═══════════════════════════════════════════════════════════════
# 3. HIERARCHY EDGES (append-only log of parent assignments)
# ═══════════════════════════════════════════════════════════════
class HierarchyEdge(CompanyModel):
    __tablename__ = "admin_hierarchy_edges"

    id = db.Column(db.Integer, primary_key=True)
    parent_admin_id = db.Column(db.String(36), nullable=True, index=True)
    child_admin_id = db.Column(db.String(36), nullable=False, index=True)
    relationship_type = db.Column(db.String(20), nullable=False, default="direct")  # direct | inherited
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_by = db.Column(db.String(36))
    created_at = db.Column(db.DateTime, default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "company_id": self.company_id,
            "parent_admin_id": self.parent_admin_id,
            "child_admin_id": self.child_admin_id,
            "relationship_type": self.relationship_type,
            "is_active": self.is_active,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
