"""
Administrator audit domain model.

Models:
    - AdminAuditLog: immutable, append-only trail of administrative actions.
"""

from datetime import datetime, timezone

from sqlalchemy import event

from orgadmin.models import db


# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ACTIONS = {
    "admin_created",
    "admin_modified",
    "admin_deleted",
    "admin_activated",
    "permission_granted",
    "permission_revoked",
    "scope_assigned",
    "scope_removed",
    "hierarchy_changed",
}

CRITICAL_ACTIONS = {
    "admin_created",
    "admin_deleted",
    "permission_granted",
    "permission_revoked",
    "hierarchy_changed",
}


class AdminAuditLog(db.Model):
    """
    Immutable audit trail for administrator management.

    One row per action. ``changes`` carries ``{field: {old, new}}`` for
    field-level edits; ``context`` carries request metadata and the calling
    source.
    """

    __tablename__ = "admin_audit_logs"
    __table_args__ = (
        db.Index("idx_admin_audit_company_ts", "company_id", "created_at"),
        db.Index("idx_admin_audit_target", "target_type", "target_id"),
        db.Index("idx_admin_audit_actor", "actor_id"),
        db.Index("idx_admin_audit_action", "action_type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(
        db.Integer,
        db.ForeignKey("companies.id", ondelete="SET NULL"),
        nullable=True,
    )
    action_type = db.Column(db.String(40), nullable=False)
    actor_id = db.Column(db.String(36), nullable=False, default="system")
    target_id = db.Column(db.String(36), nullable=True)
    target_type = db.Column(db.String(30), nullable=True)
    changes = db.Column(db.JSON, default=dict)
    context = db.Column(db.JSON, default=dict)
    ip_address = db.Column(db.String(64))
    user_agent = db.Column(db.String(500))
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_critical(self) -> bool:
        return self.action_type in CRITICAL_ACTIONS

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "action_type": self.action_type,
            "actor_id": self.actor_id,
            "target_id": self.target_id,
            "target_type": self.target_type,
            "changes": self.changes or {},
            "metadata": self.context or {},
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "is_critical": self.is_critical,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<AdminAuditLog {self.id}: {self.action_type} on {self.target_type}/{self.target_id}>"


# ── Immutability ─────────────────────────────────────────────────────────────
# Bulk deletes issued by the retention job bypass these ORM hooks.

@event.listens_for(AdminAuditLog, "before_update")
def _reject_update(mapper, connection, target):
    raise RuntimeError(f"AdminAuditLog {target.id} is immutable")


@event.listens_for(AdminAuditLog, "before_delete")
def _reject_delete(mapper, connection, target):
    raise RuntimeError(f"AdminAuditLog {target.id} is immutable")
