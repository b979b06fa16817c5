"""
Active Flag Mixin — soft lifecycle for administrators and scope assignments.

Rows carrying this mixin are never physically removed. "Deleting" flips
``is_active`` off and stamps ``deactivated_at``; restoring flips it back.

Usage:
    class MyModel(ActiveFlagMixin, db.Model):
        ...

    obj.deactivate()
    db.session.commit()

    MyModel.query_active().all()
"""

from datetime import datetime, timezone

from orgadmin.models import db


class ActiveFlagMixin:
    """Mixin that adds an ``is_active`` flag with deactivate/restore helpers."""

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    deactivated_at = db.Column(db.DateTime, nullable=True, default=None)

    def deactivate(self):
        """Mark this record inactive."""
        self.is_active = False
        self.deactivated_at = datetime.now(timezone.utc)

    def restore(self):
        """Reactivate a previously deactivated record."""
        self.is_active = True
        self.deactivated_at = None

    @classmethod
    def query_active(cls):
        """Return a query that excludes inactive records."""
        return cls.query.filter(cls.is_active.is_(True))
