"""
Soft Delete Mixin

Workflow entities are never physically removed. Deleting one stamps
``deleted_at`` / ``deleted_by``; every engine and invoice query goes
through ``query_active`` so deleted rows drop out of transitions and
aggregation.

Usage:
    class Timesheet(SoftDeleteMixin, ProjectScopedModel):
        ...

    Timesheet.query_active().filter_by(project_id=pid).all()
"""

from sqlalchemy.orm import declared_attr

from tracker.models import db


class SoftDeleteMixin:
    """Mixin that adds soft delete support to any SQLAlchemy model."""

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None, index=True)

    @declared_attr
    def deleted_by(cls):
        return db.Column(
            db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
        )

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    @classmethod
    def query_active(cls):
        """Return a query that excludes soft-deleted records."""
        return cls.query.filter(cls.deleted_at.is_(None))
