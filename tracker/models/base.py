"""
ProjectScopedModel — Abstract base class for project-scoped models.

Models that belong to exactly one project inherit from ProjectScopedModel
instead of db.Model directly. This adds:
  - project_id FK column with index
  - query_for_project(project_id) classmethod
"""

from tracker.models import db


class ProjectScopedModel(db.Model):
    """Abstract base for project-scoped tables."""
    __abstract__ = True

    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    @classmethod
    def query_for_project(cls, project_id):
        """Return a query filtered by project_id."""
        return cls.query.filter_by(project_id=project_id)
