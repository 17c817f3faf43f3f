"""
Membership Models — organisations, users, projects and role assignments.

Two independent role scopes:
  - OrganisationMember: organisation-scope role (org_owner | org_admin | org_member)
  - ProjectMember:      project-scope role, one per (user, project)

Role values are the string values of ``tracker.services.role_registry.Role``.
They are validated by the scope resolver when assigned; the database only
enforces the one-assignment-per-pair invariant.
"""

from datetime import datetime, timezone

from tracker.models import db


# ═══════════════════════════════════════════════════════════════
# 1. ORGANISATIONS
# ═══════════════════════════════════════════════════════════════
class Organisation(db.Model):
    __tablename__ = "organisations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    projects = db.relationship("Project", back_populates="organisation", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# ═══════════════════════════════════════════════════════════════
# 2. USERS (actors)
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), nullable=False, unique=True)
    full_name = db.Column(db.String(200))
    status = db.Column(db.String(20), default="active")  # active, invited, inactive
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    organisation_memberships = db.relationship(
        "OrganisationMember", back_populates="user", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    project_memberships = db.relationship(
        "ProjectMember", back_populates="user", lazy="dynamic",
        cascade="all, delete-orphan", foreign_keys="ProjectMember.user_id",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "status": self.status,
        }


# ═══════════════════════════════════════════════════════════════
# 3. ORGANISATION MEMBERS
# ═══════════════════════════════════════════════════════════════
class OrganisationMember(db.Model):
    __tablename__ = "organisation_members"

    id = db.Column(db.Integer, primary_key=True)
    organisation_id = db.Column(
        db.Integer, db.ForeignKey("organisations.id", ondelete="CASCADE"), nullable=False
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role = db.Column(db.String(50), nullable=False, default="org_member")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("organisation_id", "user_id", name="uq_org_member_user"),
        db.Index("ix_org_members_user", "user_id"),
    )

    user = db.relationship("User", back_populates="organisation_memberships")

    def to_dict(self):
        return {
            "id": self.id,
            "organisation_id": self.organisation_id,
            "user_id": self.user_id,
            "role": self.role,
            "is_active": self.is_active,
        }


# ═══════════════════════════════════════════════════════════════
# 4. PROJECTS
# ═══════════════════════════════════════════════════════════════
class Project(db.Model):
    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    organisation_id = db.Column(
        db.Integer, db.ForeignKey("organisations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    code = db.Column(db.String(50), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("organisation_id", "code", name="uq_project_org_code"),
    )

    organisation = db.relationship("Organisation", back_populates="projects")
    members = db.relationship(
        "ProjectMember", back_populates="project", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "organisation_id": self.organisation_id,
            "code": self.code,
            "name": self.name,
        }


# ═══════════════════════════════════════════════════════════════
# 5. PROJECT MEMBERS
# ═══════════════════════════════════════════════════════════════
class ProjectMember(db.Model):
    """One project-scope role per (user, project) pair."""

    __tablename__ = "project_members"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role = db.Column(db.String(50), nullable=False, default="viewer")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    assigned_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("project_id", "user_id", name="uq_project_member_user"),
        db.Index("ix_project_members_user", "user_id"),
    )

    user = db.relationship("User", back_populates="project_memberships", foreign_keys=[user_id])
    project = db.relationship("Project", back_populates="members")

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "role": self.role,
            "is_active": self.is_active,
        }
