"""
Scope Resolver — effective role of an actor inside a project.

Two-tier resolution:
  1. Active organisation membership whose role is granted
     access_all_projects (org_owner, org_admin) in the organisation that owns
     the project → top project role (admin), whether or not a project row exists.
  2. Otherwise the actor's active (user, project) membership role.
  3. Neither → NoAccess (``None``).

The reverse never holds: a project role confers no organisation capability.

Resolution reads current membership rows on every call; there is no cache,
so assignment changes are visible to the next call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from tracker.core.exceptions import NotFoundError, ValidationError
from tracker.models import db
from tracker.models.auth import OrganisationMember, Project, ProjectMember, User
from tracker.services.role_registry import (
    ORGANISATION_ROLES,
    PROJECT_ROLES,
    TOP_PROJECT_ROLE,
    Action,
    ResourceKind,
    Role,
    Scope,
    matching_capabilities,
    role_from_value,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedScope:
    """Effective role plus where it came from.

    ``via`` is ``"organisation"`` for implicit organisation-wide access and
    ``"project"`` for an explicit membership row.
    """

    role: Role
    via: str
    organisation_id: int

    def to_dict(self) -> dict:
        return {
            "role": self.role.value,
            "via": self.via,
            "organisation_id": self.organisation_id,
        }


def organisation_role(actor_id: int | None, organisation_id: int) -> Role | None:
    """Active organisation-scope role of the actor, or None."""
    if actor_id is None:
        return None
    member = OrganisationMember.query.filter_by(
        organisation_id=organisation_id, user_id=actor_id, is_active=True,
    ).first()
    if member is None:
        return None
    return role_from_value(member.role)


def has_all_project_access(actor_id: int | None, organisation_id: int) -> bool:
    """Whether the actor's organisation role reaches every project of the organisation."""
    role = organisation_role(actor_id, organisation_id)
    if role is None:
        return False
    return bool(matching_capabilities(role, Action.ACCESS_ALL_PROJECTS, ResourceKind.ORG_PROJECTS))


def resolve_scope(actor_id: int | None, project_id: int) -> ResolvedScope | None:
    """Resolve the actor's effective role in a project, or None for NoAccess."""
    if actor_id is None:
        return None
    project = db.session.get(Project, project_id)
    if project is None:
        return None

    if has_all_project_access(actor_id, project.organisation_id):
        logger.info(
            "Implicit organisation-wide access user=%s project=%s",
            actor_id, project_id,
            extra={
                "event_type": "implicit_org_admin_access",
                "user_id": actor_id,
                "project_id": project_id,
                "organisation_id": project.organisation_id,
            },
        )
        return ResolvedScope(TOP_PROJECT_ROLE, "organisation", project.organisation_id)

    member = ProjectMember.query.filter_by(
        project_id=project_id, user_id=actor_id, is_active=True,
    ).first()
    if member is None:
        return None
    return ResolvedScope(role_from_value(member.role), "project", project.organisation_id)


def effective_role(actor_id: int | None, project_id: int) -> Role | None:
    """Effective project role, or None (NoAccess)."""
    scope = resolve_scope(actor_id, project_id)
    return scope.role if scope else None


def accessible_project_ids(actor_id: int, organisation_id: int) -> list[int]:
    """Projects of an organisation the actor can enter, sorted by id."""
    if has_all_project_access(actor_id, organisation_id):
        rows = db.session.query(Project.id).filter_by(organisation_id=organisation_id).all()
    else:
        rows = (
            db.session.query(Project.id)
            .join(ProjectMember, ProjectMember.project_id == Project.id)
            .filter(
                Project.organisation_id == organisation_id,
                ProjectMember.user_id == actor_id,
                ProjectMember.is_active.is_(True),
            )
            .all()
        )
    return sorted(r[0] for r in rows)


# ── Assignment ───────────────────────────────────────────────────────────────


def _require_scope(role, scope: Scope) -> Role:
    role = role_from_value(role)
    allowed = ORGANISATION_ROLES if scope is Scope.ORGANISATION else PROJECT_ROLES
    if role not in allowed:
        raise ValidationError(
            f"Role '{role.value}' is not a {scope.value}-scope role",
            details={"role": role.value, "scope": scope.value},
        )
    return role


def assign_project_role(project_id: int, user_id: int, role, *, assigned_by: int | None = None) -> ProjectMember:
    """Give a user a project role, replacing any role they already hold there.

    One row per (user, project): an existing membership is updated in place
    and reactivated.
    """
    role = _require_scope(role, Scope.PROJECT)
    if db.session.get(Project, project_id) is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    if db.session.get(User, user_id) is None:
        raise NotFoundError(resource="User", resource_id=user_id)

    member = ProjectMember.query.filter_by(project_id=project_id, user_id=user_id).first()
    if member is None:
        member = ProjectMember(project_id=project_id, user_id=user_id)
        db.session.add(member)
    previous = member.role if member.id else None
    member.role = role.value
    member.is_active = True
    member.assigned_by = assigned_by
    db.session.commit()

    logger.info(
        "Project role assigned user=%s project=%s role=%s",
        user_id, project_id, role.value,
        extra={"project_id": project_id, "user_id": user_id, "previous_role": previous},
    )
    return member


def revoke_project_role(project_id: int, user_id: int) -> bool:
    """Deactivate a project membership. Returns False when there was none."""
    member = ProjectMember.query.filter_by(project_id=project_id, user_id=user_id, is_active=True).first()
    if member is None:
        return False
    member.is_active = False
    db.session.commit()
    logger.info(
        "Project role revoked user=%s project=%s", user_id, project_id,
        extra={"project_id": project_id, "user_id": user_id},
    )
    return True


def assign_organisation_role(organisation_id: int, user_id: int, role) -> OrganisationMember:
    """Give a user an organisation role, replacing any role they already hold there."""
    role = _require_scope(role, Scope.ORGANISATION)
    if db.session.get(User, user_id) is None:
        raise NotFoundError(resource="User", resource_id=user_id)

    member = OrganisationMember.query.filter_by(organisation_id=organisation_id, user_id=user_id).first()
    if member is None:
        member = OrganisationMember(organisation_id=organisation_id, user_id=user_id)
        db.session.add(member)
    member.role = role.value
    member.is_active = True
    db.session.commit()

    logger.info(
        "Organisation role assigned user=%s org=%s role=%s",
        user_id, organisation_id, role.value,
        extra={"organisation_id": organisation_id, "user_id": user_id},
    )
    return member
