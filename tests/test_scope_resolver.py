"""Scope resolver — effective project role from organisation and project memberships."""

import logging

import pytest

from tracker.core.exceptions import NotFoundError, UnknownRole, ValidationError
from tracker.models import db
from tracker.models.auth import Organisation, Project, ProjectMember
from tracker.services import scope_resolver
from tracker.services.role_registry import Role


class TestResolveScope:
    def test_explicit_project_role(self, project, users):
        scope = scope_resolver.resolve_scope(users["supplier_pm"].id, project.id)
        assert scope.role is Role.SUPPLIER_PM
        assert scope.via == "project"
        assert scope.organisation_id == project.organisation_id

    def test_org_admin_without_project_row_gets_admin(self, project, users):
        org_admin = users["org_admin"]
        assert ProjectMember.query.filter_by(user_id=org_admin.id).count() == 0

        scope = scope_resolver.resolve_scope(org_admin.id, project.id)
        assert scope.role is Role.ADMIN
        assert scope.via == "organisation"
        assert scope_resolver.effective_role(org_admin.id, project.id) is Role.ADMIN

    def test_org_owner_without_project_row_gets_admin(self, project, make_user):
        owner = make_user("owner@test.local")
        scope_resolver.assign_organisation_role(project.organisation_id, owner.id, "org_owner")

        scope = scope_resolver.resolve_scope(owner.id, project.id)
        assert scope.role is Role.ADMIN
        assert scope.via == "organisation"
        assert scope_resolver.has_all_project_access(owner.id, project.organisation_id)

    def test_org_admin_overrides_lower_project_role(self, project, users):
        viewer = users["viewer"]
        scope_resolver.assign_organisation_role(project.organisation_id, viewer.id, "org_admin")
        assert scope_resolver.effective_role(viewer.id, project.id) is Role.ADMIN

    def test_implicit_access_is_logged(self, project, users, caplog):
        with caplog.at_level(logging.INFO, logger="tracker.services.scope_resolver"):
            scope_resolver.resolve_scope(users["org_admin"].id, project.id)
        records = [r for r in caplog.records if getattr(r, "event_type", None) == "implicit_org_admin_access"]
        assert len(records) == 1
        assert records[0].project_id == project.id

    def test_org_admin_of_another_organisation_has_no_access(self, project, make_user):
        other = Organisation(name="Globex", slug="globex")
        db.session.add(other)
        db.session.commit()
        user = make_user("globex-admin@test.local")
        scope_resolver.assign_organisation_role(other.id, user.id, "org_admin")

        assert scope_resolver.resolve_scope(user.id, project.id) is None

    def test_org_member_without_project_row_has_no_access(self, project, make_user):
        user = make_user("member@test.local")
        scope_resolver.assign_organisation_role(project.organisation_id, user.id, "org_member")
        assert scope_resolver.effective_role(user.id, project.id) is None
        assert not scope_resolver.has_all_project_access(user.id, project.organisation_id)

    def test_outsider_and_anonymous(self, project, users):
        assert scope_resolver.resolve_scope(users["outsider"].id, project.id) is None
        assert scope_resolver.resolve_scope(None, project.id) is None

    def test_missing_project(self, users):
        assert scope_resolver.resolve_scope(users["admin"].id, 9999) is None

    def test_revoked_membership_has_no_access(self, project, users):
        user = users["customer_pm"]
        assert scope_resolver.revoke_project_role(project.id, user.id) is True
        assert scope_resolver.effective_role(user.id, project.id) is None
        assert scope_resolver.revoke_project_role(project.id, user.id) is False

    def test_unknown_stored_role_raises(self, project, users):
        member = ProjectMember.query.filter_by(project_id=project.id, user_id=users["viewer"].id).first()
        member.role = "wizard"
        db.session.commit()
        with pytest.raises(UnknownRole):
            scope_resolver.resolve_scope(users["viewer"].id, project.id)

    def test_changes_are_visible_immediately(self, project, users):
        user = users["viewer"]
        assert scope_resolver.effective_role(user.id, project.id) is Role.VIEWER
        scope_resolver.assign_project_role(project.id, user.id, "customer_finance")
        assert scope_resolver.effective_role(user.id, project.id) is Role.CUSTOMER_FINANCE


class TestAssignment:
    def test_reassign_updates_single_row(self, project, users):
        user = users["contributor"]
        scope_resolver.assign_project_role(project.id, user.id, "supplier_finance", assigned_by=users["admin"].id)

        rows = ProjectMember.query.filter_by(project_id=project.id, user_id=user.id).all()
        assert len(rows) == 1
        assert rows[0].role == "supplier_finance"
        assert rows[0].assigned_by == users["admin"].id

    def test_reassign_reactivates(self, project, users):
        user = users["viewer"]
        scope_resolver.revoke_project_role(project.id, user.id)
        member = scope_resolver.assign_project_role(project.id, user.id, "viewer")
        assert member.is_active is True

    def test_organisation_role_rejected_at_project_scope(self, project, users):
        with pytest.raises(ValidationError):
            scope_resolver.assign_project_role(project.id, users["viewer"].id, "org_admin")

    def test_project_role_rejected_at_organisation_scope(self, project, users):
        with pytest.raises(ValidationError):
            scope_resolver.assign_organisation_role(project.organisation_id, users["viewer"].id, "admin")

    def test_unknown_role_rejected(self, project, users):
        with pytest.raises(UnknownRole):
            scope_resolver.assign_project_role(project.id, users["viewer"].id, "wizard")

    def test_missing_user_or_project(self, project):
        with pytest.raises(NotFoundError):
            scope_resolver.assign_project_role(project.id, 9999, "viewer")
        with pytest.raises(NotFoundError):
            scope_resolver.assign_project_role(9999, 1, "viewer")


class TestAccessibleProjects:
    def test_member_sees_only_own_projects(self, project, other_project, users):
        assert scope_resolver.accessible_project_ids(users["viewer"].id, project.organisation_id) == [project.id]

    def test_org_admin_sees_all_projects(self, project, other_project, users):
        ids = scope_resolver.accessible_project_ids(users["org_admin"].id, project.organisation_id)
        assert ids == sorted([project.id, other_project.id])

    def test_org_owner_sees_all_projects(self, project, other_project, make_user):
        owner = make_user("owner@test.local")
        scope_resolver.assign_organisation_role(project.organisation_id, owner.id, "org_owner")
        ids = scope_resolver.accessible_project_ids(owner.id, project.organisation_id)
        assert ids == sorted([project.id, other_project.id])

    def test_organisation_role_lookup(self, project, users):
        assert scope_resolver.organisation_role(users["org_admin"].id, project.organisation_id) is Role.ORG_ADMIN
        assert scope_resolver.organisation_role(users["admin"].id, project.organisation_id) is None


def test_project_model_has_members(project, users):
    assert db.session.get(Project, project.id).members.filter_by(is_active=True).count() == 8
