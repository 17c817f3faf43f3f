"""
Permission Evaluator — deny-by-default decisions for project and organisation scope.
"""

import pytest

from tracker.core.exceptions import AuthorizationDenied, ErrorCode, ValidationError
from tracker.services import permission_service
from tracker.services.permission_service import Decision, ResourceRef
from tracker.services.role_registry import (
    Action,
    PROJECT_ROLES,
    Qualifier,
    ResourceKind,
    Role,
    matching_capabilities,
)

PROJECT_ROLE_NAMES = sorted(r.value for r in PROJECT_ROLES)


class TestRoleGate:
    @pytest.mark.parametrize("role", PROJECT_ROLE_NAMES)
    def test_no_capability_means_insufficient_role(self, project, users, role):
        actor = users[role]
        for kind in ResourceKind:
            for action in Action:
                if matching_capabilities(Role(role), action, kind):
                    continue
                decision = permission_service.authorize(actor.id, project.id, action, ResourceRef(kind=kind))
                assert not decision.allowed, f"{role} {action.value} {kind.value}"
                assert decision.reason is ErrorCode.INSUFFICIENT_ROLE
                assert decision.presentation == "hidden"

    def test_outsider_is_not_a_member(self, project, users):
        decision = permission_service.authorize(users["outsider"].id, project.id, "view", "timesheet")
        assert decision.reason is ErrorCode.NOT_A_MEMBER
        assert decision.role is None
        assert decision.presentation == "hidden"

    def test_anonymous_is_not_a_member(self, project, users):
        decision = permission_service.authorize(None, project.id, "view", "timesheet")
        assert decision.reason is ErrorCode.NOT_A_MEMBER

    def test_viewer_can_view_but_not_create(self, project, users):
        viewer = users["viewer"].id
        assert permission_service.can(viewer, project.id, "view", "deliverable")
        assert not permission_service.can(viewer, project.id, "create", "deliverable")

    def test_org_admin_decides_as_admin(self, project, users):
        decision = permission_service.authorize(
            users["org_admin"].id, project.id, Action.DELETE, ResourceKind.MILESTONE_CERTIFICATE
        )
        assert decision.allowed
        assert decision.role is Role.ADMIN
        assert decision.via == "organisation"

    def test_decision_is_truthy_only_when_allowed(self):
        assert Decision(allowed=True)
        assert not Decision(allowed=False, reason=ErrorCode.INSUFFICIENT_ROLE)


class TestOwnership:
    def test_creator_may_submit_own_draft(self, project, users):
        contributor = users["contributor"].id
        ref = ResourceRef(kind="timesheet", created_by=contributor, status="draft", chargeable=True)
        decision = permission_service.authorize(contributor, project.id, "submit", ref)
        assert decision.allowed
        assert decision.capability.qualifier is Qualifier.OWN_DRAFT

    def test_other_creator_is_refused(self, project, users):
        ref = ResourceRef(kind="timesheet", created_by=users["contributor2"].id, status="draft")
        decision = permission_service.authorize(users["contributor"].id, project.id, "submit", ref)
        assert decision.reason is ErrorCode.NOT_OWNER_OR_WRONG_STATE
        assert decision.presentation == "disabled"

    def test_own_record_past_draft_is_refused(self, project, users):
        contributor = users["contributor"].id
        ref = ResourceRef(kind="expense", created_by=contributor, status="submitted")
        decision = permission_service.authorize(contributor, project.id, "edit", ref)
        assert decision.reason is ErrorCode.NOT_OWNER_OR_WRONG_STATE

    def test_deliverable_rework_counts_as_editable(self, project, users):
        contributor = users["contributor"].id
        ref = ResourceRef(kind="deliverable", created_by=contributor, status="rework_required")
        assert permission_service.can(contributor, project.id, "resume", ref)

    def test_unqualified_grant_ignores_creator(self, project, users):
        ref = ResourceRef(kind="timesheet", created_by=users["contributor"].id, status="draft")
        assert permission_service.can(users["supplier_finance"].id, project.id, "edit", ref)

    def test_model_instance_is_accepted(self, project, users, billing, make_timesheet):
        contributor = users["contributor"].id
        ts = make_timesheet(billing["alice"], "2025-01-06", 8, status="draft", created_by=contributor)
        assert permission_service.can(contributor, project.id, "submit", ts)
        assert not permission_service.can(users["contributor2"].id, project.id, "submit", ts)


class TestChargeabilitySide:
    def _submitted(self, chargeable):
        return ResourceRef(kind="timesheet", status="submitted", chargeable=chargeable)

    def test_customer_side_validates_chargeable(self, project, users):
        assert permission_service.can(users["customer_pm"].id, project.id, "approve", self._submitted(True))
        decision = permission_service.authorize(
            users["customer_finance"].id, project.id, "approve", self._submitted(False)
        )
        assert decision.reason is ErrorCode.WRONG_CHARGEABILITY_SIDE
        assert decision.presentation == "disabled"

    def test_supplier_side_validates_non_chargeable(self, project, users):
        assert permission_service.can(users["supplier_finance"].id, project.id, "reject", self._submitted(False))
        decision = permission_service.authorize(
            users["supplier_pm"].id, project.id, "approve", self._submitted(True)
        )
        assert decision.reason is ErrorCode.WRONG_CHARGEABILITY_SIDE

    def test_admin_validates_both_sides(self, project, users):
        admin = users["admin"].id
        allowed_chargeable = permission_service.authorize(admin, project.id, "approve", self._submitted(True))
        allowed_other = permission_service.authorize(admin, project.id, "approve", self._submitted(False))
        assert allowed_chargeable.capability.qualifier is Qualifier.CHARGEABLE
        assert allowed_other.capability.qualifier is Qualifier.NON_CHARGEABLE

    def test_unknown_chargeability_is_refused(self, project, users):
        decision = permission_service.authorize(users["admin"].id, project.id, "approve", self._submitted(None))
        assert decision.reason is ErrorCode.WRONG_CHARGEABILITY_SIDE

    def test_kind_level_check_satisfies_side_qualifier(self, project, users):
        decision = permission_service.authorize(users["supplier_finance"].id, project.id, "approve", "timesheet")
        assert decision.allowed
        assert decision.capability.qualifier is Qualifier.NON_CHARGEABLE
        assert permission_service.can(users["customer_pm"].id, project.id, "reject", "expense")


class TestInputs:
    def test_unknown_action(self, project, users):
        with pytest.raises(ValidationError):
            permission_service.authorize(users["admin"].id, project.id, "teleport", "timesheet")

    def test_unknown_kind(self, project, users):
        with pytest.raises(ValidationError):
            permission_service.authorize(users["admin"].id, project.id, "view", "spaceship")

    def test_string_kind_is_coerced(self):
        assert ResourceRef(kind="variation").kind is ResourceKind.VARIATION

    def test_ensure_authorized_raises(self, project, users):
        with pytest.raises(AuthorizationDenied) as exc:
            permission_service.ensure_authorized(users["viewer"].id, project.id, "create", "expense")
        assert exc.value.code is ErrorCode.INSUFFICIENT_ROLE
        assert exc.value.details["role"] == "viewer"
        assert exc.value.decision.presentation == "hidden"

    def test_ensure_authorized_returns_decision(self, project, users):
        decision = permission_service.ensure_authorized(users["admin"].id, project.id, "create", "expense")
        assert decision.allowed


class TestOrganisationScope:
    def test_org_admin_allowed(self, project, users):
        decision = permission_service.authorize_org(
            users["org_admin"].id, project.organisation_id, "assign_members", "org_projects"
        )
        assert decision.allowed
        assert decision.role is Role.ORG_ADMIN

    def test_project_admin_has_no_organisation_role(self, project, users):
        decision = permission_service.authorize_org(
            users["admin"].id, project.organisation_id, "view", "org_projects"
        )
        assert decision.reason is ErrorCode.NOT_A_MEMBER

    def test_org_member_cannot_invite(self, project, users, make_user):
        from tracker.services.scope_resolver import assign_organisation_role

        member = make_user("member@test.local")
        assign_organisation_role(project.organisation_id, member.id, "org_member")

        assert permission_service.authorize_org(
            member.id, project.organisation_id, "view", "org_members"
        ).allowed
        decision = permission_service.authorize_org(member.id, project.organisation_id, "invite", "org_members")
        assert decision.reason is ErrorCode.INSUFFICIENT_ROLE

    def test_project_kinds_are_outside_organisation_roles(self, project, users):
        decision = permission_service.authorize_org(
            users["org_admin"].id, project.organisation_id, "view", "timesheet"
        )
        assert decision.reason is ErrorCode.INSUFFICIENT_ROLE


class TestSummaryAndSerialisation:
    def test_contributor_summary_marks_qualified_grants(self):
        summary = permission_service.permission_summary("contributor")
        assert "submit:own_draft" in summary["timesheet"]
        assert "create" in summary["timesheet"]
        assert "approve" not in " ".join(summary["timesheet"])
        assert "partner_invoice" not in summary

    def test_viewer_summary_is_view_only(self):
        summary = permission_service.permission_summary(Role.VIEWER)
        assert all(actions == ["view"] for actions in summary.values())

    def test_decision_to_dict(self, project, users):
        body = permission_service.authorize(users["viewer"].id, project.id, "approve", "expense").to_dict()
        assert body == {
            "allowed": False,
            "reason": "InsufficientRole",
            "error_kind": "authorization",
            "role": "viewer",
            "via": "project",
            "capability": None,
            "message": "Role 'viewer' cannot approve expense",
            "presentation": "hidden",
        }
