"""
Workflow Engine — single-approver kinds (timesheet, expense).

Covers create / edit / transition / delete / reopen, the refusal taxonomy,
optimistic concurrency and the audit trail.
"""

from decimal import Decimal

import pytest
from sqlalchemy import update

from tracker.core.exceptions import ErrorCode, ErrorKind, ValidationError
from tracker.models import db
from tracker.models.audit import AuditLog, history_for
from tracker.models.workflow import Expense, Timesheet
from tracker.services import workflow_engine


def _timesheet_fields(resource, **overrides):
    fields = {"resource_id": resource.id, "work_date": "2025-01-06", "hours": "7.5"}
    fields.update(overrides)
    return fields


@pytest.fixture()
def draft_ts(project, users, billing):
    """Timesheet drafted through the engine by the contributor (alice's user)."""
    result = workflow_engine.create_entity(
        "timesheet", project.id, users["contributor"].id, _timesheet_fields(billing["alice"])
    )
    assert result.ok
    return result.entity_id


@pytest.fixture()
def submitted_ts(draft_ts, users):
    result = workflow_engine.transition("timesheet", draft_ts, "submit", users["contributor"].id)
    assert result.ok
    return draft_ts


class TestCreate:
    def test_contributor_books_own_resource(self, project, users, billing):
        result = workflow_engine.create_entity(
            "timesheet", project.id, users["contributor"].id, _timesheet_fields(billing["alice"])
        )
        assert result.ok
        assert result.new_status == "draft"
        assert result.version == 1
        ts = db.session.get(Timesheet, result.entity_id)
        assert ts.created_by == users["contributor"].id
        assert ts.hours == Decimal("7.50")
        assert ts.chargeable_to_customer is True

    def test_contributor_cannot_book_for_others(self, project, users, billing):
        result = workflow_engine.create_entity(
            "timesheet", project.id, users["contributor"].id, _timesheet_fields(billing["bob"])
        )
        assert not result.ok
        assert result.error.code is ErrorCode.INSUFFICIENT_ROLE
        assert Timesheet.query.count() == 0

    def test_supplier_pm_books_for_others(self, project, users, billing):
        result = workflow_engine.create_entity(
            "timesheet", project.id, users["supplier_pm"].id, _timesheet_fields(billing["bob"])
        )
        assert result.ok

    def test_viewer_and_customer_pm_cannot_create(self, project, users, billing):
        for role in ("viewer", "customer_pm"):
            result = workflow_engine.create_entity(
                "timesheet", project.id, users[role].id, _timesheet_fields(billing["alice"])
            )
            assert result.error.code is ErrorCode.INSUFFICIENT_ROLE

    def test_outsider_is_not_a_member(self, project, users, billing):
        result = workflow_engine.create_entity(
            "timesheet", project.id, users["outsider"].id, _timesheet_fields(billing["alice"])
        )
        assert result.error.code is ErrorCode.NOT_A_MEMBER
        assert result.error.kind is ErrorKind.AUTHORIZATION
        assert result.error.recoverable is False

    def test_hours_out_of_range(self, project, users, billing):
        with pytest.raises(ValidationError) as exc:
            workflow_engine.create_entity(
                "timesheet", project.id, users["contributor"].id,
                _timesheet_fields(billing["alice"], hours=25),
            )
        assert "hours" in exc.value.details

    def test_missing_and_unknown_fields(self, project, users, billing):
        with pytest.raises(ValidationError) as exc:
            workflow_engine.create_entity(
                "timesheet", project.id, users["admin"].id, {"resource_id": billing["alice"].id}
            )
        assert exc.value.details == {"work_date": "required", "hours": "required"}

        with pytest.raises(ValidationError) as exc:
            workflow_engine.create_entity(
                "timesheet", project.id, users["admin"].id,
                _timesheet_fields(billing["alice"], status="approved"),
            )
        assert exc.value.details["unknown_fields"] == ["status"]

    def test_bad_procurement_method(self, project, users, billing):
        with pytest.raises(ValidationError) as exc:
            workflow_engine.create_entity(
                "expense", project.id, users["contributor"].id,
                {"resource_id": billing["alice"].id, "expense_date": "2025-01-08",
                 "amount": "120", "procurement_method": "airline"},
            )
        assert "procurement_method" in exc.value.details

    def test_resource_from_other_project(self, project, other_project, users):
        from tracker.models.billing import Resource

        stray = Resource(project_id=other_project.id, name="Stray", cost_rate=Decimal("50"))
        db.session.add(stray)
        db.session.commit()
        with pytest.raises(ValidationError):
            workflow_engine.create_entity(
                "timesheet", project.id, users["admin"].id, _timesheet_fields(stray)
            )

    def test_unknown_kind(self, project, users):
        with pytest.raises(ValidationError):
            workflow_engine.create_entity("invoice", project.id, users["admin"].id, {})

    def test_create_is_audited(self, draft_ts, users):
        history = workflow_engine.entity_history("timesheet", draft_ts)
        assert [row["action"] for row in history["audit"]] == ["create"]
        assert history["audit"][0]["actor_user_id"] == users["contributor"].id
        assert history["signatures"] == []


class TestTransitions:
    def test_submit_stamps_and_bumps_version(self, draft_ts, users):
        result = workflow_engine.transition("timesheet", draft_ts, "submit", users["contributor"].id)
        assert result.ok
        assert (result.previous_status, result.new_status, result.version) == ("draft", "submitted", 2)
        ts = db.session.get(Timesheet, draft_ts)
        assert ts.submitted_at is not None

    def test_approve_from_draft_is_illegal(self, draft_ts, users):
        result = workflow_engine.transition("timesheet", draft_ts, "approve", users["customer_pm"].id)
        assert result.error.code is ErrorCode.ILLEGAL_TRANSITION
        assert result.error.kind is ErrorKind.STATE
        assert result.error.details == {"current_status": "draft", "action": "approve"}
        assert db.session.get(Timesheet, draft_ts).status == "draft"

    def test_customer_side_approves_chargeable(self, submitted_ts, users):
        refused = workflow_engine.transition("timesheet", submitted_ts, "approve", users["supplier_finance"].id)
        assert refused.error.code is ErrorCode.WRONG_CHARGEABILITY_SIDE

        result = workflow_engine.transition("timesheet", submitted_ts, "approve", users["customer_finance"].id)
        assert result.ok
        ts = db.session.get(Timesheet, submitted_ts)
        assert ts.status == "approved"
        assert ts.approved_by == users["customer_finance"].id
        assert ts.approved_at is not None

    def test_supplier_side_approves_non_chargeable(self, project, users, billing, make_timesheet):
        ts = make_timesheet(billing["bob"], "2025-01-07", 8, status="submitted", chargeable=False)
        refused = workflow_engine.transition("timesheet", ts.id, "approve", users["customer_pm"].id)
        assert refused.error.code is ErrorCode.WRONG_CHARGEABILITY_SIDE

        result = workflow_engine.transition("timesheet", ts.id, "approve", users["supplier_pm"].id)
        assert result.ok

    def test_contributor_cannot_approve(self, submitted_ts, users):
        result = workflow_engine.transition("timesheet", submitted_ts, "approve", users["contributor"].id)
        assert result.error.code is ErrorCode.INSUFFICIENT_ROLE

    def test_creator_cannot_approve_own_timesheet(self, users, billing, make_timesheet):
        own = users["customer_finance"]
        ts = make_timesheet(billing["bob"], "2025-01-08", 6, status="submitted", created_by=own.id)

        result = workflow_engine.transition("timesheet", ts.id, "approve", own.id)
        assert result.error.code is ErrorCode.DUPLICATE_SIGNER
        assert result.error.details["approver_id"] == own.id
        assert db.session.get(Timesheet, ts.id).status == "submitted"
        assert [a["action"] for a in workflow_engine.available_actions("timesheet", ts.id, own.id)] == ["reject"]

        assert workflow_engine.transition("timesheet", ts.id, "approve", users["customer_pm"].id).ok

    def test_booked_resource_cannot_approve_own_hours(self, users, billing, make_timesheet):
        bob = billing["bob"]
        bob.user_id = users["supplier_finance"].id
        db.session.commit()
        ts = make_timesheet(bob, "2025-01-09", 4, status="submitted", chargeable=False)

        result = workflow_engine.transition("timesheet", ts.id, "approve", users["supplier_finance"].id)
        assert result.error.code is ErrorCode.DUPLICATE_SIGNER
        assert workflow_engine.transition("timesheet", ts.id, "approve", users["supplier_pm"].id).ok

    def test_reject_requires_reason(self, submitted_ts, users):
        for reason in (None, "", "   "):
            result = workflow_engine.transition(
                "timesheet", submitted_ts, "reject", users["customer_pm"].id, reason=reason
            )
            assert result.error.code is ErrorCode.REASON_REQUIRED
            assert result.error.kind is ErrorKind.VALIDATION

        result = workflow_engine.transition(
            "timesheet", submitted_ts, "reject", users["customer_pm"].id, reason=" Wrong day "
        )
        assert result.ok
        ts = db.session.get(Timesheet, submitted_ts)
        assert ts.status == "rejected"
        assert ts.rejection_reason == "Wrong day"
        assert ts.rejected_by == users["customer_pm"].id

    def test_terminal_states_accept_nothing(self, submitted_ts, users):
        assert workflow_engine.transition("timesheet", submitted_ts, "approve", users["customer_pm"].id).ok
        for action in ("approve", "reject", "submit"):
            result = workflow_engine.transition(
                "timesheet", submitted_ts, action, users["admin"].id, reason="late"
            )
            assert result.error.code is ErrorCode.ILLEGAL_TRANSITION, action

    def test_unknown_action_is_illegal(self, draft_ts, users):
        result = workflow_engine.transition("timesheet", draft_ts, "teleport", users["admin"].id)
        assert result.error.code is ErrorCode.ILLEGAL_TRANSITION
        assert result.action == "teleport"

    def test_deleted_entity_is_not_found(self, draft_ts, users):
        assert workflow_engine.delete_entity("timesheet", draft_ts, users["contributor"].id).ok
        result = workflow_engine.transition("timesheet", draft_ts, "submit", users["admin"].id)
        assert result.error.code is ErrorCode.NOT_FOUND

    def test_other_project_is_not_found(self, draft_ts, other_project, users):
        result = workflow_engine.transition(
            "timesheet", draft_ts, "submit", users["admin"].id, project_id=other_project.id
        )
        assert result.error.code is ErrorCode.NOT_FOUND

    def test_transition_audit_trail(self, submitted_ts, users):
        workflow_engine.transition("timesheet", submitted_ts, "reject", users["customer_pm"].id, reason="dup")
        rows = history_for("timesheet", submitted_ts)
        assert [r.action for r in rows] == ["create", "timesheet.submit", "timesheet.reject"]
        assert rows[-1].diff["status"] == {"old": "submitted", "new": "rejected"}
        assert rows[-1].diff["reason"] == "dup"

    def test_refusal_writes_nothing(self, draft_ts, users):
        workflow_engine.transition("timesheet", draft_ts, "approve", users["viewer"].id)
        assert AuditLog.query.filter_by(entity_id=str(draft_ts)).count() == 1


class TestOwnDraft:
    def test_creator_deletes_own_draft(self, draft_ts, users):
        result = workflow_engine.delete_entity("timesheet", draft_ts, users["contributor"].id)
        assert result.ok
        assert Timesheet.query_active().filter_by(id=draft_ts).first() is None
        assert db.session.get(Timesheet, draft_ts).deleted_by == users["contributor"].id

    def test_other_contributor_cannot_delete(self, draft_ts, users):
        result = workflow_engine.delete_entity("timesheet", draft_ts, users["contributor2"].id)
        assert result.error.code is ErrorCode.NOT_OWNER_OR_WRONG_STATE

    def test_creator_loses_rights_after_submit(self, submitted_ts, users):
        contributor = users["contributor"].id
        deleted = workflow_engine.delete_entity("timesheet", submitted_ts, contributor)
        assert deleted.error.code is ErrorCode.NOT_OWNER_OR_WRONG_STATE
        edited = workflow_engine.update_entity("timesheet", submitted_ts, contributor, {"hours": "6"})
        assert edited.error.code is ErrorCode.NOT_OWNER_OR_WRONG_STATE

    def test_supplier_side_cannot_delete_approved(self, project, users, billing, make_timesheet):
        ts = make_timesheet(billing["bob"], "2025-01-07", 8)
        result = workflow_engine.delete_entity("timesheet", ts.id, users["supplier_pm"].id)
        assert result.error.code is ErrorCode.ILLEGAL_TRANSITION


class TestUpdate:
    def test_creator_edits_own_draft(self, draft_ts, users):
        result = workflow_engine.update_entity(
            "timesheet", draft_ts, users["contributor"].id,
            {"hours": "6", "description": "Workshop"}, expected_version=1,
        )
        assert result.ok
        assert result.version == 2
        ts = db.session.get(Timesheet, draft_ts)
        assert float(ts.hours) == 6.0
        assert ts.description == "Workshop"
        assert ts.status == "draft"

        row = AuditLog.query.filter_by(action="update", entity_id=str(draft_ts)).one()
        assert set(row.diff) == {"hours", "description"}

    def test_supplier_side_edits_any_draft(self, draft_ts, users):
        result = workflow_engine.update_entity("timesheet", draft_ts, users["supplier_finance"].id, {"hours": 4})
        assert result.ok

    def test_edit_rejects_bad_values(self, draft_ts, users):
        with pytest.raises(ValidationError):
            workflow_engine.update_entity("timesheet", draft_ts, users["contributor"].id, {"hours": "0"})
        with pytest.raises(ValidationError):
            workflow_engine.update_entity("timesheet", draft_ts, users["contributor"].id, {"status": "approved"})

    def test_edit_with_stale_version(self, draft_ts, users):
        result = workflow_engine.update_entity(
            "timesheet", draft_ts, users["contributor"].id, {"hours": "6"}, expected_version=7
        )
        assert result.error.code is ErrorCode.STALE_STATE


class TestConcurrency:
    def test_expected_version_mismatch(self, draft_ts, users):
        assert workflow_engine.transition(
            "timesheet", draft_ts, "submit", users["contributor"].id, expected_version=1
        ).ok
        result = workflow_engine.transition(
            "timesheet", draft_ts, "approve", users["customer_pm"].id, expected_version=1
        )
        assert result.error.code is ErrorCode.STALE_STATE
        assert result.error.kind is ErrorKind.CONCURRENCY
        assert result.error.recoverable is True
        assert result.error.details["found"] == {"version": 2, "status": "submitted"}

    def test_concurrent_writer_wins(self, project, users, billing, make_timesheet):
        ts = make_timesheet(billing["alice"], "2025-01-06", 8, status="submitted")
        assert ts.version == 1  # loads the row into the session

        # Another writer rejects behind the session's back
        db.session.execute(
            update(Timesheet)
            .where(Timesheet.id == ts.id)
            .values(status="rejected", version=2)
            .execution_options(synchronize_session=False)
        )

        result = workflow_engine.transition("timesheet", ts.id, "approve", users["customer_pm"].id)
        assert result.error.code is ErrorCode.STALE_STATE
        assert AuditLog.query.filter_by(action="timesheet.approve").count() == 0


class TestReopen:
    def test_rejected_reopens_as_new_draft(self, project, users, billing, make_timesheet):
        old = make_timesheet(
            billing["alice"], "2025-01-06", 7.5, status="rejected", created_by=users["contributor"].id
        )
        result = workflow_engine.reopen_as_new("timesheet", old.id, users["contributor"].id)
        assert result.ok
        assert result.entity_id != old.id

        new = db.session.get(Timesheet, result.entity_id)
        assert new.status == "draft"
        assert new.version == 1
        assert new.supersedes_id == old.id
        assert new.work_date == old.work_date
        assert db.session.get(Timesheet, old.id).status == "rejected"

        again = workflow_engine.reopen_as_new("timesheet", old.id, users["contributor"].id)
        assert again.error.code is ErrorCode.ILLEGAL_TRANSITION

    def test_only_rejected_reopens(self, submitted_ts, users):
        result = workflow_engine.reopen_as_new("timesheet", submitted_ts, users["admin"].id)
        assert result.error.code is ErrorCode.ILLEGAL_TRANSITION


class TestReadSide:
    def test_available_actions_for_creator(self, draft_ts, users):
        actions = workflow_engine.available_actions("timesheet", draft_ts, users["contributor"].id)
        assert [a["action"] for a in actions] == ["submit", "edit", "delete"]

    def test_available_actions_follow_side(self, submitted_ts, users):
        customer = workflow_engine.available_actions("timesheet", submitted_ts, users["customer_pm"].id)
        assert [a["action"] for a in customer] == ["approve", "reject"]
        assert customer[1]["requires_reason"] is True
        assert workflow_engine.available_actions("timesheet", submitted_ts, users["supplier_pm"].id) == []

    def test_available_actions_missing_entity(self, users):
        assert workflow_engine.available_actions("timesheet", 9999, users["admin"].id) == []

    def test_view_entity(self, draft_ts, users):
        entity, failure = workflow_engine.view_entity("timesheet", draft_ts, users["viewer"].id)
        assert failure is None
        assert entity.id == draft_ts

        entity, failure = workflow_engine.view_entity("timesheet", draft_ts, users["outsider"].id)
        assert entity is None
        assert failure.code is ErrorCode.NOT_A_MEMBER


class TestExpenses:
    def test_expense_round_trip(self, project, users, billing):
        created = workflow_engine.create_entity(
            "expense", project.id, users["contributor"].id,
            {"resource_id": billing["alice"].id, "expense_date": "2025-01-08", "amount": "45.50",
             "category": "Travel", "reason": "Taxi", "chargeable_to_customer": False,
             "procurement_method": "partner"},
        )
        assert created.ok
        assert workflow_engine.transition("expense", created.entity_id, "submit", users["contributor"].id).ok

        refused = workflow_engine.transition("expense", created.entity_id, "approve", users["customer_finance"].id)
        assert refused.error.code is ErrorCode.WRONG_CHARGEABILITY_SIDE

        result = workflow_engine.transition("expense", created.entity_id, "approve", users["supplier_finance"].id)
        assert result.ok
        exp = db.session.get(Expense, created.entity_id)
        assert exp.status == "approved"
        assert exp.is_partner_procured


class TestBatch:
    def test_partial_success(self, project, users, billing, make_timesheet):
        ok_one = make_timesheet(billing["alice"], "2025-01-06", 8, status="submitted")
        ok_two = make_timesheet(billing["bob"], "2025-01-06", 8, status="submitted")
        draft = make_timesheet(billing["bob"], "2025-01-07", 8, status="draft")

        results = workflow_engine.batch_transition(
            "timesheet", [ok_one.id, ok_two.id, draft.id], "approve", users["customer_pm"].id
        )
        assert [r["entity_id"] for r in results["success"]] == [ok_one.id, ok_two.id]
        assert len(results["errors"]) == 1
        assert results["errors"][0]["error"]["code"] == "IllegalTransition"
