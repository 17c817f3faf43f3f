"""
Workflow Engine — the only writer of workflow entity status.

Every transition runs the same pipeline, whatever the kind:

  1. load the entity (soft-deleted rows are invisible)
  2. authorize via the permission evaluator
  3. caller's expected_version still current            → else StaleState
  4. (action, status) present in the kind's definition  → else IllegalTransition
  5. mandatory reason present when the transition needs one
  6. approver is not the requestor (SelfApproval, reported as DuplicateSigner);
     signature checks: side not already signed (IllegalTransition),
     signer distinct from the other side's signer (DuplicateSigner)
  7. compare-and-set UPDATE … WHERE id, status, version  → 0 rows = StaleState
  8. insert / void signatures, write audit row, commit

Failures never leave a partial transition: the session is rolled back and
a ``TransitionResult`` carrying a ``WorkflowFailure`` is returned. Only
configuration errors (UnknownRole) and malformed input (ValidationError)
propagate as exceptions.

Usage:
    from tracker.services.workflow_engine import transition

    result = transition("timesheet", ts_id, "approve", actor_id=7)
    if not result.ok:
        ...  # result.error.code, result.error.kind
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import update

from tracker.core.exceptions import (
    AuthorizationDenied,
    DuplicateSigner,
    EntityNotFound,
    ErrorCode,
    ErrorKind,
    IllegalTransition,
    ReasonRequired,
    SelfApproval,
    StaleState,
    ValidationError,
    WorkflowError,
)
from tracker.models import db
from tracker.models.audit import history_for, write_audit
from tracker.models.billing import Resource
from tracker.models.workflow import (
    MODEL_BY_KIND,
    PROCUREMENT_METHODS,
    VARIATION_TYPES,
    WorkflowSignature,
)
from tracker.services import permission_service
from tracker.services.permission_service import ResourceRef
from tracker.services.role_registry import Action, ResourceKind
from tracker.services.workflow_definitions import WorkflowDefinition, definition_for
from tracker.utils.helpers import commit_or_raise, parse_date_input, parse_decimal_input

logger = logging.getLogger(__name__)


# ── Results ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class WorkflowFailure:
    code: ErrorCode
    message: str
    details: dict = field(default_factory=dict)

    @property
    def kind(self) -> ErrorKind:
        return self.code.kind

    @property
    def recoverable(self) -> bool:
        return self.code.recoverable

    def to_dict(self) -> dict:
        return {
            "code": self.code.value,
            "kind": self.kind.value,
            "message": self.message,
            "recoverable": self.recoverable,
            "details": self.details,
        }

    @classmethod
    def from_error(cls, exc: WorkflowError) -> WorkflowFailure:
        return cls(code=exc.code, message=exc.message, details=exc.details)


@dataclass(frozen=True)
class TransitionResult:
    ok: bool
    kind: str
    entity_id: int | None
    action: str
    previous_status: str | None = None
    new_status: str | None = None
    version: int | None = None
    error: WorkflowFailure | None = None
    entity: object = None

    def to_dict(self) -> dict:
        d = {
            "ok": self.ok,
            "kind": self.kind,
            "entity_id": self.entity_id,
            "action": self.action,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "version": self.version,
        }
        if self.error is not None:
            d["error"] = self.error.to_dict()
        if self.entity is not None:
            d["entity"] = self.entity.to_dict()
        return d


def _failed(kind, entity_id, action, exc: WorkflowError, previous_status=None) -> TransitionResult:
    db.session.rollback()
    action = action.value if isinstance(action, Action) else str(action)
    logger.info(
        "Workflow action refused: %s %s #%s → %s",
        action, kind, entity_id, exc.code.value,
        extra={"event_type": "workflow_refused", "error_code": exc.code.value},
    )
    return TransitionResult(
        ok=False,
        kind=kind,
        entity_id=entity_id,
        action=action,
        previous_status=previous_status,
        error=WorkflowFailure.from_error(exc),
    )


# ── Loading ──────────────────────────────────────────────────────────────────


def _definition(kind) -> WorkflowDefinition:
    definition = definition_for(kind)
    if definition is None:
        raise ValidationError(f"Unknown workflow kind: {kind!r}", details={"kind": kind})
    return definition


def _load(definition: WorkflowDefinition, entity_id, project_id=None):
    model = MODEL_BY_KIND[definition.kind.value]
    query = model.query_active().filter_by(id=entity_id)
    if project_id is not None:
        query = query.filter_by(project_id=project_id)
    entity = query.first()
    if entity is None:
        raise EntityNotFound(definition.kind.value, entity_id)
    return entity


def _action(definition: WorkflowDefinition, action, status: str) -> Action:
    try:
        return Action(action)
    except ValueError:
        raise IllegalTransition(
            kind=definition.kind.value, current=status, action=str(action), reason="unknown action",
        ) from None


def _authorize(actor_id, project_id, action, resource):
    decision = permission_service.authorize(actor_id, project_id, action, resource)
    if not decision.allowed:
        raise AuthorizationDenied(decision)
    return decision


def _check_expected_version(entity, expected_version):
    if expected_version is not None and int(expected_version) != entity.version:
        raise StaleState(
            kind=entity.entity_kind,
            entity_id=entity.id,
            expected={"version": int(expected_version)},
            found={"version": entity.version, "status": entity.status},
        )


# ── Compare-and-set ──────────────────────────────────────────────────────────


def compare_and_set(model, entity_id, *, expected_status, expected_version, values) -> None:
    """Apply ``values`` only if the row still has the expected status and version.

    Bumps ``version``. Raises StaleState when another writer got there first.
    Does not commit.
    """
    values = dict(values)
    values["version"] = model.version + 1
    values.setdefault("updated_at", datetime.now(timezone.utc))
    stmt = (
        update(model)
        .where(
            model.id == entity_id,
            model.status == expected_status,
            model.version == expected_version,
            model.deleted_at.is_(None),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise StaleState(
            kind=model.entity_kind,
            entity_id=entity_id,
            expected={"status": expected_status, "version": expected_version},
        )


# Columns stamped when an entity enters a status (only where the model has them)
_STATUS_STAMPS = {
    "submitted": ("submitted_at", None),
    "approved": ("approved_at", "approved_by"),
    "rejected": ("rejected_at", "rejected_by"),
    "delivered": ("delivered_at", None),
    "applied": ("applied_at", None),
}


def _stamp_values(model, status, actor_id, now) -> dict:
    at_col, by_col = _STATUS_STAMPS.get(status, (None, None))
    columns = model.__table__.c
    values = {}
    if at_col and at_col in columns:
        values[at_col] = now
    if by_col and by_col in columns:
        values[by_col] = actor_id
    return values


# ── Signatures ───────────────────────────────────────────────────────────────


def _check_signature(definition, entity, side, actor_id, action) -> list[WorkflowSignature]:
    active = WorkflowSignature.active_for(definition.kind.value, entity.id)
    if any(sig.side == side for sig in active):
        raise IllegalTransition(
            kind=definition.kind.value, current=entity.status, action=action.value,
            reason=f"{side} side has already signed",
        )
    for sig in active:
        if sig.side != side and sig.signer_id == actor_id:
            raise DuplicateSigner(signer_id=actor_id, side=side, other_side=sig.side)
    return active


def _is_requestor(entity, actor_id) -> bool:
    """Actor created the entity or is the resource it was booked against."""
    if actor_id is None:
        return False
    if getattr(entity, "created_by", None) == actor_id:
        return True
    resource = getattr(entity, "resource", None)
    return resource is not None and resource.user_id == actor_id


def _void_signatures(kind: str, entity_id: int, reason: str | None, now) -> int:
    voided = 0
    for sig in WorkflowSignature.active_for(kind, entity_id):
        sig.voided_at = now
        sig.void_reason = reason
        voided += 1
    return voided


# ── Transition ───────────────────────────────────────────────────────────────


def transition(
    kind,
    entity_id: int,
    action,
    actor_id: int | None,
    *,
    reason: str | None = None,
    expected_version: int | None = None,
    project_id: int | None = None,
) -> TransitionResult:
    """Apply one workflow action to an entity.

    Args:
        kind: Workflow kind ("timesheet", "expense", "deliverable",
            "milestone_certificate", "variation").
        entity_id: Entity primary key.
        action: ``Action`` or its string value (submit, approve, sign_as_customer, …).
        actor_id: Acting user.
        reason: Mandatory for reject / request_rework.
        expected_version: Version the caller last read; mismatch → StaleState.
        project_id: When given, entities outside this project are NotFound.

    Returns:
        TransitionResult: ``ok`` with ``new_status``, or ``error``.
    """
    definition = _definition(kind)
    previous_status = None
    try:
        entity = _load(definition, entity_id, project_id)
        previous_status = entity.status
        previous_version = entity.version
        act = _action(definition, action, previous_status)

        decision = _authorize(actor_id, entity.project_id, act, entity)
        _check_expected_version(entity, expected_version)

        step = definition.lookup(act, previous_status)
        if step is None:
            raise IllegalTransition(kind=definition.kind.value, current=previous_status, action=act.value)

        if step.requires_reason and not (reason and reason.strip()):
            raise ReasonRequired(act.value)

        if act is Action.APPROVE and _is_requestor(entity, actor_id):
            raise SelfApproval(approver_id=actor_id, kind=definition.kind.value)

        target = step.target
        if step.sign_side:
            active = _check_signature(definition, entity, step.sign_side, actor_id, act)
            signed_sides = {sig.side for sig in active} | {step.sign_side}
            if step.complete_target and signed_sides >= set(definition.signature_sides):
                target = step.complete_target

        now = datetime.now(timezone.utc)
        model = type(entity)
        values = {"status": target}
        values.update(_stamp_values(model, target, actor_id, now))
        if step.requires_reason:
            values["rejection_reason"] = reason.strip()

        compare_and_set(
            model, entity.id,
            expected_status=previous_status,
            expected_version=previous_version,
            values=values,
        )

        voided = 0
        if step.sign_side:
            db.session.add(WorkflowSignature(
                project_id=entity.project_id,
                entity_kind=definition.kind.value,
                entity_id=entity.id,
                side=step.sign_side,
                signer_id=actor_id,
                signer_role=decision.role.value if decision.role else None,
                signed_at=now,
            ))
        if step.discards_signatures:
            voided = _void_signatures(definition.kind.value, entity.id, reason, now)

        diff = {
            "status": {"old": previous_status, "new": target},
            "version": {"old": previous_version, "new": previous_version + 1},
        }
        if step.requires_reason:
            diff["reason"] = reason.strip()
        if step.sign_side:
            diff["signed_as"] = step.sign_side
        if voided:
            diff["signatures_voided"] = voided
        write_audit(
            entity_type=definition.kind.value,
            entity_id=entity.id,
            action=f"{definition.kind.value}.{act.value}",
            project_id=entity.project_id,
            actor_user_id=actor_id,
            diff=diff,
        )
        commit_or_raise(definition.kind.value)
    except WorkflowError as exc:
        return _failed(definition.kind.value, entity_id, action, exc, previous_status)

    logger.info(
        "Workflow transition %s #%s: %s → %s (%s)",
        definition.kind.value, entity_id, previous_status, target, act.value,
        extra={
            "event_type": "workflow_transition",
            "project_id": entity.project_id,
            "user_id": actor_id,
        },
    )
    return TransitionResult(
        ok=True,
        kind=definition.kind.value,
        entity_id=entity_id,
        action=act.value,
        previous_status=previous_status,
        new_status=target,
        version=previous_version + 1,
    )


def batch_transition(kind, entity_ids: list[int], action, actor_id, **kwargs) -> dict:
    """Apply the same action to several entities. Partial success allowed."""
    results = {"success": [], "errors": []}
    for entity_id in entity_ids:
        result = transition(kind, entity_id, action, actor_id, **kwargs)
        (results["success"] if result.ok else results["errors"]).append(result.to_dict())
    return results


# ── Field handling for create / update ───────────────────────────────────────


def _parse_bool(value):
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in {"true", "1", "yes"}:
        return True
    if isinstance(value, str) and value.lower() in {"false", "0", "no"}:
        return False
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise ValueError(f"Invalid boolean: {value!r}")


def _parse_int(value):
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError("Expected an integer")
    return int(value)


_FIELD_PARSERS = {
    "resource_id": _parse_int,
    "work_date": parse_date_input,
    "expense_date": parse_date_input,
    "due_date": parse_date_input,
    "hours": parse_decimal_input,
    "amount": parse_decimal_input,
    "cost_impact": parse_decimal_input,
    "days_impact": _parse_int,
    "chargeable_to_customer": _parse_bool,
}

_REQUIRED_FIELDS = {
    ResourceKind.TIMESHEET: ("resource_id", "work_date", "hours"),
    ResourceKind.EXPENSE: ("resource_id", "expense_date", "amount"),
    ResourceKind.DELIVERABLE: ("name",),
    ResourceKind.MILESTONE_CERTIFICATE: ("milestone_ref",),
    ResourceKind.VARIATION: ("title",),
}

# Kinds booked against a resource: the actor must own it or hold create_for_others
_RESOURCE_BOOKED = frozenset({ResourceKind.TIMESHEET, ResourceKind.EXPENSE})


def _clean_fields(definition: WorkflowDefinition, fields: dict, *, partial: bool) -> dict:
    model = MODEL_BY_KIND[definition.kind.value]
    fields = fields or {}
    unknown = sorted(set(fields) - set(model.BUSINESS_FIELDS))
    if unknown:
        raise ValidationError(
            f"Fields not accepted for {definition.kind.value}: {', '.join(unknown)}",
            details={"unknown_fields": unknown},
        )

    values, errors = {}, {}
    for name, raw in fields.items():
        parser = _FIELD_PARSERS.get(name)
        try:
            values[name] = parser(raw) if parser else raw
        except (TypeError, ValueError) as exc:
            errors[name] = str(exc)

    if not partial:
        for name in _REQUIRED_FIELDS[definition.kind]:
            if values.get(name) in (None, "") and name not in errors:
                errors[name] = "required"

    if values.get("hours") is not None and not (0 < values["hours"] <= 24):
        errors["hours"] = "must be greater than 0 and at most 24"
    if values.get("amount") is not None and values["amount"] <= 0:
        errors["amount"] = "must be positive"
    if values.get("procurement_method") not in PROCUREMENT_METHODS | {None}:
        errors["procurement_method"] = f"must be one of {sorted(PROCUREMENT_METHODS)} or null"
    if "variation_type" in values and values["variation_type"] not in VARIATION_TYPES:
        errors["variation_type"] = f"must be one of {sorted(VARIATION_TYPES)}"

    if errors:
        raise ValidationError(f"Invalid {definition.kind.value} fields", details=errors)
    return values


def _check_resource_booking(definition, project_id, actor_id, resource_id):
    """Resource must belong to the project; booking for someone else needs create_for_others."""
    resource = Resource.query_for_project(project_id).filter_by(id=resource_id).first()
    if resource is None:
        raise ValidationError("Resource not found in this project", details={"resource_id": resource_id})
    if resource.user_id != actor_id:
        _authorize(actor_id, project_id, Action.CREATE_FOR_OTHERS, ResourceRef(kind=definition.kind))


# ── Create / update / delete / reopen ────────────────────────────────────────


def create_entity(kind, project_id: int, actor_id: int | None, fields: dict) -> TransitionResult:
    """Create a workflow entity in its initial status.

    Raises ValidationError for malformed fields; authorization failures are
    returned in the result.
    """
    definition = _definition(kind)
    model = MODEL_BY_KIND[definition.kind.value]
    try:
        _authorize(actor_id, project_id, Action.CREATE, ResourceRef(kind=definition.kind))
        values = _clean_fields(definition, fields, partial=False)
        if definition.kind in _RESOURCE_BOOKED:
            _check_resource_booking(definition, project_id, actor_id, values["resource_id"])

        entity = model(
            project_id=project_id,
            created_by=actor_id,
            status=definition.initial,
            version=1,
            **values,
        )
        db.session.add(entity)
        db.session.flush()
        write_audit(
            entity_type=definition.kind.value,
            entity_id=entity.id,
            action="create",
            project_id=project_id,
            actor_user_id=actor_id,
            diff={"status": {"old": None, "new": definition.initial}},
        )
        commit_or_raise(definition.kind.value)
    except WorkflowError as exc:
        return _failed(definition.kind.value, None, Action.CREATE.value, exc)
    except ValidationError:
        db.session.rollback()
        raise

    logger.info(
        "Workflow entity created %s #%s", definition.kind.value, entity.id,
        extra={"event_type": "workflow_create", "project_id": project_id, "user_id": actor_id},
    )
    return TransitionResult(
        ok=True, kind=definition.kind.value, entity_id=entity.id, action=Action.CREATE.value,
        new_status=entity.status, version=entity.version, entity=entity,
    )


def update_entity(
    kind,
    entity_id: int,
    actor_id: int | None,
    fields: dict,
    *,
    expected_version: int | None = None,
    project_id: int | None = None,
) -> TransitionResult:
    """Edit business fields while the entity is in an editable status."""
    definition = _definition(kind)
    previous_status = None
    try:
        entity = _load(definition, entity_id, project_id)
        previous_status = entity.status
        _authorize(actor_id, entity.project_id, Action.EDIT, entity)
        _check_expected_version(entity, expected_version)
        if entity.status not in definition.editable:
            raise IllegalTransition(
                kind=definition.kind.value, current=entity.status, action=Action.EDIT.value,
                reason="record is no longer editable",
            )
        values = _clean_fields(definition, fields, partial=True)
        if "resource_id" in values and values["resource_id"] != entity.resource_id:
            _check_resource_booking(definition, entity.project_id, actor_id, values["resource_id"])

        before = entity.business_values()
        compare_and_set(
            type(entity), entity.id,
            expected_status=entity.status,
            expected_version=entity.version,
            values=values,
        )
        write_audit(
            entity_type=definition.kind.value,
            entity_id=entity.id,
            action="update",
            project_id=entity.project_id,
            actor_user_id=actor_id,
            diff={k: {"old": before.get(k), "new": v} for k, v in values.items() if before.get(k) != v},
        )
        new_version = entity.version + 1
        commit_or_raise(definition.kind.value)
    except WorkflowError as exc:
        return _failed(definition.kind.value, entity_id, Action.EDIT.value, exc, previous_status)
    except ValidationError:
        db.session.rollback()
        raise

    return TransitionResult(
        ok=True, kind=definition.kind.value, entity_id=entity_id, action=Action.EDIT.value,
        previous_status=previous_status, new_status=previous_status, version=new_version,
    )


def delete_entity(
    kind,
    entity_id: int,
    actor_id: int | None,
    *,
    expected_version: int | None = None,
    project_id: int | None = None,
) -> TransitionResult:
    """Soft-delete an entity, gated by the delete capability and deletable statuses."""
    definition = _definition(kind)
    previous_status = None
    try:
        entity = _load(definition, entity_id, project_id)
        previous_status = entity.status
        _authorize(actor_id, entity.project_id, Action.DELETE, entity)
        _check_expected_version(entity, expected_version)
        if entity.status not in definition.deletable:
            raise IllegalTransition(
                kind=definition.kind.value, current=entity.status, action=Action.DELETE.value,
            )
        now = datetime.now(timezone.utc)
        compare_and_set(
            type(entity), entity.id,
            expected_status=entity.status,
            expected_version=entity.version,
            values={"deleted_at": now, "deleted_by": actor_id},
        )
        write_audit(
            entity_type=definition.kind.value,
            entity_id=entity.id,
            action="delete",
            project_id=entity.project_id,
            actor_user_id=actor_id,
            diff={"status": previous_status},
        )
        new_version = entity.version + 1
        commit_or_raise(definition.kind.value)
    except WorkflowError as exc:
        return _failed(definition.kind.value, entity_id, Action.DELETE.value, exc, previous_status)

    logger.info(
        "Workflow entity deleted %s #%s", definition.kind.value, entity_id,
        extra={"event_type": "workflow_delete", "user_id": actor_id},
    )
    return TransitionResult(
        ok=True, kind=definition.kind.value, entity_id=entity_id, action=Action.DELETE.value,
        previous_status=previous_status, new_status=previous_status, version=new_version,
    )


def reopen_as_new(kind, entity_id: int, actor_id: int | None, *, project_id: int | None = None) -> TransitionResult:
    """Start over from a rejected entity by creating a new Draft.

    The rejected instance stays untouched; the new one copies its business
    fields and points back to it through ``supersedes_id``.
    """
    definition = _definition(kind)
    previous_status = None
    try:
        old = _load(definition, entity_id, project_id)
        previous_status = old.status
        if old.status not in definition.reopenable:
            raise IllegalTransition(
                kind=definition.kind.value, current=old.status, action="reopen",
                reason="only rejected records can be reopened",
            )
        _authorize(actor_id, old.project_id, Action.CREATE, ResourceRef(kind=definition.kind))

        model = type(old)
        successor = model.query_active().filter_by(supersedes_id=old.id).first()
        if successor is not None:
            raise IllegalTransition(
                kind=definition.kind.value, current=old.status, action="reopen",
                reason=f"already reopened as #{successor.id}",
            )
        values = old.business_values()
        if definition.kind in _RESOURCE_BOOKED:
            _check_resource_booking(definition, old.project_id, actor_id, values["resource_id"])

        entity = model(
            project_id=old.project_id,
            created_by=actor_id,
            status=definition.initial,
            version=1,
            supersedes_id=old.id,
            **values,
        )
        db.session.add(entity)
        db.session.flush()
        write_audit(
            entity_type=definition.kind.value,
            entity_id=entity.id,
            action="reopen",
            project_id=old.project_id,
            actor_user_id=actor_id,
            diff={"supersedes_id": old.id, "status": {"old": None, "new": definition.initial}},
        )
        commit_or_raise(definition.kind.value)
    except WorkflowError as exc:
        return _failed(definition.kind.value, entity_id, "reopen", exc, previous_status)
    except ValidationError:
        db.session.rollback()
        raise

    logger.info(
        "Workflow entity reopened %s #%s as #%s", definition.kind.value, entity_id, entity.id,
        extra={"event_type": "workflow_reopen", "user_id": actor_id},
    )
    return TransitionResult(
        ok=True, kind=definition.kind.value, entity_id=entity.id, action="reopen",
        previous_status=previous_status, new_status=entity.status, version=entity.version, entity=entity,
    )


# ── Read side ────────────────────────────────────────────────────────────────


def view_entity(kind, entity_id: int, actor_id: int | None, *, project_id: int | None = None):
    """Load an entity the actor may view.

    Returns:
        (entity, None) on success, (None, WorkflowFailure) otherwise.
    """
    definition = _definition(kind)
    try:
        entity = _load(definition, entity_id, project_id)
        _authorize(actor_id, entity.project_id, Action.VIEW, entity)
    except WorkflowError as exc:
        return None, WorkflowFailure.from_error(exc)
    return entity, None


def _signature_blocked(definition, entity, side, actor_id, active) -> bool:
    if any(sig.side == side for sig in active):
        return True
    return any(sig.side != side and sig.signer_id == actor_id for sig in active)


def available_actions(kind, entity_id: int, actor_id: int | None, *, project_id: int | None = None) -> list[dict]:
    """Actions the actor can take on the entity right now, for rendering buttons.

    Includes a workflow action only when it is legal from the current status,
    authorized, and would pass the signature checks.
    """
    definition = _definition(kind)
    try:
        entity = _load(definition, entity_id, project_id)
    except WorkflowError:
        return []

    active = WorkflowSignature.active_for(definition.kind.value, entity.id) if definition.requires_signatures else []
    actions = []
    for act in definition.actions_from(entity.status):
        step = definition.lookup(act, entity.status)
        if step.sign_side and _signature_blocked(definition, entity, step.sign_side, actor_id, active):
            continue
        if act is Action.APPROVE and _is_requestor(entity, actor_id):
            continue
        if permission_service.can(actor_id, entity.project_id, act, entity):
            actions.append({"action": act.value, "requires_reason": step.requires_reason, "target": step.target})

    if entity.status in definition.editable and permission_service.can(actor_id, entity.project_id, Action.EDIT, entity):
        actions.append({"action": Action.EDIT.value, "requires_reason": False, "target": entity.status})
    if entity.status in definition.deletable and permission_service.can(
        actor_id, entity.project_id, Action.DELETE, entity
    ):
        actions.append({"action": Action.DELETE.value, "requires_reason": False, "target": entity.status})
    if entity.status in definition.reopenable and permission_service.can(
        actor_id, entity.project_id, Action.CREATE, ResourceRef(kind=definition.kind)
    ):
        model = type(entity)
        if model.query_active().filter_by(supersedes_id=entity.id).first() is None:
            actions.append({"action": "reopen", "requires_reason": False, "target": definition.initial})
    return actions


def entity_history(kind, entity_id: int) -> dict:
    """Audit rows and every signature (voided ones included) for an entity."""
    definition = _definition(kind)
    return {
        "audit": [row.to_dict() for row in history_for(definition.kind.value, entity_id)],
        "signatures": [
            sig.to_dict() for sig in WorkflowSignature.all_for(definition.kind.value, entity_id)
        ],
    }
