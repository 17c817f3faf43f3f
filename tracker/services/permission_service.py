"""
Permission Evaluator — the single authorization decision point.

Every mutating entry point calls ``authorize`` (or ``ensure_authorized``)
before touching data. Evaluation is deterministic and deny-by-default:

  1. effective role via the scope resolver; NoAccess     → Deny(NotAMember)
  2. capabilities for (action, kind); none               → Deny(InsufficientRole)
  3. own_draft qualifier: creator + editable status      → else Deny(NotOwnerOrWrongState)
  4. chargeable / non_chargeable qualifier: flag matches → else Deny(WrongChargeabilitySide)

When a role holds several capabilities for the same (action, kind) any
satisfied one allows; otherwise the first failing reason is reported.
Unqualified capabilities are tried first.

The evaluator is stateless and writes nothing. Denials are logged at DEBUG.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from tracker.core.exceptions import AuthorizationDenied, ErrorCode, ValidationError
from tracker.services import scope_resolver
from tracker.services.role_registry import (
    Action,
    Capability,
    Qualifier,
    ResourceKind,
    Role,
    capabilities_for,
    matching_capabilities,
    role_from_value,
)
from tracker.services.workflow_definitions import editable_states

logger = logging.getLogger(__name__)

# Denials the UI renders by hiding the control; the rest are shown disabled.
HIDDEN_REASONS = frozenset({ErrorCode.NOT_A_MEMBER, ErrorCode.INSUFFICIENT_ROLE})


@dataclass(frozen=True)
class ResourceRef:
    """Minimal view of a resource for authorization.

    ``created_by``/``status`` feed the ownership qualifier and
    ``chargeable`` feeds the side qualifiers; leave them None for
    kind-level checks (e.g. "may this actor create expenses at all").
    """

    kind: ResourceKind
    created_by: int | None = None
    status: str | None = None
    chargeable: bool | None = None

    def __post_init__(self):
        if not isinstance(self.kind, ResourceKind):
            object.__setattr__(self, "kind", coerce_kind(self.kind))

    @property
    def is_kind_level(self) -> bool:
        return self.created_by is None and self.status is None and self.chargeable is None


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: ErrorCode | None = None
    role: Role | None = None
    capability: Capability | None = None
    message: str = ""
    via: str | None = None

    def __bool__(self) -> bool:
        return self.allowed

    @property
    def presentation(self) -> str:
        if self.allowed:
            return "enabled"
        return "hidden" if self.reason in HIDDEN_REASONS else "disabled"

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "reason": self.reason.value if self.reason else None,
            "error_kind": self.reason.kind.value if self.reason else None,
            "role": self.role.value if self.role else None,
            "via": self.via,
            "capability": self.capability.to_dict() if self.capability else None,
            "message": self.message,
            "presentation": self.presentation,
        }


def coerce_action(value) -> Action:
    if isinstance(value, Action):
        return value
    try:
        return Action(value)
    except ValueError:
        raise ValidationError(f"Unknown action: {value!r}", details={"action": value}) from None


def coerce_kind(value) -> ResourceKind:
    if isinstance(value, ResourceKind):
        return value
    try:
        return ResourceKind(value)
    except ValueError:
        raise ValidationError(f"Unknown resource kind: {value!r}", details={"resource_kind": value}) from None


def _as_ref(resource) -> ResourceRef:
    if isinstance(resource, ResourceRef):
        return resource
    if hasattr(resource, "to_resource_ref"):
        return resource.to_resource_ref()
    return ResourceRef(kind=resource)


def _check_qualifier(cap: Capability, actor_id: int, ref: ResourceRef) -> tuple[ErrorCode, str] | None:
    """Return (reason, message) when the qualifier is not satisfied."""
    kind = ref.kind.value
    if cap.qualifier is Qualifier.OWN_DRAFT:
        if ref.created_by != actor_id:
            return ErrorCode.NOT_OWNER_OR_WRONG_STATE, f"Only the creator may {cap.action.value} this {kind}"
        if ref.status not in editable_states(ref.kind):
            return (
                ErrorCode.NOT_OWNER_OR_WRONG_STATE,
                f"Cannot {cap.action.value} a {kind} in status '{ref.status}'",
            )
    elif ref.is_kind_level:
        # Side qualifiers hold for some record of the kind
        return None
    elif cap.qualifier is Qualifier.CHARGEABLE:
        if ref.chargeable is not True:
            return (
                ErrorCode.WRONG_CHARGEABILITY_SIDE,
                f"Non-chargeable {kind} records are validated by the supplier side",
            )
    elif cap.qualifier is Qualifier.NON_CHARGEABLE:
        if ref.chargeable is not False:
            return (
                ErrorCode.WRONG_CHARGEABILITY_SIDE,
                f"Chargeable {kind} records are validated by the customer side",
            )
    return None


def _decide(role: Role, actor_id: int, action: Action, ref: ResourceRef, via: str | None) -> Decision:
    caps = matching_capabilities(role, action, ref.kind)
    if not caps:
        return Decision(
            allowed=False,
            reason=ErrorCode.INSUFFICIENT_ROLE,
            role=role,
            message=f"Role '{role.value}' cannot {action.value} {ref.kind.value}",
            via=via,
        )

    first_failure = None
    for cap in caps:
        failure = _check_qualifier(cap, actor_id, ref)
        if failure is None:
            return Decision(allowed=True, role=role, capability=cap, via=via)
        if first_failure is None:
            first_failure = (cap, failure)

    cap, (reason, message) = first_failure
    return Decision(allowed=False, reason=reason, role=role, capability=cap, message=message, via=via)


def authorize(actor_id: int | None, project_id: int, action, resource) -> Decision:
    """Decide whether the actor may perform ``action`` on ``resource`` in a project.

    Args:
        actor_id: Acting user id (None → NotAMember).
        project_id: Project the resource belongs to.
        action: ``Action`` or its string value.
        resource: ``ResourceRef``, a workflow model instance, or a bare kind.

    Returns:
        Decision; a denial is returned, never raised.
    """
    action = coerce_action(action)
    ref = _as_ref(resource)

    scope = scope_resolver.resolve_scope(actor_id, project_id)
    if scope is None:
        decision = Decision(
            allowed=False,
            reason=ErrorCode.NOT_A_MEMBER,
            message="You are not a member of this project",
        )
    else:
        decision = _decide(scope.role, actor_id, action, ref, scope.via)

    if not decision.allowed:
        logger.debug(
            "Permission denied user=%s project=%s action=%s kind=%s reason=%s",
            actor_id, project_id, action.value, ref.kind.value, decision.reason.value,
            extra={"project_id": project_id, "event_type": "permission_denied"},
        )
    return decision


def ensure_authorized(actor_id: int | None, project_id: int, action, resource) -> Decision:
    """``authorize`` that raises AuthorizationDenied instead of returning a denial."""
    decision = authorize(actor_id, project_id, action, resource)
    if not decision.allowed:
        raise AuthorizationDenied(decision)
    return decision


def can(actor_id: int | None, project_id: int, action, resource) -> bool:
    return authorize(actor_id, project_id, action, resource).allowed


def authorize_org(actor_id: int | None, organisation_id: int, action, kind) -> Decision:
    """Organisation-scope decision. Project roles never count here."""
    action = coerce_action(action)
    kind = coerce_kind(kind)
    role = scope_resolver.organisation_role(actor_id, organisation_id)
    if role is None:
        return Decision(
            allowed=False,
            reason=ErrorCode.NOT_A_MEMBER,
            message="You are not a member of this organisation",
        )
    return _decide(role, actor_id, action, ResourceRef(kind=kind), "organisation")


def permission_summary(role) -> dict[str, list[str]]:
    """Per-kind list of granted actions for a role, for UI menus.

    Qualified grants are rendered as ``action:qualifier``.
    """
    role = role_from_value(role)
    summary: dict[str, list[str]] = {}
    for cap in capabilities_for(role):
        label = cap.action.value if cap.qualifier is None else f"{cap.action.value}:{cap.qualifier.value}"
        summary.setdefault(cap.resource_kind.value, []).append(label)
    return {kind: sorted(actions) for kind, actions in sorted(summary.items())}
