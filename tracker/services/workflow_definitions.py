"""
Workflow definitions — one generic transition table per entity kind.

Each kind is a ``WorkflowDefinition`` whose ``transitions`` map
``(action, source_status) → Transition``. The engine knows nothing about
individual kinds; every rule (reason required, signature side, signature
voiding, completion after both signatures) is data on the transition.

Lifecycle states:
    timesheet / expense:   draft → submitted → approved | rejected
    deliverable:           draft → in_progress → submitted_for_review → under_review
                           → delivered  (after supplier + customer signatures)
                           submitted_for_review / under_review → rework_required → in_progress
    milestone_certificate: draft → pending_supplier_signature → pending_customer_signature
                           → signed;  pending_* → draft on reject (signatures voided)
    variation:             draft → submitted → awaiting_customer_signature | awaiting_supplier_signature
                           → approved → applied;  submitted / awaiting_* → rejected
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType

from tracker.services.role_registry import Action, ResourceKind, verify_table

SUPPLIER = "supplier"
CUSTOMER = "customer"


@dataclass(frozen=True)
class Transition:
    """Outcome of one legal (action, source_status) pair.

    Attributes:
        target: Status after the transition.
        requires_reason: A non-empty reason must accompany the action.
        sign_side: Records a signature for this side ("supplier" | "customer").
        complete_target: Status to use instead of ``target`` once every
            signature side holds an active signature.
        discards_signatures: Void all active signatures (re-sign from scratch).
    """

    target: str
    requires_reason: bool = False
    sign_side: str | None = None
    complete_target: str | None = None
    discards_signatures: bool = False


@dataclass(frozen=True)
class WorkflowDefinition:
    kind: ResourceKind
    states: tuple[str, ...]
    initial: str
    terminal: frozenset[str]
    editable: frozenset[str]
    deletable: frozenset[str]
    transitions: MappingProxyType
    signature_sides: tuple[str, ...] = ()
    ordered_signatures: bool = False
    reopenable: frozenset[str] = field(default_factory=frozenset)

    def lookup(self, action: Action, status: str) -> Transition | None:
        return self.transitions.get((action, status))

    def actions_from(self, status: str) -> list[Action]:
        """Actions with a legal transition out of ``status``, in table order."""
        return [action for (action, source) in self.transitions if source == status]

    @property
    def actions(self) -> frozenset[Action]:
        return frozenset(action for (action, _source) in self.transitions)

    @property
    def requires_signatures(self) -> bool:
        return bool(self.signature_sides)


def _table(rows) -> MappingProxyType:
    table = {}
    for action, sources, transition in rows:
        for source in sources:
            key = (action, source)
            if key in table:
                raise RuntimeError(f"Duplicate transition {action.value} from {source}")
            table[key] = transition
    return MappingProxyType(table)


# ═══════════════════════════════════════════════════════════════
# Single-approver kinds
# ═══════════════════════════════════════════════════════════════

_APPROVAL_ROWS = (
    (Action.SUBMIT, ("draft",), Transition("submitted")),
    (Action.APPROVE, ("submitted",), Transition("approved")),
    (Action.REJECT, ("submitted",), Transition("rejected", requires_reason=True)),
)


def _approval_definition(kind: ResourceKind) -> WorkflowDefinition:
    return WorkflowDefinition(
        kind=kind,
        states=("draft", "submitted", "approved", "rejected"),
        initial="draft",
        terminal=frozenset({"approved", "rejected"}),
        editable=frozenset({"draft"}),
        deletable=frozenset({"draft", "rejected"}),
        transitions=_table(_APPROVAL_ROWS),
        reopenable=frozenset({"rejected"}),
    )


TIMESHEET = _approval_definition(ResourceKind.TIMESHEET)
EXPENSE = _approval_definition(ResourceKind.EXPENSE)


# ═══════════════════════════════════════════════════════════════
# Deliverable: unordered dual signature while under review
# ═══════════════════════════════════════════════════════════════

DELIVERABLE = WorkflowDefinition(
    kind=ResourceKind.DELIVERABLE,
    states=(
        "draft", "in_progress", "submitted_for_review", "under_review",
        "rework_required", "delivered",
    ),
    initial="draft",
    terminal=frozenset({"delivered"}),
    editable=frozenset({"draft", "in_progress", "rework_required"}),
    deletable=frozenset({"draft"}),
    transitions=_table((
        (Action.START, ("draft",), Transition("in_progress")),
        (Action.SUBMIT, ("in_progress",), Transition("submitted_for_review")),
        (Action.START_REVIEW, ("submitted_for_review",), Transition("under_review")),
        (
            Action.REQUEST_REWORK,
            ("submitted_for_review", "under_review"),
            Transition("rework_required", requires_reason=True, discards_signatures=True),
        ),
        (Action.RESUME, ("rework_required",), Transition("in_progress")),
        (
            Action.SIGN_AS_SUPPLIER,
            ("under_review",),
            Transition("under_review", sign_side=SUPPLIER, complete_target="delivered"),
        ),
        (
            Action.SIGN_AS_CUSTOMER,
            ("under_review",),
            Transition("under_review", sign_side=CUSTOMER, complete_target="delivered"),
        ),
    )),
    signature_sides=(SUPPLIER, CUSTOMER),
)


# ═══════════════════════════════════════════════════════════════
# Milestone certificate: ordered dual signature, reject voids to draft
# ═══════════════════════════════════════════════════════════════

MILESTONE_CERTIFICATE = WorkflowDefinition(
    kind=ResourceKind.MILESTONE_CERTIFICATE,
    states=("draft", "pending_supplier_signature", "pending_customer_signature", "signed"),
    initial="draft",
    terminal=frozenset({"signed"}),
    editable=frozenset({"draft"}),
    deletable=frozenset({"draft"}),
    transitions=_table((
        (Action.SUBMIT, ("draft",), Transition("pending_supplier_signature")),
        (
            Action.SIGN_AS_SUPPLIER,
            ("pending_supplier_signature",),
            Transition("pending_customer_signature", sign_side=SUPPLIER),
        ),
        (
            Action.SIGN_AS_CUSTOMER,
            ("pending_customer_signature",),
            Transition("signed", sign_side=CUSTOMER),
        ),
        (
            Action.REJECT,
            ("pending_supplier_signature", "pending_customer_signature"),
            Transition("draft", requires_reason=True, discards_signatures=True),
        ),
    )),
    signature_sides=(SUPPLIER, CUSTOMER),
    ordered_signatures=True,
)


# ═══════════════════════════════════════════════════════════════
# Variation: either side signs first, then apply
# ═══════════════════════════════════════════════════════════════

VARIATION = WorkflowDefinition(
    kind=ResourceKind.VARIATION,
    states=(
        "draft", "submitted", "awaiting_supplier_signature", "awaiting_customer_signature",
        "approved", "rejected", "applied",
    ),
    initial="draft",
    terminal=frozenset({"applied", "rejected"}),
    editable=frozenset({"draft"}),
    deletable=frozenset({"draft", "submitted", "rejected"}),
    transitions=_table((
        (Action.SUBMIT, ("draft",), Transition("submitted")),
        (Action.SIGN_AS_SUPPLIER, ("submitted",), Transition("awaiting_customer_signature", sign_side=SUPPLIER)),
        (Action.SIGN_AS_SUPPLIER, ("awaiting_supplier_signature",), Transition("approved", sign_side=SUPPLIER)),
        (Action.SIGN_AS_CUSTOMER, ("submitted",), Transition("awaiting_supplier_signature", sign_side=CUSTOMER)),
        (Action.SIGN_AS_CUSTOMER, ("awaiting_customer_signature",), Transition("approved", sign_side=CUSTOMER)),
        (
            Action.REJECT,
            ("submitted", "awaiting_supplier_signature", "awaiting_customer_signature"),
            Transition("rejected", requires_reason=True),
        ),
        (Action.APPLY, ("approved",), Transition("applied")),
    )),
    signature_sides=(SUPPLIER, CUSTOMER),
    reopenable=frozenset({"rejected"}),
)


DEFINITIONS = MappingProxyType({
    d.kind: d for d in (TIMESHEET, EXPENSE, DELIVERABLE, MILESTONE_CERTIFICATE, VARIATION)
})


# Non-transition actions every workflow kind must grant to someone
_CRUD_ACTIONS = frozenset({Action.VIEW, Action.CREATE, Action.EDIT, Action.DELETE})


def definition_for(kind) -> WorkflowDefinition | None:
    try:
        return DEFINITIONS.get(ResourceKind(kind))
    except ValueError:
        return None


def editable_states(kind) -> frozenset[str]:
    """Statuses in which the creator may still edit/submit/delete their own record."""
    definition = definition_for(kind)
    return definition.editable if definition else frozenset({"draft"})


verify_table({kind: set(d.actions | _CRUD_ACTIONS) for kind, d in DEFINITIONS.items()})
