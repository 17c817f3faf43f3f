"""
Workflow entity models.

Models:
    - Timesheet:             hours booked by a resource on one day
    - Expense:               cost incurred by a resource, tagged by procurement method
    - Deliverable:           work product reviewed and dual-signed by both sides
    - MilestoneCertificate:  payment milestone signed supplier-then-customer
    - Variation:             change request signed by both sides, then applied
    - WorkflowSignature:     append-only signature record for dual-signed kinds

Every entity carries ``status`` and ``version``. Status changes are only made
by ``tracker.services.workflow_engine`` through a compare-and-set update on
(id, status, version); nothing else writes these two columns.

Lifecycle states (see ``workflow_definitions`` for the transition table):
    Timesheet / Expense:   draft → submitted → approved | rejected
    Deliverable:           draft → in_progress → submitted_for_review → under_review
                           → delivered | rework_required → in_progress
    MilestoneCertificate:  draft → pending_supplier_signature
                           → pending_customer_signature → signed
    Variation:             draft → submitted → awaiting_*_signature → approved
                           → applied  |  rejected
"""

from datetime import datetime, timezone

from sqlalchemy.orm import declared_attr

from tracker.models import db
from tracker.models.base import ProjectScopedModel
from tracker.models.soft_delete import SoftDeleteMixin


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


def _num(value):
    return float(value) if value is not None else None


# ═══════════════════════════════════════════════════════════════
# Shared columns
# ═══════════════════════════════════════════════════════════════

class WorkflowEntityMixin(SoftDeleteMixin):
    """Columns and helpers shared by every workflow entity.

    Subclasses set:
        entity_kind:     registry/definition key ("timesheet", …)
        BUSINESS_FIELDS: columns a caller may set on create, copied by reopen
    """

    entity_kind = ""
    BUSINESS_FIELDS = ()

    status = db.Column(db.String(40), nullable=False, default="draft", index=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    rejection_reason = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @declared_attr
    def created_by(cls):
        return db.Column(
            db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
        )

    @declared_attr
    def supersedes_id(cls):
        return db.Column(
            db.Integer, db.ForeignKey(f"{cls.__tablename__}.id", ondelete="SET NULL"), nullable=True
        )

    @property
    def chargeable(self):
        """Chargeability flag used by side-qualified approvals (None when n/a)."""
        return None

    def to_resource_ref(self):
        from tracker.services.permission_service import ResourceRef

        return ResourceRef(
            kind=self.entity_kind,
            created_by=self.created_by,
            status=self.status,
            chargeable=self.chargeable,
        )

    def business_values(self) -> dict:
        return {name: getattr(self, name) for name in self.BUSINESS_FIELDS}

    def _base_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.entity_kind,
            "project_id": self.project_id,
            "status": self.status,
            "version": self.version,
            "created_by": self.created_by,
            "supersedes_id": self.supersedes_id,
            "rejection_reason": self.rejection_reason,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def to_dict(self) -> dict:
        d = self._base_dict()
        d.update(self.business_values())
        return d

    def __repr__(self):
        return f"<{type(self).__name__} #{self.id} {self.status} v{self.version}>"


class ApprovalColumnsMixin:
    """Submit/approve/reject stamps for single-approver kinds."""

    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @declared_attr
    def approved_by(cls):
        return db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    @declared_attr
    def rejected_by(cls):
        return db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    def approval_dict(self) -> dict:
        return {
            "submitted_at": _iso(self.submitted_at),
            "approved_by": self.approved_by,
            "approved_at": _iso(self.approved_at),
            "rejected_by": self.rejected_by,
            "rejected_at": _iso(self.rejected_at),
        }


# ═══════════════════════════════════════════════════════════════
# 1. TIMESHEETS
# ═══════════════════════════════════════════════════════════════
class Timesheet(WorkflowEntityMixin, ApprovalColumnsMixin, ProjectScopedModel):
    __tablename__ = "timesheets"
    entity_kind = "timesheet"
    BUSINESS_FIELDS = ("resource_id", "work_date", "hours", "description", "chargeable_to_customer")

    id = db.Column(db.Integer, primary_key=True)
    resource_id = db.Column(
        db.Integer, db.ForeignKey("resources.id", ondelete="CASCADE"), nullable=False, index=True
    )
    work_date = db.Column(db.Date, nullable=False)
    hours = db.Column(db.Numeric(6, 2), nullable=False)
    description = db.Column(db.Text, nullable=True)
    chargeable_to_customer = db.Column(db.Boolean, nullable=False, default=True)

    resource = db.relationship("Resource")

    @property
    def chargeable(self):
        return bool(self.chargeable_to_customer)

    def to_dict(self):
        d = self._base_dict()
        d.update(self.approval_dict())
        d.update({
            "resource_id": self.resource_id,
            "work_date": _iso(self.work_date),
            "hours": _num(self.hours),
            "description": self.description,
            "chargeable_to_customer": self.chargeable_to_customer,
        })
        return d


# ═══════════════════════════════════════════════════════════════
# 2. EXPENSES
# ═══════════════════════════════════════════════════════════════
PROCUREMENT_METHODS = {"supplier", "partner"}


class Expense(WorkflowEntityMixin, ApprovalColumnsMixin, ProjectScopedModel):
    __tablename__ = "expenses"
    entity_kind = "expense"
    BUSINESS_FIELDS = (
        "resource_id", "expense_date", "category", "reason", "amount",
        "procurement_method", "chargeable_to_customer",
    )

    id = db.Column(db.Integer, primary_key=True)
    resource_id = db.Column(
        db.Integer, db.ForeignKey("resources.id", ondelete="CASCADE"), nullable=False, index=True
    )
    expense_date = db.Column(db.Date, nullable=False)
    category = db.Column(db.String(50), nullable=True)
    reason = db.Column(db.Text, nullable=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    procurement_method = db.Column(
        db.String(20), nullable=True,
        comment="supplier | partner (NULL is treated as partner)",
    )
    chargeable_to_customer = db.Column(db.Boolean, nullable=False, default=True)

    resource = db.relationship("Resource")

    @property
    def chargeable(self):
        return bool(self.chargeable_to_customer)

    @property
    def is_partner_procured(self):
        return self.procurement_method != "supplier"

    def to_dict(self):
        d = self._base_dict()
        d.update(self.approval_dict())
        d.update({
            "resource_id": self.resource_id,
            "expense_date": _iso(self.expense_date),
            "category": self.category,
            "reason": self.reason,
            "amount": _num(self.amount),
            "procurement_method": self.procurement_method,
            "chargeable_to_customer": self.chargeable_to_customer,
        })
        return d


# ═══════════════════════════════════════════════════════════════
# 3. DELIVERABLES
# ═══════════════════════════════════════════════════════════════
class Deliverable(WorkflowEntityMixin, ProjectScopedModel):
    __tablename__ = "deliverables"
    entity_kind = "deliverable"
    BUSINESS_FIELDS = ("name", "description", "due_date")

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    due_date = db.Column(db.Date, nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        d = self._base_dict()
        d.update({
            "name": self.name,
            "description": self.description,
            "due_date": _iso(self.due_date),
            "delivered_at": _iso(self.delivered_at),
        })
        return d


# ═══════════════════════════════════════════════════════════════
# 4. MILESTONE CERTIFICATES
# ═══════════════════════════════════════════════════════════════
class MilestoneCertificate(WorkflowEntityMixin, ProjectScopedModel):
    __tablename__ = "milestone_certificates"
    entity_kind = "milestone_certificate"
    BUSINESS_FIELDS = ("milestone_ref", "milestone_name", "amount")

    id = db.Column(db.Integer, primary_key=True)
    milestone_ref = db.Column(db.String(50), nullable=False)
    milestone_name = db.Column(db.String(200), nullable=True)
    amount = db.Column(db.Numeric(12, 2), nullable=True)

    def to_dict(self):
        d = self._base_dict()
        d.update({
            "milestone_ref": self.milestone_ref,
            "milestone_name": self.milestone_name,
            "amount": _num(self.amount),
        })
        return d


# ═══════════════════════════════════════════════════════════════
# 5. VARIATIONS
# ═══════════════════════════════════════════════════════════════
VARIATION_TYPES = {"scope_extension", "scope_reduction", "time_extension", "cost_adjustment", "other"}


class Variation(WorkflowEntityMixin, ProjectScopedModel):
    __tablename__ = "variations"
    entity_kind = "variation"
    BUSINESS_FIELDS = ("title", "variation_type", "cost_impact", "days_impact")

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    variation_type = db.Column(db.String(30), nullable=True, default="other")
    cost_impact = db.Column(db.Numeric(12, 2), nullable=True, default=0)
    days_impact = db.Column(db.Integer, nullable=True, default=0)
    applied_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        d = self._base_dict()
        d.update({
            "title": self.title,
            "variation_type": self.variation_type,
            "cost_impact": _num(self.cost_impact),
            "days_impact": self.days_impact,
            "applied_at": _iso(self.applied_at),
        })
        return d


# ═══════════════════════════════════════════════════════════════
# 6. SIGNATURES
# ═══════════════════════════════════════════════════════════════


class WorkflowSignature(db.Model):
    """
    Signature on a dual-signed entity.

    Business rules:
    - Rows are never deleted. Rejection/rework voids the active rows
      (``voided_at`` set) so the entity must be re-signed from scratch.
    - At most one active signature per (entity, side).
    - The two active signatures of an entity must come from distinct users.
    """

    __tablename__ = "workflow_signatures"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    entity_kind = db.Column(db.String(40), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    side = db.Column(db.String(20), nullable=False, comment="supplier | customer")
    signer_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    signer_role = db.Column(db.String(50), nullable=True, comment="effective role at signing time")
    signed_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.Text, nullable=True)

    __table_args__ = (
        db.Index("ix_signature_entity", "entity_kind", "entity_id"),
    )

    @property
    def is_active(self):
        return self.voided_at is None

    @classmethod
    def active_for(cls, entity_kind, entity_id):
        return (
            cls.query
            .filter_by(entity_kind=entity_kind, entity_id=entity_id)
            .filter(cls.voided_at.is_(None))
            .order_by(cls.signed_at.asc(), cls.id.asc())
            .all()
        )

    @classmethod
    def all_for(cls, entity_kind, entity_id):
        return (
            cls.query
            .filter_by(entity_kind=entity_kind, entity_id=entity_id)
            .order_by(cls.signed_at.asc(), cls.id.asc())
            .all()
        )

    def to_dict(self):
        return {
            "id": self.id,
            "entity_kind": self.entity_kind,
            "entity_id": self.entity_id,
            "side": self.side,
            "signer_id": self.signer_id,
            "signer_role": self.signer_role,
            "signed_at": _iso(self.signed_at),
            "voided_at": _iso(self.voided_at),
            "void_reason": self.void_reason,
        }

    def __repr__(self):
        return f"<WorkflowSignature #{self.id} {self.entity_kind}/{self.entity_id} {self.side}>"


MODEL_BY_KIND = {
    model.entity_kind: model
    for model in (Timesheet, Expense, Deliverable, MilestoneCertificate, Variation)
}
