"""
Billing domain models.

Models:
    - Partner:             third-party company supplying resources to a project
    - Resource:            billable person-record (optional user link, optional partner link)
    - PartnerInvoice:      frozen aggregate of a partner's timesheets/expenses over a period
    - PartnerInvoiceLine:  frozen copy of one source line; not a live link

Architecture:
    Project ──1:N──▶ Partner ──1:N──▶ Resource ──1:N──▶ Timesheet / Expense
    Partner ──1:N──▶ PartnerInvoice ──1:N──▶ PartnerInvoiceLine

Lifecycle states:
    PartnerInvoice:  draft → sent → paid  |  draft/sent → cancelled

Invoice status never writes back to the source timesheets or expenses.
"""

from datetime import datetime, timezone

from tracker.models import db
from tracker.models.base import ProjectScopedModel


def _money(value):
    return f"{value:.2f}" if value is not None else None


# ── Constants ────────────────────────────────────────────────────────────────

INVOICE_STATUSES = {"draft", "sent", "paid", "cancelled"}

INVOICE_TYPES = {"combined", "timesheets", "expenses"}


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

INVOICE_TRANSITIONS = {
    "draft":     ["sent", "cancelled"],
    "sent":      ["paid", "cancelled"],
    "paid":      [],
    "cancelled": [],
}


def validate_invoice_transition(old_status, new_status):
    """Return True if PartnerInvoice status transition is valid."""
    return new_status in INVOICE_TRANSITIONS.get(old_status, [])


# ═══════════════════════════════════════════════════════════════
# 1. PARTNERS
# ═══════════════════════════════════════════════════════════════
class Partner(ProjectScopedModel):
    __tablename__ = "partners"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    contact_email = db.Column(db.String(200), nullable=True)
    payment_terms = db.Column(db.Integer, nullable=True, default=30, comment="days")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    resources = db.relationship("Resource", back_populates="partner", lazy="dynamic")
    invoices = db.relationship(
        "PartnerInvoice", back_populates="partner", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "contact_email": self.contact_email,
            "payment_terms": self.payment_terms,
            "is_active": self.is_active,
        }


# ═══════════════════════════════════════════════════════════════
# 2. RESOURCES
# ═══════════════════════════════════════════════════════════════
class Resource(ProjectScopedModel):
    """Billable person-record. ``cost_rate`` is per hour."""

    __tablename__ = "resources"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    cost_rate = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    partner_id = db.Column(
        db.Integer, db.ForeignKey("partners.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    partner = db.relationship("Partner", back_populates="resources")

    def to_dict(self, include_costs=False):
        d = {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "user_id": self.user_id,
            "partner_id": self.partner_id,
        }
        if include_costs:
            d["cost_rate"] = _money(self.cost_rate)
        return d


# ═══════════════════════════════════════════════════════════════
# 3. PARTNER INVOICES
# ═══════════════════════════════════════════════════════════════
class PartnerInvoice(ProjectScopedModel):
    """
    Persisted partner invoice.

    Business rules:
    - Totals and lines are copied from a generated draft, never hand-edited.
    - Only ``draft`` invoices are regenerated; once ``sent`` the lines are frozen.
    - ``invoice_total`` = timesheet_total + expense_total (partner-procured only).
    - ``chargeable_total`` / ``non_chargeable_total`` span all three sections,
      including supplier-procured reference lines.
    """

    __tablename__ = "partner_invoices"

    id = db.Column(db.Integer, primary_key=True)
    partner_id = db.Column(
        db.Integer, db.ForeignKey("partners.id", ondelete="CASCADE"), nullable=False, index=True
    )
    invoice_number = db.Column(db.String(30), nullable=False)
    invoice_date = db.Column(db.Date, nullable=False)
    period_start = db.Column(db.Date, nullable=False)
    period_end = db.Column(db.Date, nullable=False)
    invoice_type = db.Column(db.String(20), nullable=False, default="combined")
    include_submitted = db.Column(db.Boolean, nullable=False, default=True)
    status = db.Column(db.String(20), nullable=False, default="draft", index=True)

    timesheet_total = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    expense_total = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    supplier_expense_total = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    invoice_total = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    chargeable_total = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    non_chargeable_total = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        db.UniqueConstraint("project_id", "invoice_number", name="uq_partner_invoice_number"),
    )

    partner = db.relationship("Partner", back_populates="invoices")
    lines = db.relationship(
        "PartnerInvoiceLine", back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="PartnerInvoiceLine.position",
    )

    def to_dict(self, include_lines=False):
        d = {
            "id": self.id,
            "project_id": self.project_id,
            "partner_id": self.partner_id,
            "invoice_number": self.invoice_number,
            "invoice_date": self.invoice_date.isoformat() if self.invoice_date else None,
            "period_start": self.period_start.isoformat() if self.period_start else None,
            "period_end": self.period_end.isoformat() if self.period_end else None,
            "invoice_type": self.invoice_type,
            "include_submitted": self.include_submitted,
            "status": self.status,
            "timesheet_total": _money(self.timesheet_total),
            "expense_total": _money(self.expense_total),
            "supplier_expense_total": _money(self.supplier_expense_total),
            "invoice_total": _money(self.invoice_total),
            "chargeable_total": _money(self.chargeable_total),
            "non_chargeable_total": _money(self.non_chargeable_total),
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
        }
        if include_lines:
            d["lines"] = [line.to_dict() for line in self.lines]
        return d

    def __repr__(self):
        return f"<PartnerInvoice {self.invoice_number} {self.status}>"


class PartnerInvoiceLine(db.Model):
    """Frozen copy of one invoice line; ``source_id`` is informational only."""

    __tablename__ = "partner_invoice_lines"

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(
        db.Integer, db.ForeignKey("partner_invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position = db.Column(db.Integer, nullable=False, default=0)
    line_type = db.Column(db.String(20), nullable=False, comment="timesheet | partner_expense | supplier_expense")
    source_id = db.Column(db.Integer, nullable=True)
    line_date = db.Column(db.Date, nullable=False)
    resource_id = db.Column(db.Integer, nullable=True)
    resource_name = db.Column(db.String(200), nullable=True)
    description = db.Column(db.Text, nullable=True)
    quantity = db.Column(db.Numeric(10, 2), nullable=True, comment="hours for timesheet lines")
    unit_rate = db.Column(db.Numeric(10, 2), nullable=True)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    chargeable_to_customer = db.Column(db.Boolean, nullable=False, default=True)
    source_status = db.Column(db.String(20), nullable=True)

    invoice = db.relationship("PartnerInvoice", back_populates="lines")

    def to_dict(self):
        return {
            "position": self.position,
            "line_type": self.line_type,
            "source_id": self.source_id,
            "line_date": self.line_date.isoformat() if self.line_date else None,
            "resource_id": self.resource_id,
            "resource_name": self.resource_name,
            "description": self.description,
            "quantity": _money(self.quantity),
            "unit_rate": _money(self.unit_rate),
            "amount": _money(self.amount),
            "chargeable_to_customer": self.chargeable_to_customer,
            "source_status": self.source_status,
        }
