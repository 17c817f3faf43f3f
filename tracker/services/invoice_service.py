"""
Invoice Aggregator — partner invoices computed from timesheets and expenses.

A draft is a pure function of the source rows: same inputs, same lines in
the same order, same totals to the cent. Nothing here writes to timesheets
or expenses.

Sections:
  - timesheet lines:          hours × resource hourly cost_rate
  - partner expense lines:    procurement_method 'partner' or unset → payable
  - supplier expense lines:   procurement_method 'supplier' → reference only

Totals:
  invoice_total        = timesheet_total + expense_total (partner-procured)
  chargeable_total     = Σ chargeable lines across all three sections
  non_chargeable_total = Σ non-chargeable lines across all three sections

Chargeability and procurement are independent: a supplier-procured,
chargeable expense counts towards ``chargeable_total`` and never towards
``invoice_total``.

Persisted invoices follow INVOICE_TRANSITIONS (draft → sent → paid, draft/sent
→ cancelled). Sending re-snapshots the source rows and stores the resulting
lines and totals in the same transaction as the status change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from flask import current_app, has_app_context
from sqlalchemy import func, update

from tracker.core.exceptions import (
    IllegalTransition,
    NotFoundError,
    StaleState,
    ValidationError,
)
from tracker.models import db
from tracker.models.audit import write_audit
from tracker.models.billing import (
    INVOICE_STATUSES,
    INVOICE_TYPES,
    Partner,
    PartnerInvoice,
    PartnerInvoiceLine,
    Resource,
    validate_invoice_transition,
)
from tracker.models.workflow import Expense, Timesheet
from tracker.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")

INVOICEABLE_STATUSES = ("approved", "submitted")


def _round(value) -> Decimal:
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def _money(value) -> str:
    return f"{value:.2f}"


def _setting(key, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


# ── Draft value objects ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class InvoiceLine:
    line_type: str
    source_id: int
    line_date: date
    resource_id: int | None
    resource_name: str | None
    description: str
    amount: Decimal
    chargeable_to_customer: bool
    source_status: str
    quantity: Decimal | None = None
    unit_rate: Decimal | None = None

    def sort_key(self):
        return (self.line_date, self.resource_name or "", self.source_id)

    def to_dict(self) -> dict:
        return {
            "line_type": self.line_type,
            "source_id": self.source_id,
            "line_date": self.line_date.isoformat(),
            "resource_id": self.resource_id,
            "resource_name": self.resource_name,
            "description": self.description,
            "quantity": _money(self.quantity) if self.quantity is not None else None,
            "unit_rate": _money(self.unit_rate) if self.unit_rate is not None else None,
            "amount": _money(self.amount),
            "chargeable_to_customer": self.chargeable_to_customer,
            "source_status": self.source_status,
        }


@dataclass(frozen=True)
class InvoiceDraft:
    project_id: int
    partner_id: int
    period_start: date
    period_end: date
    invoice_type: str
    include_submitted: bool
    timesheet_lines: tuple[InvoiceLine, ...]
    partner_expense_lines: tuple[InvoiceLine, ...]
    supplier_expense_lines: tuple[InvoiceLine, ...]

    @property
    def lines(self) -> tuple[InvoiceLine, ...]:
        return self.timesheet_lines + self.partner_expense_lines + self.supplier_expense_lines

    @property
    def timesheet_total(self) -> Decimal:
        return sum((line.amount for line in self.timesheet_lines), ZERO)

    @property
    def expense_total(self) -> Decimal:
        return sum((line.amount for line in self.partner_expense_lines), ZERO)

    @property
    def supplier_expense_total(self) -> Decimal:
        return sum((line.amount for line in self.supplier_expense_lines), ZERO)

    @property
    def invoice_total(self) -> Decimal:
        return self.timesheet_total + self.expense_total

    @property
    def chargeable_total(self) -> Decimal:
        return sum((line.amount for line in self.lines if line.chargeable_to_customer), ZERO)

    @property
    def non_chargeable_total(self) -> Decimal:
        return sum((line.amount for line in self.lines if not line.chargeable_to_customer), ZERO)

    def totals(self) -> dict[str, Decimal]:
        return {
            "timesheet_total": self.timesheet_total,
            "expense_total": self.expense_total,
            "supplier_expense_total": self.supplier_expense_total,
            "invoice_total": self.invoice_total,
            "chargeable_total": self.chargeable_total,
            "non_chargeable_total": self.non_chargeable_total,
        }

    def to_dict(self) -> dict:
        return {
            "project_id": self.project_id,
            "partner_id": self.partner_id,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "invoice_type": self.invoice_type,
            "include_submitted": self.include_submitted,
            "totals": {k: _money(v) for k, v in self.totals().items()},
            "timesheet_lines": [line.to_dict() for line in self.timesheet_lines],
            "partner_expense_lines": [line.to_dict() for line in self.partner_expense_lines],
            "supplier_expense_lines": [line.to_dict() for line in self.supplier_expense_lines],
        }


# ── Generation ───────────────────────────────────────────────────────────────


def _get_partner(project_id: int, partner_id: int) -> Partner:
    partner = Partner.query_for_project(project_id).filter_by(id=partner_id).first()
    if partner is None:
        raise NotFoundError(resource="Partner", resource_id=partner_id, project_id=project_id)
    return partner


def _timesheet_lines(project_id, resources, statuses, period_start, period_end) -> list[InvoiceLine]:
    rows = (
        Timesheet.query_active()
        .filter(
            Timesheet.project_id == project_id,
            Timesheet.resource_id.in_(list(resources)),
            Timesheet.status.in_(statuses),
            Timesheet.work_date >= period_start,
            Timesheet.work_date <= period_end,
        )
        .all()
    )
    lines = []
    for ts in rows:
        resource = resources[ts.resource_id]
        hours = Decimal(ts.hours)
        rate = Decimal(resource.cost_rate or 0)
        lines.append(InvoiceLine(
            line_type="timesheet",
            source_id=ts.id,
            line_date=ts.work_date,
            resource_id=resource.id,
            resource_name=resource.name,
            description=f"{resource.name} - {hours:.2f}h",
            quantity=hours,
            unit_rate=rate,
            amount=_round(hours * rate),
            chargeable_to_customer=bool(ts.chargeable_to_customer),
            source_status=ts.status,
        ))
    return sorted(lines, key=InvoiceLine.sort_key)


def _expense_lines(project_id, resources, statuses, period_start, period_end):
    rows = (
        Expense.query_active()
        .filter(
            Expense.project_id == project_id,
            Expense.resource_id.in_(list(resources)),
            Expense.status.in_(statuses),
            Expense.expense_date >= period_start,
            Expense.expense_date <= period_end,
        )
        .all()
    )
    partner_lines, supplier_lines = [], []
    for exp in rows:
        resource = resources[exp.resource_id]
        line = InvoiceLine(
            line_type="partner_expense" if exp.is_partner_procured else "supplier_expense",
            source_id=exp.id,
            line_date=exp.expense_date,
            resource_id=resource.id,
            resource_name=resource.name,
            description=f"{exp.category or 'Expense'}: {exp.reason or ''}".strip().rstrip(":"),
            amount=_round(exp.amount),
            chargeable_to_customer=bool(exp.chargeable_to_customer),
            source_status=exp.status,
        )
        (partner_lines if exp.is_partner_procured else supplier_lines).append(line)
    return (
        sorted(partner_lines, key=InvoiceLine.sort_key),
        sorted(supplier_lines, key=InvoiceLine.sort_key),
    )


def generate_invoice(
    project_id: int,
    partner_id: int,
    period_start: date,
    period_end: date,
    *,
    invoice_type: str = "combined",
    include_submitted: bool | None = None,
) -> InvoiceDraft:
    """Compute an invoice draft for a partner over an inclusive date range.

    Args:
        invoice_type: combined | timesheets | expenses.
        include_submitted: Count submitted as well as approved records.
            Defaults to the INVOICE_INCLUDE_SUBMITTED setting (True).

    Raises:
        NotFoundError: partner not in this project.
        ValidationError: bad range/type, or no resources linked to the partner.
    """
    if invoice_type not in INVOICE_TYPES:
        raise ValidationError(
            f"invoice_type must be one of {sorted(INVOICE_TYPES)}", details={"invoice_type": invoice_type}
        )
    if period_start is None or period_end is None:
        raise ValidationError("period_start and period_end are required")
    if period_start > period_end:
        raise ValidationError(
            "period_start must not be after period_end",
            details={"period_start": period_start.isoformat(), "period_end": period_end.isoformat()},
        )
    if include_submitted is None:
        include_submitted = bool(_setting("INVOICE_INCLUDE_SUBMITTED", True))

    _get_partner(project_id, partner_id)
    resources = {
        r.id: r
        for r in Resource.query_for_project(project_id).filter_by(partner_id=partner_id).all()
    }
    if not resources:
        raise ValidationError("No resources linked to this partner", details={"partner_id": partner_id})

    statuses = INVOICEABLE_STATUSES if include_submitted else ("approved",)

    timesheet_lines = []
    if invoice_type in ("combined", "timesheets"):
        timesheet_lines = _timesheet_lines(project_id, resources, statuses, period_start, period_end)
    partner_lines, supplier_lines = [], []
    if invoice_type in ("combined", "expenses"):
        partner_lines, supplier_lines = _expense_lines(
            project_id, resources, statuses, period_start, period_end
        )

    draft = InvoiceDraft(
        project_id=project_id,
        partner_id=partner_id,
        period_start=period_start,
        period_end=period_end,
        invoice_type=invoice_type,
        include_submitted=include_submitted,
        timesheet_lines=tuple(timesheet_lines),
        partner_expense_lines=tuple(partner_lines),
        supplier_expense_lines=tuple(supplier_lines),
    )
    logger.info(
        "Invoice generated partner=%s %s..%s total=%s",
        partner_id, period_start, period_end, _money(draft.invoice_total),
        extra={
            "event_type": "invoice_generated",
            "project_id": project_id,
            "partner_id": partner_id,
            "line_count": len(draft.lines),
        },
    )
    return draft


# ── Persistence ──────────────────────────────────────────────────────────────


def _next_invoice_number(project_id: int, year: int) -> str:
    """Next ``INV-YYYY-NNN`` for the project (prefix from INVOICE_NUMBER_PREFIX)."""
    prefix = f"{_setting('INVOICE_NUMBER_PREFIX', 'INV')}-{year}-"
    numbers = (
        db.session.query(PartnerInvoice.invoice_number)
        .filter(
            PartnerInvoice.project_id == project_id,
            PartnerInvoice.invoice_number.like(f"{prefix}%"),
        )
        .all()
    )
    last = 0
    for (number,) in numbers:
        suffix = number[len(prefix):]
        if suffix.isdigit():
            last = max(last, int(suffix))
    return f"{prefix}{last + 1:03d}"


def _apply_draft(invoice: PartnerInvoice, draft: InvoiceDraft) -> None:
    for name, value in draft.totals().items():
        setattr(invoice, name, value)
    invoice.lines.clear()
    for position, line in enumerate(draft.lines):
        invoice.lines.append(PartnerInvoiceLine(
            position=position,
            line_type=line.line_type,
            source_id=line.source_id,
            line_date=line.line_date,
            resource_id=line.resource_id,
            resource_name=line.resource_name,
            description=line.description,
            quantity=line.quantity,
            unit_rate=line.unit_rate,
            amount=line.amount,
            chargeable_to_customer=line.chargeable_to_customer,
            source_status=line.source_status,
        ))


def _redraft(invoice: PartnerInvoice) -> InvoiceDraft:
    return generate_invoice(
        invoice.project_id,
        invoice.partner_id,
        invoice.period_start,
        invoice.period_end,
        invoice_type=invoice.invoice_type,
        include_submitted=invoice.include_submitted,
    )


def persist_invoice(draft: InvoiceDraft, created_by: int | None, *, notes: str | None = None) -> PartnerInvoice:
    """Store a generated draft as a ``draft`` PartnerInvoice with frozen line copies."""
    today = datetime.now(timezone.utc).date()
    invoice = PartnerInvoice(
        project_id=draft.project_id,
        partner_id=draft.partner_id,
        invoice_number=_next_invoice_number(draft.project_id, today.year),
        invoice_date=today,
        period_start=draft.period_start,
        period_end=draft.period_end,
        invoice_type=draft.invoice_type,
        include_submitted=draft.include_submitted,
        status="draft",
        notes=notes,
        created_by=created_by,
    )
    _apply_draft(invoice, draft)
    db.session.add(invoice)
    db.session.flush()
    write_audit(
        entity_type="partner_invoice",
        entity_id=invoice.id,
        action="partner_invoice.create",
        project_id=invoice.project_id,
        actor_user_id=created_by,
        diff={"invoice_number": invoice.invoice_number, "invoice_total": _money(draft.invoice_total)},
    )
    commit_or_raise("PartnerInvoice")

    logger.info(
        "Invoice persisted %s partner=%s", invoice.invoice_number, invoice.partner_id,
        extra={"event_type": "invoice_persisted", "project_id": invoice.project_id},
    )
    return invoice


def get_invoice(invoice_id: int, project_id: int | None = None) -> PartnerInvoice:
    invoice = db.session.get(PartnerInvoice, invoice_id)
    if invoice is None or (project_id is not None and invoice.project_id != project_id):
        raise NotFoundError(resource="PartnerInvoice", resource_id=invoice_id, project_id=project_id)
    return invoice


def update_invoice_status(
    invoice_id: int,
    status: str,
    actor_id: int | None = None,
    *,
    project_id: int | None = None,
) -> PartnerInvoice:
    """Move an invoice along draft → sent → paid (or → cancelled).

    draft → sent regenerates lines and totals from the source rows and stores
    them in the same transaction that claims the status change.

    Raises:
        NotFoundError, ValidationError (unknown status),
        IllegalTransition (not allowed from the current status),
        StaleState (another request changed the status first).
    """
    if status not in INVOICE_STATUSES:
        raise ValidationError(
            f"status must be one of {sorted(INVOICE_STATUSES)}", details={"status": status}
        )
    invoice = get_invoice(invoice_id, project_id)
    previous = invoice.status
    if not validate_invoice_transition(previous, status):
        raise IllegalTransition(kind="partner_invoice", current=previous, action=status)

    now = datetime.now(timezone.utc)
    values = {"status": status}
    if status == "sent":
        values["sent_at"] = now
    elif status == "paid":
        values["paid_at"] = now
    elif status == "cancelled":
        values["cancelled_at"] = now

    try:
        result = db.session.execute(
            update(PartnerInvoice)
            .where(PartnerInvoice.id == invoice.id, PartnerInvoice.status == previous)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StaleState(
                kind="partner_invoice", entity_id=invoice.id, expected={"status": previous},
            )

        diff = {"status": {"old": previous, "new": status}}
        if previous == "draft" and status == "sent":
            draft = _redraft(invoice)
            _apply_draft(invoice, draft)
            diff["invoice_total"] = _money(draft.invoice_total)
        write_audit(
            entity_type="partner_invoice",
            entity_id=invoice.id,
            action=f"partner_invoice.{status}",
            project_id=invoice.project_id,
            actor_user_id=actor_id,
            diff=diff,
        )
    except (StaleState, ValidationError, NotFoundError):
        db.session.rollback()
        raise
    commit_or_raise("PartnerInvoice")

    logger.info(
        "Invoice %s status %s → %s", invoice.invoice_number, previous, status,
        extra={"event_type": "invoice_status_changed", "project_id": invoice.project_id},
    )
    return invoice


def regenerate_invoice(invoice_id: int, *, project_id: int | None = None, actor_id: int | None = None) -> PartnerInvoice:
    """Recompute a draft invoice from current source rows. Sent/paid invoices are frozen."""
    invoice = get_invoice(invoice_id, project_id)
    if invoice.status != "draft":
        raise IllegalTransition(
            kind="partner_invoice", current=invoice.status, action="regenerate",
            reason="only draft invoices can be regenerated",
        )
    try:
        draft = _redraft(invoice)
    except ValidationError:
        db.session.rollback()
        raise
    _apply_draft(invoice, draft)
    write_audit(
        entity_type="partner_invoice",
        entity_id=invoice.id,
        action="partner_invoice.regenerate",
        project_id=invoice.project_id,
        actor_user_id=actor_id,
        diff={"invoice_total": _money(draft.invoice_total)},
    )
    commit_or_raise("PartnerInvoice")
    return invoice


def partner_invoice_stats(partner_id: int, *, project_id: int | None = None) -> dict:
    """Invoice count and invoice_total sums per status for a partner."""
    query = db.session.query(
        PartnerInvoice.status,
        func.count(PartnerInvoice.id),
        func.coalesce(func.sum(PartnerInvoice.invoice_total), 0),
    ).filter(PartnerInvoice.partner_id == partner_id)
    if project_id is not None:
        query = query.filter(PartnerInvoice.project_id == project_id)

    stats = {status: ZERO for status in sorted(INVOICE_STATUSES)}
    total, count = ZERO, 0
    for status, n, amount in query.group_by(PartnerInvoice.status).all():
        amount = _round(amount)
        stats[status] = amount
        total += amount
        count += n
    result = {status: _money(amount) for status, amount in stats.items()}
    result["total"] = _money(total)
    result["count"] = count
    return result
