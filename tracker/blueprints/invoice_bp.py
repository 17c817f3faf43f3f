"""
Partner Invoice Blueprint — preview, persist and progress partner invoices.

Endpoints (all under /api/v1/projects/<pid>):
    POST   /partners/<partner_id>/invoice-preview   generate, nothing stored
    POST   /partners/<partner_id>/invoices          generate + persist as draft (201)
    GET    /partners/<partner_id>/invoices          list persisted invoices
    GET    /partners/<partner_id>/invoice-stats     per-status sums
    GET    /invoices/<invoice_id>                   invoice with frozen lines
    POST   /invoices/<invoice_id>/status            { "status": "sent|paid|cancelled" }
    POST   /invoices/<invoice_id>/regenerate        recompute a draft

Body for preview / create:
    { "period_start": "2025-01-01", "period_end": "2025-01-31",
      "invoice_type": "combined|timesheets|expenses",
      "include_submitted": true, "notes": "..." }

Unit rates are cost data: they are stripped from lines unless the actor
holds view_costs on partner_invoice.
"""

import logging

from flask import Blueprint, g, jsonify

from tracker.blueprints import json_body
from tracker.core.exceptions import WorkflowError
from tracker.middleware.jwt_auth import require_actor
from tracker.middleware.permission_required import require_capability
from tracker.models.billing import Partner, PartnerInvoice
from tracker.services import invoice_service, permission_service
from tracker.services.permission_service import ResourceRef
from tracker.services.role_registry import Action, ResourceKind
from tracker.utils.errors import E, api_error, failure_response
from tracker.utils.helpers import get_project_scoped_or_404, parse_date_input

logger = logging.getLogger(__name__)

invoice_bp = Blueprint("invoice", __name__, url_prefix="/api/v1")

# Requested status → capability needed to move there
_STATUS_ACTIONS = {
    "sent": Action.SEND,
    "paid": Action.MARK_PAID,
    "cancelled": Action.CANCEL,
}


def _generation_args(data):
    """Parse period / type / include_submitted. Returns (kwargs, err_response)."""
    missing = [k for k in ("period_start", "period_end") if not data.get(k)]
    if missing:
        return None, api_error(
            E.VALIDATION_REQUIRED, f"Missing required fields: {', '.join(missing)}",
            details={"missing": missing},
        )
    try:
        period_start = parse_date_input(data["period_start"])
        period_end = parse_date_input(data["period_end"])
    except ValueError as exc:
        return None, api_error(E.VALIDATION_INVALID, str(exc))

    include_submitted = data.get("include_submitted")
    if include_submitted is not None and not isinstance(include_submitted, bool):
        return None, api_error(E.VALIDATION_INVALID, "'include_submitted' must be a boolean")

    return {
        "period_start": period_start,
        "period_end": period_end,
        "invoice_type": data.get("invoice_type") or "combined",
        "include_submitted": include_submitted,
    }, None


def _can_view_costs(project_id):
    return permission_service.can(
        g.actor_id, project_id, Action.VIEW_COSTS, ResourceRef(kind=ResourceKind.PARTNER_INVOICE)
    )


def _redact_costs(payload, line_keys):
    for key in line_keys:
        for line in payload.get(key, []):
            line.pop("unit_rate", None)
    return payload


@invoice_bp.route("/projects/<int:project_id>/partners/<int:partner_id>/invoice-preview", methods=["POST"])
@require_actor
@require_capability("generate", "partner_invoice")
def preview_invoice(project_id, partner_id):
    kwargs, err = _generation_args(json_body())
    if err:
        return err
    draft = invoice_service.generate_invoice(project_id, partner_id, **kwargs)
    payload = draft.to_dict()
    if not _can_view_costs(project_id):
        _redact_costs(payload, ("timesheet_lines", "partner_expense_lines", "supplier_expense_lines"))
    return jsonify(payload), 200


@invoice_bp.route("/projects/<int:project_id>/partners/<int:partner_id>/invoices", methods=["POST"])
@require_actor
@require_capability("generate", "partner_invoice")
def create_invoice(project_id, partner_id):
    data = json_body()
    kwargs, err = _generation_args(data)
    if err:
        return err
    draft = invoice_service.generate_invoice(project_id, partner_id, **kwargs)
    invoice = invoice_service.persist_invoice(draft, g.actor_id, notes=data.get("notes"))
    return jsonify(invoice.to_dict(include_lines=True)), 201


@invoice_bp.route("/projects/<int:project_id>/partners/<int:partner_id>/invoices", methods=["GET"])
@require_actor
@require_capability("view", "partner_invoice")
def list_invoices(project_id, partner_id):
    partner, err = get_project_scoped_or_404(Partner, partner_id, project_id)
    if err:
        return err
    invoices = (
        PartnerInvoice.query_for_project(project_id)
        .filter_by(partner_id=partner.id)
        .order_by(PartnerInvoice.invoice_date.desc(), PartnerInvoice.id.desc())
        .all()
    )
    return jsonify({"items": [inv.to_dict() for inv in invoices], "total": len(invoices)}), 200


@invoice_bp.route("/projects/<int:project_id>/partners/<int:partner_id>/invoice-stats", methods=["GET"])
@require_actor
@require_capability("view", "partner_invoice")
def invoice_stats(project_id, partner_id):
    partner, err = get_project_scoped_or_404(Partner, partner_id, project_id)
    if err:
        return err
    return jsonify(invoice_service.partner_invoice_stats(partner.id, project_id=project_id)), 200


@invoice_bp.route("/projects/<int:project_id>/invoices/<int:invoice_id>", methods=["GET"])
@require_actor
@require_capability("view", "partner_invoice")
def get_invoice(project_id, invoice_id):
    invoice, err = get_project_scoped_or_404(PartnerInvoice, invoice_id, project_id, "Invoice")
    if err:
        return err
    payload = invoice.to_dict(include_lines=True)
    if not _can_view_costs(project_id):
        _redact_costs(payload, ("lines",))
    return jsonify(payload), 200


@invoice_bp.route("/projects/<int:project_id>/invoices/<int:invoice_id>/status", methods=["POST"])
@require_actor
def update_invoice_status(project_id, invoice_id):
    data = json_body()
    status = (data.get("status") or "").strip()
    action = _STATUS_ACTIONS.get(status)
    if action is None:
        return api_error(
            E.VALIDATION_INVALID, f"Invalid status '{status}'",
            details={"valid_statuses": sorted(_STATUS_ACTIONS)},
        )

    decision = permission_service.authorize(
        g.actor_id, project_id, action, ResourceRef(kind=ResourceKind.PARTNER_INVOICE)
    )
    if not decision.allowed:
        return failure_response(decision)

    try:
        invoice = invoice_service.update_invoice_status(
            invoice_id, status, g.actor_id, project_id=project_id
        )
    except WorkflowError as exc:
        return failure_response(exc)
    return jsonify(invoice.to_dict(include_lines=True)), 200


@invoice_bp.route("/projects/<int:project_id>/invoices/<int:invoice_id>/regenerate", methods=["POST"])
@require_actor
@require_capability("generate", "partner_invoice")
def regenerate_invoice(project_id, invoice_id):
    try:
        invoice = invoice_service.regenerate_invoice(
            invoice_id, project_id=project_id, actor_id=g.actor_id
        )
    except WorkflowError as exc:
        return failure_response(exc)
    return jsonify(invoice.to_dict(include_lines=True)), 200
