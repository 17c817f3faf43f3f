"""Membership, workflow entity, signature, invoice and audit tables

Revision ID: a1c3e5f7b901
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "a1c3e5f7b901"
down_revision = None
branch_labels = None
depends_on = None


def _user_fk(name, index=False):
    return sa.Column(name, sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=index)


def _workflow_columns(table):
    """Columns shared by every workflow entity table."""
    return [
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("status", sa.String(40), nullable=False, server_default="draft", index=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("rejection_reason", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
        _user_fk("created_by", index=True),
        sa.Column("supersedes_id", sa.Integer(), sa.ForeignKey(f"{table}.id", ondelete="SET NULL"), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True, index=True),
        _user_fk("deleted_by"),
    ]


def _approval_columns():
    return [
        sa.Column("submitted_at", sa.DateTime(timezone=True)),
        sa.Column("approved_at", sa.DateTime(timezone=True)),
        sa.Column("rejected_at", sa.DateTime(timezone=True)),
        _user_fk("approved_by"),
        _user_fk("rejected_by"),
    ]


def upgrade():
    # ── Membership ──
    op.create_table(
        "organisations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False, unique=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime()),
    )
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(200), nullable=False, unique=True),
        sa.Column("full_name", sa.String(200)),
        sa.Column("status", sa.String(20), server_default="active"),
        sa.Column("created_at", sa.DateTime()),
    )
    op.create_table(
        "organisation_members",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("organisation_id", sa.Integer(), sa.ForeignKey("organisations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(50), nullable=False, server_default="org_member"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime()),
        sa.UniqueConstraint("organisation_id", "user_id", name="uq_org_member_user"),
    )
    op.create_index("ix_org_members_user", "organisation_members", ["user_id"])
    op.create_table(
        "projects",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("organisation_id", sa.Integer(), sa.ForeignKey("organisations.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("created_at", sa.DateTime()),
        sa.UniqueConstraint("organisation_id", "code", name="uq_project_org_code"),
    )
    op.create_table(
        "project_members",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(50), nullable=False, server_default="viewer"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _user_fk("assigned_by"),
        sa.Column("created_at", sa.DateTime()),
        sa.UniqueConstraint("project_id", "user_id", name="uq_project_member_user"),
    )
    op.create_index("ix_project_members_user", "project_members", ["user_id"])

    # ── Billing sources ──
    op.create_table(
        "partners",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("contact_email", sa.String(200)),
        sa.Column("payment_terms", sa.Integer(), server_default="30"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )
    op.create_table(
        "resources",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("cost_rate", sa.Numeric(10, 2), nullable=False, server_default="0"),
        _user_fk("user_id", index=True),
        sa.Column("partner_id", sa.Integer(), sa.ForeignKey("partners.id", ondelete="SET NULL"), nullable=True, index=True),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )

    # ── Workflow entities ──
    op.create_table(
        "timesheets",
        *_workflow_columns("timesheets"),
        *_approval_columns(),
        sa.Column("resource_id", sa.Integer(), sa.ForeignKey("resources.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("work_date", sa.Date(), nullable=False),
        sa.Column("hours", sa.Numeric(6, 2), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("chargeable_to_customer", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )
    op.create_table(
        "expenses",
        *_workflow_columns("expenses"),
        *_approval_columns(),
        sa.Column("resource_id", sa.Integer(), sa.ForeignKey("resources.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("expense_date", sa.Date(), nullable=False),
        sa.Column("category", sa.String(50)),
        sa.Column("reason", sa.Text()),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("procurement_method", sa.String(20)),
        sa.Column("chargeable_to_customer", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )
    op.create_table(
        "deliverables",
        *_workflow_columns("deliverables"),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("due_date", sa.Date()),
        sa.Column("delivered_at", sa.DateTime(timezone=True)),
    )
    op.create_table(
        "milestone_certificates",
        *_workflow_columns("milestone_certificates"),
        sa.Column("milestone_ref", sa.String(50), nullable=False),
        sa.Column("milestone_name", sa.String(200)),
        sa.Column("amount", sa.Numeric(12, 2)),
    )
    op.create_table(
        "variations",
        *_workflow_columns("variations"),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("variation_type", sa.String(30), server_default="other"),
        sa.Column("cost_impact", sa.Numeric(12, 2), server_default="0"),
        sa.Column("days_impact", sa.Integer(), server_default="0"),
        sa.Column("applied_at", sa.DateTime(timezone=True)),
    )
    op.create_table(
        "workflow_signatures",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("entity_kind", sa.String(40), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("side", sa.String(20), nullable=False),
        _user_fk("signer_id"),
        sa.Column("signer_role", sa.String(50)),
        sa.Column("signed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("voided_at", sa.DateTime(timezone=True)),
        sa.Column("void_reason", sa.Text()),
    )
    op.create_index("ix_signature_entity", "workflow_signatures", ["entity_kind", "entity_id"])

    # ── Partner invoices ──
    op.create_table(
        "partner_invoices",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("partner_id", sa.Integer(), sa.ForeignKey("partners.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("invoice_number", sa.String(30), nullable=False),
        sa.Column("invoice_date", sa.Date(), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("invoice_type", sa.String(20), nullable=False, server_default="combined"),
        sa.Column("include_submitted", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft", index=True),
        sa.Column("timesheet_total", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("expense_total", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("supplier_expense_total", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("invoice_total", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("chargeable_total", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("non_chargeable_total", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text()),
        _user_fk("created_by"),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("sent_at", sa.DateTime(timezone=True)),
        sa.Column("paid_at", sa.DateTime(timezone=True)),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("project_id", "invoice_number", name="uq_partner_invoice_number"),
    )
    op.create_table(
        "partner_invoice_lines",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("partner_invoices.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("line_type", sa.String(20), nullable=False),
        sa.Column("source_id", sa.Integer()),
        sa.Column("line_date", sa.Date(), nullable=False),
        sa.Column("resource_id", sa.Integer()),
        sa.Column("resource_name", sa.String(200)),
        sa.Column("description", sa.Text()),
        sa.Column("quantity", sa.Numeric(10, 2)),
        sa.Column("unit_rate", sa.Numeric(10, 2)),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("chargeable_to_customer", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("source_status", sa.String(20)),
    )

    # ── Audit ──
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True),
        sa.Column("entity_type", sa.String(30), nullable=False),
        sa.Column("entity_id", sa.String(36), nullable=False),
        sa.Column("action", sa.String(60), nullable=False),
        _user_fk("actor_user_id", index=True),
        sa.Column("diff_json", sa.Text(), server_default="{}"),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
    op.create_index("idx_audit_action", "audit_logs", ["action"])
    op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])


def downgrade():
    for name in ("idx_audit_ts", "idx_audit_action", "idx_audit_entity"):
        op.drop_index(name, table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("partner_invoice_lines")
    op.drop_table("partner_invoices")
    op.drop_index("ix_signature_entity", table_name="workflow_signatures")
    op.drop_table("workflow_signatures")
    for table in ("variations", "milestone_certificates", "deliverables", "expenses", "timesheets"):
        op.drop_table(table)
    op.drop_table("resources")
    op.drop_table("partners")
    op.drop_index("ix_project_members_user", table_name="project_members")
    op.drop_table("project_members")
    op.drop_table("projects")
    op.drop_index("ix_org_members_user", table_name="organisation_members")
    op.drop_table("organisation_members")
    op.drop_table("users")
    op.drop_table("organisations")
