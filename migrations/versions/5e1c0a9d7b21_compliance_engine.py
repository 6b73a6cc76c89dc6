"""compliance_engine

Creates the compliance engine tables:
  - organizations / users      — owning organization and acting user (role)
  - compliance_templates       — ordered step specifications per category
  - deliverables               — gated work product with rollup fields
  - compliance_steps           — instantiated, stateful steps per deliverable

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via
db.create_all() in a development environment.

Revision ID: 5e1c0a9d7b21
Revises:
Create Date: 2026-10-19 09:12:40.518203
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '5e1c0a9d7b21'
down_revision = None
branch_labels = None
depends_on = None

_STEP_STATUSES = ("locked", "pending", "draft", "submitted", "completed", "approved", "rejected")
_STEP_TYPES = ("form", "checklist", "file-review", "approval", "other")


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Organization / User ───────────────────────────────────────────────
    if "organizations" not in existing:
        op.create_table(
            "organizations",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("slug", sa.String(length=100), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("slug"),
        )

    if "users" not in existing:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=True),
            sa.Column(
                "role", sa.String(length=20), nullable=False,
                server_default="member", comment="admin | member",
            ),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("organization_id", "email", name="uq_user_org_email"),
        )
        op.create_index("ix_users_organization_id", "users", ["organization_id"])

    # ── ComplianceTemplate ────────────────────────────────────────────────
    if "compliance_templates" not in existing:
        op.create_table(
            "compliance_templates",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column(
                "deliverable_category", sa.String(length=100), nullable=True,
                comment="NULL = generic fallback for every category",
            ),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column(
                "steps", sa.JSON(), nullable=False,
                comment="Ordered step specifications: [{step_number, step_type, title, ...}]",
            ),
            sa.Column("created_by_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_compliance_templates_organization_id", "compliance_templates", ["organization_id"],
        )
        op.create_index(
            "ix_compliance_template_lookup", "compliance_templates",
            ["organization_id", "deliverable_category", "is_default"],
        )

    # ── Deliverable ───────────────────────────────────────────────────────
    if "deliverables" not in existing:
        op.create_table(
            "deliverables",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column(
                "project_ref", sa.String(length=64), nullable=True,
                comment="Identifier of the owning project in the external project system",
            ),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column(
                "category", sa.String(length=100), nullable=True,
                comment="Deliverable category tag used to resolve the compliance template",
            ),
            sa.Column(
                "status", sa.String(length=20), nullable=False, server_default="pending",
                comment="pending | uploaded | accepted | rejected",
            ),
            sa.Column(
                "compliance_template_id", sa.Integer(), nullable=True,
                comment="Template the step chain was instantiated from; NULL = ungated",
            ),
            sa.Column("compliance_progress", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_upload_unlocked", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(
                ["compliance_template_id"], ["compliance_templates.id"], ondelete="SET NULL",
            ),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_deliverables_organization_id", "deliverables", ["organization_id"])

    # ── ComplianceStep ────────────────────────────────────────────────────
    if "compliance_steps" not in existing:
        op.create_table(
            "compliance_steps",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("deliverable_id", sa.Integer(), nullable=False),
            sa.Column(
                "template_id", sa.Integer(), nullable=True,
                comment="Provenance only — the specification is copied, never re-read",
            ),
            sa.Column("step_number", sa.Integer(), nullable=False),
            sa.Column(
                "step_type",
                sa.Enum(*_STEP_TYPES, name="steptype", native_enum=False, length=20),
                nullable=False,
            ),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("requires_admin_approval", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("auto_unlock_next", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("form_schema", sa.JSON(), nullable=True),
            sa.Column(
                "status",
                sa.Enum(*_STEP_STATUSES, name="stepstatus", native_enum=False, length=20),
                nullable=False,
                server_default="locked",
            ),
            sa.Column("progress", sa.Integer(), nullable=False, server_default="0", comment="0 or 100"),
            sa.Column("form_data", sa.JSON(), nullable=True),
            sa.Column("checklist_items", sa.JSON(), nullable=True, comment="[{id, label, checked}]"),
            sa.Column("dynamic_list_data", sa.JSON(), nullable=True, comment="[{id, value}]"),
            sa.Column("last_saved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column(
                "approver_id", sa.Integer(), nullable=True,
                comment="Administrator who approved or rejected the step",
            ),
            sa.Column("admin_comment", sa.Text(), nullable=True),
            sa.Column("rejection_reason", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["deliverable_id"], ["deliverables.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["template_id"], ["compliance_templates.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["approver_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("deliverable_id", "step_number", name="uq_compliance_step_number"),
        )
        op.create_index("ix_compliance_steps_deliverable_id", "compliance_steps", ["deliverable_id"])
        op.create_index("ix_compliance_steps_status", "compliance_steps", ["status"])
        op.create_index(
            "ix_compliance_step_deliverable_status", "compliance_steps", ["deliverable_id", "status"],
        )


def downgrade():
    op.drop_index("ix_compliance_step_deliverable_status", table_name="compliance_steps")
    op.drop_index("ix_compliance_steps_status", table_name="compliance_steps")
    op.drop_index("ix_compliance_steps_deliverable_id", table_name="compliance_steps")
    op.drop_table("compliance_steps")
    op.drop_index("ix_deliverables_organization_id", table_name="deliverables")
    op.drop_table("deliverables")
    op.drop_index("ix_compliance_template_lookup", table_name="compliance_templates")
    op.drop_index("ix_compliance_templates_organization_id", table_name="compliance_templates")
    op.drop_table("compliance_templates")
    op.drop_index("ix_users_organization_id", table_name="users")
    op.drop_table("users")
    op.drop_table("organizations")
