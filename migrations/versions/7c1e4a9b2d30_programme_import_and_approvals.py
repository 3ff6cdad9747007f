"""programme_import_and_approvals

Creates the programme import and change-approval schema:
  - projects                 — contract context (read-only for the core)
  - approval_policies        — versioned T1/T2/T3 routing thresholds
  - programmes               — schedule import contexts
  - activities               — imported tasks (self-referencing tree)
  - activity_relationships   — FS/SS/FF/SF dependency edges
  - programme_milestones     — milestone tracking (is_key_date curated)
  - programme_approvals      — change requests and decisions
  - approval_hierarchy       — authorization registry
  - approval_audit_trail     — append-only decision log

Revision ID: 7c1e4a9b2d30
Revises:
Create Date: 2026-10-19 09:12:44.518230
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '7c1e4a9b2d30'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ── Context ───────────────────────────────────────────────────────────
    op.create_table(
        "projects",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("contract_type", sa.String(length=50), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "approval_policies",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("t1_auto_max_cost", sa.Float(), nullable=False,
                  comment="T1: zero-delay changes below this cost are auto-approved"),
        sa.Column("t2_auto_one_day_max_cost", sa.Float(), nullable=False,
                  comment="T2: one-day, off-critical-path changes below this cost are auto-approved"),
        sa.Column("t3_project_manager_max_cost", sa.Float(), nullable=False,
                  comment="T3: at or above this cost the change goes to senior management"),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_by", sa.String(length=150), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("project_id", "version", name="uq_approval_policy_version"),
        sa.CheckConstraint(
            "t1_auto_max_cost >= 0 AND t1_auto_max_cost <= t2_auto_one_day_max_cost "
            "AND t2_auto_one_day_max_cost <= t3_project_manager_max_cost",
            name="ck_approval_policy_ordered",
        ),
    )
    op.create_index("ix_approval_policies_project_id", "approval_policies", ["project_id"])

    # ── Activity graph ────────────────────────────────────────────────────
    op.create_table(
        "programmes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("version", sa.String(length=30), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False,
                  comment="draft | submitted | accepted | rejected"),
        sa.Column("file_type", sa.String(length=10), nullable=True, comment="xml | msp | xer"),
        sa.Column("planned_completion_date", sa.DateTime(timezone=True), nullable=True,
                  comment="Project FinishDate from the most recent successful import"),
        sa.Column("last_imported_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_programmes_project_id", "programmes", ["project_id"])

    op.create_table(
        "activities",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("programme_id", sa.Integer(), nullable=False),
        sa.Column("external_id", sa.String(length=50), nullable=False,
                  comment="Task ID from the source file; unique within the programme"),
        sa.Column("name", sa.String(length=500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=False, comment="Working days"),
        sa.Column("percent_complete", sa.Integer(), nullable=False),
        sa.Column("is_critical", sa.Boolean(), nullable=False),
        sa.Column("total_float", sa.Integer(), nullable=True, comment="Working days, trusted from file"),
        sa.Column("wbs_code", sa.String(length=100), nullable=True),
        sa.Column("outline_number", sa.String(length=100), nullable=True),
        sa.Column("outline_level", sa.Integer(), nullable=True),
        sa.Column("is_summary", sa.Boolean(), nullable=False),
        sa.Column("milestone", sa.Boolean(), nullable=False),
        sa.Column("parent_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["programme_id"], ["programmes.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["parent_id"], ["activities.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("programme_id", "external_id", name="uq_activity_external_id"),
    )
    op.create_index("ix_activities_programme_id", "activities", ["programme_id"])
    op.create_index("ix_activities_parent_id", "activities", ["parent_id"])
    op.create_index("ix_activity_programme_critical", "activities", ["programme_id", "is_critical"])

    op.create_table(
        "activity_relationships",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("programme_id", sa.Integer(), nullable=False),
        sa.Column("predecessor_id", sa.Integer(), nullable=False),
        sa.Column("successor_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=2), nullable=False),
        sa.Column("lag", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["programme_id"], ["programmes.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["predecessor_id"], ["activities.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["successor_id"], ["activities.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("predecessor_id", "successor_id", "type", name="uq_activity_relationship"),
        sa.CheckConstraint("predecessor_id != successor_id", name="ck_activity_rel_no_self_loop"),
        sa.CheckConstraint("type IN ('FS','SS','FF','SF')", name="ck_activity_rel_type"),
    )
    op.create_index("ix_activity_relationships_programme_id", "activity_relationships", ["programme_id"])
    op.create_index("ix_activity_relationships_predecessor_id", "activity_relationships", ["predecessor_id"])
    op.create_index("ix_activity_relationships_successor_id", "activity_relationships", ["successor_id"])

    op.create_table(
        "programme_milestones",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("programme_id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("activity_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=500), nullable=False),
        sa.Column("planned_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("forecast_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("is_key_date", sa.Boolean(), nullable=False),
        sa.Column("affects_completion_date", sa.Boolean(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["programme_id"], ["programmes.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["activity_id"], ["activities.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("activity_id", name="uq_milestone_activity"),
        sa.CheckConstraint(
            "status IN ('Not Started','At Risk','On Track','Delayed','Completed')",
            name="ck_milestone_status",
        ),
    )
    op.create_index("ix_programme_milestones_programme_id", "programme_milestones", ["programme_id"])
    op.create_index("ix_programme_milestones_project_id", "programme_milestones", ["project_id"])

    # ── Approvals ─────────────────────────────────────────────────────────
    op.create_table(
        "programme_approvals",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("change_type", sa.String(length=40), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("impact_days", sa.Integer(), nullable=False),
        sa.Column("impact_cost", sa.Float(), nullable=False),
        sa.Column("affects_critical_path", sa.Boolean(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("nec4_clause", sa.String(length=50), nullable=True),
        sa.Column("compliance_valid", sa.Boolean(), nullable=False),
        sa.Column("compliance_reason", sa.String(length=200), nullable=True),
        sa.Column("required_tier", sa.String(length=30), nullable=False,
                  comment="auto | project_manager | senior_management"),
        sa.Column("policy_version", sa.Integer(), nullable=False),
        sa.Column("has_qualified_approver", sa.Boolean(), nullable=False,
                  comment="False when the registry resolved no approver at submission"),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("auto_approved", sa.Boolean(), nullable=False),
        sa.Column("requested_by", sa.String(length=150), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("approved_by", sa.String(length=150), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_reason", sa.Text(), nullable=True),
        sa.Column("modified_impact", sa.JSON(), nullable=True),
        sa.Column("authorized_by", sa.String(length=150), nullable=True),
        sa.Column("authorization_level", sa.String(length=30), nullable=True),
        sa.Column("authorization_notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('pending','approved','rejected','auto_approved')",
            name="ck_programme_approval_status",
        ),
    )
    op.create_index("ix_programme_approvals_project_id", "programme_approvals", ["project_id"])
    op.create_index("ix_approval_project_status", "programme_approvals", ["project_id", "status"])

    op.create_table(
        "approval_hierarchy",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(length=150), nullable=False),
        sa.Column("authorization_level", sa.String(length=30), nullable=False),
        sa.Column("max_approval_value", sa.Float(), nullable=False),
        sa.Column("can_approve_types", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "authorization_level IN ('project_manager','senior_manager','director','board')",
            name="ck_hierarchy_level",
        ),
    )
    op.create_index("ix_approval_hierarchy_project_id", "approval_hierarchy", ["project_id"])
    op.create_index("ix_hierarchy_project_user", "approval_hierarchy", ["project_id", "user_id"])

    op.create_table(
        "approval_audit_trail",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("approval_id", sa.String(length=36), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(length=20), nullable=False),
        sa.Column("performed_by", sa.String(length=150), nullable=False),
        sa.Column("previous_status", sa.String(length=20), nullable=True),
        sa.Column("new_status", sa.String(length=20), nullable=True),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=300), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["approval_id"], ["programme_approvals.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("approval_id", "sequence", name="uq_audit_approval_sequence"),
        sa.CheckConstraint(
            "action IN ('created','reviewed','approved','rejected','modified')",
            name="ck_audit_action",
        ),
    )
    op.create_index("ix_approval_audit_trail_approval_id", "approval_audit_trail", ["approval_id"])


def downgrade():
    op.drop_table("approval_audit_trail")
    op.drop_table("approval_hierarchy")
    op.drop_table("programme_approvals")
    op.drop_table("programme_milestones")
    op.drop_table("activity_relationships")
    op.drop_table("activities")
    op.drop_table("programmes")
    op.drop_table("approval_policies")
    op.drop_table("projects")
