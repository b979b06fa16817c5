"""administrator_management_tables

Companies, schools, branches, administrators, scope assignments,
hierarchy edges and the administrator audit trail.

Revision ID: 7f3a91c2d4e0
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "7f3a91c2d4e0"
down_revision = None
branch_labels = None
depends_on = None


def _table_names(bind) -> set[str]:
    insp = sa.inspect(bind)
    return set(insp.get_table_names())


def upgrade():
    bind = op.get_bind()
    existing = _table_names(bind)

    if "companies" not in existing:
        op.create_table(
            "companies",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("code", sa.String(length=50), nullable=False, unique=True),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
        )

    if "schools" not in existing:
        op.create_table(
            "schools",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("company_id", sa.Integer(),
                      sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("code", sa.String(length=50), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_schools_company_id", "schools", ["company_id"])

    if "branches" not in existing:
        op.create_table(
            "branches",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("school_id", sa.Integer(),
                      sa.ForeignKey("schools.id", ondelete="CASCADE"), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("code", sa.String(length=50), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_branches_school_id", "branches", ["school_id"])

    if "administrators" not in existing:
        op.create_table(
            "administrators",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("company_id", sa.Integer(),
                      sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
            sa.Column("auth_user_id", sa.String(length=64), nullable=True),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("admin_level", sa.String(length=30), nullable=False),
            sa.Column("parent_admin_id", sa.String(length=36),
                      sa.ForeignKey("administrators.id", ondelete="SET NULL"), nullable=True),
            sa.Column("permissions", sa.JSON(), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.Column("created_by", sa.String(length=36), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
            sa.Column("deactivated_at", sa.DateTime(), nullable=True),
            sa.UniqueConstraint("company_id", "email", name="uq_administrators_company_email"),
        )
        op.create_index("ix_administrators_company_id", "administrators", ["company_id"])
        op.create_index("ix_administrators_auth_user_id", "administrators", ["auth_user_id"])
        op.create_index("ix_administrators_admin_level", "administrators", ["admin_level"])
        op.create_index("ix_administrators_parent_admin_id", "administrators", ["parent_admin_id"])
        op.create_index("ix_administrators_is_active", "administrators", ["is_active"])

    if "admin_scope_assignments" not in existing:
        op.create_table(
            "admin_scope_assignments",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("company_id", sa.Integer(),
                      sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
            sa.Column("admin_id", sa.String(length=36),
                      sa.ForeignKey("administrators.id", ondelete="CASCADE"), nullable=False),
            sa.Column("scope_type", sa.String(length=20), nullable=False),
            sa.Column("scope_id", sa.Integer(), nullable=False),
            sa.Column("can_create_users", sa.Boolean(), nullable=False, server_default=sa.text("0")),
            sa.Column("can_modify_users", sa.Boolean(), nullable=False, server_default=sa.text("0")),
            sa.Column("can_delete_users", sa.Boolean(), nullable=False, server_default=sa.text("0")),
            sa.Column("can_view_all", sa.Boolean(), nullable=False, server_default=sa.text("1")),
            sa.Column("can_export_data", sa.Boolean(), nullable=False, server_default=sa.text("0")),
            sa.Column("can_manage_settings", sa.Boolean(), nullable=False, server_default=sa.text("0")),
            sa.Column("permissions", sa.JSON(), nullable=True),
            sa.Column("assigned_by", sa.String(length=36), nullable=True),
            sa.Column("assigned_at", sa.DateTime(), nullable=True),
            sa.Column("expires_at", sa.DateTime(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
            sa.Column("deactivated_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_admin_scope_assignments_company_id", "admin_scope_assignments", ["company_id"])
        op.create_index("ix_admin_scope_assignments_admin_id", "admin_scope_assignments", ["admin_id"])
        op.create_index("ix_admin_scope_assignments_scope", "admin_scope_assignments", ["scope_type", "scope_id"])
        op.create_index("ix_admin_scope_assignments_is_active", "admin_scope_assignments", ["is_active"])
        op.create_index(
            "uq_admin_scope_assignments_active",
            "admin_scope_assignments",
            ["admin_id", "scope_type", "scope_id"],
            unique=True,
            sqlite_where=sa.text("is_active = 1"),
            postgresql_where=sa.text("is_active"),
        )

    if "admin_hierarchy_edges" not in existing:
        op.create_table(
            "admin_hierarchy_edges",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("company_id", sa.Integer(),
                      sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
            sa.Column("parent_admin_id", sa.String(length=36), nullable=True),
            sa.Column("child_admin_id", sa.String(length=36), nullable=False),
            sa.Column("relationship_type", sa.String(length=20), nullable=False, server_default="direct"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
            sa.Column("created_by", sa.String(length=36), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_admin_hierarchy_edges_company_id", "admin_hierarchy_edges", ["company_id"])
        op.create_index("ix_admin_hierarchy_edges_parent_admin_id", "admin_hierarchy_edges", ["parent_admin_id"])
        op.create_index("ix_admin_hierarchy_edges_child_admin_id", "admin_hierarchy_edges", ["child_admin_id"])

    if "admin_audit_logs" not in existing:
        op.create_table(
            "admin_audit_logs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("company_id", sa.Integer(),
                      sa.ForeignKey("companies.id", ondelete="SET NULL"), nullable=True),
            sa.Column("action_type", sa.String(length=40), nullable=False),
            sa.Column("actor_id", sa.String(length=36), nullable=False, server_default="system"),
            sa.Column("target_id", sa.String(length=36), nullable=True),
            sa.Column("target_type", sa.String(length=30), nullable=True),
            sa.Column("changes", sa.JSON(), nullable=True),
            sa.Column("context", sa.JSON(), nullable=True),
            sa.Column("ip_address", sa.String(length=64), nullable=True),
            sa.Column("user_agent", sa.String(length=500), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index("idx_admin_audit_company_ts", "admin_audit_logs", ["company_id", "created_at"])
        op.create_index("idx_admin_audit_target", "admin_audit_logs", ["target_type", "target_id"])
        op.create_index("idx_admin_audit_actor", "admin_audit_logs", ["actor_id"])
        op.create_index("idx_admin_audit_action", "admin_audit_logs", ["action_type"])


def downgrade():
    bind = op.get_bind()
    existing = _table_names(bind)
    for table in (
        "admin_audit_logs",
        "admin_hierarchy_edges",
        "admin_scope_assignments",
        "administrators",
        "branches",
        "schools",
        "companies",
    ):
        if table in existing:
            op.drop_table(table)
