"""phase_lifecycle

Create projects, phase state / history, setup-area finalization, setup
entities and the audit log.

Revision ID: 5d1e7a9c3b20
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "5d1e7a9c3b20"
down_revision = None
branch_labels = None
depends_on = None


def _project_fk():
    return sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE")


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )

    if "project_phase_states" not in existing_tables:
        op.create_table(
            "project_phase_states",
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("current_phase", sa.String(length=20), nullable=False, server_default="prep"),
            sa.Column("phase_updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("auto_transitions_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("location", sa.String(length=255), nullable=True),
            sa.Column("timezone", sa.String(length=64), nullable=True),
            sa.Column("rehearsal_start_date", sa.Date(), nullable=True),
            sa.Column("show_end_date", sa.Date(), nullable=True),
            sa.Column("archive_month", sa.Integer(), nullable=False, server_default="4"),
            sa.Column("archive_day", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("post_show_transition_hour", sa.Integer(), nullable=False, server_default="6"),
            sa.Column("post_show_grace_days", sa.Integer(), nullable=False, server_default="7"),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            _project_fk(),
            sa.PrimaryKeyConstraint("project_id"),
            sa.CheckConstraint(
                "current_phase IN ('prep','staffing','pre_show','active',"
                "'post_show','complete','archived')",
                name="ck_phase_state_phase",
            ),
            sa.CheckConstraint("archive_month BETWEEN 1 AND 12", name="ck_phase_state_archive_month"),
            sa.CheckConstraint("archive_day BETWEEN 1 AND 31", name="ck_phase_state_archive_day"),
            sa.CheckConstraint(
                "post_show_transition_hour BETWEEN 0 AND 23",
                name="ck_phase_state_post_show_hour",
            ),
        )
        op.create_index("idx_phase_state_phase", "project_phase_states", ["current_phase"])

    if "phase_transition_history" not in existing_tables:
        op.create_table(
            "phase_transition_history",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("transitioned_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("transitioned_by", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("from_phase", sa.String(length=20), nullable=False),
            sa.Column("to_phase", sa.String(length=20), nullable=False),
            sa.Column("trigger", sa.String(length=20), nullable=False),
            sa.Column("reason", sa.Text(), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=False),
            sa.ForeignKeyConstraint(
                ["project_id"], ["project_phase_states.project_id"], ondelete="CASCADE",
            ),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint("\"trigger\" IN ('manual','automatic')", name="ck_phase_history_trigger"),
        )
        op.create_index(
            "idx_phase_history_project_ts", "phase_transition_history",
            ["project_id", "transitioned_at"],
        )

    if "setup_area_finalizations" not in existing_tables:
        op.create_table(
            "setup_area_finalizations",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("area", sa.String(length=20), nullable=False),
            sa.Column("finalized", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("finalized_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("finalized_by", sa.String(length=150), nullable=True),
            _project_fk(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("project_id", "area", name="uq_setup_area_project_area"),
            sa.CheckConstraint(
                "area IN ('roles','locations','team','talent')", name="ck_setup_area_area",
            ),
        )
        op.create_index(
            "ix_setup_area_finalizations_project_id", "setup_area_finalizations", ["project_id"],
        )

    if "role_templates" not in existing_tables:
        op.create_table(
            "role_templates",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            _project_fk(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_role_templates_project_id", "role_templates", ["project_id"])

    if "project_locations" not in existing_tables:
        op.create_table(
            "project_locations",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=150), nullable=False),
            sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            _project_fk(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_project_locations_project_id", "project_locations", ["project_id"])

    if "team_assignments" not in existing_tables:
        op.create_table(
            "team_assignments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("user_ref", sa.String(length=150), nullable=False),
            sa.Column("role", sa.String(length=30), nullable=False, server_default="crew"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            _project_fk(),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint(
                "role IN ('supervisor','talent_escort','coordinator','crew')",
                name="ck_team_assignment_role",
            ),
        )
        op.create_index("ix_team_assignments_project_id", "team_assignments", ["project_id"])

    if "talent_roster_entries" not in existing_tables:
        op.create_table(
            "talent_roster_entries",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("talent_ref", sa.String(length=150), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            _project_fk(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_talent_roster_entries_project_id", "talent_roster_entries", ["project_id"])

    if "audit_logs" not in existing_tables:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("diff_json", sa.Text(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_project", "audit_logs", ["project_id"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    for table in (
        "audit_logs",
        "talent_roster_entries",
        "team_assignments",
        "project_locations",
        "role_templates",
        "setup_area_finalizations",
        "phase_transition_history",
        "project_phase_states",
        "projects",
    ):
        if table in existing_tables:
            op.drop_table(table)
