"""Create intervention ingestion schema."""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

from reforestation.intervention_types import (
    CAPTURE_MODES,
    CAPTURE_STATUSES,
    INTERVENTION_STATUSES,
    INTERVENTION_TYPES,
    TREE_STATUSES,
    TREE_TYPES,
)
from reforestation.models import PROJECT_ROLES


# revision identifiers, used by Alembic.
revision: str = "20261017_01"
down_revision: str | Sequence[str] | None = None
branch_labels = None
depends_on = None


def _enum(values, name: str) -> sa.Enum:
    return sa.Enum(*values, name=name, create_constraint=True)


def upgrade() -> None:
    """Create users, projects, sites, species catalog, interventions, trees and audit tables."""

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("uid", sa.String(36), nullable=False, unique=True),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("display_name", sa.String(400)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("deleted_at", sa.DateTime(timezone=True)),
    )
    op.create_table(
        "projects",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("uid", sa.String(36), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("created_by_id", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("deleted_at", sa.DateTime(timezone=True)),
    )
    op.create_table(
        "project_members",
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id"), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), primary_key=True),
        sa.Column("role", _enum(PROJECT_ROLES, "project_role"), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        "sites",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("uid", sa.String(36), nullable=False, unique=True),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("boundary", sa.JSON()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("deleted_at", sa.DateTime(timezone=True)),
    )
    op.create_table(
        "scientific_species",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("uid", sa.String(36), nullable=False, unique=True),
        sa.Column("scientific_name", sa.String(255), nullable=False, unique=True),
        sa.Column("common_name", sa.String(400)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("deleted_at", sa.DateTime(timezone=True)),
    )
    op.create_table(
        "interventions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("uid", sa.String(64), nullable=False, unique=True),
        sa.Column("hid", sa.String(16), nullable=False, unique=True),
        sa.Column("type", _enum(INTERVENTION_TYPES, "intervention_type"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("site_id", sa.Integer(), sa.ForeignKey("sites.id")),
        sa.Column("parent_intervention_id", sa.Integer(), sa.ForeignKey("interventions.id")),
        sa.Column("idempotency_key", sa.String(64), nullable=False, unique=True),
        sa.Column("registration_date", sa.DateTime(timezone=True)),
        sa.Column("intervention_start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("intervention_end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("location", sa.JSON(), nullable=False),
        sa.Column("original_geometry", sa.JSON(), nullable=False),
        sa.Column("geometry_type", sa.String(50)),
        sa.Column("latitude", sa.Float()),
        sa.Column("longitude", sa.Float()),
        sa.Column("capture_mode", _enum(CAPTURE_MODES, "capture_mode"), nullable=False),
        sa.Column("capture_status", _enum(CAPTURE_STATUSES, "capture_status"), nullable=False),
        sa.Column("total_tree_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "status",
            _enum(INTERVENTION_STATUSES, "intervention_status"),
            nullable=False,
            server_default="active",
        ),
        sa.Column("flag", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("flag_reason", sa.JSON()),
        sa.Column("metadata", sa.JSON()),
        sa.Column("tag", sa.String(255)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("edited_at", sa.DateTime(timezone=True)),
        sa.Column("deleted_at", sa.DateTime(timezone=True)),
        sa.CheckConstraint("total_tree_count >= 0", name="interventions_total_tree_count_check"),
    )
    op.create_index("interventions_project_idx", "interventions", ["project_id"])
    op.create_index("interventions_user_idx", "interventions", ["user_id"])
    op.create_index("interventions_site_status_idx", "interventions", ["site_id", "status"])

    op.create_table(
        "intervention_species",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("uid", sa.String(64), nullable=False, unique=True),
        sa.Column(
            "intervention_id", sa.Integer(), sa.ForeignKey("interventions.id"), nullable=False
        ),
        sa.Column("scientific_species_id", sa.Integer(), sa.ForeignKey("scientific_species.id")),
        sa.Column("is_unknown", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("species_name", sa.String(255)),
        sa.Column("other_species", sa.String(255)),
        sa.Column("species_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("deleted_at", sa.DateTime(timezone=True)),
        sa.CheckConstraint("species_count >= 0", name="intervention_species_count_check"),
    )
    op.create_index(
        "intervention_species_intervention_idx", "intervention_species", ["intervention_id"]
    )

    op.create_table(
        "trees",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("uid", sa.String(64), nullable=False, unique=True),
        sa.Column("hid", sa.String(16), nullable=False, unique=True),
        sa.Column(
            "intervention_id", sa.Integer(), sa.ForeignKey("interventions.id"), nullable=False
        ),
        sa.Column(
            "intervention_species_id",
            sa.Integer(),
            sa.ForeignKey("intervention_species.id"),
            nullable=False,
        ),
        sa.Column("created_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("tree_type", _enum(TREE_TYPES, "tree_type"), nullable=False),
        sa.Column("species_name", sa.String(255)),
        sa.Column("tag", sa.String(100)),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("altitude", sa.Float()),
        sa.Column("height", sa.Float()),
        sa.Column("width", sa.Float()),
        sa.Column("planting_date", sa.DateTime(timezone=True)),
        sa.Column("status", _enum(TREE_STATUSES, "tree_status"), nullable=False),
        sa.Column("original_geometry", sa.JSON()),
        sa.Column("metadata", sa.JSON()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("deleted_at", sa.DateTime(timezone=True)),
    )
    op.create_index("trees_intervention_idx", "trees", ["intervention_id"])
    op.create_index("trees_intervention_species_idx", "trees", ["intervention_species_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("target_type", sa.String()),
        sa.Column("target_uid", sa.String(64)),
        sa.Column("details", sa.JSON()),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    """Drop the intervention ingestion schema."""

    op.drop_table("audit_logs")
    op.drop_index("trees_intervention_species_idx", table_name="trees")
    op.drop_index("trees_intervention_idx", table_name="trees")
    op.drop_table("trees")
    op.drop_index("intervention_species_intervention_idx", table_name="intervention_species")
    op.drop_table("intervention_species")
    op.drop_index("interventions_site_status_idx", table_name="interventions")
    op.drop_index("interventions_user_idx", table_name="interventions")
    op.drop_index("interventions_project_idx", table_name="interventions")
    op.drop_table("interventions")
    op.drop_table("scientific_species")
    op.drop_table("sites")
    op.drop_table("project_members")
    op.drop_table("projects")
    op.drop_table("users")
