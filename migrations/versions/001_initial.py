"""Create initial tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

"""
import sqlalchemy as sa
from alembic import op

# revision identifiers
revision = "001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create profiles table
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("slug", sa.String(64), nullable=False),
        sa.Column("description", sa.Text, nullable=False, server_default=""),
        sa.Column("enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("jvm_args_default", sa.String(2048), nullable=False, server_default=""),
        sa.Column("game_args_default", sa.String(2048), nullable=False, server_default=""),
        sa.Column("bundled_java_path", sa.String(512), nullable=False, server_default=""),
        sa.Column("bundled_runtime_key", sa.String(512), nullable=False, server_default=""),
        sa.Column("bundled_runtime_sha256", sa.String(64), nullable=False, server_default=""),
        sa.Column("bundled_runtime_size_bytes", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("bundled_runtime_content_type", sa.String(128), nullable=False, server_default=""),
        sa.Column("latest_build_id", sa.String(36), nullable=False, server_default=""),
        sa.Column("latest_manifest_key", sa.String(512), nullable=False, server_default=""),
        sa.Column("latest_client_version", sa.String(64), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_profiles_slug", "profiles", ["slug"], unique=True)

    # Create servers table
    op.create_table(
        "servers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "profile_id",
            sa.String(36),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("address", sa.String(255), nullable=False),
        sa.Column("port", sa.Integer, nullable=False, server_default="25565"),
        sa.Column("loader_type", sa.String(32), nullable=False, server_default="vanilla"),
        sa.Column("mc_version", sa.String(32), nullable=False, server_default="1.21.1"),
        sa.Column("build_id", sa.String(36), nullable=False, server_default=""),
        sa.Column("enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("order", sa.Integer, nullable=False, server_default="100"),
    )
    op.create_index("ix_servers_profile_id", "servers", ["profile_id"])

    # Create builds table
    op.create_table(
        "builds",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "profile_id",
            sa.String(36),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("loader_type", sa.String(32), nullable=False),
        sa.Column("mc_version", sa.String(32), nullable=False),
        sa.Column("client_version", sa.String(64), nullable=False, server_default=""),
        sa.Column(
            "status",
            sa.Enum("pending", "running", "completed", "failed", name="build_status"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("files_count", sa.Integer, nullable=True),
        sa.Column("total_size_bytes", sa.BigInteger, nullable=True),
        sa.Column("manifest_key", sa.String(512), nullable=True),
        sa.Column("skipped_files_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
    )

    # Create indexes for builds
    op.create_index("ix_builds_profile_id", "builds", ["profile_id"])
    op.create_index("ix_builds_status", "builds", ["status"])
    op.create_index("ix_builds_profile_created", "builds", ["profile_id", "created_at"])
    # At most one running build per profile
    op.create_index(
        "ux_builds_profile_running",
        "builds",
        ["profile_id"],
        unique=True,
        sqlite_where=sa.text("status = 'running'"),
        postgresql_where=sa.text("status = 'running'"),
    )

    # Create preflight_runs table
    op.create_table(
        "preflight_runs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("actor", sa.String(64), nullable=False, server_default="admin"),
        sa.Column("passed_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("checks_json", sa.Text, nullable=False, server_default="[]"),
        sa.Column("ran_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_preflight_runs_ran_at", "preflight_runs", ["ran_at"])


def downgrade() -> None:
    op.drop_table("preflight_runs")
    op.drop_index("ux_builds_profile_running", table_name="builds")
    op.drop_table("builds")
    op.drop_table("servers")
    op.drop_table("profiles")
    sa.Enum(name="build_status").drop(op.get_bind(), checkfirst=True)
