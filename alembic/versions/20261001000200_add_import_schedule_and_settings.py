"""add import schedule and app settings"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261001000200"
down_revision = "20261001000100"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "import_schedule",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("csv_url", sa.Text(), nullable=False, server_default=""),
        sa.Column("scheduled_time", sa.String(), nullable=False, server_default="06:00"),
        sa.Column("status", sa.String(), nullable=False, server_default="idle"),
        sa.Column("current_offset", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_rows", sa.Integer(), nullable=True),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(op.f("ix_import_schedule_id"), "import_schedule", ["id"], unique=False)

    op.create_table(
        "app_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("source_auth_token_enc", sa.Text(), nullable=True),
        sa.Column("import_batch_size", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("import_chunk_size", sa.Integer(), nullable=False, server_default="200"),
        sa.Column("updated_at_utc", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("app_settings")
    op.drop_index(op.f("ix_import_schedule_id"), table_name="import_schedule")
    op.drop_table("import_schedule")
