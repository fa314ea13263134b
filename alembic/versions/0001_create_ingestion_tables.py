"""create ingredients and ingestion_checkpoints

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

NUTRIENT_COLUMNS = (
    "calories_per_100g",
    "protein_g_per_100g",
    "carbs_g_per_100g",
    "fat_g_per_100g",
    "fiber_g_per_100g",
    "sugar_g_per_100g",
    "sodium_mg_per_100g",
    "calcium_mg_per_100g",
    "iron_mg_per_100g",
    "vitamin_c_mg_per_100g",
)

run_status = sa.Enum("PENDING", "RUNNING", "SUCCESS", "FAILED", "CANCELLED", name="runstatus")


def upgrade():
    op.create_table(
        "ingredients",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("fdc_id", sa.BigInteger(), nullable=False),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("category", sa.String(200), nullable=True),
        sa.Column("usda_data_type", sa.String(50), nullable=True),
        *[sa.Column(name, sa.Float(), nullable=True) for name in NUTRIENT_COLUMNS],
        sa.Column("tags", postgresql.JSONB(), nullable=True),
        sa.Column("dietary_flags", postgresql.JSONB(), nullable=True),
        sa.Column("searchable_text", sa.Text(), nullable=True),
        sa.Column("usda_sync_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_ingredients_fdc_id", "ingredients", ["fdc_id"], unique=True)
    op.create_index("ix_ingredients_name", "ingredients", ["name"])
    op.create_index("ix_ingredients_category", "ingredients", ["category"])
    op.create_index("idx_ingredients_category_type", "ingredients", ["category", "usda_data_type"])

    op.create_table(
        "ingestion_checkpoints",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("pipeline_name", sa.String(100), nullable=False),
        sa.Column("checkpoint_data", postgresql.JSONB(), nullable=False),
        sa.Column("current_data_type", sa.String(50), nullable=True),
        sa.Column("current_page", sa.Integer(), nullable=False),
        sa.Column("processed_items", sa.BigInteger(), nullable=False),
        sa.Column("status", run_status, nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "idx_ingestion_checkpoint_pipeline", "ingestion_checkpoints", ["pipeline_name"], unique=True
    )


def downgrade():
    op.drop_index("idx_ingestion_checkpoint_pipeline", table_name="ingestion_checkpoints")
    op.drop_table("ingestion_checkpoints")
    run_status.drop(op.get_bind(), checkfirst=True)

    op.drop_index("idx_ingredients_category_type", table_name="ingredients")
    op.drop_index("ix_ingredients_category", table_name="ingredients")
    op.drop_index("ix_ingredients_name", table_name="ingredients")
    op.drop_index("idx_ingredients_fdc_id", table_name="ingredients")
    op.drop_table("ingredients")
