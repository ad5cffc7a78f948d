"""create coin_samples time series table

Revision ID: 4c1e7a9b2d10
Revises:
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "4c1e7a9b2d10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "coin_samples",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("coin", sa.Text(), nullable=False),
        sa.Column("price_usd", sa.Float(), nullable=False),
        sa.Column("market_cap_usd", sa.Float(), nullable=False),
        sa.Column("change_24h", sa.Float(), nullable=False),
        sa.Column("captured_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint(
            "coin",
            "captured_at",
            name="uq_coin_samples_coin_captured",
        ),
    )

    # serves both "latest per coin" and "top-N recent per coin"
    op.create_index(
        "ix_coin_samples_coin_captured_desc",
        "coin_samples",
        ["coin", sa.text("captured_at DESC")],
    )


def downgrade() -> None:
    op.drop_index("ix_coin_samples_coin_captured_desc", table_name="coin_samples")
    op.drop_table("coin_samples")
