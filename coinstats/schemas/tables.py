from datetime import datetime, timezone

from sqlalchemy import (
    Table,
    Column,
    Text,
    Float,
    TIMESTAMP,
    Integer,
    MetaData,
    Index,
    UniqueConstraint,
)

metadata = MetaData()

# ---------- TIME SERIES ----------

coin_samples = Table(
    "coin_samples",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("coin", Text, nullable=False),
    Column("price_usd", Float, nullable=False),
    Column("market_cap_usd", Float, nullable=False),
    Column("change_24h", Float, nullable=False),
    Column("captured_at", TIMESTAMP(timezone=True), nullable=False),
    Column(
        "created_at",
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    ),
    UniqueConstraint("coin", "captured_at", name="uq_coin_samples_coin_captured"),
)

# "latest per coin" and "top-N recent per coin"
Index(
    "ix_coin_samples_coin_captured_desc",
    coin_samples.c.coin,
    coin_samples.c.captured_at.desc(),
)
