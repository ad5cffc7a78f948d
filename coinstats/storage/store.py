import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Mapping

from sqlalchemy import select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from coinstats.core.errors import NotFound, StorageError
from coinstats.schemas.models import CoinSample
from coinstats.schemas.tables import coin_samples, metadata

logger = logging.getLogger(__name__)


class TimeSeriesStore(ABC):
    """Keyed, time-ordered collection of coin samples."""

    def upsert_latest(self, coin: str, sample: CoinSample):
        self.upsert_batch({coin: sample})

    @abstractmethod
    def upsert_batch(self, samples: Mapping[str, CoinSample]) -> int:
        """Write one sample per coin atomically. Returns rows written."""

    @abstractmethod
    def latest(self, coin: str) -> CoinSample:
        """Most recent sample for ``coin``; raises NotFound if none."""

    @abstractmethod
    def recent(self, coin: str, limit: int) -> list[CoinSample]:
        """Up to ``limit`` samples for ``coin``, newest first."""

    def ping(self) -> bool:
        return True


def _dialect_insert(dialect_name: str):
    if dialect_name == "postgresql":
        return pg_insert
    if dialect_name == "sqlite":
        return sqlite_insert
    raise StorageError(f"Unsupported database dialect: {dialect_name}")


def _row_to_sample(row) -> CoinSample:
    return CoinSample(
        coin=row["coin"],
        price_usd=row["price_usd"],
        market_cap_usd=row["market_cap_usd"],
        change_24h=row["change_24h"],
        captured_at=row["captured_at"],
    )


class SqlTimeSeriesStore(TimeSeriesStore):
    def __init__(self, engine: Engine):
        self.engine = engine

    def create_schema(self):
        try:
            metadata.create_all(self.engine, checkfirst=True)
        except SQLAlchemyError as e:
            raise StorageError(f"Could not create schema: {e}") from e

    def upsert_batch(self, samples: Mapping[str, CoinSample]) -> int:
        if not samples:
            return 0

        now = datetime.now(timezone.utc)
        rows = []
        for coin, sample in samples.items():
            if coin != sample.coin:
                raise ValueError(
                    f"sample for {sample.coin!r} filed under {coin!r}"
                )
            rows.append(
                {
                    "coin": sample.coin,
                    "price_usd": sample.price_usd,
                    "market_cap_usd": sample.market_cap_usd,
                    "change_24h": sample.change_24h,
                    "captured_at": sample.captured_at,
                    "created_at": now,
                }
            )

        try:
            with self.engine.begin() as conn:
                insert = _dialect_insert(conn.dialect.name)
                stmt = insert(coin_samples).values(rows)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["coin", "captured_at"],
                    set_={
                        "price_usd": stmt.excluded.price_usd,
                        "market_cap_usd": stmt.excluded.market_cap_usd,
                        "change_24h": stmt.excluded.change_24h,
                    },
                )
                conn.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("[DB] Batch write of %d samples failed: %s", len(rows), e)
            raise StorageError(f"Batch write failed: {e}") from e

        return len(rows)

    def latest(self, coin: str) -> CoinSample:
        stmt = (
            select(coin_samples)
            .where(coin_samples.c.coin == coin)
            .order_by(coin_samples.c.captured_at.desc())
            .limit(1)
        )

        try:
            with self.engine.connect() as conn:
                row = conn.execute(stmt).mappings().first()
        except SQLAlchemyError as e:
            raise StorageError(f"Read failed: {e}") from e

        if row is None:
            raise NotFound(coin)

        return _row_to_sample(row)

    def recent(self, coin: str, limit: int) -> list[CoinSample]:
        if limit < 1:
            return []

        stmt = (
            select(coin_samples)
            .where(coin_samples.c.coin == coin)
            .order_by(coin_samples.c.captured_at.desc())
            .limit(limit)
        )

        try:
            with self.engine.connect() as conn:
                rows = conn.execute(stmt).mappings().all()
        except SQLAlchemyError as e:
            raise StorageError(f"Read failed: {e}") from e

        return [_row_to_sample(row) for row in rows]

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            return False
        return True
