from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from coinstats.core.config import get_settings

_engine: Engine | None = None


def build_db_url() -> str:
    return get_settings().database_url


def make_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, future=True, **kwargs)

    return create_engine(
        url,
        future=True,
        pool_pre_ping=True,
    )


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = make_engine(build_db_url())
    return _engine
