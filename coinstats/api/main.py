from coinstats.core.logging import setup_logging
import logging
setup_logging()
logger = logging.getLogger(__name__)

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from coinstats.core.config import TRACKED_COINS, get_settings
from coinstats.core.db import get_engine
from coinstats.core.db_waiter import wait_for_db
from coinstats.core.errors import (
    CoinStatsError,
    FetchError,
    InsufficientData,
    MissingParameter,
    NotFound,
    StorageError,
)
from coinstats.core.http import RateLimitedSession
from coinstats.core.metrics import query_requests_total
from coinstats.ingestion.coingecko import CoinGeckoFetcher
from coinstats.services.ingestion_service import IngestionScheduler
from coinstats.services.query_service import QueryService
from coinstats.storage.store import SqlTimeSeriesStore, TimeSeriesStore


ERROR_STATUS = {
    MissingParameter: 400,
    NotFound: 404,
    InsufficientData: 404,
    FetchError: 502,
    StorageError: 500,
}


# ---------------- DEPENDENCIES ----------------

def get_store(request: Request) -> TimeSeriesStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        store = SqlTimeSeriesStore(get_engine())
        request.app.state.store = store
    return store


def get_query_service(store: TimeSeriesStore = Depends(get_store)) -> QueryService:
    return QueryService(store, window=get_settings().deviation_window)


def get_scheduler(request: Request) -> Optional[IngestionScheduler]:
    return getattr(request.app.state, "scheduler", None)


# ---------------- ROUTES ----------------

router = APIRouter()


@router.get("/stats")
def stats(
    coin: Optional[str] = None,
    service: QueryService = Depends(get_query_service),
):
    sample = service.latest_snapshot(coin)
    query_requests_total.labels("/stats", "ok").inc()

    return {
        "price": sample.price_usd,
        "marketCap": sample.market_cap_usd,
        "24hChange": sample.change_24h,
    }


@router.get("/deviation")
def deviation(
    coin: Optional[str] = None,
    service: QueryService = Depends(get_query_service),
):
    value = service.deviation(coin)
    query_requests_total.labels("/deviation", "ok").inc()

    return {"deviation": value}


@router.get("/health")
def health(
    store: TimeSeriesStore = Depends(get_store),
    scheduler: Optional[IngestionScheduler] = Depends(get_scheduler),
):
    db_connected = store.ping()

    ingestion = scheduler.status() if scheduler else {"running": False}
    last_status = ingestion.get("last_status")

    overall_status = "ok"
    if not db_connected or last_status == "failed":
        overall_status = "degraded"

    return {
        "status": overall_status,
        "db": {"connected": db_connected},
        "ingestion": ingestion,
    }


@router.get("/metrics")
def metrics():
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )


# ---------------- APP ----------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()

    engine = get_engine()
    wait_for_db(
        engine,
        retries=settings.db_wait_retries,
        delay=settings.db_wait_delay_seconds,
    )

    store = SqlTimeSeriesStore(engine)
    store.create_schema()
    app.state.store = store

    scheduler = None
    if settings.scheduler_enabled:
        fetcher = CoinGeckoFetcher(
            http=RateLimitedSession(min_interval_sec=2, max_retries=0),
            base_url=settings.coingecko_base_url,
            api_key=settings.coingecko_api_key,
            timeout=settings.http_timeout_seconds,
        )
        scheduler = IngestionScheduler(
            fetcher,
            store,
            TRACKED_COINS,
            interval=settings.ingest_interval_seconds,
        )
        scheduler.start()
    else:
        logger.info("[API] Scheduler disabled")
    app.state.scheduler = scheduler

    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop(timeout=settings.http_timeout_seconds + 5)
        engine.dispose()


async def handle_service_error(request: Request, exc: CoinStatsError):
    status_code = ERROR_STATUS.get(type(exc), 500)
    query_requests_total.labels(request.url.path, type(exc).__name__).inc()

    if status_code >= 500:
        logger.error("[API] %s %s failed: %s", request.method, request.url.path, exc)
        message = "Internal server error"
    else:
        message = str(exc)

    return JSONResponse(status_code=status_code, content={"error": message})


app = FastAPI(title="Coinstats", lifespan=lifespan)
app.include_router(router)
app.add_exception_handler(CoinStatsError, handle_service_error)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=get_settings().port)
