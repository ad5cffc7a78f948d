import threading
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine, select, func
from sqlalchemy.pool import StaticPool

from coinstats.core.config import TRACKED_COINS
from coinstats.core.errors import FetchError, NotFound, StorageError
from coinstats.schemas.models import CoinSample
from coinstats.schemas.tables import coin_samples
from coinstats.services.ingestion_service import IDLE, IngestionScheduler
from coinstats.storage.store import SqlTimeSeriesStore


def make_samples(price=100.0, ts=None):
    ts = ts or datetime.now(timezone.utc)
    return {
        coin: CoinSample(
            coin=coin,
            price_usd=price,
            market_cap_usd=price * 1000,
            change_24h=0.5,
            captured_at=ts,
        )
        for coin in TRACKED_COINS
    }


@pytest.fixture
def store():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    store = SqlTimeSeriesStore(engine)
    store.create_schema()
    return store


def count_rows(store):
    with store.engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(coin_samples)).scalar()


def test_cycle_writes_one_sample_per_coin_with_shared_timestamp(mocker, store):
    fetcher = mocker.Mock()
    fetcher.fetch.return_value = make_samples()
    scheduler = IngestionScheduler(fetcher, store, TRACKED_COINS)

    result = scheduler.trigger()

    assert result.status == "success"
    assert result.samples_written == len(TRACKED_COINS)
    assert count_rows(store) == len(TRACKED_COINS)

    captured = {store.latest(coin).captured_at for coin in TRACKED_COINS}
    assert captured == {result.captured_at}
    fetcher.fetch.assert_called_once_with(TRACKED_COINS)
    assert scheduler.state == IDLE


def test_latest_not_found_before_and_exact_after_cycle(mocker, store):
    samples = make_samples(price=123.45)
    fetcher = mocker.Mock()
    fetcher.fetch.return_value = samples
    scheduler = IngestionScheduler(fetcher, store, TRACKED_COINS)

    with pytest.raises(NotFound):
        store.latest("bitcoin")

    scheduler.trigger()

    assert store.latest("bitcoin") == samples["bitcoin"]


def test_fetch_error_writes_nothing_and_keeps_prior_latest(mocker, store):
    first = make_samples(price=100.0)
    fetcher = mocker.Mock()
    fetcher.fetch.side_effect = [first, FetchError("malformed body")]
    scheduler = IngestionScheduler(fetcher, store, TRACKED_COINS)

    scheduler.trigger()
    result = scheduler.trigger()

    assert result.status == "failed"
    assert result.samples_written == 0
    assert "malformed" in result.error
    assert count_rows(store) == len(TRACKED_COINS)
    assert store.latest("ethereum") == first["ethereum"]
    assert scheduler.last_failure_at is not None
    assert scheduler.state == IDLE


def test_storage_error_is_reported_not_raised(mocker):
    fetcher = mocker.Mock()
    fetcher.fetch.return_value = make_samples()
    store = mocker.Mock()
    store.upsert_batch.side_effect = StorageError("db down")
    scheduler = IngestionScheduler(fetcher, store, TRACKED_COINS)

    result = scheduler.trigger()

    assert result.status == "failed"
    assert result.error == "db down"
    assert scheduler.status()["last_status"] == "failed"


def test_overlapping_trigger_is_skipped(mocker):
    entered = threading.Event()
    release = threading.Event()

    def slow_fetch(coins):
        entered.set()
        release.wait(5)
        return make_samples()

    fetcher = mocker.Mock()
    fetcher.fetch.side_effect = slow_fetch
    store = mocker.Mock()
    store.upsert_batch.return_value = len(TRACKED_COINS)
    scheduler = IngestionScheduler(fetcher, store, TRACKED_COINS)

    results = []
    worker = threading.Thread(target=lambda: results.append(scheduler.trigger()))
    worker.start()
    assert entered.wait(5)

    assert scheduler.trigger() is None

    release.set()
    worker.join(5)

    assert results[0].status == "success"
    assert fetcher.fetch.call_count == 1
    assert store.upsert_batch.call_count == 1


def test_start_runs_immediately_and_stop_joins(mocker):
    ran = threading.Event()

    def fetch(coins):
        ran.set()
        return make_samples()

    fetcher = mocker.Mock()
    fetcher.fetch.side_effect = fetch
    store = mocker.Mock()
    store.upsert_batch.return_value = len(TRACKED_COINS)
    scheduler = IngestionScheduler(fetcher, store, TRACKED_COINS, interval=3600)

    scheduler.start()
    assert ran.wait(5)
    scheduler.stop(timeout=5)

    assert not scheduler.is_running
    assert fetcher.fetch.call_count == 1


def test_worker_survives_unexpected_error(mocker):
    calls = threading.Semaphore(0)

    def fetch(coins):
        calls.release()
        raise RuntimeError("boom")

    fetcher = mocker.Mock()
    fetcher.fetch.side_effect = fetch
    scheduler = IngestionScheduler(fetcher, mocker.Mock(), TRACKED_COINS, interval=0.01)

    scheduler.start()
    assert calls.acquire(timeout=5)
    assert calls.acquire(timeout=5)
    scheduler.stop(timeout=5)

    assert scheduler.state == IDLE


def test_interval_must_be_positive(mocker):
    with pytest.raises(ValueError):
        IngestionScheduler(mocker.Mock(), mocker.Mock(), TRACKED_COINS, interval=0)


def test_stop_during_inflight_cycle_lets_it_finish(mocker):
    entered = threading.Event()
    release = threading.Event()

    def slow_fetch(coins):
        entered.set()
        release.wait(5)
        return make_samples()

    fetcher = mocker.Mock()
    fetcher.fetch.side_effect = slow_fetch
    store = mocker.Mock()
    store.upsert_batch.return_value = len(TRACKED_COINS)
    scheduler = IngestionScheduler(fetcher, store, TRACKED_COINS, interval=3600)

    scheduler.start()
    assert entered.wait(5)

    assert scheduler.stop(timeout=0.1) is False
    assert scheduler.is_running

    release.set()
    assert scheduler.stop(timeout=5) is True

    assert not scheduler.is_running
    assert scheduler.state == IDLE
    assert scheduler.last_result.status == "success"
    store.upsert_batch.assert_called_once()
    assert fetcher.fetch.call_count == 1


def test_start_refused_while_stopping_worker_is_alive(mocker):
    entered = threading.Event()
    release = threading.Event()
    fetch_threads = set()

    def slow_fetch(coins):
        fetch_threads.add(threading.get_ident())
        entered.set()
        release.wait(5)
        return make_samples()

    fetcher = mocker.Mock()
    fetcher.fetch.side_effect = slow_fetch
    store = mocker.Mock()
    store.upsert_batch.return_value = len(TRACKED_COINS)
    scheduler = IngestionScheduler(fetcher, store, TRACKED_COINS, interval=3600)

    scheduler.start()
    assert entered.wait(5)
    scheduler.stop(timeout=0.1)

    with pytest.raises(RuntimeError):
        scheduler.start()

    release.set()
    assert scheduler.stop(timeout=5) is True
    assert len(fetch_threads) == 1


def test_unexpected_error_is_recorded_as_failed_cycle(mocker):
    fetcher = mocker.Mock()
    fetcher.fetch.return_value = make_samples()
    store = mocker.Mock()
    store.upsert_batch.side_effect = ValueError("bad sample")
    scheduler = IngestionScheduler(fetcher, store, TRACKED_COINS)

    with pytest.raises(ValueError):
        scheduler.trigger()

    status = scheduler.status()
    assert status["last_status"] == "failed"
    assert "ValueError" in status["last_error"]
    assert status["last_failure_at"] is not None
    assert scheduler.state == IDLE
