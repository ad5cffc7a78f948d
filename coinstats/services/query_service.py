import logging
import statistics
from typing import Sequence

from coinstats.core.errors import InsufficientData, MissingParameter
from coinstats.schemas.models import CoinSample

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = 100
MIN_DEVIATION_SAMPLES = 2


def normalize_coin(coin: str | None) -> str:
    if coin is None or not coin.strip():
        raise MissingParameter("coin")
    return coin.strip().casefold()


def population_std(values: Sequence[float]) -> float:
    """Square root of the mean squared deviation from the mean (divisor n)."""
    if len(values) < 1:
        raise ValueError("population_std requires at least one value")
    return statistics.pstdev(values)


class QueryService:
    def __init__(self, store, window: int = DEFAULT_WINDOW):
        if window < 1:
            raise ValueError("window must be at least 1")
        self.store = store
        self.window = window

    def latest_snapshot(self, coin: str | None) -> CoinSample:
        return self.store.latest(normalize_coin(coin))

    def deviation(self, coin: str | None, window: int | None = None) -> float:
        key = normalize_coin(coin)
        window = self.window if window is None else window
        if window < 1:
            raise ValueError("window must be at least 1")

        samples = self.store.recent(key, window)
        if len(samples) < MIN_DEVIATION_SAMPLES:
            raise InsufficientData(key, available=len(samples))

        deviation = population_std([s.price_usd for s in samples])

        logger.debug(
            "[QUERY] deviation coin=%s samples=%d value=%f",
            key,
            len(samples),
            deviation,
        )
        return round(deviation, 2)
