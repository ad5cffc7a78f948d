import logging
from datetime import datetime, timezone
from typing import Mapping

import requests
from pydantic import ValidationError

from coinstats.core.errors import FetchError
from coinstats.core.http import RateLimitedSession
from coinstats.schemas.models import CoinQuote, CoinSample

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.coingecko.com/api/v3"


class CoinGeckoFetcher:
    """Fetches price, market cap and 24h change for all tracked coins in one call.

    Either every tracked coin yields a sample or the whole fetch fails with
    FetchError.
    """

    def __init__(
        self,
        http: RateLimitedSession | None = None,
        base_url: str = DEFAULT_BASE_URL,
        api_key: str | None = None,
        timeout: float = 10,
    ):
        # failed cycles are retried by the scheduler, not here
        self.http = http or RateLimitedSession(min_interval_sec=2, max_retries=0)
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def _params(self, provider_ids) -> dict:
        params = {
            "ids": ",".join(provider_ids),
            "vs_currencies": "usd",
            "include_market_cap": "true",
            "include_24hr_change": "true",
        }
        if self.api_key:
            params["x_cg_demo_api_key"] = self.api_key
        return params

    def fetch(self, tracked_coins: Mapping[str, str]) -> dict[str, CoinSample]:
        if not tracked_coins:
            return {}

        url = f"{self.base_url}/simple/price"

        try:
            response = self.http.get(
                url,
                params=self._params(tracked_coins.values()),
                headers={"accept": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise FetchError(f"CoinGecko request failed: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise FetchError("CoinGecko returned a malformed body") from e

        if not isinstance(body, dict):
            raise FetchError(
                f"CoinGecko returned {type(body).__name__}, expected an object"
            )

        captured_at = datetime.now(timezone.utc)
        samples = {}

        for coin, provider_id in tracked_coins.items():
            entry = body.get(provider_id)
            if entry is None:
                raise FetchError(f"CoinGecko response is missing {provider_id!r}")

            try:
                quote = CoinQuote.model_validate(entry)
            except ValidationError as e:
                raise FetchError(
                    f"Invalid quote for {provider_id!r}: {e.errors()}"
                ) from e

            samples[coin] = CoinSample.from_quote(coin, quote, captured_at)

        logger.debug("[INGEST] Parsed %d quotes from CoinGecko", len(samples))
        return samples
