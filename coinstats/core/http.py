import time
import logging
import threading

import requests

logger = logging.getLogger("coinstats.http")

RETRYABLE_STATUS = (429, 500, 502, 503, 504)


class RateLimitedSession:
    """requests.Session wrapper that spaces calls out and optionally retries.

    ``max_retries=0`` turns it into a plain rate limiter: the first failure
    is raised to the caller.
    """

    def __init__(
        self,
        min_interval_sec: float,
        max_retries: int = 0,
        backoff_base: float = 0.5,
        backoff_cap: float = 10.0,
        session: requests.Session | None = None,
    ):
        self.min_interval_sec = min_interval_sec
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self._last_request_ts: float | None = None
        self._lock = threading.Lock()
        self.session = session or requests.Session()

    def _wait_turn(self):
        with self._lock:
            if self._last_request_ts is not None:
                sleep_for = self.min_interval_sec - (
                    time.monotonic() - self._last_request_ts
                )
                if sleep_for > 0:
                    time.sleep(sleep_for)
            self._last_request_ts = time.monotonic()

    def get(self, url, **kwargs) -> requests.Response:
        attempt = 0

        while True:
            self._wait_turn()

            try:
                resp = self.session.get(url, **kwargs)

                if resp.status_code < 400:
                    return resp

                if resp.status_code in RETRYABLE_STATUS:
                    raise requests.HTTPError(
                        f"HTTP {resp.status_code}", response=resp
                    )

                resp.raise_for_status()

            except requests.RequestException as exc:
                if attempt >= self.max_retries:
                    logger.error(
                        "request_failed",
                        extra={
                            "url": url,
                            "attempt": attempt,
                            "error": str(exc),
                        },
                    )
                    raise

                backoff = min(
                    self.backoff_cap,
                    self.backoff_base * (2 ** attempt),
                )

                logger.warning(
                    "request_retry",
                    extra={
                        "url": url,
                        "attempt": attempt,
                        "backoff_sec": backoff,
                        "error": str(exc),
                    },
                )

                time.sleep(backoff)
                attempt += 1

    def close(self):
        self.session.close()
