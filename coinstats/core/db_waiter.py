import time
import logging
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError

logger = logging.getLogger(__name__)


def wait_for_db(engine: Engine, retries: int = 30, delay: float = 2):
    for attempt in range(1, retries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("[DB] Ready after %s attempt(s)", attempt)
            return
        except OperationalError as exc:
            logger.warning(
                "[DB] Not ready (attempt %s/%s): %s",
                attempt,
                retries,
                exc.orig,
            )
            if attempt < retries:
                time.sleep(delay)

    raise RuntimeError(f"Database not ready after {retries} attempts")
