"""
Fixed-window request counter backed by the rate_limits collection.

Each admitted request appends one record; the window sum is recomputed on
every call. Concurrent bursts from one client can slip slightly past the
threshold, and this limiter accepts that.
"""

import os
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from dotenv import load_dotenv
from pymongo.errors import PyMongoError

from db import engine
from waste_classifier.exceptions import RateLimitedError

load_dotenv()

RATE_LIMIT_MAX_REQUESTS = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", 5))
RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", 60))

logger = logging.getLogger(__name__)


def _collection():
    return engine.get_mongo_collection(engine.collection_name("rate_limits"))


def count_recent_requests(client_address: str, endpoint: str, window_start: datetime) -> int:
    """Sums request_count for this client and endpoint since window_start."""
    cursor = _collection().find(
        {
            "client_address": client_address,
            "endpoint": endpoint,
            "timestamp": {"$gte": window_start},
        },
        {"request_count": 1},
    )
    return sum(doc.get("request_count", 1) for doc in cursor)


def record_request(client_address: str, endpoint: str, now: datetime) -> None:
    _collection().insert_one({
        "client_address": client_address,
        "endpoint": endpoint,
        "request_count": 1,
        "timestamp": now,
    })


def check_rate_limit(client_address: str, endpoint: str, now: Optional[datetime] = None) -> None:
    """
    Admits or rejects a request, then records the attempt.

    The record is written before classification starts, so attempts that
    later fail still count against the budget. Storage errors fail open:
    the request is admitted and the next request checks again.

    :param client_address: Resolved client address, or "unknown".
    :param endpoint: Identifier of the endpoint being limited.
    :param now: Current time; defaults to the UTC clock.
    :raises RateLimitedError: If the client already used its budget in this window.
    """
    now = now or datetime.now(timezone.utc)
    window_start = now - timedelta(seconds=RATE_LIMIT_WINDOW_SECONDS)

    try:
        used = count_recent_requests(client_address, endpoint, window_start)
    except PyMongoError as e:
        logger.error(f"Rate limit lookup failed, admitting request: {type(e).__name__}")
        used = 0

    if used >= RATE_LIMIT_MAX_REQUESTS:
        logger.warning(f"Rate limit exceeded for {client_address} on {endpoint} ({used} requests)")
        raise RateLimitedError()

    try:
        record_request(client_address, endpoint, now)
    except PyMongoError as e:
        logger.error(f"Failed to record rate limit entry: {type(e).__name__}")
