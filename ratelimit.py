"""
Windowed submission counter.

A window opens on the first hit for an identity and closes `window_seconds`
later; an expired window is replaced by a fresh one on the next hit. Stores
count the hit and roll the window in one atomic step, and the limiter decides
from the count that step returns, so concurrent requests cannot both slip
under the cap. Several workers can share one Mongo-backed store.
"""
import logging
import math
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from errors import RateLimitError

logger = logging.getLogger(__name__)

STORE_ATTEMPTS = 5


class CounterStore:
    """Interface for counter backends: (count, window_start) per key."""

    def get(self, key: str) -> Optional[Tuple[int, float]]:
        raise NotImplementedError

    def increment(self, key: str, now: float, window_seconds: float) -> Tuple[int, float]:
        """Atomically add one hit, opening a new window at `now` if none is live. Returns the new state."""
        raise NotImplementedError


class InMemoryCounterStore(CounterStore):
    def __init__(self):
        self._counters: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()

    def get(self, key):
        with self._lock:
            return self._counters.get(key)

    def increment(self, key, now, window_seconds):
        with self._lock:
            count, started = self._counters.get(key, (0, now))
            if now - started >= window_seconds:
                count, started = 0, now
            self._counters[key] = (count + 1, started)
            return self._counters[key]


class MongoCounterStore(CounterStore):
    """Counters kept in a Mongo collection, one document per key."""

    def __init__(self, coll):
        self.coll = coll

    def get(self, key):
        doc = self.coll.find_one({"_id": key})
        if not doc:
            return None
        return doc["count"], doc["window_start"]

    def increment(self, key, now, window_seconds):
        cutoff = now - window_seconds
        for _ in range(STORE_ATTEMPTS):
            doc = self.coll.find_one_and_update(
                {"_id": key, "window_start": {"$gt": cutoff}},
                {"$inc": {"count": 1}},
                return_document=ReturnDocument.AFTER,
            )
            if doc is not None:
                return doc["count"], doc["window_start"]

            doc = self.coll.find_one_and_update(
                {"_id": key, "window_start": {"$lte": cutoff}},
                {"$set": {"count": 1, "window_start": now}},
                return_document=ReturnDocument.AFTER,
            )
            if doc is not None:
                return doc["count"], doc["window_start"]

            try:
                self.coll.insert_one({"_id": key, "count": 1, "window_start": now})
                return 1, now
            except DuplicateKeyError:
                # another worker opened the window first; count against it
                continue
        raise RuntimeError(f"Rate limit counter for {key} did not settle after {STORE_ATTEMPTS} attempts")


class SubmissionLimiter:
    def __init__(
        self,
        store: CounterStore,
        limit: int = 5,
        window_seconds: int = 3600,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds
        self.clock = clock

    def remaining(self, identity: str) -> int:
        state = self.store.get(identity)
        if not state or self.clock() - state[1] >= self.window_seconds:
            return self.limit
        return max(0, self.limit - state[0])

    def check(self, identity: str) -> int:
        """Record one submission for `identity`; raise RateLimitError once the cap is used up."""
        now = self.clock()
        count, started = self.store.increment(identity, now, self.window_seconds)
        if count > self.limit:
            retry_after = max(1, math.ceil(started + self.window_seconds - now))
            logger.warning("Submission limit reached for %s, retry in %ss", identity, retry_after)
            raise RateLimitError(
                f"You can only post {self.limit} entries per hour. Please wait!",
                retry_after=retry_after,
            )
        return self.limit - count
