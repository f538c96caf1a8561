"""Bounded cache for collision query results.

The cost and the constraint of one term, and the convexification and the
merit evaluation of one solver iteration, all ask for the contacts at the
same variable values. Caching the last few queries avoids redundant calls
into the collision backend.
"""

import logging
from collections import OrderedDict
from typing import Any, Callable

import numpy as np

logger = logging.getLogger(__name__)


class QueryCache:
    """Keep the results of the most recent collision queries.

    Keys are the raw float64 bytes of the queried variable values, so two
    assignments share an entry only when they are bit-identical. When the
    cache is full, the entry inserted first is evicted.
    """

    def __init__(self, max_size: int = 3):
        """Initialize cache.

        Args:
            max_size: Number of entries to keep. 0 disables caching.
        """
        if max_size < 0:
            raise ValueError(f"max_size must be non-negative, got {max_size}")
        self.max_size = max_size
        self._entries: OrderedDict[bytes, list] = OrderedDict()

        # Statistics
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    @staticmethod
    def make_key(values: np.ndarray) -> bytes:
        """Build the exact lookup key for a vector of variable values."""
        return np.ascontiguousarray(values, dtype=np.float64).ravel().tobytes()

    def get(self, values: np.ndarray) -> list | None:
        """Return the cached result for *values*, or None."""
        entry = self._entries.get(self.make_key(values))
        if entry is not None and not isinstance(entry, list):
            raise RuntimeError(
                f"Corrupt cache entry of type {type(entry).__name__}"
            )
        return entry

    def put(self, values: np.ndarray, result: list) -> None:
        """Store *result* for *values*, evicting the oldest entry if full."""
        if self.max_size == 0:
            return
        key = self.make_key(values)
        self._entries[key] = result
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)
            self.evictions += 1

    def get_or_compute(
        self,
        values: np.ndarray,
        compute_fn: Callable[[np.ndarray], list],
    ) -> list:
        """Return the cached result for *values*, computing it on a miss.

        Args:
            values: Variable values the query depends on.
            compute_fn: Called with *values* when no entry matches.

        Returns:
            The stored (hit) or freshly computed (miss) result.
        """
        cached = self.get(values)
        if cached is not None:
            self.hits += 1
            logger.debug("using cached collision check")
            return cached

        self.misses += 1
        logger.debug("not using cached collision check")
        result = compute_fn(values)
        self.put(values, result)
        return result

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, values: Any) -> bool:
        return self.make_key(values) in self._entries
