"""Process-wide holder for the unfiltered product list."""
import time
from typing import Callable, NamedTuple, Optional, Sequence

from .schemas import ProductRead


class CacheEntry(NamedTuple):
    products: tuple
    stored_at: float


class ProductCache:
    """A single slot holding the full product list and when it was stored.

    Readers and writers replace the slot wholesale, so a reader either sees the
    previous entry or the new one, never a partially written list.

    `generation` counts invalidations. A reader records it before loading from
    the store and passes it back to `set`; if a mutation invalidated the slot
    in between, the loaded list is already stale and is not stored.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self.generation = 0
        self._entry: Optional[CacheEntry] = None

    def get(self) -> Optional[CacheEntry]:
        return self._entry

    def set(self, products: Sequence[ProductRead], generation: Optional[int] = None) -> Optional[CacheEntry]:
        if generation is not None and generation != self.generation:
            return None
        self._entry = CacheEntry(tuple(products), self.clock())
        return self._entry

    def invalidate(self) -> None:
        self.generation += 1
        self._entry = None

    def age(self, entry: CacheEntry) -> float:
        return self.clock() - entry.stored_at
