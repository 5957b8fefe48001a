"""
imaging/buffer_pool.py - Reusable 2D accumulation buffers

Subframe rendering allocates one full-sensor float buffer per subframe; the
pool hands back zeroed buffers from a free list instead of reallocating.
Pools are keyed by (width, height), so the number of pools is bounded by
the distinct sensor geometries in use. All operations are lock-protected so
parallel subframe workers can share one manager.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Tuple

import numpy as np

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)


class BufferPool:
    """Free list of (height, width) float64 buffers."""

    def __init__(self, width: int, height: int):
        if width <= 0 or height <= 0:
            raise ConfigurationError(f"Buffer dimensions must be positive, got {width}x{height}")
        self.width = width
        self.height = height
        self._free: List[np.ndarray] = []
        self._lock = threading.Lock()
        self.created = 0
        self.reused = 0

    @property
    def shape(self) -> Tuple[int, int]:
        return self.height, self.width

    def acquire(self) -> np.ndarray:
        """A zeroed buffer, reused when one is available."""
        with self._lock:
            if self._free:
                buffer = self._free.pop()
                self.reused += 1
            else:
                buffer = None
                self.created += 1
        if buffer is None:
            return np.zeros(self.shape)
        buffer.fill(0.0)
        return buffer

    def release(self, buffer: np.ndarray):
        if buffer.shape != self.shape:
            raise ValueError(f"Buffer of shape {buffer.shape} does not belong to pool {self.shape}")
        with self._lock:
            self._free.append(buffer)

    @property
    def available(self) -> int:
        with self._lock:
            return len(self._free)

    def clear(self):
        with self._lock:
            self._free.clear()


class BufferPoolManager:
    """Pools keyed by (width, height)."""

    def __init__(self):
        self._pools: Dict[Tuple[int, int], BufferPool] = {}
        self._lock = threading.Lock()

    def get_pool(self, width: int, height: int) -> BufferPool:
        key = (width, height)
        with self._lock:
            pool = self._pools.get(key)
            if pool is None:
                pool = BufferPool(width, height)
                self._pools[key] = pool
                logger.debug(f"Created buffer pool for {width}x{height}")
            return pool

    def acquire(self, width: int, height: int) -> np.ndarray:
        return self.get_pool(width, height).acquire()

    def release(self, buffer: np.ndarray):
        height, width = buffer.shape
        self.get_pool(width, height).release(buffer)

    @contextmanager
    def buffer(self, width: int, height: int) -> Iterator[np.ndarray]:
        """Borrow a zeroed buffer for the duration of a ``with`` block."""
        buffer = self.acquire(width, height)
        try:
            yield buffer
        finally:
            self.release(buffer)

    def stats(self) -> Dict[Tuple[int, int], Dict[str, int]]:
        with self._lock:
            pools = dict(self._pools)
        return {
            key: {"created": pool.created, "reused": pool.reused, "available": pool.available}
            for key, pool in pools.items()
        }

    def clear_all(self):
        with self._lock:
            for pool in self._pools.values():
                pool.clear()
            self._pools.clear()
        logger.debug("All buffer pools cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._pools)
