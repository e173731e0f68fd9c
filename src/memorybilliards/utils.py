from __future__ import annotations

import functools
import logging
import time
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def timer(func: Callable[..., T]) -> Callable[..., T]:
    """Log the wall-clock duration of every call to `func`."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> T:
        start = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            elapsed = time.perf_counter() - start
            logger.info(f"{func.__qualname__} finished in {elapsed:.2f} s")
    return wrapper


def format_count(value: float) -> str:
    """Compact human readable count (1.2k, 3.4M, ...)."""
    for unit, size in (("G", 1e9), ("M", 1e6), ("k", 1e3)):
        if abs(value) >= size:
            return f"{value / size:.1f}{unit}"
    return f"{value:.0f}"
