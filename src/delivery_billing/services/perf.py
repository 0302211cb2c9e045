"""Timing helpers for logging how long pipeline steps take."""

from __future__ import annotations

import json
import logging
import time
from contextlib import contextmanager
from typing import Any, Iterator

logger = logging.getLogger(__name__)


@contextmanager
def measure(label: str, **meta: Any) -> Iterator[dict[str, Any]]:
    """Log ``PERF | label | <ms> ms | {meta}`` when the block exits.

    The yielded dict can be filled in by the block to add details known only
    at the end (row counts, flags).
    """
    extra: dict[str, Any] = dict(meta)
    start = time.perf_counter()
    try:
        yield extra
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        payload = f" | {json.dumps(extra, default=str)}" if extra else ""
        logger.info(f"PERF | {label} | {elapsed_ms:.1f} ms{payload}")
