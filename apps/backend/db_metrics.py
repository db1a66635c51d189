"""Timing for the SQL helpers in :mod:`apps.backend.db`.

Queries slower than ``DB_SLOW_QUERY_THRESHOLD_MS`` are logged at WARNING.
Every timing can also be forwarded to a metrics backend through
:func:`register_histogram_emitter`; nothing is sent when no emitter is set.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager

from infra.config import get_settings

_LOGGER = logging.getLogger(__name__)

HISTOGRAM = "db_query_duration_ms"

Emitter = Callable[[str, float, Sequence[str]], None]
_emitter: Emitter | None = None


def register_histogram_emitter(emitter: Emitter | None) -> None:
    """Send each timing to ``emitter(HISTOGRAM, ms, ["query:<label>"])``; None detaches it."""
    global _emitter
    _emitter = emitter


@contextmanager
def measure_query(label: str) -> Iterator[None]:
    cfg = get_settings().db_metrics
    if not cfg.metrics_enabled:
        yield
        return

    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        if elapsed_ms >= cfg.slow_query_threshold_ms:
            _LOGGER.warning("slow query %s took %.2f ms", label, elapsed_ms)
        if _emitter is not None:
            try:
                _emitter(HISTOGRAM, elapsed_ms, [f"query:{label}"])
            except (TypeError, ValueError, RuntimeError) as exc:
                _LOGGER.debug("histogram emitter failed: %s", exc)
