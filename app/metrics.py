from __future__ import annotations

import asyncio
import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Callable

from app.config import settings


logger = logging.getLogger('app.metrics')

TRACKED_EVENTS = (
    'cache_hit',
    'cache_miss',
    'cache_invalidate',
    'holiday_cache_hit',
    'holiday_cache_miss',
    'holiday_fetch_failed',
    'session_created',
    'session_skipped',
)


class MetricsExporter:
    def export_minute(self, *, minute_start: datetime, counts: dict[str, int]) -> None:
        raise NotImplementedError


class LogMetricsExporter(MetricsExporter):
    def export_minute(self, *, minute_start: datetime, counts: dict[str, int]) -> None:
        rendered = ' '.join(f'{name}={counts.get(name, 0)}' for name in TRACKED_EVENTS)
        logger.info('scheduling_metrics minute=%s %s', minute_start.isoformat(), rendered)


_exporter: MetricsExporter = LogMetricsExporter()


def set_metrics_exporter(exporter: MetricsExporter) -> None:
    global _exporter
    _exporter = exporter


class _MinuteCounter:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._minute_start_epoch: int | None = None
        self._counts: dict[str, int] = {}

    def _flush_locked(self, minute_epoch: int) -> None:
        if not self._counts:
            return
        minute_start = datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=minute_epoch)
        try:
            _exporter.export_minute(minute_start=minute_start, counts=dict(self._counts))
        except Exception:
            logger.exception('metrics_export_failed minute=%s', minute_start.isoformat())
        self._counts.clear()

    def record(self, key: str, amount: int = 1) -> None:
        minute_epoch = int(time.time() // 60) * 60
        with self._lock:
            if self._minute_start_epoch is None:
                self._minute_start_epoch = minute_epoch
            if minute_epoch != self._minute_start_epoch:
                self._flush_locked(self._minute_start_epoch)
                self._minute_start_epoch = minute_epoch
            self._counts[key] = self._counts.get(key, 0) + amount

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def flush(self) -> None:
        with self._lock:
            if self._minute_start_epoch is None:
                return
            self._flush_locked(self._minute_start_epoch)


_counter = _MinuteCounter()


def record_event(event: str, amount: int = 1) -> None:
    if amount <= 0:
        return
    _counter.record(event, amount)


def metrics_snapshot() -> dict[str, int]:
    return _counter.snapshot()


def flush_metrics() -> None:
    _counter.flush()


def timed_service(label: str, *, threshold_ms: int | None = None) -> Callable[[Callable[..., object]], Callable[..., object]]:
    """Log the call duration of a service function when it crosses the slow threshold."""

    def decorator(func: Callable[..., object]) -> Callable[..., object]:
        threshold_value = threshold_ms if threshold_ms is not None else settings.metrics_slow_ms

        def _report(started: float) -> None:
            duration_ms = (time.perf_counter() - started) * 1000.0
            if duration_ms >= threshold_value:
                logger.info('service_timer label=%s duration_ms=%.2f', label, duration_ms)

        if asyncio.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args: object, **kwargs: object):
                started = time.perf_counter()
                try:
                    return await func(*args, **kwargs)
                finally:
                    _report(started)

            return async_wrapper

        @wraps(func)
        def sync_wrapper(*args: object, **kwargs: object):
            started = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                _report(started)

        return sync_wrapper

    return decorator
