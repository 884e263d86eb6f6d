"""
Timing helpers for reconciliation work

Slow passes are logged as warnings; PerformanceMonitor also exposes the
measured duration so it can be stored with the reconciliation run.
"""

import functools
import logging
import time

from flask import current_app, has_app_context

logger = logging.getLogger(__name__)


def _slow_threshold():
    if has_app_context():
        return current_app.config.get("SLOW_FUNCTION_THRESHOLD", 1.0)
    return 1.0


def timer(func):
    """Log how long each call of func takes, warning above SLOW_FUNCTION_THRESHOLD"""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            logger.error(
                f"{func.__qualname__} failed after {time.perf_counter() - start:.2f}s: {e}"
            )
            raise

        elapsed = time.perf_counter() - start
        threshold = _slow_threshold()
        if elapsed > threshold:
            logger.warning(
                f"Slow call {func.__qualname__} took {elapsed:.2f}s (threshold: {threshold}s)"
            )
        else:
            logger.debug(f"{func.__qualname__} took {elapsed:.3f}s")
        return result

    return wrapper


class PerformanceMonitor:
    """
    Context manager timing one reconciliation pass

    Usage:
        with PerformanceMonitor("score_round 2025-2026#3") as monitor:
            ...
        monitor.duration_ms
    """

    def __init__(self, operation_name, log_threshold=0.1):
        self.operation_name = operation_name
        self.log_threshold = log_threshold
        self.start_time = None
        self.duration = None

    @property
    def duration_ms(self):
        if self.duration is None:
            return None
        return int(self.duration * 1000)

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.perf_counter() - self.start_time

        if exc_type:
            logger.error(
                f"'{self.operation_name}' failed after {self.duration:.3f}s: {exc_val}"
            )
        elif self.duration > self.log_threshold:
            logger.info(f"'{self.operation_name}' completed in {self.duration:.3f}s")
        return False
