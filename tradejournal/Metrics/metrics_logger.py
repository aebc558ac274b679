# metrics_logger.py
#
# Imports
import asyncio
import functools
import time
from datetime import datetime, timezone
from typing import Any, Optional, Dict, Union, Callable
#
# Third-party Imports
from loguru import logger
#
# Local Imports
#
############################################################################################################
#
# Functions:

LabelValue = Union[str, int, float, bool]
LabelDict = Dict[str, LabelValue]

# Custom level so metrics can be filtered apart from regular application logs at the sink level.
logger.level("METRIC", no=25, color="<blue>")


def _log_metric(
        metric_name: str,
        metric_type: str,
        value: Any,
        labels: Optional[LabelDict] = None,
):
    """
    Private helper to log a structured metric using loguru binding.
    """
    bound_logger = logger.bind(
        event=metric_name,
        type=metric_type,
        value=value,
        labels=labels or {},
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
    bound_logger.log("METRIC", f"{metric_type.capitalize()} '{metric_name}': {value} {labels or {}}")


def timeit(
        metric_name: Optional[str] = None,
        labels: Optional[LabelDict] = None,
        log_call_count: bool = False,
):
    """
    Decorator that times a sync or async function, logging a histogram with a status label.

    Args:
        metric_name (str, optional): Custom name for the metric. Defaults to function name.
        labels (dict, optional): Extra labels to add to the metric.
        log_call_count (bool): If True, also logs a counter metric for each call.
    """

    def decorator(func: Callable) -> Callable:
        m_name = metric_name or f"{func.__name__}_duration_seconds"
        base_labels = {"function": func.__name__, **(labels or {})}

        def _record(start_time: float, status: str):
            elapsed_time = time.perf_counter() - start_time
            final_labels = {**base_labels, "status": status}
            _log_metric(m_name, "histogram", elapsed_time, final_labels)
            if log_call_count:
                _log_metric(f"{func.__name__}_calls_total", "counter", 1, final_labels)

        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                start_time = time.perf_counter()
                status = "success"
                try:
                    return await func(*args, **kwargs)
                except Exception:
                    status = "failure"
                    raise
                finally:
                    _record(start_time, status)
            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            status = "success"
            try:
                return func(*args, **kwargs)
            except Exception:
                status = "failure"
                raise
            finally:
                _record(start_time, status)

        return wrapper

    return decorator


class MetricsLogger:
    """
    Class-based API for providing context (base labels) to a set of metrics.
    """

    def __init__(self, base_labels: Optional[LabelDict] = None):
        self._base_labels = base_labels or {}

    def _get_labels(self, labels: Optional[LabelDict]) -> LabelDict:
        final_labels = self._base_labels.copy()
        if labels:
            final_labels.update(labels)
        return final_labels

    def log_counter(self, name: str, value: int = 1, labels: Optional[LabelDict] = None):
        _log_metric(name, "counter", value, self._get_labels(labels))

    def log_histogram(self, name: str, value: float, labels: Optional[LabelDict] = None):
        _log_metric(name, "histogram", value, self._get_labels(labels))


default_metrics = MetricsLogger()
log_counter = default_metrics.log_counter
log_histogram = default_metrics.log_histogram

sync_metrics = MetricsLogger(base_labels={"component": "sync"})


def log_sync_cycle(kind: str, status: str, elapsed: float, labels: Optional[LabelDict] = None):
    """Records one push or pull cycle as a duration histogram plus a counter, both labelled with its outcome."""
    cycle_labels = {"status": status, **(labels or {})}
    sync_metrics.log_histogram(f"sync_{kind}_duration_seconds", elapsed, cycle_labels)
    sync_metrics.log_counter(f"sync_{kind}_total", labels=cycle_labels)

#
# End of metrics_logger.py
############################################################################################################
