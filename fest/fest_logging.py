"""Logging and observability utilities for fest.

Everything logs under the ``fest`` logger tree. Structured context travels
on records as ``extra_fields``, which ``JsonFormatter`` merges into the
emitted object. Progress events (task status changes, blockers, festival
completion, next-task selections) are logged through ``observability_hooks``
so that embedding code can subscribe to them.
"""

from __future__ import annotations

import json
import sys
import time
import logging as std_logging
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Union
from functools import wraps

ROOT_LOGGER = "fest"

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(funcName)s:%(lineno)d - %(message)s"


def setup_logging(log_level: Union[str, int] = std_logging.INFO, log_file: Optional[Path] = None) -> None:
    """Configure the ``fest`` logger: readable console output plus optional JSON file."""

    logger = std_logging.getLogger(ROOT_LOGGER)
    logger.setLevel(log_level)
    logger.handlers.clear()

    # stdout carries the MCP stdio transport
    console = std_logging.StreamHandler(sys.stderr)
    console.setLevel(log_level)
    console.setFormatter(std_logging.Formatter(fmt=CONSOLE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(console)

    if log_file:
        file_handler = std_logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(std_logging.DEBUG)
        file_handler.setFormatter(JsonFormatter())
        logger.addHandler(file_handler)

    logger.info("fest logging initialized", extra={"extra_fields": {"log_file": str(log_file) if log_file else None}})


class JsonFormatter(std_logging.Formatter):
    """One JSON object per record, with ``extra_fields`` merged at the top level."""

    def format(self, record: std_logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        entry.update(getattr(record, "extra_fields", None) or {})
        return json.dumps(entry, default=str)


class PerformanceMonitor:
    """In-process store of duration samples, keyed by metric name."""

    def __init__(self):
        self.metrics: Dict[str, List[Dict[str, Any]]] = {}
        self.logger = std_logging.getLogger(f"{ROOT_LOGGER}.performance")

    def record_metric(self, name: str, value: Any, tags: Optional[Dict[str, str]] = None) -> None:
        sample = {"timestamp": _now_iso(), "name": name, "value": value, "tags": dict(tags or {})}
        self.metrics.setdefault(name, []).append(sample)
        self.logger.debug(f"Metric recorded: {name}={value}", extra={"extra_fields": sample})

    def get_metrics(self, name: Optional[str] = None) -> Dict[str, List[Dict[str, Any]]]:
        """All samples, or only those for ``name``."""
        if name:
            return {name: list(self.metrics.get(name, []))}
        return {key: list(samples) for key, samples in self.metrics.items()}

    def clear(self) -> None:
        self.metrics.clear()


performance_monitor = PerformanceMonitor()


def _failure_fields(operation: str, duration: float, error: Exception) -> Dict[str, Any]:
    return {
        "operation": operation,
        "duration": duration,
        "error_type": type(error).__name__,
        "error_message": str(error),
    }


def log_performance(operation_name: str):
    """Decorator recording a ``<operation>_duration`` sample for each call."""

    metric = f"{operation_name}_duration"

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = std_logging.getLogger(f"{ROOT_LOGGER}.performance")
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration = time.perf_counter() - started
                performance_monitor.record_metric(metric, duration,
                                                  {"status": "error", "error_type": type(e).__name__})
                logger.error(
                    f"Failed operation: {operation_name} after {duration:.3f}s - {e}",
                    extra={"extra_fields": {"status": "error", **_failure_fields(operation_name, duration, e)}},
                )
                raise

            duration = time.perf_counter() - started
            performance_monitor.record_metric(metric, duration, {"status": "success"})
            logger.info(
                f"Completed operation: {operation_name} in {duration:.3f}s",
                extra={"extra_fields": {"operation": operation_name, "duration": duration, "status": "success"}},
            )
            return result

        return wrapper

    return decorator


@contextmanager
def log_operation(operation_name: str, **extra_fields) -> Iterator[None]:
    """Log start, completion or failure of a block, tagged with ``extra_fields``."""
    logger = std_logging.getLogger(f"{ROOT_LOGGER}.operations")
    started = time.perf_counter()
    logger.debug(f"Starting operation: {operation_name}",
                 extra={"extra_fields": {"operation": operation_name, "status": "started", **extra_fields}})

    try:
        yield
    except Exception as e:
        duration = time.perf_counter() - started
        logger.warning(
            f"Failed operation: {operation_name} after {duration:.3f}s - {e}",
            extra={"extra_fields": {"status": "failed", **_failure_fields(operation_name, duration, e), **extra_fields}},
        )
        raise

    duration = time.perf_counter() - started
    logger.debug(f"Completed operation: {operation_name} in {duration:.3f}s", extra={"extra_fields": {
        "operation": operation_name, "status": "completed", "duration": duration, **extra_fields,
    }})


class ObservabilityHooks:
    """Callbacks keyed by progress event type.

    A failing callback is logged and skipped; it never reaches the
    operation that emitted the event.
    """

    def __init__(self):
        self.hooks: Dict[str, List[Callable[..., Any]]] = {}
        self.logger = std_logging.getLogger(f"{ROOT_LOGGER}.observability")

    def register_hook(self, event_type: str, callback: Callable[..., Any]) -> None:
        self.hooks.setdefault(event_type, []).append(callback)
        self.logger.debug(f"Registered hook for event: {event_type}")

    def unregister_hook(self, event_type: str, callback: Callable[..., Any]) -> None:
        callbacks = self.hooks.get(event_type, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def trigger_hooks(self, event_type: str, **data) -> None:
        callbacks = list(self.hooks.get(event_type, []))
        if not callbacks:
            return
        self.logger.debug(f"Triggering {len(callbacks)} hooks for event: {event_type}")
        for hook in callbacks:
            try:
                hook(**data)
            except Exception as e:
                self.logger.error(f"Hook failed for event {event_type}: {e}", exc_info=True)

    def log_progress_event(self, event_type: str, festival: Optional[str] = None, **data) -> None:
        """Log a progress event, then pass its fields (without ``event_type``) to the hooks."""
        payload = {"timestamp": _now_iso(), "festival": festival, **data}
        self.logger.info(f"Progress event: {event_type}",
                         extra={"extra_fields": {"event_type": event_type, **payload}})
        self.trigger_hooks(event_type, **payload)


observability_hooks = ObservabilityHooks()


def log_error_with_context(error: Exception, context: Dict[str, Any], **extra_fields):
    """Log ``error`` at ``fest.errors`` with its operation context and traceback."""
    std_logging.getLogger(f"{ROOT_LOGGER}.errors").error(
        f"Error in {context.get('operation', 'unknown operation')}: {error}",
        extra={"extra_fields": {
            "timestamp": _now_iso(),
            "error_type": type(error).__name__,
            "error_message": str(error),
            "context": context,
            **extra_fields,
        }},
        exc_info=True,
    )


# Progress events

def log_task_update(festival: str, task_id: str, status: str, **extra_fields):
    observability_hooks.log_progress_event(
        f"task_{status}", festival=festival, task_id=task_id, status=status, **extra_fields
    )


def log_blocker_event(festival: str, task_id: str, cleared: bool, **extra_fields):
    event_type = "blocker_cleared" if cleared else "blocker_reported"
    observability_hooks.log_progress_event(event_type, festival=festival, task_id=task_id, **extra_fields)


def log_festival_completed(festival: str, **extra_fields):
    observability_hooks.log_progress_event("festival_completed", festival=festival, **extra_fields)


def log_next_selection(festival: str, kind: str, **extra_fields):
    observability_hooks.log_progress_event("next_task_selected", festival=festival, kind=kind, **extra_fields)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
