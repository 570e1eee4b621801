"""Stage timing for the OCR pipeline."""

import logging
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from functools import wraps
from typing import Callable, Deque, Dict, Optional, Tuple

import psutil

logger = logging.getLogger(__name__)


@dataclass
class ProcessMetrics:
    """Process resource usage at one point in time."""
    cpu_percent: float = 0.0
    memory_usage_mb: float = 0.0
    memory_percent: float = 0.0
    active_threads: int = 0
    timestamp: datetime = field(default_factory=datetime.now)


class PerformanceTimer:
    """Context manager for timing operations."""

    def __init__(self, operation_name: str, monitor: Optional['PerformanceMonitor'] = None):
        self.operation_name = operation_name
        self.monitor = monitor
        self.start_time = None
        self.end_time = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.end_time = time.perf_counter()
        monitor = self.monitor or PerformanceMonitor.instance()
        monitor.record_operation_time(self.operation_name, self.duration)

    @property
    def duration(self) -> float:
        """Get operation duration in seconds."""
        if self.end_time is None or self.start_time is None:
            return 0.0
        return self.end_time - self.start_time


def performance_timer(operation_name: str = None):
    """Decorator for timing function execution."""
    def decorator(func: Callable) -> Callable:
        name = operation_name or f"{func.__module__}.{func.__name__}"

        @wraps(func)
        def wrapper(*args, **kwargs):
            with PerformanceTimer(name):
                return func(*args, **kwargs)
        return wrapper
    return decorator


class PerformanceMonitor:
    """Keeps the most recent durations of each timed operation."""

    _instance = None
    _instance_lock = threading.Lock()

    def __init__(self, history_size: int = 500):
        self._lock = threading.Lock()
        self._operation_times: Dict[str, Deque[Tuple[float, float]]] = defaultdict(
            lambda: deque(maxlen=history_size)
        )

    @classmethod
    def instance(cls) -> 'PerformanceMonitor':
        """Get singleton instance."""
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def record_operation_time(self, operation: str, duration: float):
        with self._lock:
            self._operation_times[operation].append((time.time(), duration))

    def get_operation_stats(self, operation: str) -> Dict[str, float]:
        """Get statistics for specific operation."""
        with self._lock:
            times = list(self._operation_times.get(operation, ()))
        if not times:
            return {}

        durations = [duration for _, duration in times]
        return {
            'count': len(durations),
            'min': min(durations),
            'max': max(durations),
            'avg': sum(durations) / len(durations),
            'total': sum(durations)
        }

    def operations(self):
        with self._lock:
            return sorted(self._operation_times.keys())

    def reset(self):
        with self._lock:
            self._operation_times.clear()

    def collect_process_metrics(self) -> ProcessMetrics:
        process = psutil.Process()
        memory_info = process.memory_info()
        return ProcessMetrics(
            cpu_percent=process.cpu_percent(),
            memory_usage_mb=memory_info.rss / 1024 / 1024,
            memory_percent=process.memory_percent(),
            active_threads=threading.active_count(),
        )

    def log_summary(self, level: int = logging.INFO) -> None:
        metrics = self.collect_process_metrics()
        logger.log(level, f"Process: cpu={metrics.cpu_percent:.1f}% rss={metrics.memory_usage_mb:.1f}MB "
                          f"threads={metrics.active_threads}")
        for operation in self.operations():
            stats = self.get_operation_stats(operation)
            logger.log(level, f"{operation}: n={stats['count']} avg={stats['avg'] * 1000:.2f}ms "
                              f"max={stats['max'] * 1000:.2f}ms")
