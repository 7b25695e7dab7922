"""
Operation Metrics
=================
Provides:
- Per-operation timing (relay submissions, settlement waits)
- Aggregated success/failure counts
- JSON export of a run's metrics
"""

import json
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional


@dataclass
class PerformanceMetrics:
    """Container for a single timed operation."""
    operation: str
    start_time: float
    end_time: Optional[float] = None
    duration_ms: Optional[float] = None
    success: bool = False
    error: Optional[str] = None
    bundle_hash: Optional[str] = None
    tx_count: Optional[int] = None
    extra: Optional[Dict[str, Any]] = None

    def finalize(self, success: bool = True, error: Optional[str] = None):
        """Finalize the metrics with result."""
        self.end_time = time.time()
        self.duration_ms = (self.end_time - self.start_time) * 1000
        self.success = success
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            'operation': self.operation,
            'start_time': datetime.fromtimestamp(self.start_time).isoformat(),
            'end_time': datetime.fromtimestamp(self.end_time).isoformat() if self.end_time else None,
            'duration_ms': round(self.duration_ms, 2) if self.duration_ms is not None else None,
            'success': self.success,
            'error': self.error,
            'bundle_hash': self.bundle_hash,
            'tx_count': self.tx_count,
            'extra': self.extra or {}
        }


class MetricsCollector:
    """Collects and aggregates performance metrics."""

    def __init__(self):
        self.metrics: List[PerformanceMetrics] = []
        self._lock = threading.Lock()

    def add_metric(self, metric: PerformanceMetrics):
        with self._lock:
            self.metrics.append(metric)

    def get_summary(self) -> Dict[str, Any]:
        """Get summary statistics per operation."""
        with self._lock:
            operations: Dict[str, Dict[str, Any]] = {}
            for metric in self.metrics:
                stats = operations.setdefault(
                    metric.operation,
                    {'total': 0, 'success': 0, 'failure': 0, '_durations': []}
                )
                stats['total'] += 1
                stats['success' if metric.success else 'failure'] += 1
                if metric.duration_ms is not None:
                    stats['_durations'].append(metric.duration_ms)

            for stats in operations.values():
                durations = stats.pop('_durations')
                stats['avg_duration_ms'] = round(sum(durations) / len(durations), 2) if durations else 0

            return {'total_operations': len(self.metrics), 'operations': operations}

    def clear(self):
        with self._lock:
            self.metrics.clear()

    def save_to_file(self, filepath: str):
        """Save all metrics to a JSON file."""
        summary = self.get_summary()
        with self._lock:
            data = {
                'summary': summary,
                'metrics': [m.to_dict() for m in self.metrics]
            }
        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        with open(filepath, 'w') as f:
            json.dump(data, f, indent=2)


# Process-wide collector, read by the CLI summary
metrics = MetricsCollector()


@contextmanager
def timed_operation(
    operation: str,
    collector: Optional[MetricsCollector] = None,
    extra: Optional[Dict[str, Any]] = None
) -> Iterator[PerformanceMetrics]:
    """
    Time a block and record the outcome.

    The yielded metric can be annotated (bundle_hash, tx_count) inside the
    block. Exceptions are recorded as failures and re-raised.
    """
    collector = collector if collector is not None else metrics
    metric = PerformanceMetrics(operation=operation, start_time=time.time(), extra=extra)
    try:
        yield metric
    except Exception as e:
        metric.finalize(success=False, error=str(e))
        collector.add_metric(metric)
        raise
    metric.finalize(success=True)
    collector.add_metric(metric)
