"""
Run metrics for pattern components.

Tracks duration, success rate and failure kinds per component so callers
can see which patterns are timing out, exhausting bounds or failing gates.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class RunMetrics:
    """Metrics for a single component run."""
    run_id: str
    component: str
    start_time: float
    end_time: Optional[float] = None
    duration_seconds: Optional[float] = None
    success: bool = False
    failure_kind: Optional[str] = None

    def finalize(self, success: bool, failure_kind: Optional[str] = None):
        """Mark run as complete and calculate duration."""
        self.end_time = time.time()
        self.duration_seconds = self.end_time - self.start_time
        self.success = success
        self.failure_kind = failure_kind

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "component": self.component,
            "start_time": datetime.fromtimestamp(self.start_time).isoformat(),
            "end_time": datetime.fromtimestamp(self.end_time).isoformat() if self.end_time else None,
            "duration_seconds": self.duration_seconds,
            "success": self.success,
            "failure_kind": self.failure_kind,
        }


@dataclass
class ComponentMetrics:
    """Aggregate metrics for one component type."""
    component: str
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    total_duration_seconds: float = 0.0
    avg_duration_seconds: float = 0.0
    min_duration_seconds: Optional[float] = None
    max_duration_seconds: Optional[float] = None
    failures_by_kind: Dict[str, int] = field(default_factory=dict)

    def update(self, run: RunMetrics):
        """Fold a finished run into the aggregates."""
        self.total_runs += 1

        if run.success:
            self.successful_runs += 1
        else:
            self.failed_runs += 1
            kind = run.failure_kind or "unknown"
            self.failures_by_kind[kind] = self.failures_by_kind.get(kind, 0) + 1

        if run.duration_seconds is not None:
            self.total_duration_seconds += run.duration_seconds
            self.avg_duration_seconds = self.total_duration_seconds / self.total_runs

            if self.min_duration_seconds is None or run.duration_seconds < self.min_duration_seconds:
                self.min_duration_seconds = run.duration_seconds

            if self.max_duration_seconds is None or run.duration_seconds > self.max_duration_seconds:
                self.max_duration_seconds = run.duration_seconds

    def get_success_rate(self) -> float:
        """Success rate as percentage."""
        if self.total_runs == 0:
            return 0.0
        return (self.successful_runs / self.total_runs) * 100.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "component": self.component,
            "total_runs": self.total_runs,
            "successful_runs": self.successful_runs,
            "failed_runs": self.failed_runs,
            "success_rate": self.get_success_rate(),
            "total_duration_seconds": self.total_duration_seconds,
            "avg_duration_seconds": self.avg_duration_seconds,
            "min_duration_seconds": self.min_duration_seconds,
            "max_duration_seconds": self.max_duration_seconds,
            "failures_by_kind": dict(self.failures_by_kind),
        }


class MetricsCollector:
    """
    Centralized metrics collection.

    Components call start_run() on entry and finish_run() on exit. Only
    in-flight runs are kept as records; a finished run is folded into its
    component's aggregates and dropped.
    """

    def __init__(self):
        self.active_runs: Dict[str, RunMetrics] = {}
        self.component_metrics: Dict[str, ComponentMetrics] = {}
        self._counter = 0

    def start_run(self, component: str) -> RunMetrics:
        self._counter += 1
        run_id = f"{component}-{self._counter}"
        metrics = RunMetrics(run_id=run_id, component=component, start_time=time.time())
        self.active_runs[run_id] = metrics
        return metrics

    def finish_run(
        self,
        run_id: str,
        success: bool,
        failure_kind: Optional[str] = None
    ) -> Optional[RunMetrics]:
        metrics = self.active_runs.pop(run_id, None)
        if not metrics:
            return None

        metrics.finalize(success, failure_kind)

        component = metrics.component
        if component not in self.component_metrics:
            self.component_metrics[component] = ComponentMetrics(component=component)
        self.component_metrics[component].update(metrics)

        return metrics

    def get_component_metrics(self, component: str) -> Optional[ComponentMetrics]:
        return self.component_metrics.get(component)

    def get_all_component_metrics(self) -> Dict[str, ComponentMetrics]:
        return dict(self.component_metrics)

    def discard_run(self, run_id: str):
        """Forget a run that ended without a result (task cancelled)."""
        self.active_runs.pop(run_id, None)


# Global metrics collector instance
_global_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """Get or create global metrics collector."""
    global _global_metrics_collector
    if _global_metrics_collector is None:
        _global_metrics_collector = MetricsCollector()
    return _global_metrics_collector


def reset_metrics_collector():
    """Reset global metrics collector (for testing)."""
    global _global_metrics_collector
    _global_metrics_collector = MetricsCollector()
