"""
Migration Statistics
Job counters per metric and per run, with process resource usage
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any
from collections import deque
import json

import psutil

logger = logging.getLogger(__name__)


@dataclass
class MetricRunStats:
    """Counters for one metric"""
    metric: str
    series: int = 0
    jobs_total: int = 0
    jobs_processed: int = 0
    jobs_skipped: int = 0
    jobs_failed: int = 0
    samples: int = 0
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None

    @property
    def duration(self) -> float:
        if self.end_time is None:
            return time.time() - self.start_time
        return self.end_time - self.start_time

    @property
    def rate(self) -> float:
        return self.jobs_processed / self.duration if self.duration > 0 else 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "metric": self.metric,
            "series": self.series,
            "jobs_total": self.jobs_total,
            "jobs_processed": self.jobs_processed,
            "jobs_skipped": self.jobs_skipped,
            "jobs_failed": self.jobs_failed,
            "samples": self.samples,
            "duration_seconds": self.duration,
            "jobs_per_second": self.rate,
        }


class MigrationStats:
    """
    Statistics collector for a migration run

    All updates happen on the event loop thread, so plain counters are enough.
    """

    def __init__(self, history_size: int = 100):
        self.history: deque = deque(maxlen=history_size)
        self.current: Optional[MetricRunStats] = None
        self.metrics_discovered = 0
        self.metrics_completed = 0
        self.total_series = 0
        self.total_jobs = 0
        self.total_processed = 0
        self.total_skipped = 0
        self.total_failed = 0
        self.total_samples = 0
        self.start_time = time.time()

    def start_metric(self, metric: str, series: int, jobs_total: int) -> MetricRunStats:
        """Start tracking a metric"""
        self.current = MetricRunStats(metric=metric, series=series, jobs_total=jobs_total)
        self.total_series += series
        self.total_jobs += jobs_total
        logger.debug(f"Started metric: {metric} ({series} series, {jobs_total} jobs)")
        return self.current

    def job_done(self, samples: int):
        """A job forwarded ``samples`` points"""
        self.total_processed += 1
        self.total_samples += samples
        if self.current:
            self.current.jobs_processed += 1
            self.current.samples += samples

    def job_skipped(self):
        """A job found no data; it still counts as processed"""
        self.total_processed += 1
        self.total_skipped += 1
        if self.current:
            self.current.jobs_processed += 1
            self.current.jobs_skipped += 1

    def job_failed(self):
        self.total_failed += 1
        if self.current:
            self.current.jobs_failed += 1

    def end_metric(self, success: bool = True) -> Optional[MetricRunStats]:
        """Finish tracking the current metric"""
        finished = self.current
        if finished is None:
            return None
        finished.end_time = time.time()
        if success:
            self.metrics_completed += 1
        self.history.append(finished)
        self.current = None
        logger.debug(
            f"Ended metric: {finished.metric} - {finished.jobs_processed}/{finished.jobs_total} jobs "
            f"in {finished.duration:.2f}s"
        )
        return finished

    def _get_memory_usage(self) -> float:
        """Current memory usage in MB"""
        return psutil.Process().memory_info().rss / 1024 / 1024

    def get_summary(self) -> Dict[str, Any]:
        """Run summary"""
        elapsed = time.time() - self.start_time
        return {
            "metrics_discovered": self.metrics_discovered,
            "metrics_completed": self.metrics_completed,
            "series": self.total_series,
            "jobs_total": self.total_jobs,
            "jobs_processed": self.total_processed,
            "jobs_skipped": self.total_skipped,
            "jobs_failed": self.total_failed,
            "samples": self.total_samples,
            "elapsed_seconds": elapsed,
            "jobs_per_second": self.total_processed / elapsed if elapsed > 0 else 0,
            "memory_usage_mb": self._get_memory_usage(),
        }

    def recent_metrics(self) -> List[Dict[str, Any]]:
        return [m.as_dict() for m in self.history]

    def export(self, format: str = "json") -> str:
        """Export the summary as JSON or CSV"""
        summary = self.get_summary()

        if format.lower() == "json":
            return json.dumps(summary, indent=2)
        elif format.lower() == "csv":
            lines = ["metric,value"]
            for key, value in summary.items():
                lines.append(f"{key},{value}")
            return "\n".join(lines)
        else:
            raise ValueError(f"Unsupported export format: {format}")
