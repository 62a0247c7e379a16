"""
Shared fixtures: in-memory stand-ins for OpenTSDB and the VictoriaMetrics importer
"""
import asyncio
from typing import Callable, Dict, List, Optional

import pytest

from tsmigrate.config.manager import FrameworkConfig, MonitoringSettings, SourceSettings
from tsmigrate.core.models import FetchResult, RetentionMeta, Series, TimeSeries
from tsmigrate.core.victoriametrics import ImportErrorEvent, ImporterStats


class FakeSource:
    """Records every call; returns one datapoint per query unless told otherwise"""

    def __init__(self, metrics: Optional[Dict[str, List[str]]] = None,
                 series: Optional[Dict[str, List[Series]]] = None,
                 get_data_hook: Optional[Callable] = None):
        self.metrics = metrics or {}
        self.series = series or {}
        self.get_data_hook = get_data_hook
        self.metric_calls: List[str] = []
        self.series_calls: List[str] = []
        self.calls: List[tuple] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.connected = False

    async def connect(self) -> bool:
        self.connected = True
        return True

    async def disconnect(self):
        self.connected = False

    async def find_metrics(self, query_filter: str) -> List[str]:
        self.metric_calls.append(query_filter)
        return list(self.metrics.get(query_filter, []))

    async def find_series(self, metric: str) -> List[Series]:
        self.series_calls.append(metric)
        return list(self.series.get(metric, []))

    async def get_data(self, series: Series, retention: RetentionMeta, start: int, end: int,
                       msecs_time: bool = False) -> FetchResult:
        self.calls.append((series, retention, start, end))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if self.get_data_hook is not None:
                result = self.get_data_hook(series, retention, start, end)
                if result is not None:
                    return result
            return FetchResult(
                metric=series.metric,
                tags=series.tag_map,
                timestamps=[start * 1000],
                values=[1.0]
            )
        finally:
            self.in_flight -= 1

    def get_performance_summary(self):
        return {"total_operations": len(self.calls)}


class FakeImporter:
    """Collects submitted series and exposes an error stream like VMImporter"""

    def __init__(self, input_hook: Optional[Callable] = None,
                 close_errors: Optional[List[ImportErrorEvent]] = None):
        self.input_hook = input_hook
        self.close_errors = close_errors or []
        self.errors: asyncio.Queue = asyncio.Queue()
        self.received: List[TimeSeries] = []
        self.is_closed = False
        self.aborted = False
        self.resets = 0

    async def connect(self) -> bool:
        return True

    async def input(self, ts: TimeSeries):
        if self.input_hook is not None:
            self.input_hook(self, ts)
        self.received.append(ts)
        await asyncio.sleep(0)

    def fail(self, err: Optional[BaseException] = None, batch: Optional[List[TimeSeries]] = None):
        """Report a failed batch the way the import workers do"""
        self.errors.put_nowait(ImportErrorEvent(batch=batch or [], err=err or RuntimeError("boom")))

    async def close(self):
        self.is_closed = True
        for event in self.close_errors:
            self.errors.put_nowait(event)
        self.errors.put_nowait(None)

    async def abort(self):
        self.is_closed = True
        self.aborted = True

    def reset_stats(self):
        self.resets += 1

    def stats(self) -> ImporterStats:
        return ImporterStats(samples=sum(ts.samples for ts in self.received), series=len(self.received))


def make_series(metric: str, count: int) -> List[Series]:
    return [Series.from_tags(metric, {"host": f"host-{i}"}) for i in range(count)]


def make_config(retentions=("sum-1h-avg:2h:4h",), filters=("a",), concurrency=2,
                hard_ts_start=100_000, **source) -> FrameworkConfig:
    return FrameworkConfig(
        log_file=None,
        source=SourceSettings(
            retentions=list(retentions),
            filters=list(filters),
            concurrency=concurrency,
            hard_ts_start=hard_ts_start,
            **source
        ),
        monitoring=MonitoringSettings(disable_progress_bar=True)
    )


@pytest.fixture
def config():
    return make_config()
