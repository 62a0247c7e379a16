"""
VictoriaMetrics Importer
Buffered, concurrent writes to /api/v1/import with an asynchronous error stream.

Series handed to ``input()`` are queued and aggregated by import workers into
batches of ``batch_size`` samples. A batch that still fails after
``max_retries`` retries is reported on ``errors``; the job that produced it has
long returned by then, so callers must watch the stream while feeding data.
After ``close()`` has flushed everything, ``None`` is put on ``errors`` to mark
the end of the stream.
"""
import asyncio
import json
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

import httpx

from .client import BaseHTTPClient, ClientConfig
from .errors import SinkError
from .models import TimeSeries

logger = logging.getLogger(__name__)

IMPORT_PATH = "/api/v1/import"


@dataclass
class ImportErrorEvent:
    """A batch that could not be delivered"""
    batch: List[TimeSeries]
    err: Optional[BaseException]

    def timestamp_range(self):
        """Oldest and newest timestamp across the batch"""
        min_ts, max_ts = None, None
        for ts in self.batch:
            if not ts.timestamps:
                continue
            if min_ts is None or ts.timestamps[0] < min_ts:
                min_ts = ts.timestamps[0]
            if max_ts is None or ts.timestamps[-1] > max_ts:
                max_ts = ts.timestamps[-1]
        return min_ts, max_ts


@dataclass
class ImporterStats:
    """Counters of the import process"""
    samples: int = 0
    series: int = 0
    bytes: int = 0
    requests: int = 0
    retries: int = 0
    errors: int = 0
    import_duration: float = 0.0
    idle_duration: float = 0.0
    start_time: float = field(default_factory=time.time)

    def __str__(self) -> str:
        elapsed = max(time.time() - self.start_time, 1e-9)
        return (
            "VictoriaMetrics importer stats:\n"
            f"  idle duration: {self.idle_duration:.3f}s;\n"
            f"  time spent while importing: {self.import_duration:.3f}s;\n"
            f"  total series: {self.series:,};\n"
            f"  total samples: {self.samples:,};\n"
            f"  samples/s: {self.samples / elapsed:,.2f};\n"
            f"  total bytes: {self.bytes:,};\n"
            f"  bytes/s: {self.bytes / elapsed:,.2f};\n"
            f"  import requests: {self.requests:,};\n"
            f"  import requests retries: {self.retries:,};\n"
            f"  failed batches: {self.errors:,};"
        )


def serialize_series(ts: TimeSeries, extra_labels: Optional[Dict[str, str]] = None) -> bytes:
    """One JSON line in the /api/v1/import format"""
    metric = {"__name__": ts.name}
    for label in ts.label_pairs:
        if label.name:
            metric[label.name] = label.value
    if extra_labels:
        metric.update(extra_labels)
    line = {"metric": metric, "values": ts.values, "timestamps": ts.timestamps}
    return json.dumps(line, separators=(",", ":")).encode() + b"\n"


class VMImporter(BaseHTTPClient):
    """
    VictoriaMetrics importer with:
    - Bounded input queue
    - Parallel import workers with batch aggregation
    - Retries with exponential backoff
    - Asynchronous error reporting
    """

    name = "VictoriaMetrics"

    def __init__(self, config: ClientConfig, concurrency: int = 2, batch_size: int = 200_000,
                 queue_multiplier: int = 2, max_retries: int = 3, backoff_base_seconds: float = 0.5,
                 flush_interval_seconds: float = 2.0, extra_labels: Optional[Dict[str, str]] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(config, transport=transport)
        self.concurrency = max(concurrency, 1)
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.backoff_base_seconds = backoff_base_seconds
        self.flush_interval_seconds = flush_interval_seconds
        self.extra_labels = dict(extra_labels or {})

        self.input_queue: asyncio.Queue = asyncio.Queue(maxsize=self.concurrency * max(queue_multiplier, 1))
        self.errors: asyncio.Queue = asyncio.Queue()
        self.import_tasks: List[asyncio.Task] = []
        self.is_closed = False
        self._stats = ImporterStats()

    async def _ping(self):
        response = await self._require_client().get("/health")
        response.raise_for_status()

    async def connect(self) -> bool:
        """Connect and start the import workers"""
        if not await super().connect():
            return False
        self._start_import_workers()
        return True

    def _start_import_workers(self):
        self.import_tasks = [
            asyncio.create_task(self._import_worker(i))
            for i in range(self.concurrency)
        ]
        logger.info(f"Started {self.concurrency} import workers (batch size {self.batch_size:,} samples)")

    async def input(self, ts: TimeSeries):
        """Queue a series for import; blocks while the import workers are saturated"""
        if self.is_closed:
            raise SinkError("importer is closed")
        if not self.import_tasks:
            raise SinkError("importer is not connected")
        await self.input_queue.put(ts)

    async def _import_worker(self, worker_id: int):
        """Aggregate queued series into batches and import them"""
        batch: List[TimeSeries] = []
        samples = 0

        while True:
            idle_start = time.time()
            try:
                ts = await asyncio.wait_for(self.input_queue.get(), timeout=self.flush_interval_seconds)
            except asyncio.TimeoutError:
                self._stats.idle_duration += time.time() - idle_start
                if batch:
                    await self._flush(batch, worker_id)
                    batch, samples = [], 0
                continue
            self._stats.idle_duration += time.time() - idle_start

            if ts is None:  # End signal
                if batch:
                    await self._flush(batch, worker_id)
                logger.debug(f"Import worker {worker_id} completed")
                break

            batch.append(ts)
            samples += ts.samples
            if samples >= self.batch_size:
                await self._flush(batch, worker_id)
                batch, samples = [], 0

    async def _flush(self, batch: List[TimeSeries], worker_id: int):
        """Import one batch, reporting it on the error stream if every attempt fails"""
        samples = sum(ts.samples for ts in batch)
        metrics = self.start_operation("import")
        start = time.time()
        payload = b""

        for attempt in range(self.max_retries + 1):
            try:
                if not payload:
                    payload = b"".join(serialize_series(ts, self.extra_labels) for ts in batch)
                response = await self._require_client().post(
                    IMPORT_PATH, content=payload,
                    headers={"Content-Type": "application/json"}
                )
                self._stats.requests += 1
                response.raise_for_status()
                break
            except Exception as e:
                # non-HTTP failures are reported as well, without retries
                if attempt >= self.max_retries or not self._is_retryable(e):
                    self._stats.import_duration += time.time() - start
                    self._stats.errors += 1
                    self.end_operation(metrics, 0, False, str(e))
                    logger.error(f"Import worker {worker_id}: failed to import {len(batch)} series: {e}")
                    await self.errors.put(ImportErrorEvent(batch=batch, err=e))
                    return
                self._stats.retries += 1
                delay = self.backoff_base_seconds * (2 ** attempt)
                logger.warning(f"Import worker {worker_id}: import failed ({e}), retrying in {delay:.2f}s")
                await asyncio.sleep(delay)

        self._stats.import_duration += time.time() - start
        self._stats.samples += samples
        self._stats.series += len(batch)
        self._stats.bytes += len(payload)
        self.end_operation(metrics, samples, True)

    @staticmethod
    def _is_retryable(error: Exception) -> bool:
        if isinstance(error, httpx.HTTPStatusError):
            return error.response.status_code >= 500 or error.response.status_code == 429
        return isinstance(error, httpx.HTTPError)

    async def close(self):
        """Flush everything queued, stop the workers and end the error stream"""
        if self.is_closed:
            return
        self.is_closed = True

        for _ in self.import_tasks:
            await self.input_queue.put(None)
        if self.import_tasks:
            await asyncio.gather(*self.import_tasks)
        self.import_tasks = []

        await self.disconnect()
        await self.errors.put(None)
        logger.info("VictoriaMetrics importer closed")

    async def abort(self):
        """Stop the workers without flushing, used when the run is torn down after a failure"""
        self.is_closed = True
        for task in self.import_tasks:
            task.cancel()
        await asyncio.gather(*self.import_tasks, return_exceptions=True)
        self.import_tasks = []
        await self.disconnect()

    def reset_stats(self):
        self._stats = ImporterStats()

    def stats(self) -> ImporterStats:
        return replace(self._stats)
