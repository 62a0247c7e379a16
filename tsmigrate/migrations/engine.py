"""
Migration Engine
Replays every OpenTSDB series matching the configured filters into VictoriaMetrics.

For each metric the engine lists its series, then feeds one QueryJob per
(series, retention, time range) into a bounded queue drained by a fixed pool
of fetch workers. Every enqueue races the worker error queue, the importer's
asynchronous error stream and the cancellation event, so a failure on either
side stops new work immediately. The queue and the workers live only as long
as their metric: they are torn down before the next metric starts.
"""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..config.manager import FrameworkConfig
from ..core.client import ClientConfig
from ..core.errors import (
    DiscoveryError,
    FetchError,
    MigrationCancelled,
    MigrationError,
    SinkError,
)
from ..core.models import LabelPair, QueryJob, Series, TimeSeries
from ..core.opentsdb import OpenTSDBClient
from ..core.retention import count_query_ranges
from ..core.victoriametrics import ImportErrorEvent, VMImporter
from ..monitoring.metrics import MigrationStats
from ..monitoring.progress import ProgressReporter

logger = logging.getLogger(__name__)


def describe_import_error(event: ImportErrorEvent, verbose: bool = False) -> str:
    """Human readable description of a failed import batch"""
    min_ts, max_ts = event.timestamp_range()
    lines = [f"{event.err}", f"\tImporting batch failed for timestamps range {min_ts} - {max_ts}"]
    if verbose:
        for ts in event.batch:
            if ts.timestamps:
                labels = ",".join(f"{label.name}={label.value}" for label in ts.label_pairs)
                lines.append(f"\t{ts.name}{{{labels}}} for timestamps range {ts.timestamps[0]} - {ts.timestamps[-1]}")
    else:
        lines[-1] += " (enable --verbose output to get more details)"
    return "\n".join(lines)


class MigrationEngine:
    """
    OpenTSDB to VictoriaMetrics migration engine with:
    - Metric and series discovery
    - Retention driven query windows
    - A bounded fetch worker pool per metric
    - Fail-fast error handling across source and target
    """

    def __init__(self, config: FrameworkConfig, source_client=None, target_client=None,
                 progress: Optional[ProgressReporter] = None,
                 cancel_event: Optional[asyncio.Event] = None):
        self.config = config
        self.source_client = source_client
        self.target_client = target_client
        self.retentions = config.parsed_retentions()
        self.concurrency = max(config.source.concurrency, 1)
        self.stats = MigrationStats()
        self.progress = progress or ProgressReporter(
            disabled=config.monitoring.disable_progress_bar,
            smoothing=config.monitoring.progress_smoothing,
            miniters=config.monitoring.progress_miniters
        )
        self.cancel_event = cancel_event or asyncio.Event()
        self.start_time: Optional[int] = None

    async def initialize(self) -> bool:
        """Create missing clients and connect both stores"""
        if self.source_client is None:
            self.source_client = OpenTSDBClient(
                ClientConfig(
                    addr=self.config.source.addr,
                    timeout_seconds=self.config.source.timeout_seconds,
                    max_connections=self.concurrency
                ),
                query_limit=self.config.source.query_limit,
                normalize=self.config.source.normalize
            )

        if self.target_client is None:
            target = self.config.target
            self.target_client = VMImporter(
                ClientConfig(
                    addr=target.addr,
                    timeout_seconds=target.timeout_seconds,
                    user=target.user,
                    password=target.password,
                    max_connections=target.concurrency
                ),
                concurrency=target.concurrency,
                batch_size=target.batch_size,
                queue_multiplier=target.queue_multiplier,
                max_retries=target.max_retries,
                backoff_base_seconds=target.backoff_base_seconds,
                extra_labels=target.extra_labels
            )

        if not await self.source_client.connect():
            return False

        if not await self.target_client.connect():
            return False

        logger.info("Migration engine initialized successfully")
        return True

    def cancel(self):
        """Ask the run to stop; checked between metrics and on every enqueue"""
        self.cancel_event.set()

    async def discover_metrics(self) -> List[str]:
        """Metric names matching any of the configured filters"""
        filters = self.config.source.filters
        logger.info(f"Loading all metrics from OpenTSDB for filters: {filters}")

        metrics: List[str] = []
        for query_filter in filters:
            try:
                found = await self.source_client.find_metrics(query_filter)
            except Exception as e:
                raise DiscoveryError(f"metric discovery failed for {query_filter!r}: {e}") from e
            metrics.extend(found)

        if self.config.source.dedupe_metrics:
            metrics = list(dict.fromkeys(metrics))

        if not metrics:
            raise DiscoveryError(f"found no timeseries to import with filters {filters}")
        return metrics

    async def list_series(self, metric: str) -> List[Series]:
        try:
            return await self.source_client.find_series(metric)
        except Exception as e:
            raise DiscoveryError(f"couldn't retrieve series list for {metric}: {e}") from e

    async def migrate(self, confirm: Optional[Callable[[int], Awaitable[bool]]] = None) -> Dict[str, Any]:
        """
        Run the whole migration

        ``confirm`` is awaited with the number of metrics found and may decline
        the run; pass None to run unattended.
        """
        metrics = await self.discover_metrics()
        self.stats.metrics_discovered = len(metrics)
        logger.info(f"📊 Found {len(metrics)} metrics to import")

        if confirm is not None and not await confirm(len(metrics)):
            logger.info("Import declined, nothing was migrated")
            return self._get_final_stats("declined")

        self.target_client.reset_stats()
        self.start_time = self.config.source.hard_ts_start or int(time.time())
        query_ranges = count_query_ranges(self.retentions)
        logger.info(
            f"Reference timestamp {self.start_time}, {query_ranges} query windows per series, "
            f"{self.concurrency} fetch workers"
        )

        for metric in metrics:
            if self.cancel_event.is_set():
                raise MigrationCancelled("migration interrupted before processing " + metric)
            await self._migrate_metric(metric, query_ranges)
            logger.info(str(self.target_client.stats()))

        await self.target_client.close()
        await self._drain_import_errors()

        logger.info("🎉 Import finished!")
        logger.info(str(self.target_client.stats()))
        return self._get_final_stats("completed")

    def _iter_jobs(self, series_list: List[Series]):
        """Series-major, retention-minor, time range innermost"""
        for series in series_list:
            for retention in self.retentions:
                meta = retention.meta
                for time_range in retention.query_ranges:
                    yield QueryJob(
                        series=series,
                        retention=meta,
                        time_range=time_range,
                        start_time=self.start_time
                    )

    async def _migrate_metric(self, metric: str, query_ranges: int):
        """Discover, dispatch and drain all jobs of one metric"""
        logger.info(f"Starting work on {metric}")
        series_list = await self.list_series(metric)
        total_jobs = len(series_list) * query_ranges
        self.stats.start_metric(metric, len(series_list), total_jobs)

        if total_jobs == 0:
            logger.info(f"No series found for {metric}, skipping")
            self.stats.end_metric()
            return

        # bounded so the dispatcher can't get far ahead of the workers
        jobs: asyncio.Queue = asyncio.Queue(maxsize=self.concurrency)
        errors: asyncio.Queue = asyncio.Queue()
        self.progress.start(metric, total_jobs)
        workers = [
            asyncio.create_task(self._fetch_worker(i, jobs, errors))
            for i in range(self.concurrency)
        ]

        failure: Optional[MigrationError] = None
        try:
            for job in self._iter_jobs(series_list):
                failure = await self._enqueue(jobs, job, errors, metric)
                if failure is not None:
                    break

            if failure is None:
                for _ in workers:
                    failure = await self._enqueue(jobs, None, errors, metric)
                    if failure is not None:
                        break

            if failure is not None:
                self._abandon_jobs(jobs, len(workers))

            await asyncio.gather(*workers)

            # a worker may fail on its very last job, after everything was queued
            if failure is None and not errors.empty():
                failure = errors.get_nowait()
            if failure is None and not self.target_client.errors.empty():
                failure = self._import_failure(self.target_client.errors.get_nowait())
        finally:
            for task in workers:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            self.progress.finish()

        if failure is not None:
            self.stats.end_metric(success=False)
            logger.error(f"❌ Migration of {metric} failed: {failure}")
            raise failure

        finished = self.stats.end_metric()
        logger.info(
            f"✅ {metric}: {finished.jobs_processed}/{finished.jobs_total} jobs, "
            f"{finished.jobs_skipped} empty, {finished.samples:,} samples in {finished.duration:.2f}s"
        )

    async def _enqueue(self, jobs: asyncio.Queue, job: Optional[QueryJob],
                       errors: asyncio.Queue, metric: str) -> Optional[MigrationError]:
        """
        Put ``job`` on the queue unless a failure or cancellation shows up first

        Returns the failure that won the race, or None once the job is queued.
        Failures take priority over a successful put when both are ready.
        """
        if not errors.empty():
            return errors.get_nowait()
        if not self.target_client.errors.empty():
            return self._import_failure(self.target_client.errors.get_nowait())
        if self.cancel_event.is_set():
            return MigrationCancelled(f"migration interrupted while processing {metric}")
        try:
            jobs.put_nowait(job)
            return None
        except asyncio.QueueFull:
            pass

        put_task = asyncio.create_task(jobs.put(job))
        fetch_error = asyncio.create_task(errors.get())
        sink_error = asyncio.create_task(self.target_client.errors.get())
        cancelled = asyncio.create_task(self.cancel_event.wait())
        race = (put_task, fetch_error, sink_error, cancelled)
        try:
            await asyncio.wait(race, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in race:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*race, return_exceptions=True)

        failure = None
        if fetch_error.done() and not fetch_error.cancelled():
            failure = fetch_error.result()
        if sink_error.done() and not sink_error.cancelled():
            event = sink_error.result()
            if failure is None:
                failure = self._import_failure(event)
            else:
                # keep it for the final drain
                self.target_client.errors.put_nowait(event)
        if failure is not None:
            return failure
        if cancelled.done() and not cancelled.cancelled():
            return MigrationCancelled(f"migration interrupted while processing {metric}")
        return None

    @staticmethod
    def _abandon_jobs(jobs: asyncio.Queue, worker_count: int):
        """Drop queued jobs and queue one end signal per worker"""
        dropped = 0
        while not jobs.empty():
            if jobs.get_nowait() is not None:
                dropped += 1
        for _ in range(worker_count):
            jobs.put_nowait(None)
        if dropped:
            logger.debug(f"Dropped {dropped} queued jobs after failure")

    async def _fetch_worker(self, worker_id: int, jobs: asyncio.Queue, errors: asyncio.Queue):
        """Process jobs until the end signal; publish the first failure and stop"""
        while True:
            job = await jobs.get()
            if job is None:  # End signal
                logger.debug(f"Fetch worker {worker_id} completed")
                return
            try:
                await self.process(job)
            except Exception as e:
                self.stats.job_failed()
                if not isinstance(e, MigrationError):
                    e = FetchError(f"unexpected failure processing {job}: {e}",
                                   series=job.series, retention=job.retention,
                                   time_range=job.time_range, cause=e)
                logger.debug(f"Fetch worker {worker_id} failed: {e}")
                errors.put_nowait(e)
                return
            self.progress.increment()

    async def process(self, job: QueryJob) -> int:
        """Fetch one job's window and forward it; returns the number of samples sent"""
        start = job.query_start
        end = job.query_end
        try:
            data = await self.source_client.get_data(
                job.series, job.retention, start, end, self.config.source.msecs_time
            )
        except Exception as e:
            raise FetchError(
                f"failed to collect data for {job.series} in {job.retention}:{job.time_range} "
                f"({start} - {end}): {e}",
                series=job.series, retention=job.retention, time_range=job.time_range, cause=e
            ) from e

        if data.is_empty:
            self.stats.job_skipped()
            return 0

        ts = TimeSeries(
            name=data.metric,
            label_pairs=[LabelPair(name=k, value=v) for k, v in data.tags.items()],
            timestamps=data.timestamps,
            values=data.values
        )
        try:
            await self.target_client.input(ts)
        except Exception as e:
            raise SinkError(
                f"failed to submit {job.series} in {job.retention}:{job.time_range}: {e}", cause=e
            ) from e

        self.stats.job_done(ts.samples)
        return ts.samples

    def _import_failure(self, event: Optional[ImportErrorEvent]) -> SinkError:
        if event is None:
            return SinkError("import process failed: error stream ended unexpectedly")
        return SinkError(
            f"import process failed: {describe_import_error(event, self.config.verbose)}",
            batch_summary=describe_import_error(event, verbose=True),
            cause=event.err
        )

    async def _drain_import_errors(self):
        """Consume the importer's error stream up to its end marker"""
        while True:
            event = await self.target_client.errors.get()
            if event is None:
                return
            if event.err is not None:
                raise self._import_failure(event)

    def _get_final_stats(self, status: str) -> Dict[str, Any]:
        """Final migration statistics"""
        return {
            "status": status,
            "migration_stats": self.stats.get_summary(),
            "recent_metrics": self.stats.recent_metrics(),
            "source_performance": self.source_client.get_performance_summary(),
            "target_stats": str(self.target_client.stats()),
        }

    async def cleanup(self):
        """Release clients; an importer that was not closed cleanly is aborted"""
        self.progress.finish()
        if self.target_client is not None and not self.target_client.is_closed:
            await self.target_client.abort()
        if self.source_client is not None:
            await self.source_client.disconnect()
        logger.info("Migration engine cleaned up")


def create_migration_engine(config: FrameworkConfig, **kwargs) -> MigrationEngine:
    """Create a migration engine with the given configuration"""
    return MigrationEngine(config, **kwargs)
