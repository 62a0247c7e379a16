#!/usr/bin/env python3
"""
OpenTSDB Migration Script
Copies historical OpenTSDB data into VictoriaMetrics, one retention window at a time
"""
import asyncio
import logging
import signal
import sys
import argparse
from typing import Any, Dict, List, Optional

from tsmigrate import (
    ConfigManager,
    ConfigError,
    MigrationCancelled,
    create_migration_engine,
    parse_labels
)

logger = logging.getLogger(__name__)

EXIT_CANCELLED = 130


def setup_logging(level: str, log_file: Optional[str]):
    """Console plus optional file logging"""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )


def prompt(question: str) -> bool:
    """Ask a yes/no question on the terminal; anything but y/yes declines"""
    try:
        answer = input(f"{question} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Migrate historical data from OpenTSDB to VictoriaMetrics')
    parser.add_argument('--config', '-c', default=None,
                        help='Configuration file (.env, .json or .yaml)')

    source = parser.add_argument_group('OpenTSDB')
    source.add_argument('--otsdb-addr', help='OpenTSDB server address, e.g. http://localhost:4242')
    source.add_argument('--otsdb-concurrency', type=int,
                        help='Number of concurrently running fetch queries to OpenTSDB per metric')
    source.add_argument('--otsdb-query-limit', type=int,
                        help='Result limit for metric and series discovery queries')
    source.add_argument('--otsdb-offset-days', type=int,
                        help='Days to offset every retention window back in time')
    source.add_argument('--otsdb-hard-ts-start', type=int,
                        help='Reference unix timestamp (seconds) to query back from instead of now')
    source.add_argument('--otsdb-retentions', action='append', metavar='RETENTION',
                        help='Retention to migrate, e.g. sum-1m-avg:1h:3d (repeatable)')
    source.add_argument('--otsdb-filters', action='append', metavar='PREFIX',
                        help='Metric name prefix to discover (repeatable, defaults to a-z)')
    source.add_argument('--otsdb-normalize', action='store_true', default=None,
                        help='Lowercase metric names and tags')
    source.add_argument('--otsdb-msecstime', action='store_true', default=None,
                        help='OpenTSDB stores timestamps in milliseconds')

    target = parser.add_argument_group('VictoriaMetrics')
    target.add_argument('--vm-addr', help='VictoriaMetrics address, e.g. http://localhost:8428')
    target.add_argument('--vm-concurrency', type=int, help='Number of concurrent import workers')
    target.add_argument('--vm-batch-size', type=int, help='Samples per import request')
    target.add_argument('--vm-user', help='Basic auth user')
    target.add_argument('--vm-password', help='Basic auth password')
    target.add_argument('--vm-extra-label', action='append', metavar='NAME=VALUE',
                        help='Label added to every imported series (repeatable)')

    run = parser.add_argument_group('Run')
    run.add_argument('--silent', '-s', action='store_true', default=None,
                     help='Do not ask for confirmation before importing')
    run.add_argument('--verbose', action='store_true', default=None,
                     help='Include failed batch details in import errors')
    run.add_argument('--disable-progress-bar', action='store_true', default=None,
                     help='Hide the per-metric progress bar')
    run.add_argument('--log-level', help='Logging level (DEBUG, INFO, WARNING, ERROR)')
    return parser


def build_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Settings given on the command line, in configuration layout"""
    overrides: Dict[str, Any] = {}

    def put(group: Optional[str], key: str, value):
        if value is None:
            return
        if group is None:
            overrides[key] = value
        else:
            overrides.setdefault(group, {})[key] = value

    put(None, "silent", args.silent)
    put(None, "verbose", args.verbose)
    put(None, "log_level", args.log_level)

    put("source", "addr", args.otsdb_addr)
    put("source", "concurrency", args.otsdb_concurrency)
    put("source", "query_limit", args.otsdb_query_limit)
    put("source", "offset_days", args.otsdb_offset_days)
    put("source", "hard_ts_start", args.otsdb_hard_ts_start)
    put("source", "retentions", args.otsdb_retentions)
    put("source", "filters", args.otsdb_filters)
    put("source", "normalize", args.otsdb_normalize)
    put("source", "msecs_time", args.otsdb_msecstime)

    put("target", "addr", args.vm_addr)
    put("target", "concurrency", args.vm_concurrency)
    put("target", "batch_size", args.vm_batch_size)
    put("target", "user", args.vm_user)
    put("target", "password", args.vm_password)
    if args.vm_extra_label:
        put("target", "extra_labels", parse_labels(args.vm_extra_label))

    put("monitoring", "disable_progress_bar", args.disable_progress_bar)
    return overrides


async def main(argv: Optional[List[str]] = None) -> int:
    """Main function for the OpenTSDB migration"""
    args = build_parser().parse_args(argv)

    try:
        config_manager = ConfigManager("TSMIGRATE")
        config = config_manager.load_config(args.config, build_overrides(args))
    except ConfigError as e:
        setup_logging("INFO", None)
        logger.error(f"❌ Invalid configuration: {e}")
        return 1

    setup_logging(config.log_level, config.log_file)
    logger.info("🚀 Starting OpenTSDB migration")
    logger.info(f"Source: {config.source.addr} (concurrency {max(config.source.concurrency, 1)})")
    logger.info(f"Target: {config.target.addr} (concurrency {config.target.concurrency})")
    logger.info(f"Retentions: {', '.join(config.source.retentions)}")

    engine = create_migration_engine(config)

    loop = asyncio.get_running_loop()

    def handle_signal(signum, frame):
        logger.warning(f"⚠️  Received signal {signum}, stopping after in-flight jobs...")
        loop.call_soon_threadsafe(engine.cancel)

    previous_handlers = {
        signum: signal.signal(signum, handle_signal)
        for signum in (signal.SIGINT, signal.SIGTERM)
    }

    try:
        if not await engine.initialize():
            logger.error("Failed to initialize migration engine")
            return 1

        async def ask(count: int) -> bool:
            return await asyncio.to_thread(prompt, f"Found {count} metrics to import. Continue?")

        result = await engine.migrate(confirm=None if config.silent else ask)
        if result["status"] == "declined":
            return 0

        summary = result["migration_stats"]
        logger.info("📊 Final Results:")
        logger.info(f"   • Metrics migrated: {summary['metrics_completed']}/{summary['metrics_discovered']}")
        logger.info(f"   • Series: {summary['series']:,}")
        logger.info(f"   • Jobs: {summary['jobs_processed']:,} ({summary['jobs_skipped']:,} empty)")
        logger.info(f"   • Samples: {summary['samples']:,}")
        logger.info(f"   • Source performance: {result['source_performance']}")
        logger.debug(f"Run statistics:\n{engine.stats.export('json')}")
        return 0

    except MigrationCancelled as e:
        logger.warning(f"🛑 Migration cancelled: {e}")
        return EXIT_CANCELLED

    except Exception as e:
        logger.error(f"❌ Migration failed: {e}")
        return 1

    finally:
        await engine.cleanup()
        for signum, handler in previous_handlers.items():
            signal.signal(signum, handler)


def run():
    """Console script entry point"""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
