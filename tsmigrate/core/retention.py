"""
Retention Planner
Turns retention patterns such as ``sum-1m-avg:1h:3d`` into ordered query windows.

A pattern has three ``:``-separated parts:

- the aggregation: ``<first order>-<bucket>-<second order>``
- the row size: how long each individual query is (should match the HBase row size)
- the total span to collect

Each window is exactly one row long so that a single query lands on a single
storage row on the source. Windows are measured backward from the run's
reference timestamp, newest first.
"""
import logging
import re
from typing import Iterable, List

from .errors import ConfigError
from .models import Retention, TimeRange

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60

DURATION_UNITS = {
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": SECONDS_PER_DAY,
    "w": 7 * SECONDS_PER_DAY,
    "n": 30 * SECONDS_PER_DAY,
    "y": 365 * SECONDS_PER_DAY,
}

AGGREGATORS = frozenset([
    "avg", "count", "dev", "diff", "first", "last", "max", "median", "min",
    "mimmax", "mimmin", "mult", "none", "sum", "zimsum",
    "p50", "p75", "p90", "p95", "p99", "p999",
    "ep50r3", "ep50r7", "ep75r3", "ep75r7", "ep90r3", "ep90r7",
    "ep95r3", "ep95r7", "ep99r3", "ep99r7", "ep999r3", "ep999r7",
])

_DURATION_RE = re.compile(r"^(\d+)([a-z]+)$")


def parse_duration(token: str) -> int:
    """Parse an OpenTSDB style duration (``1h``, ``3d``) into seconds"""
    match = _DURATION_RE.match(token.strip())
    if not match:
        raise ConfigError(f"invalid duration {token!r}: expected <number><unit>")
    amount, unit = match.groups()
    if unit not in DURATION_UNITS:
        raise ConfigError(
            f"invalid duration {token!r}: unit {unit!r} is not one of {', '.join(DURATION_UNITS)}"
        )
    return int(amount) * DURATION_UNITS[unit]


def _parse_aggregation(chunk: str, retention: str):
    parts = chunk.split("-")
    if len(parts) != 3:
        raise ConfigError(
            f"invalid aggregation {chunk!r} in retention {retention!r}: expected e.g. sum-1m-avg"
        )
    first_order, agg_time, second_order = parts
    for agg in (first_order, second_order):
        if agg not in AGGREGATORS:
            raise ConfigError(f"unknown aggregator {agg!r} in retention {retention!r}")
    # validated for shape only, OpenTSDB receives the token verbatim
    parse_duration(agg_time)
    return first_order, agg_time, second_order


def convert_retention(retention: str, offset_days: int = 0) -> Retention:
    """Expand one retention pattern into a Retention with all of its windows"""
    chunks = retention.strip().split(":")
    if len(chunks) != 3:
        raise ConfigError(
            f"invalid retention {retention!r}: expected <agg>:<row size>:<total span>, e.g. sum-1m-avg:1h:3d"
        )
    first_order, agg_time, second_order = _parse_aggregation(chunks[0], retention)
    row_length = parse_duration(chunks[1])
    query_length = parse_duration(chunks[2])

    if row_length <= 0:
        raise ConfigError(f"invalid retention {retention!r}: row size must be positive")
    if row_length > query_length:
        raise ConfigError(
            f"invalid retention {retention!r}: row size {chunks[1]} is larger than time range {chunks[2]}"
        )
    if query_length % row_length != 0:
        raise ConfigError(
            f"invalid retention {retention!r}: time range {chunks[2]} is not a multiple of row size {chunks[1]}"
        )
    if offset_days < 0:
        raise ConfigError(f"offset days must not be negative, got {offset_days}")

    offset = offset_days * SECONDS_PER_DAY
    query_ranges = tuple(
        TimeRange(start=offset + i + row_length, end=offset + i)
        for i in range(0, query_length, row_length)
    )
    logger.debug(f"Retention {retention} expanded into {len(query_ranges)} windows")
    return Retention(
        first_order=first_order,
        agg_time=agg_time,
        second_order=second_order,
        query_ranges=query_ranges
    )


def convert_retentions(retentions: Iterable[str], offset_days: int = 0) -> List[Retention]:
    """Expand every retention pattern, failing on the first invalid one"""
    converted = [convert_retention(r, offset_days) for r in retentions]
    if not converted:
        raise ConfigError("at least one retention is required")
    return converted


def count_query_ranges(retentions: Iterable[Retention]) -> int:
    """Number of windows each series is queried over"""
    return sum(len(r.query_ranges) for r in retentions)
