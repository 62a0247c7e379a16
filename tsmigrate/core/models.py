"""
Core Data Model
Series, retentions and the unit of work passed from the dispatcher to the fetch workers
"""
from dataclasses import dataclass, field
from typing import Dict, List, Tuple


@dataclass(frozen=True)
class Series:
    """One concrete time series: a metric plus its tag set"""
    metric: str
    tags: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def from_tags(cls, metric: str, tags: Dict[str, str]) -> "Series":
        return cls(metric=metric, tags=tuple(sorted(tags.items())))

    @property
    def tag_map(self) -> Dict[str, str]:
        return dict(self.tags)

    def __str__(self) -> str:
        tags = ",".join(f"{k}={v}" for k, v in self.tags)
        return f"{self.metric}{{{tags}}}"


@dataclass(frozen=True)
class TimeRange:
    """Offsets in seconds subtracted from the reference timestamp; start is the older edge"""
    start: int
    end: int

    def __str__(self) -> str:
        return f"[-{self.start}s, -{self.end}s)"


@dataclass(frozen=True)
class RetentionMeta:
    """Aggregation descriptor of a retention, without its windows"""
    first_order: str
    agg_time: str
    second_order: str

    def __str__(self) -> str:
        return f"{self.first_order}-{self.agg_time}-{self.second_order}"


@dataclass(frozen=True)
class Retention:
    """A downsampling policy and the windows it is queried over, newest window first"""
    first_order: str
    agg_time: str
    second_order: str
    query_ranges: Tuple[TimeRange, ...]

    @property
    def meta(self) -> RetentionMeta:
        return RetentionMeta(
            first_order=self.first_order,
            agg_time=self.agg_time,
            second_order=self.second_order
        )


@dataclass(frozen=True)
class QueryJob:
    """Fetch one series for one window and forward it"""
    series: Series
    retention: RetentionMeta
    time_range: TimeRange
    start_time: int

    @property
    def query_start(self) -> int:
        return self.start_time - self.time_range.start

    @property
    def query_end(self) -> int:
        return self.start_time - self.time_range.end

    def __str__(self) -> str:
        return f"{self.series} in {self.retention}:{self.time_range}"


@dataclass
class FetchResult:
    """Datapoints returned by the source for one job; timestamps in milliseconds"""
    metric: str
    tags: Dict[str, str] = field(default_factory=dict)
    timestamps: List[int] = field(default_factory=list)
    values: List[float] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return len(self.timestamps) < 1 or len(self.values) < 1


@dataclass(frozen=True)
class LabelPair:
    name: str
    value: str


@dataclass
class TimeSeries:
    """Normalized form submitted to the destination"""
    name: str
    label_pairs: List[LabelPair]
    timestamps: List[int]
    values: List[float]

    @property
    def samples(self) -> int:
        return len(self.timestamps)
