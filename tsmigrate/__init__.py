"""
tsmigrate
Historical migration of OpenTSDB data into VictoriaMetrics
"""

__version__ = "1.0.0"

# Core components
from .core.client import BaseHTTPClient, ClientConfig, OperationMetrics
from .core.errors import (
    MigrationError,
    ConfigError,
    DiscoveryError,
    FetchError,
    SinkError,
    MigrationCancelled
)
from .core.models import (
    Series,
    TimeRange,
    Retention,
    RetentionMeta,
    QueryJob,
    FetchResult,
    LabelPair,
    TimeSeries
)
from .core.opentsdb import OpenTSDBClient
from .core.retention import convert_retention, convert_retentions, count_query_ranges
from .core.victoriametrics import VMImporter, ImportErrorEvent, ImporterStats

# Configuration management
from .config.manager import (
    ConfigManager,
    FrameworkConfig,
    SourceSettings,
    TargetSettings,
    MonitoringSettings,
    parse_labels
)

# Migration
from .migrations.engine import (
    MigrationEngine,
    create_migration_engine,
    describe_import_error
)

# Monitoring
from .monitoring.metrics import MigrationStats, MetricRunStats
from .monitoring.progress import ProgressReporter

__all__ = [
    # Core
    "BaseHTTPClient",
    "ClientConfig",
    "OperationMetrics",
    "MigrationError",
    "ConfigError",
    "DiscoveryError",
    "FetchError",
    "SinkError",
    "MigrationCancelled",
    "Series",
    "TimeRange",
    "Retention",
    "RetentionMeta",
    "QueryJob",
    "FetchResult",
    "LabelPair",
    "TimeSeries",
    "OpenTSDBClient",
    "convert_retention",
    "convert_retentions",
    "count_query_ranges",
    "VMImporter",
    "ImportErrorEvent",
    "ImporterStats",

    # Configuration
    "ConfigManager",
    "FrameworkConfig",
    "SourceSettings",
    "TargetSettings",
    "MonitoringSettings",
    "parse_labels",

    # Migration
    "MigrationEngine",
    "create_migration_engine",
    "describe_import_error",

    # Monitoring
    "MigrationStats",
    "MetricRunStats",
    "ProgressReporter"
]
