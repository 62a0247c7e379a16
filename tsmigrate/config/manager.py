"""
Configuration Management
Settings for the OpenTSDB source, the VictoriaMetrics target and the run itself,
loaded from .env files, environment variables and optional JSON/YAML files
"""
import os
import logging
import string
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Any
from pathlib import Path
import json
import yaml
from dotenv import load_dotenv

from ..core.errors import ConfigError
from ..core.models import Retention
from ..core.retention import convert_retentions

logger = logging.getLogger(__name__)

DEFAULT_FILTERS = list(string.ascii_lowercase)


@dataclass
class SourceSettings:
    """OpenTSDB settings"""
    addr: str = "http://localhost:4242"
    concurrency: int = 1
    # OpenTSDB defaults meta queries to 10-25 results, far too few to discover everything
    query_limit: int = 100_000_000
    offset_days: int = 0
    hard_ts_start: int = 0
    retentions: List[str] = field(default_factory=list)
    filters: List[str] = field(default_factory=lambda: list(DEFAULT_FILTERS))
    normalize: bool = False
    msecs_time: bool = False
    timeout_seconds: float = 30.0
    dedupe_metrics: bool = False


@dataclass
class TargetSettings:
    """VictoriaMetrics settings"""
    addr: str = "http://localhost:8428"
    concurrency: int = 2
    batch_size: int = 200_000
    queue_multiplier: int = 2
    max_retries: int = 3
    backoff_base_seconds: float = 0.5
    timeout_seconds: float = 60.0
    user: Optional[str] = None
    password: Optional[str] = None
    extra_labels: Dict[str, str] = field(default_factory=dict)


@dataclass
class MonitoringSettings:
    """Progress and reporting settings"""
    disable_progress_bar: bool = False
    progress_smoothing: float = 0.1
    progress_miniters: int = 1


@dataclass
class FrameworkConfig:
    """Main configuration"""
    log_level: str = "INFO"
    log_file: Optional[str] = "tsmigrate.log"
    config_file: Optional[str] = None
    silent: bool = False
    verbose: bool = False

    source: SourceSettings = field(default_factory=SourceSettings)
    target: TargetSettings = field(default_factory=TargetSettings)
    monitoring: MonitoringSettings = field(default_factory=MonitoringSettings)

    def parsed_retentions(self) -> List[Retention]:
        """Retention windows, computed once per run"""
        return convert_retentions(self.source.retentions, self.source.offset_days)


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_labels(items: List[str]) -> Dict[str, str]:
    """Turn ``name=value`` strings into a label dict"""
    labels = {}
    for item in items:
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            raise ConfigError(f"invalid label {item!r}: expected name=value")
        labels[name.strip()] = value.strip()
    return labels


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class ConfigManager:
    """
    Configuration manager with support for:
    - .env files
    - Environment variables
    - Configuration files (JSON/YAML)
    - Command line overrides
    - Validation
    """

    def __init__(self, config_prefix: str = "TSMIGRATE"):
        self.config_prefix = config_prefix
        self.config: Optional[FrameworkConfig] = None
        self._load_environment_variables()

    def _load_environment_variables(self):
        """Load environment variables from .env files"""
        env_files = ['.env_local', '.env', 'config.env']
        for env_file in env_files:
            if Path(env_file).exists():
                load_dotenv(env_file)
                logger.info(f"Loaded environment variables from {env_file}")
                break

    def load_config(self, config_file: Optional[str] = None,
                    overrides: Optional[Dict[str, Any]] = None) -> FrameworkConfig:
        """Load configuration from file, environment variables and overrides, in that order"""
        config_data: Dict[str, Any] = {}

        if config_file:
            file_path = Path(config_file)
            if not file_path.exists():
                raise ConfigError(f"Configuration file not found: {config_file}")
            if file_path.suffix.lower() == '.env' or file_path.name.startswith('.env'):
                load_dotenv(config_file, override=True)
            else:
                self._merge(config_data, self._load_config_file(config_file))

        self._merge(config_data, self._load_from_environment())
        if overrides:
            self._merge(config_data, overrides)

        self.config = self._create_config_object(config_data)
        self.config.config_file = config_file

        self._validate_config(self.config)

        logger.info(f"Configuration loaded: {self.config.source.addr} -> {self.config.target.addr}")
        return self.config

    @staticmethod
    def _merge(base: Dict[str, Any], update: Dict[str, Any]):
        """Merge nested settings groups, later values winning"""
        for key, value in update.items():
            if isinstance(value, dict) and isinstance(base.get(key), dict) and key != "extra_labels":
                ConfigManager._merge(base[key], value)
            else:
                base[key] = value

    def _load_config_file(self, config_file: str) -> Dict[str, Any]:
        """Load configuration from JSON or YAML file"""
        file_path = Path(config_file)

        with open(file_path, 'r') as f:
            if file_path.suffix.lower() == '.json':
                data = json.load(f)
            elif file_path.suffix.lower() in ['.yml', '.yaml']:
                data = yaml.safe_load(f)
            else:
                raise ConfigError(f"Unsupported configuration file format: {file_path.suffix}")

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration file {config_file} must contain a mapping")
        return data

    def _env(self, name: str) -> Optional[str]:
        return os.getenv(f"{self.config_prefix}_{name}")

    def _load_from_environment(self) -> Dict[str, Any]:
        """Load configuration from environment variables; unset variables are left out"""
        config: Dict[str, Any] = {}

        def put(group: Optional[str], key: str, env_name: str, convert=str):
            raw = self._env(env_name)
            if raw is None or raw == "":
                return
            try:
                value = convert(raw)
            except ValueError as e:
                raise ConfigError(f"Invalid value for {self.config_prefix}_{env_name}: {raw!r}") from e
            if group is None:
                config[key] = value
            else:
                config.setdefault(group, {})[key] = value

        put(None, "log_level", "LOG_LEVEL")
        put(None, "log_file", "LOG_FILE")
        put(None, "silent", "SILENT", _as_bool)
        put(None, "verbose", "VERBOSE", _as_bool)

        # Source
        put("source", "addr", "OTSDB_ADDR")
        put("source", "concurrency", "OTSDB_CONCURRENCY", int)
        put("source", "query_limit", "OTSDB_QUERY_LIMIT", int)
        put("source", "offset_days", "OTSDB_OFFSET_DAYS", int)
        put("source", "hard_ts_start", "OTSDB_HARD_TS_START", int)
        put("source", "retentions", "OTSDB_RETENTIONS", _split_list)
        put("source", "filters", "OTSDB_FILTERS", _split_list)
        put("source", "normalize", "OTSDB_NORMALIZE", _as_bool)
        put("source", "msecs_time", "OTSDB_MSECSTIME", _as_bool)
        put("source", "timeout_seconds", "OTSDB_TIMEOUT_SECONDS", float)
        put("source", "dedupe_metrics", "OTSDB_DEDUPE_METRICS", _as_bool)

        # Target
        put("target", "addr", "VM_ADDR")
        put("target", "concurrency", "VM_CONCURRENCY", int)
        put("target", "batch_size", "VM_BATCH_SIZE", int)
        put("target", "queue_multiplier", "VM_QUEUE_MULTIPLIER", int)
        put("target", "max_retries", "VM_MAX_RETRIES", int)
        put("target", "backoff_base_seconds", "VM_BACKOFF_BASE_SECONDS", float)
        put("target", "timeout_seconds", "VM_TIMEOUT_SECONDS", float)
        put("target", "user", "VM_USER")
        put("target", "password", "VM_PASSWORD")
        put("target", "extra_labels", "VM_EXTRA_LABELS", lambda v: parse_labels(_split_list(v)))

        # Monitoring
        put("monitoring", "disable_progress_bar", "DISABLE_PROGRESS_BAR", _as_bool)
        put("monitoring", "progress_smoothing", "PROGRESS_SMOOTHING", float)
        put("monitoring", "progress_miniters", "PROGRESS_MINITERS", int)

        return config

    def _create_config_object(self, config_data: Dict[str, Any]) -> FrameworkConfig:
        """Create FrameworkConfig object from dictionary"""
        try:
            return FrameworkConfig(
                log_level=config_data.get("log_level", "INFO"),
                log_file=config_data.get("log_file", "tsmigrate.log"),
                silent=config_data.get("silent", False),
                verbose=config_data.get("verbose", False),
                source=SourceSettings(**config_data.get("source", {})),
                target=TargetSettings(**config_data.get("target", {})),
                monitoring=MonitoringSettings(**config_data.get("monitoring", {}))
            )
        except TypeError as e:
            raise ConfigError(f"Unknown configuration setting: {e}") from e

    def _validate_config(self, config: FrameworkConfig):
        """Validate configuration; bad retentions fail here, before any network activity"""
        errors = []

        if not config.source.addr:
            errors.append("OpenTSDB address is required")

        if not config.target.addr:
            errors.append("VictoriaMetrics address is required")

        if not config.source.retentions:
            errors.append("at least one retention is required")

        if not config.source.filters:
            errors.append("at least one metric filter is required")

        if config.source.query_limit <= 0:
            errors.append("query limit must be > 0")

        if config.target.concurrency <= 0:
            errors.append("VictoriaMetrics concurrency must be > 0")

        if config.target.batch_size <= 0:
            errors.append("VictoriaMetrics batch size must be > 0")

        if config.target.max_retries < 0:
            errors.append("max retries must be >= 0")

        if errors:
            raise ConfigError(f"Configuration validation failed: {'; '.join(errors)}")

        config.parsed_retentions()

    def save_config(self, config: FrameworkConfig, file_path: str):
        """Save configuration to file"""
        config_dict = asdict(config)
        config_dict.pop("config_file", None)
        # credentials never leave the process
        config_dict["target"].pop("password", None)

        file_path_obj = Path(file_path)
        with open(file_path_obj, 'w') as f:
            if file_path_obj.suffix.lower() == '.json':
                json.dump(config_dict, f, indent=2)
            elif file_path_obj.suffix.lower() in ['.yml', '.yaml']:
                yaml.dump(config_dict, f, default_flow_style=False)
            else:
                raise ConfigError(f"Unsupported file format: {file_path_obj.suffix}")
