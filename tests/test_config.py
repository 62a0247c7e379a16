import json
import os
import string

import pytest
import yaml

from tsmigrate.config.manager import ConfigManager, parse_labels
from tsmigrate.core.errors import ConfigError

RETENTION = "sum-1m-avg:1h:3d"


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch, tmp_path):
    """No stray TSMIGRATE_* variables or .env files from the developer machine"""
    for name in list(os.environ):
        if name.startswith("TSMIGRATE_"):
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)


def test_defaults():
    config = ConfigManager().load_config(overrides={"source": {"retentions": [RETENTION]}})

    assert config.source.addr == "http://localhost:4242"
    assert config.source.concurrency == 1
    assert config.source.query_limit == 100_000_000
    assert config.source.filters == list(string.ascii_lowercase)
    assert config.source.dedupe_metrics is False
    assert config.target.addr == "http://localhost:8428"
    assert config.target.batch_size == 200_000
    assert config.log_file == "tsmigrate.log"
    assert len(config.parsed_retentions()) == 1


def test_environment_variables(monkeypatch):
    monkeypatch.setenv("TSMIGRATE_OTSDB_ADDR", "http://otsdb:4242")
    monkeypatch.setenv("TSMIGRATE_OTSDB_CONCURRENCY", "8")
    monkeypatch.setenv("TSMIGRATE_OTSDB_RETENTIONS", "sum-1m-avg:1h:3d, sum-1h-avg:1d:30d")
    monkeypatch.setenv("TSMIGRATE_OTSDB_FILTERS", "sys,app")
    monkeypatch.setenv("TSMIGRATE_OTSDB_NORMALIZE", "true")
    monkeypatch.setenv("TSMIGRATE_VM_ADDR", "http://vm:8428")
    monkeypatch.setenv("TSMIGRATE_VM_EXTRA_LABELS", "job=otsdb,env=prod")
    monkeypatch.setenv("TSMIGRATE_VERBOSE", "yes")

    config = ConfigManager().load_config()

    assert config.source.addr == "http://otsdb:4242"
    assert config.source.concurrency == 8
    assert config.source.retentions == ["sum-1m-avg:1h:3d", "sum-1h-avg:1d:30d"]
    assert config.source.filters == ["sys", "app"]
    assert config.source.normalize is True
    assert config.target.addr == "http://vm:8428"
    assert config.target.extra_labels == {"job": "otsdb", "env": "prod"}
    assert config.verbose is True


def test_file_then_environment_then_overrides(monkeypatch, tmp_path):
    path = tmp_path / "migration.yaml"
    path.write_text(yaml.safe_dump({
        "source": {"addr": "http://from-file:4242", "concurrency": 2, "retentions": [RETENTION]},
        "target": {"addr": "http://from-file:8428", "batch_size": 1000},
    }))
    monkeypatch.setenv("TSMIGRATE_OTSDB_CONCURRENCY", "4")
    monkeypatch.setenv("TSMIGRATE_VM_ADDR", "http://from-env:8428")

    config = ConfigManager().load_config(str(path), overrides={"target": {"addr": "http://from-cli:8428"}})

    assert config.source.addr == "http://from-file:4242"
    assert config.source.concurrency == 4
    assert config.target.addr == "http://from-cli:8428"
    assert config.target.batch_size == 1000
    assert config.config_file == str(path)


def test_json_file(tmp_path):
    path = tmp_path / "migration.json"
    path.write_text(json.dumps({"silent": True, "source": {"retentions": [RETENTION], "offset_days": 7}}))

    config = ConfigManager().load_config(str(path))

    assert config.silent is True
    assert config.source.offset_days == 7


def test_dotenv_file(monkeypatch, tmp_path):
    # registered so the value load_dotenv writes is removed afterwards
    monkeypatch.setenv("TSMIGRATE_OTSDB_ADDR", "")
    monkeypatch.setenv("TSMIGRATE_OTSDB_RETENTIONS", "")
    path = tmp_path / "migration.env"
    path.write_text(f"TSMIGRATE_OTSDB_ADDR=http://dotenv:4242\nTSMIGRATE_OTSDB_RETENTIONS={RETENTION}\n")

    config = ConfigManager().load_config(str(path))

    assert config.source.addr == "http://dotenv:4242"
    assert config.source.retentions == [RETENTION]


def test_invalid_retention_fails_validation():
    with pytest.raises(ConfigError, match="not a multiple"):
        ConfigManager().load_config(overrides={"source": {"retentions": ["sum-1h-avg:2h:5h"]}})


def test_retentions_are_required():
    with pytest.raises(ConfigError, match="at least one retention"):
        ConfigManager().load_config()


def test_validation_collects_every_problem():
    overrides = {"source": {"retentions": [RETENTION], "query_limit": 0}, "target": {"batch_size": 0}}

    with pytest.raises(ConfigError) as exc_info:
        ConfigManager().load_config(overrides=overrides)

    assert "query limit" in str(exc_info.value)
    assert "batch size" in str(exc_info.value)


def test_unknown_setting_is_rejected(tmp_path):
    path = tmp_path / "migration.json"
    path.write_text(json.dumps({"source": {"retentions": [RETENTION], "max_points": 5}}))

    with pytest.raises(ConfigError, match="Unknown configuration setting"):
        ConfigManager().load_config(str(path))


def test_bad_number_in_environment(monkeypatch):
    monkeypatch.setenv("TSMIGRATE_VM_BATCH_SIZE", "lots")

    with pytest.raises(ConfigError, match="TSMIGRATE_VM_BATCH_SIZE"):
        ConfigManager().load_config()


def test_missing_config_file():
    with pytest.raises(ConfigError, match="not found"):
        ConfigManager().load_config("does-not-exist.yaml")


def test_unsupported_config_format(tmp_path):
    path = tmp_path / "migration.toml"
    path.write_text("[source]\n")

    with pytest.raises(ConfigError, match="Unsupported"):
        ConfigManager().load_config(str(path))


def test_parse_labels():
    assert parse_labels(["job=otsdb", " env = prod "]) == {"job": "otsdb", "env": "prod"}
    assert parse_labels(["empty="]) == {"empty": ""}

    with pytest.raises(ConfigError):
        parse_labels(["novalue"])
    with pytest.raises(ConfigError):
        parse_labels(["=value"])


def test_save_config_leaves_out_password(tmp_path):
    manager = ConfigManager()
    config = manager.load_config(overrides={
        "source": {"retentions": [RETENTION]},
        "target": {"user": "admin", "password": "secret"},
    })
    path = tmp_path / "saved.yaml"

    manager.save_config(config, str(path))

    saved = yaml.safe_load(path.read_text())
    assert saved["target"]["user"] == "admin"
    assert "password" not in saved["target"]
    assert saved["source"]["retentions"] == [RETENTION]
