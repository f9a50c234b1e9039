"""Tests for config loading.

Tests:
- load_simulation_config: valid TOML → SimulationConfig with a built Table
- Defaults for omitted sections
- Seed handling: from config, override, None
- Validation: invalid configs raise ConfigurationError, warnings logged
- compute_config_hash: seed-independent, config-sensitive
"""

import logging
import os
import tempfile

import pytest

from hudisim.config import (
    ConfigurationError,
    build_simulation_config,
    compute_config_hash,
    load_simulation_config,
    validate_config,
)
from hudisim.simulation import SimulationClock, SimulationConfig
from hudisim.table import Table
from hudisim.writer import OperationKind, WriteMode


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def write_toml(content: str) -> str:
    """Write TOML content to a temp file and return its path."""
    fd, path = tempfile.mkstemp(suffix=".toml")
    os.write(fd, content.encode())
    os.close(fd)
    return path


FULL_CONFIG = """\
[simulation]
duration_ms = 30000
seed = 42
epoch = "2025-08-10T00:00:00+00:00"

[table]
dataset = "retail"
write_mode = "mor"
initial_partitions = ["p0", "p1", "p2"]

[ingest]
auto = true
rate = 5
tick_ms = 500
commit_interval_ms = 2000
operation = "insert"

[services]
compaction_schedule_interval_ms = 10000
compaction_run_interval_ms = 15000
clean_interval_ms = 20000
clean_keep = 2
"""

MINIMAL_CONFIG = """\
[simulation]
duration_ms = 5000
seed = 7
"""


# ---------------------------------------------------------------------------
# load_simulation_config
# ---------------------------------------------------------------------------

class TestLoadSimulationConfig:

    def test_full_config(self):
        path = write_toml(FULL_CONFIG)
        try:
            config = load_simulation_config(path)
            assert isinstance(config, SimulationConfig)
            assert config.duration_ms == 30000
            assert config.seed == 42
            assert config.ingest_rate == 5
            assert config.tick_ms == 500
            assert config.commit_interval_ms == 2000
            assert config.operation == OperationKind.INSERT
            assert config.compaction_schedule_interval_ms == 10000
            assert config.compaction_run_interval_ms == 15000
            assert config.clean_interval_ms == 20000
            assert config.clean_keep == 2
        finally:
            os.unlink(path)

    def test_table_is_built(self):
        path = write_toml(FULL_CONFIG)
        try:
            config = load_simulation_config(path)
            assert isinstance(config.table, Table)
            assert config.table.dataset.key == "retail"
            assert config.table.write_mode == WriteMode.MERGE_ON_READ
            assert [g.partition for g in config.table.list_file_groups()] == ["p0", "p1", "p2"]
        finally:
            os.unlink(path)

    def test_table_uses_simulation_clock(self):
        path = write_toml(FULL_CONFIG)
        try:
            config = load_simulation_config(path)
            assert isinstance(config.clock, SimulationClock)
            assert config.table.clock is config.clock
            assert config.clock.now().isoformat() == "2025-08-10T00:00:00+00:00"
        finally:
            os.unlink(path)

    def test_defaults(self):
        path = write_toml(MINIMAL_CONFIG)
        try:
            config = load_simulation_config(path)
            assert config.table.dataset.key == "nycTaxi"
            assert config.table.write_mode == WriteMode.MERGE_ON_READ
            assert [g.partition for g in config.table.list_file_groups()] == ["p0", "p1"]
            assert config.auto_ingest is True
            assert config.ingest_rate == 2
            assert config.operation == OperationKind.UPSERT
            assert config.compaction_run_interval_ms == 0
            assert config.clean_keep == 1
        finally:
            os.unlink(path)

    def test_seed_override(self):
        path = write_toml(MINIMAL_CONFIG)
        try:
            config = load_simulation_config(path, seed_override=999)
            assert config.seed == 999
        finally:
            os.unlink(path)

    def test_largest_seed(self):
        config = build_simulation_config({"simulation": {"duration_ms": 1000, "seed": 2**32 - 1}})
        assert config.seed == 2**32 - 1
        assert len(config.table.dataset.generate(2)) == 2

    def test_seed_out_of_range(self):
        with pytest.raises(ConfigurationError):
            build_simulation_config({"simulation": {"duration_ms": 1000, "seed": 2**32}})

    def test_no_seed_in_config(self):
        path = write_toml("[simulation]\nduration_ms = 1000\n")
        try:
            config = load_simulation_config(path)
            assert config.seed is None
        finally:
            os.unlink(path)

    def test_same_seed_same_rows(self):
        path = write_toml(MINIMAL_CONFIG)
        try:
            a = load_simulation_config(path).table.dataset.generate(5)
            b = load_simulation_config(path).table.dataset.generate(5)
            assert a == b
        finally:
            os.unlink(path)

    def test_invalid_file_raises(self):
        path = write_toml("[table]\nwrite_mode = \"append\"\n")
        try:
            with pytest.raises(ConfigurationError) as excinfo:
                load_simulation_config(path)
            assert any("write_mode" in e for e in excinfo.value.errors)
        finally:
            os.unlink(path)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class TestValidateConfig:

    def test_valid(self):
        errors, warnings = validate_config({"simulation": {"duration_ms": 1000}})
        assert errors == []
        assert warnings == []

    @pytest.mark.parametrize("raw,field", [
        ({"simulation": {"duration_ms": 0}}, "duration_ms"),
        ({"simulation": {"seed": -1}}, "seed"),
        ({"simulation": {"seed": 2**32}}, "seed"),
        ({"simulation": {"epoch": "yesterday"}}, "epoch"),
        ({"table": {"dataset": "orders"}}, "dataset"),
        ({"table": {"write_mode": "append"}}, "write_mode"),
        ({"table": {"initial_partitions": ["p0", ""]}}, "initial_partitions"),
        ({"table": {"initial_partitions": ["p0", "p0"]}}, "initial_partitions"),
        ({"ingest": {"rate": -1}}, "rate"),
        ({"ingest": {"tick_ms": 0}}, "tick_ms"),
        ({"ingest": {"commit_interval_ms": -5}}, "commit_interval_ms"),
        ({"ingest": {"operation": "delete"}}, "operation"),
        ({"services": {"clean_interval_ms": -1}}, "clean_interval_ms"),
        ({"services": {"clean_keep": -1}}, "clean_keep"),
    ])
    def test_errors(self, raw, field):
        errors, _ = validate_config(raw)
        assert len(errors) == 1
        assert field in errors[0]

    def test_errors_collected(self):
        errors, _ = validate_config({
            "simulation": {"duration_ms": -1},
            "table": {"dataset": "orders", "write_mode": "append"},
        })
        assert len(errors) == 3

    def test_warn_compaction_under_cow(self):
        _, warnings = validate_config({
            "table": {"write_mode": "cow"},
            "services": {"compaction_schedule_interval_ms": 100,
                         "compaction_run_interval_ms": 100},
        })
        assert any("copy-on-write" in w for w in warnings)

    def test_warn_scheduled_never_run(self):
        _, warnings = validate_config({
            "services": {"compaction_schedule_interval_ms": 100},
        })
        assert any("never run" in w for w in warnings)

    def test_warn_never_committed(self):
        _, warnings = validate_config({"ingest": {"commit_interval_ms": 0}})
        assert any("never committed" in w for w in warnings)

    def test_warn_keep_zero(self):
        _, warnings = validate_config({
            "services": {"clean_interval_ms": 100, "clean_keep": 0},
        })
        assert any("clean_keep = 0" in w for w in warnings)

    def test_warnings_logged(self, caplog):
        raw = {"simulation": {"duration_ms": 1000, "seed": 1},
               "ingest": {"commit_interval_ms": 0}}
        with caplog.at_level(logging.WARNING, logger="hudisim.config"):
            build_simulation_config(raw)
        assert "never committed" in caplog.text


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------

class TestConfigHash:

    def test_seed_independent(self):
        a = {"simulation": {"duration_ms": 1000, "seed": 1}}
        b = {"simulation": {"duration_ms": 1000, "seed": 2}}
        assert compute_config_hash(a) == compute_config_hash(b)

    def test_config_sensitive(self):
        a = {"simulation": {"duration_ms": 1000}}
        b = {"simulation": {"duration_ms": 2000}}
        assert compute_config_hash(a) != compute_config_hash(b)

    def test_does_not_mutate_input(self):
        raw = {"simulation": {"duration_ms": 1000, "seed": 1}}
        compute_config_hash(raw)
        assert raw["simulation"]["seed"] == 1

    def test_length(self):
        assert len(compute_config_hash({})) == 8
