"""Tests for the node entry point and component wiring."""

import pytest

from common.config import ConfigProvider, Settings
from common.errors import ConfigError
from common.models.task import TaskKind
from executor.__main__ import main, split_address
from executor.api.server import build_components


@pytest.mark.parametrize(
    "address,expected",
    [
        (":8184", ("0.0.0.0", 8184)),
        ("127.0.0.1:9000", ("127.0.0.1", 9000)),
        ("executor.local:80", ("executor.local", 80)),
    ],
)
def test_split_address(address, expected):
    assert split_address(address) == expected


@pytest.mark.parametrize("address", ["8184", "host:", "host:port"])
def test_split_address_rejects_invalid(address):
    with pytest.raises(ConfigError):
        split_address(address)


def test_build_components_from_config(executor_config_file, metrics):
    conf = ConfigProvider.from_file(executor_config_file).get_executor_conf()
    components = build_components(conf, Settings(encryption_key=None), metrics=metrics)

    scheduler = components.scheduler
    assert components.node_name == "executor1"
    assert components.task_limit_time == 3600
    assert scheduler.admission.limit(TaskKind.TRAIN) == 2
    assert scheduler.admission.limit(TaskKind.PREDICT) == 5
    assert scheduler.coordinator.rpc_timeout == 3
    assert scheduler.coordinator.self_address == "127.0.0.1:8184"


def test_build_components_rejects_bad_encryption_key(executor_config_file, metrics):
    conf = ConfigProvider.from_file(executor_config_file).get_executor_conf()
    with pytest.raises(ValueError, match="ENCRYPTION_KEY"):
        build_components(conf, Settings(encryption_key="not base64!"), metrics=metrics)


def test_main_exits_on_missing_config(tmp_path, monkeypatch):
    monkeypatch.setenv("EXECUTOR_CONFIG", str(tmp_path / "missing.toml"))
    assert main() == 1
