#!/usr/bin/env python3
"""Pytest configuration and shared fixtures."""

import sys
from pathlib import Path
from datetime import datetime, timedelta, timezone
import os
import textwrap

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Keep a developer's .env from switching on artifact encryption in tests
os.environ.setdefault("ENCRYPTION_KEY", "")

import pytest

from common.models.task import PayloadDescriptor, TaskKind, TaskRequest
from common.monitoring.metrics import MetricsCollector


EXECUTOR_TOML = textwrap.dedent(
    """
    [log]
    Level = "debug"
    Path = "{log_path}"

    [executor]
    Name = "executor1"
    ListenAddress = ":8184"
    PublicAddress = "127.0.0.1:8184"
    PrivateKey = ""
    KeyPath = "{key_path}"

        [executor.Mpc]
        TrainTaskLimit = 2
        PredictTaskLimit = 5
        RpcTimeout = 3
        TaskLimitTime = 3600

        [executor.Storage]
        Type = "Local"
        LocalModelStoragePath = "{data_path}/models"
        LocalEvaluationStoragePath = "{data_path}/evaluations"
        LiveEvaluationStoragePath = "{data_path}/lives"

            [executor.Storage.Local]
            LocalPredictStoragePath = "{data_path}/predictions"

        [executor.Blockchain]
        Type = "xchain"

            [executor.Blockchain.Xchain]
            Mnemonic = "test mnemonic words"
            ContractName = "paddlempc"
            ContractAccount = "XC1111111111111111@xuper"
            ChainAddress = "127.0.0.1:37101"
            ChainName = "xuper"
    """
)


@pytest.fixture
def key_dir(tmp_path):
    """Key directory holding a private.key with surrounding whitespace."""
    keys = tmp_path / "keys"
    keys.mkdir()
    (keys / "private.key").write_text("  0123456789abcdef\n\n")
    return keys


@pytest.fixture
def executor_config_file(tmp_path, key_dir):
    """A complete executor configuration file."""
    path = tmp_path / "config.toml"
    path.write_text(
        EXECUTOR_TOML.format(
            log_path=(tmp_path / "logs").as_posix(),
            key_path=key_dir.as_posix(),
            data_path=(tmp_path / "data").as_posix(),
        )
    )
    return path


@pytest.fixture
def metrics():
    return MetricsCollector()


def make_task(
    task_id="task-1",
    kind=TaskKind.TRAIN,
    participants=("peer-a:8184", "peer-b:8184"),
    rounds=1,
    limit_seconds=60.0,
    params=None,
):
    """Build a TaskRequest for tests."""
    now = datetime.now(timezone.utc)
    return TaskRequest(
        task_id=task_id,
        kind=kind,
        participants=list(participants),
        deadline=now + timedelta(seconds=limit_seconds),
        created_at=now,
        payload=PayloadDescriptor(
            algorithm="linear-vl", rounds=rounds, params=params or {}
        ),
    )


@pytest.fixture
def task_factory():
    return make_task
