"""Tests for the task scheduler."""

import asyncio
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest

from common.config.executor_conf import ExecutorStorageConf
from common.errors import AbortReason, AdmissionRejected, PeerTimeout, StorageWriteError
from common.models.task import PublishedRef, TaskKind, TaskStatus
from common.storage.registry import StorageLocations
from common.utils.hashing import compute_hash
from executor.admission import AdmissionController
from executor.mpc import HttpPeerTransport, MpcCoordinator, RelayProtocol
from executor.mpc.coordinator import SessionOutcome
from executor.mpc.protocol import ProtocolOutput
from executor.scheduler import TaskScheduler


def _published(task_id, data, location, name, record=True):
    return PublishedRef(
        task_id=task_id,
        location=location,
        key=f"{task_id}/{name}",
        digest=compute_hash(data),
        size=len(data),
    )


def _scheduler(tmp_path, metrics, coordinator, publish=None, train_limit=2):
    admission = AdmissionController(
        {TaskKind.TRAIN: train_limit, TaskKind.PREDICT: 2}, metrics=metrics
    )
    publisher = Mock()
    publisher.publish = publish or AsyncMock(side_effect=_published)
    publisher.record_failure = AsyncMock(return_value="tx-fail")
    storage = ExecutorStorageConf(
        local_model_storage_path=str(tmp_path / "models"),
        local_evaluation_storage_path=str(tmp_path / "evaluations"),
        live_evaluation_storage_path=str(tmp_path / "lives"),
    )
    return TaskScheduler(admission, coordinator, publisher, StorageLocations(storage))


def _outcome(task_id, evaluation=None, live=None):
    return SessionOutcome(
        task_id=task_id,
        rounds=({"a": b"a0"},),
        output=ProtocolOutput(artifact=b"artifact", evaluation=evaluation, live_evaluation=live),
        duration=0.01,
    )


@pytest.mark.asyncio
async def test_successful_task_publishes_and_releases(tmp_path, metrics, task_factory):
    """Test a task whose session succeeds."""
    print("=" * 60)
    print("Testing Task Scheduler - Success")
    print("=" * 60)
    print()

    task = task_factory("task-1")
    coordinator = Mock()
    coordinator.run = AsyncMock(return_value=_outcome("task-1", evaluation=b"eval", live=b"live"))
    scheduler = _scheduler(tmp_path, metrics, coordinator)

    result = await scheduler.submit(task)

    assert result.status == TaskStatus.SUCCEEDED
    assert len(result.evaluations) == 2
    assert scheduler.admission.in_flight(TaskKind.TRAIN) == 0
    print("✓ Task succeeded and released its slot")

    calls = scheduler.publisher.publish.await_args_list
    assert [c.args[3] for c in calls] == ["model", "evaluation", "live_evaluation"]
    assert calls[0].args[2].path == str(tmp_path / "models")
    assert calls[1].kwargs["record"] is False
    print("✓ Artifact and evaluations published to their locations")

    print("=" * 60)
    print("✓ Test PASSED")
    print("=" * 60)


@pytest.mark.asyncio
async def test_aborted_session_fails_task_and_releases(tmp_path, metrics, task_factory):
    task = task_factory("task-1")
    coordinator = Mock()
    coordinator.run = AsyncMock(side_effect=PeerTimeout("task-1", 0, ["b"], 3))
    scheduler = _scheduler(tmp_path, metrics, coordinator)

    result = await scheduler.submit(task)

    assert result.status == TaskStatus.FAILED
    assert result.abort_reason == AbortReason.PEER_TIMEOUT.value
    assert "b" in result.error
    scheduler.publisher.record_failure.assert_awaited_once_with("task-1", "peer_timeout")
    scheduler.publisher.publish.assert_not_awaited()
    assert scheduler.admission.in_flight(TaskKind.TRAIN) == 0


@pytest.mark.asyncio
async def test_storage_write_error_propagates_and_releases(tmp_path, metrics, task_factory):
    task = task_factory("task-1")
    coordinator = Mock()
    coordinator.run = AsyncMock(return_value=_outcome("task-1"))
    publish = AsyncMock(side_effect=StorageWriteError("disk full"))
    scheduler = _scheduler(tmp_path, metrics, coordinator, publish=publish)

    with pytest.raises(StorageWriteError):
        await scheduler.submit(task)
    assert scheduler.admission.in_flight(TaskKind.TRAIN) == 0
    scheduler.publisher.record_failure.assert_awaited_once_with("task-1", "storage_write_failed")


@pytest.mark.asyncio
async def test_unexpected_error_releases_slot(tmp_path, metrics, task_factory):
    coordinator = Mock()
    coordinator.run = AsyncMock(side_effect=RuntimeError("bug"))
    scheduler = _scheduler(tmp_path, metrics, coordinator)

    with patch("executor.scheduler.logger") as mock_logger:
        with pytest.raises(RuntimeError):
            await scheduler.submit(task_factory("task-1"))
        await asyncio.sleep(0)
    assert scheduler.admission.in_flight(TaskKind.TRAIN) == 0
    # The done callback retrieves and logs the error of a fire-and-forget task
    logged = mock_logger.error.call_args
    assert "task-1" in logged.args[0]
    assert logged.kwargs["exc_info"][0] is RuntimeError


@pytest.mark.asyncio
async def test_unparsable_peer_address_fails_task(tmp_path, metrics, task_factory):
    """A participant address httpx rejects fails the task and is recorded on chain."""
    print("=" * 60)
    print("Testing Task Scheduler - Invalid peer address")
    print("=" * 60)
    print()

    transport = HttpPeerTransport(
        timeout=1.0, transport=httpx.MockTransport(lambda request: httpx.Response(500))
    )
    coordinator = MpcCoordinator(
        transport, RelayProtocol("self:8184"), rpc_timeout=1.0, self_address="self:8184", metrics=metrics
    )
    scheduler = _scheduler(tmp_path, metrics, coordinator)
    try:
        result = await scheduler.submit(task_factory("task-1", participants=["peer:abc"]))
    finally:
        await transport.close()

    assert result.status == TaskStatus.FAILED
    assert result.abort_reason == AbortReason.PEER_UNREACHABLE.value
    scheduler.publisher.record_failure.assert_awaited_once_with("task-1", "peer_unreachable")
    assert scheduler.admission.in_flight(TaskKind.TRAIN) == 0
    print("✓ Task failed as peer_unreachable and released its slot")

    print("=" * 60)
    print("✓ Test PASSED")
    print("=" * 60)


@pytest.mark.asyncio
async def test_submit_rejects_over_limit(tmp_path, metrics, task_factory):
    started = asyncio.Event()
    release = asyncio.Event()

    async def run(request):
        started.set()
        await release.wait()
        return _outcome(request.task_id)

    coordinator = Mock()
    coordinator.run = run
    scheduler = _scheduler(tmp_path, metrics, coordinator, train_limit=1)

    first = scheduler.submit(task_factory("task-1"))
    await started.wait()
    with pytest.raises(AdmissionRejected):
        scheduler.submit(task_factory("task-2"))
    assert scheduler.running == ["task-1"]

    release.set()
    await first
    assert scheduler.running == []


@pytest.mark.asyncio
async def test_cancel_and_shutdown(tmp_path, metrics, task_factory):
    async def run(request):
        await asyncio.sleep(3600)

    coordinator = Mock()
    coordinator.run = run
    scheduler = _scheduler(tmp_path, metrics, coordinator)

    first = scheduler.submit(task_factory("task-1"))
    second = scheduler.submit(task_factory("task-2"))
    await asyncio.sleep(0)

    assert scheduler.cancel("task-1") is True
    with pytest.raises(asyncio.CancelledError):
        await first
    assert scheduler.cancel("task-1") is False

    await scheduler.shutdown()
    assert second.cancelled()
    assert scheduler.admission.in_flight(TaskKind.TRAIN) == 0
    assert scheduler.running == []
