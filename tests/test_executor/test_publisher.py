"""Tests for the result publisher."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from common.errors import StorageReadError, StorageWriteError
from common.models.task import LocalLocation, RemoteLocation
from common.storage.registry import StorageRegistry
from common.utils.hashing import compute_hash
from common.utils.retry import RetryPolicy
from executor.publisher import ResultPublisher


def _chain(finish=None, fail=None):
    """Mock XchainClient usable as an async context manager."""
    chain = AsyncMock()
    chain.finish_task = finish or AsyncMock(return_value="tx-finish")
    chain.fail_task = fail or AsyncMock(return_value="tx-fail")
    chain.__aenter__ = AsyncMock(return_value=chain)
    chain.__aexit__ = AsyncMock(return_value=None)
    return chain


def _publisher(chain, metrics, attempts=3):
    return ResultPublisher(
        StorageRegistry(),
        chain,
        retry_policy=RetryPolicy(attempts=attempts, base_delay=0.5),
        metrics=metrics,
    )


@pytest.mark.asyncio
async def test_publish_then_fetch(tmp_path, metrics):
    """Publish then fetch returns byte-identical content."""
    print("=" * 60)
    print("Testing Result Publisher - Publish and fetch")
    print("=" * 60)
    print()

    chain = _chain()
    publisher = _publisher(chain, metrics)
    location = LocalLocation(path=str(tmp_path / "models"))
    artifact = bytes(range(256)) * 16

    ref = await publisher.publish("task-1", artifact, location, "model")

    assert ref.key == "task-1/model"
    assert ref.digest == compute_hash(artifact)
    assert ref.size == len(artifact)
    assert ref.recorded is True
    assert ref.tx_id == "tx-finish"
    print(f"✓ Published {ref.size} bytes, recorded in {ref.tx_id}")

    assert await publisher.fetch(ref) == artifact
    print("✓ Fetched content is byte-identical")

    args = chain.finish_task.await_args.args
    assert args[0] == "task-1"
    assert args[1]["digest"] == ref.digest
    assert args[1]["key"] == "task-1/model"

    print("=" * 60)
    print("✓ Test PASSED")
    print("=" * 60)


@pytest.mark.asyncio
async def test_publish_without_record(tmp_path, metrics):
    chain = _chain()
    publisher = _publisher(chain, metrics)
    ref = await publisher.publish(
        "task-1", b"eval", LocalLocation(path=str(tmp_path)), "evaluation", record=False
    )
    assert ref.recorded is False
    chain.finish_task.assert_not_awaited()


@pytest.mark.asyncio
async def test_chain_failure_is_queued_and_reconciled(tmp_path, metrics):
    """The artifact stays stored when the chain is down; reconcile() records it later."""
    print("\n" + "=" * 60)
    print("Testing Result Publisher - Chain failure")
    print("=" * 60)
    print()

    finish = AsyncMock(side_effect=httpx.ConnectError("chain down"))
    chain = _chain(finish=finish)
    publisher = _publisher(chain, metrics)
    location = LocalLocation(path=str(tmp_path))

    with patch("common.utils.retry.asyncio.sleep", new=AsyncMock()) as sleep:
        ref = await publisher.publish("task-1", b"model", location, "model")

    assert ref.recorded is False
    assert ref.tx_id is None
    assert finish.await_count == 3
    assert [call.args[0] for call in sleep.await_args_list] == [0.5, 1.0]
    print("✓ Three attempts with 0.5s/1.0s backoff")

    # Never rolled back
    assert await publisher.fetch(ref) == b"model"
    assert len(publisher.pending_records) == 1
    assert publisher.pending_records[0].task_id == "task-1"
    print("✓ Artifact kept, record queued")

    finish.side_effect = None
    finish.return_value = "tx-late"
    assert await publisher.reconcile() == 1
    assert publisher.pending_records == ()
    print("✓ Queued record reconciled")

    print("=" * 60)
    print("✓ Test PASSED")
    print("=" * 60)


@pytest.mark.asyncio
async def test_reconcile_keeps_failing_records(tmp_path, metrics):
    finish = AsyncMock(side_effect=httpx.ConnectError("chain down"))
    publisher = _publisher(_chain(finish=finish), metrics, attempts=1)
    await publisher.publish("task-1", b"model", LocalLocation(path=str(tmp_path)), "model")

    assert await publisher.reconcile() == 0
    assert publisher.pending_records[0].attempts == 2
    assert publisher.describe_pending()[0]["task_id"] == "task-1"


@pytest.mark.asyncio
async def test_storage_failure_raises_storage_write_error(tmp_path, metrics):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    chain = _chain()
    publisher = _publisher(chain, metrics)

    with pytest.raises(StorageWriteError):
        await publisher.publish("task-1", b"model", LocalLocation(path=str(blocker)), "model")
    chain.finish_task.assert_not_awaited()


@pytest.mark.asyncio
async def test_remote_location_without_key_is_storage_write_error(metrics):
    publisher = _publisher(_chain(), metrics)
    with pytest.raises(StorageWriteError, match="private key"):
        await publisher.publish(
            "task-1", b"p", RemoteLocation(host="db:80", namespace="ns"), "prediction"
        )


@pytest.mark.asyncio
async def test_fetch_detects_corruption(tmp_path, metrics):
    publisher = _publisher(_chain(), metrics)
    ref = await publisher.publish("task-1", b"model", LocalLocation(path=str(tmp_path)), "model")
    (tmp_path / "task-1" / "model").write_bytes(b"tampered")
    with pytest.raises(StorageReadError, match="digest"):
        await publisher.fetch(ref)


@pytest.mark.asyncio
async def test_record_failure(metrics):
    chain = _chain()
    publisher = _publisher(chain, metrics)
    assert await publisher.record_failure("task-2", "peer_timeout") == "tx-fail"
    chain.fail_task.assert_awaited_once_with("task-2", "peer_timeout")

    chain.fail_task.side_effect = httpx.ConnectError("down")
    with patch("common.utils.retry.asyncio.sleep", new=AsyncMock()):
        assert await publisher.record_failure("task-3", "cancelled") is None
    assert publisher.pending_records[0].method == "fail"


@pytest.mark.asyncio
async def test_pending_queue_is_bounded(tmp_path, metrics):
    finish = AsyncMock(side_effect=httpx.ConnectError("chain down"))
    publisher = ResultPublisher(
        StorageRegistry(),
        _chain(finish=finish),
        retry_policy=RetryPolicy(attempts=1),
        metrics=metrics,
        max_pending=2,
    )
    location = LocalLocation(path=str(tmp_path))
    for task_id in ("task-1", "task-2", "task-3"):
        await publisher.publish(task_id, b"model", location, "model")

    # The oldest record made room for the newest
    assert [p.task_id for p in publisher.pending_records] == ["task-2", "task-3"]
    assert publisher.pending_count == 2
    assert metrics.get_metrics()["chain_records_dropped"] == 1
    assert len(publisher.describe_pending(limit=1)) == 1
