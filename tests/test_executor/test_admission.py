"""Tests for the task admission controller."""

import asyncio
import threading

import pytest

from common.config.executor_conf import ExecutorMpcConf
from common.errors import AdmissionRejected, RejectReason
from common.models.task import TaskKind
from executor.admission import AdmissionController


def _controller(metrics, train=2, predict=2):
    return AdmissionController({TaskKind.TRAIN: train, TaskKind.PREDICT: predict}, metrics=metrics)


def test_admission_limit(metrics, task_factory):
    """TrainTaskLimit=2 with three train requests admits two and rejects one."""
    print("=" * 60)
    print("Testing Admission - Train limit")
    print("=" * 60)
    print()

    controller = _controller(metrics)
    first = controller.admit(task_factory("t1"))
    second = controller.admit(task_factory("t2"))
    print("✓ Two train tasks admitted")

    with pytest.raises(AdmissionRejected) as exc_info:
        controller.admit(task_factory("t3"))
    assert exc_info.value.reason == RejectReason.BUSY
    assert exc_info.value.limit == 2
    assert controller.in_flight(TaskKind.TRAIN) == 2
    print("✓ Third train task rejected as busy")

    # Kinds are counted separately
    controller.admit(task_factory("p1", kind=TaskKind.PREDICT))
    assert controller.in_flight(TaskKind.PREDICT) == 1

    first.release()
    controller.admit(task_factory("t3"))
    assert controller.in_flight(TaskKind.TRAIN) == 2
    second.release()
    print("✓ Released capacity is reusable")

    print("=" * 60)
    print("✓ Test PASSED")
    print("=" * 60)


@pytest.mark.asyncio
async def test_concurrent_admission_from_coroutines(metrics, task_factory):
    controller = _controller(metrics)

    async def attempt(task_id):
        await asyncio.sleep(0)
        try:
            return controller.admit(task_factory(task_id))
        except AdmissionRejected as e:
            return e

    results = await asyncio.gather(*(attempt(f"t{i}") for i in range(3)))
    admitted = [r for r in results if not isinstance(r, AdmissionRejected)]
    rejected = [r for r in results if isinstance(r, AdmissionRejected)]
    assert len(admitted) == 2
    assert len(rejected) == 1
    assert rejected[0].reason == RejectReason.BUSY


def test_concurrent_admission_from_threads(metrics, task_factory):
    """The ceiling holds when many threads race for slots."""
    controller = _controller(metrics, train=5)
    barrier = threading.Barrier(50)
    admitted = []
    rejected = []
    lock = threading.Lock()

    def attempt(i):
        barrier.wait()
        try:
            slot = controller.admit(task_factory(f"t{i}"))
        except AdmissionRejected:
            with lock:
                rejected.append(i)
            return
        with lock:
            admitted.append(slot)

    threads = [threading.Thread(target=attempt, args=(i,)) for i in range(50)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(admitted) == 5
    assert len(rejected) == 45
    assert controller.in_flight(TaskKind.TRAIN) == 5

    for slot in admitted:
        slot.release()
    assert controller.in_flight(TaskKind.TRAIN) == 0


def test_duplicate_task_id_rejected(metrics, task_factory):
    controller = _controller(metrics)
    slot = controller.admit(task_factory("same"))
    with pytest.raises(AdmissionRejected) as exc_info:
        controller.admit(task_factory("same"))
    assert exc_info.value.reason == RejectReason.DUPLICATE

    slot.release()
    controller.admit(task_factory("same")).release()


def test_release_is_idempotent(metrics, task_factory):
    controller = _controller(metrics)
    slot = controller.admit(task_factory("t1"))
    assert slot.release() is True
    assert slot.release() is False
    assert controller.release(slot) is False
    assert controller.in_flight(TaskKind.TRAIN) == 0


def test_slot_context_manager_releases_on_error(metrics, task_factory):
    controller = _controller(metrics)
    with pytest.raises(RuntimeError):
        with controller.admit(task_factory("t1")):
            raise RuntimeError("session failed")
    assert controller.in_flight(TaskKind.TRAIN) == 0


def test_zero_limit_rejects_everything(metrics, task_factory):
    controller = _controller(metrics, predict=0)
    with pytest.raises(AdmissionRejected) as exc_info:
        controller.admit(task_factory("p1", kind=TaskKind.PREDICT))
    assert exc_info.value.reason == RejectReason.BUSY


def test_from_config_and_snapshot(metrics, task_factory):
    controller = AdmissionController.from_config(
        ExecutorMpcConf(train_task_limit=3, predict_task_limit=7), metrics=metrics
    )
    controller.admit(task_factory("t1"))
    assert controller.snapshot() == {
        "train": {"in_flight": 1, "limit": 3},
        "predict": {"in_flight": 0, "limit": 7},
    }
    assert metrics.get_metrics()["tasks_admitted"] == 1
    assert metrics.get_metrics()["in_flight_train"] == 1


def test_negative_limit_rejected():
    with pytest.raises(ValueError):
        AdmissionController({TaskKind.TRAIN: -1, TaskKind.PREDICT: 1})
