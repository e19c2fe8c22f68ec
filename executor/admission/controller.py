"""Per-kind concurrency ceilings for incoming tasks."""

import threading
import uuid
from typing import Dict, Optional

from common.config.executor_conf import ExecutorMpcConf
from common.errors import AdmissionRejected, RejectReason
from common.logger import setup_logger
from common.models.task import TaskKind, TaskRequest
from common.monitoring.metrics import MetricsCollector, get_metrics_collector

logger = setup_logger(__name__)


class AdmissionSlot:
    """A leased unit of capacity for one admitted task.

    Release it exactly once, on every exit path; using the slot as a
    context manager does that.
    """

    def __init__(self, controller: "AdmissionController", kind: TaskKind, task_id: str):
        self.slot_id = uuid.uuid4().hex
        self.kind = kind
        self.task_id = task_id
        self._controller = controller
        self.released = False

    def release(self) -> bool:
        return self._controller.release(self)

    def __enter__(self) -> "AdmissionSlot":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "released" if self.released else "held"
        return f"AdmissionSlot({self.kind.value}, task={self.task_id}, {state})"


class AdmissionController:
    """Admits tasks while the in-flight count of their kind is below its limit.

    Admission never blocks: a full kind rejects immediately with
    AdmissionRejected(BUSY). Counters are mutated under one lock, so the
    limits hold for concurrent callers on any thread.
    """

    def __init__(
        self,
        limits: Dict[TaskKind, int],
        metrics: Optional[MetricsCollector] = None,
    ):
        for kind in TaskKind:
            if limits.get(kind, 0) < 0:
                raise ValueError(f"limit for {kind.value} must be >= 0")
        self._limits = {kind: limits.get(kind, 0) for kind in TaskKind}
        self._in_flight = {kind: 0 for kind in TaskKind}
        self._slots: Dict[str, AdmissionSlot] = {}
        self._lock = threading.Lock()
        self.metrics = metrics or get_metrics_collector()

    @classmethod
    def from_config(
        cls, mpc_conf: ExecutorMpcConf, metrics: Optional[MetricsCollector] = None
    ) -> "AdmissionController":
        return cls(
            {
                TaskKind.TRAIN: mpc_conf.train_task_limit,
                TaskKind.PREDICT: mpc_conf.predict_task_limit,
            },
            metrics=metrics,
        )

    def admit(self, task: TaskRequest) -> AdmissionSlot:
        """
        Lease a slot for task.

        Raises:
            AdmissionRejected: BUSY when the kind is at its limit, DUPLICATE
                when the task ID is already in flight
        """
        kind = task.kind
        with self._lock:
            limit = self._limits[kind]
            if task.task_id in self._slots:
                reason = RejectReason.DUPLICATE
            elif self._in_flight[kind] >= limit:
                reason = RejectReason.BUSY
            else:
                reason = None
                self._in_flight[kind] += 1
                slot = AdmissionSlot(self, kind, task.task_id)
                self._slots[task.task_id] = slot
                in_flight = self._in_flight[kind]

        if reason is not None:
            logger.warning(
                f"Rejected {kind.value} task {task.task_id}: {reason.value} (limit {limit})"
            )
            self.metrics.record_counter(
                "tasks_rejected", metadata={"kind": kind.value, "reason": reason.value}
            )
            raise AdmissionRejected(task.task_id, kind.value, reason, limit)

        self.metrics.set_gauge(f"in_flight_{kind.value}", in_flight)
        self.metrics.record_counter("tasks_admitted", metadata={"kind": kind.value})
        logger.info(
            f"Admitted {kind.value} task {task.task_id} ({in_flight}/{limit} in flight)"
        )
        return slot

    def release(self, slot: AdmissionSlot) -> bool:
        """
        Return a slot's capacity.

        Returns:
            True on the first release, False if the slot was already released
        """
        with self._lock:
            if slot.released or self._slots.get(slot.task_id) is not slot:
                already = True
            else:
                already = False
                slot.released = True
                del self._slots[slot.task_id]
                self._in_flight[slot.kind] -= 1
                in_flight = self._in_flight[slot.kind]

        if already:
            logger.warning(f"Slot for task {slot.task_id} released more than once")
            return False

        self.metrics.set_gauge(f"in_flight_{slot.kind.value}", in_flight)
        self.metrics.record_counter("tasks_released", metadata={"kind": slot.kind.value})
        logger.debug(f"Released slot of {slot.kind.value} task {slot.task_id}")
        return True

    def in_flight(self, kind: TaskKind) -> int:
        with self._lock:
            return self._in_flight[kind]

    def limit(self, kind: TaskKind) -> int:
        return self._limits[kind]

    def snapshot(self) -> Dict[str, Dict[str, int]]:
        """In-flight counts and limits per kind, for health reporting."""
        with self._lock:
            return {
                kind.value: {"in_flight": self._in_flight[kind], "limit": self._limits[kind]}
                for kind in TaskKind
            }
