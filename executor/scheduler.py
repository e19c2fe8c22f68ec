"""Runs admitted tasks, one asyncio task each."""

import asyncio
from typing import Dict, List, Optional

from common.errors import SessionAborted, StorageWriteError
from common.logger import setup_logger
from common.models.task import (
    PublishedRef,
    TaskKind,
    TaskRequest,
    TaskResult,
    TaskStatus,
)
from common.storage.registry import StorageLocations
from executor.admission.controller import AdmissionController, AdmissionSlot
from executor.mpc.coordinator import MpcCoordinator
from executor.publisher.result_publisher import ResultPublisher

logger = setup_logger(__name__)

_ARTIFACT_NAMES = {TaskKind.TRAIN: "model", TaskKind.PREDICT: "prediction"}


class TaskScheduler:
    """Admission, MPC session and publication for every submitted task."""

    def __init__(
        self,
        admission: AdmissionController,
        coordinator: MpcCoordinator,
        publisher: ResultPublisher,
        locations: StorageLocations,
    ):
        self.admission = admission
        self.coordinator = coordinator
        self.publisher = publisher
        self.locations = locations
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def running(self) -> List[str]:
        return list(self._tasks)

    def submit(self, request: TaskRequest) -> "asyncio.Task[TaskResult]":
        """
        Admit a task and start running it.

        Must be called from within the running event loop.

        Raises:
            AdmissionRejected: If the task's kind is at its limit or the
                task ID is already in flight
        """
        slot = self.admission.admit(request)
        try:
            task = asyncio.create_task(self._run(request, slot), name=f"task-{request.task_id}")
        except BaseException:
            slot.release()
            raise
        self._tasks[request.task_id] = task
        task.add_done_callback(lambda t: self._forget(request.task_id, t))
        return task

    def _forget(self, task_id: str, task: asyncio.Task) -> None:
        # The slot is released before the task is done; a resubmitted ID may already be here
        if self._tasks.get(task_id) is task:
            del self._tasks[task_id]
        if task.cancelled():
            logger.info(f"Task {task_id} was cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Task {task_id} ended with an error: {str(error)}",
                exc_info=(type(error), error, error.__traceback__),
            )

    async def _run(self, request: TaskRequest, slot: AdmissionSlot) -> TaskResult:
        with slot:
            try:
                outcome = await self.coordinator.run(request)
            except SessionAborted as e:
                logger.error(f"Task {request.task_id} failed: {str(e)}")
                await self.publisher.record_failure(request.task_id, e.reason.value)
                return TaskResult(
                    task_id=request.task_id,
                    kind=request.kind,
                    status=TaskStatus.FAILED,
                    error=str(e),
                    abort_reason=e.reason.value,
                )

            try:
                artifact = await self.publisher.publish(
                    request.task_id,
                    outcome.output.artifact,
                    self.locations.for_kind(request.kind),
                    _ARTIFACT_NAMES[request.kind],
                )
                evaluations = await self._publish_evaluations(request, outcome.output)
            except StorageWriteError as e:
                logger.error(f"Task {request.task_id} could not store its output: {str(e)}")
                await self.publisher.record_failure(request.task_id, "storage_write_failed")
                raise

        logger.info(f"Task {request.task_id} succeeded in {outcome.duration:.2f}s")
        return TaskResult(
            task_id=request.task_id,
            kind=request.kind,
            status=TaskStatus.SUCCEEDED,
            artifact=artifact,
            evaluations=evaluations,
        )

    async def _publish_evaluations(self, request: TaskRequest, output) -> List[PublishedRef]:
        refs = []
        if output.evaluation is not None:
            refs.append(
                await self.publisher.publish(
                    request.task_id,
                    output.evaluation,
                    self.locations.evaluation(),
                    "evaluation",
                    record=False,
                )
            )
        if output.live_evaluation is not None:
            refs.append(
                await self.publisher.publish(
                    request.task_id,
                    output.live_evaluation,
                    self.locations.live_evaluation(),
                    "live_evaluation",
                    record=False,
                )
            )
        return refs

    def get(self, task_id: str) -> Optional[asyncio.Task]:
        return self._tasks.get(task_id)

    def cancel(self, task_id: str) -> bool:
        """Cancel a running task. Returns False if no such task is running."""
        task = self._tasks.get(task_id)
        if task is None or task.done():
            return False
        logger.info(f"Cancelling task {task_id}")
        return task.cancel()

    async def shutdown(self) -> None:
        """Cancel every running task and wait for them to release their slots."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info(f"Waiting for {len(tasks)} task(s) to stop")
            await asyncio.gather(*tasks, return_exceptions=True)
