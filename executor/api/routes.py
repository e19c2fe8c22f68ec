"""API routes of the executor node."""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError

from common.errors import AdmissionRejected, RejectReason
from common.logger import setup_logger
from common.models.task import TaskRequest
from common.utils.encoding import decode_blob
from executor.admission.controller import AdmissionController
from executor.api.models import FragmentAck, HealthResponse, TaskAccepted, TaskSubmission
from executor.mpc.coordinator import MpcCoordinator
from executor.mpc.messages import FragmentPush, RoundReply, RoundRequest
from executor.publisher.result_publisher import ResultPublisher
from executor.scheduler import TaskScheduler

logger = setup_logger(__name__)

router = APIRouter(tags=["executor"])


def get_scheduler(request: Request) -> TaskScheduler:
    return request.app.state.scheduler


def get_coordinator(request: Request) -> MpcCoordinator:
    return request.app.state.scheduler.coordinator


@router.post(
    "/v1/tasks",
    response_model=TaskAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_task(
    submission: TaskSubmission,
    request: Request,
    scheduler: TaskScheduler = Depends(get_scheduler),
):
    """
    Admit a task and start its MPC session.

    Returns 429 when the task's kind is at its limit and 409 when a task
    with the same ID is already running.
    """
    try:
        if submission.deadline is None:
            task = TaskRequest.create(
                task_id=submission.task_id,
                kind=submission.kind,
                participants=submission.participants,
                payload=submission.payload,
                task_limit_time=request.app.state.task_limit_time,
            )
        else:
            task = TaskRequest(
                task_id=submission.task_id,
                kind=submission.kind,
                participants=submission.participants,
                payload=submission.payload,
                deadline=submission.deadline,
            )
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )

    try:
        scheduler.submit(task)
    except AdmissionRejected as e:
        code = (
            status.HTTP_409_CONFLICT
            if e.reason == RejectReason.DUPLICATE
            else status.HTTP_429_TOO_MANY_REQUESTS
        )
        raise HTTPException(status_code=code, detail=str(e))

    logger.info(f"Accepted {task.kind.value} task {task.task_id}")
    return TaskAccepted(task_id=task.task_id, kind=task.kind)


@router.post("/v1/mpc/rounds", response_model=RoundReply)
async def answer_round(
    message: RoundRequest,
    coordinator: MpcCoordinator = Depends(get_coordinator),
):
    """Compute this node's fragment for a round coordinated by a peer."""
    try:
        return coordinator.respond(message)
    except ValueError as e:
        logger.warning(f"Rejected round {message.round} of {message.task_id}: {str(e)}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post("/v1/mpc/fragments", response_model=FragmentAck)
async def push_fragment(
    push: FragmentPush,
    coordinator: MpcCoordinator = Depends(get_coordinator),
):
    """Accept a fragment a peer delivers outside its round reply."""
    try:
        fragment = decode_blob(push.fragment)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    accepted = coordinator.deliver_fragment(push.task_id, push.round, push.sender, fragment)
    return FragmentAck(accepted=accepted)


@router.get("/health", response_model=HealthResponse)
async def health(request: Request, scheduler: TaskScheduler = Depends(get_scheduler)):
    """Admission counters, active sessions and queued chain records."""
    admission: AdmissionController = scheduler.admission
    publisher: ResultPublisher = scheduler.publisher
    return HealthResponse(
        status="ok",
        node=request.app.state.node_name,
        admission=admission.snapshot(),
        active_sessions=scheduler.coordinator.active_sessions,
        running_tasks=scheduler.running,
        pending_chain_record_count=publisher.pending_count,
        pending_chain_records=publisher.describe_pending(),
    )
