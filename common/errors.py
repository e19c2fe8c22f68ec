"""Exception hierarchy shared by the executor components."""

from enum import Enum
from typing import Optional, Sequence


class ExecutorError(Exception):
    """Base class for all executor errors."""

    pass


class ConfigError(ExecutorError):
    """Malformed configuration file, missing key or unreadable key file."""

    pass


class RejectReason(str, Enum):
    """Why the admission controller refused a task."""

    BUSY = "busy"
    DUPLICATE = "duplicate"


class AdmissionRejected(ExecutorError):
    """Raised when a task cannot be admitted right now."""

    def __init__(self, task_id: str, kind: str, reason: RejectReason, limit: int):
        self.task_id = task_id
        self.kind = kind
        self.reason = reason
        self.limit = limit
        super().__init__(
            f"task {task_id} rejected ({reason.value}): "
            f"{kind} limit is {limit}"
        )


class AbortReason(str, Enum):
    """Terminal reasons for an aborted MPC session."""

    PEER_TIMEOUT = "peer_timeout"
    PEER_UNREACHABLE = "peer_unreachable"
    PEER_PROTOCOL_VIOLATION = "peer_protocol_violation"
    TASK_DEADLINE = "task_deadline"
    CANCELLED = "cancelled"
    INTERNAL_ERROR = "internal_error"


class SessionAborted(ExecutorError):
    """An MPC session ended without producing an artifact."""

    def __init__(
        self,
        task_id: str,
        round_no: int,
        reason: AbortReason,
        detail: str = "",
        peers: Optional[Sequence[str]] = None,
    ):
        self.task_id = task_id
        self.round_no = round_no
        self.reason = reason
        self.detail = detail
        self.peers = list(peers or [])
        message = f"session {task_id} aborted in round {round_no}: {reason.value}"
        if self.peers:
            message += f" (peers: {', '.join(self.peers)})"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class PeerTimeout(SessionAborted):
    """One or more peers did not deliver their fragment within RpcTimeout."""

    def __init__(self, task_id: str, round_no: int, peers: Sequence[str], timeout: float):
        self.timeout = timeout
        super().__init__(
            task_id,
            round_no,
            AbortReason.PEER_TIMEOUT,
            detail=f"no fragment within {timeout:g}s",
            peers=peers,
        )


class PeerProtocolViolation(SessionAborted):
    """A peer answered with a message that breaks the round protocol."""

    def __init__(self, task_id: str, round_no: int, peer: str, detail: str):
        super().__init__(
            task_id,
            round_no,
            AbortReason.PEER_PROTOCOL_VIOLATION,
            detail=detail,
            peers=[peer],
        )


class StorageError(ExecutorError):
    """Base class for storage backend failures."""

    pass


class StorageWriteError(StorageError):
    """Writing an artifact failed. Fatal to the task."""

    pass


class StorageReadError(StorageError):
    """Reading an artifact failed."""

    pass


class ArtifactNotFound(StorageReadError):
    """The requested artifact does not exist at the location."""

    pass


class BlockchainRecordError(ExecutorError):
    """Recording a task outcome on chain failed after all retries."""

    pass
