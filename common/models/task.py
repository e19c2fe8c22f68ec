"""Task request, storage location and publication models."""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from datetime import datetime, timedelta, timezone
from pydantic import BaseModel, ConfigDict, Field, field_validator


class TaskKind(str, Enum):
    """Kinds of MPC tasks an executor runs."""

    TRAIN = "train"
    PREDICT = "predict"


class PayloadDescriptor(BaseModel):
    """What the MPC engine should compute for a task."""

    model_config = ConfigDict(frozen=True)

    algorithm: str = Field(..., description="Algorithm name, e.g. 'linear-vl'")
    rounds: int = Field(1, ge=1, description="Number of protocol rounds")
    model_task_id: Optional[str] = Field(
        None, description="Training task whose model a prediction task uses"
    )
    sample_file_id: Optional[str] = Field(
        None, description="Sample file of this node's data owner"
    )
    params: Dict[str, Any] = Field(
        default_factory=dict, description="Algorithm parameters"
    )


class TaskRequest(BaseModel):
    """A training or prediction job. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    task_id: str = Field(..., min_length=1, description="Unique task identifier")
    kind: TaskKind = Field(..., description="train or predict")
    participants: List[str] = Field(
        ..., description="Addresses of the executor nodes taking part"
    )
    deadline: datetime = Field(..., description="UTC time after which the task is aborted")
    payload: PayloadDescriptor
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("participants")
    @classmethod
    def _unique_participants(cls, value: List[str]) -> List[str]:
        if len(set(value)) != len(value):
            raise ValueError("participant addresses must be unique")
        return value

    @field_validator("deadline", "created_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @classmethod
    def create(
        cls,
        task_id: str,
        kind: TaskKind,
        participants: List[str],
        payload: PayloadDescriptor,
        task_limit_time: float,
    ) -> "TaskRequest":
        """
        Build a request whose deadline is task_limit_time seconds from now.

        Args:
            task_id: Unique task identifier
            kind: Task kind
            participants: Executor node addresses
            payload: Payload descriptor
            task_limit_time: TaskLimitTime from the Mpc configuration

        Returns:
            TaskRequest instance
        """
        now = datetime.now(timezone.utc)
        return cls(
            task_id=task_id,
            kind=kind,
            participants=participants,
            payload=payload,
            created_at=now,
            deadline=now + timedelta(seconds=task_limit_time),
        )

    def remaining_seconds(self, now: Optional[datetime] = None) -> float:
        """Seconds until the deadline (negative once it has passed)."""
        now = now or datetime.now(timezone.utc)
        return (self.deadline - now).total_seconds()


class RemoteLocation(BaseModel):
    """An artifact stored in a remote XuperDB namespace."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["remote"] = "remote"
    host: str
    namespace: str
    expiry: int = Field(0, ge=0, description="Credential lifetime in seconds")

    def describe(self) -> str:
        return f"xuperdb://{self.host}/{self.namespace}"


class LocalLocation(BaseModel):
    """An artifact stored under a local directory."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["local"] = "local"
    path: str

    def describe(self) -> str:
        return f"file://{self.path}"


StorageLocation = Annotated[
    Union[RemoteLocation, LocalLocation], Field(discriminator="kind")
]


class PublishedRef(BaseModel):
    """Where a published artifact lives and whether its completion reached the chain."""

    task_id: str
    location: StorageLocation
    key: str = Field(..., description="Artifact path relative to the location")
    digest: str = Field(..., description="SHA-256 of the artifact bytes")
    size: int
    tx_id: Optional[str] = Field(None, description="Blockchain transaction ID")
    recorded: bool = Field(
        False, description="False while the on-chain record waits for reconciliation"
    )
    published_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TaskStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class TaskResult(BaseModel):
    """Outcome of one scheduled task."""

    task_id: str
    kind: TaskKind
    status: TaskStatus
    artifact: Optional[PublishedRef] = None
    evaluations: List[PublishedRef] = Field(default_factory=list)
    error: Optional[str] = None
    abort_reason: Optional[str] = None
