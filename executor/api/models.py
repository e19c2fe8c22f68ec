"""Pydantic models for API requests and responses."""

from typing import Any, Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field

from common.models.task import PayloadDescriptor, TaskKind


class TaskSubmission(BaseModel):
    """Request model for submitting a task."""

    task_id: str = Field(..., min_length=1, description="Unique task identifier")
    kind: TaskKind = Field(..., description="train or predict")
    participants: List[str] = Field(..., description="Executor node addresses")
    payload: PayloadDescriptor
    deadline: Optional[datetime] = Field(
        None, description="UTC deadline (defaults to now + TaskLimitTime)"
    )


class TaskAccepted(BaseModel):
    """Response model for an admitted task."""

    task_id: str
    kind: TaskKind
    status: str = Field("accepted", description="Always 'accepted'")


class FragmentAck(BaseModel):
    """Response model for a pushed fragment."""

    accepted: bool = Field(..., description="Whether the session took the fragment")


class HealthResponse(BaseModel):
    """Response model for the health check."""

    status: str = Field(..., description="'ok'")
    node: str = Field(..., description="Executor name")
    admission: Dict[str, Dict[str, int]] = Field(
        ..., description="In-flight counts and limits per task kind"
    )
    active_sessions: List[str] = Field(default_factory=list)
    running_tasks: List[str] = Field(default_factory=list)
    pending_chain_record_count: int = Field(0, description="Chain records awaiting reconciliation")
    pending_chain_records: List[Dict[str, Any]] = Field(default_factory=list)

