"""Messages exchanged between executor nodes during MPC rounds.

Binary payloads and fragments travel Base64-encoded.
"""

from typing import Optional
from pydantic import BaseModel, Field

from common.models.task import TaskKind


class RoundRequest(BaseModel):
    """Round-k payload sent by the coordinating executor to a peer."""

    task_id: str = Field(..., description="Task identifier")
    round: int = Field(..., ge=0, description="Round number")
    sender: str = Field(..., description="Public address of the coordinating node")
    kind: TaskKind = Field(..., description="Task kind")
    payload: str = Field(..., description="Base64 round payload")


class RoundReply(BaseModel):
    """A peer's answer to a RoundRequest.

    ``fragment`` is None when the peer acknowledges the round and pushes its
    fragment later with a FragmentPush.
    """

    task_id: str
    round: int = Field(..., ge=0)
    sender: str
    fragment: Optional[str] = Field(None, description="Base64 fragment")


class FragmentPush(BaseModel):
    """A fragment delivered asynchronously to the coordinating node."""

    task_id: str
    round: int = Field(..., ge=0)
    sender: str = Field(..., description="Address of the peer the fragment comes from")
    fragment: str = Field(..., description="Base64 fragment")
