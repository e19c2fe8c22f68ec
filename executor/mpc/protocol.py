"""Pluggable MPC protocol driven by the round coordinator.

The coordinator owns timing, fan-out and fragment bookkeeping; a protocol
decides what each round sends, what this node answers when it is a peer,
and how the collected fragments become the task's output.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional, Sequence

from common.models.task import TaskKind, TaskRequest
from common.utils.encoding import encode_blob
from common.utils.hashing import compute_hash


@dataclass(frozen=True)
class ProtocolOutput:
    """Result of a completed session."""

    artifact: bytes
    evaluation: Optional[bytes] = None
    live_evaluation: Optional[bytes] = None


# (task_id, round_no, payload) -> this node's fragment
Responder = Callable[[str, int, bytes], bytes]


class MpcProtocol(ABC):
    """What the rounds of a session carry."""

    @abstractmethod
    def round_payload(
        self,
        request: TaskRequest,
        round_no: int,
        previous: Sequence[Mapping[str, bytes]],
    ) -> bytes:
        """Payload sent to every peer in round_no, given the earlier rounds' fragments."""

    @abstractmethod
    def respond(
        self, task_id: str, kind: TaskKind, round_no: int, sender: str, payload: bytes
    ) -> bytes:
        """Fragment this node returns when a coordinator sends it a round payload."""

    @abstractmethod
    def finalize(
        self, request: TaskRequest, rounds: Sequence[Mapping[str, bytes]]
    ) -> ProtocolOutput:
        """Turn the fragments of all rounds into the task output."""


def _dumps(data: Dict) -> bytes:
    return json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")


class RelayProtocol(MpcProtocol):
    """Relays the task description to peers and folds their fragments forward.

    Round 0 carries the payload descriptor; round k carries the digests of
    round k-1's fragments, so every peer sees what the others contributed.
    The artifact lists every round's fragments per peer. What a peer puts
    in its fragment is up to the responder, which is where a local MPC
    engine plugs in.
    """

    def __init__(self, node_address: str, responder: Optional[Responder] = None):
        self.node_address = node_address
        self._responder = responder or self._digest_responder

    def _digest_responder(self, task_id: str, round_no: int, payload: bytes) -> bytes:
        # Binds the payload to this node; stands in until an engine is attached
        return compute_hash(self.node_address.encode("utf-8") + payload).encode("ascii")

    def round_payload(
        self,
        request: TaskRequest,
        round_no: int,
        previous: Sequence[Mapping[str, bytes]],
    ) -> bytes:
        if round_no == 0:
            descriptor = request.payload
            return _dumps(
                {
                    "task_id": request.task_id,
                    "kind": request.kind.value,
                    "round": 0,
                    "algorithm": descriptor.algorithm,
                    "model_task_id": descriptor.model_task_id,
                    "params": descriptor.params,
                }
            )

        last = previous[-1] if previous else {}
        return _dumps(
            {
                "task_id": request.task_id,
                "round": round_no,
                "previous": {peer: compute_hash(fragment) for peer, fragment in last.items()},
            }
        )

    def respond(
        self, task_id: str, kind: TaskKind, round_no: int, sender: str, payload: bytes
    ) -> bytes:
        return self._responder(task_id, round_no, payload)

    def finalize(
        self, request: TaskRequest, rounds: Sequence[Mapping[str, bytes]]
    ) -> ProtocolOutput:
        artifact = _dumps(
            {
                "task_id": request.task_id,
                "kind": request.kind.value,
                "algorithm": request.payload.algorithm,
                "rounds": [
                    {peer: encode_blob(fragment) for peer, fragment in sorted(fragments.items())}
                    for fragments in rounds
                ],
            }
        )

        evaluation = None
        live_evaluation = None
        params = request.payload.params
        if request.kind == TaskKind.TRAIN and (params.get("evaluate") or params.get("live_evaluate")):
            summary = _dumps(
                {
                    "task_id": request.task_id,
                    "rounds": len(rounds),
                    "peers": sorted({peer for fragments in rounds for peer in fragments}),
                    "artifact_digest": compute_hash(artifact),
                }
            )
            if params.get("evaluate"):
                evaluation = summary
            if params.get("live_evaluate"):
                live_evaluation = summary

        return ProtocolOutput(
            artifact=artifact, evaluation=evaluation, live_evaluation=live_evaluation
        )
