"""Drives the rounds of MPC sessions between executor nodes."""

import asyncio
import time
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

import httpx

from common.errors import AbortReason, PeerProtocolViolation, PeerTimeout, SessionAborted
from common.logger import setup_logger
from common.models.task import TaskRequest
from common.monitoring.metrics import MetricsCollector, get_metrics_collector
from common.utils.encoding import decode_blob, encode_blob
from executor.mpc.messages import RoundReply, RoundRequest
from executor.mpc.peer_client import PeerTransport
from executor.mpc.protocol import MpcProtocol, ProtocolOutput
from executor.mpc.session import MpcSession

logger = setup_logger(__name__)


@dataclass(frozen=True)
class SessionOutcome:
    """A completed session."""

    task_id: str
    rounds: Sequence[Mapping[str, bytes]]
    output: ProtocolOutput
    duration: float


class MpcCoordinator:
    """Runs one MpcSession per task and answers peers' round RPCs.

    Each round's payload goes to all peers concurrently. The round closes
    when every peer's fragment arrived, either in the RPC reply or pushed
    separately through deliver_fragment(). A round that is still missing
    fragments RpcTimeout seconds after it started aborts the session; the
    outstanding peer calls are cancelled and awaited before the error
    propagates.
    """

    def __init__(
        self,
        transport: PeerTransport,
        protocol: MpcProtocol,
        rpc_timeout: float,
        self_address: str = "",
        metrics: Optional[MetricsCollector] = None,
    ):
        """
        Initialize the coordinator.

        Args:
            transport: Peer transport used to send round payloads
            protocol: Protocol deciding round payloads and the final output
            rpc_timeout: Seconds a round may wait for its fragments (RpcTimeout)
            self_address: This node's public address, excluded from peer sets
            metrics: Metrics collector (defaults to the global one)
        """
        if rpc_timeout <= 0:
            raise ValueError(f"rpc_timeout must be > 0, got {rpc_timeout}")
        self.transport = transport
        self.protocol = protocol
        self.rpc_timeout = rpc_timeout
        self.self_address = self_address
        self.metrics = metrics or get_metrics_collector()
        self.sessions: Dict[str, MpcSession] = {}

    @property
    def active_sessions(self) -> List[str]:
        return list(self.sessions)

    def peers_for(self, request: TaskRequest) -> List[str]:
        return [p for p in request.participants if p != self.self_address]

    async def run(self, request: TaskRequest) -> SessionOutcome:
        """
        Run every round of the task's session and finalize the output.

        Args:
            request: Task to run

        Returns:
            SessionOutcome with the rounds' fragments and protocol output

        Raises:
            SessionAborted: On peer timeout, unreachable peer, protocol
                violation, task deadline or an unexpected local error
            asyncio.CancelledError: When the task is cancelled
        """
        if request.task_id in self.sessions:
            raise ValueError(f"session {request.task_id} is already running")

        session = MpcSession(request.task_id, self.peers_for(request), request.payload.rounds)
        self.sessions[request.task_id] = session
        start = time.monotonic()
        logger.info(
            f"Starting session {request.task_id} with {len(session.peers)} peer(s), "
            f"{session.total_rounds} round(s)"
        )

        try:
            for _ in range(session.total_rounds):
                round_no = session.open_round()
                payload = self.protocol.round_payload(request, round_no, session.history)
                await self._run_round(session, request, payload)
                session.close_round()

            output = self.protocol.finalize(request, session.history)
            session.complete()
        except SessionAborted as e:
            session.abort(e.reason, e.detail)
            self.metrics.record_counter(
                "sessions_aborted", metadata={"task_id": request.task_id, "reason": e.reason.value}
            )
            raise
        except asyncio.CancelledError:
            session.abort(AbortReason.CANCELLED)
            self.metrics.record_counter(
                "sessions_aborted",
                metadata={"task_id": request.task_id, "reason": AbortReason.CANCELLED.value},
            )
            raise
        except Exception as e:
            detail = str(e) or type(e).__name__
            logger.error(f"Session {request.task_id} failed unexpectedly: {detail}", exc_info=True)
            session.abort(AbortReason.INTERNAL_ERROR, detail)
            self.metrics.record_counter(
                "sessions_aborted",
                metadata={"task_id": request.task_id, "reason": AbortReason.INTERNAL_ERROR.value},
            )
            raise SessionAborted(
                request.task_id, session.round, AbortReason.INTERNAL_ERROR, detail=detail
            ) from e
        finally:
            self.sessions.pop(request.task_id, None)

        duration = time.monotonic() - start
        self.metrics.record_timing(
            "mpc_session",
            duration,
            {"task_id": request.task_id, "rounds": session.total_rounds},
        )
        return SessionOutcome(
            task_id=request.task_id,
            rounds=tuple(session.history),
            output=output,
            duration=duration,
        )

    async def _run_round(
        self, session: MpcSession, request: TaskRequest, payload: bytes
    ) -> None:
        round_no = session.round
        remaining = request.remaining_seconds()
        if remaining <= 0:
            raise SessionAborted(
                request.task_id, round_no, AbortReason.TASK_DEADLINE, detail="deadline passed"
            )
        bounded_by_deadline = remaining < self.rpc_timeout
        wait_for = min(self.rpc_timeout, remaining)

        message = RoundRequest(
            task_id=request.task_id,
            round=round_no,
            sender=self.self_address,
            kind=request.kind,
            payload=encode_blob(payload),
        )
        calls = [
            asyncio.create_task(self._exchange(session, peer, message))
            for peer in session.peers
        ]
        waiter = asyncio.create_task(session.wait_round())
        pending = set(calls)
        pending.add(waiter)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait_for
        try:
            while not session.round_complete:
                timeout = deadline - loop.time()
                if timeout <= 0:
                    break
                done, pending = await asyncio.wait(
                    pending, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
                )
                if session.round_complete:
                    break
                for task in done:
                    if task is not waiter:
                        # Re-raises the SessionAborted of a failed peer call
                        task.result()
        finally:
            for task in pending:
                task.cancel()
            await asyncio.gather(*calls, waiter, return_exceptions=True)

        if session.round_complete:
            return

        missing = session.missing_peers()
        if bounded_by_deadline:
            raise SessionAborted(
                request.task_id,
                round_no,
                AbortReason.TASK_DEADLINE,
                detail="task deadline reached while waiting for fragments",
                peers=missing,
            )
        raise PeerTimeout(request.task_id, round_no, missing, self.rpc_timeout)

    async def _exchange(self, session: MpcSession, peer: str, message: RoundRequest) -> None:
        """Send the round payload to one peer and record the fragment it returns."""
        try:
            reply = await self.transport.send_round(peer, message)
        except httpx.TimeoutException as e:
            raise PeerTimeout(message.task_id, message.round, [peer], self.rpc_timeout) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise SessionAborted(
                message.task_id,
                message.round,
                AbortReason.PEER_UNREACHABLE,
                detail=str(e) or type(e).__name__,
                peers=[peer],
            ) from e
        except ValueError as e:
            raise PeerProtocolViolation(message.task_id, message.round, peer, str(e)) from e

        if reply.task_id != message.task_id or reply.round != message.round:
            raise PeerProtocolViolation(
                message.task_id,
                message.round,
                peer,
                f"reply for task {reply.task_id} round {reply.round}",
            )
        if reply.fragment is None:
            # Fragment will be pushed to /v1/mpc/fragments
            return
        try:
            fragment = decode_blob(reply.fragment)
        except ValueError as e:
            raise PeerProtocolViolation(message.task_id, message.round, peer, str(e)) from e
        session.receive_fragment(peer, message.round, fragment)

    def deliver_fragment(self, task_id: str, round_no: int, sender: str, fragment: bytes) -> bool:
        """
        Hand a pushed fragment to the task's session.

        Returns:
            True if the session accepted the fragment
        """
        session = self.sessions.get(task_id)
        if session is None:
            logger.warning(f"Fragment from {sender} for unknown session {task_id} discarded")
            return False
        return session.receive_fragment(sender, round_no, fragment)

    def respond(self, message: RoundRequest) -> RoundReply:
        """
        Compute this node's fragment for a round a peer coordinates.

        Raises:
            ValueError: If the payload is not valid Base64
        """
        payload = decode_blob(message.payload)
        fragment = self.protocol.respond(
            message.task_id, message.kind, message.round, message.sender, payload
        )
        logger.debug(f"Answered round {message.round} of {message.task_id} for {message.sender}")
        return RoundReply(
            task_id=message.task_id,
            round=message.round,
            sender=self.self_address,
            fragment=encode_blob(fragment),
        )
