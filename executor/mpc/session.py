"""State of one in-progress multi-party round exchange."""

import asyncio
from enum import Enum
from typing import Dict, List, Optional, Sequence

from common.errors import AbortReason
from common.logger import setup_logger

logger = setup_logger(__name__)


class SessionState(str, Enum):
    INIT = "init"
    ROUND_ACTIVE = "round_active"
    COMPLETED = "completed"
    ABORTED = "aborted"


_TERMINAL = (SessionState.COMPLETED, SessionState.ABORTED)


class MpcSession:
    """Fragment bookkeeping and state machine of one task's MPC session.

    init -> round_active(k) -> round_active(k+1) | completed | aborted

    A round closes only once every peer delivered its fragment for that
    round. All methods must be called from the event loop that owns the
    session; that loop is what linearizes access to the fragment map.
    """

    def __init__(self, task_id: str, peers: Sequence[str], total_rounds: int):
        if total_rounds < 1:
            raise ValueError("a session needs at least one round")
        if len(set(peers)) != len(peers):
            raise ValueError("peer addresses must be unique")
        self.task_id = task_id
        self.peers = tuple(peers)
        self.total_rounds = total_rounds
        self.state = SessionState.INIT
        self.round = 0
        self.fragments: Dict[str, bytes] = {}
        self.history: List[Dict[str, bytes]] = []
        self.abort_reason: Optional[AbortReason] = None
        self.abort_detail = ""
        self.violations: List[str] = []
        self._round_open = False
        self._round_done = asyncio.Event()

    @property
    def terminal(self) -> bool:
        return self.state in _TERMINAL

    @property
    def round_complete(self) -> bool:
        return self._round_open and len(self.fragments) == len(self.peers)

    def missing_peers(self) -> List[str]:
        return [peer for peer in self.peers if peer not in self.fragments]

    def _require_state(self, *states: SessionState) -> None:
        if self.state not in states:
            raise RuntimeError(
                f"session {self.task_id} is {self.state.value}, "
                f"expected {' or '.join(s.value for s in states)}"
            )

    def open_round(self) -> int:
        """
        Start round 0 from init, or the next round after close_round().

        Returns:
            The round number now active
        """
        self._require_state(SessionState.INIT, SessionState.ROUND_ACTIVE)
        if self.state == SessionState.INIT:
            self.round = 0
        else:
            if self._round_open:
                raise RuntimeError(f"round {self.round} of {self.task_id} is still open")
            if len(self.history) >= self.total_rounds:
                raise RuntimeError(f"session {self.task_id} has no rounds left")
            self.round += 1

        self.state = SessionState.ROUND_ACTIVE
        self.fragments = {}
        self._round_open = True
        self._round_done = asyncio.Event()
        if not self.peers:
            self._round_done.set()
        return self.round

    def _violation(self, message: str) -> None:
        self.violations.append(message)
        logger.warning(f"Protocol violation in session {self.task_id}: {message}")

    def receive_fragment(self, peer: str, round_no: int, fragment: bytes) -> bool:
        """
        Record a peer's fragment for the active round.

        Fragments from unknown peers, for another round, or repeated for the
        same peer and round are discarded and logged; they never fail the
        session.

        Returns:
            True if the fragment was accepted
        """
        if not self._round_open or self.state != SessionState.ROUND_ACTIVE:
            self._violation(f"fragment from {peer} for round {round_no} outside an open round")
            return False
        if peer not in self.peers:
            self._violation(f"fragment from non-participant {peer}")
            return False
        if round_no != self.round:
            self._violation(
                f"fragment from {peer} for round {round_no} while round {self.round} is active"
            )
            return False
        if peer in self.fragments:
            self._violation(f"duplicate fragment from {peer} in round {round_no} discarded")
            return False

        self.fragments[peer] = fragment
        if len(self.fragments) == len(self.peers):
            self._round_done.set()
        return True

    async def wait_round(self) -> None:
        """Wait until every peer delivered its fragment for the active round."""
        await self._round_done.wait()

    def close_round(self) -> Dict[str, bytes]:
        """
        Close the active round once all fragments are in.

        Returns:
            The round's fragments by peer
        """
        self._require_state(SessionState.ROUND_ACTIVE)
        if not self.round_complete:
            raise RuntimeError(
                f"round {self.round} of {self.task_id} still waits for {self.missing_peers()}"
            )
        fragments = dict(self.fragments)
        self.history.append(fragments)
        self._round_open = False
        return fragments

    def complete(self) -> None:
        """Mark the session completed after its final round closed."""
        self._require_state(SessionState.ROUND_ACTIVE)
        if self._round_open or len(self.history) != self.total_rounds:
            raise RuntimeError(
                f"session {self.task_id} closed {len(self.history)} of {self.total_rounds} rounds"
            )
        self.state = SessionState.COMPLETED
        logger.info(f"Session {self.task_id} completed after {self.total_rounds} round(s)")

    def abort(self, reason: AbortReason, detail: str = "") -> None:
        """Move the session to aborted. Ignored if it already ended."""
        if self.terminal:
            return
        self.state = SessionState.ABORTED
        self.abort_reason = reason
        self.abort_detail = detail
        self._round_open = False
        logger.warning(
            f"Session {self.task_id} aborted in round {self.round}: {reason.value} {detail}".rstrip()
        )
