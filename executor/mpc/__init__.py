"""MPC sessions between executor nodes: coordinator, protocol and peer transport."""

from executor.mpc.coordinator import MpcCoordinator, SessionOutcome
from executor.mpc.messages import FragmentPush, RoundReply, RoundRequest
from executor.mpc.peer_client import HttpPeerTransport, MalformedReply, PeerTransport
from executor.mpc.protocol import MpcProtocol, ProtocolOutput, RelayProtocol
from executor.mpc.session import MpcSession, SessionState

__all__ = [
    "MpcCoordinator",
    "SessionOutcome",
    "FragmentPush",
    "RoundReply",
    "RoundRequest",
    "HttpPeerTransport",
    "MalformedReply",
    "PeerTransport",
    "MpcProtocol",
    "ProtocolOutput",
    "RelayProtocol",
    "MpcSession",
    "SessionState",
]
