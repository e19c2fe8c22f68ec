"""Transport of round payloads to peer executors."""

from abc import ABC, abstractmethod
from typing import Optional

import httpx
from pydantic import ValidationError

from common.logger import setup_logger
from executor.mpc.messages import RoundReply, RoundRequest

logger = setup_logger(__name__)


class MalformedReply(ValueError):
    """A peer answered with something that is not a RoundReply."""

    pass


class PeerTransport(ABC):
    @abstractmethod
    async def send_round(self, peer: str, message: RoundRequest) -> RoundReply:
        """Deliver a round payload to peer and return its reply."""

    async def close(self) -> None:
        return None


def peer_url(peer: str) -> str:
    return peer if "://" in peer else f"http://{peer}"


class HttpPeerTransport(PeerTransport):
    """Posts round payloads to ``{peer}/v1/mpc/rounds``."""

    def __init__(
        self,
        timeout: float,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the transport.

        Args:
            timeout: Per-request timeout in seconds (RpcTimeout)
            transport: Custom httpx transport (tests)
        """
        limits = httpx.Limits(max_keepalive_connections=20, max_connections=100)
        self.client = httpx.AsyncClient(timeout=timeout, limits=limits, transport=transport)

    async def send_round(self, peer: str, message: RoundRequest) -> RoundReply:
        url = f"{peer_url(peer)}/v1/mpc/rounds"
        response = await self.client.post(url, json=message.model_dump(mode="json"))
        response.raise_for_status()
        try:
            return RoundReply.model_validate(response.json())
        except (ValidationError, ValueError) as e:
            logger.error(f"Malformed round reply from {peer}: {str(e)}")
            raise MalformedReply(f"malformed reply from {peer}: {str(e)}") from e

    async def close(self) -> None:
        """Release the shared HTTP client."""
        await self.client.aclose()
