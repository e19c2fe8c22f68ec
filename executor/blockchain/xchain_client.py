"""XuperChain client - invokes the task contract through the chain's HTTP gateway."""

import json
from typing import Optional, Dict, Any
import httpx
from common.config.executor_conf import XchainConf
from common.logger import setup_logger
from common.utils.crypto import derive_key, sign_message

logger = setup_logger(__name__)

_SIGNING_KEY_SALT = b"xchain-invoke-signature"


def _parse_json_response(response: httpx.Response) -> Dict[str, Any]:
    """
    Parse JSON response from httpx with proper typing.

    Args:
        response: httpx Response object

    Returns:
        Parsed JSON as dictionary
    """
    data: Any = response.json()
    if isinstance(data, dict):
        return data
    raise ValueError(f"Expected dict, got {type(data)}")


class XchainClient:
    """Records task bookkeeping on the executor task contract."""

    def __init__(
        self,
        conf: XchainConf,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize Xchain client.

        Args:
            conf: [xchain] section of the blockchain configuration
            timeout: Request timeout in seconds (RpcTimeout)
            transport: Custom httpx transport (tests)
        """
        self.conf = conf
        self.service_url = (
            conf.chain_address if "://" in conf.chain_address else f"http://{conf.chain_address}"
        )
        self.timeout = timeout
        self._transport = transport
        # The mnemonic stays local; only signatures derived from it are sent
        self._signing_key = derive_key(conf.mnemonic, _SIGNING_KEY_SALT)
        self.client: Optional[httpx.AsyncClient] = None
        self._users = 0

    async def __aenter__(self):
        """Async context manager entry. Nested and concurrent entries share one client."""
        if self.client is None:
            self.client = httpx.AsyncClient(
                base_url=self.service_url, timeout=self.timeout, transport=self._transport
            )
        self._users += 1
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        self._users -= 1
        if self._users == 0 and self.client:
            client, self.client = self.client, None
            await client.aclose()

    def _envelope(self, method: str, args: Dict[str, Any]) -> Dict[str, Any]:
        body = {
            "chain_name": self.conf.chain_name,
            "contract_account": self.conf.contract_account,
            "contract_name": self.conf.contract_name,
            "method": method,
            "args": args,
        }
        canonical = json.dumps(body, sort_keys=True, separators=(",", ":"))
        body["signature"] = sign_message(self._signing_key, canonical)
        return body

    async def _invoke(self, method: str, args: Dict[str, Any]) -> str:
        if not self.client:
            raise RuntimeError("XchainClient must be used as async context manager")

        try:
            response = await self.client.post(
                "/v1/contract/invoke", json=self._envelope(method, args)
            )
            response.raise_for_status()
            result = _parse_json_response(response)
        except httpx.HTTPError as e:
            logger.error(f"Failed to invoke {self.conf.contract_name}.{method}: {str(e)}")
            raise

        tx_id = result.get("txid")
        if not isinstance(tx_id, str):
            raise ValueError("Response missing txid")
        return tx_id

    async def finish_task(self, task_id: str, result: Dict[str, Any]) -> str:
        """
        Record successful completion of a task.

        Args:
            task_id: Task identifier
            result: Artifact reference (location, key, digest, size)

        Returns:
            Transaction ID
        """
        tx_id = await self._invoke("finishTask", {"task_id": task_id, "result": result})
        logger.info(f"Recorded completion of task {task_id} on chain: {tx_id}")
        return tx_id

    async def fail_task(self, task_id: str, reason: str) -> str:
        """
        Record that a task failed.

        Args:
            task_id: Task identifier
            reason: Failure reason

        Returns:
            Transaction ID
        """
        tx_id = await self._invoke("failTask", {"task_id": task_id, "reason": reason})
        logger.info(f"Recorded failure of task {task_id} on chain: {tx_id}")
        return tx_id

    async def get_task(self, task_id: str) -> Dict[str, Any]:
        """
        Query the task record stored by the contract.

        Args:
            task_id: Task identifier

        Returns:
            Task record
        """
        if not self.client:
            raise RuntimeError("XchainClient must be used as async context manager")

        try:
            response = await self.client.post(
                "/v1/contract/query",
                json=self._envelope("getTaskById", {"task_id": task_id}),
            )
            response.raise_for_status()
            return _parse_json_response(response)
        except httpx.HTTPError as e:
            logger.error(f"Failed to query task {task_id}: {str(e)}")
            raise

    async def health_check(self) -> bool:
        """
        Check if the chain gateway is reachable.

        Returns:
            True if healthy
        """
        if not self.client:
            raise RuntimeError("XchainClient must be used as async context manager")

        try:
            response = await self.client.get("/health")
            response.raise_for_status()
            return True
        except httpx.HTTPError:
            return False
