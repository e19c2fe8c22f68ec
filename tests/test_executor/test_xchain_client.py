"""Tests for the XuperChain contract client."""

import json

import httpx
import pytest

from common.config.executor_conf import XchainConf
from common.utils.crypto import derive_key, verify_signature
from executor.blockchain import XchainClient
from executor.blockchain.xchain_client import _SIGNING_KEY_SALT

CONF = XchainConf(
    mnemonic="test mnemonic words",
    contract_name="paddlempc",
    contract_account="XC1111111111111111@xuper",
    chain_address="127.0.0.1:37101",
)


class FakeGateway:
    def __init__(self, status=200):
        self.status = status
        self.requests = []

    def handler(self, request):
        self.requests.append(request)
        if self.status != 200:
            return httpx.Response(self.status, json={"error": "unavailable"})
        if request.url.path == "/health":
            return httpx.Response(200, json={"status": "ok"})
        body = json.loads(request.content)
        if request.url.path == "/v1/contract/invoke":
            return httpx.Response(200, json={"txid": f"tx-{body['method']}"})
        if request.url.path == "/v1/contract/query":
            return httpx.Response(200, json={"task_id": body["args"]["task_id"], "status": "Finished"})
        return httpx.Response(404)


@pytest.mark.asyncio
async def test_finish_task_is_signed():
    """Test recording a finished task through the contract gateway."""
    print("=" * 60)
    print("Testing Xchain Client - finishTask")
    print("=" * 60)
    print()

    gateway = FakeGateway()
    async with XchainClient(CONF, transport=httpx.MockTransport(gateway.handler)) as client:
        tx_id = await client.finish_task("task-1", {"digest": "abc"})

    assert tx_id == "tx-finishTask"
    request = gateway.requests[0]
    assert str(request.url) == "http://127.0.0.1:37101/v1/contract/invoke"
    body = json.loads(request.content)
    assert body["contract_name"] == "paddlempc"
    assert body["args"] == {"task_id": "task-1", "result": {"digest": "abc"}}
    assert "test mnemonic words" not in request.content.decode()
    print(f"✓ Recorded in {tx_id}; the mnemonic never left the node")

    signature = body.pop("signature")
    canonical = json.dumps(body, sort_keys=True, separators=(",", ":"))
    assert verify_signature(derive_key(CONF.mnemonic, _SIGNING_KEY_SALT), canonical, signature)
    print("✓ Invocation signature verifies")

    print("=" * 60)
    print("✓ Test PASSED")
    print("=" * 60)


@pytest.mark.asyncio
async def test_fail_task_and_query():
    gateway = FakeGateway()
    async with XchainClient(CONF, transport=httpx.MockTransport(gateway.handler)) as client:
        assert await client.fail_task("task-2", "peer_timeout") == "tx-failTask"
        record = await client.get_task("task-2")
        assert await client.health_check() is True

    assert record == {"task_id": "task-2", "status": "Finished"}
    assert json.loads(gateway.requests[1].content)["method"] == "getTaskById"


@pytest.mark.asyncio
async def test_gateway_errors_propagate():
    gateway = FakeGateway(status=503)
    async with XchainClient(CONF, transport=httpx.MockTransport(gateway.handler)) as client:
        with pytest.raises(httpx.HTTPStatusError):
            await client.finish_task("task-1", {})
        assert await client.health_check() is False


@pytest.mark.asyncio
async def test_missing_txid_is_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={}))
    async with XchainClient(CONF, transport=transport) as client:
        with pytest.raises(ValueError, match="txid"):
            await client.finish_task("task-1", {})


@pytest.mark.asyncio
async def test_client_requires_context_manager():
    client = XchainClient(CONF)
    with pytest.raises(RuntimeError):
        await client.get_task("task-1")


@pytest.mark.asyncio
async def test_nested_entries_share_one_client():
    client = XchainClient(CONF, transport=httpx.MockTransport(FakeGateway().handler))
    async with client:
        http_client = client.client
        async with client:
            assert client.client is http_client
        assert client.client is http_client
    assert client.client is None
