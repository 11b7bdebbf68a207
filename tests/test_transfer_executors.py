"""Tests for the concrete transfer executors."""
from decimal import Decimal

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from config.settings import TransferConfig
from pot import build_transfer_executor
from services.erc20_transfer_service import Erc20TransferExecutor
from services.relay_transfer_service import RelayTransferExecutor
from services.transfer_interface import explorer_url
from utils.exceptions import ConfigurationError, TransferError

from conftest import make_address


def test_backend_selection():
    assert isinstance(build_transfer_executor(TransferConfig()), Erc20TransferExecutor)
    assert isinstance(build_transfer_executor(TransferConfig(backend="relay")), RelayTransferExecutor)


def test_explorer_links():
    assert explorer_url("0xabc", test_mode=True) == "https://amoy.polygonscan.com/tx/0xabc"
    assert explorer_url("0xabc", test_mode=False) == "https://polygonscan.com/tx/0xabc"


@pytest.mark.asyncio
async def test_erc20_requires_rpc_url():
    executor = Erc20TransferExecutor(TransferConfig(private_key="0x" + "11" * 32))
    with pytest.raises(ConfigurationError):
        await executor.send(make_address(1), Decimal("1.00"), test_mode=True)


@pytest.mark.asyncio
async def test_erc20_requires_private_key():
    executor = Erc20TransferExecutor(TransferConfig(testnet_rpc_url="http://127.0.0.1:1"))
    with pytest.raises(ConfigurationError):
        await executor.send(make_address(1), Decimal("1.00"), test_mode=True)
    await executor.close()


@pytest.fixture
async def relay_server():
    received = []

    async def transfers(request):
        payload = await request.json()
        received.append((request.headers.get("Authorization"), payload))
        if payload["amount"] == "0.00":
            return web.json_response({"error": "amount must be positive"}, status=400)
        return web.json_response({"transactionHash": "0x" + "ab" * 32}, status=201)

    app = web.Application()
    app.router.add_post("/api/v1/transfers", transfers)
    server = TestServer(app)
    await server.start_server()
    server.received = received
    yield server
    await server.close()


def relay_executor(server) -> RelayTransferExecutor:
    return RelayTransferExecutor.from_config(TransferConfig(
        backend="relay",
        relay_url=str(server.make_url("/")),
        relay_api_key="relay-key"
    ))


@pytest.mark.asyncio
async def test_relay_returns_transaction_hash(relay_server):
    executor = relay_executor(relay_server)
    try:
        tx_hash = await executor.send(make_address(1), Decimal("33.34"), test_mode=True)
    finally:
        await executor.close()

    assert tx_hash == "0x" + "ab" * 32
    auth, payload = relay_server.received[0]
    assert auth == "Bearer relay-key"
    assert payload == {"to": make_address(1), "amount": "33.34", "network": "testnet"}


@pytest.mark.asyncio
async def test_relay_rejection_raises_transfer_error(relay_server):
    executor = relay_executor(relay_server)
    try:
        with pytest.raises(TransferError, match="amount must be positive"):
            await executor.send(make_address(1), Decimal("0.00"), test_mode=False)
    finally:
        await executor.close()


@pytest.mark.asyncio
async def test_relay_requires_configuration():
    executor = RelayTransferExecutor.from_config(TransferConfig(backend="relay"))
    with pytest.raises(ConfigurationError):
        await executor.send(make_address(1), Decimal("1.00"), test_mode=True)


@pytest.mark.asyncio
async def test_unreachable_relay_raises_transfer_error():
    executor = RelayTransferExecutor({'base_url': "http://127.0.0.1:9", 'api_key': "k"})
    try:
        with pytest.raises(TransferError, match="unreachable"):
            await executor.send(make_address(1), Decimal("1.00"), test_mode=True)
    finally:
        await executor.close()
