"""Tier 2 fixtures: a real WebSocket JSON-RPC node on loopback."""

from __future__ import annotations

import asyncio
import itertools
import json

import pytest
from websockets.asyncio.server import serve
from websockets.exceptions import ConnectionClosed

from tests.factories import uint256_result


class LoopbackNode:
    """Just enough of an Ethereum node: eth_subscribe, eth_call, eth_getLogs.

    ``values`` maps block number to the retrieve() result at that block.
    """

    def __init__(self, values: dict[int, int] | None = None, head: int = 100) -> None:
        self.values = values or {}
        self.head = head
        self.history: list[dict] = []
        self.requests: list[dict] = []
        self.clients: set = set()
        self.subscriptions: dict[str, object] = {}
        self.url = ""
        self._ids = itertools.count(1)
        self._subscribed = asyncio.Event()

    async def handler(self, websocket) -> None:
        self.clients.add(websocket)
        try:
            async for raw in websocket:
                request = json.loads(raw)
                self.requests.append(request)
                await websocket.send(json.dumps(self._respond(request, websocket)))
        except ConnectionClosed:
            pass
        finally:
            self.clients.discard(websocket)
            for sub_id, ws in list(self.subscriptions.items()):
                if ws is websocket:
                    del self.subscriptions[sub_id]

    def _respond(self, request: dict, websocket) -> dict:
        method, params = request["method"], request["params"]
        reply = {"jsonrpc": "2.0", "id": request["id"]}
        if method == "eth_subscribe":
            sub_id = hex(next(self._ids))
            self.subscriptions[sub_id] = websocket
            self._subscribed.set()
            reply["result"] = sub_id
        elif method == "eth_call":
            block = int(params[1], 16) if params[1] != "latest" else self.head
            reply["result"] = uint256_result(self.values.get(block, 0))
        elif method == "eth_getLogs":
            start = int(params[0]["fromBlock"], 16)
            reply["result"] = [
                entry for entry in self.history if int(entry["blockNumber"], 16) >= start
            ]
        elif method == "eth_blockNumber":
            reply["result"] = hex(self.head)
        elif method == "eth_chainId":
            reply["result"] = hex(31337)
        else:
            reply["error"] = {"code": -32601, "message": f"the method {method} does not exist"}
        return reply

    async def wait_subscribed(self, timeout: float = 2.0) -> None:
        """Wait for a (new) subscription to be installed."""
        await asyncio.wait_for(self._subscribed.wait(), timeout)
        self._subscribed.clear()

    async def emit(self, log_entry: dict) -> None:
        """Push a log notification to every live subscription."""
        for sub_id, ws in list(self.subscriptions.items()):
            try:
                await ws.send(json.dumps({
                    "jsonrpc": "2.0",
                    "method": "eth_subscription",
                    "params": {"subscription": sub_id, "result": log_entry},
                }))
            except ConnectionClosed:
                self.subscriptions.pop(sub_id, None)

    async def drop_clients(self) -> None:
        """Close every client connection from the node side."""
        for ws in list(self.clients):
            await ws.close()


@pytest.fixture
async def node():
    """A LoopbackNode served on an ephemeral 127.0.0.1 port."""
    fake = LoopbackNode(values={6: 8})
    async with serve(fake.handler, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        fake.url = f"ws://127.0.0.1:{port}"
        yield fake
