"""Read-only contract queries: the block-pinned ``retrieve()`` call."""

from __future__ import annotations

import logging

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from contract_watcher.errors import RpcError, TransportIOError
from contract_watcher.interfaces.transport import Connection
from contract_watcher.models.events import StateSnapshot

log = logging.getLogger(__name__)

RETRIEVE_SELECTOR = "0x" + bytes(Web3.keccak(text="retrieve()"))[:4].hex()


def _decode_uint256(result: object, context: str) -> int:
    if not isinstance(result, str) or result in ("0x", ""):
        raise RpcError(f"{context}: empty return data (is the contract deployed?)")
    try:
        (value,) = abi_decode(["uint256"], bytes.fromhex(result[2:]))
    except (DecodingError, ValueError) as exc:
        raise RpcError(f"{context}: undecodable return data {result!r}") from exc
    return value


class ContractQueries:
    """Read-only calls against the watched contract.

    Every state read is an ``eth_call`` pinned to an explicit block so the
    value reflects the triggering transaction and nothing mined after it.
    """

    def __init__(self, selector: str = RETRIEVE_SELECTOR) -> None:
        self._selector = selector

    async def query_state(
        self, connection: Connection, contract_address: str, at_block: int,
    ) -> StateSnapshot:
        """Call ``retrieve()`` at ``at_block``. Raises TransportError."""
        call = {"to": contract_address, "data": self._selector}
        result = await connection.request("eth_call", [call, hex(at_block)])
        value = _decode_uint256(result, f"retrieve() at block {at_block}")
        log.debug("retrieve() at block %d = %d", at_block, value)
        return StateSnapshot(value=value, block_number=at_block)

    async def retrieve_latest(self, connection: Connection, contract_address: str) -> int:
        """Current value at the chain head. Used by the ``check`` command only."""
        call = {"to": contract_address, "data": self._selector}
        result = await connection.request("eth_call", [call, "latest"])
        return _decode_uint256(result, "retrieve() at latest")

    async def chain_id(self, connection: Connection) -> int:
        result = await connection.request("eth_chainId", [])
        try:
            return int(result, 16)
        except (TypeError, ValueError) as exc:
            raise TransportIOError(f"eth_chainId returned {result!r}") from exc
