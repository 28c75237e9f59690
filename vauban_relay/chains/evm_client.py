"""
EVM Chain Client Implementation

Concrete chain client for EVM-compatible ledgers using web3.py. The relayer
account signs every submitted transaction; an asyncio lock keeps nonce
lookup, signing and broadcast of one submission from interleaving with
another, so the account has a single logical owner within the process.
"""

import asyncio
from typing import Any

import structlog
from eth_account import Account
from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from .base_client import (
    BaseChainClient,
    ChainClientError,
    ConfirmationTimeoutError,
    ContractCall,
    TransactionFailedError,
    TransactionHandle,
    TransactionOutcome,
    TransactionStatus,
)

logger = structlog.get_logger(__name__)


def coerce_argument(abi_type: str, value: Any) -> Any:
    """
    Convert a JSON-ish value to what web3 expects for ``abi_type``.

    Identifiers travel as decimal or 0x-prefixed hex strings over HTTP;
    decimal strings may carry leading zeros. bytesN values shorter than N
    bytes are left-padded.
    """
    if abi_type.endswith("[]"):
        return [coerce_argument(abi_type[:-2], item) for item in value]

    if abi_type.startswith(("uint", "int")):
        if isinstance(value, bool):
            raise ValueError(f"Boolean is not a valid {abi_type}")
        if isinstance(value, str):
            text = value.strip()
            if text.lower().startswith(("0x", "-0x")):
                return int(text, 16)
            return int(text, 10)
        return int(value)

    if abi_type == "address":
        return Web3.to_checksum_address(value)

    if abi_type.startswith("bytes") and abi_type != "bytes":
        size = int(abi_type[5:])
        raw = bytes(HexBytes(value))
        if len(raw) > size:
            raise ValueError(f"Value too long for {abi_type}")
        return raw.rjust(size, b"\x00")

    if abi_type == "bool" and isinstance(value, str):
        return value.lower() in ("1", "true")

    return value


def coerce_arguments(call: ContractCall) -> list[Any]:
    for entry in call.abi:
        if entry.get("type") == "function" and entry.get("name") == call.function_name:
            inputs = entry.get("inputs", [])
            if len(inputs) != len(call.args):
                raise ChainClientError(
                    f"{call.function_name} expects {len(inputs)} arguments, got {len(call.args)}"
                )
            try:
                return [coerce_argument(i["type"], v) for i, v in zip(inputs, call.args)]
            except (TypeError, ValueError) as e:
                raise ChainClientError(f"Invalid argument for {call.function_name}: {e}") from e
    raise ChainClientError(f"Function {call.function_name} not found in ABI")


class EVMChainClient(BaseChainClient):
    """
    Chain client for EVM-compatible blockchains.

    The client is not connected until initialize() is called.
    """

    def __init__(
        self,
        rpc_url: str,
        relayer_private_key: str | None = None,
        session_key_manager_address: str | None = None,
        chain_id: int | None = None,
        poll_latency_seconds: float = 1.0,
    ) -> None:
        super().__init__(session_key_manager_address)
        self._rpc_url = rpc_url
        self._chain_id = chain_id
        self._poll_latency = poll_latency_seconds
        self._w3: AsyncWeb3 | None = None
        self._relayer: LocalAccount | None = (
            Account.from_key(relayer_private_key) if relayer_private_key else None
        )
        self._submit_lock = asyncio.Lock()

    @property
    def relayer_address(self) -> str | None:
        return self._relayer.address if self._relayer else None

    def _get_w3(self) -> AsyncWeb3:
        """Return the Web3 instance, raising if not initialized."""
        if self._w3 is None:
            raise ChainClientError("Chain client not initialized. Call initialize() first.")
        return self._w3

    async def initialize(self) -> None:
        """Connect to the RPC endpoint and resolve the chain id."""
        self._w3 = AsyncWeb3(AsyncHTTPProvider(self._rpc_url))

        try:
            node_chain_id: int = await self._w3.eth.chain_id
        except Exception as e:
            raise ChainClientError(f"Failed to connect to {self._rpc_url}: {e}") from e

        if self._chain_id is not None and self._chain_id != node_chain_id:
            raise ChainClientError(
                f"Configured chain id {self._chain_id} does not match node ({node_chain_id})"
            )
        self._chain_id = node_chain_id
        self._initialized = True

        logger.info(
            "chain_client_initialized",
            chain_id=node_chain_id,
            relayer=self.relayer_address,
        )

    async def close(self) -> None:
        if self._w3 and hasattr(self._w3.provider, "disconnect"):
            await self._w3.provider.disconnect()
        self._w3 = None
        self._initialized = False

    # ==================== Transactions ====================

    def _contract_function(self, w3: AsyncWeb3, call: ContractCall) -> Any:
        if not call.abi:
            raise ChainClientError("ABI required for contract calls")
        contract = w3.eth.contract(
            address=Web3.to_checksum_address(call.contract_address),
            abi=call.abi,
        )
        func = getattr(contract.functions, call.function_name)
        return func(*coerce_arguments(call))

    async def submit(self, call: ContractCall) -> TransactionHandle:
        self._ensure_initialized()
        w3 = self._get_w3()

        if self._relayer is None:
            raise ChainClientError("No relayer account configured")
        relayer = self._relayer

        function = self._contract_function(w3, call)

        async with self._submit_lock:
            nonce = await w3.eth.get_transaction_count(relayer.address, "pending")
            try:
                # Fills gas and EIP-1559 fees; simulation reverts surface here.
                tx = await function.build_transaction(
                    {
                        "from": relayer.address,
                        "nonce": nonce,
                        "chainId": self._chain_id,
                    }
                )
            except ContractLogicError as e:
                raise TransactionFailedError(f"{call.function_name} reverted: {e}") from e

            signed = relayer.sign_transaction(tx)
            tx_hash = Web3.to_hex(await w3.eth.send_raw_transaction(signed.raw_transaction))

        logger.info(
            "transaction_submitted",
            tx_hash=tx_hash,
            function=call.function_name,
            contract=call.contract_address,
            relayer_nonce=nonce,
        )
        return TransactionHandle(tx_hash=tx_hash, from_address=relayer.address, call=call)

    async def confirm(
        self,
        handle: TransactionHandle,
        timeout_seconds: float = 120,
    ) -> TransactionOutcome:
        self._ensure_initialized()
        w3 = self._get_w3()

        try:
            receipt: Any = await w3.eth.wait_for_transaction_receipt(
                handle.tx_hash,
                timeout=timeout_seconds,
                poll_latency=self._poll_latency,
            )
        except TimeExhausted as e:
            raise ConfirmationTimeoutError(
                f"Transaction {handle.tx_hash} not confirmed within {timeout_seconds}s"
            ) from e

        if receipt["status"] != 1:
            raise TransactionFailedError(f"Transaction {handle.tx_hash} reverted")

        outcome = TransactionOutcome(
            tx_hash=handle.tx_hash,
            status=TransactionStatus.CONFIRMED,
            block_number=receipt["blockNumber"],
            gas_used=receipt["gasUsed"],
        )
        logger.info(
            "transaction_confirmed",
            tx_hash=handle.tx_hash,
            block_number=outcome.block_number,
            gas_used=outcome.gas_used,
        )
        return outcome

    async def call(self, call: ContractCall) -> Any:
        self._ensure_initialized()
        w3 = self._get_w3()
        try:
            return await self._contract_function(w3, call).call()
        except ContractLogicError as e:
            raise ChainClientError(f"{call.function_name} call reverted: {e}") from e
        except Exception as e:
            raise ChainClientError(f"{call.function_name} call failed: {e}") from e
