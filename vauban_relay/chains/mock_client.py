"""
In-memory chain client for development and tests.

Implements the subset of contract behaviour the relay relies on: session key
registration with per-key nonces, comment relaying with exact nonce
matching, and post publishing. Every submission is recorded so tests can
assert on what reached the ledger.
"""

import asyncio
import itertools
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog
from eth_utils import keccak

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

DEFAULT_MOCK_RELAYER = "0x00000000000000000000000000000000000000aa"
DEFAULT_MOCK_SESSION_KEY_MANAGER = "0x00000000000000000000000000000000000000bb"


@dataclass
class MockSessionKey:
    master_account: str
    expires_at: int
    nonce: int = 0
    revoked: bool = False


@dataclass
class MockReceipt:
    status: TransactionStatus
    block_number: int
    return_value: Any = None


@dataclass
class MockLedger:
    """State held by the mock chain."""

    session_keys: dict[str, MockSessionKey] = field(default_factory=dict)
    comments: list[dict[str, Any]] = field(default_factory=list)
    posts: list[dict[str, Any]] = field(default_factory=list)


class MockChainClient(BaseChainClient):
    """
    Chain client backed by an in-memory ledger.

    Args:
        relayer_address: Address reported as the relayer
        session_key_manager_address: Address used for nonce reads
        require_registered_keys: Revert relayed comments whose session key
            was never registered
    """

    def __init__(
        self,
        relayer_address: str | None = DEFAULT_MOCK_RELAYER,
        session_key_manager_address: str | None = DEFAULT_MOCK_SESSION_KEY_MANAGER,
        require_registered_keys: bool = False,
    ):
        super().__init__(session_key_manager_address)
        self._relayer_address = relayer_address
        self.require_registered_keys = require_registered_keys
        self.ledger = MockLedger()
        self.submitted: list[TransactionHandle] = []
        self.confirmed: list[TransactionOutcome] = []
        self._receipts: dict[str, MockReceipt] = {}
        self._counter = itertools.count(1)
        self._block = 0

        # Failure injection
        self.fail_next_submit: Exception | None = None
        self.fail_confirmations = False
        self.hang_confirmations = False
        self.fail_nonce_reads = False

    @property
    def relayer_address(self) -> str | None:
        return self._relayer_address

    async def initialize(self) -> None:
        self._initialized = True
        logger.info("mock_chain_initialized", relayer=self._relayer_address)

    async def close(self) -> None:
        self._initialized = False

    # ==================== Transactions ====================

    async def submit(self, call: ContractCall) -> TransactionHandle:
        """Submit from the relayer account."""
        if self._relayer_address is None:
            raise ChainClientError("No relayer account configured")
        return await self.submit_from(self._relayer_address, call)

    async def submit_from(self, sender: str, call: ContractCall) -> TransactionHandle:
        """Submit ``call`` as ``sender``; used by mock wallets."""
        self._ensure_initialized()

        if self.fail_next_submit is not None:
            error, self.fail_next_submit = self.fail_next_submit, None
            raise error

        try:
            return_value = self._execute(sender, call)
        except _Revert as e:
            raise TransactionFailedError(f"{call.function_name} reverted: {e}") from e

        index = next(self._counter)
        tx_hash = "0x" + keccak(text=f"{sender.lower()}:{index}:{call.function_name}").hex()
        self._block += 1
        self._receipts[tx_hash] = MockReceipt(
            status=TransactionStatus.CONFIRMED,
            block_number=self._block,
            return_value=return_value,
        )

        handle = TransactionHandle(tx_hash=tx_hash, from_address=sender, call=call)
        self.submitted.append(handle)
        logger.debug("mock_transaction_submitted", tx_hash=tx_hash, function=call.function_name)
        return handle

    async def confirm(
        self,
        handle: TransactionHandle,
        timeout_seconds: float = 120,
    ) -> TransactionOutcome:
        self._ensure_initialized()

        if self.hang_confirmations:
            await asyncio.sleep(timeout_seconds)
            raise ConfirmationTimeoutError(
                f"Transaction {handle.tx_hash} not confirmed within {timeout_seconds}s"
            )

        receipt = self._receipts.get(handle.tx_hash)
        if receipt is None:
            raise ChainClientError(f"Unknown transaction {handle.tx_hash}")
        if self.fail_confirmations or receipt.status != TransactionStatus.CONFIRMED:
            raise TransactionFailedError(f"Transaction {handle.tx_hash} reverted")

        outcome = TransactionOutcome(
            tx_hash=handle.tx_hash,
            status=receipt.status,
            block_number=receipt.block_number,
            return_value=receipt.return_value,
        )
        self.confirmed.append(outcome)
        return outcome

    async def call(self, call: ContractCall) -> Any:
        self._ensure_initialized()

        if call.function_name == "get_session_key_nonce":
            if self.fail_nonce_reads:
                raise ChainClientError("RPC unavailable")
            entry = self.ledger.session_keys.get(str(call.args[0]).lower())
            return entry.nonce if entry else 0

        raise ChainClientError(f"Unsupported view function {call.function_name}")

    # ==================== Contract behaviour ====================

    def _execute(self, sender: str, call: ContractCall) -> Any:
        handler = getattr(self, f"_exec_{call.function_name}", None)
        if handler is None:
            raise _Revert(f"unknown function {call.function_name}")
        return handler(sender, *call.args)

    def _exec_create_session_key(self, sender: str, session_key: str, expires_at: int) -> None:
        self.ledger.session_keys[session_key.lower()] = MockSessionKey(
            master_account=sender.lower(),
            expires_at=int(expires_at),
        )

    def _exec_revoke_session_key(self, sender: str, session_key: str) -> None:
        entry = self.ledger.session_keys.get(session_key.lower())
        if entry is None or entry.master_account != sender.lower():
            raise _Revert("not key owner")
        entry.revoked = True

    def _exec_add_comment_with_session_key(
        self,
        sender: str,
        post_id: Any,
        content_hash: str,
        parent_id: Any,
        session_key: str,
        user: str,
        nonce: Any,
    ) -> int:
        entry = self.ledger.session_keys.get(str(session_key).lower())
        if entry is not None:
            if entry.revoked:
                raise _Revert("session key revoked")
            if entry.master_account != str(user).lower():
                raise _Revert("session key not owned by user")
            if entry.expires_at <= int(datetime.now(UTC).timestamp()):
                raise _Revert("session key expired")
            if int(nonce) != entry.nonce:
                raise _Revert(f"invalid nonce: expected {entry.nonce}, got {nonce}")
            entry.nonce += 1
        elif self.require_registered_keys:
            raise _Revert("session key not registered")

        self.ledger.comments.append(
            {
                "post_id": str(post_id),
                "content_hash": content_hash,
                "parent_id": str(parent_id),
                "session_key": session_key,
                "author": user,
                "nonce": int(nonce),
            }
        )
        return len(self.ledger.comments)

    def _exec_publish_post(
        self,
        sender: str,
        content_uri: str,
        content_hash: str,
        price: Any,
        is_encrypted: bool,
    ) -> int:
        self.ledger.posts.append(
            {
                "author": sender,
                "content_uri": content_uri,
                "content_hash": content_hash,
                "price": int(price),
                "is_encrypted": bool(is_encrypted),
            }
        )
        return len(self.ledger.posts)

    def wallet(self, address: str) -> "MockWallet":
        """A wallet that submits through this ledger as ``address``."""
        return MockWallet(self, address)


class MockWallet:
    """Wallet provider backed by a MockChainClient."""

    def __init__(self, client: MockChainClient, address: str):
        self._client = client
        self.address = address

    async def submit(self, call: ContractCall) -> TransactionHandle:
        return await self._client.submit_from(self.address, call)


class _Revert(Exception):
    pass
