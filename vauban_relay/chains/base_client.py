"""
Chain Client Base

Narrow interface between the relay pipeline and a ledger: submit a contract
call through the relayer account, wait for its confirmation, and read the
current nonce of a session key. The relay state machine depends only on this
interface, so it runs unchanged against the web3 client and the in-memory
mock.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import structlog

from .abis import SESSION_KEY_MANAGER_ABI

logger = structlog.get_logger(__name__)


class ChainClientError(Exception):
    """Base exception for chain client errors."""
    pass


class TransactionFailedError(ChainClientError):
    """Raised when a transaction reverts or is rejected."""
    pass


class ConfirmationTimeoutError(ChainClientError):
    """Raised when a submitted transaction is not confirmed in time."""
    pass


@dataclass(frozen=True)
class ContractCall:
    """A contract function invocation with its arguments, in ABI order."""

    contract_address: str
    function_name: str
    args: tuple[Any, ...]
    abi: list[dict[str, Any]] = field(default_factory=list, compare=False, repr=False)


@dataclass(frozen=True)
class TransactionHandle:
    """Returned by submit(); identifies a broadcast transaction."""

    tx_hash: str
    from_address: str
    call: ContractCall
    submitted_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class TransactionStatus(str, Enum):
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class TransactionOutcome:
    """Result of confirm()."""

    tx_hash: str
    status: TransactionStatus
    block_number: int = 0
    gas_used: int = 0
    return_value: Any = None

    @property
    def succeeded(self) -> bool:
        return self.status == TransactionStatus.CONFIRMED


class BaseChainClient(ABC):
    """
    Abstract base class for ledger clients.

    The client owns the relayer account. Implementations must serialize use
    of that account: nonce lookup, signing and broadcast for one submission
    must not interleave with another.
    """

    def __init__(self, session_key_manager_address: str | None = None):
        """
        Initialize the chain client.

        Args:
            session_key_manager_address: Contract holding session key
                registrations and their nonces
        """
        self.session_key_manager_address = session_key_manager_address
        self._initialized = False

    @property
    @abstractmethod
    def relayer_address(self) -> str | None:
        """Address of the relayer account, or None when none is configured."""
        pass

    @abstractmethod
    async def initialize(self) -> None:
        """Establish the connection and load the relayer account."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the connection and release resources."""
        pass

    # ==================== Transactions ====================

    @abstractmethod
    async def submit(self, call: ContractCall) -> TransactionHandle:
        """
        Sign and broadcast ``call`` from the relayer account.

        Args:
            call: Contract function and arguments

        Returns:
            Handle of the broadcast transaction

        Raises:
            TransactionFailedError: The call reverted during simulation
            ChainClientError: Any other submission failure
        """
        pass

    @abstractmethod
    async def confirm(
        self,
        handle: TransactionHandle,
        timeout_seconds: float = 120,
    ) -> TransactionOutcome:
        """
        Wait until ``handle`` is mined.

        Raises:
            ConfirmationTimeoutError: Not mined within ``timeout_seconds``
            TransactionFailedError: Mined with a failed status
        """
        pass

    @abstractmethod
    async def call(self, call: ContractCall) -> Any:
        """Execute a read-only contract function."""
        pass

    # ==================== Session Keys ====================

    async def current_nonce(self, session_public_key: str) -> int:
        """
        Read the on-chain nonce of a session key.

        The chain is the source of truth so that several clients sharing a
        key observe the same counter.
        """
        if not self.session_key_manager_address:
            raise ChainClientError("Session key manager address not configured")

        nonce = await self.call(
            ContractCall(
                contract_address=self.session_key_manager_address,
                function_name="get_session_key_nonce",
                args=(session_public_key,),
                abi=SESSION_KEY_MANAGER_ABI,
            )
        )
        return int(nonce)

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise ChainClientError("Chain client not initialized. Call initialize() first.")
