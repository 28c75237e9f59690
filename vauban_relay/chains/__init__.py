"""Ledger clients."""

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
from .evm_client import EVMChainClient
from .mock_client import (
    DEFAULT_MOCK_RELAYER,
    DEFAULT_MOCK_SESSION_KEY_MANAGER,
    MockChainClient,
    MockWallet,
)


def create_chain_client(settings) -> BaseChainClient:
    """Build the chain client selected by ``settings.chain_backend``."""
    if settings.chain_backend == "mock":
        return MockChainClient(
            relayer_address=settings.relayer_address or DEFAULT_MOCK_RELAYER,
            session_key_manager_address=settings.session_key_manager_address
            or DEFAULT_MOCK_SESSION_KEY_MANAGER,
        )
    return EVMChainClient(
        rpc_url=settings.rpc_url,
        relayer_private_key=(
            settings.relayer_private_key.get_secret_value()
            if settings.relayer_private_key
            else None
        ),
        session_key_manager_address=settings.session_key_manager_address,
        chain_id=settings.chain_id,
    )


__all__ = [
    "BaseChainClient",
    "ChainClientError",
    "ConfirmationTimeoutError",
    "ContractCall",
    "EVMChainClient",
    "MockChainClient",
    "MockWallet",
    "TransactionFailedError",
    "TransactionHandle",
    "TransactionOutcome",
    "TransactionStatus",
    "create_chain_client",
]
