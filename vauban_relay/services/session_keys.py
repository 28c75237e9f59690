"""
Session Key Agent

Client-side owner of an ephemeral delegated signing key. It creates the key,
registers or revokes it through the user's wallet, reads the on-chain nonce
and signs one relay request per user action.

The private key stays in the SessionKeyStore; only signatures leave it.
"""

import json
import os
from datetime import timedelta
from pathlib import Path
from typing import Protocol

import structlog
from eth_account import Account

from ..chains.abis import SESSION_KEY_MANAGER_ABI
from ..chains.base_client import BaseChainClient, ChainClientError, ContractCall, TransactionHandle
from ..config import Settings
from ..exceptions import SessionKeyError, SessionKeyNotFoundError
from ..models.base import utc_now
from ..models.relay import RelayRequest
from ..models.session_key import DEFAULT_SESSION_KEY_TTL, SessionKey
from ..security.policy import NoncePolicy
from ..security.signing import relay_message_hash, sign_relay_message
from .content_commitment import ContentCommitment

logger = structlog.get_logger(__name__)


# =============================================================================
# Storage
# =============================================================================


class SessionKeyStore(Protocol):
    def load(self, master_account: str) -> SessionKey | None: ...

    def save(self, key: SessionKey) -> None: ...

    def delete(self, master_account: str) -> None: ...


class InMemorySessionKeyStore:
    """One session key per master account, held in memory."""

    def __init__(self) -> None:
        self._keys: dict[str, SessionKey] = {}

    def load(self, master_account: str) -> SessionKey | None:
        return self._keys.get(master_account.lower())

    def save(self, key: SessionKey) -> None:
        self._keys[key.master_account.lower()] = key

    def delete(self, master_account: str) -> None:
        self._keys.pop(master_account.lower(), None)


class FileSessionKeyStore:
    """
    One JSON file per master account under ``directory``.

    Files are created with mode 0600 since they hold the private key.
    """

    FILE_PREFIX = "session_key_"

    def __init__(self, directory: str | Path):
        self._directory = Path(directory)

    def _path(self, master_account: str) -> Path:
        return self._directory / f"{self.FILE_PREFIX}{master_account.lower()}.json"

    def load(self, master_account: str) -> SessionKey | None:
        path = self._path(master_account)
        if not path.exists():
            return None
        try:
            return SessionKey.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, ValueError) as e:
            logger.error("session_key_load_failed", path=str(path), error=str(e))
            return None

    def save(self, key: SessionKey) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key.master_account)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(key.to_storage(), f)

    def delete(self, master_account: str) -> None:
        self._path(master_account).unlink(missing_ok=True)


class WalletProvider(Protocol):
    """The user's connected wallet, able to submit calls as the master account."""

    address: str

    async def submit(self, call: ContractCall) -> TransactionHandle: ...


# =============================================================================
# Agent
# =============================================================================


class SessionKeyAgent:
    """
    Produces authenticated, replay-resistant relay requests for one account.

    Args:
        master_account: Address of the user the key acts for
        chain_client: Used to read nonces and confirm registrations
        store: Where the key lives between actions
        nonce_policy: How the next nonce is chosen after a failed relay
        key_ttl: Lifetime of newly created keys
        confirmation_timeout_seconds: Bound on registration/revocation waits
    """

    def __init__(
        self,
        master_account: str,
        chain_client: BaseChainClient,
        store: SessionKeyStore | None = None,
        nonce_policy: NoncePolicy = NoncePolicy.REQUERY,
        key_ttl: timedelta = DEFAULT_SESSION_KEY_TTL,
        confirmation_timeout_seconds: float = 120,
    ):
        self.master_account = master_account
        self.chain = chain_client
        self.store: SessionKeyStore = store if store is not None else InMemorySessionKeyStore()
        self.nonce_policy = NoncePolicy(nonce_policy)
        self.key_ttl = key_ttl
        self.confirmation_timeout_seconds = confirmation_timeout_seconds

    @classmethod
    def from_settings(
        cls,
        master_account: str,
        chain_client: BaseChainClient,
        settings: Settings,
        store: SessionKeyStore | None = None,
        nonce_policy: NoncePolicy = NoncePolicy.REQUERY,
    ) -> "SessionKeyAgent":
        """Agent whose key lifetime and wait bounds come from ``settings``."""
        return cls(
            master_account,
            chain_client,
            store=store,
            nonce_policy=nonce_policy,
            key_ttl=timedelta(seconds=settings.session_key_expiry_seconds),
            confirmation_timeout_seconds=settings.confirmation_timeout_seconds,
        )

    # ==================== Key lifecycle ====================

    def active_key(self) -> SessionKey | None:
        """The stored key if it is unexpired and belongs to this account."""
        key = self.store.load(self.master_account)
        if key is None:
            return None
        if key.is_expired() or not key.belongs_to(self.master_account):
            logger.info("session_key_discarded", public_key=key.public_key, expired=key.is_expired())
            self.store.delete(self.master_account)
            return None
        return key

    def require_key(self) -> SessionKey:
        key = self.active_key()
        if key is None:
            raise SessionKeyNotFoundError(f"No active session key for {self.master_account}")
        return key

    def create_key(self) -> SessionKey:
        """Generate and store a fresh key. It is not usable for relaying until registered."""
        try:
            account = Account.create()
            now = utc_now()
            key = SessionKey(
                public_key=account.address,
                private_key="0x" + bytes(account.key).hex(),
                master_account=self.master_account,
                created_at=now,
                expires_at=now + self.key_ttl,
            )
            self.store.save(key)
        except OSError as e:
            raise SessionKeyError(f"Failed to persist session key: {e}") from e

        logger.info("session_key_created", public_key=key.public_key, expires_at=key.expires_at.isoformat())
        return key

    async def register_key(self, wallet: WalletProvider) -> SessionKey:
        """Authorize the active key on-chain through the user's wallet."""
        key = self.require_key()
        if wallet.address.lower() != self.master_account.lower():
            raise SessionKeyError("Wallet does not control the master account")
        if key.is_on_chain:
            return key

        call = self._manager_call(
            "create_session_key",
            (key.public_key, int(key.expires_at.timestamp())),
        )
        try:
            handle = await wallet.submit(call)
            await self.chain.confirm(handle, timeout_seconds=self.confirmation_timeout_seconds)
        except ChainClientError as e:
            raise SessionKeyError(f"Session key registration failed: {e}") from e

        key.is_on_chain = True
        self.store.save(key)
        logger.info("session_key_registered", public_key=key.public_key, tx_hash=handle.tx_hash)
        return key

    async def revoke_key(self, wallet: WalletProvider | None = None) -> None:
        """
        Revoke on-chain when the key was registered, and always forget it locally.

        Raises:
            SessionKeyError: The on-chain revocation failed (the local copy is
                still removed)
        """
        key = self.store.load(self.master_account)
        if key is None:
            return

        try:
            if key.is_on_chain and wallet is not None:
                call = self._manager_call("revoke_session_key", (key.public_key,))
                try:
                    handle = await wallet.submit(call)
                    await self.chain.confirm(handle, timeout_seconds=self.confirmation_timeout_seconds)
                except ChainClientError as e:
                    raise SessionKeyError(f"Session key revocation failed: {e}") from e
        finally:
            self.store.delete(self.master_account)
            logger.info("session_key_revoked", public_key=key.public_key)

    def _manager_call(self, function_name: str, args: tuple) -> ContractCall:
        if not self.chain.session_key_manager_address:
            raise SessionKeyError("Session key manager address not configured")
        return ContractCall(
            contract_address=self.chain.session_key_manager_address,
            function_name=function_name,
            args=args,
            abi=SESSION_KEY_MANAGER_ABI,
        )

    # ==================== Nonces & signing ====================

    async def next_nonce(self) -> int:
        """
        Nonce for the next request, read from the authorization contract.

        Under NoncePolicy.ADVANCE a locally signed nonce is never handed out
        twice even if the chain has not consumed it.

        Raises:
            SessionKeyError: The chain could not be read. No cached value is
                returned in its place.
        """
        key = self.require_key()
        try:
            chain_nonce = await self.chain.current_nonce(key.public_key)
        except ChainClientError as e:
            raise SessionKeyError(f"Failed to read session key nonce: {e}") from e

        if self.nonce_policy == NoncePolicy.ADVANCE:
            nonce = max(chain_nonce, key.nonce)
        else:
            nonce = chain_nonce

        if nonce != key.nonce:
            logger.debug("session_key_nonce_resynced", local=key.nonce, chain=chain_nonce, chosen=nonce)
        return nonce

    def sign(
        self,
        subject_id: str,
        content_hash: str,
        parent_id: str | None,
        user_address: str,
        nonce: int,
    ) -> str:
        """
        Sign the ordered relay fields with the session key.

        The local nonce advances to ``nonce + 1`` whether or not the request
        later lands.
        """
        key = self.require_key()
        message_hash = relay_message_hash(subject_id, content_hash, parent_id, user_address, nonce)
        signature = sign_relay_message(message_hash, key.private_key.get_secret_value())

        key.nonce = nonce + 1
        self.store.save(key)
        return signature

    async def prepare_request(
        self,
        commitment: ContentCommitment,
        body: str,
        subject_id: str,
        parent_id: str | None = None,
    ) -> RelayRequest:
        """Commit the body, then sign a relay request for it."""
        content_hash = commitment.commit(body)
        key = self.require_key()
        nonce = await self.next_nonce()
        signature = self.sign(subject_id, content_hash, parent_id, self.master_account, nonce)

        return RelayRequest.model_validate(
            {
                "subject_id": subject_id,
                "content_hash": content_hash,
                "parent_id": parent_id,
                "session_public_key": key.public_key,
                "user_address": self.master_account,
                "signature": signature,
                "nonce": nonce,
            }
        )
