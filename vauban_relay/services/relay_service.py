"""
Relay Service

Server-side trust boundary of the gasless pipeline. Each request moves
through

    RECEIVED -> VALIDATED -> AUTHORIZATION_CHECKED -> SUBMITTED -> CONFIRMED

and any step may end in ERROR. Failures are raised as RelayError subclasses
carrying their HTTP rendering. There are no internal retries and nothing is
rolled back; a failed request leaves nonce handling to the caller.

Exactly one ``subject:added`` event is emitted per confirmed request, before
the result is returned. No error path emits.
"""

import asyncio
from collections.abc import Mapping
from enum import Enum
from typing import Any

import structlog

from ..chains.abis import SOCIAL_ABI
from ..chains.base_client import BaseChainClient, ContractCall, TransactionHandle, TransactionOutcome
from ..exceptions import (
    AuthorizationError,
    ConfigurationError,
    ConfirmationError,
    ExecutionError,
)
from ..kernel.event_system import EventBus
from ..models.base import mask_address
from ..models.events import EventName
from ..models.relay import RelayHealth, RelayRequest, RelayResult
from ..security.policy import SecurityPolicy
from ..security.signing import SignatureVerifier, relay_message_hash, verify_relay_signature

logger = structlog.get_logger(__name__)

RELAY_FUNCTION = "add_comment_with_session_key"


class RelayState(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    AUTHORIZATION_CHECKED = "authorization_checked"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    ERROR = "error"


class RelayService:
    """
    Verifies session-key signed comment requests and relays them on-chain.

    Args:
        chain_client: Ledger access through the relayer account
        event_bus: Bus receiving ``subject:added`` after confirmation
        policy: Signature enforcement, fixed for the service's lifetime
        social_contract_address: Destination of relayed comments
        confirmation_timeout_seconds: Upper bound on the receipt wait
        verifier: Signature check; defaults to secp256k1 recovery
    """

    def __init__(
        self,
        chain_client: BaseChainClient,
        event_bus: EventBus,
        policy: SecurityPolicy,
        social_contract_address: str | None,
        confirmation_timeout_seconds: float = 120,
        verifier: SignatureVerifier = verify_relay_signature,
    ):
        self.chain = chain_client
        self.event_bus = event_bus
        self.policy = policy
        self.social_contract_address = social_contract_address
        self.confirmation_timeout_seconds = confirmation_timeout_seconds
        self.verifier = verifier

    async def relay(self, payload: Mapping[str, Any] | RelayRequest) -> RelayResult:
        """
        Run one request through the pipeline.

        Raises:
            RequestError: Missing or malformed fields (400)
            ConfigurationError: No destination contract configured (500)
            AuthorizationError: Signature rejected under a strict policy (401)
            ExecutionError: Submission failed (500)
            ConfirmationError: Submitted but not confirmed (500)
        """
        log = logger.bind(state=RelayState.RECEIVED.value)

        request = payload if isinstance(payload, RelayRequest) else RelayRequest.from_payload(payload)
        log = log.bind(
            state=RelayState.VALIDATED.value,
            subject_id=request.subject_id,
            session_key=request.session_public_key,
            nonce=request.nonce,
        )

        if not self.social_contract_address:
            log.error("relay_failed", state=RelayState.ERROR.value, reason="social_contract_not_configured")
            raise ConfigurationError("Social contract address not configured")

        self._check_authorization(request, log)
        log = log.bind(state=RelayState.AUTHORIZATION_CHECKED.value)

        handle = await self._submit(request, log)
        log = log.bind(state=RelayState.SUBMITTED.value, tx_hash=handle.tx_hash)

        await self._confirm(handle, log)
        log.info("relay_confirmed", state=RelayState.CONFIRMED.value)

        self.event_bus.emit(
            EventName.SUBJECT_ADDED,
            {"subjectId": request.subject_id, "author": request.user_address},
        )
        return RelayResult(transaction_hash=handle.tx_hash)

    def _check_authorization(self, request: RelayRequest, log: Any) -> None:
        message_hash = relay_message_hash(
            request.subject_id,
            request.content_hash,
            request.parent_id,
            request.user_address,
            request.nonce,
        )

        try:
            valid = self.verifier(message_hash, request.signature, request.session_public_key)
        except Exception as e:
            if self.policy.enforce_signatures:
                log.warning("relay_rejected", state=RelayState.ERROR.value, reason="verification_error", error=str(e))
                raise AuthorizationError("Signature verification failed") from e
            log.warning("signature_verification_error_ignored", error=str(e))
            return

        if not valid:
            if self.policy.enforce_signatures:
                log.warning("relay_rejected", state=RelayState.ERROR.value, reason="invalid_signature")
                raise AuthorizationError("Invalid signature")
            log.warning("invalid_signature_ignored")

    async def _submit(self, request: RelayRequest, log: Any) -> TransactionHandle:
        call = ContractCall(
            contract_address=self.social_contract_address,
            function_name=RELAY_FUNCTION,
            args=(
                request.subject_id,
                request.content_hash,
                request.parent_id,
                request.session_public_key,
                request.user_address,
                request.nonce,
            ),
            abi=SOCIAL_ABI,
        )
        try:
            handle = await self.chain.submit(call)
        except Exception as e:
            log.error("relay_failed", state=RelayState.ERROR.value, stage="submit", error=str(e))
            raise ExecutionError(message=str(e)) from e

        log.info("relay_submitted", tx_hash=handle.tx_hash)
        return handle

    async def _confirm(self, handle: TransactionHandle, log: Any) -> TransactionOutcome:
        timeout = self.confirmation_timeout_seconds
        try:
            return await asyncio.wait_for(
                self.chain.confirm(handle, timeout_seconds=timeout),
                timeout=timeout,
            )
        except TimeoutError as e:
            log.error("relay_failed", state=RelayState.ERROR.value, stage="confirm", error="timeout")
            raise ConfirmationError(
                message=f"Transaction {handle.tx_hash} not confirmed within {timeout}s"
            ) from e
        except Exception as e:
            log.error("relay_failed", state=RelayState.ERROR.value, stage="confirm", error=str(e))
            raise ConfirmationError(message=str(e)) from e

    def health(self) -> RelayHealth:
        """Masked identity of the relayer and destination. No side effects."""
        return RelayHealth(
            relayer=mask_address(self.chain.relayer_address),
            social_contract=mask_address(self.social_contract_address),
        )
