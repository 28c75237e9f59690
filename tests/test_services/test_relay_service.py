"""
Tests for the relay state machine.

The chain is a stub; signature verification is injected so that each
enforcement path can be driven directly.
"""

import asyncio
from unittest.mock import MagicMock

import pytest
from conftest import RELAYER, SOCIAL_CONTRACT

from vauban_relay.chains import ChainClientError, ConfirmationTimeoutError, TransactionFailedError
from vauban_relay.exceptions import (
    AuthorizationError,
    ConfigurationError,
    ConfirmationError,
    ExecutionError,
    RequestError,
)
from vauban_relay.security.policy import SecurityPolicy
from vauban_relay.services.relay_service import RELAY_FUNCTION, RelayService

# =============================================================================
# Fixtures
# =============================================================================


def _valid_payload(**overrides):
    payload = {
        "subjectId": "1",
        "contentHash": "0xabcdef",
        "sessionPublicKey": "0xpubkey",
        "userAddress": "0xuser123",
        "signature": "0xsig123",
        "nonce": 1,
    }
    payload.update(overrides)
    return payload


def _accept(*args):
    return True


def _reject(*args):
    return False


def _explode(*args):
    raise ValueError("malformed signature")


@pytest.fixture
def make_service(stub_chain, event_bus):
    def _make(policy=None, verifier=_accept, social_contract_address=SOCIAL_CONTRACT, timeout=5):
        return RelayService(
            chain_client=stub_chain,
            event_bus=event_bus,
            policy=policy or SecurityPolicy.permissive("testing"),
            social_contract_address=social_contract_address,
            confirmation_timeout_seconds=timeout,
            verifier=verifier,
        )

    return _make


@pytest.fixture
def strict_policy():
    return SecurityPolicy.strict("production")


# =============================================================================
# Happy Path
# =============================================================================


class TestRelaySuccess:
    """Tests for a request that reaches CONFIRMED."""

    async def test_end_to_end(self, make_service, stub_chain, recorded_events):
        service = make_service(policy=SecurityPolicy.strict("production"))

        result = await service.relay(_valid_payload())

        assert result.to_response() == {
            "success": True,
            "transactionHash": "0xtxhash123",
            "message": "Comment posted successfully (gasless)",
        }
        assert recorded_events == [("subject:added", {"subjectId": "1", "author": "0xuser123"})]
        stub_chain.submit.assert_awaited_once()
        stub_chain.confirm.assert_awaited_once()

    async def test_contract_call_arguments_in_order(self, make_service, stub_chain):
        await make_service().relay(_valid_payload(parentId="7"))

        call = stub_chain.submit.await_args.args[0]
        assert call.contract_address == SOCIAL_CONTRACT
        assert call.function_name == RELAY_FUNCTION
        assert call.args == ("1", "0xabcdef", "7", "0xpubkey", "0xuser123", 1)

    async def test_missing_parent_uses_sentinel(self, make_service, stub_chain):
        await make_service().relay(_valid_payload())

        call = stub_chain.submit.await_args.args[0]
        assert call.args[2] == "0"

    @pytest.mark.parametrize("parent", [None, ""])
    async def test_empty_parent_uses_sentinel(self, make_service, stub_chain, parent):
        await make_service().relay(_valid_payload(parentId=parent))

        assert stub_chain.submit.await_args.args[0].args[2] == "0"

    async def test_legacy_aliases_accepted(self, make_service, stub_chain):
        payload = _valid_payload(parentCommentId=4)
        payload["postId"] = payload.pop("subjectId")

        await make_service().relay(payload)

        call = stub_chain.submit.await_args.args[0]
        assert call.args[0] == "1"
        assert call.args[2] == "4"

    async def test_numeric_identifiers_and_string_nonce(self, make_service, stub_chain):
        await make_service().relay(_valid_payload(subjectId=12, nonce="3"))

        call = stub_chain.submit.await_args.args[0]
        assert call.args[0] == "12"
        assert call.args[5] == 3

    async def test_confirmation_timeout_passed_to_chain(self, make_service, stub_chain):
        await make_service(timeout=42).relay(_valid_payload())

        assert stub_chain.confirm.await_args.kwargs["timeout_seconds"] == 42


# =============================================================================
# Validation
# =============================================================================


class TestValidation:
    """Tests for RECEIVED -> VALIDATED."""

    @pytest.mark.parametrize(
        "field", ["subjectId", "contentHash", "sessionPublicKey", "userAddress", "signature"]
    )
    async def test_missing_required_field(self, make_service, stub_chain, recorded_events, field):
        payload = _valid_payload()
        del payload[field]

        with pytest.raises(RequestError) as exc_info:
            await make_service().relay(payload)

        assert exc_info.value.status_code == 400
        assert "Missing required fields" in exc_info.value.error
        assert recorded_events == []
        stub_chain.submit.assert_not_awaited()

    async def test_empty_string_counts_as_missing(self, make_service, stub_chain):
        with pytest.raises(RequestError, match="Missing required fields"):
            await make_service().relay(_valid_payload(signature=""))

        stub_chain.submit.assert_not_awaited()

    async def test_missing_fields_listed(self, make_service):
        payload = _valid_payload()
        del payload["subjectId"]
        del payload["signature"]

        with pytest.raises(RequestError) as exc_info:
            await make_service().relay(payload)

        assert exc_info.value.details == {"missing": ["subject_id", "signature"]}

    @pytest.mark.parametrize("nonce", ["abc", -1, True, None, "1.5"])
    async def test_invalid_nonce(self, make_service, stub_chain, nonce):
        with pytest.raises(RequestError, match="Invalid nonce"):
            await make_service().relay(_valid_payload(nonce=nonce))

        stub_chain.submit.assert_not_awaited()

    async def test_non_object_body(self, make_service):
        with pytest.raises(RequestError, match="Invalid request body"):
            await make_service().relay(["not", "an", "object"])

    async def test_missing_social_contract(self, make_service, stub_chain, recorded_events):
        service = make_service(social_contract_address=None)

        with pytest.raises(ConfigurationError) as exc_info:
            await service.relay(_valid_payload())

        assert exc_info.value.status_code == 500
        assert exc_info.value.error == "Social contract address not configured"
        stub_chain.submit.assert_not_awaited()
        assert recorded_events == []


# =============================================================================
# Authorization
# =============================================================================


class TestAuthorization:
    """Tests for VALIDATED -> AUTHORIZATION_CHECKED under each policy."""

    async def test_strict_rejects_invalid_signature(
        self, make_service, strict_policy, stub_chain, recorded_events
    ):
        service = make_service(policy=strict_policy, verifier=_reject)

        with pytest.raises(AuthorizationError) as exc_info:
            await service.relay(_valid_payload())

        assert exc_info.value.status_code == 401
        assert exc_info.value.error == "Invalid signature"
        stub_chain.submit.assert_not_awaited()
        assert recorded_events == []

    async def test_strict_rejects_unverifiable_signature(self, make_service, strict_policy, stub_chain):
        service = make_service(policy=strict_policy, verifier=_explode)

        with pytest.raises(AuthorizationError) as exc_info:
            await service.relay(_valid_payload())

        assert exc_info.value.error == "Signature verification failed"
        stub_chain.submit.assert_not_awaited()

    async def test_strict_with_real_verifier_rejects_garbage(self, stub_chain, event_bus, strict_policy):
        service = RelayService(stub_chain, event_bus, strict_policy, SOCIAL_CONTRACT)

        with pytest.raises(AuthorizationError):
            await service.relay(_valid_payload())

        stub_chain.submit.assert_not_awaited()

    async def test_permissive_relays_invalid_signature(self, make_service, stub_chain, recorded_events):
        result = await make_service(verifier=_reject).relay(_valid_payload())

        assert result.transaction_hash == "0xtxhash123"
        assert len(recorded_events) == 1

    async def test_permissive_relays_unverifiable_signature(self, make_service, stub_chain):
        result = await make_service(verifier=_explode).relay(_valid_payload())

        assert result.success is True
        stub_chain.submit.assert_awaited_once()

    async def test_verifier_receives_recomputed_hash(self, make_service):
        verifier = MagicMock(return_value=True)

        await make_service(verifier=verifier).relay(_valid_payload())

        message_hash, signature, session_key = verifier.call_args.args
        assert isinstance(message_hash, bytes) and len(message_hash) == 32
        assert signature == "0xsig123"
        assert session_key == "0xpubkey"


# =============================================================================
# Submission and Confirmation
# =============================================================================


class TestExecutionFailures:
    """Tests for SUBMITTED and CONFIRMED failures."""

    async def test_submit_failure(self, make_service, stub_chain, recorded_events):
        stub_chain.submit.side_effect = TransactionFailedError("execution reverted: invalid nonce")

        with pytest.raises(ExecutionError) as exc_info:
            await make_service().relay(_valid_payload())

        assert exc_info.value.status_code == 500
        assert exc_info.value.to_dict() == {
            "error": "Failed to relay comment",
            "message": "execution reverted: invalid nonce",
        }
        stub_chain.confirm.assert_not_awaited()
        assert recorded_events == []

    async def test_unexpected_submit_error_is_execution_error(self, make_service, stub_chain):
        stub_chain.submit.side_effect = RuntimeError("socket closed")

        with pytest.raises(ExecutionError, match="socket closed"):
            await make_service().relay(_valid_payload())

    async def test_confirmation_failure(self, make_service, stub_chain, recorded_events):
        stub_chain.confirm.side_effect = TransactionFailedError("Transaction 0xtxhash123 reverted")

        with pytest.raises(ConfirmationError) as exc_info:
            await make_service().relay(_valid_payload())

        assert exc_info.value.status_code == 500
        assert "reverted" in exc_info.value.message
        assert recorded_events == []

    async def test_chain_reported_timeout(self, make_service, stub_chain):
        stub_chain.confirm.side_effect = ConfirmationTimeoutError("not confirmed within 5s")

        with pytest.raises(ConfirmationError, match="not confirmed"):
            await make_service().relay(_valid_payload())

    async def test_hung_confirmation_is_bounded(self, make_service, stub_chain, recorded_events):
        async def _hang(*args, **kwargs):
            await asyncio.sleep(10)

        stub_chain.confirm.side_effect = _hang

        with pytest.raises(ConfirmationError) as exc_info:
            await make_service(timeout=0.05).relay(_valid_payload())

        assert "0xtxhash123" in exc_info.value.message
        assert recorded_events == []

    async def test_no_retry_on_failure(self, make_service, stub_chain):
        stub_chain.submit.side_effect = ChainClientError("rpc down")

        with pytest.raises(ExecutionError):
            await make_service().relay(_valid_payload())

        assert stub_chain.submit.await_count == 1


# =============================================================================
# Health
# =============================================================================


class TestHealth:
    def test_masked_identity(self, make_service):
        health = make_service().health().to_response()

        assert health == {
            "status": "ok",
            "relayer": RELAYER[:10] + "...",
            "socialContract": SOCIAL_CONTRACT[:10] + "...",
        }

    def test_unconfigured(self, make_service, stub_chain):
        stub_chain.relayer_address = None

        health = make_service(social_contract_address=None).health()

        assert health.relayer == "not configured"
        assert health.social_contract == "not configured"
