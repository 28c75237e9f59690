"""
Tests for the M2M API key gate.
"""

import pytest

from vauban_relay.security.api_keys import API_KEY_PREFIX, M2MGate, generate_api_key

API_KEY = "vb_TESTKEYtestkey0123456789ABCDEFG"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gate(clock) -> M2MGate:
    return M2MGate(API_KEY, max_requests=3, window_seconds=60, clock=clock)


class TestGenerateApiKey:
    def test_format(self):
        key = generate_api_key()

        assert key.startswith(API_KEY_PREFIX)
        assert len(key) == len(API_KEY_PREFIX) + 32
        assert key[3:].isalnum()

    def test_unique(self):
        assert generate_api_key() != generate_api_key()


class TestValidate:
    """Tests for M2MGate.validate()."""

    def test_matching_key(self, gate):
        assert gate.validate(API_KEY) is True

    @pytest.mark.parametrize("candidate", [None, "", "vb_wrong", API_KEY + "x", API_KEY.lower()])
    def test_rejected_keys(self, gate, candidate):
        assert gate.validate(candidate) is False

    def test_unconfigured_gate_rejects_everything(self):
        gate = M2MGate(None)

        assert gate.configured is False
        assert gate.validate(API_KEY) is False


class TestRateLimit:
    """Tests for the fixed-window limiter."""

    def test_allows_up_to_limit(self, gate):
        assert [gate.check_rate_limit(API_KEY) for _ in range(4)] == [True, True, True, False]

    def test_remaining_counts_down(self, gate):
        assert gate.remaining(API_KEY) == 3
        gate.check_rate_limit(API_KEY)
        gate.check_rate_limit(API_KEY)

        assert gate.remaining(API_KEY) == 1

    def test_window_resets(self, gate, clock):
        for _ in range(3):
            gate.check_rate_limit(API_KEY)
        assert gate.check_rate_limit(API_KEY) is False

        clock.advance(60)

        assert gate.check_rate_limit(API_KEY) is True
        assert gate.remaining(API_KEY) == 2

    def test_window_is_fixed_not_sliding(self, gate, clock):
        gate.check_rate_limit(API_KEY)
        clock.advance(59)
        gate.check_rate_limit(API_KEY)
        gate.check_rate_limit(API_KEY)

        assert gate.check_rate_limit(API_KEY) is False
        assert gate.reset_at(API_KEY) == clock.now + 1

    def test_keys_counted_separately(self, gate):
        for _ in range(3):
            gate.check_rate_limit(API_KEY)

        assert gate.check_rate_limit("vb_another") is True

    def test_headers(self, gate, clock):
        gate.check_rate_limit(API_KEY)

        headers = gate.rate_limit_headers(API_KEY)

        assert headers["X-RateLimit-Remaining"] == "2"
        assert headers["X-RateLimit-Reset"] == str(int((clock.now + 60) * 1000))
