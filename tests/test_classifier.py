"""Tests for the settlement error classifier."""

import asyncio

import pytest

from rewardsync.classifier import (
    ERROR_POLICIES,
    ClassifiedError,
    ErrorKind,
    Severity,
    backoff_delay,
    classify,
    format_for_log,
    is_transient_revert,
    notification_level,
)
from rewardsync.exceptions import (
    ConfirmationUnknownError,
    ContractRevertedError,
    CredentialMissingError,
    InsufficientFundsError,
    NetworkTimeoutError,
    RateLimitedError,
    RewardValidationError,
    WalletRejectedError,
)


class TestTypedErrors:
    """Typed collaborator errors map by type."""

    @pytest.mark.parametrize(
        "error, kind, retryable",
        [
            (NetworkTimeoutError("rpc slow"), ErrorKind.NETWORK_TIMEOUT, True),
            (asyncio.TimeoutError(), ErrorKind.NETWORK_TIMEOUT, True),
            (ConnectionError("reset by peer"), ErrorKind.NETWORK_TIMEOUT, True),
            (ConfirmationUnknownError("0xabc"), ErrorKind.NETWORK_TIMEOUT, True),
            (WalletRejectedError("nope"), ErrorKind.WALLET_REJECTED, False),
            (InsufficientFundsError("gas"), ErrorKind.INSUFFICIENT_FUNDS, False),
            (RateLimitedError(), ErrorKind.RATE_LIMITED, True),
            (CredentialMissingError("no key"), ErrorKind.CREDENTIAL_MISSING, False),
            (RewardValidationError("bad address"), ErrorKind.VALIDATION_ERROR, False),
        ],
    )
    def test_kind_and_retryability(self, error, kind, retryable):
        result = classify(error)
        assert result.kind is kind
        assert result.retryable is retryable

    def test_timeout_message_is_never_empty(self):
        assert classify(asyncio.TimeoutError()).message == "TimeoutError"

    def test_rate_limited_waits_longer_than_timeouts(self):
        assert classify(RateLimitedError()).suggested_delay > classify(NetworkTimeoutError()).suggested_delay

    def test_rate_limited_retry_after_raises_delay(self):
        assert classify(RateLimitedError(retry_after=120)).suggested_delay == 120.0

    def test_credential_missing_is_actionable(self):
        result = classify(CredentialMissingError("OPENAI_API_KEY missing"))
        assert result.actionable == "Configure API credentials in Settings"
        assert result.severity is Severity.HIGH


class TestContractReverts:
    def test_transient_revert_is_retryable(self):
        result = classify(ContractRevertedError("nonce too low"))
        assert result.kind is ErrorKind.CONTRACT_REVERTED
        assert result.retryable

    def test_permanent_revert_is_terminal(self):
        result = classify(ContractRevertedError("ERC20: mint to the zero address"))
        assert result.kind is ErrorKind.CONTRACT_REVERTED
        assert not result.retryable

    def test_revert_reason_from_message(self):
        result = classify("execution reverted: replacement transaction underpriced")
        assert result.kind is ErrorKind.CONTRACT_REVERTED
        assert result.retryable

    def test_is_transient_revert_case_insensitive(self):
        assert is_transient_revert("Nonce Too Low")
        assert not is_transient_revert("Ownable: caller is not the owner")


class TestKeywordFallback:
    """Foreign exceptions and messages still land in the closed taxonomy."""

    @pytest.mark.parametrize(
        "message, kind",
        [
            ("MetaMask Tx Signature: User denied transaction signature.", ErrorKind.WALLET_REJECTED),
            ("User rejected the request", ErrorKind.WALLET_REJECTED),
            ("insufficient funds for gas * price + value", ErrorKind.INSUFFICIENT_FUNDS),
            ("HTTP 429 Too Many Requests", ErrorKind.RATE_LIMITED),
            ("Invalid API key provided", ErrorKind.CREDENTIAL_MISSING),
            ("request timed out after 30000ms", ErrorKind.NETWORK_TIMEOUT),
            ("Network error: failed to fetch", ErrorKind.NETWORK_TIMEOUT),
            ("invalid recipient", ErrorKind.VALIDATION_ERROR),
        ],
    )
    def test_keywords(self, message, kind):
        assert classify(RuntimeError(message)).kind is kind

    @pytest.mark.parametrize(
        "message",
        [
            "invalid recipient address 0x4290000000000000000000000000000000000001",
            "invalid amount on network 137",
            "validation failed: connection field missing",
        ],
    )
    def test_bad_requests_are_not_retried(self, message):
        result = classify(ValueError(message))
        assert result.kind is ErrorKind.VALIDATION_ERROR
        assert not result.retryable

    @pytest.mark.parametrize(
        "message",
        ["upstream returned 429", "status=429, retry later"],
    )
    def test_standalone_429_is_rate_limited(self, message):
        assert classify(RuntimeError(message)).kind is ErrorKind.RATE_LIMITED

    def test_429_inside_hex_is_not_a_status_code(self):
        assert classify(RuntimeError("tx 0xab4291ff dropped")).kind is ErrorKind.UNKNOWN

    def test_none_is_unknown(self):
        result = classify(None)
        assert result.kind is ErrorKind.UNKNOWN
        assert result.message == "Unknown error"


class TestUnknownRetryOnce:
    def test_first_unknown_is_retryable(self):
        assert classify(RuntimeError("boom"), retry_count=0).retryable

    def test_second_unknown_is_terminal(self):
        assert not classify(RuntimeError("boom"), retry_count=1).retryable


class TestHelpers:
    def test_classified_error_passthrough(self):
        classified = classify(NetworkTimeoutError())
        assert classify(classified) is classified

    def test_every_kind_has_a_policy(self):
        assert set(ERROR_POLICIES) == set(ErrorKind)

    @pytest.mark.parametrize(
        "base, retry_count, cap, expected",
        [
            (5.0, 0, 300.0, 5.0),
            (5.0, 3, 300.0, 40.0),
            (5.0, 10, 300.0, 300.0),
            (5.0, 10_000, 300.0, 300.0),
            (0.0, 3, 300.0, 0.0),
        ],
    )
    def test_backoff_delay(self, base, retry_count, cap, expected):
        assert backoff_delay(base, retry_count, cap) == expected

    def test_format_for_log(self):
        line = format_for_log(classify(NetworkTimeoutError("rpc slow")))
        assert line.startswith("[NETWORK_TIMEOUT] rpc slow")
        assert "User: Network request timed out" in line

    def test_notification_level(self):
        assert notification_level(classify(WalletRejectedError())) == "error"
        assert notification_level(classify(NetworkTimeoutError())) == "warning"
        low = ClassifiedError(
            kind=ErrorKind.UNKNOWN,
            retryable=True,
            suggested_delay=1.0,
            user_message="minor",
            severity=Severity.LOW,
        )
        assert notification_level(low) == "info"
