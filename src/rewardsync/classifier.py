# Copyright (c) RewardSync Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Error Classifier.

Maps a raw failure from any collaborator into a closed ``ErrorKind`` with
retry policy metadata. The policy table below is the single source of
truth consulted by both the distribution dispatcher and the evolution
stage tracker.

Typed ``SettlementError`` subclasses are mapped by type. Timeouts from
``asyncio.wait_for`` map to ``NETWORK_TIMEOUT``. Anything else falls back
to a keyword table; the result is still one of the finite kinds.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict

from .exceptions import (
    ConfirmationUnknownError,
    ContractRevertedError,
    CredentialMissingError,
    InsufficientFundsError,
    NetworkTimeoutError,
    RateLimitedError,
    RewardValidationError,
    WalletRejectedError,
)


class ErrorKind(str, Enum):
    """Closed taxonomy of settlement and evaluation failures."""

    NETWORK_TIMEOUT = "NETWORK_TIMEOUT"
    WALLET_REJECTED = "WALLET_REJECTED"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    CONTRACT_REVERTED = "CONTRACT_REVERTED"
    RATE_LIMITED = "RATE_LIMITED"
    CREDENTIAL_MISSING = "CREDENTIAL_MISSING"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNKNOWN = "UNKNOWN"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ClassifiedError(BaseModel):
    """A failure mapped onto the taxonomy, with its retry policy."""

    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    retryable: bool
    suggested_delay: float
    user_message: str
    actionable: Optional[str] = None
    severity: Severity = Severity.MEDIUM
    message: str = ""


@dataclass(frozen=True)
class ErrorPolicy:
    """Retry policy and presentation for one error kind."""

    retryable: bool
    suggested_delay: float
    user_message: str
    actionable: Optional[str]
    severity: Severity


ERROR_POLICIES: dict[ErrorKind, ErrorPolicy] = {
    ErrorKind.NETWORK_TIMEOUT: ErrorPolicy(
        retryable=True,
        suggested_delay=5.0,
        user_message="Network request timed out",
        actionable="Check your connection; the reward will be retried automatically",
        severity=Severity.MEDIUM,
    ),
    ErrorKind.WALLET_REJECTED: ErrorPolicy(
        retryable=False,
        suggested_delay=0.0,
        user_message="Request rejected in wallet",
        actionable="Approve the request in your wallet to claim this reward",
        severity=Severity.HIGH,
    ),
    ErrorKind.INSUFFICIENT_FUNDS: ErrorPolicy(
        retryable=False,
        suggested_delay=0.0,
        user_message="Insufficient funds for this transaction",
        actionable="Top up the signing account or reduce the requested amount",
        severity=Severity.MEDIUM,
    ),
    ErrorKind.CONTRACT_REVERTED: ErrorPolicy(
        retryable=False,
        suggested_delay=10.0,
        user_message="Token contract rejected the transaction",
        actionable="Verify the recipient address and amount, then resubmit",
        severity=Severity.HIGH,
    ),
    ErrorKind.RATE_LIMITED: ErrorPolicy(
        retryable=True,
        suggested_delay=60.0,
        user_message="Rate limit exceeded",
        actionable="Too many requests; wait about a minute before trying again",
        severity=Severity.MEDIUM,
    ),
    ErrorKind.CREDENTIAL_MISSING: ErrorPolicy(
        retryable=False,
        suggested_delay=0.0,
        user_message="API credentials not configured",
        actionable="Configure API credentials in Settings",
        severity=Severity.HIGH,
    ),
    ErrorKind.VALIDATION_ERROR: ErrorPolicy(
        retryable=False,
        suggested_delay=0.0,
        user_message="Reward request failed validation",
        actionable="Check the recipient address and reduce the requested amount if it exceeds the cap",
        severity=Severity.MEDIUM,
    ),
    ErrorKind.UNKNOWN: ErrorPolicy(
        retryable=True,
        suggested_delay=3.0,
        user_message="Unexpected error occurred",
        actionable="Try again or contact support if the issue persists",
        severity=Severity.MEDIUM,
    ),
}

# Revert reasons that indicate node or mempool state rather than a bad request.
TRANSIENT_REVERT_REASONS: tuple[str, ...] = (
    "nonce too low",
    "replacement transaction underpriced",
    "transaction underpriced",
    "already known",
    "header not found",
)

# UNKNOWN failures get one retry, then become terminal.
UNKNOWN_RETRY_LIMIT = 1

_TYPE_KINDS: tuple[tuple[type[BaseException], ErrorKind], ...] = (
    (ConfirmationUnknownError, ErrorKind.NETWORK_TIMEOUT),
    (NetworkTimeoutError, ErrorKind.NETWORK_TIMEOUT),
    (asyncio.TimeoutError, ErrorKind.NETWORK_TIMEOUT),
    (TimeoutError, ErrorKind.NETWORK_TIMEOUT),
    (WalletRejectedError, ErrorKind.WALLET_REJECTED),
    (InsufficientFundsError, ErrorKind.INSUFFICIENT_FUNDS),
    (ContractRevertedError, ErrorKind.CONTRACT_REVERTED),
    (RateLimitedError, ErrorKind.RATE_LIMITED),
    (CredentialMissingError, ErrorKind.CREDENTIAL_MISSING),
    (RewardValidationError, ErrorKind.VALIDATION_ERROR),
    (ConnectionError, ErrorKind.NETWORK_TIMEOUT),
)

# First match wins, so more specific phrases come first. Validation phrases
# precede the transport keywords; ``429`` only matches as a standalone code.
_KEYWORD_KINDS: tuple[tuple[re.Pattern[str], ErrorKind], ...] = tuple(
    (re.compile(pattern), kind)
    for pattern, kind in (
        (r"user rejected", ErrorKind.WALLET_REJECTED),
        (r"user denied", ErrorKind.WALLET_REJECTED),
        (r"action_rejected", ErrorKind.WALLET_REJECTED),
        (r"insufficient funds", ErrorKind.INSUFFICIENT_FUNDS),
        (r"insufficient balance", ErrorKind.INSUFFICIENT_FUNDS),
        (r"revert", ErrorKind.CONTRACT_REVERTED),
        (r"rate limit", ErrorKind.RATE_LIMITED),
        (r"too many requests", ErrorKind.RATE_LIMITED),
        (r"\b429\b", ErrorKind.RATE_LIMITED),
        (r"api key", ErrorKind.CREDENTIAL_MISSING),
        (r"credential", ErrorKind.CREDENTIAL_MISSING),
        (r"unauthorized", ErrorKind.CREDENTIAL_MISSING),
        (r"invalid", ErrorKind.VALIDATION_ERROR),
        (r"validation", ErrorKind.VALIDATION_ERROR),
        (r"timed out", ErrorKind.NETWORK_TIMEOUT),
        (r"timeout", ErrorKind.NETWORK_TIMEOUT),
        (r"network", ErrorKind.NETWORK_TIMEOUT),
        (r"connection", ErrorKind.NETWORK_TIMEOUT),
    )
)

RawError = Union[BaseException, str, None]


def _message_of(raw_error: RawError) -> str:
    if raw_error is None:
        return "Unknown error"
    text = str(raw_error)
    if not text and isinstance(raw_error, BaseException):
        text = type(raw_error).__name__
    return text or "Unknown error"


def _kind_of(raw_error: RawError, message: str) -> ErrorKind:
    if isinstance(raw_error, BaseException):
        for exc_type, kind in _TYPE_KINDS:
            if isinstance(raw_error, exc_type):
                return kind
    lowered = message.lower()
    for pattern, kind in _KEYWORD_KINDS:
        if pattern.search(lowered):
            return kind
    return ErrorKind.UNKNOWN


def is_transient_revert(reason: str) -> bool:
    """Return True when a revert reason is on the transient allowlist."""
    lowered = reason.lower()
    return any(allowed in lowered for allowed in TRANSIENT_REVERT_REASONS)


def classify(raw_error: RawError, retry_count: int = 0) -> ClassifiedError:
    """Classify a raw failure.

    Args:
        raw_error: The exception (or message) reported by a collaborator.
            An already classified error is returned unchanged.
        retry_count: Attempts already made for the event or task. Only
            ``UNKNOWN`` depends on it: retryable once, then terminal.
    """
    if isinstance(raw_error, ClassifiedError):
        return raw_error

    message = _message_of(raw_error)
    kind = _kind_of(raw_error, message)
    policy = ERROR_POLICIES[kind]

    retryable = policy.retryable
    suggested_delay = policy.suggested_delay
    if kind is ErrorKind.CONTRACT_REVERTED:
        reason = getattr(raw_error, "reason", "") or message
        retryable = is_transient_revert(reason)
    elif kind is ErrorKind.UNKNOWN:
        retryable = retry_count < UNKNOWN_RETRY_LIMIT
    elif isinstance(raw_error, RateLimitedError) and raw_error.retry_after:
        suggested_delay = max(suggested_delay, float(raw_error.retry_after))

    return ClassifiedError(
        kind=kind,
        retryable=retryable,
        suggested_delay=suggested_delay,
        user_message=policy.user_message,
        actionable=policy.actionable,
        severity=policy.severity,
        message=message,
    )


def backoff_delay(base: float, retry_count: int, cap: float) -> float:
    """Capped exponential delay: ``min(cap, base * 2 ** retry_count)``."""
    if base <= 0:
        return 0.0
    exponent = max(0, retry_count)
    # Avoid float overflow for very large retry counts
    if exponent > 62:
        return float(cap)
    return float(min(cap, base * (2 ** exponent)))


def format_for_log(error: ClassifiedError) -> str:
    return (
        f"[{error.kind.value}] {error.message} | User: {error.user_message}"
        f" | Action: {error.actionable or '-'}"
    )


def notification_level(error: ClassifiedError) -> str:
    """Map severity onto a UI notification level."""
    if error.severity in (Severity.CRITICAL, Severity.HIGH):
        return "error"
    if error.severity is Severity.MEDIUM:
        return "warning"
    return "info"
