"""
errors.py - Error taxonomy for the wallet service.

Every component raises a typed error. The HTTP layer maps each class to a
status code; nothing below the HTTP layer builds responses.

FAILURE SEMANTICS:
- Caller input missing/malformed → 400
- Missing interaction proof → 400 (rejected before any signing attempt)
- Configuration, upstream, cohort, signing, relay, settlement → 500
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    COHORT_UNAVAILABLE = "COHORT_UNAVAILABLE"
    DERIVATION_ERROR = "DERIVATION_ERROR"
    MISSING_AUTHORIZATION = "MISSING_AUTHORIZATION"
    PAYLOAD_INVALID = "PAYLOAD_INVALID"
    SIGNING_FAILED = "SIGNING_FAILED"
    RELAY_REJECTED = "RELAY_REJECTED"
    SETTLEMENT_TIMEOUT = "SETTLEMENT_TIMEOUT"
    UNAUTHORIZED = "UNAUTHORIZED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class WalletError(Exception):
    """Base exception for wallet service failures."""

    code = ErrorCode.VALIDATION_ERROR
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize the error into the response body shape.

        Returns:
            dict: ``error`` (message), ``code`` and ``details`` (empty dict if unset).
        """
        return {
            "error": self.message,
            "code": self.code.value,
            "details": self.details,
        }


class ValidationError(WalletError):
    """400 - caller input missing or malformed."""

    code = ErrorCode.VALIDATION_ERROR
    status_code = 400


class AuthenticationError(WalletError):
    """401 - missing or wrong API key."""

    code = ErrorCode.UNAUTHORIZED
    status_code = 401


class ConfigurationError(WalletError):
    """500 - a chain is missing a required endpoint or address."""

    code = ErrorCode.CONFIGURATION_ERROR
    status_code = 500


ConfigError = ConfigurationError


class UpstreamUnavailableError(WalletError):
    """500 - RPC, Porter or relay could not be reached. Transient."""

    code = ErrorCode.UPSTREAM_UNAVAILABLE
    status_code = 500


class CohortUnavailableError(WalletError):
    """500 - empty or invalid participant set, or a reverted coordinator call."""

    code = ErrorCode.COHORT_UNAVAILABLE
    status_code = 500


class DerivationError(WalletError):
    """500 - cohort descriptor cannot parameterize an account."""

    code = ErrorCode.DERIVATION_ERROR
    status_code = 500


class MissingAuthorizationError(WalletError):
    """400 - no interaction proof accompanies the request."""

    code = ErrorCode.MISSING_AUTHORIZATION
    status_code = 400


class PayloadParseError(WalletError):
    """400 - interaction payload does not match the command schema."""

    code = ErrorCode.PAYLOAD_INVALID
    status_code = 400


class SigningFailure(WalletError):
    """500 - cohort declined or could not reach quorum."""

    code = ErrorCode.SIGNING_FAILED
    status_code = 500


class RelaySubmissionFailure(WalletError):
    """500 - relay rejected the user operation."""

    code = ErrorCode.RELAY_REJECTED
    status_code = 500


class SettlementTimeout(WalletError):
    """500 - relay did not report settlement in time; outcome unknown."""

    code = ErrorCode.SETTLEMENT_TIMEOUT
    status_code = 500

    def __init__(self, user_op_hash: str, timeout: float):
        self.user_op_hash = user_op_hash
        super().__init__(
            f"User operation {user_op_hash} not settled after {timeout:.0f}s; status unknown",
            details={"userOpHash": user_op_hash, "status": "pending"},
        )
