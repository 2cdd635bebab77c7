"""
Broker Adapter - Error Handling and Mapping.

============================================================
PURPOSE
============================================================
Standardized error handling for the account snapshot source:
- Unified error taxonomy
- Broker error code mapping
- Retry eligibility classification
- Translation to core.exceptions types the monitor acts on

============================================================
ERROR CATEGORIES
============================================================
1. AUTHENTICATION  - Token invalid or expired (skip + warn)
2. NOT_FOUND       - Resource missing at the broker
3. RATE_LIMIT      - Too many requests
4. NETWORK         - Connection issues
5. TIMEOUT         - Request timed out
6. BROKER_ERROR    - Broker internal errors
7. INVALID_ORDER   - Order validation failures
8. UNKNOWN         - Unclassified errors

============================================================
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from core.exceptions import (
    AuthenticationError,
    BrokerError,
    BrokerNotFoundError,
    BrokerUnavailableError,
    RateLimitError,
)


logger = logging.getLogger(__name__)


# ============================================================
# ERROR TAXONOMY
# ============================================================

class ErrorCategory(Enum):
    """Standardized error categories."""

    AUTHENTICATION = "AUTHENTICATION"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMIT = "RATE_LIMIT"
    NETWORK = "NETWORK"
    TIMEOUT = "TIMEOUT"
    BROKER_ERROR = "BROKER_ERROR"
    INVALID_ORDER = "INVALID_ORDER"
    UNKNOWN = "UNKNOWN"


class RetryEligibility(Enum):
    """Whether a later attempt may succeed."""

    RETRY = "RETRY"
    NO_RETRY = "NO_RETRY"
    BACKOFF = "BACKOFF"


# ============================================================
# BROKER ERROR INFO
# ============================================================

@dataclass
class BrokerErrorInfo:
    """
    Standardized broker error.

    Carries everything needed to pick an exception type and log
    the original broker response.
    """

    category: ErrorCategory
    message: str
    retry_eligible: RetryEligibility

    broker_code: Optional[str] = None
    http_status: Optional[int] = None
    endpoint: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "category": self.category.value,
            "message": self.message,
            "retry_eligible": self.retry_eligible.value,
            "broker_code": self.broker_code,
            "http_status": self.http_status,
            "endpoint": self.endpoint,
        }

    def is_retryable(self) -> bool:
        return self.retry_eligible in (RetryEligibility.RETRY, RetryEligibility.BACKOFF)

    def to_exception(self) -> BrokerError:
        """Exception type the monitor and executor dispatch on."""
        exc_type = CATEGORY_EXCEPTIONS.get(self.category, BrokerError)
        return exc_type(
            self.message,
            category=self.category.value,
            http_status=self.http_status,
            endpoint=self.endpoint,
            context={"broker_code": self.broker_code} if self.broker_code else {},
        )

    def __str__(self) -> str:
        return f"[{self.category.value}] {self.broker_code or '-'}: {self.message}"


CATEGORY_EXCEPTIONS = {
    ErrorCategory.AUTHENTICATION: AuthenticationError,
    ErrorCategory.NOT_FOUND: BrokerNotFoundError,
    ErrorCategory.RATE_LIMIT: RateLimitError,
    ErrorCategory.NETWORK: BrokerUnavailableError,
    ErrorCategory.TIMEOUT: BrokerUnavailableError,
    ErrorCategory.BROKER_ERROR: BrokerUnavailableError,
}


# ============================================================
# DHAN ERROR MAPPING
# ============================================================

DHAN_ERROR_MAP: Dict[str, Tuple[ErrorCategory, RetryEligibility]] = {
    # Authentication
    "DH-901": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "DH-902": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),

    # Rate limiting
    "DH-904": (ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF),

    # Order validation
    "DH-905": (ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),
    "DH-906": (ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),

    # Broker internal
    "DH-907": (ErrorCategory.BROKER_ERROR, RetryEligibility.RETRY),
    "DH-908": (ErrorCategory.BROKER_ERROR, RetryEligibility.RETRY),
    "DH-909": (ErrorCategory.NETWORK, RetryEligibility.RETRY),
}

AUTH_INVALID_MESSAGE = (
    "Broker API token is invalid or expired. "
    "Please update your broker token in settings."
)


def map_dhan_error(
    http_status: Optional[int],
    code: Optional[str] = None,
    message: Optional[str] = None,
    endpoint: Optional[str] = None,
) -> BrokerErrorInfo:
    """
    Map a failed broker response to unified format.

    Args:
        http_status: HTTP status code
        code: Broker error code (e.g. "DH-901")
        message: Broker error message
        endpoint: Request path

    Returns:
        Unified BrokerErrorInfo
    """
    if code and code in DHAN_ERROR_MAP:
        category, retry = DHAN_ERROR_MAP[code]
    elif http_status in (401, 403):
        category = ErrorCategory.AUTHENTICATION
        retry = RetryEligibility.NO_RETRY
    elif http_status == 404:
        category = ErrorCategory.NOT_FOUND
        retry = RetryEligibility.NO_RETRY
    elif http_status == 429:
        category = ErrorCategory.RATE_LIMIT
        retry = RetryEligibility.BACKOFF
    elif http_status and http_status >= 500:
        category = ErrorCategory.BROKER_ERROR
        retry = RetryEligibility.RETRY
    elif http_status == 400:
        category = ErrorCategory.INVALID_ORDER
        retry = RetryEligibility.NO_RETRY
    else:
        category = ErrorCategory.UNKNOWN
        retry = RetryEligibility.NO_RETRY

    if category == ErrorCategory.AUTHENTICATION:
        message = AUTH_INVALID_MESSAGE
    elif not message:
        message = "Broker API request failed"

    return BrokerErrorInfo(
        category=category,
        message=message,
        retry_eligible=retry,
        broker_code=code,
        http_status=http_status,
        endpoint=endpoint,
    )


# ============================================================
# TRANSPORT ERRORS
# ============================================================

def create_network_error(error: Exception, endpoint: Optional[str] = None) -> BrokerErrorInfo:
    """Connection-level failure."""
    return BrokerErrorInfo(
        category=ErrorCategory.NETWORK,
        message=f"Network error: {error}",
        retry_eligible=RetryEligibility.RETRY,
        endpoint=endpoint,
    )


def create_timeout_error(endpoint: Optional[str] = None) -> BrokerErrorInfo:
    """Request exceeded the client timeout."""
    return BrokerErrorInfo(
        category=ErrorCategory.TIMEOUT,
        message="Request timeout",
        retry_eligible=RetryEligibility.RETRY,
        endpoint=endpoint,
    )


__all__ = [
    "ErrorCategory",
    "RetryEligibility",
    "BrokerErrorInfo",
    "DHAN_ERROR_MAP",
    "map_dhan_error",
    "create_network_error",
    "create_timeout_error",
]
