"""
Error Classifier Module

Maps transport failure text onto a closed set of error categories and the
user-facing message shown for each one.
"""

from typing import Dict, Optional, Tuple

from .models import ErrorCategory


# Checked in order; the first category with a matching substring wins.
# Matching is case-sensitive.
CLASSIFICATION_RULES: Tuple[Tuple[ErrorCategory, Tuple[str, ...]], ...] = (
    (ErrorCategory.AUTH, ("Not authorized", "authentication", "Connection refused", "Bad username or password")),
    (ErrorCategory.HOST_UNRESOLVED, ("ENOTFOUND", "getaddrinfo")),
    (ErrorCategory.TIMEOUT, ("timeout", "ETIMEDOUT")),
    (ErrorCategory.TLS_FAILURE, ("TLS", "SSL")),
)

USER_MESSAGES: Dict[ErrorCategory, str] = {
    ErrorCategory.AUTH: "Authentication failed. Check your credentials.",
    ErrorCategory.HOST_UNRESOLVED: "Could not resolve the broker host. Check the broker address.",
    ErrorCategory.TIMEOUT: "Connection timed out. Check your network connection.",
    ErrorCategory.TLS_FAILURE: "TLS security error. Check the broker settings.",
}


def classify(raw_message: Optional[str]) -> ErrorCategory:
    """
    Classify a transport error message.

    Args:
        raw_message: Error text reported by the transport

    Returns:
        The first matching ErrorCategory, GENERIC when nothing matches
    """
    message = raw_message or ""
    for category, patterns in CLASSIFICATION_RULES:
        if any(pattern in message for pattern in patterns):
            return category
    return ErrorCategory.GENERIC


def describe(category: ErrorCategory, raw_message: Optional[str] = None) -> str:
    """Return the message surfaced to the user as ``last_error``."""
    if category in USER_MESSAGES:
        return USER_MESSAGES[category]
    return f"Connection error: {raw_message or 'unknown error'}"


def is_terminal(category: ErrorCategory) -> bool:
    """Only authentication failures stop automatic reconnection."""
    return category is ErrorCategory.AUTH
