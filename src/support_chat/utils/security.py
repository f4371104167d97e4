"""Security utilities for secret redaction and filter-value validation.

This module implements fail-closed security patterns. All operations that
could potentially leak secrets will fail safely by blocking the operation
rather than proceeding with potentially sensitive data.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

import structlog

from support_chat.utils.async_helpers import ChatSyncError, FilterValueError

if TYPE_CHECKING:
    from collections.abc import Sequence

log = structlog.get_logger()


class RedactionError(ChatSyncError):
    """Raised when secret redaction fails."""


# Session ids, sender ids and role values that end up inside a
# `column=eq.value` filter. PostgREST treats `,` `(` `)` `.` `:` and quotes
# as syntax in `or=` expressions, so none of them may appear.
FILTER_VALUE_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


class SecretRedactor:
    """Detects and redacts secrets from text.

    This class implements fail-closed behavior: if any regex pattern fails to
    compile or execute, it raises an exception rather than allowing potentially
    sensitive data to pass through.

    Usage:
        redactor = SecretRedactor()
        safe_text = redactor.redact(potentially_sensitive_text)

    Attributes:
        patterns: List of compiled regex patterns to detect secrets.
        placeholder: The string to replace secrets with (default: "[REDACTED]").
    """

    DEFAULT_PATTERNS: tuple[tuple[str, str], ...] = (
        # Generic patterns
        (
            r"(?i)(api[_-]?key|apikey|secret|token|password|credential)\s*[=:]\s*[\"']?[\w-]{16,}",
            "Generic secret",
        ),
        # Bearer headers
        (r"(?i)bearer\s+[\w.-]{16,}", "Bearer token"),
        # JWT tokens (anon and service-role keys are JWTs)
        (
            r"eyJ[a-zA-Z0-9_-]*\.eyJ[a-zA-Z0-9_-]*\.[a-zA-Z0-9_-]*",
            "JWT token",
        ),
        # Newer publishable/secret key formats
        (r"sb_(?:publishable|secret)_[A-Za-z0-9_-]{16,}", "Store API key"),
        # Payment gateways
        (r"sk_(?:live|test)_[a-zA-Z0-9]{24,}", "Payment secret key"),
        (r"pk_(?:live|test)_[a-zA-Z0-9]{24,}", "Payment publishable key"),
        # Database connection strings
        (
            r"(?i)(postgres(?:ql)?|mysql|mongodb(?:\+srv)?|redis|amqp)://[^:]+:[^@]+@[^\s]+",
            "Database connection string",
        ),
        # Private keys
        (
            r"-----BEGIN (?:RSA |EC |DSA |OPENSSH )?PRIVATE KEY-----",
            "Private key header",
        ),
    )

    def __init__(
        self,
        placeholder: str = "[REDACTED]",
        custom_patterns: Sequence[tuple[str, str]] | None = None,
    ) -> None:
        """Initialize the SecretRedactor.

        Args:
            placeholder: String to replace detected secrets with.
            custom_patterns: Additional (pattern, name) tuples to detect.

        Raises:
            RedactionError: If any pattern fails to compile.
        """
        self.placeholder = placeholder
        self._pattern_names: dict[re.Pattern[str], str] = {}

        all_patterns = list(self.DEFAULT_PATTERNS)
        if custom_patterns:
            all_patterns.extend(custom_patterns)

        # Compile all patterns, fail if any are invalid
        try:
            for pattern_str, name in all_patterns:
                compiled = re.compile(pattern_str)
                self._pattern_names[compiled] = name
        except re.error as e:
            msg = f"Failed to compile secret pattern '{pattern_str}': {e}"
            log.error("pattern_compilation_failed", pattern=pattern_str, error=str(e))
            raise RedactionError(msg) from e

    @property
    def patterns(self) -> list[re.Pattern[str]]:
        """Return the list of compiled patterns."""
        return list(self._pattern_names.keys())

    def redact(self, text: str) -> str:
        """Redact all secrets from the given text.

        Args:
            text: The text to scan and redact secrets from.

        Returns:
            The text with all detected secrets replaced with placeholder.

        Raises:
            RedactionError: If redaction fails for any reason.
        """
        if not text:
            return text

        try:
            result = text
            for pattern in self._pattern_names:
                result = pattern.sub(self.placeholder, result)
            return result
        except Exception as e:
            msg = f"Redaction failed: {e}"
            log.error("redaction_failed", error=str(e))
            raise RedactionError(msg) from e

    def has_secrets(self, text: str) -> bool:
        """Check if text contains any secrets.

        Raises:
            RedactionError: If checking fails for any reason.
        """
        if not text:
            return False

        try:
            return any(pattern.search(text) for pattern in self._pattern_names)
        except Exception as e:
            msg = f"Secret check failed: {e}"
            log.error("has_secrets_check_failed", error=str(e))
            raise RedactionError(msg) from e


def validate_filter_value(value: str) -> str:
    """Check that a value can be embedded in a store filter expression.

    Args:
        value: Session id, sender id or role value.

    Returns:
        The value unchanged.

    Raises:
        FilterValueError: If the value is empty, too long or contains
            filter syntax characters.
    """
    if not value or not FILTER_VALUE_PATTERN.match(value):
        log.warning("filter_value_rejected", length=len(value) if value else 0)
        raise FilterValueError(f"Unsafe filter value: {value!r}")
    return value


def mask_phone(phone: str) -> str:
    """Mask a phone number for logging, keeping the last three digits."""
    digits = re.sub(r"\D", "", phone)
    if len(digits) <= 3:
        return "***"
    return f"***{digits[-3:]}"
