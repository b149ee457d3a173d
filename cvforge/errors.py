"""Error kinds raised by the input sanitization layer."""

from __future__ import annotations

MAX_REPORTED_KEY_LENGTH = 64


class SanitizationError(ValueError):
    """Base class for all sanitizer failures; always a client error."""

    error_type = "value_error.sanitization"

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field

    def to_detail(self) -> dict[str, str]:
        return {
            "field": self.field or "body",
            "message": self.message,
            "type": self.error_type,
        }


class InvalidInputError(SanitizationError):
    """Raised when input does not have the expected primitive shape."""

    error_type = "type_error.invalid_input"


class ValidationError(SanitizationError):
    """Raised when input has the right shape but breaks a content rule."""

    error_type = "value_error.validation"


class InjectionAttemptError(SanitizationError):
    """
    Raised when a mapping carries a query-operator or prototype key.

    The reported key is capped so it can be logged without amplifying payloads.
    """

    error_type = "value_error.injection_attempt"

    def __init__(self, key: str, *, field: str | None = None) -> None:
        reported_key = key[:MAX_REPORTED_KEY_LENGTH]
        super().__init__(f"Forbidden key in input: {reported_key!r}", field=field)
        self.key = reported_key


class InputTooDeepError(SanitizationError):
    """Raised when nested input exceeds the allowed depth."""

    error_type = "value_error.input_too_deep"

    def __init__(self, max_depth: int, *, field: str | None = None) -> None:
        super().__init__(f"Input nesting exceeds maximum depth of {max_depth}", field=field)
        self.max_depth = max_depth
