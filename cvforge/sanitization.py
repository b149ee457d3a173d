"""
Trust-boundary helpers for untrusted strings and JSON-like request payloads.

The two entry points for payloads are separate:

* ``sanitize_object`` cleans every string leaf for display/storage and rejects
  forbidden keys while rebuilding the payload.
* ``prevent_nosql_injection`` is the hard gate for anything that will be used
  to build a document-store query. It never copies and returns its input
  untouched when clean.

Calling one does not imply the other. Handlers that persist a body *and* use
it in a query call both.

Markup stripping is textual (``<[^>]*>``). It is defense in depth for plain-text
fields and is not a DOM-aware HTML sanitizer: obfuscated or malformed markup may
survive, so output must still be escaped when rendered.
"""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import urlsplit

import bleach

from cvforge.errors import (
    InjectionAttemptError,
    InputTooDeepError,
    InvalidInputError,
    ValidationError,
)

DEFAULT_MAX_DEPTH = 32
MAX_EMAIL_LENGTH = 254
MAX_EMAIL_LOCAL_PART_LENGTH = 64
MAX_URL_LENGTH = 2048
MIN_PHONE_DIGITS = 10
MAX_PHONE_DIGITS = 15

_TAG_RE = re.compile(r"<[^>]*>")
_PHONE_DISALLOWED_RE = re.compile(r"[^\d+]")
_EMAIL_LOCAL_RE = re.compile(
    r"^[a-z0-9!#$%&'*+/=?^_`{|}~-]+(?:\.[a-z0-9!#$%&'*+/=?^_`{|}~-]+)*$"
)
_EMAIL_DOMAIN_RE = re.compile(r"^(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$")
_URL_WHITESPACE_RE = re.compile(r"[\s\x00-\x1f\x7f]")

RICH_TEXT_TAGS = frozenset({"a", "b", "br", "em", "i", "li", "ol", "p", "strong", "u", "ul"})
RICH_TEXT_ATTRIBUTES = {"a": ["href"]}
RICH_TEXT_PROTOCOLS = frozenset({"http", "https", "mailto"})


def is_forbidden_key(key: object) -> bool:
    """Return True for query-operator (``$``-prefixed) and prototype keys."""

    return isinstance(key, str) and (key.startswith("$") or key == "__proto__")


def _join_path(path: tuple[str, ...]) -> str | None:
    return ".".join(path) or None


def _clean_html(value: str) -> str:
    return bleach.clean(
        value,
        tags=RICH_TEXT_TAGS,
        attributes=RICH_TEXT_ATTRIBUTES,
        protocols=RICH_TEXT_PROTOCOLS,
        strip=True,
    )


def _strip_markup(value: str, *, allow_html: bool) -> str:
    if allow_html:
        return _clean_html(value)
    return _TAG_RE.sub("", value)


def _cut_at_markup_boundary(value: str) -> str:
    open_at = value.rfind("<")
    if open_at > value.rfind(">"):
        value = value[:open_at]
    # Cleaned markup escapes bare '&', so any '&' starts an entity.
    entity_at = value.rfind("&")
    if entity_at > value.rfind(";"):
        value = value[:entity_at]
    return value


def _truncate_markup(value: str, max_length: int) -> str:
    """Truncate cleaned markup without leaving partial tags or entities."""

    limit = max_length
    while True:
        candidate = _cut_at_markup_boundary(value[:limit])
        result = _clean_html(candidate).strip()
        if len(result) <= max_length:
            return result
        # Re-cleaning closed open tags; shrink by the overflow and retry.
        limit = max(0, len(candidate) - (len(result) - max_length))


def sanitize_string(
    value: object,
    *,
    max_length: int | None = None,
    min_length: int | None = None,
    allow_html: bool = False,
    field: str | None = None,
) -> str:
    """
    Strip markup, trim, then enforce length bounds on an untrusted string.

    ``min_length`` violations raise ``ValidationError``; ``max_length`` silently
    truncates. With ``allow_html`` a small formatting allowlist survives.

    Raises:
        InvalidInputError: when ``value`` is not a string.
        ValidationError: when the cleaned string is shorter than ``min_length``.
    """

    if not isinstance(value, str):
        raise InvalidInputError("Input must be a string", field=field)
    if max_length is not None and max_length < 0:
        raise ValueError("max_length must be >= 0")

    result = _strip_markup(value, allow_html=allow_html).strip()

    if min_length and len(result) < min_length:
        raise ValidationError(
            f"Input must be at least {min_length} characters",
            field=field,
        )
    if max_length is not None and len(result) > max_length:
        if allow_html:
            return _truncate_markup(result, max_length)
        result = result[:max_length]
    return result


def _email_shape_problem(email: str) -> str | None:
    if not email:
        return "is empty"
    if len(email) > MAX_EMAIL_LENGTH:
        return "is too long"
    at_count = email.count("@")
    if at_count == 0:
        return "is missing '@'"
    if at_count > 1:
        return "contains more than one '@'"

    local_part, domain = email.split("@")
    if not local_part:
        return "has an empty local part"
    if len(local_part) > MAX_EMAIL_LOCAL_PART_LENGTH or not _EMAIL_LOCAL_RE.fullmatch(local_part):
        return "has an invalid local part"
    if not domain:
        return "has an empty domain"
    if not _EMAIL_DOMAIN_RE.fullmatch(domain):
        return "has an invalid domain"
    return None


def sanitize_email(value: object, *, field: str = "email") -> str:
    """
    Trim and lowercase an email address, then validate its syntax.

    Only the shape of a failure is reported, never the submitted value.
    """

    if not isinstance(value, str):
        raise InvalidInputError("Email must be a string", field=field)

    email = value.strip().lower()
    problem = _email_shape_problem(email)
    if problem is not None:
        raise ValidationError(f"Email address {problem}", field=field)
    return email


def sanitize_phone(value: object, *, field: str = "phone") -> str:
    """Reduce a phone number to digits with an optional leading ``+`` and check the digit count."""

    if not isinstance(value, str):
        raise InvalidInputError("Phone must be a string", field=field)

    cleaned = _PHONE_DISALLOWED_RE.sub("", value)
    digits = cleaned.removeprefix("+")
    if "+" in digits:
        raise ValidationError("Phone number may only start with '+'", field=field)
    if not MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
        raise ValidationError(
            f"Phone number must contain {MIN_PHONE_DIGITS} to {MAX_PHONE_DIGITS} digits",
            field=field,
        )
    return cleaned


def sanitize_url(value: object, *, require_https: bool = False, field: str = "url") -> str:
    """Validate an absolute http(s) URL supplied by a user."""

    if not isinstance(value, str):
        raise InvalidInputError("URL must be a string", field=field)

    url = value.strip()
    if not url or len(url) > MAX_URL_LENGTH or _URL_WHITESPACE_RE.search(url):
        raise ValidationError("URL format is invalid", field=field)

    try:
        parts = urlsplit(url)
    except ValueError as exc:
        raise ValidationError("URL format is invalid", field=field) from exc

    scheme = parts.scheme.lower()
    if scheme not in {"http", "https"}:
        raise ValidationError("URL scheme must be http or https", field=field)
    if require_https and scheme != "https":
        raise ValidationError("URL must use HTTPS", field=field)
    if not parts.hostname:
        raise ValidationError("URL must include a host", field=field)
    return url


def sanitize_text_content(value: object, max_length: int = 5000) -> str:
    """Sanitize free-text sections such as summaries and descriptions."""

    return sanitize_string(value, max_length=max_length, min_length=10)


def sanitize_rich_text(value: object, max_length: int = 10000) -> str:
    """Sanitize text that may keep basic formatting markup."""

    return sanitize_string(value, max_length=max_length, allow_html=True)


def _check_depth(depth: int, max_depth: int, path: tuple[str, ...]) -> None:
    if depth >= max_depth:
        raise InputTooDeepError(max_depth, field=_join_path(path))


def _guard(value: Any, depth: int, max_depth: int, path: tuple[str, ...]) -> None:
    if isinstance(value, dict):
        _check_depth(depth, max_depth, path)
        for key, item in value.items():
            if is_forbidden_key(key):
                raise InjectionAttemptError(key, field=_join_path(path))
            _guard(item, depth + 1, max_depth, (*path, str(key)))
    elif isinstance(value, (list, tuple)):
        _check_depth(depth, max_depth, path)
        for index, item in enumerate(value):
            _guard(item, depth + 1, max_depth, (*path, str(index)))


def prevent_nosql_injection(value: Any, *, max_depth: int = DEFAULT_MAX_DEPTH) -> Any:
    """
    Reject payloads carrying ``$``-prefixed or ``__proto__`` keys at any depth.

    Returns ``value`` itself (not a copy) when it is clean.

    Raises:
        InjectionAttemptError: on the first forbidden key found.
        InputTooDeepError: when containers nest deeper than ``max_depth``.
    """

    _guard(value, 0, max_depth, ())
    return value


def _clean(value: Any, depth: int, max_depth: int, path: tuple[str, ...]) -> Any:
    if isinstance(value, str):
        return sanitize_string(value, field=_join_path(path))
    if isinstance(value, dict):
        _check_depth(depth, max_depth, path)
        cleaned: dict[Any, Any] = {}
        for key, item in value.items():
            if is_forbidden_key(key):
                raise InjectionAttemptError(key, field=_join_path(path))
            cleaned[key] = _clean(item, depth + 1, max_depth, (*path, str(key)))
        return cleaned
    if isinstance(value, (list, tuple)):
        _check_depth(depth, max_depth, path)
        items = [
            _clean(item, depth + 1, max_depth, (*path, str(index)))
            for index, item in enumerate(value)
        ]
        return items if isinstance(value, list) else tuple(items)
    return value


def sanitize_object(value: object, *, max_depth: int = DEFAULT_MAX_DEPTH) -> dict[str, Any]:
    """
    Return a new mapping with every string leaf passed through ``sanitize_string``.

    Keys are preserved at every level; a forbidden key raises instead of being
    dropped. This is cleaning, not a query gate: see ``prevent_nosql_injection``.
    """

    if not isinstance(value, dict):
        raise InvalidInputError("Input must be an object")
    return _clean(value, 0, max_depth, ())
