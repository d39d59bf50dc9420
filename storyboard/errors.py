"""Error taxonomy and provider error classification.

Every provider adapter raises ``ProviderError`` for wire-level failures;
``classify_error`` maps any exception onto a small fixed set of
``ErrorKind`` values, which drive both retry/fallback decisions and the
user-facing message.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    UNAUTHORIZED = "unauthorized"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    MODEL_UNAVAILABLE = "model_unavailable"
    NETWORK_FAILURE = "network_failure"
    TIMEOUT = "timeout"
    INDEX_OUT_OF_BOUNDS = "index_out_of_bounds"
    UNKNOWN = "unknown"


USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.RATE_LIMITED: "Quá giới hạn, vui lòng thử lại sau.",
    ErrorKind.UNAUTHORIZED: "Key không hợp lệ hoặc bị từ chối.",
    ErrorKind.INSUFFICIENT_CREDITS: "Tài khoản không đủ credits.",
    ErrorKind.MODEL_UNAVAILABLE: "Model không khả dụng.",
    ErrorKind.NETWORK_FAILURE: "Mạng lỗi hoặc máy chủ không phản hồi.",
    ErrorKind.TIMEOUT: "Quá thời gian chờ kết quả từ máy chủ.",
    ErrorKind.INDEX_OUT_OF_BOUNDS: "Không tìm thấy mục cần cập nhật.",
}

DEFAULT_FAILURE_MESSAGE = "Tạo video thất bại."

# Checked in order; the first match wins.
_PATTERNS: list[tuple[ErrorKind, re.Pattern[str]]] = [
    (ErrorKind.RATE_LIMITED, re.compile(
        r"429|rate.?limit|quota|resource_exhausted|too many requests|quá giới hạn", re.I)),
    (ErrorKind.UNAUTHORIZED, re.compile(
        r"401|403|api key not valid|api_key_invalid|invalid api key|unauthori[sz]ed|permission denied",
        re.I)),
    (ErrorKind.INSUFFICIENT_CREDITS, re.compile(
        r"credits|insufficient|billing|billed users", re.I)),
    (ErrorKind.MODEL_UNAVAILABLE, re.compile(r"model|veo|not.*found|400", re.I)),
    (ErrorKind.NETWORK_FAILURE, re.compile(
        r"network|failed to fetch|timeout|timed out|connect", re.I)),
]

_TRANSIENT = re.compile(r'"code"\s*:\s*503|UNAVAILABLE')


class StoryboardError(Exception):
    """Base error carrying a classified kind."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.UNKNOWN):
        self.kind = kind
        super().__init__(message)


class ProviderError(StoryboardError):
    """Raised when a generation provider returns an error."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
        body: Any = None,
        kind: ErrorKind | None = None,
    ):
        self.provider = provider
        self.status_code = status_code
        self.body = body
        text = f"{message} (HTTP {status_code})" if status_code else message
        super().__init__(message, kind or _match_kind(text))


class IndexOutOfBoundsError(StoryboardError, IndexError):
    """Raised when an index-addressed update targets a missing entity."""

    def __init__(self, collection: str, index: int, size: int):
        self.collection = collection
        self.index = index
        super().__init__(
            f"{collection} index {index} out of range (size {size})",
            ErrorKind.INDEX_OUT_OF_BOUNDS,
        )



class InvalidInputError(StoryboardError, ValueError):
    """Raised when a user-supplied value cannot be used."""

def _match_kind(text: str) -> ErrorKind:
    for kind, pattern in _PATTERNS:
        if pattern.search(text):
            return kind
    return ErrorKind.UNKNOWN


def classify_error(exc: BaseException | str) -> ErrorKind:
    """Map an exception (or raw error text) onto an ErrorKind."""
    if isinstance(exc, str):
        return _match_kind(exc)
    kind = getattr(exc, "kind", None)
    if isinstance(kind, ErrorKind) and kind is not ErrorKind.UNKNOWN:
        return kind
    text = str(exc)
    status_code = getattr(exc, "status_code", None) or getattr(exc, "code", None)
    if isinstance(status_code, int):
        text = f"{text} {status_code}"
    return _match_kind(text)


def user_message(exc: BaseException | str, default: str = DEFAULT_FAILURE_MESSAGE) -> str:
    """Return the user-facing text for an error."""
    kind = classify_error(exc)
    if kind in USER_MESSAGES:
        return USER_MESSAGES[kind]
    return str(exc) or default


def is_transient(exc: BaseException) -> bool:
    """True for the service-unavailable class of errors."""
    for attr in ("status_code", "code"):
        if getattr(exc, attr, None) == 503:
            return True
    return bool(_TRANSIENT.search(str(exc)))
