"""
Recognition error taxonomy.

All backend failures derive from RecognitionError so callers can catch one
type and still inspect `fatal` / `category` to decide what to do next.

    BackendUnavailable  capability missing entirely (never retried)
    InvalidInput        bad image path or unreadable image (never retried)
    RecognitionFailed   the call itself failed (retried unless fatal)
    CircuitOpenError    fast-fail while the breaker is open
"""

from typing import Optional, Tuple


class RecognitionError(Exception):
    category = "unknown"
    fatal = False

    def __init__(
        self,
        message: str,
        engine: Optional[str] = None,
        image_path: Optional[str] = None,
        category: Optional[str] = None,
        fatal: Optional[bool] = None,
    ):
        super().__init__(message)
        self.engine = engine
        self.image_path = str(image_path) if image_path is not None else None
        if category is not None:
            self.category = category
        if fatal is not None:
            self.fatal = fatal


class BackendUnavailable(RecognitionError):
    category = "unavailable"
    fatal = True

    def __init__(self, engine: str, reason: str):
        super().__init__(
            f"OCR backend '{engine}' is not available: {reason}",
            engine=engine,
        )
        self.reason = reason


class InvalidInput(RecognitionError):
    category = "invalid_input"
    fatal = True


class RecognitionFailed(RecognitionError):
    category = "recognition"
    fatal = False


class CircuitOpenError(RecognitionError):
    category = "circuit_open"
    fatal = True

    def __init__(self, engine: str, retry_in: float, image_path: Optional[str] = None):
        super().__init__(
            f"Circuit open for '{engine}', retry in {retry_in:.1f}s",
            engine=engine,
            image_path=image_path,
        )
        self.retry_in = retry_in


# Last-resort message patterns, used only when an error carries no structure.
FATAL_PATTERNS = {
    "auth": ("api key", "unauthorized", "authentication", "forbidden", "permission denied"),
    "quota": ("quota", "insufficient_quota", "billing"),
    "invalid_input": ("file not found", "invalid image", "cannot identify image"),
    "model_missing": ("model not found",),
}

RETRYABLE_PATTERNS = {
    "timeout": ("timed out", "timeout"),
    "rate_limit": ("rate limit", "too many requests", "429"),
    "network": ("connection", "temporarily unavailable", "reset by peer"),
    "server": ("internal server error", "bad gateway", "service unavailable", "502", "503", "504"),
}


def classify_error(error: BaseException) -> Tuple[str, bool]:
    """Return (category, fatal) for an exception raised by a backend call.

    Structured information wins: a RecognitionError whose category was set
    by the backend is trusted as-is. Plain exceptions fall back to message
    pattern matching.
    """
    if isinstance(error, RecognitionError) and error.category not in ("unknown", "recognition"):
        return error.category, error.fatal

    message = str(error).lower()

    for category, patterns in FATAL_PATTERNS.items():
        if any(p in message for p in patterns):
            return category, True

    for category, patterns in RETRYABLE_PATTERNS.items():
        if any(p in message for p in patterns):
            return category, False

    if isinstance(error, RecognitionError):
        return error.category, error.fatal

    return "unknown", False
