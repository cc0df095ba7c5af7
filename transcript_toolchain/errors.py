from __future__ import annotations

import asyncio
from typing import Sequence, Tuple


class TranscriptError(ValueError):
    """Terminal, user-actionable failure of a run; raw text stays untouched."""


class ExtractionError(TranscriptError):
    """The upstream document could not be turned into text."""


class EmptyDocumentError(TranscriptError):
    def __init__(self, message: str = "The document does not seem to contain any text.") -> None:
        super().__init__(message)


class NoPausesFoundError(TranscriptError):
    def __init__(
        self,
        message: str = (
            "No pauses found. In meditation mode, directive lines must start with "
            '"PAUSE", "STILLE" or "NACHSPÜREN", optionally preceded by an adjective '
            'such as "KURZE" or "LANGE" (e.g. "PAUSE, um tief einzuatmen" or '
            '"KURZE PAUSE für drei Atemzüge").'
        ),
    ) -> None:
        super().__init__(message)


class RewriteError(RuntimeError):
    """A delegated rewrite attempt failed; always absorbed by the watchdog."""


class RunCancelled(Exception):
    """Raised at suspension points once the run's cancel token fires. Not a failure."""


# Ordered: first matching family wins.
_REWRITE_ERROR_MESSAGES: Sequence[Tuple[Tuple[str, ...], str]] = (
    (
        ("api key", "401", "403", "permission denied"),
        "The API key is invalid or lacks permission.",
    ),
    (
        ("429", "resource exhausted", "quota", "rate limit"),
        "The usage limit (quota) of the rewrite service was reached.",
    ),
    (
        ("503", "overloaded", "internal error", "500", "502"),
        "The rewrite service is overloaded or unavailable.",
    ),
    (
        ("safety", "blocked", "content policy"),
        "The request was blocked by the provider's safety policy.",
    ),
    (
        ("fetch failed", "network", "connection"),
        "Network error: the rewrite service could not be reached.",
    ),
    (
        ("candidate", "empty response"),
        "The rewrite service returned no usable answer.",
    ),
)


def describe_rewrite_error(error: BaseException) -> str:
    """Map a provider failure to a readable message for logs."""
    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return "The rewrite service did not answer in time."
    msg = str(error).lower()
    for tokens, message in _REWRITE_ERROR_MESSAGES:
        if any(token in msg for token in tokens):
            return message
    return f"Unexpected rewrite failure: {error or type(error).__name__}"
