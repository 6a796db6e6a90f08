"""
Error Taxonomy
==============

Every failure a Flux Studio operation can end in. Each class carries a stable
``code`` (what the caller reports) and a ``category`` that tells the UI which
kind of advice to show:

    fix_input    - the user should change the prompt or the inputs
    retry_later  - transient or upstream problem, resubmitting may work
    server_error - configuration or local handling problem

Adapters and the poller raise these; the orchestrator converts them into a
failure ``OperationResult`` so none of them escape a request.
"""

from __future__ import annotations

from typing import Any

FIX_INPUT = "fix_input"
RETRY_LATER = "retry_later"
SERVER_ERROR = "server_error"

MODERATION_HINT = (
    "The request was blocked by the provider's content moderation. "
    "Please rephrase with gentler wording and avoid sensitive content."
)

POST_READY_HINT = (
    "The image was generated by the provider, but saving it on this server "
    "failed. Your prompt was fine; please try again."
)


class StudioError(Exception):
    """Base class for every error in the taxonomy."""

    code = "InternalError"
    category = SERVER_ERROR

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class InternalError(StudioError):
    """Wraps an unexpected exception caught at the orchestrator boundary."""


class ValidationError(StudioError):
    code = "ValidationError"
    category = FIX_INPUT


class AuthError(StudioError):
    code = "AuthError"
    category = SERVER_ERROR


class ProviderRejected(StudioError):
    """The provider refused the submission (bad payload, quota, ...)."""

    code = "ProviderRejected"
    category = RETRY_LATER

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.status_code = status_code


class TransportError(StudioError):
    code = "TransportError"
    category = RETRY_LATER


class DownloadError(TransportError):
    code = "DownloadError"


class JobFailed(StudioError):
    code = "JobFailed"
    category = RETRY_LATER


class ContentModerated(StudioError):
    code = "ContentModerated"
    category = FIX_INPUT

    def __init__(self, message: str = MODERATION_HINT, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details)


class JobTimeout(StudioError):
    code = "JobTimeout"
    category = RETRY_LATER


class OperationCancelled(StudioError):
    code = "Cancelled"
    category = RETRY_LATER


class PersistError(StudioError):
    code = "PersistError"
    category = SERVER_ERROR


class DecodeError(StudioError):
    code = "DecodeError"
    category = SERVER_ERROR
