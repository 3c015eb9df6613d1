"""Error taxonomy for the voice relay service."""

from __future__ import annotations

from typing import Any


class RelayError(Exception):
    """Base class for every failure raised by the relay."""


class ValidationError(RelayError):
    """The start-conversation request body was rejected."""


class AuthConfigError(RelayError):
    """Required provider credentials are missing or malformed."""

    def __init__(self, errors: list[str]):
        super().__init__("API key invalid: " + "; ".join(errors))
        self.errors = errors


class UpstreamGenerationError(RelayError):
    """Wrap transport or API failures when streaming from the language model."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


class UpstreamSynthesisError(RelayError):
    """The speech synthesis provider call failed."""

    def __init__(self, detail: Any, status_code: int | None = None):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


class ChannelError(RelayError):
    """The client transport failed while sending or receiving."""


__all__ = [
    "AuthConfigError",
    "ChannelError",
    "RelayError",
    "UpstreamGenerationError",
    "UpstreamSynthesisError",
    "ValidationError",
]
