"""Exception taxonomy for the completion endpoint and the stream."""

from __future__ import annotations


class LinchatError(Exception):
    """Base class for all errors raised by linchat."""


class UpstreamAPIError(LinchatError):
    """
    The completion endpoint reported a failure.

    Fatal to the current turn.  Carries enough detail to populate the
    message's ``error_details``.
    """

    def __init__(
        self,
        message: str,
        *,
        name: str = "APIError",
        status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.name = name
        self.status = status


class APIStatusError(UpstreamAPIError):
    """Non-2xx HTTP response from the completion endpoint."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(
            f"API request failed with status {status}: {message}",
            name="APIStatusError",
            status=status,
        )


class StreamError(UpstreamAPIError):
    """An error object arrived inside a stream frame."""


class StreamCancelled(LinchatError):
    """The abort signal fired while a stream read was pending."""
