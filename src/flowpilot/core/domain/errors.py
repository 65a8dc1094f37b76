"""
Domain Errors

Exception hierarchy raised by the coordinator and its adapters.

Error classes map onto the failure taxonomy of a turn:
- Frame errors (MalformedFrameError) never leave the decoder
- Step errors are not exceptions at all; they travel as step-error events
- Transport errors end an attempt and are re-raised once to the caller
- Cancellation is a result status, never an exception
"""


class FlowpilotError(Exception):
    """Base class for all flowpilot errors."""


class MalformedFrameError(FlowpilotError, ValueError):
    """A single stream frame could not be turned into an event."""


class TransportError(FlowpilotError):
    """
    The request failed or the stream ended abnormally.

    Attributes:
        status_code: HTTP status code when the server answered with an error
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AttemptInProgressError(FlowpilotError):
    """run() was called while another attempt is still running."""


class ApprovalError(FlowpilotError):
    """The human-approval endpoint rejected a confirmation request."""


class NoPendingConfirmationError(FlowpilotError):
    """resolve_confirmation() was called with nothing awaiting approval."""


class ProfileNotFoundError(FlowpilotError, FileNotFoundError):
    """No configuration profile with the requested name exists."""
