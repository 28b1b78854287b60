"""Failure taxonomy for the intent pipeline.

Expected failures are raised inside a component and recovered at its
boundary; none of them should reach a caller of
:class:`kenny.orchestrator.pipeline.AssistantPipeline`.
"""


class KennyError(Exception):
    """Base class for all expected pipeline failures."""


class ClassificationFailure(KennyError):
    """The completion backend could not produce a usable intent."""


class ExtractionFailure(KennyError):
    """Model slot output was not valid JSON or not a JSON object."""


class ValidationFailure(KennyError):
    """Slots were rejected by a domain service before dispatch.

    ``reason`` is safe to show to the user.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class DispatchFailure(KennyError):
    """A domain service failed while executing an action."""


class SessionNotFound(KennyError):
    """A correction referenced a session that does not exist."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id
