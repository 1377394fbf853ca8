"""
Storyboard Forge - Generation errors
Failure modes of a remote generation job. All of them end up as a failed scene, never further.
"""


class GenerationError(Exception):
    """Base class for anything that stops a generation job."""


class AuthError(GenerationError):
    """The remote rejected our credentials. Retrying will not help."""


class RemoteError(GenerationError):
    """The remote answered with a non-success status or reported the job as failed."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class ProtocolError(RemoteError):
    """A success response that does not look like the API contract (e.g. no output URL)."""


class CancelledError(GenerationError):
    """The job's token was cancelled, by the user or by its deadline."""
