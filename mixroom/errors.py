"""Error taxonomy shared by the engine and the HTTP layer.

Every error carries the HTTP status it maps to and a ``public_message`` that
is safe to show to clients.  The full ``message`` (which may contain ffmpeg
diagnostics or filesystem paths) is only ever logged.
"""

from __future__ import annotations

from typing import Optional


class MixroomError(Exception):
    status_code = 500
    public_message = "Internal error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        public_message: Optional[str] = None,
        retryable: bool = False,
        diagnostics: str = "",
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if public_message is not None:
            self.public_message = public_message
        elif self.status_code < 500:
            # client errors are specific on purpose
            self.public_message = message
        self.retryable = retryable
        self.diagnostics = diagnostics


class ValidationError(MixroomError):
    status_code = 400


class AuthError(MixroomError):
    status_code = 401


class ForbiddenError(MixroomError):
    status_code = 403


class NotFoundError(MixroomError):
    status_code = 404


class ConflictError(MixroomError):
    status_code = 409


class AnalysisError(MixroomError):
    public_message = "Audio analysis failed"


class NormalizationError(MixroomError):
    public_message = "Audio normalization failed"


class StorageError(MixroomError):
    public_message = "Storage failure"


class ProcessingCancelled(MixroomError):
    status_code = 503
    public_message = "Processing was cancelled"


class ProcessFailed(MixroomError):
    """An external tool exited non-zero."""

    def __init__(self, cmd, returncode: int, stderr: str):
        tail = (stderr or "")[-400:]
        super().__init__(f"{cmd[0]} exited with {returncode}", diagnostics=tail)
        self.returncode = returncode
        self.stderr = stderr or ""


class ProcessTimeout(MixroomError):
    """An external tool exceeded its wall-clock budget and was killed."""

    def __init__(self, cmd, timeout: float):
        super().__init__(f"{cmd[0]} timed out after {timeout:.0f}s", retryable=True)
        self.timeout = timeout
