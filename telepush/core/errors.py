from __future__ import annotations


class TelepushError(Exception):
    pass


class SeriesBuildError(TelepushError):
    """A builder rejected a batch of readings. Retrying cannot help."""


class EncodeError(TelepushError):
    """Serialization or compression of a write request failed."""


class RemoteWriteError(TelepushError):
    def __init__(
        self, message: str, *, status_code: int | None = None, body: str = ""
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class PushFailedError(TelepushError):
    def __init__(self, *, attempts: int, last_error: Exception) -> None:
        super().__init__(f"push failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class PushCancelledError(TelepushError):
    pass
