"""Error types raised by storepulse components."""

from typing import Any


class StorePulseError(Exception):
    """Base class for storepulse errors."""


class NotBatchableError(StorePulseError, ValueError):
    """Raised when a request is queued for an endpoint without a batch rule."""

    def __init__(self, endpoint: str) -> None:
        super().__init__(f"Endpoint {endpoint} is not batchable")
        self.endpoint = endpoint


class BatchRequestError(StorePulseError):
    """The combined batch call failed; every request in the batch gets one."""


class BatchItemError(StorePulseError):
    """The batch endpoint reported a failure for a single request."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        code: str | int | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.code = code


class MissingBatchResponseError(StorePulseError):
    """The batch response had no entry for a request id."""

    def __init__(self, request_id: str) -> None:
        super().__init__("No response received for request")
        self.request_id = request_id


class BatchClearedError(StorePulseError):
    """A queued request was discarded by ``RequestBatcher.clear()``."""

    def __init__(self) -> None:
        super().__init__("Batch cleared")


class ApiError(StorePulseError):
    """HTTP or transport failure from the API client."""

    def __init__(
        self,
        message: str,
        *,
        status: int = 0,
        payload: Any = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.payload = payload
