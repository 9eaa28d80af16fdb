"""Batch endpoint request/response envelope.

POST body:
    {"requests": [{"id", "method", "endpoint", "params", "data", "headers"}, ...]}

Response body:
    {"responses": [{"id", "success", "data", "error", "status", "code"}, ...]}
"""

from typing import Any

from pydantic import BaseModel, ConfigDict


class BatchRequestItem(BaseModel):
    """One queued request inside a batch call."""

    id: str
    method: str = "GET"
    endpoint: str
    params: dict[str, Any] | None = None
    data: Any = None
    headers: dict[str, str] | None = None


class BatchRequestEnvelope(BaseModel):
    requests: list[BatchRequestItem]

    def to_payload(self) -> dict[str, Any]:
        # Unset optional fields are left out rather than sent as null.
        return {
            "requests": [
                {
                    key: value
                    for key, value in item.model_dump(mode="json").items()
                    if value is not None
                }
                for item in self.requests
            ]
        }


class BatchResponseItem(BaseModel):
    """Server result for one request id."""

    model_config = ConfigDict(extra="ignore")

    id: str
    success: bool = False
    data: Any = None
    error: Any = None
    status: int | None = None
    code: str | int | None = None


class BatchResponseEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    responses: list[BatchResponseItem] = []
