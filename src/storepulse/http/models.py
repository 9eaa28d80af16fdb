"""Request shapes shared by the API client and the request batcher."""

from dataclasses import dataclass
from typing import Any


@dataclass
class ApiRequest:
    """An outbound API call, without its endpoint."""

    method: str = "GET"
    params: dict[str, Any] | None = None
    data: Any = None
    headers: dict[str, str] | None = None

    def __post_init__(self) -> None:
        self.method = self.method.upper()


@dataclass(frozen=True)
class RequestOptions:
    """Per-call switches for the client's batching and deduplication layers."""

    batch: bool = True
    dedupe: bool = True


DIRECT = RequestOptions(batch=False)
RAW = RequestOptions(batch=False, dedupe=False)
