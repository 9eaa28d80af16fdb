"""HTTP client for the storefront API."""

from storepulse.http.client import ApiClient
from storepulse.http.dedupe import RequestDeduplicator
from storepulse.http.models import ApiRequest, RequestOptions

__all__ = [
    "ApiClient",
    "ApiRequest",
    "RequestDeduplicator",
    "RequestOptions",
]
