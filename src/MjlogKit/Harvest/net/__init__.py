"""Networking helpers: client factory, streaming downloads, retry policy."""

from .client import build_http_client
from .download import FetchResult, fetch_text, fetch_to_file
from .retry import create_listing_retry_policy, is_retryable

__all__ = [
    "build_http_client",
    "FetchResult",
    "fetch_to_file",
    "fetch_text",
    "create_listing_retry_policy",
    "is_retryable",
]
