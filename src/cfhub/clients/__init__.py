from cfhub.clients.base import (
    HTTPClient,
    HTTPClientError,
    HTTPError,
    HTTPResponse,
    MaxRetriesExceeded,
    RetryPolicy,
)

__all__ = [
    "HTTPClient",
    "HTTPClientError",
    "HTTPError",
    "HTTPResponse",
    "MaxRetriesExceeded",
    "RetryPolicy",
]
