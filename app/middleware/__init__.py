"""
Request middleware for the invoice service.

- Request IDs for tracing a single call through logs and error responses
"""

from .correlation import RequestIdMiddleware, RequestIdLogFilter, get_request_id

__all__ = [
    "RequestIdMiddleware",
    "RequestIdLogFilter",
    "get_request_id",
]
