"""
Middleware package.

WHY: Middleware provides cross-cutting concerns that apply to all requests.
Request context feeds the audit trail of invoice actions.
"""

from billing.middleware.request_context import (
    RequestContextMiddleware,
    get_request_context,
    get_client_ip,
    get_user_agent,
    RequestContext,
)

__all__ = [
    "RequestContextMiddleware",
    "get_request_context",
    "get_client_ip",
    "get_user_agent",
    "RequestContext",
]
