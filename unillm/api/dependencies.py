"""
unillm - API Dependencies

Shared dependencies for FastAPI routes.
"""

import uuid
from typing import Dict, Optional

from fastapi import Header, Request

from ..adapters.base import BaseAdapter
from ..core.errors import ErrorDetails, ErrorType, InfraError
from ..core.models import Provider


def get_request_id(x_request_id: Optional[str] = Header(default=None)) -> str:
    """Use the caller's X-Request-Id, or mint one."""
    return x_request_id or f"req_{uuid.uuid4().hex[:24]}"


def get_adapters(request: Request) -> Dict[Provider, BaseAdapter]:
    """
    Adapters configured for this app.

    Set on app.state by the server lifespan.
    """
    adapters = getattr(request.app.state, "adapters", None)
    if adapters is None:
        raise InfraError(
            ErrorDetails(
                code="service_unavailable",
                message="Adapters not initialized. Server may be starting up.",
                type=ErrorType.INFRA,
                retryable=True,
                retry_after=5
            ),
            status_code=503
        )
    return adapters
