"""Request-scoped dependencies: the reservation core and caller identity.

Identity is resolved upstream (gateway / identity service); the core
trusts the X-User-Id and X-Tenant-Id headers as validated inputs.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Header, HTTPException, Request

from slotbook.bootstrap import ReservationCore
from slotbook.domain.errors import (
    InvalidStateTransition,
    NotFound,
    Overbooked,
    SlotbookError,
    StorageError,
    ValidationError,
)
from slotbook.observability.logging import get_logger
from slotbook.observability.redaction import safe_log_context

logger = get_logger(__name__)


@dataclass(frozen=True)
class Identity:
    user_id: str
    tenant_id: str


def get_core(request: Request) -> ReservationCore:
    return request.app.state.core


def get_identity(
    x_user_id: str = Header(..., alias="X-User-Id", min_length=1),
    x_tenant_id: str = Header(..., alias="X-Tenant-Id", min_length=1),
) -> Identity:
    return Identity(user_id=x_user_id, tenant_id=x_tenant_id)


def http_error(exc: SlotbookError) -> HTTPException:
    """Translate a domain error into the HTTP response the client sees.

    Storage failures never expose internal detail.
    """
    if isinstance(exc, StorageError):
        logger.warning(
            "storage unavailable",
            extra={"extra_fields": safe_log_context(error_code=exc.code)},
        )
        return HTTPException(
            status_code=503,
            detail={
                "code": exc.code,
                "message": "Service temporarily unavailable, please retry",
                "retryable": True,
            },
            headers={"Retry-After": "1"},
        )

    if isinstance(exc, ValidationError):
        status_code = 400
    elif isinstance(exc, NotFound):
        status_code = 404
    elif isinstance(exc, (Overbooked, InvalidStateTransition)):
        status_code = 409
    else:
        status_code = 500
    return HTTPException(
        status_code=status_code,
        detail={"code": exc.code, "message": str(exc), **exc.meta},
    )
