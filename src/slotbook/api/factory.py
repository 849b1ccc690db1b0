"""FastAPI application factory."""

from fastapi import FastAPI, Request, Response

from slotbook.bootstrap import ReservationCore, build_core
from slotbook.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)

from .routes import availability, bookings, health, pricing


def create_app(core: ReservationCore | None = None) -> FastAPI:
    """Create the FastAPI app around a reservation core.

    Args:
        core: Pre-built core (tests, embedding). If None, one is built from
              environment settings (SLOTBOOK_STORAGE, DATABASE_URL, ...).

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="Slotbook",
        docs_url=None,
        redoc_url=None,
    )
    app.state.core = core or build_core()

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    app.include_router(health.router)
    app.include_router(availability.router)
    app.include_router(pricing.router)
    app.include_router(bookings.router)

    return app
