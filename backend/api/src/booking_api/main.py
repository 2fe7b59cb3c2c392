"""FastAPI application for the booking engine REST API.

Provides REST endpoints for:
- Health check (/api/ping)
- Price quotes
- Holds, payment intents and cancellation
- Stripe redirect return and webhooks

The Lambda entry point lives in booking_api.lambda_handler.
"""

from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI

from booking_api.exceptions import register_exception_handlers
from booking_api.middleware.correlation import CorrelationIdMiddleware
from booking_api.routes import (
    bookings_router,
    payments_router,
    pricing_router,
    webhooks_router,
)
from booking_core.utils.logging import configure_logging

configure_logging()

app = FastAPI(
    title="Cabin Booking API",
    description="Holds, payments and refunds for cabin bookings",
    version="0.1.0",
)

app.add_middleware(CorrelationIdMiddleware)

# Register exception handlers for consistent error responses
register_exception_handlers(app)

# Include routers under /api prefix (CloudFront routes /api/* to API Gateway)
app.include_router(pricing_router, prefix="/api")
app.include_router(bookings_router, prefix="/api")
app.include_router(payments_router, prefix="/api")
app.include_router(webhooks_router, prefix="/api")


@app.get("/api/ping")
async def ping() -> dict[str, Any]:
    """Health check endpoint."""
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat(),
        "service": "booking-api",
    }


def run_server(host: str = "0.0.0.0", port: int = 8080, reload: bool = True) -> None:
    """Run the FastAPI server.

    Args:
        host: Host to bind to (default: 0.0.0.0)
        port: Port to listen on (default: 8080)
        reload: Enable hot reload for development (default: True)
    """
    import uvicorn

    if reload:
        # Use string reference for reload mode (uvicorn requirement)
        uvicorn.run(
            "booking_api.main:app",
            host=host,
            port=port,
            reload=True,
            reload_dirs=["backend/api/src", "backend/core/src"],
        )
    else:
        uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
