"""
FastAPI application factory
"""
import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from bookingcrm.api.v1 import bookings, clients, payments, poll, push, safety
from bookingcrm.application.notifications import LoggingNotificationSink, WebPushNotificationSink
from bookingcrm.application.poll import PollLoop
from bookingcrm.config import get_settings
from bookingcrm.infrastructure.db.session import check_db_connection, init_db

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class ErrorLoggingMiddleware(BaseHTTPMiddleware):
    """Catches every unhandled exception, including ones from sync routes"""

    async def dispatch(self, request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            tb_str = traceback.format_exc()
            logger.error(f"\n{'='*60}\nERROR on {request.method} {request.url.path}\n{tb_str}{'='*60}")
            return Response(content=f"Internal Server Error: {exc}", status_code=500)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    init_db()

    if settings.VAPID_PUBLIC_KEY and settings.VAPID_PRIVATE_KEY:
        sink = WebPushNotificationSink()
    else:
        sink = LoggingNotificationSink()
    loop = PollLoop(sink=sink, settings=settings)
    app.state.notification_sink = sink
    app.state.poll_loop = loop
    loop.start()
    try:
        yield
    finally:
        loop.shutdown()
        if isinstance(sink, WebPushNotificationSink):
            sink.shutdown()


def create_app() -> FastAPI:
    """
    Application factory - builds and configures the FastAPI app

    Returns:
        Configured FastAPI app
    """
    settings = get_settings()

    app = FastAPI(
        title="Booking CRM",
        debug=settings.DEBUG,
        lifespan=lifespan,
    )

    app.add_middleware(ErrorLoggingMiddleware)

    app.include_router(clients.router)
    app.include_router(bookings.router)
    app.include_router(payments.router)
    app.include_router(safety.router)
    app.include_router(poll.router)
    app.include_router(push.router)

    # Health checks
    @app.get("/health", response_class=PlainTextResponse, tags=["system"])
    def health():
        """Health check endpoint"""
        return "ok"

    @app.get("/ready", response_class=PlainTextResponse, tags=["system"])
    def ready():
        """Readiness check endpoint (database reachable)"""
        check_db_connection()
        return "ok"

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "bookingcrm.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
