# booklink/main.py
from fastapi import FastAPI

from booklink.api.routes import health, internal, public_booking
from booklink.core.config import get_settings
from booklink.core.logging_config import configure_logging
from booklink.db.session import init_db_for_startup


def create_app() -> FastAPI:
    """
    Application factory for the BookLink service.
    """
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Backend service behind single-use scheduling links: computes slots that\n"
            "are free on every participant's Google or Microsoft calendar and records\n"
            "the external party's choice exactly once."
        ),
        version="0.1.0",
    )

    # Routers
    app.include_router(health.router)
    app.include_router(public_booking.router)
    app.include_router(internal.router)

    @app.on_event("startup")
    async def on_startup() -> None:  # pragma: no cover
        await init_db_for_startup()

    return app


app = create_app()
