# booklink/api/routes/health.py
from datetime import datetime, timezone

from fastapi import APIRouter
from pydantic import BaseModel, Field

from booklink.core.config import get_settings


router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    """
    Response schema for the health check endpoint.
    """

    status: str = Field(
        ...,
        description="Overall health status of the BookLink service.",
        examples=["ok"],
    )
    app_name: str = Field(
        ...,
        description="Human-friendly name of the running application.",
        examples=["BookLink"],
    )
    environment: str = Field(
        ...,
        description="Current deployment environment (local/test/stage/prod).",
        examples=["local"],
    )
    timestamp_utc: datetime = Field(
        ...,
        description="Server-side timestamp (UTC) at which this health check was generated.",
        examples=["2026-01-12T14:00:00Z"],
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check for the BookLink service",
    description=(
        "Lightweight endpoint to verify that the BookLink backend is up and responding.\n\n"
        "It does not call the database or any calendar provider, so it stays green "
        "while those are degraded."
    ),
    responses={
        200: {
            "description": "Service is healthy and responding as expected.",
            "content": {
                "application/json": {
                    "example": {
                        "status": "ok",
                        "app_name": "BookLink",
                        "environment": "local",
                        "timestamp_utc": "2026-01-12T14:00:00Z",
                    }
                }
            },
        }
    },
)
async def health_check() -> HealthResponse:
    settings = get_settings()
    return HealthResponse(
        status="ok",
        app_name=settings.APP_NAME,
        environment=settings.APP_ENV,
        timestamp_utc=datetime.now(tz=timezone.utc),
    )
