"""Health check endpoint."""

from fastapi import APIRouter, Request

from ..schemas import HealthResponse

router = APIRouter()


@router.get("", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Report liveness and whether the schema has been migrated."""
    return HealthResponse(
        status="healthy",
        schema_ready=bool(getattr(request.app.state, "schema_ready", False)),
    )
