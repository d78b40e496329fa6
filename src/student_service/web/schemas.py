"""Pydantic schemas for API responses."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class StudentResponse(BaseModel):
    """A student as returned by the API, with camelCase keys."""

    model_config = ConfigDict(
        from_attributes=True, alias_generator=to_camel, populate_by_name=True
    )

    id: int
    first_name: str
    last_name: str
    email: str
    phone_number: str | None = None


class HealthResponse(BaseModel):
    """Liveness and schema readiness."""

    status: str
    schema_ready: bool
