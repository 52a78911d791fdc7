from typing import Any

from pydantic import BaseModel, Field


class ErrorBody(BaseModel):
    code: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    correlation_id: str = "n/a"


class ErrorEnvelope(BaseModel):
    """Body of every non-``HTTPException`` error response."""

    error: ErrorBody
