"""Error envelope shared by every non-2xx response."""

from pydantic import BaseModel, Field


class ErrorOut(BaseModel):
    code: int = Field(..., examples=[42901])
    message: str = Field(..., examples=["Too many requests. Please try again later."])


def error_responses(*status_codes: int) -> dict[int | str, dict]:
    """OpenAPI `responses=` entries for the given status codes."""
    return {code: {"model": ErrorOut} for code in status_codes}
