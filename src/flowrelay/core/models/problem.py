from pydantic import BaseModel
from typing import Optional


class ProblemResponse(BaseModel):
    """RFC 7807 problem document for the JSON (non-stream) endpoints."""

    type: str = "about:blank"
    title: str
    status: int
    detail: str
    instance: Optional[str] = None
