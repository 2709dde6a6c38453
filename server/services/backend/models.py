"""Pydantic v2 models for backend responses."""

from typing import Any, Optional
from pydantic import BaseModel, Field


class ApiResponse(BaseModel):
    """Envelope returned by ApiClient for every successful call."""
    success: bool = True
    message: str = "Success"
    data: Any = None
    # Raw Set-Cookie header from the backend, relayed by the proxy routes
    set_cookie: Optional[str] = Field(default=None, exclude=True)
