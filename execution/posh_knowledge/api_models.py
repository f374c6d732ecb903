"""
Pydantic models for the PoSH knowledge HTTP API.
"""

from typing import Any, Literal, Optional
from pydantic import BaseModel, Field


class ToolCallRequest(BaseModel):
    """Request body for the tool call endpoint."""
    name: str = Field(..., min_length=1, max_length=200)
    arguments: Optional[dict[str, Any]] = None


class TextContent(BaseModel):
    """A single text block of a tool result."""
    type: Literal["text"] = "text"
    text: str


class ToolCallResponse(BaseModel):
    """Tool result envelope. Tool failures are reported here, not as HTTP errors."""
    content: list[TextContent]
    isError: bool = False


class ToolInfo(BaseModel):
    """One entry of the tool catalog."""
    name: str
    description: str
    inputSchema: dict[str, Any]


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    database: str
