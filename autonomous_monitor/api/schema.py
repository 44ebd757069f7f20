from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from autonomous_monitor.models import Severity


class ErrorDetails(BaseModel):
    message: str = Field(..., min_length=1)
    type: str | None = Field(None, max_length=200)
    stack: str | None = None


class ErrorReportRequest(BaseModel):
    error: ErrorDetails
    context: dict[str, Any] = Field(default_factory=dict)
    severity: Severity | None = None
    source: str | None = Field(None, max_length=200)


class ProviderRequest(BaseModel):
    provider: Literal["claude", "openai"]


class ModelRequest(BaseModel):
    provider: Literal["claude", "openai"]
    model: str = Field(..., min_length=1, max_length=200)
    max_tokens: int | None = Field(None, ge=1, le=200000)
    temperature: float | None = Field(None, ge=0, le=2)


class ToggleRequest(BaseModel):
    enabled: bool


class ProviderTestRequest(BaseModel):
    provider: Literal["claude", "openai"] | None = None


class MarkdownIngestRequest(BaseModel):
    source_id: str = Field(..., min_length=1, max_length=500)
    content: str = Field(..., min_length=1)
    category: str = Field("documentation", min_length=1, max_length=100)
