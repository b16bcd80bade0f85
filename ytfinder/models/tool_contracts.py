from __future__ import annotations

from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

ToolName = Literal[
    "videos.list",
    "videos.search",
    "videos.latest",
]

ListSort = Literal["newest", "oldest"]


class ToolContext(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_id: str | None = Field(default=None)
    locale: str | None = Field(default=None)


class ToolRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tool: ToolName
    request_id: UUID
    payload: dict[str, Any] = Field(default_factory=dict)
    context: ToolContext = Field(default_factory=ToolContext)


class ProvenanceRef(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: str
    id: str


class ToolError(BaseModel):
    model_config = ConfigDict(extra="forbid")

    code: str
    message: str
    retryable: bool = False


def _default_result() -> dict[str, Any]:
    return {}


def _default_provenance() -> list[ProvenanceRef]:
    return []


class ToolResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ok: bool
    request_id: UUID
    result: dict[str, Any] = Field(default_factory=_default_result)
    provenance: list[ProvenanceRef] = Field(default_factory=_default_provenance)
    error: ToolError | None = None


class ToolCatalogEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: ToolName
    title: str
    description: str
    read_only: bool = True
    input_schema: dict[str, Any]


class CacheDebugResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    state: str
    size: int
    cache_age_seconds: float | None
    fetched_at_utc: str | None
    refresh_in_flight: bool
    last_error: dict[str, Any] | None
    soft_ttl_seconds: float
    hard_ttl_seconds: float
    index_url: str
