from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from structlog.contextvars import bind_contextvars, reset_contextvars

from ytfinder.config import AppSettings
from ytfinder.dependencies import get_dispatcher, get_settings
from ytfinder.models.tool_contracts import (
    CacheDebugResponse,
    ToolCatalogEntry,
    ToolName,
    ToolRequest,
    ToolResponse,
)
from ytfinder.services.tool_dispatcher import ToolDispatcher

router = APIRouter()


def _validate_tool_name(expected_tool: ToolName, request: ToolRequest) -> None:
    if request.tool != expected_tool:
        raise HTTPException(
            status_code=400,
            detail=(
                "Request tool does not match endpoint. "
                f"expected={expected_tool} actual={request.tool}"
            ),
        )


def _handle_tool(
    expected_tool: ToolName,
    request: ToolRequest,
    dispatcher: ToolDispatcher,
) -> ToolResponse:
    _validate_tool_name(expected_tool, request)
    context_tokens = bind_contextvars(
        tool_name=expected_tool,
        tool_request_id=str(request.request_id),
    )
    try:
        return dispatcher.execute(expected_tool, request)
    finally:
        reset_contextvars(**context_tokens)


@router.get(
    "/tools", response_model=list[ToolCatalogEntry], tags=["tools"], operation_id="list_tools"
)
def list_tools(
    dispatcher: Annotated[ToolDispatcher, Depends(get_dispatcher)],
) -> list[ToolCatalogEntry]:
    return dispatcher.list_tools()


@router.post(
    "/tools/videos.list",
    response_model=ToolResponse,
    tags=["tools"],
    operation_id="videos_list",
)
def videos_list(
    request: ToolRequest,
    dispatcher: Annotated[ToolDispatcher, Depends(get_dispatcher)],
) -> ToolResponse:
    return _handle_tool("videos.list", request, dispatcher)


@router.post(
    "/tools/videos.search",
    response_model=ToolResponse,
    tags=["tools"],
    operation_id="videos_search",
)
def videos_search(
    request: ToolRequest,
    dispatcher: Annotated[ToolDispatcher, Depends(get_dispatcher)],
) -> ToolResponse:
    return _handle_tool("videos.search", request, dispatcher)


@router.post(
    "/tools/videos.latest",
    response_model=ToolResponse,
    tags=["tools"],
    operation_id="videos_latest",
)
def videos_latest(
    request: ToolRequest,
    dispatcher: Annotated[ToolDispatcher, Depends(get_dispatcher)],
) -> ToolResponse:
    return _handle_tool("videos.latest", request, dispatcher)


@router.get(
    "/debug/cache",
    response_model=CacheDebugResponse,
    tags=["system"],
    operation_id="debug_cache",
)
def debug_cache(
    dispatcher: Annotated[ToolDispatcher, Depends(get_dispatcher)],
    settings: Annotated[AppSettings, Depends(get_settings)],
    token: Annotated[str | None, Query()] = None,
) -> CacheDebugResponse:
    if settings.debug_token is not None and token != settings.debug_token:
        raise HTTPException(status_code=403, detail="Invalid debug token.")

    status = dispatcher.video_cache.status()
    return CacheDebugResponse(
        state=status.state,
        size=status.size,
        cache_age_seconds=status.cache_age_seconds,
        fetched_at_utc=status.fetched_at_utc,
        refresh_in_flight=status.refresh_in_flight,
        last_error=status.last_error,
        soft_ttl_seconds=status.soft_ttl_seconds,
        hard_ttl_seconds=status.hard_ttl_seconds,
        index_url=settings.index_url,
    )
