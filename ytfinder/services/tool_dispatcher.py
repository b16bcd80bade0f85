from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Any
from uuid import UUID

from ytfinder.models.tool_contracts import (
    ListSort,
    ProvenanceRef,
    ToolCatalogEntry,
    ToolError,
    ToolName,
    ToolRequest,
    ToolResponse,
)
from ytfinder.models.videos import VideoRecord
from ytfinder.services.video_cache import CacheRead, VideoIndexCache
from ytfinder.services.video_markdown import (
    escape_markdown,
    render_latest_video,
    render_video_list,
)
from ytfinder.services.video_search import latest_video, search_videos, sort_by_published
from ytfinder.telemetry import TelemetryClient

UNREACHABLE_NOTICE = (
    "The channel index is unreachable right now, so no videos could be loaded. "
    "Please try again in a moment."
)
STALE_FALLBACK_NOTICE = (
    "Showing the last known list of videos; the channel index could not be refreshed."
)
EXPIRED_NOTICE = "Showing an old copy of the video list while a refresh is attempted."

TOOL_TITLES: dict[ToolName, str] = {
    "videos.list": "List videos",
    "videos.search": "Search videos",
    "videos.latest": "Latest video",
}

TOOL_DESCRIPTIONS: dict[ToolName, str] = {
    "videos.list": (
        "List channel videos (newest first by default). "
        "Use payload.limit, payload.cursor and payload.sort (newest|oldest)."
    ),
    "videos.search": (
        "Search channel videos by keyword over title, tags and description. "
        "Requires payload.query; supports payload.limit and payload.cursor."
    ),
    "videos.latest": "Return the most recently published channel video.",
}


def _tool_input_schemas(*, default_page_size: int, max_page_size: int) -> dict[ToolName, Any]:
    page_size_schema = {
        "type": "integer",
        "minimum": 1,
        "maximum": max_page_size,
        "default": default_page_size,
    }
    cursor_schema = {"type": "integer", "minimum": 0, "default": 0}
    return {
        "videos.list": {
            "type": "object",
            "properties": {
                "limit": page_size_schema,
                "cursor": cursor_schema,
                "sort": {"type": "string", "enum": ["newest", "oldest"], "default": "newest"},
            },
            "additionalProperties": False,
        },
        "videos.search": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "minLength": 1},
                "limit": page_size_schema,
                "cursor": cursor_schema,
            },
            "required": ["query"],
            "additionalProperties": False,
        },
        "videos.latest": {
            "type": "object",
            "properties": {},
            "additionalProperties": False,
        },
    }


class ToolDispatcher:
    def __init__(
        self,
        *,
        video_cache: VideoIndexCache,
        default_page_size: int = 3,
        max_page_size: int = 20,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._video_cache = video_cache
        self._max_page_size = max(1, max_page_size)
        self._default_page_size = max(1, min(self._max_page_size, default_page_size))
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    @property
    def video_cache(self) -> VideoIndexCache:
        return self._video_cache

    def list_tools(self) -> list[ToolCatalogEntry]:
        schemas = _tool_input_schemas(
            default_page_size=self._default_page_size,
            max_page_size=self._max_page_size,
        )
        return [
            ToolCatalogEntry(
                name=name,
                title=TOOL_TITLES[name],
                description=description,
                read_only=True,
                input_schema=schemas[name],
            )
            for name, description in TOOL_DESCRIPTIONS.items()
        ]

    def execute(self, tool_name: ToolName, request: ToolRequest) -> ToolResponse:
        with self._telemetry.span(
            "tool.execute",
            tool_name=tool_name,
            request_id=str(request.request_id),
        ) as span:
            response = self._execute_tool(tool_name, request)
            cache = response.result.get("cache")
            span["outcome"] = "ok" if response.ok else "error"
            span["stale"] = bool(cache.get("stale")) if isinstance(cache, dict) else None
            return response

    def _execute_tool(self, tool_name: ToolName, request: ToolRequest) -> ToolResponse:
        if tool_name == "videos.list":
            return self._handle_list_videos(request)
        if tool_name == "videos.search":
            return self._handle_search_videos(request)
        if tool_name == "videos.latest":
            return self._handle_latest_video(request)

        return _tool_error_response(
            request_id=request.request_id,
            tool=tool_name,
            code="unknown_tool",
            message=f"Unsupported tool: {tool_name}",
        )

    def _handle_list_videos(self, request: ToolRequest) -> ToolResponse:
        page_size = self._page_size(request.payload)
        cursor = _cursor(request.payload)
        sort = _list_sort(request.payload.get("sort"))
        if sort is None:
            return _tool_error_response(
                request_id=request.request_id,
                tool=request.tool,
                code="invalid_input",
                message="payload.sort must be one of: newest, oldest.",
            )

        read = self._video_cache.get()
        ordered = sort_by_published(read.items, newest_first=sort == "newest")
        page, next_cursor = _paginate(ordered, cursor=cursor, page_size=page_size)
        heading = f"**{escape_markdown(read.channel_title or 'Channel videos')}**"

        return _videos_response(
            request=request,
            read=read,
            videos=page,
            text=render_video_list(page, heading=heading),
            extra={
                "sort": sort,
                "total": len(ordered),
                "cursor": cursor,
                "next_cursor": next_cursor,
                "page_size": page_size,
            },
        )

    def _handle_search_videos(self, request: ToolRequest) -> ToolResponse:
        raw_query = request.payload.get("query")
        if raw_query is None:
            raw_query = request.payload.get("q")
        if not isinstance(raw_query, str):
            return _tool_error_response(
                request_id=request.request_id,
                tool=request.tool,
                code="invalid_input",
                message="payload.query is required and must be a string.",
            )

        page_size = self._page_size(request.payload)
        cursor = _cursor(request.payload)

        read = self._video_cache.get()
        matches = search_videos(read.items, raw_query)
        matched_videos = [match.video for match in matches]
        page, next_cursor = _paginate(matched_videos, cursor=cursor, page_size=page_size)
        scores = {match.video.video_id: match for match in matches}
        heading = f"**{escape_markdown(raw_query.strip() or 'Search')}**"

        return _videos_response(
            request=request,
            read=read,
            videos=page,
            text=render_video_list(page, heading=heading),
            extra={
                "query": raw_query,
                "total_matches": len(matches),
                "cursor": cursor,
                "next_cursor": next_cursor,
                "page_size": page_size,
                "scores": [
                    {
                        "videoId": video.video_id,
                        "score": scores[video.video_id].score,
                        "matched_in": list(scores[video.video_id].matched_in),
                    }
                    for video in page
                ],
            },
        )

    def _handle_latest_video(self, request: ToolRequest) -> ToolResponse:
        read = self._video_cache.get()
        item = latest_video(read.items)
        videos: list[VideoRecord] = [] if item is None else [item]
        text = render_latest_video(item) if item is not None else "No videos found."

        return _videos_response(
            request=request,
            read=read,
            videos=videos,
            text=text,
            extra={"item": None if item is None else item.to_payload()},
        )

    def _page_size(self, payload: dict[str, Any]) -> int:
        raw_value = payload.get("limit")
        if raw_value is None:
            raw_value = payload.get("page_size", payload.get("pageSize"))
        requested = _optional_int(raw_value)
        if requested is None:
            return self._default_page_size
        return max(1, min(self._max_page_size, requested))


def _videos_response(
    *,
    request: ToolRequest,
    read: CacheRead,
    videos: Sequence[VideoRecord],
    text: str,
    extra: dict[str, Any],
) -> ToolResponse:
    notice = _freshness_notice(read)
    result: dict[str, Any] = {
        "tool": request.tool,
        "status": "degraded" if read.meta.error_detail is not None else "ok",
        "channel_title": read.channel_title,
        "items": [video.to_payload() for video in videos],
        **extra,
        "cache": read.meta.to_payload(),
        "notice": notice,
        "text": text if notice is None else f"{text}\n\n_{notice}_",
    }
    return ToolResponse(
        ok=True,
        request_id=request.request_id,
        result=result,
        provenance=[ProvenanceRef(type="youtube_video", id=video.video_id) for video in videos],
    )


def _freshness_notice(read: CacheRead) -> str | None:
    if read.meta.error_detail is not None:
        return STALE_FALLBACK_NOTICE if read.items else UNREACHABLE_NOTICE
    if read.meta.expired:
        return EXPIRED_NOTICE
    return None


def _tool_error_response(
    *,
    request_id: UUID,
    tool: ToolName,
    code: str,
    message: str,
    retryable: bool = False,
) -> ToolResponse:
    return ToolResponse(
        ok=False,
        request_id=request_id,
        result={"tool": tool, "status": "failed"},
        error=ToolError(code=code, message=message, retryable=retryable),
    )


def _paginate(
    videos: Sequence[VideoRecord],
    *,
    cursor: int,
    page_size: int,
) -> tuple[list[VideoRecord], int | None]:
    page = list(videos[cursor : cursor + page_size])
    next_cursor = cursor + page_size if cursor + page_size < len(videos) else None
    return page, next_cursor


def _cursor(payload: dict[str, Any]) -> int:
    raw_cursor = payload.get("cursor")
    if raw_cursor is None:
        raw_cursor = payload.get("offset")
    return max(0, _optional_int(raw_cursor) or 0)


def _list_sort(value: object) -> ListSort | None:
    if value is None:
        return "newest"
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    if normalized == "newest":
        return "newest"
    if normalized == "oldest":
        return "oldest"
    return None


def _optional_int(value: object) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return int(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            return int(stripped)
        except ValueError:
            return None
    return None
