"""Canonical video records and the rules that map upstream shapes onto them.

The index service has shipped several document layouts over time (flat
worker records, YouTube Data API playlist items, search results). Each
canonical field is read through an ordered tuple of key paths; the first
path that yields a usable value wins, so the fallback order is explicit and
can be tested on its own.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, cast

WATCH_URL_TEMPLATE = "https://www.youtube.com/watch?v={video_id}"
THUMBNAIL_URL_TEMPLATE = "https://i.ytimg.com/vi/{video_id}/hqdefault.jpg"

KeyPath = tuple[str, ...]

LIST_KEYS: tuple[str, ...] = ("videos", "items", "results", "data")

VIDEO_ID_RULES: tuple[KeyPath, ...] = (
    ("videoId",),
    ("video_id",),
    ("id", "videoId"),
    ("snippet", "resourceId", "videoId"),
    ("contentDetails", "videoId"),
    ("id",),
)
TITLE_RULES: tuple[KeyPath, ...] = (
    ("title",),
    ("snippet", "title"),
    ("name",),
)
DESCRIPTION_RULES: tuple[KeyPath, ...] = (
    ("description",),
    ("snippet", "description"),
)
TAGS_RULES: tuple[KeyPath, ...] = (
    ("tags",),
    ("snippet", "tags"),
    ("keywords",),
)
PUBLISHED_AT_RULES: tuple[KeyPath, ...] = (
    ("publishedAt",),
    ("published_at",),
    ("contentDetails", "videoPublishedAt"),
    ("snippet", "publishedAt"),
    ("published",),
)
URL_RULES: tuple[KeyPath, ...] = (
    ("url",),
    ("watchUrl",),
    ("link",),
)
THUMBNAIL_RULES: tuple[KeyPath, ...] = (
    ("thumbnailUrl",),
    ("thumbnail_url",),
    ("thumbnail",),
    ("snippet", "thumbnails", "maxres", "url"),
    ("snippet", "thumbnails", "high", "url"),
    ("snippet", "thumbnails", "medium", "url"),
    ("snippet", "thumbnails", "default", "url"),
)


@dataclass(frozen=True)
class VideoRecord:
    video_id: str
    title: str = ""
    description: str = ""
    tags: tuple[str, ...] = ()
    published_at: str = ""
    url: str = ""
    thumbnail_url: str = ""

    def __post_init__(self) -> None:
        if not self.url:
            object.__setattr__(self, "url", watch_url(self.video_id))
        if not self.thumbnail_url:
            object.__setattr__(self, "thumbnail_url", thumbnail_url(self.video_id))

    def to_payload(self) -> dict[str, Any]:
        return {
            "videoId": self.video_id,
            "title": self.title,
            "description": self.description,
            "tags": list(self.tags),
            "publishedAt": self.published_at,
            "url": self.url,
            "thumbnailUrl": self.thumbnail_url,
        }

    @property
    def published_datetime(self) -> datetime | None:
        return parse_datetime_utc(self.published_at)


def watch_url(video_id: str) -> str:
    if not video_id:
        return ""
    return WATCH_URL_TEMPLATE.format(video_id=video_id)


def thumbnail_url(video_id: str) -> str:
    if not video_id:
        return ""
    return THUMBNAIL_URL_TEMPLATE.format(video_id=video_id)


def extract_video_list(document: Any) -> list[Any] | None:
    """Return the raw record list of an index document, or None if there is none."""
    if isinstance(document, list):
        return list(cast(list[Any], document))
    if not isinstance(document, Mapping):
        return None
    mapping = cast(Mapping[str, Any], document)
    for key in LIST_KEYS:
        value = mapping.get(key)
        if isinstance(value, list):
            return list(cast(list[Any], value))
    return None


def extract_channel_title(document: Any) -> str | None:
    if not isinstance(document, Mapping):
        return None
    mapping = cast(Mapping[str, Any], document)
    for path in (("channelTitle",), ("channel_title",), ("channel", "title")):
        value = _coerce_text(_lookup(mapping, path))
        if value:
            return value
    return None


def normalize_record(raw: Any) -> VideoRecord | None:
    """Map one upstream record to a VideoRecord; records without an id yield None."""
    if not isinstance(raw, Mapping):
        return None
    mapping = cast(Mapping[str, Any], raw)

    video_id = _first_text(mapping, VIDEO_ID_RULES)
    if not video_id:
        return None

    return VideoRecord(
        video_id=video_id,
        title=_first_text(mapping, TITLE_RULES),
        description=_first_text(mapping, DESCRIPTION_RULES),
        tags=_first_tags(mapping, TAGS_RULES),
        published_at=_first_text(mapping, PUBLISHED_AT_RULES),
        url=_first_text(mapping, URL_RULES),
        thumbnail_url=_first_text(mapping, THUMBNAIL_RULES),
    )


def normalize_records(raw_items: Iterable[Any]) -> list[VideoRecord]:
    records: list[VideoRecord] = []
    seen: set[str] = set()
    for raw in raw_items:
        record = normalize_record(raw)
        if record is None or record.video_id in seen:
            continue
        seen.add(record.video_id)
        records.append(record)
    return records


def parse_datetime_utc(raw_value: str | None) -> datetime | None:
    if not raw_value:
        return None

    normalized = raw_value.strip().replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _lookup(mapping: Mapping[str, Any], path: KeyPath) -> Any:
    current: Any = mapping
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = cast(Mapping[str, Any], current).get(key)
    return current


def _first_text(mapping: Mapping[str, Any], rules: tuple[KeyPath, ...]) -> str:
    for path in rules:
        value = _coerce_text(_lookup(mapping, path))
        if value:
            return value
    return ""


def _first_tags(mapping: Mapping[str, Any], rules: tuple[KeyPath, ...]) -> tuple[str, ...]:
    for path in rules:
        tags = _coerce_tags(_lookup(mapping, path))
        if tags:
            return tags
    return ()


def _coerce_text(value: Any) -> str | None:
    # bool is an int subclass and never a meaningful id or title
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    if isinstance(value, int | float):
        return str(value)
    return None


def _coerce_tags(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        parts = [part.strip() for part in value.split(",")]
        return tuple(part for part in parts if part)
    if isinstance(value, list | tuple):
        items = cast(list[Any], list(value))
        tags: list[str] = []
        for item in items:
            text = _coerce_text(item)
            if text:
                tags.append(text)
        return tuple(tags)
    return ()
