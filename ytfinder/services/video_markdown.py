"""Markdown summaries for chat clients that render tool text inline."""

from __future__ import annotations

import re
from collections.abc import Sequence

from ytfinder.models.videos import VideoRecord

THUMBNAILS_PER_SUMMARY = 2
TITLE_SEPARATORS: tuple[str, ...] = (" – ", " - ", " — ")

_MARKDOWN_LINK_CHARS = re.compile(r"[\[\]()]")


def escape_markdown(value: str) -> str:
    return _MARKDOWN_LINK_CHARS.sub(lambda match: f"\\{match.group(0)}", value)


def format_title(title: str) -> str:
    """Italicize the song part of "Artist – Song" style titles."""
    for separator in TITLE_SEPARATORS:
        index = title.find(separator)
        if index < 0:
            continue
        left = title[: index + len(separator)]
        right = title[index + len(separator) :]
        if right.strip():
            return f"{escape_markdown(left)}_{escape_markdown(right)}_"
    return escape_markdown(title)


def render_video_list(videos: Sequence[VideoRecord], *, heading: str) -> str:
    thumbnails = " ".join(
        f"![{escape_markdown(video.title or 'thumb')}]({video.thumbnail_url})"
        for video in videos[:THUMBNAILS_PER_SUMMARY]
    )
    links = "\n".join(
        f"- [{format_title(video.title or 'Untitled')}]({video.url})" for video in videos
    )
    sections = [section for section in (heading, thumbnails, links) if section]
    return "\n\n".join(sections)


def render_latest_video(video: VideoRecord) -> str:
    lines = [
        f"![thumb]({video.thumbnail_url})",
        "**Latest upload**",
        f"- [{format_title(video.title or 'Untitled')}]({video.url})",
    ]
    if video.published_at:
        lines.append(f"- Published: {video.published_at[:10]}")
    return "\n\n".join(lines[:2]) + "\n\n" + "\n".join(lines[2:])
