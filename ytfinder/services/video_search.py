from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from ytfinder.models.videos import VideoRecord

TITLE_WEIGHT = 8
TAGS_WEIGHT = 4
DESCRIPTION_WEIGHT = 1

QUERY_STOPWORDS: frozenset[str] = frozenset(
    {
        "a",
        "an",
        "and",
        "any",
        "about",
        "for",
        "find",
        "from",
        "give",
        "i",
        "in",
        "is",
        "me",
        "my",
        "of",
        "on",
        "or",
        "play",
        "please",
        "show",
        "some",
        "that",
        "the",
        "to",
        "want",
        "with",
    }
)

_TOKEN_PATTERN = re.compile(r"\w+")
_EPOCH = datetime.fromtimestamp(0, tz=UTC)


@dataclass(frozen=True)
class ScoredVideo:
    video: VideoRecord
    score: int
    matched_in: tuple[str, ...]


def normalize_text(value: str) -> str:
    return " ".join(value.casefold().split())


def query_tokens(query: str) -> list[str]:
    """Effective search tokens: word runs of the query without stopwords."""
    tokens: list[str] = []
    for token in _TOKEN_PATTERN.findall(normalize_text(query)):
        if token in QUERY_STOPWORDS or token in tokens:
            continue
        tokens.append(token)
    return tokens


def search_videos(items: Sequence[VideoRecord], query: str) -> list[ScoredVideo]:
    tokens = query_tokens(query)
    if not tokens:
        return []

    phrase = normalize_text(query)
    scored: list[tuple[int, ScoredVideo]] = []
    for position, video in enumerate(items):
        fields: tuple[tuple[str, list[str], int], ...] = (
            ("title", [normalize_text(video.title)], TITLE_WEIGHT),
            ("tags", [normalize_text(tag) for tag in video.tags], TAGS_WEIGHT),
            ("description", [normalize_text(video.description)], DESCRIPTION_WEIGHT),
        )

        score = 0
        matched_in: list[str] = []
        for field_name, texts, weight in fields:
            field_score = _field_score(texts, phrase=phrase, tokens=tokens, weight=weight)
            if field_score <= 0:
                continue
            score += field_score
            matched_in.append(field_name)

        if score > 0:
            scored.append(
                (position, ScoredVideo(video=video, score=score, matched_in=tuple(matched_in)))
            )

    scored.sort(
        key=lambda pair: (
            -pair[1].score,
            -_published_timestamp(pair[1].video),
            pair[0],
        )
    )
    return [match for _, match in scored]


def sort_by_published(
    items: Iterable[VideoRecord],
    *,
    newest_first: bool = True,
) -> list[VideoRecord]:
    ordered = list(items)
    if newest_first:
        ordered.sort(key=lambda video: -_published_timestamp(video))
    else:
        ordered.sort(key=_published_timestamp)
    return ordered


def latest_video(items: Iterable[VideoRecord]) -> VideoRecord | None:
    ordered = sort_by_published(items, newest_first=True)
    if not ordered:
        return None
    return ordered[0]


def _field_score(texts: list[str], *, phrase: str, tokens: list[str], weight: int) -> int:
    haystacks = [text for text in texts if text]
    if not haystacks:
        return 0

    score = 0
    if any(phrase in text for text in haystacks):
        score += 2 * weight
    for token in tokens:
        if any(token in text for text in haystacks):
            score += weight
    return score


def _published_sort_key(video: VideoRecord) -> datetime:
    return video.published_datetime or _EPOCH


def _published_timestamp(video: VideoRecord) -> float:
    return _published_sort_key(video).timestamp()
