from __future__ import annotations

import datetime as dt
import json
import pathlib
from typing import Iterable, List

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .metadata import Post
from .utils import atomic_write_bytes


class PostSummary(BaseModel):
    """One entry of the aggregate ``posts.json`` artifact."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    slug: str
    title: str
    date: dt.date
    description: str = ""
    tags: List[str] = Field(default_factory=list)
    excerpt: str = ""
    reading_time: int = Field(alias="readingTime", ge=1)

    @classmethod
    def from_post(cls, post: Post) -> "PostSummary":
        return cls(
            slug=post.slug,
            title=post.title,
            date=post.date,
            description=post.description,
            tags=list(post.tags),
            excerpt=post.excerpt,
            reading_time=post.reading_time,
        )


_summaries = TypeAdapter(List[PostSummary])


def sort_posts(posts: Iterable[Post]) -> List[Post]:
    """Newest first; slug breaks ties so the order is stable across runs."""
    return sorted(sorted(posts, key=lambda p: p.slug), key=lambda p: p.date, reverse=True)


def build_post_index(posts: Iterable[Post]) -> List[PostSummary]:
    return [PostSummary.from_post(p) for p in sort_posts(posts)]


def dumps_post_index(index: List[PostSummary]) -> str:
    data = [s.model_dump(mode="json", by_alias=True) for s in index]
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def loads_post_index(text: str) -> List[PostSummary]:
    return _summaries.validate_json(text)


def dump_post_index(index: List[PostSummary], path: pathlib.Path) -> None:
    atomic_write_bytes(path, dumps_post_index(index).encode("utf-8"))


def load_post_index(path: pathlib.Path) -> List[PostSummary]:
    return loads_post_index(path.read_text(encoding="utf-8"))
