"""Frontmatter validation and derived post fields."""

from __future__ import annotations

import datetime as dt
import logging
import math
import pathlib
from typing import List, Tuple

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .config import MDX_SUFFIX, SiteConfig
from .errors import MalformedFrontmatterError
from .markup import plain_text
from .utils import FrontmatterSyntaxError, _coerce_date_like, parse_frontmatter, slugify

logger = logging.getLogger(__name__)


class Frontmatter(BaseModel):
    model_config = ConfigDict(
        extra="ignore", str_strip_whitespace=True, coerce_numbers_to_str=True
    )

    title: str
    date: dt.date
    tags: List[str] = []
    description: str = ""

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, v: str) -> str:
        if not v:
            raise ValueError("title must not be empty")
        return v

    @field_validator("date", mode="before")
    @classmethod
    def _coerce_date(cls, v):
        return _coerce_date_like(v)

    @field_validator("tags", mode="before")
    @classmethod
    def _split_tags(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [t for t in v.split(",")]
        return v

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, v: List[str]) -> List[str]:
        return list(dict.fromkeys(t.strip() for t in v if t.strip()))

    @field_validator("description", mode="before")
    @classmethod
    def _none_description(cls, v):
        return "" if v is None else v


class Post(BaseModel):
    model_config = ConfigDict(frozen=True)

    slug: str
    title: str
    date: dt.date
    tags: Tuple[str, ...] = ()
    description: str = ""
    excerpt: str = ""
    reading_time: int = 1
    body: str = ""
    source_path: pathlib.Path

    @property
    def base_dir(self) -> pathlib.Path:
        return self.source_path.parent

    @property
    def is_mdx(self) -> bool:
        return self.source_path.suffix.lower() == MDX_SUFFIX


def slug_for(path: pathlib.Path, title: str = "") -> str:
    stem = path.parent.name if path.stem.lower() == "index" else path.stem
    return slugify(stem) or slugify(title)


def make_excerpt(text: str, limit: int) -> str:
    """Whole paragraphs that fit in ``limit`` characters.

    When even the first paragraph is too long it is cut at a word boundary.
    """
    paragraphs = [p for p in text.split("\n\n") if p]
    excerpt = ""
    for para in paragraphs:
        candidate = f"{excerpt}\n\n{para}" if excerpt else para
        if len(candidate) > limit:
            break
        excerpt = candidate
    if excerpt or not paragraphs:
        return excerpt

    cut = paragraphs[0][:limit - 1]
    if " " in cut:
        cut = cut.rsplit(" ", 1)[0]
    return cut.rstrip(" ,;:.-") + "…"


def reading_time(text: str, words_per_minute: int) -> int:
    words = len(text.split())
    return max(1, math.ceil(words / words_per_minute))


def _validation_problems(e: ValidationError) -> List[str]:
    problems = []
    for err in e.errors():
        field = ".".join(str(p) for p in err["loc"]) or "frontmatter"
        if err["type"] == "missing":
            problems.append(f"missing required field '{field}'")
        else:
            problems.append(f"{field}: {err['msg']}")
    return problems


def parse_post(text: str, path: pathlib.Path, config: SiteConfig) -> Post:
    """Build a Post from the raw text of a content file."""
    try:
        fm, body = parse_frontmatter(text)
    except FrontmatterSyntaxError as e:
        raise MalformedFrontmatterError(path, [str(e)]) from e
    if fm is None:
        raise MalformedFrontmatterError(path, ["no frontmatter block"])
    if not isinstance(fm, dict):
        raise MalformedFrontmatterError(path, ["frontmatter must be a mapping"])

    try:
        meta = Frontmatter.model_validate(fm)
    except ValidationError as e:
        raise MalformedFrontmatterError(path, _validation_problems(e)) from e

    slug = slug_for(path, meta.title)
    if not slug:
        raise MalformedFrontmatterError(path, ["cannot derive a slug"])

    prose = plain_text(body, mdx=path.suffix.lower() == MDX_SUFFIX)
    return Post(
        slug=slug,
        title=meta.title,
        date=meta.date,
        tags=tuple(meta.tags),
        description=meta.description,
        excerpt=make_excerpt(prose, config.excerpt_length),
        reading_time=reading_time(prose, config.words_per_minute),
        body=body,
        source_path=path,
    )


def extract_post(path: pathlib.Path, config: SiteConfig) -> Post:
    post = parse_post(path.read_text(encoding="utf-8"), path, config)
    logger.debug("= %s -> %s (%d min)", path.name, post.slug, post.reading_time)
    return post
