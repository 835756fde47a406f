#!/usr/bin/env python3
from __future__ import annotations

import os
import pathlib
import re
from typing import List, Literal, Optional
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError

# ---------- Paths

PACKAGE_DIR = pathlib.Path(__file__).resolve().parent
TEMPLATE_DIR = PACKAGE_DIR / "templates"
DEFAULT_CONFIG_NAME = "site.yml"

# ---------- Output layout

BLOG_DIR_NAME = "blog"
TAGS_DIR_NAME = "tags"
IMAGES_DIR_NAME = "images"
DATA_DIR_NAME = "data"
ASSETS_DIR_NAME = "assets"
PAGE_ARTIFACT_NAME = "page.json"
ASSET_SOURCE_DIR_CANDIDATES = ("assets", "images")
CONTENT_SUFFIXES = (".md", ".mdx")
MDX_SUFFIX = ".mdx"
MAX_TOC_DEPTH = 3

# ---------- Image formats

IMAGE_FORMATS = {
    # name: (Pillow format, extension, mime)
    "webp": ("WEBP", ".webp", "image/webp"),
    "jpeg": ("JPEG", ".jpg", "image/jpeg"),
    "png": ("PNG", ".png", "image/png"),
}
# sources the image pipeline resizes; other local files are copied as-is
RASTER_SUFFIXES = (".png", ".jpg", ".jpeg", ".webp", ".gif", ".bmp", ".tif", ".tiff")

# Some shared regexes

MD_IMAGE = re.compile(
    r'!\[(?P<alt>[^\]]*)\]\((?P<url>[^)\s]+)(?:\s+"[^"]*")?\)'
)
MD_LINK = re.compile(r'(?<!!)\[(?P<text>[^\]]*)\]\([^)]*\)')
MD_HEADING = re.compile(r'^(?P<hash>#{1,6})\s+(?P<text>.+?)\s*$',
                        re.MULTILINE)
FENCE_OPEN = re.compile(r'^(?P<fence>`{3,}|~{3,})[ \t]*(?P<info>[^`]*?)[ \t]*$')
HTML_TAG = re.compile(r'</?[A-Za-z][^<>]*>')
HTML_SRC_OR_HREF = re.compile(
    r'(?P<attr>\bsrc\b|\bhref\b)\s*=\s*([\'"])(?P<url>[^\'"]+)\2'
)
INLINE_CODE = re.compile(r'(`+)(.+?)\1', re.DOTALL)
MDX_IMPORT_EXPORT = re.compile(
    r'^(?:import\s+.+?\s+from\s+([\'"])[^\'"]+\1|export\s+.+?);?[ \t]*$'
)
COMPONENT_PROP = (
    r'[A-Za-z_][\w-]*'
    r'(?:\s*=\s*(?:"[^"]*"|\'[^\']*\'|\{[^{}]*(?:\{[^{}]*\}[^{}]*)*\}))?'
)
COMPONENT_TAG = re.compile(
    r'^[ \t]*<(?P<name>[A-Z][A-Za-z0-9]*)'
    r'(?P<props>(?:\s+' + COMPONENT_PROP + r')*)'
    r'\s*/>[ \t]*$',
    re.MULTILINE,
)
COMPONENT_PROP_ITEM = re.compile(
    r'(?P<key>[A-Za-z_][\w-]*)'
    r'(?:\s*=\s*(?:"(?P<dq>[^"]*)"|\'(?P<sq>[^\']*)\''
    r'|\{(?P<expr>[^{}]*(?:\{[^{}]*\}[^{}]*)*)\}))?'
)
COMPONENT_OPEN = re.compile(r'<(?P<name>[A-Z][A-Za-z0-9]*)\b')
EMPHASIS = re.compile(r'(\*\*|__|\*|_|~~|`)(?=\S)(.+?)(?<=\S)\1')
SLUG_RE = re.compile(r"[^a-z0-9-]+")


# ---------- Site configuration

class SiteConfig(BaseModel):
    """Settings for one site, usually read from ``site.yml``."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    title: str = "Blog"
    author: str = ""
    base_url: str = "http://localhost:8000"
    content_dir: pathlib.Path = pathlib.Path("content/posts")
    static_dir: pathlib.Path = pathlib.Path("public")
    output_dir: pathlib.Path = pathlib.Path("out")
    cache_dir: pathlib.Path = pathlib.Path(".cache/sitebuild")
    index_path: str = "posts.json"
    image_widths: List[int] = Field(default_factory=lambda: [480, 960, 1440])
    image_formats: List[Literal["webp", "jpeg", "png"]] = Field(
        default_factory=lambda: ["webp", "jpeg"]
    )
    image_quality: int = Field(default=80, ge=1, le=100)
    excerpt_length: int = Field(default=200, ge=20)
    words_per_minute: int = Field(default=200, ge=1)
    workers: Optional[int] = Field(default=None, ge=1)

    @field_validator("image_widths")
    @classmethod
    def _check_widths(cls, v: List[int]) -> List[int]:
        if not v:
            raise ValueError("at least one width is required")
        if any(w <= 0 for w in v):
            raise ValueError("widths must be positive")
        return sorted(set(v))

    @field_validator("image_formats")
    @classmethod
    def _check_formats(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("at least one format is required")
        return list(dict.fromkeys(v))

    @field_validator("index_path")
    @classmethod
    def _check_index_path(cls, v: str) -> str:
        v = v.strip().lstrip("/")
        if not v or ".." in pathlib.PurePosixPath(v).parts:
            raise ValueError("index_path must be a relative path inside the output")
        return v

    @property
    def base_path(self) -> str:
        """URL path prefix of the deployed site, without trailing slash."""
        return urlparse(self.base_url).path.rstrip("/")

    @property
    def max_workers(self) -> int:
        return self.workers or os.cpu_count() or 1

    def url_for(self, rel: str) -> str:
        return f"{self.base_path}/{rel.lstrip('/')}"

    def resolved(self, root: pathlib.Path) -> "SiteConfig":
        """Return a copy with every relative directory anchored at ``root``."""
        updates = {}
        for key in ("content_dir", "static_dir", "output_dir", "cache_dir"):
            p = getattr(self, key)
            if not p.is_absolute():
                updates[key] = (root / p).resolve()
        return self.model_copy(update=updates)


def read_yaml(path: pathlib.Path):
    if path.exists():
        return yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    return {}


def load_config(
    path: pathlib.Path | None = None, **overrides
) -> SiteConfig:
    """Load ``site.yml`` (or defaults when it is absent) and apply overrides.

    Overrides with a ``None`` value are ignored so CLI options can be passed
    through unconditionally.
    """
    path = pathlib.Path(path) if path else pathlib.Path(DEFAULT_CONFIG_NAME)
    try:
        data = read_yaml(path)
    except yaml.YAMLError as e:
        raise ConfigError(f"{path}: invalid YAML: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping at the top level")

    data.update({k: v for k, v in overrides.items() if v is not None})
    try:
        config = SiteConfig.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigError(f"{path}: {problems}") from e

    root = path.resolve().parent
    return config.resolved(root)
