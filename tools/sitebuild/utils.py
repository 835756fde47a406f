from __future__ import annotations

import hashlib
import os
import pathlib
import re
import tempfile
from datetime import date, datetime
from typing import Any, Dict, Optional, Tuple

import yaml

from .config import SLUG_RE


class FrontmatterSyntaxError(ValueError):
    pass


def slugify(s: str) -> str:
    return re.sub(r"-{2,}", "-", SLUG_RE.sub("-", s.lower()).strip("-"))


def bytes_hash(data: bytes, length: int = 8) -> str:
    return hashlib.sha256(data).hexdigest()[:length]


def hashed_name(src: pathlib.Path, data: bytes) -> str:
    """``<slug(stem)>.<hash8><suffix>``"""
    safe_stem = slugify(src.stem) or "asset"
    return f"{safe_stem}.{bytes_hash(data)}{src.suffix.lower()}"


def _norm_text(s: str) -> str:
    return s.replace('\r\n', '\n').replace('\r', '\n').lstrip('\ufeff')


def _coerce_date_like(v):
    if isinstance(v, datetime):
        return v.date()
    if isinstance(v, date):
        return v
    if isinstance(v, str):
        s = v.strip().strip('"').strip("'")
        try:
            return date.fromisoformat(s)
        except ValueError:
            return v
    return v


def parse_frontmatter(text: str) -> Tuple[Optional[Dict[str, Any]], str]:
    """Split ``---`` delimited YAML frontmatter from the body.

    Returns ``(None, text)`` when the text has no frontmatter block. Raises
    FrontmatterSyntaxError for an unterminated block or invalid YAML.
    """
    text = _norm_text(text)
    if not text.startswith("---\n"):
        return None, text

    lines = text.splitlines(keepends=True)
    for i in range(1, len(lines)):
        if lines[i].strip() == "---":
            fm_text = "".join(lines[1:i])
            body = "".join(lines[i + 1 :])
            try:
                fm = yaml.safe_load(fm_text)
            except (yaml.YAMLError, ValueError) as e:
                raise FrontmatterSyntaxError(f"invalid YAML: {e}") from e
            return ({} if fm is None else fm), body
    raise FrontmatterSyntaxError("frontmatter block is not terminated by '---'")


def atomic_write_bytes(path: pathlib.Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.replace(tmp, path)
    except BaseException:
        pathlib.Path(tmp).unlink(missing_ok=True)
        raise
