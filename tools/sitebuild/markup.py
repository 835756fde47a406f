from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from .config import (
    COMPONENT_TAG,
    EMPHASIS,
    FENCE_OPEN,
    HTML_TAG,
    MD_HEADING,
    MD_IMAGE,
    MD_LINK,
    MDX_IMPORT_EXPORT,
)

_FENCE_TITLE = re.compile(r'\btitle\s*=\s*(["\'])(?P<title>.*?)\1')
_LIST_MARKER = re.compile(r'^\s*(?:[-*+]|\d+[.)])\s+', re.MULTILINE)
_QUOTE_MARKER = re.compile(r'^\s*>\s?', re.MULTILINE)
_RULE = re.compile(r'^\s*(?:-{3,}|\*{3,}|_{3,})\s*$', re.MULTILINE)


@dataclass(frozen=True)
class FencedBlock:
    info: str
    code: str
    source: str  # the block as written, fences included


Segment = Union[str, FencedBlock]


def split_fences(md: str) -> List[Segment]:
    """Split markdown into prose strings and fenced code blocks.

    A fence closes on a line made of the same character, at least as long as
    the opening fence. An unclosed fence runs to the end of the text.
    """
    lines = md.splitlines(keepends=True)
    segments: List[Segment] = []
    prose: List[str] = []
    i = 0
    while i < len(lines):
        m = FENCE_OPEN.match(lines[i].rstrip("\n"))
        if not m:
            prose.append(lines[i])
            i += 1
            continue
        fence = m.group("fence")
        close = re.compile(rf'^{re.escape(fence[0])}{{{len(fence)},}}[ \t]*$')
        j = i + 1
        while j < len(lines) and not close.match(lines[j].rstrip("\n")):
            j += 1
        if prose:
            segments.append("".join(prose))
            prose = []
        code = "".join(lines[i + 1 : j])
        segments.append(
            FencedBlock(
                info=m.group("info").strip(),
                code=code.rstrip("\n"),
                source="".join(lines[i : j + 1]),
            )
        )
        i = j + 1
    if prose:
        segments.append("".join(prose))
    return segments


def strip_fenced_code(md: str) -> str:
    return "".join(s for s in split_fences(md) if isinstance(s, str))


def parse_fence_info(info: str) -> Tuple[str, Optional[str]]:
    """``js``, ``js:file.js`` and ``js title="file.js"`` -> (language, title)."""
    title = None
    m = _FENCE_TITLE.search(info)
    if m:
        title = m.group("title")
        info = (info[: m.start()] + info[m.end():]).strip()
    word = info.split()[0] if info.split() else ""
    language, sep, colon_title = word.partition(":")
    if sep and colon_title and title is None:
        title = colon_title
    return (language.lower() or "text"), title


def strip_mdx_statements(md: str) -> str:
    return "".join(
        line for line in md.splitlines(keepends=True)
        if not MDX_IMPORT_EXPORT.match(line.rstrip("\n"))
    )


def plain_text(md: str, mdx: bool = False) -> str:
    """Readable prose of a post body, paragraphs separated by blank lines.

    ``import``/``export`` lines are ESM statements only in MDX sources.
    """
    text = strip_fenced_code(md)
    if mdx:
        text = strip_mdx_statements(text)
    text = COMPONENT_TAG.sub("", text)
    text = MD_HEADING.sub("", text)
    text = _RULE.sub("", text)
    text = MD_IMAGE.sub("", text)
    text = MD_LINK.sub(lambda m: m.group("text"), text)
    text = HTML_TAG.sub("", text)
    for _ in range(2):
        text = EMPHASIS.sub(r"\2", text)
    text = _QUOTE_MARKER.sub("", text)
    text = _LIST_MARKER.sub("", text)

    paragraphs = []
    for para in re.split(r'\n\s*\n', text):
        para = " ".join(para.split())
        if para:
            paragraphs.append(para)
    return "\n\n".join(paragraphs)
