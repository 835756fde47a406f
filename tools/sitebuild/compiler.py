from __future__ import annotations

import logging
import pathlib
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import unquote
from xml.etree import ElementTree as etree

import markdown
from markdown.extensions import Extension
from markdown.postprocessors import Postprocessor
from markdown.preprocessors import Preprocessor
from markdown.treeprocessors import Treeprocessor

from .components import ComponentRegistry, parse_props
from .config import (
    ASSETS_DIR_NAME,
    BLOG_DIR_NAME,
    COMPONENT_OPEN,
    COMPONENT_TAG,
    CONTENT_SUFFIXES,
    DATA_DIR_NAME,
    HTML_SRC_OR_HREF,
    INLINE_CODE,
    MAX_TOC_DEPTH,
    SiteConfig,
)
from .errors import ComponentPropsError, UnknownReferenceError
from .images import ImageAsset, is_relative_local, resolve_image
from .markup import FencedBlock, parse_fence_info, split_fences, strip_mdx_statements
from .metadata import Post
from .utils import hashed_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PageDependency:
    """A file a page needs in the output, and where it comes from."""

    output_rel: str
    source: pathlib.Path


@dataclass
class CompiledPage:
    slug: str
    html: str
    toc: List[Dict[str, Any]] = field(default_factory=list)
    dependencies: List[PageDependency] = field(default_factory=list)

    def artifact(self, post: Post) -> Dict[str, Any]:
        return {
            "slug": self.slug,
            "title": post.title,
            "date": post.date.isoformat(),
            "tags": list(post.tags),
            "toc": self.toc,
            "dependencies": [d.output_rel for d in self.dependencies],
            "html": self.html,
        }


def slugify_heading(value: str, separator: str = "-") -> str:
    s = value.strip().lower()
    s = re.sub(r"\s+", separator, s)
    s = re.sub(r"[^a-z0-9\-]", "", s)
    s = re.sub(r"-{2,}", "-", s).strip("-")
    return s or "section"


def _flatten_toc(tokens, max_depth: int) -> List[Dict[str, Any]]:
    items: List[Dict[str, Any]] = []
    for t in tokens:
        if t["level"] <= max_depth:
            items.append({"level": t["level"], "text": t["name"], "id": t["id"]})
        items.extend(_flatten_toc(t.get("children", []), max_depth))
    return items


class _PageState:
    """Mutable state of one compilation, shared by the processors."""

    def __init__(self, post: Post, config: Optional[SiteConfig]):
        self.post = post
        self.config = config
        self.dependencies: Dict[str, PageDependency] = {}

    def url_for(self, rel: str) -> str:
        if self.config is None:
            return f"/{rel}"
        return self.config.url_for(rel)

    def add_dependency(self, rel: str, source: pathlib.Path) -> str:
        self.dependencies.setdefault(rel, PageDependency(rel, source))
        return self.url_for(rel)

    def copy_local(self, url: str) -> Optional[str]:
        """Publish the local file ``url`` points at; its new URL, or None.

        Files land in ``blog/<slug>/assets/<slug(stem)>.<hash8><ext>``.
        Links to other posts and to missing files are left alone.
        """
        if not is_relative_local(url):
            return None
        path = re.split(r"[?#]", url, maxsplit=1)[0]
        tail = url[len(path):]
        path = unquote(path)
        if not path or pathlib.PurePosixPath(path).suffix.lower() in CONTENT_SUFFIXES:
            return None
        src = resolve_image(self.post.base_dir, path)
        if src is None:
            return None
        rel = "/".join(
            (BLOG_DIR_NAME, self.post.slug, ASSETS_DIR_NAME,
             hashed_name(src, src.read_bytes()))
        )
        return self.add_dependency(rel, src) + tail


class CodeFencePreprocessor(Preprocessor):
    """Fenced code -> stashed, highlighted ``CodeBlock`` markup."""

    def __init__(self, md, registry: ComponentRegistry):
        super().__init__(md)
        self.registry = registry

    def run(self, lines: List[str]) -> List[str]:
        out: List[str] = []
        for seg in split_fences("\n".join(lines) + "\n"):
            if isinstance(seg, FencedBlock):
                language, title = parse_fence_info(seg.info)
                rendered = self.registry.render(
                    "CodeBlock",
                    {"language": language, "code": seg.code, "title": title},
                )
                out.append(f"\n\n{self.md.htmlStash.store(rendered)}\n\n")
            else:
                out.append(seg)
        return "".join(out).split("\n")


class ComponentPreprocessor(Preprocessor):
    """Resolve ``<Component ... />`` lines against the registry."""

    def __init__(self, md, registry: ComponentRegistry, state: _PageState):
        super().__init__(md)
        self.registry = registry
        self.state = state

    def run(self, lines: List[str]) -> List[str]:
        text = "\n".join(lines)
        if self.state.post.is_mdx:
            text = strip_mdx_statements(text)

        def _repl(m):
            name = m.group("name")
            spec = self.registry.get(name)
            props = self.registry.validate(name, parse_props(name, m.group("props")))
            if spec.asset_props:
                props = self._resolve_assets(name, spec.asset_props, props)
            return f"\n\n{self.md.htmlStash.store(spec.to_html(props))}\n\n"

        text = COMPONENT_TAG.sub(_repl, text)
        # any other capitalised tag is a component in a position we cannot render
        leftover = COMPONENT_OPEN.search(INLINE_CODE.sub("", text))
        if leftover:
            name = leftover.group("name")
            self.registry.get(name)
            raise ComponentPropsError(
                name, ["components must be written as a self-closing tag on their own line"]
            )
        return text.split("\n")

    def _resolve_assets(self, name, asset_props, props):
        updates = {}
        for key in asset_props:
            url = getattr(props, key)
            if url is None:
                continue
            src = (self.state.post.base_dir / url).resolve()
            if not src.is_file():
                raise UnknownReferenceError(
                    f"{self.state.post.source_path}: <{name} {key}=\"{url}\"> "
                    f"refers to a missing file"
                )
            rel = "/".join(
                (BLOG_DIR_NAME, self.state.post.slug, DATA_DIR_NAME,
                 hashed_name(src, src.read_bytes()))
            )
            updates[key] = self.state.add_dependency(rel, src)
        return props.model_copy(update=updates)


class ResponsiveImageTreeprocessor(Treeprocessor):
    """Swap ``<img>`` of processed images for a ``<picture>`` with srcsets."""

    def __init__(self, md, images: Mapping[str, ImageAsset], state: _PageState):
        super().__init__(md)
        self.images = images
        self.state = state

    def run(self, root: etree.Element) -> None:
        for parent in list(root.iter()):
            for i, child in enumerate(list(parent)):
                if child.tag != "img":
                    continue
                asset = self.images.get(child.get("src", ""))
                if asset is None or not asset.variants:
                    continue
                parent[i] = self._picture(child, asset)

    def _srcset(self, variants) -> str:
        return ", ".join(
            f"{self.state.add_dependency(v.output_rel, v.cache_path)} {v.width}w"
            for v in variants
        )

    def _picture(self, img: etree.Element, asset: ImageAsset) -> etree.Element:
        formats = list(dict.fromkeys(v.format for v in asset.variants))
        # the last format that is not webp is the <img> fallback
        fallback = next((f for f in reversed(formats) if f != "webp"), formats[-1])

        picture = etree.Element("picture")
        for fmt in formats:
            if fmt == fallback:
                continue
            variants = asset.variants_for(fmt)
            source = etree.SubElement(picture, "source")
            source.set("type", variants[0].mime)
            source.set("srcset", self._srcset(variants))

        variants = asset.variants_for(fallback)
        largest = variants[-1]
        new_img = etree.SubElement(picture, "img")
        new_img.set("src", self.state.add_dependency(largest.output_rel, largest.cache_path))
        new_img.set("srcset", self._srcset(variants))
        new_img.set("alt", img.get("alt", ""))
        if img.get("title"):
            new_img.set("title", img.get("title"))
        new_img.set("width", str(largest.width))
        new_img.set("height", str(largest.height))
        new_img.set("loading", "lazy")
        new_img.set("decoding", "async")
        picture.tail = img.tail
        return picture


class LocalAssetTreeprocessor(Treeprocessor):
    """Rewrite ``src``/``href`` of local files to their published copies."""

    def __init__(self, md, state: _PageState):
        super().__init__(md)
        self.state = state

    def run(self, root: etree.Element) -> None:
        for el in root.iter():
            for attr in ("src", "href"):
                url = el.get(attr)
                if url is None:
                    continue
                published = self.state.copy_local(url)
                if published is not None:
                    el.set(attr, published)


class RawHtmlAssetPostprocessor(Postprocessor):
    """Same rewrite for raw HTML written in the post."""

    def __init__(self, md, state: _PageState):
        super().__init__(md)
        self.state = state

    def _repl(self, m):
        published = self.state.copy_local(m.group("url"))
        if published is None:
            return m.group(0)
        quote = m.group(2)
        return f"{m.group('attr')}={quote}{published}{quote}"

    def run(self, text: str) -> str:
        blocks = self.md.htmlStash.rawHtmlBlocks
        for i, block in enumerate(blocks):
            if isinstance(block, str):
                blocks[i] = HTML_SRC_OR_HREF.sub(self._repl, block)
        return text


class SitePageExtension(Extension):
    def __init__(self, registry, images, state, **kwargs):
        self.registry = registry
        self.images = images
        self.state = state
        super().__init__(**kwargs)

    def extendMarkdown(self, md):
        md.preprocessors.register(
            CodeFencePreprocessor(md, self.registry), "site_code_fence", 28
        )
        md.preprocessors.register(
            ComponentPreprocessor(md, self.registry, self.state), "site_component", 24
        )
        md.treeprocessors.register(
            ResponsiveImageTreeprocessor(md, self.images, self.state),
            "site_images",
            15,
        )
        md.treeprocessors.register(
            LocalAssetTreeprocessor(md, self.state), "site_local_assets", 14
        )
        # before raw_html (30) puts the stashed blocks back into the page
        md.postprocessors.register(
            RawHtmlAssetPostprocessor(md, self.state), "site_raw_html_assets", 35
        )


def compile_page(
    post: Post,
    registry: ComponentRegistry,
    images: Optional[Mapping[str, ImageAsset]] = None,
    config: Optional[SiteConfig] = None,
) -> CompiledPage:
    """Render a post body to HTML.

    ``images`` maps image URLs as written in the body to processed assets.
    Raises UnknownReferenceError for unknown components or missing component
    data files, ContentFormatError for invalid component props.
    """
    state = _PageState(post, config)
    md = markdown.Markdown(
        extensions=[
            "tables",
            "toc",
            SitePageExtension(registry, images or {}, state),
        ],
        extension_configs={
            "toc": {"slugify": slugify_heading, "toc_depth": f"1-{MAX_TOC_DEPTH}"},
        },
        output_format="html",
    )
    html_out = md.convert(post.body)
    toc = _flatten_toc(getattr(md, "toc_tokens", []), MAX_TOC_DEPTH)
    deps = sorted(state.dependencies.values(), key=lambda d: d.output_rel)
    logger.debug("✓ compiled %s (%d deps)", post.slug, len(deps))
    return CompiledPage(slug=post.slug, html=html_out, toc=toc, dependencies=deps)
