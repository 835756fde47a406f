"""Full site rebuild.

- discover posts under ``content_dir``
- extract and validate metadata (fail fast)
- generate image variants (failures become warnings)
- compile every page (fail fast)
- write everything into a staging dir, then swap it in for ``output_dir``

Nothing is incremental: each run regenerates the whole output. Only the image
variant cache survives between runs.
"""

from __future__ import annotations

import json
import logging
import pathlib
import shutil
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, List, Mapping, Optional, Tuple

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .compiler import CompiledPage, compile_page
from .components import ComponentRegistry, default_registry
from .config import (
    BLOG_DIR_NAME,
    CONTENT_SUFFIXES,
    PAGE_ARTIFACT_NAME,
    RASTER_SUFFIXES,
    TAGS_DIR_NAME,
    TEMPLATE_DIR,
    SiteConfig,
)
from .errors import (
    AssetProcessingError,
    ConfigError,
    ContentFormatError,
    SiteBuildError,
)
from .images import (
    ImageAsset,
    ImagePipeline,
    find_image_references,
    is_relative_local,
    resolve_image,
)
from .index import PostSummary, build_post_index, dumps_post_index, sort_posts
from .metadata import Post, extract_post
from .report import BuildReport
from .utils import slugify

logger = logging.getLogger(__name__)

ImagesByPost = Dict[str, Dict[str, ImageAsset]]


def discover_content(content_dir: pathlib.Path) -> List[pathlib.Path]:
    if not content_dir.is_dir():
        raise ConfigError(f"content directory not found: {content_dir}")
    return sorted(
        p
        for p in content_dir.rglob("*")
        if p.is_file()
        and p.suffix.lower() in CONTENT_SUFFIXES
        and not any(part.startswith(".") for part in p.relative_to(content_dir).parts)
    )


def extract_posts(sources: List[pathlib.Path], config: SiteConfig) -> List[Post]:
    posts: List[Post] = []
    seen: Dict[str, pathlib.Path] = {}
    for path in sources:
        post = extract_post(path, config)
        if post.slug in seen:
            raise ContentFormatError(
                f"{path}: slug '{post.slug}' is already used by {seen[post.slug]}"
            )
        seen[post.slug] = path
        posts.append(post)
    return posts


def process_images(
    posts: List[Post], config: SiteConfig, report: BuildReport
) -> ImagesByPost:
    """Generate variants for every image the posts reference.

    Returns, per post slug, the processed assets keyed by the URL as written.
    Non-raster files (SVG and the like) are left for the compiler to copy.
    """
    uses: Dict[pathlib.Path, List[Tuple[str, str]]] = {}
    for post in posts:
        for url in find_image_references(post.body):
            if not is_relative_local(url):
                continue
            src = resolve_image(post.base_dir, url)
            if src is None:
                report.warn("broken-reference", post.source_path, f"image not found: {url}")
                continue
            if src.suffix.lower() not in RASTER_SUFFIXES:
                continue
            uses.setdefault(src, []).append((post.slug, url))

    pipeline = ImagePipeline.from_config(config)
    assets: Dict[pathlib.Path, ImageAsset] = {}
    with ThreadPoolExecutor(max_workers=config.max_workers) as pool:
        futures = {pool.submit(pipeline.process, src): src for src in uses}
        for fut in as_completed(futures):
            src = futures[fut]
            try:
                asset = fut.result()
            except AssetProcessingError as e:
                report.warn("asset", src, e.reason)
                continue
            report.count_image(asset.written, asset.reused)
            assets[src] = asset
            logger.debug("✓ image %s (%d variants)", src.name, len(asset.variants))

    images: ImagesByPost = {}
    for src, refs in uses.items():
        if src not in assets:
            continue
        for slug, url in refs:
            images.setdefault(slug, {})[url] = assets[src]
    return images


def _compile_one(post, registry, images, config) -> CompiledPage:
    try:
        return compile_page(post, registry, images, config)
    except SiteBuildError as e:
        e.source = post.source_path
        raise


def compile_all(
    posts: List[Post],
    registry: ComponentRegistry,
    images: ImagesByPost,
    config: SiteConfig,
) -> Dict[str, CompiledPage]:
    pages: Dict[str, CompiledPage] = {}
    with ThreadPoolExecutor(max_workers=config.max_workers) as pool:
        futures = [
            pool.submit(_compile_one, p, registry, images.get(p.slug, {}), config)
            for p in posts
        ]
        try:
            for fut in as_completed(futures):
                page = fut.result()
                pages[page.slug] = page
                logger.info("✓ compiled %s", page.slug)
        except BaseException:
            for f in futures:
                f.cancel()
            raise
    return pages


# ---------- Output

def _jinja_env() -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=select_autoescape(["html", "j2"]),
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["slug"] = slugify
    return env


def _post_link(post: Optional[Post], config: SiteConfig) -> Optional[Dict[str, str]]:
    if post is None:
        return None
    return {"title": post.title, "url": config.url_for(f"{BLOG_DIR_NAME}/{post.slug}/")}


def _write(path: pathlib.Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def _copy_dependencies(staging: pathlib.Path, page: CompiledPage) -> None:
    for dep in page.dependencies:
        dest = staging / dep.output_rel
        if dest.exists():
            continue
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(dep.source, dest)


def _verify_dependencies(staging: pathlib.Path, pages: Mapping[str, CompiledPage]) -> None:
    for page in pages.values():
        for dep in page.dependencies:
            if not (staging / dep.output_rel).is_file():
                raise SiteBuildError(
                    f"page '{page.slug}' depends on {dep.output_rel}, which was not written"
                )


def write_site(
    staging: pathlib.Path,
    posts: List[Post],
    pages: Mapping[str, CompiledPage],
    index: List[PostSummary],
    config: SiteConfig,
) -> None:
    staging.mkdir(parents=True)
    if config.static_dir.is_dir():
        shutil.copytree(config.static_dir, staging, dirs_exist_ok=True)

    env = _jinja_env()
    common = {"site": config, "url_for": config.url_for}

    # prev is the older post, next the newer one
    ordered = sort_posts(posts)
    for i, post in enumerate(ordered):
        page = pages[post.slug]
        newer = ordered[i - 1] if i > 0 else None
        older = ordered[i + 1] if i + 1 < len(ordered) else None
        prev_link, next_link = _post_link(older, config), _post_link(newer, config)

        post_dir = staging / BLOG_DIR_NAME / post.slug
        _write(
            post_dir / "index.html",
            env.get_template("post.html.j2").render(
                post=post, page=page, prev=prev_link, next=next_link, **common
            ),
        )
        artifact = page.artifact(post)
        artifact["prev"], artifact["next"] = prev_link, next_link
        _write(
            post_dir / PAGE_ARTIFACT_NAME,
            json.dumps(artifact, indent=2, ensure_ascii=False) + "\n",
        )
        _copy_dependencies(staging, page)

    _write(
        staging / "index.html",
        env.get_template("index.html.j2").render(posts=index, **common),
    )

    by_tag: Dict[str, Tuple[str, List[PostSummary]]] = {}
    for summary in index:
        for tag in summary.tags:
            key = slugify(tag)
            if not key:
                continue
            by_tag.setdefault(key, (tag, []))[1].append(summary)
    for key, (tag, tagged) in sorted(by_tag.items()):
        _write(
            staging / TAGS_DIR_NAME / key / "index.html",
            env.get_template("tag.html.j2").render(tag=tag, posts=tagged, **common),
        )

    _write(staging / config.index_path, dumps_post_index(index))
    _verify_dependencies(staging, pages)


def promote(staging: pathlib.Path, output_dir: pathlib.Path) -> None:
    """Swap the finished staging dir in place of the published output."""
    previous = output_dir.with_name(f".{output_dir.name}.previous")
    if previous.exists():
        shutil.rmtree(previous)
    if output_dir.exists():
        output_dir.rename(previous)
    try:
        staging.rename(output_dir)
    except OSError:
        if previous.exists():
            previous.rename(output_dir)
        raise
    shutil.rmtree(previous, ignore_errors=True)


def build_site(
    config: SiteConfig, registry: Optional[ComponentRegistry] = None
) -> BuildReport:
    """Rebuild the whole site. Raises on any fatal error, leaving the
    previously published output untouched."""
    registry = registry or default_registry()
    report = BuildReport(output_dir=config.output_dir)
    started = time.perf_counter()

    sources = discover_content(config.content_dir)
    logger.info("found %d posts in %s", len(sources), config.content_dir)
    posts = extract_posts(sources, config)

    images = process_images(posts, config, report)
    pages = compile_all(posts, registry, images, config)
    index = build_post_index(posts)

    output_dir = config.output_dir
    output_dir.parent.mkdir(parents=True, exist_ok=True)
    staging = output_dir.with_name(f".{output_dir.name}.staging")
    if staging.exists():
        shutil.rmtree(staging)
    try:
        write_site(staging, posts, pages, index, config)
        promote(staging, output_dir)
    except BaseException:
        shutil.rmtree(staging, ignore_errors=True)
        raise

    report.pages = len(pages)
    report.warnings.sort(key=lambda w: (w.kind, str(w.path), w.message))
    report.elapsed = time.perf_counter() - started
    logger.info("✓ built %d pages into %s", report.pages, output_dir)
    return report
