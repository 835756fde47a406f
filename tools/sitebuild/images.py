from __future__ import annotations

import io
import logging
import pathlib
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from PIL import Image, ImageOps, UnidentifiedImageError

from .config import (
    ASSET_SOURCE_DIR_CANDIDATES,
    IMAGE_FORMATS,
    IMAGES_DIR_NAME,
    MD_IMAGE,
    SiteConfig,
)
from .errors import AssetProcessingError
from .markup import strip_fenced_code
from .utils import atomic_write_bytes, bytes_hash, slugify

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImageVariant:
    width: int
    height: int
    format: str
    filename: str
    cache_path: pathlib.Path

    @property
    def output_rel(self) -> str:
        return f"{IMAGES_DIR_NAME}/{self.filename}"

    @property
    def mime(self) -> str:
        return IMAGE_FORMATS[self.format][2]


@dataclass
class ImageAsset:
    source: pathlib.Path
    width: int
    height: int
    variants: List[ImageVariant] = field(default_factory=list)
    written: int = 0
    reused: int = 0

    def variants_for(self, fmt: str) -> List[ImageVariant]:
        return sorted(
            (v for v in self.variants if v.format == fmt), key=lambda v: v.width
        )


def is_relative_local(url: str) -> bool:
    if not url:
        return False
    if re.match(r'^[a-zA-Z][a-zA-Z0-9+.-]*:', url):
        return False
    if url.startswith(("#", "/", "//")):
        return False
    return True


def find_image_references(body: str) -> List[str]:
    """Markdown image URLs outside fenced code, in order of appearance."""
    urls = [m.group("url") for m in MD_IMAGE.finditer(strip_fenced_code(body))]
    return list(dict.fromkeys(urls))


def resolve_image(base_dir: pathlib.Path, url: str) -> Optional[pathlib.Path]:
    cand = (base_dir / url).resolve()
    if cand.is_file():
        return cand
    for adir in ASSET_SOURCE_DIR_CANDIDATES:
        cand2 = (base_dir / adir / url).resolve()
        if cand2.is_file():
            return cand2
    return None


def target_widths(source_width: int, widths: Sequence[int]) -> List[int]:
    """Configured widths that do not upscale; the source width if none fit."""
    fitting = [w for w in widths if w <= source_width]
    return fitting or [source_width]


def variant_filename(source: pathlib.Path, digest: str, width: int, fmt: str) -> str:
    stem = slugify(source.stem) or "image"
    return f"{stem}.{digest}-{width}{IMAGE_FORMATS[fmt][1]}"


class ImagePipeline:
    """Generates resized variants of source images into a persistent cache.

    Variant names embed a hash of the source bytes, so a variant that already
    exists in the cache is current and is not regenerated.
    """

    def __init__(
        self,
        cache_dir: pathlib.Path,
        widths: Sequence[int],
        formats: Sequence[str],
        quality: int = 80,
    ):
        self.cache_dir = pathlib.Path(cache_dir) / IMAGES_DIR_NAME
        self.widths = sorted(set(widths))
        self.formats = list(formats)
        self.quality = quality

    @classmethod
    def from_config(cls, config: SiteConfig) -> "ImagePipeline":
        return cls(
            config.cache_dir,
            config.image_widths,
            config.image_formats,
            config.image_quality,
        )

    def process(self, source: pathlib.Path) -> ImageAsset:
        try:
            data = source.read_bytes()
        except OSError as e:
            raise AssetProcessingError(source, f"cannot read image: {e}") from e
        digest = bytes_hash(data)

        try:
            asset, encoded = self._render(source, data, digest)
        except (
            UnidentifiedImageError,
            Image.DecompressionBombError,
            OSError,
            SyntaxError,
            ValueError,
        ) as e:
            # truncated or corrupt image data surfaces as any of these
            raise AssetProcessingError(source, f"cannot decode image: {e}") from e

        for variant in asset.variants:
            blob = encoded.get(variant.filename)
            if blob is None:
                asset.reused += 1
                logger.debug("= %s cached", variant.filename)
                continue
            atomic_write_bytes(variant.cache_path, blob)
            asset.written += 1
            logger.debug("✓ %s", variant.filename)
        return asset

    def _render(self, source: pathlib.Path, data: bytes, digest: str):
        encoded: Dict[str, bytes] = {}
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            img = ImageOps.exif_transpose(img)
            asset = ImageAsset(source=source, width=img.width, height=img.height)
            for width in target_widths(img.width, self.widths):
                height = max(1, round(img.height * width / img.width))
                resized = None
                for fmt in self.formats:
                    name = variant_filename(source, digest, width, fmt)
                    path = self.cache_dir / name
                    if not path.exists():
                        if resized is None:
                            resized = self._resize(img, width, height)
                        encoded[name] = self._encode(resized, fmt)
                    asset.variants.append(ImageVariant(width, height, fmt, name, path))
        return asset, encoded

    def _resize(self, img: Image.Image, width: int, height: int) -> Image.Image:
        if (width, height) == img.size:
            return img.copy()
        return img.resize((width, height), Image.Resampling.LANCZOS)

    def _encode(self, img: Image.Image, fmt: str) -> bytes:
        pil_format = IMAGE_FORMATS[fmt][0]
        if pil_format == "JPEG" and img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
        elif pil_format == "WEBP" and img.mode not in ("RGB", "RGBA"):
            has_alpha = "A" in img.getbands() or "transparency" in img.info
            img = img.convert("RGBA" if has_alpha else "RGB")
        buf = io.BytesIO()
        if pil_format == "PNG":
            img.save(buf, format=pil_format, optimize=True)
        else:
            img.save(buf, format=pil_format, quality=self.quality)
        return buf.getvalue()
