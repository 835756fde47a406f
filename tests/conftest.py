import datetime
import pathlib

import pytest
import yaml
from PIL import Image

from sitebuild.config import SiteConfig


def write_post(directory: pathlib.Path, name: str, frontmatter=None, body="Some text.\n"):
    """Write a content file; ``frontmatter=None`` writes no header at all."""
    path = directory / name
    path.parent.mkdir(parents=True, exist_ok=True)
    header = ""
    if frontmatter is not None:
        header = "---\n" + yaml.safe_dump(frontmatter, sort_keys=False) + "---\n"
    path.write_text(header + body, encoding="utf-8")
    return path


def make_image(path: pathlib.Path, size=(120, 60), color="red", fmt="PNG"):
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color).save(path, format=fmt)
    return path


def fm(title="A post", date=datetime.date(2021, 1, 1), **extra):
    data = {"title": title, "date": date}
    data.update(extra)
    return data


@pytest.fixture
def config(tmp_path) -> SiteConfig:
    content = tmp_path / "content" / "posts"
    content.mkdir(parents=True)
    return SiteConfig(
        title="Test blog",
        base_url="https://example.com",
        content_dir=content,
        static_dir=tmp_path / "public",
        output_dir=tmp_path / "out",
        cache_dir=tmp_path / ".cache",
        image_widths=[40, 80],
        image_formats=["webp", "jpeg"],
        workers=2,
    )


@pytest.fixture
def content_dir(config) -> pathlib.Path:
    return config.content_dir
