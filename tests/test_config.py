import pathlib

import pytest
from pydantic import ValidationError

from sitebuild.config import SiteConfig, load_config
from sitebuild.errors import ConfigError


def test_defaults_when_file_is_absent(tmp_path):
    config = load_config(tmp_path / "site.yml")

    assert config.title == "Blog"
    assert config.content_dir == tmp_path / "content" / "posts"
    assert config.output_dir == tmp_path / "out"
    assert config.image_widths == [480, 960, 1440]
    assert config.image_formats == ["webp", "jpeg"]


def test_relative_dirs_resolve_against_config_file(tmp_path):
    site = tmp_path / "site"
    site.mkdir()
    (site / "site.yml").write_text(
        "title: Notes\ncontent_dir: posts\noutput_dir: /srv/www\nimage_widths: [960, 480, 480]\n",
        encoding="utf-8",
    )

    config = load_config(site / "site.yml")

    assert config.title == "Notes"
    assert config.content_dir == site / "posts"
    assert config.output_dir == pathlib.Path("/srv/www")
    assert config.image_widths == [480, 960]


def test_overrides_win_and_none_is_ignored(tmp_path):
    (tmp_path / "site.yml").write_text("base_url: https://a.example\n", encoding="utf-8")

    config = load_config(tmp_path / "site.yml", base_url="https://b.example", output_dir=None)

    assert config.base_url == "https://b.example"
    assert config.output_dir == tmp_path / "out"


@pytest.mark.parametrize(
    "text, fragment",
    [
        ("title: [unclosed\n", "invalid YAML"),
        ("- a\n- b\n", "mapping"),
        ("colour: blue\n", "colour"),
        ("image_quality: 0\n", "image_quality"),
        ("image_formats: [gif]\n", "image_formats"),
        ("image_widths: []\n", "image_widths"),
        ("index_path: ../posts.json\n", "index_path"),
    ],
)
def test_invalid_config(tmp_path, text, fragment):
    path = tmp_path / "site.yml"
    path.write_text(text, encoding="utf-8")

    with pytest.raises(ConfigError) as exc:
        load_config(path)

    assert fragment in str(exc.value)


def test_url_for_uses_base_path():
    assert SiteConfig().url_for("blog/x/") == "/blog/x/"
    config = SiteConfig(base_url="https://example.com/notes/")
    assert config.base_path == "/notes"
    assert config.url_for("/images/a.webp") == "/notes/images/a.webp"


def test_config_is_frozen():
    with pytest.raises(ValidationError):
        SiteConfig().title = "changed"
