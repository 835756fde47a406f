import pytest

from sitebuild.errors import ContentFormatError
from sitebuild.report import BuildReport
from sitebuild.serve import Rebuilder, _wants_page
from sitebuild.site import build_site
from tests.conftest import fm, write_post


class FakeBuild:
    def __init__(self, fail=False):
        self.calls = 0
        self.fail = fail

    def __call__(self, config, registry=None):
        self.calls += 1
        if self.fail:
            raise ContentFormatError("broken post")
        return BuildReport(output_dir=config.output_dir, pages=1)


def test_rebuilds_only_when_sources_change(config, content_dir):
    post = write_post(content_dir, "a.md", fm(), body="one\n")
    build = FakeBuild()
    rebuilder = Rebuilder(config, build=build)

    assert rebuilder.rebuild_if_changed() is True
    assert rebuilder.rebuild_if_changed() is False
    assert build.calls == 1

    post.write_text(post.read_text(encoding="utf-8") + "more words\n", encoding="utf-8")
    assert rebuilder.rebuild_if_changed() is True
    assert build.calls == 2

    write_post(content_dir, "b.md", fm())
    assert rebuilder.rebuild_if_changed() is True
    assert build.calls == 3


def test_failed_rebuild_is_reported_not_raised(config, content_dir):
    write_post(content_dir, "a.md", fm())
    rebuilder = Rebuilder(config, build=FakeBuild(fail=True))

    assert rebuilder.rebuild_if_changed() is False
    assert isinstance(rebuilder.last_error, ContentFormatError)
    assert rebuilder.last_report is None


def test_failed_rebuild_keeps_previous_output(config, content_dir):
    write_post(content_dir, "a.md", fm(title="Good"))
    rebuilder = Rebuilder(config)
    assert rebuilder.rebuild_if_changed() is True
    published = (config.output_dir / "blog" / "a" / "index.html").read_text(encoding="utf-8")

    write_post(content_dir, "b.md", {"title": "no date"})
    assert rebuilder.rebuild_if_changed() is False

    assert rebuilder.last_error is not None
    assert (config.output_dir / "blog" / "a" / "index.html").read_text(
        encoding="utf-8"
    ) == published
    assert not (config.output_dir / "blog" / "b").exists()


def test_config_change_is_picked_up(config, content_dir, tmp_path):
    config_path = tmp_path / "site.yml"
    config_path.write_text("title: One\n", encoding="utf-8")
    write_post(content_dir, "a.md", fm())
    seen = []

    def build(cfg, registry=None):
        seen.append(cfg.title)
        return BuildReport(pages=1)

    rebuilder = Rebuilder(config, config_path=config_path, build=build)
    rebuilder.rebuild_if_changed()
    config_path.write_text("title: Second\n", encoding="utf-8")
    rebuilder.rebuild_if_changed()

    assert seen == ["Test blog", "Second"]
    assert rebuilder.config.output_dir == config.output_dir


@pytest.mark.parametrize(
    "path, expected",
    [
        ("/", True),
        ("/blog/post/", True),
        ("/index.html?x=1", True),
        ("/posts.json", True),
        ("/images/a.webp", False),
        ("/style.css", False),
    ],
)
def test_wants_page(path, expected):
    assert _wants_page(path) is expected


def test_rebuilder_works_with_real_build(config, content_dir):
    write_post(content_dir, "a.md", fm())
    rebuilder = Rebuilder(config, build=build_site)
    assert rebuilder.rebuild_if_changed() is True
    assert rebuilder.last_report.pages == 1
