import pytest

from sitebuild.compiler import compile_page, slugify_heading
from sitebuild.components import default_registry
from sitebuild.config import SiteConfig
from sitebuild.errors import (
    ComponentPropsError,
    UnknownComponentError,
    UnknownReferenceError,
)
from sitebuild.images import ImageAsset, ImageVariant
from sitebuild.metadata import parse_post


def _post(tmp_path, body, name="post.md"):
    text = f"---\ntitle: Post\ndate: 2021-01-01\n---\n{body}"
    return parse_post(text, tmp_path / name, SiteConfig())


def _compile(tmp_path, body, **kwargs):
    return compile_page(_post(tmp_path, body), default_registry(), **kwargs)


def test_headings_get_ids_and_toc(tmp_path):
    page = _compile(tmp_path, "## Getting started\n\nText.\n\n### Details\n\n#### Deep\n")

    assert 'id="getting-started"' in page.html
    assert page.toc == [
        {"level": 2, "text": "Getting started", "id": "getting-started"},
        {"level": 3, "text": "Details", "id": "details"},
    ]


def test_slugify_heading():
    assert slugify_heading("  Monte Carlo: Estimating π!  ") == "monte-carlo-estimating"
    assert slugify_heading("???") == "section"


@pytest.mark.parametrize(
    "fence",
    ['```js:hello.js', '```js title="hello.js"', '~~~js title=\'hello.js\''],
)
def test_fenced_code_with_title(tmp_path, fence):
    closing = fence[:3]
    page = _compile(tmp_path, f"Intro.\n\n{fence}\nconst a = 1;\n{closing}\n")

    assert '<div class="remark-code-title">hello.js</div>' in page.html
    assert 'class="hljs language-js"' in page.html
    assert "<p><div" not in page.html


def test_code_block_content_is_not_parsed_as_markdown(tmp_path):
    page = _compile(tmp_path, "```text\n<Unknown />\n# not a heading\n```\n")

    assert "&lt;Unknown /&gt;" in page.html
    assert "<h1" not in page.html
    assert page.toc == []


def test_component_is_resolved(tmp_path):
    page = _compile(tmp_path, "Intro.\n\n<MonteCarloPi samples={100} />\n\nOutro.\n")

    assert 'data-component="MonteCarloPi"' in page.html
    assert "<p><div" not in page.html
    assert "<p>Outro.</p>" in page.html


def test_unknown_component_fails(tmp_path):
    with pytest.raises(UnknownComponentError):
        _compile(tmp_path, "<QuantumWidget size={3} />\n")


def test_invalid_props_fail(tmp_path):
    with pytest.raises(ComponentPropsError):
        _compile(tmp_path, "<MonteCarloPi samples={-5} />\n")


def test_non_self_closing_component_fails(tmp_path):
    with pytest.raises(ComponentPropsError):
        _compile(tmp_path, "<MonteCarloPi>\n</MonteCarloPi>\n")


def test_mdx_imports_are_dropped(tmp_path):
    body = "import Chart from '../components/chart'\n\nHello.\n"
    page = compile_page(_post(tmp_path, body, name="post.mdx"), default_registry())
    assert "import" not in page.html
    assert "<p>Hello.</p>" in page.html


def test_statement_lines_are_prose_in_plain_markdown(tmp_path):
    page = _compile(tmp_path, "export the data first.\n")
    assert "<p>export the data first.</p>" in page.html


@pytest.mark.parametrize(
    "body",
    [
        "Try it: <QuantumWidget size={3} /> now.\n",
        "> <QuantumWidget />\n",
        "- <QuantumWidget />\n",
    ],
)
def test_unknown_component_anywhere_in_prose_fails(tmp_path, body):
    with pytest.raises(UnknownComponentError):
        _compile(tmp_path, body)


def test_known_component_inside_paragraph_fails(tmp_path):
    with pytest.raises(ComponentPropsError):
        _compile(tmp_path, "Try it: <MonteCarloPi samples={10} /> now.\n")


def test_component_names_in_inline_code_are_text(tmp_path):
    page = _compile(tmp_path, "Write `<MonteCarloPi />` on its own line.\n")
    assert "&lt;MonteCarloPi /&gt;" in page.html


def test_trailing_spaces_keep_hard_line_breaks(tmp_path):
    page = _compile(tmp_path, "line one  \nline two\n")
    assert "line one<br" in page.html


def test_local_files_are_published_under_hashed_names(tmp_path):
    (tmp_path / "diagram.svg").write_text(
        '<svg xmlns="http://www.w3.org/2000/svg"/>', encoding="utf-8"
    )
    (tmp_path / "paper.pdf").write_bytes(b"%PDF-1.4\n")

    page = _compile(tmp_path, "![d](diagram.svg)\n\nRead the [paper](paper.pdf#page=2).\n")

    rels = [d.output_rel for d in page.dependencies]
    assert len(rels) == 2
    svg = next(r for r in rels if r.endswith(".svg"))
    pdf = next(r for r in rels if r.endswith(".pdf"))
    assert svg.startswith("blog/post/assets/diagram.")
    assert pdf.startswith("blog/post/assets/paper.")
    assert f'src="/{svg}"' in page.html
    assert f'href="/{pdf}#page=2"' in page.html


def test_raw_html_references_are_published(tmp_path):
    (tmp_path / "diagram.svg").write_text("<svg/>", encoding="utf-8")
    (tmp_path / "other.md").write_text("# Other\n", encoding="utf-8")

    page = _compile(
        tmp_path,
        '<figure><img src="diagram.svg" alt="d"></figure>\n\n'
        '[next post](../other/) and [a post file](other.md)\n',
    )

    [dep] = page.dependencies
    assert dep.output_rel.startswith("blog/post/assets/diagram.")
    assert f'src="/{dep.output_rel}"' in page.html
    assert 'href="../other/"' in page.html
    assert 'href="other.md"' in page.html


def test_data_file_becomes_dependency(tmp_path):
    (tmp_path / "series.csv").write_text("t,v\n0,1\n", encoding="utf-8")

    page = _compile(tmp_path, '<DataChart src="series.csv" title="Paths" />\n')

    assert len(page.dependencies) == 1
    dep = page.dependencies[0]
    assert dep.source == (tmp_path / "series.csv").resolve()
    assert dep.output_rel.startswith("blog/post/data/series.")
    assert dep.output_rel.endswith(".csv")
    assert f"/{dep.output_rel}" in page.html


def test_missing_data_file_is_unknown_reference(tmp_path):
    with pytest.raises(UnknownReferenceError) as exc:
        _compile(tmp_path, '<DataChart src="nope.csv" />\n')
    assert not isinstance(exc.value, UnknownComponentError)


def _asset(tmp_path):
    variants = [
        ImageVariant(w, w // 2, fmt, f"x.abc12345-{w}.{ext}", tmp_path / f"x-{w}.{ext}")
        for w in (40, 80)
        for fmt, ext in (("webp", "webp"), ("jpeg", "jpg"))
    ]
    return ImageAsset(source=tmp_path / "x.png", width=120, height=60, variants=variants)


def test_processed_image_becomes_picture(tmp_path):
    page = _compile(
        tmp_path, "![A chart](img/x.png)\n", images={"img/x.png": _asset(tmp_path)}
    )

    assert "<picture>" in page.html
    assert 'type="image/webp"' in page.html
    assert 'srcset="/images/x.abc12345-40.webp 40w, /images/x.abc12345-80.webp 80w"' in page.html
    assert 'src="/images/x.abc12345-80.jpg"' in page.html
    assert 'alt="A chart"' in page.html
    assert 'width="80"' in page.html and 'height="40"' in page.html
    assert sorted(d.output_rel for d in page.dependencies) == [
        "images/x.abc12345-40.jpg",
        "images/x.abc12345-40.webp",
        "images/x.abc12345-80.jpg",
        "images/x.abc12345-80.webp",
    ]


def test_image_urls_respect_base_path(tmp_path):
    config = SiteConfig(base_url="https://example.com/notes/")
    page = compile_page(
        _post(tmp_path, "![x](img/x.png)\n"),
        default_registry(),
        images={"img/x.png": _asset(tmp_path)},
        config=config,
    )
    assert 'src="/notes/images/x.abc12345-80.jpg"' in page.html


def test_unprocessed_image_is_left_alone(tmp_path):
    page = _compile(tmp_path, "![x](missing.png)\n")
    assert 'src="missing.png"' in page.html
    assert page.dependencies == []


def test_compilation_is_deterministic(tmp_path):
    body = "# T\n\n```python\nprint(1)\n```\n\n<GbmQuantileBands paths={50} />\n"
    assert _compile(tmp_path, body).html == _compile(tmp_path, body).html


def test_artifact_shape(tmp_path):
    post = _post(tmp_path, "## A\n")
    page = compile_page(post, default_registry())
    artifact = page.artifact(post)
    assert artifact["slug"] == "post"
    assert artifact["date"] == "2021-01-01"
    assert artifact["toc"] == [{"level": 2, "text": "A", "id": "a"}]
    assert artifact["dependencies"] == []
