#!/usr/bin/env python3
"""
Static build for the blog.

- Posts: content/posts/**/*.md(x) with YAML frontmatter (title, date, tags?, description?)
- Output: out/blog/<slug>/index.html + page.json, out/tags/<tag>/, out/index.html
- Aggregate index: out/posts.json, newest first
- Images: resized webp/jpeg variants cached in .cache/sitebuild/images, copied to out/images/

`build` always regenerates everything and swaps the new output in only when
the whole build succeeded. `serve` rebuilds on request when sources changed.
"""

from __future__ import annotations

import pathlib
from typing import Optional

import typer

from .config import DEFAULT_CONFIG_NAME, SiteConfig, load_config
from .errors import SiteBuildError
from .logs import configure_logging, console
from .report import BuildReport
from .serve import serve as serve_site
from .site import build_site

app = typer.Typer(
    name="sitebuild",
    help="Build the blog into a deployable static site.",
    add_completion=False,
    no_args_is_help=True,
)

ConfigOption = typer.Option(
    pathlib.Path(DEFAULT_CONFIG_NAME), "--config", "-c", help="Path to site.yml."
)
VerboseOption = typer.Option(False, "--verbose", "-v", help="Debug logging.")


def _fail(message: str) -> None:
    console.print(f"✗ {message}", style="bold red", markup=False, highlight=False)
    raise typer.Exit(code=1)


def _load(config_path: pathlib.Path, **overrides) -> SiteConfig:
    try:
        return load_config(config_path, **overrides)
    except SiteBuildError as e:
        _fail(str(e))


def _print_report(report: BuildReport) -> None:
    console.print(report.summary_table())
    for w in report.warnings:
        console.print(f"! {w}", style="yellow", markup=False, highlight=False)


@app.command()
def build(
    config: pathlib.Path = ConfigOption,
    output: Optional[pathlib.Path] = typer.Option(
        None, "--output", "-o", help="Output directory (overrides output_dir)."
    ),
    base_url: Optional[str] = typer.Option(
        None, "--base-url", envvar="SITEBUILD_BASE_URL", help="Deployed site URL."
    ),
    verbose: bool = VerboseOption,
) -> None:
    """Full rebuild: discover, extract, process images, compile, index."""
    configure_logging(verbose)
    cfg = _load(
        config,
        output_dir=output.resolve() if output else None,
        base_url=base_url,
    )
    try:
        report = build_site(cfg)
    except SiteBuildError as e:
        _fail(f"build failed: {e.describe()}")
    except OSError as e:
        _fail(f"build failed: I/O error: {e}")
    _print_report(report)


@app.command()
def serve(
    config: pathlib.Path = ConfigOption,
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port", "-p"),
    verbose: bool = VerboseOption,
) -> None:
    """Serve the output locally, rebuilding when sources change."""
    configure_logging(verbose)
    cfg = _load(config, base_url=f"http://{host}:{port}")
    serve_site(cfg, host=host, port=port, config_path=config)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
