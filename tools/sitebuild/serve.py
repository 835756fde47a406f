from __future__ import annotations

import logging
import pathlib
import threading
from functools import partial
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from typing import Callable, Optional, Tuple

from .components import ComponentRegistry
from .config import SiteConfig, load_config
from .errors import SiteBuildError
from .report import BuildReport
from .site import build_site

logger = logging.getLogger(__name__)

Fingerprint = Tuple[Tuple[str, int, int], ...]


class Rebuilder:
    """Rebuild the site when its sources changed since the last build.

    One build runs at a time. A failed rebuild keeps the previous output.
    """

    def __init__(
        self,
        config: SiteConfig,
        config_path: Optional[pathlib.Path] = None,
        registry: Optional[ComponentRegistry] = None,
        build: Callable[..., BuildReport] = build_site,
    ):
        self.config = config
        self.config_path = config_path
        self.registry = registry
        self._build = build
        self._lock = threading.Lock()
        self._fingerprint: Optional[Fingerprint] = None
        self.last_report: Optional[BuildReport] = None
        self.last_error: Optional[Exception] = None

    def fingerprint(self) -> Fingerprint:
        entries = []
        for root in (self.config.content_dir, self.config.static_dir):
            if root.is_dir():
                for p in sorted(root.rglob("*")):
                    if p.is_file():
                        st = p.stat()
                        entries.append((str(p), st.st_mtime_ns, st.st_size))
        if self.config_path is not None and self.config_path.exists():
            st = self.config_path.stat()
            entries.append((str(self.config_path), st.st_mtime_ns, st.st_size))
        return tuple(entries)

    def rebuild_if_changed(self) -> bool:
        with self._lock:
            fp = self.fingerprint()
            if fp == self._fingerprint:
                return False
            config_changed = self._fingerprint is not None and self.config_path is not None
            self._fingerprint = fp
            try:
                if config_changed and self.config_path.exists():
                    self.config = load_config(
                        self.config_path,
                        output_dir=self.config.output_dir,
                        base_url=self.config.base_url,
                    )
                self.last_report = self._build(self.config, self.registry)
            except (SiteBuildError, OSError) as e:
                self.last_error = e
                detail = e.describe() if isinstance(e, SiteBuildError) else str(e)
                logger.error("✗ rebuild failed, serving previous output: %s", detail)
                return False
            self.last_error = None
            logger.info(
                "✓ rebuilt %d pages in %.2fs (%d warnings)",
                self.last_report.pages,
                self.last_report.elapsed,
                len(self.last_report.warnings),
            )
            return True


def _wants_page(path: str) -> bool:
    path = path.split("?", 1)[0]
    return path.endswith(("/", ".html", ".json"))


class DevRequestHandler(SimpleHTTPRequestHandler):
    rebuilder: Rebuilder

    def do_GET(self):
        if _wants_page(self.path):
            self.rebuilder.rebuild_if_changed()
        super().do_GET()

    def do_HEAD(self):
        if _wants_page(self.path):
            self.rebuilder.rebuild_if_changed()
        super().do_HEAD()

    def log_message(self, format, *args):
        logger.debug("%s %s", self.address_string(), format % args)


def make_server(rebuilder: Rebuilder, host: str, port: int) -> ThreadingHTTPServer:
    handler = type("Handler", (DevRequestHandler,), {"rebuilder": rebuilder})
    return ThreadingHTTPServer(
        (host, port),
        partial(handler, directory=str(rebuilder.config.output_dir)),
    )


def serve(
    config: SiteConfig,
    host: str = "127.0.0.1",
    port: int = 8000,
    config_path: Optional[pathlib.Path] = None,
) -> None:
    rebuilder = Rebuilder(config, config_path)
    rebuilder.rebuild_if_changed()
    config.output_dir.mkdir(parents=True, exist_ok=True)

    httpd = make_server(rebuilder, host, port)
    logger.info("serving %s at http://%s:%d/", config.output_dir, host, port)
    try:
        httpd.serve_forever()
    except KeyboardInterrupt:
        logger.info("stopping")
    finally:
        httpd.server_close()
