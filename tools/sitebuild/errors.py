from __future__ import annotations

import pathlib
from typing import Iterable


class SiteBuildError(Exception):
    """Base class for every error the build reports to the author."""

    # content file being processed when the error was raised, if known
    source: pathlib.Path | None = None

    def describe(self) -> str:
        msg = str(self)
        if self.source is not None and str(self.source) not in msg:
            return f"{self.source}: {msg}"
        return msg


class ConfigError(SiteBuildError):
    pass


class ContentFormatError(SiteBuildError):
    """A post is malformed. Fatal."""


class MalformedFrontmatterError(ContentFormatError):
    def __init__(self, path: pathlib.Path | str, problems: Iterable[str]):
        self.path = pathlib.Path(path)
        self.problems = list(problems)
        super().__init__(f"{self.path}: " + "; ".join(self.problems))


class ComponentPropsError(ContentFormatError):
    def __init__(self, component: str, problems: Iterable[str]):
        self.component = component
        self.problems = list(problems)
        super().__init__(
            f"<{component}>: " + "; ".join(self.problems)
        )


class UnknownReferenceError(SiteBuildError):
    """A post references a component or asset that does not exist. Fatal."""


class UnknownComponentError(UnknownReferenceError):
    def __init__(self, name: str, known: Iterable[str] = ()):
        self.name = name
        known = sorted(known)
        msg = f"unknown component <{name}>"
        if known:
            msg += f" (known: {', '.join(known)})"
        super().__init__(msg)


class AssetProcessingError(SiteBuildError):
    """An image could not be decoded or resized. Recoverable."""

    def __init__(self, path: pathlib.Path | str, reason: str):
        self.path = pathlib.Path(path)
        self.reason = reason
        super().__init__(f"{self.path}: {reason}")
