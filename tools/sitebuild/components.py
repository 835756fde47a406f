"""Embeddable components and their props contracts.

Posts embed components as self-closing tags on their own line::

    <GbmQuantileBands drift={0.05} volatility={0.2} paths={500} />

Each registered component declares a pydantic model for its props; unknown
props and values of the wrong type are content errors.
"""

from __future__ import annotations

import html
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Literal, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import TextLexer, get_lexer_by_name
from pygments.util import ClassNotFound

from .config import COMPONENT_PROP_ITEM
from .errors import ComponentPropsError, UnknownComponentError


class Props(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class CodeBlockProps(Props):
    language: str = "text"
    code: str
    title: Optional[str] = None


class CalloutProps(Props):
    kind: Literal["note", "tip", "warning"] = "note"
    text: str


class MonteCarloPiProps(Props):
    samples: int = Field(default=1000, ge=1, le=1_000_000)
    show_points: bool = True


class GbmQuantileBandsProps(Props):
    initial: float = Field(default=100.0, gt=0)
    drift: float = 0.05
    volatility: float = Field(default=0.2, gt=0)
    horizon: int = Field(default=252, ge=1)
    paths: int = Field(default=500, ge=1, le=100_000)
    quantiles: List[float] = Field(
        default_factory=lambda: [0.05, 0.25, 0.5, 0.75, 0.95]
    )

    @field_validator("quantiles")
    @classmethod
    def _check_quantiles(cls, v: List[float]) -> List[float]:
        if not v or any(not 0 < q < 1 for q in v):
            raise ValueError("quantiles must lie strictly between 0 and 1")
        return sorted(set(v))


class DataChartProps(Props):
    src: str
    title: Optional[str] = None
    kind: Literal["line", "bar", "scatter"] = "line"


# ---------- Rendering

def highlight_code(code: str, language: str) -> str:
    try:
        lexer = get_lexer_by_name(language, stripnl=False, ensurenl=False)
    except ClassNotFound:
        lexer = TextLexer(stripnl=False, ensurenl=False)
    return highlight(code, lexer, HtmlFormatter(nowrap=True))


def render_code_block(props: CodeBlockProps) -> str:
    parts = ['<div class="code-block">']
    if props.title:
        parts.append(f'<div class="remark-code-title">{html.escape(props.title)}</div>')
    parts.append(
        f'<pre class="remark-highlight"><code class="hljs language-{html.escape(props.language)}">'
        f"{highlight_code(props.code, props.language)}</code></pre>"
    )
    parts.append("</div>")
    return "".join(parts)


def render_callout(props: CalloutProps) -> str:
    return (
        f'<aside class="callout callout-{props.kind}">'
        f"<p>{html.escape(props.text)}</p></aside>"
    )


def render_placeholder(name: str, props: BaseModel) -> str:
    """Mount point hydrated client side with the serialized props."""
    data = json.dumps(
        props.model_dump(mode="json", exclude_none=True),
        sort_keys=True,
        separators=(",", ":"),
    )
    return (
        f'<div class="mdx-component" data-component="{name}" '
        f'data-props="{html.escape(data, quote=True)}"></div>'
    )


@dataclass(frozen=True)
class ComponentSpec:
    name: str
    props: Type[Props]
    render: Optional[Callable[[Any], str]] = None
    # props that name a file next to the post
    asset_props: Tuple[str, ...] = ()

    def to_html(self, props: Props) -> str:
        if self.render is not None:
            return self.render(props)
        return render_placeholder(self.name, props)


class ComponentRegistry:
    def __init__(self, specs: Iterable[ComponentSpec] = ()):
        self._specs: Dict[str, ComponentSpec] = {}
        for spec in specs:
            self.register(spec)

    def register(self, spec: ComponentSpec) -> None:
        self._specs[spec.name] = spec

    def __contains__(self, name: str) -> bool:
        return name in self._specs

    def names(self) -> List[str]:
        return sorted(self._specs)

    def get(self, name: str) -> ComponentSpec:
        try:
            return self._specs[name]
        except KeyError:
            raise UnknownComponentError(name, self._specs) from None

    def validate(self, name: str, raw_props: Dict[str, Any]) -> Props:
        spec = self.get(name)
        try:
            return spec.props.model_validate(raw_props)
        except ValidationError as e:
            raise ComponentPropsError(
                name,
                [
                    f"{'.'.join(str(p) for p in err['loc']) or 'props'}: {err['msg']}"
                    for err in e.errors()
                ],
            ) from e

    def render(self, name: str, raw_props: Dict[str, Any]) -> str:
        return self.get(name).to_html(self.validate(name, raw_props))


def parse_props(name: str, text: str) -> Dict[str, Any]:
    """Props of a component tag: ``a="x"``, ``b='y'``, ``c={json}`` or bare ``d``."""
    props: Dict[str, Any] = {}
    for m in COMPONENT_PROP_ITEM.finditer(text):
        key = m.group("key")
        if key in props:
            raise ComponentPropsError(name, [f"{key}: given more than once"])
        if m.group("dq") is not None:
            props[key] = m.group("dq")
        elif m.group("sq") is not None:
            props[key] = m.group("sq")
        elif m.group("expr") is not None:
            try:
                props[key] = json.loads(m.group("expr"))
            except ValueError:
                raise ComponentPropsError(
                    name, [f"{key}: expression must be a JSON literal"]
                ) from None
        else:
            props[key] = True
    return props


def default_registry() -> ComponentRegistry:
    return ComponentRegistry(
        [
            ComponentSpec("CodeBlock", CodeBlockProps, render_code_block),
            ComponentSpec("Callout", CalloutProps, render_callout),
            ComponentSpec("MonteCarloPi", MonteCarloPiProps),
            ComponentSpec("GbmQuantileBands", GbmQuantileBandsProps),
            ComponentSpec("DataChart", DataChartProps, asset_props=("src",)),
        ]
    )
