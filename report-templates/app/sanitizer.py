"""Sanitize and validate rich-text section content.

``validate`` is the user-facing gate: it reports why a section's HTML is
unacceptable (unbalanced tags, script/style/iframe/object/embed elements,
``on*`` event handlers, ``javascript:`` URLs) so the editor can show a
message next to that section.

``sanitize`` is the actual safety mechanism and runs before every save,
whether or not ``validate`` passed. It rebuilds the markup from an
allow-list of the formatting the editor produces (headings, paragraphs,
lists, emphasis, links, images, tables, color/background styling) and is
idempotent: ``sanitize(sanitize(x)) == sanitize(x)``.

Both are built on ``html.parser.HTMLParser``, the same parser the Word
exporter uses for Quill output.
"""

from __future__ import annotations

import html
import logging
import re
from dataclasses import asdict, dataclass, field
from html.parser import HTMLParser
from typing import Iterable

from app.errors import ValidationError
from app.schema import Section

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Allow-lists
# ---------------------------------------------------------------------------

# Dropped together with everything inside them.
DANGEROUS_TAGS = frozenset({
    "script", "style", "iframe", "object", "embed",
    "noscript", "template", "frame", "frameset", "applet",
})

# Dropped, inner text kept.
FORBIDDEN_TAGS = frozenset({
    "form", "input", "button", "textarea", "select", "option",
    "canvas", "link", "meta", "base", "svg", "math",
})

ALLOWED_TAGS = frozenset({
    "h1", "h2", "h3", "h4", "h5", "h6", "p", "br", "hr",
    "ul", "ol", "li", "dl", "dt", "dd",
    "em", "strong", "i", "b", "u", "s", "strike", "span", "sub", "sup",
    "a", "img", "figure", "figcaption",
    "blockquote", "pre", "code",
    "table", "thead", "tbody", "tr", "th", "td",
    "div", "section", "article", "header", "footer",
})

VOID_TAGS = frozenset({
    "area", "base", "br", "col", "embed", "hr", "img", "input",
    "link", "meta", "param", "source", "track", "wbr",
})

ALLOWED_ATTRS = frozenset({
    "href", "target", "rel", "src", "alt", "title",
    "style", "class", "id", "name", "width", "height",
    "align", "valign", "colspan", "rowspan",
})

# URL attributes are only meaningful on one element each.
_URL_ATTR_TAGS = {"href": "a", "src": "img"}

ALLOWED_CSS_PROPERTIES = frozenset({
    "color", "background-color", "text-align", "font-weight",
    "font-style", "text-decoration", "font-size", "width", "height",
})

_LINK_SCHEMES = frozenset({"http", "https", "mailto", "tel"})
_IMAGE_SCHEMES = frozenset({"http", "https"})
_LINK_TARGETS = frozenset({"_blank", "_self", "_parent", "_top"})

_SCHEME_RE = re.compile(r"^([a-z][a-z0-9+.\-]*):")
_CONTROL_RE = re.compile(r"[\x00-\x20\x7f]+")
_DATA_IMAGE_RE = re.compile(r"^data:image/(png|jpe?g|gif|webp);base64,[a-z0-9+/=]+$")
_CSS_VALUE_RE = re.compile(r"^[#\w\s.,%()\-]+$")
_CLASS_RE = re.compile(r"^[\w\- ]+$")


# ---------------------------------------------------------------------------
# URL and style helpers
# ---------------------------------------------------------------------------

def _compact(value: str) -> str:
    """Lower-case a URL and strip the whitespace/control chars browsers ignore."""
    return _CONTROL_RE.sub("", value or "").lower()


def url_scheme(url: str) -> str:
    """Return the URL's scheme, or "" for relative URLs and fragments."""
    m = _SCHEME_RE.match(_compact(url))
    return m.group(1) if m else ""


def is_safe_url(url: str, attr: str = "href") -> bool:
    scheme = url_scheme(url)
    if not scheme:
        return True
    if attr == "src":
        if scheme == "data":
            return bool(_DATA_IMAGE_RE.match(_compact(url)))
        return scheme in _IMAGE_SCHEMES
    return scheme in _LINK_SCHEMES


def clean_style(style: str) -> str:
    """Keep only allow-listed CSS declarations, normalized as ``prop: value``."""
    kept: list[str] = []
    for decl in (style or "").split(";"):
        if ":" not in decl:
            continue
        prop, value = decl.split(":", 1)
        prop = prop.strip().lower()
        value = " ".join(value.split())
        if prop not in ALLOWED_CSS_PROPERTIES or not value:
            continue
        lowered = value.lower()
        if "url(" in lowered or "expression" in lowered:
            continue
        if not _CSS_VALUE_RE.match(value):
            continue
        kept.append(f"{prop}: {value}")
    return "; ".join(kept)


def _is_unsafe_style(style: str) -> bool:
    lowered = _compact(style)
    return "javascript:" in lowered or "expression(" in lowered or "url(" in lowered


# ---------------------------------------------------------------------------
# Validate
# ---------------------------------------------------------------------------

@dataclass
class ValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


class _ValidatingParser(HTMLParser):
    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.errors: list[str] = []
        self._stack: list[str] = []

    def _flag(self, message: str) -> None:
        if message not in self.errors:
            self.errors.append(message)

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]):
        if tag in DANGEROUS_TAGS or tag in FORBIDDEN_TAGS:
            self._flag(f"Disallowed element <{tag}>")

        for name, value in attrs:
            if name.startswith("on"):
                self._flag(f"Event handler attribute '{name}' is not allowed on <{tag}>")
            elif name in _URL_ATTR_TAGS and value:
                scheme = url_scheme(value)
                if scheme == "javascript":
                    self._flag(f"javascript: URL is not allowed in <{tag} {name}>")
                elif not is_safe_url(value, name):
                    self._flag(f"Unsafe URL scheme '{scheme}:' in <{tag} {name}>")
            elif name == "style" and value and _is_unsafe_style(value):
                self._flag(f"Unsafe style attribute on <{tag}>")

        if tag not in VOID_TAGS:
            self._stack.append(tag)

    def handle_startendtag(self, tag: str, attrs: list[tuple[str, str | None]]):
        self.handle_starttag(tag, attrs)
        if tag not in VOID_TAGS:
            self._stack.pop()

    def handle_endtag(self, tag: str):
        if tag in VOID_TAGS:
            return
        if self._stack and self._stack[-1] == tag:
            self._stack.pop()
        elif tag in self._stack:
            while self._stack:
                open_tag = self._stack.pop()
                if open_tag == tag:
                    break
                self._flag(f"Unclosed tag <{open_tag}>")
        else:
            self._flag(f"Unexpected closing tag </{tag}>")

    def close(self):
        super().close()
        for open_tag in reversed(self._stack):
            self._flag(f"Unclosed tag <{open_tag}>")
        self._stack = []


def validate(content: str) -> ValidationResult:
    """Check section HTML and return every distinct reason it is unacceptable."""
    parser = _ValidatingParser()
    parser.feed(content or "")
    parser.close()
    return ValidationResult(is_valid=not parser.errors, errors=parser.errors)


# ---------------------------------------------------------------------------
# Sanitize
# ---------------------------------------------------------------------------

def _clean_attrs(tag: str, attrs: list[tuple[str, str | None]]) -> list[tuple[str, str]]:
    cleaned: list[tuple[str, str]] = []
    seen: set[str] = set()
    has_target = False

    for name, value in attrs:
        value = value or ""
        if name in seen or name not in ALLOWED_ATTRS:
            continue
        seen.add(name)

        if name in _URL_ATTR_TAGS:
            if _URL_ATTR_TAGS[name] != tag or not is_safe_url(value, name):
                continue
            value = value.strip()
        elif name == "style":
            value = clean_style(value)
            if not value:
                continue
        elif name == "class":
            value = " ".join(value.split())
            if not value or not _CLASS_RE.match(value):
                continue
        elif name == "target":
            if tag != "a" or value not in _LINK_TARGETS:
                continue
            has_target = True
        elif name == "rel":
            continue

        cleaned.append((name, value))

    # rel is always derived, never taken from input, when a link opens elsewhere
    if has_target:
        cleaned.append(("rel", "noopener noreferrer"))
    return cleaned


class _SanitizingParser(HTMLParser):
    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.out: list[str] = []
        self._open: list[str] = []
        self._skip_tag: str | None = None
        self._skip_depth = 0

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]):
        if self._skip_tag is not None:
            if tag == self._skip_tag:
                self._skip_depth += 1
            return
        if tag in DANGEROUS_TAGS:
            if tag not in VOID_TAGS:
                self._skip_tag = tag
                self._skip_depth = 1
            return
        if tag not in ALLOWED_TAGS:
            return

        parts = [tag]
        for name, value in _clean_attrs(tag, attrs):
            parts.append(f'{name}="{html.escape(value, quote=True)}"')
        self.out.append("<" + " ".join(parts) + ">")
        if tag not in VOID_TAGS:
            self._open.append(tag)

    def handle_endtag(self, tag: str):
        if self._skip_tag is not None:
            if tag == self._skip_tag:
                self._skip_depth -= 1
                if self._skip_depth == 0:
                    self._skip_tag = None
            return
        if tag in VOID_TAGS or tag not in self._open:
            return
        while self._open:
            open_tag = self._open.pop()
            self.out.append(f"</{open_tag}>")
            if open_tag == tag:
                break

    def handle_data(self, data: str):
        if self._skip_tag is not None:
            return
        self.out.append(html.escape(data, quote=False))

    def close(self):
        super().close()
        while self._open:
            self.out.append(f"</{self._open.pop()}>")


def sanitize(content: str) -> str:
    """Return a safe, well-formed version of *content*."""
    parser = _SanitizingParser()
    parser.feed(content or "")
    parser.close()
    return "".join(parser.out)


# ---------------------------------------------------------------------------
# Save-time gate
# ---------------------------------------------------------------------------

def prepare_sections(sections: Iterable[Section]) -> list[Section]:
    """Validate every section, then return sanitized copies ready to persist.

    Raises ValidationError listing the reasons per section id if any
    section fails; nothing is returned for partial saves.
    """
    sections = list(sections)
    failures: dict[str, list[str]] = {}
    for sec in sections:
        result = validate(sec.content)
        if not result.is_valid:
            failures[sec.id] = result.errors
    if failures:
        raise ValidationError(failures)

    prepared: list[Section] = []
    for sec in sections:
        clean = sanitize(sec.content)
        if clean != sec.content:
            logger.debug("Sanitizer rewrote content of section %s", sec.id)
        prepared.append(Section(id=sec.id, title=sec.title, content=clean))
    return prepared
