"""Word (.docx) renderer for report payloads.

Parses the assembled report HTML (Quill output wrapped in section
headings) into paragraphs and maps the formatting onto python-docx
runs: 1-inch margins, Times New Roman 12pt, BytesIO -> bytes.

This is the renderer the API uses for previews and downloads. Any other
renderer only needs a ``render(payload) -> bytes`` method.
"""

from __future__ import annotations

import io
from html.parser import HTMLParser
from typing import Protocol

from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.shared import Inches, Pt

from app.render import RenderPayload

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

_HEADING_SIZES = {1: 16, 2: 14, 3: 13, 4: 12, 5: 12, 6: 12}

_ALIGN_MAP = {
    "left": WD_ALIGN_PARAGRAPH.LEFT,
    "center": WD_ALIGN_PARAGRAPH.CENTER,
    "right": WD_ALIGN_PARAGRAPH.RIGHT,
    "justify": WD_ALIGN_PARAGRAPH.JUSTIFY,
}


class DocumentRenderer(Protocol):
    media_type: str
    extension: str

    def render(self, payload: RenderPayload, title: str = "") -> bytes: ...


# ── HTML parser ──────────────────────────────────────────────────────────────


class _ReportHTMLParser(HTMLParser):
    """Parse report HTML into a list of paragraph dicts.

    Each dict: {"text_runs": [{"text": str, "bold": bool, "italic": bool,
    "underline": bool, "strike": bool}], "align": str, "list_type": str|None,
    "heading": int}
    """

    def __init__(self):
        super().__init__()
        self.paragraphs: list[dict] = []
        self._current_para: dict | None = None
        self._fmt_stack: list[dict] = []
        self._list_stack: list[str] = []  # "ol" or "ul"

    def _ensure_para(self):
        if self._current_para is None:
            self._current_para = {
                "text_runs": [],
                "align": "left",
                "list_type": None,
                "heading": 0,
            }

    def _current_fmt(self) -> dict:
        if self._fmt_stack:
            return self._fmt_stack[-1]
        return {"bold": False, "italic": False, "underline": False, "strike": False}

    def _close_para(self):
        if self._current_para is not None:
            self.paragraphs.append(self._current_para)
            self._current_para = None

    def _push_fmt(self, **changes):
        self._fmt_stack.append({**self._current_fmt(), **changes})

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]):
        cls = dict(attrs).get("class") or ""

        if tag in ("p", "div", "blockquote"):
            self._close_para()
            self._ensure_para()
            for align in ("center", "right", "justify"):
                if f"ql-align-{align}" in cls:
                    self._current_para["align"] = align
        elif tag in ("h1", "h2", "h3", "h4", "h5", "h6"):
            self._close_para()
            self._ensure_para()
            self._current_para["heading"] = int(tag[1])
        elif tag in ("ol", "ul"):
            self._list_stack.append(tag)
        elif tag == "li":
            self._close_para()
            self._ensure_para()
            if self._list_stack:
                self._current_para["list_type"] = self._list_stack[-1]
        elif tag == "br":
            self._ensure_para()
            self._current_para["text_runs"].append({**self._current_fmt(), "text": "\n"})
        elif tag in ("strong", "b"):
            self._push_fmt(bold=True)
        elif tag in ("em", "i"):
            self._push_fmt(italic=True)
        elif tag == "u":
            self._push_fmt(underline=True)
        elif tag in ("s", "strike"):
            self._push_fmt(strike=True)

    def handle_endtag(self, tag: str):
        if tag in ("p", "div", "blockquote", "h1", "h2", "h3", "h4", "h5", "h6", "li"):
            self._close_para()
        elif tag in ("ol", "ul"):
            if self._list_stack:
                self._list_stack.pop()
        elif tag in ("strong", "b", "em", "i", "u", "s", "strike"):
            if self._fmt_stack:
                self._fmt_stack.pop()

    def handle_data(self, data: str):
        if not data:
            return
        self._ensure_para()
        self._current_para["text_runs"].append({**self._current_fmt(), "text": data})

    def close(self):
        super().close()
        self._close_para()


def parse_html(html: str) -> list[dict]:
    """Parse report HTML into structured paragraph dicts."""
    parser = _ReportHTMLParser()
    parser.feed(html or "")
    parser.close()
    return parser.paragraphs


# ── Docx builder ─────────────────────────────────────────────────────────────


def _run(para, text: str, *, bold=False, italic=False, underline=False, strike=False, size=12):
    """Add a formatted run to a paragraph."""
    r = para.add_run(text)
    r.font.name = "Times New Roman"
    r.font.size = Pt(size)
    r.bold = bold
    r.italic = italic
    r.underline = underline
    r.font.strike = strike
    return r


def build_report_docx(payload: RenderPayload, title: str = "") -> bytes:
    """Build a Word document from a render payload. Returns .docx bytes."""
    doc = Document()
    for sec in doc.sections:
        sec.top_margin = Inches(1)
        sec.bottom_margin = Inches(1)
        sec.left_margin = Inches(1)
        sec.right_margin = Inches(1)

    style = doc.styles["Normal"]
    style.font.name = "Times New Roman"
    style.font.size = Pt(12)

    if title:
        p = doc.add_paragraph()
        p.alignment = WD_ALIGN_PARAGRAPH.CENTER
        _run(p, title, bold=True, size=18)

    ol_counter = 0
    for pdata in parse_html(payload.html):
        runs = pdata["text_runs"]
        if not "".join(r["text"] for r in runs).strip():
            doc.add_paragraph()
            continue

        heading = pdata["heading"]
        list_type = pdata["list_type"]

        p = doc.add_paragraph()
        if list_type == "ol":
            ol_counter += 1
            _run(p, f"{ol_counter}. ")
        elif list_type == "ul":
            _run(p, "• ")
        else:
            ol_counter = 0

        p.alignment = _ALIGN_MAP.get(pdata["align"], WD_ALIGN_PARAGRAPH.LEFT)
        if heading:
            p.paragraph_format.space_before = Pt(12)
            p.paragraph_format.space_after = Pt(6)

        size = _HEADING_SIZES.get(heading, 12)
        for rd in runs:
            if not rd["text"]:
                continue
            _run(
                p, rd["text"],
                bold=rd["bold"] or heading > 0,
                italic=rd["italic"],
                underline=rd["underline"],
                strike=rd["strike"],
                size=size,
            )

    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()


class DocxRenderer:
    media_type = DOCX_MEDIA_TYPE
    extension = "docx"

    def render(self, payload: RenderPayload, title: str = "") -> bytes:
        return build_report_docx(payload, title)
