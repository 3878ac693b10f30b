"""Render preparation for generated quiz reports.

Merges finalized (already sanitized) sections with a variable map into the
single HTML document handed to the document renderer. Placeholders use
``{{variable}}`` syntax and are plain text, so substitution happens after
sanitizing and does not go through it again. Unknown placeholders are
left as-is so a missing value is visible in the output.
"""

from __future__ import annotations

import html as html_mod
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Iterable

from app.schema import Section

PLACEHOLDER_RE = re.compile(r"\{\{\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*\}\}")

# Variables every report can reference
REPORT_VARIABLES: dict[str, str] = {
    "name": "Respondent's name",
    "email": "Respondent's email address",
    "score": "Score as a percentage",
    "date": "Date the quiz was completed",
    "time": "Time taken (M:SS)",
    "quiz_title": "Title of the quiz",
    "performance_category": "Excellent / Very Good / Good / Satisfactory / Needs Improvement",
}

# Stand-in response used when previewing a template
SAMPLE_RESPONSE: dict = {
    "name": "Sample User",
    "email": "sample@example.com",
    "score": 75,
    "completion_time": 300,
}


@dataclass
class RenderPayload:
    """What the external renderer receives: assembled HTML plus the variables used."""

    html: str
    variables: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


def performance_category(score: float) -> str:
    if score >= 90:
        return "Excellent"
    if score >= 80:
        return "Very Good"
    if score >= 70:
        return "Good"
    if score >= 60:
        return "Satisfactory"
    return "Needs Improvement"


def _format_score(score: float) -> str:
    score = float(score)
    if score.is_integer():
        return str(int(score))
    return f"{score:.2f}"


def _format_duration(seconds: int | float | None) -> str:
    total = int(seconds or 0)
    return f"{total // 60}:{total % 60:02d}"


def _parse_timestamp(value: str | datetime | None) -> datetime:
    if isinstance(value, datetime):
        return value
    if value:
        try:
            return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            pass
    return datetime.now()


def build_report_variables(response: dict, quiz_title: str = "Quiz") -> dict[str, str]:
    """Build the variable map for one quiz response.

    *response* carries name, email, score (percent), timestamp (ISO) and
    completion_time (seconds).
    """
    score = float(response.get("score") or 0)
    completed = _parse_timestamp(response.get("timestamp"))
    return {
        "name": str(response.get("name") or ""),
        "email": str(response.get("email") or ""),
        "score": _format_score(score),
        "date": completed.strftime("%m/%d/%Y"),
        "time": _format_duration(response.get("completion_time")),
        "quiz_title": quiz_title,
        "performance_category": performance_category(score),
    }


def substitute_variables(text: str, variables: dict[str, str]) -> str:
    """Replace ``{{key}}`` placeholders with literal values from *variables*."""
    if not text or not variables:
        return text or ""

    def _replace(m: re.Match) -> str:
        key = m.group(1)
        if key in variables:
            return str(variables[key])
        return m.group(0)

    return PLACEHOLDER_RE.sub(_replace, text)


def find_placeholders(text: str) -> list[str]:
    """Return placeholder names used in *text*, in order of first use."""
    names: list[str] = []
    for m in PLACEHOLDER_RE.finditer(text or ""):
        if m.group(1) not in names:
            names.append(m.group(1))
    return names


def prepare_render_payload(sections: Iterable[Section], variables: dict[str, str]) -> RenderPayload:
    """Assemble sections, in order, as heading + content with placeholders resolved.

    Section content is expected to be sanitized already. Titles are plain
    text and are escaped.
    """
    parts = []
    for sec in sections:
        title = html_mod.escape(substitute_variables(sec.title, variables), quote=False)
        parts.append(f"<h3>{title}</h3>{substitute_variables(sec.content, variables)}")
    return RenderPayload(html="".join(parts), variables=dict(variables))
