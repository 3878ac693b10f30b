"""Content codec: persisted ``content`` string <-> ordered section list.

Templates have been stored in three shapes over time:

- a JSON array of ``{id, title, content}`` objects (the only shape written)
- a JSON value that is not an array
- plain HTML that is not JSON at all

``decode`` folds all three into a list of Sections so nothing downstream
branches on the raw shape. It never raises and never returns an empty list.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from app.schema import Section, new_section_id

logger = logging.getLogger(__name__)

FALLBACK_TITLE = "Content"

_PERSISTED_FIELDS = ("id", "title", "content")


def _fallback(raw: str) -> list[Section]:
    return [Section(id="1", title=FALLBACK_TITLE, content=raw)]


def decode(raw: str | None) -> list[Section]:
    """Decode persisted template content into an ordered list of Sections."""
    if raw is None:
        raw = ""
    if not isinstance(raw, str):
        raw = str(raw)

    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, ValueError, RecursionError):
        return _fallback(raw)

    if not isinstance(parsed, list):
        logger.warning("Template content is JSON but not a section list; wrapping as one section")
        return _fallback(raw)

    sections: list[Section] = []
    seen: set[str] = set()
    for item in parsed:
        if not isinstance(item, dict):
            continue
        section = Section.from_dict(item)
        # ids must stay unique within a template
        while section.id in seen:
            section.id = new_section_id()
        seen.add(section.id)
        sections.append(section)

    if not sections:
        logger.warning("Template content held no usable sections; wrapping as one section")
        return _fallback(raw)
    return sections


def _to_persisted(section: Any) -> dict:
    if isinstance(section, Section):
        return section.to_dict()
    if isinstance(section, dict):
        return {k: str(section.get(k) or "") for k in _PERSISTED_FIELDS}
    return {k: str(getattr(section, k, "") or "") for k in _PERSISTED_FIELDS}


def encode(sections: Iterable[Any]) -> str:
    """Serialize sections as a JSON array of ``{id, title, content}``.

    UI-only fields (expand/collapse state, editor handles) are dropped.
    """
    return json.dumps([_to_persisted(s) for s in sections], ensure_ascii=False)
