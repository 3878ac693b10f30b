"""In-memory document model for one report template being edited.

The Document owns an ordered list of SectionControllers, one per section.
Controllers carry the editor-only state (expanded/collapsed) next to the
section they edit and are looked up by section id, so nothing outside the
Document holds references to individual editors.

Content set here is not sanitized: an editor may hold invalid HTML while
composing. The save path runs ``sanitizer.prepare_sections`` before
anything is persisted.
"""

from __future__ import annotations

import html as html_mod
from typing import Iterable

from app.codec import decode, encode
from app.config import get_settings
from app.errors import MinimumSectionError, NoExpandedSectionError
from app.schema import Section, new_section_id

STARTER_SECTIONS: list[dict[str, str]] = [
    {
        "title": "Introduction",
        "content": "<p>Thank you for completing the assessment. Here is your personalized feedback.</p>",
    },
    {
        "title": "Performance Analysis",
        "content": (
            "<p>Based on your responses, we have identified the following strengths "
            "and areas for improvement.</p>"
        ),
    },
    {
        "title": "Recommendations",
        "content": "<p>We recommend focusing on the following areas to improve your skills.</p>",
    },
]


class SectionController:
    """Editor handle for a single section."""

    def __init__(self, section: Section, expanded: bool = True):
        self.section = section
        self.expanded = expanded

    @property
    def id(self) -> str:
        return self.section.id

    @property
    def title(self) -> str:
        return self.section.title

    @property
    def content(self) -> str:
        return self.section.content

    def rename(self, title: str) -> None:
        self.section.title = title

    def set_content(self, content: str) -> None:
        self.section.content = content

    def toggle_expand(self) -> bool:
        self.expanded = not self.expanded
        return self.expanded

    def insert_image(self, url: str, alt: str = "") -> None:
        """Append an image paragraph pointing at an uploaded image URL."""
        src = html_mod.escape(url, quote=True)
        alt_attr = html_mod.escape(alt, quote=True)
        self.section.content += f'<p><img src="{src}" alt="{alt_attr}"></p>'

    def __repr__(self) -> str:
        return f"SectionController(id={self.id!r}, title={self.title!r}, expanded={self.expanded})"


class Document:
    """Ordered, never-empty list of sections plus their editor state."""

    def __init__(self, sections: Iterable[Section]):
        self._controllers: list[SectionController] = [
            SectionController(Section(id=s.id, title=s.title, content=s.content))
            for s in sections
        ]
        if not self._controllers:
            raise MinimumSectionError("A document needs at least one section")
        self._all_expanded = True

    # -- Construction ---------------------------------------------------------

    @classmethod
    def new(cls) -> Document:
        """A fresh document seeded with the starter sections."""
        return cls(
            Section(id=str(i + 1), title=s["title"], content=s["content"])
            for i, s in enumerate(STARTER_SECTIONS)
        )

    @classmethod
    def from_content(cls, raw: str | None) -> Document:
        """Build a document from persisted template content (any legacy shape)."""
        return cls(decode(raw))

    # -- Read access ----------------------------------------------------------

    def __len__(self) -> int:
        return len(self._controllers)

    def __iter__(self):
        return iter(self._controllers)

    @property
    def sections(self) -> list[Section]:
        """Snapshot of the persisted fields of every section, in order."""
        return [Section(id=c.id, title=c.title, content=c.content) for c in self._controllers]

    @property
    def all_expanded(self) -> bool:
        return self._all_expanded

    def controller(self, section_id: str) -> SectionController:
        for c in self._controllers:
            if c.id == section_id:
                return c
        raise KeyError(f"Section {section_id} not found")

    def encode(self) -> str:
        return encode(self.sections)

    # -- Structural edits -----------------------------------------------------

    def _fresh_id(self) -> str:
        existing = {c.id for c in self._controllers}
        sid = new_section_id()
        while sid in existing:
            sid = new_section_id()
        return sid

    def add_section(self) -> SectionController:
        ctrl = SectionController(
            Section(
                id=self._fresh_id(),
                title=f"Section {len(self._controllers) + 1}",
                content=get_settings().placeholder_content,
            )
        )
        self._controllers.append(ctrl)
        return ctrl

    def remove_section(self, section_id: str) -> None:
        if len(self._controllers) <= 1:
            raise MinimumSectionError()
        self._controllers.remove(self.controller(section_id))

    def duplicate_section(self, section_id: str) -> SectionController:
        source = self.controller(section_id)
        ctrl = SectionController(
            Section(
                id=self._fresh_id(),
                title=f"{source.title} (Copy)",
                content=source.content,
            )
        )
        self._controllers.append(ctrl)
        return ctrl

    def rename_section(self, section_id: str, title: str) -> None:
        self.controller(section_id).rename(title)

    def set_content(self, section_id: str, content: str) -> None:
        self.controller(section_id).set_content(content)

    # -- Editor state ---------------------------------------------------------

    def toggle_expand(self, section_id: str) -> bool:
        return self.controller(section_id).toggle_expand()

    def toggle_all_expand(self) -> bool:
        self._all_expanded = not self._all_expanded
        for c in self._controllers:
            c.expanded = self._all_expanded
        return self._all_expanded

    def insert_image(self, url: str, section_id: str | None = None, alt: str = "") -> SectionController:
        """Insert an uploaded image into *section_id*, or the first expanded section."""
        if section_id is not None:
            ctrl = self.controller(section_id)
        else:
            ctrl = next((c for c in self._controllers if c.expanded), None)
            if ctrl is None:
                raise NoExpandedSectionError()
        ctrl.insert_image(url, alt)
        return ctrl
