"""Data models for report templates.

Dataclasses for templates and their sections. Templates convert to and
from the persisted record shape (``report_templates`` table / local JSON
file), where the section list is stored encoded in ``content``.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone


def new_section_id() -> str:
    return str(uuid.uuid4())[:8]


def new_template_id() -> str:
    return str(uuid.uuid4())


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Section:
    """One titled block of rich content inside a template."""

    id: str
    title: str
    content: str

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> Section:
        return cls(
            id=str(d.get("id") or new_section_id()),
            title=str(d.get("title") or ""),
            content=str(d.get("content") or ""),
        )


@dataclass
class Template:
    """A named, versioned, owned-or-global report document."""

    id: str
    name: str
    sections: list[Section] = field(default_factory=list)
    owner_id: str | None = None       # None = system/global template
    quiz_scope: str | None = None     # None = applies to all quizzes
    is_default: bool = False
    version: int = 1
    created_at: str = ""

    @property
    def is_global(self) -> bool:
        return self.owner_id is None

    def to_dict(self) -> dict:
        return asdict(self)

    def to_record(self) -> dict:
        """Return the persisted record, with sections encoded into ``content``."""
        from app.codec import encode

        return {
            "id": self.id,
            "name": self.name,
            "content": encode(self.sections),
            "created_by": self.owner_id,
            "quiz_id": self.quiz_scope,
            "is_default": self.is_default,
            "version": self.version,
            "created_at": self.created_at,
        }

    @classmethod
    def from_record(cls, record: dict) -> Template:
        """Build a Template from a persisted record, decoding its content."""
        from app.codec import decode

        return cls(
            id=str(record["id"]),
            name=record.get("name") or "",
            sections=decode(record.get("content")),
            owner_id=record.get("created_by"),
            quiz_scope=record.get("quiz_id"),
            is_default=bool(record.get("is_default")),
            version=int(record.get("version") or 1),
            created_at=record.get("created_at") or "",
        )
