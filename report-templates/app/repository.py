"""Template repository: CRUD plus the name and default-template invariants.

Invariants kept after every completed call:

- Within the templates visible to an owner (theirs plus global ones) no
  two names are equal ignoring case and surrounding whitespace.
- Within one quiz scope (None = global) at most one template is default.
- Every persisted section has been through the sanitizer.
- ``version`` starts at 1 and grows by exactly 1 per successful update.

Ownership filtering here is a display convenience. The store's query (and
the database's row-level security) is what actually limits visibility.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from app.codec import decode, encode
from app.errors import (
    InvalidTemplateError,
    MinimumSectionError,
    NotFoundError,
    TemplatePermissionError,
    UniquenessError,
)
from app.sanitizer import prepare_sections, sanitize
from app.schema import Section, Template, new_section_id, new_template_id, now_iso
from app.store import get_store, visible_to

logger = logging.getLogger(__name__)

# Sentinel for "argument not given" where None is a meaningful value
_UNSET: Any = object()


def _normalize_name(name: str) -> str:
    return (name or "").strip().lower()


def _unique_ids(sections: Iterable[Section]) -> list[Section]:
    seen: set[str] = set()
    result: list[Section] = []
    for sec in sections:
        sid = sec.id or new_section_id()
        while sid in seen:
            sid = new_section_id()
        seen.add(sid)
        result.append(Section(id=sid, title=sec.title, content=sec.content))
    return result


class TemplateRepository:
    """Report template operations for one backing store."""

    def __init__(self, store=None):
        self.store = store if store is not None else get_store()

    # -- Queries --------------------------------------------------------------

    def list_visible(self, owner_id: str | None) -> list[Template]:
        """Templates owned by *owner_id* plus global ones, newest first."""
        records = self.store.list_visible(owner_id)
        return [Template.from_record(r) for r in records if visible_to(r, owner_id)]

    def _load(self, template_id: str, owner_id: str | None) -> dict:
        record = self.store.get(template_id)
        if record is None:
            raise NotFoundError(template_id)
        if not visible_to(record, owner_id):
            raise TemplatePermissionError(template_id)
        return record

    def get(self, template_id: str, owner_id: str | None) -> Template:
        return Template.from_record(self._load(template_id, owner_id))

    def is_name_available(
        self,
        name: str,
        owner_id: str | None,
        excluding_id: str | None = None,
    ) -> bool:
        wanted = _normalize_name(name)
        for record in self.store.list_visible(owner_id):
            if not visible_to(record, owner_id):
                continue
            if excluding_id is not None and record.get("id") == excluding_id:
                continue
            if _normalize_name(record.get("name", "")) == wanted:
                return False
        return True

    def _unique_name(self, base: str, label: str, owner_id: str | None) -> str:
        candidate = f"{base} ({label})"
        n = 2
        while not self.is_name_available(candidate, owner_id):
            candidate = f"{base} ({label} {n})"
            n += 1
        return candidate

    # -- Commands -------------------------------------------------------------

    def _checked_name(self, name: str, owner_id: str | None, excluding_id: str | None = None) -> str:
        name = (name or "").strip()
        if not name:
            raise InvalidTemplateError("Please enter a template name")
        if not self.is_name_available(name, owner_id, excluding_id):
            raise UniquenessError(name)
        return name

    def _checked_sections(self, sections: Iterable[Section]) -> list[Section]:
        sections = _unique_ids(sections)
        if not sections:
            raise MinimumSectionError("A template needs at least one section")
        return prepare_sections(sections)

    def create(
        self,
        owner_id: str | None,
        name: str,
        sections: Iterable[Section],
        quiz_scope: str | None = None,
        is_default: bool = False,
    ) -> Template:
        """Save a new template at version 1."""
        name = self._checked_name(name, owner_id)
        template = Template(
            id=new_template_id(),
            name=name,
            sections=self._checked_sections(sections),
            owner_id=owner_id,
            quiz_scope=quiz_scope,
            is_default=False,
            version=1,
            created_at=now_iso(),
        )
        record = self.store.insert(template.to_record())
        logger.info("Created template %s (%r) for owner %s", template.id, name, owner_id)

        if is_default:
            record = self.store.set_default(template.id, quiz_scope) or record
            logger.info("Template %s is now the default for scope %s", template.id, quiz_scope)
        return Template.from_record(record)

    def update(
        self,
        template_id: str,
        owner_id: str | None,
        *,
        name: str | None = None,
        sections: Iterable[Section] | None = None,
        quiz_scope: Any = _UNSET,
        is_default: bool | None = None,
    ) -> Template:
        """Apply a patch.

        Renames and section edits bump the version by one. Scope and default
        changes leave it alone.
        """
        record = self._load(template_id, owner_id)

        fields: dict[str, Any] = {}
        if name is not None:
            fields["name"] = self._checked_name(name, owner_id, excluding_id=template_id)
        if sections is not None:
            fields["content"] = encode(self._checked_sections(sections))
        if quiz_scope is not _UNSET:
            fields["quiz_id"] = quiz_scope
        if is_default is False:
            fields["is_default"] = False
        if "name" in fields or "content" in fields:
            fields["version"] = int(record.get("version") or 1) + 1

        updated = self.store.update(template_id, fields) if fields else record
        if updated is None:
            raise NotFoundError(template_id)
        logger.info("Updated template %s (version %s)", template_id, updated.get("version"))

        # A default that moves scope must not collide with that scope's default
        if is_default or (updated.get("is_default") and "quiz_id" in fields):
            updated = self.store.set_default(template_id, updated.get("quiz_id")) or updated
            logger.info("Template %s is now the default for scope %s", template_id, updated.get("quiz_id"))
        return Template.from_record(updated)

    def set_default(self, template_id: str, owner_id: str | None, scope: Any = _UNSET) -> Template:
        """Make *template_id* the only default in its scope.

        *scope* defaults to the template's own quiz scope; passing another
        value moves the template into that scope. The version is unchanged.
        """
        record = self._load(template_id, owner_id)
        quiz_id = record.get("quiz_id") if scope is _UNSET else scope
        updated = self.store.set_default(template_id, quiz_id)
        if updated is None:
            raise NotFoundError(template_id)
        logger.info("Template %s is now the default for scope %s", template_id, quiz_id)
        return Template.from_record(updated)

    def duplicate(self, template_id: str, owner_id: str | None) -> Template:
        """Copy a visible template as a new, non-default version-1 template."""
        source = self.get(template_id, owner_id)
        copy = Template(
            id=new_template_id(),
            name=self._unique_name(source.name, "Copy", owner_id),
            sections=[Section(id=s.id, title=s.title, content=sanitize(s.content)) for s in source.sections],
            owner_id=owner_id,
            quiz_scope=source.quiz_scope,
            is_default=False,
            version=1,
            created_at=now_iso(),
        )
        record = self.store.insert(copy.to_record())
        logger.info("Duplicated template %s as %s", template_id, copy.id)
        return Template.from_record(record)

    def remove(self, template_id: str, owner_id: str | None) -> None:
        """Delete a template. Removing a default leaves its scope without one."""
        self._load(template_id, owner_id)
        if not self.store.delete(template_id):
            raise NotFoundError(template_id)
        logger.info("Deleted template %s", template_id)

    # -- Export / import --------------------------------------------------------

    def export_template(self, template_id: str, owner_id: str | None) -> dict:
        """Return the persisted record of a template, suitable for a JSON download."""
        return self.get(template_id, owner_id).to_record()

    def import_template(self, data: dict, owner_id: str | None) -> Template:
        """Create a template from an exported record.

        Content may be any shape the codec understands. A name that is
        already taken gets an " (Imported)" suffix.
        """
        if not isinstance(data, dict) or not data.get("name") or not data.get("content"):
            raise InvalidTemplateError("Invalid template format")

        name = str(data["name"]).strip()
        if not name:
            raise InvalidTemplateError("Invalid template format")
        if not self.is_name_available(name, owner_id):
            name = self._unique_name(name, "Imported", owner_id)

        content = data["content"]
        if not isinstance(content, str):
            content = json.dumps(content)
        sections = [
            Section(id=s.id, title=s.title, content=sanitize(s.content))
            for s in decode(content)
        ]
        template = Template(
            id=new_template_id(),
            name=name,
            sections=_unique_ids(sections),
            owner_id=owner_id,
            version=1,
            created_at=now_iso(),
        )
        record = self.store.insert(template.to_record())
        logger.info("Imported template %s (%r) for owner %s", template.id, name, owner_id)
        return Template.from_record(record)
