"""Persistence backends for report template records.

Records use the ``report_templates`` schema: id, name, content (encoded
sections), created_by, quiz_id, is_default, version, created_at.

Two backends share one interface:

- LocalTemplateStore: one JSON file per template under data/templates/.
- SupabaseTemplateStore: the ``report_templates`` table over PostgREST.

Both implement ``set_default`` as a single operation so a scope never
ends up with two defaults.
"""

from __future__ import annotations

import json
import logging
import re
import sys
import threading
from pathlib import Path

from app.config import get_settings
from app.errors import TransportError

sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))
from shared import supabase_client
from shared.supabase_client import SupabaseError

logger = logging.getLogger(__name__)

# Template ids double as file names in the local store
_ID_RE = re.compile(r"^[\w\-]+$")


def visible_to(record: dict, owner_id: str | None) -> bool:
    created_by = record.get("created_by")
    return created_by is None or (owner_id is not None and created_by == owner_id)


# ---------------------------------------------------------------------------
# Local JSON files
# ---------------------------------------------------------------------------

class LocalTemplateStore:
    """File-backed store used for local development and tests."""

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self._lock = threading.RLock()

    def _path(self, template_id: str) -> Path:
        return self.data_dir / f"{template_id}.json"

    def _read(self, path: Path) -> dict | None:
        try:
            return json.loads(path.read_text())
        except (json.JSONDecodeError, OSError):
            logger.warning("Skipping unreadable template file %s", path.name)
            return None

    def _write(self, record: dict) -> None:
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            self._path(record["id"]).write_text(json.dumps(record, indent=2, ensure_ascii=False))
        except OSError as e:
            raise TransportError(f"Could not save template {record['id']}", cause=e) from e

    def _all(self) -> list[dict]:
        if not self.data_dir.exists():
            return []
        records = []
        for p in self.data_dir.glob("*.json"):
            record = self._read(p)
            if record is not None:
                records.append(record)
        return records

    def list_visible(self, owner_id: str | None) -> list[dict]:
        records = [r for r in self._all() if visible_to(r, owner_id)]
        records.sort(key=lambda r: r.get("created_at", ""), reverse=True)
        return records

    def get(self, template_id: str) -> dict | None:
        if not _ID_RE.match(template_id or ""):
            return None
        path = self._path(template_id)
        if not path.exists():
            return None
        return self._read(path)

    def insert(self, record: dict) -> dict:
        with self._lock:
            self._write(record)
        return record

    def update(self, template_id: str, fields: dict) -> dict | None:
        with self._lock:
            record = self.get(template_id)
            if record is None:
                return None
            record.update(fields)
            self._write(record)
            return record

    def delete(self, template_id: str) -> bool:
        with self._lock:
            if self.get(template_id) is None:
                return False
            path = self._path(template_id)
            try:
                path.unlink()
            except OSError as e:
                raise TransportError(f"Could not delete template {template_id}", cause=e) from e
            return True

    def set_default(self, template_id: str, quiz_id: str | None) -> dict | None:
        with self._lock:
            target = self.get(template_id)
            if target is None:
                return None
            for record in self._all():
                if record["id"] == template_id:
                    continue
                if record.get("quiz_id") == quiz_id and record.get("is_default"):
                    record["is_default"] = False
                    self._write(record)
            target["is_default"] = True
            target["quiz_id"] = quiz_id
            self._write(target)
            return target


# ---------------------------------------------------------------------------
# Supabase
# ---------------------------------------------------------------------------

class SupabaseTemplateStore:
    """Store backed by the ``report_templates`` table.

    Visibility is filtered in the query itself; row-level security on the
    table is still what enforces it.
    """

    def __init__(self, table: str = "report_templates"):
        self.table = table

    def _call(self, fn, *args):
        try:
            return fn(*args)
        except SupabaseError as e:
            raise TransportError("The template store is unavailable. Please try again.", cause=e) from e

    def list_visible(self, owner_id: str | None) -> list[dict]:
        if owner_id is None:
            params = {"created_by": "is.null"}
        else:
            params = {"or": f"(created_by.is.null,created_by.eq.{owner_id})"}
        params["order"] = "created_at.desc"
        return self._call(supabase_client.select, self.table, params)

    def get(self, template_id: str) -> dict | None:
        rows = self._call(supabase_client.select, self.table, {"id": f"eq.{template_id}"})
        return rows[0] if rows else None

    def insert(self, record: dict) -> dict:
        return self._call(supabase_client.insert, self.table, record)

    def update(self, template_id: str, fields: dict) -> dict | None:
        rows = self._call(supabase_client.update, self.table, {"id": f"eq.{template_id}"}, fields)
        return rows[0] if rows else None

    def delete(self, template_id: str) -> bool:
        rows = self._call(supabase_client.delete, self.table, {"id": f"eq.{template_id}"})
        return bool(rows)

    def set_default(self, template_id: str, quiz_id: str | None) -> dict | None:
        # One transaction server-side; see sql/report_templates.sql
        self._call(
            supabase_client.rpc,
            "set_default_report_template",
            {"p_template_id": template_id, "p_quiz_id": quiz_id},
        )
        return self.get(template_id)


def get_store():
    """Return the store selected by REPORT_TEMPLATES_BACKEND (default: local)."""
    s = get_settings()
    if s.backend == "supabase":
        return SupabaseTemplateStore(s.table)
    return LocalTemplateStore(s.data_dir)
