"""Tests for report-templates/app/repository.py and app/store.py.

Repository behavior runs against LocalTemplateStore in a temp directory.
The Supabase store is tested with the shared client mocked out.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent / "report-templates"))

import app.store as store_mod
from app.errors import (
    InvalidTemplateError,
    MinimumSectionError,
    NotFoundError,
    TemplatePermissionError,
    TransportError,
    UniquenessError,
    ValidationError,
)
from app.repository import TemplateRepository
from app.schema import Section
from app.store import LocalTemplateStore, SupabaseTemplateStore, visible_to

from shared.supabase_client import SupabaseError

OWNER = "user-1"
OTHER = "user-2"


@pytest.fixture()
def store(tmp_path):
    return LocalTemplateStore(tmp_path / "templates")


@pytest.fixture()
def repo(store):
    return TemplateRepository(store)


def _sections(*contents):
    return [Section(id="", title=f"S{i + 1}", content=c) for i, c in enumerate(contents)]


def _defaults(repo, owner=OWNER):
    return {t.name for t in repo.list_visible(owner) if t.is_default}


# ── Create / update (scenarios) ──────────────────────────────────────────


class TestCreateUpdate:
    def test_create_starts_at_version_one(self, repo):
        t = repo.create(OWNER, "Intro", [Section(id="", title="Intro", content="<p>hi</p>")])
        assert t.version == 1
        assert t.is_default is False
        assert t.owner_id == OWNER
        assert t.sections[0].id
        assert t.sections[0].content == "<p>hi</p>"

    def test_update_bumps_version(self, repo):
        t = repo.create(OWNER, "Intro", _sections("<p>hi</p>"))
        t2 = repo.update(t.id, OWNER, sections=_sections("<p>changed</p>"))
        assert t2.version == 2
        assert t2.sections[0].content == "<p>changed</p>"
        t3 = repo.update(t.id, OWNER, name="Intro v2")
        assert t3.version == 3
        assert repo.get(t.id, OWNER).version == 3

    def test_scope_and_default_changes_keep_version(self, repo):
        t = repo.create(OWNER, "Intro", _sections("<p>hi</p>"))
        t2 = repo.update(t.id, OWNER, is_default=True)
        assert t2.is_default is True
        assert t2.version == 1
        t3 = repo.update(t.id, OWNER, quiz_scope="quiz-1")
        assert t3.quiz_scope == "quiz-1"
        assert t3.version == 1
        t4 = repo.update(t.id, OWNER, is_default=False)
        assert t4.is_default is False
        assert repo.get(t.id, OWNER).version == 1

    def test_case_variant_name_rejected(self, repo):
        repo.create(OWNER, "Intro", _sections("<p>hi</p>"))
        with pytest.raises(UniquenessError):
            repo.create(OWNER, "intro", _sections("<p>x</p>"))
        with pytest.raises(UniquenessError):
            repo.create(OWNER, "  INTRO ", _sections("<p>x</p>"))

    def test_same_name_allowed_for_other_owner(self, repo):
        repo.create(OWNER, "Intro", _sections("<p>hi</p>"))
        t = repo.create(OTHER, "Intro", _sections("<p>hi</p>"))
        assert t.name == "Intro"

    def test_global_name_blocks_every_owner(self, repo):
        repo.create(None, "Standard", _sections("<p>hi</p>"))
        with pytest.raises(UniquenessError):
            repo.create(OWNER, "standard", _sections("<p>x</p>"))

    def test_rename_to_own_name_variant(self, repo):
        t = repo.create(OWNER, "Intro", _sections("<p>hi</p>"))
        assert repo.update(t.id, OWNER, name="INTRO").name == "INTRO"

    def test_rename_into_collision(self, repo):
        repo.create(OWNER, "Intro", _sections("<p>hi</p>"))
        t = repo.create(OWNER, "Other", _sections("<p>hi</p>"))
        with pytest.raises(UniquenessError):
            repo.update(t.id, OWNER, name="intro")
        assert repo.get(t.id, OWNER).version == 1

    def test_blank_name_rejected(self, repo):
        with pytest.raises(InvalidTemplateError):
            repo.create(OWNER, "   ", _sections("<p>hi</p>"))

    def test_content_sanitized_before_save(self, repo, store):
        t = repo.create(OWNER, "Styled", _sections('<p style="position: absolute">hi</p>'))
        assert t.sections[0].content == "<p>hi</p>"
        raw = json.loads(store.get(t.id)["content"])
        assert raw[0]["content"] == "<p>hi</p>"

    def test_invalid_content_blocks_save(self, repo):
        sections = [
            Section(id="good", title="A", content="<p>ok</p>"),
            Section(id="bad", title="B", content="<script>alert(1)</script>"),
        ]
        with pytest.raises(ValidationError) as exc_info:
            repo.create(OWNER, "Unsafe", sections)
        assert "bad" in exc_info.value.errors
        assert "good" not in exc_info.value.errors
        assert repo.list_visible(OWNER) == []

    def test_invalid_update_leaves_template_untouched(self, repo):
        t = repo.create(OWNER, "Intro", _sections("<p>hi</p>"))
        with pytest.raises(ValidationError):
            repo.update(t.id, OWNER, sections=_sections('<a href="javascript:x()">l</a>'))
        current = repo.get(t.id, OWNER)
        assert current.version == 1
        assert current.sections[0].content == "<p>hi</p>"

    def test_empty_sections_rejected(self, repo):
        with pytest.raises(MinimumSectionError):
            repo.create(OWNER, "Empty", [])
        t = repo.create(OWNER, "Intro", _sections("<p>hi</p>"))
        with pytest.raises(MinimumSectionError):
            repo.update(t.id, OWNER, sections=[])

    def test_duplicate_section_ids_fixed_on_save(self, repo):
        sections = [Section(id="x", title="A", content=""), Section(id="x", title="B", content="")]
        t = repo.create(OWNER, "Dupes", sections)
        assert len({s.id for s in t.sections}) == 2


# ── Access ───────────────────────────────────────────────────────────────


class TestAccess:
    def test_missing_template(self, repo):
        with pytest.raises(NotFoundError):
            repo.get("does-not-exist", OWNER)
        with pytest.raises(NotFoundError):
            repo.update("does-not-exist", OWNER, name="x")

    def test_other_owners_template(self, repo):
        t = repo.create(OWNER, "Mine", _sections("<p>hi</p>"))
        with pytest.raises(TemplatePermissionError):
            repo.get(t.id, OTHER)
        with pytest.raises(TemplatePermissionError):
            repo.update(t.id, OTHER, name="Theirs")
        with pytest.raises(TemplatePermissionError):
            repo.remove(t.id, OTHER)

    def test_anonymous_sees_only_global(self, repo):
        repo.create(None, "Global", _sections("<p>hi</p>"))
        repo.create(OWNER, "Mine", _sections("<p>hi</p>"))
        assert [t.name for t in repo.list_visible(None)] == ["Global"]

    def test_list_visible(self, repo):
        repo.create(None, "Global", _sections("<p>hi</p>"))
        repo.create(OWNER, "Mine", _sections("<p>hi</p>"))
        repo.create(OTHER, "Theirs", _sections("<p>hi</p>"))
        assert {t.name for t in repo.list_visible(OWNER)} == {"Global", "Mine"}

    def test_path_like_ids_not_found(self, repo):
        with pytest.raises(NotFoundError):
            repo.get("../../etc/passwd", OWNER)

    def test_visible_to(self):
        assert visible_to({"created_by": None}, None)
        assert visible_to({"created_by": None}, OWNER)
        assert visible_to({"created_by": OWNER}, OWNER)
        assert not visible_to({"created_by": OWNER}, None)
        assert not visible_to({"created_by": OWNER}, OTHER)


# ── Name availability ────────────────────────────────────────────────────


class TestNameAvailability:
    def test_available_then_taken_then_excluded(self, repo):
        assert repo.is_name_available("Intro", OWNER) is True
        t = repo.create(OWNER, "intro", _sections("<p>hi</p>"))
        assert repo.is_name_available("Intro", OWNER) is False
        assert repo.is_name_available("Intro", OWNER, excluding_id=t.id) is True

    def test_taken_by_global(self, repo):
        repo.create(None, "INTRO", _sections("<p>hi</p>"))
        assert repo.is_name_available("Intro", OWNER) is False

    def test_other_owner_does_not_count(self, repo):
        repo.create(OTHER, "Intro", _sections("<p>hi</p>"))
        assert repo.is_name_available("Intro", OWNER) is True


# ── Default template ─────────────────────────────────────────────────────


class TestSetDefault:
    def test_only_latest_default_in_scope(self, repo):
        a = repo.create(OWNER, "A", _sections("<p>a</p>"))
        b = repo.create(OWNER, "B", _sections("<p>b</p>"))
        repo.set_default(a.id, OWNER, None)
        repo.set_default(b.id, OWNER, None)
        assert repo.get(a.id, OWNER).is_default is False
        assert repo.get(b.id, OWNER).is_default is True

    def test_many_calls_leave_one_default(self, repo):
        ids = [repo.create(OWNER, f"T{i}", _sections("<p>x</p>")).id for i in range(4)]
        for tid in ids + ids[::-1] + [ids[2]]:
            repo.set_default(tid, OWNER)
        defaults = [t for t in repo.list_visible(OWNER) if t.is_default]
        assert [t.id for t in defaults] == [ids[2]]

    def test_scopes_are_independent(self, repo):
        a = repo.create(OWNER, "A", _sections("<p>a</p>"), quiz_scope="quiz-1")
        b = repo.create(OWNER, "B", _sections("<p>b</p>"), quiz_scope="quiz-2")
        g = repo.create(OWNER, "G", _sections("<p>g</p>"))
        for t in (a, b, g):
            repo.set_default(t.id, OWNER)
        assert _defaults(repo) == {"A", "B", "G"}

    def test_does_not_bump_version(self, repo):
        a = repo.create(OWNER, "A", _sections("<p>a</p>"))
        assert repo.set_default(a.id, OWNER).version == 1

    def test_explicit_scope_moves_template(self, repo):
        a = repo.create(OWNER, "A", _sections("<p>a</p>"))
        t = repo.set_default(a.id, OWNER, "quiz-9")
        assert t.quiz_scope == "quiz-9"
        assert t.is_default is True

    def test_create_as_default(self, repo):
        repo.create(OWNER, "A", _sections("<p>a</p>"), is_default=True)
        b = repo.create(OWNER, "B", _sections("<p>b</p>"), is_default=True)
        assert b.is_default is True
        assert _defaults(repo) == {"B"}

    def test_update_unsets_default(self, repo):
        a = repo.create(OWNER, "A", _sections("<p>a</p>"), is_default=True)
        assert repo.update(a.id, OWNER, is_default=False).is_default is False
        assert _defaults(repo) == set()

    def test_default_moving_scope_replaces_that_scopes_default(self, repo):
        a = repo.create(OWNER, "A", _sections("<p>a</p>"), quiz_scope="q1", is_default=True)
        repo.create(OWNER, "B", _sections("<p>b</p>"), quiz_scope="q2", is_default=True)
        moved = repo.update(a.id, OWNER, quiz_scope="q2")
        assert moved.is_default is True
        assert moved.quiz_scope == "q2"
        assert _defaults(repo) == {"A"}

    def test_removing_default_leaves_none(self, repo):
        a = repo.create(OWNER, "A", _sections("<p>a</p>"), is_default=True)
        repo.remove(a.id, OWNER)
        assert _defaults(repo) == set()


# ── Duplicate / remove ───────────────────────────────────────────────────


class TestDuplicateRemove:
    def test_duplicate(self, repo):
        a = repo.create(OWNER, "Intro", _sections("<p>a</p>"), quiz_scope="quiz-1", is_default=True)
        copy = repo.duplicate(a.id, OWNER)
        assert copy.name == "Intro (Copy)"
        assert copy.version == 1
        assert copy.is_default is False
        assert copy.quiz_scope == "quiz-1"
        assert copy.id != a.id
        assert [s.content for s in copy.sections] == ["<p>a</p>"]

    def test_duplicate_twice_numbers_copies(self, repo):
        a = repo.create(OWNER, "Intro", _sections("<p>a</p>"))
        repo.duplicate(a.id, OWNER)
        assert repo.duplicate(a.id, OWNER).name == "Intro (Copy 2)"

    def test_duplicate_global_becomes_owned(self, repo):
        g = repo.create(None, "Global", _sections("<p>a</p>"))
        assert repo.duplicate(g.id, OWNER).owner_id == OWNER

    def test_remove(self, repo):
        a = repo.create(OWNER, "A", _sections("<p>a</p>"))
        repo.remove(a.id, OWNER)
        with pytest.raises(NotFoundError):
            repo.get(a.id, OWNER)
        with pytest.raises(NotFoundError):
            repo.remove(a.id, OWNER)


# ── Export / import ──────────────────────────────────────────────────────


class TestExportImport:
    def test_export_is_persisted_record(self, repo):
        a = repo.create(OWNER, "A", _sections("<p>a</p>"))
        record = repo.export_template(a.id, OWNER)
        assert set(record) == {
            "id", "name", "content", "created_by", "quiz_id", "is_default", "version", "created_at",
        }
        assert json.loads(record["content"])[0]["content"] == "<p>a</p>"

    def test_import_exported_record(self, repo):
        a = repo.create(OWNER, "A", _sections("<p>a</p>"))
        record = repo.export_template(a.id, OWNER)
        imported = repo.import_template(record, OTHER)
        assert imported.name == "A"
        assert imported.owner_id == OTHER
        assert imported.id != a.id
        assert imported.version == 1

    def test_import_name_collision(self, repo):
        repo.create(OWNER, "Intro", _sections("<p>a</p>"))
        imported = repo.import_template({"name": "intro", "content": "<p>legacy</p>"}, OWNER)
        assert imported.name == "intro (Imported)"
        assert imported.sections[0].title == "Content"

    def test_import_sanitizes(self, repo):
        data = {"name": "X", "content": [{"id": "1", "title": "T", "content": "<p onclick='x()'>hi</p>"}]}
        assert repo.import_template(data, OWNER).sections[0].content == "<p>hi</p>"

    @pytest.mark.parametrize("data", [{}, {"name": "X"}, {"content": "[]"}, "not a dict"])
    def test_import_invalid(self, repo, data):
        with pytest.raises(InvalidTemplateError):
            repo.import_template(data, OWNER)


# ── Local store ──────────────────────────────────────────────────────────


class TestLocalStore:
    def test_unreadable_files_skipped(self, store):
        store.insert({"id": "ok", "name": "OK", "created_by": None})
        (store.data_dir / "broken.json").write_text("{not json")
        assert [r["id"] for r in store.list_visible(None)] == ["ok"]

    def test_missing_dir_lists_empty(self, tmp_path):
        assert LocalTemplateStore(tmp_path / "nowhere").list_visible(OWNER) == []

    def test_update_and_delete_missing(self, store):
        assert store.update("missing", {"name": "x"}) is None
        assert store.delete("missing") is False
        assert store.set_default("missing", None) is None


# ── Supabase store ───────────────────────────────────────────────────────


class TestSupabaseStore:
    @pytest.fixture()
    def sb(self):
        return SupabaseTemplateStore("report_templates")

    def test_list_visible_filters_in_query(self, sb):
        with patch.object(store_mod.supabase_client, "select", return_value=[]) as mock_select:
            sb.list_visible(OWNER)
        mock_select.assert_called_once_with(
            "report_templates",
            {"or": f"(created_by.is.null,created_by.eq.{OWNER})", "order": "created_at.desc"},
        )

    def test_list_visible_anonymous(self, sb):
        with patch.object(store_mod.supabase_client, "select", return_value=[]) as mock_select:
            sb.list_visible(None)
        mock_select.assert_called_once_with(
            "report_templates", {"created_by": "is.null", "order": "created_at.desc"},
        )

    def test_get(self, sb):
        row = {"id": "t1", "name": "A"}
        with patch.object(store_mod.supabase_client, "select", return_value=[row]) as mock_select:
            assert sb.get("t1") == row
        mock_select.assert_called_once_with("report_templates", {"id": "eq.t1"})

    def test_set_default_uses_rpc(self, sb):
        row = {"id": "t1", "is_default": True, "quiz_id": "q1"}
        with patch.object(store_mod.supabase_client, "rpc") as mock_rpc, \
             patch.object(store_mod.supabase_client, "select", return_value=[row]):
            assert sb.set_default("t1", "q1") == row
        mock_rpc.assert_called_once_with(
            "set_default_report_template", {"p_template_id": "t1", "p_quiz_id": "q1"},
        )

    def test_delete(self, sb):
        with patch.object(store_mod.supabase_client, "delete", return_value=[{"id": "t1"}]):
            assert sb.delete("t1") is True
        with patch.object(store_mod.supabase_client, "delete", return_value=[]):
            assert sb.delete("t1") is False

    def test_errors_become_transport_errors(self, sb):
        with patch.object(store_mod.supabase_client, "select", side_effect=SupabaseError("boom", 503)):
            with pytest.raises(TransportError) as exc_info:
                sb.list_visible(OWNER)
        assert isinstance(exc_info.value.cause, SupabaseError)

    def test_repository_over_supabase(self, sb):
        rows = [
            {"id": "g", "name": "Global", "content": "<p>legacy</p>", "created_by": None},
            {"id": "x", "name": "Leaked", "content": "[]", "created_by": OTHER},
        ]
        with patch.object(store_mod.supabase_client, "select", return_value=rows):
            templates = TemplateRepository(sb).list_visible(OWNER)
        assert [t.name for t in templates] == ["Global"]
        assert templates[0].sections[0].title == "Content"
