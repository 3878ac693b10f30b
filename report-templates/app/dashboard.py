"""Report Templates -- Streamlit dashboard.

Collapsible section editor for quiz report templates. Staff can start from
the starter sections or an existing template, add/remove/duplicate/collapse
sections, insert uploaded images, check content against the sanitizer,
preview the report with sample data, and save, duplicate, export or
import templates. Works against the local store without the API server.
"""

from __future__ import annotations

import html as html_mod
import json
import logging
import sys
from pathlib import Path

import streamlit as st

from app.document import Document
from app.errors import (
    MinimumSectionError,
    NoExpandedSectionError,
    TemplateError,
    ValidationError,
)
from app.exporter import DOCX_MEDIA_TYPE, DocxRenderer
from app.images import upload_section_image
from app.render import (
    REPORT_VARIABLES,
    SAMPLE_RESPONSE,
    build_report_variables,
    find_placeholders,
    prepare_render_payload,
)
from app.repository import TemplateRepository
from app.sanitizer import sanitize, validate
from app.schema import Section

sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))
from shared.storage_client import ImageUploadError
from shared.supabase_client import SupabaseError

logger = logging.getLogger(__name__)

# -- Page config --------------------------------------------------------------

st.set_page_config(
    page_title="Report Templates",
    layout="wide",
    initial_sidebar_state="expanded",
)

# -- CSS ----------------------------------------------------------------------

st.markdown(
    """
<style>
#MainMenu, footer,
div[data-testid="stToolbar"] { display: none !important; }

.section-label {
    font-size: 0.8rem;
    font-weight: 600;
    text-transform: uppercase;
    letter-spacing: 0.05em;
    color: #5a6a85;
    margin-bottom: 0.4rem;
}
.saved-toast {
    font-size: 0.85rem;
    color: #2e7d32;
    padding: 0.3rem 0;
}
.report-preview {
    font-family: 'Times New Roman', serif;
    border: 1px solid #e0e4ea;
    border-radius: 6px;
    padding: 1.2rem 1.6rem;
    background: #fff;
}
</style>
""",
    unsafe_allow_html=True,
)


# -- Session state defaults ---------------------------------------------------

_DEFAULTS: dict = {
    "template_id": None,
    "inp_template_name": "",
    "inp_quiz_id": "",
    "inp_is_default": False,
    "pending_load": None,
    "last_saved_msg": "",
    "section_errors": {},
}
for k, v in _DEFAULTS.items():
    if k not in st.session_state:
        st.session_state[k] = v

if "document" not in st.session_state:
    st.session_state.document = Document.new()

repo = TemplateRepository()


# -- Helpers ------------------------------------------------------------------

def _owner_id() -> str | None:
    return st.session_state.get("inp_owner_id", "").strip() or None


def _doc() -> Document:
    return st.session_state.document


def _content_key(section_id: str) -> str:
    return f"content_{section_id}"


def _title_key(section_id: str) -> str:
    return f"title_{section_id}"


def _sync_widgets_to_doc() -> None:
    """Copy edited titles/content from widget state into the document."""
    doc = _doc()
    for ctrl in doc:
        tk, ck = _title_key(ctrl.id), _content_key(ctrl.id)
        if tk in st.session_state:
            doc.rename_section(ctrl.id, st.session_state[tk])
        if ck in st.session_state:
            doc.set_content(ctrl.id, st.session_state[ck])


def _clear_widget_keys() -> None:
    to_delete = [k for k in st.session_state if k.startswith(("content_", "title_"))]
    for k in to_delete:
        del st.session_state[k]


def _do_new() -> None:
    _clear_widget_keys()
    st.session_state.document = Document.new()
    st.session_state.template_id = None
    st.session_state.inp_template_name = ""
    st.session_state.inp_quiz_id = ""
    st.session_state.inp_is_default = False
    st.session_state.last_saved_msg = ""
    st.session_state.section_errors = {}


def _do_load(template_id: str) -> None:
    template = repo.get(template_id, _owner_id())
    _clear_widget_keys()
    st.session_state.document = Document(template.sections)
    st.session_state.template_id = template.id
    st.session_state.inp_template_name = template.name
    st.session_state.inp_quiz_id = template.quiz_scope or ""
    st.session_state.inp_is_default = template.is_default
    st.session_state.section_errors = {}


def _do_save() -> None:
    _sync_widgets_to_doc()
    name = st.session_state.get("inp_template_name", "")
    quiz_id = st.session_state.get("inp_quiz_id", "").strip() or None
    is_default = bool(st.session_state.get("inp_is_default"))
    sections = _doc().sections
    st.session_state.section_errors = {}

    if st.session_state.template_id:
        template = repo.update(
            st.session_state.template_id,
            _owner_id(),
            name=name,
            sections=sections,
            quiz_scope=quiz_id,
            is_default=is_default,
        )
    else:
        template = repo.create(_owner_id(), name, sections, quiz_scope=quiz_id, is_default=is_default)

    # Reload on the next run so the editor shows the sanitized content that
    # was stored; the settings widgets already exist in this one
    st.session_state.pending_load = template.id
    st.session_state.last_saved_msg = f"Saved {template.name} (v{template.version})"


def _run_action(fn, *args) -> bool:
    """Run a repository/document action and surface template errors inline."""
    try:
        fn(*args)
        return True
    except ValidationError as e:
        st.session_state.section_errors = e.errors
        st.error(e.message)
    except TemplateError as e:
        st.error(e.message)
    return False


def _preview_html() -> str:
    variables = build_report_variables(SAMPLE_RESPONSE, "Sample Quiz")
    sections = [
        Section(id=s.id, title=s.title, content=sanitize(s.content))
        for s in _doc().sections
    ]
    return prepare_render_payload(sections, variables).html


# A save queues a reload so widget keys are set before the widgets exist
if st.session_state.pending_load:
    _pending, st.session_state.pending_load = st.session_state.pending_load, None
    _run_action(_do_load, _pending)


# -- Sidebar: template library -------------------------------------------------

with st.sidebar:
    st.text_input("User ID", key="inp_owner_id", help="Leave blank to work with global templates only.")

    st.markdown('<div class="section-label">Templates</div>', unsafe_allow_html=True)
    if st.button("New Template", use_container_width=True):
        _do_new()
        st.rerun()

    try:
        templates = repo.list_visible(_owner_id())
    except TemplateError as e:
        templates = []
        st.error(e.message)
        if st.button("Retry"):
            st.rerun()

    if templates:
        names = {t.id: t.name for t in templates}
        labels = {
            t.id: f"{t.name}{' ★' if t.is_default else ''}{' (global)' if t.is_global else ''}"
            for t in templates
        }
        selected = st.selectbox(
            "Saved templates",
            options=list(labels.keys()),
            format_func=lambda tid: labels[tid],
            key="_selected_template",
        )
        lib_cols = st.columns(2)
        with lib_cols[0]:
            if st.button("Load", key="lib_load", use_container_width=True):
                if _run_action(_do_load, selected):
                    st.rerun()
            if st.button("Duplicate", use_container_width=True):
                if _run_action(repo.duplicate, selected, _owner_id()):
                    st.rerun()
        with lib_cols[1]:
            if st.button("Set Default", use_container_width=True):
                if _run_action(repo.set_default, selected, _owner_id()):
                    st.rerun()
            if st.button("Delete", use_container_width=True):
                if _run_action(repo.remove, selected, _owner_id()):
                    if st.session_state.template_id == selected:
                        _do_new()
                    st.rerun()

        try:
            export_data = json.dumps(repo.export_template(selected, _owner_id()), indent=2)
            st.download_button(
                "Export JSON",
                data=export_data,
                file_name=f"template-{names[selected].strip().lower().replace(' ', '-')}.json",
                mime="application/json",
                use_container_width=True,
            )
        except TemplateError as e:
            st.caption(e.message)
    else:
        st.caption("No saved templates yet.")

    uploaded = st.file_uploader("Import template", type=["json"], key="_import_file")
    if uploaded is not None and st.button("Import", use_container_width=True):
        try:
            data = json.loads(uploaded.getvalue().decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            st.error("Invalid template format")
        else:
            if _run_action(repo.import_template, data, _owner_id()):
                st.rerun()

    if st.session_state.last_saved_msg:
        st.markdown(
            f'<div class="saved-toast">{html_mod.escape(st.session_state.last_saved_msg)}</div>',
            unsafe_allow_html=True,
        )

    st.divider()
    st.markdown('<div class="section-label">Variables</div>', unsafe_allow_html=True)
    for var, desc in REPORT_VARIABLES.items():
        st.markdown(f"`{{{{{var}}}}}` {desc}")


# -- Template settings ---------------------------------------------------------

doc = _doc()

name_col, quiz_col, default_col, save_col = st.columns([3, 2, 1, 1])
with name_col:
    st.text_input("Template name", key="inp_template_name")
with quiz_col:
    st.text_input("Quiz ID", key="inp_quiz_id",
                  help="Leave blank for a template that applies to all quizzes.")
with default_col:
    st.markdown("<br>", unsafe_allow_html=True)
    st.checkbox("Default", key="inp_is_default")
with save_col:
    st.markdown("<br>", unsafe_allow_html=True)
    if st.button("Save", key="save_template", type="primary", use_container_width=True):
        if _run_action(_do_save):
            st.rerun()


# -- Main area ----------------------------------------------------------------

edit_col, right_col = st.columns([3, 2], gap="large")

with edit_col:
    bar = st.columns([2, 1, 1])
    with bar[0]:
        st.markdown('<div class="section-label">Report Sections</div>', unsafe_allow_html=True)
    with bar[1]:
        if st.button("Add Section", use_container_width=True):
            _sync_widgets_to_doc()
            doc.add_section()
            st.rerun()
    with bar[2]:
        label = "Collapse All" if doc.all_expanded else "Expand All"
        if st.button(label, use_container_width=True):
            doc.toggle_all_expand()
            st.rerun()

    for ctrl in list(doc):
        with st.expander(ctrl.title or "Untitled section", expanded=ctrl.expanded):
            st.text_input("Title", value=ctrl.title, key=_title_key(ctrl.id))
            st.text_area(
                "Content (HTML)",
                value=ctrl.content,
                height=180,
                key=_content_key(ctrl.id),
            )

            for err in st.session_state.section_errors.get(ctrl.id, []):
                st.error(err)

            unknown = [p for p in find_placeholders(ctrl.content) if p not in REPORT_VARIABLES]
            if unknown:
                st.caption("Unknown variables: " + ", ".join(unknown))

            act = st.columns(3)
            with act[0]:
                if st.button("Duplicate", key=f"dup_{ctrl.id}", use_container_width=True):
                    _sync_widgets_to_doc()
                    doc.duplicate_section(ctrl.id)
                    st.rerun()
            with act[1]:
                fold_label = "Collapse" if ctrl.expanded else "Expand"
                if st.button(fold_label, key=f"fold_{ctrl.id}", use_container_width=True):
                    doc.toggle_expand(ctrl.id)
                    st.rerun()
            with act[2]:
                if st.button("Delete", key=f"del_{ctrl.id}", use_container_width=True):
                    try:
                        doc.remove_section(ctrl.id)
                        st.session_state.pop(_content_key(ctrl.id), None)
                        st.session_state.pop(_title_key(ctrl.id), None)
                        st.rerun()
                    except MinimumSectionError as e:
                        st.error(e.message)

    # Image upload goes into the first expanded section
    st.markdown('<div class="section-label">Insert Image</div>', unsafe_allow_html=True)
    image = st.file_uploader("Image", type=["jpg", "jpeg", "png", "gif"], key="_image_file",
                             label_visibility="collapsed")
    if image is not None and st.button("Insert Image"):
        try:
            url = upload_section_image(image.getvalue(), image.type or "")
            _sync_widgets_to_doc()
            ctrl = doc.insert_image(url, alt=image.name)
            st.session_state.pop(_content_key(ctrl.id), None)
            st.rerun()
        except ImageUploadError as e:
            st.error(str(e))
        except NoExpandedSectionError as e:
            st.warning(e.message)
        except SupabaseError:
            logger.exception("Image upload failed")
            st.error("Image upload failed. Please try again.")


# -- Right column: checks, preview, export -------------------------------------

with right_col:
    st.markdown('<div class="section-label">Content Check</div>', unsafe_allow_html=True)
    problems = {c.title: validate(c.content).errors for c in doc}
    problems = {k: v for k, v in problems.items() if v}
    if problems:
        for title, errs in problems.items():
            st.warning(f"**{title}**: " + "; ".join(errs))
    else:
        st.success("All sections pass validation.")

    st.markdown('<div class="section-label">Preview (sample data)</div>', unsafe_allow_html=True)
    preview = _preview_html()
    st.markdown(f'<div class="report-preview">{preview}</div>', unsafe_allow_html=True)

    st.markdown("---")
    variables = build_report_variables(SAMPLE_RESPONSE, "Sample Quiz")
    payload = prepare_render_payload(
        [Section(id=s.id, title=s.title, content=sanitize(s.content)) for s in doc.sections],
        variables,
    )
    title = st.session_state.get("inp_template_name") or "Report"
    st.download_button(
        "Download preview .docx",
        data=DocxRenderer().render(payload, title=title),
        file_name=f"{title.replace(' ', '_')}_preview.docx",
        mime=DOCX_MEDIA_TYPE,
        use_container_width=True,
    )
