"""FastAPI backend for the Report Templates tool.

Provides endpoints for template CRUD, name availability checks, setting
the default template per quiz, duplicate/export/import, content
validation and sanitizing, report rendering, Word previews, and image
uploads for the section editor.

The caller's user id arrives in the ``X-User-Id`` header. Without it only
global templates are visible.
"""

from __future__ import annotations

import logging
import re
import sys
from pathlib import Path
from typing import Any
from urllib.parse import quote

from fastapi import Depends, FastAPI, File, Header, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from app.errors import (
    InvalidTemplateError,
    MinimumSectionError,
    NoExpandedSectionError,
    NotFoundError,
    TemplateError,
    TemplatePermissionError,
    TransportError,
    UniquenessError,
    ValidationError,
)
from app.exporter import DocxRenderer
from app.images import upload_section_image
from app.render import (
    REPORT_VARIABLES,
    SAMPLE_RESPONSE,
    build_report_variables,
    prepare_render_payload,
)
from app.repository import TemplateRepository
from app.sanitizer import sanitize, validate
from app.schema import Section, Template

sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))
from shared.storage_client import ImageUploadError
from shared.supabase_client import SupabaseError

if not logging.getLogger().handlers:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

logger = logging.getLogger(__name__)

app = FastAPI(title="Report Templates API")

_STATUS_BY_ERROR: list[tuple[type[TemplateError], int]] = [
    (ValidationError, 422),
    (InvalidTemplateError, 422),
    (MinimumSectionError, 409),
    (UniquenessError, 409),
    (NoExpandedSectionError, 409),
    (NotFoundError, 404),
    (TemplatePermissionError, 403),
    (TransportError, 503),
]


@app.exception_handler(TemplateError)
def _template_error_handler(request: Request, exc: TemplateError) -> JSONResponse:
    status = next((code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 400)
    body: dict[str, Any] = {"detail": exc.message}
    if isinstance(exc, ValidationError):
        body["errors"] = exc.errors
    elif isinstance(exc, UniquenessError):
        body["field"] = "name"
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status, content=body)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

_repository: TemplateRepository | None = None


def get_repository() -> TemplateRepository:
    global _repository
    if _repository is None:
        _repository = TemplateRepository()
    return _repository


def get_owner_id(x_user_id: str | None = Header(default=None)) -> str | None:
    return x_user_id or None


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------

class SectionIn(BaseModel):
    """A section as sent by the editor. ``id`` is optional for new sections."""
    id: str | None = None
    title: str = ""
    content: str = ""

    def to_section(self) -> Section:
        return Section.from_dict(self.model_dump())


class TemplateCreateRequest(BaseModel):
    name: str
    sections: list[SectionIn]
    quiz_id: str | None = None
    is_default: bool = False


class TemplateUpdateRequest(BaseModel):
    """Partial update. ``quiz_id`` set to null moves the template to the global scope."""
    name: str | None = None
    sections: list[SectionIn] | None = None
    quiz_id: str | None = None
    is_default: bool | None = None


class SetDefaultRequest(BaseModel):
    quiz_id: str | None = None


class ContentRequest(BaseModel):
    content: str


class RenderRequest(BaseModel):
    response: dict[str, Any] = {}
    quiz_title: str = "Quiz"


def _template_out(t: Template) -> dict[str, Any]:
    return {
        "id": t.id,
        "name": t.name,
        "sections": [s.to_dict() for s in t.sections],
        "created_by": t.owner_id,
        "quiz_id": t.quiz_scope,
        "is_default": t.is_default,
        "version": t.version,
        "created_at": t.created_at,
    }


def _slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-") or "template"


def _attachment(name: str, pattern: str) -> str:
    """Content-Disposition for a file named after *name*.

    ``filename`` stays ASCII for header encoding; ``filename*`` keeps
    non-Latin names readable in browsers that support RFC 5987.
    """
    ascii_name = pattern.format(_slug(name))
    utf8_name = pattern.format(re.sub(r"[\W_]+", "-", name.lower()).strip("-") or "template")
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(utf8_name)}"


# ---------------------------------------------------------------------------
# Endpoints: templates
# ---------------------------------------------------------------------------

@app.get("/api/templates")
def list_templates(
    owner_id: str | None = Depends(get_owner_id),
    repo: TemplateRepository = Depends(get_repository),
) -> list[dict[str, Any]]:
    """List templates visible to the caller, newest first."""
    return [
        {
            "id": t.id,
            "name": t.name,
            "created_by": t.owner_id,
            "quiz_id": t.quiz_scope,
            "is_default": t.is_default,
            "version": t.version,
            "created_at": t.created_at,
            "section_count": len(t.sections),
        }
        for t in repo.list_visible(owner_id)
    ]


@app.get("/api/templates/name-available")
def name_available(
    name: str,
    excluding_id: str | None = None,
    owner_id: str | None = Depends(get_owner_id),
    repo: TemplateRepository = Depends(get_repository),
) -> dict[str, bool]:
    """Check a template name against everything visible to the caller."""
    return {"available": repo.is_name_available(name, owner_id, excluding_id)}


@app.post("/api/templates/import")
def import_template(
    data: dict[str, Any],
    owner_id: str | None = Depends(get_owner_id),
    repo: TemplateRepository = Depends(get_repository),
) -> dict[str, Any]:
    """Create a template from a previously exported JSON record."""
    return _template_out(repo.import_template(data, owner_id))


@app.get("/api/templates/{template_id}")
def get_template(
    template_id: str,
    owner_id: str | None = Depends(get_owner_id),
    repo: TemplateRepository = Depends(get_repository),
) -> dict[str, Any]:
    return _template_out(repo.get(template_id, owner_id))


@app.post("/api/templates")
def create_template(
    request: TemplateCreateRequest,
    owner_id: str | None = Depends(get_owner_id),
    repo: TemplateRepository = Depends(get_repository),
) -> dict[str, Any]:
    """Save a new template (version 1)."""
    template = repo.create(
        owner_id,
        request.name,
        [s.to_section() for s in request.sections],
        quiz_scope=request.quiz_id,
        is_default=request.is_default,
    )
    return _template_out(template)


@app.patch("/api/templates/{template_id}")
def update_template(
    template_id: str,
    request: TemplateUpdateRequest,
    owner_id: str | None = Depends(get_owner_id),
    repo: TemplateRepository = Depends(get_repository),
) -> dict[str, Any]:
    """Update name, sections, scope or default flag.

    Only name and section edits bump the version.
    """
    patch: dict[str, Any] = {}
    if request.name is not None:
        patch["name"] = request.name
    if request.sections is not None:
        patch["sections"] = [s.to_section() for s in request.sections]
    if "quiz_id" in request.model_fields_set:
        patch["quiz_scope"] = request.quiz_id
    if request.is_default is not None:
        patch["is_default"] = request.is_default
    return _template_out(repo.update(template_id, owner_id, **patch))


@app.post("/api/templates/{template_id}/default")
def set_default_template(
    template_id: str,
    request: SetDefaultRequest | None = None,
    owner_id: str | None = Depends(get_owner_id),
    repo: TemplateRepository = Depends(get_repository),
) -> dict[str, Any]:
    """Make this template the default for its quiz (or for ``quiz_id`` if given)."""
    if request is not None and "quiz_id" in request.model_fields_set:
        template = repo.set_default(template_id, owner_id, request.quiz_id)
    else:
        template = repo.set_default(template_id, owner_id)
    return _template_out(template)


@app.post("/api/templates/{template_id}/duplicate")
def duplicate_template(
    template_id: str,
    owner_id: str | None = Depends(get_owner_id),
    repo: TemplateRepository = Depends(get_repository),
) -> dict[str, Any]:
    return _template_out(repo.duplicate(template_id, owner_id))


@app.delete("/api/templates/{template_id}")
def delete_template(
    template_id: str,
    owner_id: str | None = Depends(get_owner_id),
    repo: TemplateRepository = Depends(get_repository),
) -> dict[str, Any]:
    repo.remove(template_id, owner_id)
    return {"deleted": True, "id": template_id}


@app.get("/api/templates/{template_id}/export")
def export_template(
    template_id: str,
    owner_id: str | None = Depends(get_owner_id),
    repo: TemplateRepository = Depends(get_repository),
) -> JSONResponse:
    record = repo.export_template(template_id, owner_id)
    return JSONResponse(
        content=record,
        headers={"Content-Disposition": _attachment(record["name"], "template-{}.json")},
    )


# ---------------------------------------------------------------------------
# Endpoints: content checks
# ---------------------------------------------------------------------------

@app.post("/api/content/validate")
def validate_content(request: ContentRequest) -> dict[str, Any]:
    """Report why a section's HTML would be rejected on save."""
    return validate(request.content).to_dict()


@app.post("/api/content/sanitize")
def sanitize_content(request: ContentRequest) -> dict[str, str]:
    return {"content": sanitize(request.content)}


@app.get("/api/variables")
def list_variables() -> dict[str, str]:
    """Placeholders available in report content, with descriptions."""
    return REPORT_VARIABLES


# ---------------------------------------------------------------------------
# Endpoints: rendering
# ---------------------------------------------------------------------------

def _finalized_sections(template: Template) -> list[Section]:
    # Legacy content may predate sanitizing on save
    return [Section(id=s.id, title=s.title, content=sanitize(s.content)) for s in template.sections]


@app.post("/api/templates/{template_id}/render")
def render_template(
    template_id: str,
    request: RenderRequest,
    owner_id: str | None = Depends(get_owner_id),
    repo: TemplateRepository = Depends(get_repository),
) -> dict[str, Any]:
    """Build the renderer payload for one quiz response."""
    template = repo.get(template_id, owner_id)
    variables = build_report_variables(request.response, request.quiz_title)
    return prepare_render_payload(_finalized_sections(template), variables).to_dict()


@app.get("/api/templates/{template_id}/preview")
def preview_template(
    template_id: str,
    owner_id: str | None = Depends(get_owner_id),
    repo: TemplateRepository = Depends(get_repository),
) -> Response:
    """Render the template with sample response data to a Word file."""
    template = repo.get(template_id, owner_id)
    variables = build_report_variables(SAMPLE_RESPONSE, "Sample Quiz")
    payload = prepare_render_payload(_finalized_sections(template), variables)
    renderer = DocxRenderer()
    content = renderer.render(payload, title=template.name)
    return Response(
        content=content,
        media_type=renderer.media_type,
        headers={"Content-Disposition": _attachment(template.name, "{}-preview." + renderer.extension)},
    )


# ---------------------------------------------------------------------------
# Endpoints: image uploads
# ---------------------------------------------------------------------------

@app.post("/api/images")
def upload_template_image(file: UploadFile = File(...)) -> dict[str, str]:
    """Upload an image for embedding in section content; returns its public URL."""
    data = file.file.read()
    try:
        url = upload_section_image(data, file.content_type or "")
    except ImageUploadError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SupabaseError as e:
        raise TransportError("Image upload failed. Please try again.", cause=e) from e
    return {"url": url}
