"""
JSON action layer over the moderation workflow.

The caller's identity comes from the session user written by the identity
provider; ``current_actor`` is a plain dependency so tests and other front ends
can override it.
"""

from __future__ import annotations

import logging
import mimetypes
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response
from google.api_core.exceptions import GoogleAPIError
from pydantic import BaseModel, ConfigDict, Field
from starlette.middleware.sessions import SessionMiddleware

from netrika import workflow
from netrika.db import session_scope
from netrika.entity_registry import ENTITY_TYPE_POLITICIAN
from netrika.errors import (
    AuthorizationError,
    InvalidTransitionError,
    MissingAttributionError,
    MissingDataError,
    NotFoundError,
    PersistenceError,
    UnsupportedEntityTypeError,
    WorkflowResult,
)
from netrika.gcs_storage import blob_http_metadata, download_bytes
from netrika.identity import Actor, ensure_user, lookup_actor

logger = logging.getLogger(__name__)

MEDIA_CACHE_CONTROL_REVALIDATE = "public, max-age=0, must-revalidate"
MEDIA_CACHE_CONTROL_VERSIONED = "public, max-age=31536000, immutable"
MULTI_STATUS = 207

_KIND_STATUS_CODES = {
    NotFoundError.kind: 404,
    InvalidTransitionError.kind: 409,
    AuthorizationError.kind: 403,
    UnsupportedEntityTypeError.kind: 422,
    MissingDataError.kind: 422,
    MissingAttributionError.kind: 422,
    PersistenceError.kind: 500,
}


class ProposeEditBody(BaseModel):
    model_config = ConfigDict(extra="forbid")

    entity_type: str = ENTITY_TYPE_POLITICIAN
    entity_id: Optional[int] = None
    proposed_data: Dict[str, Any] = Field(default_factory=dict)
    change_reason: Optional[str] = None


class DenyEditBody(BaseModel):
    reason: Optional[str] = None


class DirectUpdateBody(BaseModel):
    model_config = ConfigDict(extra="forbid")

    field_name: str
    new_value: Any = None
    change_reason: Optional[str] = None


def current_actor(request: Request) -> Optional[Actor]:
    """
    Map the session user to an Actor. The role always comes from the users table,
    never from the session payload.
    """
    if "session" not in request.scope:
        return None
    user = request.session.get("user")
    claimed = Actor.from_claims(user)
    if claimed is None:
        return None
    with session_scope() as session:
        ensure_user(
            session,
            user_id=claimed.id,
            email=user.get("email"),
            full_name=user.get("name") or user.get("full_name"),
        )
        return lookup_actor(session, claimed.id)


def status_code_for(result: WorkflowResult, *, success_code: int = 200) -> int:
    if result.ok:
        return success_code
    if result.is_partial:
        return MULTI_STATUS
    return _KIND_STATUS_CODES.get(result.kind or "", 400)


def _respond(result: WorkflowResult, *, success_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code_for(result, success_code=success_code),
        content=jsonable_encoder(result.as_dict()),
    )


router = APIRouter(prefix="/api", tags=["moderation"])


@router.post("/edits")
def propose_edit(body: ProposeEditBody, actor: Optional[Actor] = Depends(current_actor)) -> JSONResponse:
    result = workflow.propose(
        body.entity_type,
        body.entity_id,
        body.proposed_data,
        body.change_reason,
        actor,
    )
    return _respond(result, success_code=201)


@router.get("/edits/pending")
def pending_edits(
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1, le=200),
    entity_type: Optional[str] = None,
    actor: Optional[Actor] = Depends(current_actor),
) -> JSONResponse:
    return _respond(workflow.list_pending(actor, entity_type=entity_type, page=page, page_size=page_size))


@router.get("/edits/mine")
def my_contributions(actor: Optional[Actor] = Depends(current_actor)) -> JSONResponse:
    return _respond(workflow.list_contributions(actor))


@router.get("/edits/{edit_id}")
def review_edit(edit_id: int, actor: Optional[Actor] = Depends(current_actor)) -> JSONResponse:
    return _respond(workflow.get_edit_review(edit_id, actor))


@router.post("/edits/{edit_id}/approve")
def approve_edit(edit_id: int, actor: Optional[Actor] = Depends(current_actor)) -> JSONResponse:
    return _respond(workflow.approve(edit_id, actor))


@router.post("/edits/{edit_id}/deny")
def deny_edit(
    edit_id: int,
    body: Optional[DenyEditBody] = Body(None),
    actor: Optional[Actor] = Depends(current_actor),
) -> JSONResponse:
    return _respond(workflow.deny(edit_id, actor, body.reason if body else None))


@router.get("/politicians/{politician_id}")
def get_politician(politician_id: int) -> JSONResponse:
    return _respond(workflow.get_entity(ENTITY_TYPE_POLITICIAN, politician_id))


@router.patch("/politicians/{politician_id}")
def update_politician(
    politician_id: int,
    body: DirectUpdateBody,
    actor: Optional[Actor] = Depends(current_actor),
) -> JSONResponse:
    result = workflow.direct_admin_update(
        politician_id,
        body.field_name,
        body.new_value,
        actor,
        body.change_reason,
    )
    return _respond(result)


@router.get("/politicians/{politician_id}/revisions")
def politician_revisions(politician_id: int) -> JSONResponse:
    return _respond(workflow.list_revisions(ENTITY_TYPE_POLITICIAN, politician_id))


@router.get("/politicians/{politician_id}/edits")
def politician_proposals(politician_id: int, actor: Optional[Actor] = Depends(current_actor)) -> JSONResponse:
    return _respond(workflow.list_entity_proposals(ENTITY_TYPE_POLITICIAN, politician_id, actor))


# --------------------------------------------------------------------------- media


def _quote_etag(raw_etag: str | None) -> str:
    value = str(raw_etag or "").strip().removeprefix("W/").strip().strip('"')
    return f'"{value}"' if value else ""


def _etag_matches(header_value: str | None, current_etag: str) -> bool:
    current = (current_etag or "").removeprefix("W/").strip().strip('"')
    if not header_value or not current:
        return False
    for token in str(header_value).split(","):
        candidate = token.strip()
        if candidate == "*":
            return True
        if candidate and candidate.removeprefix("W/").strip().strip('"') == current:
            return True
    return False


def _parse_http_date(header_value: str | None) -> datetime | None:
    if not header_value:
        return None
    try:
        parsed = parsedate_to_datetime(header_value)
    except (TypeError, ValueError, IndexError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _format_http_date(value: datetime | None) -> str:
    if value is None:
        return ""
    return format_datetime(value.astimezone(timezone.utc).replace(microsecond=0), usegmt=True)


def _is_not_modified(request: Request, *, etag: str, updated_at: datetime | None) -> bool:
    if_none_match = request.headers.get("if-none-match")
    if if_none_match:
        return _etag_matches(if_none_match, etag)
    if_modified_since = _parse_http_date(request.headers.get("if-modified-since"))
    if if_modified_since is None or updated_at is None:
        return False
    return updated_at.astimezone(timezone.utc).replace(microsecond=0) <= if_modified_since


def _fetch_payload(blob_name: str) -> bytes:
    try:
        return download_bytes(blob_name)
    except FileNotFoundError:
        raise HTTPException(status_code=404)
    except GoogleAPIError as exc:
        logger.error("Media fetch failed for %s: %s", blob_name, exc)
        raise HTTPException(status_code=500, detail="Media fetch failed")


media_router = APIRouter(tags=["media"])


@media_router.get("/media/{blob_path:path}")
def media_blob(blob_path: str, request: Request) -> Response:
    normalized = (blob_path or "").strip().lstrip("/")
    if not normalized:
        raise HTTPException(status_code=404)

    # `?v=` URLs are content-addressed, so skip the metadata round-trip and cache hard.
    if str(request.query_params.get("v", "")).strip():
        return Response(
            content=_fetch_payload(normalized),
            media_type=mimetypes.guess_type(normalized)[0] or "application/octet-stream",
            headers={"Cache-Control": MEDIA_CACHE_CONTROL_VERSIONED},
        )

    try:
        content_type, blob_etag, blob_updated_at = blob_http_metadata(normalized)
    except FileNotFoundError:
        raise HTTPException(status_code=404)
    except GoogleAPIError as exc:
        logger.error("Media metadata lookup failed for %s: %s", normalized, exc)
        raise HTTPException(status_code=500, detail="Media fetch failed")

    etag = _quote_etag(blob_etag)
    last_modified = _format_http_date(blob_updated_at)
    headers = {"Cache-Control": MEDIA_CACHE_CONTROL_REVALIDATE}
    if etag:
        headers["ETag"] = etag
    if last_modified:
        headers["Last-Modified"] = last_modified

    if _is_not_modified(request, etag=etag, updated_at=blob_updated_at):
        return Response(status_code=304, headers=headers)

    return Response(
        content=_fetch_payload(normalized),
        media_type=content_type or "application/octet-stream",
        headers=headers,
    )


def create_app(*, session_secret: str) -> FastAPI:
    app = FastAPI(title="Netrika moderation")
    app.add_middleware(SessionMiddleware, secret_key=session_secret, same_site="lax", https_only=False)
    app.include_router(router)
    app.include_router(media_router)
    return app
