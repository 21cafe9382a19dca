"""HTTP API routes for note organization, history and revert."""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from ...models.entity import Entity, FileTreeResponse, NoteCreate
from ...models.events import OrganizationState
from ...models.history import HistoryListResponse, RevertPreview, RevertResult
from ...models.organization import (
    ApplyRequest,
    ApplyResult,
    OrganizeReport,
    OrganizeRequest,
    RoutingSuggestion,
)
from ...services.file_tree import serialize_tree
from ...services.organizer import OrganizationService, get_organization_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/organizer", tags=["organizer"])


def get_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Return the caller's user ID; defaults to 'local-dev' without a header."""
    return x_user_id or "local-dev"


@router.post("/notes", response_model=Entity, status_code=201)
async def create_note(
    create: NoteCreate,
    user_id: str = Depends(get_user_id),
    service: OrganizationService = Depends(get_organization_service),
):
    """Create an unorganized note at the root."""
    return await service.create_note(
        user_id, create.title, create.body, rules=create.organization_rules
    )


@router.get("/notes/{note_id}", response_model=Entity)
async def get_note(
    note_id: str,
    user_id: str = Depends(get_user_id),
    service: OrganizationService = Depends(get_organization_service),
):
    note = await service.store.get(user_id, note_id)
    if note is None:
        raise HTTPException(status_code=404, detail=f"Note {note_id} not found")
    return note


@router.put("/notes/{note_id}/rules", response_model=Entity)
async def set_rules(
    note_id: str,
    request: OrganizeRequest,
    user_id: str = Depends(get_user_id),
    service: OrganizationService = Depends(get_organization_service),
):
    """Set the file's organization rules; blank rules clear them."""
    return await service.set_rules(user_id, note_id, request.rules)


@router.post("/notes/{note_id}/organize", response_model=OrganizeReport)
async def organize_note(
    note_id: str,
    request: Optional[OrganizeRequest] = None,
    user_id: str = Depends(get_user_id),
    service: OrganizationService = Depends(get_organization_service),
):
    """
    Route the note's unorganized blocks into destination files.

    Always returns a report; chunks that failed are listed under `failed`.
    """
    rules = request.rules if request else None
    return await service.organize_note(user_id, note_id, rules=rules)


@router.post("/notes/{note_id}/rewrite", response_model=Entity)
async def rewrite_note(
    note_id: str,
    request: Optional[OrganizeRequest] = None,
    user_id: str = Depends(get_user_id),
    service: OrganizationService = Depends(get_organization_service),
):
    """Rewrite the note in place; the previous version can be restored from history."""
    rules = request.rules if request else None
    return await service.rewrite_note(user_id, note_id, rules=rules)


@router.get("/notes/{note_id}/suggestions", response_model=List[RoutingSuggestion])
async def suggest_destinations(
    note_id: str,
    user_id: str = Depends(get_user_id),
    service: OrganizationService = Depends(get_organization_service),
):
    return await service.suggest_destinations(user_id, note_id)


@router.post("/apply", response_model=ApplyResult)
async def apply_chunks(
    request: ApplyRequest,
    user_id: str = Depends(get_user_id),
    service: OrganizationService = Depends(get_organization_service),
):
    """Apply explicit chunks without routing."""
    return await service.apply_chunks(user_id, request.chunks)


@router.get("/tree", response_model=FileTreeResponse)
async def get_tree(
    user_id: str = Depends(get_user_id),
    service: OrganizationService = Depends(get_organization_service),
):
    nodes = await service.get_tree(user_id)
    return FileTreeResponse(nodes=nodes, serialized=serialize_tree(nodes))


@router.get("/state", response_model=OrganizationState)
async def get_state(
    user_id: str = Depends(get_user_id),
    service: OrganizationService = Depends(get_organization_service),
):
    return service.session(user_id).cache.get_state()


@router.get("/history", response_model=HistoryListResponse)
async def list_history(
    user_id: str = Depends(get_user_id),
    service: OrganizationService = Depends(get_organization_service),
):
    items = await service.list_history(user_id)
    return HistoryListResponse(items=items, total=len(items))


@router.get("/history/{item_id}/preview", response_model=RevertPreview)
async def preview_revert(
    item_id: str,
    user_id: str = Depends(get_user_id),
    service: OrganizationService = Depends(get_organization_service),
):
    return await service.preview_revert(user_id, item_id)


@router.post("/history/{item_id}/revert", response_model=RevertResult)
async def revert_item(
    item_id: str,
    user_id: str = Depends(get_user_id),
    service: OrganizationService = Depends(get_organization_service),
):
    result = await service.revert(user_id, item_id)
    logger.info(f"Revert of {item_id} for {user_id}: {result.status}")
    return result
