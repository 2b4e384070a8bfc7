"""Translation API routes."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ...core.constants import DEFAULT_SOURCE_LANGUAGE, TASK_TYPE_CATALOG, TASK_TYPE_REPOSITORY
from ...core.db.models import TranslationTask
from ...core.exceptions import TaskNotFoundError
from ..deps import get_translation_manager, get_warehouse_manager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["translation"])


class TranslationRequest(BaseModel):
    warehouse_id: str = Field(..., min_length=1)
    target_language: str = Field(..., min_length=2)
    source_language: str = DEFAULT_SOURCE_LANGUAGE
    catalog_id: Optional[str] = Field(None, description="Translate one catalogue node instead of the repository")


def _task_to_dict(task: TranslationTask) -> dict:
    duration = None
    if task.started_at and task.completed_at:
        duration = (task.completed_at - task.started_at).total_seconds()
    return {
        "task_id": task.id,
        "warehouse_id": task.warehouse_id,
        "task_type": task.task_type,
        "target_id": task.target_id,
        "target_language": task.target_language,
        "source_language": task.source_language,
        "status": task.status,
        "progress": task.progress,
        "catalogs_translated": task.catalogs_translated,
        "files_translated": task.files_translated,
        "total_catalogs": task.total_catalogs,
        "total_files": task.total_files,
        "started_at": task.started_at.isoformat() if task.started_at else None,
        "completed_at": task.completed_at.isoformat() if task.completed_at else None,
        "duration_seconds": duration,
        "error_message": task.error_message,
    }


@router.get("/translations/languages")
async def supported_languages(tm=Depends(get_translation_manager)):
    return {"languages": tm.supported_languages()}


@router.post("/translations", status_code=202)
async def start_translation(
    body: TranslationRequest,
    tm=Depends(get_translation_manager),
    wm=Depends(get_warehouse_manager),
):
    if not wm.get_warehouse(body.warehouse_id):
        raise HTTPException(status_code=404, detail="Warehouse not found")

    task_type = TASK_TYPE_CATALOG if body.catalog_id else TASK_TYPE_REPOSITORY
    try:
        task_id = tm.create_task(
            body.warehouse_id,
            body.target_language,
            source_language=body.source_language,
            task_type=task_type,
            target_id=body.catalog_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    # No-op when the reused task is already running here
    tm.submit(task_id)
    return {"task_id": task_id, "status": tm.get_task(task_id).status}


@router.get("/translations/{task_id}")
async def get_translation(task_id: str, tm=Depends(get_translation_manager)):
    task = tm.get_task(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Translation task not found")
    return _task_to_dict(task)


@router.post("/translations/{task_id}/cancel")
async def cancel_translation(task_id: str, tm=Depends(get_translation_manager)):
    try:
        cancelled = tm.cancel_task(task_id)
    except TaskNotFoundError:
        raise HTTPException(status_code=404, detail="Translation task not found")
    if not cancelled:
        raise HTTPException(status_code=409, detail="Translation task already finished")
    return {"task_id": task_id, "status": "cancelled"}


@router.get("/warehouses/{warehouse_id}/translations")
async def list_translations(
    warehouse_id: str,
    target_language: Optional[str] = Query(None),
    tm=Depends(get_translation_manager),
):
    tasks = tm.list_tasks(warehouse_id, target_language=target_language)
    return {"tasks": [_task_to_dict(t) for t in tasks], "count": len(tasks)}


@router.get("/warehouses/{warehouse_id}/translations/{language}/status")
async def language_status(warehouse_id: str, language: str, tm=Depends(get_translation_manager)):
    if not tm.is_supported_language(language):
        raise HTTPException(status_code=400, detail=f"Unsupported language: {language}")
    return tm.get_language_status(warehouse_id, language).to_dict()
