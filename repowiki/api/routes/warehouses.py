"""Warehouse API routes."""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ...core.constants import WAREHOUSE_COMPLETED, WAREHOUSE_TYPE_GIT
from ...core.exceptions import UnsupportedWarehouseTypeError
from ..deps import get_incremental_worker, get_warehouse_manager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["warehouses"])


class WarehouseCreate(BaseModel):
    address: str = Field(..., min_length=1, description="Git URL or local directory")
    type: str = Field(WAREHOUSE_TYPE_GIT, description="git | file")
    branch: str = ""
    description: str = ""
    git_username: Optional[str] = None
    git_password: Optional[str] = None
    enable_sync: bool = True


def _require_warehouse(wm, warehouse_id: str) -> dict:
    warehouse = wm.get_warehouse(warehouse_id)
    if not warehouse:
        raise HTTPException(status_code=404, detail="Warehouse not found")
    return warehouse


@router.post("/warehouses", status_code=201)
async def submit_warehouse(body: WarehouseCreate, wm=Depends(get_warehouse_manager)):
    try:
        warehouse = wm.create_warehouse(
            address=body.address,
            type=body.type,
            branch=body.branch,
            description=body.description,
            git_username=body.git_username,
            git_password=body.git_password,
            enable_sync=body.enable_sync,
        )
    except UnsupportedWarehouseTypeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return warehouse


@router.get("/warehouses")
async def list_warehouses(status: Optional[str] = Query(None), wm=Depends(get_warehouse_manager)):
    warehouses = wm.list_warehouses(status=status)
    return {"warehouses": warehouses, "count": len(warehouses)}


@router.get("/warehouses/{warehouse_id}")
async def get_warehouse(warehouse_id: str, wm=Depends(get_warehouse_manager)):
    return _require_warehouse(wm, warehouse_id)


@router.get("/warehouses/{warehouse_id}/catalogue")
async def get_catalogue(
    warehouse_id: str,
    language: Optional[str] = Query(None),
    wm=Depends(get_warehouse_manager),
):
    _require_warehouse(wm, warehouse_id)
    return {"items": wm.get_catalogue(warehouse_id, language=language)}


@router.get("/warehouses/{warehouse_id}/catalogue/{catalog_id}/page")
async def get_page(
    warehouse_id: str,
    catalog_id: str,
    language: Optional[str] = Query(None),
    wm=Depends(get_warehouse_manager),
):
    _require_warehouse(wm, warehouse_id)
    page = wm.get_page(warehouse_id, catalog_id, language=language)
    if page is None:
        raise HTTPException(status_code=404, detail="Page not generated yet")
    return page


@router.get("/warehouses/{warehouse_id}/changelog")
async def get_changelog(
    warehouse_id: str,
    limit: int = Query(50, ge=1, le=500),
    wm=Depends(get_warehouse_manager),
):
    _require_warehouse(wm, warehouse_id)
    entries = wm.get_changelog(warehouse_id, limit=limit)
    return {"entries": entries, "count": len(entries)}


@router.get("/warehouses/{warehouse_id}/sync-records")
async def get_sync_records(
    warehouse_id: str,
    limit: int = Query(20, ge=1, le=200),
    wm=Depends(get_warehouse_manager),
):
    _require_warehouse(wm, warehouse_id)
    records = wm.list_sync_records(warehouse_id, limit=limit)
    return {"records": records, "count": len(records)}


@router.post("/warehouses/{warehouse_id}/sync", status_code=202)
async def trigger_sync(
    warehouse_id: str,
    background_tasks: BackgroundTasks,
    wm=Depends(get_warehouse_manager),
    worker=Depends(get_incremental_worker),
):
    warehouse = _require_warehouse(wm, warehouse_id)
    if warehouse["type"] != WAREHOUSE_TYPE_GIT:
        raise HTTPException(status_code=400, detail="Only git warehouses can be synced")
    if warehouse["status"] != WAREHOUSE_COMPLETED:
        raise HTTPException(status_code=400, detail="Warehouse has not completed ingestion")
    if wm.has_sync_in_progress(warehouse_id):
        raise HTTPException(status_code=409, detail="Sync already in progress")

    background_tasks.add_task(worker.sync_now, warehouse_id)
    logger.info(f"Manual sync queued for warehouse {warehouse_id}")
    return {"warehouse_id": warehouse_id, "status": "accepted"}


@router.get("/warehouses/{warehouse_id}/minimap")
async def get_minimap(warehouse_id: str, wm=Depends(get_warehouse_manager)):
    _require_warehouse(wm, warehouse_id)
    minimap = wm.get_minimap(warehouse_id)
    if minimap is None:
        raise HTTPException(status_code=404, detail="Knowledge map not generated yet")
    return minimap
