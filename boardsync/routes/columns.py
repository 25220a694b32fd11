"""Column routes"""

from typing import Optional

from fastapi import APIRouter, Depends

from ..models.board import ColumnCreate, ColumnUpdate
from ..services.boards import BoardService
from ..services.store import DocumentStore
from ..services.sync import SyncCoordinator
from .common import ReorderRequest, get_coordinator, get_store, tree_response

router = APIRouter()


@router.post("", status_code=201)
async def create_column(
    board_id: str,
    data: ColumnCreate,
    created_by: Optional[str] = None,
    store: DocumentStore = Depends(get_store)
):
    """Append a new column to the board"""
    return await BoardService(store).add_column(board_id, data, created_by)


@router.post("/reorder")
async def reorder_columns(
    data: ReorderRequest,
    coordinator: SyncCoordinator = Depends(get_coordinator)
):
    """Move the column at source_index to dest_index"""
    tree = await coordinator.reorder(coordinator.board_id, data.source_index, data.dest_index)
    return tree_response(tree)


@router.patch("/{column_id}")
async def update_column(
    board_id: str,
    column_id: str,
    data: ColumnUpdate,
    store: DocumentStore = Depends(get_store)
):
    """Update title or WIP limit"""
    return await BoardService(store).update_column(board_id, column_id, data)


@router.get("/{column_id}/wip")
async def check_wip_limit(board_id: str, column_id: str, store: DocumentStore = Depends(get_store)):
    status = await BoardService(store).check_wip_limit(board_id, column_id)
    return {"count": status.count, "limit": status.limit, "exceeded": status.exceeded}


@router.delete("/{column_id}")
async def delete_column(column_id: str, coordinator: SyncCoordinator = Depends(get_coordinator)):
    """Delete a column with all of its cards, comments and checklists"""
    tree = await coordinator.delete_column(column_id)
    return tree_response(tree)


@router.post("/{column_id}/duplicate")
async def duplicate_column(
    column_id: str,
    created_by: Optional[str] = None,
    coordinator: SyncCoordinator = Depends(get_coordinator)
):
    tree = await coordinator.duplicate_column(column_id, created_by)
    return tree_response(tree)


@router.post("/{column_id}/archive")
async def archive_column(
    column_id: str,
    archived_by: Optional[str] = None,
    coordinator: SyncCoordinator = Depends(get_coordinator)
):
    tree = await coordinator.archive_column(column_id, archived_by)
    return tree_response(tree)


@router.post("/{column_id}/restore")
async def restore_column(column_id: str, coordinator: SyncCoordinator = Depends(get_coordinator)):
    tree = await coordinator.restore_column(column_id)
    return tree_response(tree)
