"""Card routes - cards, comments and checklists of a column"""

from typing import Optional

from fastapi import APIRouter, Depends

from ..errors import NotFoundError
from ..models.board import (
    CardCreate, CardUpdate, ChecklistCreate, ChecklistItemCreate, CommentCreate,
)
from ..services.boards import BoardService
from ..services.store import DocumentStore
from ..services.sync import SyncCoordinator
from ..services.visibility import can_view
from .common import (
    AssignRequest, MoveRequest, ReorderRequest, Viewer,
    get_coordinator, get_store, get_viewer, tree_response,
)

router = APIRouter()


def _locate(coordinator: SyncCoordinator, column_id: str, card_id: str):
    """Card as the viewer sees it; hidden cards and wrong columns are not found"""
    node, card = coordinator.tree.locate(card_id)
    if node.column.id != column_id:
        raise NotFoundError("Card not found", {"card_id": card_id, "column_id": column_id})
    return card


async def _visible_card(store, board_id, column_id, card_id, viewer: Viewer):
    card = await BoardService(store).get_card(board_id, column_id, card_id)
    if not can_view(card, viewer.viewer_id, viewer.is_admin):
        raise NotFoundError("Card not found", {"card_id": card_id, "column_id": column_id})
    return card


@router.post("", status_code=201)
async def create_card(
    board_id: str,
    column_id: str,
    data: CardCreate,
    created_by: Optional[str] = None,
    store: DocumentStore = Depends(get_store)
):
    """Append a new card to the column"""
    return await BoardService(store).add_card(board_id, column_id, data, created_by)


@router.post("/reorder")
async def reorder_cards(
    column_id: str,
    data: ReorderRequest,
    coordinator: SyncCoordinator = Depends(get_coordinator)
):
    """Reorder cards; indexes address the list the viewer sees"""
    tree = await coordinator.reorder(column_id, data.source_index, data.dest_index)
    return tree_response(tree)


@router.get("/{card_id}")
async def get_card(
    board_id: str,
    column_id: str,
    card_id: str,
    store: DocumentStore = Depends(get_store),
    viewer: Viewer = Depends(get_viewer)
):
    return await _visible_card(store, board_id, column_id, card_id, viewer)


@router.patch("/{card_id}")
async def update_card(
    board_id: str,
    column_id: str,
    card_id: str,
    data: CardUpdate,
    store: DocumentStore = Depends(get_store),
    viewer: Viewer = Depends(get_viewer)
):
    await _visible_card(store, board_id, column_id, card_id, viewer)
    return await BoardService(store).update_card(board_id, column_id, card_id, data)


@router.put("/{card_id}/assignees")
async def assign_members(
    board_id: str,
    column_id: str,
    card_id: str,
    data: AssignRequest,
    store: DocumentStore = Depends(get_store),
    viewer: Viewer = Depends(get_viewer)
):
    await _visible_card(store, board_id, column_id, card_id, viewer)
    return await BoardService(store).assign_members(
        board_id, column_id, card_id, data.assigned_to, data.names, data.visibility
    )


@router.delete("/{card_id}")
async def delete_card(column_id: str, card_id: str, coordinator: SyncCoordinator = Depends(get_coordinator)):
    """Delete a card with its comments and checklists"""
    _locate(coordinator, column_id, card_id)
    tree = await coordinator.delete_card(card_id)
    return tree_response(tree)


@router.post("/{card_id}/move")
async def move_card(
    column_id: str,
    card_id: str,
    data: MoveRequest,
    coordinator: SyncCoordinator = Depends(get_coordinator)
):
    """Move a card to dest_index of another (or the same) column"""
    _locate(coordinator, column_id, card_id)
    tree = await coordinator.move(card_id, column_id, data.dest_column_id, data.dest_index)
    return tree_response(tree)


@router.post("/{card_id}/duplicate")
async def duplicate_card(
    column_id: str,
    card_id: str,
    created_by: Optional[str] = None,
    coordinator: SyncCoordinator = Depends(get_coordinator)
):
    _locate(coordinator, column_id, card_id)
    tree = await coordinator.duplicate_card(card_id, created_by)
    return tree_response(tree)


@router.post("/{card_id}/archive")
async def archive_card(
    column_id: str,
    card_id: str,
    archived_by: Optional[str] = None,
    coordinator: SyncCoordinator = Depends(get_coordinator)
):
    _locate(coordinator, column_id, card_id)
    tree = await coordinator.archive_card(card_id, archived_by)
    return tree_response(tree)


@router.post("/{card_id}/restore")
async def restore_card(column_id: str, card_id: str, coordinator: SyncCoordinator = Depends(get_coordinator)):
    _locate(coordinator, column_id, card_id)
    tree = await coordinator.restore_card(card_id)
    return tree_response(tree)


# Comments

@router.get("/{card_id}/comments")
async def list_comments(
    board_id: str,
    column_id: str,
    card_id: str,
    store: DocumentStore = Depends(get_store),
    viewer: Viewer = Depends(get_viewer)
):
    """List comments, oldest first"""
    await _visible_card(store, board_id, column_id, card_id, viewer)
    return await BoardService(store).list_comments(board_id, column_id, card_id)


@router.post("/{card_id}/comments", status_code=201)
async def create_comment(
    board_id: str,
    column_id: str,
    card_id: str,
    data: CommentCreate,
    store: DocumentStore = Depends(get_store),
    viewer: Viewer = Depends(get_viewer)
):
    await _visible_card(store, board_id, column_id, card_id, viewer)
    return await BoardService(store).add_comment(board_id, column_id, card_id, data)


# Checklists

@router.post("/{card_id}/checklists", status_code=201)
async def create_checklist(
    board_id: str,
    column_id: str,
    card_id: str,
    data: ChecklistCreate,
    store: DocumentStore = Depends(get_store),
    viewer: Viewer = Depends(get_viewer)
):
    await _visible_card(store, board_id, column_id, card_id, viewer)
    return await BoardService(store).add_checklist(board_id, column_id, card_id, data)


@router.post("/{card_id}/checklists/{checklist_id}/items", status_code=201)
async def create_checklist_item(
    board_id: str,
    column_id: str,
    card_id: str,
    checklist_id: str,
    data: ChecklistItemCreate,
    store: DocumentStore = Depends(get_store),
    viewer: Viewer = Depends(get_viewer)
):
    await _visible_card(store, board_id, column_id, card_id, viewer)
    return await BoardService(store).add_checklist_item(board_id, column_id, card_id, checklist_id, data)


@router.post("/{card_id}/checklists/{checklist_id}/items/{item_id}/toggle")
async def toggle_checklist_item(
    board_id: str,
    column_id: str,
    card_id: str,
    checklist_id: str,
    item_id: str,
    store: DocumentStore = Depends(get_store),
    viewer: Viewer = Depends(get_viewer)
):
    await _visible_card(store, board_id, column_id, card_id, viewer)
    return await BoardService(store).toggle_checklist_item(board_id, column_id, card_id, checklist_id, item_id)


@router.delete("/{card_id}/checklists/{checklist_id}")
async def delete_checklist(
    board_id: str,
    column_id: str,
    card_id: str,
    checklist_id: str,
    store: DocumentStore = Depends(get_store),
    viewer: Viewer = Depends(get_viewer)
):
    await _visible_card(store, board_id, column_id, card_id, viewer)
    progress = await BoardService(store).delete_checklist(board_id, column_id, card_id, checklist_id)
    return {"deleted": True, "checklist_progress": progress}
