"""Board routes"""

from typing import Optional

from fastapi import APIRouter, Depends

from ..models.board import BoardCreate, BoardUpdate
from ..services.boards import BoardService
from ..services.store import DocumentStore
from ..services.tree import load_board_tree
from ..services.visibility import CardFilters
from .common import (
    LabelCreate, LabelUpdate, MemberAdd, Viewer,
    get_store, get_viewer, tree_response,
)

router = APIRouter()


@router.get("")
async def list_boards(
    user_id: Optional[str] = None,
    favorites_only: bool = False,
    store: DocumentStore = Depends(get_store)
):
    """List boards, most recently updated first"""
    return await BoardService(store).list_boards(user_id, favorites_only)


@router.post("", status_code=201)
async def create_board(
    data: BoardCreate,
    created_by: Optional[str] = None,
    created_by_name: Optional[str] = None,
    store: DocumentStore = Depends(get_store)
):
    """Create a new board with its initial columns"""
    return await BoardService(store).create_board(data, created_by, created_by_name)


@router.get("/{board_id}")
async def get_board(
    board_id: str,
    filters: CardFilters = Depends(),
    store: DocumentStore = Depends(get_store),
    viewer: Viewer = Depends(get_viewer)
):
    """Get board with columns and the cards the viewer may see"""
    tree = await load_board_tree(store, board_id, viewer.viewer_id, viewer.is_admin)
    active_filters = filters if filters.model_dump(exclude_none=True) else None
    return tree_response(tree, active_filters)


@router.patch("/{board_id}")
async def update_board(board_id: str, data: BoardUpdate, store: DocumentStore = Depends(get_store)):
    return await BoardService(store).update_board(board_id, data)


@router.delete("/{board_id}")
async def delete_board(board_id: str, store: DocumentStore = Depends(get_store)):
    """Delete a board and everything under it"""
    result = await BoardService(store).delete_board(board_id)
    return {"deleted": result.deleted}


@router.post("/{board_id}/favorite")
async def toggle_favorite(board_id: str, store: DocumentStore = Depends(get_store)):
    return await BoardService(store).toggle_favorite(board_id)


# Members

@router.post("/{board_id}/members")
async def add_member(board_id: str, data: MemberAdd, store: DocumentStore = Depends(get_store)):
    return await BoardService(store).add_member(board_id, data.member_id, data.name)


@router.delete("/{board_id}/members/{member_id}")
async def remove_member(board_id: str, member_id: str, store: DocumentStore = Depends(get_store)):
    return await BoardService(store).remove_member(board_id, member_id)


# Labels

@router.get("/{board_id}/labels")
async def list_labels(board_id: str, store: DocumentStore = Depends(get_store)):
    board = await BoardService(store).get_board(board_id)
    return sorted(board.labels, key=lambda label: label.name)


@router.post("/{board_id}/labels", status_code=201)
async def create_label(board_id: str, data: LabelCreate, store: DocumentStore = Depends(get_store)):
    return await BoardService(store).create_label(board_id, data.name, data.color)


@router.patch("/{board_id}/labels/{label_id}")
async def update_label(board_id: str, label_id: str, data: LabelUpdate, store: DocumentStore = Depends(get_store)):
    return await BoardService(store).update_label(board_id, label_id, data.name, data.color)


@router.delete("/{board_id}/labels/{label_id}")
async def delete_label(board_id: str, label_id: str, store: DocumentStore = Depends(get_store)):
    """Delete a label and strip it from every card"""
    cards = await BoardService(store).delete_label(board_id, label_id)
    return {"deleted": True, "cards_updated": cards}

