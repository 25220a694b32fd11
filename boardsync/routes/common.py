"""Shared route dependencies and payloads"""

from typing import List, Optional

from fastapi import Depends
from pydantic import BaseModel, Field

from ..config import settings
from ..models.board import Visibility
from ..services.store import DocumentStore, TinyDocumentStore
from ..services.sync import SyncCoordinator
from ..services.tree import BoardTree, ColumnNode
from ..services.visibility import CardFilters, apply_filters

_store: Optional[TinyDocumentStore] = None


def get_store() -> DocumentStore:
    """Process-wide document store, opened on first use"""
    global _store
    if _store is None:
        _store = TinyDocumentStore(settings.database_path, settings.max_batch_writes)
        _store.initialize()
    return _store


def close_store():
    global _store
    if _store is not None:
        _store.close()
        _store = None


class Viewer(BaseModel):
    """Identity of the caller; authentication happens upstream"""
    viewer_id: Optional[str] = None
    is_admin: bool = False


def get_viewer(viewer_id: Optional[str] = None, is_admin: bool = False) -> Viewer:
    return Viewer(viewer_id=viewer_id, is_admin=is_admin)


async def get_coordinator(
    board_id: str,
    store: DocumentStore = Depends(get_store),
    viewer: Viewer = Depends(get_viewer)
) -> SyncCoordinator:
    """Coordinator for one request, loaded with the viewer's tree"""
    coordinator = SyncCoordinator(store, board_id, viewer.viewer_id, viewer.is_admin)
    await coordinator.load()
    return coordinator


# =============================================================================
# Payloads
# =============================================================================

class ReorderRequest(BaseModel):
    source_index: int = Field(..., ge=0)
    dest_index: int = Field(..., ge=0)


class MoveRequest(BaseModel):
    dest_column_id: str
    dest_index: int = Field(..., ge=0)


class MemberAdd(BaseModel):
    member_id: str = Field(..., min_length=1)
    name: Optional[str] = None


class AssignRequest(BaseModel):
    assigned_to: List[str] = []
    names: List[str] = []
    visibility: Optional[Visibility] = None


class LabelCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=30)
    color: Optional[str] = None


class LabelUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=30)
    color: Optional[str] = None


# =============================================================================
# Responses
# =============================================================================

def _node_response(node: ColumnNode, filters: Optional[CardFilters]) -> dict:
    cards = list(node.cards)
    if filters is not None:
        cards = apply_filters(cards + list(node.archived_cards), filters)
    return {
        **node.column.model_dump(),
        "cards": [card.model_dump() for card in cards],
        "archived_cards": [card.model_dump() for card in node.archived_cards],
    }


def tree_response(tree: BoardTree, filters: Optional[CardFilters] = None) -> dict:
    """Board with its columns and the cards the viewer may see"""
    return {
        **tree.board.model_dump(),
        "columns": [_node_response(node, filters) for node in tree.columns],
        "archived_columns": [_node_response(node, filters) for node in tree.archived_columns],
    }
