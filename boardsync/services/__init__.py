"""Services module"""

from .store import DocumentStore, TinyDocumentStore, Mutation, Where, OrderBy, SERVER_TIMESTAMP
from .moves import MoveEngine, CardMove, MoveStage
from .cascade import CascadeManager, CascadePlan
from .boards import BoardService, WipStatus
from .tree import BoardTree, ColumnNode, load_board_tree
from .sync import SyncCoordinator, SyncState, Notification

__all__ = [
    # Store
    "DocumentStore",
    "TinyDocumentStore",
    "Mutation",
    "Where",
    "OrderBy",
    "SERVER_TIMESTAMP",
    # Engine
    "MoveEngine",
    "CardMove",
    "MoveStage",
    "CascadeManager",
    "CascadePlan",
    "BoardService",
    "WipStatus",
    # View state
    "BoardTree",
    "ColumnNode",
    "load_board_tree",
    "SyncCoordinator",
    "SyncState",
    "Notification",
]
