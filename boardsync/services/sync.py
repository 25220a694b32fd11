"""
Sync Coordinator

Owns the in-memory tree of the open board view. Each structural operation
goes Idle -> Pending -> Committed | Failed:

- Pending: the optimistic tree (the intended outcome) is installed at once
  and the store write is dispatched.
- Committed: ranks and ids the store assigned are folded into the tree.
- Failed: the optimistic tree is discarded and replaced with a fresh
  authoritative read, and a notification is raised for the viewer.

Indexes passed in are positions in the list the viewer sees (private cards
of other members are hidden); they are translated to full-list ranks before
reaching the engine.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from ..config import Settings, get_settings
from ..errors import BoardSyncError, PartialCascadeError, StoreError, ValidationError
from . import ordering
from .cascade import CascadeManager
from .documents import list_cards
from .moves import MoveEngine
from .store import DocumentStore
from .tree import (
    BoardTree, ColumnNode,
    absolute_positions, apply_archive, apply_cascade_delete,
    apply_duplicate_card, apply_duplicate_column, apply_move, apply_ranking,
    apply_reorder, apply_restore, load_board_tree, move_rank, replace_card,
    replace_node,
)
from .visibility import filter_visible

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    COMMITTED = "committed"
    FAILED = "failed"


@dataclass
class Notification:
    """User-facing report of a failed operation"""
    action: str
    kind: str
    message: str
    partial: bool = False


class SyncCoordinator:
    """Single writer of one viewer's board tree"""

    def __init__(
        self,
        store: DocumentStore,
        board_id: str,
        viewer_id: Optional[str] = None,
        is_admin: bool = False,
        settings: Settings = None,
        notify: Optional[Callable[[Notification], None]] = None
    ):
        self.store = store
        self.board_id = board_id
        self.viewer_id = viewer_id
        self.is_admin = is_admin
        self.settings = settings or get_settings()
        self.notify = notify

        self.engine = MoveEngine(store)
        self.cascade = CascadeManager(store, self.settings)

        self.state = SyncState.IDLE
        self.notifications: List[Notification] = []
        self._tree: Optional[BoardTree] = None

    @property
    def tree(self) -> BoardTree:
        if self._tree is None:
            raise ValidationError("Board has not been loaded", {"board_id": self.board_id})
        return self._tree

    @property
    def is_pending(self) -> bool:
        return self.state == SyncState.PENDING

    async def load(self) -> BoardTree:
        """Replace the tree with an authoritative read"""
        self._tree = await load_board_tree(self.store, self.board_id, self.viewer_id, self.is_admin)
        return self._tree

    refresh = load

    # -------------------------------------------------------------------------
    # State machine
    # -------------------------------------------------------------------------

    async def _run(
        self,
        action: str,
        optimistic: BoardTree,
        remote: Callable[[], Awaitable[Any]],
        fold: Callable[[BoardTree, Any], BoardTree]
    ):
        previous = self.tree
        self._tree = optimistic
        self.state = SyncState.PENDING

        try:
            result = await remote()
        except BoardSyncError as e:
            self.state = SyncState.FAILED
            logger.warning(f"{action} on board {self.board_id} failed ({type(e).__name__}), refetching")
            await self._recover(previous)
            self._report(action, e)
            raise
        except Exception as e:
            self.state = SyncState.FAILED
            logger.exception(f"{action} on board {self.board_id} failed unexpectedly, refetching")
            error = StoreError(f"{action} failed: {e}", {"board_id": self.board_id})
            await self._recover(previous)
            self._report(action, error)
            raise error from e

        self._tree = fold(self._tree, result)
        self.state = SyncState.COMMITTED
        return result

    async def _recover(self, previous: BoardTree):
        try:
            await self.load()
        except BoardSyncError as e:
            logger.error(f"Refetch of board {self.board_id} failed, keeping last confirmed tree: {e.message}")
            self._tree = previous

    def _report(self, action: str, error: BoardSyncError):
        notification = Notification(
            action=action,
            kind=type(error).__name__,
            message=error.message,
            partial=isinstance(error, PartialCascadeError)
        )
        self.notifications.append(notification)
        if self.notify:
            self.notify(notification)

    # -------------------------------------------------------------------------
    # Reorder / move
    # -------------------------------------------------------------------------

    async def reorder(self, parent_id: str, source_index: int, dest_index: int) -> BoardTree:
        """Reorder columns (parent_id is the board) or cards of a column"""
        if source_index == dest_index:
            return self.tree

        source, dest = absolute_positions(self.tree, parent_id, source_index, dest_index)
        optimistic = apply_reorder(self.tree, parent_id, source_index, dest_index)

        if parent_id == self.board_id:
            async def remote():
                return await self.engine.reorder_columns(self.board_id, source, dest)
        else:
            async def remote():
                return await self.engine.reorder_cards(self.board_id, parent_id, source, dest)

        await self._run(
            "reorder", optimistic, remote,
            lambda tree, result: apply_ranking(tree, parent_id, result.items)
        )
        return self.tree

    async def move(self, card_id: str, source_column_id: str, dest_column_id: str, dest_index: int) -> BoardTree:
        if source_column_id == dest_column_id:
            source_index = self.tree.node(source_column_id).index_of(card_id)
            return await self.reorder(source_column_id, source_index, dest_index)

        rank = move_rank(self.tree, dest_column_id, dest_index)
        optimistic = apply_move(self.tree, card_id, source_column_id, dest_column_id, dest_index)

        async def remote():
            return await self.engine.move_card(self.board_id, card_id, source_column_id, dest_column_id, rank)

        def fold(tree, result):
            tree = apply_ranking(tree, source_column_id, result.source_cards)
            return apply_ranking(tree, dest_column_id, result.dest_cards, renamed={card_id: result.card.id})

        await self._run("move", optimistic, remote, fold)
        return self.tree

    # -------------------------------------------------------------------------
    # Cascades
    # -------------------------------------------------------------------------

    async def delete_column(self, column_id: str) -> BoardTree:
        optimistic = apply_cascade_delete(self.tree, column_id)

        async def remote():
            return await self.cascade.delete_column(self.board_id, column_id)

        await self._run(
            "delete column", optimistic, remote,
            lambda tree, result: apply_ranking(tree, self.board_id, result.remaining)
        )
        return self.tree

    async def delete_card(self, card_id: str) -> BoardTree:
        node, _ = self.tree.locate(card_id)
        column_id = node.column.id
        optimistic = apply_cascade_delete(self.tree, card_id)

        async def remote():
            return await self.cascade.delete_card(self.board_id, column_id, card_id)

        def fold(tree, result):
            if not tree.has_column(column_id):
                return tree
            return apply_ranking(tree, column_id, result.remaining)

        await self._run("delete card", optimistic, remote, fold)
        return self.tree

    async def duplicate_card(self, card_id: str, created_by: Optional[str] = None) -> BoardTree:
        node, _ = self.tree.locate(card_id)
        column_id = node.column.id
        placeholder = f"pending-{self.store.new_id()}"
        optimistic = apply_duplicate_card(self.tree, card_id, placeholder, self.settings.copy_suffix)

        async def remote():
            return await self.cascade.duplicate_card(self.board_id, column_id, card_id, created_by)

        await self._run(
            "duplicate card", optimistic, remote,
            lambda tree, card: replace_card(tree, placeholder, card)
        )
        return self.tree

    async def duplicate_column(self, column_id: str, created_by: Optional[str] = None) -> BoardTree:
        placeholder = f"pending-{self.store.new_id()}"
        optimistic = apply_duplicate_column(self.tree, column_id, placeholder, self.settings.copy_suffix)
        catalog = self.tree.board.labels

        async def remote():
            column = await self.cascade.duplicate_column(self.board_id, column_id, created_by)
            cards = filter_visible(
                await list_cards(self.store, self.board_id, column.id, catalog), self.viewer_id, self.is_admin
            )
            return ColumnNode(column=column, cards=tuple(ordering.active(cards)))

        await self._run(
            "duplicate column", optimistic, remote,
            lambda tree, node: replace_node(tree, placeholder, node)
        )
        return self.tree

    # -------------------------------------------------------------------------
    # Archive / restore
    # -------------------------------------------------------------------------

    async def archive_column(self, column_id: str, archived_by: Optional[str] = None) -> BoardTree:
        optimistic = apply_archive(self.tree, column_id, archived_by)

        async def remote():
            return await self.cascade.archive_column(self.board_id, column_id, archived_by)

        await self._run(
            "archive column", optimistic, remote,
            lambda tree, remaining: apply_ranking(tree, self.board_id, remaining)
        )
        return self.tree

    async def restore_column(self, column_id: str) -> BoardTree:
        optimistic = apply_restore(self.tree, column_id)

        async def remote():
            return await self.cascade.restore_column(self.board_id, column_id)

        await self._run(
            "restore column", optimistic, remote,
            lambda tree, column: apply_ranking(tree, self.board_id, [column])
        )
        return self.tree

    async def archive_card(self, card_id: str, archived_by: Optional[str] = None) -> BoardTree:
        node, _ = self.tree.locate(card_id)
        column_id = node.column.id
        optimistic = apply_archive(self.tree, card_id, archived_by)

        async def remote():
            return await self.cascade.archive_card(self.board_id, column_id, card_id, archived_by)

        def fold(tree, remaining):
            if not tree.has_column(column_id):
                return tree
            return apply_ranking(tree, column_id, remaining)

        await self._run("archive card", optimistic, remote, fold)
        return self.tree

    async def restore_card(self, card_id: str) -> BoardTree:
        node, _ = self.tree.locate(card_id)
        column_id = node.column.id
        optimistic = apply_restore(self.tree, card_id)

        async def remote():
            return await self.cascade.restore_card(self.board_id, column_id, card_id)

        def fold(tree, card):
            if not tree.has_column(column_id):
                return tree
            return apply_ranking(tree, column_id, [card])

        await self._run("restore card", optimistic, remote, fold)
        return self.tree
