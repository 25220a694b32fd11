"""
In-memory board tree

The tree is what one viewer sees of a board: active columns in rank order,
each holding the viewer-visible active cards, plus the archived columns and
cards. It is immutable; every transition below returns a new tree, leaving
the previous one intact for rollback.

Card `order` values in the tree are the card's rank in the full column, so
indexes a viewer addresses in the filtered list can be translated back to
ranks the store understands.
"""

from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..errors import NotFoundError, ValidationError
from ..models.board import Board, Card, Column
from . import ordering
from .documents import list_cards, list_columns, load_board
from .store import DocumentStore
from .visibility import filter_visible


@dataclass(frozen=True)
class ColumnNode:
    column: Column
    cards: Tuple[Card, ...] = ()
    archived_cards: Tuple[Card, ...] = ()

    def index_of(self, card_id: str) -> int:
        for index, card in enumerate(self.cards):
            if card.id == card_id:
                return index
        raise NotFoundError("Card not found", {"card_id": card_id, "column_id": self.column.id})


@dataclass(frozen=True)
class BoardTree:
    board: Board
    columns: Tuple[ColumnNode, ...] = ()
    archived_columns: Tuple[ColumnNode, ...] = ()

    def node(self, column_id: str) -> ColumnNode:
        for node in self.columns:
            if node.column.id == column_id:
                return node
        raise NotFoundError("Column not found", {"column_id": column_id})

    def locate(self, card_id: str) -> Tuple[ColumnNode, Card]:
        """Column node and card for a card id, archived cards included"""
        for node in self.columns + self.archived_columns:
            for card in node.cards + node.archived_cards:
                if card.id == card_id:
                    return node, card
        raise NotFoundError("Card not found", {"card_id": card_id})

    def has_column(self, column_id: str) -> bool:
        return any(node.column.id == column_id for node in self.columns)

    def card_ids(self) -> List[str]:
        return [card.id for node in self.columns for card in node.cards]


async def load_board_tree(
    store: DocumentStore,
    board_id: str,
    viewer_id: Optional[str] = None,
    is_admin: bool = False
) -> BoardTree:
    """Authoritative read of a board as seen by one viewer"""
    board = await load_board(store, board_id)
    active, archived = [], []
    for column in await list_columns(store, board_id):
        cards = filter_visible(
            await list_cards(store, board_id, column.id, board.labels), viewer_id, is_admin
        )
        node = ColumnNode(
            column=column,
            cards=tuple(ordering.active(cards)),
            archived_cards=tuple(card for card in cards if card.archived)
        )
        (archived if column.archived else active).append(node)
    return BoardTree(board=board, columns=tuple(active), archived_columns=tuple(archived))


# =============================================================================
# Helpers
# =============================================================================

def _with_order(item, order: int):
    return item if item.order == order else item.model_copy(update={"order": order})


def _reinsert_rank(order: int, source: int, dest: int) -> int:
    """Rank of an item after the item ranked `source` moves to rank `dest`"""
    if order == source:
        return dest
    if source < dest and source < order <= dest:
        return order - 1
    if dest < source and dest <= order < source:
        return order + 1
    return order


def _close_gap(items: Iterable, removed_order: int) -> list:
    return [_with_order(item, item.order - 1) if item.order > removed_order else item for item in items]


def _replace_node(tree: BoardTree, node: ColumnNode) -> BoardTree:
    columns = tuple(node if n.column.id == node.column.id else n for n in tree.columns)
    return replace(tree, columns=columns)


def _sorted_nodes(nodes: Iterable[ColumnNode]) -> Tuple[ColumnNode, ...]:
    return tuple(sorted(nodes, key=lambda n: ordering.rank_key(n.column)))


def _siblings(tree: BoardTree, parent_id: str) -> list:
    if parent_id == tree.board.id:
        return [node.column for node in tree.columns]
    return list(tree.node(parent_id).cards)


def absolute_positions(tree: BoardTree, parent_id: str, source_index: int, dest_index: int) -> Tuple[int, int]:
    """Translate a reorder in the viewer's list into ranks of the full list"""
    items = _siblings(tree, parent_id)
    ordering.reinsert(items, source_index, dest_index)
    moved = items[source_index]
    return moved.order, ordering.absolute_index(items, dest_index, moved)


def move_rank(tree: BoardTree, dest_column_id: str, dest_index: int) -> int:
    """Rank in the full destination column for a card dropped at dest_index"""
    if dest_index < 0:
        raise ValidationError("Destination index must not be negative", {"field": "dest_index"})
    return ordering.absolute_index(tree.node(dest_column_id).cards, dest_index)


# =============================================================================
# Transitions
# =============================================================================

def apply_reorder(tree: BoardTree, parent_id: str, source_index: int, dest_index: int) -> BoardTree:
    """Same-list reorder; parent_id is the board (columns) or a column (cards)"""
    if source_index == dest_index:
        return tree
    source, dest = absolute_positions(tree, parent_id, source_index, dest_index)

    if parent_id == tree.board.id:
        nodes = [
            replace(n, column=_with_order(n.column, _reinsert_rank(n.column.order, source, dest)))
            for n in tree.columns
        ]
        return replace(tree, columns=_sorted_nodes(nodes))

    node = tree.node(parent_id)
    cards = [_with_order(card, _reinsert_rank(card.order, source, dest)) for card in node.cards]
    return _replace_node(tree, replace(node, cards=tuple(sorted(cards, key=ordering.rank_key))))


def apply_move(
    tree: BoardTree,
    card_id: str,
    source_column_id: str,
    dest_column_id: str,
    dest_index: int
) -> BoardTree:
    """Move a card to dest_index of another column (or reorder within one)"""
    source = tree.node(source_column_id)
    if source_column_id == dest_column_id:
        return apply_reorder(tree, source_column_id, source.index_of(card_id), dest_index)

    card = source.cards[source.index_of(card_id)]
    dest = tree.node(dest_column_id)
    rank = move_rank(tree, dest_column_id, dest_index)

    remaining = _close_gap((c for c in source.cards if c.id != card_id), card.order)
    shifted = [_with_order(c, c.order + 1) if c.order >= rank else c for c in dest.cards]
    shifted.append(card.model_copy(update={"column_id": dest_column_id, "order": rank}))

    tree = _replace_node(tree, replace(source, cards=tuple(remaining)))
    return _replace_node(tree, replace(dest, cards=tuple(sorted(shifted, key=ordering.rank_key))))


def apply_cascade_delete(tree: BoardTree, target_id: str) -> BoardTree:
    """Remove a column or a card (with everything under it) from the tree"""
    if tree.has_column(target_id):
        removed = tree.node(target_id).column
        nodes = [
            replace(n, column=_with_order(n.column, n.column.order - 1))
            if n.column.order > removed.order else n
            for n in tree.columns if n.column.id != target_id
        ]
        return replace(tree, columns=_sorted_nodes(nodes))

    archived = [n for n in tree.archived_columns if n.column.id == target_id]
    if archived:
        return replace(tree, archived_columns=tuple(n for n in tree.archived_columns if n.column.id != target_id))

    node, card = tree.locate(target_id)
    if card.archived:
        node = replace(node, archived_cards=tuple(c for c in node.archived_cards if c.id != target_id))
    else:
        node = replace(node, cards=tuple(_close_gap((c for c in node.cards if c.id != target_id), card.order)))
    if tree.has_column(node.column.id):
        return _replace_node(tree, node)
    return replace(tree, archived_columns=tuple(
        node if n.column.id == node.column.id else n for n in tree.archived_columns
    ))


def apply_archive(tree: BoardTree, target_id: str, archived_by: Optional[str] = None) -> BoardTree:
    """Take a column or card out of the active ranking"""
    marks = {"archived": True, "archived_by": archived_by}
    if tree.has_column(target_id):
        node = tree.node(target_id)
        tree = apply_cascade_delete(tree, target_id)
        archived = replace(node, column=node.column.model_copy(update=marks))
        return replace(tree, archived_columns=tree.archived_columns + (archived,))

    node, card = tree.locate(target_id)
    if card.archived:
        return tree
    if not tree.has_column(node.column.id):
        raise ValidationError("Cards of an archived column cannot be archived", {"column_id": node.column.id})
    tree = apply_cascade_delete(tree, target_id)
    node = tree.node(node.column.id)
    return _replace_node(tree, replace(node, archived_cards=node.archived_cards + (card.model_copy(update=marks),)))


def apply_restore(tree: BoardTree, target_id: str) -> BoardTree:
    """Append an archived column or card to the end of its active ranking"""
    marks = {"archived": False, "archived_at": None, "archived_by": None}
    for node in tree.archived_columns:
        if node.column.id == target_id:
            column = node.column.model_copy(update=dict(marks, order=len(tree.columns)))
            return replace(
                tree,
                columns=tree.columns + (replace(node, column=column),),
                archived_columns=tuple(n for n in tree.archived_columns if n.column.id != target_id)
            )

    node, card = tree.locate(target_id)
    if not card.archived:
        return tree
    if not tree.has_column(node.column.id):
        raise ValidationError("Cannot restore a card into an archived column", {"column_id": node.column.id})
    order = max((c.order for c in node.cards), default=-1) + 1
    restored = card.model_copy(update=dict(marks, order=order))
    return _replace_node(tree, replace(
        node,
        cards=node.cards + (restored,),
        archived_cards=tuple(c for c in node.archived_cards if c.id != target_id)
    ))


def apply_duplicate_card(tree: BoardTree, card_id: str, placeholder_id: str, suffix: str) -> BoardTree:
    """Append a stand-in copy of a card until the store assigns its id"""
    node, card = tree.locate(card_id)
    node = tree.node(node.column.id)
    copy = card.model_copy(update={
        "id": placeholder_id,
        "title": f"{card.title}{suffix}",
        "order": max((c.order for c in node.cards), default=-1) + 1,
        "comments": 0,
        "attachments": 0,
        "archived": False,
        "archived_at": None,
        "archived_by": None,
    })
    return _replace_node(tree, replace(node, cards=node.cards + (copy,)))


def apply_duplicate_column(tree: BoardTree, column_id: str, placeholder_id: str, suffix: str) -> BoardTree:
    """Append a stand-in copy of a column and its visible cards"""
    node = tree.node(column_id)
    column = node.column.model_copy(update={
        "id": placeholder_id,
        "title": f"{node.column.title}{suffix}",
        "order": len(tree.columns),
    })
    cards = tuple(
        card.model_copy(update={"id": f"{placeholder_id}-{index}", "column_id": placeholder_id, "order": index})
        for index, card in enumerate(node.cards)
    )
    return replace(tree, columns=tree.columns + (ColumnNode(column=column, cards=cards),))


# =============================================================================
# Folding committed results
# =============================================================================

def apply_ranking(
    tree: BoardTree,
    parent_id: str,
    committed: Sequence,
    renamed: Optional[Dict[str, str]] = None
) -> BoardTree:
    """Overwrite ranks in the tree with the ranks the store committed.

    `committed` is the full active sibling list after the write; `renamed`
    maps ids the tree still shows to the ids the store now uses.
    """
    renamed = renamed or {}
    by_id = {item.id: item for item in committed}

    if parent_id == tree.board.id:
        nodes = [
            replace(n, column=_with_order(n.column, by_id[n.column.id].order))
            if n.column.id in by_id else n
            for n in tree.columns
        ]
        return replace(tree, columns=_sorted_nodes(nodes))

    node = tree.node(parent_id)
    cards = []
    for card in node.cards:
        stored = by_id.get(renamed.get(card.id, card.id))
        if stored is not None:
            card = card.model_copy(update={"id": stored.id, "column_id": stored.column_id, "order": stored.order})
        cards.append(card)
    return _replace_node(tree, replace(node, cards=tuple(sorted(cards, key=ordering.rank_key))))


def replace_card(tree: BoardTree, placeholder_id: str, card: Card) -> BoardTree:
    """Swap a stand-in for the stored card, keeping the tree's label rendering"""
    node, stand_in = tree.locate(placeholder_id)
    card = card.model_copy(update={"labels": stand_in.labels})
    cards = tuple(card if c.id == placeholder_id else c for c in node.cards)
    return _replace_node(tree, replace(node, cards=cards))


def replace_node(tree: BoardTree, placeholder_id: str, node: ColumnNode) -> BoardTree:
    columns = [node if n.column.id == placeholder_id else n for n in tree.columns]
    return replace(tree, columns=_sorted_nodes(columns))
