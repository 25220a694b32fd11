"""Typed reads over the document store"""

from typing import Iterable, List, Optional

from ..errors import NotFoundError
from ..models.board import Board, Card, Checklist, Column, Comment
from ..models.labels import LabelDefinition, normalize_labels
from .ordering import rank_key
from .store import (
    DocumentStore, OrderBy,
    board_path, card_path, cards_path, checklists_path, column_path,
    columns_path, comments_path,
)


def card_from_document(
    doc: dict,
    catalog: Iterable[LabelDefinition] = (),
    default_label_color: str = "#E8DCC5"
) -> Card:
    """Build a Card, resolving label references against the board catalog"""
    doc = dict(doc)
    doc["labels"] = normalize_labels(doc.get("labels"), catalog, default_label_color)
    return Card.model_validate(doc)


async def load_board(store: DocumentStore, board_id: str) -> Board:
    doc = await store.get(board_path(board_id))
    if not doc:
        raise NotFoundError("Board not found", {"board_id": board_id})
    return Board.model_validate(doc)


async def load_column(store: DocumentStore, board_id: str, column_id: str) -> Column:
    doc = await store.get(column_path(board_id, column_id))
    if not doc:
        raise NotFoundError("Column not found", {"column_id": column_id})
    return Column.model_validate(doc)


async def board_catalog(store: DocumentStore, board_id: str) -> List[LabelDefinition]:
    return (await load_board(store, board_id)).labels


async def load_card(
    store: DocumentStore,
    board_id: str,
    column_id: str,
    card_id: str,
    catalog: Optional[Iterable[LabelDefinition]] = None
) -> Card:
    """Load a card; labels are resolved against the board catalog (read when not given)"""
    doc = await store.get(card_path(board_id, column_id, card_id))
    if not doc:
        raise NotFoundError("Card not found", {"card_id": card_id, "column_id": column_id})
    if catalog is None:
        catalog = await board_catalog(store, board_id)
    return card_from_document(doc, catalog)


async def list_columns(store: DocumentStore, board_id: str) -> List[Column]:
    docs = await store.query(columns_path(board_id), order_by=OrderBy("order"))
    return sorted((Column.model_validate(doc) for doc in docs), key=rank_key)


async def list_cards(
    store: DocumentStore,
    board_id: str,
    column_id: str,
    catalog: Optional[Iterable[LabelDefinition]] = None
) -> List[Card]:
    docs = await store.query(cards_path(board_id, column_id), order_by=OrderBy("order"))
    if catalog is None:
        catalog = await board_catalog(store, board_id) if docs else []
    catalog = list(catalog)
    return sorted((card_from_document(doc, catalog) for doc in docs), key=rank_key)


async def list_comments(store: DocumentStore, board_id: str, column_id: str, card_id: str) -> List[Comment]:
    docs = await store.query(
        comments_path(board_id, column_id, card_id),
        order_by=OrderBy("created_at")
    )
    return [Comment.model_validate(doc) for doc in docs]


async def list_checklists(store: DocumentStore, board_id: str, column_id: str, card_id: str) -> List[Checklist]:
    docs = await store.query(
        checklists_path(board_id, column_id, card_id),
        order_by=OrderBy("created_at")
    )
    return [Checklist.model_validate(doc) for doc in docs]

