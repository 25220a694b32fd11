"""Dense rank ordering shared by columns-within-board and cards-within-column.

Within a sibling set, the non-archived items carry `order` values forming
exactly 0..N-1. Archived items keep whatever value they had when they left
the ranking and are skipped by renumbering.
"""

import logging
from typing import Dict, List, Optional, Sequence, TypeVar, Union

from ..errors import ValidationError
from ..models.board import Card, Column
from .store import DocumentStore, Mutation

logger = logging.getLogger(__name__)

Ranked = TypeVar("Ranked", Column, Card)


def rank_key(item: Union[Column, Card]):
    """Sort key for stored siblings; creation time breaks legacy ties"""
    return (item.order, item.created_at or "")


def active(items: Sequence[Ranked]) -> List[Ranked]:
    """Non-archived items in current rank order"""
    return sorted((item for item in items if not item.archived), key=rank_key)


def renumber(items: Sequence[Ranked]) -> Dict[str, int]:
    """Rank changes that make the given sequence dense.

    `items` is taken in the order given; archived entries are skipped and do
    not consume a rank. Returns {id: new_order} for items whose order must
    change, so an already dense sequence yields an empty dict.
    """
    diff = {}
    index = 0
    for item in items:
        if item.archived:
            continue
        if item.order != index:
            diff[item.id] = index
        index += 1
    return diff


def apply_ranks(items: Sequence[Ranked], ranks: Dict[str, int]) -> List[Ranked]:
    """Copies of the items with new ranks applied"""
    return [
        item.model_copy(update={"order": ranks[item.id]}) if item.id in ranks else item
        for item in items
    ]


def is_dense(items: Sequence[Ranked]) -> bool:
    orders = sorted(item.order for item in items if not item.archived)
    return orders == list(range(len(orders)))


def reinsert(items: Sequence[Ranked], source_index: int, dest_index: int) -> List[Ranked]:
    """Remove the item at source_index and insert it at dest_index"""
    if not 0 <= source_index < len(items):
        raise ValidationError(
            f"Source index {source_index} out of range for {len(items)} items",
            {"field": "source_index"}
        )
    if not 0 <= dest_index < len(items):
        raise ValidationError(
            f"Destination index {dest_index} out of range for {len(items)} items",
            {"field": "dest_index"}
        )
    reordered = list(items)
    moved = reordered.pop(source_index)
    reordered.insert(dest_index, moved)
    return reordered


def insert_at(items: Sequence[Ranked], item: Ranked, index: int) -> List[Ranked]:
    """Insert an item into a list, clamping the position to the list bounds"""
    if index < 0:
        raise ValidationError(f"Destination index {index} is negative", {"field": "dest_index"})
    result = list(items)
    result.insert(min(index, len(result)), item)
    return result


def absolute_index(
    visible: Sequence[Ranked],
    index: int,
    moved: Optional[Ranked] = None
) -> int:
    """Translate a position in a filtered list into a rank in the full list.

    `visible` is the rank-ordered subset a viewer sees (hidden siblings are
    missing). For a same-list reorder pass the item being moved as `moved`;
    `index` then addresses the visible list with that item removed.
    """
    others = [item for item in visible if moved is None or item.id != moved.id]

    def position(item):
        if moved is not None and item.order > moved.order:
            return item.order - 1
        return item.order

    if index < len(others):
        return position(others[index])
    if not others:
        return 0
    return position(others[-1]) + 1


def rank_mutations(collection_path: str, ranks: Dict[str, int]) -> List[Mutation]:
    return [
        Mutation.update(f"{collection_path}/{item_id}", {"order": order})
        for item_id, order in ranks.items()
    ]


async def commit_ranks(store: DocumentStore, collection_path: str, ranks: Dict[str, int]) -> int:
    """Persist rank changes as one atomic batch; no-op when nothing changed"""
    if not ranks:
        return 0
    await store.batch(rank_mutations(collection_path, ranks))
    logger.debug(f"Renumbered {len(ranks)} documents in {collection_path}")
    return len(ranks)
