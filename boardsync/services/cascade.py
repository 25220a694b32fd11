"""
Cascade Manager

Structural deletes run in two phases: a read-only plan that enumerates every
affected document path (descendants before their parents), then a single
atomic batch that deletes exactly those paths. Duplicates are built the same
way: every document of the copy is created in one batch.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..config import Settings, get_settings
from ..errors import BoardSyncError, PartialCascadeError, ValidationError
from ..models.board import Card, Checklist, Column, to_fields, validate_visibility
from . import ordering
from .documents import (
    board_catalog, list_cards, list_checklists, list_columns, load_board, load_card, load_column,
)
from .moves import copy_checklist_mutations
from .store import (
    SERVER_TIMESTAMP, DocumentStore, Mutation,
    board_path, card_path, cards_path, checklists_path, column_path,
    columns_path, comments_path,
)

logger = logging.getLogger(__name__)


@dataclass
class CascadePlan:
    """Document paths to delete, each descendant listed before its parent"""
    root: str
    paths: List[str] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.paths)

    def mutations(self) -> List[Mutation]:
        return [Mutation.delete(path) for path in self.paths]


@dataclass
class CascadeResult:
    deleted: int = 0
    remaining: List = field(default_factory=list)


# =============================================================================
# Planning (reads only)
# =============================================================================

async def _card_subtree(store: DocumentStore, board_id: str, column_id: str, card_id: str) -> List[str]:
    paths = []
    for collection in (
        comments_path(board_id, column_id, card_id),
        checklists_path(board_id, column_id, card_id),
    ):
        paths += [f"{collection}/{doc['id']}" for doc in await store.query(collection)]
    paths.append(card_path(board_id, column_id, card_id))
    return paths


async def _column_subtree(store: DocumentStore, board_id: str, column_id: str) -> List[str]:
    paths = []
    for doc in await store.query(cards_path(board_id, column_id)):
        paths += await _card_subtree(store, board_id, column_id, doc["id"])
    paths.append(column_path(board_id, column_id))
    return paths


async def plan_card_delete(store: DocumentStore, board_id: str, column_id: str, card_id: str) -> CascadePlan:
    await load_card(store, board_id, column_id, card_id)
    root = card_path(board_id, column_id, card_id)
    return CascadePlan(root, await _card_subtree(store, board_id, column_id, card_id))


async def plan_column_delete(store: DocumentStore, board_id: str, column_id: str) -> CascadePlan:
    await load_column(store, board_id, column_id)
    root = column_path(board_id, column_id)
    return CascadePlan(root, await _column_subtree(store, board_id, column_id))


async def plan_board_delete(store: DocumentStore, board_id: str) -> CascadePlan:
    await load_board(store, board_id)
    paths = []
    for doc in await store.query(columns_path(board_id)):
        paths += await _column_subtree(store, board_id, doc["id"])
    paths.append(board_path(board_id))
    return CascadePlan(board_path(board_id), paths)


def card_copy_mutations(
    source: Card,
    checklists: List[Checklist],
    board_id: str,
    column_id: str,
    new_card_id: str,
    order: int,
    title: str,
    created_by: Optional[str]
) -> List[Mutation]:
    """Documents for a copy of a card: the card itself plus its checklists.

    Comments and attachments are never carried over to a copy.
    """
    validate_visibility(source.visibility, source.assigned_to)
    fields = to_fields(
        source,
        board_id=board_id,
        column_id=column_id,
        title=title,
        order=order,
        comments=0,
        attachments=0,
        archived=False,
        archived_at=None,
        archived_by=None,
        created_by=created_by
    )
    mutations = [Mutation.create(cards_path(board_id, column_id), fields, doc_id=new_card_id)]
    mutations += copy_checklist_mutations(
        checklists, checklists_path(board_id, column_id, new_card_id), new_card_id
    )
    return mutations


# =============================================================================
# Execution
# =============================================================================

class CascadeManager:
    """Structural delete, duplicate, archive and restore operations"""

    def __init__(self, store: DocumentStore, settings: Settings = None):
        self.store = store
        self.settings = settings or get_settings()

    async def execute(self, plan: CascadePlan) -> int:
        """Commit a plan as one all-or-nothing batch"""
        await self.store.batch(plan.mutations())
        logger.info(f"Cascade delete of {plan.root} removed {plan.size} documents")
        return plan.size

    async def _renumber_after(self, collection_path: str, load, deleted: int, root: str) -> list:
        """Renumber siblings once a structural batch has already committed"""
        try:
            siblings = ordering.active(await load())
            ranks = ordering.renumber(siblings)
            await ordering.commit_ranks(self.store, collection_path, ranks)
        except BoardSyncError as e:
            logger.error(f"Renumbering {collection_path} failed after removing {root}: {e.message}")
            raise PartialCascadeError(
                f"Removed {root} but siblings were not renumbered: {e.message}",
                stage="deleted",
                details={"deleted": deleted, "root": root}
            ) from e
        return ordering.apply_ranks(siblings, ranks)

    # -------------------------------------------------------------------------
    # Delete
    # -------------------------------------------------------------------------

    async def delete_column(self, board_id: str, column_id: str) -> CascadeResult:
        plan = await plan_column_delete(self.store, board_id, column_id)
        deleted = await self.execute(plan)
        remaining = await self._renumber_after(
            columns_path(board_id), lambda: list_columns(self.store, board_id), deleted, plan.root
        )
        return CascadeResult(deleted=deleted, remaining=remaining)

    async def delete_card(self, board_id: str, column_id: str, card_id: str) -> CascadeResult:
        plan = await plan_card_delete(self.store, board_id, column_id, card_id)
        deleted = await self.execute(plan)
        remaining = await self._renumber_after(
            cards_path(board_id, column_id), lambda: list_cards(self.store, board_id, column_id), deleted, plan.root
        )
        return CascadeResult(deleted=deleted, remaining=remaining)

    async def delete_board(self, board_id: str) -> CascadeResult:
        plan = await plan_board_delete(self.store, board_id)
        deleted = await self.execute(plan)
        return CascadeResult(deleted=deleted)

    # -------------------------------------------------------------------------
    # Duplicate
    # -------------------------------------------------------------------------

    async def duplicate_card(
        self,
        board_id: str,
        column_id: str,
        card_id: str,
        created_by: Optional[str] = None,
        dest_column_id: Optional[str] = None
    ) -> Card:
        """Copy a card with its checklists to the end of a column"""
        catalog = await board_catalog(self.store, board_id)
        source = await load_card(self.store, board_id, column_id, card_id, catalog)
        dest_column_id = dest_column_id or column_id
        dest = await load_column(self.store, board_id, dest_column_id)
        if dest.archived:
            raise ValidationError("Cannot add cards to an archived column", {"column_id": dest.id})

        checklists = await list_checklists(self.store, board_id, column_id, card_id)
        siblings = ordering.active(await list_cards(self.store, board_id, dest_column_id, catalog))
        new_id = self.store.new_id()
        mutations = card_copy_mutations(
            source, checklists, board_id, dest_column_id, new_id,
            order=len(siblings),
            title=f"{source.title}{self.settings.copy_suffix}",
            created_by=created_by
        )
        await self.store.batch(mutations)

        logger.info(f"Duplicated card {card_id} as {new_id} in column {dest_column_id}")
        return await load_card(self.store, board_id, dest_column_id, new_id, catalog)

    async def duplicate_column(self, board_id: str, column_id: str, created_by: Optional[str] = None) -> Column:
        """Copy a column and its active cards (checklists included) to the end of the board"""
        source = await load_column(self.store, board_id, column_id)
        columns = ordering.active(await list_columns(self.store, board_id))
        cards = ordering.active(await list_cards(self.store, board_id, column_id))

        new_column_id = self.store.new_id()
        mutations = [Mutation.create(columns_path(board_id), {
            "board_id": board_id,
            "title": f"{source.title}{self.settings.copy_suffix}",
            "order": len(columns),
            "archived": False,
            "wip_limit": source.wip_limit,
            "created_by": created_by,
        }, doc_id=new_column_id)]

        for index, card in enumerate(cards):
            checklists = await list_checklists(self.store, board_id, column_id, card.id)
            mutations += card_copy_mutations(
                card, checklists, board_id, new_column_id, self.store.new_id(),
                order=index,
                title=card.title,
                created_by=created_by
            )
        await self.store.batch(mutations)

        logger.info(f"Duplicated column {column_id} as {new_column_id} with {len(cards)} cards")
        return await load_column(self.store, board_id, new_column_id)

    # -------------------------------------------------------------------------
    # Archive / restore
    # -------------------------------------------------------------------------

    async def _check_column_active(self, board_id: str, column_id: str):
        column = await load_column(self.store, board_id, column_id)
        if column.archived:
            raise ValidationError(
                "Cards of an archived column cannot be archived or restored", {"column_id": column_id}
            )

    async def _archive(self, collection_path: str, item, siblings: list, archived_by: Optional[str]) -> list:
        remaining = [s for s in ordering.active(siblings) if s.id != item.id]
        ranks = ordering.renumber(remaining)
        mutations = [Mutation.update(f"{collection_path}/{item.id}", {
            "archived": True,
            "archived_at": SERVER_TIMESTAMP,
            "archived_by": archived_by,
        })]
        mutations += ordering.rank_mutations(collection_path, ranks)
        await self.store.batch(mutations)
        logger.info(f"Archived {collection_path}/{item.id}")
        return ordering.apply_ranks(remaining, ranks)

    async def _restore(self, collection_path: str, item, siblings: list):
        order = len(ordering.active(siblings))
        await self.store.update(f"{collection_path}/{item.id}", {
            "archived": False,
            "archived_at": None,
            "archived_by": None,
            "order": order,
        })
        logger.info(f"Restored {collection_path}/{item.id} at position {order}")
        return order

    async def archive_column(self, board_id: str, column_id: str, archived_by: Optional[str] = None) -> list:
        column = await load_column(self.store, board_id, column_id)
        if column.archived:
            return []
        siblings = await list_columns(self.store, board_id)
        return await self._archive(columns_path(board_id), column, siblings, archived_by)

    async def restore_column(self, board_id: str, column_id: str) -> Column:
        column = await load_column(self.store, board_id, column_id)
        if column.archived:
            await self._restore(columns_path(board_id), column, await list_columns(self.store, board_id))
        return await load_column(self.store, board_id, column_id)

    async def archive_card(
        self,
        board_id: str,
        column_id: str,
        card_id: str,
        archived_by: Optional[str] = None
    ) -> list:
        card = await load_card(self.store, board_id, column_id, card_id)
        if card.archived:
            return []
        await self._check_column_active(board_id, column_id)
        siblings = await list_cards(self.store, board_id, column_id)
        return await self._archive(cards_path(board_id, column_id), card, siblings, archived_by)

    async def restore_card(self, board_id: str, column_id: str, card_id: str) -> Card:
        card = await load_card(self.store, board_id, column_id, card_id)
        if card.archived:
            await self._check_column_active(board_id, column_id)
            await self._restore(
                cards_path(board_id, column_id), card, await list_cards(self.store, board_id, column_id)
            )
        return await load_card(self.store, board_id, column_id, card_id)
