"""
Move/Reorder Engine

Same-list reorders are a single atomic batch of rank updates. A card moving
to another column cannot be a field update: cards live in a sub-collection of
their column, so the move is staged as

    read -> create at destination -> copy comments/checklists
         -> delete source -> renumber both columns

with each stage starting once the previous one committed. A failure after the
destination copy exists leaves a duplicate (or sparse ranks) behind and is
reported as a PartialCascadeError naming the stage that last committed.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from ..errors import BoardSyncError, PartialCascadeError, ValidationError
from ..models.board import Card, Checklist, Comment, to_fields, validate_visibility
from ..models.labels import LabelDefinition
from . import ordering
from .documents import (
    board_catalog, list_cards, list_checklists, list_columns, list_comments, load_card, load_column,
)
from .store import (
    DocumentStore, Mutation,
    card_path, cards_path, checklists_path, columns_path, comments_path,
)

logger = logging.getLogger(__name__)


@dataclass
class ReorderResult:
    """Active siblings in their committed order"""
    items: List = field(default_factory=list)
    writes: int = 0


@dataclass
class MoveResult:
    """Outcome of a card move; `card` is the card at its destination"""
    card: Optional[Card] = None
    source_cards: List[Card] = field(default_factory=list)
    dest_cards: List[Card] = field(default_factory=list)
    writes: int = 0


class MoveStage(str, Enum):
    PENDING = "pending"
    READ = "read"
    CREATED = "created"
    DESCENDANTS_COPIED = "descendants_copied"
    SOURCE_DELETED = "source_deleted"
    RENUMBERED = "renumbered"
    FAILED = "failed"


# Stages after which a failure leaves visible debris in the store
_PARTIAL_STAGES = {MoveStage.CREATED, MoveStage.DESCENDANTS_COPIED, MoveStage.SOURCE_DELETED}


class CardMove:
    """One cross-column card move.

    `stage` is the last step that committed; on failure it becomes FAILED and
    `failed_after` keeps the last committed step.
    """

    def __init__(
        self,
        store: DocumentStore,
        board_id: str,
        card_id: str,
        source_column_id: str,
        dest_column_id: str,
        dest_index: int
    ):
        self.store = store
        self.board_id = board_id
        self.card_id = card_id
        self.source_column_id = source_column_id
        self.dest_column_id = dest_column_id
        self.dest_index = dest_index

        self.stage = MoveStage.PENDING
        self.failed_after: Optional[MoveStage] = None
        self.new_card_id: Optional[str] = None
        self.writes = 0

        self._card: Optional[Card] = None
        self._catalog: List[LabelDefinition] = []
        self._comments: List[Comment] = []
        self._checklists: List[Checklist] = []

    async def run(self) -> MoveResult:
        steps = [
            (self._read, MoveStage.READ),
            (self._create_at_destination, MoveStage.CREATED),
            (self._copy_descendants, MoveStage.DESCENDANTS_COPIED),
            (self._delete_source, MoveStage.SOURCE_DELETED),
        ]
        try:
            for step, reached in steps:
                await step()
                self.stage = reached
            result = await self._renumber()
            self.stage = MoveStage.RENUMBERED
        except BoardSyncError as e:
            self.failed_after = self.stage
            self.stage = MoveStage.FAILED
            if self.failed_after in _PARTIAL_STAGES:
                raise self._partial_failure(e) from e
            raise

        logger.info(
            f"Moved card {self.card_id} from column {self.source_column_id} "
            f"to {self.dest_column_id} at {self.dest_index} (now {self.new_card_id})"
        )
        return result

    def _partial_failure(self, cause: BoardSyncError) -> PartialCascadeError:
        if self.failed_after == MoveStage.SOURCE_DELETED:
            leftover = []
            message = "Card moved but column ranks were not renumbered"
        else:
            leftover = [self.new_card_id]
            message = "Card copied to destination but the source card was not removed"
        logger.error(
            f"Partial move of card {self.card_id} after stage {self.failed_after.value}: {cause.message}"
        )
        return PartialCascadeError(
            f"{message}: {cause.message}",
            stage=self.failed_after.value,
            leftover_ids=leftover,
            details={"card_id": self.card_id, "new_card_id": self.new_card_id}
        )

    async def _read(self):
        if self.dest_index < 0:
            raise ValidationError("Destination index must not be negative", {"field": "dest_index"})

        self._catalog = await board_catalog(self.store, self.board_id)
        card = await load_card(self.store, self.board_id, self.source_column_id, self.card_id, self._catalog)
        if card.archived:
            raise ValidationError("Archived cards cannot be moved", {"card_id": card.id})
        dest = await load_column(self.store, self.board_id, self.dest_column_id)
        if dest.archived:
            raise ValidationError("Cannot move a card into an archived column", {"column_id": dest.id})
        validate_visibility(card.visibility, card.assigned_to)

        self._card = card
        self._comments = await list_comments(self.store, self.board_id, self.source_column_id, self.card_id)
        self._checklists = await list_checklists(self.store, self.board_id, self.source_column_id, self.card_id)

    async def _create_at_destination(self):
        new_id = self.store.new_id()
        fields = to_fields(
            self._card,
            board_id=self.board_id,
            column_id=self.dest_column_id,
            order=self.dest_index
        )
        self.new_card_id = await self.store.create(
            cards_path(self.board_id, self.dest_column_id), fields, doc_id=new_id
        )
        self.writes += 1

    async def _copy_descendants(self):
        mutations = copy_comment_mutations(
            self._comments, comments_path(self.board_id, self.dest_column_id, self.new_card_id),
            self.new_card_id
        )
        mutations += copy_checklist_mutations(
            self._checklists, checklists_path(self.board_id, self.dest_column_id, self.new_card_id),
            self.new_card_id
        )
        if mutations:
            await self.store.batch(mutations)
            self.writes += len(mutations)

    async def _delete_source(self):
        source = card_path(self.board_id, self.source_column_id, self.card_id)
        mutations = [Mutation.delete(f"{source}/comments/{c.id}") for c in self._comments]
        mutations += [Mutation.delete(f"{source}/checklists/{c.id}") for c in self._checklists]
        mutations.append(Mutation.delete(source))
        await self.store.batch(mutations)
        self.writes += len(mutations)

    async def _renumber(self) -> MoveResult:
        source_cards = ordering.active(
            await list_cards(self.store, self.board_id, self.source_column_id, self._catalog)
        )
        dest_all = ordering.active(
            await list_cards(self.store, self.board_id, self.dest_column_id, self._catalog)
        )
        moved = next(card for card in dest_all if card.id == self.new_card_id)
        dest_cards = ordering.insert_at(
            [card for card in dest_all if card.id != self.new_card_id], moved, self.dest_index
        )

        source_ranks = ordering.renumber(source_cards)
        dest_ranks = ordering.renumber(dest_cards)
        mutations = ordering.rank_mutations(cards_path(self.board_id, self.source_column_id), source_ranks)
        mutations += ordering.rank_mutations(cards_path(self.board_id, self.dest_column_id), dest_ranks)
        if mutations:
            await self.store.batch(mutations)
            self.writes += len(mutations)

        dest_cards = ordering.apply_ranks(dest_cards, dest_ranks)
        return MoveResult(
            card=next(card for card in dest_cards if card.id == self.new_card_id),
            source_cards=ordering.apply_ranks(source_cards, source_ranks),
            dest_cards=dest_cards,
            writes=self.writes
        )


def copy_comment_mutations(comments: List[Comment], collection_path: str, card_id: str) -> List[Mutation]:
    """Comment copies keep text and author; timestamps are assigned fresh"""
    return [
        Mutation.create(collection_path, {
            "card_id": card_id,
            "text": comment.text,
            "author_id": comment.author_id,
            "author_name": comment.author_name,
        })
        for comment in comments
    ]


def copy_checklist_mutations(checklists: List[Checklist], collection_path: str, card_id: str) -> List[Mutation]:
    return [
        Mutation.create(collection_path, to_fields(checklist, card_id=card_id))
        for checklist in checklists
    ]


class MoveEngine:
    """Computes and persists rank changes for drag-and-drop operations"""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def reorder(
        self,
        collection_path: str,
        load: Callable[[], Awaitable[list]],
        source_index: int,
        dest_index: int
    ) -> ReorderResult:
        """Move the active sibling at source_index to dest_index and renumber"""
        if source_index == dest_index:
            return ReorderResult()

        siblings = ordering.active(await load())
        reordered = ordering.reinsert(siblings, source_index, dest_index)
        ranks = ordering.renumber(reordered)
        writes = await ordering.commit_ranks(self.store, collection_path, ranks)

        logger.info(f"Reordered {collection_path}: {source_index} -> {dest_index} ({writes} writes)")
        return ReorderResult(items=ordering.apply_ranks(reordered, ranks), writes=writes)

    async def reorder_columns(self, board_id: str, source_index: int, dest_index: int) -> ReorderResult:
        return await self.reorder(
            columns_path(board_id), lambda: list_columns(self.store, board_id), source_index, dest_index
        )

    async def reorder_cards(
        self,
        board_id: str,
        column_id: str,
        source_index: int,
        dest_index: int
    ) -> ReorderResult:
        return await self.reorder(
            cards_path(board_id, column_id), lambda: list_cards(self.store, board_id, column_id),
            source_index, dest_index
        )

    async def move_card(
        self,
        board_id: str,
        card_id: str,
        source_column_id: str,
        dest_column_id: str,
        dest_index: int
    ) -> MoveResult:
        """Move a card to dest_index of dest_column_id.

        Within one column this is a reorder (no-op when the index is
        unchanged); across columns it runs a CardMove.
        """
        if source_column_id != dest_column_id:
            return await CardMove(
                self.store, board_id, card_id, source_column_id, dest_column_id, dest_index
            ).run()

        cards = ordering.active(await list_cards(self.store, board_id, source_column_id))
        source_index = next((i for i, card in enumerate(cards) if card.id == card_id), None)
        if source_index is None:
            card = await load_card(self.store, board_id, source_column_id, card_id)
            raise ValidationError("Archived cards cannot be moved", {"card_id": card.id})
        if source_index == dest_index:
            return MoveResult(card=cards[source_index], source_cards=cards, dest_cards=cards)

        result = await self.reorder_cards(board_id, source_column_id, source_index, dest_index)
        moved = next(card for card in result.items if card.id == card_id)
        return MoveResult(
            card=moved,
            source_cards=result.items,
            dest_cards=result.items,
            writes=result.writes
        )
