"""Board service - boards, label catalog, columns, cards, comments and checklists

Single-document operations that are not structural: they never disturb the
ranking of existing siblings (new columns and cards are appended).
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from ..config import Settings, get_settings
from ..errors import BoardSyncError, NotFoundError, PartialCascadeError, ValidationError
from ..models.board import (
    Board, BoardCreate, BoardUpdate,
    Card, CardCreate, CardUpdate,
    Checklist, ChecklistCreate, ChecklistItem, ChecklistItemCreate,
    Column, ColumnCreate, ColumnUpdate,
    Comment, CommentCreate, Visibility,
    checklist_progress, validate_card, validate_title, validate_visibility,
)
from ..models.labels import Label, LabelDefinition, normalize_labels
from . import documents, ordering
from .cascade import CascadeManager, CascadeResult
from .store import (
    DocumentStore, Mutation, OrderBy, Where,
    board_path, boards_path, card_path, cards_path, checklists_path,
    column_path, columns_path, comments_path,
)

logger = logging.getLogger(__name__)


@dataclass
class WipStatus:
    count: int
    limit: Optional[int]
    exceeded: bool


class BoardService:
    """Document-level operations on one store"""

    def __init__(self, store: DocumentStore, settings: Settings = None):
        self.store = store
        self.settings = settings or get_settings()
        self.cascade = CascadeManager(store, self.settings)

    # =========================================================================
    # Boards
    # =========================================================================

    async def create_board(
        self,
        data: BoardCreate,
        created_by: Optional[str] = None,
        created_by_name: Optional[str] = None
    ) -> Board:
        """Create a board and its initial columns"""
        validate_title(data.title, "Board title")
        titles = data.columns or list(self.settings.default_columns)
        for title in titles:
            validate_title(title, "Column title")

        board_id = await self.store.create(boards_path(), {
            "title": data.title,
            "description": data.description,
            "color": data.color or self.settings.default_board_color,
            "members": [created_by] if created_by else [],
            "member_names": [created_by_name or created_by] if created_by else [],
            "favorite": False,
            "labels": [],
            "created_by": created_by,
        })

        mutations = [
            Mutation.create(columns_path(board_id), {
                "board_id": board_id,
                "title": title,
                "order": index,
                "archived": False,
                "wip_limit": None,
                "created_by": created_by,
            })
            for index, title in enumerate(titles)
        ]
        try:
            await self.store.batch(mutations)
        except BoardSyncError as e:
            logger.error(f"Board {board_id} created without its columns: {e.message}")
            raise PartialCascadeError(
                f"Board created but its columns were not: {e.message}",
                stage="board_created",
                leftover_ids=[board_id]
            ) from e

        logger.info(f"Created board {board_id} with {len(titles)} columns")
        return await documents.load_board(self.store, board_id)

    async def get_board(self, board_id: str) -> Board:
        return await documents.load_board(self.store, board_id)

    async def list_boards(self, user_id: Optional[str] = None, favorites_only: bool = False) -> List[Board]:
        """Boards newest-updated first, optionally only those a user belongs to"""
        clauses = []
        if user_id:
            clauses.append(Where("members", "array-contains", user_id))
        if favorites_only:
            clauses.append(Where("favorite", "==", True))
        docs = await self.store.query(boards_path(), clauses, order_by=OrderBy("updated_at", descending=True))
        return [Board.model_validate(doc) for doc in docs]

    async def update_board(self, board_id: str, data: BoardUpdate) -> Board:
        await documents.load_board(self.store, board_id)
        updates = data.model_dump(exclude_unset=True)
        if "title" in updates:
            validate_title(updates["title"], "Board title")
        if updates:
            await self.store.update(board_path(board_id), updates)
        return await documents.load_board(self.store, board_id)

    async def toggle_favorite(self, board_id: str) -> Board:
        board = await documents.load_board(self.store, board_id)
        await self.store.update(board_path(board_id), {"favorite": not board.favorite})
        return await documents.load_board(self.store, board_id)

    async def delete_board(self, board_id: str) -> CascadeResult:
        return await self.cascade.delete_board(board_id)

    # -------------------------------------------------------------------------
    # Members
    # -------------------------------------------------------------------------

    async def add_member(self, board_id: str, member_id: str, name: Optional[str] = None) -> Board:
        board = await documents.load_board(self.store, board_id)
        if member_id in board.members:
            return board

        names = list(board.member_names)
        # Legacy boards may carry fewer names than ids
        names += board.members[len(names):]
        await self.store.update(board_path(board_id), {
            "members": board.members + [member_id],
            "member_names": names + [name or member_id],
        })
        return await documents.load_board(self.store, board_id)

    async def remove_member(self, board_id: str, member_id: str) -> Board:
        board = await documents.load_board(self.store, board_id)
        if member_id not in board.members:
            return board

        index = board.members.index(member_id)
        members = list(board.members)
        names = list(board.member_names)
        members.pop(index)
        if index < len(names):
            names.pop(index)
        await self.store.update(board_path(board_id), {"members": members, "member_names": names})
        return await documents.load_board(self.store, board_id)

    # =========================================================================
    # Label catalog
    # =========================================================================

    def _find_label(self, board: Board, label_id: str) -> LabelDefinition:
        for label in board.labels:
            if label.id == label_id:
                return label
        raise NotFoundError("Label not found", {"label_id": label_id})

    def _check_label_name(self, board: Board, name: str, label_id: Optional[str] = None):
        if any(label.name == name and label.id != label_id for label in board.labels):
            raise ValidationError("Label with this name already exists", {"field": "name"})

    async def create_label(self, board_id: str, name: str, color: Optional[str] = None) -> LabelDefinition:
        board = await documents.load_board(self.store, board_id)
        validate_title(name, "Label name")
        self._check_label_name(board, name)

        label = LabelDefinition(
            id=self.store.new_id(),
            name=name,
            color=color or self.settings.default_board_color
        )
        labels = [entry.model_dump() for entry in board.labels] + [label.model_dump()]
        await self.store.update(board_path(board_id), {"labels": labels})
        return label

    async def update_label(
        self,
        board_id: str,
        label_id: str,
        name: Optional[str] = None,
        color: Optional[str] = None
    ) -> LabelDefinition:
        board = await documents.load_board(self.store, board_id)
        label = self._find_label(board, label_id)

        updates = {}
        if name is not None:
            validate_title(name, "Label name")
            self._check_label_name(board, name, label_id)
            updates["name"] = name
        if color is not None:
            updates["color"] = color
        if not updates:
            return label

        label = label.model_copy(update=updates)
        labels = [(label if entry.id == label_id else entry).model_dump() for entry in board.labels]
        await self.store.update(board_path(board_id), {"labels": labels})
        return label

    async def delete_label(self, board_id: str, label_id: str) -> int:
        """Remove a label from the catalog and from every card; returns cards touched"""
        board = await documents.load_board(self.store, board_id)
        label = self._find_label(board, label_id)

        def references(card_label: Label) -> bool:
            return card_label.id == label_id or (card_label.id is None and card_label.text == label.name)

        labels = [entry.model_dump() for entry in board.labels if entry.id != label_id]
        mutations = [Mutation.update(board_path(board_id), {"labels": labels})]
        for column in await documents.list_columns(self.store, board_id):
            for card in await documents.list_cards(self.store, board_id, column.id, board.labels):
                kept = [l for l in card.labels if not references(l)]
                if len(kept) != len(card.labels):
                    mutations.append(Mutation.update(
                        card_path(board_id, column.id, card.id),
                        {"labels": [l.model_dump() for l in kept]}
                    ))

        await self.store.batch(mutations)
        logger.info(f"Deleted label {label_id} from board {board_id} ({len(mutations) - 1} cards updated)")
        return len(mutations) - 1

    # =========================================================================
    # Columns
    # =========================================================================

    async def add_column(self, board_id: str, data: ColumnCreate, created_by: Optional[str] = None) -> Column:
        await documents.load_board(self.store, board_id)
        validate_title(data.title, "Column title")
        columns = ordering.active(await documents.list_columns(self.store, board_id))

        column_id = await self.store.create(columns_path(board_id), {
            "board_id": board_id,
            "title": data.title,
            "order": len(columns),
            "archived": False,
            "wip_limit": data.wip_limit,
            "created_by": created_by,
        })
        return await documents.load_column(self.store, board_id, column_id)

    async def update_column(self, board_id: str, column_id: str, data: ColumnUpdate) -> Column:
        await documents.load_column(self.store, board_id, column_id)
        updates = data.model_dump(exclude_unset=True)
        if "title" in updates:
            validate_title(updates["title"], "Column title")
        if updates:
            await self.store.update(column_path(board_id, column_id), updates)
        return await documents.load_column(self.store, board_id, column_id)

    async def check_wip_limit(self, board_id: str, column_id: str) -> WipStatus:
        column = await documents.load_column(self.store, board_id, column_id)
        count = len(ordering.active(await documents.list_cards(self.store, board_id, column_id)))
        exceeded = column.wip_limit is not None and count > column.wip_limit
        return WipStatus(count=count, limit=column.wip_limit, exceeded=exceeded)

    # =========================================================================
    # Cards
    # =========================================================================

    async def get_card(self, board_id: str, column_id: str, card_id: str) -> Card:
        board = await documents.load_board(self.store, board_id)
        doc = await self.store.get(card_path(board_id, column_id, card_id))
        if not doc:
            raise NotFoundError("Card not found", {"card_id": card_id, "column_id": column_id})
        return documents.card_from_document(doc, board.labels, self.settings.default_label_color)

    async def add_card(
        self,
        board_id: str,
        column_id: str,
        data: CardCreate,
        created_by: Optional[str] = None
    ) -> Card:
        """Append a validated card to a column"""
        board = await documents.load_board(self.store, board_id)
        column = await documents.load_column(self.store, board_id, column_id)
        if column.archived:
            raise ValidationError("Cannot add cards to an archived column", {"column_id": column_id})
        validate_card(data.title, data.visibility, data.assigned_to, data.due_date, data.members)

        labels = normalize_labels(data.labels, board.labels, self.settings.default_label_color)
        siblings = ordering.active(await documents.list_cards(self.store, board_id, column_id))

        card_id = await self.store.create(cards_path(board_id, column_id), {
            "board_id": board_id,
            "column_id": column_id,
            "title": data.title,
            "description": data.description,
            "order": len(siblings),
            "labels": [label.model_dump() for label in labels],
            "assigned_to": data.assigned_to,
            "members": data.members,
            "visibility": Visibility(data.visibility).value,
            "archived": False,
            "due_date": data.due_date,
            "comments": 0,
            "attachments": 0,
            "completed": False,
            "checklist_progress": 0,
            "created_by": created_by,
        })
        logger.info(f"Added card {card_id} to column {column_id}")
        return await self.get_card(board_id, column_id, card_id)

    async def update_card(self, board_id: str, column_id: str, card_id: str, data: CardUpdate) -> Card:
        """Update card fields; the merged card must still be valid"""
        board = await documents.load_board(self.store, board_id)
        current = await documents.load_card(self.store, board_id, column_id, card_id)
        # Only description and due date can be cleared
        updates = {
            key: value for key, value in data.model_dump(exclude_unset=True).items()
            if value is not None or key in ("description", "due_date")
        }

        merged = {**current.model_dump(), **updates}
        validate_card(
            merged["title"], merged["visibility"], merged["assigned_to"],
            merged["due_date"], merged["members"]
        )

        if "labels" in updates:
            labels = normalize_labels(updates["labels"], board.labels, self.settings.default_label_color)
            updates["labels"] = [label.model_dump() for label in labels]
        if "visibility" in updates:
            updates["visibility"] = Visibility(updates["visibility"]).value
        if updates:
            await self.store.update(card_path(board_id, column_id, card_id), updates)
        return await self.get_card(board_id, column_id, card_id)

    async def assign_members(
        self,
        board_id: str,
        column_id: str,
        card_id: str,
        assigned_to: List[str],
        names: Optional[List[str]] = None,
        visibility: Optional[Visibility] = None
    ) -> Card:
        card = await documents.load_card(self.store, board_id, column_id, card_id)
        visibility = Visibility(visibility or card.visibility)
        validate_visibility(visibility, assigned_to)
        names = names or []
        if names and len(names) != len(assigned_to):
            raise ValidationError("Member names must match assignees one to one", {"field": "members"})

        await self.store.update(card_path(board_id, column_id, card_id), {
            "assigned_to": list(assigned_to),
            "members": list(names),
            "visibility": visibility.value,
        })
        return await self.get_card(board_id, column_id, card_id)

    # =========================================================================
    # Comments
    # =========================================================================

    async def add_comment(self, board_id: str, column_id: str, card_id: str, data: CommentCreate) -> Comment:
        card = await documents.load_card(self.store, board_id, column_id, card_id)
        validate_title(data.text, "Comment text")

        collection = comments_path(board_id, column_id, card_id)
        comment_id = self.store.new_id()
        await self.store.batch([
            Mutation.create(collection, {
                "card_id": card_id,
                "text": data.text,
                "author_id": data.author_id,
                "author_name": data.author_name,
            }, doc_id=comment_id),
            Mutation.update(card_path(board_id, column_id, card_id), {"comments": card.comments + 1}),
        ])
        return Comment.model_validate(await self.store.get(f"{collection}/{comment_id}"))

    async def list_comments(self, board_id: str, column_id: str, card_id: str) -> List[Comment]:
        await documents.load_card(self.store, board_id, column_id, card_id)
        return await documents.list_comments(self.store, board_id, column_id, card_id)

    # =========================================================================
    # Checklists
    # =========================================================================

    async def _commit_checklists(
        self,
        board_id: str,
        column_id: str,
        card_id: str,
        checklists: List[Checklist],
        mutations: List[Mutation]
    ) -> int:
        """Commit checklist writes together with the card's recomputed progress"""
        progress = checklist_progress(checklists)
        mutations.append(Mutation.update(
            card_path(board_id, column_id, card_id), {"checklist_progress": progress}
        ))
        await self.store.batch(mutations)
        return progress

    async def _load_checklist(self, board_id, column_id, card_id, checklist_id):
        await documents.load_card(self.store, board_id, column_id, card_id)
        checklists = await documents.list_checklists(self.store, board_id, column_id, card_id)
        for checklist in checklists:
            if checklist.id == checklist_id:
                return checklists, checklist
        raise NotFoundError("Checklist not found", {"checklist_id": checklist_id})

    async def add_checklist(self, board_id: str, column_id: str, card_id: str, data: ChecklistCreate) -> Checklist:
        await documents.load_card(self.store, board_id, column_id, card_id)
        checklists = await documents.list_checklists(self.store, board_id, column_id, card_id)

        checklist = Checklist(
            id=self.store.new_id(),
            card_id=card_id,
            title=data.title,
            items=[
                ChecklistItem(id=self.store.new_id(), text=item.text, completed=item.completed, order=index)
                for index, item in enumerate(data.items)
            ]
        )
        fields = checklist.model_dump(exclude={"id", "created_at", "updated_at"})
        await self._commit_checklists(
            board_id, column_id, card_id, checklists + [checklist],
            [Mutation.create(checklists_path(board_id, column_id, card_id), fields, doc_id=checklist.id)]
        )
        return Checklist.model_validate(
            await self.store.get(f"{checklists_path(board_id, column_id, card_id)}/{checklist.id}")
        )

    async def _save_items(self, board_id, column_id, card_id, checklists, checklist, items) -> Checklist:
        updated = checklist.model_copy(update={"items": items})
        checklists = [updated if c.id == checklist.id else c for c in checklists]
        path = f"{checklists_path(board_id, column_id, card_id)}/{checklist.id}"
        await self._commit_checklists(
            board_id, column_id, card_id, checklists,
            [Mutation.update(path, {"items": [item.model_dump() for item in items]})]
        )
        return Checklist.model_validate(await self.store.get(path))

    async def add_checklist_item(
        self,
        board_id: str,
        column_id: str,
        card_id: str,
        checklist_id: str,
        data: ChecklistItemCreate
    ) -> Checklist:
        checklists, checklist = await self._load_checklist(board_id, column_id, card_id, checklist_id)
        item = ChecklistItem(
            id=self.store.new_id(),
            text=data.text,
            completed=data.completed,
            order=len(checklist.items)
        )
        return await self._save_items(
            board_id, column_id, card_id, checklists, checklist, checklist.items + [item]
        )

    async def toggle_checklist_item(
        self,
        board_id: str,
        column_id: str,
        card_id: str,
        checklist_id: str,
        item_id: str
    ) -> Checklist:
        checklists, checklist = await self._load_checklist(board_id, column_id, card_id, checklist_id)
        if not any(item.id == item_id for item in checklist.items):
            raise NotFoundError("Checklist item not found", {"item_id": item_id})

        items = [
            item.model_copy(update={"completed": not item.completed}) if item.id == item_id else item
            for item in checklist.items
        ]
        return await self._save_items(board_id, column_id, card_id, checklists, checklist, items)

    async def delete_checklist(self, board_id: str, column_id: str, card_id: str, checklist_id: str) -> int:
        """Delete a checklist; returns the card's new progress"""
        checklists, checklist = await self._load_checklist(board_id, column_id, card_id, checklist_id)
        remaining = [c for c in checklists if c.id != checklist_id]
        return await self._commit_checklists(
            board_id, column_id, card_id, remaining,
            [Mutation.delete(f"{checklists_path(board_id, column_id, card_id)}/{checklist_id}")]
        )
