"""Board Service Tests

Tests for boards, members, the label catalog, columns, cards, comments and
checklists.
"""

import pytest

from boardsync.errors import NotFoundError, PartialCascadeError, ValidationError
from boardsync.models.board import (
    BoardCreate, BoardUpdate, CardCreate, CardUpdate, ChecklistCreate,
    ChecklistItemCreate, ColumnCreate, ColumnUpdate, CommentCreate, Visibility,
)
from boardsync.services import ordering
from boardsync.services.boards import BoardService
from boardsync.services.documents import list_cards, list_columns
from boardsync.services.store import card_path

from tests.factories import create_board, create_card, create_column, create_column_with_cards


@pytest.fixture
def service(store, test_settings):
    return BoardService(store, test_settings)


class TestBoards:
    """Test board creation and listing"""

    @pytest.mark.asyncio
    async def test_create_board_with_default_columns(self, store, service):
        board = await service.create_board(BoardCreate(title="Launch"), created_by="alice", created_by_name="Alice")

        assert board.members == ["alice"]
        assert board.member_names == ["Alice"]
        assert board.color == "#2E78D2"
        assert board.favorite is False
        columns = await list_columns(store, board.id)
        assert [(c.title, c.order) for c in columns] == [
            ("To Do", 0), ("In Progress", 1), ("Review", 2), ("Done", 3),
        ]

    @pytest.mark.asyncio
    async def test_create_board_with_caller_columns(self, store, service):
        board = await service.create_board(BoardCreate(title="Launch", columns=["Backlog", "Shipped"]))
        columns = await list_columns(store, board.id)
        assert [(c.title, c.order) for c in columns] == [("Backlog", 0), ("Shipped", 1)]

    @pytest.mark.asyncio
    async def test_column_batch_failure_is_partial(self, store, service):
        store.fail_on("batch")
        with pytest.raises(PartialCascadeError) as exc_info:
            await service.create_board(BoardCreate(title="Launch"))

        board_id = exc_info.value.leftover_ids[0]
        assert (await service.get_board(board_id)).title == "Launch"
        assert await list_columns(store, board_id) == []

    @pytest.mark.asyncio
    async def test_list_boards_filters(self, store, service):
        await create_board(store, "Mine", members=["alice"])
        await create_board(store, "Shared", members=["alice", "bob"], favorite=True)
        await create_board(store, "Theirs", members=["bob"])

        assert sorted(b.title for b in await service.list_boards("alice")) == ["Mine", "Shared"]
        assert [b.title for b in await service.list_boards("alice", favorites_only=True)] == ["Shared"]
        assert len(await service.list_boards()) == 3

    @pytest.mark.asyncio
    async def test_list_boards_newest_update_first(self, store, service):
        first = await create_board(store, "First")
        await create_board(store, "Second")
        await service.update_board(first, BoardUpdate(description="touched"))

        assert [b.title for b in await service.list_boards()] == ["First", "Second"]

    @pytest.mark.asyncio
    async def test_update_and_favorite(self, store, service):
        board_id = await create_board(store, "Old")

        board = await service.update_board(board_id, BoardUpdate(title="New"))
        assert board.title == "New"
        assert (await service.toggle_favorite(board_id)).favorite is True
        assert (await service.toggle_favorite(board_id)).favorite is False

    @pytest.mark.asyncio
    async def test_missing_board(self, service):
        with pytest.raises(NotFoundError):
            await service.get_board("ghost")


class TestMembers:
    """Test parallel member arrays"""

    @pytest.mark.asyncio
    async def test_add_and_remove_keep_arrays_parallel(self, store, service):
        board_id = await create_board(store, members=["owner"], member_names=["Owner"])

        await service.add_member(board_id, "alice", "Alice")
        board = await service.add_member(board_id, "bob", "Bob")
        assert board.members == ["owner", "alice", "bob"]
        assert board.member_names == ["Owner", "Alice", "Bob"]

        board = await service.remove_member(board_id, "alice")
        assert board.members == ["owner", "bob"]
        assert board.member_names == ["Owner", "Bob"]

    @pytest.mark.asyncio
    async def test_add_member_is_idempotent(self, store, service):
        board_id = await create_board(store, members=["owner"])
        store.reset()

        board = await service.add_member(board_id, "owner", "Someone")

        assert board.members == ["owner"]
        assert store.write_count == 0


class TestLabels:
    """Test the board label catalog"""

    @pytest.mark.asyncio
    async def test_create_label_unique_name(self, store, service):
        board_id = await create_board(store)
        label = await service.create_label(board_id, "Urgent", "#F44336")

        assert label.name == "Urgent"
        assert (await service.get_board(board_id)).labels == [label]
        with pytest.raises(ValidationError):
            await service.create_label(board_id, "Urgent")

    @pytest.mark.asyncio
    async def test_update_label(self, store, service):
        board_id = await create_board(store)
        label = await service.create_label(board_id, "Urgent")
        await service.create_label(board_id, "Later")

        updated = await service.update_label(board_id, label.id, color="#000000")
        assert updated.color == "#000000"
        with pytest.raises(ValidationError):
            await service.update_label(board_id, label.id, name="Later")
        with pytest.raises(NotFoundError):
            await service.update_label(board_id, "ghost", name="x")

    @pytest.mark.asyncio
    async def test_delete_label_strips_cards(self, store, service):
        board_id = await create_board(store)
        label = await service.create_label(board_id, "Urgent")
        column_id = await create_column(store, board_id)
        by_id = await create_card(store, board_id, column_id, "By id", labels=[label.id, "Other"])
        by_name = await create_card(store, board_id, column_id, "By name", order=1, labels=["Urgent"])
        untouched = await create_card(store, board_id, column_id, "Plain", order=2, labels=["Other"])

        updated = await service.delete_label(board_id, label.id)

        assert updated == 2
        assert (await service.get_board(board_id)).labels == []
        assert [l.text for l in (await service.get_card(board_id, column_id, by_id)).labels] == ["Other"]
        assert (await service.get_card(board_id, column_id, by_name)).labels == []
        assert len((await service.get_card(board_id, column_id, untouched)).labels) == 1


class TestColumns:
    """Test column operations"""

    @pytest.mark.asyncio
    async def test_add_column_appends(self, store, service):
        board_id = await create_board(store)
        await create_column(store, board_id, "A", order=0)
        await create_column(store, board_id, "Old", order=1, archived=True)

        column = await service.add_column(board_id, ColumnCreate(title="B", wip_limit=3))

        assert column.order == 1
        assert column.wip_limit == 3

    @pytest.mark.asyncio
    async def test_update_column(self, store, service):
        board_id = await create_board(store)
        column_id = await create_column(store, board_id, "A")

        column = await service.update_column(board_id, column_id, ColumnUpdate(title="Renamed"))

        assert column.title == "Renamed"
        assert column.order == 0

    @pytest.mark.asyncio
    async def test_wip_limit_status(self, store, service):
        board_id = await create_board(store)
        column_id, _ = await create_column_with_cards(store, board_id, ["a", "b", "c"])
        await service.update_column(board_id, column_id, ColumnUpdate(wip_limit=2))

        status = await service.check_wip_limit(board_id, column_id)

        assert (status.count, status.limit, status.exceeded) == (3, 2, True)

    @pytest.mark.asyncio
    async def test_wip_limit_does_not_block_adding(self, store, service):
        board_id = await create_board(store)
        column_id = await create_column(store, board_id, "A", wip_limit=1)
        await service.add_card(board_id, column_id, CardCreate(title="one"))
        await service.add_card(board_id, column_id, CardCreate(title="two"))

        assert (await service.check_wip_limit(board_id, column_id)).exceeded is True


class TestCards:
    """Test card creation and updates"""

    @pytest.mark.asyncio
    async def test_add_card_appends_and_normalizes_labels(self, store, service):
        board_id = await create_board(store)
        label = await service.create_label(board_id, "Design", "#123456")
        column_id, _ = await create_column_with_cards(store, board_id, ["existing"])

        card = await service.add_card(
            board_id, column_id,
            CardCreate(title="New", labels=[label.id, "Urgent"], due_date="2024-06-01"),
            created_by="alice"
        )

        assert card.order == 1
        assert card.column_id == column_id
        assert [(l.text, l.color) for l in card.labels] == [("Design", "#123456"), ("Urgent", "#F44336")]
        assert card.created_by == "alice"

    @pytest.mark.asyncio
    async def test_private_card_without_assignee_is_never_written(self, store, service):
        board_id = await create_board(store)
        column_id = await create_column(store, board_id)
        store.reset()

        with pytest.raises(ValidationError):
            await service.add_card(board_id, column_id, CardCreate(title="Secret", visibility=Visibility.PRIVATE))
        assert store.write_count == 0

    @pytest.mark.asyncio
    async def test_cannot_add_to_archived_column(self, store, service):
        board_id = await create_board(store)
        column_id = await create_column(store, board_id, archived=True)

        with pytest.raises(ValidationError):
            await service.add_card(board_id, column_id, CardCreate(title="x"))

    @pytest.mark.asyncio
    async def test_update_validates_merged_card(self, store, service):
        board_id = await create_board(store)
        column_id = await create_column(store, board_id)
        card_id = await create_card(store, board_id, column_id, "Shared")
        store.reset()

        with pytest.raises(ValidationError):
            await service.update_card(board_id, column_id, card_id, CardUpdate(visibility=Visibility.PRIVATE))
        assert store.write_count == 0

        card = await service.update_card(
            board_id, column_id, card_id,
            CardUpdate(visibility=Visibility.PRIVATE, assigned_to=["alice"], members=["Alice"])
        )
        assert card.visibility == Visibility.PRIVATE
        assert card.assigned_to == ["alice"]

    @pytest.mark.asyncio
    async def test_update_cannot_change_order(self, store, service):
        board_id = await create_board(store)
        column_id, (card_id,) = await create_column_with_cards(store, board_id, ["Only"])

        card = await service.update_card(board_id, column_id, card_id, CardUpdate(title="Renamed", completed=True))

        assert card.title == "Renamed"
        assert card.completed is True
        assert card.order == 0

    @pytest.mark.asyncio
    async def test_assign_members(self, store, service):
        board_id = await create_board(store)
        column_id = await create_column(store, board_id)
        card_id = await create_card(store, board_id, column_id, "Task", visibility="private", assigned_to=["alice"])

        with pytest.raises(ValidationError):
            await service.assign_members(board_id, column_id, card_id, [])

        card = await service.assign_members(board_id, column_id, card_id, ["bob", "carol"], ["Bob", "Carol"])
        assert card.assigned_to == ["bob", "carol"]
        assert card.members == ["Bob", "Carol"]
        assert card.visibility == Visibility.PRIVATE


class TestCommentsAndChecklists:
    """Test card sub-resources"""

    @pytest.mark.asyncio
    async def test_add_comment_increments_counter(self, store, service):
        board_id = await create_board(store)
        column_id, (card_id,) = await create_column_with_cards(store, board_id, ["Task"])

        await service.add_comment(board_id, column_id, card_id, CommentCreate(text="first", author_id="alice"))
        await service.add_comment(board_id, column_id, card_id, CommentCreate(text="second"))

        comments = await service.list_comments(board_id, column_id, card_id)
        assert [(c.text, c.author_name) for c in comments] == [("first", "Anonymous"), ("second", "Anonymous")]
        assert (await store.get(card_path(board_id, column_id, card_id)))["comments"] == 2

    @pytest.mark.asyncio
    async def test_checklist_progress_follows_items(self, store, service):
        board_id = await create_board(store)
        column_id, (card_id,) = await create_column_with_cards(store, board_id, ["Task"])

        checklist = await service.add_checklist(board_id, column_id, card_id, ChecklistCreate(
            title="Steps",
            items=[ChecklistItemCreate(text="one", completed=True), ChecklistItemCreate(text="two")]
        ))
        card = await service.get_card(board_id, column_id, card_id)
        assert card.checklist_progress == 50

        checklist = await service.add_checklist_item(
            board_id, column_id, card_id, checklist.id, ChecklistItemCreate(text="three")
        )
        assert [item.order for item in checklist.items] == [0, 1, 2]
        assert (await service.get_card(board_id, column_id, card_id)).checklist_progress == 33

        second = checklist.items[1]
        checklist = await service.toggle_checklist_item(board_id, column_id, card_id, checklist.id, second.id)
        assert checklist.items[1].completed is True
        assert (await service.get_card(board_id, column_id, card_id)).checklist_progress == 67

        progress = await service.delete_checklist(board_id, column_id, card_id, checklist.id)
        assert progress == 0
        assert (await service.get_card(board_id, column_id, card_id)).checklist_progress == 0

    @pytest.mark.asyncio
    async def test_unknown_checklist_item(self, store, service):
        board_id = await create_board(store)
        column_id, (card_id,) = await create_column_with_cards(store, board_id, ["Task"])
        checklist = await service.add_checklist(board_id, column_id, card_id, ChecklistCreate())

        with pytest.raises(NotFoundError):
            await service.toggle_checklist_item(board_id, column_id, card_id, checklist.id, "ghost")


class TestDensityAcrossOperations:
    """Active ranks stay 0..N-1 through a mixed sequence of operations"""

    @pytest.mark.asyncio
    async def test_mixed_sequence(self, store, service):
        from boardsync.services.cascade import CascadeManager
        from boardsync.services.moves import MoveEngine

        board = await service.create_board(BoardCreate(title="Ops", columns=["A", "B", "C"]))
        columns = await list_columns(store, board.id)
        a, b, c = (col.id for col in columns)
        for index in range(4):
            await service.add_card(board.id, a, CardCreate(title=f"a{index}"))
            await service.add_card(board.id, b, CardCreate(title=f"b{index}"))

        engine = MoveEngine(store)
        cascade = CascadeManager(store, service.settings)
        a_cards = ordering.active(await list_cards(store, board.id, a))
        await engine.move_card(board.id, a_cards[1].id, a, b, 2)
        await cascade.archive_card(board.id, b, ordering.active(await list_cards(store, board.id, b))[0].id)
        await engine.reorder_cards(board.id, b, 3, 0)
        await cascade.duplicate_card(board.id, a, a_cards[0].id)
        await cascade.delete_card(board.id, a, a_cards[2].id)
        await cascade.archive_column(board.id, b)
        await service.add_column(board.id, ColumnCreate(title="D"))
        await engine.reorder_columns(board.id, 2, 0)
        await cascade.restore_column(board.id, b)

        assert ordering.is_dense(await list_columns(store, board.id))
        for column in await list_columns(store, board.id):
            assert ordering.is_dense(await list_cards(store, board.id, column.id))
