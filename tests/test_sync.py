"""Sync Coordinator Tests

Tests for the optimistic update protocol: the intended tree is installed
before the store write, committed ranks are folded back, and failures are
replaced with an authoritative refetch.
"""

import pytest

from boardsync.errors import PartialCascadeError, StoreError, ValidationError
from boardsync.services import ordering
from boardsync.services.documents import list_cards, list_columns
from boardsync.services.sync import SyncCoordinator, SyncState

from tests.factories import (
    create_board, create_card, create_column, create_column_with_cards, create_comment,
)


def _ranks(tree, column_id):
    return [(c.title, c.order) for c in tree.node(column_id).cards]


async def _stored(store, board_id, column_id):
    return [(c.title, c.order) for c in ordering.active(await list_cards(store, board_id, column_id))]


async def _hidden_column(store, board_id, titles, hidden_at, title="A", order=0):
    """Column whose card at `hidden_at` is private to u2"""
    column_id = await create_column(store, board_id, title, order=order)
    for index, card_title in enumerate(titles):
        if index == hidden_at:
            await create_card(store, board_id, column_id, card_title, order=index,
                              visibility="private", assigned_to=["u2"])
        else:
            await create_card(store, board_id, column_id, card_title, order=index)
    return column_id


@pytest.fixture
def coordinator_for(store, test_settings):
    async def build(board_id, viewer_id="u1", is_admin=False, notify=None):
        coordinator = SyncCoordinator(store, board_id, viewer_id, is_admin, test_settings, notify)
        await coordinator.load()
        return coordinator
    return build


class TestOptimisticReorder:
    """Test the pending and committed states of a reorder"""

    @pytest.mark.asyncio
    async def test_tree_is_updated_before_the_write(self, store, coordinator_for):
        board_id = await create_board(store)
        column_id, _ = await create_column_with_cards(store, board_id, ["P", "Q", "R"])
        coordinator = await coordinator_for(board_id)
        seen = []

        def observe(op):
            seen.append((op, coordinator.state, _ranks(coordinator.tree, column_id)))
        store.before_write = observe

        tree = await coordinator.reorder(column_id, 2, 0)

        assert seen == [("batch", SyncState.PENDING, [("R", 0), ("P", 1), ("Q", 2)])]
        assert coordinator.state == SyncState.COMMITTED
        assert _ranks(tree, column_id) == [("R", 0), ("P", 1), ("Q", 2)]

    @pytest.mark.asyncio
    async def test_reorder_around_hidden_card(self, store, coordinator_for):
        board_id = await create_board(store)
        column_id = await _hidden_column(store, board_id, ["P", "H", "Q", "R"], hidden_at=1)
        coordinator = await coordinator_for(board_id, viewer_id="u1")

        tree = await coordinator.reorder(column_id, 2, 0)

        assert await _stored(store, board_id, column_id) == [("R", 0), ("P", 1), ("H", 2), ("Q", 3)]
        assert _ranks(tree, column_id) == [("R", 0), ("P", 1), ("Q", 3)]

    @pytest.mark.asyncio
    async def test_reorder_columns(self, store, coordinator_for):
        board_id = await create_board(store)
        for index, title in enumerate(["To Do", "Doing", "Done"]):
            await create_column(store, board_id, title, order=index)
        coordinator = await coordinator_for(board_id)

        tree = await coordinator.reorder(board_id, 0, 2)

        assert [n.column.title for n in tree.columns] == ["Doing", "Done", "To Do"]
        stored = ordering.active(await list_columns(store, board_id))
        assert [(c.title, c.order) for c in stored] == [("Doing", 0), ("Done", 1), ("To Do", 2)]

    @pytest.mark.asyncio
    async def test_same_index_is_a_no_op(self, store, coordinator_for):
        board_id = await create_board(store)
        column_id, _ = await create_column_with_cards(store, board_id, ["P", "Q"])
        coordinator = await coordinator_for(board_id)
        before = coordinator.tree
        store.reset()

        assert await coordinator.reorder(column_id, 1, 1) is before
        assert store.write_count == 0
        assert coordinator.state == SyncState.IDLE

    @pytest.mark.asyncio
    async def test_unloaded_coordinator(self, store, test_settings):
        coordinator = SyncCoordinator(store, "b", settings=test_settings)
        with pytest.raises(ValidationError):
            await coordinator.reorder("c", 0, 1)


class TestFailureRecovery:
    """Test rollback by refetch"""

    @pytest.mark.asyncio
    async def test_failed_reorder_refetches(self, store, coordinator_for):
        board_id = await create_board(store)
        column_id, _ = await create_column_with_cards(store, board_id, ["P", "Q", "R"])
        received = []
        coordinator = await coordinator_for(board_id, notify=received.append)
        store.fail_on("batch")

        with pytest.raises(StoreError):
            await coordinator.reorder(column_id, 2, 0)

        assert coordinator.state == SyncState.FAILED
        assert _ranks(coordinator.tree, column_id) == [("P", 0), ("Q", 1), ("R", 2)]
        assert len(coordinator.notifications) == 1
        notification = coordinator.notifications[0]
        assert (notification.action, notification.kind, notification.partial) == ("reorder", "StoreError", False)
        assert received == [notification]

    @pytest.mark.asyncio
    async def test_partial_move_shows_card_in_both_columns(self, store, coordinator_for):
        board_id = await create_board(store)
        a_id, (card_id,) = await create_column_with_cards(store, board_id, ["Mover"], "A")
        b_id, _ = await create_column_with_cards(store, board_id, ["B0"], "B", order=1)
        await create_comment(store, board_id, a_id, card_id)
        coordinator = await coordinator_for(board_id)
        store.fail_on("batch", nth=1)

        with pytest.raises(PartialCascadeError):
            await coordinator.move(card_id, a_id, b_id, 0)

        assert coordinator.notifications[-1].partial is True
        assert [c.title for c in coordinator.tree.node(a_id).cards] == ["Mover"]
        assert "Mover" in [c.title for c in coordinator.tree.node(b_id).cards]

    @pytest.mark.asyncio
    async def test_failed_refetch_keeps_last_confirmed_tree(self, store, coordinator_for, monkeypatch):
        board_id = await create_board(store)
        column_id, _ = await create_column_with_cards(store, board_id, ["P", "Q"])
        coordinator = await coordinator_for(board_id)
        confirmed = coordinator.tree

        async def unavailable():
            raise StoreError("Store unavailable")
        monkeypatch.setattr(coordinator, "load", unavailable)
        store.fail_on("batch")

        with pytest.raises(StoreError):
            await coordinator.reorder(column_id, 0, 1)

        assert coordinator.tree is confirmed
        assert coordinator.state == SyncState.FAILED

    @pytest.mark.asyncio
    async def test_unexpected_error_is_reported_as_store_error(self, store, coordinator_for, monkeypatch):
        board_id = await create_board(store)
        column_id, _ = await create_column_with_cards(store, board_id, ["P", "Q"])
        coordinator = await coordinator_for(board_id)

        async def broken(*args):
            raise RuntimeError("connection reset")
        monkeypatch.setattr(coordinator.engine, "reorder_cards", broken)

        with pytest.raises(StoreError) as exc_info:
            await coordinator.reorder(column_id, 0, 1)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert coordinator.state == SyncState.FAILED
        assert _ranks(coordinator.tree, column_id) == [("P", 0), ("Q", 1)]
        assert [(n.action, n.kind) for n in coordinator.notifications] == [("reorder", "StoreError")]


class TestMove:
    """Test cross-column moves through the coordinator"""

    @pytest.mark.asyncio
    async def test_move_past_hidden_card(self, store, coordinator_for):
        board_id = await create_board(store)
        a_id, (card_id,) = await create_column_with_cards(store, board_id, ["M"], "A")
        b_id = await _hidden_column(store, board_id, ["X", "H", "Y"], hidden_at=1, title="B", order=1)
        coordinator = await coordinator_for(board_id, viewer_id="u1")

        tree = await coordinator.move(card_id, a_id, b_id, 1)

        assert await _stored(store, board_id, b_id) == [("X", 0), ("H", 1), ("M", 2), ("Y", 3)]
        assert _ranks(tree, b_id) == [("X", 0), ("M", 2), ("Y", 3)]
        assert tree.node(a_id).cards == ()

        stored = {c.title: c.id for c in await list_cards(store, board_id, b_id)}
        assert tree.node(b_id).cards[1].id == stored["M"]
        assert stored["M"] != card_id

    @pytest.mark.asyncio
    async def test_same_column_move(self, store, coordinator_for):
        board_id = await create_board(store)
        column_id, (p, _, _) = await create_column_with_cards(store, board_id, ["P", "Q", "R"])
        coordinator = await coordinator_for(board_id)

        tree = await coordinator.move(p, column_id, column_id, 2)

        assert _ranks(tree, column_id) == [("Q", 0), ("R", 1), ("P", 2)]

    @pytest.mark.asyncio
    async def test_move_card_with_catalog_label_reference(self, store, coordinator_for):
        board_id = await create_board(store, labels=[{"id": "l1", "name": "Design", "color": "#123456"}])
        a_id = await create_column(store, board_id, "A")
        b_id = await create_column(store, board_id, "B", order=1)
        card_id = await create_card(store, board_id, a_id, "Tagged", labels=[{"id": "l1"}])
        coordinator = await coordinator_for(board_id)

        tree = await coordinator.move(card_id, a_id, b_id, 0)

        assert coordinator.state == SyncState.COMMITTED
        assert coordinator.notifications == []
        moved = tree.node(b_id).cards[0]
        assert [(l.id, l.text) for l in moved.labels] == [("l1", "Design")]


class TestStructuralOperations:
    """Test cascades, duplicates and archive/restore through the coordinator"""

    @pytest.mark.asyncio
    async def test_delete_column(self, store, coordinator_for):
        board_id = await create_board(store)
        ids = [await create_column(store, board_id, t, order=i) for i, t in enumerate(["A", "B", "C"])]
        coordinator = await coordinator_for(board_id)

        tree = await coordinator.delete_column(ids[1])

        assert [(n.column.title, n.column.order) for n in tree.columns] == [("A", 0), ("C", 1)]
        assert coordinator.state == SyncState.COMMITTED

    @pytest.mark.asyncio
    async def test_delete_card(self, store, coordinator_for):
        board_id = await create_board(store)
        column_id, (p, q, r) = await create_column_with_cards(store, board_id, ["P", "Q", "R"])
        coordinator = await coordinator_for(board_id)

        tree = await coordinator.delete_card(q)

        assert _ranks(tree, column_id) == [("P", 0), ("R", 1)]
        assert await _stored(store, board_id, column_id) == [("P", 0), ("R", 1)]

    @pytest.mark.asyncio
    async def test_duplicate_card_placeholder_is_replaced(self, store, coordinator_for):
        board_id = await create_board(store)
        column_id, (p, _) = await create_column_with_cards(store, board_id, ["P", "Q"])
        coordinator = await coordinator_for(board_id)
        pending = []
        store.before_write = lambda op: pending.append(coordinator.tree.node(column_id).cards[-1].id)

        tree = await coordinator.duplicate_card(p, created_by="carol")

        assert pending[0].startswith("pending-")
        copy = tree.node(column_id).cards[-1]
        assert copy.title == "P (Copy)"
        assert copy.id in [c.id for c in await list_cards(store, board_id, column_id)]

    @pytest.mark.asyncio
    async def test_duplicate_column(self, store, coordinator_for):
        board_id = await create_board(store)
        column_id = await _hidden_column(store, board_id, ["P", "H", "Q"], hidden_at=1, title="Sprint")
        coordinator = await coordinator_for(board_id, viewer_id="u1")

        tree = await coordinator.duplicate_column(column_id)

        node = tree.columns[-1]
        assert node.column.title == "Sprint (Copy)"
        assert not node.column.id.startswith("pending-")
        assert [c.title for c in node.cards] == ["P", "Q"]
        assert len(await list_cards(store, board_id, node.column.id)) == 3

    @pytest.mark.asyncio
    async def test_archive_and_restore_card(self, store, coordinator_for):
        board_id = await create_board(store)
        column_id = await _hidden_column(store, board_id, ["P", "Q", "H"], hidden_at=2)
        coordinator = await coordinator_for(board_id, viewer_id="u1")
        q = coordinator.tree.node(column_id).cards[1].id

        tree = await coordinator.archive_card(q, archived_by="u1")
        assert _ranks(tree, column_id) == [("P", 0)]
        assert [c.id for c in tree.node(column_id).archived_cards] == [q]

        tree = await coordinator.restore_card(q)
        # Restored behind the hidden card
        assert _ranks(tree, column_id) == [("P", 0), ("Q", 2)]
        assert await _stored(store, board_id, column_id) == [("P", 0), ("H", 1), ("Q", 2)]

    @pytest.mark.asyncio
    async def test_archived_card_in_archived_column(self, store, coordinator_for):
        board_id = await create_board(store)
        column_id = await create_column(store, board_id, "Old", archived=True)
        card_id = await create_card(store, board_id, column_id, "P", archived=True)
        coordinator = await coordinator_for(board_id)
        store.reset()

        tree = await coordinator.archive_card(card_id)

        assert coordinator.state == SyncState.COMMITTED
        assert store.write_count == 0
        assert [c.id for c in tree.archived_columns[0].archived_cards] == [card_id]

    @pytest.mark.asyncio
    async def test_archive_and_restore_column(self, store, coordinator_for):
        board_id = await create_board(store)
        ids = [await create_column(store, board_id, t, order=i) for i, t in enumerate(["A", "B"])]
        coordinator = await coordinator_for(board_id)

        tree = await coordinator.archive_column(ids[0])
        assert [(n.column.title, n.column.order) for n in tree.columns] == [("B", 0)]
        assert [n.column.title for n in tree.archived_columns] == ["A"]

        tree = await coordinator.restore_column(ids[0])
        assert [(n.column.title, n.column.order) for n in tree.columns] == [("B", 0), ("A", 1)]
        assert tree.archived_columns == ()
