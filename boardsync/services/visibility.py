"""Card visibility filter and board-view predicates"""

from datetime import date
from typing import List, Optional, Sequence

from pydantic import BaseModel

from ..models.board import Card, Visibility, parse_due_date
from ..models.labels import label_matches


def can_view(card: Card, viewer_id: Optional[str], is_admin: bool = False) -> bool:
    """Admins see everything; others see public cards and private cards assigned to them"""
    if is_admin:
        return True
    if card.visibility == Visibility.PUBLIC:
        return True
    return viewer_id is not None and viewer_id in card.assigned_to


def filter_visible(cards: Sequence[Card], viewer_id: Optional[str], is_admin: bool = False) -> List[Card]:
    """Cards the viewer may read, in their original order"""
    if is_admin:
        return list(cards)
    return [card for card in cards if can_view(card, viewer_id)]


class CardFilters(BaseModel):
    """Board view filters; every set field must match (conjunction)"""
    search: Optional[str] = None
    label: Optional[str] = None
    member: Optional[str] = None
    due_before: Optional[str] = None
    overdue: Optional[bool] = None
    archived: Optional[bool] = None


def _is_overdue(card: Card, today: date) -> bool:
    due = parse_due_date(card.due_date)
    return due is not None and due < today and not card.completed


def apply_filters(cards: Sequence[Card], filters: CardFilters, today: Optional[date] = None) -> List[Card]:
    """Narrow an already visibility-filtered card list.

    Archived cards are hidden unless `archived` is set explicitly.
    """
    today = today or date.today()
    result = list(cards)

    if filters.search:
        needle = filters.search.lower()
        result = [
            card for card in result
            if needle in card.title.lower() or needle in (card.description or "").lower()
        ]

    if filters.member:
        result = [card for card in result if filters.member in card.assigned_to]

    if filters.label:
        result = [
            card for card in result
            if any(label_matches(label, filters.label) for label in card.labels)
        ]

    if filters.due_before:
        limit = parse_due_date(filters.due_before)
        result = [
            card for card in result
            if card.due_date and parse_due_date(card.due_date) <= limit
        ]

    if filters.overdue is not None:
        result = [card for card in result if _is_overdue(card, today) == filters.overdue]

    if filters.archived is not None:
        result = [card for card in result if card.archived == filters.archived]
    else:
        result = [card for card in result if not card.archived]

    return result
