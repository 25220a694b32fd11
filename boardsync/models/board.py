"""Board models"""

from datetime import date, datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..errors import ValidationError
from .labels import Label, LabelDefinition, normalize_labels

# Fields the store owns; never copied from one document into another
STORE_FIELDS = {"id", "created_at", "updated_at"}


class Visibility(str, Enum):
    PUBLIC = "public"    # Every board member can see the card
    PRIVATE = "private"  # Only assignees (and admins) can see the card


class ChecklistItem(BaseModel):
    id: str
    text: str
    completed: bool = False
    order: int = 0


class ChecklistItemCreate(BaseModel):
    text: str = Field(..., min_length=1, max_length=500)
    completed: bool = False


class Checklist(BaseModel):
    id: str
    card_id: str
    title: str = "Checklist"
    items: List[ChecklistItem] = []
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ChecklistCreate(BaseModel):
    title: str = Field("Checklist", min_length=1, max_length=100)
    items: List[ChecklistItemCreate] = []


class Comment(BaseModel):
    id: str
    card_id: str
    text: str
    author_id: Optional[str] = None
    author_name: str = "Anonymous"
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class CommentCreate(BaseModel):
    text: str = Field(..., min_length=1, max_length=2000)
    author_id: Optional[str] = None
    author_name: str = "Anonymous"


class BoardCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    color: Optional[str] = None
    columns: Optional[List[str]] = None


class BoardUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    color: Optional[str] = None


class Board(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    color: str = "#2E78D2"
    members: List[str] = []
    member_names: List[str] = []
    favorite: bool = False
    labels: List[LabelDefinition] = []
    created_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ColumnCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=50)
    wip_limit: Optional[int] = Field(None, ge=1)


class ColumnUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=50)
    wip_limit: Optional[int] = Field(None, ge=1)


class Column(BaseModel):
    id: str
    board_id: str
    title: str
    order: int = 0
    archived: bool = False
    wip_limit: Optional[int] = None
    archived_at: Optional[str] = None
    archived_by: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class CardCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    labels: List[Any] = []
    assigned_to: List[str] = []
    members: List[str] = []
    visibility: Visibility = Visibility.PUBLIC
    due_date: Optional[str] = None


class CardUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    labels: Optional[List[Any]] = None
    assigned_to: Optional[List[str]] = None
    members: Optional[List[str]] = None
    visibility: Optional[Visibility] = None
    due_date: Optional[str] = None
    completed: Optional[bool] = None


class Card(BaseModel):
    id: str
    board_id: str
    column_id: str
    title: str
    description: Optional[str] = None
    order: int = 0
    labels: List[Label] = []
    assigned_to: List[str] = []
    members: List[str] = []
    visibility: Visibility = Visibility.PUBLIC
    archived: bool = False
    archived_at: Optional[str] = None
    archived_by: Optional[str] = None
    due_date: Optional[str] = None
    comments: int = 0
    attachments: int = 0
    completed: bool = False
    checklist_progress: int = 0
    created_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @field_validator("labels", mode="before")
    @classmethod
    def _normalize_labels(cls, value):
        return normalize_labels(value)


def to_fields(model: BaseModel, **overrides) -> dict:
    """Document fields for a model, minus store-owned fields"""
    fields = model.model_dump(mode="json", exclude=STORE_FIELDS)
    fields.update(overrides)
    return fields


# =============================================================================
# Validation
# =============================================================================

def parse_due_date(value: Optional[str]) -> Optional[date]:
    """Parse a due date given as YYYY-MM-DD or an ISO datetime"""
    if value is None or value == "":
        return None
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        pass
    try:
        return datetime.fromisoformat(value).date()
    except (TypeError, ValueError):
        raise ValidationError(f"Malformed due date: {value!r}", {"field": "due_date"})


def validate_card(
    title: Optional[str],
    visibility: Visibility,
    assigned_to: List[str],
    due_date: Optional[str] = None,
    members: Optional[List[str]] = None
):
    """Reject card state that must never be persisted"""
    if not title or not title.strip():
        raise ValidationError("Card title is required", {"field": "title"})

    parse_due_date(due_date)
    validate_visibility(visibility, assigned_to)

    if members and len(members) != len(assigned_to):
        raise ValidationError(
            "Member names must match assignees one to one",
            {"field": "members"}
        )


def validate_title(title: Optional[str], what: str = "Title"):
    if not title or not title.strip():
        raise ValidationError(f"{what} is required", {"field": "title"})


def checklist_progress(checklists: List[Checklist]) -> int:
    """Percentage of completed items across every checklist of a card"""
    items = [item for checklist in checklists for item in checklist.items]
    if not items:
        return 0
    completed = sum(1 for item in items if item.completed)
    return round(completed * 100 / len(items))


def validate_visibility(visibility: Visibility, assigned_to: List[str]):
    """A private card must keep at least one assignee"""
    if Visibility(visibility) == Visibility.PRIVATE and not assigned_to:
        raise ValidationError(
            "A private card must have at least one assignee",
            {"field": "assigned_to"}
        )
