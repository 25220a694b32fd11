"""Models package - pydantic documents and request payloads"""

from .labels import Label, LabelDefinition, normalize_label, normalize_labels
from .board import (
    Board, BoardCreate, BoardUpdate,
    Column, ColumnCreate, ColumnUpdate,
    Card, CardCreate, CardUpdate, Visibility,
    Comment, CommentCreate,
    Checklist, ChecklistCreate, ChecklistItem, ChecklistItemCreate,
)
