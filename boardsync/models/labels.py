"""Label normalization

Cards carry labels either as plain strings (a catalog id or name) or as
inline objects ({id, name, color} or {text, color}). Everything is converted
to a single Label shape at ingress so engine code never branches on the raw
form.
"""

from typing import Any, Iterable, List, Optional

from pydantic import BaseModel, Field

from ..errors import ValidationError


class LabelDefinition(BaseModel):
    """Board-scoped catalog entry"""
    id: str
    name: str = Field(..., min_length=1, max_length=30)
    color: str = "#2E78D2"


class Label(BaseModel):
    """Normalized label as carried by a card"""
    id: Optional[str] = None
    text: str
    color: str


# Colors for well-known label names when the board catalog has no entry
DEFAULT_LABEL_COLORS = {
    "Design": "#2E78D2",
    "Urgent": "#F44336",
    "Budget": "#4CAF50",
    "Production": "#FFC107",
    "Review": "#9C27B0",
    "Done": "#4CAF50",
}


def _find_in_catalog(key: str, catalog: Iterable[LabelDefinition]) -> Optional[LabelDefinition]:
    for entry in catalog:
        if entry.id == key or entry.name == key:
            return entry
    return None


def normalize_label(
    raw: Any,
    catalog: Iterable[LabelDefinition] = (),
    default_color: str = "#E8DCC5"
) -> Label:
    """Convert any accepted label form into a Label"""
    catalog = list(catalog)

    if isinstance(raw, Label):
        return raw

    if isinstance(raw, LabelDefinition):
        return Label(id=raw.id, text=raw.name, color=raw.color)

    if isinstance(raw, str):
        entry = _find_in_catalog(raw, catalog)
        if entry:
            return Label(id=entry.id, text=entry.name, color=entry.color)
        return Label(text=raw, color=DEFAULT_LABEL_COLORS.get(raw, default_color))

    if isinstance(raw, dict):
        label_id = raw.get("id")
        text = raw.get("text") or raw.get("name")
        entry = _find_in_catalog(label_id, catalog) if label_id else None
        if entry:
            return Label(id=entry.id, text=text or entry.name, color=raw.get("color") or entry.color)
        if not text:
            raise ValidationError(f"Label has no text: {raw!r}", {"field": "labels"})
        color = raw.get("color") or DEFAULT_LABEL_COLORS.get(text, default_color)
        return Label(id=label_id, text=text, color=color)

    raise ValidationError(f"Unsupported label value: {raw!r}", {"field": "labels"})


def normalize_labels(
    raw_labels: Optional[Iterable[Any]],
    catalog: Iterable[LabelDefinition] = (),
    default_color: str = "#E8DCC5"
) -> List[Label]:
    catalog = list(catalog)
    return [normalize_label(raw, catalog, default_color) for raw in (raw_labels or [])]


def label_matches(label: Label, key: str) -> bool:
    """True when a filter key names this label by id or text"""
    return label.id == key or label.text == key
