"""Field kinds an author can drag onto the canvas."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List

from formbuilder.schemas import FieldDraft, FieldKind


@dataclass(frozen=True)
class CatalogEntry:
    kind: FieldKind
    label: str
    icon: str
    description: str
    default_label: str


_ENTRIES: List[CatalogEntry] = [
    CatalogEntry("checkbox", "Checkbox", "check-square", "Yes/No or completed/incomplete", "New Checkbox"),
    CatalogEntry("text", "Text", "type", "Short text input", "New Text Field"),
    CatalogEntry("number", "Number", "hash", "Numeric input with validation", "New Number Field"),
    CatalogEntry("time", "Time", "clock", "Time picker", "New Time Field"),
    CatalogEntry("photo", "Photo", "camera", "Camera or photo upload", "New Photo Field"),
    CatalogEntry("signature", "Signature", "pen-tool", "Digital signature capture", "New Signature Field"),
    CatalogEntry("heading", "Heading", "heading-2", "Section title or header", "Section Heading"),
    CatalogEntry("divider", "Divider", "minus", "Visual separator", "Divider"),
]

_BY_KIND: Dict[str, CatalogEntry] = {e.kind: e for e in _ENTRIES}


def entries() -> List[CatalogEntry]:
    """All entries in the order the library panel lists them."""
    return list(_ENTRIES)


def get_entry(kind: str) -> CatalogEntry:
    try:
        return _BY_KIND[kind]
    except KeyError:
        raise ValueError(f"Unknown field kind: {kind!r}") from None


def default_label(kind: str) -> str:
    return get_entry(kind).default_label


def field_defaults(kind: str) -> FieldDraft:
    """The draft inserted when a kind token is dropped on a section."""
    entry = get_entry(kind)
    return FieldDraft(type=entry.kind, label=entry.default_label, required=False)
