"""
The single authoritative, mutable form being edited in a builder session.

Everything that changes the form goes through SchemaStore. Structural mutations
are plain synchronous methods, so on the event loop a reader never sees a section
or field list half-way through an update. Only ``load_form`` suspends.
"""
from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from formbuilder.rules import rules_referencing
from formbuilder.schemas import (
    FORM_STATUSES,
    FORM_TYPES,
    FieldDraft,
    FieldPatch,
    FormField,
    FormSchema,
    FormSection,
    SectionPatch,
    apply_patch,
    new_id,
    validation_for_kind,
)

logger = logging.getLogger(__name__)


class SchemaStore:
    def __init__(self, service=None):
        self.service = service
        self.form: Optional[FormSchema] = None
        self.dirty = False
        self.saving = False
        self.last_saved: Optional[datetime] = None
        # bumped on every mutation; lets a finished save tell whether edits raced it
        self.revision = 0
        self._selected_field_id: Optional[str] = None
        self._selected_section_id: Optional[str] = None
        self._field_index: Dict[str, str] = {}

    # ------------------------------------------------------------------ helpers

    def _touch(self) -> None:
        self.dirty = True
        self.revision += 1

    def _reindex(self) -> None:
        self._field_index = {
            field.id: section.id
            for section in (self.form.sections if self.form else [])
            for field in section.fields
        }

    @staticmethod
    def _renumber(items) -> None:
        for position, item in enumerate(items):
            item.order = position

    def _install(self, form: Optional[FormSchema]) -> None:
        self.form = form
        self._selected_field_id = None
        self._selected_section_id = None
        self._reindex()

    def get_section(self, section_id: str) -> Optional[FormSection]:
        if self.form is None:
            return None
        for section in self.form.sections:
            if section.id == section_id:
                return section
        return None

    def locate_field(self, field_id: str) -> Optional[Tuple[FormSection, int]]:
        """(owning section, index in its field list) or None."""
        section_id = self._field_index.get(field_id)
        section = self.get_section(section_id) if section_id else None
        if section is None:
            return None
        for index, field in enumerate(section.fields):
            if field.id == field_id:
                return section, index
        return None

    def get_field(self, field_id: str) -> Optional[FormField]:
        found = self.locate_field(field_id)
        if found is None:
            return None
        section, index = found
        return section.fields[index]

    def all_fields(self) -> List[FormField]:
        if self.form is None:
            return []
        return [f for s in self.form.sections for f in s.fields]

    # --------------------------------------------------------------- lifecycle

    def create_form(self) -> FormSchema:
        self._install(FormSchema())
        self.dirty = False
        self.last_saved = None
        return self.form

    async def load_form(self, form_id: str) -> bool:
        """Install a persisted form. Failure leaves the current state untouched."""
        try:
            form = await self.service.get(form_id)
        except Exception:
            logger.exception(f"Failed to load form {form_id}")
            return False
        if form is None:
            logger.warning(f"Form {form_id} not found")
            return False

        self._install(form)
        self.dirty = False
        self.last_saved = form.updatedAt
        logger.info(f"Loaded form {form_id} ({len(form.sections)} sections)")
        return True

    def reset(self) -> None:
        self._install(None)
        self.dirty = False
        self.saving = False
        self.last_saved = None

    # -------------------------------------------------------------- form level

    def update_title(self, title: str) -> None:
        if self.form is None:
            return
        self.form.title = title
        self._touch()

    def update_category(self, category: str) -> None:
        if self.form is None:
            return
        if category not in FORM_TYPES:
            raise ValueError(f"Unknown form type: {category!r}")
        self.form.type = category
        self._touch()

    def update_status(self, status: str) -> None:
        if self.form is None:
            return
        if status not in FORM_STATUSES:
            raise ValueError(f"Unknown form status: {status!r}")
        self.form.status = status
        self._touch()

    # ---------------------------------------------------------------- sections

    def add_section(self) -> Optional[FormSection]:
        if self.form is None:
            return None
        section = FormSection(
            id=new_id(),
            title="New Section",
            description="",
            fields=[],
            order=len(self.form.sections),
        )
        self.form.sections.append(section)
        self._touch()
        return section

    def update_section(self, section_id: str, patch: SectionPatch) -> None:
        section = self.get_section(section_id)
        if section is None:
            return
        apply_patch(section, patch)
        self._touch()

    def delete_section(self, section_id: str) -> None:
        section = self.get_section(section_id)
        if section is None:
            return
        self.form.sections.remove(section)
        self._renumber(self.form.sections)

        if self._selected_section_id == section_id:
            self._selected_section_id = None
        if self._field_index.get(self._selected_field_id) == section_id:
            self._selected_field_id = None

        self._reindex()
        self._touch()

    def reorder_sections(self, section_ids: Sequence[str]) -> None:
        if self.form is None:
            return
        by_id = {s.id: s for s in self.form.sections}
        assert Counter(section_ids) == Counter(s.id for s in self.form.sections), "section reorder must be a permutation"

        self.form.sections = [by_id[sid] for sid in section_ids]
        self._renumber(self.form.sections)
        self._touch()

    # ------------------------------------------------------------------ fields

    def add_field(self, section_id: str, draft: FieldDraft, index: Optional[int] = None) -> Optional[FormField]:
        section = self.get_section(section_id)
        if section is None:
            return None
        field = FormField(id=new_id(), order=len(section.fields), **draft.model_dump())
        if index is None or index >= len(section.fields):
            section.fields.append(field)
        else:
            section.fields.insert(max(index, 0), field)
            self._renumber(section.fields)

        self._field_index[field.id] = section.id
        self._touch()
        return field

    def update_field(self, field_id: str, patch: FieldPatch) -> None:
        field = self.get_field(field_id)
        if field is None:
            return
        apply_patch(field, patch)
        if "type" in patch.model_fields_set:
            field.validation = validation_for_kind(field.validation, field.type)
        self._touch()

    def delete_field(self, field_id: str) -> None:
        found = self.locate_field(field_id)
        if found is None:
            return
        section, index = found
        del section.fields[index]
        self._renumber(section.fields)
        del self._field_index[field_id]

        if self._selected_field_id == field_id:
            self._selected_field_id = None

        referencing = rules_referencing(self.form, field_id)
        if referencing:
            # left dangling on purpose; clients surface them from find_dangling_rules()
            logger.warning(
                f"Deleted field {field_id} is still referenced by conditional rules on "
                f"{sorted({owner for owner, _ in referencing})}"
            )
        self._touch()

    def duplicate_field(self, field_id: str) -> Optional[FormField]:
        found = self.locate_field(field_id)
        if found is None:
            return None
        section, index = found
        original = section.fields[index]
        copy = original.model_copy(
            deep=True,
            update={"id": new_id(), "label": f"{original.label} (Copy)", "order": original.order + 1},
        )
        section.fields.insert(index + 1, copy)
        self._renumber(section.fields)

        self._field_index[copy.id] = section.id
        self._touch()
        return copy

    def reorder_fields(self, section_id: str, field_ids: Sequence[str]) -> None:
        section = self.get_section(section_id)
        if section is None:
            return
        by_id = {f.id: f for f in section.fields}
        assert Counter(field_ids) == Counter(f.id for f in section.fields), "field reorder must be a permutation of the section"

        section.fields = [by_id[fid] for fid in field_ids]
        self._renumber(section.fields)
        self._touch()

    def move_field(self, field_id: str, dest_section_id: str, index: Optional[int] = None) -> None:
        """Take a field out of its section and put it into another (or the same) one."""
        found = self.locate_field(field_id)
        dest = self.get_section(dest_section_id)
        if found is None or dest is None:
            return
        source, source_index = found
        field = source.fields.pop(source_index)

        if index is None or index >= len(dest.fields):
            dest.fields.append(field)
        else:
            dest.fields.insert(max(index, 0), field)

        self._renumber(source.fields)
        if dest is not source:
            self._renumber(dest.fields)
        self._field_index[field_id] = dest.id
        self._touch()

    # --------------------------------------------------------------- selection

    @property
    def selected_field(self) -> Optional[FormField]:
        if self._selected_field_id is None:
            return None
        return self.get_field(self._selected_field_id)

    @property
    def selected_section(self) -> Optional[FormSection]:
        if self._selected_section_id is None:
            return None
        return self.get_section(self._selected_section_id)

    def select_field(self, field_id: Optional[str]) -> None:
        if field_id is not None and self.get_field(field_id) is None:
            raise ValueError(f"Field {field_id} is not part of the form")
        self._selected_field_id = field_id
        self._selected_section_id = None

    def select_section(self, section_id: Optional[str]) -> None:
        if section_id is not None and self.get_section(section_id) is None:
            raise ValueError(f"Section {section_id} is not part of the form")
        self._selected_section_id = section_id
        self._selected_field_id = None

    # ------------------------------------------------------------- save state

    def begin_save(self) -> bool:
        """
        Check-and-set of the saving flag. Must stay free of awaits: it is the only
        thing keeping a manual save and an autosave from overlapping.
        """
        if self.form is None or self.saving or not self.dirty:
            return False
        self.saving = True
        return True

    def end_save(self) -> None:
        self.saving = False

    def reconcile_saved(self, saved: FormSchema, started_revision: int, when: datetime) -> None:
        """
        Take the server's copy after a successful save.

        If the author kept editing while the request was in flight, the local form
        wins and only the server-assigned identity and timestamps are adopted.
        """
        if self.revision == started_revision:
            self.form = saved
            self._reindex()
            self.dirty = False
        else:
            self.form.formId = saved.formId
            self.form.createdAt = saved.createdAt
            self.form.updatedAt = saved.updatedAt
        self.last_saved = when
