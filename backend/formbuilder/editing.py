"""Properties panel: edits to whatever field or section is currently selected."""
from __future__ import annotations

from typing import Any, List, Optional, Tuple, Union

from formbuilder.schemas import (
    OPERATORS,
    VALIDATION_KEYS,
    ConditionalRule,
    FieldPatch,
    FormField,
    FormSection,
    SectionPatch,
    Validation,
)
from formbuilder.store import SchemaStore


class PropertyError(ValueError):
    pass


_UNSET: Any = object()


class PropertyEditor:
    def __init__(self, store: SchemaStore):
        self.store = store

    def current(self) -> Optional[Tuple[str, Union[FormField, FormSection]]]:
        field = self.store.selected_field
        if field is not None:
            return "field", field
        section = self.store.selected_section
        if section is not None:
            return "section", section
        return None

    def close(self) -> None:
        self.store.select_field(None)
        self.store.select_section(None)

    def _field(self) -> FormField:
        field = self.store.selected_field
        if field is None:
            raise PropertyError("No field is selected")
        return field

    def _section(self) -> FormSection:
        section = self.store.selected_section
        if section is None:
            raise PropertyError("No section is selected")
        return section

    def _patch(self, **changes) -> None:
        self.store.update_field(self._field().id, FieldPatch(**changes))

    # ---------------------------------------------------------- basic field props

    def set_label(self, label: str) -> None:
        self._patch(label=label)

    def set_required(self, required: bool) -> None:
        self._patch(required=required)

    def set_help_text(self, text: str) -> None:
        self._patch(helpText=text)

    # ---------------------------------------------------------------- validation

    def validation_keys(self) -> set:
        return set(VALIDATION_KEYS.get(self._field().type, ()))

    def set_validation(self, min=_UNSET, max=_UNSET, max_length=_UNSET, alert=_UNSET) -> None:
        """
        Change some validation limits of the selected field, keeping the others.

        Pass None to clear a limit. min/max only exist on number fields and
        max_length only on text fields.
        """
        field = self._field()
        requested = {
            key: value
            for key, value in (("min", min), ("max", max), ("maxLength", max_length), ("alert", alert))
            if value is not _UNSET
        }
        allowed = VALIDATION_KEYS.get(field.type, set())
        rejected = set(requested) - allowed
        if rejected:
            raise PropertyError(f"{field.type} fields do not support {sorted(rejected)}")

        merged = (field.validation or Validation()).model_copy(update=requested)
        if merged.min is not None and merged.max is not None and merged.min > merged.max:
            raise PropertyError("min must not exceed max")
        self._patch(validation=None if merged.is_empty() else merged)

    # ----------------------------------------------------------- conditional rules

    def available_rule_targets(self) -> List[FormField]:
        """Every other field of the form, in document order."""
        selected = self._field()
        return [f for f in self.store.all_fields() if f.id != selected.id]

    def _rules(self) -> List[ConditionalRule]:
        return [r.model_copy() for r in (self._field().showIf or [])]

    def add_rule(self) -> int:
        rules = self._rules()
        rules.append(ConditionalRule(field="", operator="equals", value=""))
        self._patch(showIf=rules)
        return len(rules) - 1

    def update_rule(self, index: int, field=_UNSET, operator=_UNSET, value=_UNSET) -> None:
        rules = self._rules()
        if not 0 <= index < len(rules):
            raise PropertyError(f"No conditional rule at position {index}")
        rule = rules[index]
        if field is not _UNSET:
            if field == self._field().id:
                raise PropertyError("A field cannot depend on itself")
            rule.field = field
        if operator is not _UNSET:
            if operator not in OPERATORS:
                raise PropertyError(f"Unknown operator: {operator!r}")
            rule.operator = operator
        if value is not _UNSET:
            rule.value = value
        self._patch(showIf=rules)

    def remove_rule(self, index: int) -> None:
        rules = self._rules()
        if not 0 <= index < len(rules):
            raise PropertyError(f"No conditional rule at position {index}")
        del rules[index]
        self._patch(showIf=rules)

    # ------------------------------------------------------------------- section

    def set_section_title(self, title: str) -> None:
        self.store.update_section(self._section().id, SectionPatch(title=title))

    def set_section_description(self, description: str) -> None:
        self.store.update_section(self._section().id, SectionPatch(description=description))

    def section_field_count(self) -> int:
        return len(self._section().fields)
