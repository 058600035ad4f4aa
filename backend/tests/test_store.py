import asyncio
import logging

import pytest

from conftest import assert_contiguous, field_ids
from formbuilder.schemas import (
    ConditionalRule,
    FieldDraft,
    FieldPatch,
    FormSchema,
    SectionPatch,
    Validation,
    form_to_wire,
)
from formbuilder.store import SchemaStore


def test_create_form_defaults():
    store = SchemaStore()
    form = store.create_form()

    assert form.formId == ""
    assert form.title == "Untitled Form"
    assert form.type == "Custom"
    assert form.status == "Draft"
    assert form.sections == []
    assert store.dirty is False
    assert store.last_saved is None
    assert store.selected_field is None and store.selected_section is None


def test_mutations_are_noops_without_form():
    store = SchemaStore()

    store.update_title("x")
    assert store.add_section() is None
    assert store.add_field("s1", FieldDraft(type="text", label="x")) is None
    store.delete_field("A")
    assert store.duplicate_field("A") is None

    assert store.form is None
    assert store.dirty is False


def test_load_form_installs_and_resets_state(store):
    assert store.form.formId == "opening-checklist-001"
    assert store.dirty is False
    assert store.last_saved == store.form.updatedAt


def test_load_form_not_found_keeps_state(service):
    store = SchemaStore(service)
    store.create_form()
    store.update_title("Keep me")

    assert asyncio.run(store.load_form("missing")) is False
    assert store.form.title == "Keep me"
    assert store.dirty is True


def test_load_form_service_failure_keeps_state(service):
    store = SchemaStore(service)
    service.get_error = ConnectionError("unreachable")

    assert asyncio.run(store.load_form("anything")) is False
    assert store.form is None


def test_title_and_category_set_dirty(store):
    store.update_title("Closing Checklist")
    assert store.form.title == "Closing Checklist"
    assert store.dirty is True

    store.update_category("Weekly")
    assert store.form.type == "Weekly"

    with pytest.raises(ValueError):
        store.update_category("Monthly")


def test_add_section_appends_with_next_order(store):
    store.select_field("A")
    section = store.add_section()

    assert section.title == "New Section"
    assert section.fields == []
    assert section.order == 2
    assert store.form.sections[-1] is section
    assert store.selected_field.id == "A"
    assert store.dirty is True


def test_update_section_merges_only_given_keys(store):
    store.update_section("s1", SectionPatch(title="Safety"))

    section = store.get_section("s1")
    assert section.title == "Safety"
    assert section.description == "Verify all safety equipment"


def test_delete_section_compacts_orders_and_clears_selection(store):
    store.add_section()
    store.select_section("s1")

    store.delete_section("s1")

    assert [s.id for s in store.form.sections][0] == "s2"
    assert_contiguous(store.form)
    assert store.selected_section is None
    # fields of the removed section are gone from the index too
    assert store.get_field("A") is None


def test_delete_section_clears_selected_field_inside_it(store):
    store.select_field("B")
    store.delete_section("s1")
    assert store.selected_field is None


def test_reorder_sections(store):
    store.reorder_sections(["s2", "s1"])

    assert [s.id for s in store.form.sections] == ["s2", "s1"]
    assert_contiguous(store.form)


def test_add_field_appends_and_inserts(store):
    appended = store.add_field("s2", FieldDraft(type="text", label="Notes"))
    assert appended.order == 1
    assert field_ids(store, "s2") == ["D", appended.id]

    inserted = store.add_field("s1", FieldDraft(type="photo", label="Photo"), index=1)
    assert field_ids(store, "s1") == ["A", inserted.id, "B", "C"]
    assert_contiguous(store.form)
    assert store.get_field(inserted.id) is inserted


def test_update_field_finds_field_in_any_section(store):
    store.update_field("D", FieldPatch(label="Till counted twice", required=True))

    d = store.get_field("D")
    assert d.label == "Till counted twice"
    assert d.required is True
    assert d.type == "checkbox"
    assert store.dirty is True


def test_delete_field_renumbers_and_clears_selection(store):
    store.select_field("B")
    store.delete_field("B")

    assert field_ids(store, "s1") == ["A", "C"]
    assert_contiguous(store.form)
    assert store.selected_field is None


def test_delete_field_leaves_dangling_rule(store, caplog):
    """
    Given B.showIf[0].field == A, deleting A keeps the reference as it is.
    """
    store.update_field("B", FieldPatch(showIf=[ConditionalRule(field="A", operator="equals", value=True)]))

    with caplog.at_level(logging.WARNING, logger="formbuilder.store"):
        store.delete_field("A")

    assert store.get_field("B").showIf[0].field == "A"
    assert "still referenced" in caplog.text


def test_duplicate_only_field():
    """
    Given X(label="Fire check", order=0) as the only field,
    duplicating yields X(order 0) and X'(order 1, label "Fire check (Copy)").
    """
    store = SchemaStore()
    store.create_form()
    section = store.add_section()
    x = store.add_field(section.id, FieldDraft(type="checkbox", label="Fire check"))

    copy = store.duplicate_field(x.id)

    assert [f.id for f in section.fields] == [x.id, copy.id]
    assert (x.order, x.label) == (0, "Fire check")
    assert (copy.order, copy.label) == (1, "Fire check (Copy)")
    assert copy.id != x.id


def test_duplicate_in_the_middle_renumbers_followers(store):
    store.update_field("A", FieldPatch(helpText="Check the gauge"))
    copy = store.duplicate_field("A")

    assert field_ids(store, "s1") == ["A", copy.id, "B", "C"]
    assert_contiguous(store.form)
    assert copy.helpText == "Check the gauge"

    # the copy is independent of the original
    store.update_field(copy.id, FieldPatch(helpText="changed"))
    assert store.get_field("A").helpText == "Check the gauge"


def test_reorder_fields_example(store):
    """[A, B, C] reordered to [B, C, A] gives B=0, C=1, A=2."""
    store.reorder_fields("s1", ["B", "C", "A"])

    assert field_ids(store, "s1") == ["B", "C", "A"]
    assert (store.get_field("B").order, store.get_field("C").order, store.get_field("A").order) == (0, 1, 2)


def test_reorder_fields_preserves_set(store):
    before = set(field_ids(store, "s1"))
    store.reorder_fields("s1", ["C", "A", "B"])
    assert set(field_ids(store, "s1")) == before


@pytest.mark.parametrize("ids", [["A", "B"], ["A", "B", "C", "D"], ["A", "A", "B"]])
def test_reorder_fields_rejects_non_permutation(store, ids):
    with pytest.raises(AssertionError):
        store.reorder_fields("s1", ids)


def test_move_field_between_sections(store):
    store.move_field("B", "s2", index=0)

    assert field_ids(store, "s1") == ["A", "C"]
    assert field_ids(store, "s2") == ["B", "D"]
    assert_contiguous(store.form)

    # the side index follows the move
    store.update_field("B", FieldPatch(label="moved"))
    assert store.get_section("s2").fields[0].label == "moved"


def test_move_field_within_section(store):
    store.move_field("A", "s1")
    assert field_ids(store, "s1") == ["B", "C", "A"]
    assert_contiguous(store.form)


def test_selection_is_exclusive(store):
    store.select_field("A")
    assert store.selected_field.id == "A"
    assert store.selected_section is None

    store.select_section("s2")
    assert store.selected_section.id == "s2"
    assert store.selected_field is None

    store.select_section(None)
    assert store.selected_field is None and store.selected_section is None

    with pytest.raises(ValueError):
        store.select_field("nope")


def test_selected_field_reflects_later_edits(store):
    store.select_field("C")
    store.update_field("C", FieldPatch(label="Fridge temperature"))
    assert store.selected_field.label == "Fridge temperature"


def test_orders_stay_contiguous_through_mixed_edits(store):
    s3 = store.add_section()
    store.add_field(s3.id, FieldDraft(type="time", label="Opened at"))
    store.duplicate_field("B")
    store.move_field("D", s3.id, index=0)
    store.delete_field("A")
    store.reorder_sections([s3.id, "s2", "s1"])
    store.delete_section("s2")
    store.add_field("s1", FieldDraft(type="divider", label="Divider"), index=0)

    assert_contiguous(store.form)


def test_every_mutation_bumps_revision(store):
    start = store.revision
    store.update_title("t")
    store.add_section()
    store.duplicate_field("A")
    assert store.revision == start + 3


def test_begin_save_is_a_check_and_set(store):
    assert store.begin_save() is False  # clean form

    store.update_title("edited")
    assert store.begin_save() is True
    assert store.saving is True
    assert store.begin_save() is False

    store.end_save()
    assert store.saving is False


def test_reset_drops_everything(store):
    store.update_title("edited")
    store.reset()
    assert store.form is None
    assert store.dirty is False and store.saving is False


def test_null_for_a_required_attribute_is_rejected(store):
    """
    1. Patching label or type to null raises before anything is written
    2. The form still round-trips through the wire format
    """
    with pytest.raises(ValueError):
        store.update_field("A", FieldPatch(label=None, helpText="kept?"))
    with pytest.raises(ValueError):
        store.update_field("A", FieldPatch(type=None))
    with pytest.raises(ValueError):
        store.update_section("s1", SectionPatch(title=None))

    a = store.get_field("A")
    assert a.label == "Fire extinguisher inspected"
    assert a.helpText is None
    assert store.dirty is False
    reloaded = FormSchema.model_validate(form_to_wire(store.form))
    assert reloaded.sections[0].fields[0].label == "Fire extinguisher inspected"


def test_null_clears_optional_attributes(store):
    store.update_field("A", FieldPatch(helpText="Look at the tag"))
    store.update_field("A", FieldPatch(helpText=None))
    store.update_section("s1", SectionPatch(description=None))

    assert store.get_field("A").helpText is None
    assert store.get_section("s1").description is None


def test_update_status_rejects_unknown_values(store):
    store.update_status("Archived")
    assert store.form.status == "Archived"

    with pytest.raises(ValueError):
        store.update_status("Deleted")
    assert store.form.status == "Archived"


def test_changing_kind_drops_limits_the_new_kind_lacks(store):
    store.update_field("C", FieldPatch(validation=Validation(min=1, max=9, alert="Out of range")))

    store.update_field("C", FieldPatch(type="text"))
    v = store.get_field("C").validation
    assert (v.min, v.max, v.maxLength, v.alert) == (None, None, None, "Out of range")

    store.update_field("C", FieldPatch(type="checkbox"))
    assert store.get_field("C").validation is None


def test_label_edit_keeps_validation(store):
    store.update_field("C", FieldPatch(validation=Validation(max=5)))
    store.update_field("C", FieldPatch(label="Fridge"))
    assert store.get_field("C").validation.max == 5
