from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, List, Tuple

from formbuilder.schemas import ConditionalRule, FormField, FormSchema


# Conditional rules are only authored here. Whoever renders the form for filling
# decides visibility; this module just keeps references between fields honest.


@dataclass(frozen=True)
class DanglingRule:
    field_id: str      # field carrying the rule
    rule_index: int
    target: str        # id the rule points at, missing from the form


def iter_fields(form: FormSchema) -> Iterator[FormField]:
    for section in form.sections:
        yield from section.fields


def iter_rules(form: FormSchema) -> Iterator[Tuple[FormField, int, ConditionalRule]]:
    for field in iter_fields(form):
        for index, rule in enumerate(field.showIf or []):
            yield field, index, rule


def rules_referencing(form: FormSchema, field_id: str) -> List[Tuple[str, int]]:
    """(owning field id, rule index) for every rule that compares against ``field_id``."""
    return [(f.id, i) for f, i, r in iter_rules(form) if r.field == field_id]


def find_dangling_rules(form: FormSchema) -> List[DanglingRule]:
    """
    Rules whose target id is not a field of this form.

    A rule with an empty target is still being authored and is not reported.
    """
    known = {f.id for f in iter_fields(form)}
    dangling = []
    for field, index, rule in iter_rules(form):
        if rule.field and rule.field not in known:
            dangling.append(DanglingRule(field.id, index, rule.field))
    return dangling


def remap_rule_targets(form: FormSchema, mapping: Dict[str, str]) -> int:
    """
    Point rules at new field ids after a bulk re-identification (e.g. duplicating a form).
    Targets missing from ``mapping`` are left as they are. Returns how many rules changed.
    """
    changed = 0
    for _, _, rule in iter_rules(form):
        new_target = mapping.get(rule.field)
        if new_target is not None and new_target != rule.field:
            rule.field = new_target
            changed += 1
    return changed
