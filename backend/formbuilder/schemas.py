from pydantic import BaseModel, Field
from typing import Any, Dict, List, Literal, Optional, get_args
from datetime import datetime
from uuid import uuid4


FieldKind = Literal["checkbox", "text", "number", "time", "photo", "signature", "heading", "divider"]
FormType = Literal["Opening", "Daily", "Weekly", "Period", "Custom"]
FormStatus = Literal["Active", "Draft", "Archived"]
Operator = Literal["equals", "not_equals", "contains", "greater_than", "less_than"]

FIELD_KINDS = get_args(FieldKind)
FORM_TYPES = get_args(FormType)
FORM_STATUSES = get_args(FormStatus)
OPERATORS = get_args(Operator)


def new_id() -> str:
    return str(uuid4())


class Validation(BaseModel):
    """Descriptive limits; enforced by whoever fills the form, never here."""
    min: Optional[float] = None
    max: Optional[float] = None
    maxLength: Optional[int] = None
    alert: Optional[str] = None

    def is_empty(self) -> bool:
        return all(v is None for v in (self.min, self.max, self.maxLength, self.alert))


# which validation keys each field kind offers; "alert" goes with any limit
VALIDATION_KEYS = {
    "number": {"min", "max", "alert"},
    "text": {"maxLength", "alert"},
}


def validation_for_kind(validation: Optional[Validation], kind: str) -> Optional[Validation]:
    """Drop the limits ``kind`` does not offer; None if nothing is left."""
    if validation is None:
        return None
    allowed = VALIDATION_KEYS.get(kind, set())
    kept = validation.model_copy(
        update={key: None for key in ("min", "max", "maxLength", "alert") if key not in allowed}
    )
    return None if kept.is_empty() else kept


class ConditionalRule(BaseModel):
    # id of the field this rule compares against; the rule lives on the field it shows/hides
    field: str = ""
    operator: Operator = "equals"
    value: Any = ""


class FormField(BaseModel):
    id: str
    type: FieldKind
    label: str
    order: int = 0
    required: Optional[bool] = None
    helpText: Optional[str] = None
    validation: Optional[Validation] = None
    showIf: Optional[List[ConditionalRule]] = None


class FormSection(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    fields: List[FormField] = Field(default_factory=list)
    order: int = 0


class FormSchema(BaseModel):
    formId: str = ""
    title: str = "Untitled Form"
    type: FormType = "Custom"
    status: FormStatus = "Draft"
    sections: List[FormSection] = Field(default_factory=list)
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class FieldDraft(BaseModel):
    """A field before the store has given it an id and a position."""
    type: FieldKind
    label: str
    required: bool = False
    helpText: Optional[str] = None
    validation: Optional[Validation] = None
    showIf: Optional[List[ConditionalRule]] = None


class FieldPatch(BaseModel):
    type: Optional[FieldKind] = None
    label: Optional[str] = None
    required: Optional[bool] = None
    helpText: Optional[str] = None
    validation: Optional[Validation] = None
    showIf: Optional[List[ConditionalRule]] = None


class SectionPatch(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None


class FormPatch(BaseModel):
    title: Optional[str] = None
    type: Optional[FormType] = None
    status: Optional[FormStatus] = None


def apply_patch(target: BaseModel, patch: BaseModel) -> None:
    """
    Copy the keys the caller actually set on ``patch`` onto ``target``.

    Raises ValueError when the patch nulls an attribute the target requires;
    the whole patch is checked before anything is written.
    """
    fields = type(target).model_fields
    for name in patch.model_fields_set:
        if getattr(patch, name) is None and name in fields and fields[name].is_required():
            raise ValueError(f"{name} cannot be null")
    for name in patch.model_fields_set:
        setattr(target, name, getattr(patch, name))


def form_to_wire(form: FormSchema) -> Dict[str, Any]:
    """The persisted/exported shape: camelCase keys, ISO timestamps, unset optionals omitted."""
    return form.model_dump(mode="json", exclude_none=True)


# ---------------------------------------------------------------------------
# Request bodies of the builder API
# ---------------------------------------------------------------------------


class OpenSessionIn(BaseModel):
    formId: Optional[str] = None


class OrderIn(BaseModel):
    ids: List[str]


class AddFieldIn(FieldDraft):
    index: Optional[int] = None


class MoveFieldIn(BaseModel):
    sectionId: str
    index: Optional[int] = None


class SelectionIn(BaseModel):
    fieldId: Optional[str] = None
    sectionId: Optional[str] = None


class FieldPropertiesIn(BaseModel):
    label: Optional[str] = None
    required: Optional[bool] = None
    helpText: Optional[str] = None


class SectionPropertiesIn(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None


class ValidationIn(BaseModel):
    # keys left out are kept, keys sent as null are cleared
    min: Optional[float] = None
    max: Optional[float] = None
    maxLength: Optional[int] = None
    alert: Optional[str] = None


class RuleIn(BaseModel):
    field: Optional[str] = None
    operator: Optional[Operator] = None
    value: Any = None


class DragItemIn(BaseModel):
    # mirrors the data attached to draggables on the canvas
    type: Literal["field", "field-type"]
    fieldId: Optional[str] = None
    sectionId: Optional[str] = None
    fieldType: Optional[FieldKind] = None


class DropTargetIn(BaseModel):
    type: Literal["section", "field"]
    sectionId: Optional[str] = None
    fieldId: Optional[str] = None


class DragStartIn(BaseModel):
    item: DragItemIn


class DragOverIn(BaseModel):
    over: Optional[DropTargetIn] = None


class PointerDownIn(BaseModel):
    item: DragItemIn
    x: float
    y: float


class PointerMoveIn(BaseModel):
    x: float
    y: float
    over: Optional[DropTargetIn] = None
