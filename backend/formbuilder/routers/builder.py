from collections import Counter
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response

from formbuilder import catalog
from formbuilder.dependencies import get_session, get_sessions
from formbuilder.drag import DropTarget, FieldHandle, FieldTarget, KindToken, SectionTarget
from formbuilder.editing import PropertyError
from formbuilder.persistence import SaveTimeoutError, export_form
from formbuilder.schemas import (
    AddFieldIn,
    DragItemIn,
    DragOverIn,
    DragStartIn,
    DropTargetIn,
    FieldDraft,
    FieldPatch,
    FieldPropertiesIn,
    FormPatch,
    MoveFieldIn,
    OpenSessionIn,
    OrderIn,
    PointerDownIn,
    PointerMoveIn,
    RuleIn,
    SectionPatch,
    SectionPropertiesIn,
    SelectionIn,
    ValidationIn,
)
from formbuilder.services import FormNotFoundError
from formbuilder.session import BuilderSession, SessionRegistry

router = APIRouter(prefix="/api/builder", tags=["builder"])


def _require_section(session: BuilderSession, section_id: str):
    section = session.store.get_section(section_id)
    if section is None:
        raise HTTPException(status_code=404, detail="Section not found")
    return section


def _require_field(session: BuilderSession, field_id: str):
    field = session.store.get_field(field_id)
    if field is None:
        raise HTTPException(status_code=404, detail="Field not found")
    return field


def _require_permutation(ids, current):
    if Counter(ids) != Counter(current):
        raise HTTPException(status_code=400, detail="Order must list every existing id exactly once")


def _item(data: DragItemIn):
    if data.type == "field-type":
        if not data.fieldType:
            raise HTTPException(status_code=400, detail="fieldType is required for field-type items")
        return KindToken(data.fieldType)
    if not data.fieldId:
        raise HTTPException(status_code=400, detail="fieldId is required for field items")
    return FieldHandle(data.fieldId, data.sectionId or "")


def _target(data: Optional[DropTargetIn]) -> Optional[DropTarget]:
    if data is None:
        return None
    if data.type == "section":
        return SectionTarget(data.sectionId or "")
    return FieldTarget(data.fieldId or "", data.sectionId or "")


# ---------------------------------------------------------------- catalog


@router.get("/catalog")
async def field_catalog():
    return [
        {"type": e.kind, "label": e.label, "icon": e.icon, "description": e.description, "defaultLabel": e.default_label}
        for e in catalog.entries()
    ]


# --------------------------------------------------------------- sessions


@router.post("/sessions")
async def open_session(body: OpenSessionIn, sessions: SessionRegistry = Depends(get_sessions)):
    try:
        session = await sessions.open(body.formId)
    except FormNotFoundError:
        raise HTTPException(status_code=404, detail="Form not found")
    return session.snapshot()


@router.get("/sessions/{session_id}")
async def get_session_state(session: BuilderSession = Depends(get_session)):
    return session.snapshot()


@router.delete("/sessions/{session_id}")
async def close_session(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    if not await sessions.close(session_id):
        raise HTTPException(status_code=404, detail="Builder session not found")
    return {"status": "ok", "sessionId": session_id}


@router.patch("/sessions/{session_id}/form")
async def update_form(patch: FormPatch, session: BuilderSession = Depends(get_session)):
    store = session.store
    if patch.title is not None:
        store.update_title(patch.title)
    if patch.type is not None:
        store.update_category(patch.type)
    if patch.status is not None:
        store.update_status(patch.status)
    return session.snapshot()


# --------------------------------------------------------------- sections


@router.post("/sessions/{session_id}/sections")
async def add_section(session: BuilderSession = Depends(get_session)):
    section = session.store.add_section()
    return {**session.snapshot(), "createdId": section.id}


@router.put("/sessions/{session_id}/sections/order")
async def reorder_sections(body: OrderIn, session: BuilderSession = Depends(get_session)):
    _require_permutation(body.ids, [s.id for s in session.store.form.sections])
    session.store.reorder_sections(body.ids)
    return session.snapshot()


@router.patch("/sessions/{session_id}/sections/{section_id}")
async def update_section(section_id: str, patch: SectionPatch, session: BuilderSession = Depends(get_session)):
    _require_section(session, section_id)
    try:
        session.store.update_section(section_id, patch)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return session.snapshot()


@router.delete("/sessions/{session_id}/sections/{section_id}")
async def delete_section(section_id: str, session: BuilderSession = Depends(get_session)):
    _require_section(session, section_id)
    session.store.delete_section(section_id)
    return session.snapshot()


# ----------------------------------------------------------------- fields


@router.post("/sessions/{session_id}/sections/{section_id}/fields")
async def add_field(section_id: str, body: AddFieldIn, session: BuilderSession = Depends(get_session)):
    _require_section(session, section_id)
    draft = FieldDraft(**body.model_dump(exclude={"index"}))
    field = session.store.add_field(section_id, draft, body.index)
    return {**session.snapshot(), "createdId": field.id}


@router.put("/sessions/{session_id}/sections/{section_id}/fields/order")
async def reorder_fields(section_id: str, body: OrderIn, session: BuilderSession = Depends(get_session)):
    section = _require_section(session, section_id)
    _require_permutation(body.ids, [f.id for f in section.fields])
    session.store.reorder_fields(section_id, body.ids)
    return session.snapshot()


@router.patch("/sessions/{session_id}/fields/{field_id}")
async def update_field(field_id: str, patch: FieldPatch, session: BuilderSession = Depends(get_session)):
    _require_field(session, field_id)
    try:
        session.store.update_field(field_id, patch)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return session.snapshot()


@router.delete("/sessions/{session_id}/fields/{field_id}")
async def delete_field(field_id: str, session: BuilderSession = Depends(get_session)):
    _require_field(session, field_id)
    session.store.delete_field(field_id)
    return session.snapshot()


@router.post("/sessions/{session_id}/fields/{field_id}/duplicate")
async def duplicate_field(field_id: str, session: BuilderSession = Depends(get_session)):
    _require_field(session, field_id)
    copy = session.store.duplicate_field(field_id)
    return {**session.snapshot(), "createdId": copy.id}


@router.post("/sessions/{session_id}/fields/{field_id}/move")
async def move_field(field_id: str, body: MoveFieldIn, session: BuilderSession = Depends(get_session)):
    _require_field(session, field_id)
    _require_section(session, body.sectionId)
    session.store.move_field(field_id, body.sectionId, body.index)
    return session.snapshot()


# -------------------------------------------------------------- selection


@router.put("/sessions/{session_id}/selection")
async def select(body: SelectionIn, session: BuilderSession = Depends(get_session)):
    if body.fieldId and body.sectionId:
        raise HTTPException(status_code=400, detail="Select a field or a section, not both")
    if body.fieldId:
        _require_field(session, body.fieldId)
        session.store.select_field(body.fieldId)
    elif body.sectionId:
        _require_section(session, body.sectionId)
        session.store.select_section(body.sectionId)
    else:
        session.editor.close()
    return session.snapshot()


@router.patch("/sessions/{session_id}/selection/field")
async def edit_selected_field(body: FieldPropertiesIn, session: BuilderSession = Depends(get_session)):
    editor = session.editor
    try:
        if "label" in body.model_fields_set:
            editor.set_label(body.label or "")
        if "required" in body.model_fields_set:
            editor.set_required(bool(body.required))
        if "helpText" in body.model_fields_set:
            editor.set_help_text(body.helpText or "")
    except PropertyError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return session.snapshot()


@router.put("/sessions/{session_id}/selection/field/validation")
async def edit_selected_validation(body: ValidationIn, session: BuilderSession = Depends(get_session)):
    sent = body.model_fields_set
    changes = {}
    if "min" in sent:
        changes["min"] = body.min
    if "max" in sent:
        changes["max"] = body.max
    if "maxLength" in sent:
        changes["max_length"] = body.maxLength
    if "alert" in sent:
        changes["alert"] = body.alert
    try:
        session.editor.set_validation(**changes)
    except PropertyError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return session.snapshot()


@router.get("/sessions/{session_id}/selection/field/rule-targets")
async def rule_targets(session: BuilderSession = Depends(get_session)):
    try:
        targets = session.editor.available_rule_targets()
    except PropertyError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [{"id": f.id, "label": f.label, "type": f.type} for f in targets]


@router.post("/sessions/{session_id}/selection/field/rules")
async def add_rule(session: BuilderSession = Depends(get_session)):
    try:
        index = session.editor.add_rule()
    except PropertyError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {**session.snapshot(), "ruleIndex": index}


@router.patch("/sessions/{session_id}/selection/field/rules/{index}")
async def update_rule(index: int, body: RuleIn, session: BuilderSession = Depends(get_session)):
    changes = {key: getattr(body, key) for key in body.model_fields_set}
    try:
        session.editor.update_rule(index, **changes)
    except PropertyError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return session.snapshot()


@router.delete("/sessions/{session_id}/selection/field/rules/{index}")
async def remove_rule(index: int, session: BuilderSession = Depends(get_session)):
    try:
        session.editor.remove_rule(index)
    except PropertyError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return session.snapshot()


@router.patch("/sessions/{session_id}/selection/section")
async def edit_selected_section(body: SectionPropertiesIn, session: BuilderSession = Depends(get_session)):
    editor = session.editor
    try:
        if "title" in body.model_fields_set:
            editor.set_section_title(body.title or "")
        if "description" in body.model_fields_set:
            editor.set_section_description(body.description or "")
    except PropertyError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return session.snapshot()


# ---------------------------------------------------------- drag and drop


@router.post("/sessions/{session_id}/drag/start")
async def drag_start(body: DragStartIn, session: BuilderSession = Depends(get_session)):
    if not session.drag.drag_start(_item(body.item)):
        raise HTTPException(status_code=404, detail="Dragged field not found")
    return session.snapshot()


@router.post("/sessions/{session_id}/drag/over")
async def drag_over(body: DragOverIn, session: BuilderSession = Depends(get_session)):
    session.drag.drag_over(_target(body.over))
    return session.snapshot()


@router.post("/sessions/{session_id}/drag/end")
async def drag_end(body: DragOverIn, session: BuilderSession = Depends(get_session)):
    field = session.drag.drag_end(_target(body.over))
    return {**session.snapshot(), "fieldId": field.id if field else None}


@router.post("/sessions/{session_id}/drag/cancel")
async def drag_cancel(session: BuilderSession = Depends(get_session)):
    session.drag.drag_cancel()
    return session.snapshot()


@router.post("/sessions/{session_id}/pointer/down")
async def pointer_down(body: PointerDownIn, session: BuilderSession = Depends(get_session)):
    session.drag.pointer_down(_item(body.item), body.x, body.y)
    return session.snapshot()


@router.post("/sessions/{session_id}/pointer/move")
async def pointer_move(body: PointerMoveIn, session: BuilderSession = Depends(get_session)):
    session.drag.pointer_move(body.x, body.y, _target(body.over))
    return session.snapshot()


@router.post("/sessions/{session_id}/pointer/up")
async def pointer_up(body: DragOverIn, session: BuilderSession = Depends(get_session)):
    outcome = session.drag.pointer_up(_target(body.over))
    return {**session.snapshot(), "outcome": outcome}


# ------------------------------------------------------------ persistence


@router.post("/sessions/{session_id}/save")
async def save(session: BuilderSession = Depends(get_session)):
    try:
        saved = await session.persistence.save()
    except SaveTimeoutError as e:
        raise HTTPException(status_code=504, detail=str(e))
    except Exception as e:
        # already logged by the coordinator; the form is still dirty
        raise HTTPException(status_code=502, detail=f"Failed to save form: {e}")
    return {**session.snapshot(), "saved": saved is not None}


@router.get("/sessions/{session_id}/export")
async def export(session: BuilderSession = Depends(get_session)):
    if session.store.form is None:
        raise HTTPException(status_code=404, detail="No form loaded")
    filename, body = export_form(session.store.form)
    return Response(
        content=body,
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
