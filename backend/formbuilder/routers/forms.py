from fastapi import APIRouter, Depends, HTTPException, Query, Response
from typing import Optional

from formbuilder.dependencies import get_form_service
from formbuilder.persistence import export_form
from formbuilder.schemas import FormSchema, FormStatus, form_to_wire
from formbuilder.services import FormNotFoundError, FormServiceError

router = APIRouter(prefix="/api/forms", tags=["forms"])


@router.get("")
async def list_forms(status: Optional[FormStatus] = Query(None), service=Depends(get_form_service)):
    """Get a list of all forms with basic info."""
    items = []
    for form in await service.list(status):
        items.append({
            "formId": form.formId,
            "title": form.title,
            "type": form.type,
            "status": form.status,
            "lastModified": form.updatedAt.isoformat() if form.updatedAt else None,
            "fieldCount": sum(len(s.fields) for s in form.sections),
        })
    return items


@router.post("")
async def create_form(form: FormSchema, service=Depends(get_form_service)):
    try:
        created = await service.create(form)
    except FormServiceError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return form_to_wire(created)


@router.get("/{form_id}")
async def get_form(form_id: str, service=Depends(get_form_service)):
    form = await service.get(form_id)
    if not form:
        raise HTTPException(status_code=404, detail="Form not found")
    return form_to_wire(form)


@router.put("/{form_id}")
async def update_form(form_id: str, form: FormSchema, service=Depends(get_form_service)):
    try:
        updated = await service.update(form_id, form)
    except FormNotFoundError:
        raise HTTPException(status_code=404, detail="Form not found")
    return form_to_wire(updated)


@router.post("/{form_id}/duplicate")
async def duplicate_form(form_id: str, service=Depends(get_form_service)):
    """Copy a form under a new id, with fresh section and field ids."""
    try:
        copy = await service.duplicate(form_id)
    except FormNotFoundError:
        raise HTTPException(status_code=404, detail="Form not found")
    return form_to_wire(copy)


@router.patch("/{form_id}/archive")
async def archive_form(form_id: str, service=Depends(get_form_service)):
    try:
        archived = await service.archive(form_id)
    except FormNotFoundError:
        raise HTTPException(status_code=404, detail="Form not found")
    return form_to_wire(archived)


@router.get("/{form_id}/export")
async def export_saved_form(form_id: str, service=Depends(get_form_service)):
    form = await service.get(form_id)
    if not form:
        raise HTTPException(status_code=404, detail="Form not found")
    filename, body = export_form(form)
    return Response(
        content=body,
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.delete("/{form_id}")
async def delete_form(form_id: str, service=Depends(get_form_service)):
    try:
        await service.delete(form_id)
    except FormNotFoundError:
        raise HTTPException(status_code=404, detail="Form not found")
    return {"status": "ok", "formId": form_id}
