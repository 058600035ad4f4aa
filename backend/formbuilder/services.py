"""
Form Service: where finished (or half-finished) checklist templates are kept.

The builder only talks to the ``FormService`` protocol. ``MongoFormService`` is the
production implementation; documents are keyed by ``_id = formId``.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from formbuilder.rules import remap_rule_targets
from formbuilder.schemas import FormSchema, new_id

logger = logging.getLogger(__name__)


class FormServiceError(Exception):
    pass


class FormNotFoundError(FormServiceError):
    def __init__(self, form_id: str):
        super().__init__(f"Form not found: {form_id}")
        self.form_id = form_id


class FormService(Protocol):
    async def list(self, status: Optional[str] = None) -> List[FormSchema]: ...

    async def get(self, form_id: str) -> Optional[FormSchema]: ...

    async def create(self, form: FormSchema) -> FormSchema: ...

    async def update(self, form_id: str, form: FormSchema) -> FormSchema: ...

    async def duplicate(self, form_id: str) -> FormSchema: ...

    async def archive(self, form_id: str) -> FormSchema: ...

    async def delete(self, form_id: str) -> None: ...


def _base36(number: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if number == 0:
        return "0"
    out = []
    while number:
        number, rem = divmod(number, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


def generate_form_id(title: str, now: Optional[datetime] = None) -> str:
    """
    Slug of the title plus a millisecond timestamp in base 36.

    e.g. "Opening Checklist" -> "opening-checklist-lq2x9k1c"
    """
    now = now or datetime.now(timezone.utc)
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-") or "form"
    return f"{slug}-{_base36(int(now.timestamp() * 1000))}"


def clone_form(form: FormSchema) -> FormSchema:
    """
    Copy of ``form`` with fresh section and field ids, ready to be created as a new form.
    Conditional rules inside the copy are re-pointed at the copied fields.
    """
    clone = form.model_copy(deep=True)
    clone.formId = ""
    clone.title = f"{form.title} (Copy)"
    clone.status = "Draft"
    clone.createdAt = None
    clone.updatedAt = None

    mapping: Dict[str, str] = {}
    for section in clone.sections:
        section.id = new_id()
        for field in section.fields:
            fresh = new_id()
            mapping[field.id] = fresh
            field.id = fresh
    remap_rule_targets(clone, mapping)
    return clone


def _to_document(form: FormSchema) -> Dict[str, Any]:
    doc = form.model_dump(exclude_none=True)
    doc["_id"] = form.formId
    return doc


def _from_document(doc: Dict[str, Any]) -> FormSchema:
    doc = dict(doc)
    doc["formId"] = doc.pop("_id")
    return FormSchema.model_validate(doc)


class MongoFormService:
    def __init__(self, collection):
        self.collection = collection

    async def list(self, status: Optional[str] = None) -> List[FormSchema]:
        query = {"status": status} if status else {}
        forms = []
        async for doc in self.collection.find(query, sort=[("title", 1)]):
            forms.append(_from_document(doc))
        return forms

    async def get(self, form_id: str) -> Optional[FormSchema]:
        doc = await self.collection.find_one({"_id": form_id})
        if not doc:
            return None
        return _from_document(doc)

    async def create(self, form: FormSchema) -> FormSchema:
        now = datetime.now(timezone.utc)
        created = form.model_copy(deep=True)
        if not created.formId:
            created.formId = generate_form_id(created.title, now)
        created.createdAt = now
        created.updatedAt = now

        try:
            await self.collection.insert_one(_to_document(created))
        except DuplicateKeyError as e:
            raise FormServiceError(f"Form already exists: {created.formId}") from e

        logger.info(f"Created form {created.formId}")
        return created

    async def update(self, form_id: str, form: FormSchema) -> FormSchema:
        existing = await self.collection.find_one({"_id": form_id}, {"createdAt": 1})
        if not existing:
            raise FormNotFoundError(form_id)

        updated = form.model_copy(deep=True)
        updated.formId = form_id
        # Preserve existing createdAt
        updated.createdAt = existing.get("createdAt", datetime.now(timezone.utc))
        updated.updatedAt = datetime.now(timezone.utc)

        await self.collection.replace_one({"_id": form_id}, _to_document(updated))
        logger.info(f"Updated form {form_id}")
        return updated

    async def duplicate(self, form_id: str) -> FormSchema:
        original = await self.get(form_id)
        if original is None:
            raise FormNotFoundError(form_id)
        return await self.create(clone_form(original))

    async def archive(self, form_id: str) -> FormSchema:
        doc = await self.collection.find_one_and_update(
            {"_id": form_id},
            {"$set": {"status": "Archived", "updatedAt": datetime.now(timezone.utc)}},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            raise FormNotFoundError(form_id)
        return _from_document(doc)

    async def delete(self, form_id: str) -> None:
        result = await self.collection.delete_one({"_id": form_id})
        if result.deleted_count == 0:
            raise FormNotFoundError(form_id)
