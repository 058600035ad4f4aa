import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest

from formbuilder.schemas import ConditionalRule, FormField, FormSchema, FormSection
from formbuilder.services import FormNotFoundError, clone_form, generate_form_id
from formbuilder.store import SchemaStore


class InMemoryFormService:
    """
    Stand-in for MongoFormService.

    ``calls`` records every create/update, ``gate`` (an asyncio.Event) holds saves
    open until the test releases it, ``error`` makes the next save fail.
    """

    def __init__(self):
        self.forms: Dict[str, FormSchema] = {}
        self.calls: List[str] = []
        self.gate: Optional[asyncio.Event] = None
        self.error: Optional[Exception] = None
        self.get_error: Optional[Exception] = None

    async def _hold(self):
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            error, self.error = self.error, None
            raise error

    async def list(self, status=None):
        return [f.model_copy(deep=True) for f in self.forms.values() if status is None or f.status == status]

    async def get(self, form_id):
        if self.get_error is not None:
            raise self.get_error
        form = self.forms.get(form_id)
        return form.model_copy(deep=True) if form else None

    async def create(self, form):
        self.calls.append(f"create:{form.formId}")
        await self._hold()
        now = datetime.now(timezone.utc)
        created = form.model_copy(deep=True)
        created.formId = created.formId or generate_form_id(created.title, now)
        created.createdAt = now
        created.updatedAt = now
        self.forms[created.formId] = created
        return created.model_copy(deep=True)

    async def update(self, form_id, form):
        self.calls.append(f"update:{form_id}")
        await self._hold()
        if form_id not in self.forms:
            raise FormNotFoundError(form_id)
        updated = form.model_copy(deep=True)
        updated.formId = form_id
        updated.createdAt = self.forms[form_id].createdAt
        updated.updatedAt = datetime.now(timezone.utc)
        self.forms[form_id] = updated
        return updated.model_copy(deep=True)

    async def duplicate(self, form_id):
        if form_id not in self.forms:
            raise FormNotFoundError(form_id)
        return await self.create(clone_form(self.forms[form_id]))

    async def archive(self, form_id):
        if form_id not in self.forms:
            raise FormNotFoundError(form_id)
        self.forms[form_id].status = "Archived"
        return self.forms[form_id].model_copy(deep=True)

    async def delete(self, form_id):
        if self.forms.pop(form_id, None) is None:
            raise FormNotFoundError(form_id)


def field(field_id, label=None, kind="checkbox", order=0, show_if=None):
    return FormField(
        id=field_id,
        type=kind,
        label=label or field_id,
        order=order,
        showIf=[ConditionalRule(**r) for r in show_if] if show_if else None,
    )


def sample_form(form_id="opening-checklist-001") -> FormSchema:
    """Two sections: s1 = [A, B, C], s2 = [D]."""
    created = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return FormSchema(
        formId=form_id,
        title="Opening Checklist",
        type="Opening",
        status="Active",
        sections=[
            FormSection(
                id="s1",
                title="Safety Checks",
                description="Verify all safety equipment",
                order=0,
                fields=[
                    field("A", "Fire extinguisher inspected", order=0),
                    field("B", "Emergency exits clear", order=1),
                    field("C", "Temperature", kind="number", order=2),
                ],
            ),
            FormSection(id="s2", title="Cash", order=1, fields=[field("D", "Till counted", order=0)]),
        ],
        createdAt=created,
        updatedAt=created,
    )


def assert_contiguous(form: FormSchema):
    assert [s.order for s in form.sections] == list(range(len(form.sections)))
    for section in form.sections:
        assert [f.order for f in section.fields] == list(range(len(section.fields)))


def field_ids(store: SchemaStore, section_id: str) -> List[str]:
    return [f.id for f in store.get_section(section_id).fields]


@pytest.fixture
def service():
    return InMemoryFormService()


@pytest.fixture
def store(service):
    """A store with sample_form() loaded, as if fetched from the service."""
    service.forms["opening-checklist-001"] = sample_form()
    store = SchemaStore(service)
    assert asyncio.run(store.load_form("opening-checklist-001"))
    return store


@pytest.fixture
def client(service):
    from fastapi.testclient import TestClient

    from formbuilder.dependencies import get_form_service
    from formbuilder.main import app

    app.dependency_overrides[get_form_service] = lambda: service
    app.state.sessions = None
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    app.state.sessions = None
