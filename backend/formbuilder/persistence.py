"""
Saving the form being edited: manual save, periodic autosave and JSON export.

Manual and automatic saves share ``PersistenceCoordinator.save``. Its guard
(``SchemaStore.begin_save``) runs before the first await, so on one event loop at
most one save request is ever outstanding and a slow response can never land on
top of a newer one.
"""
from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from datetime import datetime, timezone
from typing import Optional, Tuple

from formbuilder.config import settings
from formbuilder.schemas import FormSchema, form_to_wire
from formbuilder.services import FormServiceError, generate_form_id
from formbuilder.store import SchemaStore

logger = logging.getLogger(__name__)


class SaveTimeoutError(FormServiceError):
    pass


class PersistenceCoordinator:
    def __init__(self, store: SchemaStore, service, timeout: Optional[float] = None):
        self.store = store
        self.service = service
        self.timeout = settings.SAVE_TIMEOUT_SECONDS if timeout is None else timeout
        # formId of a create that failed or timed out; the server may have stored it anyway
        self._unconfirmed_create: Optional[str] = None

    async def save(self) -> Optional[FormSchema]:
        """
        Persist the current form.

        Returns the saved form, or None when there was nothing to do (no form, no
        unsaved changes, or another save still in flight). Service errors and
        timeouts are logged and re-raised; the form stays dirty either way.
        """
        store = self.store
        if not store.begin_save():
            logger.debug("Save skipped (no form, clean, or already saving)")
            return None

        form = store.form
        if not form.formId:
            # assigned once and kept, even if this first attempt fails
            form.formId = generate_form_id(form.title)

        started_revision = store.revision
        payload = form.model_copy(deep=True)
        creating = payload.createdAt is None
        try:
            saved = await asyncio.wait_for(self._send(payload), timeout=self.timeout)
        except asyncio.TimeoutError:
            if creating:
                self._unconfirmed_create = payload.formId
            logger.error(f"Saving form {payload.formId} timed out after {self.timeout}s")
            raise SaveTimeoutError(f"Save of {payload.formId} timed out") from None
        except Exception:
            if creating:
                self._unconfirmed_create = payload.formId
            logger.exception(f"Failed to save form {payload.formId}")
            raise
        finally:
            store.end_save()

        self._unconfirmed_create = None
        store.reconcile_saved(saved, started_revision, datetime.now(timezone.utc))
        logger.info(f"Saved form {saved.formId}")
        return saved

    async def _send(self, payload: FormSchema) -> FormSchema:
        """create for a never-persisted form, update otherwise."""
        if payload.createdAt is None and payload.formId == self._unconfirmed_create:
            existing = await self.service.get(payload.formId)
            if existing is not None:
                logger.info(f"Form {payload.formId} was stored by an earlier attempt, updating it")
                payload.createdAt = existing.createdAt
        if payload.createdAt is None:
            return await self.service.create(payload)
        return await self.service.update(payload.formId, payload)


class Autosaver:
    """Flushes unsaved edits every ``interval`` seconds for as long as a session is open."""

    def __init__(self, coordinator: PersistenceCoordinator, interval: Optional[float] = None):
        self.coordinator = coordinator
        self.interval = settings.AUTOSAVE_INTERVAL_SECONDS if interval is None else interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def tick(self) -> bool:
        """One autosave check. Returns True if a save was attempted."""
        store = self.coordinator.store
        if store.form is None or not store.dirty or store.saving:
            return False
        try:
            await self.coordinator.save()
        except Exception as e:
            # already logged by save(); keep the loop alive for the next tick
            logger.warning(f"Autosave failed, will retry: {e}")
        return True

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.tick()


def export_form(form: FormSchema) -> Tuple[str, bytes]:
    """(download file name, JSON body) of the form in its persisted shape."""
    body = json.dumps(form_to_wire(form), indent=2, ensure_ascii=False)
    return f"{form.formId or 'untitled-form'}.json", body.encode("utf-8")


def status_label(store: SchemaStore, now: Optional[datetime] = None) -> str:
    """Text of the save indicator next to the builder's save button."""
    if store.saving:
        return "Saving..."
    if not store.dirty and store.last_saved:
        now = now or datetime.now(timezone.utc)
        last_saved = store.last_saved
        if last_saved.tzinfo is None:
            last_saved = last_saved.replace(tzinfo=timezone.utc)
        minutes = int((now - last_saved).total_seconds() // 60)
        if minutes < 1:
            return "Saved just now"
        if minutes == 1:
            return "Saved 1 minute ago"
        if minutes < 60:
            return f"Saved {minutes} minutes ago"
        return f"Saved at {store.last_saved.strftime('%H:%M:%S')}"
    if store.dirty:
        return "Unsaved changes"
    return ""
