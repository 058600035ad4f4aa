from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from formbuilder.drag import DragCoordinator
from formbuilder.editing import PropertyEditor
from formbuilder.persistence import Autosaver, PersistenceCoordinator, status_label
from formbuilder.rules import find_dangling_rules
from formbuilder.schemas import form_to_wire, new_id
from formbuilder.services import FormNotFoundError
from formbuilder.store import SchemaStore

logger = logging.getLogger(__name__)


@dataclass
class BuilderSession:
    """One author editing one form. The autosaver lives exactly as long as the session."""
    id: str
    store: SchemaStore
    drag: DragCoordinator
    editor: PropertyEditor
    persistence: PersistenceCoordinator
    autosaver: Autosaver
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def snapshot(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        store = self.store
        form = store.form
        return {
            "sessionId": self.id,
            "form": form_to_wire(form) if form else None,
            "selectedFieldId": store.selected_field.id if store.selected_field else None,
            "selectedSectionId": store.selected_section.id if store.selected_section else None,
            "isDirty": store.dirty,
            "isSaving": store.saving,
            "lastSaved": store.last_saved.isoformat() if store.last_saved else None,
            "status": status_label(store, now),
            "dragState": self.drag.state.value,
            "danglingRules": [
                {"fieldId": d.field_id, "ruleIndex": d.rule_index, "target": d.target}
                for d in (find_dangling_rules(form) if form else [])
            ],
        }


class SessionRegistry:
    def __init__(self, service, autosave_interval: Optional[float] = None, save_timeout: Optional[float] = None):
        self.service = service
        self.autosave_interval = autosave_interval
        self.save_timeout = save_timeout
        self._sessions: Dict[str, BuilderSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    async def open(self, form_id: Optional[str] = None) -> BuilderSession:
        """Start editing a new form (no id) or an existing one. Must run on the event loop."""
        store = SchemaStore(self.service)
        if form_id:
            if not await store.load_form(form_id):
                raise FormNotFoundError(form_id)
        else:
            store.create_form()

        persistence = PersistenceCoordinator(store, self.service, timeout=self.save_timeout)
        session = BuilderSession(
            id=new_id(),
            store=store,
            drag=DragCoordinator(store),
            editor=PropertyEditor(store),
            persistence=persistence,
            autosaver=Autosaver(persistence, interval=self.autosave_interval),
        )
        session.autosaver.start()
        self._sessions[session.id] = session
        logger.info(f"Opened builder session {session.id} for form {form_id or '<new>'}")
        return session

    def get(self, session_id: str) -> Optional[BuilderSession]:
        return self._sessions.get(session_id)

    async def close(self, session_id: str) -> bool:
        """Stop autosaving and forget the session. Unsaved edits are discarded."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        await session.autosaver.stop()
        if session.store.dirty:
            logger.warning(f"Closing session {session_id} with unsaved changes")
        session.store.reset()
        logger.info(f"Closed builder session {session_id}")
        return True

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self.close(session_id)
