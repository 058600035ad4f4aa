from fastapi import Depends, HTTPException, Request

from formbuilder.database import forms_collection
from formbuilder.services import MongoFormService
from formbuilder.session import BuilderSession, SessionRegistry


def get_form_service():
    return MongoFormService(forms_collection)


def get_sessions(request: Request, service=Depends(get_form_service)) -> SessionRegistry:
    # one registry per app; created on first use so tests can swap the service
    registry = getattr(request.app.state, "sessions", None)
    if registry is None:
        registry = SessionRegistry(service)
        request.app.state.sessions = registry
    return registry


def get_session(session_id: str, sessions: SessionRegistry = Depends(get_sessions)) -> BuilderSession:
    session = sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Builder session not found")
    return session
