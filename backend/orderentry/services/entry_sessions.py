"""
Entry session registry.

An entry session is one mounted entry surface. Sessions live in process
memory: they hold half-typed orders, not records, and end when the order is
submitted or the user leaves.

Lifecycle:
- mount: the template definition is resolved before the call, so no grid
  state exists until the template has loaded
- switch: the new surface is built first, then the old one is destroyed;
  nothing carries over between templates
- unmount: pending recomputation is cancelled and the state discarded
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from orderentry.core.config import settings
from orderentry.core.exceptions import NotFoundError
from orderentry.models.entry_schemas import TemplateDefinition
from orderentry.services.entry_surfaces import EntrySurface, build_surface
from orderentry.services.grid_renderer import GridRendererRegistry, grid_renderers

logger = logging.getLogger(__name__)


class EntrySession:
    def __init__(self, session_id: str, definition: TemplateDefinition, surface: EntrySurface):
        self.id = session_id
        self.definition = definition
        self.surface = surface
        self.created_at = datetime.utcnow()
        self.updated_at = self.created_at

    def touch(self) -> None:
        self.updated_at = datetime.utcnow()

    def snapshot(self) -> Dict[str, Any]:
        return {
            "sessionId": self.id,
            "templateId": self.definition.id,
            "templateName": self.definition.name,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            **self.surface.snapshot(),
        }


class EntrySessionManager:
    """
    Keeps the mounted entry sessions of this process.

    Sessions idle for longer than `ttl_seconds` are dropped the next time the
    registry is touched; once `max_sessions` are mounted, the least recently
    updated one makes room for a new mount.
    """

    def __init__(
        self,
        registry: Optional[GridRendererRegistry] = None,
        ttl_seconds: Optional[int] = None,
        max_sessions: Optional[int] = None
    ):
        self.registry = registry or grid_renderers
        self.ttl = timedelta(seconds=settings.ENTRY_SESSION_TTL_SECONDS if ttl_seconds is None else ttl_seconds)
        self.max_sessions = settings.ENTRY_SESSION_MAX if max_sessions is None else max_sessions
        self._sessions: Dict[str, EntrySession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    async def mount(self, definition: TemplateDefinition) -> EntrySession:
        surface = await build_surface(definition, self.registry)
        self.expire_idle()
        while self._sessions and len(self._sessions) >= self.max_sessions:
            self._evict_oldest()

        session = EntrySession(uuid.uuid4().hex, definition, surface)
        self._sessions[session.id] = session
        logger.info(f"Mounted {definition.kind} entry session {session.id} for template {definition.id}")
        return session

    def get(self, session_id: str) -> EntrySession:
        self.expire_idle()
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError("Entry session", session_id)
        return session

    async def switch(self, session_id: str, definition: TemplateDefinition) -> EntrySession:
        """Replace a session's surface with a fresh one for another template."""
        session = self.get(session_id)
        surface = await build_surface(definition, self.registry)

        old_surface = session.surface
        session.definition = definition
        session.surface = surface
        session.touch()
        old_surface.destroy()

        logger.info(f"Switched entry session {session_id} to template {definition.id} ({definition.kind})")
        return session

    def unmount(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise NotFoundError("Entry session", session_id)
        session.surface.destroy()
        logger.info(f"Unmounted entry session {session_id}")

    def session_ids(self) -> List[str]:
        self.expire_idle()
        return list(self._sessions)

    def expire_idle(self) -> int:
        """Drop sessions not updated within the TTL. Returns how many went."""
        cutoff = datetime.utcnow() - self.ttl
        expired = [sid for sid, session in self._sessions.items() if session.updated_at < cutoff]
        for session_id in expired:
            self._sessions.pop(session_id).surface.destroy()
        if expired:
            logger.info(f"Expired {len(expired)} idle entry sessions")
        return len(expired)

    def _evict_oldest(self) -> None:
        oldest = min(self._sessions.values(), key=lambda s: s.updated_at)
        del self._sessions[oldest.id]
        oldest.surface.destroy()
        logger.warning(f"Session limit {self.max_sessions} reached, evicted entry session {oldest.id}")

    def clear(self) -> None:
        for session_id in list(self._sessions):
            self.unmount(session_id)


entry_sessions = EntrySessionManager()


def get_session_manager() -> EntrySessionManager:
    """FastAPI dependency for the process-wide session registry."""
    return entry_sessions
