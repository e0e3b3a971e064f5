# guided_dialogue/services/session_repository.py
"""
Session repositories - load/save of dialogue sessions.

Saves are optimistic: a session carries the version it was loaded with and
the save is rejected with PersistenceConflictError when the stored version
has moved on. Conflicts are never merged silently.
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Optional
import asyncio
import logging

from guided_dialogue.models.session_state import DialogueSession, SessionStatus
from guided_dialogue.core.exceptions import persistence_conflict
from guided_dialogue.services.redis_service import RedisService

logger = logging.getLogger(__name__)


class SessionRepository(ABC):
    """Async storage interface for dialogue sessions"""

    @abstractmethod
    async def get(self, session_id: str) -> Optional[DialogueSession]:
        pass

    @abstractmethod
    async def save(self, session: DialogueSession) -> DialogueSession:
        """
        Persist the session if nobody else saved it since it was loaded.

        Returns:
            The stored session with its version incremented

        Raises:
            PersistenceConflictError: If the stored version differs
        """
        pass

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        pass

    @abstractmethod
    async def find_active(self, user_id: str, flow_id: str) -> Optional[DialogueSession]:
        """Most recently active session of a user in a flow, if any"""
        pass


def _next_version(session: DialogueSession) -> DialogueSession:
    return session.model_copy(update={"version": session.version + 1}, deep=True)


class InMemorySessionRepository(SessionRepository):
    """
    In-memory session storage (e.g. for tests and single-process use).
    """

    def __init__(self):
        self.sessions: Dict[str, DialogueSession] = {}
        self._lock = asyncio.Lock()

    async def get(self, session_id: str) -> Optional[DialogueSession]:
        stored = self.sessions.get(session_id)
        return stored.model_copy(deep=True) if stored else None

    async def save(self, session: DialogueSession) -> DialogueSession:
        async with self._lock:
            stored = self.sessions.get(session.session_id)
            stored_version = stored.version if stored else 0

            if stored_version != session.version:
                logger.warning(
                    f"Rejected save of session {session.session_id}: "
                    f"version {session.version}, stored {stored_version}"
                )
                raise persistence_conflict(session.session_id, session.version, stored_version)

            saved = _next_version(session)
            self.sessions[session.session_id] = saved
            return saved.model_copy(deep=True)

    async def delete(self, session_id: str) -> bool:
        return self.sessions.pop(session_id, None) is not None

    async def find_active(self, user_id: str, flow_id: str) -> Optional[DialogueSession]:
        candidates = [
            s for s in self.sessions.values()
            if s.user_id == user_id and s.flow_id == flow_id and s.status == SessionStatus.ACTIVE
        ]
        if not candidates:
            return None
        latest = max(candidates, key=lambda s: s.last_activity_at)
        return latest.model_copy(deep=True)


class RedisSessionRepository(SessionRepository):
    """
    Redis-backed session storage.

    Sessions are stored as JSON documents under key_prefix + session_id with
    a sliding TTL. The version check runs inside a WATCH/MULTI transaction.
    """

    def __init__(
        self,
        redis_service: RedisService,
        key_prefix: Optional[str] = None,
        ttl_seconds: Optional[int] = None
    ):
        from guided_dialogue.core.config import settings

        self.redis = redis_service
        self.key_prefix = key_prefix or settings.SESSION_KEY_PREFIX
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.SESSION_TTL_SECONDS

    def _key(self, session_id: str) -> str:
        return f"{self.key_prefix}{session_id}"

    async def get(self, session_id: str) -> Optional[DialogueSession]:
        await self.redis.ensure_initialized()
        data = await self.redis.get(self._key(session_id))
        if data is None:
            return None
        return DialogueSession.model_validate(data)

    async def save(self, session: DialogueSession) -> DialogueSession:
        await self.redis.ensure_initialized()

        saved = _next_version(session)
        expected = session.version

        def version_matches(current) -> bool:
            stored_version = current.get("version", 0) if isinstance(current, dict) else 0
            return stored_version == expected

        applied, current = await self.redis.check_and_set(
            self._key(session.session_id),
            saved.model_dump_json(),
            version_matches,
            ttl=self.ttl_seconds or None
        )

        if not applied:
            actual = current.get("version") if isinstance(current, dict) else None
            logger.warning(f"Rejected save of session {session.session_id}: version {expected}, stored {actual}")
            raise persistence_conflict(session.session_id, expected, actual)

        return saved

    async def delete(self, session_id: str) -> bool:
        await self.redis.ensure_initialized()
        return await self.redis.delete(self._key(session_id)) > 0

    async def find_active(self, user_id: str, flow_id: str) -> Optional[DialogueSession]:
        await self.redis.ensure_initialized()

        sessions: List[DialogueSession] = []
        for key in await self.redis.keys(f"{self.key_prefix}*"):
            data = await self.redis.get(key)
            if not isinstance(data, dict):
                continue
            if data.get("user_id") == user_id and data.get("flow_id") == flow_id \
                    and data.get("status") == SessionStatus.ACTIVE.value:
                sessions.append(DialogueSession.model_validate(data))

        if not sessions:
            return None
        return max(sessions, key=lambda s: s.last_activity_at)
