# guided_dialogue/core/orchestrator.py
"""
Dialogue orchestrator - session-level interface to the dialogue engine.

Each request runs load -> engine -> save. Work on one session id is
serialised with a per-session lock, and the repository rejects stale saves,
so two utterances never both advance the same step.
"""

from typing import Any, Dict, Optional
import asyncio
from contextlib import asynccontextmanager
import logging

from guided_dialogue.models.flow_models import StepType
from guided_dialogue.models.session_state import DialogueSession, SessionStatus, StepStatus
from guided_dialogue.core.dialogue_engine import DialogueEngine, DialogueState, EngineResponse
from guided_dialogue.core.exceptions import SessionInactiveError, session_not_found
from guided_dialogue.core.flow_store import FlowDefinitionStore, get_flow_store
from guided_dialogue.services.session_repository import InMemorySessionRepository, SessionRepository

logger = logging.getLogger(__name__)


class DialogueOrchestrator:
    """
    Main interface for guided dialogues.

    This orchestrator:
    1. Resolves flows and sessions
    2. Serialises work per session
    3. Runs the dialogue engine
    4. Persists the updated session
    """

    def __init__(
        self,
        session_repository: Optional[SessionRepository] = None,
        flow_store: Optional[FlowDefinitionStore] = None,
        engine: Optional[DialogueEngine] = None,
        enable_logging: bool = True
    ):
        self.sessions = session_repository or InMemorySessionRepository()
        self.flow_store = flow_store or get_flow_store()
        self.engine = engine or DialogueEngine()
        self.enable_logging = enable_logging
        self._session_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

        logger.info("Dialogue orchestrator initialized")

    @asynccontextmanager
    async def _session_lock(self, session_id: str):
        """
        Hold the lock for one session id. The entry is dropped once nobody
        holds or waits for it, so the map only tracks sessions in use.
        """
        lock = self._session_locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._session_locks[session_id] = lock
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1

        try:
            async with lock:
                yield
        finally:
            self._lock_users[session_id] -= 1
            if not self._lock_users[session_id]:
                del self._lock_users[session_id]
                del self._session_locks[session_id]

    async def _load(self, session_id: str) -> DialogueSession:
        session = await self.sessions.get(session_id)
        if session is None:
            raise session_not_found(session_id)
        return session

    async def start_flow(
        self,
        user_id: str,
        flow_id: str,
        resume_existing: bool = False
    ) -> Dict[str, Any]:
        """
        Start a flow for a user.

        Args:
            user_id: User identifier
            flow_id: Flow to start
            resume_existing: Return the user's active session in this flow
                instead of starting a new one

        Raises:
            FlowNotFoundError: If the flow does not exist
        """
        flow = self.flow_store.get_flow(flow_id)

        if resume_existing:
            existing = await self.sessions.find_active(user_id, flow_id)
            if existing is not None:
                logger.info(f"Resuming session {existing.session_id} for user {user_id}")
                return self._to_response(existing, self.engine.current_prompt(existing, flow))

        result = self.engine.start_flow(flow, user_id=user_id)
        async with self._session_lock(result.session.session_id):
            saved = await self.sessions.save(result.session)

        return self._to_response(saved, result.prompt_text)

    async def handle_utterance(self, session_id: str, text: Optional[str]) -> Dict[str, Any]:
        """
        Main entry point for user utterances.

        Raises:
            SessionNotFoundError: If the session does not exist
            FlowNotFoundError / StepNotFoundError: For broken references
            PersistenceConflictError: If the session was saved concurrently;
                the caller should reload and retry the whole utterance
        """
        text = text or ""

        async with self._session_lock(session_id):
            session = await self._load(session_id)
            flow = self.flow_store.get_flow(session.flow_id)

            if self.enable_logging:
                logger.info(f"Handling utterance for session {session_id}: '{text[:50]}'")

            response = self.engine.process_utterance(session, flow, text)

            if response.previous_state == DialogueState.INACTIVE:
                return self._to_response(session, response.response_text, response)

            saved = await self.sessions.save(response.updated_session)

        return self._to_response(saved, response.response_text, response)

    async def abandon(self, session_id: str) -> DialogueSession:
        """Abandon a session; further utterances get the inactive response"""
        return await self._set_status(
            session_id, SessionStatus.ABANDONED,
            allowed=(SessionStatus.ACTIVE, SessionStatus.PAUSED)
        )

    async def pause(self, session_id: str) -> DialogueSession:
        return await self._set_status(session_id, SessionStatus.PAUSED, allowed=(SessionStatus.ACTIVE,))

    async def resume(self, session_id: str) -> Dict[str, Any]:
        """Reactivate a paused session and repeat its pending prompt"""
        session = await self._set_status(session_id, SessionStatus.ACTIVE, allowed=(SessionStatus.PAUSED,))
        flow = self.flow_store.get_flow(session.flow_id)
        return self._to_response(session, self.engine.current_prompt(session, flow))

    async def _set_status(self, session_id: str, status: SessionStatus, allowed) -> DialogueSession:
        """
        Raises:
            SessionInactiveError: If the session's status does not allow the change
        """
        async with self._session_lock(session_id):
            session = await self._load(session_id)

            if session.status not in allowed:
                raise SessionInactiveError(
                    f"Cannot change session {session_id} from {session.status.value} to {status.value}",
                    session_id=session_id,
                    status=session.status.value
                )

            session.status = status
            session.touch()
            saved = await self.sessions.save(session)

        logger.info(f"Session {session_id} is now {status.value}")
        return saved

    async def get_progress(self, session_id: str) -> Dict[str, Any]:
        """Progress summary of a session"""
        session = await self._load(session_id)
        flow = self.flow_store.get_flow(session.flow_id)

        collection_steps = [s for s in flow.steps if s.type == StepType.DATA_COLLECTION]
        completed_ids = {
            p.step_id for p in session.step_progress if p.status == StepStatus.COMPLETED
        }

        return {
            "session_id": session.session_id,
            "flow_id": session.flow_id,
            "current_step_id": session.current_step_id,
            "status": session.status.value,
            "completed_steps": len([s for s in collection_steps if s.step_id in completed_ids]),
            "total_steps": len(collection_steps),
            "collected_data": session.collected_data(),
            "started_at": session.started_at.isoformat(),
            "last_activity_at": session.last_activity_at.isoformat(),
            "completed_at": session.completed_at.isoformat() if session.completed_at else None,
        }

    async def health_check(self) -> Dict[str, Any]:
        """
        Check health of the orchestrator and its components.

        Returns:
            Dict with health status
        """
        health_status = {
            "orchestrator": "healthy",
            "dialogue_engine": "healthy",
            "flows": {},
            "overall": "healthy"
        }

        flows = self.flow_store.list_flows()
        health_status["flows"] = {"loaded": len(flows)}
        if not flows:
            health_status["flows"]["status"] = "no flows loaded"
            health_status["overall"] = "warning"

        redis_service = getattr(self.sessions, "redis", None)
        if redis_service is not None:
            try:
                redis_status = await redis_service.health_check()
                health_status["redis"] = redis_status.get("status", "unknown")
                if not redis_status.get("healthy"):
                    health_status["overall"] = "warning"
            except Exception as e:
                health_status["redis"] = f"error: {str(e)[:50]}"
                health_status["overall"] = "warning"

        health_status["transitions"] = self.engine.get_flow_summary()["total_transitions"]
        return health_status

    def _to_response(
        self,
        session: DialogueSession,
        text: str,
        engine_response: Optional[EngineResponse] = None
    ) -> Dict[str, Any]:
        response = {
            "session_id": session.session_id,
            "text": text,
            "flow_id": session.flow_id,
            "step_id": session.current_step_id,
            "status": session.status.value,
            "state": None,
            "metadata": {},
        }
        if engine_response is not None:
            response["state"] = engine_response.state.value
            response["metadata"] = dict(engine_response.metadata)
            response["metadata"]["extracted_value"] = engine_response.extracted_value
        return response


# Global orchestrator instance
_orchestrator: Optional[DialogueOrchestrator] = None


def get_orchestrator() -> DialogueOrchestrator:
    """Get the global orchestrator instance"""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = DialogueOrchestrator()
    return _orchestrator


def init_orchestrator(
    session_repository: Optional[SessionRepository] = None,
    flow_store: Optional[FlowDefinitionStore] = None
) -> DialogueOrchestrator:
    """Replace the global orchestrator, e.g. with a Redis-backed repository"""
    global _orchestrator
    _orchestrator = DialogueOrchestrator(session_repository=session_repository, flow_store=flow_store)
    return _orchestrator
