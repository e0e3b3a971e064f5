# guided_dialogue/main.py
"""
Console runner for guided dialogues.

Usage:
    python -m guided_dialogue.main [flow_id]

Commands while a session runs: /pause, /resume, /abandon, /progress, /quit
"""

import asyncio
import json
import sys
from typing import Optional

from guided_dialogue.core.config import settings, validate_required_settings
from guided_dialogue.core.exceptions import DialogueBaseException, SessionInactiveError
from guided_dialogue.core.logging_config import setup_logging
from guided_dialogue.core.orchestrator import DialogueOrchestrator, init_orchestrator
from guided_dialogue.services.redis_service import create_redis_service
from guided_dialogue.services.session_repository import (
    InMemorySessionRepository,
    RedisSessionRepository,
    SessionRepository,
)

logger = setup_logging()


async def build_orchestrator() -> DialogueOrchestrator:
    """Orchestrator backed by Redis when configured, in memory otherwise"""
    repository: SessionRepository
    if settings.REDIS_URL:
        redis_service = await create_redis_service(settings.REDIS_URL)
        if redis_service.is_connected():
            repository = RedisSessionRepository(redis_service)
        else:
            logger.warning("Redis unavailable - falling back to in-memory sessions")
            repository = InMemorySessionRepository()
    else:
        repository = InMemorySessionRepository()

    return init_orchestrator(session_repository=repository)


async def _read_line(prompt: str) -> Optional[str]:
    try:
        return await asyncio.to_thread(input, prompt)
    except EOFError:
        return None


async def run(flow_id: Optional[str] = None, user_id: str = "console") -> int:
    logger.info(f"{settings.APP_NAME} console starting")
    validate_required_settings()

    orchestrator = await build_orchestrator()
    flows = orchestrator.flow_store.list_flows()

    if not flows:
        print("No active flows found.")
        return 1

    if flow_id is None:
        print("Available flows:")
        for flow in flows:
            print(f"  {flow.flow_id:<24} {flow.flow_description}")
        flow_id = flows[0].flow_id

    response = await orchestrator.start_flow(user_id, flow_id)
    session_id = response["session_id"]
    print(f"\n{response['text']}\n")

    while True:
        line = await _read_line("> ")
        if line is None or line.strip() == "/quit":
            break

        command = line.strip()
        try:
            if command == "/pause":
                await orchestrator.pause(session_id)
                print("Session paused.")
            elif command == "/resume":
                response = await orchestrator.resume(session_id)
                print(f"\n{response['text']}\n")
            elif command == "/abandon":
                await orchestrator.abandon(session_id)
                print("Session abandoned.")
                break
            elif command == "/progress":
                progress = await orchestrator.get_progress(session_id)
                print(json.dumps(progress, indent=2, ensure_ascii=False))
            else:
                response = await orchestrator.handle_utterance(session_id, line)
                print(f"\n{response['text']}\n")
                if response["status"] == "completed":
                    break
        except SessionInactiveError as e:
            print(e.message)
        except DialogueBaseException as e:
            logger.error(f"Request failed: {e}")
            return 1

    progress = await orchestrator.get_progress(session_id)
    print(json.dumps(progress["collected_data"], indent=2, ensure_ascii=False))
    return 0


def main() -> None:
    flow_id = sys.argv[1] if len(sys.argv) > 1 else None
    sys.exit(asyncio.run(run(flow_id)))


if __name__ == "__main__":
    main()
