# guided_dialogue/core/config.py
from pathlib import Path
from typing import Optional
import logging

from pydantic import Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

BUNDLED_FLOWS_PATH = Path(__file__).parent.parent / "flows"


class Settings(BaseSettings):
    """Basic application settings"""
    APP_NAME: str = "GuidedDialogue"
    DEBUG: bool = False

    # Flow definitions
    FLOW_DEFINITIONS_PATH: str = str(BUNDLED_FLOWS_PATH)
    REJECT_CYCLIC_FLOWS: bool = False

    # Session storage
    REDIS_URL: Optional[str] = Field(default=None)
    SESSION_KEY_PREFIX: str = "dialogue:session:"
    SESSION_TTL_SECONDS: int = 7 * 24 * 3600

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore"
    }


# Settings singleton
settings = Settings()


def validate_required_settings() -> bool:
    """Checks whether optional infrastructure is configured"""
    missing = []

    if not settings.REDIS_URL:
        missing.append("REDIS_URL")

    if not Path(settings.FLOW_DEFINITIONS_PATH).is_dir():
        missing.append("FLOW_DEFINITIONS_PATH")

    if missing:
        logger.warning(f"Missing environment configuration: {', '.join(missing)}")
        logger.warning("Sessions will be kept in memory and bundled flows may be unavailable.")
        return False

    return True
