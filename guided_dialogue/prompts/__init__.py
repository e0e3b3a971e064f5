# guided_dialogue/prompts/__init__.py
"""Prompts package - centralized prompt management"""

# Import all prompt modules for PromptManager
from . import engine_prompts

__all__ = [
    'engine_prompts'
]
