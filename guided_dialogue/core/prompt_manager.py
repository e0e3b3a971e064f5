# guided_dialogue/core/prompt_manager.py
"""
Registry for the text the engine produces itself.

Templates are the uppercase string constants of the modules listed in
PROMPT_SOURCES. A constant NAME_PARTS in engine_prompts is registered under
"engine.name.parts"; PromptType names the keys the engine depends on.
"""
from typing import Dict, Any, Optional, List, Tuple, Union
from enum import Enum
from dataclasses import dataclass, field
from importlib import import_module
from string import Formatter
import logging

from guided_dialogue.core.exceptions import PromptError

logger = logging.getLogger(__name__)

_formatter = Formatter()


class PromptCategory(str, Enum):
    ENGINE = "engine"


class PromptType(str, Enum):
    """Keys of the prompts the dialogue engine renders"""

    CLARIFICATION_PREFIX = "engine.clarification.prefix"
    CLARIFICATION_REPROMPT = "engine.clarification.reprompt"
    WELCOME_WITH_PROMPT = "engine.welcome.with.prompt"
    CORRECTION_REQUEST = "engine.correction.request"
    CONFIRMATION_REASK = "engine.confirmation.reask"
    UNKNOWN_INTENT_FALLBACK = "engine.unknown.intent.fallback"
    STEP_CONFIRMED = "engine.step.confirmed"
    SESSION_INACTIVE = "engine.session.inactive"
    SESSION_PAUSED = "engine.session.paused"


# (category, key prefix, module path)
PROMPT_SOURCES: Tuple[Tuple[PromptCategory, str, str], ...] = (
    (PromptCategory.ENGINE, "engine", "guided_dialogue.prompts.engine_prompts"),
)


def placeholders(template: str) -> List[str]:
    """Sorted names of the {placeholders} in a template"""
    return sorted({name for _, name, _, _ in _formatter.parse(template) if name})


def constant_key(prefix: str, constant_name: str) -> str:
    return ".".join([prefix] + constant_name.lower().split("_"))


@dataclass
class Prompt:
    key: str
    template: str
    category: PromptCategory
    description: str = ""
    variables: List[str] = field(default=None)

    def __post_init__(self):
        if self.variables is None:
            self.variables = placeholders(self.template)

    def render(self, **values) -> str:
        """
        Substitute values into the template. Substituted text is not
        re-parsed, so braces inside values survive unchanged.

        Raises:
            PromptError: If a placeholder has no value
        """
        missing = [name for name in self.variables if name not in values]
        if missing:
            raise PromptError(
                f"Missing required variables: {missing}",
                prompt_type=self.key,
                details={"missing_variables": missing}
            )
        return self.template.format(**values)

    def preview(self, width: int = 100) -> str:
        if len(self.template) <= width:
            return self.template
        return self.template[:width] + "..."


class PromptManager:
    """Loads prompts lazily on first use and renders them by key"""

    def __init__(self):
        self.prompts: Dict[str, Prompt] = {}
        self._loaded = False

    def load_prompts(self) -> None:
        if self._loaded:
            return

        for category, prefix, module_path in PROMPT_SOURCES:
            module = import_module(module_path)
            for name, value in vars(module).items():
                if not (name.isupper() and isinstance(value, str)):
                    continue
                self.add_prompt(Prompt(
                    key=constant_key(prefix, name),
                    template=value,
                    category=category,
                    description=f"{module_path}.{name}"
                ))

        self._loaded = True
        logger.info(f"Loaded {len(self.prompts)} prompts")

    def add_prompt(self, prompt: Prompt) -> None:
        if prompt.key in self.prompts:
            logger.warning(f"Overwriting existing prompt: {prompt.key}")
        self.prompts[prompt.key] = prompt

    def _lookup(self, key: str) -> Prompt:
        self.load_prompts()
        try:
            return self.prompts[key]
        except KeyError:
            raise PromptError(
                f"Prompt not found: {key}",
                prompt_type=key,
                details={"available_keys": sorted(self.prompts)}
            ) from None

    def get(self, key: str, **values) -> str:
        """
        Render the prompt registered under key.

        Raises:
            PromptError: If the key is unknown or a variable is missing
        """
        return self._lookup(key).render(**values)

    def get_prompt(self, prompt_type: Union[PromptType, str], **values) -> str:
        key = prompt_type.value if isinstance(prompt_type, Enum) else str(prompt_type)
        return self.get(key, **values)

    def list_prompts(self, category: Optional[PromptCategory] = None) -> List[str]:
        self.load_prompts()
        return [
            key for key, prompt in self.prompts.items()
            if category is None or prompt.category == category
        ]

    def get_prompt_info(self, key: str) -> Dict[str, Any]:
        prompt = self._lookup(key)
        return {
            "key": prompt.key,
            "category": prompt.category.value,
            "description": prompt.description,
            "variables": prompt.variables,
            "template_preview": prompt.preview()
        }


_prompt_manager: Optional[PromptManager] = None


def get_prompt_manager() -> PromptManager:
    """Shared PromptManager, loaded on first access"""
    global _prompt_manager
    if _prompt_manager is None:
        _prompt_manager = PromptManager()
        _prompt_manager.load_prompts()
    return _prompt_manager
