# guided_dialogue/core/intent_classifier.py
"""
Keyword-based intent classification.

The keyword table is an immutable value built once per classifier; adding
keywords produces a new table instead of mutating shared state.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Tuple
import logging

logger = logging.getLogger(__name__)


class Intent:
    """Intent names the engine reacts to"""
    GREETING = "greeting"
    HELP = "help"
    QUESTION = "question"
    GRATITUDE = "gratitude"
    FAREWELL = "farewell"
    LEARNING = "learning"
    CONFUSION = "confusion"
    CONFIRMATION = "confirmation"
    CORRECTION = "correction"
    START_FLOW = "start_flow"
    SKIP = "skip"
    UNKNOWN = "unknown"


# Registration order matters: ties keep the earlier category.
DEFAULT_INTENT_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    (Intent.GREETING, ("hello", "hi", "hey", "good morning", "good afternoon", "good evening")),
    (Intent.HELP, ("help", "assist", "support", "guide", "how to")),
    (Intent.QUESTION, ("what", "how", "why", "when", "where", "explain", "tell me")),
    (Intent.GRATITUDE, ("thank", "thanks", "appreciate", "grateful")),
    (Intent.FAREWELL, ("bye", "goodbye", "see you", "farewell", "exit")),
    (Intent.LEARNING, ("learn", "teach", "show", "tutorial", "guide")),
    (Intent.CONFUSION, ("confused", "don't understand", "unclear", "difficult", "hard")),
    (Intent.CONFIRMATION, ("yes", "correct", "right", "that's right", "confirm", "proceed", "go ahead")),
    (Intent.CORRECTION, ("no", "wrong", "incorrect", "change", "modify", "edit", "update")),
    (Intent.START_FLOW, ("start", "begin", "ready", "let's go", "proceed", "continue")),
    (Intent.SKIP, ("skip", "next", "pass", "not applicable", "n/a")),
)


@dataclass(frozen=True)
class IntentResult:
    """Result of intent classification"""
    name: str
    confidence: float

    @property
    def is_unknown(self) -> bool:
        return self.name == Intent.UNKNOWN


UNKNOWN_INTENT = IntentResult(name=Intent.UNKNOWN, confidence=0.0)


@dataclass(frozen=True)
class IntentKeywordTable:
    """Ordered, immutable mapping of intent name to keywords"""
    categories: Tuple[Tuple[str, Tuple[str, ...]], ...] = DEFAULT_INTENT_KEYWORDS

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Iterable[str]]) -> "IntentKeywordTable":
        return cls(tuple((name, tuple(keywords)) for name, keywords in mapping.items()))

    @property
    def names(self) -> List[str]:
        return [name for name, _ in self.categories]

    def keywords_for(self, intent: str) -> Tuple[str, ...]:
        for name, keywords in self.categories:
            if name == intent:
                return keywords
        return ()

    def with_keywords(self, intent: str, keywords: Iterable[str]) -> "IntentKeywordTable":
        """
        Return a new table with keywords added to an intent.

        Unknown intents are appended after the existing categories.
        """
        added = tuple(keywords)
        categories = []
        found = False
        for name, existing in self.categories:
            if name == intent:
                categories.append((name, existing + added))
                found = True
            else:
                categories.append((name, existing))
        if not found:
            categories.append((intent, added))

        logger.info(f"Added keywords for intent '{intent}': {', '.join(added)}")
        return IntentKeywordTable(tuple(categories))

    def as_dict(self) -> Dict[str, List[str]]:
        return {name: list(keywords) for name, keywords in self.categories}


class IntentClassifier:
    """
    Scores every category as matched_keywords / total_keywords.

    Categories are visited in registration order and a later category only
    wins with a strictly greater score, so ties go to the earlier one.
    Keywords match by substring containment on the lower-cased text.
    """

    def __init__(self, keyword_table: Optional[IntentKeywordTable] = None):
        self.keyword_table = keyword_table or IntentKeywordTable()

    def classify(self, text: str) -> IntentResult:
        text_lower = (text or "").lower()
        best = UNKNOWN_INTENT

        for name, keywords in self.keyword_table.categories:
            if not keywords:
                continue
            matches = [keyword for keyword in keywords if keyword in text_lower]
            confidence = len(matches) / len(keywords)

            if confidence > best.confidence:
                best = IntentResult(name=name, confidence=confidence)

        logger.debug(f"Classified '{text_lower[:50]}' as {best.name} ({best.confidence:.2f})")
        return best

    def with_keywords(self, intent: str, keywords: Iterable[str]) -> "IntentClassifier":
        """Classifier over a table extended with extra keywords"""
        return IntentClassifier(self.keyword_table.with_keywords(intent, keywords))
