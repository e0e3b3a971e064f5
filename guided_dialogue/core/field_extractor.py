# guided_dialogue/core/field_extractor.py
"""
Field extraction - turns free-text utterances into typed field values.

Every field type has exactly one extraction strategy, registered in a
dispatch table. Extraction is deterministic and has no side effects; a miss
returns None and the engine re-prompts.
"""

from typing import Callable, Dict, Optional
import logging
import re

from guided_dialogue.models.flow_models import FieldType, FlowField
from guided_dialogue.core.exceptions import FieldValidationFailure

logger = logging.getLogger(__name__)

Strategy = Callable[[str, FlowField], Optional[str]]

MONTH_NAMES = (
    "january", "february", "march", "april", "may", "june",
    "july", "august", "september", "october", "november", "december"
)


class FieldExtractor:
    """
    Extracts a value for a single field from a user utterance.

    Rules per type:
    - text / textarea: the trimmed utterance verbatim
    - email: first local@domain.tld match
    - phone: first 10-digit run or 3-3-4 grouping delimited by '-' or '.'
    - date: "day month-name year" first, then d/m/yyyy or d-m-yyyy
    - number: first digit run, optional comma grouping and 2-decimal suffix
    - select: first declared option contained (case-insensitive) in the utterance
    """

    EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
    PHONE_PATTERN = re.compile(r"\b\d{10}\b|\b\d{3}[-.]\d{3}[-.]\d{4}\b")
    TEXTUAL_DATE_PATTERN = re.compile(
        r"\b\d{1,2}(?:st|nd|rd|th)?\s+(?:" + "|".join(MONTH_NAMES) + r")\s+\d{4}\b",
        re.IGNORECASE
    )
    NUMERIC_DATE_PATTERN = re.compile(r"\b\d{1,2}[-/]\d{1,2}[-/]\d{4}\b")
    NUMBER_PATTERN = re.compile(r"\b\d+(?:,\d{3})*(?:\.\d{2})?\b")

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.FieldExtractor")
        self._strategies: Dict[FieldType, Strategy] = {
            FieldType.TEXT: self._extract_text,
            FieldType.TEXTAREA: self._extract_text,
            FieldType.EMAIL: self._extract_email,
            FieldType.PHONE: self._extract_phone,
            FieldType.DATE: self._extract_date,
            FieldType.NUMBER: self._extract_number,
            FieldType.SELECT: self._extract_select,
        }

    def extract(self, utterance: str, field: FlowField) -> Optional[str]:
        """
        Extract a value for the field, or None when the utterance holds none.

        Args:
            utterance: Raw user text
            field: Field definition to extract for

        Returns:
            The extracted value, or None
        """
        strategy = self._strategies[field.type]
        value = strategy(utterance or "", field)

        if value is None:
            self.logger.debug(f"No {field.type.value} value found for field '{field.field_id}'")
            return None

        if not self._satisfies_constraints(value, field):
            self.logger.debug(f"Value for field '{field.field_id}' rejected by validation constraints")
            return None

        return value

    def extract_or_raise(self, utterance: str, field: FlowField) -> str:
        """
        Strict variant of extract().

        Raises:
            FieldValidationFailure: If no valid value could be extracted
        """
        value = self.extract(utterance, field)
        if value is None:
            raise FieldValidationFailure(
                f"Could not extract a {field.type.value} value for '{field.field_id}'",
                field_id=field.field_id,
                utterance=utterance
            )
        return value

    # ===========================================
    # STRATEGIES
    # ===========================================

    def _extract_text(self, utterance: str, field: FlowField) -> Optional[str]:
        return utterance.strip()

    def _extract_email(self, utterance: str, field: FlowField) -> Optional[str]:
        match = self.EMAIL_PATTERN.search(utterance)
        return match.group(0) if match else None

    def _extract_phone(self, utterance: str, field: FlowField) -> Optional[str]:
        match = self.PHONE_PATTERN.search(utterance)
        return match.group(0) if match else None

    def _extract_date(self, utterance: str, field: FlowField) -> Optional[str]:
        for pattern in (self.TEXTUAL_DATE_PATTERN, self.NUMERIC_DATE_PATTERN):
            match = pattern.search(utterance)
            if match:
                return match.group(0)
        return None

    def _extract_number(self, utterance: str, field: FlowField) -> Optional[str]:
        match = self.NUMBER_PATTERN.search(utterance)
        return match.group(0) if match else None

    def _extract_select(self, utterance: str, field: FlowField) -> Optional[str]:
        text_lower = utterance.lower()
        for option in field.validation.options:
            if option.lower() in text_lower:
                return option
        return None

    # ===========================================
    # CONSTRAINTS
    # ===========================================

    def _satisfies_constraints(self, value: str, field: FlowField) -> bool:
        validation = field.validation

        if validation.min_length is not None and len(value) < validation.min_length:
            return False
        if validation.max_length is not None and len(value) > validation.max_length:
            return False
        if validation.pattern and field.type != FieldType.SELECT:
            if not re.fullmatch(validation.pattern, value):
                return False

        return True


_default_extractor: Optional[FieldExtractor] = None


def extract(utterance: str, field: FlowField) -> Optional[str]:
    """Module-level shortcut using a shared extractor"""
    global _default_extractor
    if _default_extractor is None:
        _default_extractor = FieldExtractor()
    return _default_extractor.extract(utterance, field)
