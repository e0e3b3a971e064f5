# guided_dialogue/core/confirmation_builder.py
"""Renders checkpoint summaries from collected field values."""

from typing import List, Optional
import logging

from guided_dialogue.models.flow_models import (
    CONFIRMATION_DATA_PLACEHOLDER,
    VALUE_PLACEHOLDER,
    Step,
)
from guided_dialogue.models.session_state import StepProgress

logger = logging.getLogger(__name__)


class ConfirmationBuilder:
    """
    Builds the confirmation block for a step.

    Fields are rendered in their declared order, not in the order they were
    collected. Fields without a stored value produce no line.
    """

    def build_block(self, step: Step, progress: Optional[StepProgress]) -> str:
        if progress is None:
            return ""

        lines: List[str] = []
        for field in step.fields:
            value = progress.get_value(field.field_id)
            if value is None:
                continue
            lines.append(field.confirmation_template.replace(VALUE_PLACEHOLDER, value, 1))

        return "\n".join(lines)

    def build(self, step: Step, progress: Optional[StepProgress]) -> str:
        """
        Render the full confirmation message for a step.

        Args:
            step: Step definition
            progress: The session's progress record for the step

        Returns:
            The step template with the confirmation block substituted, or the
            bare block when the step declares no template
        """
        block = self.build_block(step, progress)
        template = step.confirmation_message_template

        if not template:
            return block

        return template.replace(CONFIRMATION_DATA_PLACEHOLDER, block, 1)
