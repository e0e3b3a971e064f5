# guided_dialogue/prompts/engine_prompts.py
"""
Engine prompts for guided dialogues.

Only text the engine produces itself lives here. Field prompts, confirmation
templates, welcome and completion messages come from the flow definitions.
"""

# ============================================================================
# COLLECTION
# ============================================================================

# Prefixed to a field prompt when nothing could be extracted
CLARIFICATION_PREFIX = """I couldn't understand that."""

# Re-prompt after an extraction miss
CLARIFICATION_REPROMPT = """{prefix} {prompt}"""

# Welcome message followed by the first prompt of the entry step
WELCOME_WITH_PROMPT = """{welcome}

{prompt}"""

# ============================================================================
# CHECKPOINTS
# ============================================================================

# User asked for a correction - the whole step is collected again
CORRECTION_REQUEST = """I understand you'd like to make changes. Let's go through these details again.
{prompt}"""

# Anything other than a confirmation or correction at a checkpoint
CONFIRMATION_REASK = """Please confirm whether these details are correct, or tell me what should change.
{confirmation}"""

# No intent could be recognised at all
UNKNOWN_INTENT_FALLBACK = """I'm not sure I understood that.
{confirmation}"""

# Terminal step confirmed without a completion message to show
STEP_CONFIRMED = """Thank you for confirming. Let me process this information."""

# ============================================================================
# SESSION STATE
# ============================================================================

SESSION_INACTIVE = """This session is no longer active. Please start a new session to continue."""

SESSION_PAUSED = """This session is paused. Resume it to continue where you left off."""
