# guided_dialogue/core/dialogue_engine.py
"""
Dialogue engine - FSM-based control of guided data collection.

The engine drives a session through a flow definition one utterance at a
time. The dialogue state is derived from the session status and the current
step; each (state, event) pair maps to exactly one transition handler.

Processing is synchronous and works on a copy of the session, so a failed
request never leaves a half-mutated session behind.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

from guided_dialogue.models.flow_models import FlowDefinition, FlowField, Step, StepType
from guided_dialogue.models.session_state import (
    ConfirmationRecord,
    DialogueSession,
    SessionStatus,
    StepProgress,
    StepStatus,
)
from guided_dialogue.core.confirmation_builder import ConfirmationBuilder
from guided_dialogue.core.exceptions import (
    FieldValidationFailure,
    SessionStateError,
    flow_not_found,
    step_not_found,
)
from guided_dialogue.core.field_extractor import FieldExtractor
from guided_dialogue.core.intent_classifier import Intent, IntentClassifier, IntentResult
from guided_dialogue.core.prompt_manager import PromptManager, PromptType, get_prompt_manager

logger = logging.getLogger(__name__)


class DialogueState(str, Enum):
    """States derived from session status and current step"""
    IDLE = "idle"
    COLLECTING = "collecting"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    COMPLETED = "completed"
    INACTIVE = "inactive"


class DialogueEvent(str, Enum):
    """Events an utterance can raise in a given state"""
    ENTER_FLOW = "enter_flow"
    FIELD_INPUT = "field_input"
    CONFIRM = "confirm"
    CORRECT = "correct"
    REPEATED_CONFIRM = "repeated_confirm"
    OTHER_INPUT = "other_input"
    ANY_INPUT = "any_input"


@dataclass
class TurnContext:
    """Per-utterance data handed to transition handlers"""
    session: DialogueSession
    flow: FlowDefinition
    utterance: str
    intent: Optional[IntentResult] = None
    extracted_value: Optional[str] = None


TransitionHandler = Callable[[TurnContext], str]


@dataclass
class Transition:
    """One (state, event) edge and the handler that runs on it"""
    from_state: DialogueState
    event: DialogueEvent
    handler: TransitionHandler
    description: str = ""


@dataclass
class EngineResponse:
    """Result of processing one utterance"""
    response_text: str
    updated_session: DialogueSession
    state: DialogueState
    previous_state: DialogueState
    intent: Optional[IntentResult] = None
    extracted_value: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StartResult:
    """Result of starting a flow"""
    session: DialogueSession
    prompt_text: str


class DialogueEngine:
    """
    Orchestrates extraction, intent classification and confirmation.

    This engine:
    1. Derives the dialogue state for a session
    2. Classifies the utterance into an event for that state
    3. Runs the transition handler, which mutates the session copy
    4. Returns the response text and the updated session
    """

    def __init__(
        self,
        classifier: Optional[IntentClassifier] = None,
        extractor: Optional[FieldExtractor] = None,
        confirmation_builder: Optional[ConfirmationBuilder] = None,
        prompt_manager: Optional[PromptManager] = None
    ):
        self.classifier = classifier or IntentClassifier()
        self.extractor = extractor or FieldExtractor()
        self.confirmation_builder = confirmation_builder or ConfirmationBuilder()
        self.prompts = prompt_manager or get_prompt_manager()

        self.transitions: List[Transition] = []
        self._transition_map: Dict[Tuple[DialogueState, DialogueEvent], Transition] = {}

        self._setup_transitions()
        self._build_transition_map()

        logger.info("DialogueEngine initialized")

    def _setup_transitions(self):
        """Define all state transitions with their handlers"""

        self.add_transition(
            DialogueState.IDLE, DialogueEvent.ENTER_FLOW, self._handle_enter_flow,
            "Session without current step -> enter the entry step"
        )
        self.add_transition(
            DialogueState.COLLECTING, DialogueEvent.FIELD_INPUT, self._handle_field_input,
            "Extract the next unfilled field, then prompt or show confirmation"
        )
        self.add_transition(
            DialogueState.COLLECTING, DialogueEvent.REPEATED_CONFIRM, self._handle_repeated_confirm,
            "Duplicate confirmation right after a checkpoint -> repeat its reply"
        )
        self.add_transition(
            DialogueState.AWAITING_CONFIRMATION, DialogueEvent.CONFIRM, self._handle_confirm,
            "Confirmation -> complete step and advance along next_step_id"
        )
        self.add_transition(
            DialogueState.AWAITING_CONFIRMATION, DialogueEvent.CORRECT, self._handle_correct,
            "Correction -> clear the step and collect it again"
        )
        self.add_transition(
            DialogueState.AWAITING_CONFIRMATION, DialogueEvent.OTHER_INPUT, self._handle_reask,
            "Any other intent -> ask the confirmation question again"
        )
        self.add_transition(
            DialogueState.COMPLETED, DialogueEvent.ANY_INPUT, self._handle_completed,
            "Flow finished -> completion message"
        )
        self.add_transition(
            DialogueState.INACTIVE, DialogueEvent.ANY_INPUT, self._handle_inactive,
            "Paused or abandoned session -> refuse collection"
        )

    # ===========================================
    # CORE FSM METHODS
    # ===========================================

    def add_transition(
        self,
        from_state: DialogueState,
        event: DialogueEvent,
        handler: TransitionHandler,
        description: str = ""
    ):
        """Register a handler for a (state, event) pair"""
        self.transitions.append(Transition(
            from_state=from_state,
            event=event,
            handler=handler,
            description=description
        ))

    def _build_transition_map(self):
        """Index transitions by (state, event)"""
        self._transition_map.clear()

        for transition in self.transitions:
            key = (transition.from_state, transition.event)
            if key in self._transition_map:
                logger.warning(
                    f"Multiple transitions for {transition.from_state.value} + {transition.event.value}. "
                    f"Last one wins."
                )
            self._transition_map[key] = transition

    def get_valid_transitions(self, state: DialogueState) -> List[Transition]:
        return [t for t in self.transitions if t.from_state == state]

    def derive_state(self, session: DialogueSession, flow: FlowDefinition) -> DialogueState:
        """
        Derive the dialogue state of a session.

        Raises:
            StepNotFoundError: If the current step does not exist in the flow
        """
        if session.status in (SessionStatus.PAUSED, SessionStatus.ABANDONED):
            return DialogueState.INACTIVE
        if session.status == SessionStatus.COMPLETED:
            return DialogueState.COMPLETED
        if not session.current_step_id:
            return DialogueState.IDLE

        step = self._get_step(flow, session.current_step_id)
        if step.type == StepType.COMPLETION:
            return DialogueState.COMPLETED

        progress = session.get_step_progress(step.step_id)
        if progress is not None and progress.status == StepStatus.COMPLETED:
            return DialogueState.COMPLETED

        if step.is_checkpoint and self._step_filled(step, progress):
            return DialogueState.AWAITING_CONFIRMATION

        return DialogueState.COLLECTING

    def classify_event(
        self,
        state: DialogueState,
        utterance: str,
        session: Optional[DialogueSession] = None
    ) -> Tuple[DialogueEvent, Optional[IntentResult]]:
        """
        Classify an utterance into the event for the current state.

        Intent classification only runs where intent matters: at checkpoints,
        and on a step just entered by confirming a checkpoint, where a
        repeated "yes" must not be taken as the first field's value.
        Collection otherwise uses field extraction.
        """
        if state == DialogueState.IDLE:
            return DialogueEvent.ENTER_FLOW, None
        if state == DialogueState.COLLECTING:
            if session is not None and self._just_confirmed(session):
                intent = self.classifier.classify(utterance)
                if intent.name == Intent.CONFIRMATION:
                    return DialogueEvent.REPEATED_CONFIRM, intent
            return DialogueEvent.FIELD_INPUT, None
        if state == DialogueState.AWAITING_CONFIRMATION:
            intent = self.classifier.classify(utterance)
            if intent.name == Intent.CONFIRMATION:
                return DialogueEvent.CONFIRM, intent
            if intent.name == Intent.CORRECTION:
                return DialogueEvent.CORRECT, intent
            return DialogueEvent.OTHER_INPUT, intent
        return DialogueEvent.ANY_INPUT, None

    # ===========================================
    # PUBLIC API
    # ===========================================

    def start_flow(
        self,
        flow: FlowDefinition,
        user_id: str = "anonymous",
        session_id: Optional[str] = None
    ) -> StartResult:
        """
        Create a session positioned at the flow's entry step.

        Returns:
            The new session and the welcome text followed by the first prompt

        Raises:
            FlowNotFoundError: If flow is None
            StepNotFoundError: If the entry step does not exist
        """
        if flow is None:
            raise flow_not_found("<none>")

        session_kwargs = {"user_id": user_id, "flow_id": flow.flow_id}
        if session_id:
            session_kwargs["session_id"] = session_id
        session = DialogueSession(**session_kwargs)

        first_text = self._enter_step(session, flow, flow.entry_step)
        prompt_text = self.prompts.get_prompt(
            PromptType.WELCOME_WITH_PROMPT,
            welcome=flow.welcome_message,
            prompt=first_text
        )

        logger.info(f"Started flow '{flow.flow_id}' for user {user_id} (session {session.session_id})")
        return StartResult(session=session, prompt_text=prompt_text)

    def process_utterance(
        self,
        session: DialogueSession,
        flow: FlowDefinition,
        utterance: str
    ) -> EngineResponse:
        """
        Process one utterance for a session.

        The given session is not modified; the mutated copy is returned as
        updated_session.

        Raises:
            FlowNotFoundError: If the flow is missing or does not match the session
            StepNotFoundError: If the session points at an unknown step
        """
        if flow is None or flow.flow_id != session.flow_id:
            raise flow_not_found(session.flow_id)

        working = session.model_copy(deep=True)
        utterance = utterance or ""

        previous_state = self.derive_state(working, flow)
        event, intent = self.classify_event(previous_state, utterance, working)

        logger.info(
            f"Session {working.session_id}: event {event.value} in state {previous_state.value}"
        )

        transition = self._transition_map[(previous_state, event)]
        context = TurnContext(session=working, flow=flow, utterance=utterance, intent=intent)

        text = transition.handler(context)

        # A repeated confirmation only counts directly after the checkpoint
        if event in (DialogueEvent.FIELD_INPUT, DialogueEvent.CORRECT):
            working.last_confirmation = None

        if previous_state != DialogueState.INACTIVE:
            working.touch()

        new_state = self.derive_state(working, flow)
        if new_state != previous_state:
            logger.info(
                f"Session {working.session_id}: {previous_state.value} -> {new_state.value} "
                f"(step {working.current_step_id})"
            )

        return EngineResponse(
            response_text=text,
            updated_session=working,
            state=new_state,
            previous_state=previous_state,
            intent=context.intent,
            extracted_value=context.extracted_value,
            metadata={
                "event": event.value,
                "state_before": previous_state.value,
                "state_after": new_state.value,
                "step_id": working.current_step_id,
                "intent": context.intent.name if context.intent else None,
                "confidence": context.intent.confidence if context.intent else None,
            }
        )

    def current_prompt(self, session: DialogueSession, flow: FlowDefinition) -> str:
        """
        Text the user is currently expected to answer, without mutating the
        session. Used when a paused session is resumed.
        """
        state = self.derive_state(session, flow)
        step = flow.get_step(session.current_step_id)

        if state == DialogueState.AWAITING_CONFIRMATION:
            return self.confirmation_builder.build(step, session.get_step_progress(step.step_id))
        if state == DialogueState.COLLECTING:
            target = self._next_field(step, session.get_step_progress(step.step_id))
            if target is not None:
                return target.prompt_template
        if state == DialogueState.COMPLETED:
            return self._completion_text(flow, step)
        if state == DialogueState.INACTIVE:
            return self._handle_inactive(TurnContext(session=session, flow=flow, utterance=""))
        return flow.welcome_message

    # ===========================================
    # TRANSITION HANDLERS
    # ===========================================

    def _handle_enter_flow(self, ctx: TurnContext) -> str:
        return self._enter_step(ctx.session, ctx.flow, ctx.flow.entry_step)

    def _handle_field_input(self, ctx: TurnContext) -> str:
        session, flow = ctx.session, ctx.flow
        step = self._get_step(flow, session.current_step_id)
        progress = session.ensure_step_progress(step.step_id)

        target = self._next_field(step, progress)
        if target is None:
            return self._on_step_filled(session, flow, step, progress)

        if not target.required:
            ctx.intent = self.classifier.classify(ctx.utterance)
            if ctx.intent.name == Intent.SKIP:
                progress.record_skip(target.field_id)
                logger.debug(f"Skipped optional field '{target.field_id}'")
                return self._prompt_or_finish(session, flow, step, progress)

        try:
            value = self.extractor.extract_or_raise(ctx.utterance, target)
        except FieldValidationFailure as e:
            logger.debug(f"Extraction miss, re-prompting: {e}")
            return self.prompts.get_prompt(
                PromptType.CLARIFICATION_REPROMPT,
                prefix=self.prompts.get_prompt(PromptType.CLARIFICATION_PREFIX),
                prompt=target.prompt_template
            )

        progress.record_value(target.field_id, value)
        ctx.extracted_value = value
        return self._prompt_or_finish(session, flow, step, progress)

    def _handle_confirm(self, ctx: TurnContext) -> str:
        session, flow = ctx.session, ctx.flow
        step = self._get_step(flow, session.current_step_id)
        progress = session.ensure_step_progress(step.step_id)

        text = self._complete_and_advance(session, flow, step, progress)
        session.last_confirmation = ConfirmationRecord(
            step_id=step.step_id,
            next_step_id=step.next_step_id,
            response_text=text
        )
        return text

    def _handle_repeated_confirm(self, ctx: TurnContext) -> str:
        record = ctx.session.last_confirmation
        logger.info(
            f"Session {ctx.session.session_id}: step '{record.step_id}' already confirmed, repeating reply"
        )
        return record.response_text

    def _handle_correct(self, ctx: TurnContext) -> str:
        session, flow = ctx.session, ctx.flow
        step = self._get_step(flow, session.current_step_id)
        progress = session.ensure_step_progress(step.step_id)

        progress.reset()
        logger.info(f"Session {session.session_id}: correction requested, re-entering step '{step.step_id}'")

        first = self._next_field(step, progress)
        return self.prompts.get_prompt(
            PromptType.CORRECTION_REQUEST,
            prompt=first.prompt_template if first else ""
        )

    def _handle_reask(self, ctx: TurnContext) -> str:
        session, flow = ctx.session, ctx.flow
        step = self._get_step(flow, session.current_step_id)
        confirmation = self.confirmation_builder.build(step, session.get_step_progress(step.step_id))

        prompt_type = PromptType.CONFIRMATION_REASK
        if ctx.intent is None or ctx.intent.is_unknown:
            prompt_type = PromptType.UNKNOWN_INTENT_FALLBACK
        return self.prompts.get_prompt(prompt_type, confirmation=confirmation)

    def _handle_completed(self, ctx: TurnContext) -> str:
        step = ctx.flow.get_step(ctx.session.current_step_id)
        return self._completion_text(ctx.flow, step)

    def _handle_inactive(self, ctx: TurnContext) -> str:
        if ctx.session.status == SessionStatus.PAUSED:
            return self.prompts.get_prompt(PromptType.SESSION_PAUSED)
        return self.prompts.get_prompt(PromptType.SESSION_INACTIVE)

    # ===========================================
    # STEP MECHANICS
    # ===========================================

    def _get_step(self, flow: FlowDefinition, step_id: Optional[str]) -> Step:
        step = flow.get_step(step_id)
        if step is None:
            raise step_not_found(step_id or "<none>", flow.flow_id)
        return step

    def _next_field(self, step: Step, progress: Optional[StepProgress]) -> Optional[FlowField]:
        """
        First field in declared order still waiting for an answer. Required
        fields need a value; optional ones may also have been skipped.
        """
        for flow_field in step.fields:
            if progress is None:
                return flow_field
            if flow_field.required:
                answered = progress.has_value(flow_field.field_id)
            else:
                answered = progress.is_answered(flow_field.field_id)
            if not answered:
                return flow_field
        return None

    def _step_filled(self, step: Step, progress: Optional[StepProgress]) -> bool:
        """Nothing left to prompt for: the step can be confirmed or completed"""
        return self._next_field(step, progress) is None

    def _missing_required(self, step: Step, progress: Optional[StepProgress]) -> List[FlowField]:
        return [
            f for f in step.required_fields
            if progress is None or not progress.has_value(f.field_id)
        ]

    def _just_confirmed(self, session: DialogueSession) -> bool:
        """Current step was entered by the last confirmation and has no answers yet"""
        record = session.last_confirmation
        if record is None or record.next_step_id != session.current_step_id:
            return False
        progress = session.current_step_progress()
        return progress is None or not progress.field_values

    def _enter_step(self, session: DialogueSession, flow: FlowDefinition, step_id: Optional[str]) -> str:
        """Move the session onto a step and return its opening text"""
        step = self._get_step(flow, step_id)
        session.current_step_id = step.step_id

        if step.type == StepType.COMPLETION:
            session.ensure_step_progress(step.step_id).complete(None)
            session.mark_completed()
            logger.info(f"Session {session.session_id}: flow '{flow.flow_id}' completed")
            return self._completion_text(flow, step)

        progress = session.ensure_step_progress(step.step_id)
        return self._prompt_or_finish(session, flow, step, progress)

    def _prompt_or_finish(
        self,
        session: DialogueSession,
        flow: FlowDefinition,
        step: Step,
        progress: StepProgress
    ) -> str:
        """Prompt for the next field, or confirm/complete a filled step"""
        if self._step_filled(step, progress):
            return self._on_step_filled(session, flow, step, progress)
        return self._next_field(step, progress).prompt_template

    def _on_step_filled(
        self,
        session: DialogueSession,
        flow: FlowDefinition,
        step: Step,
        progress: StepProgress
    ) -> str:
        """Checkpoints wait for confirmation; other steps complete immediately"""
        if step.is_checkpoint:
            return self.confirmation_builder.build(step, progress)
        return self._complete_and_advance(session, flow, step, progress)

    def _complete_and_advance(
        self,
        session: DialogueSession,
        flow: FlowDefinition,
        step: Step,
        progress: StepProgress
    ) -> str:
        missing = self._missing_required(step, progress)
        if missing:
            raise SessionStateError(
                message=f"Step '{step.step_id}' cannot complete with required fields missing",
                details={"missing_fields": [f.field_id for f in missing]}
            )

        progress.complete(self.confirmation_builder.build(step, progress))
        logger.info(f"Session {session.session_id}: step '{step.step_id}' completed")

        if step.next_step_id:
            return self._enter_step(session, flow, step.next_step_id)

        session.mark_completed()
        logger.info(f"Session {session.session_id}: flow '{flow.flow_id}' completed at terminal step")
        return flow.completion_message or self.prompts.get_prompt(PromptType.STEP_CONFIRMED)

    def _completion_text(self, flow: FlowDefinition, step: Optional[Step]) -> str:
        if step is not None and step.type == StepType.COMPLETION and step.confirmation_message_template:
            return step.confirmation_message_template
        return flow.completion_message or self.prompts.get_prompt(PromptType.STEP_CONFIRMED)

    # ===========================================
    # INTROSPECTION
    # ===========================================

    def get_flow_summary(self) -> Dict[str, Any]:
        """Transition table as plain data, for health checks"""
        return {
            "total_states": len(DialogueState),
            "total_events": len(DialogueEvent),
            "total_transitions": len(self.transitions),
            "transitions": [
                {
                    "from": t.from_state.value,
                    "event": t.event.value,
                    "description": t.description
                }
                for t in self.transitions
            ]
        }
