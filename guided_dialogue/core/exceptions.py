# guided_dialogue/core/exceptions.py
"""
Dialogue engine exceptions - standardized error handling.

Structural errors (missing flow or step, storage conflicts) propagate to the
caller. Extraction and validation misses stay inside the engine and only shape
the conversational response.
"""

from typing import Optional, Dict, Any, List


class DialogueBaseException(Exception):
    """Base exception for all dialogue engine errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize base exception.

        Args:
            message: Human-readable error message
            details: Optional additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class FlowNotFoundError(DialogueBaseException):
    """A flow id could not be resolved"""

    def __init__(
        self,
        message: str,
        flow_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.flow_id = flow_id

        if flow_id:
            self.details['flow_id'] = flow_id


class StepNotFoundError(DialogueBaseException):
    """A step id could not be resolved within its flow"""

    def __init__(
        self,
        message: str,
        step_id: Optional[str] = None,
        flow_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.step_id = step_id
        self.flow_id = flow_id

        if step_id:
            self.details['step_id'] = step_id
        if flow_id:
            self.details['flow_id'] = flow_id


class FlowDefinitionError(DialogueBaseException):
    """Errors found while validating a flow definition at load time"""

    def __init__(
        self,
        message: str,
        flow_id: Optional[str] = None,
        problems: Optional[List[str]] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize flow definition error.

        Args:
            message: Error description
            flow_id: Flow that failed validation
            problems: Every problem found, one entry each
            details: Additional context
        """
        super().__init__(message, details)
        self.flow_id = flow_id
        self.problems = problems or []

        if flow_id:
            self.details['flow_id'] = flow_id
        if self.problems:
            self.details['problems'] = self.problems


class FieldValidationFailure(DialogueBaseException):
    """An utterance did not yield a valid value for a field (recoverable)"""

    def __init__(
        self,
        message: str,
        field_id: Optional[str] = None,
        utterance: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.field_id = field_id
        self.utterance = utterance

        if field_id:
            self.details['field_id'] = field_id
        if utterance is not None:
            self.details['utterance'] = utterance[:100]


class PersistenceConflictError(DialogueBaseException):
    """A concurrent write to the same session was detected on save"""

    def __init__(
        self,
        message: str,
        session_id: Optional[str] = None,
        expected_version: Optional[int] = None,
        actual_version: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize persistence conflict.

        Args:
            message: Error description
            session_id: Session whose save was rejected
            expected_version: Version the writer loaded
            actual_version: Version currently stored
            details: Additional context
        """
        super().__init__(message, details)
        self.session_id = session_id
        self.expected_version = expected_version
        self.actual_version = actual_version

        if session_id:
            self.details['session_id'] = session_id
        if expected_version is not None:
            self.details['expected_version'] = expected_version
        if actual_version is not None:
            self.details['actual_version'] = actual_version


class SessionError(DialogueBaseException):
    """Errors in session management"""

    def __init__(
        self,
        message: str,
        session_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.session_id = session_id

        if session_id:
            self.details['session_id'] = session_id


class SessionNotFoundError(SessionError):
    """No stored session for the given id"""


class SessionInactiveError(SessionError):
    """A lifecycle operation was requested on a session in the wrong status"""

    def __init__(
        self,
        message: str,
        session_id: Optional[str] = None,
        status: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, session_id=session_id, details=details)
        self.status = status

        if status:
            self.details['status'] = status


class SessionStateError(DialogueBaseException):
    """An attempted mutation would break a session invariant"""


class ServiceError(DialogueBaseException):
    """A backing service (e.g. session storage) failed"""

    def __init__(
        self,
        message: str,
        service_name: Optional[str] = None,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize service error.

        Args:
            message: Error description
            service_name: Name of the failing service
            operation: Operation that failed
            details: Additional service context
        """
        super().__init__(message, details)
        self.service_name = service_name
        self.operation = operation

        if service_name:
            self.details['service'] = service_name
        if operation:
            self.details['operation'] = operation


class RedisServiceError(ServiceError):
    """A Redis command failed or Redis is unreachable"""

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, service_name="Redis", operation=operation, details=details)
        self.key = key

        if key:
            self.details['key'] = key


class PromptError(DialogueBaseException):
    """A prompt key is unknown or its template cannot be rendered"""

    def __init__(
        self,
        message: str,
        prompt_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.prompt_type = prompt_type

        if prompt_type:
            self.details['prompt_type'] = prompt_type


# Factories for the errors raised most often

def flow_not_found(flow_id: str) -> FlowNotFoundError:
    """Create a flow-not-found error."""
    return FlowNotFoundError(f"Flow not found: {flow_id}", flow_id=flow_id)


def step_not_found(step_id: str, flow_id: str) -> StepNotFoundError:
    """Create a step-not-found error with flow context."""
    return StepNotFoundError(
        f"Step '{step_id}' not found in flow '{flow_id}'",
        step_id=step_id,
        flow_id=flow_id
    )


def persistence_conflict(session_id: str, expected: int, actual: Optional[int]) -> PersistenceConflictError:
    """Create a persistence conflict error with version context."""
    return PersistenceConflictError(
        f"Concurrent write detected for session {session_id}",
        session_id=session_id,
        expected_version=expected,
        actual_version=actual
    )


def session_not_found(session_id: str) -> SessionNotFoundError:
    """Create a session-not-found error."""
    return SessionNotFoundError(f"Session not found: {session_id}", session_id=session_id)


def redis_error(message: str, key: str = None, operation: str = None) -> RedisServiceError:
    """Redis failure for a given key."""
    return RedisServiceError(message, key=key, operation=operation)
