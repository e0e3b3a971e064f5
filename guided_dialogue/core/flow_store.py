# guided_dialogue/core/flow_store.py
"""
Flow definition store - read-only access to validated flow graphs.

Flows are validated once when loaded:
- every next_step_id resolves to a step in the same flow (or is empty)
- every field has a prompt, select fields declare options
- templates carry exactly one placeholder each
- cycles are detected and flagged (rejected only when configured)
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union
import json
import logging
import re

from pydantic import ValidationError

from guided_dialogue.models.flow_models import (
    CONFIRMATION_DATA_PLACEHOLDER,
    VALUE_PLACEHOLDER,
    FieldType,
    FlowDefinition,
    Step,
    StepType,
)
from guided_dialogue.core.exceptions import (
    FlowDefinitionError,
    flow_not_found,
    step_not_found,
)

logger = logging.getLogger(__name__)


@dataclass
class FlowValidationReport:
    """Outcome of validating one flow definition"""
    flow_id: str
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    has_cycle: bool = False

    @property
    def valid(self) -> bool:
        return not self.errors


def find_cycle_steps(flow: FlowDefinition) -> Set[str]:
    """
    Return the ids of all steps that sit on a cycle.

    Every step has at most one outgoing edge, so walking from each step
    either reaches a terminal step or revisits a step of the current walk.
    """
    steps = flow.step_map
    on_cycle: Set[str] = set()
    finished: Set[str] = set()

    for start in steps:
        path: List[str] = []
        position: Dict[str, int] = {}
        current: Optional[str] = start

        while current and current in steps and current not in finished:
            if current in position:
                on_cycle.update(path[position[current]:])
                break
            position[current] = len(path)
            path.append(current)
            current = steps[current].next_step_id

        finished.update(path)

    return on_cycle


def reachable_steps(flow: FlowDefinition) -> Set[str]:
    steps = flow.step_map
    seen: Set[str] = set()
    current = flow.entry_step
    while current and current in steps and current not in seen:
        seen.add(current)
        current = steps[current].next_step_id
    return seen


def validate_flow(flow: FlowDefinition) -> FlowValidationReport:
    """Validate the step graph and templates of a flow"""
    report = FlowValidationReport(flow_id=flow.flow_id)
    errors = report.errors

    if not flow.steps:
        errors.append("Flow declares no steps")
        return report

    step_ids = [step.step_id for step in flow.steps]
    duplicates = sorted({s for s in step_ids if step_ids.count(s) > 1})
    if duplicates:
        errors.append(f"Duplicate step ids: {duplicates}")

    known = set(step_ids)
    if flow.entry_step not in known:
        errors.append(f"Entry step '{flow.entry_step}' does not exist")

    for step in flow.steps:
        errors.extend(_validate_step(step, known))

    cycle_steps = find_cycle_steps(flow)
    if cycle_steps:
        report.has_cycle = True
        report.warnings.append(f"Step graph contains a cycle through: {sorted(cycle_steps)}")

    if not errors:
        unreachable = known - reachable_steps(flow)
        if unreachable:
            report.warnings.append(f"Unreachable steps: {sorted(unreachable)}")

    return report


def _validate_step(step: Step, known: Set[str]) -> List[str]:
    errors = []
    where = f"Step '{step.step_id}'"

    if step.next_step_id and step.next_step_id not in known:
        errors.append(f"{where}: next_step_id '{step.next_step_id}' does not exist")

    if step.type == StepType.COMPLETION:
        if step.fields:
            errors.append(f"{where}: completion steps cannot declare fields")
        return errors

    if not step.fields:
        errors.append(f"{where}: data_collection step declares no fields")

    template = step.confirmation_message_template
    if step.is_checkpoint or template:
        count = template.count(CONFIRMATION_DATA_PLACEHOLDER)
        if count != 1:
            errors.append(
                f"{where}: confirmation message template must contain "
                f"{CONFIRMATION_DATA_PLACEHOLDER} exactly once (found {count})"
            )

    field_ids = [f.field_id for f in step.fields]
    duplicates = sorted({f for f in field_ids if field_ids.count(f) > 1})
    if duplicates:
        errors.append(f"{where}: duplicate field ids {duplicates}")

    for flow_field in step.fields:
        label = f"{where}, field '{flow_field.field_id}'"

        if not flow_field.prompt_template.strip():
            errors.append(f"{label}: prompt template is empty")

        count = flow_field.confirmation_template.count(VALUE_PLACEHOLDER)
        if count != 1:
            errors.append(
                f"{label}: confirmation template must contain {VALUE_PLACEHOLDER} exactly once (found {count})"
            )

        if flow_field.type == FieldType.SELECT and not flow_field.validation.options:
            errors.append(f"{label}: select field declares no options")

        if flow_field.validation.pattern:
            try:
                re.compile(flow_field.validation.pattern)
            except re.error as e:
                errors.append(f"{label}: invalid pattern ({e})")

    return errors


class FlowDefinitionStore:
    """
    Registry of validated flow definitions, keyed by flow_id.

    Loading a flow whose step graph contains a cycle is accepted with a
    warning unless reject_cycles is set. The engine does not guard against
    loops caused by such configurations.
    """

    def __init__(self, reject_cycles: bool = False):
        self.reject_cycles = reject_cycles
        self._flows: Dict[str, FlowDefinition] = {}
        self._reports: Dict[str, FlowValidationReport] = {}

    def load_flow(self, data: Union[Dict[str, Any], FlowDefinition]) -> FlowDefinition:
        """
        Validate and register one flow definition.

        Raises:
            FlowDefinitionError: If the definition is malformed
        """
        if isinstance(data, FlowDefinition):
            flow = data
        else:
            try:
                flow = FlowDefinition.model_validate(data)
            except ValidationError as e:
                flow_id = data.get("flow_id") if isinstance(data, dict) else None
                raise FlowDefinitionError(
                    f"Malformed flow definition: {flow_id}",
                    flow_id=flow_id,
                    problems=[err["msg"] + f" at {'.'.join(str(p) for p in err['loc'])}" for err in e.errors()]
                ) from e

        report = validate_flow(flow)

        if report.has_cycle and self.reject_cycles:
            report.errors.extend(report.warnings)

        if not report.valid:
            logger.error(f"Flow '{flow.flow_id}' failed validation: {report.errors}")
            raise FlowDefinitionError(
                f"Invalid flow definition: {flow.flow_id}",
                flow_id=flow.flow_id,
                problems=report.errors
            )

        for warning in report.warnings:
            logger.warning(f"Flow '{flow.flow_id}': {warning}")

        if flow.flow_id in self._flows:
            logger.warning(f"Overwriting existing flow: {flow.flow_id}")

        self._flows[flow.flow_id] = flow
        self._reports[flow.flow_id] = report
        logger.info(f"Loaded flow '{flow.flow_id}' with {len(flow.steps)} steps")
        return flow

    def load_file(self, path: Union[str, Path]) -> FlowDefinition:
        path = Path(path)
        with path.open(encoding="utf-8") as fh:
            data = json.load(fh)
        return self.load_flow(data)

    def load_directory(self, directory: Union[str, Path]) -> int:
        """
        Load every *.json flow file in a directory.

        Returns:
            Number of flows loaded
        """
        directory = Path(directory)
        logger.info(f"Loading flow definitions from {directory}")

        count = 0
        for path in sorted(directory.glob("*.json")):
            self.load_file(path)
            count += 1

        logger.info(f"Loaded {count} flow definitions")
        return count

    def get_flow(self, flow_id: str) -> FlowDefinition:
        """
        Raises:
            FlowNotFoundError: If no flow is registered under flow_id
        """
        flow = self._flows.get(flow_id)
        if flow is None:
            raise flow_not_found(flow_id)
        return flow

    def get_step(self, flow: FlowDefinition, step_id: str) -> Step:
        """
        Raises:
            StepNotFoundError: If the flow has no such step
        """
        step = flow.get_step(step_id)
        if step is None:
            raise step_not_found(step_id, flow.flow_id)
        return step

    def list_flows(self, active_only: bool = True) -> List[FlowDefinition]:
        return [
            flow for flow in self._flows.values()
            if flow.is_active or not active_only
        ]

    def has_cycle(self, flow_id: str) -> bool:
        self.get_flow(flow_id)
        return self._reports[flow_id].has_cycle

    def get_report(self, flow_id: str) -> FlowValidationReport:
        self.get_flow(flow_id)
        return self._reports[flow_id]


# Global instance for easy access
_flow_store: Optional[FlowDefinitionStore] = None


def get_flow_store() -> FlowDefinitionStore:
    """Get the global store, loaded from FLOW_DEFINITIONS_PATH"""
    global _flow_store
    if _flow_store is None:
        from guided_dialogue.core.config import settings

        store = FlowDefinitionStore(reject_cycles=settings.REJECT_CYCLIC_FLOWS)
        store.load_directory(settings.FLOW_DEFINITIONS_PATH)
        _flow_store = store
    return _flow_store


if __name__ == "__main__":
    import sys
    from guided_dialogue.core.config import settings

    directory = Path(sys.argv[1]) if len(sys.argv) > 1 else Path(settings.FLOW_DEFINITIONS_PATH)
    print(f"=== Validating flow definitions in {directory} ===")

    failed = False
    for flow_path in sorted(directory.glob("*.json")):
        try:
            loaded = FlowDefinitionStore(reject_cycles=settings.REJECT_CYCLIC_FLOWS).load_file(flow_path)
            report = validate_flow(loaded)
            print(f"OK   {flow_path.name}: {loaded.flow_id} ({len(loaded.steps)} steps)")
            for warning in report.warnings:
                print(f"     warning: {warning}")
        except FlowDefinitionError as e:
            failed = True
            print(f"FAIL {flow_path.name}: {e.message}")
            for problem in e.problems:
                print(f"     - {problem}")

    sys.exit(1 if failed else 0)
