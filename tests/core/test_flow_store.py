# tests/core/test_flow_store.py
"""
Tests for FlowDefinitionStore - loading and load-time validation of flows.
"""

import json
import logging

import pytest
from pydantic import ValidationError

from guided_dialogue.core.config import BUNDLED_FLOWS_PATH
from guided_dialogue.core.exceptions import (
    FlowDefinitionError,
    FlowNotFoundError,
    StepNotFoundError,
)
from guided_dialogue.core.flow_store import (
    FlowDefinitionStore,
    find_cycle_steps,
    validate_flow,
)
from guided_dialogue.models.flow_models import FlowDefinition


def text_step(step_id, next_step_id=None, **overrides):
    step = {
        "step_id": step_id,
        "type": "data_collection",
        "next_step_id": next_step_id,
        "fields": [{
            "field_id": f"{step_id}_value",
            "name": "Value",
            "type": "text",
            "prompt_template": f"Value for {step_id}?"
        }]
    }
    step.update(overrides)
    return step


def flow_data(steps, flow_id="test_flow", **overrides):
    data = {
        "flow_id": flow_id,
        "welcome_message": "Hi",
        "completion_message": "Bye",
        "steps": steps,
    }
    data.update(overrides)
    return data


@pytest.mark.unit
class TestLoading:

    def test_bundled_flows_load(self):
        store = FlowDefinitionStore()

        assert store.load_directory(BUNDLED_FLOWS_PATH) == 2
        assert {f.flow_id for f in store.list_flows()} == {"loan_application", "simple_onboarding"}

    def test_loan_application_shape(self):
        store = FlowDefinitionStore()
        store.load_directory(BUNDLED_FLOWS_PATH)
        flow = store.get_flow("loan_application")

        assert flow.entry_step == "personal_details"
        assert [s.step_id for s in flow.steps] == ["personal_details", "other_details", "completion"]
        assert store.get_step(flow, "other_details").get_field("permanent_address").required is False
        assert not store.has_cycle("loan_application")

    def test_load_file(self, tmp_path, contact_flow_data):
        path = tmp_path / "contact.json"
        path.write_text(json.dumps(contact_flow_data), encoding="utf-8")

        flow = FlowDefinitionStore().load_file(path)

        assert flow.flow_id == "contact"

    def test_entry_step_defaults_to_first_declared(self):
        flow = FlowDefinitionStore().load_flow(flow_data([text_step("b"), text_step("a", "b")]))
        assert flow.entry_step == "b"

    def test_list_flows_active_only(self):
        store = FlowDefinitionStore()
        store.load_flow(flow_data([text_step("a")], flow_id="on"))
        store.load_flow(flow_data([text_step("a")], flow_id="off", is_active=False))

        assert [f.flow_id for f in store.list_flows()] == ["on"]
        assert {f.flow_id for f in store.list_flows(active_only=False)} == {"on", "off"}

    def test_flow_definitions_are_frozen(self, contact_flow):
        with pytest.raises(ValidationError):
            contact_flow.flow_id = "other"

    def test_default_confirmation_template(self):
        flow = FlowDefinitionStore().load_flow(flow_data([text_step("a")]))
        assert flow.steps[0].fields[0].confirmation_template == "Value: {value}"


@pytest.mark.unit
class TestLookup:

    def test_unknown_flow(self, flow_store):
        with pytest.raises(FlowNotFoundError) as exc_info:
            flow_store.get_flow("missing")
        assert exc_info.value.flow_id == "missing"

    def test_unknown_step(self, flow_store):
        flow = flow_store.get_flow("contact")
        with pytest.raises(StepNotFoundError) as exc_info:
            flow_store.get_step(flow, "ghost")
        assert exc_info.value.details == {"step_id": "ghost", "flow_id": "contact"}


@pytest.mark.unit
class TestValidationErrors:

    def assert_rejected(self, data, fragment):
        with pytest.raises(FlowDefinitionError) as exc_info:
            FlowDefinitionStore().load_flow(data)
        problems = exc_info.value.problems
        assert any(fragment in p for p in problems), problems
        return problems

    def test_dangling_next_step(self):
        self.assert_rejected(flow_data([text_step("a", "nowhere")]), "next_step_id 'nowhere' does not exist")

    def test_empty_prompt(self):
        step = text_step("a")
        step["fields"][0]["prompt_template"] = "  "
        self.assert_rejected(flow_data([step]), "prompt template is empty")

    def test_select_without_options(self):
        step = text_step("a")
        step["fields"][0]["type"] = "select"
        self.assert_rejected(flow_data([step]), "select field declares no options")

    def test_value_placeholder_must_occur_once(self):
        step = text_step("a")
        step["fields"][0]["confirmation_template"] = "{value} / {value}"
        self.assert_rejected(flow_data([step]), "{value} exactly once (found 2)")

    def test_checkpoint_needs_confirmation_placeholder(self):
        step = text_step("a", is_checkpoint=True, confirmation_message_template="All good?")
        self.assert_rejected(flow_data([step]), "{confirmation_data} exactly once (found 0)")

    def test_duplicate_ids(self):
        step = text_step("a")
        step["fields"].append(dict(step["fields"][0]))
        problems = self.assert_rejected(flow_data([step, text_step("a")]), "Duplicate step ids")
        assert any("duplicate field ids" in p for p in problems)

    def test_completion_step_with_fields(self):
        step = text_step("done")
        step["type"] = "completion"
        self.assert_rejected(flow_data([step]), "completion steps cannot declare fields")

    def test_invalid_pattern(self):
        step = text_step("a")
        step["fields"][0]["validation"] = {"pattern": "([a-z"}
        self.assert_rejected(flow_data([step]), "invalid pattern")

    def test_missing_entry_step(self):
        self.assert_rejected(flow_data([text_step("a")], entry_step_id="zzz"), "Entry step 'zzz' does not exist")

    def test_no_steps(self):
        self.assert_rejected(flow_data([]), "Flow declares no steps")

    def test_malformed_definition(self):
        with pytest.raises(FlowDefinitionError) as exc_info:
            FlowDefinitionStore().load_flow({"flow_id": "broken", "steps": []})

        assert exc_info.value.flow_id == "broken"
        assert any("welcome_message" in p for p in exc_info.value.problems)

    def test_all_problems_reported_together(self):
        first = text_step("a", "nowhere")
        second = text_step("b")
        second["fields"][0]["prompt_template"] = ""

        with pytest.raises(FlowDefinitionError) as exc_info:
            FlowDefinitionStore().load_flow(flow_data([first, second]))

        assert len(exc_info.value.problems) == 2


@pytest.mark.unit
class TestCyclesAndReachability:

    @pytest.fixture
    def cyclic_data(self):
        return flow_data([text_step("a", "b"), text_step("b", "a")], flow_id="loop")

    def test_cycle_is_accepted_and_flagged(self, cyclic_data, caplog):
        store = FlowDefinitionStore()

        with caplog.at_level(logging.WARNING):
            store.load_flow(cyclic_data)

        assert store.has_cycle("loop")
        assert "cycle" in caplog.text

    def test_cycle_rejected_when_configured(self, cyclic_data):
        with pytest.raises(FlowDefinitionError) as exc_info:
            FlowDefinitionStore(reject_cycles=True).load_flow(cyclic_data)
        assert any("cycle" in p for p in exc_info.value.problems)

    def test_find_cycle_steps(self):
        flow = FlowDefinition.model_validate(flow_data([
            text_step("start", "a"), text_step("a", "b"), text_step("b", "a")
        ]))
        assert find_cycle_steps(flow) == {"a", "b"}

    def test_self_loop(self):
        flow = FlowDefinition.model_validate(flow_data([text_step("a", "a")]))
        assert find_cycle_steps(flow) == {"a"}

    def test_linear_flow_has_no_cycle(self, contact_flow):
        assert find_cycle_steps(contact_flow) == set()
        assert not validate_flow(contact_flow).has_cycle

    def test_unreachable_step_warning(self):
        flow = FlowDefinition.model_validate(flow_data([text_step("a"), text_step("orphan")]))

        report = validate_flow(flow)

        assert report.valid
        assert report.warnings == ["Unreachable steps: ['orphan']"]
