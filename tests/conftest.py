# tests/conftest.py
"""
Shared fixtures for dialogue engine tests.

Provides small flow definitions, a loaded flow store, engines and
repositories for unit and integration tests.
"""

import copy

import pytest
from unittest.mock import AsyncMock, MagicMock

from guided_dialogue.core.config import BUNDLED_FLOWS_PATH
from guided_dialogue.core.dialogue_engine import DialogueEngine
from guided_dialogue.core.flow_store import FlowDefinitionStore
from guided_dialogue.models.flow_models import FlowDefinition, FlowField
from guided_dialogue.services.session_repository import InMemorySessionRepository


CONTACT_FLOW = {
    "flow_id": "contact",
    "flow_name": "Contact Details",
    "welcome_message": "Welcome! Let's collect your contact details.",
    "completion_message": "All done, thank you!",
    "steps": [
        {
            "step_id": "contact_details",
            "step_name": "Contact Details",
            "type": "data_collection",
            "is_checkpoint": True,
            "confirmation_message_template": "Here's what I have:\n{confirmation_data}\nIs that correct?",
            "next_step_id": "income",
            "fields": [
                {
                    "field_id": "email_address",
                    "name": "Email Address",
                    "type": "email",
                    "prompt_template": "What's your email address?",
                    "confirmation_template": "Email: {value}"
                },
                {
                    "field_id": "nickname",
                    "name": "Nickname",
                    "type": "text",
                    "required": False,
                    "prompt_template": "Do you have a nickname?",
                    "confirmation_template": "Nickname: {value}"
                },
                {
                    "field_id": "mobile_number",
                    "name": "Mobile Number",
                    "type": "phone",
                    "prompt_template": "Which mobile number can we reach you on?",
                    "confirmation_template": "Mobile: {value}"
                }
            ]
        },
        {
            "step_id": "income",
            "step_name": "Income",
            "type": "data_collection",
            "is_checkpoint": True,
            "confirmation_message_template": "Income: {confirmation_data}. Correct?",
            "next_step_id": "done",
            "fields": [
                {
                    "field_id": "monthly_income",
                    "name": "Monthly Income",
                    "type": "number",
                    "prompt_template": "What's your monthly income?",
                    "confirmation_template": "{value} per month"
                }
            ]
        },
        {
            "step_id": "done",
            "step_name": "Done",
            "type": "completion",
            "confirmation_message_template": "Your details have been submitted."
        }
    ]
}


@pytest.fixture
def contact_flow_data():
    """Raw definition of a two-checkpoint flow, safe to modify"""
    return copy.deepcopy(CONTACT_FLOW)


@pytest.fixture
def contact_flow(contact_flow_data):
    return FlowDefinition.model_validate(contact_flow_data)


@pytest.fixture
def flow_store(contact_flow_data):
    store = FlowDefinitionStore()
    store.load_flow(contact_flow_data)
    store.load_directory(BUNDLED_FLOWS_PATH)
    return store


@pytest.fixture
def engine():
    return DialogueEngine()


@pytest.fixture
def repository():
    return InMemorySessionRepository()


@pytest.fixture
def make_field():
    """Factory for single field definitions"""
    def _make(field_type="text", field_id="value", **kwargs):
        data = {
            "field_id": field_id,
            "name": kwargs.pop("name", field_id.replace("_", " ").title()),
            "type": field_type,
            "prompt_template": kwargs.pop("prompt_template", f"Please enter {field_id}"),
        }
        data.update(kwargs)
        return FlowField.model_validate(data)
    return _make


@pytest.fixture
def mock_redis_client():
    """Mock redis.asyncio client with a transactional pipeline"""
    client = AsyncMock()
    client.ping = AsyncMock(return_value=True)
    client.get = AsyncMock(return_value=None)
    client.delete = AsyncMock(return_value=1)
    client.keys = AsyncMock(return_value=[])
    client.info = AsyncMock(return_value={
        "redis_version": "7.0.0",
        "connected_clients": 5
    })
    client.aclose = AsyncMock()

    pipe = MagicMock()
    pipe.watch = AsyncMock()
    pipe.unwatch = AsyncMock()
    pipe.get = AsyncMock(return_value=None)
    pipe.multi = MagicMock()
    pipe.set = MagicMock()
    pipe.setex = MagicMock()
    pipe.execute = AsyncMock(return_value=[True])

    pipeline_cm = MagicMock()
    pipeline_cm.__aenter__ = AsyncMock(return_value=pipe)
    pipeline_cm.__aexit__ = AsyncMock(return_value=False)
    client.pipeline = MagicMock(return_value=pipeline_cm)
    client.pipe = pipe

    return client
