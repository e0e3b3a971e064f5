# guided_dialogue/models/flow_models.py

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class StepType(str, Enum):
    DATA_COLLECTION = "data_collection"
    COMPLETION = "completion"


class FieldType(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    EMAIL = "email"
    PHONE = "phone"
    DATE = "date"
    NUMBER = "number"
    SELECT = "select"


VALUE_PLACEHOLDER = "{value}"
CONFIRMATION_DATA_PLACEHOLDER = "{confirmation_data}"


class FieldValidation(BaseModel):
    model_config = ConfigDict(frozen=True)

    options: List[str] = Field(default_factory=list)  # select fields only
    pattern: Optional[str] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None


class FlowField(BaseModel):
    """One typed datum collected from the user during a step."""
    model_config = ConfigDict(frozen=True)

    field_id: str
    name: str
    type: FieldType
    required: bool = True
    validation: FieldValidation = Field(default_factory=FieldValidation)
    prompt_template: str
    confirmation_template: str = ""

    @model_validator(mode="before")
    @classmethod
    def _default_confirmation_template(cls, data):
        if isinstance(data, dict) and not data.get("confirmation_template"):
            data = dict(data)
            data["confirmation_template"] = f"{data.get('name', '')}: {VALUE_PLACEHOLDER}"
        return data


class Step(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_id: str
    step_name: str = ""
    type: StepType
    fields: List[FlowField] = Field(default_factory=list)
    is_checkpoint: bool = False
    confirmation_message_template: str = ""
    next_step_id: Optional[str] = None

    def get_field(self, field_id: str) -> Optional[FlowField]:
        for field in self.fields:
            if field.field_id == field_id:
                return field
        return None

    @property
    def required_fields(self) -> List[FlowField]:
        return [f for f in self.fields if f.required]

    @property
    def is_terminal(self) -> bool:
        return not self.next_step_id


class FlowDefinition(BaseModel):
    """
    Declarative flow graph. Steps are keyed by step_id; traversal follows
    next_step_id only, never the declaration order.
    """
    model_config = ConfigDict(frozen=True)

    flow_id: str
    flow_name: str = ""
    flow_description: str = ""
    version: str = "1.0"
    welcome_message: str
    completion_message: str
    steps: List[Step] = Field(default_factory=list)
    entry_step_id: Optional[str] = None
    is_active: bool = True

    @property
    def entry_step(self) -> Optional[str]:
        if self.entry_step_id:
            return self.entry_step_id
        return self.steps[0].step_id if self.steps else None

    @property
    def step_map(self) -> Dict[str, Step]:
        return {step.step_id: step for step in self.steps}

    def get_step(self, step_id: Optional[str]) -> Optional[Step]:
        if not step_id:
            return None
        for step in self.steps:
            if step.step_id == step_id:
                return step
        return None
