"""Core data contracts for the HITL coordinator."""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .utils.clock import now_iso

WAITING_STATIC_DATA_KEY = "currentRequest"


class ResponseShape(str, Enum):
    """Kind of answer expected from the human."""

    ACK = "ack"
    BINARY = "binary"
    FREE_TEXT = "free-text"
    STRUCTURED_FORM = "structured-form"

    @classmethod
    def parse(cls, value: Any) -> "ResponseShape":
        """Accept canonical values as well as the legacy decision-service names."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        return cls(_LEGACY_SHAPES.get(normalized, normalized))


_LEGACY_SHAPES = {
    "ok": "ack",
    "yesno": "binary",
    "text": "free-text",
    "form": "structured-form",
}


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class RequestStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"


class Resolution(str, Enum):
    WEBHOOK = "webhook"
    DEADLINE = "deadline"


class WireModel(BaseModel):
    """Base model exchanging camelCase JSON with the outside world."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """Dump with wire aliases, omitting optional fields that are not set."""
        data = self.model_dump(by_alias=True, mode="json")
        return {key: value for key, value in data.items() if value is not None}

    def to_json(self) -> str:
        return json.dumps(self.to_wire())


class StepOptions(WireModel):
    """Optional collection of the step configuration."""

    priority: Priority = Priority.NORMAL
    timeout_minutes: int = Field(default=0, ge=0)
    assignee: Optional[str] = None
    tags: str = ""

    @field_validator("priority", mode="before")
    @classmethod
    def _default_priority(cls, value: Any) -> Any:
        return value or Priority.NORMAL

    @field_validator("timeout_minutes", mode="before")
    @classmethod
    def _default_timeout(cls, value: Any) -> Any:
        return value or 0


class StepParameters(WireModel):
    """Node parameters of one HITL step invocation."""

    title: str = Field(min_length=1)
    message: str = Field(min_length=1)
    response_shape: ResponseShape
    form_schema: Union[str, Dict[str, Any], None] = None
    additional_data: Union[str, Dict[str, Any], None] = "{}"
    options: StepOptions = Field(default_factory=StepOptions)

    @field_validator("response_shape", mode="before")
    @classmethod
    def _parse_shape(cls, value: Any) -> ResponseShape:
        return ResponseShape.parse(value)


class NebulaCredentials(WireModel):
    """Credentials for the decision service."""

    base_url: str = Field(min_length=1)
    username: str
    password: str
    metadata: Union[str, Dict[str, Any], None] = "{}"


class WorkflowIdentity(WireModel):
    id: Optional[str] = None
    name: Optional[str] = None


class OutboundPayload(WireModel):
    """Body of the create-request call sent to the decision service."""

    correlation_token: str
    title: str
    message: str
    response_shape: ResponseShape
    form_schema: Optional[Dict[str, Any]] = None
    callback_url: str
    priority: Priority = Priority.NORMAL
    timeout_minutes: int = Field(default=0, ge=0)
    assignee: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    additional_data: Dict[str, Any] = Field(default_factory=dict)
    input_data: Dict[str, Any] = Field(default_factory=dict)
    workflow_id: Optional[str] = None
    workflow_name: Optional[str] = None
    execution_id: str
    created_at: str


class InboundEnvelope(WireModel):
    """Output item produced when a human response arrives."""

    correlation_token: str
    response: Any = None
    response_value: Any = None
    responded_by: Any = None
    responded_at: Any = None
    comment: Any = None
    data: Any = Field(default_factory=dict)

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "InboundEnvelope":
        """Build the envelope from a validated webhook body.

        ``respondedAt`` defaults to the ingress wall-clock and ``data`` to an
        empty object. ``response`` is always present so a resumed step can
        recognise the envelope; ``responseValue``, ``respondedBy`` and
        ``comment`` are only carried when the body has them.
        """
        fields: Dict[str, Any] = {
            "correlation_token": body["correlationToken"],
            "response": body.get("response"),
            "responded_at": body.get("respondedAt") or now_iso(),
            "data": body.get("data") or {},
        }
        for name in ("response_value", "responded_by", "comment"):
            alias = to_camel(name)
            if alias in body:
                fields[name] = body[alias]
        return cls(**fields)

    def to_item(self) -> Dict[str, Any]:
        """Dump the envelope for the step output, leaving out absent fields."""
        return self.model_dump(by_alias=True, exclude_unset=True)


class PendingRequest(WireModel):
    """Correlation between a token and a suspended execution."""

    correlation_token: str
    execution_handle: str
    callback_url: Optional[str] = None
    response_shape: Optional[ResponseShape] = None
    form_schema: Optional[Dict[str, Any]] = None
    created_at: datetime
    wait_until: datetime
    status: RequestStatus = RequestStatus.PENDING
    resolution: Optional[Resolution] = None
    resolved_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _check_deadline(self) -> "PendingRequest":
        if self.wait_until <= self.created_at:
            raise ValueError("waitUntil must be later than createdAt")
        return self

    @property
    def is_resolved(self) -> bool:
        return self.status == RequestStatus.RESOLVED


class RequestSnapshot(WireModel):
    """Compact record kept in per-node static data for operators and recovery."""

    correlation_token: str
    title: str
    callback_url: str
    created_at: str
    wait_until: str
