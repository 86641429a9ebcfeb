"""Request builder tests."""

import uuid

import pytest

from nebula_hitl.builder import (
    RequestBuilder,
    build_callback_url,
    normalize_tags,
    parse_json_object,
)
from nebula_hitl.contracts import (
    NebulaCredentials,
    Priority,
    ResponseShape,
    StepParameters,
    WorkflowIdentity,
)


def _build(params: dict, credentials: dict, input_item=None, token="tok-1"):
    builder = RequestBuilder(token_factory=lambda: token)
    return builder.build(
        StepParameters.model_validate(params),
        NebulaCredentials.model_validate(credentials),
        input_item,
        WorkflowIdentity(id="wf-1", name="Invoice approval"),
        "E",
        "https://host/",
    )


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("", []),
        (None, []),
        ("a,b", ["a", "b"]),
        (" urgent , finance ,", ["urgent", "finance"]),
        (",, ,x,,y ", ["x", "y"]),
        ("b,a,b", ["b", "a", "b"]),
    ],
)
def test_normalize_tags(raw, expected):
    assert normalize_tags(raw) == expected


def test_parse_json_object_recovers_from_bad_input():
    assert parse_json_object("{not json") == {}
    assert parse_json_object("[1, 2]") == {}
    assert parse_json_object("") == {}
    assert parse_json_object(None) == {}
    assert parse_json_object('{"a": 1}') == {"a": 1}
    assert parse_json_object({"b": 2}) == {"b": 2}


def test_callback_url_strips_trailing_slash():
    url = build_callback_url("https://host/", "webhook-waiting", "E", "nebula-hitl-response")
    assert url == "https://host/webhook-waiting/E/nebula-hitl-response"


def test_build_ack_payload(step_parameters, credentials):
    payload = _build(step_parameters, credentials, {"invoice": 42}, token="T")
    wire = payload.to_wire()

    assert wire["correlationToken"] == "T"
    assert wire["callbackUrl"] == "https://host/webhook-waiting/E/nebula-hitl-response"
    assert wire["responseShape"] == "ack"
    assert wire["priority"] == "normal"
    assert wire["timeoutMinutes"] == 5
    assert wire["tags"] == []
    assert wire["metadata"] == {"tenantId": "abc123"}
    assert wire["additionalData"] == {}
    assert wire["inputData"] == {"invoice": 42}
    assert wire["workflowId"] == "wf-1"
    assert wire["workflowName"] == "Invoice approval"
    assert wire["executionId"] == "E"
    assert wire["createdAt"].endswith("Z")
    assert "formSchema" not in wire
    assert "assignee" not in wire


def test_build_structured_form_passes_schema_verbatim(step_parameters, credentials):
    schema = {"elements": [{"type": "radiogroup", "name": "d", "choices": ["A", "B"]}]}
    step_parameters.update(responseShape="structured-form", formSchema=schema)

    payload = _build(step_parameters, credentials)

    assert payload.response_shape == ResponseShape.STRUCTURED_FORM
    assert payload.to_wire()["formSchema"] == schema


def test_build_ignores_form_schema_for_other_shapes(step_parameters, credentials):
    step_parameters.update(responseShape="binary", formSchema='{"elements": []}')
    assert "formSchema" not in _build(step_parameters, credentials).to_wire()


def test_malformed_optional_json_becomes_empty(step_parameters, credentials):
    credentials["metadata"] = "{not json"
    step_parameters.update(
        responseShape="structured-form",
        formSchema="{broken",
        additionalData="nope",
    )

    wire = _build(step_parameters, credentials).to_wire()

    assert wire["metadata"] == {}
    assert wire["additionalData"] == {}
    assert wire["formSchema"] == {}


def test_options_are_forwarded(step_parameters, credentials):
    step_parameters["options"] = {
        "priority": "urgent",
        "timeoutMinutes": 0,
        "assignee": "ops@example.com",
        "tags": "finance, q3 ,",
    }

    payload = _build(step_parameters, credentials)

    assert payload.priority == Priority.URGENT
    assert payload.timeout_minutes == 0
    assert payload.assignee == "ops@example.com"
    assert payload.tags == ["finance", "q3"]


def test_default_token_is_uuid4(step_parameters, credentials):
    builder = RequestBuilder()
    payload = builder.build(
        StepParameters.model_validate(step_parameters),
        NebulaCredentials.model_validate(credentials),
        None,
        WorkflowIdentity(),
        "E",
        "https://host",
    )
    assert uuid.UUID(payload.correlation_token).version == 4
    assert payload.correlation_token in payload.to_json()
