"""Assembles the outbound HITL request from step configuration."""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

from .contracts import (
    NebulaCredentials,
    OutboundPayload,
    ResponseShape,
    StepParameters,
    WorkflowIdentity,
)
from .utils.clock import now_iso

logger = logging.getLogger(__name__)


def strip_trailing_slash(url: str) -> str:
    """Remove one trailing ``/`` from ``url``."""
    return url[:-1] if url.endswith("/") else url


def parse_json_object(value: Any, field_name: str = "value") -> Dict[str, Any]:
    """Parse optional JSON configuration into a dict.

    Malformed JSON or a non-object document yields ``{}`` so a typo in an
    optional field never fails the step.
    """
    if value is None or value == "":
        return {}
    if isinstance(value, dict):
        return dict(value)
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError) as e:
        logger.warning(f"Ignoring malformed JSON in {field_name}: {e}")
        return {}
    if not isinstance(parsed, dict):
        logger.warning(
            f"Ignoring {field_name}: expected a JSON object, got {type(parsed).__name__}"
        )
        return {}
    return parsed


def normalize_tags(raw: Optional[str]) -> List[str]:
    """Split comma-separated tags, trim them and drop empty fragments."""
    if not raw:
        return []
    return [tag.strip() for tag in raw.split(",") if tag.strip()]


def build_callback_url(
    public_base_url: str,
    waiting_path_prefix: str,
    execution_handle: str,
    webhook_path: str,
) -> str:
    """URL at which the decision service posts the human's answer."""
    return (
        f"{strip_trailing_slash(public_base_url)}/{waiting_path_prefix}/"
        f"{execution_handle}/{webhook_path}"
    )


class RequestBuilder:
    """Builds the :class:`OutboundPayload` for one step invocation."""

    def __init__(
        self,
        waiting_path_prefix: str = "webhook-waiting",
        webhook_path: str = "nebula-hitl-response",
        token_factory: Callable[[], str] | None = None,
    ) -> None:
        self.waiting_path_prefix = waiting_path_prefix
        self.webhook_path = webhook_path
        self._token_factory = token_factory or (lambda: str(uuid.uuid4()))

    def build(
        self,
        params: StepParameters,
        credentials: NebulaCredentials,
        input_item: Dict[str, Any] | None,
        workflow: WorkflowIdentity,
        execution_handle: str,
        public_base_url: str,
    ) -> OutboundPayload:
        """Assemble the payload; every optional input is coerced to a safe default."""
        form_schema = None
        if params.response_shape == ResponseShape.STRUCTURED_FORM:
            form_schema = parse_json_object(params.form_schema, "formSchema")

        options = params.options
        payload = OutboundPayload(
            correlation_token=self._token_factory(),
            title=params.title,
            message=params.message,
            response_shape=params.response_shape,
            form_schema=form_schema,
            callback_url=build_callback_url(
                public_base_url,
                self.waiting_path_prefix,
                execution_handle,
                self.webhook_path,
            ),
            priority=options.priority,
            timeout_minutes=options.timeout_minutes,
            assignee=options.assignee or None,
            tags=normalize_tags(options.tags),
            metadata=parse_json_object(credentials.metadata, "metadata"),
            additional_data=parse_json_object(params.additional_data, "additionalData"),
            input_data=dict(input_item or {}),
            workflow_id=workflow.id,
            workflow_name=workflow.name,
            execution_id=execution_handle,
            created_at=now_iso(),
        )
        logger.debug(
            f"Built HITL request {payload.correlation_token} for execution {execution_handle}"
        )
        return payload
