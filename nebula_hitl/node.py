"""HITL request step: single entry point for fresh and resumed invocations."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .builder import RequestBuilder
from .config import HitlConfig, load_config
from .contracts import NebulaCredentials, StepParameters
from .dispatcher import OutboundDispatcher
from .errors import ConfigurationError
from .host import ExecutionContext
from .store import CorrelationStore, get_store
from .suspend import SuspendController

logger = logging.getLogger(__name__)


def is_resumption(items: List[Dict[str, Any]]) -> bool:
    """Return ``True`` when the first item is an inbound response envelope."""
    if not items:
        return False
    first = items[0]
    return bool(first.get("correlationToken")) and "response" in first


class HitlRequestNode:
    """Publishes a HITL request and parks the execution until it is answered.

    The host enters :meth:`execute` twice: once to dispatch and suspend, and
    again after the wait with the response envelope as input, which is passed
    through unchanged.
    """

    def __init__(
        self,
        store: Optional[CorrelationStore] = None,
        dispatcher: Optional[OutboundDispatcher] = None,
        config: Optional[HitlConfig] = None,
        builder: Optional[RequestBuilder] = None,
    ) -> None:
        config = config or load_config()
        self._store = store or get_store()
        self._builder = builder or RequestBuilder(
            waiting_path_prefix=config.waiting_path_prefix,
            webhook_path=config.webhook_path,
        )
        self._controller = SuspendController(
            self._store,
            dispatcher or OutboundDispatcher(timeout=config.dispatch_timeout_seconds),
            indefinite_wait=timedelta(days=config.indefinite_wait_days),
        )

    async def execute(self, context: ExecutionContext) -> List[Dict[str, Any]]:
        items = context.get_input_items()

        if is_resumption(items):
            token = items[0]["correlationToken"]
            await self._store.discard(token)
            logger.info(
                f"Resumed execution {context.get_execution_id()} with response for {token}"
            )
            return items

        try:
            params = _load_parameters(context.get_node_parameters())
            credentials = _load_credentials(await context.get_credentials())
            public_base_url = context.get_instance_base_url()
            if not public_base_url:
                raise ConfigurationError("Host did not provide a public base URL")

            payload = self._builder.build(
                params,
                credentials,
                items[0] if items else None,
                context.get_workflow(),
                context.get_execution_id(),
                public_base_url,
            )
            await self._controller.suspend(context, payload, credentials)
        except Exception as e:
            if context.continue_on_fail():
                logger.warning(
                    f"HITL step failed for execution {context.get_execution_id()}, "
                    f"continuing: {e}"
                )
                return [{"error": str(e)}]
            raise

        return []


def _load_parameters(raw: Dict[str, Any]) -> StepParameters:
    try:
        return StepParameters.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid HITL step parameters: {e}") from e


def _load_credentials(raw: Dict[str, Any]) -> NebulaCredentials:
    try:
        return NebulaCredentials.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid decision service credentials: {e}") from e
