"""Receives human responses and hands them to the waiting execution."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel

from .contracts import (
    WAITING_STATIC_DATA_KEY,
    InboundEnvelope,
    PendingRequest,
    RequestSnapshot,
)
from .errors import UnknownCorrelation, WebhookValidationError
from .host import WaitingExecutions
from .store import ClaimStatus, CorrelationStore
from .utils.clock import parse_iso

logger = logging.getLogger(__name__)

MISSING_TOKEN_ERROR = "Missing correlationToken in webhook payload"
GONE_ERROR = "Unknown or already resolved correlationToken"
NO_EXECUTION_ERROR = "No execution found for this webhook"
ACCEPTED_MESSAGE = "Response received, workflow will continue"


class WebhookResult(BaseModel):
    """HTTP answer for the decision service plus the delivered envelope."""

    status_code: int
    body: Dict[str, Any]
    envelope: Optional[InboundEnvelope] = None


def extract_token(body: Any) -> str:
    """Return the correlation token of a webhook body.

    Raises:
        WebhookValidationError: If the body is not an object or has no token.
    """
    if not isinstance(body, dict):
        raise WebhookValidationError(MISSING_TOKEN_ERROR)
    token = body.get("correlationToken")
    if not token or not isinstance(token, str):
        raise WebhookValidationError(MISSING_TOKEN_ERROR)
    return token


class WebhookIngress:
    """Validates inbound responses and resolves their pending request.

    The acknowledgement only covers receipt: a failure of the host to resume
    the execution is logged and does not change the ``200``.
    """

    def __init__(self, store: CorrelationStore, host: WaitingExecutions) -> None:
        self._store = store
        self._host = host

    async def handle(self, execution_handle: str, body: Any) -> WebhookResult:
        try:
            token = extract_token(body)
        except WebhookValidationError as e:
            logger.warning(f"Rejected webhook for execution {execution_handle}: {e}")
            return WebhookResult(status_code=400, body={"error": str(e)})

        try:
            request = await self._claim(token, execution_handle)
        except UnknownCorrelation as e:
            logger.warning(
                f"Rejected webhook for {token} on execution {execution_handle}: {e}"
            )
            return WebhookResult(status_code=e.status_code, body={"error": str(e)})

        envelope = InboundEnvelope.from_body(body)
        logger.info(
            f"Accepted {request.response_shape.value if request.response_shape else 'unknown'} "
            f"response for {token} on execution {execution_handle}"
        )
        await self._deliver(execution_handle, envelope)
        return WebhookResult(
            status_code=200,
            body={"success": True, "message": ACCEPTED_MESSAGE},
            envelope=envelope,
        )

    async def _claim(self, token: str, execution_handle: str) -> PendingRequest:
        result = await self._store.claim(token, execution_handle)
        if result.won:
            return result.request
        if result.status == ClaimStatus.ALREADY_RESOLVED:
            raise UnknownCorrelation(GONE_ERROR)
        return await self._recover(token, execution_handle)

    async def _recover(self, token: str, execution_handle: str) -> PendingRequest:
        """Rebuild a missing store entry from the host's snapshot, then claim it."""
        execution = await self._host.lookup_execution(execution_handle)
        if execution is None:
            raise UnknownCorrelation(NO_EXECUTION_ERROR, status_code=404)

        snapshot_data = execution.static_data.get(WAITING_STATIC_DATA_KEY)
        if (
            not execution.waiting
            or not snapshot_data
            or snapshot_data.get("correlationToken") != token
        ):
            raise UnknownCorrelation(GONE_ERROR)

        snapshot = RequestSnapshot.model_validate(snapshot_data)
        request = PendingRequest(
            correlation_token=token,
            execution_handle=execution_handle,
            callback_url=snapshot.callback_url,
            created_at=parse_iso(snapshot.created_at),
            wait_until=parse_iso(snapshot.wait_until),
        )
        # a concurrent recovery may have registered it already; claim decides
        await self._store.register(request)
        result = await self._store.claim(token, execution_handle)
        if not result.won:
            raise UnknownCorrelation(GONE_ERROR)
        logger.info(f"Recovered HITL request {token} from execution {execution_handle}")
        return result.request

    async def _deliver(self, execution_handle: str, envelope: InboundEnvelope) -> None:
        try:
            await self._host.resume_execution(execution_handle, [envelope.to_item()])
        except Exception as e:
            logger.error(
                f"Failed to resume execution {execution_handle} "
                f"for {envelope.correlation_token}: {e}"
            )
