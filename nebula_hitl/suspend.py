"""Arms the deadline, registers the correlation and parks the execution."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from .contracts import (
    WAITING_STATIC_DATA_KEY,
    NebulaCredentials,
    OutboundPayload,
    PendingRequest,
    RequestSnapshot,
)
from .dispatcher import OutboundDispatcher
from .errors import DuplicateCorrelation
from .store import CorrelationStore, RegisterStatus
from .utils.clock import parse_iso, to_iso

if TYPE_CHECKING:
    from .host import ExecutionContext

logger = logging.getLogger(__name__)

MAX_WAIT_HORIZON = timedelta(days=365)
DEFAULT_INDEFINITE_WAIT = MAX_WAIT_HORIZON


def compute_wait_until(
    timeout_minutes: int,
    now: datetime,
    indefinite_wait: timedelta = DEFAULT_INDEFINITE_WAIT,
) -> datetime:
    """Deadline for a request; ``0`` minutes means the indefinite ceiling.

    The result never lies further than :data:`MAX_WAIT_HORIZON` from ``now``.
    """
    horizon = min(indefinite_wait, MAX_WAIT_HORIZON)
    horizon_minutes = int(horizon.total_seconds() // 60)
    if 0 < timeout_minutes < horizon_minutes:
        return now + timedelta(minutes=timeout_minutes)
    return now + horizon


class SuspendController:
    """Turns a built payload into a pending request and a waiting execution.

    The order is fixed: register, snapshot, dispatch, wait. A decision
    service answering before the POST returns finds the correlation already
    registered; a failed dispatch rolls it back.
    """

    def __init__(
        self,
        store: CorrelationStore,
        dispatcher: OutboundDispatcher,
        indefinite_wait: timedelta = DEFAULT_INDEFINITE_WAIT,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._indefinite_wait = indefinite_wait

    async def suspend(
        self,
        context: "ExecutionContext",
        payload: OutboundPayload,
        credentials: NebulaCredentials,
    ) -> PendingRequest:
        created_at = parse_iso(payload.created_at)
        wait_until = compute_wait_until(
            payload.timeout_minutes, created_at, self._indefinite_wait
        )
        token = payload.correlation_token
        execution_handle = context.get_execution_id()

        request = PendingRequest(
            correlation_token=token,
            execution_handle=execution_handle,
            callback_url=payload.callback_url,
            response_shape=payload.response_shape,
            form_schema=payload.form_schema,
            created_at=created_at,
            wait_until=wait_until,
        )
        if await self._store.register(request) == RegisterStatus.DUPLICATE:
            raise DuplicateCorrelation(f"Correlation token {token} is already registered")
        logger.info(f"Registered HITL request {token} for execution {execution_handle}")

        snapshot = RequestSnapshot(
            correlation_token=token,
            title=payload.title,
            callback_url=payload.callback_url,
            created_at=payload.created_at,
            wait_until=to_iso(wait_until),
        )
        static_data = context.get_node_static_data()
        static_data[WAITING_STATIC_DATA_KEY] = snapshot.to_wire()

        try:
            await self._dispatcher.create_request(payload, credentials)
        except Exception:
            await self._store.discard(token)
            static_data.pop(WAITING_STATIC_DATA_KEY, None)
            logger.warning(f"Rolled back HITL request {token} after failed dispatch")
            raise

        host_deadline = wait_until
        if payload.timeout_minutes == 0 and context.supports_indefinite_wait:
            host_deadline = None
        await context.put_execution_to_wait(host_deadline)
        return request
