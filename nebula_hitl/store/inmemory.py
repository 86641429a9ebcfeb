"""In-memory implementation of the correlation store."""

from __future__ import annotations

import threading
from typing import Dict, Optional

from ..contracts import PendingRequest, RequestStatus, Resolution
from ..utils.clock import utc_now
from .base import ClaimResult, ClaimStatus, CorrelationStore, RegisterStatus


class InMemoryCorrelationStore(CorrelationStore):
    """Keep pending requests in a process-wide dictionary.

    Useful for tests or single-process hosts. Entries are lost on restart;
    the webhook ingress rebuilds them from the host's snapshot when needed.
    The lock only guards dictionary updates and is never held across an
    ``await``.
    """

    def __init__(self) -> None:
        self._requests: Dict[str, PendingRequest] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    async def register(self, request: PendingRequest) -> RegisterStatus:
        with self._lock:
            if request.correlation_token in self._requests:
                return RegisterStatus.DUPLICATE
            self._requests[request.correlation_token] = request.model_copy()
        return RegisterStatus.OK

    async def claim(
        self, token: str, execution_handle: Optional[str] = None
    ) -> ClaimResult:
        return self._resolve(token, Resolution.WEBHOOK, execution_handle)

    async def expire(self, token: str) -> ClaimResult:
        return self._resolve(token, Resolution.DEADLINE, None)

    def _resolve(
        self, token: str, resolution: Resolution, execution_handle: Optional[str]
    ) -> ClaimResult:
        with self._lock:
            request = self._requests.get(token)
            if request is None:
                return ClaimResult(status=ClaimStatus.NOT_FOUND)
            if execution_handle is not None and request.execution_handle != execution_handle:
                return ClaimResult(status=ClaimStatus.NOT_FOUND)
            if request.is_resolved:
                return ClaimResult(
                    status=ClaimStatus.ALREADY_RESOLVED, request=request.model_copy()
                )
            request.status = RequestStatus.RESOLVED
            request.resolution = resolution
            request.resolved_at = utc_now()
            return ClaimResult(status=ClaimStatus.CLAIMED, request=request.model_copy())

    async def discard(self, token: str) -> None:
        with self._lock:
            self._requests.pop(token, None)

    async def get(self, token: str) -> PendingRequest | None:
        with self._lock:
            request = self._requests.get(token)
            return request.model_copy() if request else None

    async def list_requests(
        self, status: RequestStatus | None = None
    ) -> list[PendingRequest]:
        with self._lock:
            return [
                request.model_copy()
                for request in self._requests.values()
                if status is None or request.status == status
            ]
