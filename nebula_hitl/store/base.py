"""Correlation store abstraction."""

from __future__ import annotations

from enum import Enum
from typing import Optional, Protocol

from pydantic import BaseModel

from ..contracts import PendingRequest, RequestStatus


class RegisterStatus(str, Enum):
    OK = "ok"
    DUPLICATE = "duplicate"


class ClaimStatus(str, Enum):
    CLAIMED = "claimed"
    NOT_FOUND = "not_found"
    ALREADY_RESOLVED = "already_resolved"


class ClaimResult(BaseModel):
    """Outcome of ``claim`` or ``expire``."""

    status: ClaimStatus
    request: Optional[PendingRequest] = None

    @property
    def won(self) -> bool:
        return self.status == ClaimStatus.CLAIMED


class CorrelationStore(Protocol):
    """Protocol for correlation token -> suspended execution mappings.

    ``register`` and ``claim``/``expire`` are compare-and-set operations: a
    token is inserted at most once and moves from pending to resolved at most
    once, whichever of the webhook or the deadline gets there first.
    """

    async def register(self, request: PendingRequest) -> RegisterStatus:
        """Insert ``request``; ``DUPLICATE`` if its token already exists."""

    async def claim(
        self, token: str, execution_handle: Optional[str] = None
    ) -> ClaimResult:
        """Atomically mark the request resolved by a webhook.

        When ``execution_handle`` is given and does not match the registered
        handle the result is ``NOT_FOUND`` and nothing is consumed.
        """

    async def expire(self, token: str) -> ClaimResult:
        """Atomically mark the request resolved by its deadline."""

    async def discard(self, token: str) -> None:
        """Remove the entry for ``token`` if present."""

    async def get(self, token: str) -> PendingRequest | None:
        """Return the entry for ``token`` without changing it."""

    async def list_requests(
        self, status: RequestStatus | None = None
    ) -> list[PendingRequest]:
        """Return all entries, optionally filtered by status."""
