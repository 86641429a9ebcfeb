"""Outbound calls to the decision service."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from .builder import strip_trailing_slash
from .contracts import NebulaCredentials, OutboundPayload
from .errors import DispatchFailure

logger = logging.getLogger(__name__)


class OutboundDispatcher:
    """Performs authenticated requests against the decision service.

    There is no retry: a failure surfaces immediately so the step fails
    before its execution is suspended.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport

    def _client(self, credentials: NebulaCredentials) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=strip_trailing_slash(credentials.base_url),
            auth=httpx.BasicAuth(credentials.username, credentials.password),
            timeout=self._timeout,
            transport=self._transport,
        )

    async def create_request(
        self, payload: OutboundPayload, credentials: NebulaCredentials
    ) -> None:
        """POST ``payload`` to ``{baseUrl}/requests``.

        Raises:
            DispatchFailure: On any transport error or non-2xx response.
        """
        body = payload.to_json()
        try:
            async with self._client(credentials) as client:
                response = await client.post(
                    "/requests",
                    content=body,
                    headers={"Content-Type": "application/json"},
                )
        except httpx.HTTPError as e:
            logger.error(
                f"Transport error creating HITL request {payload.correlation_token}: {e}"
            )
            raise DispatchFailure(str(e) or type(e).__name__) from e

        if not response.is_success:
            logger.error(
                f"Decision service rejected HITL request {payload.correlation_token} "
                f"with HTTP {response.status_code}"
            )
            raise DispatchFailure(
                response.reason_phrase or "unexpected response",
                status_code=response.status_code,
            )
        logger.info(f"Dispatched HITL request {payload.correlation_token}")

    async def check_health(self, credentials: NebulaCredentials) -> bool:
        """Call ``GET {baseUrl}/health`` to verify the credentials.

        Raises:
            DispatchFailure: When the service is unreachable or not healthy.
        """
        try:
            async with self._client(credentials) as client:
                response = await client.get("/health")
        except httpx.HTTPError as e:
            raise DispatchFailure(str(e) or type(e).__name__) from e
        if not response.is_success:
            raise DispatchFailure(
                response.reason_phrase or "unexpected response",
                status_code=response.status_code,
            )
        return True
