"""Redis correlation store for multi-process deployments."""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, List, Optional

try:
    import redis.asyncio as redis
except ImportError:
    redis = None

from ..contracts import PendingRequest, RequestStatus, Resolution
from ..utils.clock import parse_iso, to_iso, utc_now
from .base import ClaimResult, ClaimStatus, CorrelationStore, RegisterStatus

# Each request is a hash. ``request`` holds the registered record as JSON and
# is never rewritten; the resolution lives in its own fields.

# KEYS[1] = request key
# ARGV[1] = record JSON, ARGV[2] = execution handle, ARGV[3] = ttl seconds
_REGISTER_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 1 then
  return 0
end
redis.call('HSET', KEYS[1], 'request', ARGV[1], 'executionHandle', ARGV[2], 'status', 'pending')
redis.call('EXPIRE', KEYS[1], ARGV[3])
return 1
"""

# KEYS[1] = request key
# ARGV[1] = resolution, ARGV[2] = resolved_at, ARGV[3] = expected handle ("" = any)
_RESOLVE_SCRIPT = """
local handle = redis.call('HGET', KEYS[1], 'executionHandle')
if not handle then
  return {'not_found', {}}
end
if ARGV[3] ~= '' and handle ~= ARGV[3] then
  return {'not_found', {}}
end
if redis.call('HGET', KEYS[1], 'status') == 'resolved' then
  return {'already_resolved', redis.call('HGETALL', KEYS[1])}
end
redis.call('HSET', KEYS[1], 'status', 'resolved', 'resolution', ARGV[1], 'resolvedAt', ARGV[2])
return {'claimed', redis.call('HGETALL', KEYS[1])}
"""

RESOLVED_GRACE = timedelta(days=1)


def _pairs_to_dict(values: List[str]) -> Dict[str, str]:
    return dict(zip(values[::2], values[1::2]))


def _from_hash(fields: Dict[str, str]) -> PendingRequest:
    request = PendingRequest.model_validate_json(fields["request"])
    if fields.get("status") == RequestStatus.RESOLVED.value:
        request.status = RequestStatus.RESOLVED
        request.resolution = Resolution(fields["resolution"])
        request.resolved_at = parse_iso(fields["resolvedAt"])
    return request


class RedisCorrelationStore(CorrelationStore):
    """Redis-backed store; each request lives under its own key.

    Keys expire one day after the request's deadline, so abandoned entries
    clean themselves up. Resolving a request only touches its status fields,
    which leaves the key's TTL in place.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        key_prefix: str = "nebula-hitl",
    ) -> None:
        if redis is None:
            raise ImportError("redis package is required for RedisCorrelationStore")

        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.key_prefix = key_prefix
        self._redis: Optional[Any] = None
        self._register_script: Optional[Any] = None
        self._resolve_script: Optional[Any] = None

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()
        self._register_script = self._redis.register_script(_REGISTER_SCRIPT)
        self._resolve_script = self._redis.register_script(_RESOLVE_SCRIPT)

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            self._register_script = None
            self._resolve_script = None

    async def _client(self) -> Any:
        if not self._redis:
            await self.connect()
        return self._redis

    def _key(self, token: str) -> str:
        return f"{self.key_prefix}:request:{token}"

    # ------------------------------------------------------------------
    async def register(self, request: PendingRequest) -> RegisterStatus:
        await self._client()
        ttl = request.wait_until - utc_now() + RESOLVED_GRACE
        record = request.model_copy(
            update={"status": RequestStatus.PENDING, "resolution": None, "resolved_at": None}
        )
        created = await self._register_script(
            keys=[self._key(request.correlation_token)],
            args=[
                record.model_dump_json(by_alias=True),
                request.execution_handle,
                max(int(ttl.total_seconds()), 1),
            ],
        )
        return RegisterStatus.OK if created else RegisterStatus.DUPLICATE

    async def claim(
        self, token: str, execution_handle: Optional[str] = None
    ) -> ClaimResult:
        return await self._resolve(token, Resolution.WEBHOOK, execution_handle)

    async def expire(self, token: str) -> ClaimResult:
        return await self._resolve(token, Resolution.DEADLINE, None)

    async def _resolve(
        self, token: str, resolution: Resolution, execution_handle: Optional[str]
    ) -> ClaimResult:
        await self._client()
        status, values = await self._resolve_script(
            keys=[self._key(token)],
            args=[resolution.value, to_iso(utc_now()), execution_handle or ""],
        )
        if status == ClaimStatus.NOT_FOUND.value:
            return ClaimResult(status=ClaimStatus.NOT_FOUND)
        return ClaimResult(
            status=ClaimStatus(status),
            request=_from_hash(_pairs_to_dict(values)),
        )

    async def discard(self, token: str) -> None:
        client = await self._client()
        await client.delete(self._key(token))

    async def get(self, token: str) -> PendingRequest | None:
        client = await self._client()
        fields = await client.hgetall(self._key(token))
        return _from_hash(fields) if fields else None

    async def list_requests(
        self, status: RequestStatus | None = None
    ) -> list[PendingRequest]:
        client = await self._client()
        requests: list[PendingRequest] = []
        async for key in client.scan_iter(match=f"{self.key_prefix}:request:*"):
            fields = await client.hgetall(key)
            if not fields:
                continue
            request = _from_hash(fields)
            if status is None or request.status == status:
                requests.append(request)
        return sorted(requests, key=lambda r: r.created_at)

    async def ttl(self, token: str) -> int:
        """Seconds until the request's key expires (negative if it has none)."""
        client = await self._client()
        return await client.ttl(self._key(token))
