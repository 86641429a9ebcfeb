"""SQLite implementation of the correlation store."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from ..contracts import PendingRequest, RequestStatus, Resolution
from ..utils.clock import utc_now
from .base import ClaimResult, ClaimStatus, CorrelationStore, RegisterStatus

_COLUMNS = (
    "correlation_token, execution_handle, callback_url, response_shape, form_schema, "
    "created_at, wait_until, status, resolution, resolved_at"
)


class SQLiteCorrelationStore(CorrelationStore):
    """Persist pending requests using SQLite.

    The claim is a conditional ``UPDATE`` on ``status = 'pending'`` so that
    several processes sharing one database file still resolve each token at
    most once.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        with self._lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS pending_requests (
                    correlation_token TEXT PRIMARY KEY,
                    execution_handle TEXT NOT NULL,
                    callback_url TEXT,
                    response_shape TEXT,
                    form_schema TEXT,
                    created_at TEXT NOT NULL,
                    wait_until TEXT NOT NULL,
                    status TEXT NOT NULL,
                    resolution TEXT,
                    resolved_at TEXT
                )
                """
            )
            self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._lock:
            cur = self._conn.execute(query, params)
            self._conn.commit()
            return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(query, params).fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(query, params).fetchall()

    def _insert(self, request: PendingRequest) -> RegisterStatus:
        try:
            self._execute(
                f"INSERT INTO pending_requests ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                request.correlation_token,
                request.execution_handle,
                request.callback_url,
                request.response_shape.value if request.response_shape else None,
                json.dumps(request.form_schema) if request.form_schema is not None else None,
                request.created_at.isoformat(),
                request.wait_until.isoformat(),
                request.status.value,
                request.resolution.value if request.resolution else None,
                request.resolved_at.isoformat() if request.resolved_at else None,
            )
        except sqlite3.IntegrityError:
            return RegisterStatus.DUPLICATE
        return RegisterStatus.OK

    @staticmethod
    def _to_request(row: sqlite3.Row) -> PendingRequest:
        return PendingRequest(
            correlation_token=row["correlation_token"],
            execution_handle=row["execution_handle"],
            callback_url=row["callback_url"],
            response_shape=row["response_shape"],
            form_schema=json.loads(row["form_schema"]) if row["form_schema"] else None,
            created_at=datetime.fromisoformat(row["created_at"]),
            wait_until=datetime.fromisoformat(row["wait_until"]),
            status=row["status"],
            resolution=row["resolution"],
            resolved_at=datetime.fromisoformat(row["resolved_at"]) if row["resolved_at"] else None,
        )

    def _resolve(
        self, token: str, resolution: Resolution, execution_handle: Optional[str]
    ) -> ClaimResult:
        query = (
            "UPDATE pending_requests SET status = ?, resolution = ?, resolved_at = ? "
            "WHERE correlation_token = ? AND status = ?"
        )
        params: list[Any] = [
            RequestStatus.RESOLVED.value,
            resolution.value,
            utc_now().isoformat(),
            token,
            RequestStatus.PENDING.value,
        ]
        if execution_handle is not None:
            query += " AND execution_handle = ?"
            params.append(execution_handle)
        updated = self._execute(query, *params)

        row = self._fetchone(
            f"SELECT {_COLUMNS} FROM pending_requests WHERE correlation_token = ?", token
        )
        if row is None:
            return ClaimResult(status=ClaimStatus.NOT_FOUND)
        request = self._to_request(row)
        if updated == 1:
            return ClaimResult(status=ClaimStatus.CLAIMED, request=request)
        if execution_handle is not None and request.execution_handle != execution_handle:
            return ClaimResult(status=ClaimStatus.NOT_FOUND)
        return ClaimResult(status=ClaimStatus.ALREADY_RESOLVED, request=request)

    # ------------------------------------------------------------------
    # Store API
    async def register(self, request: PendingRequest) -> RegisterStatus:
        return await asyncio.to_thread(self._insert, request)

    async def claim(
        self, token: str, execution_handle: Optional[str] = None
    ) -> ClaimResult:
        return await asyncio.to_thread(
            self._resolve, token, Resolution.WEBHOOK, execution_handle
        )

    async def expire(self, token: str) -> ClaimResult:
        return await asyncio.to_thread(self._resolve, token, Resolution.DEADLINE, None)

    async def discard(self, token: str) -> None:
        await asyncio.to_thread(
            self._execute,
            "DELETE FROM pending_requests WHERE correlation_token = ?",
            token,
        )

    async def get(self, token: str) -> PendingRequest | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_COLUMNS} FROM pending_requests WHERE correlation_token = ?",
            token,
        )
        return self._to_request(row) if row else None

    async def list_requests(
        self, status: RequestStatus | None = None
    ) -> list[PendingRequest]:
        if status is None:
            rows = await asyncio.to_thread(
                self._fetchall,
                f"SELECT {_COLUMNS} FROM pending_requests ORDER BY created_at",
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                f"SELECT {_COLUMNS} FROM pending_requests WHERE status = ? ORDER BY created_at",
                status.value,
            )
        return [self._to_request(row) for row in rows]
