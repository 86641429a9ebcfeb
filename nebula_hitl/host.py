"""Host collaborator interfaces and an in-process reference host."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from .contracts import WAITING_STATIC_DATA_KEY, WorkflowIdentity
from .errors import DeadlineExpired
from .store import ClaimStatus, CorrelationStore
from .utils.clock import utc_now

if TYPE_CHECKING:
    from .node import HitlRequestNode

logger = logging.getLogger(__name__)


class ExecutionContext(Protocol):
    """What one step invocation can ask of the workflow host."""

    supports_indefinite_wait: bool

    def get_input_items(self) -> List[Dict[str, Any]]:
        ...

    def get_node_parameters(self) -> Dict[str, Any]:
        ...

    async def get_credentials(self) -> Dict[str, Any]:
        ...

    def get_instance_base_url(self) -> str:
        ...

    def get_execution_id(self) -> str:
        ...

    def get_workflow(self) -> WorkflowIdentity:
        ...

    def get_node_static_data(self) -> Dict[str, Any]:
        """Per-node storage that the host persists with the execution."""
        ...

    async def put_execution_to_wait(self, wait_until: Optional[datetime]) -> None:
        """Park the execution until ``wait_until`` or an inbound webhook.

        ``None`` asks for a wait without deadline and is only passed when
        ``supports_indefinite_wait`` is true.
        """
        ...

    def continue_on_fail(self) -> bool:
        ...


class HostExecution(BaseModel):
    """Host-side view of an execution, as seen by the webhook ingress."""

    execution_id: str
    waiting: bool
    static_data: Dict[str, Any] = Field(default_factory=dict)


class WaitingExecutions(Protocol):
    """What the webhook ingress needs from the workflow host."""

    async def lookup_execution(self, execution_handle: str) -> HostExecution | None:
        """Return the execution, or ``None`` if the host has never seen it."""
        ...

    async def resume_execution(
        self, execution_handle: str, items: List[Dict[str, Any]]
    ) -> None:
        """Re-enter the waiting step with ``items`` as its input."""
        ...


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"
    EXPIRED = "expired"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class LocalExecution:
    """State of one execution inside :class:`LocalWorkflowHost`."""

    execution_id: str
    parameters: Dict[str, Any]
    credentials: Dict[str, Any]
    input_items: List[Dict[str, Any]] = field(default_factory=list)
    workflow: WorkflowIdentity = field(default_factory=WorkflowIdentity)
    continue_on_fail: bool = False
    static_data: Dict[str, Any] = field(default_factory=dict)
    status: ExecutionStatus = ExecutionStatus.RUNNING
    wait_until: Optional[datetime] = None
    output: Optional[List[Dict[str, Any]]] = None
    error: Optional[BaseException] = None
    node: Optional["HitlRequestNode"] = None
    pending_resume: Optional[List[Dict[str, Any]]] = None

    @property
    def correlation_token(self) -> Optional[str]:
        snapshot = self.static_data.get(WAITING_STATIC_DATA_KEY) or {}
        return snapshot.get("correlationToken")


class LocalExecutionContext:
    """:class:`ExecutionContext` bound to one :class:`LocalExecution`."""

    def __init__(
        self,
        host: "LocalWorkflowHost",
        execution: LocalExecution,
        input_items: List[Dict[str, Any]],
    ) -> None:
        self._host = host
        self._execution = execution
        self._input_items = input_items
        self.supports_indefinite_wait = host.supports_indefinite_wait

    def get_input_items(self) -> List[Dict[str, Any]]:
        return self._input_items

    def get_node_parameters(self) -> Dict[str, Any]:
        return self._execution.parameters

    async def get_credentials(self) -> Dict[str, Any]:
        return self._execution.credentials

    def get_instance_base_url(self) -> str:
        return self._host.public_base_url

    def get_execution_id(self) -> str:
        return self._execution.execution_id

    def get_workflow(self) -> WorkflowIdentity:
        return self._execution.workflow

    def get_node_static_data(self) -> Dict[str, Any]:
        return self._execution.static_data

    async def put_execution_to_wait(self, wait_until: Optional[datetime]) -> None:
        self._execution.status = ExecutionStatus.WAITING
        self._execution.wait_until = wait_until
        logger.info(
            f"Execution {self._execution.execution_id} waiting until "
            f"{wait_until.isoformat() if wait_until else 'a response arrives'}"
        )

    def continue_on_fail(self) -> bool:
        return self._execution.continue_on_fail


class LocalWorkflowHost:
    """In-process workflow host running a single HITL step per execution.

    Implements :class:`WaitingExecutions` for the webhook ingress and owns
    the deadline sweep. Used by tests, guides and ``nebula-hitl serve``.
    """

    def __init__(
        self,
        store: CorrelationStore,
        public_base_url: str = "http://localhost:5678",
        supports_indefinite_wait: bool = False,
    ) -> None:
        self.store = store
        self.public_base_url = public_base_url
        self.supports_indefinite_wait = supports_indefinite_wait
        self._executions: Dict[str, LocalExecution] = {}

    def create_execution(
        self,
        parameters: Dict[str, Any],
        credentials: Dict[str, Any],
        input_items: Optional[List[Dict[str, Any]]] = None,
        workflow: Optional[WorkflowIdentity] = None,
        execution_id: Optional[str] = None,
        continue_on_fail: bool = False,
    ) -> LocalExecution:
        execution = LocalExecution(
            execution_id=execution_id or uuid.uuid4().hex[:12],
            parameters=parameters,
            credentials=credentials,
            input_items=list(input_items or [{}]),
            workflow=workflow or WorkflowIdentity(),
            continue_on_fail=continue_on_fail,
        )
        self._executions[execution.execution_id] = execution
        return execution

    def get_execution(self, execution_handle: str) -> LocalExecution | None:
        return self._executions.get(execution_handle)

    async def run(self, node: "HitlRequestNode", execution_handle: str) -> LocalExecution:
        """Invoke ``node`` for a fresh execution."""
        execution = self._executions[execution_handle]
        execution.node = node
        await self._invoke(execution, execution.input_items)
        return execution

    async def _invoke(
        self, execution: LocalExecution, input_items: List[Dict[str, Any]]
    ) -> None:
        execution.status = ExecutionStatus.RUNNING
        context = LocalExecutionContext(self, execution, input_items)
        try:
            output = await execution.node.execute(context)
        except Exception as e:
            execution.status = ExecutionStatus.FAILED
            execution.error = e
            logger.error(f"Execution {execution.execution_id} failed: {e}")
            raise
        if execution.status != ExecutionStatus.WAITING:
            execution.status = ExecutionStatus.COMPLETED
            execution.output = output
        elif execution.pending_resume is not None:
            items, execution.pending_resume = execution.pending_resume, None
            logger.info(f"Resuming execution {execution.execution_id} with queued response")
            await self._invoke(execution, items)

    # ------------------------------------------------------------------
    # WaitingExecutions
    async def lookup_execution(self, execution_handle: str) -> HostExecution | None:
        execution = self._executions.get(execution_handle)
        if execution is None:
            return None
        return HostExecution(
            execution_id=execution.execution_id,
            waiting=execution.status == ExecutionStatus.WAITING,
            static_data=dict(execution.static_data),
        )

    async def resume_execution(
        self, execution_handle: str, items: List[Dict[str, Any]]
    ) -> None:
        execution = self._executions.get(execution_handle)
        if execution is not None and execution.status == ExecutionStatus.RUNNING:
            # answered before the step finished suspending
            execution.pending_resume = items
            return
        if execution is None or execution.status != ExecutionStatus.WAITING:
            raise RuntimeError(f"Execution {execution_handle} is not waiting")
        logger.info(f"Resuming execution {execution_handle}")
        await self._invoke(execution, items)

    # ------------------------------------------------------------------
    # Deadlines and cancellation
    async def fire_deadlines(self, now: Optional[datetime] = None) -> List[str]:
        """Expire every waiting execution whose deadline has passed.

        Returns the handles of the executions that were expired.
        """
        now = now or utc_now()
        expired: List[str] = []
        for execution in list(self._executions.values()):
            if execution.status != ExecutionStatus.WAITING:
                continue
            if execution.wait_until is None or execution.wait_until > now:
                continue
            token = execution.correlation_token
            if token is not None:
                result = await self.store.expire(token)
                if result.status == ClaimStatus.ALREADY_RESOLVED:
                    # a webhook won the race and is resuming the execution
                    continue
            execution.status = ExecutionStatus.EXPIRED
            execution.output = []
            execution.error = DeadlineExpired(
                f"No response for {token} before {execution.wait_until.isoformat()}"
            )
            if token is not None:
                # late webhooks get 410 through the not-waiting check
                await self.store.discard(token)
            expired.append(execution.execution_id)
            logger.info(f"Execution {execution.execution_id} expired waiting for {token}")
        return expired

    async def cancel(self, execution_handle: str) -> None:
        """Abandon the execution; its pending request is left to fail with 410."""
        execution = self._executions.get(execution_handle)
        if execution is not None and execution.status in (
            ExecutionStatus.RUNNING,
            ExecutionStatus.WAITING,
        ):
            execution.status = ExecutionStatus.CANCELLED
            if execution.correlation_token is not None:
                await self.store.discard(execution.correlation_token)
            logger.info(f"Execution {execution_handle} cancelled")
