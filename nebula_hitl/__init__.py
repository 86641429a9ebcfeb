"""Nebula HITL: suspend a workflow step until a human answers."""

from .builder import RequestBuilder
from .config import HitlConfig, load_config
from .contracts import (
    InboundEnvelope,
    OutboundPayload,
    PendingRequest,
    Priority,
    ResponseShape,
)
from .dispatcher import OutboundDispatcher
from .host import LocalWorkflowHost
from .ingress import WebhookIngress
from .node import HitlRequestNode, is_resumption
from .store import InMemoryCorrelationStore, get_store
from .suspend import SuspendController

__version__ = "0.1.0"
__all__ = [
    "HitlConfig",
    "HitlRequestNode",
    "InMemoryCorrelationStore",
    "InboundEnvelope",
    "LocalWorkflowHost",
    "OutboundDispatcher",
    "OutboundPayload",
    "PendingRequest",
    "Priority",
    "RequestBuilder",
    "ResponseShape",
    "SuspendController",
    "WebhookIngress",
    "get_store",
    "is_resumption",
    "load_config",
]
