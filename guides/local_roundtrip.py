"""Run one HITL request end to end against an in-process decision service."""

import asyncio
import json

import httpx

from nebula_hitl import HitlConfig, HitlRequestNode, InMemoryCorrelationStore
from nebula_hitl.dispatcher import OutboundDispatcher
from nebula_hitl.host import LocalWorkflowHost
from nebula_hitl.ingress import WebhookIngress
from nebula_hitl.server import create_app


async def main():
    """Dispatch an approval request and answer it through the webhook."""
    config = HitlConfig(public_base_url="http://localhost:5678")
    store = InMemoryCorrelationStore()
    host = LocalWorkflowHost(store, public_base_url=config.public_base_url)
    app = create_app(WebhookIngress(store, host), config)

    # Stand-in for the decision service: remembers what it was asked
    published = []

    def decision_service(request: httpx.Request) -> httpx.Response:
        published.append(json.loads(request.content))
        return httpx.Response(201, json={"id": "req-1"})

    node = HitlRequestNode(
        store=store,
        dispatcher=OutboundDispatcher(transport=httpx.MockTransport(decision_service)),
        config=config,
    )

    execution = host.create_execution(
        parameters={
            "title": "Approve invoice 1042?",
            "message": "Amount: 1,250 EUR",
            "responseShape": "binary",
            "options": {"priority": "high", "timeoutMinutes": 60, "tags": "finance, invoices"},
        },
        credentials={
            "baseUrl": "https://nebula.example.com",
            "username": "workflow-bot",
            "password": "secret",
        },
        input_items=[{"invoiceId": 1042}],
    )
    await host.run(node, execution.execution_id)

    request = published[0]
    print(f"📨 Published request {request['correlationToken']}")
    print(f"🔗 Callback URL: {request['callbackUrl']}")
    print(f"⏸️  Execution status: {execution.status.value}")

    # The human answers; the decision service calls the webhook
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url=config.public_base_url
    ) as client:
        response = await client.post(
            httpx.URL(request["callbackUrl"]).path,
            json={
                "correlationToken": request["correlationToken"],
                "response": "yes",
                "respondedBy": "alice@example.com",
                "comment": "Within budget",
            },
        )

    print(f"✅ Webhook answered {response.status_code}: {response.json()['message']}")
    print(f"▶️  Execution status: {execution.status.value}")
    print(f"📋 Output: {execution.output}")


if __name__ == "__main__":
    asyncio.run(main())
