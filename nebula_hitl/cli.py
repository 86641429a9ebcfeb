"""Command line interface for the Nebula HITL coordinator."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import typer

from nebula_hitl.config import load_config
from nebula_hitl.contracts import NebulaCredentials, RequestStatus
from nebula_hitl.dispatcher import OutboundDispatcher
from nebula_hitl.errors import DispatchFailure
from nebula_hitl.store import get_store

app = typer.Typer(help="CLI for the Nebula HITL coordinator")

requests_app = typer.Typer(help="Inspect pending HITL requests")
credentials_app = typer.Typer(help="Check decision service credentials")

app.add_typer(requests_app, name="requests")
app.add_typer(credentials_app, name="credentials")


@app.callback()
def main() -> None:
    """Nebula HITL CLI entry point."""
    config = load_config()
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("serve")
def serve(host: str = "0.0.0.0", port: int = 8080) -> None:
    """
    Run the webhook ingress backed by the in-process workflow host.

    Example:
        nebula-hitl serve --port 5678
    """
    import uvicorn

    from nebula_hitl.host import LocalWorkflowHost
    from nebula_hitl.ingress import WebhookIngress
    from nebula_hitl.server import create_app

    config = load_config()
    store = get_store()
    workflow_host = LocalWorkflowHost(store, public_base_url=config.public_base_url)
    ingress = WebhookIngress(store, workflow_host)
    typer.echo(
        f"Accepting responses at {config.public_base_url}/"
        f"{config.waiting_path_prefix}/<execution>/{config.webhook_path}"
    )
    uvicorn.run(create_app(ingress, config), host=host, port=port)


@requests_app.command("list")
def requests_list(
    status: Optional[RequestStatus] = typer.Option(
        None, help="Only show requests in this state"
    ),
) -> None:
    """
    List HITL requests known to the configured correlation store.

    Example:
        nebula-hitl requests list --status pending
        # Output: 0d6c...e1  exec-42  pending  2026-01-01T10:05:00+00:00
    """
    store = get_store()
    requests = asyncio.run(store.list_requests(status))
    if not requests:
        typer.echo("No requests found")
        return
    for request in requests:
        typer.echo(
            f"{request.correlation_token}\t{request.execution_handle}\t"
            f"{request.status.value}\t{request.wait_until.isoformat()}"
        )


@requests_app.command("show")
def requests_show(correlation_token: str) -> None:
    """Show details of a single HITL request."""
    store = get_store()
    request = asyncio.run(store.get(correlation_token))
    if request is None:
        typer.echo("Request not found")
        raise typer.Exit(code=1)
    typer.echo(f"Request {request.correlation_token}: {request.status.value}")
    typer.echo(f"Execution: {request.execution_handle}")
    if request.callback_url:
        typer.echo(f"Callback URL: {request.callback_url}")
    if request.response_shape:
        typer.echo(f"Response shape: {request.response_shape.value}")
    typer.echo(f"Created: {request.created_at.isoformat()}")
    typer.echo(f"Wait until: {request.wait_until.isoformat()}")
    if request.resolution:
        typer.echo(f"Resolved by {request.resolution.value} at {request.resolved_at}")


@credentials_app.command("test")
def credentials_test(
    base_url: str = typer.Option(..., help="Base URL of the decision service"),
    username: str = typer.Option(..., help="Basic auth username"),
    password: str = typer.Option(..., help="Basic auth password", prompt=True, hide_input=True),
) -> None:
    """Call the decision service health endpoint with the given credentials."""
    config = load_config()
    credentials = NebulaCredentials(base_url=base_url, username=username, password=password)
    dispatcher = OutboundDispatcher(timeout=config.dispatch_timeout_seconds)
    try:
        asyncio.run(dispatcher.check_health(credentials))
    except DispatchFailure as e:
        typer.secho(f"Credential test failed: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo("Credentials OK")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
