import asyncio
import uuid
from datetime import timedelta

from typer.testing import CliRunner

import nebula_hitl.store as store_module
from nebula_hitl.cli import app
from nebula_hitl.contracts import PendingRequest, ResponseShape
from nebula_hitl.dispatcher import OutboundDispatcher
from nebula_hitl.errors import DispatchFailure
from nebula_hitl.store import InMemoryCorrelationStore
from nebula_hitl.utils.clock import utc_now


def _setup_store() -> InMemoryCorrelationStore:
    store = InMemoryCorrelationStore()
    store_module._store_instance = store
    return store


def _register(store, handle: str) -> str:
    token = uuid.uuid4().hex
    now = utc_now()
    asyncio.run(
        store.register(
            PendingRequest(
                correlation_token=token,
                execution_handle=handle,
                callback_url=f"https://host/webhook-waiting/{handle}/nebula-hitl-response",
                response_shape=ResponseShape.BINARY,
                created_at=now,
                wait_until=now + timedelta(minutes=10),
            )
        )
    )
    return token


def test_requests_list_filters_by_status():
    store = _setup_store()
    pending = _register(store, "exec-1")
    resolved = _register(store, "exec-2")
    asyncio.run(store.claim(resolved))

    runner = CliRunner()
    result = runner.invoke(app, ["requests", "list"])
    assert result.exit_code == 0, f"Output: {result.stdout}"
    assert pending in result.stdout
    assert resolved in result.stdout

    result = runner.invoke(app, ["requests", "list", "--status", "pending"])
    assert result.exit_code == 0, f"Output: {result.stdout}"
    assert pending in result.stdout
    assert resolved not in result.stdout


def test_requests_list_empty():
    _setup_store()

    result = CliRunner().invoke(app, ["requests", "list"])
    assert result.exit_code == 0
    assert "No requests found" in result.stdout


def test_requests_show_details_and_missing():
    store = _setup_store()
    token = _register(store, "exec-42")

    runner = CliRunner()
    result = runner.invoke(app, ["requests", "show", token])
    assert result.exit_code == 0, f"Output: {result.stdout}"
    assert token in result.stdout
    assert "exec-42" in result.stdout
    assert "binary" in result.stdout
    assert "pending" in result.stdout

    missing = runner.invoke(app, ["requests", "show", "missing-token"])
    assert missing.exit_code == 1
    assert "Request not found" in missing.stdout


def test_credentials_test_success(monkeypatch):
    seen = []

    async def fake_check_health(self, credentials):
        seen.append(credentials)
        return True

    monkeypatch.setattr(OutboundDispatcher, "check_health", fake_check_health)

    result = CliRunner().invoke(
        app,
        [
            "credentials",
            "test",
            "--base-url",
            "https://nebula.example.com",
            "--username",
            "bot",
            "--password",
            "secret",
        ],
    )
    assert result.exit_code == 0, f"Output: {result.stdout}"
    assert "Credentials OK" in result.stdout
    assert seen[0].username == "bot"


def test_credentials_test_failure(monkeypatch):
    async def fake_check_health(self, credentials):
        raise DispatchFailure("Unauthorized", status_code=401)

    monkeypatch.setattr(OutboundDispatcher, "check_health", fake_check_health)

    result = CliRunner().invoke(
        app,
        [
            "credentials",
            "test",
            "--base-url",
            "https://nebula.example.com",
            "--username",
            "bot",
        ],
        input="wrong\n",
    )
    assert result.exit_code == 1
    assert "Credential test failed" in result.stdout
    assert "HTTP 401" in result.stdout
