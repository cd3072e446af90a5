import json
from decimal import Decimal

import httpx
import pytest

from mercado_oficio.errors import EscrowFailure
from mercado_oficio.services.escrow_service import EscrowProvider, HttpEscrowProvider


def _provider(handler, max_attempts=3):
    sleeps = []
    provider = HttpEscrowProvider(
        base_url="https://escrow.test/v1",
        api_key="sk_test",
        currency="ARS",
        timeout=1,
        max_attempts=max_attempts,
        backoff_seconds=0.5,
        transport=httpx.MockTransport(handler),
        sleep=sleeps.append,
    )
    return provider, sleeps


def test_open_escrow_sends_amount_and_returns_reference():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(201, json={"id": "esc_123", "status": "held"})

    provider, _ = _provider(handler)

    escrow_ref = provider.open_escrow(Decimal("112.50"), reference="budget-1-milestone-1")

    assert escrow_ref == "esc_123"
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/v1/escrows"
    assert request.headers["Authorization"] == "Bearer sk_test"
    assert request.headers["Idempotency-Key"] == "open-budget-1-milestone-1"
    assert json.loads(request.content) == {
        "amount": "112.50",
        "currency": "ARS",
        "reference": "budget-1-milestone-1",
    }


def test_transient_failures_are_retried_with_backoff():
    responses = iter([httpx.Response(503), httpx.Response(502), httpx.Response(200, json={"released": True})])
    calls = []

    def handler(request):
        calls.append(request.headers.get("Idempotency-Key"))
        return next(responses)

    provider, sleeps = _provider(handler)

    provider.release("esc_123")

    assert calls == ["release-esc_123"] * 3
    assert sleeps == [0.5, 1.0]


def test_network_errors_are_retried():
    attempts = []

    def handler(request):
        attempts.append(request)
        if len(attempts) == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={})

    provider, _ = _provider(handler)

    provider.cancel("esc_9")

    assert len(attempts) == 2


def test_exhausted_retries_raise_retryable_failure():
    provider, sleeps = _provider(lambda request: httpx.Response(504), max_attempts=2)

    with pytest.raises(EscrowFailure) as exc_info:
        provider.release("esc_123")

    assert exc_info.value.retryable is True
    assert exc_info.value.status_code == 503
    assert len(sleeps) == 1


def test_client_errors_fail_fast_and_are_terminal():
    attempts = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(409, json={"error": "already released"})

    provider, sleeps = _provider(handler)

    with pytest.raises(EscrowFailure) as exc_info:
        provider.release("esc_123")

    assert exc_info.value.retryable is False
    assert exc_info.value.status_code == 502
    assert len(attempts) == 1
    assert sleeps == []


def test_missing_reference_in_response_is_an_error():
    provider, _ = _provider(lambda request: httpx.Response(200, json={"status": "held"}))

    with pytest.raises(EscrowFailure):
        provider.open_escrow(Decimal("10"), reference="budget-1-milestone-1")


def test_unconfigured_provider_refuses_calls():
    provider = HttpEscrowProvider(base_url=None)

    assert provider.is_available() is False
    with pytest.raises(EscrowFailure) as exc_info:
        provider.release("esc_1")
    assert exc_info.value.retryable is False


def test_partial_provider_cannot_be_instantiated():
    class OpenOnlyProvider(EscrowProvider):
        def open_escrow(self, amount, reference):
            return "esc_1"

    with pytest.raises(TypeError):
        OpenOnlyProvider()
