"""Unit tests for the payment provider clients."""

import base64

import httpx
import pytest

from reservation_core.core.config import Settings
from reservation_core.services.payment_provider import (
    PayMongoProvider,
    ProviderUnreachable,
    TestProvider,
    build_provider,
)


def provider_with(handler) -> PayMongoProvider:
    return PayMongoProvider(
        secret_key="sk_test_123",
        base_url="https://api.paymongo.test/",
        timeout=2.0,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_fetch_status_paid():
    """Test reading the source status with basic auth."""
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["authorization"] = request.headers["Authorization"]
        return httpx.Response(200, json={"data": {"id": "src_1", "attributes": {"status": "PAID"}}})

    status = await provider_with(handler).fetch_status("src_1")

    assert status.status == "paid"
    assert status.provider_ref == "src_1"
    assert status.raw["data"]["id"] == "src_1"
    assert seen["url"] == "https://api.paymongo.test/v1/sources/src_1"
    assert seen["authorization"] == "Basic " + base64.b64encode(b"sk_test_123:").decode()


@pytest.mark.asyncio
async def test_fetch_status_unknown_reference():
    """Test that a 404 is reported as a status, not an outage."""
    status = await provider_with(lambda request: httpx.Response(404, json={})).fetch_status("src_gone")

    assert status.status == "not_found"


@pytest.mark.asyncio
async def test_fetch_status_missing_status_field():
    """Test that a body without a status reads as unknown."""
    status = await provider_with(lambda request: httpx.Response(200, json={"data": {}})).fetch_status("src_1")

    assert status.status == "unknown"


@pytest.mark.asyncio
async def test_fetch_status_server_error():
    """Test that a 5xx answer raises ProviderUnreachable."""
    with pytest.raises(ProviderUnreachable) as exc_info:
        await provider_with(lambda request: httpx.Response(503)).fetch_status("src_1")

    assert exc_info.value.provider == "paymongo"
    assert exc_info.value.reason == "HTTP 503"


@pytest.mark.asyncio
async def test_fetch_status_timeout():
    """Test that a timeout raises ProviderUnreachable."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(ProviderUnreachable) as exc_info:
        await provider_with(handler).fetch_status("src_1")

    assert exc_info.value.reason == "timeout"


@pytest.mark.asyncio
async def test_fetch_status_connection_error():
    """Test that a connection failure raises ProviderUnreachable."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ProviderUnreachable):
        await provider_with(handler).fetch_status("src_1")


@pytest.mark.asyncio
async def test_fetch_status_malformed_body():
    """Test that an unparseable body raises ProviderUnreachable."""
    with pytest.raises(ProviderUnreachable):
        await provider_with(lambda request: httpx.Response(200, content=b"<html>")).fetch_status("src_1")


@pytest.mark.asyncio
async def test_test_provider():
    """Test the in-process provider."""
    provider = TestProvider()
    provider.set_status("src_1", "paid")

    assert (await provider.fetch_status("src_1")).status == "paid"
    assert (await provider.fetch_status("src_2")).status == "pending"

    provider.unreachable = True
    with pytest.raises(ProviderUnreachable):
        await provider.fetch_status("src_1")
    assert provider.calls == {"src_1": 2, "src_2": 1}


def test_build_provider():
    """Test that settings pick the provider client."""
    assert isinstance(build_provider(Settings(provider_name="test")), TestProvider)

    provider = build_provider(Settings(provider_name="paymongo", provider_secret_key="sk_live_1"))
    assert isinstance(provider, PayMongoProvider)
    assert provider.secret_key == "sk_live_1"
