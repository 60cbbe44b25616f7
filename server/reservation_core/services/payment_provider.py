"""Payment provider clients used to query the status of a payment."""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import httpx

from ..core.config import Settings
from ..core.observability import metrics_collector

logger = logging.getLogger(__name__)


class ProviderUnreachable(Exception):
    """The provider could not be reached or answered with a server error."""

    def __init__(self, provider: str, reason: str):
        self.provider = provider
        self.reason = reason
        super().__init__(f"{provider} unreachable: {reason}")


@dataclass
class ProviderStatus:
    """Status of a payment as reported by the provider."""

    status: str
    provider_ref: str
    raw: dict[str, Any] = field(default_factory=dict)


class PaymentProvider(Protocol):
    name: str

    async def fetch_status(self, provider_ref: str) -> ProviderStatus:
        ...


class PayMongoProvider:
    """
    PayMongo status client.

    Looks up the payment source by reference with HTTP basic auth (secret key
    as username, empty password). Every request is bounded by the configured
    timeout.
    """

    name = "paymongo"

    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.paymongo.com",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def fetch_status(self, provider_ref: str) -> ProviderStatus:
        """
        Query the provider for one payment.

        Raises:
            ProviderUnreachable: On timeout, transport error or 5xx response
        """
        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                auth=(self.secret_key, ""),
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                response = await client.get(f"/v1/sources/{provider_ref}")
        except httpx.TimeoutException as e:
            raise ProviderUnreachable(self.name, "timeout") from e
        except httpx.TransportError as e:
            raise ProviderUnreachable(self.name, f"transport error: {e}") from e
        finally:
            metrics_collector.observe_provider_request(self.name, time.perf_counter() - started)

        if response.status_code >= 500:
            raise ProviderUnreachable(self.name, f"HTTP {response.status_code}")

        if response.status_code == 404:
            logger.warning(
                "Provider does not know the payment reference",
                extra={"provider": self.name, "provider_ref": provider_ref}
            )
            return ProviderStatus(status="not_found", provider_ref=provider_ref)

        try:
            body = response.json()
        except ValueError as e:
            raise ProviderUnreachable(self.name, "malformed response body") from e

        status = (
            (body.get("data") or {}).get("attributes", {}).get("status")
            or "unknown"
        )
        logger.debug(
            "Provider status fetched",
            extra={"provider": self.name, "provider_ref": provider_ref, "provider_status": status}
        )
        return ProviderStatus(status=str(status).lower(), provider_ref=provider_ref, raw=body)


class TestProvider:
    """
    In-process provider for local runs and tests.

    Statuses are set per reference; ``unreachable`` makes every call raise
    ProviderUnreachable. Calls are counted per reference.
    """

    __test__ = False
    name = "test"

    def __init__(self, default_status: str = "pending"):
        self.default_status = default_status
        self.statuses: dict[str, str] = {}
        self.unreachable = False
        self.calls: dict[str, int] = {}

    def set_status(self, provider_ref: str, status: str) -> None:
        self.statuses[provider_ref] = status

    async def fetch_status(self, provider_ref: str) -> ProviderStatus:
        self.calls[provider_ref] = self.calls.get(provider_ref, 0) + 1
        if self.unreachable:
            raise ProviderUnreachable(self.name, "simulated outage")
        return ProviderStatus(
            status=self.statuses.get(provider_ref, self.default_status),
            provider_ref=provider_ref,
        )


def build_provider(config: Settings) -> PaymentProvider:
    """Create the provider client named in settings."""
    if config.provider_name == "test":
        return TestProvider()
    return PayMongoProvider(
        secret_key=config.provider_secret_key,
        base_url=config.provider_base_url,
        timeout=config.provider_timeout_seconds,
    )
