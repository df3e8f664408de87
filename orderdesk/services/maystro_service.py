"""HTTP client for the Maystro delivery API."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

import httpx

from orderdesk.config import settings
from orderdesk.logging_config import get_logger
from orderdesk.services.status_codes import map_status

logger = get_logger("maystro_service")

ORDERS_PATH = "/api/stores/orders/"


class ProviderError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderRateLimitError(ProviderError):
    pass


class UnsupportedProviderError(ProviderError):
    pass


@dataclass
class ProviderOrder:
    reference: str
    provider_order_id: Optional[str]
    tracking_number: Optional[str]
    status_code: Any
    status_label: str

    @classmethod
    def from_payload(cls, payload: dict) -> "ProviderOrder":
        provider_id = payload.get("instance_uuid") or payload.get("id")
        tracking = payload.get("tracking_number") or payload.get("display_id") or payload.get("instance_uuid")
        return cls(
            reference=str(payload.get("external_order_id") or "").strip(),
            provider_order_id=str(provider_id) if provider_id is not None else None,
            tracking_number=str(tracking) if tracking is not None else None,
            status_code=payload.get("status"),
            status_label=map_status(payload.get("status")),
        )


class MaystroClient:
    """Bulk order lookups against one Maystro store account."""

    DEFAULT_BASE_URL = "https://backend.maystro-delivery.com"

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_backoff_seconds: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
        sleep_func: Callable[[float], None] = time.sleep,
    ):
        if not api_key:
            raise ProviderError("Maystro API key is missing")
        self.base_url = (base_url or settings.maystro_base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self.max_retries = settings.provider_max_retries if max_retries is None else max_retries
        self.retry_backoff_seconds = (
            settings.provider_retry_backoff_seconds if retry_backoff_seconds is None else retry_backoff_seconds
        )
        self._sleep = sleep_func
        self._client = httpx.Client(
            base_url=self.base_url,
            headers={"Authorization": f"Token {api_key}", "Content-Type": "application/json"},
            timeout=timeout or settings.http_timeout_seconds,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "MaystroClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _retry_delay(self, response: httpx.Response, attempt: int) -> float:
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                return max(float(retry_after), 0.0)
            except ValueError:
                pass
        return self.retry_backoff_seconds * (2**attempt)

    def _get(self, url: str, params: Optional[dict] = None) -> dict:
        """GET with bounded retry on HTTP 429. Timeouts and other errors raise ProviderError."""
        attempt = 0
        while True:
            try:
                response = self._client.get(url, params=params)
            except httpx.TimeoutException as exc:
                raise ProviderError(f"Maystro request timed out: {exc}") from exc
            except httpx.HTTPError as exc:
                raise ProviderError(f"Maystro request failed: {exc}") from exc

            if response.status_code == 429:
                if attempt >= self.max_retries:
                    raise ProviderRateLimitError("Maystro rate limit exceeded", status_code=429)
                delay = self._retry_delay(response, attempt)
                logger.warning(
                    "Maystro rate limited, retrying",
                    extra={"context": {"attempt": attempt + 1, "delay_seconds": delay}},
                )
                self._sleep(delay)
                attempt += 1
                continue

            if response.status_code >= 400:
                raise ProviderError(
                    f"Maystro returned HTTP {response.status_code}: {response.text[:200]}",
                    status_code=response.status_code,
                )
            try:
                return response.json()
            except ValueError as exc:
                raise ProviderError("Maystro returned a non-JSON body") from exc

    def get_orders_by_references(self, references: Iterable[str]) -> dict[str, ProviderOrder]:
        """Look up many orders in one call (following pagination), keyed by external reference."""
        references = [ref for ref in dict.fromkeys(references) if ref]
        if not references:
            return {}

        found: dict[str, ProviderOrder] = {}
        url: Optional[str] = ORDERS_PATH
        params: Optional[dict] = {"external_order_id": ",".join(references)}
        wanted = set(references)
        while url:
            payload = self._get(url, params=params)
            listing = payload.get("list") or {}
            for item in listing.get("results") or []:
                order = ProviderOrder.from_payload(item)
                if order.reference in wanted:
                    found[order.reference] = order
            url = listing.get("next")
            params = None
        return found

    def get_order_by_reference(self, reference: str) -> Optional[ProviderOrder]:
        return self.get_orders_by_references([reference]).get(reference)

    def test_connection(self) -> bool:
        self._get(ORDERS_PATH, params={"page": 1})
        return True


def get_provider_client(account, **kwargs) -> MaystroClient:
    """Build the bulk lookup client for a shipping account, by company slug."""
    slug = account.company.slug if account.company else None
    if slug != "maystro":
        raise UnsupportedProviderError(f"Bulk tracking sync is not supported for provider {slug}")
    credentials = account.credentials or {}
    return MaystroClient(
        api_key=credentials.get("api_key") or credentials.get("apiKey"),
        base_url=account.base_url,
        **kwargs,
    )
