"""
Escrow Service
Holds milestone funds with the external escrow provider and releases them on client confirmation
"""

import logging
import time
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Callable, Optional

import httpx

from ..config import (
    ESCROW_API_KEY,
    ESCROW_API_URL,
    ESCROW_CURRENCY,
    ESCROW_MAX_RETRIES,
    ESCROW_RETRY_BACKOFF_SECONDS,
    ESCROW_TIMEOUT_SECONDS,
)
from ..errors import EscrowFailure

logger = logging.getLogger(__name__)

# Status codes worth retrying: the provider may succeed on a later attempt
RETRYABLE_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}


class EscrowProvider(ABC):
    """
    Interface of the escrow collaborator.

    Escrow references are opaque: callers store and pass them back untouched.
    """

    @abstractmethod
    def open_escrow(self, amount: Decimal, reference: str) -> str:
        """Hold ``amount`` and return the escrow reference"""

    @abstractmethod
    def release(self, escrow_ref: str) -> None:
        """Release held funds to the provider; raises EscrowFailure on failure"""

    @abstractmethod
    def cancel(self, escrow_ref: str) -> None:
        """Void a hold that will never be released"""


class HttpEscrowProvider(EscrowProvider):
    """Escrow provider reached over its REST API with bounded timeout and retries"""

    def __init__(
        self,
        base_url: Optional[str] = ESCROW_API_URL,
        api_key: Optional[str] = ESCROW_API_KEY,
        currency: str = ESCROW_CURRENCY,
        timeout: float = ESCROW_TIMEOUT_SECONDS,
        max_attempts: int = ESCROW_MAX_RETRIES,
        backoff_seconds: float = ESCROW_RETRY_BACKOFF_SECONDS,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.currency = currency
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep
        self.client: Optional[httpx.Client] = None

        if not base_url:
            logger.warning("ESCROW_API_URL not set; milestone escrow operations will fail until configured")
            return

        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self.client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        logger.info(f"Escrow client initialized (base_url={base_url}, attempts={self.max_attempts})")

    def is_available(self) -> bool:
        """Check if the escrow client is configured"""
        return self.client is not None

    def close(self) -> None:
        if self.client is not None:
            self.client.close()

    def _request(
        self,
        method: str,
        path: str,
        payload: Optional[dict] = None,
        idempotency_key: Optional[str] = None,
    ) -> dict[str, Any]:
        if not self.client:
            raise EscrowFailure("Escrow provider not configured", retryable=False)

        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        last_error = "unknown error"

        for attempt in range(1, self.max_attempts + 1):
            try:
                response = self.client.request(method, path, json=payload, headers=headers)
            except httpx.TransportError as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.warning(
                    f"⚠️ Escrow {method} {path} attempt {attempt}/{self.max_attempts} failed: {last_error}"
                )
            else:
                if response.status_code < 400:
                    return response.json() if response.content else {}

                last_error = f"HTTP {response.status_code}: {response.text[:200]}"
                if response.status_code not in RETRYABLE_STATUS_CODES:
                    logger.error(f"❌ Escrow {method} {path} rejected: {last_error}")
                    raise EscrowFailure(f"Escrow provider rejected the request ({last_error})", retryable=False)
                logger.warning(
                    f"⚠️ Escrow {method} {path} attempt {attempt}/{self.max_attempts} failed: {last_error}"
                )

            if attempt < self.max_attempts:
                self._sleep(self.backoff_seconds * (2 ** (attempt - 1)))

        logger.error(f"❌ Escrow {method} {path} failed after {self.max_attempts} attempts: {last_error}")
        raise EscrowFailure(f"Escrow provider unavailable ({last_error})", retryable=True)

    def open_escrow(self, amount: Decimal, reference: str) -> str:
        data = self._request(
            "POST",
            "/escrows",
            payload={"amount": str(amount), "currency": self.currency, "reference": reference},
            idempotency_key=f"open-{reference}",
        )
        escrow_ref = data.get("id") or data.get("escrowId")
        if not escrow_ref:
            raise EscrowFailure("Escrow provider returned no escrow reference", retryable=False)
        logger.info(f"🔒 Escrow opened for {reference}: {amount} {self.currency}")
        return str(escrow_ref)

    def release(self, escrow_ref: str) -> None:
        # Same key on every retry: the provider releases at most once per escrow
        self._request("POST", f"/escrows/{escrow_ref}/release", idempotency_key=f"release-{escrow_ref}")
        logger.info(f"💸 Escrow {escrow_ref} released")

    def cancel(self, escrow_ref: str) -> None:
        self._request("POST", f"/escrows/{escrow_ref}/cancel", idempotency_key=f"cancel-{escrow_ref}")
        logger.info(f"↩️ Escrow {escrow_ref} cancelled")


_provider: Optional[EscrowProvider] = None


def get_escrow_provider() -> EscrowProvider:
    """Dependency returning the process-wide escrow provider"""
    global _provider
    if _provider is None:
        _provider = HttpEscrowProvider()
    return _provider
