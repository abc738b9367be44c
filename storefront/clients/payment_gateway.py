"""
Payment gateway port and adapters.

The order engine only depends on the PaymentGateway interface. Two adapters
are provided: MockPaymentGateway simulates authorizations locally and
HttpPaymentGateway talks to a remote gateway over HTTP.
"""
import asyncio
import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

import httpx

from .. import config

logger = logging.getLogger(__name__)

AUTHORIZED = "Authorized"
INSUFFICIENT_FUNDS = "InsufficientFunds"
FAILED = "Failed"
REFUNDED = "Refunded"

MESSAGES = {
    AUTHORIZED: "Payment authorized successfully",
    INSUFFICIENT_FUNDS: "Insufficient funds",
    FAILED: "Payment processing failed. Please try again.",
    REFUNDED: "Refund processed successfully",
}


@dataclass(frozen=True)
class PaymentResult:
    """Result of an authorization or refund attempt."""

    success: bool
    transaction_id: Optional[str] = None
    status: Optional[str] = None
    message: Optional[str] = None


class PaymentGatewayError(Exception):
    """The gateway could not be reached or returned an unusable response."""


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    @abstractmethod
    async def authorize(self, amount: Decimal, payment_method: str, user_id: int) -> PaymentResult:
        """Authorize a charge of amount for user_id."""
        ...

    @abstractmethod
    async def refund(self, transaction_id: str, amount: Decimal) -> PaymentResult:
        """Refund a previously authorized charge."""
        ...


def _reference(prefix: str, rng: random.Random) -> str:
    return f"{prefix}-{datetime.utcnow():%Y%m%d%H%M%S}-{rng.randint(1000, 9999)}"


class MockPaymentGateway(PaymentGateway):
    """
    Simulated gateway.

    Outcomes follow an 80/15/5 split between authorized, insufficient funds
    and general failure. configure() forces a fixed outcome for tests, and
    every call is recorded in ``calls``.
    """

    def __init__(self, latency: float = None, seed: Optional[int] = None) -> None:
        self.latency = config.MOCK_PAYMENT_LATENCY if latency is None else latency
        self.forced_status: Optional[str] = None
        self.calls: List[dict] = []
        self._rng = random.Random(seed)

    def configure(self, status: Optional[str]) -> None:
        """Force every authorization to end with status, or None to go back to random outcomes."""
        if status is not None and status not in (AUTHORIZED, INSUFFICIENT_FUNDS, FAILED):
            raise ValueError(f"Unknown payment status: {status}")
        self.forced_status = status

    def _pick_status(self) -> str:
        if self.forced_status is not None:
            return self.forced_status
        roll = self._rng.randrange(100)
        if roll < 80:
            return AUTHORIZED
        if roll < 95:
            return INSUFFICIENT_FUNDS
        return FAILED

    async def authorize(self, amount: Decimal, payment_method: str, user_id: int) -> PaymentResult:
        self.calls.append(
            {"method": "authorize", "amount": amount, "payment_method": payment_method, "user_id": user_id}
        )
        if self.latency:
            await asyncio.sleep(self.latency)

        status = self._pick_status()
        transaction_id = _reference("TXN", self._rng)
        if status == AUTHORIZED:
            logger.info(f"Payment authorized: {transaction_id}, amount {amount}, user {user_id}")
        else:
            logger.warning(f"Payment declined ({status}): user {user_id}, amount {amount}")
        return PaymentResult(
            success=status == AUTHORIZED,
            transaction_id=transaction_id,
            status=status,
            message=MESSAGES[status],
        )

    async def refund(self, transaction_id: str, amount: Decimal) -> PaymentResult:
        self.calls.append({"method": "refund", "transaction_id": transaction_id, "amount": amount})
        if self.latency:
            await asyncio.sleep(self.latency)

        refund_id = _reference("REFUND", self._rng)
        logger.info(f"Refund processed: {refund_id}, original {transaction_id}, amount {amount}")
        return PaymentResult(success=True, transaction_id=refund_id, status=REFUNDED, message=MESSAGES[REFUNDED])


class HttpPaymentGateway(PaymentGateway):
    """
    Remote gateway reached over HTTP.

    Expects POST {base_url}/authorize and POST {base_url}/refund endpoints
    answering with success, transaction_id, status and message fields.
    """

    def __init__(self, base_url: str = None, timeout: float = None, transport: httpx.AsyncBaseTransport = None) -> None:
        self.base_url = (base_url or config.PAYMENT_GATEWAY_URL).rstrip("/")
        self.timeout = timeout or config.PAYMENT_TIMEOUT
        self.transport = transport

    async def _post(self, path: str, payload: dict) -> PaymentResult:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(f"{self.base_url}{path}", json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Payment gateway call to {path} failed: {e}")
            raise PaymentGatewayError(f"Payment gateway unavailable: {e}") from e
        except ValueError as e:
            raise PaymentGatewayError("Payment gateway returned an invalid response") from e

        return PaymentResult(
            success=bool(data.get("success")),
            transaction_id=data.get("transaction_id"),
            status=data.get("status"),
            message=data.get("message"),
        )

    async def authorize(self, amount: Decimal, payment_method: str, user_id: int) -> PaymentResult:
        return await self._post(
            "/authorize",
            {"amount": str(amount), "payment_method": payment_method, "user_id": user_id},
        )

    async def refund(self, transaction_id: str, amount: Decimal) -> PaymentResult:
        return await self._post("/refund", {"transaction_id": transaction_id, "amount": str(amount)})
