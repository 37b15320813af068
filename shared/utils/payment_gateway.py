"""
shared/utils/payment_gateway.py
Payment gateway interface and adapters.

Resolvers only talk to PaymentGateway. Payment and booking rows are updated
after the gateway has reported an outcome, never before.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx
from pybreaker import CircuitBreakerError

from config.settings import settings
from shared.utils.exceptions import PaymentGatewayError
from shared.utils.resilience import circuit_breaker_manager

logger = logging.getLogger(__name__)

CHARGE_SUCCESS = "success"
CHARGE_FAILED = "failed"
CHARGE_PENDING = "pending"


@dataclass(frozen=True)
class ChargeOutcome:
    status: str
    transaction_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == CHARGE_SUCCESS

    @property
    def failed(self) -> bool:
        return self.status == CHARGE_FAILED


def generate_reference() -> str:
    return f"yenko_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


class PaymentGateway:
    async def initialize_charge(
        self,
        amount: Decimal,
        method: str,
        *,
        email: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> str:
        """Start a charge and return the gateway reference."""
        raise NotImplementedError

    async def verify_charge(self, reference: str) -> ChargeOutcome:
        raise NotImplementedError

    async def refund_charge(self, reference: str, amount: Optional[Decimal] = None) -> ChargeOutcome:
        raise NotImplementedError

    async def close(self) -> None:
        """Release connections held by the adapter."""


# ── Sandbox ───────────────────────────────────────────────────

class SandboxPaymentGateway(PaymentGateway):
    """
    Deterministic gateway for development and tests.
    Every charge verifies as ``default_outcome`` unless overridden per reference.
    """

    def __init__(self, default_outcome: str = CHARGE_SUCCESS):
        self.default_outcome = default_outcome
        self.charges: Dict[str, Dict[str, Any]] = {}
        self.outcomes: Dict[str, str] = {}
        self.refunds: Dict[str, Decimal] = {}

    def set_outcome(self, reference: str, status: str) -> None:
        self.outcomes[reference] = status

    async def initialize_charge(self, amount, method, *, email=None, metadata=None) -> str:
        reference = generate_reference()
        self.charges[reference] = {
            "amount": Decimal(amount),
            "method": method,
            "email": email,
            "metadata": metadata or {},
        }
        return reference

    async def verify_charge(self, reference: str) -> ChargeOutcome:
        if reference not in self.charges:
            return ChargeOutcome(status=CHARGE_FAILED, raw={"message": "Transaction reference not found"})
        status = self.outcomes.get(reference, self.default_outcome)
        transaction_id = f"sandbox_{reference}" if status == CHARGE_SUCCESS else None
        return ChargeOutcome(
            status=status,
            transaction_id=transaction_id,
            raw={"reference": reference, "status": status, "gateway": "sandbox"},
        )

    async def refund_charge(self, reference: str, amount: Optional[Decimal] = None) -> ChargeOutcome:
        charge = self.charges.get(reference)
        refunded = Decimal(amount) if amount is not None else (charge or {}).get("amount", Decimal("0"))
        self.refunds[reference] = refunded
        return ChargeOutcome(status=CHARGE_SUCCESS, raw={"reference": reference, "refunded": str(refunded)})


# ── Paystack ──────────────────────────────────────────────────

class PaystackGateway(PaymentGateway):
    """Thin Paystack REST adapter behind a circuit breaker."""

    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.paystack.co",
        currency: str = "GHS",
        timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.currency = currency
        self._breaker = circuit_breaker_manager.get_breaker("paystack")
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {secret_key}"},
            transport=transport,
        )

    def _request(self, method: str, path: str, payload: Optional[dict] = None) -> dict:
        response = self._client.request(method, path, json=payload)
        response.raise_for_status()
        return response.json()

    async def _call(self, method: str, path: str, payload: Optional[dict] = None) -> dict:
        try:
            return await asyncio.to_thread(self._breaker.call, self._request, method, path, payload)
        except CircuitBreakerError as exc:
            raise PaymentGatewayError("Payment gateway temporarily unavailable") from exc
        except httpx.HTTPError as exc:
            logger.error("Paystack %s %s failed: %s", method, path, exc)
            raise PaymentGatewayError(detail=str(exc)) from exc

    async def initialize_charge(self, amount, method, *, email=None, metadata=None) -> str:
        reference = generate_reference()
        body = await self._call(
            "POST",
            "/transaction/initialize",
            {
                "amount": int(Decimal(amount) * 100),   # minor units
                "currency": self.currency,
                "email": email,
                "reference": reference,
                "channels": [method] if method and method != "paystack" else None,
                "metadata": metadata or {},
            },
        )
        if not body.get("status"):
            raise PaymentGatewayError(body.get("message") or "Charge initialization rejected")
        return body.get("data", {}).get("reference", reference)

    async def verify_charge(self, reference: str) -> ChargeOutcome:
        body = await self._call("GET", f"/transaction/verify/{reference}")
        data = body.get("data") or {}
        status = data.get("status")
        if status == "success":
            outcome = CHARGE_SUCCESS
        elif status in ("failed", "abandoned", "reversed"):
            outcome = CHARGE_FAILED
        else:
            outcome = CHARGE_PENDING
        transaction_id = data.get("id")
        return ChargeOutcome(
            status=outcome,
            transaction_id=str(transaction_id) if transaction_id is not None else None,
            raw=data,
        )

    async def refund_charge(self, reference: str, amount: Optional[Decimal] = None) -> ChargeOutcome:
        payload: Dict[str, Any] = {"transaction": reference}
        if amount is not None:
            payload["amount"] = int(Decimal(amount) * 100)
        body = await self._call("POST", "/refund", payload)
        status = CHARGE_SUCCESS if body.get("status") else CHARGE_FAILED
        return ChargeOutcome(status=status, raw=body.get("data") or {})

    async def close(self) -> None:
        self._client.close()
        logger.info("Paystack client closed")


def build_payment_gateway() -> PaymentGateway:
    if settings.PAYMENT_GATEWAY == "paystack":
        return PaystackGateway(
            secret_key=settings.PAYSTACK_SECRET_KEY,
            base_url=settings.PAYSTACK_BASE_URL,
            currency=settings.PAYMENT_CURRENCY,
            timeout=settings.PAYMENT_GATEWAY_TIMEOUT,
        )
    return SandboxPaymentGateway()
