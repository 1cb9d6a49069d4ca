"""Simulated checkout.

There is no payment provider behind this: a card or UPI reference equal to
``fail`` declines, anything else is accepted.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Optional


logger = logging.getLogger("evcharge.payments")

PAYMENT_METHODS = ("card", "upi")
_DECLINE_REFERENCE = "fail"


@dataclass
class PaymentResult:
    status: str  # completed|failed
    method: str
    amount_cents: int

    @property
    def ok(self) -> bool:
        return self.status == "completed"


def simulate_payment(amount_cents: int, method: Optional[str] = None, reference: Optional[str] = None) -> PaymentResult:
    method = (method or "card").lower()
    if method not in PAYMENT_METHODS:
        method = "card"
    declined = (reference or "").strip().lower() == _DECLINE_REFERENCE
    result = PaymentResult(status="failed" if declined else "completed", method=method, amount_cents=amount_cents)
    logger.info(json.dumps({"event": "payment_simulated", "method": method, "amount_cents": amount_cents, "status": result.status}))
    return result
