"""
Stripe adapter.

Cash on hand is the available balance; monthly revenue is the sum of
succeeded charges created in the last 30 days. Stripe amounts are in
cents.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

from pydantic import ValidationError

from finreconcile.models.snapshot import (
    PartialSnapshot,
    Source,
    TransactionRecord,
    TransactionType,
)
from finreconcile.sources.errors import (
    SourceRateLimitedError,
    SourceResponseError,
    TransientSourceError,
)
from finreconcile.sources.http import HttpSourceAdapter, safe_decimal

REVENUE_WINDOW = timedelta(days=30)
MAX_TRANSACTIONS = 20


class StripeAdapter(HttpSourceAdapter):
    service_type = "stripe"

    def _auth_headers(self, source: Source) -> dict[str, str]:
        return {"Authorization": f"Bearer {source.credentials['secretKey']}"}

    async def fetch_snapshot(self, source: Source) -> PartialSnapshot:
        charges_data = await self._get_json(source, "/charges", params={"limit": 50})
        charges = charges_data.get("data") if isinstance(charges_data, dict) else None
        if charges is None:
            raise SourceResponseError(self.service_type, "Missing 'data' in charges response")

        try:
            balance_data = await self._get_json(source, "/balance")
        except SourceRateLimitedError:
            raise
        except (TransientSourceError, SourceResponseError):
            balance_data = {}

        available = balance_data.get("available") or []
        cash_on_hand = safe_decimal(available[0].get("amount"), scale=100) if available else None

        cutoff = datetime.now(timezone.utc) - REVENUE_WINDOW
        monthly_revenue = Decimal("0")
        for charge in charges:
            created = _created_at(charge)
            amount = safe_decimal(charge.get("amount"), scale=100)
            if (
                charge.get("status") == "succeeded"
                and created is not None
                and created > cutoff
                and amount is not None
            ):
                monthly_revenue += amount

        transactions = []
        for charge in charges[:MAX_TRANSACTIONS]:
            record = self._parse_charge(charge)
            if record is not None:
                transactions.append(record)

        return PartialSnapshot(
            cash_on_hand=cash_on_hand,
            monthly_revenue=monthly_revenue,
            transactions=transactions,
        )

    def _parse_charge(self, charge: dict[str, Any]) -> Optional[TransactionRecord]:
        amount = safe_decimal(charge.get("amount"), scale=100)
        created = _created_at(charge)
        if amount is None or created is None or not charge.get("id"):
            return None

        method = (charge.get("payment_method_details") or {}).get("type")
        customer = (charge.get("billing_details") or {}).get("name") or "Unknown"
        try:
            return TransactionRecord(
                id=f"stripe-{charge['id']}",
                title=charge.get("description") or f"{method or 'Payment'} Payment",
                description=f"Customer: {customer}",
                amount=amount,
                type=TransactionType.INCOME,
                date=created,
                category=(charge.get("metadata") or {}).get("category") or "Payment",
                status=charge.get("status"),
                payment_method=method,
            )
        except ValidationError:
            return None


def _created_at(charge: dict[str, Any]) -> Optional[datetime]:
    created = charge.get("created")
    if not isinstance(created, (int, float)):
        return None
    return datetime.fromtimestamp(created, tz=timezone.utc)
