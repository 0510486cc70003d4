"""
Mercury Bank adapter.

Reports cash on hand (sum of account balances) and recent transactions.
"""

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


class MercuryAdapter(HttpSourceAdapter):
    service_type = "mercury_bank"

    def _auth_headers(self, source: Source) -> dict[str, str]:
        return {"Authorization": f"Bearer {source.credentials['apiKey']}"}

    async def fetch_snapshot(self, source: Source) -> PartialSnapshot:
        accounts_data = await self._get_json(source, "/accounts")
        accounts = accounts_data.get("accounts") if isinstance(accounts_data, dict) else None
        if accounts is None:
            raise SourceResponseError(self.service_type, "Missing 'accounts' in response")

        balances = [safe_decimal(acc.get("currentBalance")) for acc in accounts]
        balances = [b for b in balances if b is not None]
        cash_on_hand = sum(balances) if balances else None

        # Transactions are secondary; an unavailable listing still
        # leaves a useful balance.
        try:
            transactions_data = await self._get_json(
                source, "/transactions", params={"limit": 50}
            )
        except SourceRateLimitedError:
            raise
        except (TransientSourceError, SourceResponseError):
            transactions_data = {"transactions": []}

        return PartialSnapshot(
            cash_on_hand=cash_on_hand,
            transactions=self._parse_transactions(transactions_data.get("transactions") or []),
        )

    def _parse_transactions(self, raw: list[dict[str, Any]]) -> list[TransactionRecord]:
        records = []
        for tx in raw:
            record = self._parse_transaction(tx)
            if record is not None:
                records.append(record)
        return records

    def _parse_transaction(self, tx: dict[str, Any]) -> Optional[TransactionRecord]:
        amount = safe_decimal(tx.get("amount"))
        if amount is None or not tx.get("id"):
            return None
        try:
            return TransactionRecord(
                id=f"merc-{tx['id']}",
                title=tx.get("counterpartyName") or tx.get("bankDescription") or "Transaction",
                description=tx.get("note") or tx.get("bankDescription"),
                amount=amount,
                type=TransactionType.INCOME if amount > 0 else TransactionType.EXPENSE,
                date=tx.get("postedAt") or tx.get("createdAt"),
                category=tx.get("mercuryCategory") or tx.get("dashboardCategory"),
                status=tx.get("status"),
                payment_method=tx.get("kind"),
            )
        except ValidationError:
            # Skip malformed items
            return None
