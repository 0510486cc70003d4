"""
QuickBooks Online adapter.

Cash on hand is the sum of bank account balances; outstanding invoices
is the sum of open invoice balances.
"""

from decimal import Decimal

from finreconcile.models.snapshot import PartialSnapshot, Source
from finreconcile.sources.errors import (
    SourceRateLimitedError,
    SourceResponseError,
    TransientSourceError,
)
from finreconcile.sources.http import HttpSourceAdapter, safe_decimal

BANK_ACCOUNTS_QUERY = "select * from Account where AccountType = 'Bank'"
OPEN_INVOICES_QUERY = "select * from Invoice where Balance > '0'"


class QuickBooksAdapter(HttpSourceAdapter):
    service_type = "quickbooks"

    def _auth_headers(self, source: Source) -> dict[str, str]:
        return {"Authorization": f"Bearer {source.credentials['accessToken']}"}

    def _base_for(self, source: Source) -> str:
        return f"{self._base_url}/company/{source.credentials['companyId']}"

    async def fetch_snapshot(self, source: Source) -> PartialSnapshot:
        accounts_data = await self._get_json(source, "/query", params={"query": BANK_ACCOUNTS_QUERY})
        query_response = accounts_data.get("QueryResponse") if isinstance(accounts_data, dict) else None
        if query_response is None:
            raise SourceResponseError(self.service_type, "Missing 'QueryResponse' in accounts response")

        cash = Decimal("0")
        for account in query_response.get("Account") or []:
            balance = safe_decimal(account.get("CurrentBalance"))
            if balance is not None:
                cash += balance

        outstanding = None
        try:
            invoices_data = await self._get_json(source, "/query", params={"query": OPEN_INVOICES_QUERY})
        except SourceRateLimitedError:
            raise
        except (TransientSourceError, SourceResponseError):
            invoices_data = None

        if invoices_data is not None:
            outstanding = Decimal("0")
            for invoice in (invoices_data.get("QueryResponse") or {}).get("Invoice") or []:
                balance = safe_decimal(invoice.get("Balance"))
                if balance is not None and balance > 0:
                    outstanding += balance

        return PartialSnapshot(
            cash_on_hand=cash,
            outstanding_invoices=outstanding,
        )
