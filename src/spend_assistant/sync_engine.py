"""Sync engine for Plaid using the /transactions/sync cursor protocol."""

import time
from datetime import datetime, timezone
from typing import Any

import httpx

from .database import Database
from .errors import SyncError
from .logging_setup import get_logger
from .models import Transaction

log = get_logger(__name__)

PLAID_HOSTS = {
    "sandbox": "https://sandbox.plaid.com",
    "development": "https://development.plaid.com",
    "production": "https://production.plaid.com",
}

PAGE_SIZE = 500

TRANSIENT_ERROR_CODES = {
    "RATE_LIMIT_EXCEEDED",
    "PLANNED_MAINTENANCE",
    "INTERNAL_SERVER_ERROR",
    "PRODUCT_NOT_READY",
}


def plaid_to_transaction(bank_id: str, item: dict[str, Any], now: datetime | None = None) -> Transaction:
    """Convert a Plaid transaction object to a Transaction."""
    pfc = item.get("personal_finance_category") or {}
    return Transaction(
        transaction_id=item["transaction_id"],
        bank_id=bank_id,
        name=item.get("merchant_name") or item.get("name") or "",
        amount=float(item.get("amount") or 0),
        currency=item.get("iso_currency_code") or item.get("unofficial_currency_code") or "",
        date=item["date"],
        pending=bool(item.get("pending")),
        authorized_date=item.get("authorized_date"),
        pfc_primary=pfc.get("primary"),
        pfc_detailed=pfc.get("detailed"),
        pfc_confidence=pfc.get("confidence_level"),
        pfc_icon_url=item.get("personal_finance_category_icon_url"),
        created_at=now,
        updated_at=now,
    )


class SyncEngine:
    """Pulls a user's transactions from Plaid into the local database."""

    def __init__(self, db: Database, client_id: str, secret: str, environment: str = "sandbox"):
        """Initialize sync engine.

        Args:
            db: Database instance for storing synced data.
            client_id: Plaid client ID.
            secret: Plaid secret for the environment.
            environment: One of "sandbox", "development", "production".
        """
        if environment not in PLAID_HOSTS:
            raise ValueError(f"unknown Plaid environment: {environment}")
        self.db = db
        self.client_id = client_id
        self.secret = secret
        self.environment = environment
        self.base_url = PLAID_HOSTS[environment]

    async def sync(self, user_id: str, bank_id: str, access_token: str) -> dict[str, Any]:
        """Sync one bank (Plaid item) starting from its stored cursor.

        Pages are applied as they arrive; the cursor is saved once the last
        page (has_more = false) has been applied.

        Returns:
            Dictionary with added/modified/removed counts and the final cursor.

        Raises:
            SyncError: If a Plaid request fails.
        """
        start_time = time.time()
        cursor = self.db.get_cursor(user_id, bank_id)
        totals = {"added": 0, "modified": 0, "removed": 0}
        pages = 0

        async with httpx.AsyncClient(base_url=self.base_url) as client:
            has_more = True
            while has_more:
                page = await self._fetch_page(client, access_token, cursor)
                counts = self._apply_page(user_id, bank_id, page)
                for key, value in counts.items():
                    totals[key] += value
                cursor = page.get("next_cursor", cursor)
                has_more = bool(page.get("has_more"))
                pages += 1
                log.info(
                    "plaid page %d for bank %s: added=%d modified=%d removed=%d",
                    pages, bank_id, counts["added"], counts["modified"], counts["removed"],
                )

        if cursor:
            self.db.set_cursor(user_id, bank_id, cursor)

        return {
            "status": "synced",
            **totals,
            "cursor": cursor,
            "pages": pages,
            "sync_duration_ms": int((time.time() - start_time) * 1000),
        }

    async def _fetch_page(self, client: httpx.AsyncClient, access_token: str, cursor: str) -> dict[str, Any]:
        body: dict[str, Any] = {
            "client_id": self.client_id,
            "secret": self.secret,
            "access_token": access_token,
            "count": PAGE_SIZE,
            "options": {"include_personal_finance_category": True},
        }
        if cursor:
            body["cursor"] = cursor

        try:
            response = await client.post("/transactions/sync", json=body, timeout=60.0)
        except httpx.HTTPError as e:
            raise SyncError(f"HTTP error during sync: {e}", transient=True) from e

        if response.status_code != 200:
            raise self._api_error(response)

        try:
            return response.json()
        except ValueError as e:
            raise SyncError(f"Invalid JSON response: {e}") from e

    @staticmethod
    def _api_error(response: httpx.Response) -> SyncError:
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        code = payload.get("error_code", "")
        message = payload.get("error_message") or response.text
        transient = code in TRANSIENT_ERROR_CODES or response.status_code >= 500
        return SyncError(f"API returned status {response.status_code} {code}: {message}".strip(), transient=transient)

    def _apply_page(self, user_id: str, bank_id: str, page: dict[str, Any]) -> dict[str, int]:
        now = datetime.now(timezone.utc)
        added = [plaid_to_transaction(bank_id, t, now) for t in page.get("added", [])]
        modified = [plaid_to_transaction(bank_id, t, now) for t in page.get("modified", [])]
        removed = [r["transaction_id"] for r in page.get("removed", []) if r.get("transaction_id")]

        if added or modified:
            self.db.upsert_transactions(user_id, added + modified)
        deleted = self.db.delete_transactions(user_id, removed)
        return {"added": len(added), "modified": len(modified), "removed": deleted}

    def apply_sync_page(self, user_id: str, bank_id: str, page: dict[str, Any]) -> dict[str, Any]:
        """Apply one /transactions/sync page directly (for testing without HTTP).

        Saves next_cursor when the page is the last one.
        """
        result: dict[str, Any] = self._apply_page(user_id, bank_id, page)
        cursor = page.get("next_cursor")
        if cursor and not page.get("has_more"):
            self.db.set_cursor(user_id, bank_id, cursor)
        result["status"] = "synced"
        return result
