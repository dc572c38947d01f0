"""Test fixtures for Spend Assistant tests."""

from collections.abc import Iterator
from datetime import datetime, timezone

import pytest

from spend_assistant.analytics import AnalyticsEngine
from spend_assistant.database import Database
from spend_assistant.llm import ModelRequest, ModelResponse
from spend_assistant.models import Transaction, TransactionQuery
from spend_assistant.sync_engine import SyncEngine
from spend_assistant.tools import ToolRegistry

USER = "user-1"

# Sunday, 15 March 2026
FIXED_NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return FIXED_NOW


def make_tx(
    tx_id: str,
    day: str,
    name: str,
    amount: float,
    category: str | None = None,
    *,
    pending: bool = False,
    bank_id: str = "bank-1",
    currency: str = "USD",
) -> Transaction:
    return Transaction(
        transaction_id=tx_id,
        bank_id=bank_id,
        name=name,
        amount=amount,
        currency=currency,
        date=day,
        pending=pending,
        pfc_primary=category,
    )


class RecordingSource:
    """TransactionSource over a list that records every query it receives."""

    def __init__(self, transactions: list[Transaction] | None = None, error: Exception | None = None):
        self.transactions = transactions or []
        self.error = error
        self.queries: list[TransactionQuery] = []

    def query_transactions(self, user_id: str, query: TransactionQuery) -> Iterator[Transaction]:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        for tx in self.transactions:
            if query.date_from and tx.date < query.date_from:
                continue
            if query.date_to and tx.date > query.date_to:
                continue
            if query.pending is not None and tx.pending != query.pending:
                continue
            yield tx


class FakeModel:
    """LanguageModel that replays scripted responses and records requests.

    A scripted item that is an exception instance is raised instead of returned.
    """

    def __init__(self, *script: ModelResponse | Exception):
        self.script = list(script)
        self.requests: list[ModelRequest] = []

    async def generate(self, request: ModelRequest) -> ModelResponse:
        self.requests.append(request)
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def db() -> Database:
    """Create in-memory database with schema."""
    database = Database(":memory:")
    database.init_schema()
    return database


@pytest.fixture
def populated_db(db: Database) -> Database:
    """In-memory database with a few months of spending for USER.

    - Netflix: monthly 15.99 (Jan-Mar)
    - Gym: weekly 10.00 (four Mondays in February)
    - Whole Foods: three irregular March purchases
    - Blue Bottle: one pending March purchase
    - Another user's transaction that must never leak
    """
    db.upsert_transactions(USER, [
        make_tx("nf-1", "2026-01-05", "Netflix", 15.99, "ENTERTAINMENT"),
        make_tx("nf-2", "2026-02-05", "Netflix", 15.99, "ENTERTAINMENT"),
        make_tx("nf-3", "2026-03-05", "Netflix", 15.99, "ENTERTAINMENT"),
        make_tx("gym-1", "2026-02-02", "Gym", 10.0, "PERSONAL_CARE", bank_id="bank-2"),
        make_tx("gym-2", "2026-02-09", "Gym", 10.0, "PERSONAL_CARE", bank_id="bank-2"),
        make_tx("gym-3", "2026-02-16", "Gym", 10.0, "PERSONAL_CARE", bank_id="bank-2"),
        make_tx("gym-4", "2026-02-23", "Gym", 10.0, "PERSONAL_CARE", bank_id="bank-2"),
        make_tx("wf-1", "2026-03-01", "Whole Foods", 50.0, "FOOD_AND_DRINK"),
        make_tx("wf-2", "2026-03-03", "Whole Foods", 30.0, "FOOD_AND_DRINK"),
        make_tx("wf-3", "2026-03-10", "Whole Foods", 20.0, "FOOD_AND_DRINK"),
        make_tx("bb-1", "2026-03-12", "Blue Bottle", 4.5, "FOOD_AND_DRINK", pending=True),
    ])
    db.upsert_transactions("user-2", [
        make_tx("other-1", "2026-03-05", "Netflix", 999.0, "ENTERTAINMENT"),
    ])
    return db


@pytest.fixture
def engine(populated_db: Database) -> AnalyticsEngine:
    return AnalyticsEngine(populated_db)


@pytest.fixture
def registry(engine: AnalyticsEngine) -> ToolRegistry:
    return ToolRegistry(engine, clock=fixed_clock)


@pytest.fixture
def sync_engine(db: Database) -> SyncEngine:
    """Create sync engine with test database."""
    return SyncEngine(db, "test_client", "test_secret")


@pytest.fixture
def sample_sync_page() -> dict:
    """Sample /transactions/sync response page."""
    return {
        "added": [
            {
                "transaction_id": "tx-1",
                "account_id": "acc-1",
                "name": "NETFLIX.COM 866-579",
                "merchant_name": "Netflix",
                "amount": 15.99,
                "iso_currency_code": "USD",
                "date": "2026-03-05",
                "authorized_date": "2026-03-04",
                "pending": False,
                "personal_finance_category": {
                    "primary": "ENTERTAINMENT",
                    "detailed": "ENTERTAINMENT_TV_AND_MOVIES",
                    "confidence_level": "VERY_HIGH",
                },
                "personal_finance_category_icon_url": "https://plaid-category-icons.plaid.com/PFC_ENTERTAINMENT.png",
            },
            {
                "transaction_id": "tx-2",
                "account_id": "acc-1",
                "name": "Uber 063015 SF**POOL**",
                "merchant_name": None,
                "amount": 5.4,
                "iso_currency_code": "USD",
                "date": "2026-03-06",
                "pending": True,
                "personal_finance_category": {"primary": "TRANSPORTATION", "detailed": "TRANSPORTATION_TAXIS_AND_RIDE_SHARES"},
            },
        ],
        "modified": [],
        "removed": [],
        "next_cursor": "cursor-1",
        "has_more": False,
    }
