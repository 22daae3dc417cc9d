import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from cafe_cards.observability.scanning import get_scan_store  # noqa: E402
from cafe_cards.services.cards.repository import CardRepository  # noqa: E402
from cafe_cards.services.store.memory import InMemoryDocumentStore  # noqa: E402

COLLECTION_ID = "loyalty_cards"
CAFE_ID = "cafe-001"
FIXED_NOW = datetime(2025, 3, 14, 9, 26, 53, 589000, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock the tests advance by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore([COLLECTION_ID])


@pytest.fixture
def repository(store: InMemoryDocumentStore) -> CardRepository:
    return CardRepository(store, collection_id=COLLECTION_ID, clock=lambda: FIXED_NOW)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def seed_card(store: InMemoryDocumentStore):
    def _seed(document_id: str = "card-1", **overrides):
        fields = {
            "cardId": "CARD_00000001",
            "customerId": "cust-1",
            "customerName": "Ada Lovelace",
            "customerEmail": "ada@example.com",
            "cafeUserId": CAFE_ID,
            "currentStamps": 0,
            "totalStamps": 0,
            "availableRewards": 0,
            "totalRedeemed": 0,
            "isActive": True,
            "isPinned": False,
            "issueDate": "2025-01-01T08:00:00.000Z",
            "lastStampDate": "2025-01-01T08:00:00.000Z",
            "scanHistory": "[]",
            "schemaVersion": 2,
        }
        fields.update(overrides)
        fields = {key: value for key, value in fields.items() if value is not ...}
        return store.seed(COLLECTION_ID, document_id, fields)

    return _seed


@pytest.fixture(autouse=True)
def reset_scan_telemetry():
    get_scan_store().reset()
    yield
    get_scan_store().reset()
