from __future__ import annotations

import json
import sys

from loguru import logger

from cafe_cards.core.logging import configure_logging
from cafe_cards.observability.scanning import get_scan_store


def test_scan_store_snapshot_and_reset() -> None:
    store = get_scan_store()
    store.reset()

    store.record_accepted("stamp")
    store.record_accepted("redemption")
    store.record_stamps(3)
    store.record_redemption()
    store.record_outcome("duplicate")

    snapshot = store.snapshot().as_dict()
    assert snapshot["outcomes"] == {"accepted": 2, "committed": 2, "duplicate": 1}
    assert snapshot["kinds"] == {"stamp": 1, "redemption": 1}
    assert snapshot["stamps_issued"] == 3
    assert snapshot["rewards_redeemed"] == 1

    store.reset()
    assert store.snapshot().outcomes == {}


def test_json_logging_includes_service_metadata_and_extras(capsys) -> None:
    configure_logging(service_name="cafe-cards-test", environment="staging", version="9.9.9", json_output=True)
    try:
        logger.info("Stamps added", card_id="card-1", stamps_added=2)
        lines = [line for line in capsys.readouterr().err.splitlines() if line.strip()]
    finally:
        logger.remove()
        logger.add(sys.stderr)

    payload = json.loads(lines[-1])
    assert payload["message"] == "Stamps added"
    assert payload["level"] == "info"
    assert payload["service"] == "cafe-cards-test"
    assert payload["environment"] == "staging"
    assert payload["version"] == "9.9.9"
    assert payload["card_id"] == "card-1"
    assert payload["stamps_added"] == 2
