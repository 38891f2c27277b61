"""Unit test fixtures: auto-clear caches between tests, plus store row builders."""

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest

from task_market_service.config import clear_settings_cache
from task_market_service.core.state import reset_app_state
from task_market_service.services.market_store import MarketStore
from task_market_service.services.records import now_iso


@pytest.fixture(autouse=True)
def _clear_caches():
    """Clear settings cache and app state between tests."""
    clear_settings_cache()
    reset_app_state()
    yield
    clear_settings_cache()
    reset_app_state()


@pytest.fixture
def store(tmp_path: Path) -> Iterator[MarketStore]:
    """A fresh MarketStore backed by a temporary database."""
    market_store = MarketStore(db_path=str(tmp_path / "market.db"))
    yield market_store
    market_store.close()


def make_task_row(task_id: str, status: str = "open", **overrides: Any) -> dict[str, Any]:
    """A complete tasks row; columns not overridden take their initial values."""
    timestamp = now_iso()
    row: dict[str, Any] = {
        "task_id": task_id,
        "title": f"Task {task_id}",
        "description": "Carry three boxes upstairs",
        "status": status,
        "created_by": "a-poster",
        "assigned_to": None,
        "budget_cents": None,
        "payment_status": "none",
        "payment_intent_id": None,
        "payout_status": "none",
        "payout_id": None,
        "archived": 0,
        "hidden_by_admin": 0,
        "hidden_reason": None,
        "hidden_at": None,
        "created_at": timestamp,
        "updated_at": timestamp,
        "accepted_at": None,
        "completed_at": None,
    }
    row.update(overrides)
    return row


def make_bid_row(
    bid_id: str, task_id: str, user_id: str, amount_cents: int = 5000
) -> dict[str, Any]:
    """A pending bids row."""
    timestamp = now_iso()
    return {
        "bid_id": bid_id,
        "task_id": task_id,
        "user_id": user_id,
        "amount_cents": amount_cents,
        "message": "",
        "status": "pending",
        "created_at": timestamp,
        "updated_at": timestamp,
    }
