"""
Tests for the scoring pipeline: validate -> fetch -> classify -> persist -> publish.
"""
import threading
from unittest.mock import MagicMock

import pytest

from credora.exceptions import PersistenceFailure, UpstreamUnavailable, ValidationError
from credora.models import WalletSignals
from credora.scoring_engine import RuleScoringEngine, WeightedScoringEngine
from credora.scoring_service import ScoringService
from credora.update_bus import UpdateBus
from credora.wallet_provider import seed_mock_wallets

HIGH_WALLET = "0x742d35Cc6634C0532925a3b8D4C9db96C4b4d8b6"
LOW_WALLET = "0x0987654321098765432109876543210987654321"
NEW_WALLET = "0xabcdefabcdefabcdefabcdefabcdefabcdefabcd"


def test_get_score_for_seeded_wallet(service, store):
    seed_mock_wallets(store)
    response = service.get_score(f"  {HIGH_WALLET} ")

    assert response["wallet"] == HIGH_WALLET
    assert response["address"] == HIGH_WALLET.lower()
    assert response["checksumAddress"].lower() == HIGH_WALLET.lower()
    assert response["creditScore"] == "High"
    assert response["riskLevel"] == "High"
    assert response["confidence"] == 1.0
    assert response["walletData"] == {
        "balance": "2.5 ETH",
        "transactionCount": 25,
        "lastActivity": "2024-01-15T00:00:00.000Z",
    }
    assert response["scoringMode"] == "rule"
    assert response["timestamp"].endswith("Z")


def test_get_score_persists_last_score(service, store):
    seed_mock_wallets(store)
    service.get_score(LOW_WALLET)
    last_score = store.get(LOW_WALLET).last_score
    assert last_score["creditScore"] == "Low"
    assert last_score["mode"] == "rule"


def test_get_score_publishes_after_persist(service, store, bus):
    events = []

    def on_update(event):
        # the stored score must already be visible to subscribers
        events.append((event, store.get(event.wallet).last_score))

    service.subscribe_to_credit_score_updates(NEW_WALLET, on_update)
    response = service.get_score(NEW_WALLET)

    assert len(events) == 1
    event, stored = events[0]
    assert event.type == "credit_score_update"
    assert event.wallet == NEW_WALLET
    assert event.data["creditScore"] == response["creditScore"]
    assert stored["creditScore"] == response["creditScore"]


def test_get_score_is_stable_for_new_wallet(service):
    first = service.get_score(NEW_WALLET)
    second = service.get_score(NEW_WALLET.upper().replace("0X", "0x"))
    assert first["walletData"] == second["walletData"]
    assert first["creditScore"] == second["creditScore"]


@pytest.mark.parametrize("bad, message", [
    ("", "Wallet address is required"),
    (None, "Wallet address is required"),
    ("0x742d35", "Invalid Ethereum address format"),
])
def test_get_score_validation(service, store, bad, message):
    with pytest.raises(ValidationError, match=message):
        service.get_score(bad)


def test_weighted_mode_reports_number(store, bus):
    seed_mock_wallets(store)
    service = ScoringService(MagicMock(fetch=store.get), WeightedScoringEngine(), store, bus)
    response = service.get_score(HIGH_WALLET)
    assert response["creditScore"] == 850
    assert response["riskLevel"] == "High"
    assert response["confidence"] == 0.85


def test_persistence_failure_publishes_nothing(bus):
    store = MagicMock()
    store.upsert.side_effect = PersistenceFailure("Wallet store write failed")
    provider = MagicMock()
    provider.fetch.return_value = WalletSignals(address=NEW_WALLET, balance=1.0, transaction_count=12)
    service = ScoringService(provider, RuleScoringEngine(), store, bus)
    service.initialize()

    seen = []
    service.subscribe_to_credit_score_updates(NEW_WALLET, seen.append)
    with pytest.raises(PersistenceFailure):
        service.get_score(NEW_WALLET)
    assert seen == []


def test_upstream_failure_publishes_nothing(bus):
    provider = MagicMock()
    provider.fetch.side_effect = UpstreamUnavailable("Ethereum RPC not connected")
    store = MagicMock()
    service = ScoringService(provider, RuleScoringEngine(), store, bus)

    seen = []
    service.subscribe_to_credit_score_updates(NEW_WALLET, seen.append)
    with pytest.raises(UpstreamUnavailable):
        service.get_score(NEW_WALLET)
    store.upsert.assert_not_called()
    assert seen == []


def test_subscriber_error_does_not_fail_request(service):
    def broken(event):
        raise RuntimeError("boom")

    service.subscribe_to_credit_score_updates(NEW_WALLET, broken)
    assert service.get_score(NEW_WALLET)["address"] == NEW_WALLET


def test_get_score_works_with_disconnected_bus(store):
    seed_mock_wallets(store)
    service = ScoringService(MagicMock(fetch=store.get), RuleScoringEngine(), store, UpdateBus())
    assert service.get_score(LOW_WALLET)["creditScore"] == "Low"


# --- Transactions ---

def test_record_transaction_bumps_count_and_publishes(service, store, bus):
    seed_mock_wallets(store)
    events = []
    bus.subscribe_to_transaction_updates(LOW_WALLET, events.append)

    result = service.record_transaction(LOW_WALLET, {
        "hash": "0xFEED",
        "from": LOW_WALLET,
        "to": HIGH_WALLET,
        "value": "0.25",
        "blockNumber": "123",
        "timestamp": "2024-02-01T08:00:00Z",
    })

    assert result["created"] is True
    assert result["transaction"]["hash"] == "0xfeed"
    assert result["transaction"]["blockNumber"] == 123
    assert result["wallet"]["transactionCount"] == 4
    assert result["wallet"]["lastActivity"] == "2024-02-01T08:00:00.000Z"
    assert [e.data["hash"] for e in events] == ["0xfeed"]


def test_record_transaction_duplicate_is_not_counted(service, store, bus):
    seed_mock_wallets(store)
    events = []
    bus.subscribe_to_transaction_updates(LOW_WALLET, events.append)

    service.record_transaction(LOW_WALLET, {"hash": "0x01"})
    again = service.record_transaction(LOW_WALLET, {"hash": "0x01"})

    assert again["created"] is False
    assert store.get(LOW_WALLET).transaction_count == 4
    assert len(events) == 1


def test_record_transaction_keeps_newer_last_activity(service, store):
    seed_mock_wallets(store)
    service.record_transaction(LOW_WALLET, {"hash": "0x02", "timestamp": "2023-06-01T00:00:00Z"})
    assert store.get(LOW_WALLET).last_activity.year == 2024


@pytest.mark.parametrize("payload", [None, [], {}, {"from": LOW_WALLET}, {"hash": "0x03", "value": "lots"}])
def test_record_transaction_rejects_bad_payload(service, store, payload):
    with pytest.raises(ValidationError):
        service.record_transaction(LOW_WALLET, payload)
    assert store.list_transactions(LOW_WALLET) == []


# --- Maintenance ---

def test_update_wallet_balance(service, store):
    seed_mock_wallets(store)
    assert service.update_wallet_balance(LOW_WALLET, "1.25").balance == 1.25
    assert service.update_wallet_balance(NEW_WALLET, 1.0) is None
    with pytest.raises(ValidationError):
        service.update_wallet_balance(LOW_WALLET, -1)
    with pytest.raises(ValidationError):
        service.update_wallet_balance(LOW_WALLET, "abc")


def test_erase_wallet(service, store):
    service.get_score(NEW_WALLET)
    assert service.erase_wallet(NEW_WALLET) is True
    assert store.get(NEW_WALLET) is None
    assert service.erase_wallet(NEW_WALLET) is False


def test_status(service):
    service.subscribe_to_credit_score_updates(NEW_WALLET, lambda e: None)
    assert service.status() == {"initialized": True, "pipelineConnected": True, "subscriberCount": 1}


def test_start_auto_refresh_uses_service_interval(store, bus, provider):
    seed_mock_wallets(store)
    service = ScoringService(provider, RuleScoringEngine(), store, bus, refresh_interval=45)
    events = []
    service.subscribe_to_credit_score_updates(HIGH_WALLET, events.append)
    results = []
    refreshed = threading.Event()

    def on_result(result):
        results.append(result)
        refreshed.set()

    refresher = service.start_auto_refresh(HIGH_WALLET, on_result=on_result)
    try:
        assert refresher.interval == 45
        assert refresher.wallet == HIGH_WALLET.lower()
        assert refreshed.wait(5)
    finally:
        refresher.stop(timeout=5)

    assert results[0]["creditScore"] == "High"
    assert len(events) == 1
    assert refresher.is_running is False
