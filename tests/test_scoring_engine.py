"""
Tests for the scoring engines: rule tiers, weighted 0-1000 score and the
remote inference adapter (requests mocked).
"""
from unittest.mock import MagicMock

import pytest
import requests

from credora.config import Config
from credora.exceptions import UpstreamUnavailable
from credora.models import WalletSignals
from credora.scoring_engine import (
    FACTOR_BALANCE, FACTOR_RECENCY, FACTOR_TX_COUNT, MAX_SCORE, MIN_SCORE,
    RemoteScoringEngine, RuleScoringEngine, WeightedScoringEngine,
    build_scoring_engine, model_info,
)

WALLET = "0x742d35cc6634c0532925a3b8d4c9db96c4b4d8b6"


def signals(balance, tx_count):
    return WalletSignals(address=WALLET, balance=balance, transaction_count=tx_count)


# --- Rule engine ---

@pytest.mark.parametrize("tx_count, balance, tier", [
    (25, 2.5, "High"),
    (11, 0.51, "High"),
    (10, 0.6, "Medium"),
    (10, 100.0, "Medium"),
    (5, 0.0, "Medium"),
    (8, 0.8, "Medium"),
    (4, 5.0, "Low"),
    (3, 0.1, "Low"),
    (11, 0.5, "Low"),
    (0, 0.0, "Low"),
])
def test_rule_tiers(tx_count, balance, tier):
    result = RuleScoringEngine().classify(signals(balance, tx_count))
    assert result.tier == tier
    assert result.credit_score == tier
    assert result.numeric_score is None
    assert result.confidence == 1.0
    assert result.mode == "rule"


def test_rule_high_factors_are_positive():
    result = RuleScoringEngine().classify(signals(2.5, 25))
    impacts = {f.name: f.impact for f in result.factors}
    assert impacts == {FACTOR_TX_COUNT: "positive", FACTOR_BALANCE: "positive"}


def test_rule_low_factors_explain_shortfall():
    result = RuleScoringEngine().classify(signals(0.1, 3))
    impacts = {f.name: f.impact for f in result.factors}
    assert impacts == {FACTOR_TX_COUNT: "negative", FACTOR_BALANCE: "negative"}

    # Busy wallet with no balance: count is not the problem
    result = RuleScoringEngine().classify(signals(0.2, 15))
    impacts = {f.name: f.impact for f in result.factors}
    assert impacts == {FACTOR_TX_COUNT: "positive", FACTOR_BALANCE: "negative"}


def test_rule_medium_factor_is_neutral():
    result = RuleScoringEngine().classify(signals(0.8, 8))
    assert [(f.name, f.impact) for f in result.factors] == [(FACTOR_TX_COUNT, "neutral")]


# --- Weighted engine ---

def test_weighted_high_wallet():
    result = WeightedScoringEngine().classify(signals(2.5, 25))
    assert result.numeric_score == 850
    assert result.credit_score == 850
    assert result.tier == "High"
    assert result.confidence == 0.85
    assert [f.name for f in result.factors] == [FACTOR_BALANCE, FACTOR_TX_COUNT, FACTOR_RECENCY]
    assert all(f.impact == "positive" for f in result.factors)


def test_weighted_low_wallet():
    result = WeightedScoringEngine().classify(signals(0.1, 3))
    assert result.numeric_score == 350
    assert result.tier == "Low"
    impacts = {f.name: f.impact for f in result.factors}
    assert impacts[FACTOR_BALANCE] == "negative"
    assert impacts[FACTOR_TX_COUNT] == "negative"


def test_weighted_medium_wallet():
    result = WeightedScoringEngine().classify(signals(0.8, 8))
    assert result.numeric_score == 625
    assert result.tier == "Medium"


def test_weighted_thresholds_are_strict():
    engine = WeightedScoringEngine()
    # balance exactly 1.0 only earns the 0.5 bracket, count exactly 20 the 10 bracket
    score, balance_adj, tx_adj = engine.calculate_score(1.0, 20)
    assert (balance_adj, tx_adj) == (100, 75)
    assert score == 675
    score, balance_adj, tx_adj = engine.calculate_score(0.5, 5)
    assert (balance_adj, tx_adj) == (-100, -50)
    assert score == 350


@pytest.mark.parametrize("balance", [0.0, 0.3, 0.5, 0.7, 1.0, 3.0, 1e9])
@pytest.mark.parametrize("tx_count", [0, 5, 6, 10, 11, 20, 21, 10**6])
def test_weighted_score_stays_in_range(balance, tx_count):
    result = WeightedScoringEngine().classify(signals(balance, tx_count))
    assert MIN_SCORE <= result.numeric_score <= MAX_SCORE
    expected = "High" if result.numeric_score >= 700 else "Medium" if result.numeric_score >= 400 else "Low"
    assert result.tier == expected


def test_weighted_confidence_is_configurable():
    result = WeightedScoringEngine(confidence=0.6).classify(signals(1.5, 12))
    assert result.confidence == 0.6


# --- Remote engine ---

def _response(status_code=200, body=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = body
    return resp


def test_remote_engine_maps_reply():
    session = MagicMock()
    session.post.return_value = _response(body={
        "creditScore": 1200,
        "riskLevel": "High",
        "confidence": 0.9,
        "factors": [{"name": "balance", "impact": "positive", "weight": 0.4}],
        "modelVersion": "remote-2.0",
    })
    engine = RemoteScoringEngine("http://ml.local/", session=session)

    result = engine.classify(signals(2.5, 25))

    url = session.post.call_args.args[0]
    assert url == "http://ml.local/predict/credit-score"
    payload = session.post.call_args.kwargs["json"]
    assert payload["walletAddress"] == WALLET
    assert payload["transactionCount"] == 25
    assert result.numeric_score == MAX_SCORE
    assert result.tier == "High"
    assert result.confidence == 0.9
    assert result.model_version == "remote-2.0"
    assert result.factors[0].description


def test_remote_engine_rederives_tier_from_score():
    session = MagicMock()
    session.post.return_value = _response(body={"creditScore": 420, "riskLevel": "High"})
    result = RemoteScoringEngine("http://ml.local", session=session).classify(signals(1, 1))
    assert result.tier == "Medium"
    assert result.factors == []


def test_remote_engine_http_error():
    session = MagicMock()
    session.post.return_value = _response(status_code=503)
    with pytest.raises(UpstreamUnavailable):
        RemoteScoringEngine("http://ml.local", session=session).classify(signals(1, 1))


def test_remote_engine_transport_error():
    session = MagicMock()
    session.post.side_effect = requests.ConnectionError("refused")
    with pytest.raises(UpstreamUnavailable):
        RemoteScoringEngine("http://ml.local", session=session).classify(signals(1, 1))


def test_remote_engine_malformed_reply():
    session = MagicMock()
    session.post.return_value = _response(body={"riskLevel": "High"})
    with pytest.raises(UpstreamUnavailable):
        RemoteScoringEngine("http://ml.local", session=session).classify(signals(1, 1))


# --- Factory ---

def test_build_scoring_engine_modes():
    assert build_scoring_engine({"SCORING_MODE": "rule"}).mode == "rule"
    assert build_scoring_engine({"SCORING_MODE": "WEIGHTED", "WEIGHTED_CONFIDENCE": 0.7}).confidence == 0.7
    remote = build_scoring_engine({"SCORING_MODE": "remote", "ML_API_URL": "http://ml.local"})
    assert remote.predict_url == "http://ml.local/predict/credit-score"
    assert build_scoring_engine(Config).mode == Config.SCORING_MODE
    with pytest.raises(ValueError):
        build_scoring_engine({"SCORING_MODE": "xgboost"})


def test_model_info():
    info = model_info(WeightedScoringEngine(model_version="1.0.0"), "credora-test")
    assert info["modelId"] == "credora-test"
    assert info["version"] == "1.0.0"
    assert info["mode"] == "weighted"
    assert set(info["inputSchema"]) == {"walletAddress", "balance", "transactionCount", "lastActivity"}
