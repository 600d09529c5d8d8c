# credora/scoring_engine.py
"""
This module turns wallet signals into a credit score.
The engines are heuristic rule sets, not trained ML models.

All engines share one interface, ``classify(signals) -> ScoreResult``, and
are interchangeable:

- RuleScoringEngine: three-tier threshold classifier.
- WeightedScoringEngine: additive 0-1000 score plus a derived risk tier.
- RemoteScoringEngine: delegates to an HTTP inference backend.

Precondition: signals carry a non-negative balance and transaction count.
The engines do not check it.
"""
import logging

import requests

from credora.exceptions import UpstreamUnavailable
from credora.models import (
    CreditFactor, ScoreResult, TIERS, TIER_HIGH, TIER_LOW, TIER_MEDIUM,
    IMPACT_NEGATIVE, IMPACT_NEUTRAL, IMPACT_POSITIVE,
)

logger = logging.getLogger(__name__)

MODE_RULE = "rule"
MODE_WEIGHTED = "weighted"
MODE_REMOTE = "remote"

# Rule engine thresholds
RULE_HIGH_MIN_TX_COUNT = 10       # strictly greater than
RULE_HIGH_MIN_BALANCE = 0.5       # strictly greater than
RULE_MEDIUM_TX_RANGE = (5, 10)    # inclusive on both ends
RULE_CONFIDENCE = 1.0

# Weighted engine scale
BASE_SCORE = 500
MIN_SCORE = 0
MAX_SCORE = 1000
HIGH_TIER_MIN_SCORE = 700
MEDIUM_TIER_MIN_SCORE = 400
DEFAULT_CONFIDENCE = 0.85

# (threshold, adjustment) pairs, first strict match wins; last entry is the fallback
BALANCE_ADJUSTMENTS = ((1.0, 200), (0.5, 100), (None, -100))
TX_COUNT_ADJUSTMENTS = ((20, 150), (10, 75), (5, 25), (None, -50))

# Fixed per-family factor weights
BALANCE_WEIGHT = 0.4
TX_COUNT_WEIGHT = 0.3
RECENCY_WEIGHT = 0.3

FACTOR_BALANCE = "balance"
FACTOR_TX_COUNT = "transaction_count"
FACTOR_RECENCY = "activity_recency"
FACTOR_REPAYMENT = "repayment_rate"

FACTOR_DESCRIPTIONS = {
    FACTOR_BALANCE: {
        IMPACT_POSITIVE: "High wallet balance indicates financial stability",
        IMPACT_NEGATIVE: "Low wallet balance may indicate financial stress",
        IMPACT_NEUTRAL: "Moderate wallet balance",
    },
    FACTOR_TX_COUNT: {
        IMPACT_POSITIVE: "High transaction count shows active wallet usage",
        IMPACT_NEGATIVE: "Low transaction count may indicate inactivity",
        IMPACT_NEUTRAL: "Moderate transaction activity",
    },
    FACTOR_RECENCY: {
        IMPACT_POSITIVE: "Recent activity shows wallet is actively used",
        IMPACT_NEGATIVE: "No recent activity may indicate abandoned wallet",
        IMPACT_NEUTRAL: "Moderate activity recency",
    },
    FACTOR_REPAYMENT: {
        IMPACT_POSITIVE: "Good repayment history increases creditworthiness",
        IMPACT_NEGATIVE: "Poor repayment history reduces creditworthiness",
        IMPACT_NEUTRAL: "Mixed repayment history",
    },
}

INPUT_SCHEMA = {
    "walletAddress": "string",
    "balance": "number",
    "transactionCount": "number",
    "lastActivity": "string",
}

OUTPUT_SCHEMA = {
    "creditScore": "number",  # 0-1000, or the tier name in rule mode
    "riskLevel": "string",    # 'Low', 'Medium', 'High'
    "confidence": "number",   # 0-1
    "factors": "array",
}


def describe_factor(name, impact):
    return FACTOR_DESCRIPTIONS.get(name, {}).get(impact, "Factor impact on credit score")


def make_factor(name, impact, weight):
    return CreditFactor(name=name, impact=impact, weight=weight, description=describe_factor(name, impact))


def _impact_of(adjustment):
    if adjustment > 0:
        return IMPACT_POSITIVE
    if adjustment < 0:
        return IMPACT_NEGATIVE
    return IMPACT_NEUTRAL


def _pick_adjustment(value, table):
    for threshold, adjustment in table:
        if threshold is None or value > threshold:
            return adjustment
    return 0


def clamp_score(score):
    if score > MAX_SCORE:
        return MAX_SCORE
    if score < MIN_SCORE:
        return MIN_SCORE
    return score


def risk_level_for(score):
    if score >= HIGH_TIER_MIN_SCORE:
        return TIER_HIGH
    if score >= MEDIUM_TIER_MIN_SCORE:
        return TIER_MEDIUM
    return TIER_LOW


class RuleScoringEngine:
    mode = MODE_RULE

    def __init__(self, model_version="rules-1.0.0"):
        self.model_version = model_version

    def classify(self, signals):
        balance = float(signals.balance)
        tx_count = int(signals.transaction_count)
        low, high = RULE_MEDIUM_TX_RANGE

        # Order matters: count 10 with a large balance still lands in Medium
        if tx_count > RULE_HIGH_MIN_TX_COUNT and balance > RULE_HIGH_MIN_BALANCE:
            tier = TIER_HIGH
            factors = [
                make_factor(FACTOR_TX_COUNT, IMPACT_POSITIVE, TX_COUNT_WEIGHT),
                make_factor(FACTOR_BALANCE, IMPACT_POSITIVE, BALANCE_WEIGHT),
            ]
        elif low <= tx_count <= high:
            tier = TIER_MEDIUM
            factors = [make_factor(FACTOR_TX_COUNT, IMPACT_NEUTRAL, TX_COUNT_WEIGHT)]
        else:
            tier = TIER_LOW
            factors = [make_factor(
                FACTOR_TX_COUNT,
                IMPACT_NEGATIVE if tx_count < low else IMPACT_POSITIVE,
                TX_COUNT_WEIGHT,
            )]
            if balance <= RULE_HIGH_MIN_BALANCE:
                factors.append(make_factor(FACTOR_BALANCE, IMPACT_NEGATIVE, BALANCE_WEIGHT))

        logger.debug(f"Rule score for {signals.address}: {tier} (txCount={tx_count}, balance={balance} ETH)")
        return ScoreResult(
            tier=tier,
            confidence=RULE_CONFIDENCE,
            factors=factors,
            model_version=self.model_version,
            mode=self.mode,
        )


class WeightedScoringEngine:
    mode = MODE_WEIGHTED

    def __init__(self, model_version="1.0.0", confidence=DEFAULT_CONFIDENCE):
        self.model_version = model_version
        self.confidence = confidence

    def calculate_score(self, balance, transaction_count):
        """
        Calculates the raw 0-1000 score and the adjustments applied.

        Returns:
            tuple: (clamped score, balance adjustment, transaction count adjustment)
        """
        balance_adj = _pick_adjustment(float(balance), BALANCE_ADJUSTMENTS)
        tx_adj = _pick_adjustment(int(transaction_count), TX_COUNT_ADJUSTMENTS)
        return clamp_score(BASE_SCORE + balance_adj + tx_adj), balance_adj, tx_adj

    def classify(self, signals):
        score, balance_adj, tx_adj = self.calculate_score(signals.balance, signals.transaction_count)
        # TODO: derive the recency impact from last_activity instead of a fixed positive
        factors = [
            make_factor(FACTOR_BALANCE, _impact_of(balance_adj), BALANCE_WEIGHT),
            make_factor(FACTOR_TX_COUNT, _impact_of(tx_adj), TX_COUNT_WEIGHT),
            make_factor(FACTOR_RECENCY, IMPACT_POSITIVE, RECENCY_WEIGHT),
        ]
        tier = risk_level_for(score)
        logger.debug(f"Weighted score for {signals.address}: {score} ({tier})")
        return ScoreResult(
            tier=tier,
            numeric_score=score,
            confidence=self.confidence,
            factors=factors,
            model_version=self.model_version,
            mode=self.mode,
        )


class RemoteScoringEngine:
    """
    Posts signals to ``{api_url}/predict/credit-score`` and maps the reply.
    Transport errors, non-200 replies and malformed bodies raise
    UpstreamUnavailable. No retries.
    """
    mode = MODE_REMOTE

    def __init__(self, api_url, model_version="1.0.0", timeout=5, session=None):
        self.predict_url = f"{api_url.rstrip('/')}/predict/credit-score"
        self.model_version = model_version
        self.timeout = timeout
        self.http = session or requests.Session()

    def classify(self, signals):
        payload = {
            "walletAddress": signals.address,
            "balance": signals.balance,
            "transactionCount": signals.transaction_count,
            "lastActivity": signals.last_activity.isoformat() if signals.last_activity else None,
        }
        try:
            r = self.http.post(self.predict_url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"Inference backend unreachable: {e}")
            raise UpstreamUnavailable(f"Inference backend unreachable: {e}") from e

        if r.status_code != 200:
            logger.error(f"Inference backend returned HTTP {r.status_code}")
            raise UpstreamUnavailable(f"Inference backend returned HTTP {r.status_code}")

        try:
            body = r.json()
            score = clamp_score(int(round(float(body["creditScore"]))))
            confidence = min(1.0, max(0.0, float(body.get("confidence", DEFAULT_CONFIDENCE))))
            factors = [self._parse_factor(f) for f in body.get("factors") or []]
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Malformed inference response: {e}")
            raise UpstreamUnavailable("Malformed inference response") from e

        reported = body.get("riskLevel")
        tier = risk_level_for(score)
        if reported in TIERS and reported != tier:
            logger.warning(f"Inference backend reported {reported} for score {score}; using {tier}")

        return ScoreResult(
            tier=tier,
            numeric_score=score,
            confidence=confidence,
            factors=factors,
            model_version=body.get("modelVersion") or self.model_version,
            mode=self.mode,
        )

    @staticmethod
    def _parse_factor(raw):
        name = raw.get("name") or raw["factor"]
        impact = raw.get("impact", IMPACT_NEUTRAL)
        if impact not in (IMPACT_POSITIVE, IMPACT_NEGATIVE, IMPACT_NEUTRAL):
            impact = IMPACT_NEUTRAL
        weight = min(1.0, max(0.0, float(raw.get("weight", 0.0))))
        return CreditFactor(
            name=name,
            impact=impact,
            weight=weight,
            description=raw.get("description") or describe_factor(name, impact),
        )


def build_scoring_engine(config):
    """Pick the engine named by ``SCORING_MODE`` in a Flask config or Config class."""
    get = config.get if isinstance(config, dict) else lambda k, d=None: getattr(config, k, d)
    mode = (get("SCORING_MODE", MODE_RULE) or MODE_RULE).lower()
    version = get("MODEL_VERSION", "1.0.0")
    if mode == MODE_RULE:
        return RuleScoringEngine(model_version=f"rules-{version}")
    if mode == MODE_WEIGHTED:
        return WeightedScoringEngine(model_version=version, confidence=get("WEIGHTED_CONFIDENCE", DEFAULT_CONFIDENCE))
    if mode == MODE_REMOTE:
        return RemoteScoringEngine(
            get("ML_API_URL"),
            model_version=version,
            timeout=get("REQUEST_TIMEOUT_SECONDS", 5),
        )
    raise ValueError(f"Unknown SCORING_MODE: {mode}")


def model_info(engine, model_id="credora-credit-scoring-v1"):
    return {
        "modelId": model_id,
        "version": engine.model_version,
        "mode": engine.mode,
        "inputSchema": INPUT_SCHEMA,
        "outputSchema": OUTPUT_SCHEMA,
    }
