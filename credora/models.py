# credora/models.py
"""
Plain data carried between the provider, the scoring engines, the store and
the update bus. The ORM rows live in credora.database.models_db; these are
what the services hand to each other and serialize to JSON.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from credora.utils.timeutils import isoformat, utcnow

TIER_LOW = "Low"
TIER_MEDIUM = "Medium"
TIER_HIGH = "High"
TIERS = (TIER_LOW, TIER_MEDIUM, TIER_HIGH)

IMPACT_POSITIVE = "positive"
IMPACT_NEGATIVE = "negative"
IMPACT_NEUTRAL = "neutral"

LOAN_ACTIVE = "active"
LOAN_REPAID = "repaid"
LOAN_DEFAULTED = "defaulted"


def decimal_str(value):
    """Plain decimal text without exponent or trailing zeros."""
    return format(Decimal(str(value)).normalize(), "f")


def format_eth(value):
    """Human-readable balance string, e.g. '2.5 ETH'."""
    return f"{decimal_str(value)} ETH"


@dataclass
class WalletSignals:
    address: str
    balance: float
    transaction_count: int
    last_activity: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_score: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = utcnow()
        if self.last_activity is None:
            self.last_activity = self.created_at

    def to_dict(self):
        return {
            "address": self.address,
            "balance": self.balance,
            "transactionCount": self.transaction_count,
            "lastActivity": isoformat(self.last_activity),
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
            "lastScore": self.last_score,
        }


@dataclass
class CreditFactor:
    name: str
    impact: str
    weight: float
    description: str

    def to_dict(self):
        return {
            "name": self.name,
            "impact": self.impact,
            "weight": self.weight,
            "description": self.description,
        }


@dataclass
class ScoreResult:
    tier: str
    confidence: float
    factors: List[CreditFactor]
    model_version: str
    mode: str
    numeric_score: Optional[int] = None
    computed_at: datetime = field(default_factory=utcnow)

    @property
    def risk_level(self):
        return self.tier

    @property
    def credit_score(self):
        """What the API reports as ``creditScore``: the number if there is one, else the tier."""
        return self.numeric_score if self.numeric_score is not None else self.tier

    def to_dict(self):
        return {
            "creditScore": self.credit_score,
            "riskLevel": self.tier,
            "confidence": self.confidence,
            "factors": [f.to_dict() for f in self.factors],
            "modelVersion": self.model_version,
            "mode": self.mode,
            "computedAt": isoformat(self.computed_at),
        }


@dataclass
class LendingRecord:
    loan_id: str
    borrower: str
    amount: Decimal
    interest_rate: Decimal
    status: str
    created_at: datetime
    due_date: datetime
    repaid_at: Optional[datetime] = None

    @property
    def amount_due(self):
        return self.amount + self.amount * self.interest_rate

    def is_overdue(self, now=None):
        return self.status == LOAN_ACTIVE and (now or utcnow()) > self.due_date

    def to_dict(self):
        return {
            "loanId": self.loan_id,
            "borrower": self.borrower,
            "amount": decimal_str(self.amount),
            "interestRate": decimal_str(self.interest_rate),
            "amountDue": decimal_str(self.amount_due),
            "status": self.status,
            "createdAt": isoformat(self.created_at),
            "dueDate": isoformat(self.due_date),
            "repaidAt": isoformat(self.repaid_at),
        }


def new_due_date(created_at, duration_days):
    return created_at + timedelta(days=duration_days)


@dataclass
class TransactionRecord:
    tx_hash: str
    wallet: str
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    value: float = 0.0
    block_number: Optional[int] = None
    timestamp: Optional[datetime] = None
    gas_used: Optional[int] = None
    gas_price: Optional[int] = None

    def to_dict(self):
        return {
            "hash": self.tx_hash,
            "wallet": self.wallet,
            "from": self.from_address,
            "to": self.to_address,
            "value": self.value,
            "blockNumber": self.block_number,
            "timestamp": isoformat(self.timestamp),
            "gasUsed": self.gas_used,
            "gasPrice": self.gas_price,
        }


@dataclass
class PipelineEvent:
    type: str
    wallet: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=utcnow)
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self):
        payload = {
            "type": self.type,
            "wallet": self.wallet,
            "timestamp": isoformat(self.timestamp),
            "data": self.data,
        }
        if self.metadata:
            payload["metadata"] = self.metadata
        return payload
