# credora/database/models_db.py
import datetime
from decimal import Decimal

from sqlalchemy import (
    Column, Integer, String, Float, DateTime, JSON, BigInteger, Index, UniqueConstraint, text
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator

Base = declarative_base()


class DecimalText(TypeDecorator):
    """Exact decimal stored as plain text, read back as Decimal."""
    impl = String(80)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return format(Decimal(str(value)), "f")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


def _utcnow():
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class Wallet(Base):
    __tablename__ = "wallets"
    id = Column(Integer, primary_key=True, index=True)
    address = Column(String(42), unique=True, index=True, nullable=False)
    balance = Column(Float, nullable=False, default=0.0)
    transaction_count = Column(Integer, nullable=False, default=0)
    last_activity = Column(DateTime, default=_utcnow)
    last_score = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow)


class WalletTransaction(Base):
    __tablename__ = "wallet_transactions"
    __table_args__ = (UniqueConstraint("wallet", "tx_hash", name="uq_wallet_tx"),)
    id = Column(Integer, primary_key=True, index=True)
    wallet = Column(String(42), index=True, nullable=False)
    tx_hash = Column(String(66), nullable=False)
    from_address = Column(String(42), nullable=True)
    to_address = Column(String(42), nullable=True)
    value = Column(Float, nullable=True)
    block_number = Column(BigInteger, nullable=True)
    timestamp = Column(DateTime, default=_utcnow)
    gas_used = Column(BigInteger, nullable=True)
    gas_price = Column(BigInteger, nullable=True)


class LendingRecordRow(Base):
    __tablename__ = "lending_records"
    # at most one active loan per borrower
    __table_args__ = (
        Index(
            "uq_lending_active_borrower",
            "borrower",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )
    id = Column(Integer, primary_key=True, index=True)
    loan_id = Column(String(64), unique=True, index=True, nullable=False)
    borrower = Column(String(42), index=True, nullable=False)
    amount = Column(DecimalText, nullable=False)
    interest_rate = Column(DecimalText, nullable=False)
    status = Column(String(16), index=True, nullable=False)
    created_at = Column(DateTime, default=_utcnow)
    due_date = Column(DateTime, nullable=False)
    repaid_at = Column(DateTime, nullable=True)
