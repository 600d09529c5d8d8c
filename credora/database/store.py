# credora/database/store.py
"""
Wallet record store: the score cache the scoring pipeline reads and writes.

Keyed by the lowercase wallet address. Holds the wallet's signals, the last
computed score, its transaction log and its lending records. Writes are
last-write-wins; there is no optimistic locking around read-modify-write.
"""
import logging
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError

from credora.database import crud
from credora.exceptions import PersistenceFailure
from credora.models import LendingRecord, TransactionRecord, WalletSignals

logger = logging.getLogger(__name__)


def wallet_to_signals(row):
    if row is None:
        return None
    return WalletSignals(
        address=row.address,
        balance=float(row.balance or 0.0),
        transaction_count=int(row.transaction_count or 0),
        last_activity=row.last_activity,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_score=row.last_score,
    )


def row_to_lending_record(row):
    if row is None:
        return None
    return LendingRecord(
        loan_id=row.loan_id,
        borrower=row.borrower,
        amount=row.amount,
        interest_rate=row.interest_rate,
        status=row.status,
        created_at=row.created_at,
        due_date=row.due_date,
        repaid_at=row.repaid_at,
    )


def row_to_transaction(row):
    return TransactionRecord(
        tx_hash=row.tx_hash,
        wallet=row.wallet,
        from_address=row.from_address,
        to_address=row.to_address,
        value=row.value or 0.0,
        block_number=row.block_number,
        timestamp=row.timestamp,
        gas_used=row.gas_used,
        gas_price=row.gas_price,
    )


class WalletStore:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    @contextmanager
    def _session(self, operation):
        session = self.session_factory()
        try:
            yield session
        except SQLAlchemyError as e:
            logger.error(f"Store {operation} failed: {e}")
            raise PersistenceFailure(f"Wallet store {operation} failed") from e
        finally:
            session.close()

    # --- Wallet signals ---

    def get(self, address):
        with self._session("read") as session:
            return wallet_to_signals(crud.get_wallet_by_address(session, address))

    def upsert(self, address, **partial):
        """Merge ``partial`` into the record for ``address`` and return the result."""
        with self._session("write") as session:
            return wallet_to_signals(crud.upsert_wallet(session, address, **partial))

    def create_if_absent(self, signals):
        """
        Persist freshly built signals unless the address is already stored.
        Always returns what is actually persisted.
        """
        with self._session("write") as session:
            row, created = crud.insert_wallet_if_absent(
                session,
                signals.address,
                balance=signals.balance,
                transaction_count=signals.transaction_count,
                last_activity=signals.last_activity,
                created_at=signals.created_at,
            )
            if created:
                logger.info(f"Stored new wallet record {signals.address}")
            return wallet_to_signals(row)

    def delete(self, address):
        with self._session("delete") as session:
            return crud.delete_wallet(session, address)

    # --- Transactions ---

    def add_transaction(self, address, data):
        with self._session("write") as session:
            row, created = crud.create_transaction(session, address, data)
            return row_to_transaction(row), created

    def list_transactions(self, address, limit=100):
        with self._session("read") as session:
            return [row_to_transaction(r) for r in crud.list_transactions(session, address, limit)]

    # --- Lending ---

    def add_lending_record(self, record):
        """Persist a new loan. Returns None if the borrower already has an active one."""
        with self._session("write") as session:
            row, _ = crud.create_lending_record(session, {
                "loan_id": record.loan_id,
                "borrower": record.borrower,
                "amount": record.amount,
                "interest_rate": record.interest_rate,
                "status": record.status,
                "created_at": record.created_at,
                "due_date": record.due_date,
                "repaid_at": record.repaid_at,
            })
            return row_to_lending_record(row)

    def update_lending_record(self, loan_id, **fields):
        with self._session("write") as session:
            return row_to_lending_record(crud.update_lending_record(session, loan_id, **fields))

    def get_active_loan(self, borrower):
        with self._session("read") as session:
            return row_to_lending_record(crud.get_active_loan(session, borrower))

    def list_lending_records(self, borrower=None, status=None):
        with self._session("read") as session:
            return [row_to_lending_record(r) for r in crud.list_lending_records(session, borrower, status)]
