# credora/database/crud.py
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
import logging

from credora.database.models_db import Wallet, WalletTransaction, LendingRecordRow
from credora.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

WALLET_FIELDS = ("balance", "transaction_count", "last_activity", "last_score", "created_at")


def _normalize_address(addr):
    """Normalize to a lowercase 0x-prefixed hex string for stable DB keys."""
    if not addr:
        return None
    a = str(addr).strip()
    if not a:
        return None
    if not a.startswith("0x"):
        a = "0x" + a
    return a.lower()


def _rollback(session):
    try:
        session.rollback()
    except SQLAlchemyError:
        logger.exception("Rollback failed")


def get_wallet_by_address(session, address):
    """
    Fetches a single wallet by its (normalized) address.
    """
    norm_addr = _normalize_address(address)
    if not norm_addr:
        return None
    return session.query(Wallet).filter(Wallet.address == norm_addr).one_or_none()


def upsert_wallet(session, address, **fields):
    """
    Merge ``fields`` into the wallet row for ``address``, creating it if
    missing, and stamp ``updated_at``. Last write wins.
    Returns the Wallet row.
    """
    norm_addr = _normalize_address(address)
    unknown = set(fields) - set(WALLET_FIELDS)
    if unknown:
        raise ValueError(f"Unknown wallet fields: {sorted(unknown)}")

    try:
        wallet = get_wallet_by_address(session, norm_addr)
        now = utcnow()
        if wallet is None:
            wallet = Wallet(
                address=norm_addr,
                balance=0.0,
                transaction_count=0,
                created_at=now,
                last_activity=now,
            )
            session.add(wallet)
        for key, value in fields.items():
            setattr(wallet, key, value)
        wallet.updated_at = now
        session.commit()
        return wallet
    except SQLAlchemyError as e:
        logger.exception("SQLAlchemy error in upsert_wallet: %s", e)
        _rollback(session)
        raise


def insert_wallet_if_absent(session, address, **fields):
    """
    Insert a wallet row unless one already exists.

    Returns ``(row, created)``. When a concurrent writer committed the same
    address first, the unique constraint fires and the winner's row is
    returned with ``created=False``.
    """
    norm_addr = _normalize_address(address)
    existing = get_wallet_by_address(session, norm_addr)
    if existing is not None:
        return existing, False

    now = utcnow()
    values = {"created_at": now, "last_activity": now, **fields}
    wallet = Wallet(address=norm_addr, updated_at=now, **values)
    session.add(wallet)
    try:
        session.commit()
        return wallet, True
    except IntegrityError:
        _rollback(session)
        logger.info("Wallet %s was created concurrently; using stored record", norm_addr)
        winner = get_wallet_by_address(session, norm_addr)
        if winner is None:
            raise
        return winner, False
    except SQLAlchemyError as e:
        logger.exception("SQLAlchemy error in insert_wallet_if_absent: %s", e)
        _rollback(session)
        raise


def delete_wallet(session, address):
    """
    Remove a wallet record and its transaction log (privacy erasure).
    Lending records are kept. Returns True if a wallet row was removed.
    """
    norm_addr = _normalize_address(address)
    try:
        wallet = get_wallet_by_address(session, norm_addr)
        if wallet is None:
            return False
        session.query(WalletTransaction).filter(WalletTransaction.wallet == norm_addr).delete()
        session.delete(wallet)
        session.commit()
        logger.info("Erased wallet record %s", norm_addr)
        return True
    except SQLAlchemyError as e:
        logger.exception("SQLAlchemy error in delete_wallet: %s", e)
        _rollback(session)
        raise


def create_transaction(session, wallet, data):
    """
    Insert a transaction for ``wallet``.
    Returns ``(row, created)``; a hash already recorded for the wallet is
    not inserted twice.
    """
    norm_wallet = _normalize_address(wallet)
    tx_hash = data.get("hash") or data.get("transaction_hash") or data.get("tx_hash")
    if not tx_hash:
        raise ValueError("Missing transaction hash")
    tx_hash = tx_hash if tx_hash.startswith("0x") else "0x" + tx_hash

    existing = session.query(WalletTransaction).filter(
        WalletTransaction.wallet == norm_wallet,
        WalletTransaction.tx_hash == tx_hash.lower(),
    ).one_or_none()
    if existing is not None:
        return existing, False

    row = WalletTransaction(
        wallet=norm_wallet,
        tx_hash=tx_hash.lower(),
        from_address=_normalize_address(data.get("from")),
        to_address=_normalize_address(data.get("to")),
        value=data.get("value"),
        block_number=data.get("block_number"),
        timestamp=data.get("timestamp") or utcnow(),
        gas_used=data.get("gas_used"),
        gas_price=data.get("gas_price"),
    )
    try:
        session.add(row)
        session.commit()
        return row, True
    except SQLAlchemyError as e:
        logger.exception("SQLAlchemy error in create_transaction: %s", e)
        _rollback(session)
        raise


def list_transactions(session, wallet, limit=100):
    norm_wallet = _normalize_address(wallet)
    return (
        session.query(WalletTransaction)
        .filter(WalletTransaction.wallet == norm_wallet)
        .order_by(WalletTransaction.timestamp.desc(), WalletTransaction.id.desc())
        .limit(limit)
        .all()
    )


def create_lending_record(session, values):
    """
    Insert a lending record. Returns ``(row, created)``; ``created`` is False
    and ``row`` None when the borrower already holds an active loan, which
    the partial unique index enforces even across concurrent writers.
    """
    borrower = _normalize_address(values["borrower"])
    row = LendingRecordRow(**{**values, "borrower": borrower})
    try:
        session.add(row)
        session.commit()
        return row, True
    except IntegrityError:
        _rollback(session)
        if get_active_loan(session, borrower) is None:
            raise
        logger.info("Borrower %s already has an active loan; insert rejected", borrower)
        return None, False
    except SQLAlchemyError as e:
        logger.exception("SQLAlchemy error in create_lending_record: %s", e)
        _rollback(session)
        raise


def update_lending_record(session, loan_id, **fields):
    """
    Update a lending record in place. Returns the row or None if the loan
    id is unknown. Lending records are never deleted.
    """
    try:
        row = session.query(LendingRecordRow).filter(LendingRecordRow.loan_id == loan_id).one_or_none()
        if row is None:
            logger.warning(f"Could not find loan {loan_id} to update.")
            return None
        for key, value in fields.items():
            setattr(row, key, value)
        session.commit()
        return row
    except SQLAlchemyError as e:
        logger.exception("SQLAlchemy error in update_lending_record: %s", e)
        _rollback(session)
        raise


def get_active_loan(session, borrower, status="active"):
    norm_addr = _normalize_address(borrower)
    return (
        session.query(LendingRecordRow)
        .filter(LendingRecordRow.borrower == norm_addr, LendingRecordRow.status == status)
        .order_by(LendingRecordRow.id.desc())
        .first()
    )


def list_lending_records(session, borrower=None, status=None):
    q = session.query(LendingRecordRow)
    if borrower:
        q = q.filter(LendingRecordRow.borrower == _normalize_address(borrower))
    if status:
        q = q.filter(LendingRecordRow.status == status)
    return q.order_by(LendingRecordRow.id.asc()).all()
