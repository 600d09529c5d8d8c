# credora/eligibility.py
"""
Off-chain mirror of the Loan contract.

EligibilityRule is the stateless approval predicate; LoanBook keeps the
per-borrower loan state the contract keeps (one active loan per address,
owner-set transaction counts, 5% flat interest, 30 day term) and publishes
``lending_update`` events. Revert reasons are the contract's strings.
"""
import logging
import uuid
from collections import namedtuple
from decimal import Decimal, InvalidOperation

from credora.exceptions import ContractRevert, ValidationError
from credora.models import (
    LendingRecord, LOAN_ACTIVE, LOAN_DEFAULTED, LOAN_REPAID, decimal_str, new_due_date,
)
from credora.utils.address import normalize_address
from credora.utils.timeutils import isoformat, utcnow

logger = logging.getLogger(__name__)

# Contract constants
INTEREST_RATE = Decimal("0.05")
LOAN_DURATION_DAYS = 30
MIN_BALANCE_THRESHOLD = 0.5
MIN_TX_COUNT = 10

# Contract revert strings
REASON_INSUFFICIENT_BALANCE = "Insufficient balance for loan approval"
REASON_NOT_ELIGIBLE = "Loan request denied - eligibility criteria not met"
REASON_NO_ACTIVE_LOAN = "No active loan found"
REASON_ACTIVE_LOAN_EXISTS = "Borrower already has an active loan"
REASON_INSUFFICIENT_REPAYMENT = "Insufficient repayment amount"
REASON_NOT_OWNER = "Ownable: caller is not the owner"
REASON_INVALID_AMOUNT = "Loan amount must be greater than 0"

EligibilityDecision = namedtuple("EligibilityDecision", ["approved", "reason"])


def to_decimal(value, field="amount"):
    try:
        d = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as e:
        raise ValidationError(f"Invalid {field}: {value!r}") from e
    if not d.is_finite():
        raise ValidationError(f"Invalid {field}: {value!r}")
    return d


class EligibilityRule:
    def __init__(self, min_balance=MIN_BALANCE_THRESHOLD, min_tx_count=MIN_TX_COUNT):
        self.min_balance = min_balance
        self.min_tx_count = min_tx_count

    def evaluate(self, balance, transaction_count, requested_amount=None):
        """
        Approve or deny a loan request. Balance is checked first, so a
        wallet failing both checks gets the balance reason.
        """
        if float(balance) <= self.min_balance:
            return EligibilityDecision(False, REASON_INSUFFICIENT_BALANCE)
        if int(transaction_count) < self.min_tx_count:
            return EligibilityDecision(False, REASON_NOT_ELIGIBLE)
        return EligibilityDecision(True, None)


class LoanBook:
    def __init__(self, store, bus=None, owner=None, rule=None,
                 interest_rate=INTEREST_RATE, duration_days=LOAN_DURATION_DAYS):
        self.store = store
        self.bus = bus
        self.owner = normalize_address(owner) if owner else None
        self.rule = rule or EligibilityRule()
        self.interest_rate = Decimal(str(interest_rate))
        self.duration_days = duration_days

    # --- Owner functions ---

    def _only_owner(self, caller):
        if self.owner is None or normalize_address(caller) != self.owner:
            raise ContractRevert(REASON_NOT_OWNER)

    def set_borrower_tx_count(self, caller, borrower, count):
        self._only_owner(caller)
        count = int(count)
        if count < 0:
            raise ValidationError("Transaction count must be non-negative")
        borrower = normalize_address(borrower)
        self.store.upsert(borrower, transaction_count=count)
        logger.info(f"Owner set transaction count of {borrower} to {count}")
        return count

    def get_borrower_tx_count(self, borrower):
        signals = self.store.get(normalize_address(borrower))
        return signals.transaction_count if signals else 0

    def sweep_defaults(self, caller, now=None):
        self._only_owner(caller)
        return self.mark_defaulted(now)

    # --- Borrower functions ---

    def request_loan(self, borrower, amount, balance=None):
        """
        Open a loan for ``borrower``. ``balance`` is the value attached to the
        request; without it the stored wallet balance is used.
        """
        borrower = normalize_address(borrower)
        amount = to_decimal(amount)
        if amount <= 0:
            raise ContractRevert(REASON_INVALID_AMOUNT)

        signals = self.store.get(borrower)
        if balance is None:
            balance = signals.balance if signals else 0.0
        else:
            balance = to_decimal(balance, "balance")
        tx_count = signals.transaction_count if signals else 0

        decision = self.rule.evaluate(balance, tx_count, amount)
        if not decision.approved:
            logger.info(f"Loan denied for {borrower}: {decision.reason}")
            raise ContractRevert(decision.reason)

        if self.store.get_active_loan(borrower) is not None:
            raise ContractRevert(REASON_ACTIVE_LOAN_EXISTS)

        now = utcnow()
        record = self.store.add_lending_record(LendingRecord(
            loan_id=f"loan-{uuid.uuid4().hex[:12]}",
            borrower=borrower,
            amount=amount,
            interest_rate=self.interest_rate,
            status=LOAN_ACTIVE,
            created_at=now,
            due_date=new_due_date(now, self.duration_days),
        ))
        if record is None:
            # lost a race with a concurrent request for the same borrower
            raise ContractRevert(REASON_ACTIVE_LOAN_EXISTS)
        logger.info(f"LoanApproved: {borrower} amount={decimal_str(amount)} due={isoformat(record.due_date)}")
        self._publish(borrower, record, "created")
        return record

    def repay_loan(self, caller, payment):
        """Repay the caller's own active loan in full (principal plus interest)."""
        caller = normalize_address(caller)
        payment = to_decimal(payment, "payment")

        loan = self.store.get_active_loan(caller)
        if loan is None:
            raise ContractRevert(REASON_NO_ACTIVE_LOAN)
        if payment < loan.amount_due:
            raise ContractRevert(REASON_INSUFFICIENT_REPAYMENT)

        record = self.store.update_lending_record(loan.loan_id, status=LOAN_REPAID, repaid_at=utcnow())
        logger.info(f"LoanRepaid: {caller} loan={record.loan_id} paid={decimal_str(payment)}")
        self._publish(caller, record, "repaid")
        return record

    def get_loan_info(self, borrower):
        loan = self.store.get_active_loan(normalize_address(borrower))
        if loan is None:
            return {"exists": False, "state": None}
        return {
            "exists": True,
            "loanId": loan.loan_id,
            "amount": decimal_str(loan.amount),
            "interestRate": decimal_str(loan.interest_rate),
            "amountDue": decimal_str(loan.amount_due),
            "state": loan.status,
            "createdAt": isoformat(loan.created_at),
            "dueDate": isoformat(loan.due_date),
        }

    def mark_defaulted(self, now=None):
        """Flip every overdue active loan to defaulted. Returns the updated records."""
        now = now or utcnow()
        defaulted = []
        for loan in self.store.list_lending_records(status=LOAN_ACTIVE):
            if not loan.is_overdue(now):
                continue
            record = self.store.update_lending_record(loan.loan_id, status=LOAN_DEFAULTED)
            logger.warning(f"Loan {record.loan_id} of {record.borrower} defaulted (due {isoformat(record.due_date)})")
            self._publish(record.borrower, record, "defaulted")
            defaulted.append(record)
        return defaulted

    def _publish(self, address, record, action):
        if self.bus is not None:
            self.bus.publish_lending_update(address, record, action)
