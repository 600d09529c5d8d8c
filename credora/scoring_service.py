# credora/scoring_service.py
import logging

from credora.exceptions import ValidationError
from credora.models import format_eth
from credora.scheduler import ScoreRefresher
from credora.utils.address import normalize_address, to_checksum
from credora.utils.timeutils import isoformat, to_dt, utcnow

logger = logging.getLogger(__name__)


class ScoringService:
    """
    Public entry point of the scoring pipeline.

    ``get_score`` runs validate -> fetch signals -> classify -> persist ->
    publish, in that order. A failure before the publish step aborts the
    request with nothing published, so subscribers never see a score the
    store does not hold. Calls run to completion once started.
    """

    def __init__(self, provider, engine, store, bus, refresh_interval=30):
        self.provider = provider
        self.engine = engine
        self.store = store
        self.bus = bus
        self.refresh_interval = refresh_interval
        self.initialized = False

    def initialize(self):
        if self.initialized:
            return True
        if not self.bus.initialize():
            logger.warning("Update bus failed to connect, continuing without real-time updates")
        self.initialized = True
        logger.info("Credit score service initialized")
        return True

    def get_score(self, wallet):
        address = normalize_address(wallet)
        logger.info(f"Processing credit score request for wallet: {address}")

        signals = self.provider.fetch(address)
        result = self.engine.classify(signals)
        self.store.upsert(address, last_score=result.to_dict())
        self.bus.publish_credit_score_update(address, result)

        logger.info(f"Credit score calculated for {address}: {result.credit_score} ({result.tier})")
        return {
            "wallet": wallet.strip(),
            "address": address,
            "checksumAddress": to_checksum(address),
            "creditScore": result.credit_score,
            "riskLevel": result.tier,
            "confidence": result.confidence,
            "factors": [f.to_dict() for f in result.factors],
            "walletData": {
                "balance": format_eth(signals.balance),
                "transactionCount": signals.transaction_count,
                "lastActivity": isoformat(signals.last_activity),
            },
            "timestamp": isoformat(result.computed_at),
            "modelVersion": result.model_version,
            "scoringMode": result.mode,
        }

    def record_transaction(self, wallet, transaction):
        """
        Add an observed transaction to the wallet's log, bump its transaction
        count and last activity, then publish a ``transaction_update``.
        A hash already on record is not counted twice and publishes nothing.
        """
        address = normalize_address(wallet)
        if not isinstance(transaction, dict):
            raise ValidationError("Transaction payload must be an object")
        if not (transaction.get("hash") or transaction.get("transaction_hash")):
            raise ValidationError("Transaction hash is required")

        try:
            data = {
                "hash": str(transaction.get("hash") or transaction.get("transaction_hash")),
                "from": transaction.get("from") or transaction.get("from_address"),
                "to": transaction.get("to") or transaction.get("to_address"),
                "value": float(transaction.get("value") or 0.0),
                "block_number": _optional_int(transaction.get("blockNumber", transaction.get("block_number"))),
                "timestamp": to_dt(transaction.get("timestamp")) or utcnow(),
                "gas_used": _optional_int(transaction.get("gasUsed", transaction.get("gas_used"))),
                "gas_price": _optional_int(transaction.get("gasPrice", transaction.get("gas_price"))),
            }
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid transaction payload: {e}") from e

        signals = self.provider.fetch(address)
        record, created = self.store.add_transaction(address, data)
        if not created:
            logger.info(f"Transaction {record.tx_hash} already recorded for {address}")
            return {"transaction": record.to_dict(), "created": False, "wallet": signals.to_dict()}

        last_activity = signals.last_activity
        if last_activity is None or record.timestamp > last_activity:
            last_activity = record.timestamp
        updated = self.store.upsert(
            address,
            transaction_count=signals.transaction_count + 1,
            last_activity=last_activity,
        )
        self.bus.publish_transaction_update(address, record)
        return {"transaction": record.to_dict(), "created": True, "wallet": updated.to_dict()}

    def update_wallet_balance(self, wallet, balance):
        """Set the stored balance of a known wallet. Returns None for unknown wallets."""
        address = normalize_address(wallet)
        try:
            balance = float(balance)
        except (TypeError, ValueError) as e:
            raise ValidationError("Balance must be a number") from e
        if balance < 0:
            raise ValidationError("Balance must be non-negative")
        if self.store.get(address) is None:
            return None
        return self.store.upsert(address, balance=balance)

    def erase_wallet(self, wallet):
        """Privacy erasure: drop the wallet record and its transaction log."""
        return self.store.delete(normalize_address(wallet))

    def subscribe_to_credit_score_updates(self, wallet, callback):
        return self.bus.subscribe_to_credit_score_updates(normalize_address(wallet), callback)

    def start_auto_refresh(self, wallet, on_result=None, on_error=None, interval=None, immediate=True):
        """Start a running ScoreRefresher for ``wallet``; the caller owns ``stop()``."""
        refresher = ScoreRefresher(
            self,
            normalize_address(wallet),
            interval or self.refresh_interval,
            on_result=on_result,
            on_error=on_error,
            immediate=immediate,
        )
        return refresher.start()

    def status(self):
        return {
            "initialized": self.initialized,
            "pipelineConnected": self.bus.is_connected,
            "subscriberCount": self.bus.subscriber_count(),
        }


def _optional_int(value):
    if value is None or value == "":
        return None
    return int(value)
