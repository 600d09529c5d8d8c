# credora/update_bus.py
"""
In-process pub/sub for real-time wallet updates.

Channels are keyed ``{family}:{address}`` with family one of ``credit_score``,
``transaction`` or ``lending``. Each key holds an ordered set of callbacks.
``publish`` runs them synchronously, in registration order; a callback that
raises is logged and skipped, never propagated to the publisher.

The bus is Disconnected until ``initialize()`` and goes back to Disconnected
on ``disconnect()``, which drops every subscription. There is no
reconnection, no replay and no cross-process delivery: a subscriber only sees
events published after it registered, in this process.
"""
import logging
import threading

from credora.models import PipelineEvent, decimal_str

logger = logging.getLogger(__name__)

FAMILY_CREDIT_SCORE = "credit_score"
FAMILY_TRANSACTION = "transaction"
FAMILY_LENDING = "lending"
FAMILIES = (FAMILY_CREDIT_SCORE, FAMILY_TRANSACTION, FAMILY_LENDING)

EVENT_CREDIT_SCORE_UPDATE = "credit_score_update"
EVENT_TRANSACTION_UPDATE = "transaction_update"
EVENT_LENDING_UPDATE = "lending_update"

EVENT_FAMILIES = {
    EVENT_CREDIT_SCORE_UPDATE: FAMILY_CREDIT_SCORE,
    EVENT_TRANSACTION_UPDATE: FAMILY_TRANSACTION,
    EVENT_LENDING_UPDATE: FAMILY_LENDING,
}


def channel_key(family, address):
    if family not in FAMILIES:
        raise ValueError(f"Unknown event family: {family}")
    return f"{family}:{str(address).lower()}"


def split_channel_key(key):
    """Inverse of channel_key: ``(family, address)``."""
    family, _, address = key.partition(":")
    return family, address


class UpdateBus:
    def __init__(self):
        # channel key -> {callback: None}; dict keys keep registration order
        self._subscribers = {}
        self._lock = threading.RLock()
        self._connected = False

    # --- Lifecycle ---

    def initialize(self):
        with self._lock:
            self._connected = True
        logger.info("Update bus connected")
        return True

    def disconnect(self):
        with self._lock:
            self._connected = False
            self._subscribers.clear()
        logger.info("Update bus disconnected; all subscriptions cleared")

    @property
    def is_connected(self):
        return self._connected

    # --- Subscriptions ---

    def subscribe(self, key, callback):
        """
        Register ``callback`` on ``key``. Registering the same callback twice
        is a no-op. Returns a function that removes exactly this callback.
        """
        with self._lock:
            self._subscribers.setdefault(key, {})[callback] = None

        def unsubscribe():
            with self._lock:
                callbacks = self._subscribers.get(key)
                if callbacks is None:
                    return
                callbacks.pop(callback, None)
                if not callbacks:
                    del self._subscribers[key]

        return unsubscribe

    def subscribe_to_credit_score_updates(self, address, callback):
        return self.subscribe(channel_key(FAMILY_CREDIT_SCORE, address), callback)

    def subscribe_to_transaction_updates(self, address, callback):
        return self.subscribe(channel_key(FAMILY_TRANSACTION, address), callback)

    def subscribe_to_lending_updates(self, address, callback):
        return self.subscribe(channel_key(FAMILY_LENDING, address), callback)

    def subscriber_count(self, key=None):
        with self._lock:
            if key is not None:
                return len(self._subscribers.get(key, {}))
            return sum(len(callbacks) for callbacks in self._subscribers.values())

    def channels(self):
        with self._lock:
            return list(self._subscribers)

    # --- Delivery ---

    def publish(self, key, event):
        """
        Deliver ``event`` to every callback registered on ``key`` right now.
        Returns the number of callbacks that completed without raising.
        """
        if not self._connected:
            logger.warning(f"Update bus not connected; dropping event for {key}")
            return 0

        with self._lock:
            callbacks = list(self._subscribers.get(key, ()))

        delivered = 0
        for callback in callbacks:
            try:
                callback(event)
                delivered += 1
            except Exception:
                logger.exception(f"Error in pipeline event callback for {key}")
        logger.debug(f"Published {getattr(event, 'type', 'event')} to {key}: {delivered}/{len(callbacks)} delivered")
        return delivered

    def route(self, event):
        """Publish ``event`` on the channel its type and wallet point at."""
        family = EVENT_FAMILIES.get(event.type)
        if family is None:
            logger.warning(f"Unknown event type: {event.type}")
            return 0
        return self.publish(channel_key(family, event.wallet), event)

    # --- Typed publishers ---

    def publish_credit_score_update(self, address, result, metadata=None):
        event = PipelineEvent(
            type=EVENT_CREDIT_SCORE_UPDATE,
            wallet=address,
            data=result.to_dict(),
            timestamp=result.computed_at,
            metadata=metadata,
        )
        return self.publish(channel_key(FAMILY_CREDIT_SCORE, address), event)

    def publish_transaction_update(self, address, transaction):
        event = PipelineEvent(
            type=EVENT_TRANSACTION_UPDATE,
            wallet=address,
            data={
                "hash": transaction.tx_hash,
                "from": transaction.from_address,
                "to": transaction.to_address,
                "value": transaction.value,
                "blockNumber": transaction.block_number,
            },
        )
        return self.publish(channel_key(FAMILY_TRANSACTION, address), event)

    def publish_lending_update(self, address, record, action):
        event = PipelineEvent(
            type=EVENT_LENDING_UPDATE,
            wallet=address,
            data={
                "loanId": record.loan_id,
                "status": record.status,
                "amount": decimal_str(record.amount),
                "action": action,
            },
        )
        return self.publish(channel_key(FAMILY_LENDING, address), event)
