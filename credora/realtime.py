# credora/realtime.py
"""
Forwards update-bus events to Socket.IO clients.

A client emits ``subscribe`` with ``{"wallet": <address>, "family":
"credit_score" | "transaction" | "lending"}`` and is put in a room named
after the channel key. The bridge keeps one bus subscription per channel
key while at least one client sits in its room, and emits every bus event on
that key to the room under the event's type name.

When built with a scoring service, a watched ``credit_score`` channel also
runs a ScoreRefresher for its wallet, so the room receives a fresh score
every refresh interval until its last client leaves.
"""
import logging
import threading

from flask import request
from flask_socketio import emit, join_room, leave_room

from credora.exceptions import ValidationError
from credora.update_bus import EVENT_FAMILIES, FAMILY_CREDIT_SCORE, channel_key, split_channel_key
from credora.utils.address import normalize_address

logger = logging.getLogger(__name__)


class SocketIOBridge:
    def __init__(self, socketio, bus, service=None):
        self.socketio = socketio
        self.bus = bus
        self.service = service
        self._members = {}        # channel key -> set of sids
        self._unsubscribers = {}  # channel key -> bus unsubscribe fn
        self._refreshers = {}     # channel key -> ScoreRefresher
        self._lock = threading.Lock()

    def register_handlers(self):
        self.socketio.on_event("subscribe", self._on_subscribe)
        self.socketio.on_event("unsubscribe", self._on_unsubscribe)
        self.socketio.on_event("disconnect", self._on_disconnect)
        return self

    # --- Room bookkeeping ---

    def watch(self, key, sid):
        with self._lock:
            members = self._members.setdefault(key, set())
            members.add(sid)
            if key not in self._unsubscribers:
                self._unsubscribers[key] = self.bus.subscribe(key, self.forward)
                logger.info(f"Forwarding {key} to Socket.IO clients")
                self._start_refresher(key)

    def release(self, key, sid):
        refresher = None
        with self._lock:
            members = self._members.get(key)
            if members is None:
                return
            members.discard(sid)
            if not members:
                del self._members[key]
                unsubscribe = self._unsubscribers.pop(key, None)
                if unsubscribe is not None:
                    unsubscribe()
                refresher = self._refreshers.pop(key, None)
                logger.info(f"Stopped forwarding {key}")
        # joined outside the lock; an in-flight refresh may still be emitting
        if refresher is not None:
            refresher.stop()

    def _start_refresher(self, key):
        family, wallet = split_channel_key(key)
        if self.service is None or family != FAMILY_CREDIT_SCORE:
            return
        # the subscriber already asked for a score; the first refresh waits one interval
        self._refreshers[key] = self.service.start_auto_refresh(wallet, immediate=False)

    def forward(self, event):
        family = EVENT_FAMILIES.get(event.type)
        if family is None:
            return
        self.socketio.emit(event.type, event.to_dict(), to=channel_key(family, event.wallet))

    # --- Socket.IO handlers ---

    def _channel_from(self, data):
        data = data or {}
        family = data.get("family") or FAMILY_CREDIT_SCORE
        try:
            return channel_key(family, normalize_address(data.get("wallet")))
        except ValueError as e:
            raise ValidationError(str(e)) from e

    def _on_subscribe(self, data=None):
        try:
            key = self._channel_from(data)
        except ValidationError as e:
            emit("subscription_error", e.to_dict())
            return
        join_room(key)
        self.watch(key, request.sid)
        emit("subscribed", {"channel": key})

    def _on_unsubscribe(self, data=None):
        try:
            key = self._channel_from(data)
        except ValidationError as e:
            emit("subscription_error", e.to_dict())
            return
        leave_room(key)
        self.release(key, request.sid)
        emit("unsubscribed", {"channel": key})

    def _on_disconnect(self, *args):
        sid = request.sid
        with self._lock:
            keys = [key for key, members in self._members.items() if sid in members]
        for key in keys:
            self.release(key, sid)
