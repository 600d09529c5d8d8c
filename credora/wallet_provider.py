# credora/wallet_provider.py
"""
Wallet signal providers.

A provider answers ``fetch(address) -> WalletSignals``. Both providers look
in the store first and return a stored record unchanged; only unknown
addresses are built fresh and persisted before being returned.

- ``WalletSignalProvider`` synthesizes plausible random signals (demo data).
- ``ChainWalletSignalProvider`` reads balance and nonce over JSON-RPC and the
  latest activity time from an Etherscan-compatible explorer.
"""
import logging
import random

import requests
from web3 import Web3

from credora.exceptions import UpstreamUnavailable
from credora.models import WalletSignals
from credora.utils.address import normalize_address
from credora.utils.timeutils import to_dt, utcnow

logger = logging.getLogger(__name__)

# Synthesis ranges for unseen wallets
MAX_SYNTHETIC_BALANCE = 3.0       # balance drawn from [0, 3)
MIN_SYNTHETIC_TX_COUNT = 1
MAX_SYNTHETIC_TX_COUNT = 30

# Demo wallets: one per tier under the rule engine
MOCK_WALLETS = {
    "0x742d35cc6634c0532925a3b8d4c9db96c4b4d8b6": {
        "balance": 2.5, "transaction_count": 25, "last_activity": "2024-01-15",
    },
    "0x1234567890123456789012345678901234567890": {
        "balance": 0.8, "transaction_count": 8, "last_activity": "2024-01-10",
    },
    "0x0987654321098765432109876543210987654321": {
        "balance": 0.1, "transaction_count": 3, "last_activity": "2024-01-05",
    },
}


def seed_mock_wallets(store, wallets=None):
    """Store the demo wallets unless they already exist. Returns how many were added."""
    added = 0
    for address, data in (wallets or MOCK_WALLETS).items():
        if store.get(address) is not None:
            continue
        when = to_dt(data["last_activity"])
        store.create_if_absent(WalletSignals(
            address=address,
            balance=data["balance"],
            transaction_count=data["transaction_count"],
            last_activity=when,
            created_at=when,
        ))
        added += 1
    if added:
        logger.info(f"Seeded {added} mock wallets")
    return added


class WalletSignalProvider:
    def __init__(self, store, rng=None):
        self.store = store
        self.rng = rng or random.Random()

    def fetch(self, address):
        address = normalize_address(address)
        stored = self.store.get(address)
        if stored is not None:
            return stored
        return self.store.create_if_absent(self._build(address))

    def _build(self, address):
        now = utcnow()
        signals = WalletSignals(
            address=address,
            balance=round(self.rng.random() * MAX_SYNTHETIC_BALANCE, 2),
            transaction_count=self.rng.randint(MIN_SYNTHETIC_TX_COUNT, MAX_SYNTHETIC_TX_COUNT),
            last_activity=now,
            created_at=now,
        )
        logger.info(
            f"Synthesized signals for new wallet {address}: "
            f"balance={signals.balance} ETH, txCount={signals.transaction_count}"
        )
        return signals


class ChainWalletSignalProvider(WalletSignalProvider):
    """
    Builds signals for unknown wallets from live chain data.

    Any RPC or explorer failure raises UpstreamUnavailable; nothing is
    persisted in that case. No retries.
    """

    def __init__(self, store, w3=None, rpc_url=None, etherscan_url=None,
                 etherscan_api_key=None, timeout=5, session=None):
        super().__init__(store)
        if w3 is None:
            if not rpc_url:
                raise ValueError("ChainWalletSignalProvider needs an RPC url or a Web3 instance")
            w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        self.w3 = w3
        self.etherscan_url = etherscan_url
        self.etherscan_api_key = etherscan_api_key
        self.timeout = timeout
        self.http = session or requests.Session()

    def _build(self, address):
        checksum = Web3.to_checksum_address(address)
        try:
            if not self.w3.is_connected():
                raise UpstreamUnavailable("Ethereum RPC not connected")
            balance_wei = self.w3.eth.get_balance(checksum)
            tx_count = self.w3.eth.get_transaction_count(checksum)
        except UpstreamUnavailable:
            raise
        except Exception as e:
            logger.error(f"RPC read failed for {address}: {e}")
            raise UpstreamUnavailable(f"Ethereum RPC unavailable: {e}") from e

        now = utcnow()
        last_activity = self._fetch_last_activity(address) or now
        signals = WalletSignals(
            address=address,
            balance=float(Web3.from_wei(balance_wei, "ether")),
            transaction_count=int(tx_count),
            last_activity=last_activity,
            created_at=now,
        )
        logger.info(
            f"Fetched chain signals for {address}: "
            f"balance={signals.balance} ETH, txCount={signals.transaction_count}"
        )
        return signals

    def _fetch_last_activity(self, address):
        """Timestamp of the newest normal transaction, or None when the wallet has none."""
        if not self.etherscan_url or not self.etherscan_api_key:
            return None
        params = {
            "module": "account",
            "action": "txlist",
            "address": address,
            "startblock": 0,
            "endblock": 99999999,
            "page": 1,
            "offset": 1,
            "sort": "desc",
            "apikey": self.etherscan_api_key,
        }
        try:
            resp = self.http.get(self.etherscan_url, params=params, timeout=self.timeout)
            resp.raise_for_status()
            body = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Explorer request failed for {address}: {e}")
            raise UpstreamUnavailable(f"Explorer unavailable: {e}") from e

        if body.get("message") == "OK" and body.get("result"):
            return to_dt(int(body["result"][0]["timeStamp"]))
        if body.get("message") == "No transactions found":
            return None
        raise UpstreamUnavailable(f"Explorer error: {body.get('result') or body.get('message')}")
