"""
Pytest fixtures for Credora tests. Every test gets a fresh in-memory SQLite
store and its own update bus.
"""
import random

import pytest

from credora.app import create_app
from credora.config import TestConfig
from credora.database.db import init_db, make_engine, make_session_factory
from credora.database.store import WalletStore
from credora.scoring_engine import RuleScoringEngine
from credora.scoring_service import ScoringService
from credora.update_bus import UpdateBus
from credora.wallet_provider import WalletSignalProvider


@pytest.fixture
def db_engine():
    engine = make_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(db_engine):
    return WalletStore(make_session_factory(db_engine))


@pytest.fixture
def bus():
    bus = UpdateBus()
    bus.initialize()
    return bus


@pytest.fixture
def provider(store):
    return WalletSignalProvider(store, rng=random.Random(42))


@pytest.fixture
def service(provider, store, bus):
    service = ScoringService(provider, RuleScoringEngine(), store, bus)
    service.initialize()
    return service


@pytest.fixture
def app():
    """Flask app wired to an in-memory database with the demo wallets seeded."""
    return create_app(TestConfig, SEED_MOCK_WALLETS=True)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def services(app):
    return app.extensions["credora"]
