# credora/config.py
import os
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name, default):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Service metadata
    SERVICE_NAME = 'Credora AI Credit Scoring API'
    SERVICE_VERSION = '1.0.0'

    # Scoring Configuration
    SCORING_MODE = os.getenv('SCORING_MODE', 'rule')  # 'rule', 'weighted' or 'remote'
    MODEL_ID = os.getenv('CREDIT_MODEL_ID', 'credora-credit-scoring-v1')
    MODEL_VERSION = '1.0.0'
    WEIGHTED_CONFIDENCE = float(os.getenv('WEIGHTED_CONFIDENCE', '0.85'))
    ML_API_URL = os.getenv('ML_API_URL', 'http://127.0.0.1:5000')

    # Wallet data source
    SIGNAL_SOURCE = os.getenv('SIGNAL_SOURCE', 'mock')  # 'mock' or 'chain'
    SEED_MOCK_WALLETS = _env_bool('SEED_MOCK_WALLETS', True)
    RPC_URL = os.getenv('RPC_URL') or os.getenv('SEPOLIA_RPC_URL')
    ETHERSCAN_API_URL = os.getenv('ETHERSCAN_API_URL', 'https://api.etherscan.io/api')
    ETHERSCAN_API_KEY = os.getenv('ETHERSCAN_API_KEY')
    REQUEST_TIMEOUT_SECONDS = float(os.getenv('REQUEST_TIMEOUT_SECONDS', '5'))

    # Persistence
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///credora.db')

    # Loan contract constants (must match the deployed Loan contract)
    LOAN_INTEREST_RATE = Decimal('0.05')
    LOAN_DURATION_DAYS = 30
    MIN_BALANCE_THRESHOLD = 0.5
    MIN_TX_COUNT = 10
    LOAN_OWNER_ADDRESS = os.getenv('LOAN_OWNER_ADDRESS')

    # Real-time updates
    REFRESH_INTERVAL_SECONDS = float(os.getenv('REFRESH_INTERVAL_SECONDS', '30'))

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FILE = os.getenv('LOG_FILE')  # e.g. 'logs/credora.log'

    # API Configuration
    API_HOST = os.getenv('API_HOST', '0.0.0.0')
    API_PORT = int(os.getenv('PORT', '3001'))


class TestConfig(Config):
    TESTING = True
    DATABASE_URL = 'sqlite://'
    SCORING_MODE = 'rule'
    SIGNAL_SOURCE = 'mock'
    SEED_MOCK_WALLETS = False
    LOAN_OWNER_ADDRESS = '0x00000000000000000000000000000000000000aa'
    REFRESH_INTERVAL_SECONDS = 30.0
    LOG_FILE = None
