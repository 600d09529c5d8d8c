# credora/app.py
import logging
import os

from flask import Flask, current_app, jsonify, request
from flask_cors import CORS
from flask_socketio import SocketIO
from werkzeug.exceptions import HTTPException

from credora.config import Config
from credora.database.db import init_db, make_engine, make_session_factory
from credora.database.store import WalletStore
from credora.eligibility import EligibilityRule, LoanBook
from credora.exceptions import CredoraError, ValidationError
from credora.realtime import SocketIOBridge
from credora.scoring_engine import build_scoring_engine, model_info
from credora.scoring_service import ScoringService
from credora.update_bus import UpdateBus
from credora.utils.address import EXAMPLE_ADDRESS
from credora.utils.timeutils import isoformat, utcnow
from credora.wallet_provider import ChainWalletSignalProvider, WalletSignalProvider, seed_mock_wallets

logger = logging.getLogger(__name__)

ENDPOINTS = [
    "GET /",
    "GET /health",
    "GET /status",
    "GET /model",
    "GET /getCreditScore?wallet=<address>",
    "POST /transactions",
    "DELETE /wallet?wallet=<address>",
    "POST /requestLoan",
    "POST /repayLoan",
    "GET /getLoanInfo?wallet=<address>",
    "POST /setBorrowerTxCount",
    "POST /markDefaulted",
]


def configure_logging(level="INFO", log_file=None):
    handlers = [logging.StreamHandler()]
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )


def build_provider(config, store):
    source = (config.get("SIGNAL_SOURCE") or "mock").lower()
    if source == "mock":
        return WalletSignalProvider(store)
    if source == "chain":
        return ChainWalletSignalProvider(
            store,
            rpc_url=config.get("RPC_URL"),
            etherscan_url=config.get("ETHERSCAN_API_URL"),
            etherscan_api_key=config.get("ETHERSCAN_API_KEY"),
            timeout=config.get("REQUEST_TIMEOUT_SECONDS", 5),
        )
    raise ValueError(f"Unknown SIGNAL_SOURCE: {source}")


def create_app(config=None, **overrides):
    app = Flask(__name__)
    app.config.from_object(config or Config)
    app.config.update(overrides)

    configure_logging(app.config.get("LOG_LEVEL", "INFO"), app.config.get("LOG_FILE"))

    CORS(app)
    socketio = SocketIO(app, cors_allowed_origins="*", async_mode="threading")

    engine = make_engine(app.config["DATABASE_URL"])
    app.logger.info("Creating database tables if not exist...")
    init_db(engine)
    store = WalletStore(make_session_factory(engine))
    if app.config.get("SEED_MOCK_WALLETS"):
        seed_mock_wallets(store)

    bus = UpdateBus()
    scoring_engine = build_scoring_engine(app.config)
    service = ScoringService(
        build_provider(app.config, store),
        scoring_engine,
        store,
        bus,
        refresh_interval=app.config["REFRESH_INTERVAL_SECONDS"],
    )
    service.initialize()

    loans = LoanBook(
        store,
        bus=bus,
        owner=app.config.get("LOAN_OWNER_ADDRESS"),
        rule=EligibilityRule(app.config["MIN_BALANCE_THRESHOLD"], app.config["MIN_TX_COUNT"]),
        interest_rate=app.config["LOAN_INTEREST_RATE"],
        duration_days=app.config["LOAN_DURATION_DAYS"],
    )
    bridge = SocketIOBridge(socketio, bus, service=service).register_handlers()

    app.extensions["credora"] = {
        "db_engine": engine,
        "store": store,
        "bus": bus,
        "engine": scoring_engine,
        "service": service,
        "loans": loans,
        "bridge": bridge,
        "socketio": socketio,
    }

    register_routes(app)
    register_error_handlers(app)
    logger.info(f"{app.config['SERVICE_NAME']} ready (scoring mode: {scoring_engine.mode})")
    return app


# --- Helpers ---

def _services():
    return current_app.extensions["credora"]


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _require(data, key):
    value = data.get(key)
    if value is None or value == "":
        raise ValidationError(f"{key} is required")
    return value


def _int_field(data, key):
    value = _require(data, key)
    # bool is an int subclass; JSON true must not pass as 1
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise ValidationError(f"{key} must be an integer")


def _wallet_arg():
    wallet = request.args.get("wallet")
    if not wallet or not wallet.strip():
        return None
    return wallet


def _missing_wallet():
    return jsonify({
        "error": "validation_error",
        "message": "Wallet address is required",
        "example": f"/getCreditScore?wallet={EXAMPLE_ADDRESS}",
    }), 400


# --- Routes ---

def register_routes(app):

    @app.route('/', methods=['GET'])
    def index():
        return jsonify({
            "service": current_app.config["SERVICE_NAME"],
            "version": current_app.config["SERVICE_VERSION"],
            "scoringMode": _services()["engine"].mode,
            "endpoints": ENDPOINTS,
        })

    @app.route('/health', methods=['GET'])
    def health():
        return jsonify({
            "status": "healthy",
            "service": current_app.config["SERVICE_NAME"],
            "version": current_app.config["SERVICE_VERSION"],
            "timestamp": isoformat(utcnow()),
        })

    @app.route('/status', methods=['GET'])
    def status():
        return jsonify(_services()["service"].status())

    @app.route('/model', methods=['GET'])
    def model():
        return jsonify(model_info(_services()["engine"], current_app.config["MODEL_ID"]))

    @app.route('/getCreditScore', methods=['GET'])
    def get_credit_score():
        wallet = _wallet_arg()
        if wallet is None:
            return _missing_wallet()
        return jsonify(_services()["service"].get_score(wallet))

    @app.route('/transactions', methods=['POST'])
    def add_transaction():
        data = _json_body()
        wallet = _require(data, "wallet")
        transaction = data.get("transaction")
        if transaction is None:
            transaction = {k: v for k, v in data.items() if k != "wallet"}
        result = _services()["service"].record_transaction(wallet, transaction)
        return jsonify(result), 201 if result["created"] else 200

    @app.route('/wallet', methods=['DELETE'])
    def erase_wallet():
        wallet = _wallet_arg()
        if wallet is None:
            return _missing_wallet()
        deleted = _services()["service"].erase_wallet(wallet)
        if not deleted:
            return jsonify({"error": "not_found", "message": "Wallet not found"}), 404
        return jsonify({"deleted": True, "wallet": wallet.strip().lower()})

    @app.route('/requestLoan', methods=['POST'])
    def request_loan():
        data = _json_body()
        record = _services()["loans"].request_loan(
            _require(data, "wallet"),
            _require(data, "amount"),
            balance=data.get("balance"),
        )
        return jsonify({"success": True, "loan": record.to_dict()}), 201

    @app.route('/repayLoan', methods=['POST'])
    def repay_loan():
        data = _json_body()
        record = _services()["loans"].repay_loan(_require(data, "wallet"), _require(data, "payment"))
        return jsonify({"success": True, "loan": record.to_dict()})

    @app.route('/getLoanInfo', methods=['GET'])
    def get_loan_info():
        wallet = _wallet_arg()
        if wallet is None:
            return _missing_wallet()
        return jsonify(_services()["loans"].get_loan_info(wallet))

    @app.route('/setBorrowerTxCount', methods=['POST'])
    def set_borrower_tx_count():
        data = _json_body()
        count = _int_field(data, "count")
        borrower = _require(data, "borrower")
        count = _services()["loans"].set_borrower_tx_count(_require(data, "caller"), borrower, count)
        return jsonify({"success": True, "borrower": borrower.strip().lower(), "transactionCount": count})

    @app.route('/markDefaulted', methods=['POST'])
    def mark_defaulted():
        data = _json_body()
        defaulted = _services()["loans"].sweep_defaults(_require(data, "caller"))
        return jsonify({
            "success": True,
            "count": len(defaulted),
            "defaulted": [record.to_dict() for record in defaulted],
        })


def register_error_handlers(app):

    @app.errorhandler(CredoraError)
    def handle_credora_error(e):
        if e.status_code >= 500:
            logger.error(f"{e.error_code}: {e.message}")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({
            "error": "not_found",
            "message": f"Endpoint {request.method} {request.path} not found",
            "availableEndpoints": ENDPOINTS,
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({
            "error": "method_not_allowed",
            "message": f"Method {request.method} not allowed for {request.path}",
        }), 405

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        if isinstance(e, HTTPException):
            return e
        logger.exception(f"Unhandled error on {request.path}: {e}")
        return jsonify({"error": "internal_error", "message": "Internal server error"}), 500


if __name__ == '__main__':
    app = create_app()
    logger.info(f"{app.config['SERVICE_NAME']} starting on {app.config['API_HOST']}:{app.config['API_PORT']}...")
    app.extensions["credora"]["socketio"].run(app, host=app.config['API_HOST'], port=app.config['API_PORT'],
                                              debug=False, allow_unsafe_werkzeug=True)
