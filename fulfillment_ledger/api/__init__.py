"""
HTTP surface for the ledger.

    app = create_app({"LEDGER_DB_PATH": "/tmp/ledger.db", "TESTING": True})

Routes live in routes.py (one blueprint); FulfillmentError subclasses are
turned into JSON error bodies by the handlers registered here.
"""
from __future__ import annotations

from datetime import date
from typing import Any, Mapping, Optional

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from ..config import DB_PATH, LOCK_TIMEOUT_SECONDS
from ..database.ledger_store import LedgerStore
from ..errors import Busy, FulfillmentError, InvariantViolation, NotFound
from ..modules.fulfillment import FulfillmentOrchestrator
from ..utils.loggers import get_logger
from .routes import EXTENSION_KEY, ledger_bp

__all__ = ["create_app", "error_response", "EXTENSION_KEY"]

RETRY_AFTER_SECONDS = 1

_log = get_logger(__name__)


def status_code_for(err: FulfillmentError) -> int:
    """CapacityExceeded / OverPayment / InvalidRequest are user-correctable -> 422."""
    if isinstance(err, Busy):
        return 503
    if isinstance(err, NotFound):
        return 404
    if isinstance(err, InvariantViolation):
        return 500
    return 422


def error_response(err: FulfillmentError):
    resp = jsonify(err.to_dict())
    resp.status_code = status_code_for(err)
    if isinstance(err, Busy):
        resp.headers["Retry-After"] = str(RETRY_AFTER_SECONDS)
    return resp


def register_error_handlers(app: Flask) -> None:
    """
    JSON error bodies for every failure:
    - FulfillmentError -> its own code/details (see status_code_for)
    - HTTP errors (404 unknown route, 405, 400 bad JSON) -> {"error": name}
    - anything else -> 500 internal_error, traceback logged server-side only
    """

    @app.errorhandler(FulfillmentError)
    def handle_fulfillment_error(error: FulfillmentError):
        if isinstance(error, InvariantViolation):
            _log.critical("Invariant violation on %s %s: %s", request.method, request.path, error.message)
        else:
            _log.info("%s %s rejected: %s", request.method, request.path, error.code)
        return error_response(error)

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        resp = jsonify({
            "error": (error.name or "error").lower().replace(" ", "_"),
            "message": error.description,
            "details": {},
        })
        resp.status_code = error.code or 500
        return resp

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        _log.critical("Unhandled error on %s %s", request.method, request.path, exc_info=error)
        return error_response(InvariantViolation(repr(error)))


def create_app(config: Optional[Mapping[str, Any]] = None) -> Flask:
    """
    Build the Flask app.

    Config keys:
      LEDGER_DB_PATH       SQLite file (default: config.DB_PATH)
      LEDGER_LOCK_TIMEOUT  seconds to wait for the write lock
      LEDGER_CLOCK         zero-arg callable returning today's date (tests)
    """
    app = Flask(__name__)
    app.config.from_mapping(
        LEDGER_DB_PATH=str(DB_PATH),
        LEDGER_LOCK_TIMEOUT=LOCK_TIMEOUT_SECONDS,
        LEDGER_CLOCK=date.today,
        TESTING=False,
    )
    if config:
        app.config.update(config)

    store = LedgerStore(app.config["LEDGER_DB_PATH"], lock_timeout=app.config["LEDGER_LOCK_TIMEOUT"])
    app.extensions[EXTENSION_KEY] = FulfillmentOrchestrator(store, clock=app.config["LEDGER_CLOCK"])

    app.register_blueprint(ledger_bp)
    register_error_handlers(app)
    _log.info("Ledger API ready (db=%s)", store.db_path)
    return app
