"""
api.py
JSON REST service over FinanceStore (Flask blueprints).
Run: python api.py
"""

from __future__ import annotations

import threading
import time
from datetime import datetime, timezone

from flask import Blueprint, Flask, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

import config
from errors import TrackerError, ValidationError
from store import FinanceStore

STORE_KEY = "ytracker_store"

members_bp = Blueprint("members", __name__, url_prefix="/api/members")
transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")
cards_bp = Blueprint("cards", __name__, url_prefix="/api/cards")
misc_bp = Blueprint("misc", __name__)


def get_store() -> FinanceStore:
    return current_app.extensions[STORE_KEY]


def _body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def _int_arg(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer.")


def _ok(data, status: int = 200, **extra):
    payload = {"success": True, **extra, "data": data}
    return jsonify(payload), status


def _ok_list(items):
    return _ok([i.to_dict() for i in items], count=len(items))


def _ok_page(page):
    return _ok(
        [i.to_dict() for i in page.items],
        count=len(page.items),
        total=page.total,
        pagination=page.pagination(),
    )


def _date_filters() -> dict:
    return {
        "start_date": request.args.get("startDate") or None,
        "end_date": request.args.get("endDate") or None,
    }


# ---------- Members ----------

@members_bp.get("")
def list_members():
    members = get_store().list_members(
        status=request.args.get("status") or None,
        payment_type=request.args.get("paymentType") or None,
        search=request.args.get("search") or None,
    )
    return _ok_list(members)


@members_bp.post("")
def create_member():
    return _ok(get_store().create_member(_body()).to_dict(), 201)


@members_bp.get("/overdue")
def overdue_members():
    return _ok_list(get_store().overdue_members())


@members_bp.get("/upcoming")
def upcoming_members():
    return _ok_list(get_store().upcoming_members(_int_arg("days", 30)))


@members_bp.get("/stats")
def member_stats():
    return _ok(get_store().member_stats())


@members_bp.get("/<member_id>")
def get_member(member_id):
    return _ok(get_store().get_member(member_id).to_dict())


@members_bp.put("/<member_id>")
def update_member(member_id):
    return _ok(get_store().update_member(member_id, _body()).to_dict())


@members_bp.delete("/<member_id>")
def delete_member(member_id):
    removed = get_store().delete_member(member_id)
    return jsonify({
        "success": True,
        "message": "Member deleted successfully",
        "deletedTransactions": removed,
    })


@members_bp.patch("/<member_id>/mark-paid")
def mark_paid(member_id):
    return _ok(get_store().mark_paid(member_id).to_dict())


# ---------- Transactions ----------

@transactions_bp.get("")
def list_transactions():
    page = get_store().query_transactions(
        page=_int_arg("page", 1),
        limit=_int_arg("limit", 10),
        type=request.args.get("type") or None,
        member_id=request.args.get("memberId") or None,
        category=request.args.get("category") or None,
        status=request.args.get("status") or None,
        **_date_filters(),
    )
    return _ok_page(page)


@transactions_bp.post("")
def create_transaction():
    return _ok(get_store().create_transaction(_body()).to_dict(), 201)


@transactions_bp.get("/stats")
def transaction_stats():
    store = get_store()
    filters = _date_filters()
    stats = store.transaction_stats(filters["start_date"], filters["end_date"])
    stats["recentTransactions"] = [t.to_dict() for t in store.recent_transactions(5)]
    return _ok(stats)


@transactions_bp.get("/member/<member_id>")
def transactions_by_member(member_id):
    return _ok_list(get_store().transactions_by_member(member_id, _int_arg("limit", 10)))


@transactions_bp.get("/category/<category>")
def transactions_by_category(category):
    return _ok_page(get_store().transactions_by_category(
        category, page=_int_arg("page", 1), limit=_int_arg("limit", 10)
    ))


@transactions_bp.get("/<transaction_id>")
def get_transaction(transaction_id):
    return _ok(get_store().get_transaction(transaction_id).to_dict())


@transactions_bp.put("/<transaction_id>")
def update_transaction(transaction_id):
    return _ok(get_store().update_transaction(transaction_id, _body()).to_dict())


@transactions_bp.delete("/<transaction_id>")
def delete_transaction(transaction_id):
    get_store().delete_transaction(transaction_id)
    return jsonify({"success": True, "message": "Transaction deleted successfully"})


# ---------- Cards ----------

@cards_bp.get("")
def list_cards():
    raw = request.args.get("isActive")
    is_active = None if raw in (None, "") else raw.lower() == "true"
    return _ok_list(get_store().list_cards(is_active=is_active, card_type=request.args.get("cardType") or None))


@cards_bp.post("")
def create_card():
    return _ok(get_store().create_card(_body()).to_dict(), 201)


@cards_bp.get("/expiring")
def expiring_cards():
    return _ok_list(get_store().expiring_cards(_int_arg("days", 30)))


@cards_bp.get("/<card_id>")
def get_card(card_id):
    return _ok(get_store().get_card(card_id).to_dict())


@cards_bp.put("/<card_id>")
def update_card(card_id):
    return _ok(get_store().update_card(card_id, _body()).to_dict())


@cards_bp.delete("/<card_id>")
def delete_card(card_id):
    get_store().delete_card(card_id)
    return jsonify({"success": True, "message": "Card deleted successfully"})


@cards_bp.get("/<card_id>/stats")
def card_stats(card_id):
    filters = _date_filters()
    stats = get_store().card_stats(card_id, filters["start_date"], filters["end_date"])
    stats["recentTransactions"] = [t.to_dict() for t in stats["recentTransactions"]]
    return _ok(stats)


@cards_bp.get("/<card_id>/transactions")
def list_card_transactions(card_id):
    page = get_store().query_card_transactions(
        card_id,
        page=_int_arg("page", 1),
        limit=_int_arg("limit", 10),
        type=request.args.get("type") or None,
        category=request.args.get("category") or None,
        **_date_filters(),
    )
    return _ok_page(page)


@cards_bp.post("/<card_id>/transactions")
def create_card_transaction(card_id):
    return _ok(get_store().add_card_transaction(card_id, _body()).to_dict(), 201)


@cards_bp.get("/<card_id>/transactions/<transaction_id>")
def get_card_transaction(card_id, transaction_id):
    return _ok(get_store().get_card_transaction(transaction_id, card_id=card_id).to_dict())


@cards_bp.put("/<card_id>/transactions/<transaction_id>")
def update_card_transaction(card_id, transaction_id):
    tx = get_store().update_card_transaction(transaction_id, _body(), card_id=card_id)
    return _ok(tx.to_dict())


@cards_bp.delete("/<card_id>/transactions/<transaction_id>")
def delete_card_transaction(card_id, transaction_id):
    get_store().delete_card_transaction(transaction_id, card_id=card_id)
    return jsonify({"success": True, "message": "Card transaction deleted successfully"})


# ---------- Settings / dashboard / health ----------

@misc_bp.get("/api/settings")
def get_settings():
    return _ok(get_store().get_settings().to_dict())


@misc_bp.put("/api/settings")
def update_settings():
    return _ok(get_store().update_settings(_body()).to_dict())


@misc_bp.get("/api/dashboard")
def dashboard():
    snapshot = get_store().dashboard()
    snapshot["upcomingPayments"] = [m.to_dict() for m in snapshot["upcomingPayments"]]
    return _ok(snapshot)


@misc_bp.get("/health")
def health():
    return jsonify({
        "success": True,
        "message": "YTracker API is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": current_app.config.get("ENV"),
    })


# ---------- Rate limiting ----------

class FixedWindowLimiter:
    """
    Per-key request budget that resets every `window` seconds. Safe to share
    between the threads of the Flask server; keys whose window has run out
    are dropped once per window.
    """

    def __init__(self, max_requests: int, window: int, clock=time.monotonic):
        self.max_requests = max_requests
        self.window = window
        self.clock = clock
        self._hits: dict[str, tuple[float, int]] = {}
        self._lock = threading.Lock()
        self._last_prune = clock()

    def __len__(self) -> int:
        return len(self._hits)

    def allow(self, key: str) -> bool:
        with self._lock:
            now = self.clock()
            if now - self._last_prune >= self.window:
                self._prune(now)
            started, count = self._hits.get(key, (now, 0))
            if now - started >= self.window:
                started, count = now, 0
            count += 1
            self._hits[key] = (started, count)
            return count <= self.max_requests

    def _prune(self, now: float) -> None:
        expired = [k for k, (started, _) in self._hits.items() if now - started >= self.window]
        for key in expired:
            del self._hits[key]
        self._last_prune = now


def _register_rate_limit(app: Flask) -> None:
    limiter = FixedWindowLimiter(app.config["RATE_LIMIT_MAX_REQUESTS"], app.config["RATE_LIMIT_WINDOW_SECONDS"])

    @app.before_request
    def _limit():
        if not request.path.startswith("/api/"):
            return None
        if limiter.allow(request.remote_addr or "unknown"):
            return None
        app.logger.warning("Rate limit exceeded for %s", request.remote_addr)
        return jsonify({
            "success": False,
            "error": "Too many requests from this IP, please try again later.",
        }), 429


# ---------- Errors ----------

def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(TrackerError)
    def _tracker_error(e: TrackerError):
        payload = {"success": False, "error": e.message}
        if isinstance(e, ValidationError):
            payload["errors"] = e.errors
        return jsonify(payload), e.status_code

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        message = "Route not found" if e.code == 404 else e.description
        return jsonify({"success": False, "error": message}), e.code

    @app.errorhandler(Exception)
    def _unexpected(e: Exception):
        app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"success": False, "error": "Internal server error"}), 500


def create_app(overrides: dict | None = None, store: FinanceStore | None = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config.Config)
    if overrides:
        app.config.update(overrides)

    if store is None:
        store = FinanceStore.open(
            app.config["DB_FILE"],
            cost_source=app.config["COST_SOURCE"],
            default_cost=app.config["DEFAULT_SUBSCRIPTION_COST"],
        )
    app.extensions[STORE_KEY] = store

    for bp in (members_bp, transactions_bp, cards_bp, misc_bp):
        app.register_blueprint(bp)
    _register_rate_limit(app)
    _register_error_handlers(app)

    app.logger.info("[Config] env=%s db=%s cost_source=%s", app.config["ENV"], store.db.path, store.cost_source)
    return app


if __name__ == "__main__":
    config.configure_logging()
    create_app().run(host="0.0.0.0", port=config.Config.PORT)
