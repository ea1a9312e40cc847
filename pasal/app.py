import os
from datetime import timedelta
from types import SimpleNamespace
from typing import Dict, Optional

from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_pymongo import PyMongo
from pymongo.errors import PyMongoError

from .catalog import CatalogService
from .errors import ServiceError
from .esewa import EsewaGateway
from .helpers import parse_bool
from .mailer import Mailer
from .orders import OrderService
from .payments import PaymentService
from .security import PasswordHasher
from .store import Store
from .uploads import ImageStorage
from .users import UserService
from .views import register_blueprints

load_dotenv()

ESEWA_SANDBOX_SECRET_KEY = "8gBm/:&EnhH.1/q"


def create_app(config: Optional[Dict] = None, store: Optional[Store] = None) -> Flask:
    """Create and configure the Flask application.

    ``store`` lets callers hand in an existing database handle; when omitted
    one is opened from ``MONGO_URI``.
    """
    app = Flask(__name__)

    # --- Configuration ---
    app.config["JWT_SECRET_KEY"] = os.getenv("JWT_SECRET_KEY", "change-me-in-production")
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = timedelta(hours=1)
    app.config["MONGO_URI"] = os.getenv("MONGO_URI", "mongodb://localhost:27017/pasal")
    app.config["MONGO_TRANSACTIONS"] = parse_bool(os.getenv("MONGO_TRANSACTIONS"), False)
    app.config["FRONTEND_URL"] = os.getenv("FRONTEND_URL", "http://localhost:3000").strip()
    app.config["CORS_ALLOWED_ORIGINS"] = os.getenv("CORS_ALLOWED_ORIGINS", "")
    max_upload_mb = int(os.getenv("MAX_UPLOAD_SIZE_MB", "16"))
    app.config["MAX_CONTENT_LENGTH"] = max_upload_mb * 1024 * 1024
    app.config["UPLOAD_FOLDER"] = os.getenv(
        "UPLOAD_FOLDER", os.path.join(app.root_path, "uploads")
    )
    app.config["RESEND_API_KEY"] = (os.getenv("RESEND_API_KEY") or "").strip()
    app.config["MAIL_SENDER"] = os.getenv("MAIL_SENDER", "Pasal <no-reply@pasal.store>")
    app.config["ACTIVATION_TOKEN_TTL_MINUTES"] = int(
        os.getenv("ACTIVATION_TOKEN_TTL_MINUTES", "60")
    )
    app.config["RESET_TOKEN_TTL_MINUTES"] = int(os.getenv("RESET_TOKEN_TTL_MINUTES", "60"))
    app.config["BCRYPT_ROUNDS"] = int(os.getenv("BCRYPT_ROUNDS", "12"))
    app.config["RESERVE_STOCK_ON_ORDER"] = parse_bool(
        os.getenv("RESERVE_STOCK_ON_ORDER"), True
    )
    app.config["VERIFY_ORDER_TOTAL"] = parse_bool(os.getenv("VERIFY_ORDER_TOTAL"), False)
    app.config["ESEWA_PRODUCT_CODE"] = os.getenv("ESEWA_PRODUCT_CODE", "EPAYTEST")
    app.config["ESEWA_SECRET_KEY"] = os.getenv("ESEWA_SECRET_KEY", ESEWA_SANDBOX_SECRET_KEY)
    app.config["ESEWA_GATEWAY_URL"] = os.getenv(
        "ESEWA_GATEWAY_URL", "https://rc-epay.esewa.com.np"
    )
    app.config["ESEWA_SUCCESS_URL"] = os.getenv(
        "ESEWA_SUCCESS_URL", "http://localhost:5000/complete-payment"
    )
    app.config["ESEWA_FAILURE_URL"] = os.getenv("ESEWA_FAILURE_URL", app.config["FRONTEND_URL"])
    app.config["ESEWA_TIMEOUT_SECONDS"] = float(os.getenv("ESEWA_TIMEOUT_SECONDS", "10"))

    if config:
        app.config.update(config)

    # --- Initialize extensions ---
    cors_origins = [
        origin.strip()
        for origin in (app.config["CORS_ALLOWED_ORIGINS"] or "").split(",")
        if origin.strip()
    ]
    if cors_origins and app.config["FRONTEND_URL"]:
        cors_origins.append(app.config["FRONTEND_URL"])
    # no explicit list means any origin
    CORS(app, supports_credentials=True, origins=cors_origins or "*")

    JWTManager(app)

    if store is None:
        mongo = PyMongo(app)
        store = Store(mongo.cx, mongo.db, use_transactions=app.config["MONGO_TRANSACTIONS"])
    store.ensure_indexes()

    images = ImageStorage(app.config["UPLOAD_FOLDER"])
    mailer = Mailer(
        app.config["RESEND_API_KEY"], app.config["MAIL_SENDER"], app.config["FRONTEND_URL"]
    )
    gateway = EsewaGateway(
        product_code=app.config["ESEWA_PRODUCT_CODE"],
        secret_key=app.config["ESEWA_SECRET_KEY"],
        gateway_url=app.config["ESEWA_GATEWAY_URL"],
        success_url=app.config["ESEWA_SUCCESS_URL"],
        failure_url=app.config["ESEWA_FAILURE_URL"],
        timeout=app.config["ESEWA_TIMEOUT_SECONDS"],
    )

    catalog = CatalogService(store, images)
    orders = OrderService(
        store,
        catalog,
        reserve_stock=app.config["RESERVE_STOCK_ON_ORDER"],
        verify_total=app.config["VERIFY_ORDER_TOTAL"],
    )
    app.extensions["pasal"] = SimpleNamespace(
        store=store,
        mailer=mailer,
        catalog=catalog,
        users=UserService(
            store,
            PasswordHasher(app.config["BCRYPT_ROUNDS"]),
            mailer,
            activation_ttl_minutes=app.config["ACTIVATION_TOKEN_TTL_MINUTES"],
            reset_ttl_minutes=app.config["RESET_TOKEN_TTL_MINUTES"],
        ),
        orders=orders,
        payments=PaymentService(store, orders, gateway),
    )

    register_blueprints(app)

    @app.errorhandler(ServiceError)
    def handle_service_error(exc: ServiceError):
        return jsonify({"success": False, "message": exc.message}), exc.status_code

    @app.errorhandler(PyMongoError)
    def handle_database_error(exc: PyMongoError):
        app.logger.exception("Database error: %s", exc)
        return jsonify({"success": False, "message": "Server error"}), 500

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    return app
